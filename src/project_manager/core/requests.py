"""Validated request models, one per tool.

Arguments are checked here before anything touches the store. Unknown
fields, missing required fields and values outside the enums are rejected.
"""

from datetime import date, datetime, timezone
from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationError,
    model_validator,
)

from project_manager.db.models import (
    EpicStatus,
    Priority,
    ProjectStatus,
    RelationshipType,
    TaskStatus,
)

GITHUB_REPO_PATTERN = r"^[\w.-]+/[\w.-]+$"


def _check_iso(value: str | None) -> str | None:
    """Accept an ISO-8601 date or datetime and return it in canonical form.

    Dates become ``YYYY-MM-DD``. Datetimes become ``YYYY-MM-DD HH:MM:SS`` in
    UTC; naive values are taken as UTC already. Canonical values sort in time
    order as plain text, which the store relies on for date comparisons.
    """
    if value is None:
        return None
    value = value.strip()
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        pass
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        raise ValueError(f"not an ISO-8601 date or datetime: {value!r}") from None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.isoformat(sep=" ")


def _check_tags(value: list[str] | None) -> list[str] | None:
    if value is None:
        return None
    cleaned = [t.strip() for t in value]
    if any(not t for t in cleaned):
        raise ValueError("tag names must be non-empty")
    return cleaned


IsoDate = Annotated[str, AfterValidator(_check_iso)]
Title = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)]
Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
TagList = Annotated[list[str], AfterValidator(_check_tags)]


class ToolRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def provided(self, *exclude: str) -> dict[str, Any]:
        """Values that were provided, minus ``exclude``."""
        return {
            k: v
            for k, v in self.model_dump(exclude=set(exclude)).items()
            if v is not None
        }


# ── Tasks ────────────────────────────────────────────────────────────────────


class CreateTaskRequest(ToolRequest):
    title: Title
    description: str | None = None
    project_id: str | None = None
    epic_id: str | None = None
    status: TaskStatus = "todo"
    priority: Priority = "medium"
    due_date: IsoDate | None = None
    markdown_file: str | None = Field(None, max_length=500)
    github_repo: str | None = Field(None, pattern=GITHUB_REPO_PATTERN)
    tags: TagList | None = None


class UpdateTaskRequest(ToolRequest):
    id: str = Field(min_length=1)
    title: Title | None = None
    description: str | None = None
    project_id: str | None = None
    epic_id: str | None = None
    status: TaskStatus | None = None
    priority: Priority | None = None
    due_date: IsoDate | None = None
    markdown_file: str | None = Field(None, max_length=500)
    github_repo: str | None = Field(None, pattern=GITHUB_REPO_PATTERN)
    tags: TagList | None = None


class DeleteTaskRequest(ToolRequest):
    id: str = Field(min_length=1)


class SearchTasksRequest(ToolRequest):
    status: list[TaskStatus] | None = None
    project_id: str | None = None
    priority: list[Priority] | None = None
    tags: TagList | None = None
    due_before: IsoDate | None = None
    due_after: IsoDate | None = None
    search_text: str | None = None


class AddTaskCommentRequest(ToolRequest):
    task_id: str = Field(min_length=1)
    content: str = Field(min_length=1)


class LinkTasksRequest(ToolRequest):
    source_task_id: str = Field(min_length=1)
    target_task_id: str = Field(min_length=1)
    relationship_type: RelationshipType


class LogTimeRequest(ToolRequest):
    task_id: str = Field(min_length=1)
    start_time: IsoDate
    end_time: IsoDate | None = None
    duration_minutes: int | None = Field(None, ge=0)
    description: str | None = None

    @model_validator(mode="after")
    def check_time_order(self):
        if self.end_time is None:
            return self
        if datetime.fromisoformat(self.end_time) < datetime.fromisoformat(self.start_time):
            raise ValueError("end_time must not be before start_time")
        return self


# ── Projects ─────────────────────────────────────────────────────────────────


class CreateProjectRequest(ToolRequest):
    name: Name
    description: str | None = None
    status: ProjectStatus = "active"
    markdown_file: str | None = Field(None, max_length=500)
    github_repo: str | None = Field(None, pattern=GITHUB_REPO_PATTERN)
    working_directory: str | None = Field(None, max_length=500)


class UpdateProjectRequest(ToolRequest):
    id: str = Field(min_length=1)
    name: Name | None = None
    description: str | None = None
    status: ProjectStatus | None = None
    markdown_file: str | None = Field(None, max_length=500)
    github_repo: str | None = Field(None, pattern=GITHUB_REPO_PATTERN)
    working_directory: str | None = Field(None, max_length=500)


class DeleteProjectRequest(ToolRequest):
    id: str = Field(min_length=1)


# ── Epics ────────────────────────────────────────────────────────────────────


class CreateEpicRequest(ToolRequest):
    title: Title
    project_id: str | None = None
    description: str | None = None
    status: EpicStatus = "active"
    priority: Priority = "medium"
    due_date: IsoDate | None = None
    markdown_file: str | None = Field(None, max_length=500)
    github_repo: str | None = Field(None, pattern=GITHUB_REPO_PATTERN)


class UpdateEpicRequest(ToolRequest):
    id: str = Field(min_length=1)
    title: Title | None = None
    project_id: str | None = None
    description: str | None = None
    status: EpicStatus | None = None
    priority: Priority | None = None
    due_date: IsoDate | None = None
    markdown_file: str | None = Field(None, max_length=500)
    github_repo: str | None = Field(None, pattern=GITHUB_REPO_PATTERN)


class DeleteEpicRequest(ToolRequest):
    id: str = Field(min_length=1)


TOOL_REQUESTS: dict[str, type[ToolRequest]] = {
    "create_task": CreateTaskRequest,
    "update_task": UpdateTaskRequest,
    "delete_task": DeleteTaskRequest,
    "search_tasks": SearchTasksRequest,
    "add_task_comment": AddTaskCommentRequest,
    "link_tasks": LinkTasksRequest,
    "log_time": LogTimeRequest,
    "create_project": CreateProjectRequest,
    "update_project": UpdateProjectRequest,
    "delete_project": DeleteProjectRequest,
    "create_epic": CreateEpicRequest,
    "update_epic": UpdateEpicRequest,
    "delete_epic": DeleteEpicRequest,
}


def parse_request(tool: str, arguments: dict[str, Any]) -> ToolRequest:
    """Validate raw arguments for ``tool``. Raises ValidationError or KeyError."""
    model = TOOL_REQUESTS[tool]
    return model.model_validate(
        {k: v for k, v in arguments.items() if v is not None}
    )


def format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "request"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def unknown_fields(tool: str, arguments: dict[str, Any]) -> list[str]:
    """Argument names that ``tool`` does not accept, sorted."""
    return sorted(set(arguments) - set(TOOL_REQUESTS[tool].model_fields))
