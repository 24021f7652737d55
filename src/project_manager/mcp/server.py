"""MCP server exposing the project manager store as tools and resources."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import Any

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import ValidationError

from project_manager.config import Config, get_config
from project_manager.core import epics as epics_mod
from project_manager.core import projects as projects_mod
from project_manager.core import summaries as summaries_mod
from project_manager.core import tasks as tasks_mod
from project_manager.core.requests import (
    TOOL_REQUESTS,
    ToolRequest,
    format_validation_error,
    parse_request,
    unknown_fields,
)
from project_manager.db.engine import StoreError, init_db
from project_manager.db.models import (
    EpicStatus,
    Priority,
    ProjectStatus,
    RelationshipType,
    TaskStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    db: sqlite3.Connection
    config: Config


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Open the store on startup, close it on shutdown."""
    config = get_config()
    db = init_db(config.database_url, config.access_key)
    logger.info("MCP server %s ready", server.name)
    try:
        yield AppContext(db=db, config=config)
    finally:
        db.close()


class ProjectManagerMCP(FastMCP):
    """FastMCP that refuses arguments a tool does not declare."""

    async def call_tool(self, name: str, arguments: dict[str, Any]):
        if name in TOOL_REQUESTS:
            unknown = unknown_fields(name, arguments or {})
            if unknown:
                logger.warning("Rejected %s call with unknown fields: %s", name, unknown)
                raise ToolError(
                    f"Invalid arguments for {name}: unexpected fields: {', '.join(unknown)}"
                )
        return await super().call_tool(name, arguments)


mcp = ProjectManagerMCP("project-manager", lifespan=app_lifespan)


def _db(ctx: Context) -> sqlite3.Connection:
    """Extract the store connection from MCP Context."""
    return ctx.request_context.lifespan_context.db


def _validate(tool: str, **arguments) -> ToolRequest:
    try:
        return parse_request(tool, arguments)
    except ValidationError as e:
        raise ToolError(f"Invalid arguments for {tool}: {format_validation_error(e)}") from e


@contextmanager
def _store_call(action: str) -> Iterator[None]:
    try:
        yield
    except StoreError as e:
        logger.warning("Failed to %s: %s", action, e)
        raise ToolError(f"Failed to {action}: {e}") from e


# ── Resources ─────────────────────────────────────────────────────────────────


def _snapshot(source: str) -> str:
    app: AppContext = mcp.get_context().request_context.lifespan_context
    try:
        rows = summaries_mod.fetch_rows(app.db, source)
    except StoreError as e:
        logger.warning("Reading %s failed: %s", source, e)
        raise
    return json.dumps(rows, indent=2)


@mcp.resource(
    "project://tasks",
    name="tasks",
    description="Complete list of all tasks across projects",
    mime_type="application/json",
)
def tasks_resource() -> str:
    return _snapshot("tasks")


@mcp.resource(
    "project://projects",
    name="projects",
    description="Complete list of all projects",
    mime_type="application/json",
)
def projects_resource() -> str:
    return _snapshot("projects")


@mcp.resource(
    "project://task-summary",
    name="task-summary",
    description="Tasks with project and epic names, tags, dependency counts and tracked time",
    mime_type="application/json",
)
def task_summary_resource() -> str:
    return _snapshot("task_summary")


@mcp.resource(
    "project://project-summary",
    name="project-summary",
    description="Projects with task counts and tracked time",
    mime_type="application/json",
)
def project_summary_resource() -> str:
    return _snapshot("project_summary")


@mcp.resource(
    "project://epic-summary",
    name="epic-summary",
    description="Epics with task counts, tracked time and completion percentage",
    mime_type="application/json",
)
def epic_summary_resource() -> str:
    return _snapshot("epic_summary")


# ── Task Tools ────────────────────────────────────────────────────────────────


@mcp.tool()
def create_task(
    ctx: Context,
    title: str,
    description: str | None = None,
    project_id: str | None = None,
    epic_id: str | None = None,
    status: TaskStatus = "todo",
    priority: Priority = "medium",
    due_date: str | None = None,
    markdown_file: str | None = None,
    github_repo: str | None = None,
    tags: list[str] | None = None,
) -> str:
    """Create a new task. Unknown tag names are created. due_date is ISO-8601; github_repo is owner/repo."""
    req = _validate(
        "create_task",
        title=title,
        description=description,
        project_id=project_id,
        epic_id=epic_id,
        status=status,
        priority=priority,
        due_date=due_date,
        markdown_file=markdown_file,
        github_repo=github_repo,
        tags=tags,
    )
    with _store_call("create task"):
        task = tasks_mod.create_task(_db(ctx), **req.provided())
    return f"Created task: {task.title} (ID: {task.id})"


@mcp.tool()
def update_task(
    ctx: Context,
    id: str,
    title: str | None = None,
    description: str | None = None,
    project_id: str | None = None,
    epic_id: str | None = None,
    status: TaskStatus | None = None,
    priority: Priority | None = None,
    due_date: str | None = None,
    markdown_file: str | None = None,
    github_repo: str | None = None,
    tags: list[str] | None = None,
) -> str:
    """Update an existing task. Passing tags replaces the task's whole tag set; an empty list clears it."""
    req = _validate(
        "update_task",
        id=id,
        title=title,
        description=description,
        project_id=project_id,
        epic_id=epic_id,
        status=status,
        priority=priority,
        due_date=due_date,
        markdown_file=markdown_file,
        github_repo=github_repo,
        tags=tags,
    )
    with _store_call("update task"):
        task = tasks_mod.update_task(_db(ctx), req.id, **req.provided("id"))
    return f"Updated task: {task.title}"


@mcp.tool()
def delete_task(ctx: Context, id: str) -> str:
    """Delete a task along with its tags, relationships, comments and time entries."""
    req = _validate("delete_task", id=id)
    with _store_call("delete task"):
        tasks_mod.delete_task(_db(ctx), req.id)
    return f"Deleted task with ID: {req.id}"


@mcp.tool()
def search_tasks(
    ctx: Context,
    status: list[TaskStatus] | None = None,
    project_id: str | None = None,
    priority: list[Priority] | None = None,
    tags: list[str] | None = None,
    due_before: str | None = None,
    due_after: str | None = None,
    search_text: str | None = None,
) -> str:
    """Search tasks. List filters match any value; filters combine with AND.
    Date bounds are inclusive; search_text matches title or description, ignoring case."""
    req = _validate(
        "search_tasks",
        status=status,
        project_id=project_id,
        priority=priority,
        tags=tags,
        due_before=due_before,
        due_after=due_after,
        search_text=search_text,
    )
    with _store_call("search tasks"):
        rows = tasks_mod.search_tasks(_db(ctx), **req.provided())
    return f"Found {len(rows)} tasks:\n" + json.dumps(rows, indent=2)


@mcp.tool()
def add_task_comment(ctx: Context, task_id: str, content: str) -> str:
    """Add a comment to a task."""
    req = _validate("add_task_comment", task_id=task_id, content=content)
    with _store_call("add comment"):
        tasks_mod.add_task_comment(_db(ctx), req.task_id, req.content)
    return f"Added comment to task {req.task_id}"


@mcp.tool()
def link_tasks(
    ctx: Context,
    source_task_id: str,
    target_task_id: str,
    relationship_type: RelationshipType,
) -> str:
    """Create a relationship between two different tasks."""
    req = _validate(
        "link_tasks",
        source_task_id=source_task_id,
        target_task_id=target_task_id,
        relationship_type=relationship_type,
    )
    with _store_call("link tasks"):
        tasks_mod.link_tasks(
            _db(ctx), req.source_task_id, req.target_task_id, req.relationship_type
        )
    return f"Created {req.relationship_type} relationship between tasks"


@mcp.tool()
def log_time(
    ctx: Context,
    task_id: str,
    start_time: str,
    end_time: str | None = None,
    duration_minutes: int | None = None,
    description: str | None = None,
) -> str:
    """Record time spent on a task. Without duration_minutes, the duration is derived from start and end."""
    req = _validate(
        "log_time",
        task_id=task_id,
        start_time=start_time,
        end_time=end_time,
        duration_minutes=duration_minutes,
        description=description,
    )
    with _store_call("log time"):
        entry = tasks_mod.log_time(_db(ctx), **req.provided())
    if entry.duration_minutes is None:
        return f"Logged time entry on task {entry.task_id}"
    return f"Logged {entry.duration_minutes} minutes on task {entry.task_id}"


# ── Project Tools ─────────────────────────────────────────────────────────────


@mcp.tool()
def create_project(
    ctx: Context,
    name: str,
    description: str | None = None,
    status: ProjectStatus = "active",
    markdown_file: str | None = None,
    github_repo: str | None = None,
    working_directory: str | None = None,
) -> str:
    """Create a new project. Project names must be unique."""
    req = _validate(
        "create_project",
        name=name,
        description=description,
        status=status,
        markdown_file=markdown_file,
        github_repo=github_repo,
        working_directory=working_directory,
    )
    with _store_call("create project"):
        project = projects_mod.create_project(_db(ctx), **req.provided())
    return f"Created project: {project.name} (ID: {project.id})"


@mcp.tool()
def update_project(
    ctx: Context,
    id: str,
    name: str | None = None,
    description: str | None = None,
    status: ProjectStatus | None = None,
    markdown_file: str | None = None,
    github_repo: str | None = None,
    working_directory: str | None = None,
) -> str:
    """Update an existing project."""
    req = _validate(
        "update_project",
        id=id,
        name=name,
        description=description,
        status=status,
        markdown_file=markdown_file,
        github_repo=github_repo,
        working_directory=working_directory,
    )
    with _store_call("update project"):
        project = projects_mod.update_project(_db(ctx), req.id, **req.provided("id"))
    return f"Updated project: {project.name}"


@mcp.tool()
def delete_project(ctx: Context, id: str) -> str:
    """Delete a project together with all of its tasks and epics."""
    req = _validate("delete_project", id=id)
    with _store_call("delete project"):
        projects_mod.delete_project(_db(ctx), req.id)
    return f"Deleted project with ID: {req.id}"


# ── Epic Tools ────────────────────────────────────────────────────────────────


@mcp.tool()
def create_epic(
    ctx: Context,
    title: str,
    project_id: str | None = None,
    description: str | None = None,
    status: EpicStatus = "active",
    priority: Priority = "medium",
    due_date: str | None = None,
    markdown_file: str | None = None,
    github_repo: str | None = None,
) -> str:
    """Create an epic to group related tasks."""
    req = _validate(
        "create_epic",
        title=title,
        project_id=project_id,
        description=description,
        status=status,
        priority=priority,
        due_date=due_date,
        markdown_file=markdown_file,
        github_repo=github_repo,
    )
    with _store_call("create epic"):
        epic = epics_mod.create_epic(_db(ctx), **req.provided())
    return f"Created epic: {epic.title} (ID: {epic.id})"


@mcp.tool()
def update_epic(
    ctx: Context,
    id: str,
    title: str | None = None,
    project_id: str | None = None,
    description: str | None = None,
    status: EpicStatus | None = None,
    priority: Priority | None = None,
    due_date: str | None = None,
    markdown_file: str | None = None,
    github_repo: str | None = None,
) -> str:
    """Update an existing epic."""
    req = _validate(
        "update_epic",
        id=id,
        title=title,
        project_id=project_id,
        description=description,
        status=status,
        priority=priority,
        due_date=due_date,
        markdown_file=markdown_file,
        github_repo=github_repo,
    )
    with _store_call("update epic"):
        epic = epics_mod.update_epic(_db(ctx), req.id, **req.provided("id"))
    return f"Updated epic: {epic.title}"


@mcp.tool()
def delete_epic(ctx: Context, id: str) -> str:
    """Delete an epic. Its tasks are kept and detached from it."""
    req = _validate("delete_epic", id=id)
    with _store_call("delete epic"):
        epics_mod.delete_epic(_db(ctx), req.id)
    return f"Deleted epic with ID: {req.id}"
