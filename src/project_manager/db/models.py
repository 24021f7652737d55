"""Data models for the project manager store."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

ProjectStatus = Literal["active", "completed", "archived"]
EpicStatus = Literal["active", "completed", "cancelled"]
TaskStatus = Literal["todo", "in-progress", "done", "blocked", "cancelled"]
Priority = Literal["low", "medium", "high", "urgent"]
RelationshipType = Literal["depends_on", "blocks", "subtask", "related", "duplicate"]


@dataclass
class Project:
    id: str
    name: str
    description: str | None = None
    status: str = "active"
    markdown_file: str | None = None
    github_repo: str | None = None
    working_directory: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Epic:
    id: str
    title: str
    description: str | None = None
    status: str = "active"
    priority: str = "medium"
    project_id: str | None = None
    due_date: str | None = None
    markdown_file: str | None = None
    github_repo: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Task:
    id: str
    title: str
    description: str | None = None
    status: str = "todo"
    priority: str = "medium"
    project_id: str | None = None
    epic_id: str | None = None
    due_date: str | None = None
    markdown_file: str | None = None
    github_repo: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    tags: list[str] = field(default_factory=list)


@dataclass
class Tag:
    id: str
    name: str
    color: str | None = None
    created_at: datetime | None = None


@dataclass
class TaskRelationship:
    id: str
    source_task_id: str
    target_task_id: str
    relationship_type: str
    created_at: datetime | None = None


@dataclass
class TaskComment:
    id: str
    task_id: str
    content: str
    created_at: datetime | None = None


@dataclass
class TimeEntry:
    id: str
    task_id: str
    start_time: str
    description: str | None = None
    end_time: str | None = None
    duration_minutes: int | None = None
    created_at: datetime | None = None


def parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
