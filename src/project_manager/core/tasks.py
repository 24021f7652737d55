"""Task management operations."""

import sqlite3
from datetime import datetime

from project_manager.core import summaries as summaries_mod
from project_manager.core import tags as tags_mod
from project_manager.db.engine import NotFoundError, StoreError, new_id, transaction
from project_manager.db.models import (
    Task,
    TaskComment,
    TaskRelationship,
    TimeEntry,
    parse_dt,
)

UPDATABLE_FIELDS = {
    "title",
    "description",
    "status",
    "priority",
    "project_id",
    "epic_id",
    "due_date",
    "markdown_file",
    "github_repo",
}


def create_task(
    db: sqlite3.Connection,
    title: str,
    description: str | None = None,
    project_id: str | None = None,
    epic_id: str | None = None,
    status: str = "todo",
    priority: str = "medium",
    due_date: str | None = None,
    markdown_file: str | None = None,
    github_repo: str | None = None,
    tags: list[str] | None = None,
) -> Task:
    """Create a task and link its tags in a single transaction."""
    task_id = new_id()
    with transaction(db):
        db.execute(
            """INSERT INTO tasks
                   (id, title, description, status, priority, project_id, epic_id,
                    due_date, markdown_file, github_repo)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (task_id, title, description, status, priority, project_id, epic_id,
             due_date, markdown_file, github_repo),
        )
        if tags:
            tags_mod.add_tags_to_task(db, task_id, tags)
    return get_task(db, task_id)


def get_task(db: sqlite3.Connection, task_id: str) -> Task | None:
    """Get a task by ID with its tag names."""
    row = db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
    if not row:
        return None
    task = _row_to_task(row)
    task.tags = tags_mod.get_task_tags(db, task_id)
    return task


def list_tasks(
    db: sqlite3.Connection,
    project_id: str | None = None,
    status: str | None = None,
) -> list[Task]:
    """List tasks newest first, with optional project and status filters."""
    query = "SELECT * FROM tasks WHERE 1 = 1"
    params: list = []

    if project_id:
        query += " AND project_id = ?"
        params.append(project_id)

    if status:
        query += " AND status = ?"
        params.append(status)

    query += " ORDER BY created_at DESC"
    tasks = []
    for row in db.execute(query, params).fetchall():
        task = _row_to_task(row)
        task.tags = tags_mod.get_task_tags(db, task.id)
        tasks.append(task)
    return tasks


def update_task(
    db: sqlite3.Connection,
    task_id: str,
    tags: list[str] | None = None,
    **kwargs,
) -> Task:
    """Apply a partial update. A non-None ``tags`` replaces the whole tag set."""
    updates = {k: v for k, v in kwargs.items() if k in UPDATABLE_FIELDS and v is not None}

    with transaction(db):
        if updates:
            set_clause = ", ".join(f"{k} = ?" for k in updates)
            cur = db.execute(
                f"UPDATE tasks SET {set_clause} WHERE id = ?",
                [*updates.values(), task_id],
            )
            found = cur.rowcount > 0
        else:
            found = db.execute(
                "SELECT 1 FROM tasks WHERE id = ?", (task_id,)
            ).fetchone() is not None
        if not found:
            raise NotFoundError(f"Task not found: {task_id}")

        if tags is not None:
            tags_mod.replace_task_tags(db, task_id, tags)
    return get_task(db, task_id)


def delete_task(db: sqlite3.Connection, task_id: str):
    """Delete a task. Tag links, relationships, comments and time entries go with it."""
    with transaction(db):
        cur = db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
        if cur.rowcount == 0:
            raise NotFoundError(f"Task not found: {task_id}")


def search_tasks(
    db: sqlite3.Connection,
    status: list[str] | None = None,
    project_id: str | None = None,
    priority: list[str] | None = None,
    tags: list[str] | None = None,
    due_before: str | None = None,
    due_after: str | None = None,
    search_text: str | None = None,
) -> list[dict]:
    """Search the task summary.

    List filters match any of their values, and separate filters must all
    match. Date bounds are inclusive and expect the canonical
    ``YYYY-MM-DD`` or ``YYYY-MM-DD HH:MM:SS`` (UTC) forms the request models
    produce. ``search_text`` is a case-insensitive substring match on title
    or description.
    """
    clauses = []
    params: list = []

    if status:
        clauses.append(f"s.status IN ({_placeholders(status)})")
        params.extend(status)

    if project_id:
        clauses.append("s.project_id = ?")
        params.append(project_id)

    if priority:
        clauses.append(f"s.priority IN ({_placeholders(priority)})")
        params.extend(priority)

    if tags:
        clauses.append(
            f"""EXISTS (SELECT 1 FROM task_tags tt JOIN tags g ON g.id = tt.tag_id
                       WHERE tt.task_id = s.id AND g.name IN ({_placeholders(tags)}))"""
        )
        params.extend(tags)

    if due_before:
        # A date-only bound covers the whole of that day.
        if len(due_before) == 10:
            clauses.append("substr(s.due_date, 1, 10) <= ?")
        else:
            clauses.append("s.due_date <= ?")
        params.append(due_before)

    if due_after:
        clauses.append("s.due_date >= ?")
        params.append(due_after)

    if search_text:
        pattern = _like_pattern(search_text)
        clauses.append("(s.title LIKE ? ESCAPE '\\' OR s.description LIKE ? ESCAPE '\\')")
        params.extend([pattern, pattern])

    query = "SELECT * FROM task_summary s"
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY s.created_at DESC"

    try:
        rows = db.execute(query, params).fetchall()
    except sqlite3.Error as e:
        raise StoreError(f"Search failed: {e}") from e
    return [summaries_mod.row_to_dict(r) for r in rows]


# ── Comments ─────────────────────────────────────────────────────────────────


def add_task_comment(db: sqlite3.Connection, task_id: str, content: str) -> TaskComment:
    comment_id = new_id()
    with transaction(db):
        db.execute(
            "INSERT INTO task_comments (id, task_id, content) VALUES (?, ?, ?)",
            (comment_id, task_id, content),
        )
    row = db.execute("SELECT * FROM task_comments WHERE id = ?", (comment_id,)).fetchone()
    return _row_to_comment(row)


def list_task_comments(db: sqlite3.Connection, task_id: str) -> list[TaskComment]:
    rows = db.execute(
        "SELECT * FROM task_comments WHERE task_id = ? ORDER BY created_at",
        (task_id,),
    ).fetchall()
    return [_row_to_comment(r) for r in rows]


# ── Relationships ────────────────────────────────────────────────────────────


def link_tasks(
    db: sqlite3.Connection,
    source_task_id: str,
    target_task_id: str,
    relationship_type: str,
) -> TaskRelationship:
    """Relate two tasks. Self links and duplicate links are rejected by the store."""
    rel_id = new_id()
    with transaction(db):
        db.execute(
            """INSERT INTO task_relationships
                   (id, source_task_id, target_task_id, relationship_type)
               VALUES (?, ?, ?, ?)""",
            (rel_id, source_task_id, target_task_id, relationship_type),
        )
    row = db.execute("SELECT * FROM task_relationships WHERE id = ?", (rel_id,)).fetchone()
    return _row_to_relationship(row)


def list_relationships(db: sqlite3.Connection, task_id: str) -> list[TaskRelationship]:
    """Relationships where the task is either source or target."""
    rows = db.execute(
        """SELECT * FROM task_relationships
           WHERE source_task_id = ? OR target_task_id = ?
           ORDER BY created_at""",
        (task_id, task_id),
    ).fetchall()
    return [_row_to_relationship(r) for r in rows]


# ── Time tracking ────────────────────────────────────────────────────────────


def log_time(
    db: sqlite3.Connection,
    task_id: str,
    start_time: str,
    end_time: str | None = None,
    duration_minutes: int | None = None,
    description: str | None = None,
) -> TimeEntry:
    """Record time spent on a task. Duration is derived from the times if omitted."""
    if duration_minutes is None and end_time:
        duration_minutes = minutes_between(start_time, end_time)

    entry_id = new_id()
    with transaction(db):
        db.execute(
            """INSERT INTO time_entries
                   (id, task_id, description, start_time, end_time, duration_minutes)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (entry_id, task_id, description, start_time, end_time, duration_minutes),
        )
    row = db.execute("SELECT * FROM time_entries WHERE id = ?", (entry_id,)).fetchone()
    return _row_to_time_entry(row)


def list_time_entries(db: sqlite3.Connection, task_id: str) -> list[TimeEntry]:
    rows = db.execute(
        "SELECT * FROM time_entries WHERE task_id = ? ORDER BY start_time",
        (task_id,),
    ).fetchall()
    return [_row_to_time_entry(r) for r in rows]


def minutes_between(start_time: str, end_time: str) -> int:
    delta = datetime.fromisoformat(end_time) - datetime.fromisoformat(start_time)
    return int(delta.total_seconds() // 60)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _placeholders(values: list) -> str:
    return ", ".join("?" for _ in values)


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        status=row["status"],
        priority=row["priority"],
        project_id=row["project_id"],
        epic_id=row["epic_id"],
        due_date=row["due_date"],
        markdown_file=row["markdown_file"],
        github_repo=row["github_repo"],
        created_at=parse_dt(row["created_at"]),
        updated_at=parse_dt(row["updated_at"]),
    )


def _row_to_comment(row: sqlite3.Row) -> TaskComment:
    return TaskComment(
        id=row["id"],
        task_id=row["task_id"],
        content=row["content"],
        created_at=parse_dt(row["created_at"]),
    )


def _row_to_relationship(row: sqlite3.Row) -> TaskRelationship:
    return TaskRelationship(
        id=row["id"],
        source_task_id=row["source_task_id"],
        target_task_id=row["target_task_id"],
        relationship_type=row["relationship_type"],
        created_at=parse_dt(row["created_at"]),
    )


def _row_to_time_entry(row: sqlite3.Row) -> TimeEntry:
    return TimeEntry(
        id=row["id"],
        task_id=row["task_id"],
        description=row["description"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        duration_minutes=row["duration_minutes"],
        created_at=parse_dt(row["created_at"]),
    )
