"""Epic management operations."""

import sqlite3

from project_manager.db.engine import NotFoundError, new_id, transaction
from project_manager.db.models import Epic, parse_dt

UPDATABLE_FIELDS = {
    "title",
    "description",
    "status",
    "priority",
    "project_id",
    "due_date",
    "markdown_file",
    "github_repo",
}


def create_epic(
    db: sqlite3.Connection,
    title: str,
    project_id: str | None = None,
    description: str | None = None,
    status: str = "active",
    priority: str = "medium",
    due_date: str | None = None,
    markdown_file: str | None = None,
    github_repo: str | None = None,
) -> Epic:
    """Create a new epic, optionally under a project."""
    epic_id = new_id()
    with transaction(db):
        db.execute(
            """INSERT INTO epics
                   (id, title, description, status, priority, project_id,
                    due_date, markdown_file, github_repo)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (epic_id, title, description, status, priority, project_id,
             due_date, markdown_file, github_repo),
        )
    return get_epic(db, epic_id)


def get_epic(db: sqlite3.Connection, epic_id: str) -> Epic | None:
    row = db.execute("SELECT * FROM epics WHERE id = ?", (epic_id,)).fetchone()
    if not row:
        return None
    return _row_to_epic(row)


def list_epics(db: sqlite3.Connection, project_id: str | None = None) -> list[Epic]:
    """List epics, newest first, optionally for one project."""
    query = "SELECT * FROM epics"
    params: list = []
    if project_id:
        query += " WHERE project_id = ?"
        params.append(project_id)
    query += " ORDER BY created_at DESC"
    return [_row_to_epic(r) for r in db.execute(query, params).fetchall()]


def update_epic(db: sqlite3.Connection, epic_id: str, **kwargs) -> Epic:
    updates = {k: v for k, v in kwargs.items() if k in UPDATABLE_FIELDS and v is not None}

    with transaction(db):
        if updates:
            set_clause = ", ".join(f"{k} = ?" for k in updates)
            cur = db.execute(
                f"UPDATE epics SET {set_clause} WHERE id = ?",
                [*updates.values(), epic_id],
            )
            found = cur.rowcount > 0
        else:
            found = get_epic(db, epic_id) is not None
        if not found:
            raise NotFoundError(f"Epic not found: {epic_id}")
    return get_epic(db, epic_id)


def delete_epic(db: sqlite3.Connection, epic_id: str):
    """Delete an epic. Its tasks survive with their epic reference cleared."""
    with transaction(db):
        cur = db.execute("DELETE FROM epics WHERE id = ?", (epic_id,))
        if cur.rowcount == 0:
            raise NotFoundError(f"Epic not found: {epic_id}")


def _row_to_epic(row: sqlite3.Row) -> Epic:
    return Epic(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        status=row["status"],
        priority=row["priority"],
        project_id=row["project_id"],
        due_date=row["due_date"],
        markdown_file=row["markdown_file"],
        github_repo=row["github_repo"],
        created_at=parse_dt(row["created_at"]),
        updated_at=parse_dt(row["updated_at"]),
    )
