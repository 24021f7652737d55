"""Project management operations."""

import sqlite3

from project_manager.db.engine import NotFoundError, new_id, transaction
from project_manager.db.models import Project, parse_dt

UPDATABLE_FIELDS = {
    "name",
    "description",
    "status",
    "markdown_file",
    "github_repo",
    "working_directory",
}


def create_project(
    db: sqlite3.Connection,
    name: str,
    description: str | None = None,
    status: str = "active",
    markdown_file: str | None = None,
    github_repo: str | None = None,
    working_directory: str | None = None,
) -> Project:
    """Create a new project. Project names are unique."""
    project_id = new_id()
    with transaction(db):
        db.execute(
            """INSERT INTO projects
                   (id, name, description, status, markdown_file, github_repo, working_directory)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (project_id, name, description, status, markdown_file, github_repo, working_directory),
        )
    return get_project(db, project_id)


def get_project(db: sqlite3.Connection, project_id: str) -> Project | None:
    """Get a project by ID."""
    row = db.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    if not row:
        return None
    return _row_to_project(row)


def list_projects(db: sqlite3.Connection) -> list[Project]:
    """List all projects, newest first."""
    rows = db.execute("SELECT * FROM projects ORDER BY created_at DESC").fetchall()
    return [_row_to_project(r) for r in rows]


def update_project(
    db: sqlite3.Connection,
    project_id: str,
    **kwargs,
) -> Project:
    """Update the given project fields. ``None`` values are left untouched."""
    updates = {k: v for k, v in kwargs.items() if k in UPDATABLE_FIELDS and v is not None}

    with transaction(db):
        if updates:
            set_clause = ", ".join(f"{k} = ?" for k in updates)
            cur = db.execute(
                f"UPDATE projects SET {set_clause} WHERE id = ?",
                [*updates.values(), project_id],
            )
            found = cur.rowcount > 0
        else:
            found = get_project(db, project_id) is not None
        if not found:
            raise NotFoundError(f"Project not found: {project_id}")
    return get_project(db, project_id)


def delete_project(db: sqlite3.Connection, project_id: str):
    """Delete a project together with its tasks and epics."""
    with transaction(db):
        cur = db.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        if cur.rowcount == 0:
            raise NotFoundError(f"Project not found: {project_id}")


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        status=row["status"],
        markdown_file=row["markdown_file"],
        github_repo=row["github_repo"],
        working_directory=row["working_directory"],
        created_at=parse_dt(row["created_at"]),
        updated_at=parse_dt(row["updated_at"]),
    )
