"""Tag resolution and task/tag linking.

None of these helpers commit: callers run them inside ``transaction()`` so a
task and its tag links are written together or not at all.
"""

import logging
import sqlite3

from project_manager.db.engine import new_id
from project_manager.db.models import Tag, parse_dt

logger = logging.getLogger(__name__)


def get_or_create_tag(db: sqlite3.Connection, name: str) -> str:
    """Return the id of the tag called ``name``, inserting it if absent."""
    row = db.execute("SELECT id FROM tags WHERE name = ?", (name,)).fetchone()
    if row:
        return row["id"]

    tag_id = new_id()
    db.execute("INSERT INTO tags (id, name) VALUES (?, ?)", (tag_id, name))
    logger.debug("Created tag %r (%s)", name, tag_id)
    return tag_id


def add_tags_to_task(db: sqlite3.Connection, task_id: str, names: list[str]):
    for name in dict.fromkeys(names):
        tag_id = get_or_create_tag(db, name)
        db.execute(
            "INSERT INTO task_tags (task_id, tag_id) VALUES (?, ?)",
            (task_id, tag_id),
        )


def replace_task_tags(db: sqlite3.Connection, task_id: str, names: list[str]):
    """Replace the full tag set of a task. An empty list clears it."""
    db.execute("DELETE FROM task_tags WHERE task_id = ?", (task_id,))
    if names:
        add_tags_to_task(db, task_id, names)


def get_task_tags(db: sqlite3.Connection, task_id: str) -> list[str]:
    rows = db.execute(
        """SELECT g.name FROM task_tags tt JOIN tags g ON g.id = tt.tag_id
           WHERE tt.task_id = ? ORDER BY g.name""",
        (task_id,),
    ).fetchall()
    return [r["name"] for r in rows]


def list_tags(db: sqlite3.Connection) -> list[Tag]:
    rows = db.execute("SELECT * FROM tags ORDER BY name").fetchall()
    return [
        Tag(
            id=r["id"],
            name=r["name"],
            color=r["color"],
            created_at=parse_dt(r["created_at"]),
        )
        for r in rows
    ]
