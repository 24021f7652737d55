"""Read-only snapshots of tables and summary views."""

import json
import sqlite3

from project_manager.db.engine import StoreError

SOURCES = ("tasks", "projects", "task_summary", "project_summary", "epic_summary")

# Columns the views aggregate into JSON text.
JSON_COLUMNS = {"tags"}


def row_to_dict(row: sqlite3.Row) -> dict:
    d = dict(row)
    for col in JSON_COLUMNS & d.keys():
        d[col] = json.loads(d[col]) if d[col] else []
    return d


def fetch_rows(db: sqlite3.Connection, source: str) -> list[dict]:
    """Return every row of a table or view, newest first."""
    if source not in SOURCES:
        raise ValueError(f"Unknown source: {source}")
    try:
        rows = db.execute(f"SELECT * FROM {source} ORDER BY created_at DESC").fetchall()
    except sqlite3.Error as e:
        raise StoreError(f"Database error: {e}") from e
    return [row_to_dict(r) for r in rows]
