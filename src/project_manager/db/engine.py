"""SQLite entity store: connection management and schema initialization."""

import hashlib
import hmac
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

NOW = "strftime('%Y-%m-%d %H:%M:%f', 'now')"

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS store_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'completed', 'archived')),
    markdown_file TEXT,
    github_repo TEXT,
    working_directory TEXT,
    created_at TEXT DEFAULT ({NOW}),
    updated_at TEXT DEFAULT ({NOW})
);

CREATE TABLE IF NOT EXISTS epics (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'completed', 'cancelled')),
    priority TEXT DEFAULT 'medium' CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
    project_id TEXT REFERENCES projects(id) ON DELETE CASCADE,
    due_date TEXT,
    markdown_file TEXT,
    github_repo TEXT,
    created_at TEXT DEFAULT ({NOW}),
    updated_at TEXT DEFAULT ({NOW})
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    status TEXT NOT NULL DEFAULT 'todo' CHECK (status IN ('todo', 'in-progress', 'done', 'blocked', 'cancelled')),
    priority TEXT DEFAULT 'medium' CHECK (priority IN ('low', 'medium', 'high', 'urgent')),
    project_id TEXT REFERENCES projects(id) ON DELETE CASCADE,
    epic_id TEXT REFERENCES epics(id) ON DELETE SET NULL,
    due_date TEXT,
    markdown_file TEXT,
    github_repo TEXT,
    created_at TEXT DEFAULT ({NOW}),
    updated_at TEXT DEFAULT ({NOW})
);

CREATE TABLE IF NOT EXISTS tags (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    color TEXT,
    created_at TEXT DEFAULT ({NOW})
);

CREATE TABLE IF NOT EXISTS task_tags (
    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    PRIMARY KEY (task_id, tag_id)
);

CREATE TABLE IF NOT EXISTS task_relationships (
    id TEXT PRIMARY KEY,
    source_task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    target_task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    relationship_type TEXT NOT NULL
        CHECK (relationship_type IN ('depends_on', 'blocks', 'subtask', 'related', 'duplicate')),
    created_at TEXT DEFAULT ({NOW}),
    CONSTRAINT no_self_reference CHECK (source_task_id != target_task_id),
    CONSTRAINT unique_relationship UNIQUE (source_task_id, target_task_id, relationship_type)
);

CREATE TABLE IF NOT EXISTS task_comments (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    created_at TEXT DEFAULT ({NOW})
);

CREATE TABLE IF NOT EXISTS time_entries (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    description TEXT,
    start_time TEXT NOT NULL,
    end_time TEXT,
    duration_minutes INTEGER,
    created_at TEXT DEFAULT ({NOW})
);

CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id);
CREATE INDEX IF NOT EXISTS idx_tasks_epic ON tasks(epic_id);
CREATE INDEX IF NOT EXISTS idx_tasks_due_date ON tasks(due_date);
CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at);
CREATE INDEX IF NOT EXISTS idx_epics_project ON epics(project_id);
CREATE INDEX IF NOT EXISTS idx_comments_task ON task_comments(task_id);
CREATE INDEX IF NOT EXISTS idx_time_entries_task ON time_entries(task_id);
"""

TRIGGERS = "\n".join(
    f"""
CREATE TRIGGER IF NOT EXISTS {table}_touch_updated_at
AFTER UPDATE ON {table} FOR EACH ROW WHEN NEW.updated_at IS OLD.updated_at
BEGIN
    UPDATE {table} SET updated_at = {NOW} WHERE id = NEW.id;
END;
"""
    for table in ("projects", "epics", "tasks")
)

VIEWS = """
CREATE VIEW IF NOT EXISTS task_summary AS
SELECT
    t.id,
    t.title,
    t.description,
    t.status,
    t.priority,
    t.due_date,
    t.created_at,
    t.updated_at,
    t.markdown_file,
    t.github_repo,
    t.epic_id,
    e.title AS epic_title,
    e.status AS epic_status,
    p.name AS project_name,
    t.project_id,
    (SELECT json_group_array(name) FROM (
        SELECT g.name FROM task_tags tt JOIN tags g ON g.id = tt.tag_id
        WHERE tt.task_id = t.id ORDER BY g.name
    )) AS tags,
    (SELECT COUNT(*) FROM task_relationships r
        WHERE r.source_task_id = t.id AND r.relationship_type = 'depends_on') AS dependency_count,
    (SELECT COUNT(*) FROM time_entries te WHERE te.task_id = t.id) AS time_entry_count,
    (SELECT COALESCE(SUM(te.duration_minutes), 0) FROM time_entries te
        WHERE te.task_id = t.id) AS total_time_minutes
FROM tasks t
LEFT JOIN projects p ON p.id = t.project_id
LEFT JOIN epics e ON e.id = t.epic_id;

CREATE VIEW IF NOT EXISTS project_summary AS
SELECT
    p.id,
    p.name,
    p.description,
    p.status,
    p.created_at,
    p.updated_at,
    p.markdown_file,
    p.github_repo,
    p.working_directory,
    (SELECT COUNT(*) FROM tasks t WHERE t.project_id = p.id) AS total_tasks,
    (SELECT COUNT(*) FROM tasks t WHERE t.project_id = p.id AND t.status = 'done') AS completed_tasks,
    (SELECT COUNT(*) FROM tasks t WHERE t.project_id = p.id AND t.status = 'todo') AS pending_tasks,
    (SELECT COUNT(*) FROM tasks t WHERE t.project_id = p.id AND t.status = 'in-progress') AS active_tasks,
    (SELECT COALESCE(SUM(te.duration_minutes), 0) FROM time_entries te
        JOIN tasks t ON t.id = te.task_id WHERE t.project_id = p.id) AS total_time_minutes
FROM projects p;

CREATE VIEW IF NOT EXISTS epic_summary AS
SELECT
    e.id,
    e.title,
    e.description,
    e.status,
    e.priority,
    e.due_date,
    e.created_at,
    e.updated_at,
    e.markdown_file,
    e.github_repo,
    p.name AS project_name,
    e.project_id,
    c.total_tasks,
    c.completed_tasks,
    c.pending_tasks,
    c.active_tasks,
    c.blocked_tasks,
    (SELECT COALESCE(SUM(te.duration_minutes), 0) FROM time_entries te
        JOIN tasks t ON t.id = te.task_id WHERE t.epic_id = e.id) AS total_time_minutes,
    CASE
        WHEN c.total_tasks = 0 THEN 0
        ELSE ROUND(c.completed_tasks * 100.0 / c.total_tasks, 2)
    END AS completion_percentage
FROM epics e
LEFT JOIN projects p ON p.id = e.project_id
JOIN (
    SELECT
        e2.id AS epic_id,
        COUNT(t.id) AS total_tasks,
        COUNT(CASE WHEN t.status = 'done' THEN 1 END) AS completed_tasks,
        COUNT(CASE WHEN t.status = 'todo' THEN 1 END) AS pending_tasks,
        COUNT(CASE WHEN t.status = 'in-progress' THEN 1 END) AS active_tasks,
        COUNT(CASE WHEN t.status = 'blocked' THEN 1 END) AS blocked_tasks
    FROM epics e2
    LEFT JOIN tasks t ON t.epic_id = e2.id
    GROUP BY e2.id
) c ON c.epic_id = e.id;
"""


class StoreError(Exception):
    """Raised when a store operation fails."""


class NotFoundError(StoreError):
    """Raised when an update or delete targets an id that does not exist."""


def new_id() -> str:
    return str(uuid.uuid4())


def resolve_database_path(url: str) -> str:
    """Map a store URL to a sqlite3 database path.

    Accepts ``sqlite:///relative.db``, ``sqlite:////absolute.db``,
    ``sqlite:///:memory:`` or a bare filesystem path.
    """
    if url.startswith("sqlite:///"):
        path = url[len("sqlite:///"):]
        if path == ":memory:":
            return path
        return str(Path(path).expanduser())
    if "://" in url:
        scheme = url.split("://", 1)[0]
        raise StoreError(f"Unsupported store URL scheme: {scheme}")
    return str(Path(url).expanduser())


def _check_access_key(conn: sqlite3.Connection, access_key: str):
    """Bind the store to an access key on first open, verify it afterwards."""
    digest = hashlib.sha256(access_key.encode("utf-8")).hexdigest()
    row = conn.execute(
        "SELECT value FROM store_meta WHERE key = 'access_key_sha256'"
    ).fetchone()
    if row is None:
        conn.execute(
            "INSERT INTO store_meta (key, value) VALUES ('access_key_sha256', ?)",
            (digest,),
        )
        conn.commit()
        return
    if not hmac.compare_digest(row["value"], digest):
        raise StoreError("Invalid access key for store")


def init_db(url: str, access_key: str) -> sqlite3.Connection:
    """Open the store, creating the schema if needed."""
    path = resolve_database_path(url)
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    try:
        conn = sqlite3.connect(path, check_same_thread=False)
    except sqlite3.Error as e:
        raise StoreError(f"Could not open store at {path}: {e}") from e

    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.executescript(SCHEMA)
        conn.executescript(TRIGGERS)
        conn.executescript(VIEWS)
        conn.commit()
        _check_access_key(conn, access_key)
    except sqlite3.Error as e:
        conn.close()
        raise StoreError(f"Could not initialize store at {path}: {e}") from e
    except StoreError:
        conn.close()
        raise

    logger.info("Opened store at %s", path)
    return conn


@contextmanager
def get_db(url: str, access_key: str):
    """Context manager for store connections."""
    conn = init_db(url, access_key)
    try:
        yield conn
    finally:
        conn.close()
        logger.info("Closed store")


@contextmanager
def transaction(db: sqlite3.Connection):
    """Run the enclosed statements as one unit: commit on success, roll back on error.

    Native sqlite3 errors leave as StoreError carrying the store's message.
    """
    try:
        yield db
        db.commit()
    except sqlite3.Error as e:
        db.rollback()
        raise StoreError(str(e)) from e
    except BaseException:
        db.rollback()
        raise
