"""Tests for task management operations."""

import tempfile
from pathlib import Path

import pytest

from project_manager.core import projects as projects_mod
from project_manager.core import summaries as summaries_mod
from project_manager.core import tags as tags_mod
from project_manager.core import tasks as tasks_mod
from project_manager.core.requests import parse_request
from project_manager.db.engine import NotFoundError, StoreError, init_db


@pytest.fixture
def db():
    """Create a temporary store for testing."""
    with tempfile.TemporaryDirectory() as tmp:
        conn = init_db(str(Path(tmp) / "test.db"), "test-key")
        yield conn
        conn.close()


@pytest.fixture
def project(db):
    return projects_mod.create_project(db, "Test Project")


def _summary(db, task_id):
    return next(r for r in summaries_mod.fetch_rows(db, "task_summary") if r["id"] == task_id)


def _set_created(db, task_id, created_at):
    db.execute("UPDATE tasks SET created_at = ? WHERE id = ?", (created_at, task_id))
    db.commit()


class TestTaskCRUD:
    def test_create_task_defaults(self, db):
        task = tasks_mod.create_task(db, "Build login page")
        assert task.id
        assert task.title == "Build login page"
        assert task.status == "todo"
        assert task.priority == "medium"
        assert task.epic_id is None
        assert task.created_at is not None

    def test_create_task_in_project(self, db, project):
        task = tasks_mod.create_task(
            db, "Write docs", project_id=project.id, priority="high", due_date="2025-03-01"
        )
        assert task.project_id == project.id
        assert task.priority == "high"
        assert task.due_date == "2025-03-01"

    def test_create_task_unknown_project_fails(self, db):
        with pytest.raises(StoreError, match="FOREIGN KEY"):
            tasks_mod.create_task(db, "Orphan", project_id="no-such-project")
        assert tasks_mod.list_tasks(db) == []

    def test_invalid_status_rejected_by_store(self, db):
        with pytest.raises(StoreError, match="CHECK"):
            tasks_mod.create_task(db, "Bad", status="someday")

    def test_get_nonexistent_task(self, db):
        assert tasks_mod.get_task(db, "nonexistent") is None

    def test_list_tasks_filters(self, db, project):
        tasks_mod.create_task(db, "A", project_id=project.id)
        tasks_mod.create_task(db, "B", project_id=project.id, status="done")
        tasks_mod.create_task(db, "C")
        assert len(tasks_mod.list_tasks(db)) == 3
        assert len(tasks_mod.list_tasks(db, project_id=project.id)) == 2
        done = tasks_mod.list_tasks(db, status="done")
        assert [t.title for t in done] == ["B"]

    def test_update_task_partial(self, db):
        task = tasks_mod.create_task(db, "Draft", description="keep me")
        updated = tasks_mod.update_task(db, task.id, title="Final", status="in-progress")
        assert updated.title == "Final"
        assert updated.status == "in-progress"
        assert updated.description == "keep me"

    def test_update_refreshes_updated_at(self, db):
        task = tasks_mod.create_task(db, "Touch me")
        db.execute("UPDATE tasks SET updated_at = '2000-01-01 00:00:00.000' WHERE id = ?", (task.id,))
        db.commit()
        updated = tasks_mod.update_task(db, task.id, status="done")
        assert updated.updated_at.year > 2000

    def test_update_nonexistent_task(self, db):
        with pytest.raises(NotFoundError):
            tasks_mod.update_task(db, "nope", title="x")

    def test_update_nonexistent_task_tags_only(self, db):
        with pytest.raises(NotFoundError):
            tasks_mod.update_task(db, "nope", tags=["a"])

    def test_delete_task(self, db):
        task = tasks_mod.create_task(db, "Temp task")
        tasks_mod.delete_task(db, task.id)
        assert tasks_mod.get_task(db, task.id) is None

    def test_delete_nonexistent(self, db):
        with pytest.raises(NotFoundError, match="Task not found"):
            tasks_mod.delete_task(db, "nope")

    def test_delete_cascades(self, db):
        a = tasks_mod.create_task(db, "A", tags=["x"])
        b = tasks_mod.create_task(db, "B")
        tasks_mod.link_tasks(db, a.id, b.id, "depends_on")
        tasks_mod.link_tasks(db, b.id, a.id, "blocks")
        tasks_mod.add_task_comment(db, a.id, "note")
        tasks_mod.log_time(db, a.id, "2025-01-01T09:00:00", duration_minutes=15)

        tasks_mod.delete_task(db, a.id)

        for table, column in [
            ("task_tags", "task_id"),
            ("task_comments", "task_id"),
            ("time_entries", "task_id"),
        ]:
            count = db.execute(f"SELECT COUNT(*) FROM {table} WHERE {column} = ?", (a.id,)).fetchone()[0]
            assert count == 0, table
        assert tasks_mod.list_relationships(db, b.id) == []
        # tag rows survive their links
        assert [t.name for t in tags_mod.list_tags(db)] == ["x"]


class TestTags:
    def test_create_with_tags(self, db):
        task = tasks_mod.create_task(db, "Tagged", tags=["a", "b"])
        assert set(task.tags) == {"a", "b"}
        assert set(_summary(db, task.id)["tags"]) == {"a", "b"}

    def test_untagged_summary_has_empty_list(self, db):
        task = tasks_mod.create_task(db, "Plain")
        assert _summary(db, task.id)["tags"] == []

    def test_existing_tag_reused(self, db):
        tasks_mod.create_task(db, "One", tags=["shared"])
        tasks_mod.create_task(db, "Two", tags=["shared"])
        assert [t.name for t in tags_mod.list_tags(db)] == ["shared"]

    def test_duplicate_names_collapse(self, db):
        task = tasks_mod.create_task(db, "Dupes", tags=["a", "a", "b"])
        assert task.tags == ["a", "b"]

    def test_replace_tags(self, db):
        task = tasks_mod.create_task(db, "Retag", tags=["a", "b"])
        updated = tasks_mod.update_task(db, task.id, tags=["b", "c"])
        assert set(updated.tags) == {"b", "c"}
        assert set(_summary(db, task.id)["tags"]) == {"b", "c"}
        # "a" is unlinked but not deleted
        assert {t.name for t in tags_mod.list_tags(db)} == {"a", "b", "c"}

    def test_empty_list_clears_tags(self, db):
        task = tasks_mod.create_task(db, "Clear", tags=["a"])
        updated = tasks_mod.update_task(db, task.id, tags=[])
        assert updated.tags == []

    def test_omitted_tags_untouched(self, db):
        task = tasks_mod.create_task(db, "Keep", tags=["a"])
        updated = tasks_mod.update_task(db, task.id, title="Kept")
        assert updated.tags == ["a"]

    def test_get_or_create_tag(self, db):
        first = tags_mod.get_or_create_tag(db, "ops")
        second = tags_mod.get_or_create_tag(db, "ops")
        db.commit()
        assert first == second


class TestAtomicity:
    @pytest.fixture
    def rejecting_db(self, db):
        db.executescript(
            """CREATE TRIGGER reject_boom BEFORE INSERT ON tags WHEN NEW.name = 'boom'
               BEGIN SELECT RAISE(ABORT, 'tag rejected'); END;"""
        )
        return db

    def test_failed_tag_rolls_back_task(self, rejecting_db):
        db = rejecting_db
        with pytest.raises(StoreError, match="tag rejected"):
            tasks_mod.create_task(db, "Half done", tags=["ok", "boom"])
        assert tasks_mod.list_tasks(db) == []
        assert tags_mod.list_tags(db) == []

    def test_failed_replace_keeps_old_tags(self, rejecting_db):
        db = rejecting_db
        task = tasks_mod.create_task(db, "Stable", tags=["a"])
        with pytest.raises(StoreError):
            tasks_mod.update_task(db, task.id, title="Changed", tags=["boom"])
        current = tasks_mod.get_task(db, task.id)
        assert current.title == "Stable"
        assert current.tags == ["a"]


class TestSearch:
    @pytest.fixture
    def seeded(self, db, project):
        t1 = tasks_mod.create_task(
            db, "Ship release", status="done", priority="high",
            due_date="2024-12-15", project_id=project.id, tags=["release"],
        )
        t2 = tasks_mod.create_task(
            db, "Fix login bug", description="OAuth 100% broken", status="done",
            due_date="2025-02-01", tags=["bug"],
        )
        t3 = tasks_mod.create_task(
            db, "Plan roadmap", status="todo", priority="low", due_date="2025-01-01",
        )
        t4 = tasks_mod.create_task(db, "Unscheduled", status="blocked", tags=["bug", "release"])
        _set_created(db, t1.id, "2025-01-01 00:00:01.000")
        _set_created(db, t2.id, "2025-01-01 00:00:02.000")
        _set_created(db, t3.id, "2025-01-01 00:00:03.000")
        _set_created(db, t4.id, "2025-01-01 00:00:04.000")
        return t1, t2, t3, t4

    def test_no_filters_newest_first(self, db, seeded):
        t1, t2, t3, t4 = seeded
        rows = tasks_mod.search_tasks(db)
        assert [r["id"] for r in rows] == [t4.id, t3.id, t2.id, t1.id]

    def test_status_and_due_before(self, db, seeded):
        t1, _, _, _ = seeded
        rows = tasks_mod.search_tasks(db, status=["done"], due_before="2025-01-01")
        assert [r["id"] for r in rows] == [t1.id]

    def test_due_bounds_inclusive(self, db, seeded):
        _, _, t3, _ = seeded
        rows = tasks_mod.search_tasks(db, due_before="2025-01-01", due_after="2025-01-01")
        assert [r["id"] for r in rows] == [t3.id]

    def test_due_bounds_across_iso_forms(self, db):
        def create(**args):
            req = parse_request("create_task", args)
            return tasks_mod.create_task(db, **req.provided())

        def search(**args):
            req = parse_request("search_tasks", args)
            return {r["title"] for r in tasks_mod.search_tasks(db, **req.provided())}

        create(title="Late", due_date="2025-01-01 10:00")
        create(title="Offset", due_date="2025-01-01T23:00:00-05:00")
        create(title="Early", due_date="2025-01-01T08:00:00+00:00")

        assert search(due_before="2025-01-01T09:00:00") == {"Early"}
        assert search(due_before="2025-01-02T00:00:00+00:00") == {"Early", "Late"}
        assert search(due_after="2025-01-02") == {"Offset"}
        assert search(due_before="2025-01-01") == {"Early", "Late"}

    def test_status_is_any_of(self, db, seeded):
        rows = tasks_mod.search_tasks(db, status=["todo", "blocked"])
        assert {r["title"] for r in rows} == {"Plan roadmap", "Unscheduled"}

    def test_priority_and_project(self, db, seeded, project):
        rows = tasks_mod.search_tasks(db, priority=["high", "low"], project_id=project.id)
        assert [r["title"] for r in rows] == ["Ship release"]

    def test_tags_any_of(self, db, seeded):
        rows = tasks_mod.search_tasks(db, tags=["bug"])
        assert {r["title"] for r in rows} == {"Fix login bug", "Unscheduled"}

    def test_search_text_case_insensitive(self, db, seeded):
        rows = tasks_mod.search_tasks(db, search_text="LOGIN")
        assert [r["title"] for r in rows] == ["Fix login bug"]
        rows = tasks_mod.search_tasks(db, search_text="oauth")
        assert [r["title"] for r in rows] == ["Fix login bug"]

    def test_search_text_wildcards_are_literal(self, db, seeded):
        rows = tasks_mod.search_tasks(db, search_text="100%")
        assert [r["title"] for r in rows] == ["Fix login bug"]
        assert tasks_mod.search_tasks(db, search_text="_") == []

    def test_rows_carry_summary_columns(self, db, seeded, project):
        t1, _, _, _ = seeded
        row = tasks_mod.search_tasks(db, search_text="Ship")[0]
        assert row["id"] == t1.id
        assert row["project_name"] == project.name
        assert row["tags"] == ["release"]
        assert row["dependency_count"] == 0


class TestCommentsAndLinks:
    def test_add_comment(self, db):
        task = tasks_mod.create_task(db, "Discuss")
        comment = tasks_mod.add_task_comment(db, task.id, "Looks good")
        assert comment.task_id == task.id
        assert [c.content for c in tasks_mod.list_task_comments(db, task.id)] == ["Looks good"]

    def test_comment_on_missing_task(self, db):
        with pytest.raises(StoreError, match="FOREIGN KEY"):
            tasks_mod.add_task_comment(db, "missing", "hello")

    def test_link_tasks(self, db):
        a = tasks_mod.create_task(db, "A")
        b = tasks_mod.create_task(db, "B")
        rel = tasks_mod.link_tasks(db, a.id, b.id, "depends_on")
        assert rel.relationship_type == "depends_on"
        assert _summary(db, a.id)["dependency_count"] == 1
        assert _summary(db, b.id)["dependency_count"] == 0

    def test_self_link_rejected(self, db):
        a = tasks_mod.create_task(db, "A")
        with pytest.raises(StoreError, match="CHECK"):
            tasks_mod.link_tasks(db, a.id, a.id, "related")

    def test_duplicate_link_rejected(self, db):
        a = tasks_mod.create_task(db, "A")
        b = tasks_mod.create_task(db, "B")
        tasks_mod.link_tasks(db, a.id, b.id, "blocks")
        with pytest.raises(StoreError, match="UNIQUE"):
            tasks_mod.link_tasks(db, a.id, b.id, "blocks")
        # a different type between the same pair is allowed
        tasks_mod.link_tasks(db, a.id, b.id, "related")
        assert len(tasks_mod.list_relationships(db, a.id)) == 2


class TestTimeTracking:
    def test_duration_derived(self, db):
        task = tasks_mod.create_task(db, "Timed")
        entry = tasks_mod.log_time(db, task.id, "2025-01-01T09:00:00", "2025-01-01T10:30:00")
        assert entry.duration_minutes == 90

    def test_explicit_duration_wins(self, db):
        task = tasks_mod.create_task(db, "Timed")
        entry = tasks_mod.log_time(
            db, task.id, "2025-01-01T09:00:00", "2025-01-01T10:30:00", duration_minutes=60
        )
        assert entry.duration_minutes == 60

    def test_open_entry(self, db):
        task = tasks_mod.create_task(db, "Running")
        entry = tasks_mod.log_time(db, task.id, "2025-01-01T09:00:00")
        assert entry.duration_minutes is None
        assert entry.end_time is None

    def test_summary_totals_do_not_multiply(self, db):
        task = tasks_mod.create_task(db, "Busy", tags=["a", "b", "c"])
        other = tasks_mod.create_task(db, "Other")
        tasks_mod.link_tasks(db, task.id, other.id, "depends_on")
        tasks_mod.log_time(db, task.id, "2025-01-01T09:00:00", duration_minutes=30)
        tasks_mod.log_time(db, task.id, "2025-01-02T09:00:00", duration_minutes=45)
        row = _summary(db, task.id)
        assert row["time_entry_count"] == 2
        assert row["total_time_minutes"] == 75
        assert row["dependency_count"] == 1
        assert len(row["tags"]) == 3

    def test_minutes_between(self):
        assert tasks_mod.minutes_between("2025-01-01", "2025-01-02") == 1440
