"""CLI entry point for the project manager."""

import json
import logging
import sys
from contextlib import contextmanager

import click
from pydantic import ValidationError

from project_manager.config import ConfigError, get_config
from project_manager.core import epics as epics_mod
from project_manager.core import projects as projects_mod
from project_manager.core import summaries as summaries_mod
from project_manager.core import tasks as tasks_mod
from project_manager.core.requests import format_validation_error, parse_request
from project_manager.db.engine import StoreError, get_db

STATUS_ICONS = {
    "todo": "○",
    "in-progress": "●",
    "done": "✓",
    "blocked": "✗",
    "cancelled": "-",
}

RESOURCES = {
    "tasks": "tasks",
    "projects": "projects",
    "task-summary": "task_summary",
    "project-summary": "project_summary",
    "epic-summary": "epic_summary",
}


def _load_config():
    try:
        config = get_config()
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    logging.basicConfig(
        stream=sys.stderr,
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return config


@contextmanager
def _get_db():
    config = _load_config()
    try:
        with get_db(config.database_url, config.access_key) as db:
            yield db
    except StoreError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _request(tool: str, **arguments):
    try:
        return parse_request(tool, arguments)
    except ValidationError as e:
        click.echo(f"Invalid arguments: {format_validation_error(e)}", err=True)
        sys.exit(1)


@click.group()
def main():
    """pm - Project Manager CLI"""
    pass


@main.command("init")
def init_store():
    """Create the store, or check access to an existing one."""
    config = _load_config()
    with _get_db():
        click.echo(f"Store ready: {config.database_url}")


# ── Project Commands ──────────────────────────────────────────────────────────


@main.group("project")
def project_group():
    """Manage projects."""
    pass


@project_group.command("add")
@click.argument("name")
@click.option("--description", "-d", default=None, help="Project description")
@click.option("--status", default="active", help="active, completed or archived")
@click.option("--markdown-file", default=None, help="Path to the project markdown file")
@click.option("--github-repo", default=None, help="GitHub repo (owner/repo)")
@click.option("--working-directory", default=None, help="Local working directory")
def project_add(name, description, status, markdown_file, github_repo, working_directory):
    """Create a new project."""
    req = _request(
        "create_project",
        name=name,
        description=description,
        status=status,
        markdown_file=markdown_file,
        github_repo=github_repo,
        working_directory=working_directory,
    )
    with _get_db() as db:
        project = projects_mod.create_project(db, **req.provided())
        click.echo(f"Created project: {project.name}")
        click.echo(f"  ID: {project.id}")
        click.echo(f"  Status: {project.status}")


@project_group.command("list")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def project_list(json_output):
    """List projects with task counts."""
    with _get_db() as db:
        rows = summaries_mod.fetch_rows(db, "project_summary")

    if json_output:
        click.echo(json.dumps(rows, indent=2))
        return

    if not rows:
        click.echo("No projects found.")
        return

    for row in rows:
        click.echo(
            f"  {row['id']}: {row['name']} ({row['status']}) "
            f"{row['completed_tasks']}/{row['total_tasks']} done"
        )


@project_group.command("update")
@click.argument("project_id")
@click.option("--name", default=None)
@click.option("--description", "-d", default=None)
@click.option("--status", default=None, help="active, completed or archived")
@click.option("--markdown-file", default=None)
@click.option("--github-repo", default=None)
@click.option("--working-directory", default=None)
def project_update(project_id, name, description, status, markdown_file, github_repo, working_directory):
    """Update a project."""
    req = _request(
        "update_project",
        id=project_id,
        name=name,
        description=description,
        status=status,
        markdown_file=markdown_file,
        github_repo=github_repo,
        working_directory=working_directory,
    )
    with _get_db() as db:
        project = projects_mod.update_project(db, req.id, **req.provided("id"))
        click.echo(f"Updated project: {project.name}")


@project_group.command("delete")
@click.argument("project_id")
@click.confirmation_option(prompt="Delete the project with all of its tasks and epics?")
def project_delete(project_id):
    """Delete a project and everything in it."""
    with _get_db() as db:
        projects_mod.delete_project(db, project_id)
        click.echo(f"Deleted project: {project_id}")


# ── Epic Commands ─────────────────────────────────────────────────────────────


@main.group("epic")
def epic_group():
    """Manage epics."""
    pass


@epic_group.command("add")
@click.argument("title")
@click.option("--project", "project_id", default=None, help="Project ID")
@click.option("--description", "-d", default=None)
@click.option("--priority", "-p", default="medium", help="low, medium, high or urgent")
@click.option("--due", "due_date", default=None, help="Due date (ISO format)")
def epic_add(title, project_id, description, priority, due_date):
    """Create a new epic."""
    req = _request(
        "create_epic",
        title=title,
        project_id=project_id,
        description=description,
        priority=priority,
        due_date=due_date,
    )
    with _get_db() as db:
        epic = epics_mod.create_epic(db, **req.provided())
        click.echo(f"Created epic: {epic.title}")
        click.echo(f"  ID: {epic.id}")


@epic_group.command("list")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def epic_list(json_output):
    """List epics with progress."""
    with _get_db() as db:
        rows = summaries_mod.fetch_rows(db, "epic_summary")

    if json_output:
        click.echo(json.dumps(rows, indent=2))
        return

    if not rows:
        click.echo("No epics found.")
        return

    for row in rows:
        project = f" [{row['project_name']}]" if row["project_name"] else ""
        click.echo(
            f"  {row['id']}: {row['title']} ({row['status']}){project} "
            f"{row['completion_percentage']}% complete"
        )


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.group("task")
def task_group():
    """Manage tasks."""
    pass


@task_group.command("add")
@click.argument("title")
@click.option("--project", "project_id", default=None, help="Project ID")
@click.option("--epic", "epic_id", default=None, help="Epic ID")
@click.option("--description", "-d", default=None, help="Task description")
@click.option("--status", default="todo", help="todo, in-progress, done, blocked or cancelled")
@click.option("--priority", "-p", default="medium", help="low, medium, high or urgent")
@click.option("--due", "due_date", default=None, help="Due date (ISO format)")
@click.option("--tag", "tags", multiple=True, help="Tag name (repeatable)")
def task_add(title, project_id, epic_id, description, status, priority, due_date, tags):
    """Create a new task."""
    req = _request(
        "create_task",
        title=title,
        project_id=project_id,
        epic_id=epic_id,
        description=description,
        status=status,
        priority=priority,
        due_date=due_date,
        tags=list(tags) or None,
    )
    with _get_db() as db:
        task = tasks_mod.create_task(db, **req.provided())
        click.echo(f"Created task: {task.title}")
        click.echo(f"  ID: {task.id}")
        click.echo(f"  Status: {task.status}")
        click.echo(f"  Priority: {task.priority}")
        if task.tags:
            click.echo(f"  Tags: {', '.join(task.tags)}")


@task_group.command("list")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_list(json_output):
    """List all tasks, newest first."""
    with _get_db() as db:
        rows = summaries_mod.fetch_rows(db, "task_summary")
    _print_task_rows(rows, json_output)


@task_group.command("search")
@click.option("--status", multiple=True, help="Status (repeatable)")
@click.option("--project", "project_id", default=None, help="Project ID")
@click.option("--priority", multiple=True, help="Priority (repeatable)")
@click.option("--tag", "tags", multiple=True, help="Tag name (repeatable)")
@click.option("--due-before", default=None, help="Due on or before (ISO format)")
@click.option("--due-after", default=None, help="Due on or after (ISO format)")
@click.option("--text", "search_text", default=None, help="Search title and description")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_search(status, project_id, priority, tags, due_before, due_after, search_text, json_output):
    """Search tasks."""
    req = _request(
        "search_tasks",
        status=list(status) or None,
        project_id=project_id,
        priority=list(priority) or None,
        tags=list(tags) or None,
        due_before=due_before,
        due_after=due_after,
        search_text=search_text,
    )
    with _get_db() as db:
        rows = tasks_mod.search_tasks(db, **req.provided())
    _print_task_rows(rows, json_output)


@task_group.command("show")
@click.argument("task_id")
def task_show(task_id):
    """Show task details."""
    with _get_db() as db:
        task = tasks_mod.get_task(db, task_id)
        if not task:
            click.echo(f"Task not found: {task_id}", err=True)
            sys.exit(1)

        click.echo(f"Task: {task.id}")
        click.echo(f"  Title: {task.title}")
        click.echo(f"  Status: {task.status}")
        click.echo(f"  Priority: {task.priority}")
        if task.description:
            click.echo(f"  Description: {task.description}")
        if task.project_id:
            click.echo(f"  Project: {task.project_id}")
        if task.epic_id:
            click.echo(f"  Epic: {task.epic_id}")
        if task.due_date:
            click.echo(f"  Due: {task.due_date}")
        if task.tags:
            click.echo(f"  Tags: {', '.join(task.tags)}")

        relationships = tasks_mod.list_relationships(db, task_id)
        if relationships:
            click.echo("  Relationships:")
            for rel in relationships:
                click.echo(f"    {rel.source_task_id} {rel.relationship_type} {rel.target_task_id}")

        entries = tasks_mod.list_time_entries(db, task_id)
        if entries:
            total = sum(e.duration_minutes or 0 for e in entries)
            click.echo(f"  Time logged: {total} min in {len(entries)} entries")

        comments = tasks_mod.list_task_comments(db, task_id)
        if comments:
            click.echo("  Comments:")
            for c in comments:
                click.echo(f"    [{c.created_at}] {c.content}")


@task_group.command("update")
@click.argument("task_id")
@click.option("--title", default=None)
@click.option("--description", "-d", default=None)
@click.option("--status", default=None)
@click.option("--priority", "-p", default=None)
@click.option("--project", "project_id", default=None)
@click.option("--epic", "epic_id", default=None)
@click.option("--due", "due_date", default=None)
@click.option("--tag", "tags", multiple=True, help="Replace tags with these (repeatable)")
@click.option("--clear-tags", is_flag=True, help="Remove all tags")
def task_update(task_id, title, description, status, priority, project_id, epic_id, due_date, tags, clear_tags):
    """Update a task."""
    if clear_tags:
        new_tags = []
    else:
        new_tags = list(tags) or None
    req = _request(
        "update_task",
        id=task_id,
        title=title,
        description=description,
        status=status,
        priority=priority,
        project_id=project_id,
        epic_id=epic_id,
        due_date=due_date,
        tags=new_tags,
    )
    with _get_db() as db:
        task = tasks_mod.update_task(db, req.id, **req.provided("id"))
        click.echo(f"Updated task: {task.title}")
        if task.tags:
            click.echo(f"  Tags: {', '.join(task.tags)}")


@task_group.command("delete")
@click.argument("task_id")
def task_delete(task_id):
    """Delete a task."""
    with _get_db() as db:
        tasks_mod.delete_task(db, task_id)
        click.echo(f"Deleted task: {task_id}")


@task_group.command("comment")
@click.argument("task_id")
@click.argument("content")
def task_comment(task_id, content):
    """Add a comment to a task."""
    req = _request("add_task_comment", task_id=task_id, content=content)
    with _get_db() as db:
        tasks_mod.add_task_comment(db, req.task_id, req.content)
        click.echo(f"Added comment to task {req.task_id}")


@task_group.command("link")
@click.argument("source_task_id")
@click.argument("target_task_id")
@click.option(
    "--type",
    "relationship_type",
    default="depends_on",
    help="depends_on, blocks, subtask, related or duplicate",
)
def task_link(source_task_id, target_task_id, relationship_type):
    """Relate two tasks."""
    req = _request(
        "link_tasks",
        source_task_id=source_task_id,
        target_task_id=target_task_id,
        relationship_type=relationship_type,
    )
    with _get_db() as db:
        tasks_mod.link_tasks(db, req.source_task_id, req.target_task_id, req.relationship_type)
        click.echo(f"Linked: {req.source_task_id} {req.relationship_type} {req.target_task_id}")


@task_group.command("log-time")
@click.argument("task_id")
@click.option("--start", "start_time", required=True, help="Start time (ISO format)")
@click.option("--end", "end_time", default=None, help="End time (ISO format)")
@click.option("--minutes", "duration_minutes", type=int, default=None, help="Duration in minutes")
@click.option("--description", "-d", default=None)
def task_log_time(task_id, start_time, end_time, duration_minutes, description):
    """Log time spent on a task."""
    req = _request(
        "log_time",
        task_id=task_id,
        start_time=start_time,
        end_time=end_time,
        duration_minutes=duration_minutes,
        description=description,
    )
    with _get_db() as db:
        entry = tasks_mod.log_time(db, **req.provided())
        minutes = entry.duration_minutes if entry.duration_minutes is not None else "?"
        click.echo(f"Logged {minutes} min on task {entry.task_id}")


# ── Resource Command ─────────────────────────────────────────────────────────


@main.command("resource")
@click.argument("name", type=click.Choice(sorted(RESOURCES)))
def resource_dump(name):
    """Print a resource snapshot as JSON."""
    with _get_db() as db:
        rows = summaries_mod.fetch_rows(db, RESOURCES[name])
    click.echo(json.dumps(rows, indent=2))


# ── MCP Server Command ───────────────────────────────────────────────────────


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    _load_config()

    from project_manager.mcp.server import mcp
    from project_manager.mcp import prompts  # noqa: F401 - registers prompts

    mcp.run(transport="stdio")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _print_task_rows(rows: list[dict], json_output: bool):
    if json_output:
        click.echo(json.dumps(rows, indent=2))
        return

    if not rows:
        click.echo("No tasks found.")
        return

    for row in rows:
        icon = STATUS_ICONS.get(row["status"], "?")
        tags = f" #{' #'.join(row['tags'])}" if row["tags"] else ""
        due = f" due {row['due_date']}" if row["due_date"] else ""
        click.echo(f"  {icon} [{row['priority']}] {row['id']}: {row['title']} ({row['status']}){due}{tags}")


if __name__ == "__main__":
    main()
