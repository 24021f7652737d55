"""MCP prompt templates for common workflows."""

from project_manager.mcp.server import mcp


@mcp.prompt()
def plan_project(goal: str) -> str:
    """Generate a prompt to turn a goal into a project with epics and tasks."""
    return (
        f"I need to accomplish the following goal:\n\n"
        f"{goal}\n\n"
        f"Please plan it as a project:\n"
        f"1. Read project://projects and reuse an existing project if one fits; otherwise use create_project\n"
        f"2. Group the work into epics with create_epic\n"
        f"3. Create concrete tasks with create_task, giving each a priority, tags and epic_id\n"
        f"4. Record ordering constraints with link_tasks using 'depends_on'\n\n"
        f"Finish with a short summary of what you created."
    )


@mcp.prompt()
def status_report(project_id: str) -> str:
    """Generate a prompt for a project status report."""
    return (
        f"Please generate a status report for project '{project_id}'.\n\n"
        f"Read project://project-summary and project://epic-summary, then use "
        f"search_tasks with project_id='{project_id}' and provide:\n"
        f"1. Overall progress and completion per epic\n"
        f"2. Tasks currently in progress\n"
        f"3. Blocked tasks and what they depend on\n"
        f"4. Overdue tasks (due_before today, status not done)\n"
        f"5. Recommended next tasks to work on"
    )
