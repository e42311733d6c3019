"""Workflow overview commands for the agent workflow CLI."""

from cyclopts import App

status_app = App(name="status", help="Show workflow progress, graph and advice")


@status_app.command
def progress() -> None:
    """Show task counts and completion percentage."""
    from agent_workflow.cli import get_tasks

    p = get_tasks().get_progress()
    print(f"Progress: {p.completed}/{p.total} ({p.percentage}%)")
    print(f"  Pending: {p.pending}")
    print(f"  In progress: {p.in_progress}")
    print(f"  Completed: {p.completed}")
    print(f"  Blocked: {p.blocked}")
    print(f"  Failed: {p.failed}")


@status_app.command
def graph() -> None:
    """Print the task dependency graph as a Mermaid diagram."""
    from agent_workflow.cli import get_tasks

    print(get_tasks().generate_mermaid_graph(), end="")


@status_app.command
def agents() -> None:
    """Show agent counts by status."""
    from agent_workflow.cli import get_agents

    stats = get_agents().get_agent_stats()
    print(f"Agents: {stats.total}")
    print(f"  Active: {stats.active}")
    print(f"  Inactive: {stats.inactive}")
    print(f"  Terminated: {stats.terminated}")


@status_app.command
def refactor(file: str | None = None) -> None:
    """List refactor suggestions raised by frequent modifications."""
    from agent_workflow.cli import get_locks

    suggestions = get_locks().get_refactor_suggestions(file)
    if not suggestions:
        print("No refactor suggestions")
        return

    for s in suggestions:
        target = f"{s.file}#{s.method}" if s.method else s.file
        print(f"[{s.priority.value}] {s.id}: {target} - {s.reason}")


@status_app.command
def dismiss(suggestion_id: str) -> None:
    """Dismiss a refactor suggestion."""
    from agent_workflow.cli import fail, get_locks

    if not get_locks().dismiss_refactor_suggestion(suggestion_id):
        fail(f"Suggestion {suggestion_id} not found")
    print(f"✓ Dismissed {suggestion_id}")


@status_app.command
def cycles() -> None:
    """Find and display cycles in task dependencies."""
    from agent_workflow.cli import get_tasks

    found = get_tasks().find_cycles()
    if not found:
        print("No cycles found")
        return

    print(f"Found {len(found)} cycle(s):\n")
    for i, cycle in enumerate(found, 1):
        print(f"{i}. {' -> '.join(cycle)} -> {cycle[0]}")
