"""Task management commands for the agent workflow CLI."""

from pathlib import Path

from cyclopts import App

from agent_workflow.models import FileOperation, Task, TaskFile, TaskStatus

task_app = App(name="task", help="Manage tasks and their dependencies")


def parse_file_specs(specs: str | None) -> list[TaskFile]:
    """Parse ``path:type:method1|method2`` specs separated by commas."""
    files = []
    for spec in (specs or "").split(","):
        if not spec.strip():
            continue
        parts = spec.strip().split(":")
        methods = [m for m in parts[2].split("|") if m] if len(parts) > 2 and parts[2] else None
        files.append(
            TaskFile(
                path=parts[0],
                type=FileOperation(parts[1]) if len(parts) > 1 and parts[1] else FileOperation.MODIFY,
                methods=methods,
            )
        )
    return files


def _print_task(task: Task) -> None:
    print(f"Task: {task.id}")
    print(f"Name: {task.name}")
    print(f"Description: {task.description}")
    print(f"Status: {task.status.value}")
    print(f"Priority: {task.priority}")
    print(f"Agent: {task.assigned_agent or '-'}")
    if task.dependencies:
        print(f"Dependencies: {', '.join(task.dependencies)}")
    if task.dependents:
        print(f"Dependents: {', '.join(task.dependents)}")
    for f in task.files:
        methods = f" ({', '.join(f.methods)})" if f.methods else ""
        print(f"File: {f.type.value} {f.path}{methods}")
    if task.result:
        print(f"Result: {task.result.summary}")
        if task.result.output_ref:
            print(f"Output: {task.result.output_ref}")


@task_app.command
def add(
    name: str,
    description: str = "",
    priority: int = 3,
    depends: str | None = None,
    files: str | None = None,
    async_: bool = False,
) -> None:
    """Add a new task.

    Args:
        name: Task name
        description: Task description (defaults to the name)
        priority: Priority, 1 is the most urgent
        depends: Comma-separated ids of tasks this one depends on
        files: File specs as path:type:methods, comma-separated (methods separated by |)
        async_: Mark the task as safe to run in parallel
    """
    from agent_workflow.cli import get_tasks, split_list

    dependencies = split_list(depends)
    task = get_tasks().add_task(
        name,
        description=description,
        priority=priority,
        dependencies=dependencies,
        files=parse_file_specs(files),
        async_execution=async_,
    )
    print(f"✓ Task created: {task.id}")
    print(f"  Name: {task.name}")
    print(f"  Priority: {task.priority}")
    if dependencies:
        print(f"  Dependencies: {', '.join(dependencies)}")


@task_app.command(name="list")
def list_tasks(
    status: str | None = None,
    available: bool = False,
    mine: bool = False,
) -> None:
    """List tasks sorted by priority."""
    from agent_workflow.cli import fail, get_agents, get_tasks

    try:
        status_filter = TaskStatus(status) if status else None
    except ValueError:
        fail(f"Unknown status: {status}. Choose from {', '.join(s.value for s in TaskStatus)}")

    assigned_agent = None
    if mine:
        agent = get_agents().get_current_agent()
        if agent is None:
            print("No agent registered in this context.")
            return
        assigned_agent = agent.id

    tasks = get_tasks().list_tasks(
        status=status_filter,
        assigned_agent=assigned_agent,
        available=available,
    )
    if not tasks:
        print("No tasks found.")
        return

    print(f"Found {len(tasks)} task(s):\n")
    for task in tasks:
        deps = f" <- {', '.join(task.dependencies)}" if task.dependencies else ""
        agent = f" @{task.assigned_agent}" if task.assigned_agent else ""
        print(f"[P{task.priority}] {task.id}: {task.name} ({task.status.value}){agent}{deps}")


@task_app.command
def get(task_id: str, with_context: bool = False, output: Path | None = None) -> None:
    """Show a task, optionally with the outputs of the tasks it depends on.

    Args:
        task_id: Task id
        with_context: Include dependency outputs
        output: Write the context report to this file instead of stdout
    """
    from agent_workflow.cli import fail, get_tasks

    tasks = get_tasks()
    if not with_context:
        task = tasks.get_task(task_id)
        if task is None:
            fail(f"Task {task_id} not found.")
        _print_task(task)
        return

    result = tasks.get_task_with_context(task_id)
    if result is None:
        fail(f"Task {task_id} not found.")

    lines = [f"# {result.task.name}", "", result.task.description, ""]
    for source_id, content in result.context.items():
        lines.extend([f"## Context from {source_id}", "", content, ""])
    report = "\n".join(lines)

    if output:
        output.write_text(report, encoding="utf-8")
        print(f"✓ Written to {output}")
    else:
        print(report)


@task_app.command
def claim(task_id: str, name: str | None = None) -> None:
    """Claim a task for the current agent."""
    from agent_workflow.cli import fail, get_agents, get_tasks
    from agent_workflow.config import get_config

    agent = get_agents().get_or_create_current_agent(name or get_config().get("agent.name"))
    result = get_tasks().claim_task(task_id, agent.id)
    if not result.success:
        fail(result.message)

    print(f"✓ {result.message}")
    print(f"  Agent: {agent.name} ({agent.id})")


@task_app.command
def complete(
    task_id: str,
    summary: str = "Task completed",
    output: str | None = None,
    output_file: Path | None = None,
) -> None:
    """Mark a task completed.

    Args:
        task_id: Task id
        summary: Short completion summary
        output: Detailed output text
        output_file: Read the detailed output from this file
    """
    from agent_workflow.cli import fail, get_tasks

    if output_file is not None:
        output = output_file.read_text(encoding="utf-8")

    result = get_tasks().complete_task(task_id, summary, output=output)
    if not result.success:
        fail(result.message)

    print(f"✓ {result.message}")
    if result.unblocked_tasks:
        print(f"  Unblocked tasks: {', '.join(result.unblocked_tasks)}")


@task_app.command
def delete(task_id: str, force: bool = False) -> None:
    """Delete a task. In-progress tasks need --force."""
    from agent_workflow.cli import fail, get_tasks

    tasks = get_tasks()
    task = tasks.get_task(task_id)
    if task is None:
        fail(f"Task {task_id} not found.")
    if task.status == TaskStatus.IN_PROGRESS and not force:
        fail("Task is in progress. Use --force to delete.")

    tasks.delete_task(task_id)
    print(f"✓ Task {task_id} deleted")


@task_app.command
def status(task_id: str, new_status: str) -> None:
    """Set a task's status to pending, blocked or failed."""
    from agent_workflow.cli import fail, get_tasks

    try:
        updated = get_tasks().update_task_status(task_id, TaskStatus(new_status))
    except ValueError as e:
        fail(str(e))
    if not updated:
        fail(f"Task {task_id} not found.")
    print(f"✓ Task {task_id} is now {new_status}")
