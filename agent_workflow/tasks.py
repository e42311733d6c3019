"""Task coordination: the dependency graph and the claim/complete state machine."""

import math
from collections.abc import Callable
from datetime import datetime

import structlog

from agent_workflow.models import (
    Task,
    TaskFile,
    TaskResult,
    TaskStatus,
    TaskType,
    Workflow,
    generate_id,
    utcnow,
)
from agent_workflow.results import ErrorKind, Progress, TaskClaimResult, TaskCompleteResult, TaskContext
from agent_workflow.store import WorkflowStore

logger = structlog.get_logger()

STATUS_GLYPHS: dict[TaskStatus, str] = {
    TaskStatus.COMPLETED: "✅",
    TaskStatus.IN_PROGRESS: "🔄",
    TaskStatus.PENDING: "⏳",
    TaskStatus.BLOCKED: "🚫",
    TaskStatus.FAILED: "❌",
}


def is_available(task: Task, workflow: Workflow) -> bool:
    """Whether a task can be claimed right now.

    A task is available while it is pending, unassigned and every dependency exists and is
    completed. A dependency missing from the document counts as unmet.
    """
    if task.status != TaskStatus.PENDING:
        return False
    if task.assigned_agent:
        return False

    for dep_id in task.dependencies:
        dep = workflow.tasks.get(dep_id)
        if dep is None or dep.status != TaskStatus.COMPLETED:
            return False
    return True


class TaskCoordinator:
    """Owns the task graph stored in the shared workflow document."""

    def __init__(self, store: WorkflowStore, clock: Callable[[], datetime] = utcnow) -> None:
        """Initialize the task coordinator.

        Args:
            store: Shared document store
            clock: Source of the current time (aware UTC datetimes)
        """
        self.store = store
        self.clock = clock

    def add_task(
        self,
        name: str,
        description: str = "",
        priority: int = 3,
        dependencies: list[str] | None = None,
        files: list[TaskFile] | None = None,
        async_execution: bool = False,
        task_type: TaskType = TaskType.TASK,
        context_from: list[str] | None = None,
    ) -> Task:
        """Add a pending task and register it as a dependent of each existing dependency.

        Dependencies are not validated: unknown ids are kept and simply never complete, and
        no cycle check is made (see ``find_cycles``).
        """
        now = self.clock()
        task = Task(
            id=generate_id("task"),
            name=name,
            description=description or name,
            priority=priority,
            dependencies=list(dict.fromkeys(dependencies or [])),
            files=list(files or []),
            async_execution=async_execution,
            task_type=task_type,
            context_from=list(context_from) if context_from is not None else None,
            created_at=now,
            updated_at=now,
        )

        with self.store.transaction() as workflow:
            for dep_id in task.dependencies:
                dep = workflow.tasks.get(dep_id)
                if dep is not None and task.id not in dep.dependents:
                    dep.dependents.append(task.id)
            workflow.tasks[task.id] = task

        logger.info("Task added", task_id=task.id, name=name, priority=priority, dependencies=task.dependencies)
        return task

    def get_task(self, task_id: str) -> Task | None:
        return self.store.load().tasks.get(task_id)

    def get_task_with_context(self, task_id: str) -> TaskContext | None:
        """Get a task together with the outputs of the tasks it draws context from.

        Context comes from ``context_from`` when set, otherwise from the dependencies. Each
        entry is the stored output if one exists, else the result summary.
        """
        workflow = self.store.load()
        task = workflow.tasks.get(task_id)
        if task is None:
            return None

        context: dict[str, str] = {}
        sources = task.context_from if task.context_from is not None else task.dependencies
        for source_id in sources:
            output = self.store.read_output(source_id)
            if output:
                context[source_id] = output
                continue
            source = workflow.tasks.get(source_id)
            if source is not None and source.result is not None and source.result.summary:
                context[source_id] = source.result.summary

        return TaskContext(task=task, context=context)

    def is_available(self, task: Task, workflow: Workflow | None = None) -> bool:
        return is_available(task, workflow if workflow is not None else self.store.load())

    def list_tasks(
        self,
        status: TaskStatus | None = None,
        assigned_agent: str | None = None,
        available: bool = False,
    ) -> list[Task]:
        """List tasks, optionally filtered, sorted by priority (lower first, stable on ties)."""
        workflow = self.store.load()
        tasks = list(workflow.tasks.values())

        if status is not None:
            tasks = [t for t in tasks if t.status == status]
        if assigned_agent is not None:
            tasks = [t for t in tasks if t.assigned_agent == assigned_agent]
        if available:
            tasks = [t for t in tasks if is_available(t, workflow)]

        logger.debug("Listed tasks", count=len(tasks), status=status, assigned_agent=assigned_agent)
        return sorted(tasks, key=lambda t: t.priority)

    def claim_task(self, task_id: str, agent_id: str) -> TaskClaimResult:
        """Claim a task for an agent.

        The transition out of pending is one-shot, so only one agent can hold a claim.
        """
        with self.store.transaction() as workflow:
            task = workflow.tasks.get(task_id)
            if task is None:
                return TaskClaimResult(False, f"Task {task_id} not found", ErrorKind.NOT_FOUND)

            if not is_available(task, workflow):
                if task.status != TaskStatus.PENDING:
                    message = f"Task is already {task.status.value}"
                elif task.assigned_agent:
                    message = f"Task is already assigned to {task.assigned_agent}"
                else:
                    message = "Task dependencies not completed"
                logger.info("Task claim refused", task_id=task_id, agent_id=agent_id, reason=message)
                return TaskClaimResult(False, message, ErrorKind.CONFLICT)

            now = self.clock()
            task.status = TaskStatus.IN_PROGRESS
            task.assigned_agent = agent_id
            task.updated_at = now

            agent = workflow.agents.get(agent_id)
            if agent is not None:
                if task_id not in agent.claimed_tasks:
                    agent.claimed_tasks.append(task_id)
                agent.last_active = now

        logger.info("Task claimed", task_id=task_id, agent_id=agent_id)
        return TaskClaimResult(True, f"Task {task_id} claimed successfully", task=task, agent_id=agent_id)

    def complete_task(self, task_id: str, summary: str, output: str | None = None) -> TaskCompleteResult:
        """Complete a task and report which dependents it unblocked.

        Dependents are re-evaluated against the updated document, so a task with several
        dependencies is only reported once the last of them completes.
        """
        with self.store.transaction() as workflow:
            task = workflow.tasks.get(task_id)
            if task is None:
                return TaskCompleteResult(False, f"Task {task_id} not found", ErrorKind.NOT_FOUND)
            if task.status == TaskStatus.COMPLETED:
                return TaskCompleteResult(False, "Task is already completed", ErrorKind.INVALID_STATE)

            now = self.clock()
            output_ref = self.store.write_output(task_id, output) if output else None

            task.status = TaskStatus.COMPLETED
            task.result = TaskResult(completed_at=now, summary=summary, output_ref=output_ref)
            task.updated_at = now

            if task.assigned_agent:
                agent = workflow.agents.get(task.assigned_agent)
                if agent is not None:
                    agent.claimed_tasks = [t for t in agent.claimed_tasks if t != task_id]
                    agent.last_active = now

            unblocked = [
                dependent_id
                for dependent_id in task.dependents
                if dependent_id in workflow.tasks and is_available(workflow.tasks[dependent_id], workflow)
            ]

        logger.info("Task completed", task_id=task_id, unblocked=unblocked)
        return TaskCompleteResult(True, f"Task {task_id} completed", unblocked_tasks=unblocked)

    def update_task_status(self, task_id: str, status: TaskStatus) -> bool:
        """Set a task's status from an external signal (blocked, failed, or back to pending).

        Resetting to pending releases the claim so the task can be picked up again.

        Raises:
            ValueError: If asked to mark a task completed; use ``complete_task`` for that
        """
        if status == TaskStatus.COMPLETED:
            raise ValueError("Use complete_task to complete a task")

        with self.store.transaction() as workflow:
            task = workflow.tasks.get(task_id)
            if task is None:
                return False

            if status == TaskStatus.PENDING and task.assigned_agent:
                agent = workflow.agents.get(task.assigned_agent)
                if agent is not None:
                    agent.claimed_tasks = [t for t in agent.claimed_tasks if t != task_id]
                task.assigned_agent = None

            task.status = status
            task.updated_at = self.clock()

        logger.info("Task status updated", task_id=task_id, status=status.value)
        return True

    def delete_task(self, task_id: str) -> bool:
        """Delete a task and repair the edges and claims that referenced it.

        Dependents are not deleted and their availability is not re-evaluated.
        """
        with self.store.transaction() as workflow:
            task = workflow.tasks.get(task_id)
            if task is None:
                return False

            for dep_id in task.dependencies:
                dep = workflow.tasks.get(dep_id)
                if dep is not None:
                    dep.dependents = [t for t in dep.dependents if t != task_id]

            for dependent_id in task.dependents:
                dependent = workflow.tasks.get(dependent_id)
                if dependent is not None:
                    dependent.dependencies = [t for t in dependent.dependencies if t != task_id]

            if task.assigned_agent:
                agent = workflow.agents.get(task.assigned_agent)
                if agent is not None:
                    agent.claimed_tasks = [t for t in agent.claimed_tasks if t != task_id]

            del workflow.tasks[task_id]

        logger.info("Task deleted", task_id=task_id)
        return True

    def get_progress(self) -> Progress:
        tasks = list(self.store.load().tasks.values())
        counts = {status: sum(1 for t in tasks if t.status == status) for status in TaskStatus}

        progress = Progress(
            total=len(tasks),
            completed=counts[TaskStatus.COMPLETED],
            in_progress=counts[TaskStatus.IN_PROGRESS],
            pending=counts[TaskStatus.PENDING],
            blocked=counts[TaskStatus.BLOCKED],
            failed=counts[TaskStatus.FAILED],
        )
        if progress.total:
            # Half-up rounding
            progress.percentage = math.floor(progress.completed * 100 / progress.total + 0.5)
        return progress

    def generate_mermaid_graph(self) -> str:
        """Render the dependency graph as a Mermaid ``graph TD`` diagram."""
        workflow = self.store.load()

        lines = ["graph TD"]
        for task in workflow.tasks.values():
            label = f"{task.name} {STATUS_GLYPHS[task.status]}".replace('"', "'")
            lines.append(f'    {task.id}["{label}"]')
            for dep_id in task.dependencies:
                lines.append(f"    {dep_id} --> {task.id}")
        return "\n".join(lines) + "\n"

    def find_cycles(self) -> list[list[str]]:
        """Find cycles in the dependency graph.

        Returns:
            Each cycle as a list of task ids, ordered along the dependency edges
        """
        workflow = self.store.load()
        visiting: set[str] = set()
        done: set[str] = set()
        path: list[str] = []
        cycles: list[list[str]] = []

        def visit(task_id: str) -> None:
            visiting.add(task_id)
            path.append(task_id)
            for dep_id in workflow.tasks[task_id].dependencies:
                if dep_id not in workflow.tasks or dep_id in done:
                    continue
                if dep_id in visiting:
                    cycles.append(path[path.index(dep_id) :])
                else:
                    visit(dep_id)
            path.pop()
            visiting.discard(task_id)
            done.add(task_id)

        for task_id in workflow.tasks:
            if task_id not in done:
                visit(task_id)

        logger.debug("Searched for dependency cycles", count=len(cycles))
        return cycles
