"""Tests for task coordination."""

from unittest.mock import patch

import pytest

from agent_workflow.agents import AgentRegistry
from agent_workflow.models import TaskFile, TaskStatus
from agent_workflow.results import ErrorKind
from agent_workflow.store import YamlWorkflowStore
from agent_workflow.tasks import TaskCoordinator, is_available


def test_add_task_registers_dependents(tasks: TaskCoordinator) -> None:
    """Test adding a task appends it to its dependencies' dependents."""
    a = tasks.add_task("A", priority=1)
    b = tasks.add_task("B", dependencies=[a.id, "task_missing"])

    assert tasks.get_task(a.id).dependents == [b.id]
    assert tasks.get_task(b.id).dependencies == [a.id, "task_missing"]
    assert tasks.get_task(b.id).status == TaskStatus.PENDING
    assert tasks.get_task(b.id).assigned_agent is None


def test_add_task_keeps_files(tasks: TaskCoordinator) -> None:
    """Test file operations survive a round trip through the document."""
    task = tasks.add_task("Edit", files=[TaskFile(path="src/app.ts", methods=["save"])])
    stored = tasks.get_task(task.id)
    assert stored.files[0].path == "src/app.ts"
    assert stored.files[0].methods == ["save"]


def test_scenario_unblocking(tasks: TaskCoordinator) -> None:
    """Test completing a dependency makes its dependent available."""
    a = tasks.add_task("A", priority=1)
    b = tasks.add_task("B", dependencies=[a.id])

    assert [t.id for t in tasks.list_tasks(available=True)] == [a.id]

    claim = tasks.claim_task(a.id, "a1")
    assert claim.success

    result = tasks.complete_task(a.id, "done")
    assert result.success
    assert result.unblocked_tasks == [b.id]
    assert [t.id for t in tasks.list_tasks(available=True)] == [b.id]


def test_unblocks_only_after_last_dependency(tasks: TaskCoordinator) -> None:
    """Test a task with two dependencies unblocks only when both complete."""
    a1 = tasks.add_task("A1")
    a2 = tasks.add_task("A2")
    b = tasks.add_task("B", dependencies=[a1.id, a2.id])

    assert tasks.complete_task(a1.id, "first").unblocked_tasks == []
    assert tasks.complete_task(a2.id, "second").unblocked_tasks == [b.id]


def test_missing_dependency_blocks(tasks: TaskCoordinator, store: YamlWorkflowStore) -> None:
    """Test a dependency that does not exist keeps a task unavailable."""
    task = tasks.add_task("Orphan", dependencies=["task_gone"])
    assert not is_available(tasks.get_task(task.id), store.load())

    result = tasks.claim_task(task.id, "a1")
    assert result.error == ErrorKind.CONFLICT
    assert result.message == "Task dependencies not completed"


def test_availability_law(tasks: TaskCoordinator, store: YamlWorkflowStore) -> None:
    """Test availability requires pending, unassigned and completed dependencies."""
    dep = tasks.add_task("Dep")
    task = tasks.add_task("Task", dependencies=[dep.id])
    free = tasks.add_task("Free")

    workflow = store.load()
    assert is_available(workflow.tasks[free.id], workflow)
    assert not is_available(workflow.tasks[task.id], workflow)

    tasks.complete_task(dep.id, "ok")
    workflow = store.load()
    assert is_available(workflow.tasks[task.id], workflow)

    workflow.tasks[task.id].assigned_agent = "a1"
    assert not is_available(workflow.tasks[task.id], workflow)

    workflow.tasks[free.id].status = TaskStatus.BLOCKED
    assert not is_available(workflow.tasks[free.id], workflow)


def test_claim_exclusivity(tasks: TaskCoordinator) -> None:
    """Test a second agent cannot claim a claimed task."""
    task = tasks.add_task("Only once")
    assert tasks.claim_task(task.id, "a1").success

    second = tasks.claim_task(task.id, "a2")
    assert not second.success
    assert second.error == ErrorKind.CONFLICT
    assert second.message == "Task is already in_progress"
    assert tasks.get_task(task.id).assigned_agent == "a1"


def test_claim_already_assigned_message(tasks: TaskCoordinator, store: YamlWorkflowStore) -> None:
    """Test a pending task with an assignee reports who holds it."""
    task = tasks.add_task("Held")
    with store.transaction() as workflow:
        workflow.tasks[task.id].assigned_agent = "a1"

    result = tasks.claim_task(task.id, "a2")
    assert result.error == ErrorKind.CONFLICT
    assert result.message == "Task is already assigned to a1"


def test_claim_missing_task(tasks: TaskCoordinator) -> None:
    """Test claiming an unknown task reports not found."""
    result = tasks.claim_task("task_nope", "a1")
    assert not result.success
    assert result.error == ErrorKind.NOT_FOUND


def test_claim_updates_agent(tasks: TaskCoordinator, agents: AgentRegistry, clock) -> None:
    """Test claiming records the task on the agent and refreshes its liveness."""
    agent = agents.get_or_create_current_agent("worker")
    task = tasks.add_task("Work")

    clock.advance(seconds=30)
    result = tasks.claim_task(task.id, agent.id)

    assert result.success
    assert result.agent_id == agent.id
    stored = agents.get_agent(agent.id)
    assert stored.claimed_tasks == [task.id]
    assert stored.last_active == clock()


def test_complete_twice(tasks: TaskCoordinator) -> None:
    """Test completion is one-way."""
    task = tasks.add_task("Once")
    assert tasks.complete_task(task.id, "done").success

    again = tasks.complete_task(task.id, "again")
    assert not again.success
    assert again.error == ErrorKind.INVALID_STATE
    assert tasks.get_task(task.id).result.summary == "done"


def test_complete_missing_task(tasks: TaskCoordinator) -> None:
    """Test completing an unknown task reports not found."""
    assert tasks.complete_task("task_nope", "x").error == ErrorKind.NOT_FOUND


def test_complete_releases_claim_and_stores_output(
    tasks: TaskCoordinator, agents: AgentRegistry, store: YamlWorkflowStore
) -> None:
    """Test completion clears the claim and writes detailed output."""
    agent = agents.get_or_create_current_agent()
    task = tasks.add_task("Report")
    tasks.claim_task(task.id, agent.id)

    result = tasks.complete_task(task.id, "summary", output="# Long report")

    assert result.success
    stored = tasks.get_task(task.id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.result.output_ref.endswith(f"{task.id}.md")
    assert store.read_output(task.id) == "# Long report"
    assert agents.get_agent(agent.id).claimed_tasks == []


def test_complete_without_output_skips_store(tasks: TaskCoordinator, store: YamlWorkflowStore) -> None:
    """Test no output file is written when no detailed output is given."""
    task = tasks.add_task("Quiet")
    with patch.object(store, "write_output") as write_output:
        tasks.complete_task(task.id, "done")
    write_output.assert_not_called()
    assert tasks.get_task(task.id).result.output_ref is None


def test_list_tasks_filters_and_sorts(tasks: TaskCoordinator) -> None:
    """Test filtering by status and assignee and sorting by priority."""
    low = tasks.add_task("Low", priority=5)
    high = tasks.add_task("High", priority=1)
    mid = tasks.add_task("Mid", priority=3)
    tasks.claim_task(mid.id, "a1")

    assert [t.id for t in tasks.list_tasks()] == [high.id, mid.id, low.id]
    assert [t.id for t in tasks.list_tasks(status=TaskStatus.PENDING)] == [high.id, low.id]
    assert [t.id for t in tasks.list_tasks(assigned_agent="a1")] == [mid.id]


def test_delete_repairs_edges(tasks: TaskCoordinator, agents: AgentRegistry) -> None:
    """Test deleting a task strips it from both edge lists and from its assignee."""
    agent = agents.get_or_create_current_agent()
    a = tasks.add_task("A")
    b = tasks.add_task("B", dependencies=[a.id])
    c = tasks.add_task("C", dependencies=[b.id])
    tasks.complete_task(a.id, "done")
    tasks.claim_task(b.id, agent.id)

    assert tasks.delete_task(b.id)

    assert tasks.get_task(b.id) is None
    assert tasks.get_task(a.id).dependents == []
    assert tasks.get_task(c.id).dependencies == []
    assert tasks.get_task(c.id).status == TaskStatus.PENDING
    assert agents.get_agent(agent.id).claimed_tasks == []
    assert not tasks.delete_task(b.id)


def test_update_task_status(tasks: TaskCoordinator) -> None:
    """Test external status signals, including reset to pending."""
    task = tasks.add_task("Flaky")
    tasks.claim_task(task.id, "a1")

    assert tasks.update_task_status(task.id, TaskStatus.FAILED)
    assert tasks.get_task(task.id).status == TaskStatus.FAILED

    assert tasks.update_task_status(task.id, TaskStatus.PENDING)
    reset = tasks.get_task(task.id)
    assert reset.assigned_agent is None
    assert tasks.claim_task(task.id, "a2").success

    assert not tasks.update_task_status("task_nope", TaskStatus.BLOCKED)
    with pytest.raises(ValueError):
        tasks.update_task_status(task.id, TaskStatus.COMPLETED)


def test_get_progress(tasks: TaskCoordinator) -> None:
    """Test progress counts and rounding."""
    assert tasks.get_progress().percentage == 0

    done = tasks.add_task("Done")
    tasks.add_task("Pending")
    failed = tasks.add_task("Failed")
    tasks.complete_task(done.id, "ok")
    tasks.update_task_status(failed.id, TaskStatus.FAILED)

    progress = tasks.get_progress()
    assert progress.total == 3
    assert progress.completed == 1
    assert progress.pending == 1
    assert progress.failed == 1
    assert progress.percentage == 33


def test_progress_rounds_half_up(tasks: TaskCoordinator) -> None:
    """Test 1 of 8 completed rounds 12.5 up to 13."""
    first = tasks.add_task("1")
    for i in range(7):
        tasks.add_task(str(i + 2))
    tasks.complete_task(first.id, "ok")
    assert tasks.get_progress().percentage == 13


def test_mermaid_graph(tasks: TaskCoordinator) -> None:
    """Test the diagram has one node per task and one edge per dependency."""
    a = tasks.add_task("A")
    b = tasks.add_task("B", dependencies=[a.id])
    tasks.complete_task(a.id, "ok")

    graph = tasks.generate_mermaid_graph()
    lines = graph.splitlines()
    assert lines[0] == "graph TD"
    assert f'    {a.id}["A ✅"]' in lines
    assert f'    {b.id}["B ⏳"]' in lines
    assert f"    {a.id} --> {b.id}" in lines


def test_task_with_context(tasks: TaskCoordinator) -> None:
    """Test context prefers stored output and falls back to the summary."""
    a = tasks.add_task("A")
    b = tasks.add_task("B")
    c = tasks.add_task("C", dependencies=[a.id, b.id])
    tasks.complete_task(a.id, "short a", output="full a")
    tasks.complete_task(b.id, "short b")

    result = tasks.get_task_with_context(c.id)
    assert result.task.id == c.id
    assert result.context == {a.id: "full a", b.id: "short b"}
    assert tasks.get_task_with_context("task_nope") is None


def test_find_cycles(tasks: TaskCoordinator, store: YamlWorkflowStore) -> None:
    """Test cycles introduced by the producer are reported, not prevented."""
    a = tasks.add_task("A")
    b = tasks.add_task("B", dependencies=[a.id])
    assert tasks.find_cycles() == []

    with store.transaction() as workflow:
        workflow.tasks[a.id].dependencies.append(b.id)
        workflow.tasks[b.id].dependents.append(a.id)

    cycles = tasks.find_cycles()
    assert len(cycles) == 1
    assert set(cycles[0]) == {a.id, b.id}
    assert not tasks.is_available(tasks.get_task(a.id))


def test_refused_claim_leaves_document_untouched(tasks: TaskCoordinator, store: YamlWorkflowStore) -> None:
    """Test failed claims and completions do not rewrite the document."""
    task = tasks.add_task("Taken")
    tasks.claim_task(task.id, "a1")
    updated_at = store.load().updated_at

    with patch.object(store, "_write", wraps=store._write) as write:
        assert tasks.claim_task(task.id, "a2").error == ErrorKind.CONFLICT
        assert tasks.claim_task("task_nope", "a2").error == ErrorKind.NOT_FOUND
        assert tasks.complete_task("task_nope", "x").error == ErrorKind.NOT_FOUND
        assert not tasks.delete_task("task_nope")
    write.assert_not_called()
    assert store.load().updated_at == updated_at
