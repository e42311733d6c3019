"""Tests for data models."""

from datetime import datetime, timedelta, timezone

from agent_workflow.models import (
    WILDCARD,
    Agent,
    AgentStatus,
    FileLock,
    Task,
    TaskStatus,
    Workflow,
    format_timestamp,
    generate_id,
    parse_timestamp,
    to_base36,
)

NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def test_task_creation() -> None:
    """Test task creation with defaults."""
    task = Task(id="task_1", name="Write parser", created_at=NOW, updated_at=NOW)
    assert task.status == TaskStatus.PENDING
    assert task.priority == 3
    assert task.assigned_agent is None
    assert task.dependencies == []
    assert task.dependents == []
    assert task.result is None


def test_agent_creation() -> None:
    """Test agent creation with defaults."""
    agent = Agent(id="ea_1", name="Agent 1", last_active=NOW, created_at=NOW)
    assert agent.status == AgentStatus.ACTIVE
    assert agent.claimed_tasks == []


def test_timestamp_format() -> None:
    """Test timestamps use millisecond precision and a Z suffix."""
    assert format_timestamp(NOW) == "2026-01-05T12:00:00.000Z"
    assert parse_timestamp("2026-01-05T12:00:00.000Z") == NOW
    assert parse_timestamp(datetime(2026, 1, 5, 12, 0)) == NOW


def test_generate_id() -> None:
    """Test identifiers carry the prefix, a base36 timestamp and a random suffix."""
    prefix, stamp, suffix = generate_id("task").split("_")
    assert prefix == "task"
    assert stamp.isalnum()
    assert len(suffix) == 4
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"


def test_lock_conflicts() -> None:
    """Test method-level conflict rules, including the wildcard."""
    lock = FileLock(locked_by="a1", locked_at=NOW, expires_at=NOW, methods=["foo"])
    assert lock.conflicts_with(["foo"])
    assert lock.conflicts_with([WILDCARD])
    assert not lock.conflicts_with(["bar"])

    whole = FileLock(locked_by="a1", locked_at=NOW, expires_at=NOW)
    assert whole.conflicts_with(["bar"])


def test_lock_expiry_is_inclusive() -> None:
    """Test a lease is expired at exactly its expiry time."""
    lock = FileLock(locked_by="a1", locked_at=NOW, expires_at=NOW + timedelta(seconds=1))
    assert not lock.is_expired(NOW)
    assert lock.is_expired(NOW + timedelta(seconds=1))


def test_workflow_reads_legacy_lock_shape() -> None:
    """Test a document with one lease mapping per path loads as a one-element list."""
    data = Workflow.create("demo", now=NOW).to_dict()
    data["locks"] = {
        "src/app.ts": {
            "locked_by": "a1",
            "locked_at": "2026-01-05T12:00:00.000Z",
            "expires_at": "2026-01-05T12:03:00.000Z",
            "methods": ["*"],
            "reason": "Editing file",
        }
    }

    workflow = Workflow.from_dict(data)
    assert len(workflow.locks["src/app.ts"]) == 1
    assert workflow.locks["src/app.ts"][0].locked_by == "a1"


def test_workflow_document_keys() -> None:
    """Test the serialized document keeps the expected top-level layout."""
    data = Workflow.create("demo", now=NOW).to_dict()
    assert list(data) == [
        "version",
        "project",
        "created_at",
        "updated_at",
        "config",
        "agents",
        "tasks",
        "locks",
        "modifications",
        "refactor_suggestions",
    ]
    assert data["config"] == {
        "lock_timeout": 180000,
        "max_parallel_agents": 5,
        "auto_refactor_threshold": 3,
        "inactive_timeout": 600000,
    }
