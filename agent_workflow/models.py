"""Data models for the shared workflow document."""

import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

WILDCARD = "*"

_BASE36 = string.digits + string.ascii_lowercase


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    FAILED = "failed"


class TaskType(str, Enum):
    TASK = "task"
    VALIDATION = "validation"
    REFACTOR = "refactor"
    REVIEW = "review"


class FileOperation(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class AgentStatus(str, Enum):
    """Agent liveness states."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    TERMINATED = "terminated"


class SuggestionPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way the workflow document stores it (``2024-01-01T00:00:00.000Z``)."""
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime.

    YAML loaders may already hand back a datetime for unquoted timestamps, so both forms are accepted.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_base36(number: int) -> str:
    """Encode a non-negative integer in base 36."""
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def random_token(length: int) -> str:
    return "".join(random.choices(_BASE36, k=length))


def generate_id(prefix: str) -> str:
    """Generate an identifier from a prefix, the millisecond clock and a short random suffix.

    Uniqueness is probabilistic, which is fine at human-scale task and agent counts.
    """
    return f"{prefix}_{to_base36(time.time_ns() // 1_000_000)}_{random_token(4)}"


def _optional_timestamp(value: str | datetime | None) -> datetime | None:
    return parse_timestamp(value) if value is not None else None


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass
class TaskFile:
    """A file operation a task expects to perform."""

    path: str
    type: FileOperation = FileOperation.MODIFY
    methods: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({"path": self.path, "type": self.type.value, "methods": self.methods})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskFile":
        return cls(
            path=data["path"],
            type=FileOperation(data.get("type", FileOperation.MODIFY.value)),
            methods=list(data["methods"]) if data.get("methods") is not None else None,
        )


@dataclass
class TaskResult:
    """Outcome recorded when a task is completed."""

    completed_at: datetime
    summary: str
    output_ref: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "completed_at": format_timestamp(self.completed_at),
                "summary": self.summary,
                "output_ref": self.output_ref,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskResult":
        return cls(
            completed_at=parse_timestamp(data["completed_at"]),
            summary=data.get("summary", ""),
            output_ref=data.get("output_ref"),
        )


@dataclass
class Task:
    """A unit of work in the dependency graph."""

    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: int = 3
    assigned_agent: str | None = None
    dependencies: list[str] = field(default_factory=list)
    dependents: list[str] = field(default_factory=list)
    files: list[TaskFile] = field(default_factory=list)
    result: TaskResult | None = None
    async_execution: bool = False
    task_type: TaskType = TaskType.TASK
    context_from: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority,
            "assigned_agent": self.assigned_agent,
            "dependencies": list(self.dependencies),
            "dependents": list(self.dependents),
            "files": [f.to_dict() for f in self.files],
            "async_execution": self.async_execution,
            "task_type": self.task_type.value,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }
        if self.context_from is not None:
            data["context_from"] = list(self.context_from)
        if self.result is not None:
            data["result"] = self.result.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        result = data.get("result")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            status=TaskStatus(data.get("status", TaskStatus.PENDING.value)),
            priority=int(data.get("priority", 3)),
            assigned_agent=data.get("assigned_agent"),
            dependencies=list(data.get("dependencies") or []),
            dependents=list(data.get("dependents") or []),
            files=[TaskFile.from_dict(f) for f in data.get("files") or []],
            result=TaskResult.from_dict(result) if result else None,
            async_execution=bool(data.get("async_execution", False)),
            task_type=TaskType(data.get("task_type") or TaskType.TASK.value),
            context_from=list(data["context_from"]) if data.get("context_from") is not None else None,
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
        )


@dataclass
class Agent:
    """A worker identity that claims tasks and holds leases."""

    id: str
    name: str
    last_active: datetime
    created_at: datetime
    claimed_tasks: list[str] = field(default_factory=list)
    session_id: str | None = None
    status: AgentStatus = AgentStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "claimed_tasks": list(self.claimed_tasks),
            "session_id": self.session_id,
            "status": self.status.value,
            "last_active": format_timestamp(self.last_active),
            "created_at": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Agent":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            claimed_tasks=list(data.get("claimed_tasks") or []),
            session_id=data.get("session_id"),
            status=AgentStatus(data.get("status", AgentStatus.ACTIVE.value)),
            last_active=parse_timestamp(data["last_active"]),
            created_at=parse_timestamp(data["created_at"]),
        )


@dataclass
class FileLock:
    """A time-bounded lease on a file, optionally scoped to some of its methods."""

    locked_by: str
    locked_at: datetime
    expires_at: datetime
    methods: list[str] = field(default_factory=lambda: [WILDCARD])
    reason: str = ""
    task_id: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def conflicts_with(self, methods: list[str]) -> bool:
        """Whether a request for ``methods`` overlaps this lease."""
        if WILDCARD in self.methods or WILDCARD in methods:
            return True
        return any(method in self.methods for method in methods)

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "locked_by": self.locked_by,
                "locked_at": format_timestamp(self.locked_at),
                "expires_at": format_timestamp(self.expires_at),
                "methods": list(self.methods),
                "reason": self.reason,
                "task_id": self.task_id,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileLock":
        return cls(
            locked_by=data["locked_by"],
            locked_at=parse_timestamp(data["locked_at"]),
            expires_at=parse_timestamp(data["expires_at"]),
            methods=list(data.get("methods") or [WILDCARD]),
            reason=data.get("reason", ""),
            task_id=data.get("task_id"),
        )


@dataclass
class FileModification:
    """Append-only record of a change made under a lease."""

    file: str
    modified_by: str
    modified_at: datetime
    lines_changed: str = ""
    reason: str = ""
    method: str | None = None
    task_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "file": self.file,
                "method": self.method,
                "modified_by": self.modified_by,
                "modified_at": format_timestamp(self.modified_at),
                "lines_changed": self.lines_changed,
                "reason": self.reason,
                "task_id": self.task_id,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileModification":
        return cls(
            file=data["file"],
            method=data.get("method"),
            modified_by=data["modified_by"],
            modified_at=parse_timestamp(data["modified_at"]),
            lines_changed=data.get("lines_changed", ""),
            reason=data.get("reason", ""),
            task_id=data.get("task_id"),
        )


@dataclass
class RefactorSuggestion:
    """System-generated advice raised when a file or method churns too often."""

    id: str
    file: str
    reason: str
    created_at: datetime
    method: str | None = None
    suggested_by: str = "system"
    priority: SuggestionPriority = SuggestionPriority.MEDIUM

    def to_dict(self) -> dict[str, Any]:
        return _drop_none(
            {
                "id": self.id,
                "file": self.file,
                "method": self.method,
                "reason": self.reason,
                "suggested_by": self.suggested_by,
                "created_at": format_timestamp(self.created_at),
                "priority": self.priority.value,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RefactorSuggestion":
        return cls(
            id=data["id"],
            file=data["file"],
            method=data.get("method"),
            reason=data.get("reason", ""),
            suggested_by=data.get("suggested_by", "system"),
            created_at=parse_timestamp(data["created_at"]),
            priority=SuggestionPriority(data.get("priority", SuggestionPriority.MEDIUM.value)),
        )


@dataclass
class WorkflowConfig:
    """Coordination settings stored inside the workflow document. Durations are milliseconds."""

    lock_timeout: int = 180_000
    max_parallel_agents: int = 5
    auto_refactor_threshold: int = 3
    inactive_timeout: int = 600_000

    def to_dict(self) -> dict[str, Any]:
        return {
            "lock_timeout": self.lock_timeout,
            "max_parallel_agents": self.max_parallel_agents,
            "auto_refactor_threshold": self.auto_refactor_threshold,
            "inactive_timeout": self.inactive_timeout,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "WorkflowConfig":
        defaults = cls()
        data = data or {}
        return cls(
            lock_timeout=int(data.get("lock_timeout", defaults.lock_timeout)),
            max_parallel_agents=int(data.get("max_parallel_agents", defaults.max_parallel_agents)),
            auto_refactor_threshold=int(data.get("auto_refactor_threshold", defaults.auto_refactor_threshold)),
            inactive_timeout=int(data.get("inactive_timeout", defaults.inactive_timeout)),
        )


@dataclass
class Workflow:
    """The shared document: every task, agent, lease and modification of a project."""

    project: str
    created_at: datetime
    updated_at: datetime
    version: str = "1.0"
    config: WorkflowConfig = field(default_factory=WorkflowConfig)
    agents: dict[str, Agent] = field(default_factory=dict)
    tasks: dict[str, Task] = field(default_factory=dict)
    locks: dict[str, list[FileLock]] = field(default_factory=dict)
    modifications: list[FileModification] = field(default_factory=list)
    refactor_suggestions: list[RefactorSuggestion] = field(default_factory=list)

    @classmethod
    def create(cls, project: str, config: WorkflowConfig | None = None, now: datetime | None = None) -> "Workflow":
        """Build an empty workflow document for a project."""
        now = now or utcnow()
        return cls(project=project, created_at=now, updated_at=now, config=config or WorkflowConfig())

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "project": self.project,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "config": self.config.to_dict(),
            "agents": {agent_id: agent.to_dict() for agent_id, agent in self.agents.items()},
            "tasks": {task_id: task.to_dict() for task_id, task in self.tasks.items()},
            "locks": {path: [lock.to_dict() for lock in leases] for path, leases in self.locks.items() if leases},
            "modifications": [m.to_dict() for m in self.modifications],
            "refactor_suggestions": [s.to_dict() for s in self.refactor_suggestions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Workflow":
        locks: dict[str, list[FileLock]] = {}
        for path, entry in (data.get("locks") or {}).items():
            # Older documents hold a single lease mapping per path
            entries = [entry] if isinstance(entry, dict) else entry or []
            locks[path] = [FileLock.from_dict(lock) for lock in entries]

        return cls(
            version=str(data.get("version", "1.0")),
            project=data.get("project", ""),
            created_at=parse_timestamp(data["created_at"]),
            updated_at=parse_timestamp(data["updated_at"]),
            config=WorkflowConfig.from_dict(data.get("config")),
            agents={agent_id: Agent.from_dict(a) for agent_id, a in (data.get("agents") or {}).items()},
            tasks={task_id: Task.from_dict(t) for task_id, t in (data.get("tasks") or {}).items()},
            locks=locks,
            modifications=[FileModification.from_dict(m) for m in data.get("modifications") or []],
            refactor_suggestions=[RefactorSuggestion.from_dict(s) for s in data.get("refactor_suggestions") or []],
        )
