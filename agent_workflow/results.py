"""Result types returned by coordinator operations."""

from dataclasses import dataclass, field
from enum import Enum

from agent_workflow.models import FileLock, FileModification, Task


class ErrorKind(str, Enum):
    """Why a coordinator operation did not succeed."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID_STATE = "invalid_state"
    TIMEOUT = "timeout"


@dataclass
class OperationResult:
    """Base result: a success flag, a human-readable message and an optional error kind."""

    success: bool
    message: str
    error: ErrorKind | None = None


@dataclass
class TaskClaimResult(OperationResult):
    task: Task | None = None
    agent_id: str | None = None


@dataclass
class TaskCompleteResult(OperationResult):
    unblocked_tasks: list[str] = field(default_factory=list)


@dataclass
class WaitInfo:
    """Describes the lease blocking an acquisition, so the caller can decide whether to wait."""

    locked_by: str
    reason: str
    expires_in_ms: int
    methods: list[str]


@dataclass
class LockAcquireResult(OperationResult):
    lock: FileLock | None = None
    wait_info: WaitInfo | None = None


@dataclass
class LockReleaseResult(OperationResult):
    pass


@dataclass
class LockStatus:
    locked: bool
    locks: list[FileLock] = field(default_factory=list)
    expired: bool = False


@dataclass
class LockWaitResult:
    released: bool
    modifications: list[FileModification] = field(default_factory=list)
    timeout: bool = False
    error: ErrorKind | None = None


@dataclass
class AgentTakeoverResult(OperationResult):
    inherited_tasks: list[str] = field(default_factory=list)


@dataclass
class TaskContext:
    task: Task
    context: dict[str, str] = field(default_factory=dict)


@dataclass
class Progress:
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    blocked: int = 0
    failed: int = 0
    percentage: int = 0


@dataclass
class AgentStats:
    total: int = 0
    active: int = 0
    inactive: int = 0
    terminated: int = 0
