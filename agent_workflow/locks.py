"""File lease coordination: acquisition, release, expiry and modification tracking."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from agent_workflow.models import (
    WILDCARD,
    FileLock,
    FileModification,
    RefactorSuggestion,
    SuggestionPriority,
    Workflow,
    generate_id,
    utcnow,
)
from agent_workflow.results import (
    ErrorKind,
    LockAcquireResult,
    LockReleaseResult,
    LockStatus,
    LockWaitResult,
    WaitInfo,
)
from agent_workflow.store import WorkflowStore

logger = structlog.get_logger()

REFACTOR_WINDOW = timedelta(hours=24)


@dataclass
class ModificationInput:
    """Changes an agent reports when releasing a lease."""

    lines_changed: str
    reason: str
    method: str | None = None
    task_id: str | None = None


def merge_methods(held: list[str], requested: list[str]) -> list[str]:
    """Union of two method lists, keeping the order in which methods first appear."""
    return list(dict.fromkeys([*held, *requested]))


def _milliseconds(delta: timedelta) -> int:
    return int(delta / timedelta(milliseconds=1))


class LockCoordinator:
    """Owns the per-path leases, modification history and refactor suggestions.

    Each path holds at most one lease per agent. Leases of different agents on the same path
    coexist as long as their method sets do not overlap.
    """

    def __init__(
        self,
        store: WorkflowStore,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the lock coordinator.

        Args:
            store: Shared document store
            clock: Source of the current time (aware UTC datetimes)
            sleep: Blocking sleep used between polls in ``wait_for_lock``, in seconds
        """
        self.store = store
        self.clock = clock
        self.sleep = sleep

    def _purge_expired(self, workflow: Workflow, path: str, now: datetime) -> bool:
        """Drop expired leases on a path. Returns True if anything was removed."""
        leases = workflow.locks.get(path)
        if not leases:
            workflow.locks.pop(path, None)
            return False

        live = [lock for lock in leases if not lock.is_expired(now)]
        if len(live) == len(leases):
            return False

        if live:
            workflow.locks[path] = live
        else:
            del workflow.locks[path]
        return True

    def acquire_lock(
        self,
        file_path: str,
        agent_id: str,
        methods: list[str] | None = None,
        reason: str = "Editing file",
        duration_ms: int | None = None,
        task_id: str | None = None,
    ) -> LockAcquireResult:
        """Acquire or extend a lease on a file.

        Args:
            file_path: File to lease
            agent_id: Requesting agent
            methods: Methods to lease (defaults to the whole file)
            reason: Free-text reason shown to waiting agents
            duration_ms: Lease duration; 0 or None means the workflow's ``lock_timeout``
            task_id: Task the edit belongs to

        Returns:
            Success with the lease, or a conflict carrying the holder's wait info

        Raises:
            ValueError: If ``duration_ms`` is negative
        """
        if duration_ms is not None and duration_ms < 0:
            raise ValueError(f"Lock duration must not be negative, got {duration_ms}")
        path = self.store.normalize_path(file_path)
        requested = list(dict.fromkeys(methods)) if methods else [WILDCARD]

        with self.store.transaction() as workflow:
            now = self.clock()
            self._purge_expired(workflow, path, now)
            duration = timedelta(milliseconds=duration_ms or workflow.config.lock_timeout)
            leases = workflow.locks.setdefault(path, [])

            own = next((lock for lock in leases if lock.locked_by == agent_id), None)
            if own is not None:
                own.expires_at = now + duration
                own.methods = merge_methods(own.methods, requested)
                logger.info("Lock extended", path=path, agent_id=agent_id, methods=own.methods)
                return LockAcquireResult(True, "Lock extended", lock=own)

            holder = next((lock for lock in leases if lock.conflicts_with(requested)), None)
            if holder is not None:
                logger.info("Lock conflict", path=path, agent_id=agent_id, locked_by=holder.locked_by)
                return LockAcquireResult(
                    False,
                    f"File locked by {holder.locked_by}",
                    ErrorKind.CONFLICT,
                    wait_info=WaitInfo(
                        locked_by=holder.locked_by,
                        reason=holder.reason,
                        expires_in_ms=max(0, _milliseconds(holder.expires_at - now)),
                        methods=list(holder.methods),
                    ),
                )

            lock = FileLock(
                locked_by=agent_id,
                locked_at=now,
                expires_at=now + duration,
                methods=requested,
                reason=reason,
                task_id=task_id,
            )
            leases.append(lock)

        logger.info("Lock acquired", path=path, agent_id=agent_id, methods=requested, task_id=task_id)
        return LockAcquireResult(True, "Lock acquired successfully", lock=lock)

    def release_lock(
        self, file_path: str, agent_id: str, modification: ModificationInput | None = None
    ) -> LockReleaseResult:
        """Release an agent's lease, recording its modification if one is given."""
        path = self.store.normalize_path(file_path)

        with self.store.transaction() as workflow:
            leases = workflow.locks.get(path) or []
            if not leases:
                return LockReleaseResult(False, "No lock found for this file", ErrorKind.NOT_FOUND)

            own = next((lock for lock in leases if lock.locked_by == agent_id), None)
            if own is None:
                owners = ", ".join(lock.locked_by for lock in leases)
                return LockReleaseResult(False, f"Lock owned by {owners}, not {agent_id}", ErrorKind.CONFLICT)

            if modification is not None:
                workflow.modifications.append(
                    FileModification(
                        file=path,
                        method=modification.method,
                        modified_by=agent_id,
                        modified_at=self.clock(),
                        lines_changed=modification.lines_changed,
                        reason=modification.reason,
                        task_id=modification.task_id,
                    )
                )
                self._check_refactor_suggestion(workflow, path, modification.method)

            remaining = [lock for lock in leases if lock is not own]
            if remaining:
                workflow.locks[path] = remaining
            else:
                del workflow.locks[path]

        logger.info("Lock released", path=path, agent_id=agent_id, recorded=modification is not None)
        return LockReleaseResult(True, "Lock released successfully")

    def get_lock_status(self, file_path: str) -> LockStatus:
        """Report the live leases on a file, purging expired ones."""
        path = self.store.normalize_path(file_path)
        workflow = self.store.load()
        had_leases = bool(workflow.locks.get(path))

        if any(lock.is_expired(self.clock()) for lock in workflow.locks.get(path) or []):
            with self.store.transaction() as workflow:
                had_leases = bool(workflow.locks.get(path))
                self._purge_expired(workflow, path, self.clock())
            logger.debug("Purged expired locks", path=path)

        leases = workflow.locks.get(path) or []
        if not leases:
            return LockStatus(locked=False, expired=had_leases)
        return LockStatus(locked=True, locks=list(leases))

    def wait_for_lock(
        self, file_path: str, timeout_ms: int = 180_000, poll_interval_ms: int = 5_000
    ) -> LockWaitResult:
        """Poll until a file has no live lease or the timeout elapses.

        Returns:
            On release, the modifications to the file recorded since the wait began
        """
        path = self.store.normalize_path(file_path)
        started = self.clock()
        deadline = started + timedelta(milliseconds=timeout_ms)
        logger.debug("Waiting for lock", path=path, timeout_ms=timeout_ms)

        while self.clock() < deadline:
            if not self.get_lock_status(path).locked:
                workflow = self.store.load()
                recent = [m for m in workflow.modifications if m.file == path and m.modified_at >= started]
                logger.info("Lock became free", path=path, modifications=len(recent))
                return LockWaitResult(released=True, modifications=recent)

            self.sleep(poll_interval_ms / 1000)

        logger.info("Timed out waiting for lock", path=path, timeout_ms=timeout_ms)
        return LockWaitResult(released=False, timeout=True, error=ErrorKind.TIMEOUT)

    def get_modification_history(self, file_path: str = "", limit: int | None = None) -> list[FileModification]:
        """Modifications to a file (or to every file when the path is empty), newest first."""
        workflow = self.store.load()
        if file_path:
            path = self.store.normalize_path(file_path)
            modifications = [m for m in workflow.modifications if m.file == path]
        else:
            modifications = list(workflow.modifications)

        modifications.sort(key=lambda m: m.modified_at, reverse=True)
        if limit:
            modifications = modifications[:limit]
        return modifications

    def get_all_locks(self) -> dict[str, list[FileLock]]:
        now = self.clock()
        active: dict[str, list[FileLock]] = {}
        for path, leases in self.store.load().locks.items():
            live = [lock for lock in leases if not lock.is_expired(now)]
            if live:
                active[path] = live
        return active

    def force_release_lock(self, file_path: str) -> bool:
        """Remove every lease on a file regardless of owner."""
        path = self.store.normalize_path(file_path)
        with self.store.transaction() as workflow:
            if not workflow.locks.pop(path, None):
                return False

        logger.info("Lock force-released", path=path)
        return True

    def cleanup_expired_locks(self) -> int:
        """Remove expired leases everywhere. Returns how many leases were dropped."""
        cleaned = 0
        with self.store.transaction() as workflow:
            now = self.clock()
            for path in list(workflow.locks):
                before = len(workflow.locks[path])
                self._purge_expired(workflow, path, now)
                cleaned += before - len(workflow.locks.get(path, []))

        if cleaned:
            logger.info("Expired locks cleaned up", count=cleaned)
        return cleaned

    def _check_refactor_suggestion(self, workflow: Workflow, path: str, method: str | None) -> None:
        """Raise a refactor suggestion when a file or method changes too often within a day.

        Without a method every modification to the file counts. A suggestion fires once per
        key and keeps its priority until dismissed.
        """
        threshold = workflow.config.auto_refactor_threshold
        now = self.clock()
        window_start = now - REFACTOR_WINDOW

        count = sum(
            1
            for m in workflow.modifications
            if m.file == path and (method is None or m.method == method) and m.modified_at > window_start
        )
        if count < threshold:
            return

        existing = next(
            (s for s in workflow.refactor_suggestions if s.file == path and (method is None or s.method == method)),
            None,
        )
        if existing is not None:
            logger.debug("Refactor suggestion already exists", path=path, method=method, suggestion_id=existing.id)
            return

        if method:
            reason = f'Method "{method}" has been modified {count} times in the last 24 hours'
        else:
            reason = f"File has been modified {count} times in the last 24 hours"

        suggestion = RefactorSuggestion(
            id=generate_id("refactor"),
            file=path,
            method=method,
            reason=reason,
            created_at=now,
            priority=SuggestionPriority.HIGH if count >= threshold * 2 else SuggestionPriority.MEDIUM,
        )
        workflow.refactor_suggestions.append(suggestion)
        logger.info("Refactor suggested", path=path, method=method, count=count, priority=suggestion.priority.value)

    def get_refactor_suggestions(self, file_path: str | None = None) -> list[RefactorSuggestion]:
        suggestions = self.store.load().refactor_suggestions
        if file_path:
            path = self.store.normalize_path(file_path)
            return [s for s in suggestions if s.file == path]
        return list(suggestions)

    def dismiss_refactor_suggestion(self, suggestion_id: str) -> bool:
        with self.store.transaction() as workflow:
            remaining = [s for s in workflow.refactor_suggestions if s.id != suggestion_id]
            if len(remaining) == len(workflow.refactor_suggestions):
                return False
            workflow.refactor_suggestions = remaining

        logger.info("Refactor suggestion dismissed", suggestion_id=suggestion_id)
        return True
