"""File lease commands for the agent workflow CLI."""

from cyclopts import App

from agent_workflow.locks import ModificationInput
from agent_workflow.models import FileLock

lock_app = App(name="lock", help="Lease files (or methods within them) while editing")


def _describe(lock: FileLock) -> str:
    methods = ", ".join(lock.methods)
    task = f" task={lock.task_id}" if lock.task_id else ""
    return f"{lock.locked_by} [{methods}] until {lock.expires_at.isoformat()} - {lock.reason}{task}"


@lock_app.command
def acquire(
    file: str,
    methods: str | None = None,
    reason: str = "Editing file",
    duration: int | None = None,
    task: str | None = None,
) -> None:
    """Acquire a lease on a file.

    Args:
        file: File path
        methods: Comma-separated methods to lease (defaults to the whole file)
        reason: Why the file is being edited
        duration: Lease duration in milliseconds
        task: Associated task id
    """
    from agent_workflow.cli import fail, get_agents, get_locks, split_list

    agent = get_agents().get_or_create_current_agent()
    try:
        result = get_locks().acquire_lock(
            file,
            agent.id,
            methods=split_list(methods) or None,
            reason=reason,
            duration_ms=duration,
            task_id=task,
        )
    except ValueError as e:
        fail(str(e))
    if result.success:
        print(f"✓ {result.message}: {file}")
        if result.lock:
            print(f"  Methods: {', '.join(result.lock.methods)}")
            print(f"  Expires: {result.lock.expires_at.isoformat()}")
        return

    if result.wait_info:
        info = result.wait_info
        print(f"  Locked by: {info.locked_by}")
        print(f"  Reason: {info.reason}")
        print(f"  Methods: {', '.join(info.methods)}")
        print(f"  Expires in: {info.expires_in_ms // 1000}s")
        print(f"  Run 'aw lock wait {file}' to wait for release.")
    fail(result.message)


@lock_app.command
def release(
    file: str,
    changes: str | None = None,
    lines: str = "",
    method: str | None = None,
    task: str | None = None,
) -> None:
    """Release a lease, optionally recording what changed.

    Args:
        file: File path
        changes: Description of the changes made; records a modification when given
        lines: Lines changed, e.g. "15-22"
        method: Method that was modified
        task: Associated task id
    """
    from agent_workflow.cli import fail, get_agents, get_locks

    agent = get_agents().get_or_create_current_agent()
    modification = None
    if changes:
        modification = ModificationInput(lines_changed=lines, reason=changes, method=method, task_id=task)

    result = get_locks().release_lock(file, agent.id, modification)
    if not result.success:
        fail(result.message)
    print(f"✓ {result.message}: {file}")


@lock_app.command
def status(file: str | None = None) -> None:
    """Show the leases on a file, or every live lease."""
    from agent_workflow.cli import get_locks

    locks = get_locks()
    if file:
        state = locks.get_lock_status(file)
        if not state.locked:
            suffix = " (previous lease expired)" if state.expired else ""
            print(f"{file} is not locked{suffix}")
            return
        print(f"{file}:")
        for lock in state.locks:
            print(f"  {_describe(lock)}")
        return

    all_locks = locks.get_all_locks()
    if not all_locks:
        print("No active locks")
        return
    for path, leases in all_locks.items():
        print(f"{path}:")
        for lock in leases:
            print(f"  {_describe(lock)}")


@lock_app.command
def wait(file: str, timeout: int | None = None, interval: int | None = None) -> None:
    """Wait until a file is no longer leased.

    Args:
        file: File path
        timeout: Give up after this many milliseconds
        interval: Poll interval in milliseconds
    """
    from agent_workflow.cli import fail, get_locks
    from agent_workflow.config import get_config

    config = get_config()
    print(f"Waiting for {file}...")
    result = get_locks().wait_for_lock(
        file,
        timeout_ms=timeout or config.get_int("lock.wait_timeout_ms"),
        poll_interval_ms=interval or config.get_int("lock.poll_interval_ms"),
    )
    if not result.released:
        fail(f"Timed out waiting for {file}")

    print(f"✓ {file} is free")
    for mod in result.modifications:
        method = f" {mod.method}" if mod.method else ""
        print(f"  {mod.modified_by}{method} {mod.lines_changed}: {mod.reason}")


@lock_app.command
def history(file: str = "", limit: int = 10) -> None:
    """Show modification history for a file (or all files)."""
    from agent_workflow.cli import get_locks

    modifications = get_locks().get_modification_history(file, limit=limit)
    if not modifications:
        print("No modifications recorded")
        return
    for mod in modifications:
        method = f"#{mod.method}" if mod.method else ""
        print(f"{mod.modified_at.isoformat()} {mod.file}{method} by {mod.modified_by}: {mod.reason}")


@lock_app.command(name="force-release")
def force_release(file: str) -> None:
    """Remove every lease on a file regardless of owner."""
    from agent_workflow.cli import fail, get_locks

    if not get_locks().force_release_lock(file):
        fail(f"No lock found for {file}")
    print(f"✓ Force-released {file}")


@lock_app.command
def cleanup() -> None:
    """Remove expired leases."""
    from agent_workflow.cli import get_locks

    count = get_locks().cleanup_expired_locks()
    print(f"Cleaned up {count} expired lock(s)")
