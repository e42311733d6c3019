"""CLI for agent workflow coordination."""

import sys
from typing import Annotated, Literal

import structlog
from cyclopts import App, Parameter

from agent_workflow.agent_commands import agent_app
from agent_workflow.agents import AgentRegistry
from agent_workflow.config_commands import config_app
from agent_workflow.lock_commands import lock_app
from agent_workflow.locks import LockCoordinator
from agent_workflow.models import WorkflowConfig
from agent_workflow.status_commands import status_app
from agent_workflow.store import WorkflowNotInitializedError, YamlWorkflowStore
from agent_workflow.task_commands import task_app
from agent_workflow.tasks import TaskCoordinator

logger = structlog.get_logger()

app = App(
    name="aw",
    help="Agent Workflow - coordinate independent agents through one shared document",
)

app.command(task_app)
app.command(lock_app)
app.command(agent_app)
app.command(status_app)
app.command(config_app)


def configure_logging(log_level: str) -> None:
    """Configure structlog with the specified log level."""
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(min_level=log_level.lower()))


def get_store() -> YamlWorkflowStore:
    """Get the store for the current directory, exiting if it was never initialized."""
    store = YamlWorkflowStore()
    if not store.is_initialized():
        print("Workflow not initialized. Run 'aw init' first.")
        sys.exit(1)
    return store


def get_tasks() -> TaskCoordinator:
    return TaskCoordinator(get_store())


def get_locks() -> LockCoordinator:
    return LockCoordinator(get_store())


def get_agents() -> AgentRegistry:
    return AgentRegistry(get_store())


def fail(message: str) -> None:
    print(f"✗ {message}")
    sys.exit(1)


def split_list(value: str | None) -> list[str]:
    """Split a comma-separated option into trimmed, non-empty items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@app.command
def init(
    name: str | None = None,
    force: bool = False,
    lock_timeout: int = 180000,
    max_parallel_agents: int = 5,
    refactor_threshold: int = 3,
    inactive_timeout: int = 600000,
) -> None:
    """Initialize a workflow in the current directory.

    Args:
        name: Project name (defaults to the directory name)
        force: Overwrite an existing workflow
        lock_timeout: Default lease duration in milliseconds
        max_parallel_agents: Advisory cap on concurrent agents
        refactor_threshold: Modifications per day that trigger a refactor suggestion
        inactive_timeout: Idle time in milliseconds before an agent counts as inactive
    """
    store = YamlWorkflowStore()
    if store.is_initialized() and not force:
        fail("Workflow already initialized. Use --force to overwrite.")

    workflow = store.initialize(
        name,
        config=WorkflowConfig(
            lock_timeout=lock_timeout,
            max_parallel_agents=max_parallel_agents,
            auto_refactor_threshold=refactor_threshold,
            inactive_timeout=inactive_timeout,
        ),
        force=force,
    )
    print(f"✓ Initialized workflow for {workflow.project}")
    print(f"  Document: {store.workflow_file}")


@app.meta.default
def main(
    *tokens: Annotated[str, Parameter(show=False, allow_leading_hyphen=True)],
    log_level: Literal["debug", "info", "warning", "error", "critical"] = "critical",
) -> None:
    """Main entry point with global options."""
    configure_logging(log_level)
    try:
        app(tokens)
    except WorkflowNotInitializedError as e:
        fail(str(e))


def run() -> None:
    app.meta()


if __name__ == "__main__":
    run()
