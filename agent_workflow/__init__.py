"""Agent workflow - coordinate independent agents through one shared document."""

from agent_workflow.agents import AgentRegistry
from agent_workflow.locks import LockCoordinator, ModificationInput
from agent_workflow.store import WorkflowNotInitializedError, WorkflowStore, YamlWorkflowStore
from agent_workflow.tasks import TaskCoordinator

__all__ = [
    "AgentRegistry",
    "LockCoordinator",
    "ModificationInput",
    "TaskCoordinator",
    "WorkflowNotInitializedError",
    "WorkflowStore",
    "YamlWorkflowStore",
]
