"""Agent identity, liveness and takeover."""

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from agent_workflow.locks import merge_methods
from agent_workflow.models import Agent, AgentStatus, FileLock, Workflow, generate_id, random_token, utcnow
from agent_workflow.results import AgentStats, AgentTakeoverResult, ErrorKind
from agent_workflow.store import WorkflowStore

logger = structlog.get_logger()


class AgentRegistry:
    """Owns the agents recorded in the shared workflow document.

    The "current" agent is the one whose id the store remembers for the invoking context.
    """

    def __init__(self, store: WorkflowStore, clock: Callable[[], datetime] = utcnow) -> None:
        self.store = store
        self.clock = clock

    def _resolve_or_create(self, workflow: Workflow, name: str | None) -> Agent:
        """Resolve the current agent inside an open document, minting one if needed."""
        now = self.clock()
        agent_id = self.store.get_local_agent_id()

        if agent_id and agent_id in workflow.agents:
            agent = workflow.agents[agent_id]
            agent.last_active = now
            agent.status = AgentStatus.ACTIVE
            return agent

        agent = Agent(
            id=generate_id("ea"),
            name=name or f"Agent {len(workflow.agents) + 1}",
            session_id=random_token(8),
            status=AgentStatus.ACTIVE,
            last_active=now,
            created_at=now,
        )
        workflow.agents[agent.id] = agent
        logger.info("Agent registered", agent_id=agent.id, name=agent.name)
        return agent

    def get_or_create_current_agent(self, name: str | None = None) -> Agent:
        """Return the current agent, refreshing its liveness, or register a new one.

        Args:
            name: Display name used only when a new agent is created

        Returns:
            The current agent
        """
        with self.store.transaction() as workflow:
            agent = self._resolve_or_create(workflow, name)
        self.store.save_local_agent_id(agent.id)
        return agent

    def get_current_agent(self) -> Agent | None:
        agent_id = self.store.get_local_agent_id()
        if not agent_id:
            return None
        return self.store.load().agents.get(agent_id)

    def get_agent(self, agent_id: str) -> Agent | None:
        return self.store.load().agents.get(agent_id)

    def _reclassify(self, workflow: Workflow) -> bool:
        """Demote active agents that have been idle longer than the inactivity timeout."""
        cutoff = self.clock() - timedelta(milliseconds=workflow.config.inactive_timeout)
        changed = False
        for agent in workflow.agents.values():
            if agent.status == AgentStatus.ACTIVE and agent.last_active < cutoff:
                agent.status = AgentStatus.INACTIVE
                changed = True
                logger.debug("Agent marked inactive", agent_id=agent.id)
        return changed

    def list_agents(self, include_terminated: bool = False) -> list[Agent]:
        """List agents, most recently active first, after demoting idle ones."""
        workflow = self.store.load()
        if self._reclassify(workflow):
            with self.store.transaction() as workflow:
                self._reclassify(workflow)

        agents = list(workflow.agents.values())
        if not include_terminated:
            agents = [a for a in agents if a.status != AgentStatus.TERMINATED]
        return sorted(agents, key=lambda a: a.last_active, reverse=True)

    def _update_current(self, update: Callable[[Agent], None]) -> bool:
        agent_id = self.store.get_local_agent_id()
        if not agent_id:
            return False

        with self.store.transaction() as workflow:
            agent = workflow.agents.get(agent_id)
            if agent is None:
                return False
            update(agent)
        return True

    def rename_agent(self, new_name: str) -> bool:
        def rename(agent: Agent) -> None:
            agent.name = new_name
            agent.last_active = self.clock()

        renamed = self._update_current(rename)
        if renamed:
            logger.info("Agent renamed", name=new_name)
        return renamed

    def touch_agent(self) -> bool:
        """Refresh the current agent's liveness."""

        def touch(agent: Agent) -> None:
            agent.last_active = self.clock()
            agent.status = AgentStatus.ACTIVE

        return self._update_current(touch)

    def deactivate_agent(self) -> bool:
        """Mark the current agent inactive and forget the local identity."""

        def deactivate(agent: Agent) -> None:
            agent.status = AgentStatus.INACTIVE

        if not self._update_current(deactivate):
            return False
        self.store.clear_local_agent_id()
        logger.info("Agent deactivated")
        return True

    def takeover_agent(self, target_agent_id: str) -> AgentTakeoverResult:
        """Move another agent's claimed tasks and leases to the current agent.

        The target ends terminated with no claims. This is the only way an agent becomes
        terminated.
        """
        with self.store.transaction() as workflow:
            target = workflow.agents.get(target_agent_id)
            if target is None:
                return AgentTakeoverResult(False, f"Agent {target_agent_id} not found", ErrorKind.NOT_FOUND)
            if target.status == AgentStatus.TERMINATED:
                return AgentTakeoverResult(False, "Agent is already terminated", ErrorKind.INVALID_STATE)
            if self.store.get_local_agent_id() == target_agent_id:
                return AgentTakeoverResult(False, "Cannot takeover yourself", ErrorKind.INVALID_STATE)

            current = self._resolve_or_create(workflow, None)

            inherited = list(target.claimed_tasks)
            for task_id in inherited:
                task = workflow.tasks.get(task_id)
                if task is not None:
                    task.assigned_agent = current.id
                if task_id not in current.claimed_tasks:
                    current.claimed_tasks.append(task_id)

            for path, leases in workflow.locks.items():
                workflow.locks[path] = _transfer_leases(leases, target_agent_id, current.id)

            target.status = AgentStatus.TERMINATED
            target.claimed_tasks = []
            current.last_active = self.clock()

        self.store.save_local_agent_id(current.id)
        logger.info("Agent taken over", target_agent_id=target_agent_id, agent_id=current.id, tasks=inherited)
        return AgentTakeoverResult(
            True, f"Took over {len(inherited)} tasks from {target.name}", inherited_tasks=inherited
        )

    def cleanup_terminated_agents(self, older_than_days: int = 7) -> int:
        """Permanently delete terminated agents idle since before the cutoff."""
        cutoff = self.clock() - timedelta(days=older_than_days)
        with self.store.transaction() as workflow:
            stale = [
                agent_id
                for agent_id, agent in workflow.agents.items()
                if agent.status == AgentStatus.TERMINATED and agent.last_active < cutoff
            ]
            for agent_id in stale:
                del workflow.agents[agent_id]

        if stale:
            logger.info("Terminated agents cleaned up", count=len(stale))
        return len(stale)

    def get_agent_stats(self) -> AgentStats:
        agents = self.list_agents(include_terminated=True)
        return AgentStats(
            total=len(agents),
            active=sum(1 for a in agents if a.status == AgentStatus.ACTIVE),
            inactive=sum(1 for a in agents if a.status == AgentStatus.INACTIVE),
            terminated=sum(1 for a in agents if a.status == AgentStatus.TERMINATED),
        )


def _transfer_leases(leases: list[FileLock], source_id: str, target_id: str) -> list[FileLock]:
    """Reassign a path's leases from one agent to another, merging if the target already holds one."""
    source = next((lock for lock in leases if lock.locked_by == source_id), None)
    if source is None:
        return leases

    existing = next((lock for lock in leases if lock.locked_by == target_id), None)
    if existing is None:
        source.locked_by = target_id
        return leases

    existing.methods = merge_methods(existing.methods, source.methods)
    existing.expires_at = max(existing.expires_at, source.expires_at)
    return [lock for lock in leases if lock is not source]
