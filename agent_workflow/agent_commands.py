"""Agent identity commands for the agent workflow CLI."""

from cyclopts import App

agent_app = App(name="agent", help="Manage agent identities")


@agent_app.command
def whoami() -> None:
    """Show the agent registered in this context."""
    from agent_workflow.cli import get_agents

    agent = get_agents().get_current_agent()
    if agent is None:
        print("No agent registered. Run 'aw agent register' or claim a task.")
        return

    print(f"Agent: {agent.name} ({agent.id})")
    print(f"Status: {agent.status.value}")
    print(f"Claimed tasks: {', '.join(agent.claimed_tasks) or '-'}")
    print(f"Last active: {agent.last_active.isoformat()}")


@agent_app.command
def register(name: str | None = None) -> None:
    """Register (or refresh) the agent for this context."""
    from agent_workflow.cli import get_agents
    from agent_workflow.config import get_config

    agent = get_agents().get_or_create_current_agent(name or get_config().get("agent.name"))
    print(f"✓ Agent: {agent.name} ({agent.id})")


@agent_app.command(name="list")
def list_agents(all_: bool = False) -> None:
    """List agents, most recently active first.

    Args:
        all_: Include terminated agents
    """
    from agent_workflow.cli import get_agents

    agents = get_agents().list_agents(include_terminated=all_)
    if not agents:
        print("No agents found.")
        return

    for agent in agents:
        marker = "●" if agent.status.value == "active" else "○"
        tasks = f" tasks={','.join(agent.claimed_tasks)}" if agent.claimed_tasks else ""
        print(f"{marker} {agent.id}: {agent.name} ({agent.status.value}){tasks}")


@agent_app.command
def rename(name: str) -> None:
    """Rename the current agent."""
    from agent_workflow.cli import fail, get_agents

    if not get_agents().rename_agent(name):
        fail("No agent registered in this context.")
    print(f"✓ Renamed to {name}")


@agent_app.command
def takeover(agent_id: str) -> None:
    """Inherit another agent's tasks and leases, terminating it."""
    from agent_workflow.cli import fail, get_agents

    result = get_agents().takeover_agent(agent_id)
    if not result.success:
        fail(result.message)
    print(f"✓ {result.message}")
    if result.inherited_tasks:
        print(f"  Inherited: {', '.join(result.inherited_tasks)}")


@agent_app.command
def deactivate() -> None:
    """Mark the current agent inactive and forget it in this context."""
    from agent_workflow.cli import fail, get_agents

    if not get_agents().deactivate_agent():
        fail("No agent registered in this context.")
    print("✓ Agent deactivated")


@agent_app.command
def cleanup(days: int = 7) -> None:
    """Delete terminated agents idle for more than the given number of days."""
    from agent_workflow.cli import get_agents

    count = get_agents().cleanup_terminated_agents(days)
    print(f"Removed {count} terminated agent(s)")
