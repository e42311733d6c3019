"""Configuration commands for the agent workflow CLI."""

from cyclopts import App

from agent_workflow.config import DEFAULTS, get_config

config_app = App(name="config", help="Manage CLI settings")


@config_app.command
def set(key: str, value: str, global_: bool = False) -> None:
    """Set a setting.

    Args:
        key: Setting key, e.g. agent.name
        value: Setting value
        global_: Write to the global settings file instead of the local one
    """
    get_config(use_global=global_).set(key, value)
    scope = "global" if global_ else "local"
    print(f"Set {key} = {value} ({scope})")


@config_app.command
def unset(key: str, global_: bool = False) -> None:
    """Remove a setting."""
    get_config(use_global=global_).unset(key)
    scope = "global" if global_ else "local"
    print(f"Unset {key} ({scope})")


@config_app.command
def get(key: str, global_: bool = False) -> None:
    """Show a setting, including built-in defaults."""
    value = get_config(use_global=global_).get(key)
    if value is None:
        print(f"{key} is not set")
    else:
        print(f"{key} = {value}")


@config_app.command(name="list")
def list_config(global_: bool = False) -> None:
    """List explicitly set settings, followed by the known keys."""
    settings = get_config(use_global=global_).list()

    if settings:
        print("Settings:\n")
        for key, value in settings.items():
            print(f"{key} = {value}")
    else:
        print(f"No {'global' if global_ else 'local'} settings")

    print(f"\nKnown keys: {', '.join(DEFAULTS)}")
