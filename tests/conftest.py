"""Shared fixtures for agent workflow tests."""

import logging
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import structlog

from agent_workflow.agents import AgentRegistry
from agent_workflow.locks import LockCoordinator
from agent_workflow.models import WorkflowConfig
from agent_workflow.store import YamlWorkflowStore
from agent_workflow.tasks import TaskCoordinator


class FakeClock:
    """Controllable clock; ``sleep`` advances time instead of blocking."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, milliseconds: int = 0, **kwargs: float) -> None:
        self.now += timedelta(milliseconds=milliseconds, **kwargs)

    def sleep(self, seconds: float) -> None:
        self.advance(seconds * 1000)


@pytest.fixture(autouse=True)
def quiet_logging() -> Iterator[None]:
    """Keep log events off stdout so command output can be asserted on."""
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(logging.CRITICAL))
    yield
    structlog.reset_defaults()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path) -> YamlWorkflowStore:
    """An initialized workflow store in a temporary project."""
    store = YamlWorkflowStore(tmp_path)
    store.initialize("demo", config=WorkflowConfig(auto_refactor_threshold=3))
    return store


@pytest.fixture
def tasks(store: YamlWorkflowStore, clock: FakeClock) -> TaskCoordinator:
    return TaskCoordinator(store, clock=clock)


@pytest.fixture
def locks(store: YamlWorkflowStore, clock: FakeClock) -> LockCoordinator:
    return LockCoordinator(store, clock=clock, sleep=clock.sleep)


@pytest.fixture
def agents(store: YamlWorkflowStore, clock: FakeClock) -> AgentRegistry:
    return AgentRegistry(store, clock=clock)
