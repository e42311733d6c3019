"""Shared document store for the workflow, persisted as YAML."""

import contextlib
import os
import sys
from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path
from typing import IO

import structlog
import yaml

from agent_workflow.models import Workflow, WorkflowConfig, utcnow

logger = structlog.get_logger()

WORKFLOW_DIR = ".agent-workflow"
WORKFLOW_FILE = "workflow.yaml"
LOCK_FILE = "workflow.lock"
AGENT_ID_FILE = ".agent_id"
OUTPUTS_DIR = "outputs"


class WorkflowNotInitializedError(RuntimeError):
    """Raised when a coordinator runs before the workflow document exists."""


class WorkflowStore(ABC):
    """Abstract contract for the shared workflow document.

    The store reads and writes the whole document at once. Coordinators treat every
    ``load()`` result as a private snapshot and must ``save()`` it to publish changes.
    """

    @abstractmethod
    def is_initialized(self) -> bool:
        """Whether a workflow document exists."""
        pass

    @abstractmethod
    def initialize(
        self, project: str | None = None, config: WorkflowConfig | None = None, force: bool = False
    ) -> Workflow:
        """Create and persist a fresh workflow document."""
        pass

    @abstractmethod
    def load(self) -> Workflow:
        """Load the full document."""
        pass

    @abstractmethod
    def save(self, workflow: Workflow) -> None:
        """Persist the full document, stamping its update time."""
        pass

    @contextlib.contextmanager
    def transaction(self) -> Iterator[Workflow]:
        """Load the document, yield it for mutation and save it on normal exit.

        Nothing is written if the block raises or leaves the document unchanged.
        """
        workflow = self.load()
        snapshot = workflow.to_dict()
        yield workflow
        if workflow.to_dict() != snapshot:
            self.save(workflow)

    @abstractmethod
    def write_output(self, task_id: str, content: str) -> str:
        """Store large task output outside the document and return a reference to it."""
        pass

    @abstractmethod
    def read_output(self, task_id: str) -> str | None:
        """Read task output previously stored with ``write_output``."""
        pass

    @abstractmethod
    def get_local_agent_id(self) -> str | None:
        """Agent id remembered for the invoking context."""
        pass

    @abstractmethod
    def save_local_agent_id(self, agent_id: str) -> None:
        pass

    @abstractmethod
    def clear_local_agent_id(self) -> None:
        pass

    def normalize_path(self, file_path: str) -> str:
        """Canonicalize path separators so a file has one lock key on every platform."""
        return file_path.replace("\\", "/")


class YamlWorkflowStore(WorkflowStore):
    """Workflow store backed by ``.agent-workflow/workflow.yaml`` in a project directory.

    Each transaction holds an OS advisory lock on ``workflow.lock`` for the whole
    load/modify/save cycle. That serializes cooperating processes on one machine; writers
    that bypass the store are not protected. Saves replace the document atomically, so reads
    outside a transaction always see a complete one.
    """

    def __init__(self, project_root: Path | str | None = None) -> None:
        """Initialize the store.

        Args:
            project_root: Directory containing ``.agent-workflow`` (defaults to the current directory)
        """
        self.project_root = Path(project_root) if project_root is not None else Path.cwd()
        self.workflow_dir = self.project_root / WORKFLOW_DIR
        self.workflow_file = self.workflow_dir / WORKFLOW_FILE
        self.lock_file = self.workflow_dir / LOCK_FILE
        self.outputs_dir = self.workflow_dir / OUTPUTS_DIR
        self.agent_id_file = self.workflow_dir / AGENT_ID_FILE
        self._lock_depth = 0
        logger.debug("Workflow store initialized", workflow_file=str(self.workflow_file))

    def is_initialized(self) -> bool:
        return self.workflow_file.exists()

    def initialize(
        self, project: str | None = None, config: WorkflowConfig | None = None, force: bool = False
    ) -> Workflow:
        """Create the workflow directory and an empty document.

        Args:
            project: Project name (defaults to the project directory name)
            config: Coordination settings for the new document
            force: Overwrite an existing document

        Returns:
            The new workflow document
        """
        if self.is_initialized() and not force:
            raise ValueError(f"Workflow already initialized at {self.workflow_file}")

        self.outputs_dir.mkdir(parents=True, exist_ok=True)
        workflow = Workflow.create(project or self.project_root.resolve().name, config=config)
        with self._exclusive():
            self._write(workflow)

        gitignore = self.workflow_dir / ".gitignore"
        gitignore.write_text(f"{AGENT_ID_FILE}\n{LOCK_FILE}\n{WORKFLOW_FILE}.tmp\n", encoding="utf-8")

        logger.info("Workflow initialized", project=workflow.project, path=str(self.workflow_file))
        return workflow

    def load(self) -> Workflow:
        """Load the workflow document from YAML.

        Raises:
            WorkflowNotInitializedError: If no document has been initialized
        """
        if not self.is_initialized():
            raise WorkflowNotInitializedError(f"Workflow not initialized in {self.project_root}. Run 'aw init' first.")

        try:
            with open(self.workflow_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            workflow = Workflow.from_dict(data)
        except (yaml.YAMLError, KeyError, TypeError, ValueError) as e:
            logger.error("Failed to load workflow", error=str(e))
            raise ValueError(f"Failed to load workflow from {self.workflow_file}: {e}") from e

        logger.debug("Workflow loaded", tasks=len(workflow.tasks), agents=len(workflow.agents))
        return workflow

    def save(self, workflow: Workflow) -> None:
        with self._exclusive():
            self._write(workflow)

    @contextlib.contextmanager
    def transaction(self) -> Iterator[Workflow]:
        with self._exclusive():
            workflow = self.load()
            snapshot = workflow.to_dict()
            yield workflow
            if workflow.to_dict() != snapshot:
                self._write(workflow)

    def _write(self, workflow: Workflow) -> None:
        """Write the document through a temp file so readers never see a partial one."""
        workflow.updated_at = utcnow()
        temp_file = self.workflow_file.with_name(f"{WORKFLOW_FILE}.tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                yaml.safe_dump(workflow.to_dict(), f, default_flow_style=False, sort_keys=False, allow_unicode=True)
            os.replace(temp_file, self.workflow_file)
            logger.debug("Workflow saved", updated_at=workflow.updated_at.isoformat())
        except OSError as e:
            temp_file.unlink(missing_ok=True)
            logger.error("Failed to save workflow", error=str(e))
            raise ValueError(f"Failed to save workflow to {self.workflow_file}: {e}") from e

    @contextlib.contextmanager
    def _exclusive(self) -> Iterator[None]:
        """Hold an OS advisory lock on the workflow lock file.

        Reentrant within one store instance so ``save`` can be called inside a transaction.
        """
        if self._lock_depth:
            self._lock_depth += 1
            try:
                yield
            finally:
                self._lock_depth -= 1
            return

        self.workflow_dir.mkdir(parents=True, exist_ok=True)
        with open(self.lock_file, "a+") as lock_fd:
            _lock_fd(lock_fd)
            self._lock_depth = 1
            try:
                yield
            finally:
                self._lock_depth = 0
                _unlock_fd(lock_fd)

    def write_output(self, task_id: str, content: str) -> str:
        self.outputs_dir.mkdir(parents=True, exist_ok=True)
        output_path = self.outputs_dir / f"{task_id}.md"
        output_path.write_text(content, encoding="utf-8")
        logger.debug("Task output written", task_id=task_id, path=str(output_path))
        return str(output_path)

    def read_output(self, task_id: str) -> str | None:
        output_path = self.outputs_dir / f"{task_id}.md"
        if not output_path.exists():
            return None
        return output_path.read_text(encoding="utf-8")

    def get_local_agent_id(self) -> str | None:
        if not self.agent_id_file.exists():
            return None
        agent_id = self.agent_id_file.read_text(encoding="utf-8").strip()
        return agent_id or None

    def save_local_agent_id(self, agent_id: str) -> None:
        self.workflow_dir.mkdir(parents=True, exist_ok=True)
        self.agent_id_file.write_text(agent_id, encoding="utf-8")

    def clear_local_agent_id(self) -> None:
        self.agent_id_file.unlink(missing_ok=True)


def _lock_fd(lock_fd: IO[str]) -> None:
    if sys.platform == "win32":
        import msvcrt

        lock_fd.seek(0)
        msvcrt.locking(lock_fd.fileno(), msvcrt.LK_LOCK, 1)
    else:
        import fcntl

        fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX)


def _unlock_fd(lock_fd: IO[str]) -> None:
    if sys.platform == "win32":
        import msvcrt

        lock_fd.seek(0)
        msvcrt.locking(lock_fd.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl

        fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)
