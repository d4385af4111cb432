"""Serialised access to one live project and its checkpoints."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from enum import Enum
from typing import (
    AbstractSet,
    Callable,
    Generic,
    Iterable,
    Iterator,
    List,
    TypeVar,
)

import structlog

from .checkpoints import (
    CancellationToken,
    CheckpointListing,
    CheckpointStore,
    SceneRevision,
)
from .errors import BusyError
from .options import RestoreOptionSet
from .project import ProjectAccessor
from .restore import RestoreEngine, RestoreReport

logger = structlog.get_logger(__name__)

P = TypeVar("P", bound=ProjectAccessor)
T = TypeVar("T")


class CheckpointTrigger(str, Enum):
    """Why a checkpoint is being created."""

    MANUAL = "manual"
    BEFORE_IMPORT = "before_import"
    BEFORE_RESTORE = "before_restore"
    BEFORE_BULK_DELETE = "before_bulk_delete"

    @classmethod
    def parse(cls, value: "str | CheckpointTrigger") -> "CheckpointTrigger":
        if isinstance(value, CheckpointTrigger):
            return value
        normalised = str(value).strip().lower().replace("-", "_")
        try:
            return cls(normalised)
        except ValueError as exc:
            choices = ", ".join(trigger.value for trigger in cls)
            raise ValueError(
                f"Unknown checkpoint trigger '{value}'. Expected one of: {choices}."
            ) from exc

    @property
    def default_label(self) -> str:
        if self is CheckpointTrigger.MANUAL:
            return ""
        return "Before " + self.value[len("before_"):].replace("_", " ")


DEFAULT_AUTOMATIC_TRIGGERS: AbstractSet[CheckpointTrigger] = frozenset(
    {CheckpointTrigger.BEFORE_IMPORT}
)


class ProjectSession(Generic[P]):
    """Owns a live project and coordinates checkpoint work against it.

    Two locks are involved. The operation lock admits one create or restore
    at a time and is never waited on: a second caller gets
    :class:`BusyError`. The mutation lock guards the project itself and is
    shared with :meth:`edit`, so a snapshot or merge never observes a
    half-applied edit.
    """

    def __init__(
        self,
        project: P,
        store: CheckpointStore,
        *,
        engine: RestoreEngine | None = None,
        automatic_triggers: Iterable[CheckpointTrigger | str] = DEFAULT_AUTOMATIC_TRIGGERS,
    ) -> None:
        self._project = project
        self._store = store
        self._engine = engine or RestoreEngine()
        self._automatic_triggers = frozenset(
            CheckpointTrigger.parse(trigger) for trigger in automatic_triggers
        )
        self._operation_lock = threading.Lock()
        self._mutation_lock = threading.RLock()

    @property
    def project(self) -> P:
        return self._project

    @property
    def store(self) -> CheckpointStore:
        return self._store

    @property
    def automatic_triggers(self) -> AbstractSet[CheckpointTrigger]:
        return self._automatic_triggers

    def edit(self, fn: Callable[[P], T]) -> T:
        """Run ``fn`` against the project while holding the mutation lock."""

        with self._mutation_lock:
            return fn(self._project)

    @contextmanager
    def _exclusive(self, operation: str) -> Iterator[None]:
        if not self._operation_lock.acquire(blocking=False):
            logger.info("checkpoint_operation_rejected", operation=operation)
            raise BusyError(
                f"Cannot {operation} while another checkpoint operation is running."
            )
        try:
            yield
        finally:
            self._operation_lock.release()

    def create_checkpoint(
        self,
        label: str = "",
        *,
        trigger: CheckpointTrigger = CheckpointTrigger.MANUAL,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Capture the project and persist it as a new checkpoint.

        Raises:
            BusyError: If another create or restore is running.
            CheckpointCancelledError: If ``cancel`` fires before the checkpoint
                is committed.
        """

        trigger = CheckpointTrigger.parse(trigger)
        with self._exclusive("create a checkpoint"):
            with self._mutation_lock:
                snapshot = self._store.capture(
                    self._project, label=label or trigger.default_label
                )
            checkpoint_id = self._store.persist(snapshot, cancel=cancel)

        logger.info(
            "checkpoint_session_created",
            checkpoint_id=checkpoint_id,
            trigger=trigger.value,
        )
        return checkpoint_id

    def restore(self, checkpoint_id: str, options: RestoreOptionSet) -> RestoreReport:
        """Restore ``checkpoint_id`` into the project.

        Raises:
            NoOpRequestedError: If ``options`` select no category.
            BusyError: If another create or restore is running.
            CheckpointNotFoundError: If the checkpoint does not exist.
            CorruptSnapshotError: If the checkpoint cannot be decoded.
            RestoreFailedError: If the merge is abandoned.
        """

        options.ensure_actionable()
        with self._exclusive("restore a checkpoint"):
            snapshot = self._store.load(checkpoint_id)
            with self._mutation_lock:
                return self._engine.restore(self._project, snapshot, options)

    def should_checkpoint(self, trigger: CheckpointTrigger | str) -> bool:
        return CheckpointTrigger.parse(trigger) in self._automatic_triggers

    @contextmanager
    def checkpoint_before(
        self, trigger: CheckpointTrigger | str, label: str = ""
    ) -> Iterator[str | None]:
        """Create a safety checkpoint before a destructive operation.

        Yields the new checkpoint id, or ``None`` when ``trigger`` is not
        configured as automatic.
        """

        resolved = CheckpointTrigger.parse(trigger)
        checkpoint_id: str | None = None
        if self.should_checkpoint(resolved):
            checkpoint_id = self.create_checkpoint(label, trigger=resolved)
        yield checkpoint_id

    def can_restore(self, checkpoint_id: str | None, options: RestoreOptionSet) -> bool:
        if checkpoint_id is None or not checkpoint_id.strip():
            return False
        return not options.is_noop

    def list_checkpoints(self) -> List[CheckpointListing]:
        return self._store.list()

    def delete_checkpoint(self, checkpoint_id: str) -> None:
        self._store.delete(checkpoint_id)

    def can_show_scene_history(self, scene_id: str | None) -> bool:
        if scene_id is None or not scene_id.strip():
            return False
        return self._store.latest() is not None

    def scene_history(self, scene_id: str) -> List[SceneRevision]:
        return self._store.scene_history(scene_id)


__all__ = [
    "CheckpointTrigger",
    "DEFAULT_AUTOMATIC_TRIGGERS",
    "ProjectSession",
]
