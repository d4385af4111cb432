"""Checkpoints and selective restore for long-form writing projects."""

from .checkpoints import (
    CancellationToken,
    CheckpointListing,
    CheckpointStore,
    SceneRevision,
)
from .errors import (
    BusyError,
    CheckpointCancelledError,
    CheckpointError,
    CheckpointNotFoundError,
    CorruptSnapshotError,
    NoOpRequestedError,
    RestoreFailedError,
    StorageError,
)
from .logs import configure_logging
from .options import RestoreOptionSet
from .project import (
    ALL_CATEGORIES,
    CategoryKind,
    Chapter,
    CompendiumEntry,
    InputHistory,
    LiveProject,
    Note,
    ProjectAccessor,
    PromptTemplate,
    Scene,
    SceneContext,
    Setting,
    Summary,
    WorkshopMessage,
    WorkshopSession,
)
from .restore import CategoryChanges, RestoreEngine, RestoreReport, SceneReattachment
from .session import CheckpointTrigger, ProjectSession
from .settings import CheckpointSettings
from .snapshot import ProjectSnapshot
from .storage import ByteStore, DirectoryByteStore, InMemoryByteStore, S3ByteStore

__all__ = [
    "ALL_CATEGORIES",
    "BusyError",
    "ByteStore",
    "CancellationToken",
    "CategoryChanges",
    "CategoryKind",
    "Chapter",
    "CheckpointCancelledError",
    "CheckpointError",
    "CheckpointListing",
    "CheckpointNotFoundError",
    "CheckpointSettings",
    "CheckpointStore",
    "CheckpointTrigger",
    "CompendiumEntry",
    "CorruptSnapshotError",
    "DirectoryByteStore",
    "InMemoryByteStore",
    "InputHistory",
    "LiveProject",
    "NoOpRequestedError",
    "Note",
    "ProjectAccessor",
    "ProjectSession",
    "ProjectSnapshot",
    "PromptTemplate",
    "RestoreEngine",
    "RestoreFailedError",
    "RestoreOptionSet",
    "RestoreReport",
    "S3ByteStore",
    "Scene",
    "SceneContext",
    "SceneReattachment",
    "SceneRevision",
    "Setting",
    "StorageError",
    "Summary",
    "WorkshopMessage",
    "WorkshopSession",
    "configure_logging",
]
