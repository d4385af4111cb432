"""Exceptions raised by the checkpoint and restore subsystem."""

from __future__ import annotations


class CheckpointError(RuntimeError):
    """Base class for every error surfaced by checkpoint operations."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class StorageError(CheckpointError):
    """Raised when the underlying byte store cannot be read or written."""


class CheckpointNotFoundError(CheckpointError, KeyError):
    """Raised when a requested checkpoint identifier does not exist."""

    def __init__(self, checkpoint_id: str) -> None:
        super().__init__(f"Checkpoint '{checkpoint_id}' does not exist.")
        self.checkpoint_id = checkpoint_id


class CorruptSnapshotError(CheckpointError, ValueError):
    """Raised when stored checkpoint bytes cannot be decoded."""

    def __init__(self, message: str, *, checkpoint_id: str | None = None) -> None:
        super().__init__(message)
        self.checkpoint_id = checkpoint_id


class RestoreFailedError(CheckpointError):
    """Raised when a restore is abandoned; the live project is left untouched."""

    def __init__(self, message: str, *, problems: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.problems = problems


class BusyError(CheckpointError):
    """Raised when another checkpoint operation is already running."""


class NoOpRequestedError(CheckpointError):
    """Raised when a restore is requested with every category excluded."""


class CheckpointCancelledError(CheckpointError):
    """Raised when checkpoint creation is cancelled before it is committed."""


__all__ = [
    "BusyError",
    "CheckpointCancelledError",
    "CheckpointError",
    "CheckpointNotFoundError",
    "CorruptSnapshotError",
    "NoOpRequestedError",
    "RestoreFailedError",
    "StorageError",
]
