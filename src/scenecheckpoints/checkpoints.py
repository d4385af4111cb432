"""Persistence of project checkpoints on top of a byte store."""

from __future__ import annotations

import json
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping

import structlog

from .errors import (
    CheckpointCancelledError,
    CheckpointNotFoundError,
    CorruptSnapshotError,
    StorageError,
)
from .project import CategoryKind, ProjectAccessor, Scene
from .snapshot import ProjectSnapshot
from .storage import ByteStore, validate_key

logger = structlog.get_logger(__name__)

SNAPSHOT_SUFFIX = ".snapshot"
LISTING_SUFFIX = ".checkpoint"


def _ensure_timezone(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _default_clock() -> datetime:
    return datetime.now(timezone.utc)


def _default_id_factory() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class CheckpointListing:
    """Lightweight index record used to enumerate checkpoints cheaply."""

    id: str
    created_at: datetime
    label: str = ""

    def to_payload(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "label": self.label,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> "CheckpointListing":
        checkpoint_id = payload.get("id")
        created_raw = payload.get("created_at")
        label = payload.get("label", "")
        if not isinstance(checkpoint_id, str) or not checkpoint_id.strip():
            raise ValueError("Invalid checkpoint listing: missing id")
        if not isinstance(created_raw, str):
            raise ValueError("Invalid checkpoint listing: missing created_at")
        if not isinstance(label, str):
            raise ValueError("Invalid checkpoint listing: label must be a string")
        return cls(
            id=checkpoint_id,
            created_at=_ensure_timezone(datetime.fromisoformat(created_raw)),
            label=label,
        )


@dataclass(frozen=True)
class SceneRevision:
    """One scene as it was stored in a single checkpoint."""

    checkpoint_id: str
    created_at: datetime
    label: str
    title: str
    content: str


class CancellationToken:
    """Cooperative cancellation flag checked before each durable write."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CheckpointCancelledError("Checkpoint creation was cancelled.")


class CheckpointStore:
    """Create, enumerate, load and delete project checkpoints.

    Each checkpoint occupies two keys in the byte store: ``<id>.snapshot``
    holds the encoded :class:`ProjectSnapshot` and ``<id>.checkpoint`` holds
    its :class:`CheckpointListing`. The listing is written last, so a
    checkpoint only becomes visible once its payload is durable.
    """

    def __init__(
        self,
        byte_store: ByteStore,
        *,
        retention: int | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        if retention is not None and retention < 1:
            raise ValueError("retention must be greater than zero.")
        self._bytes = byte_store
        self._retention = retention
        self._clock = clock or _default_clock
        self._id_factory = id_factory or _default_id_factory

    @property
    def byte_store(self) -> ByteStore:
        return self._bytes

    def create(
        self,
        live: ProjectAccessor,
        *,
        label: str = "",
        cancel: CancellationToken | None = None,
    ) -> str:
        """Snapshot ``live`` and persist it, returning the new checkpoint id."""

        snapshot = self.capture(live, label=label)
        return self.persist(snapshot, cancel=cancel)

    def capture(self, live: ProjectAccessor, *, label: str = "") -> ProjectSnapshot:
        """Deep-copy ``live`` into a snapshot with a fresh id and timestamp."""

        return ProjectSnapshot.capture(
            live,
            snapshot_id=self._id_factory(),
            created_at=_ensure_timezone(self._clock()),
            label=label,
        )

    def persist(
        self,
        snapshot: ProjectSnapshot,
        *,
        cancel: CancellationToken | None = None,
    ) -> str:
        """Write ``snapshot`` and its listing record to the byte store.

        Raises:
            CheckpointCancelledError: If ``cancel`` fires before the listing
                record is written. Nothing remains visible in that case.
            StorageError: If the byte store rejects a write.
        """

        content = _encode(snapshot.to_payload())
        listing = CheckpointListing(
            id=snapshot.id, created_at=snapshot.created_at, label=snapshot.label
        )
        snapshot_key = snapshot.id + SNAPSHOT_SUFFIX

        if cancel is not None:
            cancel.raise_if_cancelled()
        self._put(snapshot_key, content)

        try:
            if cancel is not None:
                cancel.raise_if_cancelled()
            self._put(snapshot.id + LISTING_SUFFIX, _encode(listing.to_payload()))
        except (CheckpointCancelledError, StorageError):
            try:
                self._bytes.delete(snapshot_key)
            except (OSError, StorageError):
                logger.warning(
                    "checkpoint_cleanup_failed", checkpoint_id=snapshot.id, exc_info=True
                )
            raise

        logger.info(
            "checkpoint_created",
            checkpoint_id=snapshot.id,
            label=snapshot.label,
            size=len(content),
            counts=snapshot.counts(),
        )

        if self._retention is not None:
            self.prune(keep=self._retention)
        return snapshot.id

    def list(self) -> List[CheckpointListing]:
        """Return listings newest first; ties are ordered by id."""

        listings: List[CheckpointListing] = []
        for key in self._keys():
            if not key.endswith(LISTING_SUFFIX):
                continue
            checkpoint_id = key[: -len(LISTING_SUFFIX)]
            try:
                content = self._bytes.get(key)
            except KeyError:
                # Deleted between enumeration and read.
                continue
            listings.append(self._decode_listing(checkpoint_id, content))

        listings.sort(key=lambda listing: listing.id)
        listings.sort(key=lambda listing: listing.created_at, reverse=True)
        return listings

    def latest(self) -> CheckpointListing | None:
        listings = self.list()
        return listings[0] if listings else None

    def exists(self, checkpoint_id: str) -> bool:
        return checkpoint_id.strip() + LISTING_SUFFIX in self._keys()

    def load(self, checkpoint_id: str) -> ProjectSnapshot:
        """Return the snapshot stored for ``checkpoint_id``.

        Raises:
            CheckpointNotFoundError: If no such checkpoint exists.
            CorruptSnapshotError: If the stored bytes cannot be decoded.
        """

        self._require_listing(checkpoint_id)
        try:
            content = self._bytes.get(_checkpoint_key(checkpoint_id, SNAPSHOT_SUFFIX))
        except (KeyError, ValueError) as exc:
            raise CheckpointNotFoundError(checkpoint_id) from exc

        try:
            payload = json.loads(content.decode("utf-8"))
            snapshot = ProjectSnapshot.from_payload(payload)
        except (UnicodeDecodeError, ValueError, TypeError) as exc:
            raise CorruptSnapshotError(
                f"Checkpoint '{checkpoint_id}' could not be decoded: {exc}",
                checkpoint_id=checkpoint_id,
            ) from exc

        if snapshot.id != checkpoint_id.strip():
            raise CorruptSnapshotError(
                f"Checkpoint '{checkpoint_id}' contains snapshot '{snapshot.id}'.",
                checkpoint_id=checkpoint_id,
            )
        return snapshot

    def listing(self, checkpoint_id: str) -> CheckpointListing:
        return self._decode_listing(checkpoint_id, self._require_listing(checkpoint_id))

    def delete(self, checkpoint_id: str) -> None:
        """Remove a checkpoint; deleting an unknown id is a no-op."""

        try:
            listing_key = _checkpoint_key(checkpoint_id, LISTING_SUFFIX)
            snapshot_key = _checkpoint_key(checkpoint_id, SNAPSHOT_SUFFIX)
        except ValueError:
            return
        self._bytes.delete(listing_key)
        self._bytes.delete(snapshot_key)
        logger.info("checkpoint_deleted", checkpoint_id=checkpoint_id)

    def scene_history(self, scene_id: str) -> List[SceneRevision]:
        """Return the stored versions of one scene, newest checkpoint first.

        Checkpoints that do not contain the scene are skipped, as are
        checkpoints that cannot be decoded.
        """

        revisions: List[SceneRevision] = []
        for listing in self.list():
            try:
                snapshot = self.load(listing.id)
            except CheckpointNotFoundError:
                continue
            except CorruptSnapshotError:
                logger.warning("scene_history_skipped_checkpoint", checkpoint_id=listing.id)
                continue
            scene = snapshot.category(CategoryKind.TEXT).get(scene_id.strip())
            if not isinstance(scene, Scene):
                continue
            revisions.append(
                SceneRevision(
                    checkpoint_id=listing.id,
                    created_at=listing.created_at,
                    label=listing.label,
                    title=scene.title,
                    content=scene.content,
                )
            )
        return revisions

    def prune(self, *, keep: int) -> List[str]:
        """Delete all but the newest ``keep`` checkpoints, returning removed ids."""

        if keep < 1:
            raise ValueError("keep must be greater than zero.")
        removed = [listing.id for listing in self.list()[keep:]]
        for checkpoint_id in removed:
            self.delete(checkpoint_id)
        if removed:
            logger.info("checkpoints_pruned", removed=removed, keep=keep)
        return removed

    def _require_listing(self, checkpoint_id: str) -> bytes:
        # Only ids whose listing was written are committed checkpoints.
        try:
            return self._bytes.get(_checkpoint_key(checkpoint_id, LISTING_SUFFIX))
        except (KeyError, ValueError) as exc:
            raise CheckpointNotFoundError(checkpoint_id) from exc

    def _keys(self) -> List[str]:
        return self._bytes.list()

    def _put(self, key: str, content: bytes) -> None:
        try:
            self._bytes.put(key, content)
        except OSError as exc:
            raise StorageError(f"Failed to persist checkpoint data '{key}'.") from exc

    @staticmethod
    def _decode_listing(checkpoint_id: str, content: bytes) -> CheckpointListing:
        try:
            payload = json.loads(content.decode("utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("listing must be a JSON object")
            listing = CheckpointListing.from_payload(payload)
        except (UnicodeDecodeError, ValueError) as exc:
            raise CorruptSnapshotError(
                f"Checkpoint listing '{checkpoint_id}' could not be decoded: {exc}",
                checkpoint_id=checkpoint_id,
            ) from exc
        return listing


def _encode(payload: Mapping[str, object]) -> bytes:
    return json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")


def _checkpoint_key(checkpoint_id: str, suffix: str) -> str:
    if not isinstance(checkpoint_id, str):
        raise TypeError("checkpoint_id must be a string")
    stripped = checkpoint_id.strip()
    if not stripped:
        raise ValueError("checkpoint_id must be a non-empty string")
    return validate_key(stripped + suffix)


__all__ = [
    "CancellationToken",
    "CheckpointListing",
    "CheckpointStore",
    "LISTING_SUFFIX",
    "SNAPSHOT_SUFFIX",
    "SceneRevision",
]
