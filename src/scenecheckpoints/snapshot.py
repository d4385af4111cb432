"""Immutable snapshots of project state and their stored representation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Mapping

from .project import (
    ALL_CATEGORIES,
    CategoryKind,
    Entity,
    ProjectAccessor,
    clone_category,
    record_to_payload,
    records_from_payload,
    snapshot_categories,
)

SNAPSHOT_SCHEMA_VERSION = 1


def _ensure_timezone(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _freeze(
    categories: Mapping[CategoryKind, Mapping[str, Entity]],
) -> Mapping[CategoryKind, Mapping[str, Entity]]:
    frozen: Dict[CategoryKind, Mapping[str, Entity]] = {}
    for kind in ALL_CATEGORIES:
        frozen[kind] = MappingProxyType(dict(categories.get(kind, {})))
    return MappingProxyType(frozen)


@dataclass(frozen=True)
class ProjectSnapshot:
    """A self-contained copy of every project category at one instant."""

    id: str
    created_at: datetime
    categories: Mapping[CategoryKind, Mapping[str, Entity]]
    label: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ValueError("snapshot id must be a non-empty string")
        object.__setattr__(self, "id", self.id.strip())
        object.__setattr__(self, "created_at", _ensure_timezone(self.created_at))
        object.__setattr__(self, "label", (self.label or "").strip())
        object.__setattr__(self, "categories", _freeze(self.categories))

    @classmethod
    def capture(
        cls,
        accessor: ProjectAccessor,
        *,
        snapshot_id: str,
        created_at: datetime | None = None,
        label: str = "",
    ) -> "ProjectSnapshot":
        """Create a snapshot by deep-copying every category of ``accessor``."""

        return cls(
            id=snapshot_id,
            created_at=created_at or datetime.now(timezone.utc),
            categories=snapshot_categories(accessor),
            label=label,
        )

    def category(self, kind: CategoryKind) -> Mapping[str, Entity]:
        return self.categories[CategoryKind.parse(kind)]

    def records(self, kind: CategoryKind) -> Dict[str, Entity]:
        """Return a private, mutable clone of one category."""

        return clone_category(self.category(kind))

    def counts(self) -> Dict[str, int]:
        return {kind.value: len(records) for kind, records in self.categories.items()}

    def to_payload(self) -> Dict[str, object]:
        """Return a JSON-serialisable representation of the snapshot."""

        return {
            "schema_version": SNAPSHOT_SCHEMA_VERSION,
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "label": self.label,
            "categories": {
                kind.value: [record_to_payload(record) for record in records.values()]
                for kind, records in self.categories.items()
            },
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> "ProjectSnapshot":
        """Build a snapshot from the stored payload representation.

        Raises:
            ValueError: If the payload is malformed. Record validation errors
                from pydantic are ``ValueError`` subclasses as well.
        """

        if not isinstance(payload, Mapping):
            raise ValueError("Invalid snapshot payload: expected an object")

        schema_version = payload.get("schema_version")
        if schema_version != SNAPSHOT_SCHEMA_VERSION:
            raise ValueError(f"Unsupported snapshot schema version {schema_version!r}")

        snapshot_id = payload.get("id")
        if not isinstance(snapshot_id, str):
            raise ValueError("Invalid snapshot payload: missing id")

        created_raw = payload.get("created_at")
        if not isinstance(created_raw, str):
            raise ValueError("Invalid snapshot payload: missing created_at")
        created_at = datetime.fromisoformat(created_raw)

        label = payload.get("label", "")
        if not isinstance(label, str):
            raise ValueError("Invalid snapshot payload: label must be a string")

        categories_payload = payload.get("categories")
        if not isinstance(categories_payload, Mapping):
            raise ValueError("Invalid snapshot payload: missing categories")

        categories: Dict[CategoryKind, Dict[str, Entity]] = {}
        for name, records_payload in categories_payload.items():
            kind = CategoryKind.parse(str(name))
            categories[kind] = records_from_payload(kind, records_payload)

        return cls(
            id=snapshot_id,
            created_at=created_at,
            categories=categories,
            label=label,
        )


__all__ = ["ProjectSnapshot", "SNAPSHOT_SCHEMA_VERSION"]
