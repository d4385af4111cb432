"""Declarative description of what a restore should touch."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Tuple

from .errors import NoOpRequestedError
from .project import ALL_CATEGORIES, CategoryKind


def _validate_flag(value: object, *, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"{field_name} must be a bool, got {type(value)!r}")
    return value


def _default_include() -> Mapping[CategoryKind, bool]:
    return {kind: True for kind in ALL_CATEGORIES}


@dataclass(frozen=True)
class RestoreOptionSet:
    """Which categories a restore covers and how absent entries are treated.

    * ``include`` maps every :class:`CategoryKind` to whether it is restored.
      Categories missing from the mapping default to ``True``.
    * ``restore_deleted_entries`` re-inserts entries present in the checkpoint
      but absent from the live project.
    * ``delete_entries_not_in_checkpoint`` removes live entries the checkpoint
      does not contain.
    """

    include: Mapping[CategoryKind, bool] = field(default_factory=_default_include)
    restore_deleted_entries: bool = False
    delete_entries_not_in_checkpoint: bool = False

    def __post_init__(self) -> None:
        resolved = {kind: True for kind in ALL_CATEGORIES}
        for key, value in self.include.items():
            kind = CategoryKind.parse(key)
            resolved[kind] = _validate_flag(value, field_name=f"include[{kind.value}]")
        object.__setattr__(self, "include", MappingProxyType(resolved))
        object.__setattr__(
            self,
            "restore_deleted_entries",
            _validate_flag(
                self.restore_deleted_entries, field_name="restore_deleted_entries"
            ),
        )
        object.__setattr__(
            self,
            "delete_entries_not_in_checkpoint",
            _validate_flag(
                self.delete_entries_not_in_checkpoint,
                field_name="delete_entries_not_in_checkpoint",
            ),
        )

    @classmethod
    def all(
        cls,
        *,
        restore_deleted_entries: bool = False,
        delete_entries_not_in_checkpoint: bool = False,
    ) -> "RestoreOptionSet":
        """Return options covering every category."""

        return cls(
            restore_deleted_entries=restore_deleted_entries,
            delete_entries_not_in_checkpoint=delete_entries_not_in_checkpoint,
        )

    @classmethod
    def only(
        cls,
        *kinds: CategoryKind | str,
        restore_deleted_entries: bool = False,
        delete_entries_not_in_checkpoint: bool = False,
    ) -> "RestoreOptionSet":
        """Return options covering just ``kinds``."""

        selected = {CategoryKind.parse(kind) for kind in kinds}
        return cls(
            include={kind: kind in selected for kind in ALL_CATEGORIES},
            restore_deleted_entries=restore_deleted_entries,
            delete_entries_not_in_checkpoint=delete_entries_not_in_checkpoint,
        )

    @classmethod
    def none(cls) -> "RestoreOptionSet":
        return cls.only()

    @classmethod
    def from_toggles(
        cls,
        toggles: Mapping[str, bool],
        *,
        restore_deleted_entries: bool = False,
        delete_entries_not_in_checkpoint: bool = False,
    ) -> "RestoreOptionSet":
        """Build options from UI category toggles keyed by category name.

        Raises:
            ValueError: If a toggle names an unknown category.
        """

        return cls(
            include={CategoryKind.parse(name): value for name, value in toggles.items()},
            restore_deleted_entries=restore_deleted_entries,
            delete_entries_not_in_checkpoint=delete_entries_not_in_checkpoint,
        )

    def excluding(self, kinds: Iterable[CategoryKind | str]) -> "RestoreOptionSet":
        """Return a copy with ``kinds`` switched off."""

        excluded = {CategoryKind.parse(kind) for kind in kinds}
        return RestoreOptionSet(
            include={
                kind: enabled and kind not in excluded
                for kind, enabled in self.include.items()
            },
            restore_deleted_entries=self.restore_deleted_entries,
            delete_entries_not_in_checkpoint=self.delete_entries_not_in_checkpoint,
        )

    @property
    def is_noop(self) -> bool:
        return not any(self.include.values())

    @property
    def included_kinds(self) -> Tuple[CategoryKind, ...]:
        return tuple(kind for kind in ALL_CATEGORIES if self.include[kind])

    def includes(self, kind: CategoryKind | str) -> bool:
        return self.include[CategoryKind.parse(kind)]

    def ensure_actionable(self) -> None:
        """Raise :class:`NoOpRequestedError` when every category is excluded."""

        if self.is_noop:
            raise NoOpRequestedError(
                "Select at least one category to restore from the checkpoint."
            )


__all__ = ["RestoreOptionSet"]
