"""Merge a checkpoint back into the live project."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Mapping, MutableMapping, Sequence, Set

import structlog

from .checkpoints import CheckpointStore
from .errors import RestoreFailedError
from .options import RestoreOptionSet
from .project import (
    ALL_CATEGORIES,
    SELECTION_SETTINGS,
    CategoryKind,
    Chapter,
    Entity,
    ProjectAccessor,
    PromptTemplate,
    Scene,
    SceneContext,
    Setting,
    check_integrity,
    clone_category,
)
from .snapshot import ProjectSnapshot

logger = structlog.get_logger(__name__)

FALLBACK_CHAPTER_ID = "restored-scenes"
FALLBACK_CHAPTER_TITLE = "Restored Scenes"

ReattachReason = Literal["checkpoint_parent", "fallback"]

_Categories = Dict[CategoryKind, Dict[str, Entity]]


@dataclass
class CategoryChanges:
    """Ids added, updated and removed in one category, each sorted ascending."""

    added: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.updated) + len(self.removed)

    def to_payload(self) -> Dict[str, List[str]]:
        return {
            "added": list(self.added),
            "updated": list(self.updated),
            "removed": list(self.removed),
        }


@dataclass(frozen=True)
class SceneReattachment:
    """A scene that had to be given a parent chapter during a restore."""

    scene_id: str
    chapter_id: str
    reason: ReattachReason


@dataclass
class RestoreReport:
    """Everything a restore changed in the live project."""

    checkpoint_id: str
    noop: bool = False
    categories: Dict[CategoryKind, CategoryChanges] = field(default_factory=dict)
    reattached: List[SceneReattachment] = field(default_factory=list)
    pruned: Dict[CategoryKind, List[str]] = field(default_factory=dict)
    fallback_chapter_id: str | None = None

    @property
    def total_changes(self) -> int:
        return sum(changes.total for changes in self.categories.values())

    @property
    def is_empty(self) -> bool:
        return self.total_changes == 0

    def changes_for(self, kind: CategoryKind) -> CategoryChanges:
        return self.categories.get(CategoryKind.parse(kind), CategoryChanges())

    def summary(self) -> str:
        if self.noop:
            return "Nothing restored: no categories were selected."
        if self.is_empty:
            return "The project already matches the checkpoint."

        parts = []
        for kind in ALL_CATEGORIES:
            changes = self.categories.get(kind)
            if changes is None or not changes.total:
                continue
            parts.append(
                f"{kind.value}: +{len(changes.added)} ~{len(changes.updated)}"
                f" -{len(changes.removed)}"
            )
        text = "Restored " + ", ".join(parts)
        if self.reattached:
            text += f"; {len(self.reattached)} scene(s) re-attached"
        return text + "."

    def to_payload(self) -> Dict[str, object]:
        return {
            "checkpoint_id": self.checkpoint_id,
            "noop": self.noop,
            "total_changes": self.total_changes,
            "categories": {
                kind.value: changes.to_payload()
                for kind, changes in self.categories.items()
            },
            "reattached": [
                {
                    "scene_id": item.scene_id,
                    "chapter_id": item.chapter_id,
                    "reason": item.reason,
                }
                for item in self.reattached
            ],
            "pruned": {kind.value: list(ids) for kind, ids in self.pruned.items()},
            "fallback_chapter_id": self.fallback_chapter_id,
        }


class RestoreEngine:
    """Apply a :class:`ProjectSnapshot` to a live project.

    The merge for every included category works on id sets:

    * ids in both the checkpoint and the live project take the checkpoint's
      value;
    * ids only in the checkpoint are inserted when
      ``restore_deleted_entries`` is set;
    * ids only in the live project are removed when
      ``delete_entries_not_in_checkpoint`` is set.

    The result is then repaired so chapters, scenes, scene context and
    selection settings reference each other consistently. All of this happens
    on a working copy; the live project only sees the final state, or nothing
    at all when the restore fails.
    """

    def __init__(
        self,
        *,
        fallback_chapter_id: str = FALLBACK_CHAPTER_ID,
        fallback_chapter_title: str = FALLBACK_CHAPTER_TITLE,
    ) -> None:
        self._fallback_chapter_id = fallback_chapter_id
        self._fallback_chapter_title = fallback_chapter_title

    def restore(
        self,
        live: ProjectAccessor,
        snapshot: ProjectSnapshot | str,
        options: RestoreOptionSet,
        *,
        store: CheckpointStore | None = None,
    ) -> RestoreReport:
        """Merge ``snapshot`` into ``live`` according to ``options``.

        ``snapshot`` may be a checkpoint id, in which case it is loaded from
        ``store`` before anything else happens.

        Raises:
            CheckpointNotFoundError: If the checkpoint id is unknown.
            CorruptSnapshotError: If the stored checkpoint cannot be decoded.
            RestoreFailedError: If the merged state is inconsistent or cannot
                be written; ``live`` is left as it was.
        """

        if options.is_noop:
            checkpoint_id = snapshot if isinstance(snapshot, str) else snapshot.id
            logger.info("restore_skipped", checkpoint_id=checkpoint_id, reason="noop")
            return RestoreReport(checkpoint_id=checkpoint_id, noop=True)

        if isinstance(snapshot, str):
            if store is None:
                raise TypeError("a CheckpointStore is required to restore by id")
            snapshot = store.load(snapshot)

        before: _Categories = {
            kind: dict(live.read_category(kind)) for kind in ALL_CATEGORIES
        }
        working: _Categories = {
            kind: clone_category(records) for kind, records in before.items()
        }
        report = RestoreReport(checkpoint_id=snapshot.id)

        inserted: Dict[CategoryKind, List[str]] = {}
        for kind in options.included_kinds:
            inserted[kind] = self._merge_category(
                working[kind], snapshot.category(kind), options
            )

        restored_chapters: Set[str] = set()
        if options.includes(CategoryKind.TEXT):
            snapshot_text = snapshot.category(CategoryKind.TEXT)
            restored_chapters = {
                key
                for key, record in working[CategoryKind.TEXT].items()
                if isinstance(record, Chapter) and key in snapshot_text
            }
            self._order_chapters(
                working[CategoryKind.TEXT],
                inserted.get(CategoryKind.TEXT, []),
                snapshot_text,
            )

        self._repair_text(working, before, snapshot, restored_chapters, report)
        self._prune_scene_context(working, report)
        self._prune_targets(working, report)
        self._repair_selections(working, report)

        problems = check_integrity(working)
        if problems:
            logger.warning(
                "restore_failed",
                checkpoint_id=snapshot.id,
                problems=problems,
            )
            raise RestoreFailedError(
                "Restore abandoned: the merged project would be inconsistent "
                f"({problems[0]}).",
                problems=tuple(problems),
            )

        for kind in ALL_CATEGORIES:
            changes = _diff(before[kind], working[kind])
            if changes.total:
                report.categories[kind] = changes

        self._commit(live, before, working, checkpoint_id=snapshot.id)

        logger.info(
            "restore_completed",
            checkpoint_id=snapshot.id,
            categories=[kind.value for kind in options.included_kinds],
            changes=report.total_changes,
            reattached=len(report.reattached),
        )
        return report

    # Merge -----------------------------------------------------------------

    @staticmethod
    def _merge_category(
        working: MutableMapping[str, Entity],
        checkpoint: Mapping[str, Entity],
        options: RestoreOptionSet,
    ) -> List[str]:
        """Merge one category in place and return the ids that were inserted."""

        inserted: List[str] = []
        for key in sorted(set(working) | set(checkpoint)):
            in_live = key in working
            in_checkpoint = key in checkpoint
            if in_live and in_checkpoint:
                if working[key] != checkpoint[key]:
                    working[key] = checkpoint[key].model_copy(deep=True)
            elif in_checkpoint:
                if options.restore_deleted_entries:
                    working[key] = checkpoint[key].model_copy(deep=True)
                    inserted.append(key)
            elif options.delete_entries_not_in_checkpoint:
                del working[key]
        return inserted

    @staticmethod
    def _order_chapters(
        text: Dict[str, Entity],
        inserted: Sequence[str],
        checkpoint_text: Mapping[str, Entity],
    ) -> None:
        """Place re-inserted chapters after their checkpoint predecessor."""

        inserted_chapters = {
            key for key in inserted if isinstance(text.get(key), Chapter)
        }
        order = [
            key
            for key, record in text.items()
            if isinstance(record, Chapter) and key not in inserted_chapters
        ]
        previous: str | None = None
        for key, record in checkpoint_text.items():
            if not isinstance(record, Chapter):
                continue
            if key in inserted_chapters:
                position = order.index(previous) + 1 if previous in order else 0
                order.insert(position, key)
            if key in order:
                previous = key

        placed = set(order)
        scenes = [(key, record) for key, record in text.items() if key not in placed]
        chapters = [(key, text[key]) for key in order]
        text.clear()
        text.update(chapters)
        text.update(scenes)

    # Integrity repair ------------------------------------------------------

    def _repair_text(
        self,
        working: _Categories,
        before: _Categories,
        snapshot: ProjectSnapshot,
        restored_chapters: Set[str],
        report: RestoreReport,
    ) -> None:
        text = working[CategoryKind.TEXT]
        scene_ids = {key for key, record in text.items() if isinstance(record, Scene)}
        chapters = [record for record in text.values() if isinstance(record, Chapter)]

        # Chapters restored from the checkpoint claim their scenes first.
        claim_order = sorted(chapters, key=lambda chapter: chapter.id not in restored_chapters)
        owners: Dict[str, str] = {}
        scene_lists: Dict[str, List[str]] = {}
        for chapter in claim_order:
            kept: List[str] = []
            for scene_id in chapter.scene_ids:
                if scene_id in scene_ids and scene_id not in owners:
                    owners[scene_id] = chapter.id
                    kept.append(scene_id)
            scene_lists[chapter.id] = kept

        checkpoint_parents = _scene_parents(snapshot.category(CategoryKind.TEXT))
        previous_parents = _scene_parents(before[CategoryKind.TEXT])

        for scene_id in sorted(scene_ids - set(owners)):
            previous = previous_parents.get(scene_id)
            target = checkpoint_parents.get(scene_id)
            reason: ReattachReason = "checkpoint_parent"
            if target not in scene_lists:
                target = previous
            if target not in scene_lists:
                target = self._ensure_fallback_chapter(
                    text, scene_lists, before[CategoryKind.TEXT]
                )
                reason = "fallback"
                report.fallback_chapter_id = target
            scene_lists[target].append(scene_id)
            owners[scene_id] = target
            if target == previous:
                # Back in the chapter it had before the restore.
                continue
            report.reattached.append(
                SceneReattachment(scene_id=scene_id, chapter_id=target, reason=reason)
            )

        for chapter_id, scene_list in scene_lists.items():
            chapter = text[chapter_id]
            if isinstance(chapter, Chapter) and tuple(scene_list) != chapter.scene_ids:
                text[chapter_id] = chapter.model_copy(
                    update={"scene_ids": tuple(scene_list)}
                )

    def _ensure_fallback_chapter(
        self,
        text: Dict[str, Entity],
        scene_lists: Dict[str, List[str]],
        previous_text: Mapping[str, Entity],
    ) -> str:
        chapter_id = self._fallback_chapter_id
        if chapter_id in scene_lists:
            return chapter_id
        if chapter_id in text:
            raise RestoreFailedError(
                f"Cannot create fallback chapter '{chapter_id}': the id is taken by a scene."
            )
        previous = previous_text.get(chapter_id)
        if isinstance(previous, Chapter):
            text[chapter_id] = previous.model_copy(update={"scene_ids": ()})
        else:
            text[chapter_id] = Chapter(id=chapter_id, title=self._fallback_chapter_title)
        scene_lists[chapter_id] = []
        return chapter_id

    @staticmethod
    def _prune_scene_context(working: _Categories, report: RestoreReport) -> None:
        text = working[CategoryKind.TEXT]
        scene_ids = {key for key, record in text.items() if isinstance(record, Scene)}
        chapter_ids = {key for key, record in text.items() if isinstance(record, Chapter)}
        compendium_ids = set(working[CategoryKind.COMPENDIUM])
        contexts = working[CategoryKind.SCENE_CONTEXT]

        pruned: List[str] = []
        for key in sorted(contexts):
            context = contexts[key]
            if key not in scene_ids or not isinstance(context, SceneContext):
                del contexts[key]
                pruned.append(key)
                continue
            cleaned = context.model_copy(
                update={
                    "compendium_ids": tuple(
                        i for i in context.compendium_ids if i in compendium_ids
                    ),
                    "scene_summary_ids": tuple(
                        i for i in context.scene_summary_ids if i in scene_ids
                    ),
                    "chapter_summary_ids": tuple(
                        i for i in context.chapter_summary_ids if i in chapter_ids
                    ),
                }
            )
            if cleaned != context:
                contexts[key] = cleaned
                pruned.append(key)
        if pruned:
            report.pruned.setdefault(CategoryKind.SCENE_CONTEXT, []).extend(pruned)

    @staticmethod
    def _prune_targets(working: _Categories, report: RestoreReport) -> None:
        """Drop summaries and notes whose chapter or scene no longer exists."""

        text = working[CategoryKind.TEXT]
        targets = {
            "scene": {key for key, r in text.items() if isinstance(r, Scene)},
            "chapter": {key for key, r in text.items() if isinstance(r, Chapter)},
        }
        for kind in (CategoryKind.SUMMARIES, CategoryKind.NOTES):
            records = working[kind]
            pruned = [
                key
                for key in sorted(records)
                if getattr(records[key], "scope", None) in targets
                and key not in targets[getattr(records[key], "scope")]
            ]
            for key in pruned:
                del records[key]
            if pruned:
                report.pruned.setdefault(kind, []).extend(pruned)

    @staticmethod
    def _repair_selections(working: _Categories, report: RestoreReport) -> None:
        """Point selection settings at something that exists, or at nothing."""

        settings = working[CategoryKind.SETTINGS]
        repaired: List[str] = []
        for key in sorted(SELECTION_SETTINGS):
            setting = settings.get(key)
            if not isinstance(setting, Setting) or setting.value is None:
                continue
            target_kind, template_category = SELECTION_SETTINGS[key]
            targets = working[target_kind]
            if str(setting.value) in targets:
                continue

            replacement = None
            for candidate_id in sorted(targets):
                candidate = targets[candidate_id]
                if template_category is None or (
                    isinstance(candidate, PromptTemplate)
                    and candidate.category == template_category
                ):
                    replacement = candidate_id
                    break
            settings[key] = setting.model_copy(update={"value": replacement})
            repaired.append(key)
        if repaired:
            report.pruned.setdefault(CategoryKind.SETTINGS, []).extend(repaired)

    # Commit ----------------------------------------------------------------

    @staticmethod
    def _commit(
        live: ProjectAccessor,
        before: _Categories,
        working: _Categories,
        *,
        checkpoint_id: str,
    ) -> None:
        changed = [
            kind
            for kind in ALL_CATEGORIES
            if working[kind] != before[kind] or list(working[kind]) != list(before[kind])
        ]
        written: List[CategoryKind] = []
        try:
            for kind in changed:
                live.write_category(kind, working[kind])
                written.append(kind)
        except Exception as exc:
            for kind in reversed(written):
                live.write_category(kind, before[kind])
            logger.warning(
                "restore_rolled_back",
                checkpoint_id=checkpoint_id,
                written=[kind.value for kind in written],
                error=str(exc),
            )
            raise RestoreFailedError(
                f"Restore abandoned while writing the project: {exc}"
            ) from exc


def _scene_parents(text: Mapping[str, Entity]) -> Dict[str, str]:
    parents: Dict[str, str] = {}
    for key, record in text.items():
        if isinstance(record, Chapter):
            for scene_id in record.scene_ids:
                parents.setdefault(scene_id, key)
    return parents


def _diff(before: Mapping[str, Entity], after: Mapping[str, Entity]) -> CategoryChanges:
    return CategoryChanges(
        added=sorted(key for key in after if key not in before),
        updated=sorted(
            key for key in after if key in before and after[key] != before[key]
        ),
        removed=sorted(key for key in before if key not in after),
    )


__all__ = [
    "CategoryChanges",
    "FALLBACK_CHAPTER_ID",
    "FALLBACK_CHAPTER_TITLE",
    "RestoreEngine",
    "RestoreReport",
    "SceneReattachment",
]
