from __future__ import annotations

import threading
from typing import List

import pytest

from conftest import StepClock, sequential_ids
from scenecheckpoints import (
    BusyError,
    CategoryKind,
    CheckpointStore,
    CheckpointTrigger,
    InMemoryByteStore,
    LiveProject,
    NoOpRequestedError,
    ProjectSession,
    RestoreOptionSet,
    Setting,
)


class _GatedByteStore(InMemoryByteStore):
    """Byte store whose writes block until the test opens the gate."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.gate = threading.Event()

    def put(self, key: str, content: bytes) -> None:
        self.entered.set()
        assert self.gate.wait(timeout=5)
        super().put(key, content)


def _session(project: LiveProject, byte_store: InMemoryByteStore | None = None) -> ProjectSession:
    store = CheckpointStore(
        byte_store or InMemoryByteStore(), clock=StepClock(), id_factory=sequential_ids()
    )
    return ProjectSession(project, store)


def test_create_and_restore_round_trip(project: LiveProject) -> None:
    session = _session(project)
    checkpoint_id = session.create_checkpoint("Before edits")

    session.edit(lambda live: live.delete_scene("s2"))
    report = session.restore(
        checkpoint_id, RestoreOptionSet.only("text", restore_deleted_entries=True)
    )

    assert "s2" in project.scenes()
    assert project.chapters()[0].scene_ids == ("s1", "s2")
    assert report.changes_for("text").added == ["s2"]
    assert [item.label for item in session.list_checkpoints()] == ["Before edits"]


def test_restore_rejects_noop_options(project: LiveProject) -> None:
    session = _session(project)
    checkpoint_id = session.create_checkpoint()

    with pytest.raises(NoOpRequestedError):
        session.restore(checkpoint_id, RestoreOptionSet.none())


def test_can_restore_gate(project: LiveProject) -> None:
    session = _session(project)

    assert session.can_restore("cp-001", RestoreOptionSet.all())
    assert not session.can_restore("cp-001", RestoreOptionSet.none())
    assert not session.can_restore(None, RestoreOptionSet.all())
    assert not session.can_restore("  ", RestoreOptionSet.all())


def test_scene_history_gate(project: LiveProject) -> None:
    session = _session(project)

    assert not session.can_show_scene_history("s1")
    session.create_checkpoint()

    assert session.can_show_scene_history("s1")
    assert not session.can_show_scene_history(None)
    assert not session.can_show_scene_history(" ")
    assert [item.title for item in session.scene_history("s1")] == ["Platform"]


def test_checkpoint_before_automatic_trigger(project: LiveProject) -> None:
    session = _session(project)

    with session.checkpoint_before(CheckpointTrigger.BEFORE_IMPORT) as checkpoint_id:
        session.edit(lambda live: live.add_chapter("Imported", chapter_id="c9"))

    assert checkpoint_id == "cp-001"
    snapshot = session.store.load("cp-001")
    assert "c9" not in snapshot.category(CategoryKind.TEXT)
    assert snapshot.label == "Before import"


def test_checkpoint_before_skips_manual_only_triggers(project: LiveProject) -> None:
    session = _session(project)

    with session.checkpoint_before("before_bulk_delete") as checkpoint_id:
        pass

    assert checkpoint_id is None
    assert session.list_checkpoints() == []


def test_unknown_trigger_is_rejected(project: LiveProject) -> None:
    with pytest.raises(ValueError, match="Unknown checkpoint trigger"):
        ProjectSession(
            project,
            CheckpointStore(InMemoryByteStore()),
            automatic_triggers=["before_lunch"],
        )


def test_second_operation_while_busy_is_rejected(project: LiveProject) -> None:
    byte_store = _GatedByteStore()
    session = _session(project, byte_store)
    errors: List[BaseException] = []

    def _create() -> None:
        try:
            session.create_checkpoint("slow")
        except BaseException as exc:  # pragma: no cover - surfaced by assert below
            errors.append(exc)

    worker = threading.Thread(target=_create)
    worker.start()
    assert byte_store.entered.wait(timeout=5)

    with pytest.raises(BusyError):
        session.create_checkpoint("second")
    with pytest.raises(BusyError):
        session.restore("cp-001", RestoreOptionSet.all())

    byte_store.gate.set()
    worker.join(timeout=5)

    assert errors == []
    assert [item.id for item in session.list_checkpoints()] == ["cp-001"]


def test_edits_are_allowed_while_checkpoint_is_written(project: LiveProject) -> None:
    byte_store = _GatedByteStore()
    session = _session(project, byte_store)

    worker = threading.Thread(target=session.create_checkpoint)
    worker.start()
    assert byte_store.entered.wait(timeout=5)

    session.edit(lambda live: live.add_chapter("During write", chapter_id="c5"))

    byte_store.gate.set()
    worker.join(timeout=5)
    snapshot = session.store.load("cp-001")
    assert "c5" not in snapshot.category(CategoryKind.TEXT)


def test_concurrent_restores_never_corrupt_state(project: LiveProject) -> None:
    session = _session(project)
    checkpoint_id = session.create_checkpoint()
    session.edit(
        lambda live: live.put(CategoryKind.SETTINGS, Setting(id="temperature", value=1.5))
    )
    options = RestoreOptionSet.all(
        restore_deleted_entries=True, delete_entries_not_in_checkpoint=True
    )
    expected = {
        kind: dict(records)
        for kind, records in session.store.load(checkpoint_id).categories.items()
    }

    outcomes: List[str] = []
    failures: List[BaseException] = []
    lock = threading.Lock()
    start = threading.Barrier(8)

    def _worker() -> None:
        start.wait()
        for _ in range(25):
            try:
                session.restore(checkpoint_id, options)
                result = "ok"
            except BusyError:
                result = "busy"
            except BaseException as exc:  # pragma: no cover - surfaced by assert below
                failures.append(exc)
                return
            with lock:
                outcomes.append(result)

    threads = [threading.Thread(target=_worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert failures == []
    assert "ok" in outcomes
    assert len(outcomes) == 8 * 25
    assert project.integrity_problems() == []
    for kind, records in expected.items():
        assert dict(project.read_category(kind)) == records
