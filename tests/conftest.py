"""Test configuration for the scene checkpoints project."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator

import pytest

from scenecheckpoints import (
    CategoryKind,
    Chapter,
    CheckpointStore,
    CompendiumEntry,
    InMemoryByteStore,
    LiveProject,
    Note,
    PromptTemplate,
    Scene,
    SceneContext,
    Setting,
    Summary,
    WorkshopSession,
)

FIXED_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class StepClock:
    """Clock that advances by one second on every call."""

    def __init__(self, start: datetime = FIXED_TIME) -> None:
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + timedelta(seconds=1)
        return value


def sequential_ids(prefix: str = "cp") -> Callable[[], str]:
    counter = iter(range(1, 10_000))

    def _next() -> str:
        return f"{prefix}-{next(counter):03d}"

    return _next


def build_project() -> LiveProject:
    """Return a small project with stable ids across every category."""

    project = LiveProject(title="The Night Train")
    project.put(
        CategoryKind.TEXT,
        Chapter(id="c1", title="Departure", scene_ids=("s1", "s2"), updated_at=FIXED_TIME),
    )
    project.put(
        CategoryKind.TEXT,
        Scene(id="s1", title="Platform", content="Mara waits.", updated_at=FIXED_TIME),
    )
    project.put(
        CategoryKind.TEXT,
        Scene(id="s2", title="Whistle", content="The train arrives.", updated_at=FIXED_TIME),
    )
    project.put(CategoryKind.SUMMARIES, Summary(id="s1", scope="scene", text="Mara waits."))
    project.put(CategoryKind.NOTES, Note(id="project", scope="project", text="Noir tone."))
    project.put(
        CategoryKind.COMPENDIUM,
        CompendiumEntry(id="e1", category="characters", title="Mara", updated_at=FIXED_TIME),
    )
    project.put(
        CategoryKind.TEMPLATES,
        PromptTemplate(id="t-prose", category="prose", title="Prose", user_template="{{beat}}"),
    )
    project.put(
        CategoryKind.SETTINGS, Setting(id="selected_prose_prompt_id", value="t-prose")
    )
    project.put(CategoryKind.SETTINGS, Setting(id="temperature", value=0.7))
    project.put(
        CategoryKind.WORKSHOP,
        WorkshopSession(id="w1", name="Chat 1", updated_at=FIXED_TIME),
    )
    project.put(
        CategoryKind.SCENE_CONTEXT,
        SceneContext(id="s1", compendium_ids=("e1",), scene_summary_ids=("s2",)),
    )
    return project


@pytest.fixture()
def project() -> LiveProject:
    return build_project()


@pytest.fixture()
def byte_store() -> InMemoryByteStore:
    return InMemoryByteStore()


@pytest.fixture()
def store(byte_store: InMemoryByteStore) -> CheckpointStore:
    return CheckpointStore(byte_store, clock=StepClock(), id_factory=sequential_ids())


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Remove every SCENE_CHECKPOINTS_* variable for the duration of a test."""

    import os

    for name in list(os.environ):
        if name.startswith("SCENE_CHECKPOINTS_"):
            monkeypatch.delenv(name)
    yield


__all__ = ["FIXED_TIME", "StepClock", "build_project", "sequential_ids"]
