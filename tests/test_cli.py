from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterator

import pytest
import structlog

from scenecheckpoints import CategoryKind
from scenecheckpoints.cli import load_project, main, save_project


@pytest.fixture(autouse=True)
def _restore_logging(clean_env: None) -> Iterator[None]:
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture()
def paths(tmp_path: Path) -> tuple[Path, Path]:
    return tmp_path / "novel.json", tmp_path / "checkpoints"


def _run(paths: tuple[Path, Path], *args: str) -> int:
    project_path, store_dir = paths
    return main(["--project", str(project_path), "--store", str(store_dir), *args])


def _json_output(capsys: pytest.CaptureFixture[str]) -> object:
    return json.loads(capsys.readouterr().out)


def test_create_list_restore_round_trip(
    paths: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    project_path, _ = paths

    assert _run(paths, "--json", "create", "--label", "Start") == 0
    created = _json_output(capsys)
    assert isinstance(created, dict)
    checkpoint_id = created["id"]
    assert project_path.exists()

    project = load_project(project_path)
    scene_id = next(iter(project.scenes()))
    project.delete_scene(scene_id)
    save_project(project_path, project)

    assert _run(paths, "restore", checkpoint_id, "--only", "text", "--restore-deleted") == 0
    assert capsys.readouterr().out.startswith("Restored text:")
    assert scene_id in load_project(project_path).scenes()

    assert _run(paths, "--json", "list") == 0
    listings = _json_output(capsys)
    assert isinstance(listings, list)
    assert [item["id"] for item in listings] == [checkpoint_id]

    assert _run(paths, "show", checkpoint_id) == 0
    shown = capsys.readouterr().out
    assert "Label:      Start" in shown
    assert "  text: 2" in shown

    assert _run(paths, "delete", checkpoint_id) == 0
    assert capsys.readouterr().out.strip() == f"Deleted checkpoint {checkpoint_id}."
    assert _run(paths, "list") == 0
    assert capsys.readouterr().out.strip() == "No checkpoints yet."


def test_restore_respects_exclusions(
    paths: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    project_path, _ = paths
    _run(paths, "--json", "create")
    created = _json_output(capsys)
    assert isinstance(created, dict)

    project = load_project(project_path)
    scene_id = next(iter(project.scenes()))
    project.delete_scene(scene_id)
    project.remove(CategoryKind.NOTES, "project")
    save_project(project_path, project)

    assert (
        _run(paths, "restore", created["id"], "--exclude", "text", "--restore-deleted")
        == 0
    )

    restored = load_project(project_path)
    assert scene_id not in restored.scenes()
    assert "project" in restored.read_category(CategoryKind.NOTES)


def test_unknown_checkpoint_exits_with_error(
    paths: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(paths, "restore", "nope") == 1

    assert "Checkpoint 'nope' does not exist." in capsys.readouterr().err


def test_noop_restore_exits_with_error(
    paths: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    _run(paths, "create")
    checkpoint_id = capsys.readouterr().out.strip()

    assert _run(paths, "restore", checkpoint_id, "--only", "text", "--exclude", "text") == 1
    assert (
        "Select at least one category to restore from the checkpoint."
        in capsys.readouterr().err
    )


def test_invalid_project_file(
    paths: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    project_path, _ = paths
    project_path.write_text("{broken", encoding="utf-8")

    assert _run(paths, "list") == 1
    assert "is not valid JSON" in capsys.readouterr().err


def test_invalid_environment(
    paths: tuple[Path, Path],
    capsys: pytest.CaptureFixture[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("SCENE_CHECKPOINTS_RETENTION", "zero")

    assert _run(paths, "list") == 1
    assert "SCENE_CHECKPOINTS_RETENTION" in capsys.readouterr().err


def test_store_defaults_to_directory_beside_project(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    project_path = tmp_path / "novel.json"

    assert main(["--project", str(project_path), "create"]) == 0
    checkpoint_id = capsys.readouterr().out.strip()

    assert (tmp_path / ".checkpoints" / f"{checkpoint_id}.checkpoint").exists()


def test_history_command(
    paths: tuple[Path, Path], capsys: pytest.CaptureFixture[str]
) -> None:
    assert _run(paths, "history", "missing-scene") == 0
    assert capsys.readouterr().out.strip() == "No checkpoint contains scene missing-scene."

    assert _run(paths, "--json", "create", "--label", "Start") == 0
    checkpoint_id = _json_output(capsys)["id"]  # type: ignore[index]
    scene_id = next(iter(load_project(paths[0]).scenes()))

    assert _run(paths, "--json", "history", scene_id) == 0
    history = _json_output(capsys)
    assert isinstance(history, list)
    assert [item["checkpoint_id"] for item in history] == [checkpoint_id]
    assert history[0]["label"] == "Start"
