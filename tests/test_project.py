from __future__ import annotations

import pytest
from pydantic import ValidationError

from scenecheckpoints import (
    ALL_CATEGORIES,
    CategoryKind,
    Chapter,
    LiveProject,
    Scene,
    SceneContext,
    Setting,
)
from scenecheckpoints.project import (
    PROJECT_NOTE_ID,
    check_integrity,
    record_from_payload,
    record_to_payload,
    records_from_payload,
)


def test_category_kind_parse_accepts_aliases() -> None:
    assert CategoryKind.parse("Scene-Context") is CategoryKind.SCENE_CONTEXT
    assert CategoryKind.parse(" text ") is CategoryKind.TEXT
    assert CategoryKind.parse(CategoryKind.NOTES) is CategoryKind.NOTES

    with pytest.raises(ValueError, match="Unknown category 'plot'"):
        CategoryKind.parse("plot")


def test_live_project_exposes_every_category(project: LiveProject) -> None:
    for kind in ALL_CATEGORIES:
        assert isinstance(project.read_category(kind), dict)
    assert project.integrity_problems() == []


def test_records_are_immutable(project: LiveProject) -> None:
    scene = project.scenes()["s1"]
    with pytest.raises(ValidationError):
        scene.title = "Changed"  # type: ignore[misc]


def test_record_rejects_blank_ids() -> None:
    with pytest.raises(ValidationError):
        Scene(id="   ", title="Nowhere")


def test_text_payload_is_discriminated_by_kind() -> None:
    chapter = record_from_payload(
        CategoryKind.TEXT, {"id": "c9", "kind": "chapter", "title": "Later"}
    )
    scene = record_from_payload(
        CategoryKind.TEXT, {"id": "s9", "kind": "scene", "title": "Late"}
    )

    assert isinstance(chapter, Chapter)
    assert isinstance(scene, Scene)
    assert record_to_payload(scene)["kind"] == "scene"


def test_records_from_payload_rejects_duplicates() -> None:
    with pytest.raises(ValueError, match="Duplicate settings id 'a'"):
        records_from_payload(
            CategoryKind.SETTINGS,
            [{"id": "a", "value": 1}, {"id": "a", "value": 2}],
        )


def test_write_category_rejects_mismatched_keys(project: LiveProject) -> None:
    with pytest.raises(ValueError, match="carries id 'other'"):
        project.write_category(
            CategoryKind.SETTINGS, {"temperature": Setting(id="other", value=1)}
        )


def test_add_scene_appends_to_chapter(project: LiveProject) -> None:
    scene = project.add_scene("c1", "Tunnel", scene_id="s3")

    assert project.chapters()[0].scene_ids == ("s1", "s2", "s3")
    assert project.scenes()[scene.id].title == "Tunnel"
    with pytest.raises(KeyError):
        project.add_scene("missing", "Lost")


def test_delete_scene_detaches_from_chapter(project: LiveProject) -> None:
    assert project.delete_scene("s2") is True
    assert project.chapters()[0].scene_ids == ("s1",)
    assert project.delete_scene("s2") is False


def test_check_integrity_reports_broken_references(project: LiveProject) -> None:
    project.put(CategoryKind.TEXT, Scene(id="s4", title="Loose"))
    project.put(
        CategoryKind.SCENE_CONTEXT, SceneContext(id="s1", compendium_ids=("ghost",))
    )
    project.put(
        CategoryKind.SETTINGS, Setting(id="selected_prose_prompt_id", value="gone")
    )

    problems = check_integrity(project.categories)

    assert "scene s4 belongs to no chapter" in problems
    assert "scene context s1 references missing compendium entry ghost" in problems
    assert "setting selected_prose_prompt_id points at missing templates gone" in problems


def test_check_integrity_reports_shared_scenes(project: LiveProject) -> None:
    project.put(CategoryKind.TEXT, Chapter(id="c2", title="Twin", scene_ids=("s1",)))

    assert check_integrity(project.categories) == [
        "scene s1 is listed by chapters c1 and c2"
    ]


def test_payload_round_trip_preserves_chapter_order(project: LiveProject) -> None:
    project.add_chapter("Arrival", chapter_id="c0")

    restored = LiveProject.from_payload(project.to_payload())

    assert [chapter.id for chapter in restored.chapters()] == ["c1", "c0"]
    assert restored.categories == project.categories


def test_starter_project_is_consistent() -> None:
    project = LiveProject.starter()

    assert project.integrity_problems() == []
    assert len(project.chapters()) == 1
    assert len(project.scenes()) == 1
    assert PROJECT_NOTE_ID in project.read_category(CategoryKind.NOTES)


def test_clone_shares_no_state(project: LiveProject) -> None:
    copy = project.clone()
    copy.delete_scene("s1")

    assert "s1" in project.scenes()
    assert project.chapters()[0].scene_ids == ("s1", "s2")
