"""Entity records and the live, mutable state of a writing project."""

from __future__ import annotations

import collections.abc
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    Iterable,
    List,
    Literal,
    Mapping,
    Protocol,
    Tuple,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_serializer,
    field_validator,
)


class CategoryKind(str, Enum):
    """Partitions of project state that can be restored independently."""

    TEXT = "text"
    SUMMARIES = "summaries"
    NOTES = "notes"
    COMPENDIUM = "compendium"
    TEMPLATES = "templates"
    SETTINGS = "settings"
    WORKSHOP = "workshop"
    INPUT_HISTORY = "input_history"
    SCENE_CONTEXT = "scene_context"

    @classmethod
    def parse(cls, value: "str | CategoryKind") -> "CategoryKind":
        """Return the category named by ``value`` (case-insensitive)."""

        if isinstance(value, CategoryKind):
            return value
        normalised = str(value).strip().lower().replace("-", "_")
        try:
            return cls(normalised)
        except ValueError as exc:
            choices = ", ".join(kind.value for kind in cls)
            raise ValueError(
                f"Unknown category '{value}'. Expected one of: {choices}."
            ) from exc


ALL_CATEGORIES: Tuple[CategoryKind, ...] = tuple(CategoryKind)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _Record(BaseModel):
    """Base class for immutable, identity-bearing project records."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)

    @field_validator("id")
    @classmethod
    def _strip_id(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("id must be a non-empty string")
        return stripped


class Chapter(_Record):
    kind: Literal["chapter"] = "chapter"
    title: str
    scene_ids: Tuple[str, ...] = ()
    updated_at: datetime = Field(default_factory=_utcnow)


class Scene(_Record):
    kind: Literal["scene"] = "scene"
    title: str
    content: str = ""
    updated_at: datetime = Field(default_factory=_utcnow)


TextRecord = Annotated[Union[Chapter, Scene], Field(discriminator="kind")]


class Summary(_Record):
    """Summary text attached to a chapter or a scene (``id`` is the target)."""

    scope: Literal["scene", "chapter"]
    text: str = ""


PROJECT_NOTE_ID = "project"


class Note(_Record):
    """Free-form notes for the project, a chapter or a scene."""

    scope: Literal["project", "chapter", "scene"]
    text: str = ""


class CompendiumEntry(_Record):
    category: Literal["characters", "locations", "lore", "items", "notes"]
    title: str
    body: str = ""
    tags: Tuple[str, ...] = ()
    updated_at: datetime = Field(default_factory=_utcnow)


class PromptTemplate(_Record):
    category: Literal["prose", "rewrite", "summary", "workshop"] = "prose"
    title: str
    user_template: str
    system_template: str = ""


class FrozenMapping(collections.abc.Mapping):
    """Read-only mapping used for structured setting values."""

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any]) -> None:
        self._data = dict(data)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self):
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"FrozenMapping({self._data!r})"

    def __copy__(self) -> "FrozenMapping":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "FrozenMapping":
        return self


def _freeze_value(value: Any) -> Any:
    if isinstance(value, collections.abc.Mapping):
        return FrozenMapping({str(key): _freeze_value(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze_value(item) for item in value)
    return value


def _thaw_value(value: Any) -> Any:
    if isinstance(value, collections.abc.Mapping):
        return {key: _thaw_value(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw_value(item) for item in value]
    return value


class Setting(_Record):
    """A single generation or selection setting (``id`` is the setting key).

    Lists and objects are stored as tuples and :class:`FrozenMapping` so a
    setting can never change after it has been created.
    """

    value: Any = None

    @field_validator("value")
    @classmethod
    def _freeze(cls, value: Any) -> Any:
        return _freeze_value(value)

    @field_serializer("value")
    def _serialize_value(self, value: Any) -> Any:
        return _thaw_value(value)


class WorkshopMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Literal["user", "assistant"]
    content: str
    created_at: datetime = Field(default_factory=_utcnow)


class WorkshopSession(_Record):
    name: str
    messages: Tuple[WorkshopMessage, ...] = ()
    updated_at: datetime = Field(default_factory=_utcnow)


class InputHistory(_Record):
    """Recently submitted inputs for one prompt field (``id`` names the field)."""

    entries: Tuple[str, ...] = ()


class SceneContext(_Record):
    """Context selections for a scene (``id`` is the scene id)."""

    compendium_ids: Tuple[str, ...] = ()
    scene_summary_ids: Tuple[str, ...] = ()
    chapter_summary_ids: Tuple[str, ...] = ()


Entity = Union[
    Chapter,
    Scene,
    Summary,
    Note,
    CompendiumEntry,
    PromptTemplate,
    Setting,
    WorkshopSession,
    InputHistory,
    SceneContext,
]

_RECORD_TYPES: Dict[CategoryKind, Any] = {
    CategoryKind.TEXT: TextRecord,
    CategoryKind.SUMMARIES: Summary,
    CategoryKind.NOTES: Note,
    CategoryKind.COMPENDIUM: CompendiumEntry,
    CategoryKind.TEMPLATES: PromptTemplate,
    CategoryKind.SETTINGS: Setting,
    CategoryKind.WORKSHOP: WorkshopSession,
    CategoryKind.INPUT_HISTORY: InputHistory,
    CategoryKind.SCENE_CONTEXT: SceneContext,
}

_RECORD_ADAPTERS: Dict[CategoryKind, TypeAdapter[Any]] = {
    kind: TypeAdapter(record_type) for kind, record_type in _RECORD_TYPES.items()
}

# Settings that point at other entities: key -> (category, template category).
SELECTION_SETTINGS: Dict[str, Tuple[CategoryKind, str | None]] = {
    "selected_prose_prompt_id": (CategoryKind.TEMPLATES, "prose"),
    "selected_rewrite_prompt_id": (CategoryKind.TEMPLATES, "rewrite"),
    "selected_summary_prompt_id": (CategoryKind.TEMPLATES, "summary"),
    "selected_workshop_prompt_id": (CategoryKind.TEMPLATES, "workshop"),
    "selected_workshop_session_id": (CategoryKind.WORKSHOP, None),
}


def record_from_payload(kind: CategoryKind, payload: object) -> Entity:
    """Validate ``payload`` as a record of ``kind``.

    Raises:
        pydantic.ValidationError: If the payload does not describe a valid record.
    """

    return _RECORD_ADAPTERS[kind].validate_python(payload)


def record_to_payload(record: Entity) -> Dict[str, Any]:
    """Return a JSON-serialisable representation of ``record``."""

    return record.model_dump(mode="json")


class ProjectAccessor(Protocol):
    """Capability for reading and replacing whole categories of live state."""

    def read_category(self, kind: CategoryKind) -> Mapping[str, Entity]:
        """Return the current records of ``kind`` keyed by id."""

    def write_category(self, kind: CategoryKind, records: Mapping[str, Entity]) -> None:
        """Replace every record of ``kind`` with ``records``."""


def clone_category(records: Mapping[str, Entity]) -> Dict[str, Entity]:
    """Structurally clone a category so the copy shares no mutable state."""

    return {key: record.model_copy(deep=True) for key, record in records.items()}


@dataclass
class LiveProject:
    """The continuously edited working state of a project.

    Records are grouped per :class:`CategoryKind` and keyed by their id. The
    order of chapter records inside the ``text`` category is the chapter order
    shown to the writer.
    """

    title: str = "Untitled Project"
    categories: Dict[CategoryKind, Dict[str, Entity]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.title = self._validate_label(self.title, "title")
        normalised: Dict[CategoryKind, Dict[str, Entity]] = {}
        for kind in ALL_CATEGORIES:
            normalised[kind] = dict(self.categories.get(kind, {}))
        self.categories = normalised

    # ProjectAccessor -------------------------------------------------------

    def read_category(self, kind: CategoryKind) -> Mapping[str, Entity]:
        return self.categories[CategoryKind.parse(kind)]

    def write_category(self, kind: CategoryKind, records: Mapping[str, Entity]) -> None:
        resolved = CategoryKind.parse(kind)
        validated: Dict[str, Entity] = {}
        for key, record in records.items():
            if record.id != key:
                raise ValueError(
                    f"Record keyed as '{key}' carries id '{record.id}' in {resolved.value}."
                )
            validated[key] = record
        self.categories[resolved] = validated

    # Editing helpers -------------------------------------------------------

    def put(self, kind: CategoryKind, record: Entity) -> None:
        """Insert or replace a single record."""

        self.categories[CategoryKind.parse(kind)][record.id] = record

    def remove(self, kind: CategoryKind, record_id: str) -> bool:
        """Remove a record, returning ``True`` if it existed."""

        return self.categories[CategoryKind.parse(kind)].pop(record_id, None) is not None

    def chapters(self) -> List[Chapter]:
        """Return chapters in display order."""

        return [
            record
            for record in self.categories[CategoryKind.TEXT].values()
            if isinstance(record, Chapter)
        ]

    def scenes(self) -> Dict[str, Scene]:
        return {
            key: record
            for key, record in self.categories[CategoryKind.TEXT].items()
            if isinstance(record, Scene)
        }

    def add_chapter(self, title: str, *, chapter_id: str | None = None) -> Chapter:
        chapter = Chapter(
            id=chapter_id or uuid.uuid4().hex,
            title=self._validate_label(title, "chapter title"),
        )
        self.put(CategoryKind.TEXT, chapter)
        return chapter

    def add_scene(
        self,
        chapter_id: str,
        title: str,
        *,
        content: str = "",
        scene_id: str | None = None,
    ) -> Scene:
        """Create a scene and append it to the chapter's scene list.

        Raises:
            KeyError: If ``chapter_id`` does not name a chapter.
        """

        text = self.categories[CategoryKind.TEXT]
        chapter = text.get(chapter_id)
        if not isinstance(chapter, Chapter):
            raise KeyError(f"Chapter '{chapter_id}' does not exist")

        scene = Scene(
            id=scene_id or uuid.uuid4().hex,
            title=self._validate_label(title, "scene title"),
            content=content,
        )
        text[scene.id] = scene
        text[chapter.id] = chapter.model_copy(
            update={
                "scene_ids": chapter.scene_ids + (scene.id,),
                "updated_at": _utcnow(),
            }
        )
        return scene

    def delete_scene(self, scene_id: str) -> bool:
        """Remove a scene and detach it from every chapter."""

        text = self.categories[CategoryKind.TEXT]
        if not isinstance(text.get(scene_id), Scene):
            return False
        del text[scene_id]
        for chapter in self.chapters():
            if scene_id in chapter.scene_ids:
                text[chapter.id] = chapter.model_copy(
                    update={
                        "scene_ids": tuple(
                            sid for sid in chapter.scene_ids if sid != scene_id
                        )
                    }
                )
        return True

    # Integrity -------------------------------------------------------------

    def integrity_problems(self) -> List[str]:
        """Describe every violated structural invariant (empty when valid)."""

        return check_integrity(self.categories)

    # Persistence -----------------------------------------------------------

    def clone(self) -> "LiveProject":
        return LiveProject(
            title=self.title,
            categories={
                kind: clone_category(records)
                for kind, records in self.categories.items()
            },
        )

    def to_payload(self) -> Dict[str, object]:
        """Return a JSON-serialisable representation of the project."""

        return {
            "title": self.title,
            "categories": {
                kind.value: [record_to_payload(record) for record in records.values()]
                for kind, records in self.categories.items()
            },
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> "LiveProject":
        """Build a project from its stored representation.

        Raises:
            ValueError: If the payload is malformed.
        """

        categories_payload = payload.get("categories", {})
        if not isinstance(categories_payload, Mapping):
            raise ValueError("Invalid project payload: categories must be an object")

        categories: Dict[CategoryKind, Dict[str, Entity]] = {}
        for name, records in categories_payload.items():
            kind = CategoryKind.parse(str(name))
            categories[kind] = records_from_payload(kind, records)

        title = payload.get("title", "Untitled Project")
        return cls(title=str(title), categories=categories)

    @classmethod
    def starter(cls) -> "LiveProject":
        """Return a small project with one chapter, one scene and default templates."""

        project = cls(title="Untitled Project")
        chapter = project.add_chapter("Chapter 1")
        project.add_scene(
            chapter.id,
            "Scene 1",
            content="Rain hammered the station roof while Mara watched the empty platform.",
        )
        prose = PromptTemplate(
            id="00000000-0000-0000-0000-000000000101",
            category="prose",
            title="Cinematic Prose",
            user_template="Continue this scene from the provided beat.\n\n{{beat}}",
            system_template="You are an expert fiction writing assistant.",
        )
        workshop = PromptTemplate(
            id="00000000-0000-0000-0000-000000000401",
            category="workshop",
            title="Story Workshop",
            user_template="Work with me on this story problem.\n\n{{context}}",
            system_template="You are an experienced writing coach.",
        )
        session = WorkshopSession(id=uuid.uuid4().hex, name="Chat 1")
        project.put(CategoryKind.TEMPLATES, prose)
        project.put(CategoryKind.TEMPLATES, workshop)
        project.put(CategoryKind.WORKSHOP, session)
        project.put(
            CategoryKind.SETTINGS, Setting(id="selected_prose_prompt_id", value=prose.id)
        )
        project.put(
            CategoryKind.SETTINGS,
            Setting(id="selected_workshop_prompt_id", value=workshop.id),
        )
        project.put(
            CategoryKind.SETTINGS,
            Setting(id="selected_workshop_session_id", value=session.id),
        )
        project.put(CategoryKind.NOTES, Note(id=PROJECT_NOTE_ID, scope="project"))
        return project

    @staticmethod
    def _validate_label(value: str, field_name: str) -> str:
        if not isinstance(value, str):
            raise TypeError(f"{field_name} must be a string, got {type(value)!r}")

        stripped = value.strip()
        if not stripped:
            raise ValueError(f"{field_name} must be a non-empty string")
        return stripped


def records_from_payload(kind: CategoryKind, payload: object) -> Dict[str, Entity]:
    if isinstance(payload, (str, bytes)) or not isinstance(payload, Iterable):
        raise ValueError(f"Invalid payload: {kind.value} must be a list of records")

    records: Dict[str, Entity] = {}
    for item in payload:
        record = record_from_payload(kind, item)
        if record.id in records:
            raise ValueError(f"Duplicate {kind.value} id '{record.id}'")
        records[record.id] = record
    return records


def check_integrity(categories: Mapping[CategoryKind, Mapping[str, Entity]]) -> List[str]:
    """Return human readable descriptions of broken references in ``categories``."""

    problems: List[str] = []
    text = categories.get(CategoryKind.TEXT, {})
    chapter_ids = {key for key, record in text.items() if isinstance(record, Chapter)}
    scene_ids = {key for key, record in text.items() if isinstance(record, Scene)}

    owners: Dict[str, str] = {}
    for key, record in text.items():
        if not isinstance(record, Chapter):
            continue
        for scene_id in record.scene_ids:
            if scene_id not in scene_ids:
                problems.append(f"chapter {key} lists missing scene {scene_id}")
            elif scene_id in owners:
                problems.append(
                    f"scene {scene_id} is listed by chapters {owners[scene_id]} and {key}"
                )
            else:
                owners[scene_id] = key
    for scene_id in sorted(scene_ids - set(owners)):
        problems.append(f"scene {scene_id} belongs to no chapter")

    compendium_ids = set(categories.get(CategoryKind.COMPENDIUM, {}))
    for key, context in categories.get(CategoryKind.SCENE_CONTEXT, {}).items():
        if not isinstance(context, SceneContext):
            problems.append(f"scene context {key} is not a scene context record")
            continue
        if key not in scene_ids:
            problems.append(f"scene context {key} references a missing scene")
        for entry_id in context.compendium_ids:
            if entry_id not in compendium_ids:
                problems.append(
                    f"scene context {key} references missing compendium entry {entry_id}"
                )
        for target in context.scene_summary_ids:
            if target not in scene_ids:
                problems.append(f"scene context {key} references missing scene {target}")
        for target in context.chapter_summary_ids:
            if target not in chapter_ids:
                problems.append(
                    f"scene context {key} references missing chapter {target}"
                )

    for kind in (CategoryKind.SUMMARIES, CategoryKind.NOTES):
        for key, record in categories.get(kind, {}).items():
            scope = getattr(record, "scope", None)
            if scope == "scene" and key not in scene_ids:
                problems.append(f"{kind.value} entry {key} targets a missing scene")
            elif scope == "chapter" and key not in chapter_ids:
                problems.append(f"{kind.value} entry {key} targets a missing chapter")

    settings = categories.get(CategoryKind.SETTINGS, {})
    for key, (target_kind, _) in SELECTION_SETTINGS.items():
        setting = settings.get(key)
        if setting is None or getattr(setting, "value", None) is None:
            continue
        value = getattr(setting, "value")
        if str(value) not in categories.get(target_kind, {}):
            problems.append(f"setting {key} points at missing {target_kind.value} {value}")

    return problems


def snapshot_categories(accessor: ProjectAccessor) -> Dict[CategoryKind, Dict[str, Entity]]:
    """Deep-copy every category exposed by ``accessor``."""

    return {
        kind: clone_category(accessor.read_category(kind)) for kind in ALL_CATEGORIES
    }


__all__ = [
    "ALL_CATEGORIES",
    "CategoryKind",
    "Chapter",
    "CompendiumEntry",
    "Entity",
    "InputHistory",
    "LiveProject",
    "Note",
    "PROJECT_NOTE_ID",
    "FrozenMapping",
    "ProjectAccessor",
    "PromptTemplate",
    "SELECTION_SETTINGS",
    "Scene",
    "SceneContext",
    "Setting",
    "Summary",
    "WorkshopMessage",
    "WorkshopSession",
    "check_integrity",
    "clone_category",
    "record_from_payload",
    "record_to_payload",
    "records_from_payload",
    "snapshot_categories",
]
