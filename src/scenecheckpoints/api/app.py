"""FastAPI application exposing checkpoint and restore endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, Field, field_serializer, field_validator

from ..checkpoints import CheckpointListing, SceneRevision
from ..errors import (
    BusyError,
    CheckpointCancelledError,
    CheckpointError,
    CheckpointNotFoundError,
    CorruptSnapshotError,
    NoOpRequestedError,
    RestoreFailedError,
    StorageError,
)
from ..options import RestoreOptionSet
from ..project import CategoryKind, LiveProject
from ..restore import RestoreReport
from ..session import ProjectSession
from ..settings import CheckpointSettings

_ERROR_STATUS: tuple[tuple[type[Exception], int], ...] = (
    (CheckpointNotFoundError, 404),
    (CorruptSnapshotError, 422),
    (NoOpRequestedError, 400),
    (BusyError, 409),
    (CheckpointCancelledError, 409),
    (RestoreFailedError, 500),
    (StorageError, 500),
    (ValueError, 400),
)


def _http_error(exc: Exception) -> HTTPException:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


class CheckpointResource(BaseModel):
    """Metadata describing a stored checkpoint."""

    id: str
    created_at: datetime
    label: str = ""

    @field_serializer("created_at")
    def _serialise_created_at(self, value: datetime) -> str:
        return value.isoformat()

    @classmethod
    def from_listing(cls, listing: CheckpointListing) -> "CheckpointResource":
        return cls(id=listing.id, created_at=listing.created_at, label=listing.label)


class CheckpointListResponse(BaseModel):
    checkpoints: list[CheckpointResource] = Field(default_factory=list)


class CheckpointDetailResponse(CheckpointResource):
    counts: dict[str, int] = Field(
        default_factory=dict,
        description="Number of records stored per category.",
    )


class SceneRevisionResource(CheckpointResource):
    """A scene's title and content as stored in one checkpoint."""

    title: str
    content: str

    @classmethod
    def from_revision(cls, revision: SceneRevision) -> "SceneRevisionResource":
        return cls(
            id=revision.checkpoint_id,
            created_at=revision.created_at,
            label=revision.label,
            title=revision.title,
            content=revision.content,
        )


class SceneHistoryResponse(BaseModel):
    scene_id: str
    revisions: list[SceneRevisionResource]


class CheckpointCreateRequest(BaseModel):
    label: str = Field(
        "",
        max_length=200,
        description="Optional human readable label shown in checkpoint lists.",
    )


class RestoreRequest(BaseModel):
    """Request payload selecting what to restore from a checkpoint."""

    categories: dict[str, bool] = Field(
        default_factory=dict,
        description=(
            "Category toggles keyed by category name. Categories that are not"
            " mentioned are restored."
        ),
    )
    restore_deleted_entries: bool = False
    delete_entries_not_in_checkpoint: bool = False

    @field_validator("categories")
    @classmethod
    def _validate_categories(cls, value: dict[str, bool]) -> dict[str, bool]:
        for name in value:
            CategoryKind.parse(name)
        return value

    def to_options(self) -> RestoreOptionSet:
        return RestoreOptionSet.from_toggles(
            self.categories,
            restore_deleted_entries=self.restore_deleted_entries,
            delete_entries_not_in_checkpoint=self.delete_entries_not_in_checkpoint,
        )


class CategoryChangesResource(BaseModel):
    added: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)


class SceneReattachmentResource(BaseModel):
    scene_id: str
    chapter_id: str
    reason: Literal["checkpoint_parent", "fallback"]


class RestoreResponse(BaseModel):
    """Response payload summarising a completed restore."""

    checkpoint_id: str
    noop: bool
    total_changes: int
    summary: str
    categories: dict[str, CategoryChangesResource] = Field(default_factory=dict)
    reattached: list[SceneReattachmentResource] = Field(default_factory=list)
    pruned: dict[str, list[str]] = Field(default_factory=dict)
    fallback_chapter_id: str | None = None

    @classmethod
    def from_report(cls, report: RestoreReport) -> "RestoreResponse":
        payload = report.to_payload()
        return cls.model_validate({**payload, "summary": report.summary()})


def create_app(
    session: ProjectSession | None = None,
    *,
    settings: CheckpointSettings | None = None,
) -> FastAPI:
    """Create a FastAPI app exposing checkpoint endpoints for ``session``.

    Without an explicit session a starter project is created and checkpoints
    are stored wherever ``settings`` (or the environment) points.
    """

    if session is None:
        resolved_settings = settings or CheckpointSettings.from_env()
        session = ProjectSession(
            LiveProject.starter(),
            resolved_settings.build_store(),
            automatic_triggers=resolved_settings.automatic_triggers,
        )
    project_session = session

    app = FastAPI(
        title="Scene Checkpoints API",
        description=(
            "Create, inspect, delete and selectively restore checkpoints of a"
            " writing project."
        ),
        openapi_tags=[
            {
                "name": "Checkpoints",
                "description": "Point-in-time snapshots of the project and restores.",
            },
            {
                "name": "Scenes",
                "description": "Per-scene views across stored checkpoints.",
            },
        ],
    )

    @app.get(
        "/api/checkpoints",
        response_model=CheckpointListResponse,
        tags=["Checkpoints"],
    )
    def list_checkpoints() -> CheckpointListResponse:
        try:
            listings = project_session.list_checkpoints()
        except (CheckpointError, ValueError) as exc:
            raise _http_error(exc) from exc
        return CheckpointListResponse(
            checkpoints=[CheckpointResource.from_listing(item) for item in listings]
        )

    @app.post(
        "/api/checkpoints",
        response_model=CheckpointResource,
        status_code=201,
        tags=["Checkpoints"],
    )
    def create_checkpoint(payload: CheckpointCreateRequest) -> CheckpointResource:
        try:
            checkpoint_id = project_session.create_checkpoint(payload.label)
            listing = project_session.store.listing(checkpoint_id)
        except (CheckpointError, ValueError) as exc:
            raise _http_error(exc) from exc
        return CheckpointResource.from_listing(listing)

    @app.get(
        "/api/checkpoints/{checkpoint_id}",
        response_model=CheckpointDetailResponse,
        tags=["Checkpoints"],
    )
    def get_checkpoint(checkpoint_id: str) -> CheckpointDetailResponse:
        try:
            listing = project_session.store.listing(checkpoint_id)
            snapshot = project_session.store.load(checkpoint_id)
        except (CheckpointError, ValueError) as exc:
            raise _http_error(exc) from exc
        return CheckpointDetailResponse(
            id=listing.id,
            created_at=listing.created_at,
            label=listing.label,
            counts=snapshot.counts(),
        )

    @app.delete(
        "/api/checkpoints/{checkpoint_id}",
        status_code=204,
        response_class=Response,
        tags=["Checkpoints"],
    )
    def delete_checkpoint(checkpoint_id: str) -> Response:
        try:
            project_session.delete_checkpoint(checkpoint_id)
        except (CheckpointError, ValueError) as exc:
            raise _http_error(exc) from exc
        return Response(status_code=204)

    @app.post(
        "/api/checkpoints/{checkpoint_id}/restore",
        response_model=RestoreResponse,
        tags=["Checkpoints"],
    )
    def restore_checkpoint(checkpoint_id: str, payload: RestoreRequest) -> RestoreResponse:
        try:
            report = project_session.restore(checkpoint_id, payload.to_options())
        except (CheckpointError, ValueError) as exc:
            raise _http_error(exc) from exc
        return RestoreResponse.from_report(report)

    @app.get(
        "/api/scenes/{scene_id}/history",
        response_model=SceneHistoryResponse,
        tags=["Scenes"],
    )
    def scene_history(scene_id: str) -> SceneHistoryResponse:
        try:
            revisions = project_session.scene_history(scene_id)
        except (CheckpointError, ValueError) as exc:
            raise _http_error(exc) from exc
        return SceneHistoryResponse(
            scene_id=scene_id,
            revisions=[SceneRevisionResource.from_revision(item) for item in revisions],
        )

    return app


__all__ = [
    "CheckpointCreateRequest",
    "CheckpointDetailResponse",
    "CheckpointListResponse",
    "CheckpointResource",
    "RestoreRequest",
    "RestoreResponse",
    "SceneHistoryResponse",
    "SceneRevisionResource",
    "create_app",
]
