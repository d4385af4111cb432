"""Configuration helpers for the checkpoint command line and HTTP service."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import AbstractSet, Any, Mapping

from .checkpoints import CheckpointStore
from .session import DEFAULT_AUTOMATIC_TRIGGERS, CheckpointTrigger
from .storage import ByteStore, DirectoryByteStore, InMemoryByteStore, S3ByteStore

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _normalise_path(value: str | None) -> Path | None:
    if value is None:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    return Path(trimmed).expanduser()


def _normalise_string(value: str | None, *, default: str | None = None) -> str | None:
    if value is None:
        return default

    trimmed = value.strip()
    return trimmed or default


def _parse_retention(value: str | None, *, variable: str) -> int | None:
    trimmed = _normalise_string(value)
    if trimmed is None:
        return None
    try:
        parsed = int(trimmed)
    except ValueError as exc:
        raise ValueError(f"{variable} must be a positive integer.") from exc
    if parsed < 1:
        raise ValueError(f"{variable} must be greater than zero.")
    return parsed


def _parse_bool(value: str | None, *, variable: str) -> bool:
    trimmed = _normalise_string(value)
    if trimmed is None:
        return False
    lowered = trimmed.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{variable} must be one of: 1, 0, true, false, yes, no, on, off.")


def _parse_triggers(value: str | None, *, variable: str) -> AbstractSet[CheckpointTrigger]:
    trimmed = _normalise_string(value)
    if trimmed is None:
        return DEFAULT_AUTOMATIC_TRIGGERS
    if trimmed.lower() == "none":
        return frozenset()
    names = [name.strip() for name in trimmed.split(",") if name.strip()]
    try:
        return frozenset(CheckpointTrigger.parse(name) for name in names)
    except ValueError as exc:
        raise ValueError(f"{variable}: {exc}") from exc


def _parse_log_level(value: str | None, *, variable: str) -> str:
    level = (_normalise_string(value, default="INFO") or "INFO").upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"{variable} must be a logging level name such as INFO or DEBUG.")
    return level


@dataclass(frozen=True)
class CheckpointSettings:
    """Deployment settings for checkpoint storage and logging.

    Values are read from ``SCENE_CHECKPOINTS_*`` environment variables so the
    command line and the API can be configured without code changes. Empty
    strings are treated as if the variable was unset. Without a directory or
    bucket, checkpoints live in memory only.
    """

    store_dir: Path | None = None
    retention: int | None = None
    automatic_triggers: AbstractSet[CheckpointTrigger] = DEFAULT_AUTOMATIC_TRIGGERS
    s3_bucket: str | None = None
    s3_prefix: str | None = None
    s3_region: str | None = None
    s3_endpoint_url: str | None = None
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "CheckpointSettings":
        """Return settings populated from ``environ``.

        Args:
            environ: Optional mapping of environment variables. When omitted,
                :data:`os.environ` is used.

        Raises:
            ValueError: If a variable holds an invalid value. The message names
                the variable.
        """

        source = environ if environ is not None else os.environ

        return cls(
            store_dir=_normalise_path(source.get("SCENE_CHECKPOINTS_STORE_DIR")),
            retention=_parse_retention(
                source.get("SCENE_CHECKPOINTS_RETENTION"),
                variable="SCENE_CHECKPOINTS_RETENTION",
            ),
            automatic_triggers=_parse_triggers(
                source.get("SCENE_CHECKPOINTS_AUTOMATIC_TRIGGERS"),
                variable="SCENE_CHECKPOINTS_AUTOMATIC_TRIGGERS",
            ),
            s3_bucket=_normalise_string(source.get("SCENE_CHECKPOINTS_S3_BUCKET")),
            s3_prefix=_normalise_string(source.get("SCENE_CHECKPOINTS_S3_PREFIX")),
            s3_region=_normalise_string(source.get("SCENE_CHECKPOINTS_S3_REGION")),
            s3_endpoint_url=_normalise_string(
                source.get("SCENE_CHECKPOINTS_S3_ENDPOINT_URL")
            ),
            log_level=_parse_log_level(
                source.get("SCENE_CHECKPOINTS_LOG_LEVEL"),
                variable="SCENE_CHECKPOINTS_LOG_LEVEL",
            ),
            log_json=_parse_bool(
                source.get("SCENE_CHECKPOINTS_LOG_JSON"),
                variable="SCENE_CHECKPOINTS_LOG_JSON",
            ),
        )

    def build_byte_store(self, *, s3_client: Any | None = None) -> ByteStore:
        """Return the byte store these settings describe.

        A bucket takes precedence over a directory; with neither configured an
        in-memory store is returned.
        """

        if self.s3_bucket is not None:
            return S3ByteStore(
                bucket=self.s3_bucket,
                prefix=self.s3_prefix,
                client=s3_client,
                region_name=self.s3_region,
                endpoint_url=self.s3_endpoint_url,
            )
        if self.store_dir is not None:
            return DirectoryByteStore(self.store_dir)
        return InMemoryByteStore()

    def build_store(self, *, s3_client: Any | None = None) -> CheckpointStore:
        return CheckpointStore(
            self.build_byte_store(s3_client=s3_client), retention=self.retention
        )


__all__ = ["CheckpointSettings"]
