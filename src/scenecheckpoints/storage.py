"""Byte stores that hold encoded checkpoints.

The checkpoint store only needs four operations from its storage layer:
``put``, ``get``, ``list`` and ``delete`` over opaque keys. How bytes are laid
out physically is up to each implementation.
"""

from __future__ import annotations

import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Mapping, Protocol, cast

import structlog

from .errors import StorageError

logger = structlog.get_logger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class ByteStore(ABC):
    """Interface describing how encoded checkpoints are persisted."""

    @abstractmethod
    def put(self, key: str, content: bytes) -> None:
        """Persist ``content`` under ``key``, replacing any previous value."""

    @abstractmethod
    def get(self, key: str) -> bytes:
        """Return the bytes stored under ``key``.

        Raises:
            KeyError: If nothing is stored under ``key``.
        """

    @abstractmethod
    def list(self) -> List[str]:
        """Return every stored key in ascending order."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key`` if it exists."""


class InMemoryByteStore(ByteStore):
    """Keep encoded checkpoints in local process memory."""

    def __init__(self) -> None:
        self._items: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, key: str, content: bytes) -> None:
        validated = validate_key(key)
        with self._lock:
            self._items[validated] = bytes(content)

    def get(self, key: str) -> bytes:
        validated = validate_key(key)
        with self._lock:
            try:
                return self._items[validated]
            except KeyError as exc:
                raise KeyError(f"Key '{key}' does not exist") from exc

    def list(self) -> List[str]:
        with self._lock:
            return sorted(self._items)

    def delete(self, key: str) -> None:
        validated = validate_key(key)
        with self._lock:
            self._items.pop(validated, None)


class DirectoryByteStore(ByteStore):
    """Persist each key as a file inside ``root``."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(
                f"Failed to prepare checkpoint directory '{self.root}'."
            ) from exc

    def put(self, key: str, content: bytes) -> None:
        destination = self._path(key)
        temporary = destination.with_name(destination.name + ".tmp")
        try:
            with temporary.open("wb") as handle:
                handle.write(content)
            temporary.replace(destination)
        except OSError as exc:
            raise StorageError(
                f"Failed to write checkpoint data to '{destination}'."
            ) from exc
        logger.debug("checkpoint_bytes_written", path=str(destination), size=len(content))

    def get(self, key: str) -> bytes:
        path = self._path(key)
        if not path.exists():
            raise KeyError(f"Key '{key}' does not exist")
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read checkpoint data from '{path}'.") from exc

    def list(self) -> List[str]:
        try:
            return sorted(
                path.name
                for path in self.root.iterdir()
                if path.is_file()
                and _KEY_PATTERN.match(path.name)
                and not path.name.endswith(".tmp")
            )
        except OSError as exc:
            raise StorageError(f"Failed to list checkpoint directory '{self.root}'.") from exc

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"Failed to delete checkpoint data '{path}'.") from exc

    def _path(self, key: str) -> Path:
        return self.root / validate_key(key)


class _S3ClientProtocol(Protocol):
    def put_object(self, **kwargs: Any) -> Any:
        """Persist an object to S3."""

    def get_object(self, **kwargs: Any) -> Any:
        """Fetch an object from S3."""

    def list_objects_v2(self, **kwargs: Any) -> Any:
        """List objects stored in a bucket."""

    def delete_object(self, **kwargs: Any) -> Any:
        """Remove an object from S3."""


class S3ByteStore(ByteStore):
    """Store checkpoints in an Amazon S3 compatible bucket."""

    def __init__(
        self,
        *,
        bucket: str,
        prefix: str | None = None,
        client: _S3ClientProtocol | None = None,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        content_type: str = "application/json",
        base_metadata: Mapping[str, str] | None = None,
    ) -> None:
        self._bucket = bucket
        normalised_prefix = (prefix or "").strip()
        self._prefix = normalised_prefix.strip("/")
        self._content_type = content_type
        self._base_metadata = dict(base_metadata or {})
        self._client: _S3ClientProtocol

        if client is not None:
            self._client = client
            return

        try:
            import boto3  # type: ignore[import-not-found]
        except ImportError as exc:  # pragma: no cover - defensive guard
            raise RuntimeError(
                "boto3 is required to use S3ByteStore but is not installed."
            ) from exc

        self._client = cast(
            _S3ClientProtocol,
            boto3.client("s3", region_name=region_name, endpoint_url=endpoint_url),
        )

    def put(self, key: str, content: bytes) -> None:
        object_key = self._object_key(key)
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=object_key,
                Body=content,
                ContentType=self._content_type,
                Metadata=dict(self._base_metadata),
            )
        except Exception as exc:
            raise StorageError(
                f"Failed to upload '{object_key}' to bucket '{self._bucket}'."
            ) from exc
        logger.debug("checkpoint_object_uploaded", bucket=self._bucket, key=object_key)

    def get(self, key: str) -> bytes:
        object_key = self._object_key(key)
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=object_key)
            return bytes(response["Body"].read())
        except Exception as exc:
            if _error_code(exc) in {"NoSuchKey", "404", "NotFound"}:
                raise KeyError(f"Key '{key}' does not exist") from exc
            raise StorageError(
                f"Failed to download '{object_key}' from bucket '{self._bucket}'."
            ) from exc

    def list(self) -> List[str]:
        keys: List[str] = []
        prefix = f"{self._prefix}/" if self._prefix else ""
        request: Dict[str, Any] = {"Bucket": self._bucket, "Prefix": prefix}
        while True:
            try:
                response = self._client.list_objects_v2(**request)
            except Exception as exc:
                raise StorageError(
                    f"Failed to list objects in bucket '{self._bucket}'."
                ) from exc

            for item in response.get("Contents", []):
                name = str(item["Key"])[len(prefix):]
                if _KEY_PATTERN.match(name):
                    keys.append(name)

            if not response.get("IsTruncated"):
                break
            request["ContinuationToken"] = response["NextContinuationToken"]
        return sorted(keys)

    def delete(self, key: str) -> None:
        object_key = self._object_key(key)
        try:
            self._client.delete_object(Bucket=self._bucket, Key=object_key)
        except Exception as exc:
            if _error_code(exc) in {"NoSuchKey", "404", "NotFound"}:
                return
            raise StorageError(
                f"Failed to delete '{object_key}' from bucket '{self._bucket}'."
            ) from exc

    def _object_key(self, key: str) -> str:
        validated = validate_key(key)
        return validated if not self._prefix else f"{self._prefix}/{validated}"


def _error_code(exc: Exception) -> str:
    response = getattr(exc, "response", None)
    if isinstance(response, Mapping):
        error = response.get("Error", {})
        if isinstance(error, Mapping):
            return str(error.get("Code", ""))
    return ""


def validate_key(key: str) -> str:
    if not isinstance(key, str):
        raise TypeError("key must be a string")
    stripped = key.strip()
    if not stripped:
        raise ValueError("key must be a non-empty string")
    if not _KEY_PATTERN.match(stripped):
        raise ValueError(f"key '{key}' contains unsupported characters")
    return stripped


__all__ = [
    "ByteStore",
    "DirectoryByteStore",
    "InMemoryByteStore",
    "S3ByteStore",
    "validate_key",
]
