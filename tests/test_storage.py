from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pytest

from scenecheckpoints import (
    DirectoryByteStore,
    InMemoryByteStore,
    S3ByteStore,
    StorageError,
)


class _Body:
    def __init__(self, content: bytes) -> None:
        self._content = content

    def read(self) -> bytes:
        return self._content


class _ClientError(Exception):
    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.response = {"Error": {"Code": code}}


class StubS3Client:
    """Minimal in-memory imitation of the boto3 S3 client."""

    def __init__(self, page_size: int = 1000) -> None:
        self.objects: Dict[str, bytes] = {}
        self.put_calls: List[Dict[str, Any]] = []
        self.page_size = page_size
        self.fail_with: Exception | None = None

    def put_object(self, **kwargs: Any) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.put_calls.append(kwargs)
        self.objects[kwargs["Key"]] = kwargs["Body"]

    def get_object(self, **kwargs: Any) -> Dict[str, Any]:
        try:
            return {"Body": _Body(self.objects[kwargs["Key"]])}
        except KeyError:
            raise _ClientError("NoSuchKey") from None

    def list_objects_v2(self, **kwargs: Any) -> Dict[str, Any]:
        keys = sorted(k for k in self.objects if k.startswith(kwargs.get("Prefix", "")))
        start = int(kwargs.get("ContinuationToken", 0))
        page = keys[start : start + self.page_size]
        response: Dict[str, Any] = {"Contents": [{"Key": key} for key in page]}
        if start + self.page_size < len(keys):
            response["IsTruncated"] = True
            response["NextContinuationToken"] = str(start + self.page_size)
        return response

    def delete_object(self, **kwargs: Any) -> None:
        self.objects.pop(kwargs["Key"], None)


def test_in_memory_store_round_trip() -> None:
    store = InMemoryByteStore()
    store.put("b.snapshot", b"two")
    store.put("a.snapshot", b"one")

    assert store.get("a.snapshot") == b"one"
    assert store.list() == ["a.snapshot", "b.snapshot"]

    store.delete("a.snapshot")
    store.delete("a.snapshot")
    assert store.list() == ["b.snapshot"]
    with pytest.raises(KeyError):
        store.get("a.snapshot")


@pytest.mark.parametrize("key", ["", "   ", "../escape", "with space", ".hidden"])
def test_stores_reject_unsafe_keys(key: str) -> None:
    with pytest.raises(ValueError):
        InMemoryByteStore().put(key, b"x")


def test_directory_store_writes_one_file_per_key(tmp_path: Path) -> None:
    store = DirectoryByteStore(tmp_path / "checkpoints")
    store.put("cp-1.snapshot", b"{}")

    assert (tmp_path / "checkpoints" / "cp-1.snapshot").read_bytes() == b"{}"
    assert not list((tmp_path / "checkpoints").glob("*.tmp"))
    assert store.list() == ["cp-1.snapshot"]
    assert store.get("cp-1.snapshot") == b"{}"


def test_directory_store_ignores_leftover_temp_files(tmp_path: Path) -> None:
    store = DirectoryByteStore(tmp_path)
    (tmp_path / "cp-1.snapshot.tmp").write_bytes(b"partial")

    assert store.list() == []
    with pytest.raises(KeyError):
        store.get("cp-1.snapshot")
    store.delete("cp-1.snapshot")


def test_directory_store_wraps_os_errors(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    with pytest.raises(StorageError, match="Failed to prepare checkpoint directory"):
        DirectoryByteStore(blocker / "nested")


def test_s3_store_uses_prefix_and_pagination() -> None:
    client = StubS3Client(page_size=2)
    store = S3ByteStore(bucket="bucket", prefix="/projects/demo/", client=client)

    for name in ("c.snapshot", "a.snapshot", "b.checkpoint"):
        store.put(name, name.encode())
    client.objects["elsewhere/z.snapshot"] = b"ignored"

    assert set(client.objects) >= {"projects/demo/a.snapshot", "projects/demo/c.snapshot"}
    assert client.put_calls[0]["ContentType"] == "application/json"
    assert store.list() == ["a.snapshot", "b.checkpoint", "c.snapshot"]
    assert store.get("a.snapshot") == b"a.snapshot"


def test_s3_store_maps_missing_objects_to_key_error() -> None:
    store = S3ByteStore(bucket="bucket", client=StubS3Client())

    with pytest.raises(KeyError):
        store.get("missing.snapshot")
    store.delete("missing.snapshot")


def test_s3_store_wraps_client_failures() -> None:
    client = StubS3Client()
    client.fail_with = _ClientError("AccessDenied")
    store = S3ByteStore(bucket="bucket", client=client)

    with pytest.raises(StorageError, match="Failed to upload 'cp.snapshot'"):
        store.put("cp.snapshot", b"x")
