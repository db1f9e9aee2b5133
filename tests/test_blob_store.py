from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import pytest
from botocore.exceptions import ClientError

from nimbus.api import Cluster, Credentials, Instance
from nimbus.core.exceptions import StorageError
from nimbus.state.blob import BlobClusterStateStore

pytestmark = [pytest.mark.xdist_group("unit")]


def _error(code: str, op: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, op)


class _Body:
    def __init__(self, data: bytes) -> None:
        self._data = data

    async def read(self) -> bytes:
        return self._data


class FakeS3:
    """Just enough of an S3 client for the blob store."""

    def __init__(self) -> None:
        self.buckets: dict[str, dict[str, bytes]] = {}
        self.calls: list[str] = []
        self.fail_with: ClientError | None = None

    def _check(self, op: str) -> None:
        self.calls.append(op)
        if self.fail_with is not None:
            raise self.fail_with

    async def head_bucket(self, Bucket: str) -> dict[str, Any]:
        self._check("head_bucket")
        if Bucket not in self.buckets:
            raise _error("404", "HeadBucket")
        return {}

    async def create_bucket(self, Bucket: str) -> dict[str, Any]:
        self._check("create_bucket")
        self.buckets[Bucket] = {}
        return {}

    async def put_object(self, Bucket: str, Key: str, Body: bytes) -> dict[str, Any]:
        self._check("put_object")
        self.buckets[Bucket][Key] = Body
        return {}

    async def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        self._check("get_object")
        try:
            return {"Body": _Body(self.buckets[Bucket][Key])}
        except KeyError:
            raise _error("NoSuchKey", "GetObject") from None

    async def delete_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        self._check("delete_object")
        if Bucket not in self.buckets:
            raise _error("NoSuchBucket", "DeleteObject")
        self.buckets[Bucket].pop(Key, None)
        return {}


class FakeSession:
    def __init__(self, s3: FakeS3) -> None:
        self.s3 = s3
        self.client_kwargs: list[dict[str, Any]] = []

    @asynccontextmanager
    async def client(self, service: str, **kwargs: Any):
        assert service == "s3"
        self.client_kwargs.append(kwargs)
        yield self.s3


@pytest.fixture
def s3() -> FakeS3:
    return FakeS3()


@pytest.fixture
def store(spec, s3: FakeS3) -> BlobClusterStateStore:
    return BlobClusterStateStore(spec, session=FakeSession(s3))  # type: ignore[arg-type]


def _cluster() -> Cluster:
    return Cluster([
        Instance(
            id="i-1", roles=frozenset({"namenode"}), public_ip="1.2.3.4", private_ip="10.0.0.1",
            credentials=Credentials(user="nimbus", private_key="-----BEGIN KEY-----"),
        ),
    ])


class TestBlobStore:
    def test_default_location(self, store: BlobClusterStateStore):
        assert store.location == "s3://nimbus-state/hadoop-state"

    def test_explicit_location(self, make_spec, s3: FakeS3):
        spec = make_spec(state_store="blob", state_store_container="bucket", state_store_blob="key")
        store = BlobClusterStateStore(spec, session=FakeSession(s3))  # type: ignore[arg-type]
        assert store.location == "s3://bucket/key"

    @pytest.mark.asyncio
    async def test_save_creates_container_then_load(self, store: BlobClusterStateStore, s3: FakeS3):
        await store.save(_cluster())

        assert s3.calls == ["head_bucket", "create_bucket", "put_object"]
        assert s3.buckets["nimbus-state"]["hadoop-state"] == b"i-1\tnamenode\t1.2.3.4\t10.0.0.1\n"
        assert await store.load() == _cluster()

    @pytest.mark.asyncio
    async def test_save_reuses_existing_container(self, store: BlobClusterStateStore, s3: FakeS3):
        s3.buckets["nimbus-state"] = {}
        await store.save(_cluster())
        assert "create_bucket" not in s3.calls

    @pytest.mark.asyncio
    async def test_load_missing_raises(self, store: BlobClusterStateStore):
        with pytest.raises(StorageError, match="No cluster state"):
            await store.load()

    @pytest.mark.asyncio
    async def test_load_invalid_utf8_raises_storage_error(self, store: BlobClusterStateStore, s3: FakeS3):
        s3.buckets["nimbus-state"] = {"hadoop-state": b"i-1\tnn\t\xff\tnull\n"}
        with pytest.raises(StorageError, match="not valid UTF-8"):
            await store.load()

    @pytest.mark.asyncio
    async def test_try_load_or_empty_on_missing(self, store: BlobClusterStateStore):
        assert (await store.try_load_or_empty()).is_empty

    @pytest.mark.asyncio
    async def test_save_failure_raises_storage_error(self, store: BlobClusterStateStore, s3: FakeS3):
        s3.fail_with = _error("AccessDenied", "HeadBucket")
        with pytest.raises(StorageError) as exc:
            await store.save(_cluster())
        assert isinstance(exc.value.__cause__, ClientError)

    @pytest.mark.asyncio
    async def test_destroy_missing_is_not_an_error(self, store: BlobClusterStateStore, s3: FakeS3):
        s3.buckets["nimbus-state"] = {}
        await store.destroy()
        await store.save(_cluster())
        await store.destroy()
        assert s3.buckets["nimbus-state"] == {}

    @pytest.mark.asyncio
    async def test_region_and_endpoint_passed_to_client(self, make_spec, s3: FakeS3):
        spec = make_spec(provider_options={"region": "eu-west-1", "s3_endpoint": "http://localhost:9000"})
        session = FakeSession(s3)
        await BlobClusterStateStore(spec, session=session).try_load_or_empty()  # type: ignore[arg-type]
        assert session.client_kwargs == [
            {"region_name": "eu-west-1", "endpoint_url": "http://localhost:9000"},
        ]
