"""S3-backed state store.

The record is one object, ``s3://<container>/<blob>``. Container defaults
to ``nimbus-state`` and blob to ``<cluster_name>-state``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from nimbus.api.model import Cluster
from nimbus.api.spec import ClusterSpec
from nimbus.core.exceptions import StorageError
from nimbus.state.store import ClusterStateStore

if TYPE_CHECKING:
    from types_aiobotocore_s3 import S3Client

log = logger.bind(component="state-blob")

DEFAULT_CONTAINER = "nimbus-state"

_MISSING_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


def _is_missing(e: ClientError) -> bool:
    return e.response.get("Error", {}).get("Code") in _MISSING_CODES


class BlobClusterStateStore(ClusterStateStore):

    def __init__(self, spec: ClusterSpec, session: aioboto3.Session | None = None) -> None:
        super().__init__(spec)
        self.container = spec.state_store_container or DEFAULT_CONTAINER
        self.blob = spec.state_store_blob or f"{spec.cluster_name}-state"
        self._session = session or aioboto3.Session(
            aws_access_key_id=spec.identity,
            aws_secret_access_key=spec.credential,
        )

    @asynccontextmanager
    async def _s3(self) -> AsyncIterator[S3Client]:
        kwargs: dict[str, Any] = {}
        if region := self.spec.provider_options.get("region"):
            kwargs["region_name"] = region
        if endpoint := self.spec.provider_options.get("s3_endpoint"):
            kwargs["endpoint_url"] = endpoint
        async with self._session.client("s3", **kwargs) as client:
            yield client

    @property
    def location(self) -> str:
        return f"s3://{self.container}/{self.blob}"

    async def load(self) -> Cluster:
        try:
            async with self._s3() as s3:
                response = await s3.get_object(Bucket=self.container, Key=self.blob)
                body = await response["Body"].read()
        except ClientError as e:
            if _is_missing(e):
                raise StorageError(f"No cluster state at {self.location}") from e
            raise StorageError(f"Unable to read cluster state from {self.location}") from e
        except BotoCoreError as e:
            raise StorageError(f"Unable to read cluster state from {self.location}") from e
        return self.unserialize_bytes(body, self.location)

    async def save(self, cluster: Cluster) -> None:
        try:
            async with self._s3() as s3:
                await self._ensure_container(s3)
                await s3.put_object(
                    Bucket=self.container,
                    Key=self.blob,
                    Body=self.serialize(cluster).encode("utf-8"),
                )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Unable to write cluster state to {self.location}") from e
        log.debug("Saved {n} instances to {loc}", n=len(cluster), loc=self.location)

    async def destroy(self) -> None:
        try:
            async with self._s3() as s3:
                await s3.delete_object(Bucket=self.container, Key=self.blob)
        except ClientError as e:
            if _is_missing(e):
                return
            raise StorageError(f"Unable to delete cluster state {self.location}") from e
        except BotoCoreError as e:
            raise StorageError(f"Unable to delete cluster state {self.location}") from e

    async def _ensure_container(self, s3: S3Client) -> None:
        try:
            await s3.head_bucket(Bucket=self.container)
        except ClientError as e:
            if not _is_missing(e):
                raise
            log.info("Creating state container {bucket}", bucket=self.container)
            await s3.create_bucket(Bucket=self.container)
