"""Local filesystem state store.

The record for cluster ``<name>`` lives at ``<state_dir>/<name>/instances``
(``~/.nimbus/<name>/instances`` by default). Writes go to a temporary
file that is atomically renamed over the record.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path

from loguru import logger

from nimbus.api.model import Cluster
from nimbus.api.spec import ClusterSpec
from nimbus.core.exceptions import StorageError
from nimbus.state.store import ClusterStateStore

log = logger.bind(component="state-file")

DEFAULT_STATE_DIR = Path.home() / ".nimbus"
RECORD_NAME = "instances"


def cluster_dir(spec: ClusterSpec) -> Path:
    base = Path(spec.state_dir).expanduser() if spec.state_dir else DEFAULT_STATE_DIR
    return base / spec.cluster_name


def _write_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class FileClusterStateStore(ClusterStateStore):

    def __init__(self, spec: ClusterSpec) -> None:
        super().__init__(spec)
        self.path = cluster_dir(spec) / RECORD_NAME

    async def load(self) -> Cluster:
        try:
            raw = await asyncio.to_thread(self.path.read_bytes)
        except OSError as e:
            raise StorageError(f"Unable to read cluster state from {self.path}") from e
        return self.unserialize_bytes(raw, self.path)

    async def save(self, cluster: Cluster) -> None:
        try:
            await asyncio.to_thread(_write_atomic, self.path, self.serialize(cluster))
        except OSError as e:
            raise StorageError(f"Unable to write cluster state to {self.path}") from e
        log.debug("Saved {n} instances to {path}", n=len(cluster), path=self.path)

    async def destroy(self) -> None:
        try:
            await asyncio.to_thread(self.path.unlink, missing_ok=True)
        except OSError as e:
            raise StorageError(f"Unable to delete cluster state {self.path}") from e
        log.debug("Deleted {path}", path=self.path)
