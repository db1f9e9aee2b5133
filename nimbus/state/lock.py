"""Per-cluster mutual exclusion around state-changing phases.

Bootstrap, destroy and destroy-instance read and replace the whole state
record, so two of them racing on the same cluster lose membership. The
lock serialises them: an ``asyncio.Lock`` per cluster name inside the
process and, for the local store, an advisory ``flock`` on
``<state_dir>/<name>/.lock`` across processes.
"""

from __future__ import annotations

import asyncio
import fcntl
import os
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from loguru import logger

from nimbus.api.spec import ClusterSpec
from nimbus.core.exceptions import StorageError
from nimbus.state.file import cluster_dir

log = logger.bind(component="lock")

# asyncio locks belong to one event loop, so keep one set per loop.
_locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[str, asyncio.Lock]] = (
    weakref.WeakKeyDictionary()
)


def _local_lock(name: str) -> asyncio.Lock:
    per_loop = _locks.setdefault(asyncio.get_running_loop(), {})
    lock = per_loop.get(name)
    if lock is None:
        lock = per_loop[name] = asyncio.Lock()
    return lock


# How often to retry a flock held by another process.
POLL_INTERVAL = 0.05


async def _flock(fd: int) -> None:
    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            return
        except BlockingIOError:
            await asyncio.sleep(POLL_INTERVAL)


@asynccontextmanager
async def cluster_lock(spec: ClusterSpec) -> AsyncIterator[None]:
    async with _local_lock(spec.cluster_name):
        if spec.state_store != "local":
            yield
            return

        path = cluster_dir(spec) / ".lock"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise StorageError(f"Unable to open lock file {path}") from e

        # Closing the descriptor drops the flock, including when the wait
        # is cancelled.
        try:
            try:
                await _flock(fd)
            except OSError as e:
                raise StorageError(f"Unable to lock cluster state at {path}") from e
            log.debug("Acquired {path}", path=path)
            yield
        finally:
            os.close(fd)
