"""In-process state store.

Records live in a module-level dict keyed by cluster name, so they
outlive a single controller but not the process. Used for the ``memory``
and ``none`` store kinds and throughout the tests.
"""

from __future__ import annotations

from nimbus.api.model import Cluster
from nimbus.core.exceptions import StorageError
from nimbus.state.store import ClusterStateStore

_records: dict[str, str] = {}


class MemoryClusterStateStore(ClusterStateStore):

    async def load(self) -> Cluster:
        try:
            content = _records[self.spec.cluster_name]
        except KeyError:
            raise StorageError(f"No state recorded for cluster '{self.spec.cluster_name}'") from None
        return self.unserialize(content)

    async def save(self, cluster: Cluster) -> None:
        _records[self.spec.cluster_name] = self.serialize(cluster)

    async def destroy(self) -> None:
        _records.pop(self.spec.cluster_name, None)

    @staticmethod
    def clear() -> None:
        _records.clear()
