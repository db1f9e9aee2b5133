from __future__ import annotations

from nimbus.api.spec import ClusterSpec
from nimbus.core.exceptions import ConfigurationError
from nimbus.state.store import ClusterStateStore


class ClusterStateStoreFactory:
    """Pick the state store backend named by ``spec.state_store``."""

    def create(self, spec: ClusterSpec) -> ClusterStateStore:
        match spec.state_store:
            case "local":
                from nimbus.state.file import FileClusterStateStore
                return FileClusterStateStore(spec)
            case "blob":
                from nimbus.state.blob import BlobClusterStateStore
                return BlobClusterStateStore(spec)
            case "memory" | "none":
                from nimbus.state.memory import MemoryClusterStateStore
                return MemoryClusterStateStore(spec)
            case other:
                raise ConfigurationError(
                    f"Unknown state store '{other}'. Valid: local, blob, memory, none"
                )
