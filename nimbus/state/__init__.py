"""Persisted cluster membership."""

from .factory import ClusterStateStoreFactory as ClusterStateStoreFactory
from .lock import cluster_lock as cluster_lock
from .memory import MemoryClusterStateStore as MemoryClusterStateStore
from .store import ClusterStateStore as ClusterStateStore
