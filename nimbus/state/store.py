"""Cluster state storage.

A store keeps the last known membership of one cluster (instance ids,
roles and addresses) independently of what the provider reports, so the
controller can regain control after a restart.

Record format, one line per instance::

    <id>\\t<role,role,...>\\t<public ip>\\t<private ip>\\n

Roles are comma-joined in sorted order and a missing address is written
as ``null``. Nothing is escaped: ids or role names containing a tab,
comma or newline do not survive a round trip.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from loguru import logger

from nimbus.api.model import Cluster, Instance
from nimbus.api.spec import ClusterSpec
from nimbus.core.exceptions import StorageError

log = logger.bind(component="state")

_NULL = "null"


def _address(value: str) -> str | None:
    return None if value in ("", _NULL) else value


class ClusterStateStore(ABC):
    """Load, save and destroy the persisted state of one cluster."""

    def __init__(self, spec: ClusterSpec) -> None:
        self.spec = spec

    @abstractmethod
    async def load(self) -> Cluster:
        """Read the record.

        Raises:
            StorageError: If the record is missing, unreadable or corrupt.
        """

    @abstractmethod
    async def save(self, cluster: Cluster) -> None:
        """Replace the record with ``cluster``.

        Raises:
            StorageError: If the write fails.
        """

    @abstractmethod
    async def destroy(self) -> None:
        """Delete the record. A missing record is not an error.

        Raises:
            StorageError: If the delete fails.
        """

    async def try_load_or_empty(self) -> Cluster:
        """Load the record, or the empty cluster if that fails for any reason."""
        try:
            return await self.load()
        except Exception as e:
            log.warning(
                "Unable to load state of cluster {name}, assuming it has no running nodes: {err}",
                name=self.spec.cluster_name, err=e,
            )
            return Cluster.empty()

    def serialize(self, cluster: Cluster) -> str:
        return "".join(
            "\t".join((
                instance.id,
                ",".join(instance.sorted_roles),
                instance.public_ip or _NULL,
                instance.private_ip or _NULL,
            )) + "\n"
            for instance in cluster
        )

    def unserialize_bytes(self, raw: bytes, source: object) -> Cluster:
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StorageError(
                f"Corrupt state for cluster '{self.spec.cluster_name}' in {source}: not valid UTF-8"
            ) from e
        return self.unserialize(content)

    def unserialize(self, content: str) -> Cluster:
        credentials = self.spec.credentials
        instances: list[Instance] = []

        for lineno, line in enumerate(content.split("\n"), start=1):
            if not line.strip():
                continue
            fields = line.split("\t")
            if len(fields) < 4:
                raise StorageError(
                    f"Corrupt state for cluster '{self.spec.cluster_name}' at line {lineno}: "
                    f"expected 4 fields, got {len(fields)}"
                )
            instance_id, role_field, public_ip, private_ip = fields[:4]
            instances.append(Instance(
                id=instance_id,
                roles=frozenset(r for r in role_field.split(",") if r),
                public_ip=_address(public_ip),
                private_ip=_address(private_ip),
                credentials=credentials,
                node=None,
            ))

        return Cluster(instances)
