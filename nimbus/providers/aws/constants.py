from __future__ import annotations

from enum import StrEnum
from typing import Final


class NimbusTag(StrEnum):
    """EC2 tag keys used by nimbus."""

    MANAGED = "nimbus:managed"
    GROUP = "nimbus:group"
    ROLES = "nimbus:roles"


class InstanceState(StrEnum):
    """EC2 instance state names."""

    RUNNING = "running"
    STOPPED = "stopped"
    PENDING = "pending"
    TERMINATED = "terminated"
    STOPPING = "stopping"
    SHUTTING_DOWN = "shutting-down"


DEFAULT_INSTANCE_TYPE: Final = "t3.medium"
