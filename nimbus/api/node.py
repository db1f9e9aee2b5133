"""Provider-side view of compute nodes and remote script execution."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nimbus.api.model import Credentials


class NodeState(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"
    ERROR = "error"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True, slots=True)
class NodeMetadata:
    """Live record of one node as reported by the provider."""

    id: str
    group: str
    state: NodeState
    public_addresses: tuple[str, ...] = ()
    private_addresses: tuple[str, ...] = ()
    hostname: str | None = None
    ssh_port: int = 22
    extra: Mapping[str, str] = field(default_factory=dict, compare=False, hash=False)

    @property
    def public_ip(self) -> str | None:
        return self.public_addresses[0] if self.public_addresses else None

    @property
    def private_ip(self) -> str | None:
        return self.private_addresses[0] if self.private_addresses else None

    @property
    def is_running(self) -> bool:
        return self.state is NodeState.RUNNING


@dataclass(frozen=True, slots=True)
class ExecResponse:
    exit_status: int
    output: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


@dataclass(frozen=True, slots=True)
class RunScriptOptions:
    """How a script is run on remote nodes.

    Args:
        credentials: Login to use instead of the provider default.
        run_as_root: Prefix the script with sudo when the login is not root.
        wrap_in_init_script: Run detached under nohup instead of waiting for output.
        timeout: Per-node execution timeout in seconds.
    """

    credentials: Credentials | None = None
    run_as_root: bool = False
    wrap_in_init_script: bool = False
    timeout: float | None = None

    def override_credentials_with(self, credentials: Credentials) -> RunScriptOptions:
        return replace(self, credentials=credentials)
