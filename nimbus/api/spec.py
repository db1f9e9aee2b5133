"""Cluster spec dataclasses: templates, firewall rules and cluster settings.

These are the immutable configuration objects that define what the
user wants. Actions and the controller read them, never mutate them.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from nimbus.api.model import Credentials
from nimbus.core.exceptions import ConfigurationError

type ProviderName = Literal["stub", "container", "aws"]

type StateStoreKind = Literal["local", "blob", "memory", "none"]

_TEMPLATE_RE = re.compile(r"^\s*(\d+)\s+([\w.\-]+(?:\+[\w.\-]+)*)\s*$")


@dataclass(frozen=True, slots=True)
class InstanceTemplate:
    """A group of identical nodes sharing a role set.

    Args:
        count: Number of nodes to create.
        roles: Roles every node of the group performs.
        min_count: Fewest nodes that still count as a successful bootstrap.
            Defaults to ``count``.
        image: Image override for this group.
        hardware: Hardware (instance type) override for this group.
    """

    count: int
    roles: frozenset[str]
    min_count: int | None = None
    image: str | None = None
    hardware: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.roles, frozenset):
            object.__setattr__(self, "roles", frozenset(self.roles))
        if self.count < 0:
            raise ConfigurationError(f"Template count must be >= 0, got {self.count}")
        if not self.roles:
            raise ConfigurationError("Template must name at least one role")
        if self.min_count is not None and not 0 <= self.min_count <= self.count:
            raise ConfigurationError(
                f"Template min_count must be within 0..{self.count}, got {self.min_count}"
            )

    @property
    def minimum(self) -> int:
        return self.count if self.min_count is None else self.min_count

    @property
    def label(self) -> str:
        return "+".join(sorted(self.roles))

    @classmethod
    def parse(cls, text: str) -> InstanceTemplate:
        """Parse one ``"<count> role+role"`` entry."""
        m = _TEMPLATE_RE.match(text)
        if m is None:
            raise ConfigurationError(f"Invalid instance template '{text.strip()}'")
        return cls(count=int(m.group(1)), roles=frozenset(m.group(2).split("+")))

    @classmethod
    def parse_all(cls, text: str) -> tuple[InstanceTemplate, ...]:
        """Parse ``"1 namenode+jobtracker, 3 datanode+tasktracker"``."""
        return tuple(cls.parse(part) for part in text.split(",") if part.strip())


@dataclass(frozen=True, slots=True)
class FirewallRule:
    """Inbound port carried for role handlers. nimbus does not apply it."""

    port: int
    roles: frozenset[str] = frozenset()
    source: str = "0.0.0.0/0"

    @classmethod
    def parse(cls, text: str) -> FirewallRule:
        """Parse ``"8080"`` or ``"8080:namenode+jobtracker"``."""
        port, _, role_part = text.partition(":")
        try:
            number = int(port)
        except ValueError:
            raise ConfigurationError(f"Invalid firewall rule '{text}'") from None
        return cls(port=number, roles=frozenset(r for r in role_part.split("+") if r))


@dataclass(frozen=True, slots=True)
class ClusterSpec:
    """Declarative description of one cluster.

    Example:
        >>> spec = ClusterSpec(
        ...     cluster_name="hadoop",
        ...     instance_templates=InstanceTemplate.parse_all("1 nn+jt, 3 dn+tt"),
        ...     provider="aws",
        ...     private_key=Path("~/.ssh/id_rsa").expanduser().read_text(),
        ... )
    """

    cluster_name: str
    instance_templates: tuple[InstanceTemplate, ...] = ()
    provider: ProviderName = "stub"
    identity: str | None = None
    credential: str | None = field(default=None, repr=False)
    endpoint: str | None = None
    location: str | None = None
    image: str | None = None
    hardware: str | None = None
    cluster_user: str = "nimbus"
    private_key: str | None = field(default=None, repr=False)
    private_key_file: str | None = None
    public_key: str | None = field(default=None, repr=False)
    firewall_rules: tuple[FirewallRule, ...] = ()
    terminate_all_on_launch_failure: bool = True
    state_store: StateStoreKind = "local"
    state_store_container: str | None = None
    state_store_blob: str | None = None
    state_dir: str | None = None
    max_startup_retries: int = 1
    allow_unregistered_roles: bool = False
    provider_options: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if not self.cluster_name:
            raise ConfigurationError("cluster_name is required")
        if self.max_startup_retries < 0:
            raise ConfigurationError("max_startup_retries must be >= 0")

    @property
    def credentials(self) -> Credentials:
        return Credentials(user=self.cluster_user, private_key=self.private_key)

    @property
    def roles(self) -> frozenset[str]:
        return frozenset().union(*(t.roles for t in self.instance_templates))

    @property
    def node_count(self) -> int:
        return sum(t.count for t in self.instance_templates)

    def template_for(self, role: str) -> InstanceTemplate | None:
        return next((t for t in self.instance_templates if role in t.roles), None)

    def firewall_rules_for(self, role: str) -> tuple[FirewallRule, ...]:
        return tuple(r for r in self.firewall_rules if not r.roles or role in r.roles)
