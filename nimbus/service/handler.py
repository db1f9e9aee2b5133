"""Role handlers: per-role behaviour hooked into every lifecycle phase.

A handler is looked up by role name and called twice per phase: once
before the phase acts on the nodes (``before_<phase>``) and once after
(``after_<phase>``). Every ``before`` hook of a phase completes before
the phase runs its scripts, and the scripts complete before any
``after`` hook starts.
"""

from __future__ import annotations

import shlex
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from nimbus.api.model import Cluster, Instance
from nimbus.api.predicate import WithRole

if TYPE_CHECKING:
    from nimbus.api.spec import ClusterSpec, InstanceTemplate
    from nimbus.providers.provider import ComputeProvider


class ClusterActionName(StrEnum):
    BOOTSTRAP = "bootstrap"
    CONFIGURE = "configure"
    START = "start"
    STOP = "stop"
    CLEANUP = "cleanup"
    DESTROY = "destroy"


class StatementBuilder:
    """Ordered shell statements collected from hooks for one role."""

    __slots__ = ("_statements",)

    def __init__(self) -> None:
        self._statements: list[str] = []

    def add(self, *statements: str) -> StatementBuilder:
        self._statements.extend(s for s in statements if s.strip())
        return self

    def __bool__(self) -> bool:
        return bool(self._statements)

    def __iter__(self) -> Iterator[str]:
        return iter(self._statements)

    def render(self, prelude: Iterable[str] = ()) -> str:
        return "\n".join(["set -e", *prelude, *self._statements]) + "\n"


@dataclass
class ClusterActionEvent:
    """What a hook sees: the phase, the role, and the current cluster.

    Hooks may replace ``cluster`` with a rebuilt snapshot; the next hook
    and the phase itself continue from it.
    """

    action: ClusterActionName
    role: str
    spec: ClusterSpec
    template: InstanceTemplate | None
    cluster: Cluster
    compute: ComputeProvider
    statements: StatementBuilder = field(default_factory=StatementBuilder)

    @property
    def targets(self) -> tuple[Instance, ...]:
        return self.cluster.instances_matching(WithRole(self.role))


def environment(event: ClusterActionEvent) -> list[str]:
    """Export statements describing the cluster to a role script.

    ``NIMBUS_<ROLE>_PRIVATE_IPS`` lists the private addresses of every role,
    so e.g. a datanode script can find its namenode. Built from the cluster
    the script runs against, so bootstrap scripts see the new nodes.
    """
    exports = {
        "NIMBUS_CLUSTER_NAME": event.spec.cluster_name,
        "NIMBUS_ROLE": event.role,
        "NIMBUS_PHASE": str(event.action),
    }
    for role in sorted(event.cluster.roles):
        var = role.upper().replace("-", "_").replace(".", "_")
        exports[f"NIMBUS_{var}_PRIVATE_IPS"] = ",".join(
            i.private_ip for i in event.cluster if i.has_role(role) and i.private_ip
        )
    return [f"export {name}={shlex.quote(value)}" for name, value in exports.items()]


class ClusterActionHandler:
    """Base class for role handlers. Every hook defaults to a no-op.

    Subclasses set ``role`` and, when their hooks need another role's hooks
    to have run first, ``depends_on``.
    """

    role: str = ""
    depends_on: tuple[str, ...] = ()

    async def before_action(self, event: ClusterActionEvent) -> None:
        await getattr(self, f"before_{event.action}")(event)

    async def after_action(self, event: ClusterActionEvent) -> None:
        await getattr(self, f"after_{event.action}")(event)

    async def before_bootstrap(self, event: ClusterActionEvent) -> None: ...
    async def after_bootstrap(self, event: ClusterActionEvent) -> None: ...
    async def before_configure(self, event: ClusterActionEvent) -> None: ...
    async def after_configure(self, event: ClusterActionEvent) -> None: ...
    async def before_start(self, event: ClusterActionEvent) -> None: ...
    async def after_start(self, event: ClusterActionEvent) -> None: ...
    async def before_stop(self, event: ClusterActionEvent) -> None: ...
    async def after_stop(self, event: ClusterActionEvent) -> None: ...
    async def before_cleanup(self, event: ClusterActionEvent) -> None: ...
    async def after_cleanup(self, event: ClusterActionEvent) -> None: ...
    async def before_destroy(self, event: ClusterActionEvent) -> None: ...
    async def after_destroy(self, event: ClusterActionEvent) -> None: ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(role={self.role!r})"


class HandlerRegistry(Mapping[str, ClusterActionHandler]):
    """Immutable role name -> handler mapping.

    Built once when a controller is created and handed to every action.
    """

    __slots__ = ("_handlers",)

    def __init__(self, handlers: Iterable[ClusterActionHandler] = ()) -> None:
        self._handlers: dict[str, ClusterActionHandler] = {h.role: h for h in handlers}

    def __getitem__(self, role: str) -> ClusterActionHandler:
        return self._handlers[role]

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def with_handler(self, handler: ClusterActionHandler) -> HandlerRegistry:
        return HandlerRegistry([*self._handlers.values(), handler])

    def __repr__(self) -> str:
        return f"HandlerRegistry({sorted(self._handlers)})"
