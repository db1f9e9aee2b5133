from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from nimbus.service.handler import ClusterActionEvent, ClusterActionHandler


@dataclass(eq=False)
class ScriptRoleHandler(ClusterActionHandler):
    """Handler whose per-phase shell scripts come from configuration.

    Each script is queued in the ``before`` hook of its phase and runs on
    every instance holding the role. Scripts may refer to the cluster via
    the ``NIMBUS_*`` variables the phase exports ahead of them.

    Example:
        >>> ScriptRoleHandler(
        ...     role="namenode",
        ...     scripts={"configure": "apt-get install -y openjdk-17-jre", "start": "start-dfs.sh"},
        ... )
    """

    role: str
    scripts: Mapping[str, str] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()

    def _queue(self, event: ClusterActionEvent) -> None:
        script = self.scripts.get(event.action)
        if not script:
            return
        event.statements.add(script)

    async def before_bootstrap(self, event: ClusterActionEvent) -> None:
        self._queue(event)

    async def before_configure(self, event: ClusterActionEvent) -> None:
        self._queue(event)

    async def before_start(self, event: ClusterActionEvent) -> None:
        self._queue(event)

    async def before_stop(self, event: ClusterActionEvent) -> None:
        self._queue(event)

    async def before_cleanup(self, event: ClusterActionEvent) -> None:
        self._queue(event)

    async def before_destroy(self, event: ClusterActionEvent) -> None:
        self._queue(event)

