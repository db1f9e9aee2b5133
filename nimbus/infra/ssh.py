"""AsyncSSH-based transport for running scripts on cluster nodes.

Service class pattern: host and login are bound at construction, not
passed on every call.
"""

from __future__ import annotations

import asyncio
import contextlib
import shlex
from collections.abc import Iterable
from dataclasses import dataclass, field

import asyncssh
from loguru import logger
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from nimbus.api.model import Credentials
from nimbus.api.node import ExecResponse, NodeMetadata, RunScriptOptions
from nimbus.core.exceptions import ProviderError
from nimbus.infra.aio import gather_or_cancel

log = logger.bind(component="ssh")

# Reported like the ssh client does when the remote gives no status.
NO_EXIT_STATUS = 255


@dataclass
class SSHTransport:
    """Async SSH connection to one node.

    Connection attempts are retried with a fixed delay, since freshly
    created nodes take a while to accept logins.

    Example:
        >>> async with SSHTransport(host="10.0.0.1", credentials=creds) as t:
        ...     response = await t.run("uptime")
    """

    host: str
    credentials: Credentials
    port: int = 22
    connect_timeout: float = 30.0
    retry_max_attempts: int = 30
    retry_delay: float = 2.0

    _conn: asyncssh.SSHClientConnection | None = field(default=None, repr=False)

    async def connect(self) -> None:
        if self._conn is not None:
            return

        client_keys = None
        if self.credentials.private_key:
            client_keys = [asyncssh.import_private_key(self.credentials.private_key)]

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_max_attempts),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type((OSError, asyncssh.Error)),
            reraise=True,
        ):
            with attempt:
                self._conn = await asyncssh.connect(
                    self.host,
                    port=self.port,
                    username=self.credentials.user,
                    client_keys=client_keys,
                    known_hosts=None,
                    connect_timeout=self.connect_timeout,
                )

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._conn.wait_closed(), timeout=5.0)
            self._conn = None

    async def __aenter__(self) -> SSHTransport:
        await self.connect()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    async def run(self, command: str, timeout: float | None = None) -> ExecResponse:
        if self._conn is None:
            raise RuntimeError("Not connected. Call connect() first.")
        result = await self._conn.run(command, timeout=timeout, check=False)
        return to_response(result)


def to_response(result: asyncssh.SSHCompletedProcess) -> ExecResponse:
    """Map a finished remote process, treating a missing exit status as failure."""
    error = str(result.stderr or "")
    status = result.exit_status
    if status is None:
        # Killed by a signal or the channel closed before reporting a status.
        status = NO_EXIT_STATUS
        if result.exit_signal:
            error += f"\nterminated by signal {result.exit_signal[0]}"
    return ExecResponse(exit_status=status, output=str(result.stdout or ""), error=error)


def render_script(script: str, options: RunScriptOptions, user: str) -> str:
    """Wrap ``script`` according to the run-as-root and init-script flags."""
    command = f"bash -c {shlex.quote(script)}"
    if options.run_as_root and user != "root":
        command = f"sudo -n {command}"
    if options.wrap_in_init_script:
        command = f"nohup {command} > /tmp/nimbus-init.log 2>&1 &"
    return command


async def run_script_on_nodes(
    nodes: Iterable[NodeMetadata],
    script: str,
    options: RunScriptOptions,
    *,
    address: str = "public",
) -> dict[str, ExecResponse]:
    """Run ``script`` on every node concurrently over SSH.

    Raises:
        ProviderError: If a node has no address, no credentials were given,
            or the connection fails.
    """
    credentials = options.credentials
    if credentials is None:
        raise ProviderError("Running scripts over SSH requires credentials")

    async def _one(node: NodeMetadata) -> tuple[str, ExecResponse]:
        host = node.public_ip if address == "public" else node.private_ip
        if host is None:
            raise ProviderError(f"Node {node.id} has no {address} address")
        command = render_script(script, options, credentials.user)
        log.debug("Running script on {id} ({host})", id=node.id, host=host)
        try:
            async with SSHTransport(host=host, port=node.ssh_port, credentials=credentials) as t:
                return node.id, await t.run(command, timeout=options.timeout)
        except (OSError, asyncssh.Error) as e:
            raise ProviderError(f"SSH to node {node.id} at {host} failed") from e

    return dict(await gather_or_cancel(*(_one(n) for n in nodes)))
