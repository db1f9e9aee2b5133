"""Local container provider.

Runs every node as a docker (or podman/nerdctl) container with sshd,
labelled with its group. Scripts run over SSH through the published
port on 127.0.0.1, exactly as they would against a cloud node.

Provider options (``[clusters.<name>.provider-options]``):
    binary: container CLI, default ``docker``.
    base-image: image the SSH image is built from, default ``ubuntu:24.04``.
    network: network to attach nodes to, default ``nimbus-<group>``.
"""

from __future__ import annotations

import asyncio
import hashlib
import tempfile
import uuid
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any

from loguru import logger

from nimbus.api import ClusterSpec, ExecResponse, InstanceTemplate, NodeMetadata, NodeState
from nimbus.api.node import RunScriptOptions
from nimbus.api.predicate import Predicate
from nimbus.core.exceptions import ConfigurationError, ProviderError
from nimbus.infra.ssh import run_script_on_nodes
from nimbus.providers.container.cli import run, run_json

log = logger.bind(provider="container", component="container")

_MANAGED_LABEL = "nimbus.managed"
_GROUP_LABEL = "nimbus.group"
_DEFAULT_IMAGE = "ubuntu:24.04"
_DOCKERFILE = (
    "FROM {base}\n"
    "RUN apt-get update -qq && "
    "apt-get install -y -qq openssh-server sudo > /dev/null 2>&1 && "
    "mkdir -p /run/sshd && "
    "rm -rf /var/lib/apt/lists/*\n"
    "EXPOSE 22\n"
)

_STATES = {
    "created": NodeState.PENDING,
    "restarting": NodeState.PENDING,
    "running": NodeState.RUNNING,
    "paused": NodeState.SUSPENDED,
    "exited": NodeState.TERMINATED,
    "removing": NodeState.TERMINATED,
    "dead": NodeState.ERROR,
}


def _make_entrypoint(user: str) -> str:
    home = "/root" if user == "root" else f"/home/{user}"
    create_user = "" if user == "root" else (
        f"id -u {user} >/dev/null 2>&1 || useradd -m -s /bin/bash {user}; "
        f"echo '{user} ALL=(ALL) NOPASSWD:ALL' > /etc/sudoers.d/{user}; "
    )
    return (
        f"{create_user}"
        f"mkdir -p {home}/.ssh && "
        f"echo \"$SSH_PUB_KEY\" > {home}/.ssh/authorized_keys && "
        f"chmod 700 {home}/.ssh && chmod 600 {home}/.ssh/authorized_keys && "
        f"chown -R {user} {home}/.ssh && "
        "/usr/sbin/sshd -D"
    )


def _parse_inspect(data: dict[str, Any]) -> NodeMetadata:
    labels = data.get("Config", {}).get("Labels") or {}
    status = data.get("State", {}).get("Status", "")
    networks = data.get("NetworkSettings", {}).get("Networks") or {}
    private_ips = tuple(n["IPAddress"] for n in networks.values() if n.get("IPAddress"))
    ports = (data.get("NetworkSettings", {}).get("Ports") or {}).get("22/tcp")
    ssh_port = int(ports[0]["HostPort"]) if ports else 22
    return NodeMetadata(
        id=data.get("Name", "").lstrip("/"),
        group=labels.get(_GROUP_LABEL, ""),
        state=_STATES.get(status, NodeState.UNRECOGNIZED),
        public_addresses=("127.0.0.1",) if ports else (),
        private_addresses=private_ips,
        hostname=data.get("Config", {}).get("Hostname"),
        ssh_port=ssh_port,
    )


class ContainerProvider:

    def __init__(self, binary: str = "docker", base_image: str = _DEFAULT_IMAGE,
                 network: str | None = None) -> None:
        self._bin = binary
        self._base_image = base_image
        self._network = network

    @classmethod
    async def create(cls, spec: ClusterSpec) -> ContainerProvider:
        opts = spec.provider_options
        return cls(
            binary=opts.get("binary", "docker"),
            base_image=opts.get("base-image", spec.image or _DEFAULT_IMAGE),
            network=opts.get("network"),
        )

    async def _ensure_image(self, base: str) -> str:
        tag = f"nimbus-ssh:{hashlib.md5(base.encode()).hexdigest()[:12]}"
        try:
            await run(self._bin, "image", "inspect", tag)
            log.debug("Image {tag} already exists", tag=tag)
            return tag
        except ProviderError:
            pass

        log.info("Building SSH image from {base}", base=base)
        with tempfile.TemporaryDirectory() as tmpdir:
            await asyncio.to_thread(Path(tmpdir, "Dockerfile").write_text, _DOCKERFILE.format(base=base))
            await run(self._bin, "build", "-t", tag, tmpdir)
        log.info("Image {tag} built", tag=tag)
        return tag

    async def _ensure_network(self, group: str) -> str:
        name = self._network or f"nimbus-{group}"
        try:
            await run(self._bin, "network", "inspect", name)
        except ProviderError:
            try:
                await run(self._bin, "network", "create", name)
                log.info("Network {net} created", net=name)
            except ProviderError as e:
                if "already exists" not in str(e):
                    raise
        return name

    async def create_nodes(
        self,
        group: str,
        count: int,
        template: InstanceTemplate,
        spec: ClusterSpec,
    ) -> Sequence[NodeMetadata]:
        if not spec.public_key:
            raise ConfigurationError("The container provider needs a public key to authorize logins")
        image = await self._ensure_image(template.image or self._base_image)
        network = await self._ensure_network(group)
        entrypoint = _make_entrypoint(spec.cluster_user)

        async def _launch() -> NodeMetadata | None:
            name = f"{group}-{uuid.uuid4().hex[:8]}"
            try:
                await run(
                    self._bin, "run", "-d",
                    "--name", name,
                    "--hostname", name,
                    "-e", f"SSH_PUB_KEY={spec.public_key}",
                    "-p", "0:22",
                    "--network", network,
                    "-l", f"{_MANAGED_LABEL}=true",
                    "-l", f"{_GROUP_LABEL}={group}",
                    image, "sh", "-c", entrypoint,
                )
            except ProviderError as e:
                log.warning("Container {name} failed to start: {err}", name=name, err=e)
                return None
            log.info("Container {name} launched", name=name)
            return await self._inspect(name)

        launched = await asyncio.gather(*(_launch() for _ in range(count)))
        return [n for n in launched if n is not None and n.is_running]

    async def _inspect(self, *names: str) -> list[NodeMetadata]:
        if not names:
            return []
        return [_parse_inspect(d) for d in await run_json(self._bin, "inspect", *names)]

    async def list_nodes(
        self,
        predicate: Predicate[NodeMetadata] | None = None,
    ) -> Sequence[NodeMetadata]:
        raw = await run(self._bin, "ps", "-a", "-q", "--filter", f"label={_MANAGED_LABEL}=true")
        ids = [c.strip() for c in raw.splitlines() if c.strip()]
        nodes = await self._inspect(*ids)
        return [n for n in nodes if predicate is None or predicate(n)]

    async def destroy_node(self, node_id: str) -> None:
        try:
            await run(self._bin, "rm", "-f", node_id)
        except ProviderError as e:
            if "No such container" not in str(e):
                raise
        log.info("Container {id} removed", id=node_id)

    async def destroy_nodes_matching(
        self,
        predicate: Predicate[NodeMetadata],
    ) -> Sequence[NodeMetadata]:
        victims = await self.list_nodes(predicate)
        await asyncio.gather(*(self.destroy_node(n.id) for n in victims))
        return victims

    async def run_script_on_nodes_matching(
        self,
        predicate: Predicate[NodeMetadata],
        script: str,
        options: RunScriptOptions,
    ) -> dict[str, ExecResponse]:
        nodes = [n for n in await self.list_nodes(predicate) if n.is_running]
        # ssh goes through the published port, so every node is 127.0.0.1
        return await run_script_on_nodes(
            [replace(n, public_addresses=("127.0.0.1",)) for n in nodes], script, options,
        )

    async def close(self) -> None:
        pass
