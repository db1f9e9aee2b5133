"""AWS provider on plain EC2.

Nodes are tagged ``nimbus:managed=true`` and ``nimbus:group=<cluster>``;
the group tag is all the provider needs to find a cluster's nodes again.
The cluster user and its public key are installed through cloud-init
user data; scripts then run over SSH.

Provider options (``[clusters.<name>.provider-options]``):
    region, subnet-id, security-group-ids, key-name, run-timeout.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_delay,
    wait_exponential,
)

from nimbus.api import ClusterSpec, ExecResponse, InstanceTemplate, NodeMetadata, NodeState
from nimbus.api.node import RunScriptOptions
from nimbus.api.predicate import Predicate
from nimbus.core.exceptions import ConfigurationError, ProviderError
from nimbus.infra.ssh import run_script_on_nodes
from nimbus.providers.aws.constants import DEFAULT_INSTANCE_TYPE, InstanceState, NimbusTag

if TYPE_CHECKING:
    from types_aiobotocore_ec2 import EC2Client

log = logger.bind(provider="aws", component="aws")

_STATES = {
    InstanceState.PENDING: NodeState.PENDING,
    InstanceState.RUNNING: NodeState.RUNNING,
    InstanceState.STOPPING: NodeState.SUSPENDED,
    InstanceState.STOPPED: NodeState.SUSPENDED,
    InstanceState.SHUTTING_DOWN: NodeState.TERMINATED,
    InstanceState.TERMINATED: NodeState.TERMINATED,
}


class _InstancesPendingError(Exception):
    pass


def user_data(user: str, public_key: str) -> str:
    return (
        "#cloud-config\n"
        "users:\n"
        "  - default\n"
        f"  - name: {user}\n"
        "    shell: /bin/bash\n"
        "    sudo: ALL=(ALL) NOPASSWD:ALL\n"
        "    ssh_authorized_keys:\n"
        f"      - {public_key.strip()}\n"
    )


def to_node(raw: dict[str, Any]) -> NodeMetadata:
    tags = {t["Key"]: t["Value"] for t in raw.get("Tags", [])}
    state = raw.get("State", {}).get("Name", "")
    return NodeMetadata(
        id=raw["InstanceId"],
        group=tags.get(NimbusTag.GROUP, ""),
        state=_STATES.get(state, NodeState.UNRECOGNIZED),
        public_addresses=(raw["PublicIpAddress"],) if raw.get("PublicIpAddress") else (),
        private_addresses=(raw["PrivateIpAddress"],) if raw.get("PrivateIpAddress") else (),
        hostname=raw.get("PrivateDnsName") or None,
        extra={
            "instance_type": raw.get("InstanceType", ""),
            "availability_zone": raw.get("Placement", {}).get("AvailabilityZone", ""),
        },
    )


class AWSProvider:

    def __init__(self, spec: ClusterSpec, session: aioboto3.Session | None = None) -> None:
        opts = spec.provider_options
        self.region = opts.get("region") or spec.location or "us-east-1"
        self.run_timeout = float(opts.get("run-timeout", 300))
        self._opts = opts
        self._session = session or aioboto3.Session(
            aws_access_key_id=spec.identity,
            aws_secret_access_key=spec.credential,
            region_name=self.region,
        )

    @classmethod
    async def create(cls, spec: ClusterSpec) -> AWSProvider:
        return cls(spec)

    @asynccontextmanager
    async def _ec2(self) -> AsyncIterator[EC2Client]:
        try:
            async with self._session.client("ec2", region_name=self.region) as client:
                yield client
        except (ClientError, BotoCoreError) as e:
            raise ProviderError(f"EC2 request failed in {self.region}: {e}") from e

    async def _describe(self, ec2: EC2Client, filters: list[dict[str, Any]]) -> list[NodeMetadata]:
        nodes: list[NodeMetadata] = []
        paginator = ec2.get_paginator("describe_instances")
        async for page in paginator.paginate(Filters=filters):
            for reservation in page.get("Reservations", []):
                nodes.extend(to_node(i) for i in reservation.get("Instances", []))
        return nodes

    async def create_nodes(
        self,
        group: str,
        count: int,
        template: InstanceTemplate,
        spec: ClusterSpec,
    ) -> Sequence[NodeMetadata]:
        image = template.image or spec.image
        if not image:
            raise ConfigurationError("The aws provider needs an image (AMI id)")
        if not spec.public_key:
            raise ConfigurationError("The aws provider needs a public key to authorize logins")
        if count == 0:
            return []

        request: dict[str, Any] = {
            "ImageId": image,
            "InstanceType": template.hardware or spec.hardware or DEFAULT_INSTANCE_TYPE,
            "MinCount": 1,
            "MaxCount": count,
            "UserData": user_data(spec.cluster_user, spec.public_key),
            "TagSpecifications": [{
                "ResourceType": "instance",
                "Tags": [
                    {"Key": "Name", "Value": f"{group}-{template.label}"},
                    {"Key": NimbusTag.MANAGED, "Value": "true"},
                    {"Key": NimbusTag.GROUP, "Value": group},
                    {"Key": NimbusTag.ROLES, "Value": template.label},
                ],
            }],
        }
        if subnet := self._opts.get("subnet-id"):
            request["SubnetId"] = subnet
        if groups := self._opts.get("security-group-ids"):
            request["SecurityGroupIds"] = list(groups)
        if key_name := self._opts.get("key-name"):
            request["KeyName"] = key_name

        async with self._ec2() as ec2:
            response = await ec2.run_instances(**request)
            ids = [i["InstanceId"] for i in response.get("Instances", [])]
            log.info(
                "Launched {n}/{count} instances for {label}: {ids}",
                n=len(ids), count=count, label=template.label, ids=ids,
            )
            return await self._wait_running(ec2, ids)

    async def _wait_running(self, ec2: EC2Client, ids: list[str]) -> list[NodeMetadata]:
        if not ids:
            return []
        latest: list[NodeMetadata] = []

        @retry(
            stop=stop_after_delay(self.run_timeout),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type(_InstancesPendingError),
        )
        async def _check() -> None:
            nonlocal latest
            latest = await self._describe(ec2, [{"Name": "instance-id", "Values": ids}])
            pending = [n.id for n in latest if n.state is NodeState.PENDING]
            if pending or len(latest) < len(ids):
                raise _InstancesPendingError(f"Still pending: {pending}")

        try:
            await _check()
        except RetryError:
            log.warning("Timed out waiting for instances {ids} to run", ids=ids)

        running = [n for n in latest if n.is_running]
        if failed := [n.id for n in latest if not n.is_running]:
            log.warning("Instances {ids} did not reach running, terminating", ids=failed)
            await ec2.terminate_instances(InstanceIds=failed)
        return running

    async def list_nodes(
        self,
        predicate: Predicate[NodeMetadata] | None = None,
    ) -> Sequence[NodeMetadata]:
        async with self._ec2() as ec2:
            nodes = await self._describe(ec2, [
                {"Name": f"tag:{NimbusTag.MANAGED}", "Values": ["true"]},
                {"Name": "instance-state-name", "Values": [
                    InstanceState.PENDING, InstanceState.RUNNING,
                    InstanceState.STOPPING, InstanceState.STOPPED,
                ]},
            ])
        return [n for n in nodes if predicate is None or predicate(n)]

    async def destroy_node(self, node_id: str) -> None:
        try:
            async with self._session.client("ec2", region_name=self.region) as ec2:
                await ec2.terminate_instances(InstanceIds=[node_id])
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "InvalidInstanceID.NotFound":
                return
            raise ProviderError(f"Unable to terminate {node_id}") from e
        except BotoCoreError as e:
            raise ProviderError(f"Unable to terminate {node_id}") from e
        log.info("Instance {id} terminated", id=node_id)

    async def destroy_nodes_matching(
        self,
        predicate: Predicate[NodeMetadata],
    ) -> Sequence[NodeMetadata]:
        victims = await self.list_nodes(predicate)
        if victims:
            async with self._ec2() as ec2:
                await ec2.terminate_instances(InstanceIds=[n.id for n in victims])
            log.info("Terminated {n} instances", n=len(victims))
        return victims

    async def run_script_on_nodes_matching(
        self,
        predicate: Predicate[NodeMetadata],
        script: str,
        options: RunScriptOptions,
    ) -> dict[str, ExecResponse]:
        nodes = [n for n in await self.list_nodes(predicate) if n.is_running]
        address = self._opts.get("ssh-address", "public")
        return await run_script_on_nodes(nodes, script, options, address=address)

    async def close(self) -> None:
        pass
