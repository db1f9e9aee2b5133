from __future__ import annotations

import asyncio
from collections.abc import Sequence

import pytest

from nimbus.actions import (
    BootstrapClusterAction,
    ConfigureClusterAction,
    DestroyClusterAction,
    StartClusterAction,
)
from nimbus.api import Cluster, ClusterSpec, ExecResponse, Instance, InstanceTemplate, NodeMetadata
from nimbus.api.predicate import WithRole
from nimbus.core.exceptions import ConfigurationError, ErrorKind, HandlerError, ProviderError
from nimbus.providers.stub import StubProvider
from nimbus.service import ClusterActionEvent, ClusterActionHandler, HandlerRegistry, ScriptRoleHandler

pytestmark = [pytest.mark.xdist_group("unit")]


class PartialStub(StubProvider):
    """Creates at most ``limits[n]`` nodes on the n-th call."""

    def __init__(self, limits: Sequence[int]) -> None:
        super().__init__()
        self.limits = list(limits)
        self.requested: list[int] = []

    async def create_nodes(self, group, count, template, spec) -> Sequence[NodeMetadata]:
        self.requested.append(count)
        limit = self.limits.pop(0) if self.limits else count
        return await super().create_nodes(group, min(count, limit), template, spec)


class Recorder(ClusterActionHandler):
    def __init__(self, role: str, log: list[str], depends_on: tuple[str, ...] = ()) -> None:
        self.role = role
        self.log = log
        self.depends_on = depends_on

    async def before_action(self, event: ClusterActionEvent) -> None:
        self.log.append(f"before:{self.role}")
        event.statements.add(f"echo {self.role}")

    async def after_action(self, event: ClusterActionEvent) -> None:
        self.log.append(f"after:{self.role}")


def _compute(provider: StubProvider):
    async def get_compute(spec: ClusterSpec) -> StubProvider:
        return provider

    return get_compute


def _handlers(*roles: str) -> HandlerRegistry:
    return HandlerRegistry(ScriptRoleHandler(role=r) for r in roles)


ALL_ROLES = ("namenode", "jobtracker", "datanode", "tasktracker")


class TestBootstrap:
    @pytest.mark.asyncio
    async def test_creates_nodes_per_template(self, make_spec, stub):
        spec = make_spec("1 namenode+jobtracker, 3 datanode+tasktracker")
        action = BootstrapClusterAction(_compute(stub), _handlers(*ALL_ROLES))

        cluster = await action.execute(spec, Cluster.empty())

        assert len(cluster) == 4
        assert len(cluster.instances_matching(WithRole("namenode"))) == 1
        assert len(cluster.instances_matching(WithRole("datanode"))) == 3
        assert all(i.node is not None and i.node.group == "hadoop" for i in cluster)
        assert all(i.credentials == spec.credentials for i in cluster)
        assert {i.public_ip for i in cluster} == {n.public_ip for n in stub.nodes.values()}

    @pytest.mark.asyncio
    async def test_retries_shortfall(self, make_spec):
        provider = PartialStub([1, 2])
        spec = make_spec("3 datanode", max_startup_retries=1)
        action = BootstrapClusterAction(_compute(provider), _handlers("datanode"))

        cluster = await action.execute(spec, Cluster.empty())

        assert provider.requested == [3, 2]
        assert len(cluster) == 3

    @pytest.mark.asyncio
    async def test_below_minimum_destroys_partial_nodes(self, make_spec):
        provider = PartialStub([1, 0])
        spec = make_spec("3 datanode", max_startup_retries=1)
        action = BootstrapClusterAction(_compute(provider), _handlers("datanode"))

        with pytest.raises(ProviderError, match="1 started, at least 3 required"):
            await action.execute(spec, Cluster.empty())

        assert provider.nodes == {}
        assert provider.destroyed == ["stub-1"]

    @pytest.mark.asyncio
    async def test_min_count_accepts_fewer(self, make_spec):
        provider = PartialStub([2, 0])
        spec = make_spec(
            instance_templates=(InstanceTemplate(count=3, roles=frozenset({"datanode"}), min_count=2),),
            max_startup_retries=1,
        )
        action = BootstrapClusterAction(_compute(provider), _handlers("datanode"))

        cluster = await action.execute(spec, Cluster.empty())

        assert len(cluster) == 2

    @pytest.mark.asyncio
    async def test_bootstrap_script_runs_on_new_nodes_only(self, make_spec, stub):
        existing = stub.add_node("hadoop")
        spec = make_spec("1 datanode")
        handlers = HandlerRegistry([ScriptRoleHandler(role="datanode", scripts={"bootstrap": "apt-get update"})])
        prior = Cluster([
            Instance(
                id=existing.id, roles=frozenset({"datanode"}), public_ip=existing.public_ip,
                private_ip=existing.private_ip, credentials=spec.credentials,
            ),
        ])

        cluster = await BootstrapClusterAction(_compute(stub), handlers).execute(spec, prior)

        assert len(cluster) == 2
        assert [run.node_id for run in stub.script_runs] == ["stub-2"]
        assert "apt-get update" in stub.script_runs[0].script
        assert "export NIMBUS_DATANODE_PRIVATE_IPS=10.0.0.1,10.0.0.2" in stub.script_runs[0].script
        assert stub.script_runs[0].options.run_as_root


class TestScriptBasedAction:
    @pytest.mark.asyncio
    async def test_before_hooks_then_scripts_then_after_hooks(self, make_spec, stub):
        log: list[str] = []
        stub.responder = lambda node, script: (log.append(f"script:{node.id}"), ExecResponse(0))[1]
        spec = make_spec("1 namenode, 1 datanode")
        cluster = await BootstrapClusterAction(_compute(stub), _handlers("namenode", "datanode")).execute(
            spec, Cluster.empty(),
        )
        handlers = HandlerRegistry([Recorder("namenode", log), Recorder("datanode", log)])

        await ConfigureClusterAction(_compute(stub), handlers).execute(spec, cluster)

        befores = [e for e in log if e.startswith("before")]
        scripts = [e for e in log if e.startswith("script")]
        afters = [e for e in log if e.startswith("after")]
        assert log == befores + scripts + afters
        assert len(befores) == len(scripts) == len(afters) == 2

    @pytest.mark.asyncio
    async def test_hooks_follow_role_dependencies(self, make_spec, stub):
        log: list[str] = []
        spec = make_spec("1 namenode, 1 datanode")
        handlers = HandlerRegistry([
            Recorder("namenode", log, depends_on=("datanode",)),
            Recorder("datanode", log),
        ])

        await StartClusterAction(_compute(stub), handlers).execute(spec, Cluster.empty())

        assert log == ["before:datanode", "before:namenode", "after:datanode", "after:namenode"]

    @pytest.mark.asyncio
    async def test_dependency_cycle_is_configuration_error(self, make_spec, stub):
        spec = make_spec("1 namenode, 1 datanode")
        handlers = HandlerRegistry([
            Recorder("namenode", [], depends_on=("datanode",)),
            Recorder("datanode", [], depends_on=("namenode",)),
        ])
        with pytest.raises(ConfigurationError, match="cycle"):
            await StartClusterAction(_compute(stub), handlers).execute(spec, Cluster.empty())

    @pytest.mark.asyncio
    async def test_unknown_role_is_configuration_error(self, make_spec, stub):
        spec = make_spec("1 namenode, 1 zookeeper")
        with pytest.raises(ConfigurationError, match="zookeeper"):
            await ConfigureClusterAction(_compute(stub), _handlers("namenode")).execute(spec, Cluster.empty())

    @pytest.mark.asyncio
    async def test_unknown_role_skipped_when_allowed(self, make_spec, stub):
        log: list[str] = []
        spec = make_spec("1 namenode, 1 zookeeper", allow_unregistered_roles=True)
        handlers = HandlerRegistry([Recorder("namenode", log)])

        await ConfigureClusterAction(_compute(stub), handlers).execute(spec, Cluster.empty())

        assert log == ["before:namenode", "after:namenode"]

    @pytest.mark.asyncio
    async def test_hook_failure_wrapped_in_handler_error(self, make_spec, stub):
        class Broken(ClusterActionHandler):
            role = "namenode"

            async def before_configure(self, event: ClusterActionEvent) -> None:
                raise ValueError("bad hdfs-site.xml")

        spec = make_spec("1 namenode")
        with pytest.raises(HandlerError) as exc:
            await ConfigureClusterAction(_compute(stub), HandlerRegistry([Broken()])).execute(
                spec, Cluster.empty(),
            )

        assert exc.value.role == "namenode"
        assert exc.value.phase == "before_configure"
        assert exc.value.kind is ErrorKind.HANDLER
        assert isinstance(exc.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_failed_script_is_handler_error(self, make_spec, stub):
        stub.responder = lambda node, script: ExecResponse(exit_status=2, error="no such file")
        spec = make_spec("1 namenode")
        handlers = HandlerRegistry([ScriptRoleHandler(role="namenode", scripts={"configure": "false"})])
        cluster = await BootstrapClusterAction(_compute(stub), handlers).execute(spec, Cluster.empty())

        with pytest.raises(HandlerError, match="exited 2: no such file"):
            await ConfigureClusterAction(_compute(stub), handlers).execute(spec, cluster)

    @pytest.mark.asyncio
    async def test_failed_role_cancels_other_role_scripts(self, make_spec):
        cancelled: list[str] = []

        class SlowStub(StubProvider):
            async def run_script_on_nodes_matching(self, predicate, script, options):
                if "slow-start" in script:
                    try:
                        await asyncio.sleep(10)
                    except asyncio.CancelledError:
                        cancelled.append("namenode")
                        raise
                if "failing-start" in script:
                    await asyncio.sleep(0)
                    return {n.id: ExecResponse(1, error="boom") for n in await self.list_nodes(predicate)}
                return await super().run_script_on_nodes_matching(predicate, script, options)

        provider = SlowStub()
        spec = make_spec("1 namenode, 1 datanode")
        handlers = HandlerRegistry([
            ScriptRoleHandler(role="namenode", scripts={"start": "slow-start"}),
            ScriptRoleHandler(role="datanode", scripts={"start": "failing-start"}),
        ])
        cluster = await BootstrapClusterAction(_compute(provider), handlers).execute(spec, Cluster.empty())

        with pytest.raises(HandlerError, match="boom"):
            async with asyncio.timeout(5):
                await StartClusterAction(_compute(provider), handlers).execute(spec, cluster)

        assert cancelled == ["namenode"]

    @pytest.mark.asyncio
    async def test_hook_may_replace_cluster(self, make_spec, stub):
        class Relabel(ClusterActionHandler):
            role = "namenode"

            async def after_configure(self, event: ClusterActionEvent) -> None:
                event.cluster = Cluster(i.with_roles({"namenode", "secondary"}) for i in event.cluster)

        spec = make_spec("1 namenode")
        cluster = await BootstrapClusterAction(_compute(stub), _handlers("namenode")).execute(
            spec, Cluster.empty(),
        )

        result = await ConfigureClusterAction(_compute(stub), HandlerRegistry([Relabel()])).execute(
            spec, cluster,
        )

        assert result.roles == {"namenode", "secondary"}
        assert cluster.roles == {"namenode"}

    @pytest.mark.asyncio
    async def test_membership_unchanged(self, make_spec, stub):
        spec = make_spec()
        handlers = _handlers(*ALL_ROLES)
        cluster = await BootstrapClusterAction(_compute(stub), handlers).execute(spec, Cluster.empty())
        assert await StartClusterAction(_compute(stub), handlers).execute(spec, cluster) == cluster


class TestDestroy:
    @pytest.mark.asyncio
    async def test_destroys_group_and_returns_empty(self, make_spec, stub):
        spec = make_spec()
        handlers = _handlers(*ALL_ROLES)
        other = stub.add_node("other-cluster")
        cluster = await BootstrapClusterAction(_compute(stub), handlers).execute(spec, Cluster.empty())

        result = await DestroyClusterAction(_compute(stub), handlers).execute(spec, cluster)

        assert result.is_empty
        assert list(stub.nodes) == [other.id]

    @pytest.mark.asyncio
    async def test_runs_with_unregistered_roles(self, make_spec, stub):
        spec = make_spec()
        cluster = await BootstrapClusterAction(_compute(stub), _handlers(*ALL_ROLES)).execute(
            spec, Cluster.empty(),
        )

        result = await DestroyClusterAction(_compute(stub), HandlerRegistry()).execute(spec, cluster)

        assert result.is_empty
        assert stub.nodes == {}

    @pytest.mark.asyncio
    async def test_destroy_scripts_run_before_nodes_go(self, make_spec, stub):
        spec = make_spec("1 datanode")
        handlers = HandlerRegistry([ScriptRoleHandler(role="datanode", scripts={"destroy": "hdfs dfsadmin -refreshNodes"})])
        cluster = await BootstrapClusterAction(_compute(stub), handlers).execute(spec, Cluster.empty())

        await DestroyClusterAction(_compute(stub), handlers).execute(spec, cluster)

        assert any("refreshNodes" in run.script for run in stub.script_runs)
        assert stub.nodes == {}
