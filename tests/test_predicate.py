import pytest

from nimbus.api import Credentials, Instance, NodeMetadata, NodeState
from nimbus.api.predicate import (
    AllOf,
    AnyOf,
    AnyRoleIn,
    InGroup,
    Not,
    RunningInGroup,
    WithIds,
    WithRole,
)

pytestmark = [pytest.mark.xdist_group("unit")]


def node(id: str, group: str = "hadoop", state: NodeState = NodeState.RUNNING) -> NodeMetadata:
    return NodeMetadata(id=id, group=group, state=state)


def instance(id: str, *role_names: str) -> Instance:
    return Instance(
        id=id, roles=frozenset(role_names), public_ip=None, private_ip=None,
        credentials=Credentials(user="u"),
    )


class TestNodePredicates:
    def test_in_group(self):
        assert InGroup("hadoop")(node("a"))
        assert not InGroup("hbase")(node("a"))

    def test_running_in_group_requires_both(self):
        p = RunningInGroup("hadoop")
        assert p(node("a"))
        assert not p(node("a", state=NodeState.PENDING))
        assert not p(node("a", group="hbase"))

    def test_with_ids_works_on_nodes_and_instances(self):
        p = WithIds("a", "b")
        assert p(node("a"))
        assert p(instance("b"))
        assert not p(node("c"))

    def test_with_ids_empty_matches_nothing(self):
        assert not WithIds()(node("a"))


class TestRolePredicates:
    def test_with_role(self):
        assert WithRole("nn")(instance("a", "nn", "jt"))
        assert not WithRole("dn")(instance("a", "nn"))

    def test_any_role_in(self):
        assert AnyRoleIn(frozenset({"dn", "tt"}))(instance("a", "tt"))
        assert not AnyRoleIn(frozenset({"dn"}))(instance("a", "nn"))


class TestCombinators:
    def test_and_or_not(self):
        dn = WithRole("dn")
        nn = WithRole("nn")
        assert isinstance(dn & nn, AllOf)
        assert isinstance(dn | nn, AnyOf)
        assert isinstance(~dn, Not)
        assert (dn | nn)(instance("a", "nn"))
        assert not (dn & nn)(instance("a", "nn"))
        assert (~dn)(instance("a", "nn"))

    def test_string_forms(self):
        p = RunningInGroup("hadoop") & WithIds("b", "a")
        assert str(p) == "(runningInGroup(hadoop) & withIds(a, b))"
        assert str(~WithRole("nn")) == "~role(nn)"

    def test_predicates_compare_as_values(self):
        assert WithIds("a", "b") == WithIds("b", "a")
        assert WithRole("nn") == WithRole("nn")
