"""Named, composable predicates over instances and provider nodes.

Predicates are plain frozen values, so they compare, print and test
like data. Combine them with ``&``, ``|`` and ``~``:

    >>> running_workers = RunningInGroup("hadoop") & ~InGroup("other")
    >>> masters = WithRole("namenode") | WithRole("jobtracker")
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from nimbus.api.node import NodeState

if TYPE_CHECKING:
    from nimbus.api.model import Instance
    from nimbus.api.node import NodeMetadata


class Predicate[T](ABC):
    __slots__ = ()

    @abstractmethod
    def __call__(self, item: T) -> bool: ...

    def __and__(self, other: Predicate[T]) -> Predicate[T]:
        return AllOf((self, other))

    def __or__(self, other: Predicate[T]) -> Predicate[T]:
        return AnyOf((self, other))

    def __invert__(self) -> Predicate[T]:
        return Not(self)


@dataclass(frozen=True, slots=True)
class AllOf[T](Predicate[T]):
    predicates: tuple[Predicate[T], ...]

    def __call__(self, item: T) -> bool:
        return all(p(item) for p in self.predicates)

    def __str__(self) -> str:
        return "(" + " & ".join(map(str, self.predicates)) + ")"


@dataclass(frozen=True, slots=True)
class AnyOf[T](Predicate[T]):
    predicates: tuple[Predicate[T], ...]

    def __call__(self, item: T) -> bool:
        return any(p(item) for p in self.predicates)

    def __str__(self) -> str:
        return "(" + " | ".join(map(str, self.predicates)) + ")"


@dataclass(frozen=True, slots=True)
class Not[T](Predicate[T]):
    predicate: Predicate[T]

    def __call__(self, item: T) -> bool:
        return not self.predicate(item)

    def __str__(self) -> str:
        return f"~{self.predicate}"


# =============================================================================
# Instance predicates (also work on nodes, both expose ``id``)
# =============================================================================


@dataclass(frozen=True, slots=True)
class WithIds(Predicate[Any]):
    ids: frozenset[str]

    def __init__(self, *ids: str) -> None:
        object.__setattr__(self, "ids", frozenset(ids))

    def __call__(self, item: Instance | NodeMetadata) -> bool:
        return item.id in self.ids

    def __str__(self) -> str:
        return f"withIds({', '.join(sorted(self.ids))})"


@dataclass(frozen=True, slots=True)
class WithRole(Predicate["Instance"]):
    role: str

    def __call__(self, item: Instance) -> bool:
        return item.has_role(self.role)

    def __str__(self) -> str:
        return f"role({self.role})"


@dataclass(frozen=True, slots=True)
class AnyRoleIn(Predicate["Instance"]):
    roles: frozenset[str]

    def __call__(self, item: Instance) -> bool:
        return bool(self.roles & item.roles)

    def __str__(self) -> str:
        return f"anyRoleIn({', '.join(sorted(self.roles))})"


# =============================================================================
# Node predicates
# =============================================================================


@dataclass(frozen=True, slots=True)
class InGroup(Predicate["NodeMetadata"]):
    group: str

    def __call__(self, node: NodeMetadata) -> bool:
        return node.group == self.group

    def __str__(self) -> str:
        return f"inGroup({self.group})"


@dataclass(frozen=True, slots=True)
class RunningInGroup(Predicate["NodeMetadata"]):
    group: str

    def __call__(self, node: NodeMetadata) -> bool:
        return node.group == self.group and node.state is NodeState.RUNNING

    def __str__(self) -> str:
        return f"runningInGroup({self.group})"
