from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from nimbus.core.exceptions import LookupError

if TYPE_CHECKING:
    from nimbus.api.node import NodeMetadata
    from nimbus.api.predicate import Predicate


@dataclass(frozen=True, slots=True)
class Credentials:
    user: str
    private_key: str | None = field(default=None, repr=False)


@dataclass(frozen=True, slots=True)
class Instance:
    """One provisioned node: provider id, assigned roles and addresses.

    ``node`` is the live provider record, absent when the instance was
    rebuilt from persisted state.
    """

    id: str
    roles: frozenset[str]
    public_ip: str | None
    private_ip: str | None
    credentials: Credentials = field(repr=False)
    node: NodeMetadata | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not isinstance(self.roles, frozenset):
            object.__setattr__(self, "roles", frozenset(self.roles))

    @property
    def sorted_roles(self) -> list[str]:
        return sorted(self.roles)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def with_roles(self, roles: Iterable[str]) -> Instance:
        return replace(self, roles=frozenset(roles))


@dataclass(frozen=True, slots=True)
class Found:
    instance: Instance


@dataclass(frozen=True, slots=True)
class NotFound:
    pass


@dataclass(frozen=True, slots=True)
class Ambiguous:
    count: int


type Lookup = Found | NotFound | Ambiguous


@dataclass(frozen=True, slots=True, init=False)
class Cluster:
    """Immutable snapshot of a cluster's instances, unique by id.

    Insertion order is kept so serialization is deterministic. Adding an
    instance whose id is already present replaces the existing entry in
    place. Every mutator returns a new Cluster.
    """

    instances: tuple[Instance, ...]

    def __init__(self, instances: Iterable[Instance] = ()) -> None:
        by_id: dict[str, Instance] = {}
        for instance in instances:
            by_id[instance.id] = instance
        object.__setattr__(self, "instances", tuple(by_id.values()))

    @staticmethod
    def empty() -> Cluster:
        return _EMPTY

    @property
    def is_empty(self) -> bool:
        return not self.instances

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(i.id for i in self.instances)

    @property
    def roles(self) -> frozenset[str]:
        return frozenset().union(*(i.roles for i in self.instances))

    def __len__(self) -> int:
        return len(self.instances)

    def __iter__(self) -> Iterator[Instance]:
        return iter(self.instances)

    def __contains__(self, instance_id: object) -> bool:
        return any(i.id == instance_id for i in self.instances)

    def instances_matching(self, predicate: Predicate[Instance]) -> tuple[Instance, ...]:
        return tuple(i for i in self.instances if predicate(i))

    def find_instance(self, predicate: Predicate[Instance]) -> Lookup:
        matches = self.instances_matching(predicate)
        match len(matches):
            case 0:
                return NotFound()
            case 1:
                return Found(matches[0])
            case n:
                return Ambiguous(n)

    def instance_matching(self, predicate: Predicate[Instance]) -> Instance:
        """Return the single instance matching ``predicate``.

        Raises:
            LookupError: If zero or more than one instance matched.
        """
        match self.find_instance(predicate):
            case Found(instance):
                return instance
            case NotFound():
                raise LookupError(str(predicate), 0)
            case Ambiguous(count):
                raise LookupError(str(predicate), count)

    def with_instances(self, *instances: Instance) -> Cluster:
        return Cluster((*self.instances, *instances))

    def without_instances_matching(self, predicate: Predicate[Instance]) -> Cluster:
        return Cluster(i for i in self.instances if not predicate(i))


_EMPTY = Cluster()
