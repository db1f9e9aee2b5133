"""User-facing API: cluster model, specs and predicates."""

from .model import Ambiguous as Ambiguous
from .model import Cluster as Cluster
from .model import Credentials as Credentials
from .model import Found as Found
from .model import Instance as Instance
from .model import Lookup as Lookup
from .model import NotFound as NotFound
from .node import ExecResponse as ExecResponse
from .node import NodeMetadata as NodeMetadata
from .node import NodeState as NodeState
from .node import RunScriptOptions as RunScriptOptions
from .predicate import AllOf as AllOf
from .predicate import AnyOf as AnyOf
from .predicate import AnyRoleIn as AnyRoleIn
from .predicate import InGroup as InGroup
from .predicate import Not as Not
from .predicate import Predicate as Predicate
from .predicate import RunningInGroup as RunningInGroup
from .predicate import WithIds as WithIds
from .predicate import WithRole as WithRole
from .spec import ClusterSpec as ClusterSpec
from .spec import FirewallRule as FirewallRule
from .spec import InstanceTemplate as InstanceTemplate
