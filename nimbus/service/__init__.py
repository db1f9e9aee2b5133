"""Role handlers and their registry."""

from .handler import ClusterActionEvent as ClusterActionEvent
from .handler import ClusterActionHandler as ClusterActionHandler
from .handler import ClusterActionName as ClusterActionName
from .handler import HandlerRegistry as HandlerRegistry
from .handler import StatementBuilder as StatementBuilder
from .handler import environment as environment
from .script import ScriptRoleHandler as ScriptRoleHandler
