"""Lifecycle phases run by the controller."""

from .base import ClusterAction as ClusterAction
from .base import ScriptBasedClusterAction as ScriptBasedClusterAction
from .bootstrap import BootstrapClusterAction as BootstrapClusterAction
from .destroy import DestroyClusterAction as DestroyClusterAction
from .lifecycle import CleanupClusterAction as CleanupClusterAction
from .lifecycle import ConfigureClusterAction as ConfigureClusterAction
from .lifecycle import StartClusterAction as StartClusterAction
from .lifecycle import StopClusterAction as StopClusterAction
