"""Phases that act on existing instances without changing membership."""

from __future__ import annotations

from nimbus.actions.base import ScriptBasedClusterAction
from nimbus.service.handler import ClusterActionName


class ConfigureClusterAction(ScriptBasedClusterAction):
    action = ClusterActionName.CONFIGURE


class StartClusterAction(ScriptBasedClusterAction):
    action = ClusterActionName.START


class StopClusterAction(ScriptBasedClusterAction):
    action = ClusterActionName.STOP


class CleanupClusterAction(ScriptBasedClusterAction):
    action = ClusterActionName.CLEANUP
