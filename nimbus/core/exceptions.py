"""Custom exception hierarchy for nimbus.

All nimbus-specific exceptions inherit from NimbusError and carry an
ErrorKind tag, so callers can branch on ``err.kind`` instead of matching
messages. The original failure is always kept as ``__cause__``.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum


class ErrorKind(StrEnum):
    STORAGE = "storage"
    PROVIDER = "provider"
    HANDLER = "handler"
    LOOKUP = "lookup"
    INTERRUPTED = "interrupted"
    CONFIGURATION = "configuration"
    ORCHESTRATION = "orchestration"


class NimbusError(Exception):
    """Base exception for all nimbus errors."""

    kind: ErrorKind = ErrorKind.ORCHESTRATION

    @property
    def root_cause(self) -> BaseException:
        """Innermost exception of the ``__cause__`` chain."""
        err: BaseException = self
        while err.__cause__ is not None:
            err = err.__cause__
        return err


class StorageError(NimbusError):
    """Raised when cluster state cannot be loaded, saved or destroyed."""

    kind = ErrorKind.STORAGE


class ProviderError(NimbusError):
    """Raised when the compute provider fails to create, list, script or destroy nodes."""

    kind = ErrorKind.PROVIDER


class HandlerError(NimbusError):
    """Raised when a role lifecycle hook fails."""

    kind = ErrorKind.HANDLER

    def __init__(self, role: str, phase: str, reason: str = "hook failed") -> None:
        self.role = role
        self.phase = phase
        self.reason = reason
        super().__init__(f"Handler for role '{role}' failed during {phase}: {reason}")


class LookupError(NimbusError):  # noqa: A001
    """Raised when a single-instance query matched zero or several instances."""

    kind = ErrorKind.LOOKUP

    def __init__(self, description: str, matched: int) -> None:
        self.description = description
        self.matched = matched
        what = "no instance" if matched == 0 else f"{matched} instances"
        super().__init__(f"Expected exactly one instance matching {description}, found {what}")


class InterruptedError(NimbusError, asyncio.CancelledError):  # noqa: A001
    """Raised when a blocking phase was cancelled by the caller.

    Also a CancelledError, so the event loop still treats the task as cancelled.
    """

    kind = ErrorKind.INTERRUPTED

    def __init__(self, phase: str) -> None:
        self.phase = phase
        super().__init__(f"Interrupted during {phase}")


class ConfigurationError(NimbusError):
    """Raised for invalid configuration or missing required settings."""

    kind = ErrorKind.CONFIGURATION


class OrchestrationError(NimbusError):
    """Raised by the controller when a phase fails.

    Wraps the original failure with the phase and cluster it happened in.
    ``kind`` reflects the wrapped failure.
    """

    def __init__(self, phase: str, cluster_name: str, cause: BaseException) -> None:
        self.phase = phase
        self.cluster_name = cluster_name
        self.cause = cause
        self.kind = cause.kind if isinstance(cause, NimbusError) else ErrorKind.ORCHESTRATION
        super().__init__(f"{phase} failed for cluster '{cluster_name}': {cause}")
