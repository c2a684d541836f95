"""
Exception hierarchy for octo.

Engine failures are translated into these types at the service boundary so
callers (CLI commands, TUI screens) never have to know about docker-py or
requests exceptions.

Exception Hierarchy:
    OctoError (base)
    ├── TransportError - connect, negotiate, cancelled, deadline
    │   ├── DaemonUnresponsiveError - ping did not answer in time
    │   ├── CancelledError - the operation's context was cancelled
    │   └── DeadlineExceededError - the operation's deadline passed
    ├── NotFoundError - target absent from the current listing
    ├── StateChangedError - observed state disallows the action
    ├── ProtectedResourceError - target is a system resource
    └── EngineRejectError - engine refused a valid request
"""

from typing import Optional


class OctoError(Exception):
    """Base exception for all octo errors."""

    def __init__(self, message: str, resource_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.resource_id = resource_id

    def __str__(self) -> str:
        if self.resource_id:
            return f"{self.message} ({self.resource_id})"
        return self.message


class TransportError(OctoError):
    """The engine could not be reached or the call was abandoned."""


class DaemonUnresponsiveError(TransportError):
    """The engine accepted the connection but did not answer a ping."""


class CancelledError(TransportError):
    """The operation's context was cancelled."""


class DeadlineExceededError(TransportError):
    """The operation ran past its deadline."""


class NotFoundError(OctoError):
    """Target id or name is absent from the current listing."""


class StateChangedError(OctoError):
    """The target's observed state disallows the requested action."""


class ProtectedResourceError(OctoError):
    """The target is an engine-owned resource that must not be removed."""


class EngineRejectError(OctoError):
    """The engine returned an error for a valid request."""

    def __init__(self, message: str, resource_id: Optional[str] = None,
                 status_code: Optional[int] = None):
        super().__init__(message, resource_id)
        self.status_code = status_code
