"""
Engine Exceptions

Error taxonomy for the SLA engine. None of these are user-facing directly;
the API layer maps them to HTTP responses and the scheduler logs them per
instance without aborting the run.
"""

from typing import Optional


class SlaEngineError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(SlaEngineError):
    """Malformed policy or calendar configuration, rejected at save time."""


class NotFoundError(SlaEngineError):
    """A requested policy, instance or target has no record in the engine."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConcurrentTransitionConflict(SlaEngineError):
    """Lost a race on an instance mutation."""

    def __init__(self, instance_id: str, details: Optional[dict] = None):
        self.instance_id = instance_id
        super().__init__(
            f"Concurrent transition conflict on SLA instance '{instance_id}'",
            details
        )


class DownstreamDeliveryError(SlaEngineError):
    """An escalation action or broadcast could not be delivered."""

    def __init__(self, channel: str, message: str, details: Optional[dict] = None):
        self.channel = channel
        super().__init__(f"{channel}: {message}", details)
