"""Custom exception hierarchy."""
from enum import Enum
from typing import Any, Dict, Iterable, Optional


class EmitterError(Exception):
    """Base exception for all emitter errors."""
    code: str = "EMIT_001"

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class InvalidArgumentError(EmitterError, TypeError):
    """Malformed event name, listener or cancellation passed by the caller."""
    code = "ARG_001"


class ConfigurationError(EmitterError):
    """Configuration error."""
    code = "CFG_001"


class AbortedError(EmitterError):
    """A wait or race was cancelled before the awaited event occurred."""
    code = "ABORT_001"

    def __init__(self, event_names: Iterable[Any], reason: Any = None, timeout: Optional[float] = None):
        self.event_names = list(event_names)
        self.reason = reason
        self.timeout = timeout

        joined = ", ".join(_describe(name) for name in self.event_names)
        if timeout is not None:
            message = f'Has waited for the "{joined}" event more than {timeout}s'
        else:
            message = f'Has stopped waiting for the "{joined}" event'

        super().__init__(
            message,
            {
                "event_names": [_describe(name) for name in self.event_names],
                "reason": getattr(reason, "value", reason),
                "timeout": timeout,
            },
        )


class ErrorEventPayload(EmitterError):
    """A non-exception value emitted on the "error" channel."""
    code = "EVT_001"

    def __init__(self, payload: Any, message: str = None):
        super().__init__(message or f"Error event emitted: {payload!r}", {"payload": repr(payload)})
        self.payload = payload


class UnobservedError(ErrorEventPayload):
    """An "error" event was emitted while nothing listened to it."""
    code = "EVT_002"

    def __init__(self, payload: Any):
        super().__init__(payload, f"Unhandled error event: {payload!r}")


def as_exception(payload: Any, unobserved: bool = False) -> BaseException:
    """Return ``payload`` if it can be raised, otherwise wrap it."""
    if isinstance(payload, BaseException):
        return payload
    if unobserved:
        return UnobservedError(payload)
    return ErrorEventPayload(payload)


def _describe(event_name: Any) -> str:
    if isinstance(event_name, Enum):
        return str(event_name.value)
    return str(event_name)
