"""
Async Event Emitter - In-process publish/subscribe for asyncio applications.

This package provides:
- AsyncEventEmitter: on/once/off, fan-out and serial emit, wait/race
- CancellationToken: explicit or timer-driven cancellation
- ERROR / ERROR_MONITOR: reserved channels for listener failures

Usage:
    from async_emitter import AsyncEventEmitter, ERROR_MONITOR

    emitter = AsyncEventEmitter({
        "ready": on_ready,
        ERROR_MONITOR: record_failure,
    })

    await emitter.emit("ready", {"at": 2000})
"""

from async_emitter.cancellation import CancellationReason, CancellationToken
from async_emitter.config import EmitterConfig, get_config, load_config, reset_config, set_config
from async_emitter.emitter import (
    ERROR,
    ERROR_MONITOR,
    AsyncEventEmitter,
    EventToken,
    Subscription,
    SubscriptionGroup,
    get_emitter,
    set_emitter,
)
from async_emitter.errors import (
    AbortedError,
    ConfigurationError,
    EmitterError,
    ErrorEventPayload,
    InvalidArgumentError,
    UnobservedError,
)

__version__ = "1.0.0"

__all__ = [
    "AsyncEventEmitter",
    "EventToken",
    "Subscription",
    "SubscriptionGroup",
    "ERROR",
    "ERROR_MONITOR",
    "get_emitter",
    "set_emitter",
    "CancellationToken",
    "CancellationReason",
    "EmitterConfig",
    "get_config",
    "load_config",
    "set_config",
    "reset_config",
    "EmitterError",
    "InvalidArgumentError",
    "AbortedError",
    "ConfigurationError",
    "ErrorEventPayload",
    "UnobservedError",
    "__version__",
]
