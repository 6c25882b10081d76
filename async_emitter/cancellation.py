"""
Cancellation tokens for subscriptions and waits.

A token is triggered at most once, either explicitly (``cancel()``) or by a
timer armed with ``CancellationToken.after(seconds)``. Callbacks registered
with ``add_callback`` run synchronously when the token triggers.

Usage:
    from async_emitter.cancellation import CancellationToken

    token = CancellationToken()
    emitter.on("tick", handle_tick, token)
    token.cancel()  # handle_tick is unsubscribed

    data = await emitter.wait("ready", CancellationToken.after(5.0))
"""

import asyncio
import itertools
import logging
from enum import Enum
from numbers import Real
from typing import Any, Callable, Dict, Optional

from async_emitter.errors import InvalidArgumentError

logger = logging.getLogger(__name__)


class CancellationReason(Enum):
    """Why a token was triggered."""
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"


class CancellationToken:
    """Explicit "abort now" signal, optionally driven by a timer."""

    def __init__(self):
        self._reason: Optional[CancellationReason] = None
        self._callbacks: Dict[int, Callable[[CancellationReason], Any]] = {}
        self._counter = itertools.count()
        self._timer: Optional[asyncio.TimerHandle] = None
        self.timeout: Optional[float] = None

    @classmethod
    def after(cls, timeout: float) -> "CancellationToken":
        """
        Create a token that triggers itself after ``timeout`` seconds.

        A non-positive timeout yields a token that is already triggered.
        Arming the timer requires a running event loop.
        """
        token = cls()
        token.timeout = timeout
        if timeout <= 0:
            token._trigger(CancellationReason.TIMEOUT)
            return token

        loop = asyncio.get_running_loop()
        token._timer = loop.call_later(timeout, token._trigger, CancellationReason.TIMEOUT)
        return token

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[CancellationReason]:
        return self._reason

    def cancel(self) -> None:
        """Trigger the token now. Has no effect if already triggered."""
        self._trigger(CancellationReason.CANCELLED)

    def add_callback(self, callback: Callable[[CancellationReason], Any]) -> Callable[[], None]:
        """
        Register ``callback`` to run when the token triggers.

        Returns a function that unregisters the callback. If the token has
        already triggered, the callback runs immediately.
        """
        if self._reason is not None:
            self._run_callback(callback, self._reason)
            return _noop

        key = next(self._counter)
        self._callbacks[key] = callback

        def remove() -> None:
            self._callbacks.pop(key, None)

        return remove

    def close(self) -> None:
        """Disarm the timer and drop pending callbacks without triggering."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._callbacks.clear()

    def _trigger(self, reason: CancellationReason) -> None:
        if self._reason is not None:
            return

        self._reason = reason
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        callbacks = list(self._callbacks.values())
        self._callbacks.clear()
        logger.debug(f"Cancellation token triggered ({reason.value}), {len(callbacks)} callbacks")

        for callback in callbacks:
            self._run_callback(callback, reason)

    @staticmethod
    def _run_callback(callback: Callable[[CancellationReason], Any], reason: CancellationReason) -> None:
        try:
            callback(reason)
        except Exception as e:
            logger.error(f"Cancellation callback {callback!r} failed: {e}", exc_info=True)

    def __repr__(self) -> str:
        state = self._reason.value if self._reason else "pending"
        return f"<CancellationToken {state} timeout={self.timeout}>"


def as_token(cancellation: Any) -> Optional[CancellationToken]:
    """
    Normalise a cancellation argument.

    Accepts None, a number of seconds or a ``CancellationToken``.
    """
    if cancellation is None or isinstance(cancellation, CancellationToken):
        return cancellation
    if isinstance(cancellation, Real) and not isinstance(cancellation, bool):
        return CancellationToken.after(float(cancellation))
    raise InvalidArgumentError(
        f"Expected a timeout in seconds or a CancellationToken, got {type(cancellation).__name__}",
        {"cancellation": repr(cancellation)},
    )


def _noop() -> None:
    pass
