"""
AsyncEventEmitter - In-process async publish/subscribe.

Provides:
- on/once/off subscriptions returning idempotent cancellation handles
- Fan-out (concurrent) and serial dispatch
- Listener failure routing through the "error" event and ERROR_MONITOR
- wait/race/throw_on_error helpers with timeout or token cancellation

Usage:
    from async_emitter import AsyncEventEmitter

    emitter = AsyncEventEmitter()

    off = emitter.on("trade.executed", handle_trade)
    await emitter.emit("trade.executed", {"symbol": "SOL"})
    off()

    data = await emitter.wait("ready", 5.0)
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from async_emitter.cancellation import CancellationReason, CancellationToken, as_token
from async_emitter.config import EmitterConfig, get_config
from async_emitter.errors import AbortedError, InvalidArgumentError, as_exception

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Union[None, Awaitable[Any]]]
Cancellation = Union[None, float, CancellationToken]


class EventToken:
    """Symbolic event name. Only ever equal to itself."""

    __slots__ = ("description",)

    def __init__(self, description: str = ""):
        self.description = description

    def __repr__(self) -> str:
        return f"EventToken({self.description!r})"

    def __str__(self) -> str:
        return self.description or repr(self)


ERROR = "error"
ERROR_MONITOR = EventToken("error_monitor")

_OWNED_TIMER = object()


def _listener_name(listener: Any) -> str:
    return getattr(listener, "__qualname__", None) or repr(listener)


def _check_event_name(event_name: Any) -> None:
    if isinstance(event_name, bool) or not isinstance(event_name, (str, int, Enum, EventToken)):
        raise InvalidArgumentError(
            f"Invalid event name {event_name!r}: expected str, int, Enum or EventToken",
            {"event_name": repr(event_name)},
        )


def _is_error_event(event_name: Any) -> bool:
    return isinstance(event_name, str) and event_name == ERROR


def _is_error_channel(event_name: Any) -> bool:
    return event_name is ERROR_MONITOR or _is_error_event(event_name)


class Subscription:
    """
    An active (event name, listener) registration.

    Calling the subscription removes it from its emitter. Calling it again
    does nothing.
    """

    def __init__(self, emitter: "AsyncEventEmitter", event_name: Any, listener: Listener, once: bool = False):
        self._emitter = emitter
        self.event_name = event_name
        self.listener = listener
        self.once = once
        self.active = True
        self._claimed = False
        # token (or _OWNED_TIMER) -> release callback
        self._finalizers: Dict[Any, Callable[[], None]] = {}

        # "on" registrations collapse by listener; each "once" stands alone
        if once:
            self.key: Any = self
        else:
            try:
                hash(listener)
                self.key = listener
            except TypeError:
                self.key = self

    def __call__(self) -> None:
        self._emitter._detach(self)

    cancel = __call__

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self()

    def _watch(self, token: CancellationToken, owned: bool) -> None:
        """
        Unsubscribe when the token triggers.

        A token is only watched once. A timer created for this subscription
        replaces the previous one, so re-registering with a timeout restarts it.
        """
        key = _OWNED_TIMER if owned else token
        if key in self._finalizers:
            if not owned:
                return
            self._finalizers.pop(key)()

        release = token.add_callback(lambda reason: self())
        self._finalizers[key] = token.close if owned else release

    def _finalize(self) -> None:
        finalizers, self._finalizers = self._finalizers, {}
        for finalizer in finalizers.values():
            finalizer()

    def __repr__(self) -> str:
        kind = "once" if self.once else "on"
        state = "active" if self.active else "inactive"
        return f"<Subscription {kind} {self.event_name!r} -> {_listener_name(self.listener)} ({state})>"


class SubscriptionGroup:
    """Several subscriptions cancelled together."""

    def __init__(self, subscriptions: Iterable[Subscription] = ()):
        self._subscriptions = list(subscriptions)

    def __call__(self) -> None:
        for subscription in self._subscriptions:
            subscription()

    cancel = __call__

    @property
    def active(self) -> bool:
        return any(s.active for s in self._subscriptions)

    def __iter__(self) -> Iterator[Subscription]:
        return iter(self._subscriptions)

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __enter__(self) -> "SubscriptionGroup":
        return self

    def __exit__(self, *exc_info) -> None:
        self()


class AsyncEventEmitter:
    """
    Async event emitter.

    Features:
    - Any str/int/Enum/EventToken as event name, no declaration needed
    - Listeners may be plain functions, coroutine functions or return awaitables
    - Dispatch runs over a snapshot; listeners added mid-dispatch wait for the next emit
    - Listener failures go to ERROR_MONITOR, then to "error" if it has listeners,
      otherwise they fail the emit() call
    """

    def __init__(
        self,
        listeners: Optional[Mapping[Any, Any]] = None,
        *,
        settings: Optional[EmitterConfig] = None,
    ):
        """
        Initialize emitter.

        Args:
            listeners: Optional mapping of event name to listener(s), subscribed immediately
            settings: Emitter settings (defaults to the global config)
        """
        self.settings = settings or get_config()

        # event name -> {listener or once-subscription: Subscription}, insertion ordered
        self._registry: Dict[Any, Dict[Any, Subscription]] = {}
        # "once" subscriptions taken by an emit whose task has not run yet
        self._pending_once: Dict[Subscription, None] = {}

        self._stats = {
            "events_emitted": 0,
            "listener_calls": 0,
            "listener_failures": 0,
            "errors_routed": 0,
            "errors_unhandled": 0,
            "waits_aborted": 0,
        }

        if listeners is not None:
            self.on_config(listeners)

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def on(
        self,
        event_name: Any,
        listener: Optional[Listener] = None,
        cancellation: Cancellation = None,
    ) -> Union[Subscription, SubscriptionGroup]:
        """
        Subscribe to an event.

        Also accepts a mapping of event name to listener(s) (see on_config);
        pass the cancellation by keyword in that case.

        Returns:
            A Subscription; call it to unsubscribe

        Raises:
            InvalidArgumentError: On a malformed event name, listener or
                cancellation, or an already cancelled token
        """
        if isinstance(event_name, Mapping):
            if listener is not None:
                raise InvalidArgumentError("on(mapping) takes no listener; pass cancellation by keyword")
            return self.on_config(event_name, cancellation)
        return self._subscribe(event_name, listener, cancellation, once=False)

    def once(self, event_name: Any, listener: Listener, cancellation: Cancellation = None) -> Subscription:
        """
        Subscribe to an event only once.

        The first emit to reach the subscription removes it from the
        registry straight away, so concurrent emits invoke it at most once
        and no longer count it as a listener.
        """
        return self._subscribe(event_name, listener, cancellation, once=True)

    def on_config(self, config: Optional[Mapping[Any, Any]], cancellation: Cancellation = None) -> SubscriptionGroup:
        """
        Subscribe to a bunch of events.

        Values may be a listener, a list/tuple of listeners or None; None
        entries are skipped. Returns one group that unsubscribes them all.
        A numeric timeout gives each subscription its own timer.
        """
        subscriptions: List[Subscription] = []
        if config is None:
            return SubscriptionGroup(subscriptions)
        if not isinstance(config, Mapping):
            raise InvalidArgumentError(f"Expected a mapping of event listeners, got {type(config).__name__}")

        try:
            for event_name, event_config in config.items():
                if event_config is None:
                    continue
                listeners = event_config if isinstance(event_config, (list, tuple)) else [event_config]
                for listener in listeners:
                    if listener is not None:
                        subscriptions.append(self._subscribe(event_name, listener, cancellation, once=False))
        except InvalidArgumentError:
            for subscription in subscriptions:
                subscription()
            raise

        return SubscriptionGroup(subscriptions)

    def _subscribe(self, event_name: Any, listener: Listener, cancellation: Cancellation, once: bool) -> Subscription:
        _check_event_name(event_name)
        if not callable(listener):
            raise InvalidArgumentError(
                f"Listener for {event_name!r} must be callable, got {type(listener).__name__}",
                {"event_name": repr(event_name)},
            )

        owned = not isinstance(cancellation, CancellationToken)
        token = as_token(cancellation)
        if token is not None and token.cancelled:
            raise InvalidArgumentError(
                f"Cannot subscribe to {event_name!r} with an already cancelled token",
                {"event_name": repr(event_name), "reason": token.reason.value},
            )

        subscription = Subscription(self, event_name, listener, once)
        bucket = self._registry.setdefault(event_name, {})
        existing = bucket.get(subscription.key)
        if existing is not None:
            logger.debug(f"Listener {_listener_name(listener)} already subscribed to {event_name!r}")
            subscription = existing
        else:
            bucket[subscription.key] = subscription
            logger.debug(f"Subscribed {_listener_name(listener)} to {event_name!r} (once={once})")
            self._check_listener_count(event_name, len(bucket))

        if token is not None:
            subscription._watch(token, owned)

        return subscription

    def _check_listener_count(self, event_name: Any, count: int) -> None:
        limit = self.settings.max_listeners
        if limit and count > limit:
            logger.warning(
                f"Possible listener leak: {count} listeners for {event_name!r} (max_listeners={limit})"
            )

    def off(self, event_name: Any = None, listener: Optional[Listener] = None) -> None:
        """
        Unsubscribe either:
        - one listener for a given event
        - all listeners for a given event
        - one listener from every event (listener only)
        - all listeners
        """
        if event_name is not None:
            buckets = [self._registry.get(event_name, {})]
        else:
            buckets = list(self._registry.values())

        candidates = [s for bucket in buckets for s in bucket.values()]
        candidates.extend(s for s in self._pending_once if event_name is None or s.event_name == event_name)

        for subscription in candidates:
            if listener is None or subscription.listener == listener:
                self._detach(subscription)

    def _detach(self, subscription: Subscription) -> None:
        if not subscription.active:
            return
        subscription.active = False
        self._pending_once.pop(subscription, None)

        bucket = self._registry.get(subscription.event_name)
        if bucket is not None and bucket.get(subscription.key) is subscription:
            del bucket[subscription.key]
            if not bucket:
                del self._registry[subscription.event_name]

        subscription._finalize()

    # -------------------------------------------------------------------------
    # Registry queries
    # -------------------------------------------------------------------------

    def event_names(self) -> List[Any]:
        """Event names with at least one active listener."""
        return list(self._registry.keys())

    def listener_count(self, event_name: Any) -> int:
        return len(self._registry.get(event_name, ()))

    def has_listeners(self, event_name: Any) -> bool:
        return event_name in self._registry

    def listeners(self, event_name: Any) -> List[Listener]:
        """Listeners for an event, in registration order."""
        return [s.listener for s in self._snapshot(event_name)]

    def _snapshot(self, event_name: Any) -> List[Subscription]:
        bucket = self._registry.get(event_name)
        return list(bucket.values()) if bucket else []

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def emit(self, event_name: Any, event_data: Any = None) -> None:
        """
        Trigger an event with some data.

        Listeners are started in the order they were added and run
        concurrently. Returns once every listener is done. If any listener
        fails, the first failure in registration order is raised after all
        of them have settled; other listeners are not affected.

        Emitting "error" with nobody listening raises the data itself.
        """
        self._stats["events_emitted"] += 1
        subscriptions = self._claim_snapshot(event_name)
        if not subscriptions:
            if _is_error_event(event_name):
                raise as_exception(event_data, unobserved=True)
            return

        await self._fan_out(event_name, subscriptions, event_data)

    async def emit_serial(self, event_name: Any, event_data: Any = None) -> None:
        """
        Same as emit(), but waits for each listener before starting the next.

        The first failure is raised immediately and the remaining listeners
        are not called. A "once" listener is claimed when its turn comes.
        """
        self._stats["events_emitted"] += 1
        subscriptions = self._snapshot(event_name)
        if not subscriptions and _is_error_event(event_name):
            raise as_exception(event_data, unobserved=True)

        delivered = False
        for subscription in subscriptions:
            if not (self._claim(subscription) if subscription.once else subscription.active):
                continue
            delivered = True
            await self._dispatch(subscription, event_data)

        # Every listener was removed or taken by a concurrent emit
        if not delivered and _is_error_event(event_name):
            raise as_exception(event_data, unobserved=True)

    def _claim_snapshot(self, event_name: Any) -> List[Subscription]:
        return [s for s in self._snapshot(event_name) if not s.once or self._claim(s)]

    def _claim(self, subscription: Subscription) -> bool:
        """
        Take a "once" subscription out of the registry for one dispatch.

        A claimed subscription stays active until it runs, so cancelling it
        in the meantime still prevents the call.
        """
        if not subscription.active or subscription._claimed:
            return False
        subscription._claimed = True
        self._pending_once[subscription] = None

        bucket = self._registry.get(subscription.event_name)
        if bucket is not None and bucket.get(subscription.key) is subscription:
            del bucket[subscription.key]
            if not bucket:
                del self._registry[subscription.event_name]
        return True

    async def _fan_out(self, event_name: Any, subscriptions: List[Subscription], event_data: Any) -> None:
        tasks = [
            asyncio.create_task(self._dispatch(subscription, event_data))
            for subscription in subscriptions
        ]
        try:
            results = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            # Claimed subscriptions whose task never started
            for subscription in subscriptions:
                if subscription.once:
                    self._detach(subscription)

        failures = [r for r in results if isinstance(r, BaseException)]
        if not failures:
            return
        for extra in failures[1:]:
            logger.warning(f"Additional listener failure on {event_name!r}: {extra!r}")
        raise failures[0]

    async def _dispatch(self, subscription: Subscription, event_data: Any) -> None:
        if _is_error_channel(subscription.event_name):
            await self._invoke(subscription, event_data)
            return

        try:
            await self._invoke(subscription, event_data)
        except Exception as error:
            if not await self._route_failure(subscription, error):
                raise

    async def _invoke(self, subscription: Subscription, event_data: Any) -> None:
        # Removed after the snapshot was taken
        if not subscription.active:
            return
        if subscription.once:
            self._detach(subscription)

        self._stats["listener_calls"] += 1
        result = subscription.listener(event_data)
        if inspect.isawaitable(result):
            await result

    async def _route_failure(self, subscription: Subscription, error: Exception) -> bool:
        """Report a listener failure. Returns True if an "error" listener took it."""
        self._stats["listener_failures"] += 1
        await self._notify_monitor(error)

        if not self.has_listeners(ERROR):
            self._stats["errors_unhandled"] += 1
            return False

        self._stats["errors_routed"] += 1
        if self.settings.log_failures:
            logger.warning(
                f"Listener {_listener_name(subscription.listener)} failed on "
                f"{subscription.event_name!r}: {error!r}"
            )
        await self.emit(ERROR, error)
        return True

    async def _notify_monitor(self, error: Exception) -> None:
        subscriptions = self._claim_snapshot(ERROR_MONITOR)
        if not subscriptions:
            return
        try:
            await self._fan_out(ERROR_MONITOR, subscriptions, error)
        except Exception as e:
            logger.error(f"Error monitor listener failed: {e}", exc_info=True)

    # -------------------------------------------------------------------------
    # Waiting
    # -------------------------------------------------------------------------

    def wait(self, event_name: Any, cancellation: Cancellation = None) -> "asyncio.Future[Any]":
        """
        Wait for the next occurrence of an event and return its data.

        Subscribes immediately; must be called with a running event loop.

        Raises:
            AbortedError: If the timeout elapses or the token is cancelled first
                (raised right away if the token is already cancelled)
        """
        return self.race([event_name], cancellation)

    def race(self, event_names: Iterable[Any], cancellation: Cancellation = None) -> "asyncio.Future[Any]":
        """Wait for whichever of the events happens first and return its data."""
        if isinstance(event_names, (str, bytes, EventToken)) or not isinstance(event_names, Iterable):
            raise InvalidArgumentError(f"Expected a list of event names, got {event_names!r}")
        names = list(event_names)
        if not names:
            raise InvalidArgumentError("At least one event name is required")
        for name in names:
            _check_event_name(name)

        loop = asyncio.get_running_loop()

        if cancellation is None:
            cancellation = self.settings.default_timeout
        owned = not isinstance(cancellation, CancellationToken)
        token = as_token(cancellation)
        if token is not None and token.cancelled:
            self._stats["waits_aborted"] += 1
            raise AbortedError(names, token.reason, token.timeout)

        future = loop.create_future()
        subscriptions: List[Subscription] = []
        releases: List[Callable[[], None]] = []

        def cleanup() -> None:
            for subscription in subscriptions:
                subscription()
            for release in releases:
                release()
            if owned and token is not None:
                token.close()

        def settle(event_data: Any) -> None:
            if future.done():
                return
            cleanup()
            future.set_result(event_data)

        def abort(reason: CancellationReason) -> None:
            if future.done():
                return
            cleanup()
            self._stats["waits_aborted"] += 1
            logger.debug(f"Stopped waiting for {names!r} ({reason.value})")
            future.set_exception(AbortedError(names, reason, token.timeout))

        for name in names:
            subscriptions.append(self.once(name, settle))
        if token is not None:
            releases.append(token.add_callback(abort))

        # Caller cancelled the future
        future.add_done_callback(lambda _: cleanup())
        return future

    def throw_on_error(self, cancellation: Cancellation = None) -> "asyncio.Future[None]":
        """
        Wait for an "error" event and raise what was emitted.

        Resolves to None when the timeout elapses or the token is cancelled.
        Non-exception payloads are raised as ErrorEventPayload.
        """
        loop = asyncio.get_running_loop()
        outcome = loop.create_future()
        try:
            waiting = self.wait(ERROR, cancellation)
        except AbortedError:
            outcome.set_result(None)
            return outcome

        def relay(done: asyncio.Future) -> None:
            if outcome.done():
                return
            if done.cancelled():
                outcome.cancel()
                return
            error = done.exception()
            if isinstance(error, AbortedError):
                outcome.set_result(None)
            elif error is not None:
                outcome.set_exception(error)
            else:
                outcome.set_exception(as_exception(done.result()))

        waiting.add_done_callback(relay)
        outcome.add_done_callback(lambda _: waiting.cancel())
        return outcome

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Get emitter statistics."""
        return {
            **self._stats,
            "events": len(self._registry),
            "subscriptions": sum(len(bucket) for bucket in self._registry.values()),
        }

    def __repr__(self) -> str:
        return f"<AsyncEventEmitter events={len(self._registry)}>"


# Global emitter instance
_emitter: Optional[AsyncEventEmitter] = None


def get_emitter() -> AsyncEventEmitter:
    """Get the global emitter instance."""
    global _emitter
    if _emitter is None:
        _emitter = AsyncEventEmitter()
    return _emitter


def set_emitter(emitter: Optional[AsyncEventEmitter]) -> None:
    """Set the global emitter instance (for testing)."""
    global _emitter
    _emitter = emitter
