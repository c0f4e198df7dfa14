"""
Subscription manager for the row-level change feed.

Maps logical subscriptions (table + event kind + optional equality filter)
onto change-feed channels, narrows raw provider events into typed
ChangeEvents and delivers them to subscriber callbacks.

Guarantees:
- One channel per logical name. Repeated or concurrent subscriptions to the
  same name share that channel; it is released with its last subscriber.
- Teardown handles are idempotent and never raise.
- subscribe* never raises for collaborator failures. A channel that fails to
  activate is logged, counted and left inert; its teardown still works.
- A failing callback is logged and does not stop delivery to the others.
- Events reach each callback in arrival order. Nothing is delivered before
  the channel finished activating, or after the subscriber's teardown.

Example:
    >>> manager = ChangeFeedSubscriptionManager(feed, schema="public")
    >>> teardown = manager.subscribe(
    ...     "students",
    ...     EqualityFilter(column="user_id", value=user_id),
    ...     EventFilter.ANY,
    ...     on_student_change,
    ...     row_model=StudentRow,
    ... )
    >>> ...
    >>> teardown()
"""

import asyncio
import inspect
import itertools
import logging
import threading
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from placement_realtime.observability import (
    callback_errors_total,
    channel_activation_failures_total,
    channel_release_failures_total,
    channels_active,
    events_delivered_total,
    events_received_total,
    events_suppressed_total,
    tracer,
)
from placement_realtime.realtime.errors import (
    ActivationFailure,
    DuplicateSubscription,
    MalformedEvent,
)
from placement_realtime.realtime.events import (
    ChangeEvent,
    ChangeKind,
    EqualityFilter,
    EventFilter,
    Row,
    changed_fields,
    narrow_event,
)
from placement_realtime.realtime.feed import ChangeFeed, FilterSpec

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], Any]


# =============================================================================
# Teardown Handles
# =============================================================================


class Teardown:
    """
    Zero-argument capability that ends one subscription.

    Calling it more than once is a no-op.
    """

    def __init__(self, release: Callable[[], None] | None, name: str) -> None:
        self.name = name
        self._release = release
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    def __call__(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            release, self._release = self._release, None
        if release is not None:
            release()

    def __repr__(self) -> str:
        return f"<Teardown {self.name!r} released={self._released}>"


class CompositeTeardown(Teardown):
    """
    Teardown for a group of subscriptions.

    Every member is torn down even when an earlier one fails.
    """

    def __init__(self, teardowns: Iterable[Callable[[], None]], name: str = "group") -> None:
        self.members = list(teardowns)
        super().__init__(self._release_all, name)

    def _release_all(self) -> None:
        for teardown in self.members:
            try:
                teardown()
            except Exception:
                logger.error(
                    "Teardown failed, continuing with remaining subscriptions",
                    extra={"group": self.name, "channel": getattr(teardown, "name", None)},
                    exc_info=True,
                )


# =============================================================================
# Subscription State
# =============================================================================


@dataclass
class SubscriptionRequest:
    """One logical subscription, as passed to subscribe_multi()."""

    table: str
    callback: ChangeCallback
    filter: EqualityFilter | None = None
    event: EventFilter = EventFilter.ANY
    compare_fields: tuple[str, ...] = ()
    row_model: type[Row] = Row
    channel_name: str | None = None


_subscriber_ids = itertools.count(1)


@dataclass(eq=False)
class _Subscriber:
    callback: ChangeCallback
    row_model: type[Row]
    compare_fields: tuple[str, ...] = ()
    active: bool = True
    id: int = field(default_factory=lambda: next(_subscriber_ids))


@dataclass(eq=False)
class _Channel:
    name: str
    spec: FilterSpec
    subscribers: list[_Subscriber] = field(default_factory=list)
    ref: Any = None
    activated: bool = False
    failed: bool = False


def _coerce_event(event: EventFilter | str) -> EventFilter:
    if isinstance(event, EventFilter):
        return event
    text = str(event).strip().upper()
    try:
        return EventFilter(text)
    except ValueError:
        # Member names are accepted too, so "any" means "*"
        if text in EventFilter.__members__:
            return EventFilter[text]
        raise


def _raw_kind_label(raw: Any) -> str:
    try:
        value = raw.get("eventKind", raw.get("eventType"))
        return ChangeKind(str(value).upper()).value
    except (AttributeError, ValueError):
        return "UNKNOWN"


# =============================================================================
# Manager
# =============================================================================


class ChangeFeedSubscriptionManager:
    """
    Owns the mapping from logical subscriptions to live change-feed channels.

    The change feed is injected, never looked up globally, so tests can pass
    InMemoryChangeFeed or a MagicMock.

    Dispatch runs on whatever thread or loop the change feed calls handlers
    from. Coroutine callbacks are scheduled on `loop` (or the running loop)
    instead of being awaited inline.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        *,
        schema: str = "public",
        channel_prefix: str = "",
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """
        Initialize the subscription manager.

        Args:
            feed: Change-feed collaborator
            schema: Database schema every filter is registered against
            channel_prefix: Prepended to every channel name
            loop: Event loop for coroutine callbacks (defaults to the loop
                running at dispatch time)
        """
        self._feed = feed
        self._schema = schema
        self._channel_prefix = channel_prefix
        self._loop = loop
        self._channels: dict[str, _Channel] = {}
        # Failed channels replaced by a retry, held until their subscribers detach
        self._retired: set[_Channel] = set()
        self._lock = threading.RLock()
        self._tasks: set[Any] = set()

    # -------------------------------------------------------------------------
    # Subscribe
    # -------------------------------------------------------------------------

    def channel_name_for(
        self,
        table: str,
        event: EventFilter | str,
        filter: EqualityFilter | None = None,
    ) -> str:
        """Derive the logical channel name for a table/event/filter combination."""
        name = f"{self._channel_prefix}{table}:{_coerce_event(event).value}"
        if filter is not None:
            name = f"{name}:{filter.as_filter_string()}"
        return name

    def subscribe(
        self,
        table: str,
        filter: EqualityFilter | None,
        event: EventFilter | str,
        callback: ChangeCallback,
        *,
        row_model: type[Row] = Row,
        compare_fields: Sequence[str] = (),
        channel_name: str | None = None,
    ) -> Teardown:
        """
        Subscribe a callback to row changes on one table.

        Args:
            table: Table to watch
            filter: Optional equality predicate restricting the rows
            event: Operation kind to receive (INSERT, UPDATE, DELETE or ANY)
            callback: Called with each matching ChangeEvent; must not block
            row_model: Row schema used to narrow events
            compare_fields: Suppress updates where all of these fields are
                unchanged
            channel_name: Explicit channel name instead of the derived one

        Returns:
            Teardown handle; call it once to stop delivery

        Raises:
            ValueError: Empty table name
            TypeError: Callback is not callable
        """
        if not table:
            raise ValueError("table must be a non-empty string")
        if not callable(callback):
            raise TypeError("callback must be callable")

        event = _coerce_event(event)
        spec = FilterSpec(event=event, schema=self._schema, table=table, predicate=filter)
        if channel_name:
            name = f"{self._channel_prefix}{channel_name}"
        else:
            name = self.channel_name_for(table, event, filter)
        subscriber = _Subscriber(
            callback=callback,
            row_model=row_model,
            compare_fields=tuple(compare_fields),
        )

        with self._lock:
            channel = self._channels.get(name)
            # Filters compare as the provider sees them: id=1 and id="1" are one filter
            if channel is not None and channel.spec.describe() != spec.describe():
                error = DuplicateSubscription(name, channel.spec.describe(), spec.describe())
                logger.error(
                    error.message,
                    extra={"channel": name, "table": table},
                )
                return Teardown(None, name)

            if channel is not None and not channel.failed:
                channel.subscribers.append(subscriber)
                logger.debug(
                    "Attached subscriber to existing channel",
                    extra={
                        "channel": name,
                        "subscriber_id": subscriber.id,
                        "subscriber_count": len(channel.subscribers),
                    },
                )
            else:
                if channel is not None:
                    # Retry after a failed activation; the inert channel is
                    # released by its own subscribers or by close()
                    self._retired.add(channel)
                channel = _Channel(name=name, spec=spec, subscribers=[subscriber])
                self._channels[name] = channel
                channels_active.inc()
                self._open(channel)

        return Teardown(partial(self._detach, channel, subscriber), name)

    def subscribe_with_change_filter(
        self,
        table: str,
        filter: EqualityFilter | None,
        compare_fields: Sequence[str] | str,
        callback: ChangeCallback,
        *,
        row_model: type[Row] = Row,
        channel_name: str | None = None,
    ) -> Teardown:
        """
        Subscribe to updates, delivering only those that change a field.

        The change feed still sends every update on the table/filter; the
        comparison of old and new values happens here. Updates without a
        previous-row image are delivered.

        Raises:
            ValueError: No compare fields given
        """
        if isinstance(compare_fields, str):
            compare_fields = (compare_fields,)
        if not compare_fields:
            raise ValueError("compare_fields must name at least one field")

        return self.subscribe(
            table,
            filter,
            EventFilter.UPDATE,
            callback,
            row_model=row_model,
            compare_fields=compare_fields,
            channel_name=channel_name,
        )

    def subscribe_multi(
        self,
        requests: Iterable[SubscriptionRequest],
        name: str = "group",
    ) -> CompositeTeardown:
        """
        Subscribe a group of requests under one teardown.

        Either every request is subscribed or none is: if one request is
        rejected, the ones already made are torn down before re-raising.
        """
        teardowns: list[Teardown] = []
        try:
            for request in requests:
                teardowns.append(self.subscribe(
                    request.table,
                    request.filter,
                    request.event,
                    request.callback,
                    row_model=request.row_model,
                    compare_fields=request.compare_fields,
                    channel_name=request.channel_name,
                ))
        except Exception:
            CompositeTeardown(teardowns, name)()
            raise
        return CompositeTeardown(teardowns, name)

    # -------------------------------------------------------------------------
    # Channel lifecycle
    # -------------------------------------------------------------------------

    def _open(self, channel: _Channel) -> None:
        """Open, filter and activate a channel. Called with the lock held."""
        table = channel.spec.table
        try:
            channel.ref = self._feed.open_channel(channel.name)
            self._feed.register_filter(channel.ref, channel.spec, partial(self._dispatch, channel))
            self._feed.activate(channel.ref)
        except Exception as e:
            failure = ActivationFailure(channel.name, e)
            channel.failed = True
            channel_activation_failures_total.labels(table=table).inc()
            logger.error(
                failure.message,
                extra={
                    "channel": channel.name,
                    "table": table,
                    "filter": channel.spec.describe(),
                    "error": str(e),
                },
                exc_info=True,
            )
            return

        channel.activated = True
        logger.info(
            "Channel active",
            extra={"channel": channel.name, "table": table, "filter": channel.spec.describe()},
        )

    def _detach(self, channel: _Channel, subscriber: _Subscriber) -> None:
        with self._lock:
            if not subscriber.active:
                return
            subscriber.active = False
            if subscriber in channel.subscribers:
                channel.subscribers.remove(subscriber)
            if channel.subscribers:
                return

            if self._channels.get(channel.name) is channel:
                del self._channels[channel.name]
                channels_active.dec()
            elif channel in self._retired:
                self._retired.discard(channel)
                channels_active.dec()
            ref, channel.ref = channel.ref, None
            channel.activated = False

        if ref is not None:
            try:
                self._feed.release(ref)
            except Exception as e:
                channel_release_failures_total.labels(table=channel.spec.table).inc()
                logger.error(
                    "Failed to release channel",
                    extra={"channel": channel.name, "error": str(e)},
                    exc_info=True,
                )
                return
        logger.info("Channel released", extra={"channel": channel.name})

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _dispatch(self, channel: _Channel, raw: Any) -> None:
        table = channel.spec.table
        events_received_total.labels(table=table, event=_raw_kind_label(raw)).inc()

        if not channel.activated:
            events_suppressed_total.labels(table=table, reason="inactive").inc()
            logger.debug("Dropped event for inactive channel", extra={"channel": channel.name})
            return

        with self._lock:
            subscribers = list(channel.subscribers)

        narrowed: dict[type[Row], ChangeEvent | None] = {}
        for subscriber in subscribers:
            if subscriber.row_model not in narrowed:
                narrowed[subscriber.row_model] = self._narrow(channel, raw, subscriber.row_model)
            event = narrowed[subscriber.row_model]
            if event is None:
                continue

            reason = self._suppression_reason(channel.spec, subscriber, event)
            if reason is not None:
                events_suppressed_total.labels(table=table, reason=reason).inc()
                continue
            self._invoke(channel, subscriber, event)

    def _narrow(self, channel: _Channel, raw: Any, row_model: type[Row]) -> ChangeEvent | None:
        try:
            return narrow_event(raw, row_model)
        except MalformedEvent as e:
            events_suppressed_total.labels(table=channel.spec.table, reason="malformed").inc()
            logger.warning(
                "Dropped malformed change event",
                extra={"channel": channel.name, "reason": e.reason},
            )
            return None

    def _suppression_reason(
        self,
        spec: FilterSpec,
        subscriber: _Subscriber,
        event: ChangeEvent,
    ) -> str | None:
        if not subscriber.active:
            return "inactive"
        if event.table != spec.table:
            return "table_mismatch"
        if not spec.event.matches(event.kind):
            return "event_mismatch"
        if spec.predicate is not None:
            row = event.new if event.new is not None else event.old
            if not spec.predicate.matches(row):
                return "predicate_mismatch"
        if (
            subscriber.compare_fields
            and event.kind is ChangeKind.UPDATE
            and not changed_fields(event, subscriber.compare_fields)
        ):
            return "unchanged"
        return None

    def _invoke(self, channel: _Channel, subscriber: _Subscriber, event: ChangeEvent) -> None:
        table = channel.spec.table
        with tracer.start_as_current_span("realtime.dispatch") as span:
            span.set_attribute("realtime.table", table)
            span.set_attribute("realtime.event", event.kind.value)
            span.set_attribute("realtime.channel", channel.name)
            try:
                result = subscriber.callback(event)
            except Exception as e:
                callback_errors_total.labels(table=table).inc()
                logger.error(
                    "Subscriber callback raised",
                    extra={
                        "channel": channel.name,
                        "subscriber_id": subscriber.id,
                        "event": event.kind.value,
                        "error": str(e),
                    },
                    exc_info=True,
                )
                return

        if inspect.isawaitable(result) and not self._hand_off(channel, subscriber, result):
            return
        events_delivered_total.labels(table=table, event=event.kind.value).inc()

    def _hand_off(self, channel: _Channel, subscriber: _Subscriber, awaitable: Awaitable) -> bool:
        """Schedule a coroutine callback without blocking dispatch. False if dropped."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        loop = self._loop or running

        if loop is None or loop.is_closed():
            logger.warning(
                "No event loop for coroutine callback, dropping it",
                extra={"channel": channel.name, "subscriber_id": subscriber.id},
            )
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return False

        coro = self._await_callback(channel, subscriber, awaitable)
        if loop is running:
            future: Any = loop.create_task(coro)
        else:
            future = asyncio.run_coroutine_threadsafe(coro, loop)
        self._tasks.add(future)
        future.add_done_callback(self._tasks.discard)
        return True

    async def _await_callback(
        self,
        channel: _Channel,
        subscriber: _Subscriber,
        awaitable: Awaitable,
    ) -> None:
        try:
            await awaitable
        except Exception as e:
            callback_errors_total.labels(table=channel.spec.table).inc()
            logger.error(
                "Subscriber coroutine raised",
                extra={"channel": channel.name, "subscriber_id": subscriber.id, "error": str(e)},
                exc_info=True,
            )

    # -------------------------------------------------------------------------
    # Introspection and shutdown
    # -------------------------------------------------------------------------

    @property
    def active_channels(self) -> list[str]:
        """Names of channels currently held, sorted."""
        with self._lock:
            return sorted(self._channels)

    def _held_channels(self) -> list[_Channel]:
        """Live channels plus failed ones still awaiting their subscribers' teardown."""
        return [*self._channels.values(), *self._retired]

    def get_health(self) -> dict[str, Any]:
        """
        Get health status of all channels.

        Returns:
            Dictionary with:
            - status: "idle" (no channels), "degraded" (some channel inert)
              or "healthy"
            - channel_count / subscriber_count
            - channels: per-channel details
        """
        with self._lock:
            channels = [
                {
                    "name": channel.name,
                    "table": channel.spec.table,
                    "event": channel.spec.event.value,
                    "filter": (
                        channel.spec.predicate.as_filter_string()
                        if channel.spec.predicate is not None
                        else None
                    ),
                    "subscribers": len(channel.subscribers),
                    "active": channel.activated,
                }
                for channel in sorted(self._held_channels(), key=lambda c: (c.name, c.activated))
            ]

        if not channels:
            status = "idle"
        elif all(channel["active"] for channel in channels):
            status = "healthy"
        else:
            status = "degraded"

        return {
            "status": status,
            "channel_count": len(channels),
            "subscriber_count": sum(channel["subscribers"] for channel in channels),
            "channels": channels,
        }

    def close(self) -> None:
        """Tear down every subscription. Safe to call more than once."""
        with self._lock:
            held = [
                (channel, subscriber)
                for channel in self._held_channels()
                for subscriber in list(channel.subscribers)
            ]

        for channel, subscriber in held:
            self._detach(channel, subscriber)

        if held:
            logger.info("Subscription manager closed", extra={"subscriptions": len(held)})


__all__ = [
    "ChangeFeedSubscriptionManager",
    "ChangeCallback",
    "CompositeTeardown",
    "SubscriptionRequest",
    "Teardown",
]
