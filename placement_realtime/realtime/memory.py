"""
In-process change feed.

InMemoryChangeFeed implements the ChangeFeed contract without a network:
channels are plain objects, emit() matches each raw event against every
channel's filters and calls the handlers synchronously, in emission order.

Only active channels receive events. An event that matches a channel that
has not been activated yet is recorded on `channel.dropped` instead, which
mirrors the provider's activation window.

Example:
    >>> feed = InMemoryChangeFeed()
    >>> manager = ChangeFeedSubscriptionManager(feed)
    >>> teardown = manager.subscribe("students", None, EventFilter.ANY, print)
    >>> feed.emit_change("students", ChangeKind.INSERT, new={"id": "s1"})
    1
"""

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from placement_realtime.realtime.events import ChangeKind
from placement_realtime.realtime.feed import FilterSpec, RawEventHandler

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class InMemoryChannel:
    """A named channel and the filters attached to it."""

    name: str
    filters: list[tuple[FilterSpec, RawEventHandler]] = field(default_factory=list)
    active: bool = False
    released: bool = False
    release_count: int = 0
    dropped: list[Mapping[str, Any]] = field(default_factory=list)


def _event_kind(raw: Mapping[str, Any]) -> ChangeKind | None:
    value = raw.get("eventKind", raw.get("eventType"))
    try:
        return ChangeKind(str(value).upper())
    except ValueError:
        return None


def _spec_matches(spec: FilterSpec, raw: Mapping[str, Any]) -> bool:
    if raw.get("table") != spec.table:
        return False
    if (raw.get("schema") or "public") != spec.schema:
        return False

    kind = _event_kind(raw)
    if kind is None:
        # Unknown kinds only reach wildcard filters
        return spec.event.value == "*"
    if not spec.event.matches(kind):
        return False

    if spec.predicate is None:
        return True
    row = raw.get("newRow") or raw.get("new") or raw.get("oldRow") or raw.get("old")
    if not isinstance(row, Mapping):
        return False
    return spec.predicate.column in row and spec.predicate.matches(row)


class InMemoryChangeFeed:
    """
    Change feed held entirely in memory.

    Attributes:
        channels: Open (not yet released) channels by name
        opened: Every channel ever opened, in order
        fail_activation: Channel names whose activate() raises ConnectionError
        fail_release: Channel names whose release() raises ConnectionError
    """

    def __init__(self) -> None:
        self.channels: dict[str, InMemoryChannel] = {}
        self.opened: list[InMemoryChannel] = []
        self.fail_activation: set[str] = set()
        self.fail_release: set[str] = set()
        self._lock = threading.Lock()

    def open_channel(self, name: str) -> InMemoryChannel:
        channel = InMemoryChannel(name=name)
        with self._lock:
            self.channels[name] = channel
            self.opened.append(channel)
        logger.debug("Opened channel", extra={"channel": name})
        return channel

    def register_filter(
        self,
        channel: InMemoryChannel,
        spec: FilterSpec,
        handler: RawEventHandler,
    ) -> InMemoryChannel:
        if channel.released:
            raise RuntimeError(f"Channel {channel.name!r} is released")
        channel.filters.append((spec, handler))
        return channel

    def activate(self, channel: InMemoryChannel) -> InMemoryChannel:
        if channel.name in self.fail_activation:
            raise ConnectionError(f"Change feed unreachable for {channel.name!r}")
        if channel.released:
            raise RuntimeError(f"Channel {channel.name!r} is released")
        channel.active = True
        return channel

    def release(self, channel: InMemoryChannel) -> None:
        channel.release_count += 1
        if channel.name in self.fail_release:
            raise ConnectionError(f"Could not release {channel.name!r}")
        channel.active = False
        channel.released = True
        with self._lock:
            if self.channels.get(channel.name) is channel:
                del self.channels[channel.name]

    def emit(self, raw: Mapping[str, Any]) -> int:
        """
        Deliver a raw event to every matching active channel.

        Returns:
            Number of handler invocations
        """
        with self._lock:
            channels = list(self.channels.values())

        delivered = 0
        for channel in channels:
            for spec, handler in list(channel.filters):
                if not _spec_matches(spec, raw):
                    continue
                if not channel.active:
                    channel.dropped.append(raw)
                    continue
                handler(raw)
                delivered += 1
        return delivered

    def emit_change(
        self,
        table: str,
        kind: ChangeKind,
        new: Mapping[str, Any] | None = None,
        old: Mapping[str, Any] | None = None,
        schema: str = "public",
    ) -> int:
        """Build a provider-shaped raw event and emit it."""
        return self.emit({
            "eventType": kind.value,
            "schema": schema,
            "table": table,
            "new": dict(new or {}),
            "old": dict(old or {}),
            "commit_timestamp": datetime.now(UTC).isoformat(),
        })


__all__ = ["InMemoryChangeFeed", "InMemoryChannel"]
