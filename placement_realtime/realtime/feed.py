"""
Collaborator contract for the managed change feed.

The change feed is the provider-side half of a subscription: it owns named
channels, matches row changes against the filters attached to a channel,
and pushes raw events to the registered handler once the channel is active.
The subscription manager only ever talks to this protocol, so tests and
local development can swap in InMemoryChangeFeed.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar, runtime_checkable

from placement_realtime.realtime.events import EqualityFilter, EventFilter

ChannelRefT = TypeVar("ChannelRefT")

RawEventHandler = Callable[[Mapping[str, Any]], None]


@dataclass(frozen=True)
class FilterSpec:
    """Filter attached to a channel before activation."""

    event: EventFilter
    schema: str
    table: str
    predicate: EqualityFilter | None = None

    def describe(self) -> str:
        parts = [f"{self.event.value} {self.schema}.{self.table}"]
        if self.predicate is not None:
            parts.append(self.predicate.as_filter_string())
        return " ".join(parts)


@runtime_checkable
class ChangeFeed(Protocol[ChannelRefT]):
    """
    Managed change-feed provider.

    Delivery before activate() is not guaranteed. release() must be safe to
    call on an already released channel.
    """

    def open_channel(self, name: str) -> ChannelRefT:
        ...

    def register_filter(
        self,
        channel: ChannelRefT,
        spec: FilterSpec,
        handler: RawEventHandler,
    ) -> ChannelRefT:
        ...

    def activate(self, channel: ChannelRefT) -> ChannelRefT:
        ...

    def release(self, channel: ChannelRefT) -> None:
        ...


__all__ = ["ChangeFeed", "FilterSpec", "RawEventHandler"]
