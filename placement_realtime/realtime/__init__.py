"""
Client-side subscriptions to the row-level change feed.

Components:
    - ChangeFeedSubscriptionManager: channel lifecycle, filtering, dispatch
    - narrow_event / ChangeEvent: typed events validated at the boundary
    - ChangeFeed: collaborator protocol; InMemoryChangeFeed implements it

Usage:
    >>> from placement_realtime.realtime import (
    ...     ChangeFeedSubscriptionManager, EqualityFilter, EventFilter,
    ... )
    >>> manager = ChangeFeedSubscriptionManager(feed)
    >>> teardown = manager.subscribe(
    ...     "students", EqualityFilter(column="id", value="s1"),
    ...     EventFilter.UPDATE, callback,
    ... )
    >>> teardown()
"""

from placement_realtime.realtime.errors import (
    ActivationFailure,
    DuplicateSubscription,
    MalformedEvent,
    RealtimeError,
)
from placement_realtime.realtime.events import (
    ChangeEvent,
    ChangeKind,
    DeleteEvent,
    EqualityFilter,
    EventFilter,
    InsertEvent,
    Row,
    UpdateEvent,
    changed_fields,
    narrow_event,
)
from placement_realtime.realtime.feed import ChangeFeed, FilterSpec
from placement_realtime.realtime.manager import (
    ChangeFeedSubscriptionManager,
    CompositeTeardown,
    SubscriptionRequest,
    Teardown,
)
from placement_realtime.realtime.memory import InMemoryChangeFeed

__all__ = [
    "ActivationFailure",
    "DuplicateSubscription",
    "MalformedEvent",
    "RealtimeError",
    "ChangeEvent",
    "ChangeKind",
    "DeleteEvent",
    "EqualityFilter",
    "EventFilter",
    "InsertEvent",
    "Row",
    "UpdateEvent",
    "changed_fields",
    "narrow_event",
    "ChangeFeed",
    "FilterSpec",
    "ChangeFeedSubscriptionManager",
    "CompositeTeardown",
    "SubscriptionRequest",
    "Teardown",
    "InMemoryChangeFeed",
]
