"""
Change-feed error taxonomy.

None of these reach subscriber code. The manager raises them internally,
logs them at the point of failure and degrades instead of propagating:

- ActivationFailure: channel never became active; subscription is inert
- MalformedEvent: raw event failed shape validation; event is dropped
- DuplicateSubscription: explicit channel name reused with another filter

Repeated teardown is not an error and has no exception.
"""

from collections.abc import Mapping
from typing import Any


class RealtimeError(Exception):
    """Base exception for change-feed subscription errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ActivationFailure(RealtimeError):
    """A channel could not be opened, filtered or activated.

    Attributes:
        channel_name: Logical channel name
        cause: The collaborator exception
    """

    def __init__(self, channel_name: str, cause: BaseException | None = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Channel {channel_name!r} failed to activate{detail}")
        self.channel_name = channel_name
        self.cause = cause


class MalformedEvent(RealtimeError):
    """A raw change event is missing fields required for its kind.

    Attributes:
        reason: Short description of the failed check
        raw: The raw event as received
    """

    def __init__(self, reason: str, raw: Mapping[str, Any] | None = None):
        super().__init__(f"Malformed change event: {reason}")
        self.reason = reason
        self.raw = raw


class DuplicateSubscription(RealtimeError):
    """An explicit channel name is already bound to a different filter."""

    def __init__(self, channel_name: str, existing: str, requested: str):
        super().__init__(
            f"Channel {channel_name!r} is bound to {existing}, cannot rebind to {requested}"
        )
        self.channel_name = channel_name
        self.existing = existing
        self.requested = requested


__all__ = [
    "RealtimeError",
    "ActivationFailure",
    "MalformedEvent",
    "DuplicateSubscription",
]
