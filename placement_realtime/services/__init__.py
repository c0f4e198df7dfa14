"""Portal services built on the change-feed subscription manager."""

from placement_realtime.services.realtime_service import RealtimeService

__all__ = ["RealtimeService"]
