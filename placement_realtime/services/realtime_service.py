"""
Live watches used by the placement portal.

RealtimeService names the watches the portal pages rely on (a student's own
verification status, a college's allocations, the admin dashboard's
verification feed, a user's notifications) and maps each onto a
ChangeFeedSubscriptionManager subscription with the right table, filter,
event kind and row schema.

Every method returns a teardown handle that the caller owns and must call
once when the page or worker stops watching.

Example:
    >>> service = RealtimeService(manager)
    >>> stop = service.subscribe_to_college_student_verifications(
    ...     college_id, on_status_change,
    ... )
    >>> ...
    >>> stop()
"""

from collections.abc import Callable, Sequence
from typing import Any

from placement_realtime.realtime.events import (
    ChangeEvent,
    EqualityFilter,
    EventFilter,
)
from placement_realtime.realtime.manager import (
    ChangeCallback,
    ChangeFeedSubscriptionManager,
    CompositeTeardown,
    SubscriptionRequest,
    Teardown,
)
from placement_realtime.realtime.rows import (
    ALLOCATION_HISTORY_TABLE,
    ALLOCATIONS_TABLE,
    NOTIFICATIONS_TABLE,
    STUDENTS_TABLE,
    AllocationHistoryRow,
    AllocationRow,
    NotificationRow,
    StudentRow,
)

VERIFICATION_FIELDS = ("verification_status",)


class RealtimeService:
    """Portal-level watches over the change feed."""

    def __init__(self, manager: ChangeFeedSubscriptionManager) -> None:
        self._manager = manager

    @property
    def manager(self) -> ChangeFeedSubscriptionManager:
        return self._manager

    def subscribe_to_student_verification(
        self,
        user_id: str,
        on_update: ChangeCallback,
    ) -> Teardown:
        """
        Watch every change to one student's record.

        Args:
            user_id: Auth user ID of the student
            on_update: Called with ChangeEvent[StudentRow]
        """
        return self._manager.subscribe(
            STUDENTS_TABLE,
            EqualityFilter(column="user_id", value=user_id),
            EventFilter.ANY,
            on_update,
            row_model=StudentRow,
            channel_name=f"student-verification-{user_id}",
        )

    def subscribe_to_allocations(
        self,
        college_id: str,
        on_update: ChangeCallback,
    ) -> Teardown:
        """Watch every change to a college's free-account allocations."""
        return self._manager.subscribe(
            ALLOCATIONS_TABLE,
            EqualityFilter(column="college_id", value=college_id),
            EventFilter.ANY,
            on_update,
            row_model=AllocationRow,
            channel_name=f"allocations-{college_id}",
        )

    def subscribe_to_allocation_history(
        self,
        allocation_id: str,
        on_update: ChangeCallback,
    ) -> Teardown:
        """Watch history entries appended for one allocation."""
        return self._manager.subscribe(
            ALLOCATION_HISTORY_TABLE,
            EqualityFilter(column="allocation_id", value=allocation_id),
            EventFilter.INSERT,
            on_update,
            row_model=AllocationHistoryRow,
            channel_name=f"allocation-history-{allocation_id}",
        )

    def subscribe_to_college_student_verifications(
        self,
        college_id: str,
        on_update: ChangeCallback,
        compare_fields: Sequence[str] = VERIFICATION_FIELDS,
    ) -> Teardown:
        """
        Watch a college's students for verification status changes.

        Every update to the college's students crosses the wire; only those
        that change one of compare_fields reach on_update.

        Args:
            college_id: College to watch
            on_update: Called with UpdateEvent[StudentRow]
            compare_fields: Student fields whose change is reported
        """
        return self._manager.subscribe_with_change_filter(
            STUDENTS_TABLE,
            EqualityFilter(column="college_id", value=college_id),
            compare_fields,
            on_update,
            row_model=StudentRow,
            channel_name=f"college-students-{college_id}",
        )

    def subscribe_to_college_allocations(
        self,
        college_id: str,
        on_allocation_update: ChangeCallback,
        on_history_update: ChangeCallback,
    ) -> CompositeTeardown:
        """
        Watch a college's allocations together with allocation history.

        The two watches share one teardown. History rows do not carry the
        college, so every allocation_history insert is delivered.
        """
        return self._manager.subscribe_multi(
            [
                SubscriptionRequest(
                    table=ALLOCATIONS_TABLE,
                    callback=on_allocation_update,
                    filter=EqualityFilter(column="college_id", value=college_id),
                    event=EventFilter.ANY,
                    row_model=AllocationRow,
                    channel_name=f"allocations-{college_id}",
                ),
                SubscriptionRequest(
                    table=ALLOCATION_HISTORY_TABLE,
                    callback=on_history_update,
                    event=EventFilter.INSERT,
                    row_model=AllocationHistoryRow,
                    channel_name=f"college-allocation-history-{college_id}",
                ),
            ],
            name=f"college-allocations-{college_id}",
        )

    def subscribe_to_notifications(
        self,
        user_id: str,
        on_notification: Callable[[NotificationRow], Any],
    ) -> Teardown:
        """
        Watch new notifications for a user.

        Unlike the other watches, on_notification receives the inserted
        NotificationRow rather than the event envelope.
        """
        def deliver(event: ChangeEvent) -> Any:
            return on_notification(event.new)

        return self._manager.subscribe(
            NOTIFICATIONS_TABLE,
            EqualityFilter(column="user_id", value=user_id),
            EventFilter.INSERT,
            deliver,
            row_model=NotificationRow,
            channel_name=f"notifications-{user_id}",
        )


__all__ = ["RealtimeService", "VERIFICATION_FIELDS"]
