"""
Row schemas for the tables the placement portal watches.

Every column is optional: update and delete events may carry only the
primary key in the previous-row image, depending on the table's replica
identity. Unknown columns are kept (see Row).
"""

from typing import Any, Literal

from placement_realtime.realtime.events import Row

STUDENTS_TABLE = "students"
ALLOCATIONS_TABLE = "free_account_allocations"
ALLOCATION_HISTORY_TABLE = "allocation_history"
NOTIFICATIONS_TABLE = "notifications"

VerificationStatus = Literal["pending", "verified", "rejected"]
StudentStatus = Literal["active", "inactive", "graduated"]
AllocationStatus = Literal["active", "depleted", "expired"]
NotificationType = Literal["verification_update", "allocation_change", "event_alert", "system_message"]
NotificationPriority = Literal["low", "medium", "high", "urgent"]


class StudentRow(Row):
    """Row of the students table."""

    id: str | None = None
    user_id: str | None = None
    college_id: str | None = None
    enrollment_number: str | None = None
    course: str | None = None
    branch: str | None = None
    year_of_study: int | None = None
    graduation_year: int | None = None
    cgpa: float | None = None
    student_status: StudentStatus | None = None
    verification_status: VerificationStatus | None = None
    skills: list[str] | None = None
    created_at: str | None = None
    updated_at: str | None = None


class AllocationRow(Row):
    """Row of the free_account_allocations table."""

    id: str | None = None
    college_id: str | None = None
    course: str | None = None
    batch_year: int | None = None
    total_quota: int | None = None
    allocated_count: int | None = None
    available_count: int | None = None
    allocation_status: AllocationStatus | None = None
    renewal_date: str | None = None
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    created_by: str | None = None


class AllocationHistoryRow(Row):
    """Row of the allocation_history table (append-only)."""

    id: str | None = None
    allocation_id: str | None = None
    action_type: str | None = None
    previous_allocated: int | None = None
    new_allocated: int | None = None
    student_id: str | None = None
    performed_by: str | None = None
    notes: str | None = None
    created_at: str | None = None


class NotificationRow(Row):
    """Row of the notifications table."""

    id: str | None = None
    user_id: str | None = None
    notification_type: NotificationType | None = None
    priority: NotificationPriority | None = None
    title: str | None = None
    message: str | None = None
    action_url: str | None = None
    is_read: bool | None = None
    is_archived: bool | None = None
    metadata: dict[str, Any] | None = None
    created_at: str | None = None
    read_at: str | None = None
    updated_at: str | None = None


__all__ = [
    "STUDENTS_TABLE",
    "ALLOCATIONS_TABLE",
    "ALLOCATION_HISTORY_TABLE",
    "NOTIFICATIONS_TABLE",
    "StudentRow",
    "AllocationRow",
    "AllocationHistoryRow",
    "NotificationRow",
]
