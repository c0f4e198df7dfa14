"""
Typed change events and the narrowing step at the change-feed boundary.

The change feed delivers untyped mappings. Before anything reaches caller
code, narrow_event() validates the mapping against the table's row model and
returns one of three event variants:

    InsertEvent[RowT]  new row only
    UpdateEvent[RowT]  new row, previous row when the provider sent one
    DeleteEvent[RowT]  previous row only

Example:
    >>> event = narrow_event(
    ...     {"eventType": "UPDATE", "schema": "public", "table": "students",
    ...      "new": {"id": "s1", "verification_status": "verified"},
    ...      "old": {"id": "s1", "verification_status": "pending"}},
    ...     StudentRow,
    ... )
    >>> changed_fields(event, ["verification_status"])
    {'verification_status'}
"""

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any, Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from placement_realtime.realtime.errors import MalformedEvent

# Scalar values accepted in an equality predicate
FilterValue = Union[str, int, float, bool]


class ChangeKind(str, Enum):
    """Row operation carried by a change event."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class EventFilter(str, Enum):
    """Operation kinds a subscription asks the change feed for."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ANY = "*"

    def matches(self, kind: ChangeKind) -> bool:
        return self is EventFilter.ANY or self.value == kind.value


def _as_text(value: Any) -> str:
    # The provider compares filter parameters as text
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


class Row(BaseModel):
    """
    Base row model: a flat mapping of column name to value.

    Unknown columns are kept, so the base model doubles as the schema for
    tables without a dedicated model.
    """

    model_config = ConfigDict(extra="allow")

    def present_fields(self) -> set[str]:
        """Columns the provider actually sent for this row."""
        return set(self.model_fields_set) | set(self.model_extra or {})

    def get(self, column: str, default: Any = None) -> Any:
        if column not in self.present_fields():
            return default
        return getattr(self, column, default)

    def to_app_dict(self) -> dict[str, Any]:
        """Return the row as a camelCase application record."""
        return {
            to_camel(key): value
            for key, value in self.model_dump(exclude_unset=True).items()
        }


RowT = TypeVar("RowT", bound=Row)


class EqualityFilter(BaseModel):
    """Row predicate `column = value` evaluated by the change feed."""

    model_config = ConfigDict(frozen=True)

    column: str = Field(min_length=1)
    value: FilterValue

    def matches(self, row: Row | Mapping[str, Any] | None) -> bool:
        """
        Check a row against the predicate.

        Rows that do not carry the column match: providers often send only
        the primary key in a previous-row image.
        """
        if row is None:
            return True
        present = row.present_fields() if isinstance(row, Row) else set(row)
        if self.column not in present:
            return True
        return _as_text(row.get(self.column)) == _as_text(self.value)

    def as_filter_string(self) -> str:
        return f"{self.column}=eq.{_as_text(self.value)}"


class _ChangeEventBase(BaseModel, Generic[RowT]):
    model_config = ConfigDict(frozen=True)

    schema_name: str = "public"
    table: str = Field(min_length=1)
    commit_timestamp: str | None = None


class InsertEvent(_ChangeEventBase[RowT], Generic[RowT]):
    """A row was inserted. `old` is always absent."""

    kind: Literal[ChangeKind.INSERT] = ChangeKind.INSERT
    new: RowT
    old: None = None


class UpdateEvent(_ChangeEventBase[RowT], Generic[RowT]):
    """
    A row was updated.

    `old` is None only when the provider did not send a previous image.
    """

    kind: Literal[ChangeKind.UPDATE] = ChangeKind.UPDATE
    new: RowT
    old: RowT | None = None


class DeleteEvent(_ChangeEventBase[RowT], Generic[RowT]):
    """A row was deleted. `new` is always absent."""

    kind: Literal[ChangeKind.DELETE] = ChangeKind.DELETE
    new: None = None
    old: RowT


ChangeEvent = Union[InsertEvent[RowT], UpdateEvent[RowT], DeleteEvent[RowT]]

_EVENT_MODELS = {
    ChangeKind.INSERT: InsertEvent,
    ChangeKind.UPDATE: UpdateEvent,
    ChangeKind.DELETE: DeleteEvent,
}

# Accepted spellings for each raw field, first match wins
_KIND_KEYS = ("eventKind", "eventType")
_NEW_KEYS = ("newRow", "new")
_OLD_KEYS = ("oldRow", "old")


def _first(raw: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _row_payload(raw: Mapping[str, Any], keys: Iterable[str]) -> Mapping[str, Any] | None:
    value = _first(raw, keys)
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise MalformedEvent(f"row payload is {type(value).__name__}, not a mapping", raw)
    # Providers send {} for the side that does not exist
    return value or None


def narrow_event(raw: Mapping[str, Any], row_model: type[RowT] = Row) -> "ChangeEvent[RowT]":
    """
    Validate a raw change-feed event into a typed ChangeEvent.

    Args:
        raw: Event as delivered by the change feed
        row_model: Row schema for the event's table

    Returns:
        InsertEvent, UpdateEvent or DeleteEvent parameterised by row_model

    Raises:
        MalformedEvent: Unknown kind, missing table, missing required row
            image, or a row that fails row_model validation. An update
            without a previous row is accepted with old=None.
    """
    if not isinstance(raw, Mapping):
        raise MalformedEvent(f"event is {type(raw).__name__}, not a mapping")

    kind_value = _first(raw, _KIND_KEYS)
    try:
        kind = ChangeKind(str(kind_value).upper())
    except ValueError:
        raise MalformedEvent(f"unknown event kind {kind_value!r}", raw) from None

    table = raw.get("table")
    if not table:
        raise MalformedEvent("missing table", raw)

    new_row = _row_payload(raw, _NEW_KEYS)
    old_row = _row_payload(raw, _OLD_KEYS)
    if kind is ChangeKind.INSERT and new_row is None:
        raise MalformedEvent("insert without new row", raw)
    if kind is ChangeKind.UPDATE and new_row is None:
        raise MalformedEvent("update without new row", raw)
    if kind is ChangeKind.DELETE and old_row is None:
        raise MalformedEvent("delete without previous row", raw)

    payload: dict[str, Any] = {
        "schema_name": raw.get("schema") or "public",
        "table": table,
        "commit_timestamp": raw.get("commit_timestamp"),
    }
    if kind is not ChangeKind.DELETE:
        payload["new"] = new_row
    if kind is not ChangeKind.INSERT:
        payload["old"] = old_row

    event_model = _EVENT_MODELS[kind][row_model]
    try:
        return event_model.model_validate(payload)
    except ValidationError as exc:
        raise MalformedEvent(
            f"{kind.value} on {table} failed {row_model.__name__} validation "
            f"({exc.error_count()} error(s))",
            raw,
        ) from exc


def changed_fields(event: "ChangeEvent[Any]", fields: Iterable[str]) -> set[str]:
    """
    Return the subset of fields whose value differs between old and new.

    A missing previous row, or a field absent from it, counts as changed.
    Non-update events report every field as changed.
    """
    fields = set(fields)
    if event.kind is not ChangeKind.UPDATE or event.old is None:
        return fields

    old_fields = event.old.present_fields()
    return {
        field
        for field in fields
        if field not in old_fields or event.old.get(field) != event.new.get(field)
    }


__all__ = [
    "ChangeKind",
    "EventFilter",
    "EqualityFilter",
    "FilterValue",
    "Row",
    "RowT",
    "InsertEvent",
    "UpdateEvent",
    "DeleteEvent",
    "ChangeEvent",
    "narrow_event",
    "changed_fields",
]
