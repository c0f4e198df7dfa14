"""
Unit tests for InMemoryChangeFeed.

Tests cover:
- Filter matching by table, schema, event kind and equality predicate
- Events before activation are dropped, not delivered
- Release bookkeeping and injected failures
"""

import pytest

from placement_realtime.realtime.events import ChangeKind, EqualityFilter, EventFilter
from placement_realtime.realtime.feed import ChangeFeed, FilterSpec
from placement_realtime.realtime.memory import InMemoryChangeFeed


def open_active(feed, name, spec, handler):
    channel = feed.open_channel(name)
    feed.register_filter(channel, spec, handler)
    feed.activate(channel)
    return channel


class TestFilterMatching:
    """Tests for which events reach a channel."""

    def test_satisfies_change_feed_protocol(self, feed):
        """Test the in-memory feed is a ChangeFeed."""
        assert isinstance(feed, ChangeFeed)

    def test_delivers_matching_table_and_kind(self, feed):
        """Test an event on the filtered table and kind is delivered."""
        received = []
        open_active(feed, "c", FilterSpec(EventFilter.INSERT, "public", "students"), received.append)

        assert feed.emit_change("students", ChangeKind.INSERT, new={"id": "s1"}) == 1
        assert feed.emit_change("students", ChangeKind.UPDATE, new={"id": "s1"}) == 0
        assert feed.emit_change("notifications", ChangeKind.INSERT, new={"id": "n1"}) == 0
        assert feed.emit_change("students", ChangeKind.INSERT, new={"id": "s1"}, schema="audit") == 0
        assert len(received) == 1
        assert received[0]["new"] == {"id": "s1"}

    def test_wildcard_receives_every_kind(self, feed):
        """Test an ANY filter receives inserts, updates and deletes."""
        received = []
        open_active(feed, "c", FilterSpec(EventFilter.ANY, "public", "students"), received.append)

        feed.emit_change("students", ChangeKind.INSERT, new={"id": "s1"})
        feed.emit_change("students", ChangeKind.UPDATE, new={"id": "s1"}, old={"id": "s1"})
        feed.emit_change("students", ChangeKind.DELETE, old={"id": "s1"})

        assert [raw["eventType"] for raw in received] == ["INSERT", "UPDATE", "DELETE"]

    def test_predicate_filters_rows(self, feed):
        """Test only rows whose column equals the value are delivered."""
        received = []
        spec = FilterSpec(
            EventFilter.ANY, "public", "students",
            EqualityFilter(column="college_id", value="c1"),
        )
        open_active(feed, "c", spec, received.append)

        feed.emit_change("students", ChangeKind.INSERT, new={"id": "s1", "college_id": "c1"})
        feed.emit_change("students", ChangeKind.INSERT, new={"id": "s2", "college_id": "c2"})
        feed.emit_change("students", ChangeKind.INSERT, new={"id": "s3"})
        feed.emit_change("students", ChangeKind.DELETE, old={"id": "s4", "college_id": "c1"})

        assert [raw.get("new", {}).get("id") or raw["old"]["id"] for raw in received] == ["s1", "s4"]

    def test_unknown_kind_reaches_wildcard_only(self, feed):
        """Test unrecognised event kinds only match wildcard filters."""
        wildcard, inserts = [], []
        open_active(feed, "any", FilterSpec(EventFilter.ANY, "public", "students"), wildcard.append)
        open_active(feed, "ins", FilterSpec(EventFilter.INSERT, "public", "students"), inserts.append)

        feed.emit({"eventType": "TRUNCATE", "schema": "public", "table": "students"})

        assert len(wildcard) == 1
        assert inserts == []


class TestActivation:
    """Tests for the activation window."""

    def test_events_before_activation_are_dropped(self, feed):
        """Test an open but inactive channel records instead of delivering."""
        received = []
        channel = feed.open_channel("c")
        feed.register_filter(channel, FilterSpec(EventFilter.ANY, "public", "students"), received.append)

        assert feed.emit_change("students", ChangeKind.INSERT, new={"id": "s1"}) == 0
        assert received == []
        assert len(channel.dropped) == 1

        feed.activate(channel)
        feed.emit_change("students", ChangeKind.INSERT, new={"id": "s2"})
        assert len(received) == 1

    def test_fail_activation_raises(self, feed):
        """Test injected activation failures raise ConnectionError."""
        feed.fail_activation.add("c")
        channel = feed.open_channel("c")

        with pytest.raises(ConnectionError):
            feed.activate(channel)
        assert channel.active is False


class TestRelease:
    """Tests for channel release."""

    def test_release_removes_channel(self, feed):
        """Test a released channel stops receiving and leaves the registry."""
        received = []
        channel = open_active(feed, "c", FilterSpec(EventFilter.ANY, "public", "students"), received.append)

        feed.release(channel)

        assert channel.released is True
        assert channel.release_count == 1
        assert "c" not in feed.channels
        assert feed.emit_change("students", ChangeKind.INSERT, new={"id": "s1"}) == 0

    def test_release_is_safe_to_repeat(self, feed):
        """Test releasing twice does not raise."""
        channel = feed.open_channel("c")

        feed.release(channel)
        feed.release(channel)

        assert channel.release_count == 2

    def test_fail_release_raises_and_keeps_channel(self, feed):
        """Test injected release failures raise and leave the channel registered."""
        feed.fail_release.add("c")
        channel = feed.open_channel("c")

        with pytest.raises(ConnectionError):
            feed.release(channel)
        assert channel.released is False
        assert "c" in feed.channels

    def test_register_on_released_channel_raises(self, feed):
        """Test filters cannot be added to a released channel."""
        channel = feed.open_channel("c")
        feed.release(channel)

        with pytest.raises(RuntimeError):
            feed.register_filter(channel, FilterSpec(EventFilter.ANY, "public", "students"), print)

    def test_reopened_name_survives_release_of_old_channel(self):
        """Test releasing a replaced channel leaves the new one registered."""
        feed = InMemoryChangeFeed()
        old = feed.open_channel("c")
        new = feed.open_channel("c")

        feed.release(old)

        assert feed.channels["c"] is new
        assert feed.opened == [old, new]
