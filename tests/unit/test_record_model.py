"""
Unit tests for the record model.

Tests cover:
- Link payload parsing
- Record helpers (JSON payloads, write-side copies)
- ResolvedRecord shape
"""

import uuid

import pytest

from cerberus.log import (
    EventData,
    LinkPointer,
    LogSerializationError,
    MalformedLinkError,
    Record,
    ResolvedRecord,
)


def make_record(type="OrderPlaced", data=b'{"id": 1}', is_json=True, position=0, stream="orders-1"):
    return Record(
        stream_id=stream,
        position=position,
        type=type,
        id=uuid.uuid4(),
        is_json=is_json,
        data=data,
    )


class TestLinkPointer:
    """Tests for LinkPointer.parse."""

    def test_parse(self):
        """Position and stream are split on the first @."""
        pointer = LinkPointer.parse(b"12@orders-1")

        assert pointer.position == 12
        assert pointer.stream_id == "orders-1"

    def test_stream_name_may_contain_at(self):
        """Only the first @ separates position from stream."""
        pointer = LinkPointer.parse(b"0@user@example.com")

        assert pointer.position == 0
        assert pointer.stream_id == "user@example.com"

    def test_round_trip_text(self):
        assert LinkPointer(position=3, stream_id="s").encode() == b"3@s"

    @pytest.mark.parametrize(
        "payload",
        [b"", b"orders-1", b"12@", b"x@orders-1", b"-1@orders-1", b"\xff\xfe"],
    )
    def test_malformed(self, payload):
        """Anything but <position>@<stream> is rejected."""
        with pytest.raises(MalformedLinkError):
            LinkPointer.parse(payload)

    def test_malformed_is_serialization_error(self):
        assert issubclass(MalformedLinkError, LogSerializationError)


class TestRecord:
    """Tests for Record helpers."""

    def test_link_flags(self):
        assert make_record(type="$>").is_link
        assert make_record(type="$@").is_stream_reference
        assert not make_record().is_link

    def test_link_pointer_on_non_link(self):
        """Asking a regular record for its pointer is an error."""
        with pytest.raises(MalformedLinkError):
            make_record().link_pointer()

    def test_data_json(self):
        assert make_record().data_json() == {"id": 1}

    def test_data_json_invalid(self):
        with pytest.raises(LogSerializationError):
            make_record(data=b"not json").data_json()

    def test_to_event_data_keeps_identity(self):
        """The write-side copy keeps type, id, payload and JSON-ness."""
        record = make_record(type="Binary", data=b"\x00\x01", is_json=False)

        event = record.to_event_data()

        assert event.type == "Binary"
        assert event.id == record.id
        assert event.data == b"\x00\x01"
        assert not event.is_json
        assert event.content_type == "application/octet-stream"

    def test_event_data_json(self):
        event = EventData.json("OrderPlaced", {"id": 1})

        assert event.is_json
        assert event.content_type == "application/json"
        assert event.data == b'{"id": 1}'


class TestResolvedRecord:
    """Tests for ResolvedRecord."""

    def test_needs_event_or_link(self):
        with pytest.raises(ValueError):
            ResolvedRecord(event=None, link=None)

    def test_original_prefers_link(self):
        link = make_record(type="$>", data=b"0@orders-1", stream="$et-OrderPlaced")
        target = make_record()

        resolved = ResolvedRecord(event=target, link=link)

        assert resolved.original is link
        assert not resolved.is_dangling

    def test_original_without_link(self):
        target = make_record()

        assert ResolvedRecord(event=target).original is target

    def test_dangling(self):
        link = make_record(type="$>", data=b"0@orders-1", stream="$et-OrderPlaced")

        resolved = ResolvedRecord(event=None, link=link)

        assert resolved.is_dangling
        assert resolved.original is link
