"""Tests del envelope JSON."""

import orjson

from vitals_monitor.transport import (
    FrameType,
    encode_send,
    encode_subscribe,
    parse_frame,
)


class TestParseFrame:

    def test_topic_with_string_body(self):
        frame = parse_frame('{"topic": "/topic/vitals", "body": "{\\"heartRate\\": 90}"}')

        assert frame.type == FrameType.MESSAGE
        assert frame.destination == "/topic/vitals"
        assert frame.payload == {"heartRate": 90}

    def test_destination_with_data(self):
        frame = parse_frame('{"destination": "/topic/alerts", "data": {"studentId": "S1"}}')

        assert frame.destination == "/topic/alerts"
        assert frame.payload == {"studentId": "S1"}

    def test_whole_object_is_payload_without_body(self):
        frame = parse_frame('{"topic": "/topic/vitals", "heartRate": 90}')

        assert frame.payload["heartRate"] == 90

    def test_invalid_inputs(self):
        assert parse_frame("not json") is None
        assert parse_frame("[1, 2]") is None
        assert parse_frame('{"body": "{}"}') is None
        assert parse_frame('{"type": "BOGUS", "topic": "/t"}') is None
        assert parse_frame('{"topic": "/t", "body": "{bad"}') is None

    def test_accepts_bytes(self):
        frame = parse_frame(b'{"topic": "/t", "data": 1}')

        assert frame.payload == 1


class TestEncode:

    def test_send_frame_round_trip(self):
        raw = encode_send("/app/vitals/send", {"studentId": "S1", "heartRate": 90})
        data = orjson.loads(raw)

        assert data["type"] == "SEND"
        assert data["headers"] == {"content-type": "application/json"}
        assert parse_frame(raw).payload == {"studentId": "S1", "heartRate": 90}

    def test_subscribe_has_no_body(self):
        data = orjson.loads(encode_subscribe("/topic/#"))

        assert data == {"type": "SUBSCRIBE", "destination": "/topic/#"}
