"""Tests del publicador periódico de vitales."""

import asyncio

import orjson
import pytest

from vitals_monitor.connection import VITALS_SEND_DESTINATION
from vitals_monitor.publisher import PublisherConfig, VitalsPublisher
from vitals_monitor.vitals import VitalsSample


def _sent_bodies(transport) -> list:
    return [
        orjson.loads(frame["body"])
        for frame in transport.frames()
        if frame["type"] == "SEND" and frame["destination"] == VITALS_SEND_DESTINATION
    ]


class TestPublishSample:

    def test_without_context_skipped(self, connected_manager, transports):
        publisher = VitalsPublisher(connected_manager, "STU-001")

        assert publisher.publish_sample({"heartRate": 90}) is False
        assert _sent_bodies(transports.last) == []
        assert publisher.stats["skipped"] == 1

    def test_context_merged(self, connected_manager, transports):
        publisher = VitalsPublisher(connected_manager, "STU-001")
        publisher.set_exercise_context("CLS-42", "TSK-7", is_pre_activity=True)

        assert publisher.publish_sample({
            "heartRate": 91,
            "oxygenSaturation": 97,
            "timestamp": "2026-10-19T08:00:00Z",
        }) is True

        body = _sent_bodies(transports.last)[0]
        assert body == {
            "studentId": "STU-001",
            "classroomId": "CLS-42",
            "taskId": "TSK-7",
            "heartRate": 91,
            "oxygenSaturation": 97,
            "timestamp": "2026-10-19T08:00:00Z",
            "isPreActivity": True,
            "isPostActivity": False,
        }
        assert publisher.last_sample.heart_rate == 91

    def test_timestamp_defaulted_and_model_accepted(self, connected_manager, transports):
        publisher = VitalsPublisher(connected_manager, "STU-001")
        publisher.set_exercise_context("CLS-42", "TSK-7")

        publisher.publish_sample(VitalsSample(studentId="ignored", heartRate=80))

        body = _sent_bodies(transports.last)[0]
        assert body["studentId"] == "STU-001"
        assert body["timestamp"]

    def test_invalid_reading_rejected(self, connected_manager, transports):
        publisher = VitalsPublisher(connected_manager, "STU-001")
        publisher.set_exercise_context("CLS-42", "TSK-7")

        assert publisher.publish_sample({"heartRate": -5}) is False
        assert publisher.publish_sample({}) is False
        assert _sent_bodies(transports.last) == []

    def test_buffered_while_disconnected(self, manager, transports, scheduler):
        publisher = VitalsPublisher(manager, "STU-001")
        publisher.set_exercise_context("CLS-42", "TSK-7")

        assert publisher.publish_sample({"heartRate": 88}) is False
        assert manager.buffer.size == 1

        manager.connect("tok")
        transports.last.simulate_open()
        scheduler.advance(0.2)

        assert [b["heartRate"] for b in _sent_bodies(transports.last)] == [88]
        assert manager.buffer.size == 0

    def test_clear_context(self, connected_manager):
        publisher = VitalsPublisher(connected_manager, "STU-001")
        publisher.set_exercise_context("CLS-42", "TSK-7")
        publisher.clear_exercise_context()

        assert publisher.context is None
        assert publisher.publish_sample({"heartRate": 88}) is False


class TestPublisherLoop:

    @pytest.mark.asyncio
    async def test_loop_publishes_until_stopped(self, connected_manager, transports):
        publisher = VitalsPublisher(connected_manager, "STU-001", PublisherConfig(interval=0.01))
        publisher.set_exercise_context("CLS-42", "TSK-7")
        readings = iter([{"heartRate": 80}, None, {"heartRate": 82}])

        def source():
            return next(readings, None)

        await publisher.start(source)
        assert publisher.running
        await asyncio.sleep(0.1)
        await publisher.stop()

        assert not publisher.running
        assert [b["heartRate"] for b in _sent_bodies(transports.last)] == [80, 82]

    @pytest.mark.asyncio
    async def test_async_source_and_errors(self, connected_manager, transports):
        publisher = VitalsPublisher(
            connected_manager, "STU-001", PublisherConfig(interval=0.01, error_backoff=0.01),
        )
        publisher.set_exercise_context("CLS-42", "TSK-7")
        calls = {"n": 0}

        async def source():
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("sensor unavailable")
            return {"heartRate": 95}

        await publisher.start(source)
        await asyncio.sleep(0.1)
        await publisher.stop()

        assert calls["n"] >= 2
        assert _sent_bodies(transports.last)[0]["heartRate"] == 95
