"""Tests de la política de reconexión y del buffer de salida."""

from unittest.mock import MagicMock

import pytest

from vitals_monitor.connection import (
    OutboundBuffer,
    OutboundBufferConfig,
    ReconnectConfig,
    ReconnectPolicy,
    ReconnectState,
)


# =============================================================================
# POLÍTICA DE RECONEXIÓN
# =============================================================================

class TestReconnectConfig:

    def test_delay_is_capped(self):
        cfg = ReconnectConfig(initial_delay=2.0, growth_factor=1.5, max_delay=30.0)

        assert cfg.calculate_delay(0) == 2.0
        assert cfg.calculate_delay(2) == pytest.approx(4.5)
        assert cfg.calculate_delay(20) == 30.0

    def test_jitter_added_after_cap(self):
        cfg = ReconnectConfig(max_delay=30.0, max_jitter=1.0)

        assert cfg.calculate_delay(20, jitter=0.5) == pytest.approx(30.5)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("VITALS_RECONNECT_MAX_ATTEMPTS", "9")
        monkeypatch.setenv("VITALS_RECONNECT_INITIAL_DELAY", "1.0")

        cfg = ReconnectConfig.from_env()

        assert cfg.max_attempts == 9
        assert cfg.initial_delay == 1.0
        assert cfg.growth_factor == 1.5


class TestReconnectPolicy:

    def test_schedule_and_fire(self, scheduler):
        policy = ReconnectPolicy(scheduler, ReconnectConfig(), jitter_source=lambda: 0.0)
        connect = MagicMock()

        assert policy.schedule_retry(connect) is True
        assert policy.state == ReconnectState.SCHEDULED

        scheduler.advance(2.0)

        connect.assert_called_once()
        assert policy.state == ReconnectState.CONNECTING

    def test_jitter_applied(self, scheduler):
        policy = ReconnectPolicy(scheduler, ReconnectConfig(max_jitter=1.0), jitter_source=lambda: 0.5)
        connect = MagicMock()

        policy.schedule_retry(connect)
        scheduler.advance(2.4)
        connect.assert_not_called()
        scheduler.advance(0.2)
        connect.assert_called_once()

    def test_cancel_prevents_fire(self, scheduler):
        policy = ReconnectPolicy(scheduler, jitter_source=lambda: 0.0)
        connect = MagicMock()

        policy.schedule_retry(connect)
        policy.cancel()
        scheduler.advance(60)

        connect.assert_not_called()
        assert policy.attempts == 1
        assert policy.state == ReconnectState.IDLE

    def test_exhaustion_is_terminal(self, scheduler):
        policy = ReconnectPolicy(scheduler, ReconnectConfig(max_attempts=2), jitter_source=lambda: 0.0)
        connect = MagicMock()

        assert policy.schedule_retry(connect)
        assert policy.schedule_retry(connect)
        assert policy.schedule_retry(connect) is False
        assert policy.exhausted
        assert not policy.pending

    def test_forced_resets_counters(self, scheduler):
        policy = ReconnectPolicy(scheduler, jitter_source=lambda: 0.0)
        connect = MagicMock()
        policy.schedule_retry(connect)
        policy.schedule_retry(connect)

        policy.schedule_forced(connect)

        assert policy.attempts == 0
        scheduler.advance(0.5)
        connect.assert_called_once()


# =============================================================================
# BUFFER DE SALIDA
# =============================================================================

class TestOutboundBuffer:

    def test_drop_oldest_when_full(self, scheduler):
        buffer = OutboundBuffer(scheduler, OutboundBufferConfig(max_size=2))

        buffer.enqueue("/a", 1)
        buffer.enqueue("/a", 2)
        assert buffer.enqueue("/a", 3) is True

        assert buffer.pending() == [("/a", 2), ("/a", 3)]
        assert buffer.get_stats()["dropped"] == 1

    def test_drop_newest_when_configured(self, scheduler):
        buffer = OutboundBuffer(scheduler, OutboundBufferConfig(max_size=2, drop_oldest=False))

        buffer.enqueue("/a", 1)
        buffer.enqueue("/a", 2)

        assert buffer.enqueue("/a", 3) is False
        assert buffer.pending() == [("/a", 1), ("/a", 2)]

    def test_flush_spacing(self, scheduler):
        buffer = OutboundBuffer(scheduler, OutboundBufferConfig(flush_interval=0.05))
        sent = []
        for i in range(3):
            buffer.enqueue("/a", i)

        buffer.start_flush(lambda topic, payload: sent.append(payload), lambda: True)
        assert sent == [0]

        scheduler.advance(0.05)
        assert sent == [0, 1]

        scheduler.advance(0.05)
        assert sent == [0, 1, 2]
        assert not buffer.flushing

    def test_failed_send_keeps_order(self, scheduler):
        buffer = OutboundBuffer(scheduler)
        buffer.enqueue("/a", 1)
        buffer.enqueue("/a", 2)

        send = MagicMock(side_effect=ConnectionError("gone"))
        buffer.start_flush(send, lambda: True)

        assert buffer.pending() == [("/a", 1), ("/a", 2)]
        assert not buffer.flushing
        assert buffer.get_stats()["requeued"] == 1

    def test_invalid_size_rejected(self, scheduler):
        with pytest.raises(ValueError):
            OutboundBuffer(scheduler, OutboundBufferConfig(max_size=0))

    def test_clear(self, scheduler):
        buffer = OutboundBuffer(scheduler)
        buffer.enqueue("/a", 1)

        assert buffer.clear() == 1
        assert buffer.is_empty
