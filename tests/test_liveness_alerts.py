"""Tests de detección offline y del correlador de alertas.

Tests obligatorios:
1. Alumno sin datos > 30 s pasa a offline / INACTIVE
2. Alerta fuerza WARNING y al expirar se recalcula desde la última lectura
"""

from unittest.mock import MagicMock

import pytest

from conftest import make_alert, make_sample
from vitals_monitor.vitals import (
    AlertConfig,
    AlertCorrelator,
    LivenessConfig,
    LivenessMonitor,
    LivenessState,
    ReducerConfig,
    VitalsStatus,
    VitalsStreamReducer,
    format_time_since,
)


@pytest.fixture
def liveness(store, scheduler) -> LivenessMonitor:
    return LivenessMonitor(store, scheduler, LivenessConfig(sweep_interval=5.0, offline_threshold=30.0))


@pytest.fixture
def correlator(store, scheduler) -> AlertCorrelator:
    return AlertCorrelator(store, scheduler, AlertConfig(alert_ttl=60.0, history_limit=200, expiry_interval=5.0))


@pytest.fixture
def reducer(store, scheduler, correlator) -> VitalsStreamReducer:
    return VitalsStreamReducer(
        store, scheduler, ReducerConfig(debounce=0.5), alert_lookup=correlator.is_alerted,
    )


def _commit(reducer, scheduler, *samples):
    for sample in samples:
        reducer.on_sample(sample)
    scheduler.advance(0.5)


# =============================================================================
# TEST 1: OFFLINE
# =============================================================================

class TestLiveness:

    def test_offline_after_threshold(self, liveness, store, reducer, scheduler):
        _commit(reducer, scheduler, make_sample("STU-001"))
        last = store.get("STU-001").last_update

        assert liveness.sweep(now=last + 30) == []
        assert store.get("STU-001").online is True

        assert liveness.sweep(now=last + 30.5) == ["STU-001"]
        state = store.get("STU-001")
        assert state.online is False
        assert state.status == VitalsStatus.INACTIVE
        assert state.liveness == LivenessState.OFFLINE
        # La última lectura se conserva
        assert state.latest.heart_rate == 85

    def test_never_seen_skipped(self, liveness, store, scheduler):
        assert liveness.sweep(now=scheduler.time() + 3600) == []

        state = store.get("STU-002")
        assert state.liveness == LivenessState.NEVER_SEEN
        assert state.time_since_update is None

    def test_periodic_sweep(self, liveness, store, reducer, scheduler):
        liveness.start()
        _commit(reducer, scheduler, make_sample("STU-001"))

        scheduler.advance(29)
        assert store.get("STU-001").online is True

        scheduler.advance(6)
        assert store.get("STU-001").online is False
        assert liveness.stats["offline_transitions"] == 1

    def test_new_sample_brings_entity_back(self, liveness, store, reducer, scheduler):
        _commit(reducer, scheduler, make_sample("STU-001"))
        liveness.sweep(now=scheduler.time() + 31)

        _commit(reducer, scheduler, make_sample("STU-001", heart_rate=110))

        state = store.get("STU-001")
        assert state.online is True
        assert state.status == VitalsStatus.GOOD

    def test_sweep_notifies_listeners(self, liveness, store, reducer, scheduler):
        _commit(reducer, scheduler, make_sample("STU-001"))
        listener = MagicMock()
        store.add_listener(listener)

        liveness.sweep(now=scheduler.time() + 45)

        change = listener.call_args[0][0]
        assert change.reason == "sweep"
        assert change.entity_ids == ("STU-001",)
        assert store.get("STU-001").time_since_update == "45s ago"

    def test_stop_cancels_timer(self, liveness, store, reducer, scheduler):
        liveness.start()
        _commit(reducer, scheduler, make_sample("STU-001"))
        liveness.stop()

        scheduler.advance(120)

        assert store.get("STU-001").online is True

    @pytest.mark.parametrize("elapsed,label", [
        (0.4, "just now"),
        (5, "5s ago"),
        (59.9, "59s ago"),
        (125, "2m ago"),
        (7300, "2h ago"),
    ])
    def test_time_since_labels(self, elapsed, label):
        assert format_time_since(elapsed) == label


# =============================================================================
# TEST 2: ALERTAS
# =============================================================================

class TestAlertOverlay:

    def test_alert_forces_warning(self, correlator, store, reducer, scheduler):
        _commit(reducer, scheduler, make_sample("STU-001"))
        listener = MagicMock()
        store.add_listener(listener)

        correlator.on_alert(make_alert("STU-001"))

        assert correlator.is_alerted("STU-001")
        assert store.get("STU-001").status == VitalsStatus.WARNING
        assert listener.call_args[0][0].reason == "alerts"

    def test_commit_keeps_warning_while_alerted(self, correlator, store, reducer, scheduler):
        correlator.on_alert(make_alert("STU-001"))
        _commit(reducer, scheduler, make_sample("STU-001", heart_rate=70))

        assert store.get("STU-001").status == VitalsStatus.WARNING

    def test_release_recomputes_from_last_reading(self, correlator, store, reducer, scheduler):
        _commit(reducer, scheduler, make_sample("STU-001", heart_rate=120))
        correlator.on_alert(make_alert("STU-001"))
        alerted_at = scheduler.time()

        assert correlator.expire(now=alerted_at + 59) == []
        assert correlator.expire(now=alerted_at + 60) == ["STU-001"]

        assert not correlator.is_alerted("STU-001")
        assert store.get("STU-001").status == VitalsStatus.GOOD

    def test_release_keeps_offline_inactive(self, correlator, liveness, store, reducer, scheduler):
        _commit(reducer, scheduler, make_sample("STU-001"))
        correlator.on_alert(make_alert("STU-001"))
        liveness.sweep(now=scheduler.time() + 31)

        correlator.expire(now=scheduler.time() + 61)

        assert store.get("STU-001").status == VitalsStatus.INACTIVE

    def test_scheduled_expiry(self, correlator, store, reducer, scheduler):
        correlator.start()
        _commit(reducer, scheduler, make_sample("STU-001"))
        correlator.on_alert(make_alert("STU-001"))

        scheduler.advance(66)

        assert store.get("STU-001").status == VitalsStatus.EXCELLENT
        correlator.stop()

    def test_explicit_feed(self, correlator, store, reducer, scheduler):
        _commit(reducer, scheduler, make_sample("STU-001"), make_sample("STU-002"))

        correlator.set_feed({"STU-001", "STU-002"})
        assert store.get("STU-002").status == VitalsStatus.WARNING

        correlator.set_feed(["STU-001"])
        assert store.get("STU-001").status == VitalsStatus.WARNING
        assert store.get("STU-002").status == VitalsStatus.EXCELLENT

    def test_alert_for_unknown_entity_applied_on_commit(self, correlator, store, reducer, scheduler):
        correlator.on_alert(make_alert("STU-777"))
        assert "STU-777" not in store

        _commit(reducer, scheduler, make_sample("STU-777"))

        assert store.get("STU-777").status == VitalsStatus.WARNING

    def test_invalid_and_foreign_alerts_ignored(self, correlator):
        assert correlator.on_alert({"studentId": "STU-001"}) is None
        assert correlator.on_alert(make_alert(classroomId="CLS-99")) is None

        assert correlator.alerted == frozenset()
        assert correlator.history == []


class TestAlertHistory:

    def test_newest_first_and_deduplicated(self, correlator):
        correlator.on_alert(make_alert("STU-001", timestamp="2026-10-19T08:00:01Z"))
        correlator.on_alert(make_alert("STU-002", timestamp="2026-10-19T08:00:02Z"))
        # Misma alerta por el topic global
        assert correlator.on_alert(make_alert("STU-002", timestamp="2026-10-19T08:00:02Z")) is None

        history = correlator.history
        assert [a.student_id for a in history] == ["STU-002", "STU-001"]

    def test_history_bounded(self, store, scheduler):
        correlator = AlertCorrelator(store, scheduler, AlertConfig(history_limit=3))
        for i in range(5):
            correlator.on_alert(make_alert("STU-001", timestamp=f"2026-10-19T08:00:0{i}Z"))

        timestamps = [a.timestamp for a in correlator.history]
        assert timestamps == [
            "2026-10-19T08:00:04Z",
            "2026-10-19T08:00:03Z",
            "2026-10-19T08:00:02Z",
        ]

    def test_clear_does_not_touch_feed(self, correlator, store, reducer, scheduler):
        _commit(reducer, scheduler, make_sample("STU-001"))
        event = correlator.on_alert(make_alert("STU-001"))

        assert correlator.clear_alert(event.alert_id) is True
        assert correlator.clear_alert(event.alert_id) is False
        correlator.clear_all()

        assert correlator.history == []
        assert correlator.is_alerted("STU-001")
        assert store.get("STU-001").status == VitalsStatus.WARNING

    def test_alert_listener(self, correlator):
        listener = MagicMock()
        correlator.add_listener(listener)

        event = correlator.on_alert(make_alert())

        listener.assert_called_once_with(event)

    def test_invalid_history_limit(self):
        with pytest.raises(ValueError):
            AlertConfig(history_limit=0)
