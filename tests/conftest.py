"""Fixtures compartidos: reloj manual y transporte falso."""

from typing import Any, Callable, List, Mapping, Optional

import orjson
import pytest

from vitals_monitor.connection import ConnectionManager, OutboundBufferConfig, ReconnectConfig
from vitals_monitor.transport import (
    ABNORMAL_CLOSURE,
    NORMAL_CLOSURE,
    Transport,
    TransportCallbacks,
    encode_message,
)
from vitals_monitor.vitals import VitalsStateStore


# =============================================================================
# RELOJ MANUAL
# =============================================================================

class ManualHandle:
    def __init__(self, when: float, seq: int, callback: Callable[[], None]):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler determinista: el tiempo sólo avanza con ``advance``."""

    def __init__(self, start: float = 1_000.0):
        self._now = start
        self._seq = 0
        self._handles: List[ManualHandle] = []

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        self._seq += 1
        handle = ManualHandle(self._now + max(0.0, delay), self._seq, callback)
        self._handles.append(handle)
        return handle

    def advance(self, seconds: float) -> None:
        target = self._now + seconds
        while True:
            due = [h for h in self._handles if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when, h.seq))
            self._handles.remove(handle)
            self._now = handle.when
            handle.callback()
        self._handles = [h for h in self._handles if not h.cancelled]
        self._now = target

    @property
    def pending(self) -> int:
        return sum(1 for h in self._handles if not h.cancelled)


# =============================================================================
# TRANSPORTE FALSO
# =============================================================================

class FakeTransport(Transport):
    """Transporte en memoria; el test decide cuándo abre o cierra."""

    def __init__(self, open_error: Optional[Exception] = None):
        self.open_error = open_error
        self.url: Optional[str] = None
        self.headers: dict = {}
        self.callbacks: Optional[TransportCallbacks] = None
        self.sent: List[str] = []
        self.close_calls: List[tuple] = []
        self.is_open = False
        self.close_synchronously = True

    def open(self, url: str, callbacks: TransportCallbacks, headers: Optional[Mapping[str, str]] = None) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.url = url
        self.callbacks = callbacks
        self.headers = dict(headers or {})

    def send(self, frame: str) -> None:
        if not self.is_open:
            raise ConnectionError("not open")
        self.sent.append(frame)

    def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        self.is_open = False
        if self.close_synchronously and self.callbacks is not None:
            self.callbacks.on_close(code, reason)

    # Helpers para simular el lado remoto

    def simulate_open(self) -> None:
        self.is_open = True
        self.callbacks.on_open()

    def simulate_message(self, topic: str, payload: Any) -> None:
        self.callbacks.on_frame(encode_message(topic, payload))

    def simulate_raw(self, raw: str) -> None:
        self.callbacks.on_frame(raw)

    def simulate_close(self, code: int = ABNORMAL_CLOSURE, reason: str = "connection lost") -> None:
        self.is_open = False
        self.callbacks.on_close(code, reason)

    def frames(self) -> List[dict]:
        return [orjson.loads(f) for f in self.sent]

    def frames_of(self, frame_type: str) -> List[str]:
        return [f["destination"] for f in self.frames() if f["type"] == frame_type]


class TransportPool:
    """Factory que guarda cada transporte creado."""

    def __init__(self):
        self.transports: List[FakeTransport] = []
        self.open_error: Optional[Exception] = None

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(open_error=self.open_error)
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def transports() -> TransportPool:
    return TransportPool()


@pytest.fixture
def reconnect_config() -> ReconnectConfig:
    return ReconnectConfig(
        initial_delay=2.0,
        growth_factor=1.5,
        max_delay=30.0,
        max_jitter=1.0,
        max_attempts=5,
        settle_delay=0.5,
    )


@pytest.fixture
def manager(scheduler, transports, reconnect_config) -> ConnectionManager:
    return ConnectionManager(
        "ws://relay.test/ws",
        transport_factory=transports,
        scheduler=scheduler,
        reconnect_config=reconnect_config,
        buffer_config=OutboundBufferConfig(max_size=10, flush_interval=0.05),
        jitter_source=lambda: 0.0,
    )


@pytest.fixture
def connected_manager(manager, transports) -> ConnectionManager:
    manager.connect("token-123")
    transports.last.simulate_open()
    return manager


@pytest.fixture
def store() -> VitalsStateStore:
    store = VitalsStateStore()
    store.reset("CLS-42", ["STU-001", "STU-002", "STU-003"])
    return store


def make_sample(student_id: str = "STU-001", heart_rate: Optional[float] = 85, **extra) -> dict:
    """Payload de vitales en formato del socket."""
    data = {
        "studentId": student_id,
        "classroomId": "CLS-42",
        "taskId": "TSK-7",
        "heartRate": heart_rate,
        "oxygenSaturation": 98,
        "timestamp": "2026-10-19T08:00:00Z",
        "isPreActivity": False,
        "isPostActivity": False,
    }
    data.update(extra)
    return data


def make_alert(student_id: str = "STU-001", timestamp: str = "2026-10-19T08:00:05Z", **extra) -> dict:
    data = {
        "studentId": student_id,
        "studentName": "Ana Pérez",
        "currentHeartRate": 182,
        "thresholdHeartRate": 174,
        "alertMessage": "ALERT: Student Ana Pérez's heart rate (182 bpm) exceeds safety threshold (174 bpm)",
        "timestamp": timestamp,
        "classroomId": "CLS-42",
    }
    data.update(extra)
    return data
