"""Hub de sesiones del relay.

Protocolo (envelope JSON, ver ``transport.envelope``):
1. Cliente -> {type: "SUBSCRIBE", destination: patrón}   (admite ``+``/``#``)
2. Cliente -> {type: "UNSUBSCRIBE", destination: patrón}
3. Cliente -> {type: "SEND", destination: "/app/vitals/send", body: muestra}
4. Relay   -> {type: "MESSAGE", destination: topic, body: payload}

Por cada muestra recibida:
- chequeo de FC; si supera el umbral, alerta a /topic/classroom/{id}/alerts
- re-emisión a /topic/classroom/{id}/vitals y a /topic/vitals

Cada sesión recibe un mensaje como mucho una vez por topic, aunque varios
de sus patrones coincidan.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from prometheus_client import Counter, Gauge

from ..connection import (
    GLOBAL_VITALS_TOPIC,
    VITALS_SEND_DESTINATION,
    classroom_alerts_topic,
    classroom_vitals_topic,
    is_system_topic,
    topic_matches,
)
from ..transport import FrameType, encode_message, parse_frame
from ..vitals import validate_vitals_sample
from .heart_rate import HeartRateMonitor

logger = logging.getLogger(__name__)

RELAY_FRAMES = Counter(
    'vitals_relay_frames_total',
    'Frames received by the relay',
    ['type']  # subscribe, unsubscribe, send, invalid
)
RELAY_MESSAGES = Counter(
    'vitals_relay_messages_total',
    'Messages delivered to relay sessions'
)
RELAY_SESSIONS = Gauge(
    'vitals_relay_sessions',
    'Open relay sessions'
)

SendText = Callable[[str], Awaitable[None]]


class RelaySession:
    def __init__(self, session_id: str, send_text: SendText):
        self.session_id = session_id
        self.subscriptions: Set[str] = set()
        self._send_text = send_text
        self._lock = asyncio.Lock()

    def wants(self, topic: str) -> bool:
        return any(topic_matches(pattern, topic) for pattern in self.subscriptions)

    async def send(self, raw: str) -> None:
        async with self._lock:
            await self._send_text(raw)


class RelayHub:
    def __init__(self, heart_rate_monitor: Optional[HeartRateMonitor] = None):
        self._sessions: Dict[str, RelaySession] = {}
        self._heart_rate = heart_rate_monitor
        self._samples_relayed = 0
        self._alerts_sent = 0

    def register(self, send_text: SendText, session_id: Optional[str] = None) -> RelaySession:
        session = RelaySession(session_id or str(uuid.uuid4()), send_text)
        self._sessions[session.session_id] = session
        RELAY_SESSIONS.set(len(self._sessions))
        logger.info("[RELAY] Session connected: %s", session.session_id)
        return session

    def unregister(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            RELAY_SESSIONS.set(len(self._sessions))
            logger.info("[RELAY] Session closed: %s", session_id)

    async def handle_frame(self, session_id: str, raw: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return

        frame = parse_frame(raw)
        if frame is None:
            RELAY_FRAMES.labels(type='invalid').inc()
            return

        if is_system_topic(frame.destination):
            RELAY_FRAMES.labels(type='invalid').inc()
            logger.warning("[RELAY] Session %s used reserved topic %s", session_id, frame.destination)
            return

        if frame.type == FrameType.SUBSCRIBE:
            RELAY_FRAMES.labels(type='subscribe').inc()
            session.subscriptions.add(frame.destination)
            logger.debug("[RELAY] %s subscribed to %s", session_id, frame.destination)
        elif frame.type == FrameType.UNSUBSCRIBE:
            RELAY_FRAMES.labels(type='unsubscribe').inc()
            session.subscriptions.discard(frame.destination)
        elif frame.type == FrameType.SEND:
            RELAY_FRAMES.labels(type='send').inc()
            await self._handle_send(frame.destination, frame.payload)
        else:
            RELAY_FRAMES.labels(type='invalid').inc()
            logger.warning("[RELAY] Unexpected %s frame from %s", frame.type.value, session_id)

    async def _handle_send(self, destination: str, payload: Any) -> None:
        if destination != VITALS_SEND_DESTINATION:
            logger.warning("[RELAY] No handler for destination %s", destination)
            return

        result = validate_vitals_sample(payload)
        if not result.valid:
            logger.warning("[RELAY] Dropping invalid vitals: %s", result.error)
            return
        sample = result.payload
        wire = sample.to_wire()

        if self._heart_rate is not None and sample.classroom_id:
            alert = self._heart_rate.check(sample)
            if alert is not None:
                self._alerts_sent += 1
                logger.warning("[RELAY] %s", alert.alert_message)
                await self.broadcast(classroom_alerts_topic(sample.classroom_id), alert.to_wire())

        if sample.classroom_id:
            await self.broadcast(classroom_vitals_topic(sample.classroom_id), wire)
        await self.broadcast(GLOBAL_VITALS_TOPIC, wire)
        self._samples_relayed += 1

    async def broadcast(self, topic: str, payload: Any) -> int:
        """Envía ``payload`` a cada sesión suscrita a ``topic``."""
        raw = encode_message(topic, payload)
        delivered = 0
        for session in list(self._sessions.values()):
            if not session.wants(topic):
                continue
            try:
                await session.send(raw)
                delivered += 1
            except Exception as e:
                logger.warning("[RELAY] Send to %s failed, dropping session: %s", session.session_id, e)
                self.unregister(session.session_id)
        RELAY_MESSAGES.inc(delivered)
        return delivered

    @property
    def sessions(self) -> List[RelaySession]:
        return list(self._sessions.values())

    @property
    def stats(self) -> dict:
        return {
            "sessions": len(self._sessions),
            "subscriptions": sum(len(s.subscriptions) for s in self._sessions.values()),
            "samples_relayed": self._samples_relayed,
            "alerts_sent": self._alerts_sent,
        }
