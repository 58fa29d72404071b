"""Manager de conexión WebSocket.

Multiplexa suscripciones a topics sobre un único socket, bufferiza
publicaciones sin conexión y reconecta con backoff tras cierres inesperados.

Flujo:
  transporte (frame crudo)
  → parse_frame (envelope JSON)
  → SubscriptionRegistry (exacto + wildcard)
  → callbacks de consumidores (reducer, correlador de alertas...)

Una sola instancia por sesión, creada por la raíz de la aplicación y pasada
explícitamente a los consumidores. Init = primer ``connect``; teardown =
``disconnect``.

Uso:
    manager = ConnectionManager(settings.ws_url)
    unsubscribe = manager.subscribe("/topic/classroom/42/vitals", handler)
    manager.connect(token)
"""

from __future__ import annotations

import logging
import random
from enum import Enum
from typing import Any, Callable, Optional

from prometheus_client import Counter, Gauge

from ..common.config import Settings
from ..common.scheduler import LoopScheduler, Scheduler
from ..transport.base import NORMAL_CLOSURE, Transport, TransportCallbacks, TransportFactory
from ..transport.envelope import encode_send, encode_subscribe, encode_unsubscribe, parse_frame
from ..transport.websocket_transport import WebSocketConfig, WebSocketTransport
from .buffer_config import OutboundBufferConfig
from .outbound_buffer import OutboundBuffer
from .reconnect import ReconnectConfig, ReconnectPolicy
from .registry import MessageCallback, SubscriptionRegistry
from .stats import ConnectionStats
from .topics import SYSTEM_CONNECTED, SYSTEM_DISCONNECTED, is_system_topic

logger = logging.getLogger(__name__)

FRAMES_RECEIVED = Counter(
    'vitals_ws_frames_received_total',
    'Frames received from the broker',
    ['status']  # dispatched, unrouted, malformed
)
MESSAGES_PUBLISHED = Counter(
    'vitals_ws_messages_published_total',
    'Messages published through the connection manager',
    ['status']  # sent, buffered, refused
)
CONNECTION_STATE = Gauge(
    'vitals_ws_connection_state',
    'Connection state (0=disconnected, 1=connecting, 2=connected)'
)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


_STATE_GAUGE = {
    ConnectionState.DISCONNECTED: 0,
    ConnectionState.CONNECTING: 1,
    ConnectionState.CONNECTED: 2,
}


def _default_transport_factory() -> Transport:
    return WebSocketTransport(WebSocketConfig.from_env())


class ConnectionManager:
    """Conexión multiplexada publish/subscribe.

    Responsabilidades:
    - Ciclo de vida del transporte (como mucho uno vivo)
    - Registro de suscripciones con conteo de referencias hacia el transporte
    - Buffer de salida mientras no hay conexión
    - Reconexión con backoff salvo cierre manual o normal
    - Eventos locales ``$SYSTEM/connected`` y ``$SYSTEM/disconnected``
    """

    def __init__(
        self,
        url: str,
        transport_factory: Optional[TransportFactory] = None,
        scheduler: Optional[Scheduler] = None,
        reconnect_config: Optional[ReconnectConfig] = None,
        buffer_config: Optional[OutboundBufferConfig] = None,
        jitter_source: Callable[[], float] = random.random,
    ):
        self._url = url
        self._transport_factory = transport_factory or _default_transport_factory
        self._scheduler = scheduler or LoopScheduler()

        self._registry = SubscriptionRegistry()
        self._policy = ReconnectPolicy(self._scheduler, reconnect_config, jitter_source)
        self._buffer = OutboundBuffer(self._scheduler, buffer_config)

        self._transport: Optional[Transport] = None
        self._state = ConnectionState.DISCONNECTED
        self._manual_disconnect = False
        self._token: Optional[str] = None

        self._stats = ConnectionStats()
        CONNECTION_STATE.set(0)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "ConnectionManager":
        kwargs.setdefault("reconnect_config", ReconnectConfig.from_env())
        kwargs.setdefault("buffer_config", OutboundBufferConfig.from_env())
        manager = cls(settings.ws_url, **kwargs)
        manager._token = settings.auth_token
        return manager

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    def connect(self, token: Optional[str] = None) -> None:
        """Inicia la conexión. No-op si ya está conectando o conectado."""
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.debug("[WS] connect() ignored, state=%s", self._state.value)
            return

        self._manual_disconnect = False
        if token is not None:
            self._token = token
        if self._policy.exhausted:
            logger.info("[WS] Explicit connect after exhausted retries, re-arming policy")
            self._policy.reset()
        self._policy.cancel()
        self._open_transport()

    def disconnect(self) -> None:
        """Cierre manual. Nunca dispara la política de reconexión."""
        # El flag va primero: el callback de cierre del transporte lo consulta.
        self._manual_disconnect = True
        self._policy.cancel()
        self._buffer.stop_flush()

        transport = self._transport
        if transport is None:
            self._set_state(ConnectionState.DISCONNECTED)
            return

        if self._state == ConnectionState.CONNECTED:
            for pattern in self._registry.transport_patterns():
                self._send_control(transport, encode_unsubscribe(pattern))

        try:
            transport.close(NORMAL_CLOSURE, "User initiated disconnect")
        except Exception as e:
            logger.warning("[WS] Disconnect error: %s", e)

        # Si el transporte no notificó el cierre de forma síncrona, lo hacemos aquí.
        if self._transport is transport:
            self._transport = None
            self._handle_closed(NORMAL_CLOSURE, "User initiated disconnect")

        logger.info("[WS] WebSocket disconnected by user")

    def reconnect(self) -> None:
        """Reconexión explícita: descarta el transporte y conecta de nuevo.

        Ignora el calendario de backoff y resetea contadores.
        """
        logger.info("[WS] Manual reconnect requested")
        self._manual_disconnect = False
        self._policy.cancel()
        self._buffer.stop_flush()

        transport = self._transport
        # Se desacopla antes de cerrar: su evento de cierre queda obsoleto.
        self._transport = None
        if transport is not None:
            try:
                transport.close(NORMAL_CLOSURE, "Reconnecting")
            except Exception as e:
                logger.warning("[WS] Error closing transport for reconnect: %s", e)
            self._handle_closed(NORMAL_CLOSURE, "Reconnecting")

        self._policy.schedule_forced(self._retry)

    def _open_transport(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        transport = self._transport_factory()
        self._transport = transport

        callbacks = TransportCallbacks(
            on_open=lambda: self._on_open(transport),
            on_frame=lambda raw: self._on_frame(transport, raw),
            on_close=lambda code, reason: self._on_close(transport, code, reason),
        )
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}

        logger.info("[WS] Connecting to %s", self._url)
        try:
            transport.open(self._url, callbacks, headers)
        except Exception as e:
            logger.error("[WS] Error connecting to WebSocket: %s", e)
            if self._transport is transport:
                self._transport = None
                self._set_state(ConnectionState.DISCONNECTED)
                self._policy.schedule_retry(self._retry)

    def _retry(self) -> None:
        if self._manual_disconnect or self._state != ConnectionState.DISCONNECTED:
            logger.debug("[RECONNECT] Retry skipped, state=%s", self._state.value)
            return
        self._open_transport()

    # ------------------------------------------------------------------
    # Callbacks del transporte
    # ------------------------------------------------------------------

    def _on_open(self, transport: Transport) -> None:
        if transport is not self._transport:
            return

        self._set_state(ConnectionState.CONNECTED)
        self._policy.mark_connected()
        self._stats.connects += 1
        logger.info("[WS] Connected to %s", self._url)

        for pattern in self._registry.transport_patterns():
            self._send_control(transport, encode_subscribe(pattern))

        self._buffer.start_flush(self._send_now, lambda: self.is_connected)
        self._registry.dispatch(SYSTEM_CONNECTED, {})

    def _on_frame(self, transport: Transport, raw: str) -> None:
        if transport is not self._transport:
            return

        self._stats.frames_received += 1
        self._stats.last_message_at = self._scheduler.time()

        frame = parse_frame(raw)
        if frame is None:
            self._stats.frames_malformed += 1
            FRAMES_RECEIVED.labels(status='malformed').inc()
            return

        if is_system_topic(frame.destination):
            logger.warning("[WS] Ignoring remote frame on system topic %s", frame.destination)
            FRAMES_RECEIVED.labels(status='unrouted').inc()
            return

        delivered = self._registry.dispatch_exact(frame.destination, frame.payload)
        delivered += self._registry.dispatch_wildcard(frame.destination, frame.payload)

        if delivered:
            self._stats.messages_dispatched += delivered
            FRAMES_RECEIVED.labels(status='dispatched').inc()
        else:
            logger.debug("[WS] No subscribers for %s", frame.destination)
            FRAMES_RECEIVED.labels(status='unrouted').inc()

    def _on_close(self, transport: Transport, code: int, reason: str) -> None:
        if transport is not self._transport:
            logger.debug("[WS] Ignoring close from superseded transport (code=%d)", code)
            return

        self._transport = None
        self._handle_closed(code, reason)

        if self._manual_disconnect:
            logger.debug("[WS] Closed after manual disconnect, not reconnecting")
            return
        if code == NORMAL_CLOSURE:
            logger.info("[WS] Normal closure, not reconnecting")
            return
        self._policy.schedule_retry(self._retry)

    def _handle_closed(self, code: int, reason: str) -> None:
        if self._state == ConnectionState.DISCONNECTED:
            return
        self._buffer.stop_flush()
        self._set_state(ConnectionState.DISCONNECTED)
        self._stats.disconnects += 1
        logger.info("[WS] WebSocket closed: %d %s", code, reason)
        self._registry.dispatch(SYSTEM_DISCONNECTED, {"code": code, "reason": reason})

    # ------------------------------------------------------------------
    # Publicación y suscripción
    # ------------------------------------------------------------------

    def publish(self, topic: str, payload: Any) -> bool:
        """Publica en ``topic``.

        Returns:
            True si se envió ya; False si quedó en buffer o fue rechazado
        """
        if is_system_topic(topic):
            logger.warning("[WS] Refusing to publish to system topic %s", topic)
            MESSAGES_PUBLISHED.labels(status='refused').inc()
            return False

        if self.is_connected and self._buffer.is_empty:
            try:
                self._send_now(topic, payload)
                return True
            except Exception as e:
                logger.error("[WS] Error sending message to %s: %s", topic, e)

        if self._buffer.enqueue(topic, payload):
            self._stats.messages_buffered += 1
            MESSAGES_PUBLISHED.labels(status='buffered').inc()
        if self.is_connected and not self._buffer.flushing:
            self._buffer.start_flush(self._send_now, lambda: self.is_connected)
        return False

    def _send_now(self, topic: str, payload: Any) -> None:
        if self._transport is None:
            raise ConnectionError("No live transport")
        self._transport.send(encode_send(topic, payload))
        self._stats.messages_published += 1
        MESSAGES_PUBLISHED.labels(status='sent').inc()

    def _send_control(self, transport: Transport, frame: str) -> None:
        try:
            transport.send(frame)
        except Exception as e:
            # Se re-registra en la próxima conexión.
            logger.warning("[SUBS] Control frame not sent: %s", e)

    def subscribe(self, pattern: str, callback: MessageCallback) -> Callable[[], None]:
        """Registra ``callback`` y devuelve la función para quitarlo."""
        if not pattern:
            raise ValueError("pattern is required")

        handle_id, first = self._registry.add(pattern, callback)
        if first and not is_system_topic(pattern) and self.is_connected:
            self._send_control(self._transport, encode_subscribe(pattern))
            logger.info("[SUBS] Subscribed to %s", pattern)

        removed = False

        def unsubscribe() -> None:
            nonlocal removed
            if removed:
                return
            removed = True
            emptied = self._registry.remove(pattern, handle_id)
            if emptied and not is_system_topic(pattern) and self.is_connected:
                self._send_control(self._transport, encode_unsubscribe(pattern))
                logger.info("[SUBS] Unsubscribed from %s", pattern)

        return unsubscribe

    # ------------------------------------------------------------------
    # Estado
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        CONNECTION_STATE.set(_STATE_GAUGE[state])

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def manual_disconnect(self) -> bool:
        return self._manual_disconnect

    @property
    def reconnect_attempts(self) -> int:
        return self._policy.attempts

    @property
    def current_delay(self) -> float:
        return self._policy.current_delay

    @property
    def retries_exhausted(self) -> bool:
        return self._policy.exhausted

    @property
    def retry_pending(self) -> bool:
        return self._policy.pending

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def buffer(self) -> OutboundBuffer:
        return self._buffer

    @property
    def url(self) -> str:
        return self._url

    @property
    def stats(self) -> dict:
        return {
            "state": self._state.value,
            "url": self._url,
            "manual_disconnect": self._manual_disconnect,
            "subscriptions": len(self._registry.patterns),
            "reconnect": self._policy.stats,
            "buffer": self._buffer.get_stats(),
            **self._stats.to_dict(),
        }

    def health_check(self) -> dict:
        """Health check para monitoreo."""
        last = self._stats.last_message_at
        return {
            "healthy": self.is_connected,
            "state": self._state.value,
            "retries_exhausted": self._policy.exhausted,
            "buffered": self._buffer.size,
            "last_message_age_seconds": self._scheduler.time() - last if last > 0 else None,
        }
