"""Buffer de salida para publicaciones sin conexión.

Los ``publish`` hechos mientras el socket no está conectado se encolan aquí y
se envían en orden FIFO al reconectar, con una pausa fija entre mensajes para
no saturar el transporte.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Optional

from prometheus_client import Counter, Gauge

from ..common.scheduler import CancellableTimer, Scheduler
from .buffer_config import OutboundBufferConfig, OutboundBufferStats

logger = logging.getLogger(__name__)

BUFFERED_MESSAGES = Counter(
    'vitals_outbound_buffered_total',
    'Outbound messages buffered while disconnected',
    ['status']  # enqueued, dropped, flushed
)
BUFFER_SIZE = Gauge(
    'vitals_outbound_buffer_size',
    'Current outbound buffer size'
)

SendFn = Callable[[str, Any], None]


class OutboundBuffer:
    """Cola FIFO acotada con vaciado temporizado.

    Características:
    - Límite de tamaño configurable
    - Drop oldest/newest cuando se llena
    - El vaciado se detiene en cuanto ``is_connected()`` es False; lo que
      queda sigue encolado para la próxima conexión

    Todo corre en el mismo event loop, no hace falta lock.
    """

    def __init__(self, scheduler: Scheduler, config: Optional[OutboundBufferConfig] = None):
        self._config = config or OutboundBufferConfig()
        if self._config.max_size <= 0:
            raise ValueError("max_size must be positive")
        self._queue: deque[tuple[str, Any]] = deque()
        self._timer = CancellableTimer(scheduler, name="outbound-flush")
        self._stats = OutboundBufferStats(max_size=self._config.max_size)
        self._flushing = False
        self._send: Optional[SendFn] = None
        self._is_connected: Callable[[], bool] = lambda: False

    def enqueue(self, topic: str, payload: Any) -> bool:
        """Agrega un mensaje al final de la cola.

        Returns:
            False si el mensaje nuevo fue descartado por overflow
        """
        if len(self._queue) >= self._config.max_size:
            self._stats.dropped += 1
            BUFFERED_MESSAGES.labels(status='dropped').inc()
            if self._config.drop_oldest:
                dropped_topic, _ = self._queue.popleft()
                logger.warning("[BUFFER] Full, dropped oldest message for %s", dropped_topic)
            else:
                logger.warning("[BUFFER] Full, rejected message for %s", topic)
                return False

        self._queue.append((topic, payload))
        self._stats.enqueued += 1
        self._update_size()
        BUFFERED_MESSAGES.labels(status='enqueued').inc()
        return True

    def start_flush(self, send: SendFn, is_connected: Callable[[], bool]) -> None:
        """Empieza a vaciar la cola: primer mensaje inmediato, el resto espaciado."""
        self._send = send
        self._is_connected = is_connected
        if self._flushing or not self._queue:
            return
        logger.info("[BUFFER] Processing %d buffered messages", len(self._queue))
        self._flushing = True
        self._flush_next()

    def stop_flush(self) -> None:
        if self._flushing:
            logger.info("[BUFFER] Flush interrupted, %d messages remain", len(self._queue))
        self._timer.cancel()
        self._flushing = False

    def _flush_next(self) -> None:
        if not self._is_connected():
            self.stop_flush()
            return
        if not self._queue:
            self._flushing = False
            return

        topic, payload = self._queue.popleft()
        try:
            self._send(topic, payload)
        except Exception as e:
            # Vuelve al frente para no romper el orden.
            self._queue.appendleft((topic, payload))
            self._stats.requeued += 1
            logger.warning("[BUFFER] Send failed for %s, keeping in buffer: %s", topic, e)
            self.stop_flush()
            return
        finally:
            self._update_size()

        self._stats.flushed += 1
        BUFFERED_MESSAGES.labels(status='flushed').inc()

        if self._queue:
            self._timer.schedule(self._config.flush_interval, self._flush_next)
        else:
            self._flushing = False

    def _update_size(self) -> None:
        self._stats.current_size = len(self._queue)
        BUFFER_SIZE.set(len(self._queue))

    def clear(self) -> int:
        """Limpia la cola.

        Returns:
            Número de mensajes eliminados
        """
        count = len(self._queue)
        self._queue.clear()
        self._update_size()
        return count

    def pending(self) -> list[tuple[str, Any]]:
        return list(self._queue)

    @property
    def size(self) -> int:
        return len(self._queue)

    @property
    def is_empty(self) -> bool:
        return not self._queue

    @property
    def flushing(self) -> bool:
        return self._flushing

    def get_stats(self) -> dict:
        return {
            "enqueued": self._stats.enqueued,
            "flushed": self._stats.flushed,
            "dropped": self._stats.dropped,
            "requeued": self._stats.requeued,
            "current_size": len(self._queue),
            "max_size": self._config.max_size,
            "flushing": self._flushing,
        }
