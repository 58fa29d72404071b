"""Política de reconexión con backoff exponencial.

Máquina de estados:
    IDLE -> SCHEDULED -> CONNECTING -> (IDLE tras conectar | EXHAUSTED)

Sólo se dispara por cierres inesperados. Un ``disconnect`` manual o un cierre
normal nunca programan reintentos (lo decide el manager antes de llamar aquí).
"""

from __future__ import annotations

import logging
import os
import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from prometheus_client import Counter

from ..common.scheduler import CancellableTimer, Scheduler

logger = logging.getLogger(__name__)

RECONNECT_ATTEMPTS = Counter(
    'vitals_reconnect_attempts_total',
    'Reconnection attempts scheduled',
    ['outcome']  # scheduled, exhausted, forced
)


class ReconnectState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    CONNECTING = "connecting"
    EXHAUSTED = "exhausted"


@dataclass
class ReconnectConfig:
    """Configuración de backoff."""

    initial_delay: float = 2.0  # segundos
    growth_factor: float = 1.5
    max_delay: float = 30.0  # segundos
    max_jitter: float = 1.0  # segundos, uniforme [0, max_jitter)
    max_attempts: int = 5
    settle_delay: float = 0.5  # pausa antes de un reconnect() explícito

    def calculate_delay(self, attempts: int, jitter: float = 0.0) -> float:
        """Delay para el intento ``attempts`` (0-indexed).

        Args:
            attempts: Intentos ya realizados
            jitter: Valor en [0, 1) que escala ``max_jitter``
        """
        delay = min(self.max_delay, self.initial_delay * (self.growth_factor ** attempts))
        return delay + jitter * self.max_jitter

    @classmethod
    def from_env(cls) -> "ReconnectConfig":
        return cls(
            initial_delay=float(os.getenv("VITALS_RECONNECT_INITIAL_DELAY", "2.0")),
            growth_factor=float(os.getenv("VITALS_RECONNECT_GROWTH", "1.5")),
            max_delay=float(os.getenv("VITALS_RECONNECT_MAX_DELAY", "30")),
            max_jitter=float(os.getenv("VITALS_RECONNECT_JITTER", "1.0")),
            max_attempts=int(os.getenv("VITALS_RECONNECT_MAX_ATTEMPTS", "5")),
            settle_delay=float(os.getenv("VITALS_RECONNECT_SETTLE_DELAY", "0.5")),
        )


class ReconnectPolicy:
    """Decide si y cuándo reintentar.

    Mantiene un único temporizador; cualquier transición lo cancela, así un
    reintento obsoleto nunca resucita una conexión cerrada a mano.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        config: Optional[ReconnectConfig] = None,
        jitter_source: Callable[[], float] = random.random,
    ):
        self._config = config or ReconnectConfig()
        self._timer = CancellableTimer(scheduler, name="reconnect")
        self._jitter_source = jitter_source
        self._state = ReconnectState.IDLE
        self._attempts = 0
        self._current_delay = self._config.initial_delay

    @property
    def config(self) -> ReconnectConfig:
        return self._config

    @property
    def state(self) -> ReconnectState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def current_delay(self) -> float:
        return self._current_delay

    @property
    def exhausted(self) -> bool:
        return self._state == ReconnectState.EXHAUSTED

    @property
    def pending(self) -> bool:
        return self._timer.pending

    def schedule_retry(self, connect: Callable[[], None]) -> bool:
        """Programa el siguiente intento.

        Returns:
            False si se agotaron los intentos (estado terminal silencioso)
        """
        if self._attempts >= self._config.max_attempts:
            self._timer.cancel()
            self._state = ReconnectState.EXHAUSTED
            RECONNECT_ATTEMPTS.labels(outcome='exhausted').inc()
            logger.warning(
                "[RECONNECT] Maximum reconnect attempts (%d) reached. Giving up.",
                self._config.max_attempts,
            )
            return False

        delay = self._config.calculate_delay(self._attempts, self._jitter_source())
        self._current_delay = delay
        self._attempts += 1
        self._state = ReconnectState.SCHEDULED
        RECONNECT_ATTEMPTS.labels(outcome='scheduled').inc()

        logger.info(
            "[RECONNECT] Attempting to reconnect in %.1fs (attempt %d/%d)",
            delay,
            self._attempts,
            self._config.max_attempts,
        )
        self._timer.schedule(delay, lambda: self._fire(connect))
        return True

    def schedule_forced(self, connect: Callable[[], None]) -> None:
        """Reconexión explícita: resetea y conecta tras ``settle_delay``."""
        self.reset()
        self._state = ReconnectState.SCHEDULED
        RECONNECT_ATTEMPTS.labels(outcome='forced').inc()
        logger.info("[RECONNECT] Forced reconnect in %.1fs", self._config.settle_delay)
        self._timer.schedule(self._config.settle_delay, lambda: self._fire(connect))

    def _fire(self, connect: Callable[[], None]) -> None:
        self._state = ReconnectState.CONNECTING
        connect()

    def mark_connected(self) -> None:
        """Conexión establecida: contadores a valores iniciales."""
        self.reset()

    def reset(self) -> None:
        self._timer.cancel()
        self._attempts = 0
        self._current_delay = self._config.initial_delay
        self._state = ReconnectState.IDLE

    def cancel(self) -> None:
        """Invalida un reintento pendiente sin tocar los contadores."""
        self._timer.cancel()
        if self._state in (ReconnectState.SCHEDULED, ReconnectState.CONNECTING):
            self._state = ReconnectState.IDLE

    @property
    def stats(self) -> dict:
        return {
            "state": self._state.value,
            "attempts": self._attempts,
            "max_attempts": self._config.max_attempts,
            "current_delay": self._current_delay,
            "pending": self._timer.pending,
        }
