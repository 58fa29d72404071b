"""Detección de alumnos offline.

Un barrido periódico (5 s) marca offline, con estado INACTIVE, a todo alumno
online cuya última actualización supere el umbral (30 s). Alumnos que nunca
enviaron datos no se tocan. El mismo barrido refresca el texto "hace cuánto"
que muestra el dashboard.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from prometheus_client import Counter

from ..common.scheduler import CancellableTimer, Scheduler
from .models import VitalsStatus
from .store import VitalsStateStore

logger = logging.getLogger(__name__)

OFFLINE_TRANSITIONS = Counter(
    'vitals_offline_transitions_total',
    'Entities marked offline by the liveness sweep'
)


@dataclass
class LivenessConfig:
    sweep_interval: float = 5.0  # segundos
    offline_threshold: float = 30.0  # segundos sin actualizaciones

    @classmethod
    def from_env(cls) -> "LivenessConfig":
        return cls(
            sweep_interval=float(os.getenv("VITALS_LIVENESS_SWEEP_INTERVAL", "5")),
            offline_threshold=float(os.getenv("VITALS_OFFLINE_THRESHOLD", "30")),
        )


def format_time_since(elapsed: float) -> str:
    """Texto relativo para el dashboard."""
    seconds = int(max(0.0, elapsed))
    if seconds < 1:
        return "just now"
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    return f"{seconds // 3600}h ago"


class LivenessMonitor:
    def __init__(
        self,
        store: VitalsStateStore,
        scheduler: Scheduler,
        config: Optional[LivenessConfig] = None,
    ):
        self._store = store
        self._scheduler = scheduler
        self._config = config or LivenessConfig()
        self._timer = CancellableTimer(scheduler, "liveness-sweep")
        self._running = False
        self._sweeps = 0
        self._offline_total = 0

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        logger.info(
            "[LIVENESS] Started (interval=%.1fs, threshold=%.1fs)",
            self._config.sweep_interval, self._config.offline_threshold,
        )
        self._arm()

    def stop(self) -> None:
        self._running = False
        self._timer.cancel()

    def _arm(self) -> None:
        self._timer.schedule(self._config.sweep_interval, self._tick)

    def _tick(self) -> None:
        try:
            self.sweep()
        finally:
            if self._running:
                self._arm()

    def sweep(self, now: Optional[float] = None) -> List[str]:
        """Ejecuta un barrido.

        Returns:
            Ids de los alumnos que pasaron a offline en este barrido
        """
        if now is None:
            now = self._scheduler.time()
        self._sweeps += 1

        flipped = []
        touched = []
        for state in self._store:
            if state.last_update is None:
                continue

            elapsed = now - state.last_update
            label = format_time_since(elapsed)
            if label != state.time_since_update:
                state.time_since_update = label
                touched.append(state.entity_id)

            if state.online and elapsed > self._config.offline_threshold:
                state.online = False
                state.status = VitalsStatus.INACTIVE
                flipped.append(state.entity_id)
                if state.entity_id not in touched:
                    touched.append(state.entity_id)

        if flipped:
            self._offline_total += len(flipped)
            OFFLINE_TRANSITIONS.inc(len(flipped))
            logger.info("[LIVENESS] %d entities went offline: %s", len(flipped), ", ".join(flipped))
        if touched:
            self._store.notify("sweep", touched)
        return flipped

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict:
        return {
            "running": self._running,
            "sweeps": self._sweeps,
            "offline_transitions": self._offline_total,
        }
