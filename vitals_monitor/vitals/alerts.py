"""Correlador de alertas de frecuencia cardiaca.

Mantiene dos cosas independientes:

- El conjunto de alumnos alertados ("feed"): un alumno está dentro mientras
  haya recibido una alerta en los últimos ``alert_ttl`` segundos o mientras
  figure en el conjunto explícito de ``set_feed``. Cuando el conjunto crece,
  el alumno pasa a WARNING; cuando se encoge, su estado se recalcula desde la
  última lectura (si está offline queda INACTIVE).
- El historial: alertas más recientes primero, sin duplicados por
  (alumno, timestamp) y acotado. Borrar del historial no toca el feed.
"""

from __future__ import annotations

import logging
import os
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from prometheus_client import Counter, Gauge

from ..common.scheduler import CancellableTimer, Scheduler
from .models import AlertEvent, VitalsStatus
from .status import derive_status
from .store import VitalsStateStore
from .validators import validate_alert_event

logger = logging.getLogger(__name__)

ALERTS_RECEIVED = Counter(
    'vitals_alerts_received_total',
    'Heart rate alerts received',
    ['status']  # accepted, duplicate, invalid, out_of_scope
)
ALERTED_ENTITIES = Gauge(
    'vitals_alerted_entities',
    'Entities currently in the alert set'
)

AlertListener = Callable[[AlertEvent], None]


@dataclass
class AlertConfig:
    alert_ttl: float = 60.0  # segundos que un alumno sigue alertado
    history_limit: int = 200
    expiry_interval: float = 5.0  # segundos entre recálculos por expiración

    def __post_init__(self):
        if self.history_limit <= 0:
            raise ValueError("history_limit must be positive")

    @classmethod
    def from_env(cls) -> "AlertConfig":
        return cls(
            alert_ttl=float(os.getenv("VITALS_ALERT_TTL", "60")),
            history_limit=int(os.getenv("VITALS_ALERT_HISTORY_LIMIT", "200")),
            expiry_interval=float(os.getenv("VITALS_ALERT_EXPIRY_INTERVAL", "5")),
        )


class AlertCorrelator:
    def __init__(
        self,
        store: VitalsStateStore,
        scheduler: Scheduler,
        config: Optional[AlertConfig] = None,
    ):
        self._store = store
        self._scheduler = scheduler
        self._config = config or AlertConfig()
        self._timer = CancellableTimer(scheduler, "alert-expiry")
        self._running = False

        self._last_alert_at: Dict[str, float] = {}
        self._explicit: Set[str] = set()
        self._alerted: Set[str] = set()

        # Insertion order = llegada; se itera al revés para "más reciente primero".
        self._history: "OrderedDict[Tuple[str, str], AlertEvent]" = OrderedDict()
        self._listeners: List[AlertListener] = []

    # ------------------------------------------------------------------
    # Entradas
    # ------------------------------------------------------------------

    def on_alert(self, payload: Any) -> Optional[AlertEvent]:
        """Callback de suscripción para los topics de alertas."""
        result = validate_alert_event(payload)
        if not result.valid:
            ALERTS_RECEIVED.labels(status='invalid').inc()
            return None

        event = result.payload
        scope = self._store.scope
        if scope is not None and event.classroom_id and event.classroom_id != scope:
            ALERTS_RECEIVED.labels(status='out_of_scope').inc()
            logger.debug("[ALERTS] Ignoring alert for classroom %s", event.classroom_id)
            return None

        if event.key in self._history:
            # La misma alerta llega por el topic de la clase y por el global.
            ALERTS_RECEIVED.labels(status='duplicate').inc()
            return None

        self._history[event.key] = event
        while len(self._history) > self._config.history_limit:
            self._history.popitem(last=False)
        ALERTS_RECEIVED.labels(status='accepted').inc()
        logger.warning("[ALERTS] %s", event.alert_message)

        self._last_alert_at[event.student_id] = self._scheduler.time()
        self._recompute()

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.exception("[ALERTS] Listener error: %s", e)
        return event

    def set_feed(self, entity_ids: Iterable[str]) -> None:
        """Fija el conjunto explícito de alumnos alertados."""
        self._explicit = set(entity_ids)
        self._recompute()

    def expire(self, now: Optional[float] = None) -> List[str]:
        """Quita del feed las alertas vencidas.

        Returns:
            Ids que salieron del conjunto de alertados
        """
        _, removed = self._recompute(now)
        return removed

    # ------------------------------------------------------------------
    # Conjunto de alertados
    # ------------------------------------------------------------------

    def _compute_alerted(self, now: float) -> Set[str]:
        ttl = self._config.alert_ttl
        for entity_id, at in list(self._last_alert_at.items()):
            if now - at >= ttl:
                del self._last_alert_at[entity_id]
        return set(self._last_alert_at) | self._explicit

    def _recompute(self, now: Optional[float] = None) -> Tuple[List[str], List[str]]:
        if now is None:
            now = self._scheduler.time()
        alerted = self._compute_alerted(now)
        added = sorted(alerted - self._alerted)
        removed = sorted(self._alerted - alerted)
        self._alerted = alerted
        ALERTED_ENTITIES.set(len(alerted))

        changed = []
        for entity_id in added:
            state = self._store.get(entity_id)
            if state is None:
                # Se aplicará en el commit de su primera muestra.
                continue
            state.status = VitalsStatus.WARNING
            changed.append(entity_id)

        for entity_id in removed:
            state = self._store.get(entity_id)
            if state is None:
                continue
            if state.online:
                state.status = derive_status(state.latest)
            else:
                state.status = VitalsStatus.INACTIVE
            changed.append(entity_id)

        if added or removed:
            logger.info("[ALERTS] Alert set changed: +%s -%s", added, removed)
        if changed:
            self._store.notify("alerts", changed)
        return added, removed

    def is_alerted(self, entity_id: str) -> bool:
        return entity_id in self._alerted

    @property
    def alerted(self) -> FrozenSet[str]:
        return frozenset(self._alerted)

    # ------------------------------------------------------------------
    # Historial
    # ------------------------------------------------------------------

    @property
    def history(self) -> List[AlertEvent]:
        """Alertas, la más reciente primero."""
        return list(reversed(self._history.values()))

    def clear_alert(self, alert_id: str) -> bool:
        for key, event in self._history.items():
            if event.alert_id == alert_id:
                del self._history[key]
                return True
        return False

    def clear_all(self) -> None:
        self._history.clear()

    def add_listener(self, listener: AlertListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._arm()

    def stop(self) -> None:
        self._running = False
        self._timer.cancel()

    def reset(self) -> None:
        """Olvida feed e historial (cambio de clase). No notifica."""
        self._last_alert_at.clear()
        self._explicit.clear()
        self._alerted.clear()
        self._history.clear()
        ALERTED_ENTITIES.set(0)

    def _arm(self) -> None:
        self._timer.schedule(self._config.expiry_interval, self._tick)

    def _tick(self) -> None:
        try:
            self.expire()
        finally:
            if self._running:
                self._arm()

    @property
    def stats(self) -> dict:
        return {
            "alerted": len(self._alerted),
            "explicit": len(self._explicit),
            "history": len(self._history),
            "running": self._running,
        }
