"""Monitor de una clase: une conexión, reducer, liveness y alertas.

Equivalente sin UI de los hooks del dashboard del profesor. Un único
``ConnectionManager`` inyectado; el monitor sólo gestiona sus propias
suscripciones y las cambia al seleccionar otra clase.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, List, Optional, Union

from ..common.scheduler import Scheduler
from ..connection import (
    GLOBAL_ALERTS_TOPIC,
    SYSTEM_CONNECTED,
    SYSTEM_DISCONNECTED,
    ConnectionManager,
    classroom_alerts_topic,
    classroom_vitals_topic,
)
from ..vitals import (
    AlertConfig,
    AlertCorrelator,
    AlertEvent,
    EntityVitalsState,
    LivenessConfig,
    LivenessMonitor,
    ReducerConfig,
    RosterClient,
    RosterEntry,
    StateChange,
    VitalsStateStore,
    VitalsStreamReducer,
)

logger = logging.getLogger(__name__)


class ClassroomMonitor:
    """Estado en vivo de los alumnos de la clase seleccionada.

    Uso típico:
        monitor = ClassroomMonitor(manager, roster_client=client)
        monitor.start()
        await monitor.select_classroom("CLS-42")
        monitor.add_listener(on_change)
    """

    def __init__(
        self,
        manager: ConnectionManager,
        scheduler: Optional[Scheduler] = None,
        roster_client: Optional[RosterClient] = None,
        reducer_config: Optional[ReducerConfig] = None,
        liveness_config: Optional[LivenessConfig] = None,
        alert_config: Optional[AlertConfig] = None,
    ):
        self._manager = manager
        self._scheduler = scheduler or manager.scheduler
        self._roster_client = roster_client

        self._store = VitalsStateStore()
        self._correlator = AlertCorrelator(self._store, self._scheduler, alert_config)
        self._reducer = VitalsStreamReducer(
            self._store,
            self._scheduler,
            reducer_config,
            alert_lookup=self._correlator.is_alerted,
        )
        self._liveness = LivenessMonitor(self._store, self._scheduler, liveness_config)

        self._classroom_id: Optional[str] = None
        self._selection = 0
        self._connected = manager.is_connected
        self._running = False

        self._system_unsubscribers: List[Callable[[], None]] = []
        self._topic_unsubscribers: List[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Ciclo de vida
    # ------------------------------------------------------------------

    def start(self, token: Optional[str] = None) -> None:
        if self._running:
            return
        self._running = True
        self._system_unsubscribers = [
            self._manager.subscribe(SYSTEM_CONNECTED, self._on_connected),
            self._manager.subscribe(SYSTEM_DISCONNECTED, self._on_disconnected),
        ]
        self._connected = self._manager.is_connected
        self._liveness.start()
        self._correlator.start()
        self._manager.connect(token)

    def stop(self, disconnect: bool = True) -> None:
        """Detiene timers y suscripciones. Por defecto cierra la conexión."""
        self._running = False
        self._unsubscribe_topics()
        for unsubscribe in self._system_unsubscribers:
            unsubscribe()
        self._system_unsubscribers = []
        self._reducer.stop()
        self._liveness.stop()
        self._correlator.stop()
        if disconnect:
            self._manager.disconnect()
        self._connected = False

    def _on_connected(self, _payload: Any) -> None:
        self._connected = True
        logger.info("[MONITOR] Connected, classroom=%s", self._classroom_id)

    def _on_disconnected(self, payload: Any) -> None:
        self._connected = False
        code = payload.get("code") if isinstance(payload, dict) else None
        logger.info("[MONITOR] Disconnected (code=%s)", code)

    # ------------------------------------------------------------------
    # Selección de clase
    # ------------------------------------------------------------------

    async def select_classroom(self, classroom_id: Optional[str]) -> List[RosterEntry]:
        """Selecciona la clase a monitorear y siembra su roster.

        Si otra selección empieza mientras se descarga el roster, el resultado
        de esta se descarta.

        Raises:
            RosterFetchError: si falla la descarga; la selección previa sigue activa
        """
        self._selection += 1
        selection = self._selection

        roster: List[RosterEntry] = []
        if classroom_id is not None and self._roster_client is not None:
            roster = await self._roster_client.fetch_students(classroom_id)

        if selection != self._selection:
            logger.info("[MONITOR] Discarding roster for %s, selection changed", classroom_id)
            return roster

        self.set_classroom(classroom_id, roster)
        return roster

    def set_classroom(
        self,
        classroom_id: Optional[str],
        roster: Iterable[Union[RosterEntry, str]] = (),
    ) -> None:
        """Cambia de clase con un roster ya conocido."""
        self._unsubscribe_topics()
        self._correlator.reset()
        self._reducer.reset_scope(classroom_id, roster)
        self._classroom_id = classroom_id

        if classroom_id is None:
            logger.info("[MONITOR] No classroom selected")
            return

        self._topic_unsubscribers = [
            self._manager.subscribe(classroom_vitals_topic(classroom_id), self._reducer.on_sample),
            self._manager.subscribe(classroom_alerts_topic(classroom_id), self._correlator.on_alert),
            self._manager.subscribe(GLOBAL_ALERTS_TOPIC, self._correlator.on_alert),
        ]
        logger.info("[MONITOR] Monitoring classroom %s (%d students)", classroom_id, len(self._store))

    def _unsubscribe_topics(self) -> None:
        for unsubscribe in self._topic_unsubscribers:
            unsubscribe()
        self._topic_unsubscribers = []

    # ------------------------------------------------------------------
    # Consultas
    # ------------------------------------------------------------------

    def add_listener(self, listener: Callable[[StateChange], None]) -> Callable[[], None]:
        return self._store.add_listener(listener)

    def add_alert_listener(self, listener: Callable[[AlertEvent], None]) -> Callable[[], None]:
        return self._correlator.add_listener(listener)

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def classroom_id(self) -> Optional[str]:
        return self._classroom_id

    @property
    def states(self) -> List[EntityVitalsState]:
        return self._store.entities

    @property
    def alerts(self) -> List[AlertEvent]:
        return self._correlator.history

    @property
    def store(self) -> VitalsStateStore:
        return self._store

    @property
    def reducer(self) -> VitalsStreamReducer:
        return self._reducer

    @property
    def liveness(self) -> LivenessMonitor:
        return self._liveness

    @property
    def correlator(self) -> AlertCorrelator:
        return self._correlator

    def health_check(self) -> dict:
        states = self._store.entities
        return {
            "classroom_id": self._classroom_id,
            "connected": self._connected,
            "students": len(states),
            "online": sum(1 for s in states if s.online),
            "alerted": len(self._correlator.alerted),
            "connection": self._manager.health_check(),
            "reducer": self._reducer.stats,
            "liveness": self._liveness.stats,
        }
