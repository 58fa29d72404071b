"""Estado comprometido de signos vitales por alumno.

FUENTE ÚNICA DE VERDAD para la vista "vitales actuales por alumno".
Escriben en él el reducer (commits), el monitor de liveness (offline) y el
correlador de alertas (WARNING). Los observadores reciben un ``StateChange``
sólo después de que todas las entidades del lote estén actualizadas.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Union

from .models import EntityVitalsState, RosterEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateChange:
    """Notificación de cambio en el store."""
    reason: str  # reset, commit, sweep, alerts
    entity_ids: tuple[str, ...]
    scope: Optional[str]


StateListener = Callable[[StateChange], None]


class VitalsStateStore:
    """Mapa alumno -> EntityVitalsState con ámbito (clase seleccionada).

    ``scope_token`` cambia en cada ``reset``; quien capture el token antes
    de un reset puede detectar que su trabajo pertenece a un roster obsoleto.
    """

    def __init__(self):
        self._entities: Dict[str, EntityVitalsState] = {}
        self._scope: Optional[str] = None
        self._scope_token = 0
        self._listeners: List[StateListener] = []

    def reset(self, scope: Optional[str], roster: Iterable[Union[RosterEntry, str]] = ()) -> None:
        """Cambia de ámbito: descarta todo y siembra el roster en INACTIVE."""
        self._scope = scope
        self._scope_token += 1
        self._entities = {}
        for entry in roster:
            if isinstance(entry, str):
                entry = RosterEntry(entity_id=entry)
            self._entities[entry.entity_id] = EntityVitalsState(
                entity_id=entry.entity_id,
                name=entry.display_name,
            )
        logger.info("[STORE] Scope reset to %s with %d entities", scope, len(self._entities))
        self.notify("reset", tuple(self._entities))

    def ensure(self, entity_id: str) -> EntityVitalsState:
        state = self._entities.get(entity_id)
        if state is None:
            logger.debug("[STORE] Entity %s not in roster, adding", entity_id)
            state = EntityVitalsState(entity_id=entity_id, name=entity_id)
            self._entities[entity_id] = state
        return state

    def get(self, entity_id: str) -> Optional[EntityVitalsState]:
        return self._entities.get(entity_id)

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def notify(self, reason: str, entity_ids: Iterable[str]) -> None:
        change = StateChange(reason=reason, entity_ids=tuple(entity_ids), scope=self._scope)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.exception("[STORE] Listener error on %s: %s", reason, e)

    def snapshot(self) -> Dict[str, dict]:
        return {entity_id: state.to_dict() for entity_id, state in self._entities.items()}

    @property
    def scope(self) -> Optional[str]:
        return self._scope

    @property
    def scope_token(self) -> int:
        return self._scope_token

    @property
    def entities(self) -> List[EntityVitalsState]:
        return list(self._entities.values())

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    def __iter__(self) -> Iterator[EntityVitalsState]:
        return iter(list(self._entities.values()))

    def __len__(self) -> int:
        return len(self._entities)
