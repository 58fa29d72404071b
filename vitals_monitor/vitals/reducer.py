"""Reducer del stream de signos vitales.

Convierte el stream crudo (varias lecturas por alumno y segundo) en estado
estable para la UI:

1. ``on_sample`` valida y deja la muestra en staging (la última gana)
2. cada muestra re-arma un debounce trailing-edge (500 ms por defecto)
3. al vencer, ``_commit`` aplica todo el staging de una vez y notifica
   a los observadores una sola vez

Cada muestra en staging lleva el ``scope_token`` del store en el momento de
recibirla; si el roster cambió antes del commit, se descarta.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from prometheus_client import Counter

from ..common.scheduler import CancellableTimer, Scheduler
from .models import RosterEntry, VitalsSample, VitalsStatus
from .status import derive_status
from .store import VitalsStateStore
from .validators import validate_vitals_sample

logger = logging.getLogger(__name__)

SAMPLES_RECEIVED = Counter(
    'vitals_samples_received_total',
    'Vitals samples received by the reducer',
    ['status']  # staged, invalid, out_of_scope
)
SAMPLES_COMMITTED = Counter(
    'vitals_samples_committed_total',
    'Entity updates applied by reducer commits',
    ['result']  # applied, stale
)

AlertLookup = Callable[[str], bool]


@dataclass
class ReducerConfig:
    debounce: float = 0.5  # segundos

    @classmethod
    def from_env(cls) -> "ReducerConfig":
        return cls(debounce=float(os.getenv("VITALS_REDUCER_DEBOUNCE", "0.5")))


class VitalsStreamReducer:
    """Agrupa muestras por alumno y las compromete en lotes."""

    def __init__(
        self,
        store: VitalsStateStore,
        scheduler: Scheduler,
        config: Optional[ReducerConfig] = None,
        alert_lookup: Optional[AlertLookup] = None,
    ):
        self._store = store
        self._scheduler = scheduler
        self._config = config or ReducerConfig()
        self._alert_lookup = alert_lookup
        self._timer = CancellableTimer(scheduler, "reducer-commit")

        self._staged: Dict[str, Tuple[int, VitalsSample]] = {}

        self._received = 0
        self._invalid = 0
        self._out_of_scope = 0
        self._commits = 0
        self._stale_discarded = 0

    def set_alert_lookup(self, lookup: Optional[AlertLookup]) -> None:
        self._alert_lookup = lookup

    def on_sample(self, payload: Any) -> bool:
        """Callback de suscripción para el topic de vitales.

        Returns:
            True si la muestra quedó en staging
        """
        self._received += 1
        result = validate_vitals_sample(payload)
        if not result.valid:
            self._invalid += 1
            SAMPLES_RECEIVED.labels(status='invalid').inc()
            logger.warning("[REDUCER] Dropping invalid sample: %s", result.error)
            return False

        sample = result.payload
        scope = self._store.scope
        if scope is not None and sample.classroom_id and sample.classroom_id != scope:
            self._out_of_scope += 1
            SAMPLES_RECEIVED.labels(status='out_of_scope').inc()
            logger.debug(
                "[REDUCER] Sample for %s belongs to classroom %s, current is %s",
                sample.student_id, sample.classroom_id, scope,
            )
            return False

        self._staged[sample.student_id] = (self._store.scope_token, sample)
        SAMPLES_RECEIVED.labels(status='staged').inc()
        self._timer.schedule(self._config.debounce, self._commit)
        return True

    def flush(self) -> List[str]:
        """Comete el staging inmediatamente (sin esperar al debounce)."""
        self._timer.cancel()
        return self._commit()

    def _commit(self) -> List[str]:
        if not self._staged:
            return []

        staged = self._staged
        self._staged = {}
        token = self._store.scope_token
        now = self._scheduler.time()

        changed = []
        for entity_id, (sample_token, sample) in staged.items():
            if sample_token != token:
                self._stale_discarded += 1
                SAMPLES_COMMITTED.labels(result='stale').inc()
                continue

            state = self._store.ensure(entity_id)
            state.latest = sample
            state.last_update = now
            state.online = True
            state.time_since_update = "just now"
            if self._alert_lookup is not None and self._alert_lookup(entity_id):
                state.status = VitalsStatus.WARNING
            else:
                state.status = derive_status(sample)
            changed.append(entity_id)
            SAMPLES_COMMITTED.labels(result='applied').inc()

        if changed:
            self._commits += 1
            logger.debug("[REDUCER] Committed %d entities", len(changed))
            self._store.notify("commit", changed)
        return changed

    def reset_scope(
        self,
        scope: Optional[str],
        roster: Iterable[Union[RosterEntry, str]] = (),
    ) -> None:
        """Cambia el roster activo y descarta el staging pendiente."""
        self._timer.cancel()
        dropped = len(self._staged)
        self._staged = {}
        if dropped:
            logger.info("[REDUCER] Discarded %d staged samples on scope change", dropped)
        self._store.reset(scope, roster)

    def stop(self) -> None:
        self._timer.cancel()
        self._staged = {}

    @property
    def store(self) -> VitalsStateStore:
        return self._store

    @property
    def pending(self) -> bool:
        return self._timer.pending

    @property
    def staged_count(self) -> int:
        return len(self._staged)

    @property
    def stats(self) -> dict:
        return {
            "received": self._received,
            "invalid": self._invalid,
            "out_of_scope": self._out_of_scope,
            "staged": len(self._staged),
            "commits": self._commits,
            "stale_discarded": self._stale_discarded,
        }
