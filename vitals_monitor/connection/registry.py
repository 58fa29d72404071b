"""Registro de suscripciones por topic.

Mapea patrones (literales o con wildcards) a callbacks. El despacho de un
mensaje entrante se hace en dos pasos independientes:

1. ``dispatch_exact``: callbacks registrados bajo el topic exacto
2. ``dispatch_wildcard``: callbacks de cada patrón con ``+``/``#`` que coincida

Un patrón literal nunca participa en el paso 2, así que ningún callback
recibe el mismo mensaje dos veces por el mismo registro.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Callable, Dict, List

from prometheus_client import Counter

from .topics import is_system_topic, is_wildcard, topic_matches

logger = logging.getLogger(__name__)

SUBSCRIPTION_DELIVERIES = Counter(
    'vitals_subscription_deliveries_total',
    'Messages delivered to local subscribers',
    ['match']  # exact, wildcard
)
SUBSCRIPTION_CALLBACK_ERRORS = Counter(
    'vitals_subscription_callback_errors_total',
    'Subscriber callbacks that raised'
)

MessageCallback = Callable[[Any], None]


class SubscriptionRegistry:
    """Registro local de suscriptores.

    Cada ``add`` devuelve un id de handle propio, de modo que el mismo
    callable registrado dos veces se puede quitar una vez sin afectar al otro.
    """

    def __init__(self):
        self._subscriptions: Dict[str, Dict[int, MessageCallback]] = {}
        self._ids = itertools.count(1)

    def add(self, pattern: str, callback: MessageCallback) -> tuple[int, bool]:
        """Registra ``callback`` bajo ``pattern``.

        Returns:
            (handle_id, es_el_primer_callback_del_patrón)
        """
        callbacks = self._subscriptions.get(pattern)
        first = callbacks is None
        if first:
            callbacks = {}
            self._subscriptions[pattern] = callbacks

        handle_id = next(self._ids)
        callbacks[handle_id] = callback
        logger.debug("[SUBS] + %s (handle=%d, total=%d)", pattern, handle_id, len(callbacks))
        return handle_id, first

    def remove(self, pattern: str, handle_id: int) -> bool:
        """Quita un handle. True si el patrón se quedó sin callbacks."""
        callbacks = self._subscriptions.get(pattern)
        if not callbacks or handle_id not in callbacks:
            return False

        del callbacks[handle_id]
        logger.debug("[SUBS] - %s (handle=%d, left=%d)", pattern, handle_id, len(callbacks))
        if not callbacks:
            del self._subscriptions[pattern]
            return True
        return False

    def dispatch_exact(self, topic: str, payload: Any) -> int:
        callbacks = self._subscriptions.get(topic)
        if not callbacks:
            return 0
        delivered = self._deliver(topic, list(callbacks.values()), payload)
        SUBSCRIPTION_DELIVERIES.labels(match='exact').inc(delivered)
        return delivered

    def dispatch_wildcard(self, topic: str, payload: Any) -> int:
        delivered = 0
        for pattern in self.wildcard_patterns():
            if not topic_matches(pattern, topic):
                continue
            callbacks = self._subscriptions.get(pattern)
            if callbacks:
                delivered += self._deliver(pattern, list(callbacks.values()), payload)
        if delivered:
            SUBSCRIPTION_DELIVERIES.labels(match='wildcard').inc(delivered)
        return delivered

    def dispatch(self, topic: str, payload: Any) -> int:
        """Despacha a coincidencias exactas y luego a wildcards."""
        return self.dispatch_exact(topic, payload) + self.dispatch_wildcard(topic, payload)

    def _deliver(self, pattern: str, callbacks: List[MessageCallback], payload: Any) -> int:
        # Copia de la lista: un callback puede desuscribirse durante el despacho.
        delivered = 0
        for callback in callbacks:
            try:
                callback(payload)
                delivered += 1
            except Exception as e:
                SUBSCRIPTION_CALLBACK_ERRORS.inc()
                logger.exception("[SUBS] Error in subscriber callback for %s: %s", pattern, e)
        return delivered

    def wildcard_patterns(self) -> List[str]:
        return [p for p in self._subscriptions if is_wildcard(p)]

    def transport_patterns(self) -> List[str]:
        """Patrones que deben registrarse en el transporte (no-sistema)."""
        return [p for p in self._subscriptions if not is_system_topic(p)]

    def has(self, pattern: str) -> bool:
        return pattern in self._subscriptions

    def count(self, pattern: str) -> int:
        return len(self._subscriptions.get(pattern, {}))

    @property
    def patterns(self) -> List[str]:
        return list(self._subscriptions)

    def clear(self) -> None:
        self._subscriptions.clear()
