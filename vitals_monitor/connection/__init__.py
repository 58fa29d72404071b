"""Conexión al broker: manager, suscripciones, reconexión y buffer de salida.

Estructura modular:
- topics.py: nombres de topics y matching de wildcards
- registry.py: suscriptores locales y despacho en dos pasos
- reconnect.py: backoff exponencial con límite de intentos
- outbound_buffer.py: cola FIFO acotada para publicar sin conexión
- manager.py: ConnectionManager que orquesta todo lo anterior
"""

from .buffer_config import OutboundBufferConfig, OutboundBufferStats
from .manager import ConnectionManager, ConnectionState
from .outbound_buffer import OutboundBuffer
from .reconnect import ReconnectConfig, ReconnectPolicy, ReconnectState
from .registry import SubscriptionRegistry
from .stats import ConnectionStats
from .topics import (
    GLOBAL_ALERTS_TOPIC,
    GLOBAL_VITALS_TOPIC,
    SYSTEM_CONNECTED,
    SYSTEM_DISCONNECTED,
    VITALS_SEND_DESTINATION,
    classroom_alerts_topic,
    classroom_vitals_topic,
    is_system_topic,
    is_wildcard,
    topic_matches,
)

__all__ = [
    "OutboundBufferConfig",
    "OutboundBufferStats",
    "ConnectionManager",
    "ConnectionState",
    "OutboundBuffer",
    "ReconnectConfig",
    "ReconnectPolicy",
    "ReconnectState",
    "SubscriptionRegistry",
    "ConnectionStats",
    "GLOBAL_ALERTS_TOPIC",
    "GLOBAL_VITALS_TOPIC",
    "SYSTEM_CONNECTED",
    "SYSTEM_DISCONNECTED",
    "VITALS_SEND_DESTINATION",
    "classroom_alerts_topic",
    "classroom_vitals_topic",
    "is_system_topic",
    "is_wildcard",
    "topic_matches",
]
