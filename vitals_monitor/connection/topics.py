"""Topics y matching de wildcards estilo MQTT.

- ``+`` coincide con exactamente un segmento
- ``#`` coincide con el resto del topic (cero o más segmentos) y termina
- cualquier otro segmento debe coincidir literalmente
- sin ``#`` el número de segmentos debe ser igual
"""

from __future__ import annotations

SYSTEM_PREFIX = "$SYSTEM/"
SYSTEM_CONNECTED = "$SYSTEM/connected"
SYSTEM_DISCONNECTED = "$SYSTEM/disconnected"

SINGLE_LEVEL = "+"
MULTI_LEVEL = "#"

VITALS_SEND_DESTINATION = "/app/vitals/send"
GLOBAL_VITALS_TOPIC = "/topic/vitals"
GLOBAL_ALERTS_TOPIC = "/topic/alerts"


def classroom_vitals_topic(classroom_id: str) -> str:
    return f"/topic/classroom/{classroom_id}/vitals"


def classroom_alerts_topic(classroom_id: str) -> str:
    return f"/topic/classroom/{classroom_id}/alerts"


def is_system_topic(topic: str) -> bool:
    return topic.startswith(SYSTEM_PREFIX)


def is_wildcard(pattern: str) -> bool:
    return any(seg in (SINGLE_LEVEL, MULTI_LEVEL) for seg in pattern.split("/"))


def topic_matches(pattern: str, topic: str) -> bool:
    """True si ``topic`` concreto coincide con ``pattern``."""
    pattern_segments = pattern.split("/")
    topic_segments = topic.split("/")

    for i, segment in enumerate(pattern_segments):
        if segment == MULTI_LEVEL:
            return True
        if i >= len(topic_segments):
            return False
        if segment == SINGLE_LEVEL:
            continue
        if segment != topic_segments[i]:
            return False

    return len(pattern_segments) == len(topic_segments)
