"""Envelope JSON del broker.

Formato saliente (cliente -> relay):
    {"type": "SEND", "destination": "/app/vitals/send",
     "body": "{...}", "headers": {"content-type": "application/json"}}
    {"type": "SUBSCRIBE", "destination": "/topic/classroom/+/alerts"}
    {"type": "UNSUBSCRIBE", "destination": "..."}

Formato entrante (relay -> cliente), tolerante con variantes:
    {"topic" | "destination": "...", "body": "<json>" | "data": {...}}
Si no hay ``body`` ni ``data`` el objeto completo es el payload.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

import orjson

logger = logging.getLogger(__name__)


class FrameType(str, Enum):
    SEND = "SEND"
    SUBSCRIBE = "SUBSCRIBE"
    UNSUBSCRIBE = "UNSUBSCRIBE"
    MESSAGE = "MESSAGE"


@dataclass(frozen=True)
class Frame:
    """Frame decodificado."""

    type: FrameType
    destination: str
    payload: Any = None


def encode_frame(frame_type: FrameType, destination: str, payload: Any = None) -> str:
    """Serializa un frame a texto JSON."""
    data: dict[str, Any] = {"type": frame_type.value, "destination": destination}
    if frame_type in (FrameType.SEND, FrameType.MESSAGE):
        data["body"] = orjson.dumps(payload).decode("utf-8")
        data["headers"] = {"content-type": "application/json"}
    return orjson.dumps(data).decode("utf-8")


def encode_send(destination: str, payload: Any) -> str:
    return encode_frame(FrameType.SEND, destination, payload)


def encode_message(topic: str, payload: Any) -> str:
    return encode_frame(FrameType.MESSAGE, topic, payload)


def encode_subscribe(pattern: str) -> str:
    return encode_frame(FrameType.SUBSCRIBE, pattern)


def encode_unsubscribe(pattern: str) -> str:
    return encode_frame(FrameType.UNSUBSCRIBE, pattern)


def parse_frame(raw: Union[str, bytes]) -> Optional[Frame]:
    """Decodifica un frame. JSON inválido se loggea y devuelve None."""
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        logger.warning("[ENVELOPE] Invalid JSON frame: %s", e)
        return None

    if not isinstance(data, dict):
        logger.debug("[ENVELOPE] Ignoring non-object frame: %r", data)
        return None

    destination = data.get("topic") or data.get("destination") or ""
    if not isinstance(destination, str) or not destination:
        return None

    raw_type = str(data.get("type") or FrameType.MESSAGE.value).upper()
    try:
        frame_type = FrameType(raw_type)
    except ValueError:
        logger.warning("[ENVELOPE] Unknown frame type: %s", raw_type)
        return None

    if "body" in data and data["body"] is not None:
        body = data["body"]
        if isinstance(body, (str, bytes)):
            try:
                payload = orjson.loads(body)
            except orjson.JSONDecodeError as e:
                logger.warning("[ENVELOPE] Invalid JSON body on %s: %s", destination, e)
                return None
        else:
            payload = body
    elif data.get("data") is not None:
        payload = data["data"]
    else:
        payload = data

    return Frame(type=frame_type, destination=destination, payload=payload)
