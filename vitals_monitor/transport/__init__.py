"""Transporte: conexión WebSocket y envelope JSON."""

from .base import (
    ABNORMAL_CLOSURE,
    NORMAL_CLOSURE,
    Transport,
    TransportCallbacks,
    TransportFactory,
)
from .envelope import (
    Frame,
    FrameType,
    encode_frame,
    encode_message,
    encode_send,
    encode_subscribe,
    encode_unsubscribe,
    parse_frame,
)
from .websocket_transport import WebSocketConfig, WebSocketTransport

__all__ = [
    "ABNORMAL_CLOSURE",
    "NORMAL_CLOSURE",
    "Transport",
    "TransportCallbacks",
    "TransportFactory",
    "Frame",
    "FrameType",
    "encode_frame",
    "encode_message",
    "encode_send",
    "encode_subscribe",
    "encode_unsubscribe",
    "parse_frame",
    "WebSocketConfig",
    "WebSocketTransport",
]
