"""Abstract interface for the socket transport.

This decouples the connection manager from the WebSocket library.
Any transport implementation (websockets, in-memory for tests) can implement
this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


@dataclass
class TransportCallbacks:
    """Callbacks a los que el transporte entrega sus eventos."""
    on_open: Callable[[], None]
    on_frame: Callable[[str], None]
    on_close: Callable[[int, str], None]


class Transport(ABC):
    """Abstract interface for one socket connection.

    Implementations:
    - WebSocketTransport: ``websockets`` client over asyncio
    - Fakes in tests

    None of the methods block. Establishment failures are reported through
    ``on_close`` with ``ABNORMAL_CLOSURE``, never raised from ``open``.
    """

    @abstractmethod
    def open(
        self,
        url: str,
        callbacks: TransportCallbacks,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Start connecting to ``url``."""
        pass

    @abstractmethod
    def send(self, frame: str) -> None:
        """Queue one text frame for sending."""
        pass

    @abstractmethod
    def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        """Close the connection."""
        pass


TransportFactory = Callable[[], Transport]
