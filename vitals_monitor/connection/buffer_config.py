"""Configuración y modelos para el Outbound Buffer.

Extraído de outbound_buffer.py para mantener archivos cortos.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass
class OutboundBufferConfig:
    """Configuración del buffer de salida."""
    max_size: int = 1000
    drop_oldest: bool = True  # True = drop oldest, False = rechaza el nuevo
    flush_interval: float = 0.05  # segundos entre mensajes al vaciar

    @classmethod
    def from_env(cls) -> "OutboundBufferConfig":
        return cls(
            max_size=int(os.getenv("VITALS_BUFFER_MAX_SIZE", "1000")),
            drop_oldest=os.getenv("VITALS_BUFFER_DROP_OLDEST", "true").lower() == "true",
            flush_interval=float(os.getenv("VITALS_BUFFER_FLUSH_INTERVAL", "0.05")),
        )


@dataclass
class OutboundBufferStats:
    """Estadísticas del buffer de salida."""
    enqueued: int = 0
    flushed: int = 0
    dropped: int = 0
    requeued: int = 0
    current_size: int = 0
    max_size: int = 0
