"""Piezas compartidas: configuración y temporizadores."""

from .config import Settings, derive_ws_url, get_settings
from .scheduler import CancellableTimer, LoopScheduler, Scheduler, TimerHandle

__all__ = [
    "Settings",
    "derive_ws_url",
    "get_settings",
    "CancellableTimer",
    "LoopScheduler",
    "Scheduler",
    "TimerHandle",
]
