"""Temporizadores cancelables sobre el event loop.

Todos los componentes (debounce del reducer, sweep de liveness, backoff de
reconexión, flush del buffer) programan callbacks a través de ``Scheduler``
en lugar de llamar a ``loop.call_later`` directamente. En tests se sustituye
por un reloj manual.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Interfaz mínima de programación de callbacks.

    ``time()`` devuelve tiempo de pared (epoch) y es la referencia para
    timestamps de última actualización.
    """

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...

    def time(self) -> float:
        ...


class LoopScheduler:
    """Scheduler de producción basado en ``asyncio``."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(max(0.0, delay), callback)

    def time(self) -> float:
        return time.time()


class CancellableTimer:
    """Un único temporizador re-armable.

    ``schedule`` cancela el pendiente antes de programar el nuevo, así que
    como mucho hay un callback vivo por instancia (debounce trailing-edge).
    """

    def __init__(self, scheduler: Scheduler, name: str = "timer"):
        self._scheduler = scheduler
        self._name = name
        self._handle: Optional[TimerHandle] = None
        self._generation = 0

    def schedule(self, delay: float, callback: Callable[[], None]) -> None:
        self.cancel()
        self._generation += 1
        generation = self._generation

        def _fire() -> None:
            # Un handle ya cancelado nunca debe ejecutar el callback.
            if generation != self._generation:
                return
            self._handle = None
            try:
                callback()
            except Exception as e:
                logger.exception("[TIMER] %s callback failed: %s", self._name, e)

        self._handle = self._scheduler.call_later(delay, _fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._generation += 1

    @property
    def pending(self) -> bool:
        return self._handle is not None
