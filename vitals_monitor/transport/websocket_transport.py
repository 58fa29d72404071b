"""Transporte WebSocket basado en ``websockets``.

Una instancia = una conexión. El manager crea una nueva instancia en cada
intento de conexión, así que no hay estado que limpiar entre intentos.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from .base import ABNORMAL_CLOSURE, NORMAL_CLOSURE, Transport, TransportCallbacks

logger = logging.getLogger(__name__)


@dataclass
class WebSocketConfig:
    """Configuración del transporte WebSocket."""
    open_timeout: float = 10.0
    ping_interval: Optional[float] = 30.0  # keepalive; None = desactivado
    ping_timeout: Optional[float] = 20.0

    @classmethod
    def from_env(cls) -> "WebSocketConfig":
        ping = float(os.getenv("VITALS_WS_PING_INTERVAL", "30"))
        return cls(
            open_timeout=float(os.getenv("VITALS_WS_OPEN_TIMEOUT", "10")),
            ping_interval=ping if ping > 0 else None,
            ping_timeout=float(os.getenv("VITALS_WS_PING_TIMEOUT", "20")),
        )


class WebSocketTransport(Transport):
    """Cliente WebSocket no bloqueante.

    - ``open`` lanza una tarea que conecta y luego lee frames
    - ``send`` encola; una tarea escritora envía en orden FIFO
    - cualquier cierre (o fallo al conectar) llega una sola vez a ``on_close``
    """

    def __init__(self, config: Optional[WebSocketConfig] = None):
        self._config = config or WebSocketConfig()
        self._callbacks: Optional[TransportCallbacks] = None
        self._ws: Optional[ClientConnection] = None
        self._task: Optional[asyncio.Task] = None
        self._outgoing: asyncio.Queue[str] = asyncio.Queue()
        self._closing = False
        self._closed = False
        self._writer_stopped = False
        self._close_code = NORMAL_CLOSURE
        self._close_reason = ""

    def open(
        self,
        url: str,
        callbacks: TransportCallbacks,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        if self._task is not None:
            raise RuntimeError("WebSocketTransport instances are single-use")
        self._callbacks = callbacks
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(url, dict(headers or {})))

    async def _run(self, url: str, headers: dict[str, str]) -> None:
        logger.info("[WS] Connecting to %s", url)
        try:
            ws = await connect(
                url,
                additional_headers=headers or None,
                open_timeout=self._config.open_timeout,
                ping_interval=self._config.ping_interval,
                ping_timeout=self._config.ping_timeout,
            )
        except (OSError, asyncio.TimeoutError, InvalidHandshake, InvalidURI) as e:
            logger.warning("[WS] Connection failed: %s", e)
            self._emit_close(ABNORMAL_CLOSURE, str(e))
            return

        if self._closing:
            await ws.close(self._close_code, self._close_reason)
            self._emit_close(self._close_code, self._close_reason)
            return

        self._ws = ws
        self._callbacks.on_open()

        writer = asyncio.create_task(self._write_loop(ws))
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                try:
                    self._callbacks.on_frame(message)
                except Exception as e:
                    logger.exception("[WS] Frame handler error: %s", e)
        except ConnectionClosed as e:
            logger.debug("[WS] Connection closed with error: %s", e)
        finally:
            writer.cancel()

        code = ws.close_code if ws.close_code is not None else ABNORMAL_CLOSURE
        self._emit_close(code, ws.close_reason or "")

    async def _write_loop(self, ws: ClientConnection) -> None:
        while True:
            frame = await self._outgoing.get()
            try:
                await ws.send(frame)
            except ConnectionClosed:
                self._writer_stopped = True
                # Desde aquí send() rechaza frames y el buffer los conserva.
                logger.debug(
                    "[WS] Send aborted, connection closed (%d queued frames lost)",
                    self._outgoing.qsize(),
                )
                return

    def send(self, frame: str) -> None:
        if self._ws is None or self._closing or self._writer_stopped:
            raise ConnectionError("WebSocket is not open")
        self._outgoing.put_nowait(frame)

    def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if self._closing:
            return
        self._closing = True
        self._close_code = code
        self._close_reason = reason

        if self._ws is not None:
            asyncio.get_running_loop().create_task(self._ws.close(code, reason))
        elif self._task is not None and not self._task.done():
            # Todavía conectando: se cierra en cuanto el handshake termine.
            logger.debug("[WS] Close requested while connecting")
        else:
            self._emit_close(code, reason)

    def _emit_close(self, code: int, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        self._ws = None
        logger.info("[WS] Closed (code=%d reason=%s)", code, reason or "-")
        if self._callbacks is not None:
            self._callbacks.on_close(code, reason)

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closing and not self._writer_stopped
