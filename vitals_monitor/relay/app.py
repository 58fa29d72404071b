"""Relay WebSocket (FastAPI).

Arrancar con:
    uvicorn vitals_monitor.relay.app:app --port 8080

Variables de entorno:
    RELAY_API_TOKEN      Bearer requerido en el handshake (vacío = abierto)
    RELAY_PROFILES_FILE  JSON con perfiles de alumnos para el chequeo de FC
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status

from .heart_rate import HeartRateMonitor, ProfileDirectory
from .hub import RelayHub

logger = logging.getLogger(__name__)


def _bearer(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def create_app(hub: Optional[RelayHub] = None, api_token: Optional[str] = None) -> FastAPI:
    if hub is None:
        hub = RelayHub(HeartRateMonitor(ProfileDirectory.from_env()))
    if api_token is None:
        api_token = os.getenv("RELAY_API_TOKEN") or None

    app = FastAPI(title="Vitals Relay", version="0.1.0")
    app.state.hub = hub

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", **hub.stats}

    @app.websocket("/ws")
    async def websocket_relay(websocket: WebSocket):
        if api_token and _bearer(websocket.headers.get("authorization")) != api_token:
            logger.warning("[RELAY] Rejected connection with invalid token")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
            return

        await websocket.accept()
        session = hub.register(websocket.send_text)

        try:
            while True:
                raw = await websocket.receive_text()
                await hub.handle_frame(session.session_id, raw)
        except WebSocketDisconnect as e:
            logger.info("[RELAY] Client disconnected: session=%s code=%s", session.session_id, e.code)
        except Exception as e:
            logger.exception("[RELAY] Session error: session=%s error=%s", session.session_id, e)
            try:
                await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
            except RuntimeError:
                # Ya cerrado por el cliente.
                pass
        finally:
            hub.unregister(session.session_id)

    return app


app = create_app()
