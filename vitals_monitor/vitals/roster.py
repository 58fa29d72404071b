"""Cliente REST del roster de una clase."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import httpx

from ..common.config import Settings
from .models import RosterEntry

logger = logging.getLogger(__name__)


class RosterFetchError(Exception):
    """No se pudo obtener o interpretar el roster."""

    def __init__(self, classroom_id: str, message: str):
        super().__init__(f"Roster fetch failed for classroom {classroom_id}: {message}")
        self.classroom_id = classroom_id


def _parse_entry(record: Any) -> Optional[RosterEntry]:
    if not isinstance(record, dict):
        return None
    # physicalId es el id que usa el dispositivo al publicar.
    entity_id = record.get("physicalId") or record.get("studentId") or record.get("id")
    if entity_id is None or str(entity_id).strip() == "":
        return None
    return RosterEntry(
        entity_id=str(entity_id).strip(),
        first_name=str(record.get("firstName") or ""),
        last_name=str(record.get("lastName") or ""),
    )


class RosterClient:
    def __init__(
        self,
        api_base_url: str,
        token: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_base_url = api_base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "RosterClient":
        return cls(
            settings.api_base_url,
            token=settings.auth_token,
            timeout=settings.request_timeout_seconds,
            **kwargs,
        )

    async def fetch_students(self, classroom_id: str) -> List[RosterEntry]:
        """Obtiene los alumnos de la clase.

        Acepta ``{"students": [...]}`` o una lista directa de registros
        ``{physicalId, firstName, lastName}``. Registros sin id se ignoran.

        Raises:
            RosterFetchError: error de red, HTTP o formato inesperado
        """
        url = f"{self._api_base_url}/classrooms/{classroom_id}/students"
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(url, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            raise RosterFetchError(classroom_id, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise RosterFetchError(classroom_id, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise RosterFetchError(classroom_id, "invalid JSON") from e

        records = data.get("students") if isinstance(data, dict) else data
        if not isinstance(records, list):
            raise RosterFetchError(classroom_id, "unexpected response shape")

        roster = []
        for record in records:
            entry = _parse_entry(record)
            if entry is None:
                logger.warning("[ROSTER] Skipping record without id: %r", record)
                continue
            roster.append(entry)

        logger.info("[ROSTER] Classroom %s: %d students", classroom_id, len(roster))
        return roster
