"""Modelos de dominio de signos vitales.

- VitalsSample: observación inmutable recibida por el socket
- AlertEvent: alerta de umbral emitida por el backend
- EntityVitalsState: estado derivado y mutable por alumno
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_HEART_RATE = 300.0

# (mínimo, máximo, mínimo incluido)
READING_RANGES = {
    "heartRate": (0.0, MAX_HEART_RATE, False),
    "oxygenSaturation": (0.0, 100.0, True),
}


class VitalsStatus(str, Enum):
    """Clasificación mostrada en el dashboard."""

    EXCELLENT = "excellent"
    GOOD = "good"
    WARNING = "warning"    # Sólo la impone el correlador de alertas
    INACTIVE = "inactive"  # Sin lecturas o sin actualizaciones recientes


class LivenessState(str, Enum):
    NEVER_SEEN = "never-seen"
    ONLINE = "online"
    OFFLINE = "offline"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _coerce_id(v: Any) -> Any:
    if v is None:
        return v
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return str(v)
    if isinstance(v, str):
        return v.strip()
    return v


def _is_blank(v: Any) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


def _require_finite(v: Optional[float], name: str) -> Optional[float]:
    if v is None:
        return v
    if math.isnan(v):
        raise ValueError(f"{name} is NaN")
    if math.isinf(v):
        raise ValueError(f"{name} is infinite")
    return v


def sanitize_reading(name: str, v: Any) -> Tuple[Optional[float], Optional[str]]:
    """Normaliza una lectura individual.

    Una lectura no numérica, no finita o fuera de rango se descarta (None)
    sin invalidar el resto de la muestra.

    Returns:
        (valor o None, motivo del descarte o None)
    """
    if v is None:
        return None, None
    if isinstance(v, bool):
        return None, f"{name} is not numeric: {v!r}"
    try:
        value = float(v)
    except (TypeError, ValueError):
        return None, f"{name} is not numeric: {v!r}"
    if math.isnan(value) or math.isinf(value):
        return None, f"{name} is not finite"

    low, high, low_inclusive = READING_RANGES[name]
    above_low = value >= low if low_inclusive else value > low
    if not above_low or value > high:
        return None, f"{name} out of range: {value:g}"
    return value, None


class VitalsSample(BaseModel):
    """Lectura de signos vitales de un alumno.

    Formato esperado:
    {
        "studentId": "STU-001",
        "classroomId": "CLS-42",
        "taskId": "TSK-7",
        "heartRate": 92,
        "oxygenSaturation": 98,
        "timestamp": "2026-10-19T08:00:00.123456Z",
        "isPreActivity": false,
        "isPostActivity": false
    }
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    student_id: str = Field(..., alias="studentId")
    classroom_id: Optional[str] = Field(default=None, alias="classroomId")
    task_id: Optional[str] = Field(default=None, alias="taskId")
    heart_rate: Optional[float] = Field(default=None, alias="heartRate")
    oxygen_saturation: Optional[float] = Field(default=None, alias="oxygenSaturation")
    timestamp: Optional[str] = None
    is_pre_activity: bool = Field(default=False, alias="isPreActivity")
    is_post_activity: bool = Field(default=False, alias="isPostActivity")

    @field_validator("student_id", "classroom_id", "task_id", "timestamp", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return _coerce_id(v)

    @field_validator("student_id")
    @classmethod
    def validate_student_id(cls, v):
        if not v:
            raise ValueError("studentId is required")
        return v

    @field_validator("heart_rate", mode="before")
    @classmethod
    def validate_heart_rate(cls, v):
        value, _ = sanitize_reading("heartRate", v)
        return value

    @field_validator("oxygen_saturation", mode="before")
    @classmethod
    def validate_oxygen_saturation(cls, v):
        value, _ = sanitize_reading("oxygenSaturation", v)
        return value

    @model_validator(mode="after")
    def require_reading(self):
        if self.heart_rate is None and self.oxygen_saturation is None:
            raise ValueError("at least one reading (heartRate, oxygenSaturation) is required")
        return self

    def to_wire(self) -> dict[str, Any]:
        """Formato camelCase del socket."""
        return self.model_dump(by_alias=True, exclude_none=True)


class AlertEvent(BaseModel):
    """Alerta de frecuencia cardiaca por encima del umbral ajustado por edad."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    student_id: str = Field(..., alias="studentId")
    student_name: str = Field(default="Unknown Student", alias="studentName")
    current_heart_rate: float = Field(..., alias="currentHeartRate")
    threshold_heart_rate: float = Field(..., alias="thresholdHeartRate")
    alert_message: str = Field(default="", alias="alertMessage")
    timestamp: str = Field(default_factory=_utc_now_iso)
    classroom_id: Optional[str] = Field(default=None, alias="classroomId")

    @model_validator(mode="before")
    @classmethod
    def fill_defaults(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for alias, name in (("studentName", "student_name"), ("alertMessage", "alert_message"),
                            ("timestamp", "timestamp")):
            if _is_blank(data.get(alias)) and _is_blank(data.get(name)):
                data.pop(alias, None)
                data.pop(name, None)

        if "alertMessage" not in data and "alert_message" not in data:
            current = data.get("currentHeartRate", data.get("current_heart_rate"))
            threshold = data.get("thresholdHeartRate", data.get("threshold_heart_rate"))
            try:
                data["alertMessage"] = (
                    f"Heart rate exceeded threshold: {float(current):g} > {float(threshold):g}"
                )
            except (TypeError, ValueError):
                # Los validadores de campo reportan el error real.
                pass
        return data

    @field_validator("student_id", "classroom_id", "timestamp", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return _coerce_id(v)

    @field_validator("student_id")
    @classmethod
    def validate_student_id(cls, v):
        if not v:
            raise ValueError("studentId is required")
        return v

    @field_validator("current_heart_rate", "threshold_heart_rate")
    @classmethod
    def validate_rates(cls, v):
        v = _require_finite(v, "heart rate")
        if not v:
            raise ValueError("heart rate values must be non-zero")
        return v

    @property
    def key(self) -> tuple[str, str]:
        """Clave de deduplicación (alumno, timestamp)."""
        return (self.student_id, self.timestamp)

    @property
    def alert_id(self) -> str:
        return f"{self.student_id}:{self.timestamp}"

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class RosterEntry:
    """Alumno de la clase según el roster REST."""
    entity_id: str
    first_name: str = ""
    last_name: str = ""

    @property
    def display_name(self) -> str:
        name = f"{self.first_name} {self.last_name}".strip()
        return name or self.entity_id


@dataclass
class EntityVitalsState:
    """Estado derivado por alumno.

    ``last_update`` es tiempo de pared del commit (no el timestamp de la
    muestra) y es la referencia para detectar alumnos offline.
    """

    entity_id: str
    name: str = ""
    latest: Optional[VitalsSample] = None
    last_update: Optional[float] = None
    status: VitalsStatus = VitalsStatus.INACTIVE
    online: bool = False
    time_since_update: Optional[str] = None

    @property
    def liveness(self) -> LivenessState:
        if self.last_update is None:
            return LivenessState.NEVER_SEEN
        return LivenessState.ONLINE if self.online else LivenessState.OFFLINE

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "name": self.name,
            "status": self.status.value,
            "online": self.online,
            "liveness": self.liveness.value,
            "heart_rate": self.latest.heart_rate if self.latest else None,
            "oxygen_saturation": self.latest.oxygen_saturation if self.latest else None,
            "last_update": self.last_update,
            "time_since_update": self.time_since_update,
        }
