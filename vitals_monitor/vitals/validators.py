"""Validadores de payloads del socket.

Valida y transforma mensajes JSON al formato interno. Nunca lanzan: el
resultado indica si el payload es válido y por qué no.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, TypeVar

from pydantic import ValidationError

from .models import AlertEvent, VitalsSample, sanitize_reading

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ValidationResult(Generic[T]):
    """Resultado de validación."""

    valid: bool
    payload: Optional[T] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


def _describe(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "payload"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def validate_vitals_sample(data: Any) -> ValidationResult[VitalsSample]:
    """Valida un payload de signos vitales.

    Args:
        data: Diccionario con datos del mensaje (camelCase o snake_case)

    Returns:
        ValidationResult con la muestra validada o el error
    """
    if isinstance(data, VitalsSample):
        return ValidationResult(valid=True, payload=data)
    if not isinstance(data, dict):
        return ValidationResult(valid=False, error=f"Expected object, got {type(data).__name__}")

    warnings = []
    data = dict(data)

    # El cliente móvil envía physicalId = studentId; se acepta como respaldo.
    if data.get("studentId") is None and data.get("student_id") is None and data.get("physicalId"):
        data["studentId"] = data["physicalId"]
        warnings.append("Used physicalId as studentId")

    # Una lectura inválida se descarta sola; la muestra sigue valiendo como
    # señal de vida si queda otra lectura.
    for alias, name in (("heartRate", "heart_rate"), ("oxygenSaturation", "oxygen_saturation")):
        key = alias if alias in data else name
        if key not in data:
            continue
        value, reason = sanitize_reading(alias, data[key])
        if reason:
            data[key] = value
            warnings.append(f"Dropped {reason}")
            logger.debug("[VITALS_VALIDATOR] Dropped reading: %s", reason)

    try:
        sample = VitalsSample.model_validate(data)
    except ValidationError as e:
        error = _describe(e)
        logger.warning("[VITALS_VALIDATOR] Validation failed: %s", error)
        return ValidationResult(valid=False, error=error)

    return ValidationResult(valid=True, payload=sample, warnings=warnings)


def validate_alert_event(data: Any) -> ValidationResult[AlertEvent]:
    """Valida un payload de alerta de frecuencia cardiaca."""
    if isinstance(data, AlertEvent):
        return ValidationResult(valid=True, payload=data)
    if not isinstance(data, dict):
        return ValidationResult(valid=False, error=f"Expected object, got {type(data).__name__}")

    try:
        event = AlertEvent.model_validate(data)
    except ValidationError as e:
        error = _describe(e)
        logger.warning("[ALERT_VALIDATOR] Heart rate alert missing required fields: %s", error)
        return ValidationResult(valid=False, error=error)

    return ValidationResult(valid=True, payload=event)
