"""Derivación de estado a partir de la lectura cruda.

Función pura del valor. Nunca devuelve WARNING: ese nivel lo decide el
backend con su umbral ajustado por edad y lo aplica el correlador.
"""

from __future__ import annotations

from typing import Optional

from .models import VitalsSample, VitalsStatus

RESTING_HEART_RATE_THRESHOLD = 100.0  # bpm, límite superior en reposo
NORMAL_OXYGEN_SATURATION = 95.0  # %


def derive_status(sample: Optional[VitalsSample]) -> VitalsStatus:
    if sample is None:
        return VitalsStatus.INACTIVE

    if sample.heart_rate is not None:
        if sample.heart_rate < RESTING_HEART_RATE_THRESHOLD:
            return VitalsStatus.EXCELLENT
        return VitalsStatus.GOOD

    if sample.oxygen_saturation is not None:
        if sample.oxygen_saturation >= NORMAL_OXYGEN_SATURATION:
            return VitalsStatus.EXCELLENT
        return VitalsStatus.GOOD

    return VitalsStatus.INACTIVE
