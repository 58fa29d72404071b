"""Relay de fan-out: recibe muestras y las re-emite por topic."""

from .heart_rate import (
    HeartRateMonitor,
    ProfileDirectory,
    StudentProfile,
    threshold_for_age,
)
from .hub import RelayHub, RelaySession

__all__ = [
    "HeartRateMonitor",
    "ProfileDirectory",
    "StudentProfile",
    "threshold_for_age",
    "RelayHub",
    "RelaySession",
]
