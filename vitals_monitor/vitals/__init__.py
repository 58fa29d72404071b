"""Estado de signos vitales: modelos, reducer, liveness y alertas."""

from .alerts import AlertConfig, AlertCorrelator
from .liveness import LivenessConfig, LivenessMonitor, format_time_since
from .models import (
    AlertEvent,
    EntityVitalsState,
    LivenessState,
    RosterEntry,
    VitalsSample,
    VitalsStatus,
)
from .reducer import ReducerConfig, VitalsStreamReducer
from .roster import RosterClient, RosterFetchError
from .status import derive_status
from .store import StateChange, VitalsStateStore
from .validators import ValidationResult, validate_alert_event, validate_vitals_sample

__all__ = [
    "AlertConfig",
    "AlertCorrelator",
    "LivenessConfig",
    "LivenessMonitor",
    "format_time_since",
    "AlertEvent",
    "EntityVitalsState",
    "LivenessState",
    "RosterEntry",
    "VitalsSample",
    "VitalsStatus",
    "ReducerConfig",
    "VitalsStreamReducer",
    "RosterClient",
    "RosterFetchError",
    "derive_status",
    "StateChange",
    "VitalsStateStore",
    "ValidationResult",
    "validate_alert_event",
    "validate_vitals_sample",
]
