"""Chequeo de frecuencia cardiaca ajustado por edad.

Umbral = 85% de la FC máxima estimada (220 - edad), truncado a entero.
Sin perfil o sin edad no hay chequeo.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Optional

from prometheus_client import Counter

from ..vitals import AlertEvent, VitalsSample

logger = logging.getLogger(__name__)

MAX_HEART_RATE_RATIO = 0.85

HEART_RATE_CHECKS = Counter(
    'vitals_relay_heart_rate_checks_total',
    'Heart rate checks run by the relay',
    ['result']  # ok, alert, no_profile
)


def threshold_for_age(age: int) -> int:
    return int((220 - age) * MAX_HEART_RATE_RATIO)


@dataclass(frozen=True)
class StudentProfile:
    student_id: str
    first_name: str = ""
    last_name: str = ""
    age: Optional[int] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ProfileDirectory:
    """Perfiles de alumnos indexados por physicalId."""

    def __init__(self, profiles: Iterable[StudentProfile] = ()):
        self._profiles: Dict[str, StudentProfile] = {}
        for profile in profiles:
            self.add(profile)

    def add(self, profile: StudentProfile) -> None:
        self._profiles[profile.student_id] = profile

    def get(self, student_id: str) -> Optional[StudentProfile]:
        return self._profiles.get(student_id)

    def __len__(self) -> int:
        return len(self._profiles)

    @classmethod
    def load_json(cls, path: str) -> "ProfileDirectory":
        """Carga ``[{"physicalId", "firstName", "lastName", "age"}, ...]``."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        records = data.get("students", []) if isinstance(data, dict) else data

        profiles = []
        for record in records:
            student_id = record.get("physicalId") or record.get("studentId")
            if not student_id:
                logger.warning("[RELAY] Profile without id skipped: %r", record)
                continue
            age = record.get("age")
            profiles.append(StudentProfile(
                student_id=str(student_id),
                first_name=record.get("firstName") or "",
                last_name=record.get("lastName") or "",
                age=int(age) if age is not None else None,
            ))
        logger.info("[RELAY] Loaded %d student profiles from %s", len(profiles), path)
        return cls(profiles)

    @classmethod
    def from_env(cls) -> "ProfileDirectory":
        path = os.getenv("RELAY_PROFILES_FILE")
        if path and Path(path).exists():
            return cls.load_json(path)
        return cls()


class HeartRateMonitor:
    def __init__(self, profiles: ProfileDirectory):
        self._profiles = profiles

    @property
    def profiles(self) -> ProfileDirectory:
        return self._profiles

    def check(self, sample: VitalsSample) -> Optional[AlertEvent]:
        """Devuelve la alerta si la FC supera el umbral del alumno."""
        if sample.heart_rate is None:
            return None

        profile = self._profiles.get(sample.student_id)
        if profile is None or profile.age is None:
            HEART_RATE_CHECKS.labels(result='no_profile').inc()
            return None

        threshold = threshold_for_age(profile.age)
        if sample.heart_rate <= threshold:
            HEART_RATE_CHECKS.labels(result='ok').inc()
            return None

        HEART_RATE_CHECKS.labels(result='alert').inc()
        heart_rate = int(sample.heart_rate)
        message = (
            f"ALERT: Student {profile.first_name} {profile.last_name}'s heart rate "
            f"({heart_rate} bpm) exceeds safety threshold ({threshold} bpm)"
        )
        return AlertEvent(
            student_id=sample.student_id,
            student_name=profile.full_name or "Unknown Student",
            current_heart_rate=sample.heart_rate,
            threshold_heart_rate=threshold,
            alert_message=message,
            timestamp=sample.timestamp or datetime.now(timezone.utc).isoformat(),
            classroom_id=sample.classroom_id,
        )
