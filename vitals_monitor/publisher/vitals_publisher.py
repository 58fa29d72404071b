"""Publicador periódico de signos vitales (lado del alumno).

Lee la última lectura de una fuente (wearable, Health Connect, simulador) y
la publica en ``/app/vitals/send`` con el contexto del ejercicio actual. Si
la conexión está caída, el ``ConnectionManager`` la deja en su buffer.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from prometheus_client import Counter

from ..connection import VITALS_SEND_DESTINATION, ConnectionManager
from ..vitals import VitalsSample, validate_vitals_sample

logger = logging.getLogger(__name__)

SAMPLES_PUBLISHED = Counter(
    'vitals_publisher_samples_total',
    'Samples handed to the connection manager by the publisher',
    ['status']  # sent, buffered, skipped, invalid
)

Reading = Union[VitalsSample, Dict[str, Any], None]
VitalsSource = Callable[[], Union[Reading, Awaitable[Reading]]]


@dataclass
class PublisherConfig:
    interval: float = 5.0  # segundos entre lecturas
    error_backoff: float = 5.0

    @classmethod
    def from_env(cls) -> "PublisherConfig":
        return cls(
            interval=float(os.getenv("VITALS_PUBLISH_INTERVAL", "5")),
            error_backoff=float(os.getenv("VITALS_PUBLISH_ERROR_BACKOFF", "5")),
        )


@dataclass
class ExerciseContext:
    classroom_id: str
    task_id: str
    is_pre_activity: bool = False
    is_post_activity: bool = False


class VitalsPublisher:
    """Publica lecturas periódicas del alumno.

    Uso:
        publisher = VitalsPublisher(manager, student_id="STU-001")
        publisher.set_exercise_context("CLS-42", "TSK-7", is_pre_activity=True)
        await publisher.start(read_latest_vitals)
    """

    def __init__(
        self,
        manager: ConnectionManager,
        student_id: str,
        config: Optional[PublisherConfig] = None,
    ):
        self._manager = manager
        self._student_id = student_id
        self._config = config or PublisherConfig()

        self._context: Optional[ExerciseContext] = None
        self._source: Optional[VitalsSource] = None
        self._running = False
        self._task: Optional[asyncio.Task] = None

        self._published = 0
        self._skipped = 0
        self._last_sample: Optional[VitalsSample] = None

    def set_exercise_context(
        self,
        classroom_id: str,
        task_id: str,
        is_pre_activity: bool = False,
        is_post_activity: bool = False,
    ) -> None:
        self._context = ExerciseContext(classroom_id, task_id, is_pre_activity, is_post_activity)
        logger.info(
            "[PUBLISHER] Exercise context set: classroom=%s task=%s pre=%s post=%s",
            classroom_id, task_id, is_pre_activity, is_post_activity,
        )

    def clear_exercise_context(self) -> None:
        self._context = None

    async def start(self, source: VitalsSource) -> None:
        """Inicia el loop de publicación en background."""
        if self._running:
            return
        self._source = source
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("[PUBLISHER] Started with interval %.1fs", self._config.interval)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("[PUBLISHER] Stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                reading = self._source()
                if inspect.isawaitable(reading):
                    reading = await reading
                if reading is None:
                    logger.debug("[PUBLISHER] No vitals data available to send")
                else:
                    self.publish_sample(reading)
                await asyncio.sleep(self._config.interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("[PUBLISHER] Error in monitoring loop: %s", e)
                await asyncio.sleep(self._config.error_backoff)

    def publish_sample(self, reading: Union[VitalsSample, Dict[str, Any]]) -> bool:
        """Completa la lectura con el contexto y la publica.

        Returns:
            True si se envió ya; False si quedó en buffer o se descartó
        """
        if self._context is None:
            self._skipped += 1
            SAMPLES_PUBLISHED.labels(status='skipped').inc()
            logger.warning("[PUBLISHER] Cannot send vitals, no exercise context")
            return False

        data = reading.to_wire() if isinstance(reading, VitalsSample) else dict(reading)
        data.update({
            "studentId": self._student_id,
            "classroomId": self._context.classroom_id,
            "taskId": self._context.task_id,
            "isPreActivity": self._context.is_pre_activity,
            "isPostActivity": self._context.is_post_activity,
        })
        data.setdefault("timestamp", datetime.now(timezone.utc).isoformat())

        result = validate_vitals_sample(data)
        if not result.valid:
            self._skipped += 1
            SAMPLES_PUBLISHED.labels(status='invalid').inc()
            logger.warning("[PUBLISHER] Reading rejected: %s", result.error)
            return False

        sample = result.payload
        sent = self._manager.publish(VITALS_SEND_DESTINATION, sample.to_wire())
        self._published += 1
        self._last_sample = sample
        SAMPLES_PUBLISHED.labels(status='sent' if sent else 'buffered').inc()
        return sent

    @property
    def running(self) -> bool:
        return self._running

    @property
    def context(self) -> Optional[ExerciseContext]:
        return self._context

    @property
    def last_sample(self) -> Optional[VitalsSample]:
        return self._last_sample

    @property
    def stats(self) -> dict:
        return {
            "running": self._running,
            "published": self._published,
            "skipped": self._skipped,
            "connection": self._manager.state.value,
        }
