"""CLI entry point: monitor en vivo de una clase."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Optional

from .common.config import get_settings
from .connection import ConnectionManager
from .monitoring import ClassroomMonitor
from .vitals import (
    AlertConfig,
    AlertEvent,
    LivenessConfig,
    ReducerConfig,
    RosterClient,
    RosterFetchError,
)

logger = logging.getLogger(__name__)


def format_table(monitor: ClassroomMonitor) -> str:
    rows = [f"{'STUDENT':<24} {'STATUS':<9} {'HR':>5} {'SPO2':>5}  LAST"]
    for state in sorted(monitor.states, key=lambda s: s.name.lower()):
        hr = state.latest.heart_rate if state.latest and state.latest.heart_rate is not None else None
        spo2 = (
            state.latest.oxygen_saturation
            if state.latest and state.latest.oxygen_saturation is not None
            else None
        )
        rows.append(
            f"{state.name[:24]:<24} {state.status.value:<9} "
            f"{'-' if hr is None else f'{hr:.0f}':>5} "
            f"{'-' if spo2 is None else f'{spo2:.0f}':>5}  "
            f"{state.time_since_update or 'never'}"
        )
    return "\n".join(rows)


async def watch(classroom_id: str, interval: float, duration: Optional[float]) -> int:
    settings = get_settings()
    manager = ConnectionManager.from_settings(settings)
    monitor = ClassroomMonitor(
        manager,
        roster_client=RosterClient.from_settings(settings),
        reducer_config=ReducerConfig.from_env(),
        liveness_config=LivenessConfig.from_env(),
        alert_config=AlertConfig.from_env(),
    )

    def on_alert(event: AlertEvent) -> None:
        logger.warning("ALERT %s: %s", event.student_name, event.alert_message)

    monitor.add_alert_listener(on_alert)

    try:
        await monitor.select_classroom(classroom_id)
    except RosterFetchError as e:
        logger.error("%s", e)
        return 1

    monitor.start()
    logger.info("Watching classroom %s via %s", classroom_id, settings.ws_url)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + duration if duration else None
    try:
        while deadline is None or loop.time() < deadline:
            await asyncio.sleep(interval)
            logger.info(
                "connected=%s alerted=%d\n%s",
                monitor.connected, len(monitor.correlator.alerted), format_table(monitor),
            )
            if manager.retries_exhausted:
                logger.error("Reconnection attempts exhausted, giving up")
                return 2
    finally:
        monitor.stop()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    p = argparse.ArgumentParser(prog="vitals-monitor", description="Real-time classroom vitals monitor")
    sub = p.add_subparsers(dest="command", required=True)

    w = sub.add_parser("watch", help="stream live vitals for a classroom")
    w.add_argument("--classroom", required=True, help="classroom id")
    w.add_argument("--interval", type=float, default=10.0, help="seconds between status tables")
    w.add_argument("--duration", type=float, default=None, help="stop after N seconds")

    args = p.parse_args(argv)

    if args.command == "watch":
        try:
            return asyncio.run(watch(args.classroom, args.interval, args.duration))
        except KeyboardInterrupt:
            return 0
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
