#!/usr/bin/env python3
"""Follow one patient's position from the command line.

Observes the patient through the record store (initial fetch, periodic
polls and the MQTT change feed) and prints every accepted position.

Configuration comes from ``MEDIBOT_*`` environment variables; see
``MedibotConfig.from_env``.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pymedibot import MedibotClient, MedibotConfig, MedibotError, ObservedPosition  # noqa: E402
from pymedibot.models import haversine_km  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print live position updates for one patient.")
    parser.add_argument("patient_id", help="Patient row id to observe")
    parser.add_argument(
        "--duration",
        type=float,
        default=0,
        help="Stop after N seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Override MEDIBOT_POLL_INTERVAL in seconds.",
    )
    parser.add_argument("--no-mqtt", action="store_true", help="Rely on polling only.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


def _print_position(position: ObservedPosition) -> None:
    marker = " (placeholder)" if position.is_placeholder else ""
    print(
        f"[watch] {position.last_updated.isoformat()} {position.source.value:<8} "
        f"lat={position.latitude:.6f} lng={position.longitude:.6f}{marker}",
        flush=True,
    )


async def _run(args: argparse.Namespace) -> None:
    overrides: dict[str, object] = {}
    if args.poll_interval is not None:
        overrides["poll_interval"] = args.poll_interval
    if args.no_mqtt:
        overrides["mqtt_enabled"] = False
    config = MedibotConfig.from_env(**overrides)

    async with MedibotClient(config) as client:
        handle = await client.observe(args.patient_id, _print_position)
        try:
            if args.duration > 0:
                await asyncio.sleep(args.duration)
            else:
                await asyncio.Event().wait()
        finally:
            trail = handle.trail()
            current = handle.position
            if trail:
                print(f"[watch] recent trail ({len(trail)} points)")
                for entry in trail:
                    when = entry.recorded_at.isoformat() if entry.recorded_at else "?"
                    away = ""
                    if current is not None:
                        km = haversine_km(current.latitude, current.longitude, entry.latitude, entry.longitude)
                        away = f" {km:.2f}km away"
                    print(f"[watch]   {when} lat={entry.latitude:.6f} lng={entry.longitude:.6f}{away}")
            await client.stop_observing(handle)


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        return 0
    except MedibotError as exc:
        print(f"[watch] {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
