#!/usr/bin/env python3
"""Dump everything pyparking can fetch for one account.

Logs in, lists the reference slots, the user's records (all, today,
today's schedule) and the derived statistics, printing parsed fields
next to the raw rows so schema drift is easy to spot.

Usage
-----
Set environment variables and run::

    export PARKING_URL="https://<project>.supabase.co"
    export PARKING_API_KEY="<anon key>"
    export PARKING_EMAIL="you@example.com"
    export PARKING_PASSWORD="your-password"
    python scripts/dump_records.py

Options::

    --json               Output as machine-readable JSON
    --output FILE        Write output to FILE instead of stdout
    --skip-slots         Skip the slots table
    --skip-stats         Skip statistics
    --follow SECONDS     Afterwards, print record changes for SECONDS
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyparking import ParkingClient, ParkingConfig, ParkingError  # noqa: E402
from pyparking.durations import format_duration, get_duration  # noqa: E402
from pyparking.models import ParkingRecord  # noqa: E402
from pyparking.stats import is_no_data  # noqa: E402

# ── helpers ──────────────────────────────────────────────────


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _record_line(record: ParkingRecord) -> str:
    status = "active" if record.is_active else get_duration(record.created_at, record.left_at)
    created = record.created_at.isoformat() if record.created_at else "?"
    return f"  {record.id:<38} {record.label:<16} {created}  [{status}]"


def _print_records(title: str, records: list[ParkingRecord], out: list[str]) -> list[dict[str, Any]]:
    out.append(_section(f"{title} ({len(records)})"))
    if not records:
        out.append("  (none)")
    for record in records:
        out.append(_record_line(record))
    return [{"parsed": r.model_dump(mode="json", exclude={"raw"}), "raw": r.raw} for r in records]


def _display(value: str | None) -> str:
    return "No data available" if is_no_data(value) else str(value)


# ── main ─────────────────────────────────────────────────────


async def dump_account(client: ParkingClient, user_id: str, *, args: argparse.Namespace) -> dict[str, Any]:
    """Fetch and dump all data for the logged-in user."""
    out: list[str] = []
    data: dict[str, Any] = {}

    if not args.skip_slots:
        out.append(_section("SLOTS"))
        try:
            slots = await client.list_slots()
            for slot in slots:
                out.append(
                    f"  {slot.label:<16} lat={slot.latitude:.6f} lon={slot.longitude:.6f} elev={slot.elevation:g}"
                )
            data["slots"] = [{"parsed": s.model_dump(mode="json", exclude={"raw"}), "raw": s.raw} for s in slots]
        except ParkingError as exc:
            out.append(f"  !! slots failed: {exc}")
            data["slots"] = {"error": str(exc), "traceback": traceback.format_exc()}

    for key, title, fetch in (
        ("records", "RECORDS", lambda: client.list_records(user_id)),
        ("today", "TODAY (UTC)", lambda: client.get_today_records(user_id)),
        ("schedule", f"SCHEDULE ({client.config.time_zone})", lambda: client.get_daily_schedule(user_id)),
    ):
        try:
            data[key] = _print_records(title, await fetch(), out)
        except ParkingError as exc:
            out.append(_section(title))
            out.append(f"  !! {key} failed: {exc}")
            data[key] = {"error": str(exc), "traceback": traceback.format_exc()}

    if not args.skip_stats:
        out.append(_section("STATS"))
        try:
            stats = await client.get_stats(user_id)
            out.append(f"  total time      : {format_duration(stats.total_duration_minutes)}")
            out.append(f"  sessions        : {stats.total_sessions} ({stats.active_sessions} active)")
            out.append(f"  average         : {format_duration(stats.average_duration_minutes)}")
            out.append(f"  preferred slot  : {_display(stats.preferred_slot)}")
            out.append(f"  preferred time  : {_display(stats.preferred_time_range)}")
            for usage in stats.top_slots:
                bar = "#" * max(round(usage.width_percent / 5), 1)
                out.append(f"    {usage.label:<16} {usage.count:>4}  {bar}")
            data["stats"] = stats.model_dump(mode="json", exclude={"history"})
        except ParkingError as exc:
            out.append(f"  !! stats failed: {exc}")
            data["stats"] = {"error": str(exc), "traceback": traceback.format_exc()}

    if not args.json_mode:
        print("\n".join(out))
    return data


async def follow_changes(client: ParkingClient, user_id: str, seconds: float) -> list[dict[str, Any]]:
    """Print record changes until *seconds* elapse."""
    seen: list[dict[str, Any]] = []
    print(_section(f"CHANGES (following for {seconds:g}s)"), file=sys.stderr)

    async def _consume() -> None:
        async with await client.subscribe_changes(user_id) as changes:
            async for event in changes:
                print(f"  {event.change_type:<6} id={event.record_id} at {event.commit_timestamp}", file=sys.stderr)
                seen.append(event.model_dump(mode="json"))

    try:
        await asyncio.wait_for(_consume(), timeout=seconds)
    except TimeoutError:
        pass
    return seen


async def main() -> None:
    parser = argparse.ArgumentParser(
        description="Dump all data pyparking can fetch for debugging / development.",
    )
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--output", "-o", help="Write output to FILE instead of stdout")
    parser.add_argument("--skip-slots", action="store_true", help="Skip the slots table")
    parser.add_argument("--skip-stats", action="store_true", help="Skip statistics")
    parser.add_argument("--follow", type=float, default=0.0, metavar="SECONDS", help="Print record changes afterwards")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    config = ParkingConfig.from_env()
    result: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "base_url": config.base_url,
    }

    out: list[str] = [_section("pyparking dump_records")]
    out.append(f"  time      : {result['timestamp']}")
    out.append(f"  backend   : {config.base_url}")

    async with ParkingClient(config) as client:
        session = await client.login()
        out.append(f"  user_id   : {session.user_id}")
        result["user_id"] = session.user_id
        if not args.json_mode:
            print("\n".join(out))

        result.update(await dump_account(client, session.user_id, args=args))

        if args.follow > 0:
            result["changes"] = await follow_changes(client, session.user_id, args.follow)

    # ── Output ──
    payload = json.dumps(result, indent=2, default=str, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(payload, encoding="utf-8")
        print(f"JSON written to {args.output}", file=sys.stderr)
    elif args.json_mode:
        print(payload)


if __name__ == "__main__":
    asyncio.run(main())
