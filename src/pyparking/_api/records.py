"""Parking record endpoints (``/rest/v1/<records_table>``).

Every function takes the config, the explicit user session and a
transport; none of them keep state between calls.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime, time, timedelta, tzinfo
from typing import Any

from pydantic import ValidationError

from pyparking._api._common import created_range_params, eq, rows, send_json, table_path
from pyparking._transport import Transport
from pyparking.config import ParkingConfig
from pyparking.exceptions import ParkingApiError
from pyparking.models._base import to_iso
from pyparking.models.record import ParkingRecord, ParkingRecordDraft
from pyparking.session import Session

_logger = logging.getLogger(__name__)

_RETURN_ROW = "return=representation"


def _parse_records(endpoint: str, body: Any) -> list[ParkingRecord]:
    records: list[ParkingRecord] = []
    for row in rows(body):
        try:
            records.append(ParkingRecord.model_validate(row))
        except ValidationError as exc:
            raise ParkingApiError(
                f"Malformed record row from {endpoint}: {exc.errors()[0]['msg']}",
                code="invalid_row",
                endpoint=endpoint,
            ) from exc
    return records


def _single(endpoint: str, body: Any) -> ParkingRecord:
    records = _parse_records(endpoint, body)
    if not records:
        raise ParkingApiError(f"{endpoint} returned no row", code="empty_response", endpoint=endpoint)
    return records[0]


async def create_record(
    config: ParkingConfig,
    session: Session,
    transport: Transport,
    draft: ParkingRecordDraft,
) -> ParkingRecord:
    """Insert an arrival record and return the stored row."""
    path = table_path(config.records_table)
    body = await send_json(
        method="POST",
        path=path,
        config=config,
        session=session,
        transport=transport,
        json_body=[draft.to_insert_payload()],
        prefer=_RETURN_ROW,
    )
    record = _single(path, body)
    _logger.debug("Created record id=%s slot=%s", record.id, record.label)
    return record


async def update_record(
    config: ParkingConfig,
    session: Session,
    transport: Transport,
    record_id: str,
    fields: Mapping[str, Any],
) -> ParkingRecord | None:
    """Patch one record by id.

    Returns the updated row, or ``None`` when no row matched (already
    deleted, or owned by another user).
    """
    path = table_path(config.records_table)
    body = await send_json(
        method="PATCH",
        path=path,
        config=config,
        session=session,
        transport=transport,
        params=[("id", eq(record_id))],
        json_body=dict(fields),
        prefer=_RETURN_ROW,
    )
    records = _parse_records(path, body)
    if not records:
        _logger.debug("Update of record id=%s matched no row", record_id)
        return None
    return records[0]


async def mark_departed(
    config: ParkingConfig,
    session: Session,
    transport: Transport,
    record_id: str,
    *,
    left_at: datetime | None = None,
) -> ParkingRecord | None:
    """Set ``left_at`` (default: now) on one record.

    No check is made that the record is still active; a second call
    simply overwrites the departure time.
    """
    when = left_at if left_at is not None else datetime.now(UTC)
    return await update_record(config, session, transport, record_id, {"left_at": to_iso(when)})


async def delete_record(
    config: ParkingConfig,
    session: Session,
    transport: Transport,
    record_id: str,
) -> None:
    """Delete one record by id."""
    await send_json(
        method="DELETE",
        path=table_path(config.records_table),
        config=config,
        session=session,
        transport=transport,
        params=[("id", eq(record_id))],
    )


async def list_records(
    config: ParkingConfig,
    session: Session,
    transport: Transport,
    user_id: str,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    ascending: bool = False,
) -> list[ParkingRecord]:
    """Records owned by *user_id*, ordered by ``created_at``.

    ``start`` and ``end`` are inclusive bounds on ``created_at``.
    Newest first unless *ascending*.
    """
    path = table_path(config.records_table)
    params: list[tuple[str, str]] = [
        ("select", "*"),
        ("user_id", eq(user_id)),
        *created_range_params(start, end),
        ("order", f"created_at.{'asc' if ascending else 'desc'}"),
    ]
    body = await send_json(
        method="GET",
        path=path,
        config=config,
        session=session,
        transport=transport,
        params=params,
    )
    return _parse_records(path, body)


def day_bounds(day: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    """First and last instant of *day*'s calendar date in *tz*, as UTC."""
    local = day.astimezone(tz)
    start = datetime.combine(local.date(), time.min, tzinfo=tz)
    end = start + timedelta(days=1) - timedelta(microseconds=1)
    return start.astimezone(UTC), end.astimezone(UTC)
