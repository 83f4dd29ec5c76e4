"""Reference slot endpoint (``/rest/v1/<slots_table>``)."""

from __future__ import annotations

import logging

from pydantic import ValidationError

from pyparking._api._common import rows, send_json, table_path
from pyparking._transport import Transport
from pyparking.config import ParkingConfig
from pyparking.models.slot import Slot
from pyparking.session import Session

_logger = logging.getLogger(__name__)


async def list_slots(
    config: ParkingConfig,
    session: Session,
    transport: Transport,
) -> list[Slot]:
    """Fetch the candidate slot set.

    Rows without coordinates cannot be matched and are skipped.
    """
    path = table_path(config.slots_table)
    body = await send_json(
        method="GET",
        path=path,
        config=config,
        session=session,
        transport=transport,
        params=[("select", "*")],
    )
    slots: list[Slot] = []
    for row in rows(body):
        try:
            slots.append(Slot.model_validate(row))
        except ValidationError:
            _logger.warning("Skipping unusable slot row: %s", dict(row))
    _logger.debug("Loaded %d slots from %s", len(slots), path)
    return slots
