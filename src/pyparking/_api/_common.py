"""Shared helpers for endpoint modules.

This module centralizes the most repeated patterns:
- building authenticated headers and table paths
- posting a request and mapping backend error bodies to exceptions
- building PostgREST filter parameters

It is internal to pyparking and may change at any time.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pyparking._constants import REST_PREFIX, SESSION_EXPIRED_CODES
from pyparking._transport import QueryParams, RestResponse, Transport
from pyparking.config import ParkingConfig
from pyparking.exceptions import (
    ParkingApiError,
    ParkingAuthenticationError,
    ParkingSessionExpiredError,
)
from pyparking.models._base import to_iso
from pyparking.session import Session


def table_path(table: str) -> str:
    return f"{REST_PREFIX}/{table}"


def eq(value: Any) -> str:
    return f"eq.{value}"


def created_range_params(start: datetime | None, end: datetime | None) -> list[tuple[str, str]]:
    """Inclusive ``created_at`` bounds as PostgREST filters."""
    params: list[tuple[str, str]] = []
    if start is not None:
        params.append(("created_at", f"gte.{to_iso(start)}"))
    if end is not None:
        params.append(("created_at", f"lte.{to_iso(end)}"))
    return params


def _error_fields(body: Any) -> tuple[str, str]:
    """Extract (code, message) from PostgREST or auth error bodies."""
    if not isinstance(body, dict):
        return "", str(body or "")
    code = body.get("code") or body.get("error_code") or body.get("error") or ""
    message = (
        body.get("message")
        or body.get("msg")
        or body.get("error_description")
        or body.get("details")
        or ""
    )
    return str(code), str(message)


def raise_for_status(endpoint: str, response: RestResponse) -> None:
    """Raise the exception matching a failed response; no-op on success."""
    if response.ok:
        return
    code, message = _error_fields(response.body)
    detail = f"{endpoint} failed: HTTP {response.status} code={code} message={message}"
    if response.status == 401 or code in SESSION_EXPIRED_CODES:
        raise ParkingSessionExpiredError(detail, code=code, status_code=response.status, endpoint=endpoint)
    if response.status == 403:
        raise ParkingAuthenticationError(detail, code=code, status_code=response.status, endpoint=endpoint)
    raise ParkingApiError(detail, code=code, status_code=response.status, endpoint=endpoint)


async def send_json(
    *,
    method: str,
    path: str,
    config: ParkingConfig,
    session: Session,
    transport: Transport,
    params: QueryParams | None = None,
    json_body: Any = None,
    prefer: str | None = None,
) -> Any:
    """Send an authenticated request and return the decoded body.

    This is a thin helper for endpoint modules; it returns `Any` since
    the backend answers with lists, objects or nothing at all.
    """
    headers: dict[str, str] = session.auth_headers(config.api_key)
    if prefer:
        headers["prefer"] = prefer
    response = await transport.request(
        method,
        path,
        params=params,
        json_body=json_body,
        headers=headers,
    )
    raise_for_status(path, response)
    return response.body


def rows(body: Any) -> list[Mapping[str, Any]]:
    """Coerce a response body to a list of row dicts."""
    if isinstance(body, list):
        return [row for row in body if isinstance(row, Mapping)]
    if isinstance(body, Mapping):
        return [body]
    return []
