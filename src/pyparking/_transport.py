"""HTTP transport for the hosted backend's REST and auth APIs."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from pyparking._constants import USER_AGENT
from pyparking._redact import redact_for_log
from pyparking.config import ParkingConfig
from pyparking.exceptions import ParkingTransportError

_logger = logging.getLogger(__name__)

QueryParams = Sequence[tuple[str, str]]


@dataclass(frozen=True)
class RestResponse:
    """Status code plus decoded JSON body (``None`` for empty bodies)."""

    status: int
    body: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`RestTransport`) concrete.
    """

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: QueryParams | None = None,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> RestResponse:
        ...


class RestTransport:
    """JSON-over-HTTP transport bound to one backend project."""

    def __init__(
        self,
        config: ParkingConfig,
        http_session: aiohttp.ClientSession,
    ) -> None:
        self._config = config
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=config.request_timeout)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: QueryParams | None = None,
        json_body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> RestResponse:
        """Send a request and decode the JSON reply.

        Non-2xx statuses are returned, not raised: the endpoint layer
        maps backend error bodies to typed exceptions.  Network failures
        and undecodable bodies raise :class:`ParkingTransportError`.
        """
        request_headers: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
            "apikey": self._config.api_key,
        }
        if headers:
            request_headers.update(headers)

        url = f"{self._config.base_url}{path}"
        data = json.dumps(json_body, separators=(",", ":")) if json_body is not None else None
        if data is not None:
            request_headers["content-type"] = "application/json"

        _logger.debug(
            "%s %s params=%s body=%s",
            method,
            url,
            list(params or ()),
            redact_for_log(json_body),
        )

        try:
            async with self._http.request(
                method,
                url,
                params=list(params) if params else None,
                data=data,
                headers=request_headers,
                timeout=self._timeout,
            ) as resp:
                status = resp.status
                text = await resp.text()
        except TimeoutError as exc:
            raise ParkingTransportError(
                f"Request to {path} timed out after {self._config.request_timeout}s",
                endpoint=path,
            ) from exc
        except aiohttp.ClientError as exc:
            raise ParkingTransportError(
                f"Request to {path} failed: {exc}",
                endpoint=path,
            ) from exc

        if not text.strip():
            return RestResponse(status=status, body=None)

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ParkingTransportError(
                f"Invalid JSON from {path} (HTTP {status}): {text[:200]}",
                status_code=status,
                endpoint=path,
            ) from exc

        _logger.debug("HTTP %s from %s body=%s", status, path, redact_for_log(body))
        return RestResponse(status=status, body=body)
