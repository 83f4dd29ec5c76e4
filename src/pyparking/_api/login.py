"""Auth endpoints.

Endpoints:
  - /auth/v1/token?grant_type=password
  - /auth/v1/token?grant_type=refresh_token
  - /auth/v1/logout
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from pyparking._constants import AUTH_PREFIX
from pyparking._redact import redact_for_log
from pyparking._transport import RestResponse, Transport
from pyparking.config import ParkingConfig
from pyparking.exceptions import ParkingAuthenticationError
from pyparking.models.token import AuthToken
from pyparking.session import Session

_logger = logging.getLogger(__name__)

TOKEN_ENDPOINT = f"{AUTH_PREFIX}/token"
LOGOUT_ENDPOINT = f"{AUTH_PREFIX}/logout"


def _parse_token_response(endpoint: str, response: RestResponse) -> AuthToken:
    body: Any = response.body
    if not response.ok:
        message = ""
        code = ""
        if isinstance(body, dict):
            code = str(body.get("error_code") or body.get("error") or body.get("code") or "")
            message = str(body.get("error_description") or body.get("msg") or body.get("message") or "")
        raise ParkingAuthenticationError(
            f"Login failed: HTTP {response.status} code={code} message={message}",
            code=code,
            status_code=response.status,
            endpoint=endpoint,
        )
    if not isinstance(body, dict):
        raise ParkingAuthenticationError(
            "Login response is not an object",
            code="invalid_response",
            status_code=response.status,
            endpoint=endpoint,
        )

    _logger.debug("Token response: %s", redact_for_log(body))
    try:
        token = AuthToken.model_validate(body)
    except ValidationError as exc:
        raise ParkingAuthenticationError(
            "Login response is missing user or token fields",
            code="invalid_response",
            status_code=response.status,
            endpoint=endpoint,
        ) from exc
    if not token.user_id or not token.access_token:
        raise ParkingAuthenticationError(
            "Login response is missing user or token fields",
            code="invalid_response",
            status_code=response.status,
            endpoint=endpoint,
        )
    return token


async def login_with_password(config: ParkingConfig, transport: Transport) -> AuthToken:
    """Exchange the configured email/password for a token grant."""
    if not config.email or not config.password:
        raise ParkingAuthenticationError("email and password are required to log in", code="missing_credentials")
    response = await transport.request(
        "POST",
        TOKEN_ENDPOINT,
        params=[("grant_type", "password")],
        json_body={"email": config.email, "password": config.password},
    )
    return _parse_token_response(TOKEN_ENDPOINT, response)


async def refresh_token(config: ParkingConfig, transport: Transport, refresh: str) -> AuthToken:
    """Exchange a refresh token for a new grant."""
    response = await transport.request(
        "POST",
        TOKEN_ENDPOINT,
        params=[("grant_type", "refresh_token")],
        json_body={"refresh_token": refresh},
    )
    return _parse_token_response(TOKEN_ENDPOINT, response)


async def logout(config: ParkingConfig, session: Session, transport: Transport) -> None:
    """Revoke the session's refresh token server-side."""
    response = await transport.request(
        "POST",
        LOGOUT_ENDPOINT,
        headers=session.auth_headers(config.api_key),
    )
    if not response.ok and response.status != 401:
        _logger.warning("Logout returned HTTP %s", response.status)


def session_from_token(config: ParkingConfig, token: AuthToken) -> Session:
    """Build the explicit user context from a token grant."""
    if token.expires_in:
        ttl = float(token.expires_in)
    elif config.session_ttl > 0:
        ttl = config.session_ttl
    else:
        ttl = float("inf")
    return Session(
        user_id=token.user_id,
        access_token=token.access_token,
        refresh_token=token.refresh_token,
        email=token.email,
        ttl=ttl,
    )
