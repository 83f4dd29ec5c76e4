"""Explicit user context for authenticated API calls."""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field

#: Default access-token time-to-live in seconds (1 hour), used when the
#: backend does not report ``expires_in``.
DEFAULT_SESSION_TTL: float = 3600.0

# Renew slightly before the backend would reject the token.
_EXPIRY_MARGIN: float = 30.0


class Session(BaseModel):
    """Immutable user context created at login and dropped at logout.

    Every operation that needs an identity receives this object (or its
    ``user_id``) explicitly; there is no module-level "current user".

    Parameters
    ----------
    user_id : str
        The authenticated user's ID.
    access_token : str
        Bearer token sent with every data request.
    refresh_token : str
        Token exchanged for a new access token once this one expires.
    email : str
        Account email, informational.
    created_at : float
        Monotonic timestamp (``time.monotonic()``) when the session
        was created.  Defaults to *now* if not provided.
    ttl : float
        Time-to-live in seconds.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        validate_default=True,
        str_strip_whitespace=True,
    )

    user_id: str
    access_token: str
    refresh_token: str = ""
    email: str = ""
    created_at: float = Field(default_factory=time.monotonic)
    ttl: float = DEFAULT_SESSION_TTL

    def auth_headers(self, api_key: str) -> dict[str, str]:
        """Headers identifying both the project and the user."""
        return {
            "apikey": api_key,
            "authorization": f"Bearer {self.access_token}",
        }

    @property
    def is_expired(self) -> bool:
        """Whether the access token has (almost) exceeded its TTL."""
        return (time.monotonic() - self.created_at) >= max(self.ttl - _EXPIRY_MARGIN, 0.0)

    @property
    def age(self) -> float:
        """Seconds since the session was created."""
        return time.monotonic() - self.created_at
