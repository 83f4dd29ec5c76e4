"""Authentication token model."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AuthToken(BaseModel):
    """Token grant returned by the auth endpoint.

    Parameters
    ----------
    user_id : str
        The authenticated user's ID (``user.id`` in the response).
    access_token : str
        Bearer token for data requests.
    refresh_token : str
        Token for renewing ``access_token``.
    expires_in : int or None
        Lifetime of ``access_token`` in seconds.
    email : str
        Account email, when reported.
    raw : dict
        Full response for access to additional fields.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    user_id: str
    access_token: str
    refresh_token: str = ""
    expires_in: int | None = None
    email: str = ""
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @model_validator(mode="before")
    @classmethod
    def _flatten_user(cls, values: Any) -> Any:
        if not isinstance(values, dict) or "user_id" in values:
            return values
        user = values.get("user")
        merged = dict(values)
        merged.setdefault("raw", values)
        if isinstance(user, dict):
            merged["user_id"] = user.get("id", "")
            merged["email"] = user.get("email") or ""
        return merged
