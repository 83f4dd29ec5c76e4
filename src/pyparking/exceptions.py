"""Custom exception hierarchy for pyparking."""

from __future__ import annotations

from typing import Any


class ParkingError(Exception):
    """Base exception for all pyparking errors."""


class ParkingConfigError(ParkingError):
    """Invalid or missing configuration."""


class ParkingValidationError(ParkingError, ValueError):
    """Missing or empty user input.

    Raised before any I/O is attempted; the caller's state is unchanged.
    """

    def __init__(self, message: str, *, field: str = "") -> None:
        self.field = field
        super().__init__(message)


class LocationUnavailableError(ParkingError):
    """No usable position (permission, hardware, timeout or not yet received)."""

    def __init__(self, message: str, *, reason: Any = None) -> None:
        self.reason = reason
        super().__init__(message)


class NoCandidateSlotError(ParkingError):
    """The candidate slot set is empty; the caller should fall back to manual entry."""


class ParkingTransportError(ParkingError):
    """HTTP-level failure (network, timeout, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class ParkingApiError(ParkingError):
    """Backend rejected the request (non-2xx status with an error body)."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class ParkingAuthenticationError(ParkingApiError):
    """Login failed or no usable credentials."""


class ParkingSessionExpiredError(ParkingAuthenticationError):
    """Access token rejected by the backend.

    The client catches this internally to renew the session and retry
    the call once.
    """


class ParkingRealtimeError(ParkingError):
    """Change-notification channel could not be opened or joined."""


class PersistenceError(ParkingError):
    """A create/update/delete call failed.

    The record is not assumed to have been written.  The original
    transport or API error is chained as ``__cause__``.
    """

    def __init__(self, message: str, *, operation: str = "") -> None:
        self.operation = operation
        super().__init__(message)


class ParkingStateError(ParkingError):
    """Operation not allowed in the current lifecycle state (e.g. a save is in flight)."""
