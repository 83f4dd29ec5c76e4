"""High-level async client for the hosted parking backend."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import UTC, datetime, tzinfo
from typing import Any, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import aiohttp

from pyparking._api import login as _login_api
from pyparking._api import records as _records_api
from pyparking._api import slots as _slots_api
from pyparking._realtime import ChangeSubscription
from pyparking._transport import RestTransport, Transport
from pyparking.config import ParkingConfig
from pyparking.exceptions import (
    ParkingAuthenticationError,
    ParkingConfigError,
    ParkingError,
    ParkingRealtimeError,
    ParkingSessionExpiredError,
)
from pyparking.lifecycle import ParkingSessionManager
from pyparking.models.record import ParkingRecord, ParkingRecordDraft
from pyparking.models.slot import Slot
from pyparking.models.stats import StatsSnapshot
from pyparking.session import Session
from pyparking.stats import StatsMonitor, derive_stats

_logger = logging.getLogger(__name__)

T = TypeVar("T")


def resolve_time_zone(name: str) -> tzinfo:
    """Resolve an IANA zone name; ``"UTC"`` needs no tz database."""
    if name.upper() == "UTC":
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ParkingConfigError(f"Unknown time zone: {name!r}") from exc


class ParkingClient:
    """Async client for the parking backend.

    Implements the record store used by :class:`ParkingSessionManager`
    and opens change-notification subscriptions.

    Usage::

        async with ParkingClient(config) as client:
            session = await client.login()
            slots = await client.list_slots()
            records = await client.list_records(session.user_id)
    """

    def __init__(
        self,
        config: ParkingConfig,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport: Transport | None = None
        self._session: Session | None = None
        self._subscriptions: list[ChangeSubscription] = []
        self._tz = resolve_time_zone(config.time_zone)

    @property
    def config(self) -> ParkingConfig:
        return self._config

    @property
    def session(self) -> Session | None:
        """The current user context, ``None`` before login or after logout."""
        return self._session

    @property
    def time_zone(self) -> tzinfo:
        return self._tz

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ParkingClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._transport = RestTransport(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close_subscriptions()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._transport = None

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def login(self) -> Session:
        """Authenticate with the configured email and password."""
        transport = self._require_transport()
        token = await _login_api.login_with_password(self._config, transport)
        self._session = _login_api.session_from_token(self._config, token)
        _logger.info("Logged in as user %s", self._session.user_id)
        return self._session

    async def refresh(self) -> Session:
        """Renew the access token with the refresh token, falling back to login."""
        transport = self._require_transport()
        current = self._session
        if current is None or not current.refresh_token:
            return await self.login()
        try:
            token = await _login_api.refresh_token(self._config, transport, current.refresh_token)
        except ParkingAuthenticationError:
            _logger.debug("Token refresh rejected; logging in again")
            return await self.login()
        self._session = _login_api.session_from_token(self._config, token)
        _logger.debug("Access token renewed for user %s", self._session.user_id)
        return self._session

    async def logout(self) -> None:
        """Close subscriptions, revoke the session and forget it."""
        await self.close_subscriptions()
        session = self._session
        self._session = None
        if session is None:
            return
        transport = self._require_transport()
        await _login_api.logout(self._config, session, transport)
        _logger.info("Logged out user %s", session.user_id)

    async def ensure_session(self) -> Session:
        """Return an active session, renewing it if expired."""
        if self._session is not None and not self._session.is_expired:
            return self._session
        if self._session is not None:
            return await self.refresh()
        return await self.login()

    def invalidate_session(self) -> None:
        """Mark the access token stale (next call will renew it)."""
        if self._session is not None:
            self._session = self._session.model_copy(update={"ttl": 0.0})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise ParkingError("Client not initialized. Use 'async with ParkingClient(...) as client:'")
        return self._transport

    async def _call_with_reauth(self, fn: Callable[[Session, Transport], Awaitable[T]]) -> T:
        """Run an API call, retrying once on session expiry."""
        session = await self.ensure_session()
        transport = self._require_transport()
        try:
            return await fn(session, transport)
        except ParkingSessionExpiredError:
            self.invalidate_session()
            session = await self.ensure_session()
            return await fn(session, transport)

    # ------------------------------------------------------------------
    # Record store
    # ------------------------------------------------------------------

    async def list_slots(self) -> list[Slot]:
        """Fetch the reference slots used for matching."""
        return await self._call_with_reauth(
            lambda session, transport: _slots_api.list_slots(self._config, session, transport)
        )

    async def create_record(self, draft: ParkingRecordDraft) -> ParkingRecord:
        """Insert an arrival record; returns the stored row."""
        return await self._call_with_reauth(
            lambda session, transport: _records_api.create_record(self._config, session, transport, draft)
        )

    async def update_record(self, record_id: str, fields: Mapping[str, Any]) -> ParkingRecord | None:
        return await self._call_with_reauth(
            lambda session, transport: _records_api.update_record(
                self._config, session, transport, record_id, fields
            )
        )

    async def mark_departed(self, record_id: str) -> ParkingRecord | None:
        """Set the departure time of *record_id* to now."""
        return await self._call_with_reauth(
            lambda session, transport: _records_api.mark_departed(self._config, session, transport, record_id)
        )

    async def delete_record(self, record_id: str) -> None:
        await self._call_with_reauth(
            lambda session, transport: _records_api.delete_record(self._config, session, transport, record_id)
        )

    async def list_records(
        self,
        user_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        ascending: bool = False,
    ) -> list[ParkingRecord]:
        """All records of *user_id*, newest first unless *ascending*."""
        return await self._call_with_reauth(
            lambda session, transport: _records_api.list_records(
                self._config,
                session,
                transport,
                user_id,
                start=start,
                end=end,
                ascending=ascending,
            )
        )

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    async def get_today_records(self, user_id: str, *, now: datetime | None = None) -> list[ParkingRecord]:
        """Records created during the current UTC day, newest first."""
        start, end = _records_api.day_bounds(now or datetime.now(UTC), UTC)
        return await self.list_records(user_id, start=start, end=end)

    async def get_daily_schedule(
        self,
        user_id: str,
        tz: tzinfo | None = None,
        *,
        now: datetime | None = None,
    ) -> list[ParkingRecord]:
        """Records created during today in *tz* (default: configured zone), oldest first."""
        start, end = _records_api.day_bounds(now or datetime.now(UTC), tz or self._tz)
        return await self.list_records(user_id, start=start, end=end, ascending=True)

    async def get_stats(self, user_id: str) -> StatsSnapshot:
        """Fetch the full history of *user_id* and derive statistics."""
        history = await self.list_records(user_id)
        return derive_stats(history, tz=self._tz)

    def stats_monitor(self, user_id: str) -> StatsMonitor:
        """A :class:`StatsMonitor` reloading *user_id*'s history from this client."""
        return StatsMonitor(lambda: self.list_records(user_id), tz=self._tz)

    def session_manager(self) -> ParkingSessionManager:
        """Lifecycle manager for the logged-in user, storing through this client."""
        if self._session is None:
            raise ParkingError("Not logged in")
        return ParkingSessionManager(self, self._session, config=self._config)

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    async def subscribe_changes(self, user_id: str | None = None) -> ChangeSubscription:
        """Open a change subscription on *user_id*'s records (default: the logged-in user).

        The subscription is closed when the client exits; callers may
        close it earlier with ``unsubscribe()`` or ``async with``.
        """
        if not self._config.realtime_enabled:
            raise ParkingRealtimeError("Change notifications are disabled (realtime_enabled=False)")
        session = await self.ensure_session()
        self._require_transport()
        assert self._http_session is not None  # noqa: S101
        subscription = ChangeSubscription(
            self._config,
            session,
            self._http_session,
            user_id=user_id or session.user_id,
        )
        self._subscriptions = [sub for sub in self._subscriptions if not sub.closed]
        await subscription.start()
        self._subscriptions.append(subscription)
        return subscription

    async def close_subscriptions(self) -> None:
        """Close every live subscription opened through this client."""
        subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            await subscription.unsubscribe()
