"""Record change notifications over the backend's realtime websocket.

The backend speaks the Phoenix channel protocol: every frame is a JSON
object ``{"topic", "event", "payload", "ref"}``.  A subscription joins one
channel with a ``postgres_changes`` filter on the records table, keeps the
socket alive with heartbeats on the ``phoenix`` topic, and pushes each
change onto an :class:`asyncio.Queue` that consumers drain with
``async for``.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp
from pydantic import ValidationError

from pyparking._constants import REALTIME_PATH
from pyparking._redact import redact_for_log, redact_url
from pyparking.config import ParkingConfig
from pyparking.exceptions import ParkingRealtimeError
from pyparking.models.events import ChangeEvent
from pyparking.session import Session

_logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "1.0.0"

_EVENT_JOIN = "phx_join"
_EVENT_LEAVE = "phx_leave"
_EVENT_REPLY = "phx_reply"
_EVENT_ERROR = "phx_error"
_EVENT_CLOSE = "phx_close"
_EVENT_CHANGES = "postgres_changes"
_EVENT_HEARTBEAT = "heartbeat"
_HEARTBEAT_TOPIC = "phoenix"


def websocket_url(base_url: str) -> str:
    """Map the project's HTTP(S) URL to its realtime websocket URL."""
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://") :] + REALTIME_PATH
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://") :] + REALTIME_PATH
    return base_url + REALTIME_PATH


def channel_topic(channel: str) -> str:
    return f"realtime:{channel}"


def build_join_payload(config: ParkingConfig, session: Session, user_id: str) -> dict[str, Any]:
    """Join payload subscribing to every change on the user's records."""
    return {
        "config": {
            "broadcast": {"self": False},
            "presence": {"key": ""},
            "postgres_changes": [
                {
                    "event": "*",
                    "schema": config.db_schema,
                    "table": config.records_table,
                    "filter": f"user_id=eq.{user_id}",
                }
            ],
        },
        "access_token": session.access_token,
    }


def parse_realtime_message(message: Mapping[str, Any]) -> ChangeEvent | None:
    """Return the :class:`ChangeEvent` carried by a frame, if any.

    Replies, heartbeats, presence and system frames yield ``None``.
    A ``postgres_changes`` frame whose payload cannot be validated is
    logged and dropped.
    """
    if message.get("event") != _EVENT_CHANGES:
        return None
    payload = message.get("payload")
    data = payload.get("data") if isinstance(payload, Mapping) else None
    if not isinstance(data, Mapping):
        return None
    try:
        return ChangeEvent.model_validate(dict(data))
    except ValidationError:
        _logger.warning("Dropping malformed change payload: %s", redact_for_log(data))
        return None


class ChangeSubscription:
    """A live change-notification channel for one user's records.

    Usage::

        async with await client.subscribe_changes(user_id) as changes:
            async for event in changes:
                ...

    Iteration ends once the subscription is closed (explicitly, by the
    owning client, or because the socket dropped).
    """

    def __init__(
        self,
        config: ParkingConfig,
        session: Session,
        http_session: aiohttp.ClientSession,
        *,
        user_id: str,
        max_queue: int = 0,
    ) -> None:
        self._config = config
        self._session = session
        self._http = http_session
        self._user_id = user_id
        self._topic = channel_topic(config.realtime_channel)
        self._queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue(maxsize=max_queue)
        self._refs = itertools.count(1)
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task[None] | None = None
        self._heartbeat: asyncio.Task[None] | None = None
        self._join_ref: str | None = None
        self._joined: asyncio.Future[None] | None = None
        self._is_joined = False
        self._dropped = False
        self._closed = False

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def user_id(self) -> str:
        return self._user_id

    @property
    def is_running(self) -> bool:
        return self._ws is not None and not self._ws.closed and not self.closed

    @property
    def closed(self) -> bool:
        return self._closed or self._dropped

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> ChangeSubscription:
        """Connect, join the channel and wait for the join to be accepted."""
        if self._ws is not None or self._closed:
            raise ParkingRealtimeError("Subscription already started")

        url = websocket_url(self._config.base_url)
        params = {"apikey": self._config.api_key, "vsn": PROTOCOL_VERSION}
        _logger.debug("Connecting realtime socket %s", redact_url(f"{url}?apikey={self._config.api_key}"))
        try:
            self._ws = await asyncio.wait_for(
                self._http.ws_connect(url, params=params),
                timeout=self._config.request_timeout,
            )
        except (aiohttp.ClientError, TimeoutError) as exc:
            self._closed = True
            raise ParkingRealtimeError(f"Realtime connection failed: {exc}") from exc

        self._joined = asyncio.get_running_loop().create_future()
        self._reader = asyncio.create_task(self._read_loop(), name=f"pyparking-realtime-{self._topic}")
        # Assigned before sending so the reader can match the reply.
        self._join_ref = str(next(self._refs))
        await self._send(
            self._topic,
            _EVENT_JOIN,
            build_join_payload(self._config, self._session, self._user_id),
            ref=self._join_ref,
        )

        try:
            await asyncio.wait_for(asyncio.shield(self._joined), timeout=self._config.request_timeout)
        except TimeoutError as exc:
            await self.unsubscribe()
            raise ParkingRealtimeError(f"Timed out joining {self._topic}") from exc
        except ParkingRealtimeError:
            await self.unsubscribe()
            raise

        self._is_joined = True
        self._heartbeat = asyncio.create_task(self._heartbeat_loop(), name="pyparking-realtime-heartbeat")
        _logger.info("Subscribed to changes on %s for user %s", self._config.records_table, self._user_id)
        return self

    async def unsubscribe(self) -> None:
        """Leave the channel and close the socket.  Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        ws = self._ws
        if ws is not None and not ws.closed and self._is_joined:
            with contextlib.suppress(aiohttp.ClientError, ConnectionError, RuntimeError):
                await self._send(self._topic, _EVENT_LEAVE, {})

        if self._joined is not None and not self._joined.done():
            self._joined.cancel()

        for task in (self._heartbeat, self._reader):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._heartbeat = None
        self._reader = None

        if ws is not None and not ws.closed:
            await ws.close()
        self._ws = None
        self._finish()
        _logger.debug("Unsubscribed from %s", self._topic)

    async def __aenter__(self) -> ChangeSubscription:
        if self._ws is None and not self._closed:
            await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.unsubscribe()

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    def __aiter__(self) -> ChangeSubscription:
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self._queue.get()
        if event is None:
            # Re-arm the end marker for any other consumer.
            self._queue.put_nowait(None)
            raise StopAsyncIteration
        return event

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finish(self) -> None:
        """Signal end-of-stream to consumers."""
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # Drop the oldest event so the end marker always fits.
            self._queue.get_nowait()
            self._queue.put_nowait(None)

    async def _send(self, topic: str, event: str, payload: dict[str, Any], *, ref: str | None = None) -> str:
        if self._ws is None:
            raise ParkingRealtimeError("Realtime socket is not connected")
        ref = ref or str(next(self._refs))
        frame = {"topic": topic, "event": event, "payload": payload, "ref": ref}
        if event == _EVENT_JOIN:
            frame["join_ref"] = ref
        _logger.debug("Realtime send %s", redact_for_log(frame))
        await self._ws.send_str(json.dumps(frame, separators=(",", ":")))
        return ref

    def _handle_frame(self, message: Mapping[str, Any]) -> None:
        event_name = message.get("event")
        topic = message.get("topic")

        if event_name == _EVENT_REPLY and message.get("ref") == self._join_ref:
            payload = message.get("payload")
            status = payload.get("status") if isinstance(payload, Mapping) else None
            if self._joined is not None and not self._joined.done():
                if status == "ok":
                    self._joined.set_result(None)
                else:
                    response = payload.get("response") if isinstance(payload, Mapping) else None
                    self._joined.set_exception(
                        ParkingRealtimeError(f"Join of {self._topic} rejected: {redact_for_log(response)}")
                    )
            return

        if topic == self._topic and event_name in {_EVENT_ERROR, _EVENT_CLOSE}:
            _logger.warning("Realtime channel %s reported %s", self._topic, event_name)
            return

        change = parse_realtime_message(message)
        if change is None:
            return
        try:
            self._queue.put_nowait(change)
        except asyncio.QueueFull:
            _logger.warning("Change queue full; dropping %s event id=%s", change.change_type, change.record_id)

    async def _read_loop(self) -> None:
        ws = self._ws
        assert ws is not None  # noqa: S101
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    try:
                        frame = json.loads(msg.data)
                    except json.JSONDecodeError:
                        _logger.debug("Ignoring non-JSON realtime frame: %s", msg.data[:200])
                        continue
                    if isinstance(frame, Mapping):
                        self._handle_frame(frame)
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
        finally:
            if self._joined is not None and not self._joined.done():
                self._joined.set_exception(ParkingRealtimeError("Realtime socket closed before join"))
            if not self._closed:
                _logger.warning("Realtime socket for %s closed by server", self._topic)
                self._dropped = True
                self._finish()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.realtime_heartbeat)
            try:
                await self._send(_HEARTBEAT_TOPIC, _EVENT_HEARTBEAT, {})
            except (aiohttp.ClientError, ConnectionError, ParkingRealtimeError, RuntimeError):
                _logger.debug("Realtime heartbeat failed", exc_info=True)
                return
