from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import pytest

from pyparking._realtime import (
    ChangeSubscription,
    build_join_payload,
    parse_realtime_message,
    websocket_url,
)
from pyparking.client import ParkingClient
from pyparking.config import ParkingConfig
from pyparking.exceptions import ParkingRealtimeError
from pyparking.models.events import ChangeType
from pyparking.session import Session

TOPIC = "realtime:parking-records-updates"


@dataclass
class _Msg:
    type: aiohttp.WSMsgType
    data: Any


@dataclass
class FakeWebSocket:
    join_status: str = "ok"
    sent: list[dict[str, Any]] = field(default_factory=list)
    closed: bool = False
    _inbox: asyncio.Queue[_Msg | None] = field(default_factory=asyncio.Queue)

    def push(self, frame: dict[str, Any]) -> None:
        self._inbox.put_nowait(_Msg(aiohttp.WSMsgType.TEXT, json.dumps(frame)))

    def push_raw(self, text: str) -> None:
        self._inbox.put_nowait(_Msg(aiohttp.WSMsgType.TEXT, text))

    def drop(self) -> None:
        self._inbox.put_nowait(_Msg(aiohttp.WSMsgType.CLOSED, None))

    async def send_str(self, data: str) -> None:
        frame = json.loads(data)
        self.sent.append(frame)
        if frame["event"] == "phx_join":
            self.push(
                {
                    "topic": frame["topic"],
                    "event": "phx_reply",
                    "ref": frame["ref"],
                    "payload": {"status": self.join_status, "response": {"reason": "denied"}},
                }
            )

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(None)

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> _Msg:
        msg = await self._inbox.get()
        if msg is None:
            raise StopAsyncIteration
        return msg

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.sent]


@dataclass
class FakeHttp:
    ws: FakeWebSocket = field(default_factory=FakeWebSocket)
    connects: list[tuple[str, dict[str, str]]] = field(default_factory=list)
    fail: bool = False

    async def ws_connect(self, url: str, *, params: dict[str, str]) -> FakeWebSocket:
        self.connects.append((url, params))
        if self.fail:
            raise aiohttp.ClientConnectionError("connection refused")
        return self.ws


def _change_frame(change_type: str, record: dict[str, Any], old: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "topic": TOPIC,
        "event": "postgres_changes",
        "ref": None,
        "payload": {
            "ids": [1],
            "data": {
                "schema": "public",
                "table": "parking_records",
                "commit_timestamp": "2024-01-01T09:00:01.000Z",
                "type": change_type,
                "record": record,
                "old_record": old,
                "columns": [],
                "errors": None,
            },
        },
    }


@pytest.fixture
def config() -> ParkingConfig:
    return ParkingConfig(
        base_url="https://demo.example.co",
        api_key="anon",
        request_timeout=1.0,
        realtime_heartbeat=3600.0,
    )


@pytest.fixture
def session() -> Session:
    return Session(user_id="user-1", access_token="acc")


def test_websocket_url() -> None:
    assert websocket_url("https://demo.example.co") == "wss://demo.example.co/realtime/v1/websocket"
    assert websocket_url("http://localhost:54321") == "ws://localhost:54321/realtime/v1/websocket"


def test_join_payload_filters_by_user(config: ParkingConfig, session: Session) -> None:
    payload = build_join_payload(config, session, "user-1")
    assert payload["access_token"] == "acc"
    assert payload["config"]["postgres_changes"] == [
        {"event": "*", "schema": "public", "table": "parking_records", "filter": "user_id=eq.user-1"}
    ]


def test_parse_change_frame() -> None:
    event = parse_realtime_message(_change_frame("UPDATE", {"id": "r1", "left_at": "2024-01-01T10:00:00Z"}))
    assert event is not None
    assert event.change_type is ChangeType.UPDATE
    assert event.table == "parking_records"
    assert event.record_id == "r1"


@pytest.mark.parametrize(
    "frame",
    [
        {"topic": "phoenix", "event": "phx_reply", "payload": {"status": "ok"}, "ref": "1"},
        {"topic": TOPIC, "event": "system", "payload": {"status": "ok"}},
        {"topic": TOPIC, "event": "postgres_changes", "payload": "junk"},
        {"topic": TOPIC, "event": "postgres_changes", "payload": {"data": {"table": "x", "type": "TRUNCATE"}}},
    ],
)
def test_parse_ignores_other_frames(frame: dict[str, Any]) -> None:
    assert parse_realtime_message(frame) is None


@pytest.mark.asyncio
async def test_subscription_delivers_changes(config: ParkingConfig, session: Session) -> None:
    http = FakeHttp()
    subscription = ChangeSubscription(config, session, http, user_id="user-1")  # type: ignore[arg-type]

    async with subscription:
        assert subscription.is_running
        url, params = http.connects[0]
        assert url == "wss://demo.example.co/realtime/v1/websocket"
        assert params == {"apikey": "anon", "vsn": "1.0.0"}
        assert http.ws.sent[0]["topic"] == TOPIC

        http.ws.push({"topic": "phoenix", "event": "phx_reply", "payload": {"status": "ok"}, "ref": "9"})
        http.ws.push_raw("not json")
        http.ws.push(_change_frame("INSERT", {"id": "r1", "user_id": "user-1"}))
        http.ws.push(_change_frame("DELETE", {}, {"id": "r0"}))

        first = await asyncio.wait_for(anext(subscription), timeout=1)
        second = await asyncio.wait_for(anext(subscription), timeout=1)
        assert (first.change_type, first.record_id) == (ChangeType.INSERT, "r1")
        assert (second.change_type, second.record_id) == (ChangeType.DELETE, "r0")

    assert http.ws.events() == ["phx_join", "phx_leave"]
    assert http.ws.closed
    assert subscription.closed
    assert [event async for event in subscription] == []


@pytest.mark.asyncio
async def test_unsubscribe_is_idempotent(config: ParkingConfig, session: Session) -> None:
    http = FakeHttp()
    subscription = await ChangeSubscription(config, session, http, user_id="user-1").start()  # type: ignore[arg-type]
    await subscription.unsubscribe()
    await subscription.unsubscribe()
    assert http.ws.events().count("phx_leave") == 1


@pytest.mark.asyncio
async def test_server_close_ends_iteration(config: ParkingConfig, session: Session) -> None:
    http = FakeHttp()
    subscription = await ChangeSubscription(config, session, http, user_id="user-1").start()  # type: ignore[arg-type]
    http.ws.push(_change_frame("INSERT", {"id": "r1"}))
    http.ws.drop()

    received = await asyncio.wait_for(_collect(subscription), timeout=1)

    assert [event.record_id for event in received] == ["r1"]
    assert subscription.closed
    await subscription.unsubscribe()


async def _collect(subscription: ChangeSubscription) -> list[Any]:
    return [event async for event in subscription]


@pytest.mark.asyncio
async def test_rejected_join_raises(config: ParkingConfig, session: Session) -> None:
    http = FakeHttp(ws=FakeWebSocket(join_status="error"))
    subscription = ChangeSubscription(config, session, http, user_id="user-1")  # type: ignore[arg-type]

    with pytest.raises(ParkingRealtimeError, match="rejected"):
        await subscription.start()
    assert http.ws.closed
    assert "phx_leave" not in http.ws.events()


@pytest.mark.asyncio
async def test_connection_failure_raises(config: ParkingConfig, session: Session) -> None:
    http = FakeHttp(fail=True)
    subscription = ChangeSubscription(config, session, http, user_id="user-1")  # type: ignore[arg-type]

    with pytest.raises(ParkingRealtimeError, match="connection failed"):
        await subscription.start()
    assert subscription.closed


@pytest.mark.asyncio
async def test_client_closes_subscriptions_on_exit(
    config: ParkingConfig,
    session: Session,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def fake_ensure_session(_self: Any) -> Session:
        return session

    monkeypatch.setattr("pyparking.client.ParkingClient.ensure_session", fake_ensure_session)
    http = FakeHttp()

    async with ParkingClient(config, session=http) as client:  # type: ignore[arg-type]
        subscription = await client.subscribe_changes()
        assert subscription.user_id == "user-1"
        assert subscription.is_running

    assert subscription.closed
    assert http.ws.events() == ["phx_join", "phx_leave"]
