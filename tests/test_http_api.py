from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from aiohttp.test_utils import TestClient, TestServer

from adapters.http_api import create_app
from core.config import build_filter_config
from core.models import ConnectionState, GroupInfo
from core.state import AgentState

TOKEN = "s3cret"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


class FakeTransport:
    def __init__(self) -> None:
        self.groups = [GroupInfo(id="1@g.us", subject="Team Chat"), GroupInfo(id="2@g.us", subject="Family")]
        self.fail_groups = False
        self.pair_requests: list[str] = []

    async def list_groups(self) -> list[GroupInfo]:
        if self.fail_groups:
            raise RuntimeError("bridge timeout")
        return self.groups

    async def request_pairing_code(self, phone: str) -> str:
        self.pair_requests.append(phone)
        return "ABCD-1234"


def _state() -> AgentState:
    return AgentState(build_filter_config(["team"], {"min_msg_chars": 3}))


def _run(
    scenario: Callable[[TestClient], Awaitable[None]],
    state: AgentState,
    transport: FakeTransport,
    token: str = TOKEN,
) -> None:
    async def runner() -> None:
        app = create_app(state, transport, token, qr_render=lambda data: b"\x89PNG" + data.encode())
        async with TestClient(TestServer(app)) as client:
            await scenario(client)

    asyncio.run(runner())


def test_requests_without_token_are_rejected() -> None:
    async def scenario(client: TestClient) -> None:
        response = await client.get("/status")
        assert response.status == 401
        assert (await response.json()) == {"ok": False, "error": "unauthorized"}

        response = await client.get("/status", headers={"Authorization": "Bearer wrong"})
        assert response.status == 401

        response = await client.get("/status", params={"token": TOKEN})
        assert response.status == 200

    _run(scenario, _state(), FakeTransport())


def test_pages_open_without_token_but_reject_wrong_one() -> None:
    async def scenario(client: TestClient) -> None:
        response = await client.get("/admin")
        assert response.status == 200
        assert "text/html" in response.headers["Content-Type"]

        response = await client.get("/qr", params={"token": "wrong"})
        assert response.status == 401

    _run(scenario, _state(), FakeTransport())


def test_no_configured_token_leaves_surface_open() -> None:
    async def scenario(client: TestClient) -> None:
        response = await client.get("/status")
        assert response.status == 200

    _run(scenario, _state(), FakeTransport(), token="")


def test_status_reports_state() -> None:
    state = _state()
    state.connection_state = ConnectionState.CONNECTED
    state.ledger.check_and_mark("1@g.us::A")

    async def scenario(client: TestClient) -> None:
        response = await client.get("/status", headers=AUTH)
        body = await response.json()
        assert body["ok"] is True
        assert body["listeningEnabled"] is True
        assert body["connection"] == "connected"
        assert body["groupsConfigured"] == ["team"]
        assert body["senderPolicy"] == "allow_only"
        assert body["minMsgChars"] == 3
        assert body["reactedCacheSize"] == 1

    _run(scenario, state, FakeTransport())


def test_listener_toggle() -> None:
    state = _state()

    async def scenario(client: TestClient) -> None:
        response = await client.post("/listener", json={"enabled": "no"}, headers=AUTH)
        assert response.status == 400

        response = await client.post("/listener", data="{broken", headers=AUTH)
        assert response.status == 400

        response = await client.post("/listener", json={"enabled": False}, headers=AUTH)
        assert response.status == 200
        assert (await response.json())["listeningEnabled"] is False
        assert state.listening_enabled is False

    _run(scenario, state, FakeTransport())


def test_groups_refresh() -> None:
    state = _state()
    transport = FakeTransport()

    async def scenario(client: TestClient) -> None:
        response = await client.post("/groups/refresh", headers=AUTH)
        body = await response.json()
        assert response.status == 200
        assert body["groupsActiveCount"] == 1
        assert body["groups"] == [{"id": "1@g.us", "subject": "Team Chat"}]

        transport.fail_groups = True
        response = await client.post("/groups/refresh", headers=AUTH)
        assert response.status == 502
        assert state.roster.is_tracked("1@g.us")

    _run(scenario, state, transport)


def test_recent_senders() -> None:
    state = _state()
    state.remember_sender("555:2@s.whatsapp.net", "Team Chat", "first", now=1.0)
    state.remember_sender("666@s.whatsapp.net", "Team Chat", "second", now=2.0)

    async def scenario(client: TestClient) -> None:
        body = await (await client.get("/recent-senders", headers=AUTH)).json()
        assert [item["text"] for item in body["items"]] == ["second", "first"]
        assert body["items"][1]["jid"] == "555@s.whatsapp.net"

    _run(scenario, state, FakeTransport())


def test_pairing_code() -> None:
    state = _state()
    transport = FakeTransport()

    async def scenario(client: TestClient) -> None:
        response = await client.post("/pairing-code", json={"phone": "+55 11 91234-5678"}, headers=AUTH)
        assert response.status == 503

        state.connection_state = ConnectionState.CONNECTING
        response = await client.post("/pairing-code", json={"phone": "abc"}, headers=AUTH)
        assert response.status == 400

        response = await client.post("/pairing-code", json={"phone": "+55 11 91234-5678"}, headers=AUTH)
        assert response.status == 200
        assert (await response.json())["code"] == "ABCD-1234"
        assert transport.pair_requests == ["5511912345678"]

    _run(scenario, state, transport)


def test_qr_image_availability() -> None:
    state = _state()

    async def scenario(client: TestClient) -> None:
        response = await client.get("/qr.png")
        assert response.status == 404
        assert "QR not available" in await response.text()

        state.set_qr("2@abc")
        response = await client.get("/qr.png", params={"token": TOKEN})
        assert response.status == 200
        assert response.headers["Content-Type"] == "image/png"
        assert await response.read() == b"\x89PNG2@abc"

        page = await (await client.get("/qr", params={"token": TOKEN})).text()
        assert f"/qr.png?token={TOKEN}" in page

    _run(scenario, state, FakeTransport())
