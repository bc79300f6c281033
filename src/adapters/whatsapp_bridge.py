"""WhatsApp bridge transport adapter.

Talks JSON over a websocket to a Baileys bridge process that owns the actual
WhatsApp session. Commands are correlated with responses by ``requestId``;
everything else the bridge pushes is turned into core transport events.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from typing import Any, AsyncIterator, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from core.errors import TransportError
from core.models import (
    CAUSE_LOGGED_OUT,
    ConnectionState,
    ConnectionUpdate,
    GroupInfo,
    MessagesUpsert,
    NumberLookup,
    QrUpdate,
)
from core.ports import TransportEvent

LOGGER = logging.getLogger(__name__)

PROTOCOL_VERSION = 1
# Baileys DisconnectReason.loggedOut
LOGGED_OUT_STATUS = 401

_STATE_MAP = {
    "open": ConnectionState.CONNECTED,
    "connecting": ConnectionState.CONNECTING,
    "close": ConnectionState.DISCONNECTED,
}


def parse_connection_update(payload: dict[str, Any]) -> ConnectionUpdate:
    state = _STATE_MAP.get(str(payload.get("state") or "").lower(), ConnectionState.DISCONNECTED)
    cause = payload.get("reason")
    if payload.get("statusCode") == LOGGED_OUT_STATUS or cause in {"loggedOut", CAUSE_LOGGED_OUT}:
        cause = CAUSE_LOGGED_OUT
    return ConnectionUpdate(state=state, cause=str(cause) if cause else None)


class WhatsAppBridgeTransport:
    """Transport port implementation backed by the websocket bridge."""

    def __init__(
        self,
        url: str,
        token: str,
        command_timeout_s: float = 20.0,
        max_payload_bytes: int = 8 * 1024 * 1024,
    ) -> None:
        self._url = url
        self._token = token
        self._command_timeout_s = command_timeout_s
        self._max_payload_bytes = max_payload_bytes
        self._ws: Any = None
        self._reader_task: Optional[asyncio.Task] = None
        self._events: asyncio.Queue[Optional[TransportEvent]] = asyncio.Queue()
        self._pending: dict[str, asyncio.Future] = {}
        self._send_lock = asyncio.Lock()

    async def connect(self) -> None:
        # A previous session may still hold its socket when the bridge reported a close.
        await self.close()
        LOGGER.info("Connecting to WhatsApp bridge at %s", self._url)
        ws = await websockets.connect(
            self._url,
            max_size=self._max_payload_bytes,
            ping_interval=20,
            ping_timeout=20,
        )
        queue: asyncio.Queue[Optional[TransportEvent]] = asyncio.Queue()
        self._ws = ws
        self._events = queue
        self._reader_task = asyncio.create_task(self._read_loop(ws, queue))

    async def events(self) -> AsyncIterator[TransportEvent]:
        queue = self._events
        while True:
            event = await queue.get()
            if event is None:
                return
            yield event

    async def _read_loop(self, ws: Any, queue: asyncio.Queue) -> None:
        cause = "bridge_closed"
        try:
            async for raw in ws:
                self._handle_frame(raw, queue)
        except ConnectionClosed as exc:
            cause = f"bridge_closed ({exc})"
        except Exception:
            LOGGER.exception("Bridge reader failed")
            cause = "bridge_reader_failed"
        finally:
            if self._ws is ws:
                self._ws = None
                self._fail_pending("Bridge connection closed")
            queue.put_nowait(ConnectionUpdate(state=ConnectionState.DISCONNECTED, cause=cause))
            queue.put_nowait(None)

    def _handle_frame(self, raw: Any, queue: Optional[asyncio.Queue] = None) -> None:
        queue = queue if queue is not None else self._events
        try:
            frame = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            LOGGER.warning("Invalid JSON from bridge")
            return
        if not isinstance(frame, dict):
            LOGGER.warning("Invalid bridge frame shape")
            return

        frame_type = frame.get("type")
        payload = frame.get("payload") if isinstance(frame.get("payload"), dict) else {}

        if frame_type == "response":
            self._resolve_pending(frame.get("requestId"), payload)
        elif frame_type == "connection":
            queue.put_nowait(parse_connection_update(payload))
        elif frame_type == "qr":
            qr = payload.get("qr")
            if isinstance(qr, str) and qr:
                queue.put_nowait(QrUpdate(qr=qr))
        elif frame_type == "messages":
            messages = payload.get("messages")
            if isinstance(messages, list):
                tag = str(payload.get("type") or "")
                queue.put_nowait(MessagesUpsert(tag=tag, messages=messages))
        elif frame_type == "error":
            LOGGER.error("WhatsApp bridge error: %s", payload.get("error"))
        else:
            LOGGER.debug("Ignoring bridge frame %r", frame_type)

    async def _command(self, command: str, payload: dict[str, Any]) -> Any:
        if self._ws is None:
            raise TransportError("ERR_NOT_CONNECTED", "Bridge websocket not connected", retryable=True)

        request_id = uuid.uuid4().hex
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        envelope = {
            "version": PROTOCOL_VERSION,
            "type": command,
            "token": self._token,
            "requestId": request_id,
            "payload": payload,
        }
        try:
            async with self._send_lock:
                await self._ws.send(json.dumps(envelope))
            return await asyncio.wait_for(future, timeout=self._command_timeout_s)
        except asyncio.TimeoutError as exc:
            raise TransportError("ERR_TIMEOUT", f"{command} timed out", retryable=True) from exc
        finally:
            self._pending.pop(request_id, None)

    def _resolve_pending(self, request_id: Any, payload: dict[str, Any]) -> None:
        future = self._pending.get(request_id) if isinstance(request_id, str) else None
        if future is None or future.done():
            return
        if payload.get("ok"):
            future.set_result(payload.get("result"))
            return
        error = payload.get("error") if isinstance(payload.get("error"), dict) else {}
        future.set_exception(
            TransportError(
                str(error.get("code") or "ERR_INTERNAL"),
                str(error.get("message") or "Bridge command failed"),
                bool(error.get("retryable", False)),
            )
        )

    def _fail_pending(self, reason: str) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportError("ERR_CLOSED", reason, retryable=True))
        self._pending.clear()

    async def send_reaction(
        self,
        conversation_id: str,
        message_id: str,
        emoji: str,
        participant: Optional[str] = None,
    ) -> None:
        key = {"remoteJid": conversation_id, "id": message_id, "fromMe": False}
        if participant:
            key["participant"] = participant
        await self._command("send_reaction", {"to": conversation_id, "key": key, "emoji": emoji})

    async def list_groups(self) -> list[GroupInfo]:
        result = await self._command("list_groups", {})
        groups = result.get("groups") if isinstance(result, dict) else result
        if isinstance(groups, dict):
            groups = [{"id": jid, **(meta or {})} for jid, meta in groups.items()]
        return [
            GroupInfo(id=str(item.get("id") or ""), subject=str(item.get("subject") or ""))
            for item in groups or []
            if isinstance(item, dict)
        ]

    async def request_pairing_code(self, phone: str) -> str:
        result = await self._command("request_pairing_code", {"phone": phone})
        code = result.get("code") if isinstance(result, dict) else result
        if not code:
            raise TransportError("ERR_INTERNAL", "Bridge returned no pairing code")
        return str(code)

    async def resolve_numbers(self, numbers: list[str]) -> list[NumberLookup]:
        if not numbers:
            return []
        result = await self._command("resolve_numbers", {"numbers": numbers})
        items = result.get("results") if isinstance(result, dict) else result
        lookups = []
        for number, item in zip(numbers, items or []):
            item = item if isinstance(item, dict) else {}
            lookups.append(
                NumberLookup(number=number, exists=bool(item.get("exists")), jid=item.get("jid") or None)
            )
        return lookups

    async def close(self) -> None:
        ws, reader = self._ws, self._reader_task
        self._ws = None
        self._reader_task = None
        if ws is not None:
            await ws.close()
        if reader is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._fail_pending("Bridge connection closed")
