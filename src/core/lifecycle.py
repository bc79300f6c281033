"""Connection lifecycle supervision.

States: disconnected -> connecting -> connected -> disconnected, with
``logged_out`` as the terminal variant. The supervisor consumes the
transport's event stream, reacts to state changes and reconnects in a loop
until the session is logged out.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from core.config import LEDGER_EVICT_INTERVAL_S
from core.errors import LoggedOutError
from core.ingress import IngressCoordinator
from core.models import CAUSE_LOGGED_OUT, ConnectionState, ConnectionUpdate, MessagesUpsert, QrUpdate
from core.pacing import Sleep
from core.ports import TransportPort
from core.state import AgentState

LOGGER = logging.getLogger(__name__)

CAUSE_STREAM_CLOSED = "stream_closed"
LOGGED_OUT_MESSAGE = "Session logged out. Clear the bridge session directory and pair again."


@dataclass(frozen=True)
class ReconnectBackoff:
    """Capped exponential backoff with jitter. Attempts are unbounded."""

    initial_ms: int = 1000
    max_ms: int = 30_000
    factor: float = 2.0
    jitter: float = 0.2

    def delay_s(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        rng = rng or random
        initial = max(100, self.initial_ms)
        raw = initial * (max(1.1, self.factor) ** max(0, attempt - 1))
        capped = min(float(self.max_ms), raw)
        spread = capped * max(0.0, min(1.0, self.jitter))
        low = max(100.0, capped - spread)
        return rng.uniform(low, capped + spread) / 1000


def is_logged_out(update: ConnectionUpdate) -> bool:
    return update.state == ConnectionState.LOGGED_OUT or update.cause == CAUSE_LOGGED_OUT


class ConnectionSupervisor:
    """Drive the transport, route events and keep reconnecting."""

    def __init__(
        self,
        transport: TransportPort,
        state: AgentState,
        coordinator: IngressCoordinator,
        backoff: Optional[ReconnectBackoff] = None,
        on_qr: Optional[Callable[[str], None]] = None,
        on_connected: Optional[Callable[[], Awaitable[None]]] = None,
        sleep: Sleep = asyncio.sleep,
        evict_interval_s: float = LEDGER_EVICT_INTERVAL_S,
    ) -> None:
        self._transport = transport
        self._state = state
        self._coordinator = coordinator
        self._backoff = backoff or ReconnectBackoff()
        self._on_qr = on_qr
        self._on_connected_hook = on_connected
        self._sleep = sleep
        self._evict_interval_s = evict_interval_s
        self._evict_task: Optional[asyncio.Task] = None
        self._inbound_tasks: set[asyncio.Task] = set()
        self._ever_connected = False
        self.attempts = 0

    async def run(self) -> None:
        """Run until the session is logged out (raises ``LoggedOutError``)."""

        try:
            while True:
                self._state.connection_state = ConnectionState.CONNECTING
                try:
                    await self._transport.connect()
                except Exception:
                    if not self._ever_connected:
                        # Failing to start the transport at all is fatal.
                        raise
                    LOGGER.exception("Reconnect failed")
                else:
                    self._ever_connected = True
                    cause = await self._consume_safely()
                    if cause == CAUSE_LOGGED_OUT:
                        self._state.connection_state = ConnectionState.LOGGED_OUT
                        LOGGER.error(LOGGED_OUT_MESSAGE)
                        raise LoggedOutError(LOGGED_OUT_MESSAGE)

                self._state.connection_state = ConnectionState.DISCONNECTED
                self.attempts += 1
                delay = self._backoff.delay_s(self.attempts)
                LOGGER.info("Reconnecting in %.2fs (attempt %s)", delay, self.attempts)
                await self._sleep(delay)
        finally:
            await self.stop()

    async def _consume_safely(self) -> str:
        try:
            return await self._consume()
        except Exception as exc:
            LOGGER.warning("Transport connection error: %s", exc)
            return CAUSE_STREAM_CLOSED

    async def _consume(self) -> str:
        """Route events until the connection drops; return the disconnect cause."""

        async for event in self._transport.events():
            if isinstance(event, ConnectionUpdate):
                if event.state == ConnectionState.CONNECTED:
                    await self._on_connected()
                elif event.state == ConnectionState.CONNECTING:
                    self._state.connection_state = ConnectionState.CONNECTING
                else:
                    LOGGER.warning("Connection closed (%s)", event.cause or "unknown")
                    return CAUSE_LOGGED_OUT if is_logged_out(event) else (event.cause or "closed")
            elif isinstance(event, QrUpdate):
                self._state.set_qr(event.qr)
                if self._on_qr is not None:
                    self._on_qr(event.qr)
            elif isinstance(event, MessagesUpsert):
                # Keep the reader free while the batch sleeps through its pacing delays.
                task = asyncio.create_task(self._coordinator.handle_batch(event.tag, event.messages))
                self._inbound_tasks.add(task)
                task.add_done_callback(self._inbound_tasks.discard)
        return CAUSE_STREAM_CLOSED

    async def _on_connected(self) -> None:
        LOGGER.info("Connected")
        self._state.connection_state = ConnectionState.CONNECTED
        self._state.clear_qr()
        self.attempts = 0
        await self._state.roster.refresh(self._transport)
        if self._on_connected_hook is not None:
            try:
                await self._on_connected_hook()
            except Exception:
                LOGGER.exception("on_connected hook failed")
        if self._evict_task is None:
            self._evict_task = asyncio.create_task(self._evict_loop())

    async def _evict_loop(self) -> None:
        while True:
            await asyncio.sleep(self._evict_interval_s)
            removed = self._state.ledger.maybe_evict()
            if removed:
                LOGGER.debug("Ledger eviction removed %s keys", removed)

    async def wait_idle(self) -> None:
        """Wait for every in-flight batch to settle."""

        while True:
            pending = [task for task in self._inbound_tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def stop(self) -> None:
        if self._evict_task is not None:
            self._evict_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._evict_task
            self._evict_task = None
        await self.wait_idle()
        try:
            await self._transport.close()
        except Exception:
            LOGGER.exception("Failed to close transport")
        if self._state.connection_state != ConnectionState.LOGGED_OUT:
            self._state.connection_state = ConnectionState.DISCONNECTED
