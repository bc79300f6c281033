from __future__ import annotations

import asyncio
import random
from typing import Optional

from core.config import build_filter_config, build_pacing_config
from core.models import MessageContext
from core.pacing import ReactionDispatcher, draw_delay_ms
from core.state import AgentState


class FakeTransport:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.reactions: list[tuple[str, str, str, Optional[str]]] = []

    async def send_reaction(
        self,
        conversation_id: str,
        message_id: str,
        emoji: str,
        participant: Optional[str] = None,
    ) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.reactions.append((conversation_id, message_id, emoji, participant))


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _context() -> MessageContext:
    return MessageContext(
        conversation_id="120363000000@g.us",
        message_id="MSG1",
        from_me=False,
        sender_jid="5551234567@s.whatsapp.net",
        text="hello there",
    )


def test_delays_stay_within_bounds() -> None:
    config = build_pacing_config({"min_delay_ms": 100, "max_delay_ms": 1000})
    rng = random.Random(7)
    draws = [draw_delay_ms(config, rng) for _ in range(10_000)]
    assert all(100 <= value <= 1000 for value in draws)
    assert all(isinstance(value, int) for value in draws)


def test_equal_bounds_give_fixed_delay() -> None:
    config = build_pacing_config({"min_delay_ms": 250, "max_delay_ms": 250})
    assert {draw_delay_ms(config) for _ in range(50)} == {250}


def test_dispatch_sleeps_then_reacts() -> None:
    config = build_pacing_config({"emoji": "🔥", "min_delay_ms": 300, "max_delay_ms": 300})
    transport = FakeTransport()
    sleep = RecordingSleep()
    state = AgentState(build_filter_config(["team"], {}))
    dispatcher = ReactionDispatcher(config, transport, state, sleep=sleep)

    sent = asyncio.run(dispatcher.dispatch(_context()))

    assert sent is True
    assert sleep.calls == [0.3]
    assert transport.reactions == [
        ("120363000000@g.us", "MSG1", "🔥", "5551234567@s.whatsapp.net")
    ]
    assert state.listening_enabled is True


def test_dispatch_failure_is_contained() -> None:
    config = build_pacing_config({"min_delay_ms": 0, "max_delay_ms": 0})
    state = AgentState(build_filter_config(["team"], {}))
    dispatcher = ReactionDispatcher(config, FakeTransport(fail=True), state, sleep=RecordingSleep())

    assert asyncio.run(dispatcher.dispatch(_context())) is False
    assert state.listening_enabled is True


def test_auto_pause_disables_listener_after_reaction() -> None:
    config = build_pacing_config({"min_delay_ms": 0, "max_delay_ms": 0, "auto_pause": True})
    state = AgentState(build_filter_config(["team"], {}))
    dispatcher = ReactionDispatcher(config, FakeTransport(), state, sleep=RecordingSleep())

    assert asyncio.run(dispatcher.dispatch(_context())) is True
    assert state.listening_enabled is False
