"""Randomized reaction pacing and dispatch (core domain)."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

from core.config import PacingConfig
from core.models import MessageContext
from core.ports import TransportPort
from core.state import AgentState

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def draw_delay_ms(config: PacingConfig, rng: Optional[random.Random] = None) -> int:
    """Return an integer delay in ``[min_delay_ms, max_delay_ms]``, both inclusive."""

    rng = rng or random
    return rng.randint(config.min_delay_ms, config.max_delay_ms)


class ReactionDispatcher:
    """Wait a human-like delay, then send the configured emoji reaction."""

    def __init__(
        self,
        config: PacingConfig,
        transport: TransportPort,
        state: AgentState,
        rng: Optional[random.Random] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config
        self._transport = transport
        self._state = state
        self._rng = rng
        self._sleep = sleep

    async def dispatch(self, context: MessageContext) -> bool:
        """Return True when the reaction was sent. Transport errors never escape."""

        delay_ms = draw_delay_ms(self._config, self._rng)
        await self._sleep(delay_ms / 1000)
        try:
            await self._transport.send_reaction(
                context.conversation_id,
                context.message_id,
                self._config.emoji,
                participant=context.sender_jid or None,
            )
        except Exception:
            LOGGER.exception("Reaction failed for %s::%s", context.conversation_id, context.message_id)
            return False

        LOGGER.info("React %s after %sms", self._config.emoji, delay_ms)
        if self._config.auto_pause:
            self._state.set_listening(False)
            LOGGER.warning("Listener paused automatically after reacting")
        return True
