"""Inbound message processing.

``MessageProcessor`` runs one message through the admission pipeline:
1) skip own messages and events without ids
2) filter chain
3) dedup check-and-mark, before any await
4) paced reaction

``IngressCoordinator`` fans a live batch out to concurrent, isolated
evaluations and waits for all of them to settle.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from core.filters import REASON_DUPLICATE, REASON_IGNORED, FilterChain
from core.identity import extract_phone, preview
from core.ledger import DedupLedger, dedup_key
from core.models import Decision, MessageContext
from core.pacing import ReactionDispatcher

LOGGER = logging.getLogger(__name__)

LIVE_BATCH_TAG = "notify"

ContextBuilder = Callable[[dict[str, Any]], MessageContext]


class MessageProcessor:
    """Orchestrates filtering, deduplication and the paced reaction."""

    def __init__(self, filters: FilterChain, ledger: DedupLedger, dispatcher: ReactionDispatcher) -> None:
        self._filters = filters
        self._ledger = ledger
        self._dispatcher = dispatcher

    async def handle(self, context: MessageContext) -> Decision:
        """Process one message context through the pipeline."""

        if context.from_me or not context.conversation_id or not context.message_id:
            return Decision(admit=False, reason=REASON_IGNORED)

        decision = self._filters.evaluate(context)
        if not decision.admit:
            LOGGER.debug("Skip %s::%s (%s)", context.conversation_id, context.message_id, decision.reason)
            return decision

        name = f" ({context.push_name})" if context.push_name else ""
        LOGGER.info("+%s%s -> %r", extract_phone(context.sender_jid), name, preview(context.text))

        # Marked before the pacing delay: a redelivery arriving while we sleep
        # must see the key already taken.
        if not self._ledger.check_and_mark(dedup_key(context.conversation_id, context.message_id)):
            return Decision(admit=False, reason=REASON_DUPLICATE)

        await self._dispatcher.dispatch(context)
        return decision


@dataclass
class BatchOutcome:
    """Aggregated result of one inbound batch."""

    admitted: int = 0
    failed: int = 0
    rejected: Counter = field(default_factory=Counter)

    @property
    def total(self) -> int:
        return self.admitted + self.failed + sum(self.rejected.values())


class IngressCoordinator:
    """Evaluate every message of a live batch concurrently and independently."""

    def __init__(self, processor: MessageProcessor, build_context: ContextBuilder) -> None:
        self._processor = processor
        self._build_context = build_context

    async def _evaluate(self, raw: dict[str, Any]) -> Decision:
        context = self._build_context(raw)
        return await self._processor.handle(context)

    async def handle_batch(self, tag: str, messages: Iterable[dict[str, Any]]) -> BatchOutcome:
        outcome = BatchOutcome()
        if tag != LIVE_BATCH_TAG:
            LOGGER.debug("Ignoring %s batch", tag)
            return outcome

        results = await asyncio.gather(
            *(self._evaluate(raw) for raw in messages),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                outcome.failed += 1
                LOGGER.error("Error while processing message", exc_info=result)
            elif result.admit:
                outcome.admitted += 1
            else:
                outcome.rejected[result.reason] += 1
        return outcome
