"""Bounded in-memory record of messages already reacted to (core domain)."""

from __future__ import annotations

import logging
from collections import deque

from core.config import LEDGER_HIGH_WATER, LEDGER_LOW_WATER

LOGGER = logging.getLogger(__name__)


def dedup_key(conversation_id: str, message_id: str) -> str:
    """Return the composite key identifying one message in one conversation."""

    return f"{conversation_id}::{message_id}"


class DedupLedger:
    """Insertion-ordered set of dedup keys with a soft capacity bound.

    ``check_and_mark`` is synchronous and must be called before the caller's
    first ``await``; on a single event loop that makes it atomic.
    """

    def __init__(self, high_water: int = LEDGER_HIGH_WATER, low_water: int = LEDGER_LOW_WATER) -> None:
        if low_water > high_water:
            raise ValueError("low_water must not exceed high_water")
        self._high_water = high_water
        self._low_water = low_water
        self._keys: set[str] = set()
        self._order: deque[str] = deque()

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def check_and_mark(self, key: str) -> bool:
        """Mark ``key`` and return True if it was new, else return False."""

        if key in self._keys:
            return False
        self._keys.add(key)
        self._order.append(key)
        return True

    def maybe_evict(self) -> int:
        """Trim to the newest ``low_water`` keys once above ``high_water``."""

        if len(self._keys) <= self._high_water:
            return 0
        removed = 0
        while len(self._order) > self._low_water:
            self._keys.discard(self._order.popleft())
            removed += 1
        LOGGER.debug("Ledger trimmed by %s keys to %s", removed, len(self._keys))
        return removed
