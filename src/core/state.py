"""Shared runtime state for one agent instance.

Everything the control surface reads or toggles lives on ``AgentState`` and
is passed explicitly to the pipeline, so tests can build isolated instances.
All access happens on one event loop; no locking is required.
"""

from __future__ import annotations

import time
from collections import deque
from typing import Any, Optional

from core.config import QR_TTL_SECONDS, RECENT_SENDERS_LIMIT, FilterConfig
from core.identity import normalize_jid, preview
from core.ledger import DedupLedger
from core.models import ConnectionState, RecentSender
from core.roster import GroupRoster


class AgentState:
    def __init__(
        self,
        filter_config: FilterConfig,
        roster: Optional[GroupRoster] = None,
        ledger: Optional[DedupLedger] = None,
        recent_limit: int = RECENT_SENDERS_LIMIT,
    ) -> None:
        self.filter_config = filter_config
        self.roster = roster or GroupRoster(filter_config.group_fragments)
        self.ledger = ledger or DedupLedger()
        self.listening_enabled = True
        self.connection_state = ConnectionState.DISCONNECTED
        self._recent: deque[RecentSender] = deque(maxlen=recent_limit)
        self._last_qr: Optional[str] = None
        self._last_qr_at = 0.0

    def set_listening(self, enabled: bool) -> None:
        self.listening_enabled = bool(enabled)

    def remember_sender(self, jid: str, group: str, text: str, now: Optional[float] = None) -> RecentSender:
        """Record a sender at the head of the recent-senders window."""

        ts = int((now if now is not None else time.time()) * 1000)
        entry = RecentSender(jid=normalize_jid(jid), group=group, text=preview(text), ts=ts)
        self._recent.appendleft(entry)
        return entry

    def recent_senders(self) -> list[RecentSender]:
        return list(self._recent)

    def set_qr(self, qr: str, now: Optional[float] = None) -> None:
        self._last_qr = qr
        self._last_qr_at = now if now is not None else time.monotonic()

    def current_qr(self, now: Optional[float] = None, ttl: float = QR_TTL_SECONDS) -> Optional[str]:
        """Return the last QR payload while it is younger than ``ttl`` seconds."""

        if not self._last_qr:
            return None
        now = now if now is not None else time.monotonic()
        if now - self._last_qr_at > ttl:
            return None
        return self._last_qr

    def clear_qr(self) -> None:
        self._last_qr = None
        self._last_qr_at = 0.0

    def status(self) -> dict[str, Any]:
        config = self.filter_config
        return {
            "listeningEnabled": self.listening_enabled,
            "connection": self.connection_state.value,
            "groupsConfigured": list(config.group_fragments),
            "groupsActiveCount": self.roster.tracked_count,
            "senderPolicy": config.sender_policy,
            "allowJids": config.use_allowed_jids,
            "allowedJidsCount": len(config.allowed_jids),
            "blockJids": config.use_blocked_jids,
            "blockedJidsCount": len(config.blocked_jids),
            "minMsgChars": config.min_msg_chars,
            "reactedCacheSize": len(self.ledger),
        }
