"""Admission filter chain (core domain).

Gates run in a fixed order and stop at the first rejection:
1) listening flag
2) tracked group
3) resolvable sender
4) minimum text length (the sender is logged to recent senders first)
5) sender policy (allow-only, or block/allow lists with number fallback)
"""

from __future__ import annotations

from typing import Optional

from core.config import SENDER_POLICY_ALLOW_BLOCK, FilterConfig
from core.identity import collapse_whitespace, extract_phone, normalize_jid
from core.models import Decision, MessageContext
from core.state import AgentState

REASON_ADMITTED = "admitted"
REASON_PAUSED = "paused"
REASON_UNTRACKED_GROUP = "untracked_group"
REASON_NO_SENDER = "no_sender"
REASON_TOO_SHORT = "too_short"
REASON_SENDER_NOT_ALLOWED = "sender_not_allowed"
REASON_SENDER_BLOCKED = "sender_blocked"
REASON_DUPLICATE = "duplicate"
REASON_IGNORED = "ignored"

ADMIT = Decision(admit=True, reason=REASON_ADMITTED)


def _reject(reason: str) -> Decision:
    return Decision(admit=False, reason=reason)


def allow_only_reason(config: FilterConfig, sender_jid: str) -> Optional[str]:
    """Whitelist-only policy: an inactive allow-list lets every sender through."""

    if not config.use_allowed_jids:
        return None
    if normalize_jid(sender_jid) in config.allowed_jids:
        return None
    return REASON_SENDER_NOT_ALLOWED


def allow_block_reason(config: FilterConfig, sender_jid: str) -> Optional[str]:
    """Multi-list policy.

    Priority: block by JID, then block by number, then allow by JID or number.
    Numbers match either the digits of the sender or a JID resolved from the
    configured number at startup.
    """

    jid = normalize_jid(sender_jid)
    phone = extract_phone(sender_jid)

    if config.use_blocked_jids and jid in config.blocked_jids:
        return REASON_SENDER_BLOCKED
    if config.use_blocked_numbers and (phone in config.blocked_numbers or jid in config.number_blocked_jids):
        return REASON_SENDER_BLOCKED

    if not (config.use_allowed_jids or config.use_allowed_numbers):
        return None
    if config.use_allowed_jids and jid in config.allowed_jids:
        return None
    if config.use_allowed_numbers and (phone in config.allowed_numbers or jid in config.number_allowed_jids):
        return None
    return REASON_SENDER_NOT_ALLOWED


def sender_rejection(config: FilterConfig, sender_jid: str) -> Optional[str]:
    if config.sender_policy == SENDER_POLICY_ALLOW_BLOCK:
        return allow_block_reason(config, sender_jid)
    return allow_only_reason(config, sender_jid)


class FilterChain:
    """Evaluate one message against the shared state and filter config."""

    def __init__(self, state: AgentState) -> None:
        self._state = state

    def evaluate(self, context: MessageContext) -> Decision:
        state = self._state
        config = state.filter_config

        if not state.listening_enabled:
            return _reject(REASON_PAUSED)

        if not state.roster.is_tracked(context.conversation_id):
            return _reject(REASON_UNTRACKED_GROUP)

        if not context.sender_jid:
            return _reject(REASON_NO_SENDER)

        group_label = state.roster.subject_for(context.conversation_id) or "(group)"
        state.remember_sender(context.sender_jid, group_label, context.text)

        if len(collapse_whitespace(context.text)) < config.min_msg_chars:
            return _reject(REASON_TOO_SHORT)

        reason = sender_rejection(config, context.sender_jid)
        if reason:
            return _reject(reason)
        return ADMIT
