from __future__ import annotations

from core.config import SENDER_POLICY_ALLOW_BLOCK, build_filter_config
from core.filters import (
    REASON_ADMITTED,
    REASON_NO_SENDER,
    REASON_PAUSED,
    REASON_SENDER_BLOCKED,
    REASON_SENDER_NOT_ALLOWED,
    REASON_TOO_SHORT,
    REASON_UNTRACKED_GROUP,
    FilterChain,
)
from core.models import GroupInfo, MessageContext
from core.state import AgentState

GROUP = "120363000000@g.us"
OTHER_GROUP = "120363999999@g.us"
SENDER = "5551234567@s.whatsapp.net"


def _state(filters: dict | None = None, groups: list[str] | None = None) -> AgentState:
    config = build_filter_config(groups or ["Team Chat"], filters or {})
    state = AgentState(config)
    state.roster.replace(
        [GroupInfo(id=GROUP, subject="Team Chat"), GroupInfo(id=OTHER_GROUP, subject="Family")]
    )
    return state


def _context(
    *, conversation_id: str = GROUP, sender_jid: str = SENDER, text: str = "hello there"
) -> MessageContext:
    return MessageContext(
        conversation_id=conversation_id,
        message_id="MSG1",
        from_me=False,
        sender_jid=sender_jid,
        text=text,
    )


def test_admits_message_when_every_gate_passes() -> None:
    decision = FilterChain(_state()).evaluate(_context())
    assert decision.admit
    assert decision.reason == REASON_ADMITTED


def test_paused_listener_rejects_first() -> None:
    state = _state()
    state.set_listening(False)
    decision = FilterChain(state).evaluate(_context(conversation_id=OTHER_GROUP, text=""))
    assert decision.reason == REASON_PAUSED


def test_untracked_group_wins_over_too_short() -> None:
    state = _state({"min_msg_chars": 50})
    decision = FilterChain(state).evaluate(_context(conversation_id=OTHER_GROUP, text="hi"))
    assert not decision.admit
    assert decision.reason == REASON_UNTRACKED_GROUP
    assert state.recent_senders() == []


def test_missing_sender_is_rejected() -> None:
    decision = FilterChain(_state()).evaluate(_context(sender_jid=""))
    assert decision.reason == REASON_NO_SENDER


def test_too_short_is_rejected_but_still_recorded() -> None:
    state = _state({"min_msg_chars": 5})
    decision = FilterChain(state).evaluate(_context(text="hey"))
    assert decision.reason == REASON_TOO_SHORT
    recent = state.recent_senders()
    assert recent[0].text == "hey"
    assert recent[0].group == "Team Chat"


def test_length_counts_collapsed_whitespace() -> None:
    state = _state({"min_msg_chars": 5})
    decision = FilterChain(state).evaluate(_context(text="  a  b  "))
    assert decision.reason == REASON_TOO_SHORT


def test_allow_list_matches_across_device_suffix() -> None:
    state = _state({"use_allowed_jids": True, "allowed_jids": ["5551234567@whatsapp.net"]})
    chain = FilterChain(state)
    assert chain.evaluate(_context(sender_jid="5551234567:9@s.whatsapp.net")).admit
    decision = chain.evaluate(_context(sender_jid="5559999999@s.whatsapp.net"))
    assert decision.reason == REASON_SENDER_NOT_ALLOWED


def test_inactive_allow_list_lets_everyone_through() -> None:
    state = _state({"use_allowed_jids": False, "allowed_jids": ["someone@s.whatsapp.net"]})
    assert FilterChain(state).evaluate(_context()).admit


def test_allow_only_policy_ignores_block_lists() -> None:
    state = _state({"use_blocked_jids": True, "blocked_jids": [SENDER]})
    assert FilterChain(state).evaluate(_context()).admit


def test_allow_block_policy_priority() -> None:
    state = _state(
        {
            "sender_policy": SENDER_POLICY_ALLOW_BLOCK,
            "use_blocked_jids": True,
            "blocked_jids": [SENDER],
            "use_allowed_jids": True,
            "allowed_jids": [SENDER],
        }
    )
    decision = FilterChain(state).evaluate(_context())
    assert decision.reason == REASON_SENDER_BLOCKED


def test_allow_block_policy_blocks_by_number() -> None:
    state = _state(
        {
            "sender_policy": SENDER_POLICY_ALLOW_BLOCK,
            "use_blocked_numbers": True,
            "blocked_numbers": ["+1 555 123 4567"],
        }
    )
    decision = FilterChain(state).evaluate(_context(sender_jid="15551234567:3@s.whatsapp.net"))
    assert decision.reason == REASON_SENDER_BLOCKED


def test_allow_block_policy_allows_by_number_fallback() -> None:
    state = _state(
        {
            "sender_policy": SENDER_POLICY_ALLOW_BLOCK,
            "use_allowed_jids": True,
            "allowed_jids": ["other@s.whatsapp.net"],
            "use_allowed_numbers": True,
            "allowed_numbers": ["5551234567"],
        }
    )
    chain = FilterChain(state)
    assert chain.evaluate(_context()).admit
    decision = chain.evaluate(_context(sender_jid="5550000000@s.whatsapp.net"))
    assert decision.reason == REASON_SENDER_NOT_ALLOWED


def test_allow_block_policy_without_allow_lists_admits() -> None:
    state = _state({"sender_policy": SENDER_POLICY_ALLOW_BLOCK})
    assert FilterChain(state).evaluate(_context()).admit
