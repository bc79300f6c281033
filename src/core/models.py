"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to the bridge's wire format.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class MessageContext:
    """Minimal message context used by the admission pipeline."""

    conversation_id: str
    message_id: str
    from_me: bool
    sender_jid: str
    text: str
    push_name: Optional[str] = None


@dataclass(frozen=True)
class Decision:
    """Outcome of evaluating one message."""

    admit: bool
    reason: str


@dataclass(frozen=True)
class GroupInfo:
    """A group the account participates in, as reported by the transport."""

    id: str
    subject: str


@dataclass(frozen=True)
class NumberLookup:
    """Result of resolving a phone number to a JID."""

    number: str
    exists: bool
    jid: Optional[str]


@dataclass(frozen=True)
class RecentSender:
    """Observability record of a message seen in a tracked group."""

    jid: str
    group: str
    text: str
    ts: int

    def as_dict(self) -> dict[str, Any]:
        return {"jid": self.jid, "group": self.group, "text": self.text, "ts": self.ts}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    LOGGED_OUT = "logged_out"


# Disconnect cause reported by the bridge when the phone unlinked this device.
CAUSE_LOGGED_OUT = "logged_out"


@dataclass(frozen=True)
class ConnectionUpdate:
    """Connection state change pushed by the transport."""

    state: ConnectionState
    cause: Optional[str] = None


@dataclass(frozen=True)
class QrUpdate:
    """A fresh pairing QR payload pushed by the transport."""

    qr: str


@dataclass(frozen=True)
class MessagesUpsert:
    """A batch of raw inbound messages.

    ``tag`` is ``"notify"`` for live deliveries; anything else is history sync.
    """

    tag: str
    messages: list[dict[str, Any]] = field(default_factory=list)
