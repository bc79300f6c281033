"""WhatsApp-to-core message mapping adapter.

The bridge forwards Baileys ``WebMessageInfo`` payloads as JSON. Their content
is polymorphic (plain text, captioned media, button and list replies), so each
known content kind gets its own extractor, tried in a fixed priority order.
This keeps wire-format details out of the core pipeline.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from core.identity import collapse_whitespace
from core.models import MessageContext

# Wrappers whose inner ``message`` carries the real content.
_WRAPPER_KINDS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "documentWithCaptionMessage",
)


def _get(mapping: Any, *path: str) -> Any:
    current = mapping
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def unwrap_content(content: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Strip ephemeral/view-once wrappers, returning the innermost content."""

    current = content if isinstance(content, dict) else {}
    for _ in range(len(_WRAPPER_KINDS)):
        for kind in _WRAPPER_KINDS:
            inner = _get(current, kind, "message")
            if isinstance(inner, dict):
                current = inner
                break
        else:
            return current
    return current


TextExtractor = Callable[[dict[str, Any]], str]

TEXT_EXTRACTORS: tuple[tuple[str, TextExtractor], ...] = (
    ("conversation", lambda c: _text(c.get("conversation"))),
    ("extendedTextMessage", lambda c: _text(_get(c, "extendedTextMessage", "text"))),
    ("imageMessage", lambda c: _text(_get(c, "imageMessage", "caption"))),
    ("videoMessage", lambda c: _text(_get(c, "videoMessage", "caption"))),
    ("documentMessage", lambda c: _text(_get(c, "documentMessage", "caption"))),
    ("buttonsMessage", lambda c: _text(_get(c, "buttonsMessage", "contentText"))),
    ("listResponseMessage", lambda c: _text(_get(c, "listResponseMessage", "title"))),
    ("templateButtonReplyMessage", lambda c: _text(_get(c, "templateButtonReplyMessage", "selectedId"))),
    ("interactiveResponseMessage", lambda c: _text(_get(c, "interactiveResponseMessage", "body", "text"))),
)


def content_kind(raw: dict[str, Any]) -> Optional[str]:
    """Return the first content kind that yields text, if any."""

    content = unwrap_content(raw.get("message"))
    for kind, extractor in TEXT_EXTRACTORS:
        if extractor(content):
            return kind
    return None


def extract_text(raw: dict[str, Any]) -> str:
    """Return the readable text of a message, whitespace collapsed."""

    content = unwrap_content(raw.get("message"))
    for _, extractor in TEXT_EXTRACTORS:
        text = extractor(content)
        if text:
            return collapse_whitespace(text)
    return ""


SENDER_PATHS: tuple[tuple[str, ...], ...] = (
    ("key", "participant"),
    ("participant",),
    ("message", "extendedTextMessage", "contextInfo", "participant"),
    ("message", "ephemeralMessage", "message", "extendedTextMessage", "contextInfo", "participant"),
)


def extract_sender(raw: dict[str, Any]) -> str:
    """Return the participant JID from the first populated sender path."""

    for path in SENDER_PATHS:
        value = _get(raw, *path)
        if isinstance(value, str) and value:
            return value
    return ""


def build_context(raw: dict[str, Any]) -> MessageContext:
    """Build a core MessageContext from a raw bridge message."""

    if not isinstance(raw, dict):
        raise TypeError(f"Unexpected message payload: {type(raw).__name__}")

    key = raw.get("key") if isinstance(raw.get("key"), dict) else {}
    return MessageContext(
        conversation_id=_text(key.get("remoteJid")),
        message_id=_text(key.get("id")),
        from_me=bool(key.get("fromMe")),
        sender_jid=extract_sender(raw),
        text=extract_text(raw),
        push_name=raw.get("pushName") or None,
    )
