"""Identity helpers (core domain).

WhatsApp addresses users and groups by JID (``user[:device]@domain``). These
helpers reduce a JID to a stable, comparable form.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Optional

LEGACY_USER_DOMAIN = "whatsapp.net"
USER_DOMAIN = "s.whatsapp.net"
GROUP_DOMAIN = "g.us"


def normalize_jid(raw: Optional[str]) -> str:
    """Return the canonical JID: lowercase, device suffix stripped, domain homogenized."""

    if not raw:
        return ""
    user_raw, _, domain_raw = raw.strip().lower().partition("@")
    user = user_raw.split(":", 1)[0]
    if domain_raw == LEGACY_USER_DOMAIN:
        domain_raw = USER_DOMAIN
    if not domain_raw:
        return user
    return f"{user}@{domain_raw}"


def digits(text: Optional[str]) -> str:
    """Keep only the digits of ``text``."""

    return re.sub(r"\D", "", text or "")


def extract_phone(raw: Optional[str]) -> str:
    """Return the numeric local part of a JID (legacy number matching only)."""

    local = (raw or "").split("@", 1)[0]
    return digits(local.split(":", 1)[0])


def is_group_jid(raw: Optional[str]) -> bool:
    return normalize_jid(raw).endswith(f"@{GROUP_DOMAIN}")


def fold(text: Optional[str]) -> str:
    """Lowercase and strip diacritics so "Équipe" and "equipe" compare equal."""

    decomposed = unicodedata.normalize("NFD", text or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.lower().strip()


def preview(text: Optional[str], limit: int = 80) -> str:
    """Clip ``text`` to ``limit`` characters, ending with an ellipsis when cut."""

    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def collapse_whitespace(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()
