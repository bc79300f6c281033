"""Core configuration dataclasses.

We keep config file parsing outside the core, but these dataclasses define
the shape the core expects, and the builders below normalize raw values so
adapters and the app layer can construct them safely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Iterable, Optional

from core.identity import digits, fold, normalize_jid

LOGGER = logging.getLogger(__name__)

SENDER_POLICY_ALLOW_ONLY = "allow_only"
SENDER_POLICY_ALLOW_BLOCK = "allow_block"
SENDER_POLICIES = (SENDER_POLICY_ALLOW_ONLY, SENDER_POLICY_ALLOW_BLOCK)

DEFAULT_EMOJI = "👾"
LEDGER_HIGH_WATER = 10_000
LEDGER_LOW_WATER = 5_000
LEDGER_EVICT_INTERVAL_S = 60.0
RECENT_SENDERS_LIMIT = 50
QR_TTL_SECONDS = 120


@dataclass(frozen=True)
class FilterConfig:
    """Admission filter settings, fixed for the lifetime of the process."""

    group_fragments: tuple[str, ...]
    min_msg_chars: int = 0
    sender_policy: str = SENDER_POLICY_ALLOW_ONLY
    use_allowed_jids: bool = False
    allowed_jids: frozenset[str] = frozenset()
    use_blocked_jids: bool = False
    blocked_jids: frozenset[str] = frozenset()
    use_allowed_numbers: bool = False
    allowed_numbers: frozenset[str] = frozenset()
    use_blocked_numbers: bool = False
    blocked_numbers: frozenset[str] = frozenset()
    # JIDs resolved from the number lists at startup.
    number_allowed_jids: frozenset[str] = frozenset()
    number_blocked_jids: frozenset[str] = frozenset()


@dataclass(frozen=True)
class PacingConfig:
    """Reaction pacing settings. Use ``build_pacing_config`` to get valid bounds."""

    emoji: str
    min_delay_ms: int
    max_delay_ms: int
    auto_pause: bool = False


def _to_int(value: Any, fallback: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_list(value: Any) -> list[str]:
    # Accept both JSON lists and the comma separated strings used in .env files.
    if value is None:
        return []
    if isinstance(value, str):
        return [part for part in value.split(",")]
    return [str(part) for part in value]


def parse_group_fragments(raw_groups: Any) -> tuple[str, ...]:
    """Fold group fragments, dropping ``#comment`` suffixes and empty entries."""

    fragments = []
    for entry in _as_list(raw_groups):
        folded = fold(entry.split("#", 1)[0])
        if folded:
            fragments.append(folded)
    return tuple(fragments)


def _jid_set(values: Iterable[str]) -> frozenset[str]:
    return frozenset(jid for jid in (normalize_jid(v) for v in values) if jid)


def _number_set(values: Iterable[str]) -> frozenset[str]:
    return frozenset(num for num in (digits(v) for v in values) if num)


def build_filter_config(raw_groups: Any, raw_filters: Optional[dict]) -> FilterConfig:
    """Build a FilterConfig from config.json sections."""

    raw_filters = raw_filters or {}
    policy = str(raw_filters.get("sender_policy", SENDER_POLICY_ALLOW_ONLY)).strip().lower()
    if policy not in SENDER_POLICIES:
        LOGGER.warning("Unknown sender_policy %r, using %s", policy, SENDER_POLICY_ALLOW_ONLY)
        policy = SENDER_POLICY_ALLOW_ONLY

    min_chars = _to_int(raw_filters.get("min_msg_chars", 0), 0)
    if min_chars < 0:
        LOGGER.warning("min_msg_chars %s is negative, using 0", min_chars)
        min_chars = 0

    return FilterConfig(
        group_fragments=parse_group_fragments(raw_groups),
        min_msg_chars=min_chars,
        sender_policy=policy,
        use_allowed_jids=_to_bool(raw_filters.get("use_allowed_jids", False)),
        allowed_jids=_jid_set(_as_list(raw_filters.get("allowed_jids"))),
        use_blocked_jids=_to_bool(raw_filters.get("use_blocked_jids", False)),
        blocked_jids=_jid_set(_as_list(raw_filters.get("blocked_jids"))),
        use_allowed_numbers=_to_bool(raw_filters.get("use_allowed_numbers", False)),
        allowed_numbers=_number_set(_as_list(raw_filters.get("allowed_numbers"))),
        use_blocked_numbers=_to_bool(raw_filters.get("use_blocked_numbers", False)),
        blocked_numbers=_number_set(_as_list(raw_filters.get("blocked_numbers"))),
    )


def build_pacing_config(raw_reactions: Optional[dict]) -> PacingConfig:
    """Build a PacingConfig, correcting delay bounds instead of failing.

    ``min_delay_ms`` is clamped to >= 0 and ``max_delay_ms`` to >= min.
    """

    raw_reactions = raw_reactions or {}
    raw_min = _to_int(raw_reactions.get("min_delay_ms", 100), 0)
    min_delay = max(0, raw_min)
    raw_max = _to_int(raw_reactions.get("max_delay_ms", 1000), min_delay)
    max_delay = max(min_delay, raw_max)
    if (min_delay, max_delay) != (raw_min, raw_max):
        LOGGER.warning(
            "Delay bounds corrected from [%s, %s] to [%s, %s]",
            raw_min,
            raw_max,
            min_delay,
            max_delay,
        )

    return PacingConfig(
        emoji=str(raw_reactions.get("emoji") or DEFAULT_EMOJI),
        min_delay_ms=min_delay,
        max_delay_ms=max_delay,
        auto_pause=_to_bool(raw_reactions.get("auto_pause", False)),
    )


def with_resolved_numbers(config: FilterConfig, allowed: Iterable[str], blocked: Iterable[str]) -> FilterConfig:
    """Return a copy carrying the JIDs resolved from the configured numbers."""

    return replace(
        config,
        number_allowed_jids=_jid_set(allowed),
        number_blocked_jids=_jid_set(blocked),
    )
