"""Tracked group roster (core domain).

Groups are selected by display name: a group is tracked when any configured
fragment is a substring of its folded subject. The roster is rebuilt from
scratch on each refresh and swapped as one immutable snapshot so concurrent
readers never observe a partial update.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from core.identity import fold, is_group_jid, normalize_jid
from core.models import GroupInfo
from core.ports import TransportPort

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RosterSnapshot:
    subjects: dict[str, str] = field(default_factory=dict)
    tracked: frozenset[str] = frozenset()


def matches_fragments(subject: str, fragments: Iterable[str]) -> bool:
    folded = fold(subject)
    return any(fragment in folded for fragment in fragments)


def build_snapshot(groups: Iterable[GroupInfo], fragments: tuple[str, ...]) -> RosterSnapshot:
    subjects: dict[str, str] = {}
    tracked: set[str] = set()
    for group in groups:
        jid = normalize_jid(group.id)
        if not is_group_jid(jid):
            continue
        subject = group.subject or ""
        subjects[jid] = subject
        if fragments and matches_fragments(subject, fragments):
            tracked.add(jid)
    return RosterSnapshot(subjects=subjects, tracked=frozenset(tracked))


class GroupRoster:
    """Resolve configured group-name fragments to live group JIDs."""

    def __init__(self, fragments: tuple[str, ...]) -> None:
        self._fragments = fragments
        self._snapshot = RosterSnapshot()

    @property
    def fragments(self) -> tuple[str, ...]:
        return self._fragments

    @property
    def tracked_count(self) -> int:
        return len(self._snapshot.tracked)

    def is_tracked(self, jid: str) -> bool:
        return normalize_jid(jid) in self._snapshot.tracked

    def subject_for(self, jid: str) -> Optional[str]:
        return self._snapshot.subjects.get(normalize_jid(jid))

    def tracked_groups(self) -> list[GroupInfo]:
        snapshot = self._snapshot
        return sorted(
            (GroupInfo(id=jid, subject=snapshot.subjects.get(jid, "")) for jid in snapshot.tracked),
            key=lambda group: fold(group.subject),
        )

    def replace(self, groups: Iterable[GroupInfo]) -> RosterSnapshot:
        self._snapshot = build_snapshot(groups, self._fragments)
        return self._snapshot

    async def refresh(self, transport: TransportPort) -> Optional[RosterSnapshot]:
        """Re-fetch groups from the transport; keep the old roster on failure."""

        try:
            groups = await transport.list_groups()
        except Exception:
            LOGGER.exception("Failed to refresh groups, keeping previous roster")
            return None
        snapshot = self.replace(groups)
        names = [snapshot.subjects[jid] for jid in sorted(snapshot.tracked)]
        LOGGER.info("Tracked groups: %s", " | ".join(names) or "(none)")
        return snapshot
