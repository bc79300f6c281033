"""Ports (interfaces) used by the core pipeline.

The transport port defines the minimal contract the core needs from a chat
connection so the pipeline can run against the WhatsApp bridge or a fake.
"""

from __future__ import annotations

from typing import AsyncIterator, Optional, Protocol, Union

from core.models import ConnectionUpdate, GroupInfo, MessagesUpsert, NumberLookup, QrUpdate

TransportEvent = Union[ConnectionUpdate, QrUpdate, MessagesUpsert]


class TransportPort(Protocol):
    """Chat transport operations required by the core."""

    async def connect(self) -> None:
        ...

    def events(self) -> AsyncIterator[TransportEvent]:
        ...

    async def send_reaction(
        self,
        conversation_id: str,
        message_id: str,
        emoji: str,
        participant: Optional[str] = None,
    ) -> None:
        ...

    async def list_groups(self) -> list[GroupInfo]:
        ...

    async def request_pairing_code(self, phone: str) -> str:
        ...

    async def resolve_numbers(self, numbers: list[str]) -> list[NumberLookup]:
        ...

    async def close(self) -> None:
        ...
