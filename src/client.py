"""Transport factory for wareact.

We explicitly manage the transport's lifecycle (connect/close) from the
supervisor so it is obvious when the bridge session starts and ends.
"""

from __future__ import annotations

import logging

import settings
from core.errors import ConfigError
from adapters.whatsapp_bridge import WhatsAppBridgeTransport


def build_transport() -> WhatsAppBridgeTransport:
    """Create the WhatsApp bridge transport from settings and environment.

    BRIDGE_TOKEN is read from .env via python-dotenv to keep secrets out of
    the repo.
    """

    # Fail fast on missing credentials to avoid an ambiguous bridge rejection.
    if not settings.BRIDGE_TOKEN:
        raise ConfigError("Missing BRIDGE_TOKEN in environment")
    if not settings.BRIDGE_URL:
        raise ConfigError("Missing bridge url (config.json bridge.url or BRIDGE_URL)")

    logging.getLogger(__name__).info("Initializing WhatsApp bridge transport")

    return WhatsAppBridgeTransport(
        settings.BRIDGE_URL,
        settings.BRIDGE_TOKEN,
        command_timeout_s=settings.BRIDGE_COMMAND_TIMEOUT_S,
    )
