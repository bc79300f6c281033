"""Application entry point for the wareact reaction agent."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

import settings
from adapters import whatsapp_mapper
from adapters.http_api import create_app, start_server
from adapters.qr_render import print_qr
from adapters.whatsapp_bridge import WhatsAppBridgeTransport
from client import build_transport
from core.config import SENDER_POLICY_ALLOW_BLOCK, FilterConfig, with_resolved_numbers
from core.errors import WareactError
from core.filters import FilterChain
from core.identity import digits, fold
from core.ingress import IngressCoordinator, MessageProcessor
from core.lifecycle import ConnectionSupervisor, ReconnectBackoff
from core.models import ConnectionState, ConnectionUpdate, QrUpdate
from core.pacing import ReactionDispatcher
from core.state import AgentState

NAME = "WAREACT"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/wareact.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _on_qr(qr: str) -> None:
    print_qr(qr)
    logging.getLogger(__name__).info(
        "Scan the QR in WhatsApp > Linked devices, or open /qr?token=<API_TOKEN>"
    )


async def _resolve_number_lists(transport: WhatsAppBridgeTransport, config: FilterConfig) -> FilterConfig:
    """Resolve configured phone numbers to JIDs (legacy multi-list policy only)."""

    logger = logging.getLogger(__name__)
    wanted_allowed = sorted(config.allowed_numbers) if config.use_allowed_numbers else []
    wanted_blocked = sorted(config.blocked_numbers) if config.use_blocked_numbers else []
    if not wanted_allowed and not wanted_blocked:
        return config

    lookups = await transport.resolve_numbers(wanted_allowed + wanted_blocked)
    resolved = {lookup.number: lookup.jid for lookup in lookups if lookup.exists and lookup.jid}
    for number in wanted_allowed + wanted_blocked:
        if number not in resolved:
            logger.warning("Number %s is not on WhatsApp", number)
    logger.info("Resolved %s of %s configured numbers", len(resolved), len(wanted_allowed) + len(wanted_blocked))
    return with_resolved_numbers(
        config,
        allowed=[resolved[n] for n in wanted_allowed if n in resolved],
        blocked=[resolved[n] for n in wanted_blocked if n in resolved],
    )


async def _serve() -> None:
    logger = logging.getLogger(__name__)

    transport = build_transport()
    state = AgentState(settings.FILTERS)
    filters = FilterChain(state)
    dispatcher = ReactionDispatcher(settings.PACING, transport, state)
    processor = MessageProcessor(filters, state.ledger, dispatcher)
    coordinator = IngressCoordinator(processor, whatsapp_mapper.build_context)

    logger.info(
        "Groups %s, sender policy %s, emoji %s, delay %s-%sms, auto pause %s",
        list(settings.FILTERS.group_fragments) or "(none)",
        settings.FILTERS.sender_policy,
        settings.PACING.emoji,
        settings.PACING.min_delay_ms,
        settings.PACING.max_delay_ms,
        settings.PACING.auto_pause,
    )

    numbers_resolved = False

    async def on_connected() -> None:
        nonlocal numbers_resolved
        if numbers_resolved or state.filter_config.sender_policy != SENDER_POLICY_ALLOW_BLOCK:
            return
        state.filter_config = await _resolve_number_lists(transport, state.filter_config)
        numbers_resolved = True

    supervisor = ConnectionSupervisor(
        transport,
        state,
        coordinator,
        backoff=ReconnectBackoff(
            initial_ms=settings.RECONNECT_INITIAL_MS,
            max_ms=settings.RECONNECT_MAX_MS,
            factor=settings.RECONNECT_FACTOR,
        ),
        on_qr=_on_qr,
        on_connected=on_connected,
    )

    runner = None
    if settings.HTTP_ENABLED:
        if not settings.API_TOKEN:
            logger.warning("API_TOKEN is not set; the control surface is open")
        runner = await start_server(
            create_app(state, transport, settings.API_TOKEN),
            settings.HTTP_HOST,
            settings.HTTP_PORT,
        )

    try:
        await supervisor.run()
    finally:
        if runner is not None:
            await runner.cleanup()


async def _wait_connected(transport: WhatsAppBridgeTransport) -> None:
    await transport.connect()
    async for event in transport.events():
        if isinstance(event, QrUpdate):
            _on_qr(event.qr)
        elif isinstance(event, ConnectionUpdate):
            if event.state == ConnectionState.CONNECTED:
                return
            if event.state in (ConnectionState.DISCONNECTED, ConnectionState.LOGGED_OUT):
                raise WareactError(f"Connection closed ({event.cause or 'unknown'})")
    raise WareactError("Bridge closed before the session opened")


async def _list_groups() -> None:
    transport = build_transport()
    state = AgentState(settings.FILTERS)
    try:
        await _wait_connected(transport)
        snapshot = await state.roster.refresh(transport)
        if snapshot is None:
            raise WareactError("Could not fetch groups")
        if not snapshot.subjects:
            print("The account is not in any group.")
            return
        ordered = sorted(snapshot.subjects.items(), key=lambda item: fold(item[1]))
        for index, (jid, subject) in enumerate(ordered, start=1):
            marker = "*" if jid in snapshot.tracked else " "
            print(f"{index}. [{marker}] {subject} | {jid}")
        print(f"\n{len(snapshot.tracked)} tracked of {len(snapshot.subjects)} groups.")
    finally:
        await transport.close()


async def _pair(phone: Optional[str]) -> None:
    transport = build_transport()
    number = digits(phone or os.getenv("PAIR_PHONE"))
    code_requested = False
    try:
        await transport.connect()
        async for event in transport.events():
            if isinstance(event, QrUpdate):
                if not number:
                    _on_qr(event.qr)
                elif not code_requested:
                    # A pairing code replaces the QR; it can only be requested while a QR is pending.
                    code = await transport.request_pairing_code(number)
                    code_requested = True
                    print(f"Pairing code for +{number}: {code}")
                    print("Enter it in WhatsApp > Linked devices > Link with phone number.")
            elif isinstance(event, ConnectionUpdate):
                if event.state == ConnectionState.CONNECTED:
                    print("Paired and connected.")
                    return
                if event.state in (ConnectionState.DISCONNECTED, ConnectionState.LOGGED_OUT):
                    raise WareactError(f"Connection closed ({event.cause or 'unknown'})")
        raise WareactError("Bridge closed before the session opened")
    finally:
        await transport.close()


def _exit_with(logger: logging.Logger, exc: BaseException) -> None:
    logger.error("%s", exc)
    sys.exit(1)


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting wareact")
    try:
        asyncio.run(_serve())
    except (WareactError, OSError) as exc:
        # Logged out, bad configuration or a bridge that never came up.
        _exit_with(logger, exc)
    except KeyboardInterrupt:
        logger.info("Stopped")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="wareact")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the reaction agent")
    subparsers.add_parser("groups", help="List joined groups and mark the tracked ones")
    pair_parser = subparsers.add_parser("pair", help="Link this device by QR or pairing code")
    pair_parser.add_argument("--phone", help="Phone number in E.164 without + (defaults to PAIR_PHONE)")

    args = parser.parse_args(argv)
    if args.command == "groups":
        _print_banner()
        _configure_logging()
        try:
            asyncio.run(_list_groups())
        except WareactError as exc:
            _exit_with(logging.getLogger(__name__), exc)
        return
    if args.command == "pair":
        _print_banner()
        _configure_logging()
        try:
            asyncio.run(_pair(args.phone))
        except WareactError as exc:
            _exit_with(logging.getLogger(__name__), exc)
        return
    _run()


if __name__ == "__main__":
    main()
