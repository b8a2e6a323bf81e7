"""
Adapter Table - One provider adapter per channel kind.
"""
from __future__ import annotations

from typing import Optional, TextIO

from .discord import DiscordWebhookAdapter
from .protocol import ChannelKind, ProviderAdapter
from .slack import SlackWebhookAdapter
from .telegram import (
    DEFAULT_RETRY_AFTER_MS,
    DEFAULT_TELEGRAM_MIN_INTERVAL_MS,
    TelegramBotAdapter,
)
from .terminal import TerminalAdapter

AdapterTable = dict[ChannelKind, ProviderAdapter]


def build_adapters(
    *,
    telegram_min_interval_ms: int = DEFAULT_TELEGRAM_MIN_INTERVAL_MS,
    telegram_retry_after_default_ms: int = DEFAULT_RETRY_AFTER_MS,
    terminal_stream: Optional[TextIO] = None,
) -> AdapterTable:
    """Build the adapter table; every ChannelKind must be covered"""
    adapters: AdapterTable = {
        ChannelKind.SLACK_WEBHOOK: SlackWebhookAdapter(),
        ChannelKind.DISCORD_WEBHOOK: DiscordWebhookAdapter(),
        ChannelKind.TELEGRAM_BOT: TelegramBotAdapter(
            min_interval_ms=telegram_min_interval_ms,
            retry_after_default_ms=telegram_retry_after_default_ms,
        ),
        ChannelKind.TERMINAL: TerminalAdapter(stream=terminal_stream),
    }
    missing = set(ChannelKind) - set(adapters)
    if missing:
        raise RuntimeError(f"no adapter for kinds: {sorted(k.value for k in missing)}")
    return adapters
