"""
Courier - Outbound notification delivery for agent tooling.

Channels (Slack/Discord webhooks, Telegram bots, the local terminal) are
configured once and addressed by id; the delivery engine handles retries,
idempotency, rate limiting and the per-channel event log.
"""
from .errors import (
    AuthError,
    ChannelError,
    ConfigError,
    IoError,
    NetworkError,
    ValidationError,
)
from .service import ChannelService, build_service

__version__ = "0.1.0"

__all__ = [
    "AuthError",
    "ChannelError",
    "ConfigError",
    "IoError",
    "NetworkError",
    "ValidationError",
    "ChannelService",
    "build_service",
]
