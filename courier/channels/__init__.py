"""
Channel Delivery - Registry, provider adapters, and the delivery engine.
"""
from .protocol import (
    AttemptOutcome,
    AttemptStatus,
    CallKind,
    Capabilities,
    Channel,
    ChannelDefaults,
    ChannelKind,
    ChannelStatus,
    DeliveryRequest,
    DeliveryResult,
    ProviderAdapter,
    resolve_kind,
)
from .adapters import build_adapters
from .registry import ChannelRegistry
from .idempotency import IdempotencyStore
from .rate_limit import RateLimiter
from .events import ChannelEvent, EventLog
from .policy import RetryPolicy
from .transport import HttpTransport, ScriptedTransport
from .engine import DeliveryEngine
from .slack import SlackWebhookAdapter
from .discord import DiscordWebhookAdapter
from .telegram import TelegramBotAdapter
from .terminal import TerminalAdapter

__all__ = [
    "AttemptOutcome",
    "AttemptStatus",
    "CallKind",
    "Capabilities",
    "Channel",
    "ChannelDefaults",
    "ChannelKind",
    "ChannelStatus",
    "DeliveryRequest",
    "DeliveryResult",
    "ProviderAdapter",
    "resolve_kind",
    "build_adapters",
    "ChannelRegistry",
    "IdempotencyStore",
    "RateLimiter",
    "ChannelEvent",
    "EventLog",
    "RetryPolicy",
    "HttpTransport",
    "ScriptedTransport",
    "DeliveryEngine",
    "SlackWebhookAdapter",
    "DiscordWebhookAdapter",
    "TelegramBotAdapter",
    "TerminalAdapter",
]
