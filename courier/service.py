"""
Channel Service - Wires settings into the registry, stores, and delivery engine.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, TextIO

from config.settings import Settings

from .channels.adapters import build_adapters
from .channels.engine import DeliveryEngine
from .channels.events import EventLog
from .channels.idempotency import IdempotencyStore
from .channels.policy import RetryPolicy
from .channels.rate_limit import RateLimiter
from .channels.registry import ChannelRegistry


@dataclass
class ChannelService:
    """Everything one invocation needs, sharing a single adapter table"""
    settings: Settings
    registry: ChannelRegistry
    event_log: EventLog
    engine: DeliveryEngine


def build_service(
    settings: Optional[Settings] = None,
    *,
    transport: Any = None,
    terminal_stream: Optional[TextIO] = None,
    persist_state: bool = True,
) -> ChannelService:
    """
    Build a service from settings.

    persist_state=False keeps idempotency and rate-limit state in memory,
    which suits a long-running process; the CLI persists it to disk.
    """
    settings = settings or Settings()
    adapters = build_adapters(
        telegram_min_interval_ms=settings.telegram_min_interval_ms,
        telegram_retry_after_default_ms=settings.telegram_retry_after_default_ms,
        terminal_stream=terminal_stream,
    )
    registry = ChannelRegistry(settings.channels_file, adapters=adapters)
    event_log = EventLog(settings.events_dir)
    engine = DeliveryEngine(
        registry,
        event_log,
        adapters=adapters,
        idempotency=IdempotencyStore(
            window_seconds=settings.idempotency_window_seconds,
            path=settings.idempotency_file if persist_state else None,
        ),
        rate_limiter=RateLimiter(state_dir=settings.rate_dir if persist_state else None),
        policy=RetryPolicy(timeout_ms=settings.http_timeout_ms),
        transport=transport,
    )
    return ChannelService(
        settings=settings, registry=registry, event_log=event_log, engine=engine,
    )
