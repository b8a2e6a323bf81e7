"""
Delivery Engine - End-to-end send/test orchestration.

One call: registry snapshot -> argument validation -> idempotency claim ->
rate-limit wait -> adapter attempts under the backoff schedule -> event log
-> idempotency record -> registry bookkeeping -> result envelope.
"""
from __future__ import annotations

import asyncio
import os
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from ..errors import AuthError, ChannelError, NetworkError, ValidationError, unknown_error
from .adapters import AdapterTable, build_adapters
from .events import ChannelEvent, EventLog
from .idempotency import IdempotencyStore
from .masking import mask_optional_endpoint, mask_target
from .policy import RetryPolicy
from .protocol import (
    AttemptOutcome,
    AttemptStatus,
    CallKind,
    Channel,
    DeliveryRequest,
    DeliveryResult,
    PreparedMessage,
    ProviderAdapter,
)
from .rate_limit import RateLimiter
from .registry import ChannelRegistry, normalize_optional
from .template import merge_options, render_message, truncate_text
from .transport import HttpTransport, ScriptedTransport, is_mock_endpoint

PROBE_TEXT = "courier channel connectivity probe"


class DeliveryEngine:
    """
    Delivers requests to configured channels.

    All stores are injected so a one-shot CLI process and a long-running
    server share this implementation with different lifetimes. send() and
    test() never raise; failures come back as envelopes with ok=False.
    """

    def __init__(
        self,
        registry: ChannelRegistry,
        event_log: EventLog,
        *,
        adapters: Optional[AdapterTable] = None,
        idempotency: Optional[IdempotencyStore] = None,
        rate_limiter: Optional[RateLimiter] = None,
        policy: Optional[RetryPolicy] = None,
        transport: Any = None,
        token_lookup: Callable[[str], Optional[str]] = os.environ.get,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._registry = registry
        self._event_log = event_log
        self._adapters = adapters or build_adapters()
        self._idempotency = idempotency or IdempotencyStore()
        self._rate_limiter = rate_limiter or RateLimiter(sleep=sleep)
        self._policy = policy or RetryPolicy()
        self._transport = transport or HttpTransport()
        self._token_lookup = token_lookup
        self._sleep = sleep

    async def send(
        self,
        channel_id: str,
        text: str,
        *,
        parse_mode: Optional[str] = None,
        title: Optional[str] = None,
        blocks: Optional[list[str]] = None,
        metadata: Optional[dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        token_env: Optional[str] = None,
    ) -> DeliveryResult:
        """Business message; updates channel send state"""
        return await self.deliver(DeliveryRequest(
            channel_id=channel_id,
            text=text,
            call_kind=CallKind.MESSAGE,
            parse_mode=parse_mode,
            title=title,
            blocks=list(blocks or []),
            metadata=metadata,
            idempotency_key=idempotency_key,
            token_env=token_env,
        ))

    async def test(self, channel_id: str, *, token_env: Optional[str] = None) -> DeliveryResult:
        """Connectivity probe through the same pipeline; channel state untouched"""
        return await self.deliver(DeliveryRequest(
            channel_id=channel_id,
            text=PROBE_TEXT,
            call_kind=CallKind.TEST_PROBE,
            token_env=token_env,
        ))

    async def deliver(self, request: DeliveryRequest) -> DeliveryResult:
        try:
            return await self._deliver(request)
        except ChannelError as e:
            logger.warning(f"Delivery to {request.channel_id} failed: [{e.code}] {e.message}")
            return self._failure(request, e)
        except Exception as e:
            logger.exception(f"Unexpected delivery fault for {request.channel_id}")
            return self._failure(request, unknown_error(e))

    @staticmethod
    def _failure(request: DeliveryRequest, error: ChannelError, **fields: Any) -> DeliveryResult:
        return DeliveryResult(
            ok=False,
            channel_id=request.channel_id,
            call_kind=request.call_kind.value,
            error=error.to_dict(),
            **fields,
        )

    async def _deliver(self, request: DeliveryRequest) -> DeliveryResult:
        if not request.text or not request.text.strip():
            raise ValidationError("send text cannot be empty")

        channel = self._registry.get(request.channel_id)
        adapter = self._adapters[channel.kind]
        adapter.validate_config(channel.endpoint, channel.target)

        options = merge_options(
            channel.defaults,
            parse_mode=request.parse_mode,
            title=request.title,
            blocks=request.blocks,
            metadata=request.metadata,
        )
        message = PreparedMessage(
            text=render_message(
                request.text, options["title"], options["blocks"], options["metadata"],
            ),
            parse_mode=adapter.normalize_parse_mode(options["parse_mode"]),
        )

        key = None
        if request.call_kind is CallKind.MESSAGE:
            key = normalize_optional(request.idempotency_key)
        if key is None:
            return await self._dispatch(channel, adapter, request, message, None)

        async with self._idempotency.claim(channel.id, key):
            cached = self._idempotency.check(channel.id, key)
            if cached is not None:
                return self._deduplicated(channel, request, message, key, cached)
            return await self._dispatch(channel, adapter, request, message, key)

    def _resolve_token(self, token_env: Optional[str]) -> Optional[str]:
        if not token_env:
            return None
        token = self._token_lookup(token_env)
        if token is None or not token.strip():
            raise AuthError(f"environment variable {token_env} is required")
        return token

    async def _dispatch(
        self,
        channel: Channel,
        adapter: ProviderAdapter,
        request: DeliveryRequest,
        message: PreparedMessage,
        key: Optional[str],
    ) -> DeliveryResult:
        token = self._resolve_token(
            normalize_optional(request.token_env)
            or channel.auth.token_env
            or adapter.default_token_env
        )

        rate_limited_ms = None
        if adapter.min_interval_ms > 0:
            rate_limited_ms = await self._rate_limiter.acquire(channel.id, adapter.min_interval_ms)

        payload = adapter.build_payload(message, channel)
        if is_mock_endpoint(channel.endpoint):
            transport = ScriptedTransport.from_endpoint(channel.endpoint)
        else:
            transport = self._transport
        attempts, outcome = await self._run_attempts(adapter, channel, payload, token, transport)
        ok = outcome.status is AttemptStatus.SUCCESS

        warnings: list[str] = []
        event_path = self._append_event(ChannelEvent(
            channel_id=channel.id,
            call_kind=request.call_kind.value,
            delivery_status="success" if ok else "failed",
            attempt=attempts,
            http_status=outcome.http_status,
            error=outcome.error,
            text_preview=truncate_text(message.text),
            parse_mode=message.parse_mode,
            idempotency_key=key,
            rate_limited_ms=rate_limited_ms,
        ), warnings)

        if ok:
            logger.info(
                f"Delivered {request.call_kind.value} via {channel.kind.value} "
                f"to {mask_target(channel.kind, channel.target, channel.endpoint)} "
                f"(attempts={attempts})"
            )
            result = DeliveryResult(
                ok=True,
                channel_id=channel.id,
                call_kind=request.call_kind.value,
                delivered_via=channel.kind.value,
                attempts=attempts,
                http_status=outcome.http_status,
                endpoint_masked=mask_optional_endpoint(channel.endpoint),
                target_masked=mask_target(channel.kind, channel.target, channel.endpoint),
                parse_mode=message.parse_mode,
                idempotency_key=key,
                rate_limited_ms=rate_limited_ms,
                event_path=str(event_path) if event_path else None,
            )
        else:
            logger.warning(f"Delivery to {channel.id} failed after {attempts} attempts: {outcome.error}")
            result = self._failure(
                request,
                NetworkError(outcome.error or "channel delivery failed"),
                delivered_via=channel.kind.value,
                attempts=attempts,
                http_status=outcome.http_status,
                idempotency_key=key,
                rate_limited_ms=rate_limited_ms,
                event_path=str(event_path) if event_path else None,
            )

        if key is not None:
            try:
                self._idempotency.record(channel.id, key, result)
            except ChannelError as e:
                logger.warning(f"Idempotency record failed for {channel.id}: {e.message}")
                warnings.append(f"idempotency: {e.message}")
        try:
            self._registry.record_delivery(
                channel.id, ok=ok, error=None if ok else outcome.error, call_kind=request.call_kind,
            )
        except ChannelError as e:
            logger.warning(f"Channel state update failed for {channel.id}: {e.message}")
            warnings.append(f"channel state: {e.message}")

        result.warnings.extend(warnings)
        return result

    async def _run_attempts(
        self,
        adapter: ProviderAdapter,
        channel: Channel,
        payload: dict[str, Any],
        token: Optional[str],
        transport: Any,
    ) -> tuple[int, AttemptOutcome]:
        """
        Idle -> Dispatching(n) -> Success | Retry(n+1) | TerminalFailure.

        A retry waits for the next backoff entry, or the server-suggested
        delay when the outcome carries one. Running past the schedule turns
        the last retryable outcome into a terminal failure.
        """
        attempt = 0
        delay_ms: Optional[int] = None
        while True:
            if delay_ms:
                await self._sleep(delay_ms / 1000)
            attempt += 1
            outcome = await adapter.deliver(
                channel, payload, token, transport, self._policy.timeout_ms,
            )
            logger.debug(
                f"Attempt {attempt} to {channel.id}: {outcome.status.value}"
                f" http={outcome.http_status}"
            )
            if outcome.status is not AttemptStatus.RETRY:
                return attempt, outcome

            next_delay = self._policy.backoff_before_attempt(attempt)
            if next_delay is None:
                return attempt, AttemptOutcome.terminal(
                    f"{outcome.error or 'delivery failed'} (gave up after {attempt} attempts)",
                    http_status=outcome.http_status,
                )
            delay_ms = outcome.retry_after_ms if outcome.retry_after_ms is not None else next_delay

    def _append_event(self, event: ChannelEvent, warnings: list[str]) -> Optional[str]:
        try:
            return str(self._event_log.append(event))
        except ChannelError as e:
            logger.warning(f"Event log write failed for {event.channel_id}: {e.message}")
            warnings.append(f"event log: {e.message}")
            return None

    def _deduplicated(
        self,
        channel: Channel,
        request: DeliveryRequest,
        message: PreparedMessage,
        key: str,
        cached: DeliveryResult,
    ) -> DeliveryResult:
        warnings: list[str] = []
        self._append_event(ChannelEvent(
            channel_id=channel.id,
            call_kind=request.call_kind.value,
            delivery_status="deduplicated",
            attempt=0,
            http_status=cached.http_status,
            text_preview=truncate_text(message.text),
            parse_mode=message.parse_mode,
            idempotency_key=key,
            rate_limited_ms=0,
            deduplicated=True,
        ), warnings)
        logger.info(f"Deduplicated send to {channel.id} (key={key})")
        cached.deduplicated = True
        cached.warnings = warnings
        return cached
