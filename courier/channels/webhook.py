"""
Webhook Adapter - Shared behaviour for chat-webhook providers.
"""
from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlsplit

from loguru import logger

from ..errors import ValidationError
from .masking import mask_endpoint
from .policy import should_retry_http_status
from .protocol import (
    AttemptOutcome,
    Capabilities,
    Channel,
    ChannelKind,
    PreparedMessage,
)
from .transport import TransportError, is_mock_endpoint, parse_mock_steps


class WebhookAdapter:
    """
    Base adapter for incoming-webhook providers.

    Success is any 2xx; 429 and 5xx are retryable; any other status is terminal.
    Subclasses pin the accepted hosts and path shape.
    """

    kind: ChannelKind
    label = "webhook"
    allowed_hosts: frozenset[str] = frozenset()
    example_host = ""
    path_prefix = "/"
    min_path_segments = 1
    capabilities = Capabilities(
        supports_parse_mode=False,
        supports_message_template=True,
        supports_idempotency_key=True,
        supports_rate_limit_report=False,
    )
    min_interval_ms = 0
    default_token_env: Optional[str] = None

    def validate_config(self, endpoint: Optional[str], target: Optional[str]) -> None:
        if target:
            raise ValidationError(f"{self.kind.value} channels do not take a chat id/target")
        if not endpoint:
            raise ValidationError(f"{self.kind.value} requires --endpoint")
        if is_mock_endpoint(endpoint):
            parse_mock_steps(endpoint)
            return
        parts = urlsplit(endpoint)
        host = (parts.hostname or "").lower()
        segments = [s for s in parts.path[len(self.path_prefix):].split("/") if s]
        if (
            parts.scheme != "https"
            or host not in self.allowed_hosts
            or not parts.path.startswith(self.path_prefix)
            or len(segments) < self.min_path_segments
        ):
            raise ValidationError(
                f"{self.kind.value} endpoint must look like https://{self.example_host}"
                f"{self.path_prefix}..."
            )

    def normalize_parse_mode(self, parse_mode: Optional[str]) -> Optional[str]:
        if parse_mode and parse_mode.strip():
            raise ValidationError("--parse-mode is only supported for telegram_bot channels")
        return None

    def build_payload(self, message: PreparedMessage, channel: Channel) -> dict[str, Any]:
        return {"text": message.text}

    def request_url(self, channel: Channel, token: Optional[str]) -> str:
        return channel.endpoint

    def request_headers(self, token: Optional[str]) -> dict[str, str]:
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    def classify(self, http_status: int, body: str) -> AttemptOutcome:
        if 200 <= http_status < 300:
            return AttemptOutcome.success(http_status)
        if should_retry_http_status(http_status):
            kind = "rate limited" if http_status == 429 else "server error"
            return AttemptOutcome.retry(
                f"{self.label} returned {kind} status {http_status}", http_status=http_status,
            )
        return AttemptOutcome.terminal(
            f"{self.label} returned client error status {http_status}", http_status=http_status,
        )

    async def deliver(
        self,
        channel: Channel,
        payload: dict[str, Any],
        token: Optional[str],
        transport: Any,
        timeout_ms: int,
    ) -> AttemptOutcome:
        # Stored config may predate the current host rules
        self.validate_config(channel.endpoint, channel.target)
        try:
            response = await transport.post(
                self.request_url(channel, token),
                payload,
                headers=self.request_headers(token),
                timeout_ms=timeout_ms,
            )
        except TransportError as e:
            logger.debug(f"{self.label} {mask_endpoint(channel.endpoint)}: {e}")
            if e.timeout:
                return AttemptOutcome.retry(f"{self.label} request timed out")
            return AttemptOutcome.retry(f"{self.label} {e}")
        return self.classify(response.status, response.body)
