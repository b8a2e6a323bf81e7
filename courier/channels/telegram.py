"""
Telegram Channel - Bot API sendMessage delivery.
"""
from __future__ import annotations

import json
import re
from typing import Any, Optional
from urllib.parse import urlsplit

from loguru import logger

from ..errors import ValidationError
from .masking import mask_target
from .protocol import (
    AttemptOutcome,
    Capabilities,
    Channel,
    ChannelKind,
    PreparedMessage,
)
from .transport import TransportError, is_mock_endpoint, parse_mock_steps

TELEGRAM_API_BASE = "https://api.telegram.org"
TELEGRAM_MAX_MESSAGE_LENGTH = 4096
DEFAULT_TELEGRAM_MIN_INTERVAL_MS = 800
DEFAULT_RETRY_AFTER_MS = 1000

PARSE_MODES: dict[str, str] = {
    "markdown": "Markdown",
    "markdownv2": "MarkdownV2",
    "markdown_v2": "MarkdownV2",
    "mdv2": "MarkdownV2",
    "html": "HTML",
}

_CHAT_ID_RE = re.compile(r"^(-?\d+|@[A-Za-z][A-Za-z0-9_]{3,})$")


class TelegramBotAdapter:
    """
    Telegram Bot API channel.

    Success needs HTTP 2xx and a body with "ok": true. A 2xx carrying
    "ok": false is terminal; a 2xx whose body is not JSON is retried.
    429 honours parameters.retry_after when the server sends one.
    """

    kind = ChannelKind.TELEGRAM_BOT
    capabilities = Capabilities(
        supports_parse_mode=True,
        supports_message_template=True,
        supports_idempotency_key=True,
        supports_rate_limit_report=True,
    )
    default_token_env = "TELEGRAM_BOT_TOKEN"

    def __init__(
        self,
        min_interval_ms: int = DEFAULT_TELEGRAM_MIN_INTERVAL_MS,
        retry_after_default_ms: int = DEFAULT_RETRY_AFTER_MS,
    ):
        self.min_interval_ms = min_interval_ms
        self.retry_after_default_ms = retry_after_default_ms

    def validate_config(self, endpoint: Optional[str], target: Optional[str]) -> None:
        if not target:
            raise ValidationError("telegram_bot requires --chat-id")
        if not _CHAT_ID_RE.match(target.strip()):
            raise ValidationError("telegram chat id must be numeric or an @channel username")
        if not endpoint:
            return
        if is_mock_endpoint(endpoint):
            parse_mock_steps(endpoint)
            return
        parts = urlsplit(endpoint)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValidationError("telegram_bot endpoint must be an http(s) API base URL")

    def normalize_parse_mode(self, parse_mode: Optional[str]) -> Optional[str]:
        if parse_mode is None or not parse_mode.strip():
            return None
        normalized = PARSE_MODES.get(parse_mode.strip().lower())
        if normalized is None:
            raise ValidationError(
                f"unsupported parse mode '{parse_mode.strip()}', expected markdown|markdown_v2|html"
            )
        return normalized

    def build_payload(self, message: PreparedMessage, channel: Channel) -> dict[str, Any]:
        text = message.text
        if len(text) > TELEGRAM_MAX_MESSAGE_LENGTH:
            text = text[: TELEGRAM_MAX_MESSAGE_LENGTH - 3] + "..."
        payload: dict[str, Any] = {"chat_id": channel.target, "text": text}
        if message.parse_mode:
            payload["parse_mode"] = message.parse_mode
        return payload

    def request_url(self, channel: Channel, token: Optional[str]) -> str:
        base = (channel.endpoint or TELEGRAM_API_BASE).rstrip("/")
        return f"{base}/bot{token}/sendMessage"

    def classify(self, http_status: int, body: str) -> AttemptOutcome:
        try:
            data = json.loads(body) if body else None
        except ValueError:
            data = None

        if http_status == 429:
            return AttemptOutcome.retry(
                "telegram rate limited (429)",
                http_status=http_status,
                retry_after_ms=self._retry_after_ms(data),
            )
        if 500 <= http_status < 600:
            return AttemptOutcome.retry(
                f"telegram returned server error status {http_status}", http_status=http_status,
            )
        if 200 <= http_status < 300:
            if not isinstance(data, dict):
                return AttemptOutcome.retry(
                    "telegram returned an unparseable response body", http_status=http_status,
                )
            if data.get("ok") is True:
                return AttemptOutcome.success(http_status)
            return AttemptOutcome.terminal(
                f"telegram rejected message: {data.get('description', 'ok=false')}",
                http_status=http_status,
            )
        description = data.get("description") if isinstance(data, dict) else None
        return AttemptOutcome.terminal(
            f"telegram returned client error status {http_status}"
            + (f": {description}" if description else ""),
            http_status=http_status,
        )

    def _retry_after_ms(self, data: Any) -> int:
        if isinstance(data, dict):
            params = data.get("parameters") or {}
            retry_after = params.get("retry_after") if isinstance(params, dict) else None
            if isinstance(retry_after, (int, float)) and retry_after >= 0:
                return int(retry_after * 1000)
        return self.retry_after_default_ms

    async def deliver(
        self,
        channel: Channel,
        payload: dict[str, Any],
        token: Optional[str],
        transport: Any,
        timeout_ms: int,
    ) -> AttemptOutcome:
        self.validate_config(channel.endpoint, channel.target)
        try:
            response = await transport.post(
                self.request_url(channel, token), payload, timeout_ms=timeout_ms,
            )
        except TransportError as e:
            logger.debug(f"telegram {mask_target(self.kind, channel.target, None)}: {e}")
            if e.timeout:
                return AttemptOutcome.retry("telegram request timed out")
            return AttemptOutcome.retry(f"telegram {e}")
        return self.classify(response.status, response.body)
