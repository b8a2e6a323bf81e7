"""
Terminal Channel - Local sink, no network.
"""
from __future__ import annotations

import sys
from typing import Any, Optional, TextIO

from ..errors import ValidationError
from .protocol import (
    AttemptOutcome,
    Capabilities,
    Channel,
    ChannelKind,
    PreparedMessage,
)


class TerminalAdapter:
    """Writes the rendered message to a local stream; always succeeds"""

    kind = ChannelKind.TERMINAL
    capabilities = Capabilities(
        supports_parse_mode=False,
        supports_message_template=True,
        supports_idempotency_key=True,
        supports_rate_limit_report=False,
    )
    min_interval_ms = 0
    default_token_env: Optional[str] = None

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream

    def validate_config(self, endpoint: Optional[str], target: Optional[str]) -> None:
        if endpoint:
            raise ValidationError("terminal channels do not take an endpoint")
        if target:
            raise ValidationError("terminal channels do not take a chat id/target")

    def normalize_parse_mode(self, parse_mode: Optional[str]) -> Optional[str]:
        if parse_mode and parse_mode.strip():
            raise ValidationError("--parse-mode is only supported for telegram_bot channels")
        return None

    def build_payload(self, message: PreparedMessage, channel: Channel) -> dict[str, Any]:
        return {"text": message.text}

    def classify(self, http_status: int, body: str) -> AttemptOutcome:
        return AttemptOutcome.success(http_status)

    async def deliver(
        self,
        channel: Channel,
        payload: dict[str, Any],
        token: Optional[str],
        transport: Any,
        timeout_ms: int,
    ) -> AttemptOutcome:
        # stdout stays reserved for --json output
        stream = self._stream or sys.stderr
        print(f"[{channel.name}] {payload['text']}", file=stream)
        stream.flush()
        return AttemptOutcome.success(200)
