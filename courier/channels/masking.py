"""
Masking - Safe display forms for secret-bearing endpoints and targets.

Only the last 4 characters of the most identifying token survive.
"""
from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlsplit

from .protocol import ChannelKind

MOCK_HTTP_SCHEME = "mock-http://"
TAIL_LEN = 4
SHORT_VALUE_LEN = 8
TERMINAL_TARGET = "terminal://local"

_SECRET_URL_RE = re.compile(
    r"https?://(?:hooks\.slack\.com/services|(?:canary\.|ptb\.)?discord(?:app)?\.com/api/webhooks"
    r"|api\.telegram\.org/bot)[^\s\"'<>]*"
)
_BOT_TOKEN_RE = re.compile(r"\bbot\d{5,}:[A-Za-z0-9_-]{20,}")

_TARGET_PREFIX = {
    ChannelKind.SLACK_WEBHOOK: "slack://",
    ChannelKind.DISCORD_WEBHOOK: "discord://",
    ChannelKind.TELEGRAM_BOT: "telegram://",
}


def mask_value(value: str) -> str:
    """Mask an opaque value, keeping a 4-char tail only for long values"""
    value = value.strip()
    if len(value) <= SHORT_VALUE_LEN:
        return "***"
    return f"***{value[-TAIL_LEN:]}"


def mask_endpoint(endpoint: str) -> str:
    if endpoint.startswith(MOCK_HTTP_SCHEME):
        return "mock-http://***"
    parts = urlsplit(endpoint)
    if parts.scheme and parts.netloc:
        host = parts.hostname or "-"
        path = parts.path
        tail = path[-TAIL_LEN:] if len(path) > TAIL_LEN else ""
        return f"{parts.scheme}://{host}/***{tail}"
    return mask_value(endpoint)


def mask_optional_endpoint(endpoint: Optional[str]) -> Optional[str]:
    return mask_endpoint(endpoint) if endpoint else None


def _last_segment(endpoint: str) -> str:
    if endpoint.startswith(MOCK_HTTP_SCHEME):
        return ""
    path = urlsplit(endpoint).path.rstrip("/")
    return path.rsplit("/", 1)[-1]


def mask_target(
    kind: ChannelKind, target: Optional[str], endpoint: Optional[str],
) -> Optional[str]:
    """Display form of where a channel delivers to"""
    if kind is ChannelKind.TERMINAL:
        return TERMINAL_TARGET
    prefix = _TARGET_PREFIX[kind]
    if kind is ChannelKind.TELEGRAM_BOT:
        if not target:
            return None
        return prefix + mask_value(target)
    if not endpoint:
        return None
    segment = _last_segment(endpoint)
    if len(segment) <= TAIL_LEN:
        return f"{prefix}***"
    return f"{prefix}***{segment[-TAIL_LEN:]}"


def redact(text: str) -> str:
    """Mask provider URLs and bot tokens embedded in free text"""
    text = _SECRET_URL_RE.sub(lambda m: mask_endpoint(m.group(0)), text)
    return _BOT_TOKEN_RE.sub("bot***", text)
