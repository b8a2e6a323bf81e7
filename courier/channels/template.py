"""
Message Template - Default merging and text rendering for outbound messages.
"""
from __future__ import annotations

import json
from typing import Any, Optional

from .protocol import ChannelDefaults

TEXT_PREVIEW_LIMIT = 120


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def merge_options(
    defaults: ChannelDefaults,
    *,
    parse_mode: Optional[str] = None,
    title: Optional[str] = None,
    blocks: Optional[list[str]] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Explicit value > stored default > nothing, per field"""
    return {
        "parse_mode": _clean(parse_mode) or _clean(defaults.parse_mode),
        "title": _clean(title) or _clean(defaults.title),
        "blocks": list(blocks) if blocks else list(defaults.blocks),
        "metadata": metadata if metadata else (defaults.metadata or None),
    }


def _format_metadata_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def render_message(
    text: str,
    title: Optional[str] = None,
    blocks: Optional[list[str]] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> str:
    """Title, blocks, sorted metadata lines, then body, blank-line separated"""
    segments: list[str] = []
    if _clean(title):
        segments.append(title.strip())
    for block in blocks or []:
        if _clean(block):
            segments.append(block.strip())
    if metadata:
        lines = [f"{key}: {_format_metadata_value(metadata[key])}" for key in sorted(metadata)]
        segments.append("\n".join(lines))
    segments.append(text.strip())
    return "\n\n".join(segments)


def truncate_text(text: str, limit: int = TEXT_PREVIEW_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
