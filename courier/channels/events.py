"""
Event Log - Append-only per-channel delivery audit trail (JSON Lines).
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..errors import ConfigError, IoError
from .protocol import utcnow


@dataclass(frozen=True)
class ChannelEvent:
    """Single immutable delivery event"""
    channel_id: str
    call_kind: str
    delivery_status: str
    attempt: int
    text_preview: str
    http_status: Optional[int] = None
    error: Optional[str] = None
    parse_mode: Optional[str] = None
    idempotency_key: Optional[str] = None
    rate_limited_ms: Optional[int] = None
    deduplicated: bool = False
    ts: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ChannelEvent":
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in data.items() if k in known})


class EventLog:
    """One `<channel_id>.jsonl` file per channel; lines are never rewritten"""

    def __init__(self, events_dir: str | Path):
        self._dir = Path(events_dir)

    def path_for(self, channel_id: str) -> Path:
        return self._dir / f"{channel_id}.jsonl"

    def append(self, event: ChannelEvent) -> Path:
        path = self.path_for(event.channel_id)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), default=str) + "\n")
        except OSError as e:
            raise IoError(f"failed to write channel event: {e}")
        return path

    def tail(self, channel_id: Optional[str] = None, n: int = 50) -> list[ChannelEvent]:
        """Last n events, oldest first, for one channel or all of them"""
        if not self._dir.exists():
            return []
        if channel_id and channel_id != "all":
            paths = [self.path_for(channel_id)]
        else:
            paths = sorted(self._dir.glob("*.jsonl"))

        events: list[ChannelEvent] = []
        for path in paths:
            if not path.exists():
                continue
            try:
                lines = path.read_text(encoding="utf-8").splitlines()
            except OSError as e:
                raise IoError(f"failed to read {path}: {e}")
            for line in lines:
                if not line.strip():
                    continue
                try:
                    events.append(ChannelEvent.from_dict(json.loads(line)))
                except (json.JSONDecodeError, TypeError) as e:
                    raise ConfigError(f"invalid channel event in {path}: {e}")

        events.sort(key=lambda e: e.ts)
        if n >= 0 and len(events) > n:
            events = events[len(events) - n:]
        return events
