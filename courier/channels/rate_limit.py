"""
Rate Limiter - Per-channel minimum interval between dispatches.
"""
from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional

from loguru import logger

from ..errors import IoError
from .claims import ClaimTable


class RateLimiter:
    """
    Minimum-interval gate keyed by channel id.

    Each channel has its own claim, so two sends to the same channel
    serialize their timing checks, even from different threads, while
    unrelated channels never wait on each other. With a state_dir the last
    dispatch time is kept on disk (one JSON file per channel) so back-to-back
    CLI invocations are spaced too.
    """

    def __init__(
        self,
        state_dir: Optional[str | Path] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._state_dir = Path(state_dir) if state_dir else None
        self._clock = clock
        self._sleep = sleep
        self._last_dispatch: dict[str, float] = {}
        self._claims = ClaimTable()

    def _state_path(self, channel_id: str) -> Path:
        return self._state_dir / f"{channel_id}.json"

    def _last_dispatch_at(self, channel_id: str) -> Optional[float]:
        if self._state_dir is None:
            return self._last_dispatch.get(channel_id)
        path = self._state_path(channel_id)
        if not path.exists():
            return None
        try:
            return float(json.loads(path.read_text(encoding="utf-8"))["last_dispatch_at"])
        except OSError as e:
            raise IoError(f"failed to read rate state for {channel_id}: {e}")
        except (ValueError, KeyError, TypeError):
            logger.warning(f"Ignoring corrupt rate state for {channel_id}")
            return None

    def _store(self, channel_id: str, ts: float) -> None:
        self._last_dispatch[channel_id] = ts
        if self._state_dir is None:
            return
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            self._state_path(channel_id).write_text(
                json.dumps({"last_dispatch_at": ts}), encoding="utf-8",
            )
        except OSError as e:
            raise IoError(f"failed to write rate state for {channel_id}: {e}")

    async def acquire(self, channel_id: str, min_interval_ms: int) -> int:
        """Wait out the remaining interval, then mark a dispatch. Returns ms waited."""
        if min_interval_ms <= 0:
            return 0
        async with self._claims.hold(channel_id):
            waited_ms = 0
            last = self._last_dispatch_at(channel_id)
            if last is not None:
                elapsed_ms = max(0.0, (self._clock() - last) * 1000)
                if elapsed_ms < min_interval_ms:
                    waited_ms = int(round(min_interval_ms - elapsed_ms))
                    logger.debug(f"Rate limit: channel {channel_id} waits {waited_ms}ms")
                    await self._sleep(waited_ms / 1000)
            self._store(channel_id, self._clock())
            return waited_ms
