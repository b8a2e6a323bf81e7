"""
Idempotency Store - Cached delivery results keyed by (channel_id, key).

Entries expire lazily at lookup time once they are older than the window.
With a path the store is persisted as JSON so separate CLI invocations share
it; without one it lives in memory for the lifetime of the process.
"""
from __future__ import annotations

import json
import os
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from loguru import logger

from ..errors import IoError
from .claims import ClaimTable
from .protocol import DeliveryResult

DEFAULT_IDEMPOTENCY_WINDOW_SECONDS = 86_400


@dataclass
class IdempotencyRecord:
    channel_id: str
    key: str
    result: DeliveryResult
    created_at: float

    def to_dict(self) -> dict:
        return {
            "channel_id": self.channel_id,
            "key": self.key,
            "created_at": self.created_at,
            "result": asdict(self.result),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IdempotencyRecord":
        return cls(
            channel_id=data["channel_id"],
            key=data["key"],
            result=DeliveryResult.from_dict(data["result"]),
            created_at=float(data["created_at"]),
        )


class IdempotencyStore:
    """
    At-most-one dispatch per (channel_id, key) inside the window.

    claim() serializes concurrent callers holding the same pair, from any
    thread; the first dispatches and records, the rest find its cached
    result on check(). Results are stored whole, so a replay carries every
    field of the original.
    """

    def __init__(
        self,
        window_seconds: int = DEFAULT_IDEMPOTENCY_WINDOW_SECONDS,
        path: Optional[str | Path] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._window = max(1, int(window_seconds))
        self._path = Path(path) if path else None
        self._clock = clock
        self._records: dict[tuple[str, str], IdempotencyRecord] = {}
        self._claims = ClaimTable()
        self._file_lock = threading.Lock()

    def _expired(self, record: IdempotencyRecord) -> bool:
        return self._clock() - record.created_at > self._window

    def _read(self) -> dict[tuple[str, str], IdempotencyRecord]:
        if self._path is None:
            return self._records
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except OSError as e:
            raise IoError(f"failed to read idempotency cache: {e}")
        except json.JSONDecodeError:
            logger.warning(f"Ignoring corrupt idempotency cache {self._path}")
            return {}
        records = {}
        for entry in data.get("entries", []):
            record = IdempotencyRecord.from_dict(entry)
            records[(record.channel_id, record.key)] = record
        return records

    def _write(self, records: dict[tuple[str, str], IdempotencyRecord]) -> None:
        if self._path is None:
            self._records = records
            return
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({"entries": [r.to_dict() for r in records.values()]}, f)
            os.replace(tmp, self._path)
        except OSError as e:
            raise IoError(f"failed to write idempotency cache: {e}")

    def check(self, channel_id: str, key: str) -> Optional[DeliveryResult]:
        """Cached result for the pair, or None when absent or expired"""
        with self._file_lock:
            records = self._read()
            record = records.get((channel_id, key))
            if record is None:
                return None
            if self._expired(record):
                del records[(channel_id, key)]
                self._write(records)
                return None
            return DeliveryResult.from_dict(asdict(record.result))

    def record(self, channel_id: str, key: str, result: DeliveryResult) -> None:
        with self._file_lock:
            records = {
                pair: rec for pair, rec in self._read().items() if not self._expired(rec)
            }
            records[(channel_id, key)] = IdempotencyRecord(
                channel_id=channel_id,
                key=key,
                result=DeliveryResult.from_dict(asdict(result)),
                created_at=self._clock(),
            )
            self._write(records)

    @asynccontextmanager
    async def claim(self, channel_id: str, key: str) -> AsyncIterator[None]:
        """Hold the per-pair lock for the check-dispatch-record sequence"""
        async with self._claims.hold((channel_id, key)):
            yield

    @property
    def active_claims(self) -> int:
        return len(self._claims)
