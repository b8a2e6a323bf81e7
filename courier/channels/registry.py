"""
Channel Registry - Persistent set of configured channels.

Channels live in a single JSON file. Every mutation reloads the file,
applies the change and writes it back under a re-entrant lock, so concurrent
callers in one process never interleave partial updates.
"""
from __future__ import annotations

import json
import os
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Optional

from loguru import logger

from ..errors import ConfigError, IoError, ValidationError
from .adapters import AdapterTable, build_adapters
from .masking import mask_optional_endpoint, mask_target
from .protocol import (
    CallKind,
    Channel,
    ChannelAuth,
    ChannelDefaults,
    ChannelKind,
    ChannelStatus,
    resolve_kind,
    utcnow,
)
from .template import merge_options

CHANNELS_SCHEMA_VERSION = 2
EXPORT_SCHEMA = "courier.channels.export.v1"
DEFAULT_CHANNEL_TOKEN_ENV = "CHANNEL_TOKEN"


def normalize_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _legacy_entry(entry: dict) -> dict:
    return {
        "id": entry["id"],
        "name": entry["name"],
        "kind": entry["kind"],
        "endpoint": entry.get("endpoint"),
        "target": entry.get("target"),
        "auth": {"token_env": entry.get("last_login_token_env")},
        "created_at": entry.get("created_at"),
        "last_login_at": entry.get("last_login_at"),
    }


def parse_channels_value(value: Any) -> tuple[list, int]:
    """Return the raw channel entries and the schema version they were written with"""
    if isinstance(value, list):
        return value, 1
    if not isinstance(value, dict):
        raise ConfigError("channels file must be an object or array")
    try:
        version = int(value.get("version") or 1)
    except (TypeError, ValueError):
        raise ConfigError(f"invalid channels schema version {value.get('version')!r}")
    channels = value.get("channels") or []
    if not isinstance(channels, list):
        raise ConfigError("channels file 'channels' must be an array")
    return channels, version


def channel_from_entry(entry: Any, version: int) -> Channel:
    if not isinstance(entry, dict):
        raise ValidationError("channel entry must be an object")
    if version < CHANNELS_SCHEMA_VERSION:
        entry = _legacy_entry(entry)
    return Channel.from_dict(entry)


class ChannelRegistry:
    """Registry for configured notification channels"""

    def __init__(
        self,
        path: str | Path,
        adapters: Optional[AdapterTable] = None,
        env_lookup: Callable[[str], Optional[str]] = os.environ.get,
    ):
        self._path = Path(path)
        self._adapters = adapters or build_adapters()
        self._env_lookup = env_lookup
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    # -- persistence -------------------------------------------------------

    def _load(self) -> list[Channel]:
        if not self._path.exists():
            return []
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise IoError(f"failed to read {self._path}: {e}")
        try:
            value = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as e:
            raise ConfigError(f"invalid channels JSON {self._path}: {e}")

        entries, version = parse_channels_value(value)
        try:
            channels = [channel_from_entry(entry, version) for entry in entries]
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"invalid channel entry in {self._path}: {e}")
        if version != CHANNELS_SCHEMA_VERSION:
            logger.info(f"Migrating channels file to schema v{CHANNELS_SCHEMA_VERSION}")
            self._save(channels)
        return channels

    def _save(self, channels: list[Channel]) -> None:
        data = {
            "version": CHANNELS_SCHEMA_VERSION,
            "channels": [ch.to_dict() for ch in channels],
        }
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self._path)
        except OSError as e:
            raise IoError(f"failed to write {self._path}: {e}")

    @staticmethod
    def _find(channels: list[Channel], channel_id: str) -> Channel:
        for channel in channels:
            if channel.id == channel_id:
                return channel
        raise ConfigError(f"channel '{channel_id}' not found")

    # -- validation --------------------------------------------------------

    def _validate(self, channel: Channel) -> None:
        adapter = self._adapters[channel.kind]
        adapter.validate_config(channel.endpoint, channel.target)
        channel.defaults.parse_mode = adapter.normalize_parse_mode(channel.defaults.parse_mode)

    # -- CRUD ----------------------------------------------------------------

    def add(
        self,
        name: str,
        kind: str | ChannelKind,
        *,
        endpoint: Optional[str] = None,
        target: Optional[str] = None,
        token_env: Optional[str] = None,
        defaults: Optional[ChannelDefaults] = None,
    ) -> Channel:
        """Validate and persist a new channel; never touches the network"""
        name = (name or "").strip()
        if not name:
            raise ValidationError("channel name cannot be empty")
        canonical = resolve_kind(kind)
        channel = Channel(
            id=f"ch_{uuid.uuid4().hex}",
            name=name,
            kind=canonical,
            endpoint=normalize_optional(endpoint),
            target=normalize_optional(target),
            auth=ChannelAuth(
                token_env=normalize_optional(token_env)
                or self._adapters[canonical].default_token_env
            ),
            defaults=defaults or ChannelDefaults(),
        )
        self._validate(channel)

        with self._lock:
            channels = self._load()
            channels.append(channel)
            self._save(channels)
        logger.info(f"Channel added: {channel.id} ({canonical.value})")
        return channel.copy()

    def update(
        self,
        channel_id: str,
        *,
        name: Optional[str] = None,
        endpoint: Optional[str] = None,
        target: Optional[str] = None,
        token_env: Optional[str] = None,
        clear_token_env: bool = False,
        defaults: Optional[ChannelDefaults] = None,
        clear_defaults: bool = False,
    ) -> Channel:
        """Partial update; the merged channel is re-validated before saving"""
        if clear_defaults and defaults is not None and not defaults.is_empty():
            raise ValidationError("--clear-defaults cannot be combined with default values")
        if clear_token_env and normalize_optional(token_env):
            raise ValidationError("--clear-token-env cannot be combined with --token-env")

        with self._lock:
            channels = self._load()
            current = self._find(channels, channel_id)
            updated = current.copy()
            if name is not None:
                updated.name = name.strip()
                if not updated.name:
                    raise ValidationError("channel name cannot be empty")
            if endpoint is not None:
                updated.endpoint = normalize_optional(endpoint)
            if target is not None:
                updated.target = normalize_optional(target)
            if clear_token_env:
                updated.auth.token_env = None
            elif normalize_optional(token_env):
                updated.auth.token_env = normalize_optional(token_env)
            if clear_defaults:
                updated.defaults = ChannelDefaults()
            elif defaults is not None:
                merged = updated.defaults
                if defaults.parse_mode:
                    merged.parse_mode = defaults.parse_mode
                if defaults.title:
                    merged.title = defaults.title
                if defaults.blocks:
                    merged.blocks = list(defaults.blocks)
                if defaults.metadata:
                    merged.metadata = dict(defaults.metadata)
            self._validate(updated)

            channels[channels.index(current)] = updated
            self._save(channels)
        logger.info(f"Channel updated: {channel_id}")
        return updated.copy()

    def get(self, channel_id: str) -> Channel:
        """Snapshot copy of one channel"""
        with self._lock:
            return self._find(self._load(), channel_id).copy()

    def all(self) -> list[Channel]:
        with self._lock:
            return [ch.copy() for ch in self._load()]

    def remove(self, channel_id: str) -> Channel:
        """Delete a channel definition; its event log is left in place"""
        with self._lock:
            channels = self._load()
            removed = self._find(channels, channel_id)
            channels.remove(removed)
            self._save(channels)
        logger.info(f"Channel removed: {channel_id}")
        return removed

    def login(self, channel_id: str, token_env: Optional[str] = None) -> dict[str, Any]:
        """Store the env var reference for a channel's token"""
        with self._lock:
            channels = self._load()
            channel = self._find(channels, channel_id)
            env_name = (
                normalize_optional(token_env)
                or channel.auth.token_env
                or self._adapters[channel.kind].default_token_env
                or DEFAULT_CHANNEL_TOKEN_ENV
            )
            channel.auth.token_env = env_name
            channel.last_login_at = utcnow()
            self._save(channels)
        return {
            "token_env": env_name,
            "token_present": self._env_lookup(env_name) is not None,
            "channel": self.summary(channel),
        }

    def logout(self, channel_id: str) -> Channel:
        """Drop the stored auth reference"""
        with self._lock:
            channels = self._load()
            channel = self._find(channels, channel_id)
            channel.auth.token_env = None
            channel.last_login_at = None
            self._save(channels)
        return channel.copy()

    def record_delivery(
        self, channel_id: str, *, ok: bool, error: Optional[str], call_kind: CallKind,
    ) -> None:
        """Delivery bookkeeping; probes never change channel state"""
        if call_kind is not CallKind.MESSAGE:
            return
        with self._lock:
            channels = self._load()
            try:
                channel = self._find(channels, channel_id)
            except ConfigError:
                logger.warning(f"Channel {channel_id} removed during delivery; state not recorded")
                return
            if ok:
                channel.last_send_at = utcnow()
                channel.last_error = None
            else:
                channel.last_error = error
            self._save(channels)

    # -- read views ----------------------------------------------------------

    def summary(self, channel: Channel) -> dict[str, Any]:
        """Masked display form of a channel"""
        return {
            "id": channel.id,
            "name": channel.name,
            "kind": channel.kind.value,
            "endpoint_masked": mask_optional_endpoint(channel.endpoint),
            "target_masked": mask_target(channel.kind, channel.target, channel.endpoint),
            "token_env": channel.auth.token_env,
            "created_at": channel.created_at.isoformat(),
            "last_login_at": channel.last_login_at.isoformat() if channel.last_login_at else None,
            "last_send_at": channel.last_send_at.isoformat() if channel.last_send_at else None,
            "last_error": channel.last_error,
        }

    def list_channels(self) -> list[dict[str, Any]]:
        return [self.summary(ch) for ch in self.all()]

    def _token_env_for(self, channel: Channel) -> Optional[str]:
        return channel.auth.token_env or self._adapters[channel.kind].default_token_env

    def health(self, channel: Channel) -> ChannelStatus:
        token_env = self._token_env_for(channel)
        if token_env and self._env_lookup(token_env) is None:
            return ChannelStatus.UNAVAILABLE
        if channel.last_error:
            return ChannelStatus.DEGRADED
        return ChannelStatus.READY

    def status(self) -> dict[str, Any]:
        channels = self.all()
        kinds: dict[str, int] = {}
        for channel in channels:
            kinds[channel.kind.value] = kinds.get(channel.kind.value, 0) + 1
        sends = [ch.last_send_at for ch in channels if ch.last_send_at]
        return {
            "total_channels": len(channels),
            "healthy_channels": sum(1 for ch in channels if not ch.last_error),
            "channels_with_errors": sum(1 for ch in channels if ch.last_error),
            "kinds": dict(sorted(kinds.items())),
            "last_send_at": max(sends).isoformat() if sends else None,
            "channels": [
                {**self.summary(ch), "health": self.health(ch).value} for ch in channels
            ],
        }

    def capabilities(
        self, kind: Optional[str] = None, target: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """Static capability flags for one kind (or a channel's kind), or all kinds"""
        if kind and target:
            raise ValidationError("use either --channel or --target for capabilities, not both")
        if target:
            kinds = [self.get(target).kind]
        elif kind:
            kinds = [resolve_kind(kind)]
        else:
            kinds = list(ChannelKind)
        return [
            {"kind": k.value, **self._adapters[k].capabilities.to_dict()} for k in kinds
        ]

    def resolve(self, kind: str, query: str = "") -> list[dict[str, Any]]:
        """Channels of a kind matching every query term, with effective defaults"""
        canonical = resolve_kind(kind)
        terms = [t for t in query.lower().split() if t]
        items = []
        for channel in self.all():
            if channel.kind is not canonical:
                continue
            haystack = " ".join(
                filter(None, [channel.id, channel.name.lower(), (channel.endpoint or "").lower(),
                              (channel.target or "").lower()])
            )
            if not all(term in haystack for term in terms):
                continue
            items.append({
                **self.summary(channel),
                "effective": merge_options(channel.defaults),
            })
        items.sort(key=lambda item: item["name"])
        return items

    def doctor(self) -> list[dict[str, Any]]:
        """Configuration and token checks for every channel"""
        channels = self.all()
        checks = [{
            "name": "channels_file",
            "ok": True,
            "detail": f"loaded {len(channels)} channels (schema v{CHANNELS_SCHEMA_VERSION})",
        }]
        for channel in channels:
            try:
                self._adapters[channel.kind].validate_config(channel.endpoint, channel.target)
                valid = True
            except ValidationError:
                valid = False
            target = mask_target(channel.kind, channel.target, channel.endpoint) or "-"
            checks.append({
                "name": f"channel_{channel.id}_target",
                "ok": valid,
                "detail": f"{channel.kind.value} target looks valid ({target})"
                if valid else f"{channel.kind.value} target invalid",
            })
            token_env = self._token_env_for(channel)
            if token_env:
                present = self._env_lookup(token_env) is not None
                checks.append({
                    "name": f"channel_{channel.id}_token_env",
                    "ok": present,
                    "detail": f"{token_env} {'is set' if present else 'is missing'}",
                })
        return checks

    # -- bulk transfer -------------------------------------------------------

    def export(self) -> dict[str, Any]:
        """Channel definitions with env var references only"""
        return {
            "schema": EXPORT_SCHEMA,
            "exported_at": utcnow().isoformat(),
            "channels_file": {
                "version": CHANNELS_SCHEMA_VERSION,
                "channels": [ch.to_dict() for ch in self.all()],
            },
        }

    def import_channels(self, payload: Any, replace: bool = False) -> dict[str, Any]:
        """Merge (by id) or replace the channel set from an export or channels file"""
        if isinstance(payload, dict) and "channels_file" in payload:
            payload = payload["channels_file"]
        entries, version = parse_channels_value(payload)

        incoming: list[Channel] = []
        skipped = 0
        for entry in entries:
            try:
                if isinstance(entry, dict):
                    entry = dict(entry)
                    entry.setdefault("id", f"ch_{uuid.uuid4().hex}")
                channel = channel_from_entry(entry, version)
                self._validate(channel)
            except (ValidationError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping invalid channel on import: {e}")
                skipped += 1
                continue
            incoming.append(channel)

        imported = updated = 0
        with self._lock:
            channels = [] if replace else self._load()
            index = {ch.id: i for i, ch in enumerate(channels)}
            for channel in incoming:
                if channel.id in index:
                    channels[index[channel.id]] = channel
                    updated += 1
                else:
                    index[channel.id] = len(channels)
                    channels.append(channel)
                    imported += 1
            self._save(channels)

        logger.info(f"Imported channels: imported={imported} updated={updated} skipped={skipped}")
        return {
            "total": len(entries),
            "imported": imported,
            "updated": updated,
            "skipped": skipped,
            "replace": replace,
        }
