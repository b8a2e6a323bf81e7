"""
Channel Protocol - Channel model, delivery types, and the provider adapter interface.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable

from ..errors import ValidationError


class ChannelKind(Enum):
    """Closed set of destination kinds"""
    SLACK_WEBHOOK = "slack_webhook"
    DISCORD_WEBHOOK = "discord_webhook"
    TELEGRAM_BOT = "telegram_bot"
    TERMINAL = "terminal"


KIND_ALIASES: dict[str, ChannelKind] = {
    "slack": ChannelKind.SLACK_WEBHOOK,
    "slack_webhook": ChannelKind.SLACK_WEBHOOK,
    "slack-webhook": ChannelKind.SLACK_WEBHOOK,
    "discord": ChannelKind.DISCORD_WEBHOOK,
    "discord_webhook": ChannelKind.DISCORD_WEBHOOK,
    "discord-webhook": ChannelKind.DISCORD_WEBHOOK,
    "telegram": ChannelKind.TELEGRAM_BOT,
    "telegram_bot": ChannelKind.TELEGRAM_BOT,
    "telegram-bot": ChannelKind.TELEGRAM_BOT,
    "tg": ChannelKind.TELEGRAM_BOT,
    "terminal": ChannelKind.TERMINAL,
    "stdout": ChannelKind.TERMINAL,
    "console": ChannelKind.TERMINAL,
    "local": ChannelKind.TERMINAL,
}


def supported_kinds_hint() -> str:
    return "|".join(kind.value for kind in ChannelKind)


def resolve_kind(raw: str | ChannelKind) -> ChannelKind:
    """Normalize a kind or alias string to its canonical kind"""
    if isinstance(raw, ChannelKind):
        return raw
    kind = KIND_ALIASES.get((raw or "").strip().lower())
    if kind is None:
        raise ValidationError(
            f"unsupported channel kind '{(raw or '').strip()}', expected {supported_kinds_hint()}"
        )
    return kind


class ChannelStatus(Enum):
    """Channel health status"""
    READY = "ready"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


class CallKind(Enum):
    """Business send or connectivity probe"""
    MESSAGE = "message"
    TEST_PROBE = "test_probe"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass(frozen=True)
class Capabilities:
    """Static per-kind feature flags"""
    supports_parse_mode: bool
    supports_message_template: bool
    supports_idempotency_key: bool
    supports_rate_limit_report: bool

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)


@dataclass
class ChannelDefaults:
    """Default message fields merged under per-call values"""
    parse_mode: Optional[str] = None
    title: Optional[str] = None
    blocks: list[str] = field(default_factory=list)
    metadata: Optional[dict[str, Any]] = None

    def is_empty(self) -> bool:
        return not (self.parse_mode or self.title or self.blocks or self.metadata)

    def to_dict(self) -> dict[str, Any]:
        return {
            "parse_mode": self.parse_mode,
            "title": self.title,
            "blocks": list(self.blocks),
            "metadata": dict(self.metadata) if self.metadata else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ChannelDefaults":
        data = data or {}
        return cls(
            parse_mode=data.get("parse_mode"),
            title=data.get("title"),
            blocks=list(data.get("blocks") or []),
            metadata=data.get("metadata") or None,
        )


@dataclass
class ChannelAuth:
    """Reference to the env var holding the secret; never the secret itself"""
    token_env: Optional[str] = None


@dataclass
class Channel:
    """A configured destination"""
    id: str
    name: str
    kind: ChannelKind
    endpoint: Optional[str] = None
    target: Optional[str] = None
    auth: ChannelAuth = field(default_factory=ChannelAuth)
    defaults: ChannelDefaults = field(default_factory=ChannelDefaults)
    created_at: datetime = field(default_factory=utcnow)
    last_login_at: Optional[datetime] = None
    last_send_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def copy(self) -> "Channel":
        return replace(
            self,
            auth=ChannelAuth(token_env=self.auth.token_env),
            defaults=ChannelDefaults.from_dict(self.defaults.to_dict()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "endpoint": self.endpoint,
            "target": self.target,
            "auth": {"token_env": self.auth.token_env},
            "defaults": self.defaults.to_dict(),
            "created_at": _format_ts(self.created_at),
            "last_login_at": _format_ts(self.last_login_at),
            "last_send_at": _format_ts(self.last_send_at),
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Channel":
        auth = data.get("auth") or {}
        return cls(
            id=data["id"],
            name=data["name"],
            kind=resolve_kind(data["kind"]),
            endpoint=data.get("endpoint") or None,
            target=data.get("target") or None,
            auth=ChannelAuth(token_env=(auth.get("token_env") or "").strip() or None),
            defaults=ChannelDefaults.from_dict(data.get("defaults")),
            created_at=_parse_ts(data.get("created_at")) or utcnow(),
            last_login_at=_parse_ts(data.get("last_login_at")),
            last_send_at=_parse_ts(data.get("last_send_at")),
            last_error=data.get("last_error"),
        )


@dataclass
class DeliveryRequest:
    """One ephemeral send or probe call"""
    channel_id: str
    text: str
    call_kind: CallKind = CallKind.MESSAGE
    parse_mode: Optional[str] = None
    title: Optional[str] = None
    blocks: list[str] = field(default_factory=list)
    metadata: Optional[dict[str, Any]] = None
    idempotency_key: Optional[str] = None
    token_env: Optional[str] = None


@dataclass
class DeliveryResult:
    """Result envelope returned to the caller"""
    ok: bool
    channel_id: str
    call_kind: str = CallKind.MESSAGE.value
    delivered_via: Optional[str] = None
    attempts: int = 0
    http_status: Optional[int] = None
    endpoint_masked: Optional[str] = None
    target_masked: Optional[str] = None
    parse_mode: Optional[str] = None
    idempotency_key: Optional[str] = None
    deduplicated: bool = False
    rate_limited_ms: Optional[int] = None
    event_path: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    error: Optional[dict[str, Any]] = None

    @property
    def exit_code(self) -> int:
        if self.ok or not self.error:
            return 0
        return int(self.error.get("exit_code", 1))

    def to_dict(self) -> dict[str, Any]:
        if not self.ok:
            return {
                "ok": False,
                "channel_id": self.channel_id,
                "call_kind": self.call_kind,
                "attempts": self.attempts,
                "http_status": self.http_status,
                "deduplicated": self.deduplicated,
                "event_path": self.event_path,
                "warnings": list(self.warnings),
                "error": self.error,
            }
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "DeliveryResult":
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in data.items() if k in known})


class AttemptStatus(Enum):
    """Classification of one dispatch attempt"""
    SUCCESS = "success"
    RETRY = "retry"
    TERMINAL = "terminal"


@dataclass
class AttemptOutcome:
    """Tagged result of one attempt, consumed by the engine's retry loop"""
    status: AttemptStatus
    http_status: Optional[int] = None
    error: Optional[str] = None
    retry_after_ms: Optional[int] = None

    @classmethod
    def success(cls, http_status: Optional[int]) -> "AttemptOutcome":
        return cls(AttemptStatus.SUCCESS, http_status=http_status)

    @classmethod
    def retry(
        cls, error: str, http_status: Optional[int] = None, retry_after_ms: Optional[int] = None,
    ) -> "AttemptOutcome":
        return cls(AttemptStatus.RETRY, http_status=http_status, error=error, retry_after_ms=retry_after_ms)

    @classmethod
    def terminal(cls, error: str, http_status: Optional[int] = None) -> "AttemptOutcome":
        return cls(AttemptStatus.TERMINAL, http_status=http_status, error=error)


@dataclass
class PreparedMessage:
    """Call arguments after default merging, validation and rendering"""
    text: str
    parse_mode: Optional[str] = None


@runtime_checkable
class ProviderAdapter(Protocol):
    """
    Protocol for provider adapters.

    Implementations: Slack webhook, Discord webhook, Telegram bot, Terminal
    """

    kind: ChannelKind
    capabilities: Capabilities
    min_interval_ms: int
    default_token_env: Optional[str]

    def validate_config(self, endpoint: Optional[str], target: Optional[str]) -> None:
        """Raise ValidationError when endpoint/target do not fit this kind"""
        ...

    def normalize_parse_mode(self, parse_mode: Optional[str]) -> Optional[str]:
        """Canonicalize a parse mode or raise ValidationError"""
        ...

    def build_payload(self, message: PreparedMessage, channel: Channel) -> dict[str, Any]:
        """Provider-specific request body"""
        ...

    def classify(self, http_status: int, body: str) -> AttemptOutcome:
        """Interpret a provider response"""
        ...

    async def deliver(
        self,
        channel: Channel,
        payload: dict[str, Any],
        token: Optional[str],
        transport: Any,
        timeout_ms: int,
    ) -> AttemptOutcome:
        """Perform one dispatch attempt"""
        ...
