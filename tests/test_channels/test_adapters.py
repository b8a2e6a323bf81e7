"""
Tests for provider adapters - config validation and response classification
"""
import io
import json

import pytest

from courier.channels.adapters import build_adapters
from courier.channels.discord import DiscordWebhookAdapter
from courier.channels.policy import RetryPolicy
from courier.channels.protocol import (
    AttemptStatus,
    Channel,
    ChannelKind,
    PreparedMessage,
    ProviderAdapter,
    resolve_kind,
)
from courier.channels.slack import SlackWebhookAdapter
from courier.channels.telegram import TelegramBotAdapter
from courier.channels.terminal import TerminalAdapter
from courier.channels.transport import ScriptedTransport, TransportError, parse_step
from courier.errors import ValidationError

SLACK_URL = "https://hooks.slack.com/services/T000/B000/abcdefXXXX"


class TestKinds:
    def test_aliases(self):
        assert resolve_kind("slack") is ChannelKind.SLACK_WEBHOOK
        assert resolve_kind("TG") is ChannelKind.TELEGRAM_BOT
        assert resolve_kind("stdout") is ChannelKind.TERMINAL

    def test_unknown_kind(self):
        with pytest.raises(ValidationError, match="unsupported channel kind"):
            resolve_kind("email")

    def test_table_covers_every_kind(self):
        adapters = build_adapters()
        assert set(adapters) == set(ChannelKind)
        for adapter in adapters.values():
            assert isinstance(adapter, ProviderAdapter)


class TestPolicy:
    def test_schedule(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 4
        assert policy.backoff_before_attempt(0) is None
        assert [policy.backoff_before_attempt(i) for i in (1, 2, 3)] == [200, 500, 1000]
        assert policy.backoff_before_attempt(4) is None


class TestWebhookValidation:
    def test_slack_accepts_hooks_url(self):
        SlackWebhookAdapter().validate_config(SLACK_URL, None)

    def test_slack_rejects_foreign_host(self):
        with pytest.raises(ValidationError, match="hooks.slack.com"):
            SlackWebhookAdapter().validate_config("https://evil.example.com/x", None)

    def test_slack_rejects_http(self):
        with pytest.raises(ValidationError):
            SlackWebhookAdapter().validate_config(SLACK_URL.replace("https", "http"), None)

    def test_slack_requires_endpoint(self):
        with pytest.raises(ValidationError, match="requires --endpoint"):
            SlackWebhookAdapter().validate_config(None, None)

    def test_webhook_rejects_target(self):
        with pytest.raises(ValidationError):
            SlackWebhookAdapter().validate_config(SLACK_URL, "-100123")

    def test_discord_hosts(self):
        adapter = DiscordWebhookAdapter()
        adapter.validate_config("https://discordapp.com/api/webhooks/123/token", None)
        with pytest.raises(ValidationError):
            adapter.validate_config("https://discord.com/api/other/123/token", None)

    def test_mock_endpoint_accepted(self):
        SlackWebhookAdapter().validate_config("mock-http://429,200", None)

    def test_bad_mock_step(self):
        with pytest.raises(ValidationError, match="mock-http"):
            SlackWebhookAdapter().validate_config("mock-http://banana", None)

    def test_parse_mode_rejected(self):
        with pytest.raises(ValidationError, match="only supported for telegram_bot"):
            SlackWebhookAdapter().normalize_parse_mode("markdown")


class TestWebhookClassify:
    def test_success(self):
        assert SlackWebhookAdapter().classify(204, "").status is AttemptStatus.SUCCESS

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable(self, status):
        outcome = SlackWebhookAdapter().classify(status, "")
        assert outcome.status is AttemptStatus.RETRY
        assert outcome.http_status == status
        assert outcome.retry_after_ms is None

    def test_client_error_terminal(self):
        outcome = SlackWebhookAdapter().classify(404, "no_service")
        assert outcome.status is AttemptStatus.TERMINAL
        assert "404" in outcome.error

    def test_discord_payload_truncated(self):
        channel = Channel(id="ch_1", name="d", kind=ChannelKind.DISCORD_WEBHOOK)
        payload = DiscordWebhookAdapter().build_payload(PreparedMessage(text="x" * 2500), channel)
        assert len(payload["content"]) == 2000


class TestTelegram:
    def test_chat_id_required(self):
        with pytest.raises(ValidationError, match="--chat-id"):
            TelegramBotAdapter().validate_config(None, None)

    def test_chat_id_format(self):
        adapter = TelegramBotAdapter()
        adapter.validate_config(None, "-1001234567")
        adapter.validate_config(None, "@release_notes")
        with pytest.raises(ValidationError):
            adapter.validate_config(None, "not a chat")

    def test_parse_modes(self):
        adapter = TelegramBotAdapter()
        assert adapter.normalize_parse_mode("markdown_v2") == "MarkdownV2"
        assert adapter.normalize_parse_mode("HTML") == "HTML"
        assert adapter.normalize_parse_mode(None) is None
        with pytest.raises(ValidationError, match="unsupported parse mode"):
            adapter.normalize_parse_mode("rtf")

    def test_ok_true_success(self):
        outcome = TelegramBotAdapter().classify(200, json.dumps({"ok": True}))
        assert outcome.status is AttemptStatus.SUCCESS

    def test_ok_false_terminal(self):
        body = json.dumps({"ok": False, "description": "chat not found"})
        outcome = TelegramBotAdapter().classify(200, body)
        assert outcome.status is AttemptStatus.TERMINAL
        assert "chat not found" in outcome.error

    def test_unparseable_body_retried(self):
        outcome = TelegramBotAdapter().classify(200, "<html>")
        assert outcome.status is AttemptStatus.RETRY

    def test_retry_after_honoured(self):
        body = json.dumps({"ok": False, "parameters": {"retry_after": 3}})
        outcome = TelegramBotAdapter().classify(429, body)
        assert outcome.status is AttemptStatus.RETRY
        assert outcome.retry_after_ms == 3000

    def test_retry_after_default(self):
        outcome = TelegramBotAdapter(retry_after_default_ms=1500).classify(429, "")
        assert outcome.retry_after_ms == 1500

    def test_client_error_terminal(self):
        outcome = TelegramBotAdapter().classify(401, json.dumps({"ok": False, "description": "Unauthorized"}))
        assert outcome.status is AttemptStatus.TERMINAL

    @pytest.mark.asyncio
    async def test_deliver_builds_bot_url(self):
        adapter = TelegramBotAdapter()
        channel = Channel(id="ch_1", name="ops", kind=ChannelKind.TELEGRAM_BOT, target="-1001")
        transport = ScriptedTransport([200])
        payload = adapter.build_payload(PreparedMessage(text="hi", parse_mode="HTML"), channel)
        outcome = await adapter.deliver(channel, payload, "123:abc", transport, 1000)
        assert outcome.status is AttemptStatus.SUCCESS
        assert transport.calls[0]["url"] == "https://api.telegram.org/bot123:abc/sendMessage"
        assert transport.calls[0]["payload"] == {"chat_id": "-1001", "text": "hi", "parse_mode": "HTML"}


class TestTerminal:
    @pytest.mark.asyncio
    async def test_writes_to_stream(self):
        stream = io.StringIO()
        adapter = TerminalAdapter(stream=stream)
        channel = Channel(id="ch_1", name="local", kind=ChannelKind.TERMINAL)
        outcome = await adapter.deliver(channel, {"text": "hello"}, None, None, 1000)
        assert outcome.status is AttemptStatus.SUCCESS
        assert stream.getvalue() == "[local] hello\n"

    def test_rejects_endpoint(self):
        with pytest.raises(ValidationError):
            TerminalAdapter().validate_config(SLACK_URL, None)


class TestScriptedTransport:
    def test_step_parsing(self):
        assert parse_step("429:retry_after=2").status == 429
        assert json.loads(parse_step("429:retry_after=2").body)["parameters"]["retry_after"] == 2
        assert parse_step("timeout").error == "timeout"

    @pytest.mark.asyncio
    async def test_last_step_repeats(self):
        transport = ScriptedTransport([500, 200])
        statuses = [(await transport.post("u", {}, timeout_ms=10)).status for _ in range(3)]
        assert statuses == [500, 200, 200]

    @pytest.mark.asyncio
    async def test_timeout_step(self):
        transport = ScriptedTransport(["timeout"])
        with pytest.raises(TransportError) as exc:
            await transport.post("u", {}, timeout_ms=10)
        assert exc.value.timeout
