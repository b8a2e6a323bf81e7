"""
Tests for the channel registry - CRUD, validation, health, import/export
"""
import json

import pytest

from courier.channels.protocol import CallKind, ChannelDefaults, ChannelKind, ChannelStatus
from courier.channels.registry import (
    CHANNELS_SCHEMA_VERSION,
    EXPORT_SCHEMA,
    ChannelRegistry,
    parse_channels_value,
)
from courier.errors import ConfigError, ValidationError

SLACK_URL = "https://hooks.slack.com/services/T0/B0/XXXX"


@pytest.fixture
def env():
    return {}


@pytest.fixture
def registry(tmp_path, env):
    return ChannelRegistry(tmp_path / "channels.json", env_lookup=env.get)


class TestAddChannel:
    def test_add_slack(self, registry):
        channel = registry.add("alerts", "slack_webhook", endpoint=SLACK_URL)
        assert channel.id.startswith("ch_")
        assert channel.kind is ChannelKind.SLACK_WEBHOOK
        assert registry.get(channel.id).endpoint == SLACK_URL

    def test_add_rejects_foreign_endpoint(self, registry):
        with pytest.raises(ValidationError):
            registry.add("alerts", "slack_webhook", endpoint="https://evil.example.com/x")
        assert registry.all() == []

    def test_add_alias_kind(self, registry):
        channel = registry.add("ops", "tg", target="-1001234567")
        assert channel.kind is ChannelKind.TELEGRAM_BOT
        assert channel.auth.token_env == "TELEGRAM_BOT_TOKEN"

    def test_empty_name(self, registry):
        with pytest.raises(ValidationError, match="name cannot be empty"):
            registry.add("  ", "terminal")

    def test_duplicate_names_allowed(self, registry):
        first = registry.add("local", "terminal")
        second = registry.add("local", "terminal")
        assert first.id != second.id
        assert len(registry.all()) == 2

    def test_telegram_requires_chat_id(self, registry):
        with pytest.raises(ValidationError, match="--chat-id") as exc:
            registry.add("ops", "telegram")
        assert exc.value.exit_code == 7

    def test_default_parse_mode_normalized(self, registry):
        channel = registry.add(
            "ops", "telegram", target="@ops_channel",
            defaults=ChannelDefaults(parse_mode="markdownv2"),
        )
        assert channel.defaults.parse_mode == "MarkdownV2"

    def test_default_parse_mode_rejected_for_webhook(self, registry):
        with pytest.raises(ValidationError):
            registry.add(
                "alerts", "slack", endpoint=SLACK_URL, defaults=ChannelDefaults(parse_mode="html"),
            )

    def test_persisted_schema(self, registry):
        registry.add("local", "terminal")
        data = json.loads(registry.path.read_text())
        assert data["version"] == CHANNELS_SCHEMA_VERSION
        assert data["channels"][0]["name"] == "local"
        assert data["channels"][0]["auth"] == {"token_env": None}


class TestUpdateChannel:
    def test_update_name_and_defaults(self, registry):
        channel = registry.add("local", "terminal", defaults=ChannelDefaults(title="T"))
        updated = registry.update(
            channel.id, name="renamed", defaults=ChannelDefaults(blocks=["footer"]),
        )
        assert updated.name == "renamed"
        assert updated.defaults.title == "T"
        assert updated.defaults.blocks == ["footer"]

    def test_clear_defaults(self, registry):
        channel = registry.add("local", "terminal", defaults=ChannelDefaults(title="T"))
        updated = registry.update(channel.id, clear_defaults=True)
        assert updated.defaults.is_empty()

    def test_clear_defaults_conflict(self, registry):
        channel = registry.add("local", "terminal")
        with pytest.raises(ValidationError):
            registry.update(channel.id, clear_defaults=True, defaults=ChannelDefaults(title="x"))

    def test_update_revalidates(self, registry):
        channel = registry.add("alerts", "slack", endpoint=SLACK_URL)
        with pytest.raises(ValidationError):
            registry.update(channel.id, endpoint="https://example.com/hook")
        assert registry.get(channel.id).endpoint == SLACK_URL

    def test_unknown_channel(self, registry):
        with pytest.raises(ConfigError, match="not found"):
            registry.update("ch_missing", name="x")


class TestAuthAndRemove:
    def test_login_reports_token_presence(self, registry, env):
        channel = registry.add("alerts", "slack", endpoint=SLACK_URL)
        env["ALERTS_TOKEN"] = "secret"
        login = registry.login(channel.id, "ALERTS_TOKEN")
        assert login["token_env"] == "ALERTS_TOKEN"
        assert login["token_present"] is True
        assert "secret" not in json.dumps(login)
        assert registry.get(channel.id).last_login_at is not None

    def test_login_default_env(self, registry):
        channel = registry.add("local", "terminal")
        assert registry.login(channel.id)["token_env"] == "CHANNEL_TOKEN"

    def test_logout(self, registry):
        channel = registry.add("ops", "telegram", target="-100123")
        assert registry.logout(channel.id).auth.token_env is None

    def test_remove(self, registry):
        channel = registry.add("local", "terminal")
        registry.remove(channel.id)
        with pytest.raises(ConfigError):
            registry.get(channel.id)


class TestDeliveryBookkeeping:
    def test_message_updates_state(self, registry):
        channel = registry.add("local", "terminal")
        registry.record_delivery(channel.id, ok=False, error="boom", call_kind=CallKind.MESSAGE)
        assert registry.get(channel.id).last_error == "boom"
        registry.record_delivery(channel.id, ok=True, error=None, call_kind=CallKind.MESSAGE)
        stored = registry.get(channel.id)
        assert stored.last_error is None
        assert stored.last_send_at is not None

    def test_probe_leaves_state(self, registry):
        channel = registry.add("local", "terminal")
        registry.record_delivery(channel.id, ok=True, error=None, call_kind=CallKind.TEST_PROBE)
        assert registry.get(channel.id).last_send_at is None

    def test_removed_channel_ignored(self, registry):
        registry.record_delivery("ch_gone", ok=True, error=None, call_kind=CallKind.MESSAGE)


class TestViews:
    def test_list_is_masked(self, registry):
        registry.add("alerts", "slack", endpoint="https://hooks.slack.com/services/T0/B0/secretXXXX")
        listed = registry.list_channels()
        assert listed[0]["target_masked"] == "slack://***XXXX"
        assert "secret" not in json.dumps(listed)

    def test_health(self, registry, env):
        telegram = registry.add("ops", "telegram", target="-100123")
        local = registry.add("local", "terminal")
        assert registry.health(telegram) is ChannelStatus.UNAVAILABLE
        env["TELEGRAM_BOT_TOKEN"] = "t"
        assert registry.health(registry.get(telegram.id)) is ChannelStatus.READY
        registry.record_delivery(local.id, ok=False, error="x", call_kind=CallKind.MESSAGE)
        assert registry.health(registry.get(local.id)) is ChannelStatus.DEGRADED

    def test_status_counts(self, registry):
        first = registry.add("a", "terminal")
        registry.add("b", "terminal")
        registry.record_delivery(first.id, ok=False, error="x", call_kind=CallKind.MESSAGE)
        status = registry.status()
        assert status["total_channels"] == 2
        assert status["channels_with_errors"] == 1
        assert status["kinds"] == {"terminal": 2}

    def test_capabilities(self, registry):
        caps = registry.capabilities("telegram")
        assert caps == [{
            "kind": "telegram_bot",
            "supports_parse_mode": True,
            "supports_message_template": True,
            "supports_idempotency_key": True,
            "supports_rate_limit_report": True,
        }]
        assert len(registry.capabilities()) == len(ChannelKind)

    def test_capabilities_by_target(self, registry):
        channel = registry.add("alerts", "slack", endpoint=SLACK_URL)
        assert registry.capabilities(target=channel.id)[0]["supports_parse_mode"] is False
        with pytest.raises(ValidationError):
            registry.capabilities("slack", channel.id)

    def test_resolve(self, registry):
        registry.add("release alerts", "terminal", defaults=ChannelDefaults(title="Release"))
        registry.add("other", "terminal")
        items = registry.resolve("stdout", "release")
        assert [i["name"] for i in items] == ["release alerts"]
        assert items[0]["effective"]["title"] == "Release"

    def test_doctor(self, registry):
        registry.add("ops", "telegram", target="-100123")
        checks = registry.doctor()
        assert checks[0]["name"] == "channels_file"
        target = next(c for c in checks if c["name"].endswith("_target"))
        token = next(c for c in checks if c["name"].endswith("_token_env"))
        assert target["ok"] is True
        assert token["ok"] is False
        assert token["detail"] == "TELEGRAM_BOT_TOKEN is missing"


class TestImportExport:
    def test_round_trip_by_id(self, tmp_path, registry):
        channel = registry.add("alerts", "slack", endpoint=SLACK_URL)
        exported = registry.export()
        assert exported["schema"] == EXPORT_SCHEMA

        other = ChannelRegistry(tmp_path / "other.json")
        summary = other.import_channels(exported)
        assert summary == {"total": 1, "imported": 1, "updated": 0, "skipped": 0, "replace": False}
        assert other.get(channel.id).name == "alerts"
        assert other.import_channels(exported)["updated"] == 1

    def test_invalid_entries_skipped(self, registry):
        payload = {"version": 2, "channels": [
            {"id": "ch_bad", "name": "bad", "kind": "slack", "endpoint": "https://evil.example.com"},
            {"id": "ch_ok", "name": "ok", "kind": "terminal"},
        ]}
        summary = registry.import_channels(payload)
        assert summary["imported"] == 1
        assert summary["skipped"] == 1

    def test_replace(self, registry):
        registry.add("old", "terminal")
        registry.import_channels(
            {"version": 2, "channels": [{"id": "ch_new", "name": "new", "kind": "terminal"}]},
            replace=True,
        )
        assert [c.name for c in registry.all()] == ["new"]


class TestLegacyMigration:
    def test_array_layout_migrated(self, tmp_path):
        path = tmp_path / "channels.json"
        path.write_text(json.dumps([{
            "id": "ch_legacy",
            "name": "legacy",
            "kind": "telegram",
            "target": "-100123",
            "last_login_token_env": "LEGACY_TOKEN",
        }]))
        registry = ChannelRegistry(path)
        channel = registry.get("ch_legacy")
        assert channel.kind is ChannelKind.TELEGRAM_BOT
        assert channel.auth.token_env == "LEGACY_TOKEN"
        assert json.loads(path.read_text())["version"] == CHANNELS_SCHEMA_VERSION

    def test_legacy_import_skips_incomplete_entries(self, registry):
        summary = registry.import_channels([
            {"id": "ch_ok", "name": "ok", "kind": "terminal"},
            {"id": "ch_nameless", "kind": "terminal"},
            {"name": "no-id", "kind": "terminal"},
        ])
        assert summary["total"] == 3
        assert summary["imported"] == 2
        assert summary["skipped"] == 1
        assert sorted(c.name for c in registry.all()) == ["no-id", "ok"]

    def test_non_numeric_version(self, registry, tmp_path):
        with pytest.raises(ConfigError, match="schema version"):
            registry.import_channels({"version": "two", "channels": []})
        path = tmp_path / "channels.json"
        path.write_text(json.dumps({"version": "two", "channels": []}))
        with pytest.raises(ConfigError):
            ChannelRegistry(path).all()

    def test_parse_rejects_scalar(self):
        with pytest.raises(ConfigError):
            parse_channels_value("nope")

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "channels.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError, match="invalid channels JSON"):
            ChannelRegistry(path).all()
