"""
Tests for the channels CLI and settings
"""
import json

import pytest

from config.settings import Settings
from run import main, parse_args
from courier.errors import ValidationError

SLACK_URL = "https://hooks.slack.com/services/T0/B0/XXXX"


@pytest.fixture(autouse=True)
def state_dir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("COURIER_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("COURIER_TELEGRAM_MIN_INTERVAL_MS", "0")
    return tmp_path / "state"


def run_json(capsys, *argv):
    code = main(["channels", *argv, "--json"])
    out = capsys.readouterr().out
    return code, json.loads(out)


class TestParseArgs:
    def test_value_forms(self):
        positionals, options = parse_args(
            ["channels", "send", "ch_1", "--text", "hi", "--title=T", "--block", "a", "--block=b", "--json"]
        )
        assert positionals == ["channels", "send", "ch_1"]
        assert options["text"] == "hi"
        assert options["title"] == "T"
        assert options["block"] == ["a", "b"]
        assert options["json"] is True

    def test_negative_chat_id_value(self):
        _, options = parse_args(["--chat-id", "-1001234567"])
        assert options["chat-id"] == "-1001234567"

    def test_missing_value(self):
        with pytest.raises(ValidationError, match="--text requires a value"):
            parse_args(["channels", "send", "ch_1", "--text"])


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("COURIER_STATE_DIR")
        monkeypatch.delenv("COURIER_TELEGRAM_MIN_INTERVAL_MS")
        settings = Settings()
        assert settings.state_dir == ".courier"
        assert settings.http_timeout_ms == 15_000
        assert settings.telegram_min_interval_ms == 800
        assert settings.idempotency_window_seconds == 86_400

    def test_env_overrides(self, monkeypatch, state_dir):
        monkeypatch.setenv("COURIER_HTTP_TIMEOUT_MS", "2500")
        monkeypatch.setenv("LOG_FORMAT", "json")
        settings = Settings()
        assert settings.http_timeout_ms == 2500
        assert settings.channels_file == state_dir / "channels.json"
        assert settings.json_logging is True


class TestChannelsCommands:
    def test_add_and_list(self, capsys):
        code, added = run_json(capsys, "add", "--name", "alerts", "--kind", "slack", "--endpoint", SLACK_URL)
        assert code == 0
        assert added["channel"]["kind"] == "slack_webhook"

        code, listed = run_json(capsys, "list")
        assert [c["name"] for c in listed["channels"]] == ["alerts"]
        assert SLACK_URL not in json.dumps(listed)

    def test_add_rejects_foreign_endpoint(self, capsys):
        code, payload = run_json(
            capsys, "add", "--name", "alerts", "--kind", "slack_webhook",
            "--endpoint", "https://evil.example.com/x",
        )
        assert code == 7
        assert payload["ok"] is False
        assert payload["error"]["code"] == "validation"

    def test_send_with_retry(self, capsys):
        _, added = run_json(
            capsys, "add", "--name", "alerts", "--kind", "slack", "--endpoint", "mock-http://429,200",
        )
        code, result = run_json(capsys, "send", added["channel"]["id"], "--text", "hello")
        assert code == 0
        assert result["ok"] is True
        assert result["attempts"] == 2

    def test_send_idempotent(self, capsys):
        _, added = run_json(capsys, "add", "--name", "local", "--kind", "terminal")
        channel_id = added["channel"]["id"]
        _, first = run_json(capsys, "send", channel_id, "--text", "hi", "--idempotency-key", "r1")
        _, second = run_json(capsys, "send", channel_id, "--text", "hi", "--idempotency-key", "r1")
        assert first["deduplicated"] is False
        assert second["deduplicated"] is True

    def test_send_failure_exit_code(self, capsys):
        _, added = run_json(
            capsys, "add", "--name", "alerts", "--kind", "slack", "--endpoint", "mock-http://404",
        )
        code, result = run_json(capsys, "send", added["channel"]["id"], "--text", "hi")
        assert code == 4
        assert result["error"]["code"] == "network"

    def test_send_requires_text(self, capsys):
        _, added = run_json(capsys, "add", "--name", "local", "--kind", "terminal")
        code, payload = run_json(capsys, "send", added["channel"]["id"])
        assert code == 7
        assert "--text" in payload["error"]["message"]

    def test_metadata_must_be_object(self, capsys):
        _, added = run_json(capsys, "add", "--name", "local", "--kind", "terminal")
        code, payload = run_json(capsys, "send", added["channel"]["id"], "--text", "x", "--metadata", "[1]")
        assert code == 7

    def test_unknown_channel(self, capsys):
        code, payload = run_json(capsys, "send", "ch_missing", "--text", "x")
        assert code == 2
        assert payload["error"]["code"] == "config"

    def test_telegram_missing_token(self, capsys, monkeypatch):
        monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
        _, added = run_json(
            capsys, "add", "--name", "ops", "--kind", "telegram", "--chat-id=-1001234567",
            "--endpoint", "mock-http://200",
        )
        code, payload = run_json(capsys, "test", added["channel"]["id"])
        assert code == 3
        assert payload["error"]["code"] == "auth"

    def test_export_import(self, capsys, tmp_path):
        run_json(capsys, "add", "--name", "local", "--kind", "terminal")
        out = tmp_path / "export.json"
        code, _ = run_json(capsys, "export", "--out", str(out))
        assert code == 0

        code, summary = run_json(capsys, "import", "--file", str(out), "--replace")
        assert code == 0
        assert summary["total"] == 1
        assert summary["imported"] == 1

    def test_logs(self, capsys):
        _, added = run_json(capsys, "add", "--name", "local", "--kind", "terminal")
        run_json(capsys, "send", added["channel"]["id"], "--text", "hi")
        code, payload = run_json(capsys, "logs", "--channel", added["channel"]["id"])
        assert code == 0
        assert payload["events"][0]["delivery_status"] == "success"

    def test_unknown_subcommand(self, capsys):
        code, payload = run_json(capsys, "frobnicate")
        assert code == 7

    def test_invalid_setting_is_config_error(self, capsys, monkeypatch):
        monkeypatch.setenv("COURIER_HTTP_TIMEOUT_MS", "soon")
        code, payload = run_json(capsys, "list")
        assert code == 2
        assert payload["error"]["code"] == "config"
