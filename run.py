#!/usr/bin/env python3
"""
Courier - channels CLI entry point
"""
import asyncio
import json
import sys
from typing import Any, Optional

from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from config.settings import Settings
from courier.channels.protocol import ChannelDefaults
from courier.errors import (
    ChannelError,
    ConfigError,
    IoError,
    ValidationError,
    error_envelope,
    unknown_error,
)
from courier.logging_config import configure_logging
from courier.service import ChannelService, build_service

BOOL_FLAGS = {"json", "replace", "clear-defaults", "clear-token-env", "verbose"}
LIST_OPTIONS = {"block", "default-block"}


def parse_args(args: list[str]) -> tuple[list[str], dict[str, Any]]:
    """Split argv into positionals and --options (bool flags, repeatable lists, values)"""
    positionals: list[str] = []
    options: dict[str, Any] = {"json": False, "verbose": False}

    i = 0
    while i < len(args):
        arg = args[i]
        if arg in ("-v",):
            options["verbose"] = True
        elif arg.startswith("--"):
            name, has_value, value = arg[2:].partition("=")
            if name in BOOL_FLAGS:
                options[name] = True
            else:
                if not has_value:
                    if i + 1 >= len(args):
                        raise ValidationError(f"--{name} requires a value")
                    i += 1
                    value = args[i]
                if name in LIST_OPTIONS:
                    options.setdefault(name, []).append(value)
                else:
                    options[name] = value
        else:
            positionals.append(arg)
        i += 1

    return positionals, options


def parse_json_object(raw: Optional[str], context: str) -> Optional[dict]:
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"{context} must be valid JSON: {e}")
    if not isinstance(value, dict):
        raise ValidationError(f"{context} must be a JSON object")
    return value


def defaults_from_options(options: dict[str, Any]) -> Optional[ChannelDefaults]:
    defaults = ChannelDefaults(
        parse_mode=options.get("default-parse-mode"),
        title=options.get("default-title"),
        blocks=options.get("default-block", []),
        metadata=parse_json_object(options.get("default-metadata"), "--default-metadata"),
    )
    return None if defaults.is_empty() else defaults


def require(positionals: list[str], index: int, what: str) -> str:
    if len(positionals) <= index:
        raise ValidationError(f"missing {what}")
    return positionals[index]


def emit(payload: dict[str, Any], as_json: bool, lines: list[str]) -> None:
    if as_json:
        print(json.dumps(payload, indent=2, default=str))
    else:
        for line in lines:
            print(line)


def _channel_line(item: dict[str, Any]) -> str:
    return (
        f"{item['id']}  {item['name']}  kind={item['kind']}"
        f"  endpoint={item.get('endpoint_masked') or '-'}"
        f"  target={item.get('target_masked') or '-'}"
        f"  last_send={item.get('last_send_at') or '-'}"
        f"  last_error={item.get('last_error') or '-'}"
    )


def _result_lines(result: dict[str, Any], header: str) -> list[str]:
    lines = [header, f"attempts: {result['attempts']}"]
    for key in ("http_status", "endpoint_masked", "target_masked", "parse_mode",
                "idempotency_key", "rate_limited_ms", "event_path"):
        if result.get(key) is not None:
            lines.append(f"{key}: {result[key]}")
    if result.get("deduplicated"):
        lines.append("deduplicated: true")
    for warning in result.get("warnings", []):
        lines.append(f"warning: {warning}")
    return lines


async def run_channels(service: ChannelService, sub: str, positionals: list[str], options: dict) -> int:
    """Dispatch one `channels <sub>` command. Returns the process exit code."""
    registry = service.registry
    as_json = options["json"]

    if sub == "list":
        items = registry.list_channels()
        emit({"ok": True, "channels": items, "path": str(registry.path)}, as_json,
             [_channel_line(i) for i in items] or ["No channels configured."])

    elif sub == "status":
        status = registry.status()
        lines = [
            f"channels total: {status['total_channels']}",
            f"channels healthy: {status['healthy_channels']}",
            f"channels with errors: {status['channels_with_errors']}",
            f"last send: {status['last_send_at'] or '-'}",
        ]
        lines += [f"{_channel_line(c)}  health={c['health']}" for c in status["channels"]]
        emit({"ok": True, "status": status}, as_json, lines)

    elif sub == "add":
        channel = registry.add(
            options.get("name", ""),
            options.get("kind", "slack_webhook"),
            endpoint=options.get("endpoint"),
            target=options.get("chat-id") or options.get("target"),
            token_env=options.get("token-env"),
            defaults=defaults_from_options(options),
        )
        summary = registry.summary(channel)
        emit({"ok": True, "channel": summary, "path": str(registry.path)}, as_json,
             [f"Added channel {channel.id} ({channel.kind.value})"])

    elif sub == "update":
        channel = registry.update(
            require(positionals, 0, "channel id"),
            name=options.get("name"),
            endpoint=options.get("endpoint"),
            target=options.get("chat-id") or options.get("target"),
            token_env=options.get("token-env"),
            clear_token_env=options.get("clear-token-env", False),
            defaults=defaults_from_options(options),
            clear_defaults=options.get("clear-defaults", False),
        )
        emit({"ok": True, "channel": registry.summary(channel)}, as_json,
             [f"Updated channel {channel.id}"])

    elif sub == "login":
        login = registry.login(require(positionals, 0, "channel id"), options.get("token-env"))
        state = "set" if login["token_present"] else "missing"
        emit({"ok": True, **login}, as_json,
             [f"Channel {login['channel']['id']} uses {login['token_env']} ({state})"])

    elif sub == "logout":
        channel = registry.logout(require(positionals, 0, "channel id"))
        emit({"ok": True, "channel": registry.summary(channel)}, as_json,
             [f"Cleared token env for channel {channel.id}"])

    elif sub == "remove":
        channel = registry.remove(require(positionals, 0, "channel id"))
        emit({"ok": True, "removed": registry.summary(channel)}, as_json,
             [f"Removed channel {channel.id}"])

    elif sub == "capabilities":
        caps = registry.capabilities(options.get("channel"), options.get("target"))
        lines = [
            f"{c['kind']}: " + " ".join(f"{k}={str(v).lower()}" for k, v in c.items() if k != "kind")
            for c in caps
        ]
        emit({"ok": True, "capabilities": caps}, as_json, lines)

    elif sub == "resolve":
        kind = options.get("channel")
        if not kind:
            raise ValidationError("--channel <kind> is required")
        items = registry.resolve(kind, " ".join(positionals))
        lines = [f"{_channel_line(i)}  effective={json.dumps(i['effective'])}" for i in items]
        emit({"ok": True, "channels": items}, as_json, lines or ["No channels resolved."])

    elif sub in ("send", "test"):
        channel_id = require(positionals, 0, "channel id")
        if sub == "send":
            if "text" not in options:
                raise ValidationError("--text is required")
            result = await service.engine.send(
                channel_id,
                options["text"],
                parse_mode=options.get("parse-mode"),
                title=options.get("title"),
                blocks=options.get("block", []),
                metadata=parse_json_object(options.get("metadata"), "--metadata"),
                idempotency_key=options.get("idempotency-key"),
                token_env=options.get("token-env"),
            )
        else:
            result = await service.engine.test(channel_id, token_env=options.get("token-env"))
        data = result.to_dict()
        if not result.ok:
            emit(data, as_json, [])
            if not as_json:
                print(f"error [{result.error['code']}]: {result.error['message']}", file=sys.stderr)
            return result.exit_code
        header = (f"Message sent via {result.delivered_via}" if sub == "send"
                  else f"Channel test passed for {result.channel_id}")
        emit(data, as_json, _result_lines(data, header))

    elif sub == "export":
        payload = registry.export()
        count = len(payload["channels_file"]["channels"])
        out = options.get("out")
        if out:
            try:
                with open(out, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
            except OSError as e:
                raise IoError(f"failed to write export {out}: {e}")
            emit({"ok": True, "path": out, "channels": count}, as_json,
                 [f"Exported {count} channels to {out}"])
        else:
            print(json.dumps(payload if not as_json else {"ok": True, "export": payload}, indent=2))

    elif sub == "import":
        path = options.get("file")
        if not path:
            raise ValidationError("--file is required")
        try:
            with open(path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except OSError as e:
            raise ValidationError(f"failed to read channels import file {path}: {e}")
        except json.JSONDecodeError as e:
            raise ValidationError(f"invalid channels import JSON {path}: {e}")
        summary = registry.import_channels(payload, replace=options.get("replace", False))
        emit({"ok": True, **summary}, as_json, [
            f"Import complete from {path}: total={summary['total']} imported={summary['imported']} "
            f"updated={summary['updated']} skipped={summary['skipped']} replace={summary['replace']}"
        ])

    elif sub == "logs":
        try:
            tail = int(options.get("tail", 50))
        except ValueError:
            raise ValidationError("--tail must be an integer")
        events = [e.to_dict() for e in service.event_log.tail(options.get("channel"), tail)]
        lines = [
            f"{e['ts']} channel={e['channel_id']} kind={e['call_kind']} status={e['delivery_status']}"
            f" attempt={e['attempt']} http={e['http_status'] or '-'} error={e['error'] or '-'}"
            f" preview={e['text_preview']}"
            for e in events
        ]
        emit({"ok": True, "events": events, "channel": options.get("channel")}, as_json,
             lines or ["No channel events found."])

    elif sub == "doctor":
        checks = registry.doctor()
        emit({"ok": all(c["ok"] for c in checks), "checks": checks}, as_json,
             [f"[{'OK' if c['ok'] else 'NG'}] {c['name']}: {c['detail']}" for c in checks])
        return 0 if all(c["ok"] for c in checks) else 1

    else:
        raise ValidationError(f"unknown channels command '{sub}'")

    return 0


def print_usage():
    print("""
Courier - outbound notification delivery

Usage:
  python run.py channels <command> [options] [args...]

Commands:
  list                              List configured channels (masked)
  status                            Channel totals and health
  add --name N --kind K [--endpoint URL] [--chat-id ID] [--token-env VAR]
      [--default-parse-mode M] [--default-title T] [--default-block B...]
      [--default-metadata JSON]
  update <id> [same fields as add] [--clear-defaults] [--clear-token-env]
  login <id> [--token-env VAR]      Store token env reference
  logout <id>                       Clear token env reference
  remove <id>                       Delete a channel
  capabilities [--channel KIND | --target ID]
  resolve --channel KIND [query...] Matching channels with effective defaults
  test <id> [--token-env VAR]       Connectivity probe (no send bookkeeping)
  send <id> --text T [--parse-mode M] [--title T] [--block B...]
      [--metadata JSON] [--idempotency-key K] [--token-env VAR]
  export [--out PATH]
  import --file PATH [--replace]
  logs [--channel ID] [--tail N]
  doctor

Kinds:
  slack_webhook (slack), discord_webhook (discord), telegram_bot (telegram, tg),
  terminal (stdout, console)

Options:
  --json                  Output in JSON format
  --verbose, -v           Verbose logging

Environment Variables:
  COURIER_STATE_DIR                    State directory (default: .courier)
  COURIER_HTTP_TIMEOUT_MS              Per-attempt HTTP timeout (default: 15000)
  COURIER_TELEGRAM_MIN_INTERVAL_MS     Telegram min interval (default: 800)
  COURIER_IDEMPOTENCY_WINDOW_SECONDS   Idempotency window (default: 86400)
  TELEGRAM_BOT_TOKEN                   Default telegram token env
  LOG_FORMAT                           json or text (default: text)
  LOG_LEVEL                            DEBUG, INFO, WARNING, ERROR (default: WARNING for CLI)

Examples:
  python run.py channels add --name alerts --kind slack --endpoint https://hooks.slack.com/services/T0/B0/XXXX
  python run.py channels add --name ops --kind telegram --chat-id=-1001234567 --token-env OPS_BOT_TOKEN
  python run.py channels send ch_... --text "deploy finished" --idempotency-key deploy-42
""")


def load_settings() -> Settings:
    try:
        return Settings()
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ConfigError(f"invalid setting {field}: {first['msg']}")


def main(argv: Optional[list[str]] = None) -> int:
    load_dotenv()
    argv = list(sys.argv[1:] if argv is None else argv)

    try:
        positionals, options = parse_args(argv)
    except ChannelError as e:
        print(f"error [{e.code}]: {e.message}", file=sys.stderr)
        return e.exit_code

    if len(positionals) < 2 or positionals[0] != "channels":
        print_usage()
        return 0 if not positionals or positionals[0] in ("help", "-h") else 2

    try:
        settings = load_settings()
        level = "DEBUG" if options["verbose"] else settings.log_level.upper()
        configure_logging(level=level, json_format=settings.json_logging, log_file=settings.log_file or None)
        service = build_service(settings)
        return asyncio.run(run_channels(service, positionals[1], positionals[2:], options))
    except ChannelError as e:
        failure = e
    except Exception as e:
        logger.exception("Unexpected CLI failure")
        failure = unknown_error(e)

    if options["json"]:
        print(json.dumps(error_envelope(failure), indent=2))
    else:
        print(f"error [{failure.code}]: {failure.message}", file=sys.stderr)
    return failure.exit_code


if __name__ == "__main__":
    sys.exit(main())
