"""
Logging Configuration - loguru sinks with secret redaction and JSON support.

Every record passes through redact_record() before reaching a sink, so a
webhook URL or bot token that slips into a message is masked on the way out.
"""
import json
import sys
from typing import Optional

from loguru import logger

from .channels.masking import redact

TEXT_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - {message}"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def redact_record(record: dict) -> None:
    record["message"] = redact(record["message"])


def json_serializer(record: dict) -> str:
    """Serialize a delivery log record to one JSON line"""
    subset = {
        "timestamp": record["time"].strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
        "level": record["level"].name,
        "message": record["message"],
        "module": record["name"],
        "function": record["function"],
    }
    if record["exception"]:
        subset["exception"] = {
            "type": record["exception"].type.__name__ if record["exception"].type else None,
            "value": redact(str(record["exception"].value)) if record["exception"].value else None,
        }
    if record["extra"]:
        subset["extra"] = record["extra"]
    return json.dumps(subset, ensure_ascii=False, default=str)


def json_sink(message):
    """Sink for JSON formatted logs"""
    print(json_serializer(message.record), file=sys.stderr)


def configure_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure loguru for the CLI.

    Logs always go to stderr; stdout is reserved for command output.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output logs in JSON format
        log_file: Optional file path to write logs
    """
    logger.remove()
    logger.configure(patcher=redact_record)

    if json_format:
        logger.add(json_sink, level=level, format="{message}", colorize=False)
    else:
        logger.add(sys.stderr, format=TEXT_FORMAT, level=level, colorize=True)

    if log_file:
        logger.add(
            log_file,
            format=(lambda m: json_serializer(m.record) + "\n") if json_format else FILE_FORMAT,
            level=level,
            rotation="10 MB",
            retention="7 days",
        )
