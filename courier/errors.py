"""
Error Taxonomy - Structured failures with machine-readable codes and exit codes.
"""
from __future__ import annotations

from typing import Any

# Exit codes are part of the CLI contract; scripted callers branch on them.
EXIT_CODES: dict[str, int] = {
    "unknown": 1,
    "config": 2,
    "auth": 3,
    "network": 4,
    "io": 6,
    "validation": 7,
}


class ChannelError(Exception):
    """Base class for channel delivery errors"""

    code = "unknown"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.code]

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "exit_code": self.exit_code,
        }


class ConfigError(ChannelError):
    """Unknown channel or unreadable state"""
    code = "config"


class AuthError(ChannelError):
    """Referenced token environment variable is missing"""
    code = "auth"


class NetworkError(ChannelError):
    """Transport failure, timeout, or non-2xx after retries"""
    code = "network"


class IoError(ChannelError):
    """Filesystem failure while reading or writing state"""
    code = "io"


class ValidationError(ChannelError):
    """Malformed channel configuration or call arguments"""
    code = "validation"


def error_envelope(error: ChannelError) -> dict[str, Any]:
    """Render the failure envelope returned to callers"""
    return {"ok": False, "error": error.to_dict()}


def unknown_error(exc: BaseException) -> ChannelError:
    """Wrap an unexpected exception so it never escapes unstructured"""
    from .channels.masking import redact

    # exception text can carry a telegram request URL with the bot token in it
    return ChannelError(redact(f"{type(exc).__name__}: {exc}"))
