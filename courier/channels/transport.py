"""
HTTP Transport - aiohttp POST with bounded timeout, plus a scripted transport.

The scripted transport backs `mock-http://<steps>` endpoints, e.g.
`mock-http://500,429:retry_after=1,200`, so the whole pipeline can be
exercised without network access.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional, Union

import aiohttp
from loguru import logger

from ..errors import ValidationError
from .masking import MOCK_HTTP_SCHEME, mask_endpoint


@dataclass
class HttpResponse:
    status: int
    body: str = ""


class TransportError(Exception):
    """Request never produced an HTTP response"""

    def __init__(self, message: str, *, timeout: bool = False):
        super().__init__(message)
        self.timeout = timeout


class HttpTransport:
    """JSON POST over aiohttp"""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self._session = session

    async def post(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        headers: Optional[dict[str, str]] = None,
        timeout_ms: int,
    ) -> HttpResponse:
        timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000)
        try:
            if self._session is not None:
                return await self._post(self._session, url, payload, headers, timeout)
            async with aiohttp.ClientSession() as session:
                return await self._post(session, url, payload, headers, timeout)
        except asyncio.TimeoutError:
            raise TransportError("request timed out", timeout=True)
        except Exception as e:
            # aiohttp messages can embed the full URL; only the masked form may surface
            logger.debug(f"POST {mask_endpoint(url)} failed: {type(e).__name__}")
            raise TransportError(f"request failed: {type(e).__name__}")

    @staticmethod
    async def _post(session, url, payload, headers, timeout) -> HttpResponse:
        async with session.post(url, json=payload, headers=headers, timeout=timeout) as resp:
            # an undecodable body still has to reach classification
            body = await resp.text(errors="replace")
            return HttpResponse(status=resp.status, body=body)


Step = Union[str, int, tuple]


@dataclass
class ScriptedStep:
    status: Optional[int] = None
    body: Optional[str] = None
    error: Optional[str] = None

    def response(self) -> HttpResponse:
        if self.error == "timeout":
            raise TransportError("request timed out", timeout=True)
        if self.error:
            raise TransportError(f"request failed: {self.error}")
        return HttpResponse(status=self.status, body=self.body or "")


def _default_body(status: int, variant: str = "") -> str:
    if variant == "invalid_json":
        return "<html>not json</html>"
    if 200 <= status < 300 and variant != "not_ok":
        return json.dumps({"ok": True, "result": {}})
    data: dict[str, Any] = {
        "ok": False,
        "error_code": status,
        "description": f"mock status {status}",
    }
    if variant.startswith("retry_after="):
        data["parameters"] = {"retry_after": float(variant.split("=", 1)[1])}
    return json.dumps(data)


def parse_step(step: Step) -> ScriptedStep:
    """Parse `timeout`, `error`, `<status>` or `<status>:<variant>`"""
    if isinstance(step, ScriptedStep):
        return step
    if isinstance(step, tuple):
        status, body = step
        return ScriptedStep(status=int(status), body=body)
    if isinstance(step, int):
        return ScriptedStep(status=step, body=_default_body(step))

    raw = str(step).strip().lower()
    if raw in ("timeout", "error"):
        return ScriptedStep(error=raw)
    status_text, _, variant = raw.partition(":")
    try:
        status = int(status_text)
        if variant.startswith("retry_after="):
            float(variant.split("=", 1)[1])
        elif variant not in ("", "not_ok", "invalid_json"):
            raise ValueError(variant)
    except ValueError:
        raise ValidationError(f"invalid mock-http response step '{step}'")
    if not 100 <= status < 600:
        raise ValidationError(f"invalid mock-http status '{status}'")
    return ScriptedStep(status=status, body=_default_body(status, variant))


def parse_mock_steps(endpoint: str) -> list[ScriptedStep]:
    sequence = endpoint[len(MOCK_HTTP_SCHEME):].split("/", 1)[0]
    raw_steps = [s for s in sequence.split(",") if s.strip()]
    return [parse_step(s) for s in raw_steps] or [parse_step(200)]


class ScriptedTransport:
    """
    Replays a fixed list of responses, one per POST.

    The last step repeats once the script is exhausted.
    """

    def __init__(self, steps: list[Step]):
        self._steps = [parse_step(s) for s in steps] or [parse_step(200)]
        self.calls: list[dict[str, Any]] = []

    @classmethod
    def from_endpoint(cls, endpoint: str) -> "ScriptedTransport":
        return cls(parse_mock_steps(endpoint))

    async def post(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        headers: Optional[dict[str, str]] = None,
        timeout_ms: int,
    ) -> HttpResponse:
        index = min(len(self.calls), len(self._steps) - 1)
        self.calls.append({"url": url, "payload": payload, "headers": headers or {}})
        return self._steps[index].response()


def is_mock_endpoint(endpoint: Optional[str]) -> bool:
    return bool(endpoint) and endpoint.startswith(MOCK_HTTP_SCHEME)
