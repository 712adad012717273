"""Bounded-timeout HTTP helpers and LLM output parsing."""

from __future__ import annotations

from dataclasses import dataclass
import json
import re
from typing import Any, Dict, List, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import get_settings


_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


@dataclass
class HttpResult:
    """Status, decoded JSON (or None) and raw text of one response."""

    status_code: int
    json: Any
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= int(self.status_code) < 300


def _timeout(timeout_ms: float) -> httpx.Timeout:
    return httpx.Timeout(max(0.001, float(timeout_ms) / 1000.0))


def _decode_json(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return None


async def _request(
    method: str,
    url: str,
    *,
    headers: Optional[Dict[str, str]],
    params: Optional[Dict[str, Any]],
    json_body: Any,
    timeout_ms: float,
    max_retries: Optional[int],
) -> httpx.Response:
    attempts = 1 + max(0, int(get_settings().general.max_retries if max_retries is None else max_retries))
    # Only connection establishment is retried; a sent request is never replayed.
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.ConnectError),
        reraise=True,
    ):
        with attempt:
            async with httpx.AsyncClient(timeout=_timeout(timeout_ms), follow_redirects=True) as client:
                return await client.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json=json_body,
                )
    raise RuntimeError("unreachable")  # pragma: no cover


async def fetch_json_with_timeout(
    url: str,
    *,
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    json_body: Any = None,
    timeout_ms: float = 15000,
    max_retries: Optional[int] = None,
) -> HttpResult:
    """Issue one request under a hard timeout and decode its JSON body.

    Non-2xx responses are returned, not raised; callers decide what a failed
    status means for them. ``httpx.TimeoutException`` and other transport
    errors propagate.
    """
    response = await _request(
        method,
        url,
        headers=headers,
        params=params,
        json_body=json_body,
        timeout_ms=timeout_ms,
        max_retries=max_retries,
    )
    text = str(response.text or "")
    return HttpResult(status_code=response.status_code, json=_decode_json(text), text=text)


async def fetch_text_with_timeout(
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    timeout_ms: float = 10000,
) -> HttpResult:
    response = await _request(
        "GET",
        url,
        headers=headers,
        params=None,
        json_body=None,
        timeout_ms=timeout_ms,
        max_retries=0,
    )
    return HttpResult(status_code=response.status_code, json=None, text=str(response.text or ""))


def parse_json_array_from_text(raw_text: Any) -> Optional[List[Any]]:
    """Parse a JSON array from plain or markdown-fenced model output."""
    text = str(raw_text or "")
    if not text.strip():
        return None
    match = _FENCED_JSON_RE.search(text)
    candidate = match.group(1) if match else text
    try:
        parsed = json.loads(candidate.strip())
    except ValueError:
        return None
    return parsed if isinstance(parsed, list) else None
