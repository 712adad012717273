"""Coordinate fallback: inline "lat, lon" text, then HERE, then Nominatim."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Any, Optional

import httpx

from config import get_settings
from core import to_finite_float
from sources import http


logger = logging.getLogger(__name__)

HERE_GEOCODE_URL = "https://geocode.search.hereapi.com/v1/geocode"
NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"

_COORDINATE_PAIR_RE = re.compile(r"(-?\d{1,2}\.\d+)\s*,\s*(-?\d{1,3}\.\d+)")


@dataclass
class GeocodeResult:
    latitude: float
    longitude: float
    provider: str
    label: Optional[str] = None


def parse_coordinate_pair_from_text(text: Any) -> Optional[GeocodeResult]:
    """Pick whichever ordering of an embedded number pair is a valid lat/lon."""
    match = _COORDINATE_PAIR_RE.search(str(text or ""))
    if not match:
        return None
    first = to_finite_float(match.group(1))
    second = to_finite_float(match.group(2))
    if first is None or second is None:
        return None

    if abs(first) <= 90 and abs(second) <= 180:
        return GeocodeResult(latitude=first, longitude=second, provider="inline")
    if abs(first) <= 180 and abs(second) <= 90:
        return GeocodeResult(latitude=second, longitude=first, provider="inline")
    return None


async def _lookup(url: str, *, params: dict, headers: Optional[dict], timeout_ms: int, provider: str) -> Any:
    try:
        response = await http.fetch_json_with_timeout(url, params=params, headers=headers, timeout_ms=timeout_ms)
    except httpx.HTTPError as exc:
        logger.debug(f"[{provider}] lookup failed: {exc.__class__.__name__}")
        return None
    if not response.ok:
        logger.debug(f"[{provider}] lookup returned status {response.status_code}")
        return None
    return response.json


async def geocode_via_here(query: str, *, api_key: str, timeout_ms: int) -> Optional[GeocodeResult]:
    if not api_key:
        return None
    payload = await _lookup(
        HERE_GEOCODE_URL,
        params={"q": query, "limit": "1", "apiKey": api_key},
        headers=None,
        timeout_ms=timeout_ms,
        provider="here",
    )
    items = payload.get("items") if isinstance(payload, dict) else None
    item = items[0] if isinstance(items, list) and items and isinstance(items[0], dict) else None
    position = (item or {}).get("position") or {}
    latitude = to_finite_float(position.get("lat"))
    longitude = to_finite_float(position.get("lng"))
    if latitude is None or longitude is None:
        return None
    label = ((item or {}).get("address") or {}).get("label") or query
    return GeocodeResult(latitude=latitude, longitude=longitude, provider="here", label=label)


async def geocode_via_nominatim(query: str, *, user_agent: str, timeout_ms: int) -> Optional[GeocodeResult]:
    payload = await _lookup(
        NOMINATIM_SEARCH_URL,
        params={"q": query, "format": "jsonv2", "limit": "1"},
        headers={"User-Agent": user_agent},
        timeout_ms=timeout_ms,
        provider="nominatim",
    )
    item = payload[0] if isinstance(payload, list) and payload and isinstance(payload[0], dict) else None
    if not item:
        return None
    latitude = to_finite_float(item.get("lat"))
    longitude = to_finite_float(item.get("lon"))
    if latitude is None or longitude is None:
        return None
    return GeocodeResult(
        latitude=latitude,
        longitude=longitude,
        provider="nominatim",
        label=item.get("display_name") or query,
    )


async def resolve_coordinates_from_text(
    text: Any,
    *,
    here_api_key: Optional[str] = None,
    timeout_ms: Optional[int] = None,
    user_agent: Optional[str] = None,
) -> Optional[GeocodeResult]:
    """
    Resolve free text to coordinates, trying each strategy only if the previous one found nothing.

    Timeouts and non-2xx responses count as "no result"; this never raises for
    provider trouble.
    """
    query = str(text or "").strip()
    if not query:
        return None

    inline = parse_coordinate_pair_from_text(query)
    if inline:
        return inline

    geocode_settings = get_settings().geocode
    bounded_timeout = max(2000, int(timeout_ms or geocode_settings.timeout_ms or 8000))
    api_key = str(here_api_key if here_api_key is not None else geocode_settings.here_api_key or "").strip()

    result = await geocode_via_here(query, api_key=api_key, timeout_ms=bounded_timeout)
    if result:
        return result

    return await geocode_via_nominatim(
        query,
        user_agent=str(user_agent or geocode_settings.user_agent),
        timeout_ms=bounded_timeout,
    )
