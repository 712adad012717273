from __future__ import annotations

from typing import Any, List

import httpx
import pytest

from pipeline import geocode
from pipeline.geocode import (
    HERE_GEOCODE_URL,
    NOMINATIM_SEARCH_URL,
    parse_coordinate_pair_from_text,
    resolve_coordinates_from_text,
)
from sources import http
from sources.http import HttpResult


def _install(monkeypatch: pytest.MonkeyPatch, responses: dict) -> List[Any]:
    calls: List[Any] = []

    async def _fake_fetch(url: str, **kwargs: Any) -> HttpResult:
        calls.append((url, kwargs))
        outcome = responses[url]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(http, "fetch_json_with_timeout", _fake_fetch)
    return calls


def test_inline_pair_in_either_order() -> None:
    latlon = parse_coordinate_pair_from_text("Scene at -26.1453, 28.0902 near the mall")
    assert (latlon.latitude, latlon.longitude, latlon.provider) == (-26.1453, 28.0902, "inline")

    lonlat = parse_coordinate_pair_from_text("pin 151.2093, -33.8688")
    assert (lonlat.latitude, lonlat.longitude) == (-33.8688, 151.2093)

    assert parse_coordinate_pair_from_text("no numbers here") is None


@pytest.mark.asyncio
async def test_inline_coordinates_skip_network(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _install(monkeypatch, {})
    result = await resolve_coordinates_from_text("Reported at -26.2041, 28.0473")
    assert result.provider == "inline"
    assert calls == []


@pytest.mark.asyncio
async def test_here_is_used_when_key_present(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _install(
        monkeypatch,
        {
            HERE_GEOCODE_URL: HttpResult(
                200,
                {"items": [{"position": {"lat": -26.1, "lng": 28.05}, "address": {"label": "Sandton, Johannesburg"}}]},
                "",
            ),
        },
    )
    result = await resolve_coordinates_from_text("Sandton City", here_api_key="here-key", timeout_ms=500)

    assert (result.latitude, result.longitude, result.provider) == (-26.1, 28.05, "here")
    assert result.label == "Sandton, Johannesburg"
    assert calls[0][1]["params"]["apiKey"] == "here-key"
    assert calls[0][1]["timeout_ms"] == 2000


@pytest.mark.asyncio
async def test_falls_back_to_nominatim_when_here_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _install(
        monkeypatch,
        {
            HERE_GEOCODE_URL: HttpResult(503, None, "unavailable"),
            NOMINATIM_SEARCH_URL: HttpResult(
                200, [{"lat": "-26.2041", "lon": "28.0473", "display_name": "Johannesburg"}], ""
            ),
        },
    )
    result = await resolve_coordinates_from_text("Johannesburg CBD", here_api_key="here-key")

    assert result.provider == "nominatim"
    assert result.label == "Johannesburg"
    assert [url for url, _ in calls] == [HERE_GEOCODE_URL, NOMINATIM_SEARCH_URL]
    assert calls[1][1]["headers"]["User-Agent"] == "SherlockIncidentDiscovery/1.0"


@pytest.mark.asyncio
async def test_no_key_goes_straight_to_nominatim(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _install(monkeypatch, {NOMINATIM_SEARCH_URL: HttpResult(200, [], "[]")})
    result = await resolve_coordinates_from_text("Nowhere in particular")
    assert result is None
    assert [url for url, _ in calls] == [NOMINATIM_SEARCH_URL]


@pytest.mark.asyncio
async def test_timeouts_count_as_no_result(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(
        monkeypatch,
        {
            HERE_GEOCODE_URL: httpx.ReadTimeout("slow"),
            NOMINATIM_SEARCH_URL: httpx.ConnectError("down"),
        },
    )
    assert await resolve_coordinates_from_text("Rosebank", here_api_key="k") is None


@pytest.mark.asyncio
async def test_blank_text_returns_none() -> None:
    assert await geocode.resolve_coordinates_from_text("   ") is None
