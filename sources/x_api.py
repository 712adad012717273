"""Social search connector backed by the X recent-search API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from core import ConnectorResult, IncidentCandidate, Virality, to_finite_float
from sources import http
from sources.base import BaseConnector, CollectionContext
from sources.focus import apply_focus_to_x_query, parse_focus_locations
from utils.exceptions import ConnectorError


logger = logging.getLogger(__name__)

DEFAULT_X_QUERY = '(crime OR robbery OR assault OR "suspicious activity") has:geo -is:retweet lang:en'
BROAD_X_QUERY = (
    '(crime OR robbery OR assault OR "suspicious activity" OR gun OR hijacking OR stabbing OR "breaking news") '
    "has:geo -is:retweet lang:en"
)

INCIDENT_LEXICON = (
    "robbery",
    "theft",
    "assault",
    "shooting",
    "stabbing",
    "burglary",
    "carjacking",
    "suspicious",
    "vandalism",
    "fire",
)

# Engagement score thresholds for severity 2..5.
_SEVERITY_THRESHOLDS = ((500, 5), (200, 4), (80, 3), (20, 2))


def extract_keywords(text: str) -> List[str]:
    lowered = str(text or "").lower()
    return [keyword for keyword in INCIDENT_LEXICON if keyword in lowered]


def infer_engagement_severity(public_metrics: Optional[Dict[str, Any]]) -> Optional[int]:
    """Bucket ``likes + 2*reposts + replies`` into a 1-5 severity."""
    if not public_metrics:
        return None
    likes = to_finite_float(public_metrics.get("like_count")) or 0.0
    reposts = to_finite_float(public_metrics.get("retweet_count")) or 0.0
    replies = to_finite_float(public_metrics.get("reply_count")) or 0.0
    score = likes + reposts * 2 + replies
    for threshold, severity in _SEVERITY_THRESHOLDS:
        if score >= threshold:
            return severity
    return 1


def max_snowflake_id(ids: Iterable[Any]) -> Optional[str]:
    """Largest numeric id; responses are not assumed to be ordered."""
    numeric = [int(str(value).strip()) for value in ids if str(value or "").strip().isdigit()]
    return str(max(numeric)) if numeric else None


def extract_coordinates(
    tweet: Dict[str, Any],
    places_by_id: Dict[str, Dict[str, Any]],
) -> Tuple[Optional[float], Optional[float], Optional[str]]:
    """Exact geo point first, otherwise the centroid of the tagged place's bbox."""
    geo = tweet.get("geo") or {}
    direct = (geo.get("coordinates") or {}).get("coordinates")
    if isinstance(direct, list) and len(direct) == 2:
        longitude = to_finite_float(direct[0])
        latitude = to_finite_float(direct[1])
        if latitude is not None and longitude is not None:
            return latitude, longitude, None

    place_id = geo.get("place_id")
    place = places_by_id.get(place_id) if place_id else None
    if not place:
        return None, None, None

    label = place.get("full_name") or place.get("name") or None
    bbox = (place.get("geo") or {}).get("bbox")
    if not isinstance(bbox, list) or len(bbox) != 4:
        return None, None, label

    west, south, east, north = (to_finite_float(value) for value in bbox)
    if any(value is None for value in (west, south, east, north)):
        return None, None, label
    return round((south + north) / 2, 6), round((west + east) / 2, 6), label


class XApiConnector(BaseConnector):
    """Keyword + geo search over recent posts, resuming from a since_id cursor."""

    def __init__(
        self,
        *,
        query: Optional[str] = None,
        focus_locations: Optional[List[str]] = None,
        max_results: Optional[int] = None,
        bearer_token: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ):
        super().__init__(focus_locations)
        x_settings = self.settings.x_api
        if focus_locations is None:
            self.focus_locations = parse_focus_locations(self.settings.focus.locations)
        self.bearer_token = str(bearer_token or x_settings.bearer_token or "").strip()
        self.base_query = str(query or x_settings.query or DEFAULT_X_QUERY).strip()
        self.query = apply_focus_to_x_query(self.base_query, self.focus_locations)
        self.max_results = max(10, min(int(max_results or x_settings.max_results or 25), 100))
        self.timeout_ms = max(2000, int(timeout_ms or x_settings.timeout_ms or 15000))
        self.api_url = str(api_url or x_settings.api_url).strip()

    @property
    def name(self) -> str:
        return "x_api"

    def is_configured(self) -> bool:
        return bool(self.bearer_token)

    def _meta(self) -> Dict[str, Any]:
        return {"focusLocations": list(self.focus_locations), "query": self.query}

    async def collect(self, context: CollectionContext) -> ConnectorResult:
        now = self._now()
        previous = context.state.connectors.x_api
        if not self.is_configured():
            checkpoint = previous.model_dump(mode="json", by_alias=True)
            checkpoint["lastRunAt"] = now
            return self._skipped("SHERLOCK_X_BEARER_TOKEN is missing; skipping X connector.", checkpoint, self._meta())

        previous_since_id = str(previous.since_id or "").strip() or None
        params: Dict[str, Any] = {
            "query": self.query,
            "tweet.fields": "created_at,author_id,geo,public_metrics,text",
            "expansions": "author_id,geo.place_id",
            "user.fields": "id,name,username",
            "place.fields": "id,name,full_name,country,country_code,geo",
            "max_results": str(self.max_results),
        }
        if previous_since_id:
            params["since_id"] = previous_since_id

        try:
            response = await http.fetch_json_with_timeout(
                self.api_url,
                headers={"Authorization": f"Bearer {self.bearer_token}"},
                params=params,
                timeout_ms=self.timeout_ms,
            )
        except httpx.HTTPError as exc:
            raise ConnectorError(f"X API request failed: {exc.__class__.__name__}", connector=self.name) from exc

        if not response.ok:
            raise ConnectorError(
                f"X API request failed with status {response.status_code}",
                connector=self.name,
            )

        payload = response.json if isinstance(response.json, dict) else {}
        tweets = [item for item in list(payload.get("data") or []) if isinstance(item, dict)]
        includes = payload.get("includes") or {}
        users_by_id = {user.get("id"): user for user in list(includes.get("users") or []) if isinstance(user, dict)}
        places_by_id = {place.get("id"): place for place in list(includes.get("places") or []) if isinstance(place, dict)}

        candidates = [self._to_candidate(tweet, users_by_id, places_by_id, now) for tweet in tweets]
        self._log_collect(self.query, len(candidates))

        warnings: List[str] = []
        if not candidates:
            warnings.append("X connector returned no new tweets.")

        next_since_id = max_snowflake_id([previous_since_id, *(tweet.get("id") for tweet in tweets)])
        return ConnectorResult(
            connector=self.name,
            candidates=candidates,
            checkpoint={"sinceId": next_since_id, "lastRunAt": now},
            meta=self._meta(),
            warnings=warnings,
        )

    def _to_candidate(
        self,
        tweet: Dict[str, Any],
        users_by_id: Dict[str, Dict[str, Any]],
        places_by_id: Dict[str, Dict[str, Any]],
        collected_at: str,
    ) -> IncidentCandidate:
        latitude, longitude, label = extract_coordinates(tweet, places_by_id)
        author = users_by_id.get(tweet.get("author_id")) or {}
        raw_text = str(tweet.get("text") or "").strip()
        metrics = tweet.get("public_metrics") or {}
        tweet_id = str(tweet.get("id") or "").strip()
        return IncidentCandidate(
            connector=self.name,
            source_platform="x",
            source_id=tweet_id or None,
            source_url=f"https://x.com/i/web/status/{tweet_id}" if tweet_id else "",
            summary=raw_text[:280],
            raw_text=raw_text,
            author=author.get("username") or author.get("name") or None,
            posted_at=tweet.get("created_at") or None,
            latitude=latitude,
            longitude=longitude,
            location_label=label,
            keywords=extract_keywords(raw_text),
            severity=infer_engagement_severity(metrics),
            virality=Virality(
                likes=metrics.get("like_count"),
                reposts=metrics.get("retweet_count"),
                replies=metrics.get("reply_count"),
                views=metrics.get("impression_count"),
            ),
            collected_at=collected_at,
        )
