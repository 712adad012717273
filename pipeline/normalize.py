"""Candidate -> submission-ready incident normalization."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import math
import re
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from config import get_settings
from core import (
    Coordinates,
    IncidentCandidate,
    IncidentEvidence,
    IncidentSource,
    NormalizedIncident,
    Verification,
    is_valid_coordinate,
    to_finite_float,
    utc_now_iso,
)


# Checked in order; the first matching category wins.
INCIDENT_TYPE_RULES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("Carjacking", ("carjacking", "carjacked", "hijacking", "hijacked")),
    ("Burglary", ("burglary", "burglar", "break-in", "broke into")),
    ("Theft/Robbery", ("robbery", "robbed", "theft", "stolen", "mugging", "shoplifting")),
    ("Assault", ("assault", "attacked", "beaten")),
    ("Shooting", ("shooting", "gunfire", "shots fired", "gunshot")),
    ("Vandalism", ("vandalism", "vandalised", "vandalized", "graffiti")),
    ("Fire", ("fire", "arson", "blaze")),
)
DEFAULT_INCIDENT_TYPE = "Suspicious Activity"
INCIDENT_TYPES = tuple(name for name, _ in INCIDENT_TYPE_RULES) + (DEFAULT_INCIDENT_TYPE,)

_SEVERITY_RULES = (
    (5, ("shooting", "stab")),
    (4, ("armed", "carjacking")),
    (3, ("assault", "robbery")),
    (2, ("theft", "burglary")),
)

_PLATFORM_RELIABILITY = {"x": 0.55, "web": 0.65}
_MAX_KEYWORDS = 12
_MAX_SUMMARY = 280


@dataclass
class NormalizationOutcome:
    """Either an accepted incident or the rejection reason."""

    incident: Optional[NormalizedIncident] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.incident is not None


def infer_incident_type(text: str, explicit_type: Optional[str] = None) -> str:
    explicit = str(explicit_type or "").strip()
    for known in INCIDENT_TYPES:
        if explicit.lower() == known.lower():
            return known

    lowered = str(text or "").lower()
    for incident_type, markers in INCIDENT_TYPE_RULES:
        if any(marker in lowered for marker in markers):
            return incident_type
    return DEFAULT_INCIDENT_TYPE


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_severity(explicit: Any, text: str) -> int:
    number = to_finite_float(explicit)
    if number is not None:
        return max(1, min(_round_half_up(number), 5))

    lowered = str(text or "").lower()
    for severity, markers in _SEVERITY_RULES:
        if any(marker in lowered for marker in markers):
            return severity
    return 1


def normalize_keywords(base_keywords: List[str], text: str, incident_type: str) -> List[str]:
    tokens = [
        token
        for token in re.sub(r"[^a-z0-9\s]", " ", str(text or "").lower()).split()
        if len(token) > 3
    ]
    type_tokens = [token for token in re.split(r"[/\s]+", incident_type.lower()) if token]

    merged: List[str] = []
    seen = set()
    for keyword in [*base_keywords, *type_tokens, *tokens]:
        value = str(keyword).strip().lower()
        if not value or value in seen:
            continue
        seen.add(value)
        merged.append(value)
    return merged[:_MAX_KEYWORDS]


def _parse_datetime(value: Any) -> Optional[datetime]:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _to_iso(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _date_and_time(date_value: Any, time_value: Any) -> Optional[datetime]:
    date_text = str(date_value or "").strip()
    if not date_text:
        return None
    time_text = str(time_value or "00:00:00").strip()
    if time_text.count(":") == 1:
        time_text = f"{time_text}:00"
    return _parse_datetime(f"{date_text}T{time_text}")


def resolve_incident_datetime(candidate: IncidentCandidate) -> Tuple[Optional[str], str]:
    """Return (ISO timestamp or None, confidence tag)."""
    explicit = _parse_datetime(candidate.incident_date_time)
    if explicit:
        declared = str(candidate.incident_date_time_confidence or "").strip().lower()
        if declared in {"inferred", "inferred_source_posted_at"}:
            return _to_iso(explicit), "inferred_source_posted_at"
        return _to_iso(explicit), "explicit"

    from_parts = _date_and_time(candidate.incident_date, candidate.incident_time)
    if from_parts:
        return _to_iso(from_parts), "explicit"

    posted = _parse_datetime(candidate.posted_at)
    if posted:
        return _to_iso(posted), "inferred_source_posted_at"

    return None, "unknown"


def infer_source_reliability(candidate: IncidentCandidate) -> float:
    if candidate.source_reliability is not None:
        return max(0.0, min(1.0, candidate.source_reliability))
    return _PLATFORM_RELIABILITY.get(candidate.source_platform, 0.5)


def normalize_incident_candidate(
    candidate: IncidentCandidate,
    *,
    fallback_coordinates: Optional[Tuple[float, float]] = None,
    reporter_id: Optional[str] = None,
) -> NormalizationOutcome:
    """
    Validate and shape one candidate into a ``NormalizedIncident``.

    Candidate coordinates win over ``fallback_coordinates`` (the geocoder's
    answer) when they are valid.

    Returns:
        NormalizationOutcome with either ``incident`` or a rejection ``reason``
    """
    has_primary = candidate.has_valid_coordinates()
    if has_primary:
        latitude, longitude = candidate.latitude, candidate.longitude
    elif fallback_coordinates:
        latitude, longitude = fallback_coordinates
    else:
        latitude, longitude = None, None

    raw_text = (candidate.raw_text or candidate.summary).strip()
    summary = (candidate.summary or raw_text).strip()[:_MAX_SUMMARY]

    if not summary:
        return NormalizationOutcome(reason="missing_summary")
    if not is_valid_coordinate(latitude, longitude):
        return NormalizationOutcome(reason="missing_or_invalid_coordinates")
    if not candidate.source_url or not candidate.source_id:
        return NormalizationOutcome(reason="missing_source_identity")

    incident_type = infer_incident_type(raw_text, candidate.incident_type)
    incident_date_time, time_confidence = resolve_incident_datetime(candidate)
    corroboration = to_finite_float(candidate.corroboration_count)

    try:
        incident = NormalizedIncident(
            reporter_id=str(reporter_id or get_settings().quality.reporter_id or "sherlock-agent"),
            coordinates=Coordinates(latitude=float(latitude), longitude=float(longitude)),
            type=incident_type,
            severity=str(normalize_severity(candidate.severity, raw_text)),
            keywords=normalize_keywords(candidate.keywords, raw_text, incident_type),
            summary=summary,
            date=incident_date_time[:10] if incident_date_time else None,
            time=incident_date_time[11:19] if incident_date_time else None,
            incident_date_time=incident_date_time,
            incident_date_time_confidence=time_confidence,
            source=IncidentSource(
                platform=candidate.source_platform,
                source_id=candidate.source_id,
                url=candidate.source_url,
                author=candidate.author,
                posted_at=candidate.posted_at,
            ),
            evidence=IncidentEvidence(
                text=raw_text or summary,
                connector=candidate.connector,
                location_label=candidate.location_label,
                virality=candidate.virality.model_dump(mode="json"),
                collected_at=candidate.collected_at or utc_now_iso(),
            ),
            verification=Verification(
                source_reliability=infer_source_reliability(candidate),
                corroboration_count=max(0, _round_half_up(corroboration)) if corroboration is not None else 1,
                time_confidence=time_confidence,
                geo_confidence="exact" if has_primary else "approx",
            ),
        )
    except ValidationError:
        return NormalizationOutcome(reason="invalid_incident")

    return NormalizationOutcome(incident=incident)
