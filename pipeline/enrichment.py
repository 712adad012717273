"""Dedupe, quality-gate, geocode and normalize collected candidates."""

from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple

from config import get_settings
from core import (
    DedupeStats,
    EnrichmentResult,
    GeocodingStats,
    IncidentCandidate,
    NormalizedIncident,
    Rejection,
)
from pipeline.geocode import GeocodeResult, resolve_coordinates_from_text
from pipeline.normalize import normalize_incident_candidate


logger = logging.getLogger(__name__)

Geocoder = Callable[[str], Awaitable[Optional[GeocodeResult]]]

_SUMMARY_KEY_LENGTH = 120


def normalize_summary_key(summary: Any) -> str:
    text = re.sub(r"[^a-z0-9\s]", " ", str(summary or "").lower())
    return re.sub(r"\s+", " ", text).strip()[:_SUMMARY_KEY_LENGTH]


def build_incident_fingerprint(incident: NormalizedIncident) -> str:
    """``{platform}:{sourceId}|{lat:.3f}:{lon:.3f}|{summary key}``"""
    source_key = f"{incident.source.platform or 'web'}:{incident.source.source_id or 'unknown'}"
    coordinates = f"{incident.coordinates.latitude:.3f}:{incident.coordinates.longitude:.3f}"
    return f"{source_key}|{coordinates}|{normalize_summary_key(incident.summary)}"


def _source_key(candidate: IncidentCandidate) -> str:
    return f"{candidate.source_platform or 'web'}:{candidate.source_id or 'unknown'}"


def _semantic_key(candidate: IncidentCandidate) -> str:
    if candidate.has_valid_coordinates():
        coordinate_key = f"{candidate.latitude:.3f}:{candidate.longitude:.3f}"
    else:
        coordinate_key = "no-coordinates"
    return f"{coordinate_key}:{normalize_summary_key(candidate.summary or candidate.raw_text)}"


def dedupe_within_run(
    candidates: Sequence[IncidentCandidate],
) -> Tuple[List[IncidentCandidate], List[Rejection]]:
    """First occurrence wins, by source identity and then by place + summary."""
    seen_source = set()
    seen_semantic = set()
    kept: List[IncidentCandidate] = []
    removed: List[Rejection] = []

    for candidate in candidates:
        source_id = candidate.source_id or "unknown"
        source_key = _source_key(candidate)
        if source_key in seen_source:
            removed.append(Rejection(source_id=source_id, reason="duplicate_source"))
            continue

        semantic_key = _semantic_key(candidate)
        if semantic_key in seen_semantic:
            removed.append(Rejection(source_id=source_id, reason="duplicate_semantic"))
            continue

        seen_source.add(source_key)
        seen_semantic.add(semantic_key)
        kept.append(candidate)

    return kept, removed


def coerce_candidates(raw: Iterable[Any]) -> List[IncidentCandidate]:
    """Accept model instances or camelCase dicts (e.g. from a JSON input file)."""
    return [
        item if isinstance(item, IncidentCandidate) else IncidentCandidate.model_validate(item)
        for item in raw
        if isinstance(item, (IncidentCandidate, dict))
    ]


async def enrich_incident_candidates(
    candidates: Iterable[Any],
    *,
    previous_fingerprints: Optional[Iterable[str]] = None,
    min_summary_length: Optional[int] = None,
    require_source_identity: Optional[bool] = None,
    reporter_id: Optional[str] = None,
    geocoder: Optional[Geocoder] = None,
) -> EnrichmentResult:
    """
    Turn raw candidates into submission-ready incidents.

    Stages run in order: within-run dedupe, quality gate, geocode fallback,
    normalization, cross-cycle dedupe against ``previous_fingerprints``.
    Geocoding runs sequentially, one candidate at a time. Accepted
    fingerprints are returned, never persisted here.
    """
    quality = get_settings().quality
    minimum = max(8, int(min_summary_length or quality.min_summary_length or 24))
    strict_identity = quality.require_source_identity if require_source_identity is None else require_source_identity
    geocode = geocoder or resolve_coordinates_from_text

    raw_candidates = coerce_candidates(candidates)
    prior = {str(value) for value in (previous_fingerprints or [])}

    kept, removed = dedupe_within_run(raw_candidates)
    rejected: List[Rejection] = list(removed)
    normalized: List[NormalizedIncident] = []
    new_fingerprints: List[str] = []
    geocode_hits = 0
    geocode_misses = 0
    dropped_cross_cycle = 0

    for candidate in kept:
        source_id = candidate.source_id or "unknown"
        summary = (candidate.summary or candidate.raw_text).strip()

        if len(summary) < minimum:
            rejected.append(Rejection(source_id=source_id, reason="summary_too_short"))
            continue
        if strict_identity and (not candidate.source_url or not candidate.source_id):
            rejected.append(Rejection(source_id=source_id, reason="missing_source_identity"))
            continue

        fallback: Optional[Tuple[float, float]] = None
        if not candidate.has_valid_coordinates():
            geocode_input = candidate.location_label or candidate.raw_text or candidate.summary
            resolved = await geocode(geocode_input)
            if resolved:
                fallback = (resolved.latitude, resolved.longitude)
                if not candidate.location_label and resolved.label:
                    candidate = candidate.model_copy(update={"location_label": resolved.label})
                geocode_hits += 1
            else:
                geocode_misses += 1

        outcome = normalize_incident_candidate(candidate, fallback_coordinates=fallback, reporter_id=reporter_id)
        if not outcome.ok:
            rejected.append(Rejection(source_id=source_id, reason=outcome.reason or "normalization_failed"))
            continue

        fingerprint = build_incident_fingerprint(outcome.incident)
        if fingerprint in prior:
            dropped_cross_cycle += 1
            rejected.append(Rejection(source_id=source_id, reason="duplicate_cross_cycle"))
            continue

        prior.add(fingerprint)
        normalized.append(outcome.incident)
        new_fingerprints.append(fingerprint)

    logger.info(
        f"Enrichment kept {len(normalized)}/{len(raw_candidates)} candidates "
        f"({len(rejected)} rejected, {geocode_hits} geocoded)"
    )
    return EnrichmentResult(
        normalized_incidents=normalized,
        rejected=rejected,
        dedupe=DedupeStats(
            raw=len(raw_candidates),
            kept_within_run=len(kept),
            dropped_within_run=len(removed),
            dropped_cross_cycle=dropped_cross_cycle,
        ),
        geocoding=GeocodingStats(successful_fallbacks=geocode_hits, unresolved_candidates=geocode_misses),
        new_fingerprints=new_fingerprints,
    )
