"""Geocoding, enrichment, submission and the cycle orchestrator."""

from .cycle import CycleOptions, FinalizeOptions, apply_cycle_commit, finalize_agentic_cycle, run_cycle
from .enrichment import (
    build_incident_fingerprint,
    coerce_candidates,
    dedupe_within_run,
    enrich_incident_candidates,
    normalize_summary_key,
)
from .geocode import GeocodeResult, parse_coordinate_pair_from_text, resolve_coordinates_from_text
from .normalize import NormalizationOutcome, infer_incident_type, normalize_incident_candidate
from .submission import submit_incident_batch, submit_incidents_to_wolf_ingest

__all__ = [
    "CycleOptions",
    "FinalizeOptions",
    "GeocodeResult",
    "NormalizationOutcome",
    "apply_cycle_commit",
    "build_incident_fingerprint",
    "coerce_candidates",
    "dedupe_within_run",
    "enrich_incident_candidates",
    "finalize_agentic_cycle",
    "infer_incident_type",
    "normalize_incident_candidate",
    "normalize_summary_key",
    "parse_coordinate_pair_from_text",
    "resolve_coordinates_from_text",
    "run_cycle",
    "submit_incident_batch",
    "submit_incidents_to_wolf_ingest",
]
