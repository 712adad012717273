"""Core contracts and shared types for the incident pipeline."""

from .contracts import (
    AutonomyState,
    AutonomySummary,
    CandidateCounts,
    CollectionPlan,
    CollectionResult,
    ConnectorCheckpoints,
    ConnectorResult,
    ConnectorSummary,
    Coordinates,
    DedupeStats,
    EnrichmentResult,
    GeocodingStats,
    IncidentCandidate,
    IncidentEvidence,
    IncidentSource,
    LastChecks,
    LeadEvidence,
    NormalizationSummary,
    NormalizedIncident,
    PassSummary,
    PerplexityCheckpoint,
    QueryFamily,
    QueryPlan,
    Rejection,
    RunConfig,
    RunMode,
    RunState,
    RunSummary,
    SubmissionResult,
    TaskLifecycle,
    TaskIntake,
    Verification,
    Virality,
    XApiCheckpoint,
    is_valid_coordinate,
    to_finite_float,
    utc_now_iso,
)

__all__ = [
    "AutonomyState",
    "AutonomySummary",
    "CandidateCounts",
    "CollectionPlan",
    "CollectionResult",
    "ConnectorCheckpoints",
    "ConnectorResult",
    "ConnectorSummary",
    "Coordinates",
    "DedupeStats",
    "EnrichmentResult",
    "GeocodingStats",
    "IncidentCandidate",
    "IncidentEvidence",
    "IncidentSource",
    "LastChecks",
    "LeadEvidence",
    "NormalizationSummary",
    "NormalizedIncident",
    "PassSummary",
    "PerplexityCheckpoint",
    "QueryFamily",
    "QueryPlan",
    "Rejection",
    "RunConfig",
    "RunMode",
    "RunState",
    "RunSummary",
    "SubmissionResult",
    "TaskLifecycle",
    "TaskIntake",
    "Verification",
    "Virality",
    "XApiCheckpoint",
    "is_valid_coordinate",
    "to_finite_float",
    "utc_now_iso",
]
