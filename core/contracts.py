"""Canonical data contracts for the incident discovery pipeline.

Python code uses snake_case attributes; the JSON wire/state format keeps the
camelCase keys the ingest service and existing state files expect, so every
model dumps ``by_alias=True``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import math
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    """Millisecond UTC timestamp with a trailing Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_finite_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def is_valid_coordinate(latitude: Any, longitude: Any) -> bool:
    lat = to_finite_float(latitude)
    lon = to_finite_float(longitude)
    return lat is not None and lon is not None and abs(lat) <= 90 and abs(lon) <= 180


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class RunMode(str, Enum):
    """How a cycle was triggered."""

    AUTONOMOUS = "autonomous"
    DIRECTED = "directed"


class QueryFamily(str, Enum):
    """Strategy tag recorded in autonomy memory."""

    DEFAULT = "default"
    BROADENED = "broadened"
    TASK_HYPOTHESIS = "task_hypothesis"
    MANUAL_OVERRIDE = "manual_override"


class Virality(_WireModel):
    """Engagement counters reported by the source."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    likes: int = 0
    reposts: int = 0
    replies: int = 0
    views: int = 0

    @field_validator("likes", "reposts", "replies", "views", mode="before")
    @classmethod
    def _count(cls, value: Any) -> int:
        number = to_finite_float(value)
        return max(0, int(number)) if number is not None else 0


class IncidentCandidate(_WireModel):
    """Raw, unvalidated incident signal produced by one connector."""

    connector: Optional[str] = None
    source_platform: Literal["x", "web"] = "web"
    source_id: Optional[str] = None
    source_url: str = ""
    summary: str = ""
    raw_text: str = ""
    author: Optional[str] = None
    posted_at: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location_label: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    severity: Optional[float] = None
    virality: Virality = Field(default_factory=Virality)
    collected_at: Optional[str] = None

    # Optional detail some sources (and hand-built candidate files) carry.
    incident_type: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("type", "incidentType", "incident_type"),
        serialization_alias="type",
    )
    incident_date_time: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("incidentDateTime", "incidentOccurredAt", "incident_date_time"),
        serialization_alias="incidentDateTime",
    )
    incident_date_time_confidence: Optional[str] = None
    incident_date: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("incidentDate", "date", "incident_date"),
        serialization_alias="incidentDate",
    )
    incident_time: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("incidentTime", "time", "incident_time"),
        serialization_alias="incidentTime",
    )
    source_reliability: Optional[float] = None
    corroboration_count: Optional[float] = None

    @field_validator("source_platform", mode="before")
    @classmethod
    def _platform(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return "x" if text in {"x", "x.com"} else "web"

    @field_validator(
        "source_id",
        "author",
        "posted_at",
        "location_label",
        "incident_type",
        "incident_date_time",
        "incident_date_time_confidence",
        "incident_date",
        "incident_time",
        mode="before",
    )
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("source_url", "summary", "raw_text", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("latitude", "longitude", "severity", "source_reliability", "corroboration_count", mode="before")
    @classmethod
    def _number(cls, value: Any) -> Optional[float]:
        return to_finite_float(value)

    @field_validator("keywords", mode="before")
    @classmethod
    def _keywords(cls, value: Any) -> List[str]:
        if not isinstance(value, (list, tuple)):
            return []
        return [str(item).strip().lower() for item in value if str(item or "").strip()]

    @field_validator("virality", mode="before")
    @classmethod
    def _virality(cls, value: Any) -> Any:
        return value if isinstance(value, (dict, Virality)) else {}

    def has_valid_coordinates(self) -> bool:
        return is_valid_coordinate(self.latitude, self.longitude)


class ConnectorResult(_WireModel):
    """What a connector hands back for one collection pass."""

    connector: str
    candidates: List[IncidentCandidate] = Field(default_factory=list)
    checkpoint: Dict[str, Any] = Field(default_factory=dict)
    meta: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)


class CollectionPlan(_WireModel):
    """Per-pass query/focus plan consumed by the connectors."""

    pass_number: int = Field(default=1, alias="pass")
    mode: RunMode = RunMode.AUTONOMOUS
    query_family: QueryFamily = QueryFamily.DEFAULT
    focus_locations: List[str] = Field(default_factory=list)
    limit: int = 25
    x_query: str = ""
    perplexity_queries: List[str] = Field(default_factory=list)
    next_focus_rotation_index: int = 0


class CollectionResult(_WireModel):
    """Joined outcome of one concurrent connector fan-out."""

    plan: CollectionPlan
    results: List[ConnectorResult] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    candidates: List[IncidentCandidate] = Field(default_factory=list)


class Coordinates(_WireModel):
    latitude: float
    longitude: float

    @model_validator(mode="after")
    def _in_range(self) -> "Coordinates":
        if not is_valid_coordinate(self.latitude, self.longitude):
            raise ValueError(f"coordinates out of range: {self.latitude}, {self.longitude}")
        return self


class IncidentSource(_WireModel):
    platform: str = "web"
    source_id: str
    url: str
    author: Optional[str] = None
    posted_at: Optional[str] = None

    @field_validator("source_id", "url", mode="before")
    @classmethod
    def _required(cls, value: Any) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("value is required")
        return text


class IncidentEvidence(_WireModel):
    text: str = ""
    connector: Optional[str] = None
    location_label: Optional[str] = None
    virality: Dict[str, Any] = Field(default_factory=dict)
    collected_at: str = Field(default_factory=utc_now_iso)


class Verification(_WireModel):
    source_reliability: float = 0.5
    corroboration_count: int = 1
    time_confidence: str = "unknown"
    geo_confidence: Literal["exact", "approx"] = "exact"


class NormalizedIncident(_WireModel):
    """Submission-ready incident accepted by Wolf ingest."""

    reporter_id: str
    coordinates: Coordinates
    type: str
    severity: str
    keywords: List[str] = Field(default_factory=list, max_length=12)
    summary: str = Field(max_length=280)
    date: Optional[str] = None
    time: Optional[str] = None
    incident_date_time: Optional[str] = None
    incident_date_time_confidence: str = "unknown"
    source: IncidentSource
    evidence: IncidentEvidence
    verification: Verification = Field(default_factory=Verification)

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, value: Any) -> str:
        text = str(value or "").strip()
        if text not in {"1", "2", "3", "4", "5"}:
            raise ValueError("severity must be '1'..'5'")
        return text

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        for key in ("date", "time"):
            if payload.get(key) is None:
                payload.pop(key, None)
        return payload


class Rejection(_WireModel):
    source_id: str
    reason: str


class DedupeStats(_WireModel):
    raw: int = 0
    kept_within_run: int = 0
    dropped_within_run: int = 0
    dropped_cross_cycle: int = 0


class GeocodingStats(_WireModel):
    successful_fallbacks: int = 0
    unresolved_candidates: int = 0


class EnrichmentResult(_WireModel):
    normalized_incidents: List[NormalizedIncident] = Field(default_factory=list)
    rejected: List[Rejection] = Field(default_factory=list)
    dedupe: DedupeStats = Field(default_factory=DedupeStats)
    geocoding: GeocodingStats = Field(default_factory=GeocodingStats)
    new_fingerprints: List[str] = Field(default_factory=list)


class SubmissionResult(_WireModel):
    submitted: int = 0
    accepted: int = 0
    duplicates: int = 0
    failed: int = 0
    dry_run: bool = False
    completed_at: str = Field(default_factory=utc_now_iso)
    details: Optional[Dict[str, Any]] = None


# --- Persisted run state -----------------------------------------------------
# lastChecks / connectors keep snake_case inner keys in the state file.


class LastChecks(BaseModel):
    model_config = ConfigDict(extra="allow")

    sherlock_cycle: Optional[str] = None
    wolf_ingest_submit: Optional[str] = None


class XApiCheckpoint(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    since_id: Optional[str] = None
    last_run_at: Optional[str] = None


class PerplexityCheckpoint(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    last_run_at: Optional[str] = None


class ConnectorCheckpoints(BaseModel):
    model_config = ConfigDict(extra="allow")

    x_api: XApiCheckpoint = Field(default_factory=XApiCheckpoint)
    perplexity_web: PerplexityCheckpoint = Field(default_factory=PerplexityCheckpoint)


class AutonomyState(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    focus_rotation_index: int = 0
    random_seed: Optional[int] = None
    last_successful_query_families: List[str] = Field(default_factory=list)
    recent_incident_fingerprints: List[str] = Field(default_factory=list)
    last_run_mode: Optional[str] = None
    last_query_family: Optional[str] = None
    last_task_id: Optional[str] = None
    last_run_at: Optional[str] = None


class RunState(_WireModel):
    """Durable cross-cycle checkpoint (single JSON document)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    last_checks: LastChecks = Field(default_factory=LastChecks)
    connectors: ConnectorCheckpoints = Field(default_factory=ConnectorCheckpoints)
    autonomy: AutonomyState = Field(default_factory=AutonomyState)

    @field_validator("last_checks", "connectors", "autonomy", mode="before")
    @classmethod
    def _null_block(cls, value: Any) -> Any:
        return {} if value is None else value


# --- Run summary -------------------------------------------------------------


class ConnectorSummary(_WireModel):
    connector: str
    candidates: int = 0
    focus_locations: List[str] = Field(default_factory=list)
    query: Optional[str] = None
    queries: Optional[List[str]] = None
    warnings: List[str] = Field(default_factory=list)


class PassSummary(_WireModel):
    pass_number: int = Field(alias="pass")
    query_family: QueryFamily
    focus_locations: List[str] = Field(default_factory=list)
    connectors: List[ConnectorSummary] = Field(default_factory=list)
    connector_errors: List[str] = Field(default_factory=list)
    raw_candidates: int = 0
    accumulated_candidates: int = 0
    normalized_incidents: int = 0


class CandidateCounts(_WireModel):
    raw: int = 0
    deduped: int = 0
    dropped_by_dedupe: int = 0
    dropped_cross_cycle: int = 0


class NormalizationSummary(_WireModel):
    accepted: int = 0
    rejected: int = 0
    rejected_details: List[Rejection] = Field(default_factory=list)


class RunSummary(_WireModel):
    """Structured cycle output (logged or printed as JSON)."""

    started_at: str
    finished_at: Optional[str] = None
    mode: RunMode = RunMode.AUTONOMOUS
    task_id: Optional[str] = None
    dry_run: bool = False
    focus_locations: List[str] = Field(default_factory=list)
    query_family: Optional[QueryFamily] = None
    pass_summaries: List[PassSummary] = Field(default_factory=list)
    connectors: List[ConnectorSummary] = Field(default_factory=list)
    connector_errors: List[str] = Field(default_factory=list)
    candidate_counts: CandidateCounts = Field(default_factory=CandidateCounts)
    normalization: NormalizationSummary = Field(default_factory=NormalizationSummary)
    geocoding: GeocodingStats = Field(default_factory=GeocodingStats)
    submission: Optional[SubmissionResult] = None
    submission_error: Optional[str] = None
    state_committed: bool = False

    @property
    def ok(self) -> bool:
        return self.submission_error is None


# --- Directed task intake ----------------------------------------------------


class LeadEvidence(_WireModel):
    url: str
    title: Optional[str] = None
    snippet: Optional[str] = None
    error: Optional[str] = None


class QueryPlan(_WireModel):
    x_query: str
    perplexity_queries: List[str] = Field(default_factory=list)
    query_family: QueryFamily = QueryFamily.TASK_HYPOTHESIS


class RunConfig(_WireModel):
    min_incidents: int = 2
    max_passes: int = 2


class TaskIntake(_WireModel):
    """Directed run plan derived from a task brief."""

    mode: RunMode = RunMode.DIRECTED
    task_id: Optional[str] = None
    task_name: str = "Directed Sherlock task"
    lead_urls: List[str] = Field(default_factory=list)
    lead_texts: List[str] = Field(default_factory=list)
    lead_evidence: List[LeadEvidence] = Field(default_factory=list)
    focus_locations: List[str] = Field(default_factory=list)
    query_plan: QueryPlan
    run_config: RunConfig = Field(default_factory=RunConfig)
    notes: List[str] = Field(default_factory=list)


class TaskLifecycle(_WireModel):
    polled: bool = False
    claimed: bool = False
    completed: bool = False
    blocked: bool = False


class AutonomySummary(_WireModel):
    """Outcome of one autonomy-runner invocation."""

    mode: Literal["directed_task", "autonomous_fallback"] = "autonomous_fallback"
    task: Optional[Dict[str, Any]] = None
    task_intake: Optional[TaskIntake] = None
    cycle: Optional[RunSummary] = None
    task_lifecycle: TaskLifecycle = Field(default_factory=TaskLifecycle)
    document_id: Optional[str] = None
    started_at: str = Field(default_factory=utc_now_iso)
    finished_at: Optional[str] = None
