"""
Cycle orchestrator.

One cycle is a bounded pass loop (collect -> enrich -> maybe stop), then one
submission and at most one state commit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

from config import get_settings
from core import (
    AutonomyState,
    CandidateCounts,
    CollectionPlan,
    ConnectorResult,
    ConnectorSummary,
    EnrichmentResult,
    IncidentCandidate,
    NormalizationSummary,
    PassSummary,
    PerplexityCheckpoint,
    QueryFamily,
    RunMode,
    RunState,
    RunSummary,
    SubmissionResult,
    XApiCheckpoint,
    utc_now_iso,
)
from orchestrator.store import RunStateStore, keep_last_unique
from pipeline.enrichment import Geocoder, enrich_incident_candidates
from pipeline.submission import submit_incident_batch
from sources.collection import (
    ConnectorFactory,
    QueryOverrides,
    build_collection_plan,
    build_connectors,
    collect_source_candidates,
)
from sources.focus import parse_focus_locations


logger = logging.getLogger(__name__)

MAX_PASSES_CAP = 4
QUERY_FAMILY_MEMORY = 10
FINGERPRINT_MEMORY = 300


@dataclass
class CycleOptions:
    """Run-time knobs for one cycle (mirrors the CLI flags)."""

    mode: RunMode = RunMode.AUTONOMOUS
    task_id: Optional[str] = None
    dry_run: bool = False
    state_file: Optional[Union[str, Path]] = None
    focus_locations: Optional[List[str]] = None
    min_incidents: int = 1
    max_passes: int = 1
    x_query: str = ""
    perplexity_queries: List[str] = field(default_factory=list)
    limit: Optional[int] = None

    def bounded_max_passes(self) -> int:
        return max(1, min(int(self.max_passes or 1), MAX_PASSES_CAP))

    def bounded_min_incidents(self) -> int:
        return max(1, int(self.min_incidents or 1))

    def resolved_focus_locations(self) -> List[str]:
        if self.focus_locations is not None:
            return parse_focus_locations(self.focus_locations)
        return parse_focus_locations(get_settings().focus.locations)


def summarize_connector_result(result: ConnectorResult) -> ConnectorSummary:
    meta = result.meta or {}
    return ConnectorSummary(
        connector=result.connector,
        candidates=len(result.candidates),
        focus_locations=list(meta.get("focusLocations") or []),
        query=meta.get("query"),
        queries=meta.get("queries"),
        warnings=list(result.warnings),
    )


def _commit_autonomy_state(
    updated: RunState,
    *,
    new_fingerprints: List[str],
    query_family: Optional[QueryFamily],
    mode: RunMode,
    task_id: Optional[str],
    accepted: int,
    finished_at: str,
    focus_rotation_index: Optional[int] = None,
) -> RunState:
    updated.last_checks.sherlock_cycle = finished_at
    if accepted > 0:
        updated.last_checks.wolf_ingest_submit = finished_at

    previous: AutonomyState = updated.autonomy
    families = list(previous.last_successful_query_families)
    if query_family is not None:
        families.append(query_family.value)
    updated.autonomy = previous.model_copy(
        update={
            "focus_rotation_index": (
                previous.focus_rotation_index if focus_rotation_index is None else focus_rotation_index
            ),
            "last_successful_query_families": keep_last_unique(families, QUERY_FAMILY_MEMORY),
            "recent_incident_fingerprints": keep_last_unique(
                [*previous.recent_incident_fingerprints, *new_fingerprints],
                FINGERPRINT_MEMORY,
            ),
            "last_run_mode": mode.value,
            "last_query_family": query_family.value if query_family else previous.last_query_family,
            "last_task_id": task_id or previous.last_task_id,
            "last_run_at": finished_at,
        }
    )
    return updated


def apply_cycle_commit(
    state: RunState,
    *,
    results: List[ConnectorResult],
    enrichment: EnrichmentResult,
    plan: CollectionPlan,
    options: CycleOptions,
    accepted: int,
    finished_at: str,
) -> RunState:
    """Fold one successful cycle into the run state (pure; the caller persists)."""
    updated = state.model_copy(deep=True)

    # Later passes overwrite earlier ones; a connector that never succeeded keeps its old checkpoint.
    for result in results:
        if result.connector == "x_api":
            updated.connectors.x_api = XApiCheckpoint.model_validate(result.checkpoint)
        elif result.connector == "perplexity_web":
            updated.connectors.perplexity_web = PerplexityCheckpoint.model_validate(result.checkpoint)

    return _commit_autonomy_state(
        updated,
        new_fingerprints=enrichment.new_fingerprints,
        query_family=plan.query_family,
        mode=RunMode(options.mode),
        task_id=options.task_id,
        accepted=accepted,
        finished_at=finished_at,
        focus_rotation_index=plan.next_focus_rotation_index,
    )


def _record_outcome(
    summary: RunSummary,
    enrichment: EnrichmentResult,
    submission: Optional[SubmissionResult],
    submission_error: Optional[str],
) -> None:
    summary.candidate_counts = CandidateCounts(
        raw=enrichment.dedupe.raw,
        deduped=enrichment.dedupe.kept_within_run,
        dropped_by_dedupe=enrichment.dedupe.dropped_within_run,
        dropped_cross_cycle=enrichment.dedupe.dropped_cross_cycle,
    )
    summary.normalization = NormalizationSummary(
        accepted=len(enrichment.normalized_incidents),
        rejected=len(enrichment.rejected),
        rejected_details=list(enrichment.rejected),
    )
    summary.geocoding = enrichment.geocoding
    summary.submission = submission
    summary.submission_error = submission_error


async def run_cycle(
    options: CycleOptions,
    *,
    store: Optional[RunStateStore] = None,
    connector_factory: ConnectorFactory = build_connectors,
    geocoder: Optional[Geocoder] = None,
) -> RunSummary:
    """
    Execute one full cycle and return its summary.

    Connector failures are recorded and never abort the cycle. A submission
    failure is reported in ``submission_error`` and blocks the state commit.
    Dry runs never submit and never write state.
    """
    store = store or RunStateStore(options.state_file)
    state = store.load()
    mode = RunMode(options.mode)
    focus_locations = options.resolved_focus_locations()
    min_incidents = options.bounded_min_incidents()
    max_passes = options.bounded_max_passes()
    overrides = QueryOverrides.from_raw(options.x_query, options.perplexity_queries)
    rotation_index = state.autonomy.focus_rotation_index
    previous_fingerprints = list(state.autonomy.recent_incident_fingerprints)

    summary = RunSummary(
        started_at=utc_now_iso(),
        mode=mode,
        task_id=options.task_id,
        dry_run=options.dry_run,
        focus_locations=focus_locations,
    )
    logger.info(
        f"Starting {mode.value} cycle (dry_run={options.dry_run}, min_incidents={min_incidents}, "
        f"max_passes={max_passes}, focus={len(focus_locations)} locations)"
    )

    accumulated: List[IncidentCandidate] = []
    all_results: List[ConnectorResult] = []
    enrichment = EnrichmentResult()
    plan: Optional[CollectionPlan] = None

    for pass_number in range(1, max_passes + 1):
        plan = build_collection_plan(
            pass_number,
            mode,
            focus_locations,
            rotation_index,
            overrides if pass_number == 1 else None,
            limit=options.limit,
        )
        collection = await collect_source_candidates(plan, state=state, connector_factory=connector_factory)
        all_results.extend(collection.results)
        summary.connector_errors.extend(collection.errors)
        accumulated.extend(collection.candidates)

        # Re-enrich the whole union so within-run dedupe spans every pass.
        enrichment = await enrich_incident_candidates(
            accumulated,
            previous_fingerprints=previous_fingerprints,
            geocoder=geocoder,
        )

        summary.pass_summaries.append(
            PassSummary(
                pass_number=pass_number,
                query_family=plan.query_family,
                focus_locations=plan.focus_locations,
                connectors=[summarize_connector_result(result) for result in collection.results],
                connector_errors=list(collection.errors),
                raw_candidates=len(collection.candidates),
                accumulated_candidates=len(accumulated),
                normalized_incidents=len(enrichment.normalized_incidents),
            )
        )
        logger.info(
            f"Pass {pass_number}: {len(collection.candidates)} new candidates, "
            f"{len(enrichment.normalized_incidents)} normalized incidents so far"
        )
        if len(enrichment.normalized_incidents) >= min_incidents:
            break

    submission, submission_error = await submit_incident_batch(
        enrichment.normalized_incidents,
        dry_run=options.dry_run,
    )
    finished_at = utc_now_iso()

    summary.finished_at = finished_at
    summary.query_family = plan.query_family if plan else None
    summary.connectors = [summarize_connector_result(result) for result in all_results]
    _record_outcome(summary, enrichment, submission, submission_error)

    for error in summary.connector_errors:
        logger.warning(f"Connector error: {error}")

    if not options.dry_run and not submission_error and plan is not None:
        committed = apply_cycle_commit(
            state,
            results=all_results,
            enrichment=enrichment,
            plan=plan,
            options=options,
            accepted=submission.accepted if submission else 0,
            finished_at=finished_at,
        )
        store.save(committed)
        summary.state_committed = True

    return summary


@dataclass
class FinalizeOptions:
    """Knobs for finalizing a cycle whose candidates were collected elsewhere."""

    mode: RunMode = RunMode.DIRECTED
    task_id: Optional[str] = None
    dry_run: bool = False
    state_file: Optional[Union[str, Path]] = None
    query_family: Optional[QueryFamily] = None
    min_summary_length: Optional[int] = None
    require_source_identity: Optional[bool] = None


async def finalize_agentic_cycle(
    candidates: Iterable[Any],
    options: FinalizeOptions,
    *,
    store: Optional[RunStateStore] = None,
    geocoder: Optional[Geocoder] = None,
) -> RunSummary:
    """
    Enrich, submit and commit externally gathered candidates.

    Connector checkpoints and the focus rotation index are left untouched;
    only the autonomy memory and last-check timestamps move on commit.
    """
    store = store or RunStateStore(options.state_file)
    state = store.load()
    mode = RunMode(options.mode)

    summary = RunSummary(
        started_at=utc_now_iso(),
        mode=mode,
        task_id=options.task_id,
        dry_run=options.dry_run,
        query_family=options.query_family,
    )

    enrichment = await enrich_incident_candidates(
        candidates,
        previous_fingerprints=state.autonomy.recent_incident_fingerprints,
        min_summary_length=options.min_summary_length,
        require_source_identity=options.require_source_identity,
        geocoder=geocoder,
    )
    submission, submission_error = await submit_incident_batch(
        enrichment.normalized_incidents,
        dry_run=options.dry_run,
    )
    finished_at = utc_now_iso()
    summary.finished_at = finished_at
    _record_outcome(summary, enrichment, submission, submission_error)

    if not options.dry_run and not submission_error:
        committed = _commit_autonomy_state(
            state.model_copy(deep=True),
            new_fingerprints=enrichment.new_fingerprints,
            query_family=options.query_family,
            mode=mode,
            task_id=options.task_id,
            accepted=submission.accepted if submission else 0,
            finished_at=finished_at,
        )
        store.save(committed)
        summary.state_committed = True

    return summary
