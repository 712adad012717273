"""Per-pass collection planning and concurrent connector fan-out."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any, Callable, List, Optional, Sequence

from core import CollectionPlan, CollectionResult, ConnectorResult, QueryFamily, RunMode, RunState
from sources.base import BaseConnector, CollectionContext
from sources.focus import parse_query_list
from sources.perplexity_web import BROAD_PERPLEXITY_QUERIES, DEFAULT_PERPLEXITY_QUERIES, PerplexityWebConnector
from sources.x_api import BROAD_X_QUERY, DEFAULT_X_QUERY, XApiConnector


logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 4
DEFAULT_LIMIT = 25


@dataclass
class QueryOverrides:
    """Explicit queries that replace the default/broadened strategy."""

    x_query: str = ""
    perplexity_queries: List[str] = field(default_factory=list)

    @classmethod
    def from_raw(cls, x_query: Any = None, perplexity_queries: Any = None) -> "QueryOverrides":
        return cls(x_query=str(x_query or "").strip(), perplexity_queries=parse_query_list(perplexity_queries))

    @property
    def active(self) -> bool:
        return bool(self.x_query or self.perplexity_queries)


ConnectorFactory = Callable[[CollectionPlan], Sequence[BaseConnector]]


def select_focus_window(
    all_locations: Sequence[str],
    *,
    mode: RunMode = RunMode.AUTONOMOUS,
    pass_number: int = 1,
    rotation_index: int = 0,
    window_size: int = DEFAULT_WINDOW_SIZE,
) -> List[str]:
    """Deterministic round-robin slice of the focus list for one pass.

    Directed runs always get the full list.
    """
    source = list(all_locations or [])
    if not source:
        return []
    if RunMode(mode) == RunMode.DIRECTED:
        return source

    size = max(1, min(int(window_size or DEFAULT_WINDOW_SIZE), len(source)))
    start = (max(0, int(rotation_index or 0)) + (max(1, int(pass_number)) - 1) * size) % len(source)
    return [source[(start + offset) % len(source)] for offset in range(size)]


def _query_family(mode: RunMode, pass_number: int, overrides: QueryOverrides) -> QueryFamily:
    if overrides.active:
        return QueryFamily.TASK_HYPOTHESIS if mode == RunMode.DIRECTED else QueryFamily.MANUAL_OVERRIDE
    return QueryFamily.DEFAULT if pass_number == 1 else QueryFamily.BROADENED


def build_collection_plan(
    pass_number: int = 1,
    mode: RunMode = RunMode.AUTONOMOUS,
    focus_locations: Optional[Sequence[str]] = None,
    rotation_index: int = 0,
    overrides: Optional[QueryOverrides] = None,
    *,
    limit: Optional[int] = None,
    window_size: int = DEFAULT_WINDOW_SIZE,
) -> CollectionPlan:
    """Build the query/focus plan for one pass; pass >= 2 broadens the queries."""
    pass_number = max(1, int(pass_number or 1))
    mode = RunMode(mode)
    overrides = overrides or QueryOverrides()
    all_locations = list(focus_locations or [])
    rotation_index = max(0, int(rotation_index or 0))

    window = select_focus_window(
        all_locations,
        mode=mode,
        pass_number=pass_number,
        rotation_index=rotation_index,
        window_size=window_size,
    )
    if not all_locations:
        next_rotation = 0
    elif mode == RunMode.DIRECTED:
        next_rotation = rotation_index % len(all_locations)
    else:
        # Index just past this pass's window, so the next cycle resumes there.
        next_rotation = (rotation_index + pass_number * len(window)) % len(all_locations)

    if overrides.x_query:
        x_query = overrides.x_query
    else:
        x_query = DEFAULT_X_QUERY if pass_number == 1 else BROAD_X_QUERY

    if overrides.perplexity_queries:
        perplexity_queries = list(overrides.perplexity_queries)
    else:
        perplexity_queries = list(DEFAULT_PERPLEXITY_QUERIES if pass_number == 1 else BROAD_PERPLEXITY_QUERIES)

    return CollectionPlan(
        pass_number=pass_number,
        mode=mode,
        query_family=_query_family(mode, pass_number, overrides),
        focus_locations=window,
        limit=max(10, min(int(limit or DEFAULT_LIMIT), 100)),
        x_query=x_query,
        perplexity_queries=perplexity_queries,
        next_focus_rotation_index=next_rotation,
    )


def build_connectors(plan: CollectionPlan) -> List[BaseConnector]:
    # Social results first: within-run dedupe keeps the first occurrence.
    return [
        XApiConnector(query=plan.x_query, focus_locations=plan.focus_locations, max_results=plan.limit),
        PerplexityWebConnector(queries=plan.perplexity_queries, focus_locations=plan.focus_locations),
    ]


async def collect_source_candidates(
    plan: CollectionPlan,
    *,
    state: Optional[RunState] = None,
    connector_factory: ConnectorFactory = build_connectors,
) -> CollectionResult:
    """Run every connector concurrently; one connector failing never cancels another."""
    connectors = list(connector_factory(plan))
    context = CollectionContext(state=state or RunState(), limit=plan.limit)
    outcomes = await asyncio.gather(
        *(connector.collect(context) for connector in connectors),
        return_exceptions=True,
    )

    results: List[ConnectorResult] = []
    errors: List[str] = []
    for connector, outcome in zip(connectors, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            message = str(outcome) or outcome.__class__.__name__
            logger.warning(f"[{connector.name}] Connector failed: {message}")
            errors.append(message)
            continue
        results.append(outcome)

    candidates = [candidate for result in results for candidate in result.candidates]
    logger.info(
        f"Pass {plan.pass_number} ({plan.query_family.value}) collected {len(candidates)} candidates "
        f"from {len(results)}/{len(connectors)} connectors"
    )
    return CollectionResult(plan=plan, results=results, errors=errors, candidates=candidates)
