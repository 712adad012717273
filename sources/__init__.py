"""Incident source connectors and collection planning."""

from .base import BaseConnector, CollectionContext
from .collection import (
    QueryOverrides,
    build_collection_plan,
    build_connectors,
    collect_source_candidates,
    select_focus_window,
)
from .focus import (
    apply_focus_to_x_query,
    build_perplexity_focused_queries,
    parse_focus_locations,
    parse_query_list,
)
from .perplexity_web import PerplexityWebConnector
from .x_api import XApiConnector

__all__ = [
    "BaseConnector",
    "CollectionContext",
    "PerplexityWebConnector",
    "QueryOverrides",
    "XApiConnector",
    "apply_focus_to_x_query",
    "build_collection_plan",
    "build_connectors",
    "build_perplexity_focused_queries",
    "collect_source_candidates",
    "parse_focus_locations",
    "parse_query_list",
    "select_focus_window",
]
