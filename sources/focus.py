"""Geographic focus parsing and location-scoped query expansion."""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, List, Optional


X_FOCUS_PLACEHOLDER = "{{focus_clause}}"
WEB_FOCUS_PLACEHOLDER = "{{focus}}"


def _unique(values: Iterable[str]) -> List[str]:
    deduped: List[str] = []
    seen = set()
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        deduped.append(value)
    return deduped


def _parse_json_array(raw: str) -> Optional[List[str]]:
    try:
        parsed = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(parsed, list):
        return None
    return [str(item).strip() for item in parsed if str(item).strip()]


def parse_focus_locations(raw_value: Any) -> List[str]:
    """Parse focus terms from a JSON array, ``||``-delimited or multiline value.

    ``||`` is the primary delimiter because single locations often contain
    commas ("Sandton, Johannesburg").
    """
    if isinstance(raw_value, (list, tuple)):
        return _unique(str(item).strip() for item in raw_value if str(item or "").strip())

    raw = str(raw_value or "").strip()
    if not raw:
        return []

    if raw.startswith("["):
        parsed = _parse_json_array(raw)
        if parsed is not None:
            return _unique(parsed)

    if "||" in raw:
        return _unique(part.strip() for part in raw.split("||") if part.strip())

    if "\n" in raw:
        return _unique(part.strip() for part in re.split(r"\r?\n", raw) if part.strip())

    return [raw]


def parse_query_list(raw_value: Any) -> List[str]:
    """Normalize a ``||``-joined string or list of queries."""
    if isinstance(raw_value, (list, tuple)):
        return [str(item).strip() for item in raw_value if str(item or "").strip()]
    raw = str(raw_value or "").strip()
    if not raw:
        return []
    return [part.strip() for part in raw.split("||") if part.strip()]


def _quote_x_term(value: str) -> str:
    return '"' + str(value).replace('"', "").strip() + '"'


def apply_focus_to_x_query(base_query: str, focus_locations: List[str]) -> str:
    base = str(base_query or "").strip()
    if not focus_locations:
        return base

    focus_clause = "(" + " OR ".join(_quote_x_term(location) for location in focus_locations) + ")"
    if X_FOCUS_PLACEHOLDER in base:
        return base.replace(X_FOCUS_PLACEHOLDER, focus_clause)
    return f"{base} {focus_clause}".strip()


def build_perplexity_focused_queries(base_queries: List[str], focus_locations: List[str]) -> List[str]:
    """Expand every base query once per focus location."""
    normalized = [str(query).strip() for query in list(base_queries or []) if str(query or "").strip()]
    if not focus_locations:
        return _unique(normalized)

    expanded: List[str] = []
    for query in normalized:
        if WEB_FOCUS_PLACEHOLDER in query:
            expanded.extend(query.replace(WEB_FOCUS_PLACEHOLDER, location) for location in focus_locations)
            continue
        for location in focus_locations:
            expanded.append(f"{query} Focus geography: {location}. Exclude incidents outside {location}.")
    return _unique(expanded)
