"""Web/LLM retrieval connector backed by the Perplexity chat completions API."""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from core import ConnectorResult, IncidentCandidate
from sources import http
from sources.base import BaseConnector, CollectionContext
from sources.focus import build_perplexity_focused_queries, parse_focus_locations, parse_query_list
from utils.exceptions import ConnectorError


logger = logging.getLogger(__name__)

DEFAULT_PERPLEXITY_QUERIES = [
    "Find recent suspicious activity or crime incident reports from x.com and local news. "
    "Prioritize incidents with explicit latitude/longitude.",
]
BROAD_PERPLEXITY_QUERIES = [
    "Find additional recent incidents with strong location clues, police/community alerts, and x.com references.",
    "Search for under-reported suspicious activity posts in local community groups and regional news.",
]

_SYSTEM_PROMPT = "You extract incident intelligence from web and social sources. Output only strict JSON."
_SCHEMA_LINES = [
    "Return ONLY valid JSON array.",
    "Each array item must include:",
    "{",
    '  "sourcePlatform": "x" | "web",',
    '  "sourceId": "string or null",',
    '  "sourceUrl": "https://...",',
    '  "summary": "short summary",',
    '  "rawText": "source excerpt",',
    '  "author": "string or null",',
    '  "postedAt": "ISO timestamp or null",',
    '  "coordinates": { "latitude": number, "longitude": number },',
    '  "locationLabel": "string or null",',
    '  "keywords": ["keyword"],',
    '  "severity": 1-5,',
    '  "virality": { "likes": 0, "reposts": 0, "replies": 0, "views": 0 }',
    "}",
    "Exclude entries without sourceUrl.",
]


def build_prompt(query: str) -> str:
    return "\n".join([*_SCHEMA_LINES, f"Query: {query}"])


def build_stable_id(source_platform: str, source_url: str, summary: str) -> str:
    digest = hashlib.sha1(f"{source_platform}|{source_url}|{summary}".encode("utf-8")).hexdigest()[:16]
    return f"{source_platform}-{digest}"


def _entry_to_fields(entry: Dict[str, Any]) -> Dict[str, Any]:
    coordinates = entry.get("coordinates") or entry.get("coordinate") or {}
    if not isinstance(coordinates, dict):
        coordinates = {}
    summary = str(entry.get("summary") or entry.get("title") or "").strip()
    fields = dict(entry)
    fields.update(
        {
            "sourcePlatform": entry.get("sourcePlatform") or entry.get("platform") or "web",
            "sourceUrl": entry.get("sourceUrl") or entry.get("url") or "",
            "summary": summary,
            "rawText": str(entry.get("rawText") or entry.get("evidence") or summary).strip(),
            "latitude": coordinates.get("latitude"),
            "longitude": coordinates.get("longitude"),
        }
    )
    return fields


def parse_perplexity_incidents(content: Any) -> List[IncidentCandidate]:
    """Coerce a model answer into candidates, dropping entries that fail required fields."""
    entries = http.parse_json_array_from_text(content)
    if not entries:
        return []

    candidates: List[IncidentCandidate] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        try:
            candidate = IncidentCandidate.model_validate(_entry_to_fields(entry))
        except ValidationError as exc:
            logger.debug(f"[perplexity_web] Dropping malformed entry: {exc.error_count()} errors")
            continue
        if candidate.summary and candidate.source_url:
            candidates.append(candidate)
    return candidates


class PerplexityWebConnector(BaseConnector):
    """Natural-language retrieval queries answered as a strict JSON incident array."""

    def __init__(
        self,
        *,
        queries: Optional[Any] = None,
        focus_locations: Optional[List[str]] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ):
        super().__init__(focus_locations)
        px_settings = self.settings.perplexity
        if focus_locations is None:
            self.focus_locations = parse_focus_locations(self.settings.focus.locations)
        self.api_key = str(api_key or px_settings.api_key or "").strip()
        self.model = str(model or px_settings.model or "sonar-pro").strip()
        self.api_url = str(api_url or px_settings.api_url).strip()
        self.timeout_ms = max(3000, int(timeout_ms or px_settings.timeout_ms or 25000))
        configured = parse_query_list(queries) or parse_query_list(px_settings.queries)
        self.base_queries = configured or list(DEFAULT_PERPLEXITY_QUERIES)
        self.queries = build_perplexity_focused_queries(self.base_queries, self.focus_locations)

    @property
    def name(self) -> str:
        return "perplexity_web"

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _meta(self) -> Dict[str, Any]:
        return {"focusLocations": list(self.focus_locations), "queries": list(self.queries)}

    async def collect(self, context: CollectionContext) -> ConnectorResult:
        now = self._now()
        if not self.is_configured():
            return self._skipped(
                "PERPLEXITY_API_KEY is missing; skipping Perplexity connector.",
                {"lastRunAt": now},
                self._meta(),
            )

        warnings: List[str] = []
        failures: List[str] = []
        candidates: List[IncidentCandidate] = []
        for query in self.queries:
            try:
                response = await http.fetch_json_with_timeout(
                    self.api_url,
                    method="POST",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json_body={
                        "model": self.model,
                        "temperature": 0.1,
                        "messages": [
                            {"role": "system", "content": _SYSTEM_PROMPT},
                            {"role": "user", "content": build_prompt(query)},
                        ],
                    },
                    timeout_ms=self.timeout_ms,
                )
            except httpx.HTTPError as exc:
                failures.append(f"Perplexity query failed ({exc.__class__.__name__}) for query: {query}")
                continue

            if not response.ok:
                failures.append(f"Perplexity query failed ({response.status_code}) for query: {query}")
                continue

            parsed = parse_perplexity_incidents(_message_content(response.json))
            if not parsed:
                warnings.append(f"Perplexity returned no parseable incidents for query: {query}")
            self._log_collect(query, len(parsed))

            for candidate in parsed:
                source_id = candidate.source_id or build_stable_id(
                    candidate.source_platform,
                    candidate.source_url,
                    candidate.summary,
                )
                candidates.append(
                    candidate.model_copy(
                        update={"connector": self.name, "source_id": source_id, "collected_at": now}
                    )
                )

        if failures and len(failures) == len(self.queries):
            raise ConnectorError(failures[-1], connector=self.name, failed_queries=len(failures))
        warnings = failures + warnings
        for warning in warnings:
            self._log_warning(warning)

        return ConnectorResult(
            connector=self.name,
            candidates=candidates,
            checkpoint={"lastRunAt": now},
            meta=self._meta(),
            warnings=warnings,
        )


def _message_content(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    return str(message.get("content") or "") if isinstance(message, dict) else ""
