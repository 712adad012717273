"""Directed task intake: turn a free-text task brief into a focused run plan."""

from __future__ import annotations

from collections import Counter
import logging
import re
from typing import Any, List, Optional, Sequence

import httpx

from config import get_settings
from core import LeadEvidence, QueryFamily, QueryPlan, RunConfig, TaskIntake
from sources import http
from sources.focus import parse_focus_locations


logger = logging.getLogger(__name__)

STOP_WORDS = frozenset(
    {
        "and",
        "the",
        "that",
        "with",
        "from",
        "into",
        "this",
        "your",
        "then",
        "after",
        "near",
        "focus",
        "only",
        "investigate",
        "credible",
        "incidents",
        "incident",
        "reports",
        "report",
    }
)
DEFAULT_X_KEYWORDS = "crime OR robbery OR assault"
LEAD_USER_AGENT = "SherlockTaskIntake/1.0"
SNIPPET_LENGTH = 420

_URL_RE = re.compile(r"https?://[^\s)]+", re.IGNORECASE)
_FOCUS_RE = re.compile(r"focus(?:\s+only)?\s+on\s+(.+?)(?:\.|$)", re.IGNORECASE | re.MULTILINE)
_MIN_INCIDENTS_RE = re.compile(r"min[\s_-]*incidents?\s*[:=]?\s*(\d+)", re.IGNORECASE)
_MAX_PASSES_RE = re.compile(r"max[\s_-]*passes?\s*[:=]?\s*(\d+)", re.IGNORECASE)
_TITLE_RE = re.compile(r"<title[^>]*>([\s\S]*?)</title>", re.IGNORECASE)


def extract_lead_urls(text: Any) -> List[str]:
    urls: List[str] = []
    for match in _URL_RE.findall(str(text or "")):
        url = match.strip()
        if url and url not in urls:
            urls.append(url)
    return urls


def infer_focus_locations(text: Any, fallback: Optional[Sequence[str]] = None) -> List[str]:
    """Read "focus (only) on X" from the brief, else return ``fallback``."""
    fallback_list = list(fallback or [])
    match = _FOCUS_RE.search(str(text or ""))
    explicit = match.group(1).strip() if match else ""
    if not explicit:
        return fallback_list

    # "Sandton, Johannesburg and Soweto, Johannesburg" keeps each "place, city" pair whole.
    parts = [part.strip() for part in re.split(r"\s+and\s+", explicit, flags=re.IGNORECASE) if part.strip()]
    if len(parts) > 1 and all("," in part for part in parts):
        return parse_focus_locations(parts)

    return parse_focus_locations(explicit) or fallback_list


def extract_hypothesis_keywords(sources: Sequence[Any], limit: int = 8) -> List[str]:
    """Most frequent non-stop-word tokens (>= 4 chars), ties in first-seen order."""
    combined = " ".join(str(value or "").lower() for value in sources)
    counts: Counter = Counter()
    for token in re.sub(r"[^a-z0-9\s-]", " ", combined).split():
        if len(token) < 4 or token in STOP_WORDS:
            continue
        counts[token] += 1
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return [keyword for keyword, _ in ranked[:limit]]


def _page_title(html: str) -> Optional[str]:
    match = _TITLE_RE.search(html)
    if not match:
        return None
    return re.sub(r"\s+", " ", match.group(1)).strip() or None


def _page_snippet(html: str) -> Optional[str]:
    text = re.sub(r"<script[\s\S]*?</script>", " ", html, flags=re.IGNORECASE)
    text = re.sub(r"<style[\s\S]*?</style>", " ", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text[:SNIPPET_LENGTH] or None


async def fetch_lead_evidence(urls: Sequence[str], *, timeout_ms: Optional[int] = None) -> List[LeadEvidence]:
    """Fetch each lead page in turn; failures are recorded per URL, never raised."""
    bounded_timeout = max(3000, int(timeout_ms or get_settings().task_intake.task_url_timeout_ms or 10000))
    evidence: List[LeadEvidence] = []

    for url in urls:
        try:
            response = await http.fetch_text_with_timeout(
                url,
                headers={"User-Agent": LEAD_USER_AGENT},
                timeout_ms=bounded_timeout,
            )
        except httpx.HTTPError as exc:
            evidence.append(LeadEvidence(url=url, error=str(exc) or exc.__class__.__name__))
            continue

        if not response.ok:
            evidence.append(LeadEvidence(url=url, error=f"Lead URL returned status {response.status_code}"))
            continue

        evidence.append(LeadEvidence(url=url, title=_page_title(response.text), snippet=_page_snippet(response.text)))

    return evidence


def _parse_count(pattern: re.Pattern, text: str) -> int:
    match = pattern.search(text)
    return int(match.group(1)) if match else 0


async def parse_task_intake(
    *,
    task_id: Optional[str] = None,
    task_name: Optional[str] = None,
    description: Any = "",
    focus_locations: Optional[Sequence[str]] = None,
    default_min_incidents: int = 2,
    default_max_passes: int = 2,
    url_timeout_ms: Optional[int] = None,
) -> TaskIntake:
    """
    Build a directed run plan from a task brief.

    Args:
        task_id: task-store identifier, if any
        task_name: display name
        description: free-text brief (lead URLs, "focus on ...", "min incidents: N")
        focus_locations: configured fallback focus
        default_min_incidents: used when the brief does not say
        default_max_passes: used when the brief does not say (capped at 4)

    Returns:
        TaskIntake whose query plan the cycle uses as pass-1 overrides
    """
    name = str(task_name or "Directed Sherlock task").strip()
    brief = str(description or "").strip()
    lead_urls = extract_lead_urls(brief)
    lead_evidence = await fetch_lead_evidence(lead_urls, timeout_ms=url_timeout_ms)
    focus = infer_focus_locations(brief, focus_locations)
    lead_texts = [
        str(value).strip()
        for item in lead_evidence
        for value in (item.title, item.snippet)
        if value
    ]

    keywords = extract_hypothesis_keywords([brief, *lead_texts])
    keyword_clause = " OR ".join(keywords) if keywords else DEFAULT_X_KEYWORDS
    x_query = f"({keyword_clause}) has:geo -is:retweet lang:en"

    perplexity_queries: List[str] = []
    if lead_urls:
        perplexity_queries.append(
            f"Investigate these leads for credible incident details and corroboration: {', '.join(lead_urls)}."
        )
    if focus:
        perplexity_queries.append(
            f"Find high-confidence incidents in {', '.join(focus)} with explicit location clues and source links."
        )
    else:
        perplexity_queries.append(
            "Find corroborating incidents with explicit location clues, reliable sources, and recent timestamps."
        )

    min_incidents = max(1, _parse_count(_MIN_INCIDENTS_RE, brief) or int(default_min_incidents or 2))
    max_passes = max(1, min(_parse_count(_MAX_PASSES_RE, brief) or int(default_max_passes or 2), 4))

    notes: List[str] = []
    if not lead_urls:
        notes.append("No explicit lead URL was supplied; using text-only hypothesis strategy.")
    if any(item.error for item in lead_evidence):
        notes.append("One or more lead URLs were unreachable; fallback query strategy has been applied.")
    if not focus:
        notes.append("No task-specific focus detected; using configured default focus locations.")

    logger.info(f"Task intake '{name}': {len(lead_urls)} leads, focus={focus or 'default'}")
    return TaskIntake(
        task_id=str(task_id) if task_id else None,
        task_name=name,
        lead_urls=lead_urls,
        lead_texts=lead_texts,
        lead_evidence=lead_evidence,
        focus_locations=focus,
        query_plan=QueryPlan(
            x_query=x_query,
            perplexity_queries=perplexity_queries,
            query_family=QueryFamily.TASK_HYPOTHESIS,
        ),
        run_config=RunConfig(min_incidents=min_incidents, max_passes=max_passes),
        notes=notes,
    )
