"""Batched submission of normalized incidents to Wolf ingest."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from config import get_settings
from core import NormalizedIncident, SubmissionResult, to_finite_float
from sources import http
from utils.exceptions import ConfigurationError, SherlockError, SubmissionError


logger = logging.getLogger(__name__)

SOURCE_AGENT = "sherlock"


def _incident_payload(incident: Any) -> Dict[str, Any]:
    if isinstance(incident, NormalizedIncident):
        return incident.to_payload()
    if isinstance(incident, dict):
        return dict(incident)
    raise SubmissionError(f"Unsupported incident payload: {type(incident).__name__}")


def _count(payload: Any, key: str) -> int:
    if not isinstance(payload, dict):
        return 0
    number = to_finite_float(payload.get(key))
    return int(number) if number is not None else 0


async def submit_incidents_to_wolf_ingest(
    incidents: Sequence[Any],
    *,
    dry_run: bool = False,
    ingest_url: Optional[str] = None,
    ingest_token: Optional[str] = None,
    product_type: Optional[str] = None,
    dispatch_alerts: Optional[bool] = None,
    timeout_ms: Optional[int] = None,
) -> SubmissionResult:
    """
    POST all incidents in one batch.

    Empty batches and dry runs return immediately without network I/O.

    Raises:
        ConfigurationError: ingest URL or token missing (live run only)
        SubmissionError: non-2xx response or transport failure
    """
    if not isinstance(incidents, (list, tuple)):
        raise SubmissionError("incidents must be a list")

    if not incidents:
        return SubmissionResult(dry_run=dry_run)

    if dry_run:
        logger.info(f"Dry run: {len(incidents)} incidents not submitted")
        return SubmissionResult(submitted=len(incidents), dry_run=True)

    wolf = get_settings().wolf
    url = str(ingest_url or wolf.ingest_url or "").strip()
    token = str(ingest_token or wolf.ingest_token or "").strip()
    if not url:
        raise ConfigurationError("SHERLOCK_WOLF_INGEST_URL is missing")
    if not token:
        raise ConfigurationError("SHERLOCK_WOLF_INGEST_TOKEN is missing")

    payloads: List[Dict[str, Any]] = [_incident_payload(incident) for incident in incidents]
    body = {
        "sourceAgent": SOURCE_AGENT,
        "productType": product_type or wolf.product_type,
        "dispatchAlerts": wolf.dispatch_alerts if dispatch_alerts is None else bool(dispatch_alerts),
        "incidents": payloads,
    }

    try:
        # Never retried: a replayed POST could double-submit the batch.
        response = await http.fetch_json_with_timeout(
            url,
            method="POST",
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            json_body=body,
            timeout_ms=int(timeout_ms or wolf.ingest_timeout_ms or 15000),
            max_retries=0,
        )
    except httpx.HTTPError as exc:
        raise SubmissionError(f"Wolf ingest request failed ({exc.__class__.__name__})") from exc

    if not response.ok:
        raise SubmissionError(f"Wolf ingest request failed ({response.status_code})", status_code=response.status_code)

    result = SubmissionResult(
        submitted=len(payloads),
        accepted=_count(response.json, "accepted"),
        duplicates=_count(response.json, "duplicates"),
        failed=_count(response.json, "failed"),
        dry_run=False,
        details=response.json if isinstance(response.json, dict) else None,
    )
    logger.info(
        f"Wolf ingest accepted {result.accepted}/{result.submitted} "
        f"(duplicates={result.duplicates}, failed={result.failed})"
    )
    return result


async def submit_incident_batch(
    incidents: Sequence[Any],
    *,
    dry_run: bool = False,
    **options: Any,
) -> Tuple[Optional[SubmissionResult], Optional[str]]:
    """Submit and convert any failure into an error string for the caller's summary."""
    try:
        submission = await submit_incidents_to_wolf_ingest(list(incidents or []), dry_run=dry_run, **options)
    except Exception as exc:
        message = exc.message if isinstance(exc, SherlockError) else str(exc)
        logger.error(f"Wolf submission failed: {message}")
        return None, message
    return submission, None
