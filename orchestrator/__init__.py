"""Run state persistence, directed task intake and task-store access.

The autonomy runner lives in ``orchestrator.autonomy``; it depends on the
cycle orchestrator and is imported from there directly.
"""

from .store import RunStateStore, keep_last_unique, resolve_state_file
from .task_intake import (
    extract_hypothesis_keywords,
    extract_lead_urls,
    fetch_lead_evidence,
    infer_focus_locations,
    parse_task_intake,
)
from .task_store import MissionControlCliTaskStore, TaskStore, extract_last_json_object, strip_ansi

__all__ = [
    "MissionControlCliTaskStore",
    "RunStateStore",
    "TaskStore",
    "extract_hypothesis_keywords",
    "extract_last_json_object",
    "extract_lead_urls",
    "fetch_lead_evidence",
    "infer_focus_locations",
    "keep_last_unique",
    "parse_task_intake",
    "resolve_state_file",
    "strip_ansi",
]
