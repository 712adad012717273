from __future__ import annotations

import json
from typing import Any, List

import pytest

from config import get_settings
from core import QueryFamily, RunMode
from pipeline.cycle import CycleOptions, FinalizeOptions, finalize_agentic_cycle, run_cycle
from sources import http
from sources.http import HttpResult

from fakes import FakeConnector, factory_for, failing, make_candidate


async def _no_geocode(text: str):
    return None


def _configure_wolf(monkeypatch: pytest.MonkeyPatch, response: HttpResult) -> List[Any]:
    monkeypatch.setenv("SHERLOCK_WOLF_INGEST_URL", "https://wolf.example/ingest")
    monkeypatch.setenv("SHERLOCK_WOLF_INGEST_TOKEN", "token")
    get_settings.cache_clear()
    calls: List[Any] = []

    async def _fake_fetch(url: str, **kwargs: Any) -> HttpResult:
        calls.append((url, kwargs))
        return response

    monkeypatch.setattr(http, "fetch_json_with_timeout", _fake_fetch)
    return calls


def _connectors():
    social = FakeConnector(
        "x_api",
        [[make_candidate("101"), make_candidate("102", summary="Armed robbery at a spaza shop in Alexandra")]],
        checkpoint={"sinceId": "102"},
    )
    web = FakeConnector("perplexity_web", [[]])
    return social, web


@pytest.mark.asyncio
async def test_stops_early_once_minimum_is_met(tmp_path) -> None:
    social, web = _connectors()
    summary = await run_cycle(
        CycleOptions(dry_run=True, state_file=tmp_path / "state.json", min_incidents=2, max_passes=4, focus_locations=[]),
        connector_factory=factory_for(social, web),
        geocoder=_no_geocode,
    )

    assert len(summary.pass_summaries) == 1
    assert social.calls == 1
    assert summary.normalization.accepted == 2
    assert summary.submission.submitted == 2
    assert summary.submission.dry_run is True
    assert summary.query_family == QueryFamily.DEFAULT


@pytest.mark.asyncio
async def test_dry_run_never_writes_state(tmp_path) -> None:
    state_file = tmp_path / "state.json"
    social, web = _connectors()
    summary = await run_cycle(
        CycleOptions(dry_run=True, state_file=state_file, focus_locations=[]),
        connector_factory=factory_for(social, web),
        geocoder=_no_geocode,
    )
    assert summary.state_committed is False
    assert not state_file.exists()


@pytest.mark.asyncio
async def test_live_cycle_commits_checkpoints_and_fingerprints(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _configure_wolf(monkeypatch, HttpResult(200, {"accepted": 2, "duplicates": 0, "failed": 0}, ""))
    state_file = tmp_path / "memory" / "state.json"
    social, web = _connectors()

    summary = await run_cycle(
        CycleOptions(state_file=state_file, focus_locations=["Sandton", "Rosebank"], task_id="t-1"),
        connector_factory=factory_for(social, web),
        geocoder=_no_geocode,
    )

    assert summary.ok
    assert summary.state_committed is True
    assert summary.submission.accepted == 2
    assert len(calls) == 1

    saved = json.loads(state_file.read_text(encoding="utf-8"))
    assert saved["connectors"]["x_api"]["sinceId"] == "102"
    assert saved["connectors"]["perplexity_web"]["lastRunAt"]
    assert saved["lastChecks"]["sherlock_cycle"] == summary.finished_at
    assert saved["lastChecks"]["wolf_ingest_submit"] == summary.finished_at
    assert len(saved["autonomy"]["recentIncidentFingerprints"]) == 2
    assert saved["autonomy"]["lastSuccessfulQueryFamilies"] == ["default"]
    assert saved["autonomy"]["lastTaskId"] == "t-1"
    assert saved["autonomy"]["focusRotationIndex"] == 0

    # Same sources again: everything is a cross-cycle duplicate, nothing is submitted.
    social, web = _connectors()
    repeat = await run_cycle(
        CycleOptions(state_file=state_file, focus_locations=[]),
        connector_factory=factory_for(social, web),
        geocoder=_no_geocode,
    )
    assert repeat.normalization.accepted == 0
    assert repeat.candidate_counts.dropped_cross_cycle == 2
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_submission_failure_blocks_commit(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_wolf(monkeypatch, HttpResult(503, None, "unavailable"))
    state_file = tmp_path / "state.json"
    social, web = _connectors()

    summary = await run_cycle(
        CycleOptions(state_file=state_file, focus_locations=[]),
        connector_factory=factory_for(social, web),
        geocoder=_no_geocode,
    )

    assert summary.submission is None
    assert summary.submission_error == "Wolf ingest request failed (503)"
    assert not summary.ok
    assert summary.state_committed is False
    assert not state_file.exists()


@pytest.mark.asyncio
async def test_connector_failure_is_recorded_not_fatal(tmp_path) -> None:
    social = FakeConnector("x_api", [failing("X API request failed with status 401", "x_api")])
    web = FakeConnector("perplexity_web", [[make_candidate("w1", sourcePlatform="web")]])

    summary = await run_cycle(
        CycleOptions(dry_run=True, state_file=tmp_path / "state.json", focus_locations=[]),
        connector_factory=factory_for(social, web),
        geocoder=_no_geocode,
    )

    assert summary.connector_errors == ["X API request failed with status 401"]
    assert summary.normalization.accepted == 1
    assert [c.connector for c in summary.connectors] == ["perplexity_web"]


@pytest.mark.asyncio
async def test_later_passes_broaden_and_rotate_focus(tmp_path) -> None:
    social = FakeConnector(
        "x_api",
        [
            [make_candidate("1")],
            [make_candidate("2", summary="Burglary reported at a townhouse complex in Fourways")],
            [make_candidate("3", summary="Vehicle hijacked outside a shopping centre in Midrand")],
        ],
    )
    web = FakeConnector("perplexity_web", [[]])
    factory = factory_for(social, web)

    summary = await run_cycle(
        CycleOptions(
            dry_run=True,
            state_file=tmp_path / "state.json",
            focus_locations=["A", "B", "C", "D", "E", "F"],
            min_incidents=5,
            max_passes=3,
            x_query="(robbery) has:geo",
        ),
        connector_factory=factory,
        geocoder=_no_geocode,
    )

    families = [p.query_family for p in summary.pass_summaries]
    assert families == [QueryFamily.MANUAL_OVERRIDE, QueryFamily.BROADENED, QueryFamily.BROADENED]
    assert [p.focus_locations for p in summary.pass_summaries] == [
        ["A", "B", "C", "D"],
        ["E", "F", "A", "B"],
        ["C", "D", "E", "F"],
    ]
    assert [p.accumulated_candidates for p in summary.pass_summaries] == [1, 2, 3]
    assert summary.normalization.accepted == 3
    assert factory.plans[0].x_query == "(robbery) has:geo"
    assert factory.plans[1].x_query != "(robbery) has:geo"


@pytest.mark.asyncio
async def test_max_passes_is_capped(tmp_path) -> None:
    social = FakeConnector("x_api", [[]])
    web = FakeConnector("perplexity_web", [[]])

    summary = await run_cycle(
        CycleOptions(dry_run=True, state_file=tmp_path / "state.json", max_passes=10, min_incidents=1),
        connector_factory=factory_for(social, web),
        geocoder=_no_geocode,
    )

    assert len(summary.pass_summaries) == 4
    assert summary.submission.submitted == 0


@pytest.mark.asyncio
async def test_directed_mode_keeps_full_focus(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_wolf(monkeypatch, HttpResult(200, {"accepted": 0, "duplicates": 2}, ""))
    state_file = tmp_path / "state.json"
    social, web = _connectors()

    summary = await run_cycle(
        CycleOptions(
            mode=RunMode.DIRECTED,
            task_id="task-9",
            state_file=state_file,
            focus_locations=["A", "B", "C", "D", "E"],
            perplexity_queries=["robbery near {{focus}}"],
        ),
        connector_factory=factory_for(social, web),
        geocoder=_no_geocode,
    )

    assert summary.pass_summaries[0].focus_locations == ["A", "B", "C", "D", "E"]
    assert summary.query_family == QueryFamily.TASK_HYPOTHESIS
    saved = json.loads(state_file.read_text(encoding="utf-8"))
    assert saved["autonomy"]["lastRunMode"] == "directed"
    assert saved["lastChecks"].get("wolf_ingest_submit") is None


@pytest.mark.asyncio
async def test_live_multi_pass_persists_rotation_past_last_window(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_wolf(monkeypatch, HttpResult(200, {"accepted": 2, "duplicates": 0, "failed": 0}, ""))
    state_file = tmp_path / "state.json"
    locations = ["A", "B", "C", "D", "E"]
    social, web = _connectors()

    summary = await run_cycle(
        CycleOptions(state_file=state_file, focus_locations=locations, min_incidents=10, max_passes=2),
        connector_factory=factory_for(social, web),
        geocoder=_no_geocode,
    )

    assert [p.focus_locations for p in summary.pass_summaries] == [["A", "B", "C", "D"], ["E", "A", "B", "C"]]
    assert summary.state_committed is True
    saved = json.loads(state_file.read_text(encoding="utf-8"))
    assert saved["autonomy"]["focusRotationIndex"] == 3
    assert saved["autonomy"]["lastQueryFamily"] == "broadened"

    # The next cycle resumes from the persisted index.
    social, web = _connectors()
    follow_up = await run_cycle(
        CycleOptions(dry_run=True, state_file=state_file, focus_locations=locations),
        connector_factory=factory_for(social, web),
        geocoder=_no_geocode,
    )
    assert follow_up.pass_summaries[0].focus_locations == ["D", "E", "A", "B"]


def _seed_state(path) -> None:
    path.write_text(
        json.dumps(
            {
                "connectors": {"x_api": {"sinceId": "55"}},
                "autonomy": {
                    "focusRotationIndex": 2,
                    "lastSuccessfulQueryFamilies": ["default"],
                    "recentIncidentFingerprints": ["x:old|0.000:0.000|old"],
                    "lastTaskId": "t-0",
                },
            }
        ),
        encoding="utf-8",
    )


@pytest.mark.asyncio
async def test_finalize_persists_fingerprints_and_leaves_checkpoints(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _configure_wolf(monkeypatch, HttpResult(200, {"accepted": 2, "duplicates": 0, "failed": 0}, ""))
    state_file = tmp_path / "state.json"
    _seed_state(state_file)
    candidates = [make_candidate("201"), make_candidate("202", summary="Armed robbery at a spaza shop in Alexandra")]

    summary = await finalize_agentic_cycle(
        [candidate.to_payload() for candidate in candidates],
        FinalizeOptions(
            task_id="t-7",
            state_file=state_file,
            query_family=QueryFamily.TASK_HYPOTHESIS,
        ),
        geocoder=_no_geocode,
    )

    assert summary.ok
    assert summary.state_committed is True
    assert summary.mode == RunMode.DIRECTED
    assert summary.submission.accepted == 2
    assert len(calls) == 1

    saved = json.loads(state_file.read_text(encoding="utf-8"))
    autonomy = saved["autonomy"]
    assert len(autonomy["recentIncidentFingerprints"]) == 3
    assert autonomy["recentIncidentFingerprints"][0] == "x:old|0.000:0.000|old"
    assert autonomy["recentIncidentFingerprints"][1].startswith("x:201|")
    assert autonomy["lastSuccessfulQueryFamilies"] == ["default", "task_hypothesis"]
    assert autonomy["lastQueryFamily"] == "task_hypothesis"
    assert autonomy["lastTaskId"] == "t-7"
    assert autonomy["lastRunMode"] == "directed"
    assert autonomy["focusRotationIndex"] == 2
    assert saved["connectors"]["x_api"]["sinceId"] == "55"
    assert saved["lastChecks"]["wolf_ingest_submit"] == summary.finished_at


@pytest.mark.asyncio
async def test_finalize_without_family_keeps_previous_memory(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_wolf(monkeypatch, HttpResult(200, {"accepted": 0, "duplicates": 1}, ""))
    state_file = tmp_path / "state.json"
    _seed_state(state_file)

    summary = await finalize_agentic_cycle(
        [make_candidate("301")],
        FinalizeOptions(mode=RunMode.AUTONOMOUS, state_file=state_file),
        geocoder=_no_geocode,
    )

    assert summary.state_committed is True
    saved = json.loads(state_file.read_text(encoding="utf-8"))
    assert saved["autonomy"]["lastSuccessfulQueryFamilies"] == ["default"]
    assert saved["autonomy"].get("lastQueryFamily") is None
    assert saved["autonomy"]["lastTaskId"] == "t-0"
    assert saved["lastChecks"].get("wolf_ingest_submit") is None


@pytest.mark.asyncio
async def test_finalize_dry_run_and_failed_submission_do_not_commit(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    state_file = tmp_path / "state.json"

    dry = await finalize_agentic_cycle(
        [make_candidate("401")],
        FinalizeOptions(dry_run=True, state_file=state_file),
        geocoder=_no_geocode,
    )
    assert dry.submission.dry_run is True
    assert dry.state_committed is False
    assert not state_file.exists()

    _configure_wolf(monkeypatch, HttpResult(503, None, "unavailable"))
    failed = await finalize_agentic_cycle(
        [make_candidate("402")],
        FinalizeOptions(state_file=state_file),
        geocoder=_no_geocode,
    )
    assert failed.submission_error == "Wolf ingest request failed (503)"
    assert failed.state_committed is False
    assert not state_file.exists()


@pytest.mark.asyncio
async def test_finalize_applies_quality_overrides(tmp_path) -> None:
    anonymous = make_candidate("501", sourceUrl="", summary="Shots fired near the stadium entrance")

    summary = await finalize_agentic_cycle(
        [anonymous],
        FinalizeOptions(dry_run=True, state_file=tmp_path / "state.json", min_summary_length=200),
        geocoder=_no_geocode,
    )

    assert [r.reason for r in summary.normalization.rejected_details] == ["summary_too_short"]
