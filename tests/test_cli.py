from __future__ import annotations

import json

import pytest

import main as cli
from sources import http

from fakes import make_candidate


def _write(path, payload) -> str:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


def test_enrich_command_prints_result(tmp_path, capsys) -> None:
    input_file = _write(
        tmp_path / "candidates.json",
        {"candidates": [make_candidate("1").to_payload(), make_candidate("1").to_payload()]},
    )

    exit_code = cli.main(["enrich", "--input-file", input_file, "--json"])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert len(payload["normalizedIncidents"]) == 1
    assert payload["dedupe"]["droppedWithinRun"] == 1
    assert payload["rejected"][0]["reason"] == "duplicate_source"


def test_submit_dry_run_makes_no_request(tmp_path, capsys, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _forbidden(*args, **kwargs):
        raise AssertionError("network used during dry run")

    monkeypatch.setattr(http, "fetch_json_with_timeout", _forbidden)
    input_file = _write(tmp_path / "incidents.json", [{"summary": "a"}, {"summary": "b"}])

    exit_code = cli.main(["submit", "--input-file", input_file, "--dry-run", "--json"])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["submission"]["submitted"] == 2
    assert payload["submission"]["dryRun"] is True
    assert payload["submissionError"] is None


def test_submit_without_configuration_fails(tmp_path, capsys) -> None:
    input_file = _write(tmp_path / "incidents.json", {"incidents": [{"summary": "a"}]})

    exit_code = cli.main(["submit", "--input-file", input_file, "--json"])

    assert exit_code == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["submission"] is None
    assert payload["submissionError"] == "SHERLOCK_WOLF_INGEST_URL is missing"


def test_bad_input_file_returns_error(tmp_path) -> None:
    input_file = _write(tmp_path / "bad.json", {"unexpected": True})
    assert cli.main(["enrich", "--input-file", input_file]) == 1
    assert cli.main(["enrich", "--input-file", str(tmp_path / "missing.json")]) == 1


def test_cycle_dry_run_without_credentials(tmp_path, capsys) -> None:
    state_file = tmp_path / "state.json"

    exit_code = cli.main(
        ["cycle", "--dry-run", "--json", "--state-file", str(state_file), "--focus-locations", "Sandton||Rosebank"]
    )

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["dryRun"] is True
    assert payload["focusLocations"] == ["Sandton", "Rosebank"]
    assert payload["connectorErrors"] == []
    assert {c["connector"] for c in payload["connectors"]} == {"x_api", "perplexity_web"}
    assert all(c["warnings"] for c in payload["connectors"])
    assert payload["stateCommitted"] is False
    assert not state_file.exists()


def test_intake_command_without_leads(capsys) -> None:
    exit_code = cli.main(
        ["intake", "--task-description", "Focus on Soweto. min incidents: 4", "--json"]
    )

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["focusLocations"] == ["Soweto"]
    assert payload["runConfig"]["minIncidents"] == 4
    assert payload["queryPlan"]["queryFamily"] == "task_hypothesis"


def test_autonomy_skip_poll_runs_dry_cycle(tmp_path, capsys) -> None:
    exit_code = cli.main(
        ["autonomy", "--dry-run", "--skip-task-poll", "--json", "--state-file", str(tmp_path / "s.json")]
    )

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["mode"] == "autonomous_fallback"
    assert payload["cycle"]["dryRun"] is True


def test_finalize_reads_query_family_from_payload_meta(tmp_path, capsys) -> None:
    input_file = _write(
        tmp_path / "agentic.json",
        {"candidates": [make_candidate("7").to_payload()], "meta": {"queryFamily": "broadened"}},
    )

    exit_code = cli.main(
        ["finalize", "--input-file", input_file, "--dry-run", "--json", "--state-file", str(tmp_path / "s.json")]
    )

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["queryFamily"] == "broadened"
    assert payload["mode"] == "directed"
    assert payload["normalization"]["accepted"] == 1
    assert payload["stateCommitted"] is False


def test_finalize_flag_overrides_payload_family(tmp_path, capsys) -> None:
    input_file = _write(
        tmp_path / "agentic.json",
        {"candidates": [make_candidate("8").to_payload()], "meta": {"queryFamily": "broadened"}},
    )

    exit_code = cli.main(
        [
            "finalize",
            "--input-file",
            input_file,
            "--dry-run",
            "--json",
            "--query-family",
            "task_hypothesis",
            "--mode",
            "autonomous",
            "--min-summary-length",
            "200",
            "--require-source-identity",
            "no",
        ]
    )

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["queryFamily"] == "task_hypothesis"
    assert payload["mode"] == "autonomous"
    assert payload["normalization"]["rejectedDetails"][0]["reason"] == "summary_too_short"


def test_finalize_rejects_unparseable_identity_flag(tmp_path) -> None:
    input_file = _write(tmp_path / "agentic.json", [])
    with pytest.raises(SystemExit):
        cli.main(["finalize", "--input-file", input_file, "--require-source-identity", "maybe"])


def test_finalize_submission_failure_exits_nonzero(tmp_path, capsys) -> None:
    state_file = tmp_path / "state.json"
    input_file = _write(tmp_path / "agentic.json", [make_candidate("9").to_payload()])

    exit_code = cli.main(["finalize", "--input-file", input_file, "--json", "--state-file", str(state_file)])

    assert exit_code == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["submissionError"] == "SHERLOCK_WOLF_INGEST_URL is missing"
    assert payload["stateCommitted"] is False
    assert not state_file.exists()
