from __future__ import annotations

import json
from typing import Any, List

import pytest

from orchestrator import task_store as task_store_module
from orchestrator.task_store import (
    BLOCKED_REASON_LIMIT,
    MissionControlCliTaskStore,
    extract_last_json_object,
    strip_ansi,
)
from utils.exceptions import ConfigurationError, TaskStoreError


class FakeProcess:
    def __init__(self, stdout: str, stderr: str = "", returncode: int = 0):
        self._stdout = stdout.encode("utf-8")
        self._stderr = stderr.encode("utf-8")
        self.returncode = returncode

    async def communicate(self):
        return self._stdout, self._stderr


def _install(monkeypatch: pytest.MonkeyPatch, process: FakeProcess) -> List[Any]:
    calls: List[Any] = []

    async def _fake_exec(*args: Any, **kwargs: Any) -> FakeProcess:
        calls.append(args)
        return process

    monkeypatch.setattr(task_store_module.asyncio, "create_subprocess_exec", _fake_exec)
    return calls


def test_strip_ansi_and_extract_last_object() -> None:
    assert strip_ansi("\x1b[32mok\x1b[0m") == "ok"
    output = 'log line\n{"ok": false}\n\x1b[2m{"ok": true, "tasks": []}\x1b[0m'
    assert extract_last_json_object(output) == {"ok": True, "tasks": []}
    assert extract_last_json_object("no json here") is None
    assert extract_last_json_object("") is None


def test_requires_cli_path() -> None:
    with pytest.raises(ConfigurationError):
        MissionControlCliTaskStore()


@pytest.mark.asyncio
async def test_poll_ready_builds_command(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _install(monkeypatch, FakeProcess(json.dumps({"ok": True, "tasks": [{"_id": "t1"}, "junk"]})))
    store = MissionControlCliTaskStore("/opt/mc/cli.mjs", assignee="sherlock")

    tasks = await store.poll_ready(limit=2)

    assert tasks == [{"_id": "t1"}]
    assert calls[0] == (
        "node",
        "/opt/mc/cli.mjs",
        "task_poll_ready_for_assignee",
        "--assignee",
        "sherlock",
        "--limit",
        "2",
        "--json",
    )


@pytest.mark.asyncio
async def test_claim_requires_ok_and_claimed(monkeypatch: pytest.MonkeyPatch) -> None:
    store = MissionControlCliTaskStore("/opt/mc/cli.mjs")

    _install(monkeypatch, FakeProcess(json.dumps({"ok": True, "claimed": True, "task": {"_id": "t1", "x": 1}})))
    assert await store.claim("t1") == {"_id": "t1", "x": 1}

    _install(monkeypatch, FakeProcess(json.dumps({"ok": True, "claimed": False})))
    assert await store.claim("t1") is None


@pytest.mark.asyncio
async def test_failed_command_raises_unless_allowed(monkeypatch: pytest.MonkeyPatch) -> None:
    _install(monkeypatch, FakeProcess("", stderr="\x1b[31mconnection refused\x1b[0m", returncode=1))
    store = MissionControlCliTaskStore("/opt/mc/cli.mjs")

    with pytest.raises(TaskStoreError) as info:
        await store.claim("t1")
    assert info.value.action == "task_claim"
    assert "connection refused" in info.value.message

    assert await store.poll_ready(allow_failure=True) == []


@pytest.mark.asyncio
async def test_document_id_and_blocked_reason(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _install(monkeypatch, FakeProcess(json.dumps({"ok": True, "document": {"_id": "doc-9"}})))
    store = MissionControlCliTaskStore("/opt/mc/cli.mjs", assignee="sherlock", agent="sherlock-bot")

    assert await store.create_document("t1", title="Output", content_md="# hi") == "doc-9"
    await store.mark_blocked("t1", reason="x" * 1000)

    blocked_args = calls[-1]
    assert blocked_args[2] == "task_mark_blocked"
    assert "sherlock-bot" in blocked_args
    reason = blocked_args[blocked_args.index("--reason") + 1]
    assert len(reason) == BLOCKED_REASON_LIMIT
