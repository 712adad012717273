"""
Task store access for directed runs.

``TaskStore`` is the seam the autonomy runner talks to; the bundled
implementation shells out to the Mission Control CLI and reads the trailing
JSON object it prints.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from config import get_settings
from utils.exceptions import ConfigurationError, TaskStoreError


logger = logging.getLogger(__name__)

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")
BLOCKED_REASON_LIMIT = 600


def strip_ansi(value: Any) -> str:
    return _ANSI_RE.sub("", str(value or ""))


def extract_last_json_object(output: Any) -> Optional[Dict[str, Any]]:
    """Parse the last top-level JSON object in mixed log/JSON output."""
    cleaned = strip_ansi(output).strip()
    if not cleaned:
        return None
    line_start = cleaned.rfind("\n{")
    start = line_start + 1 if line_start >= 0 else cleaned.find("{")
    if start < 0:
        return None
    try:
        parsed = json.loads(cleaned[start:].strip())
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


class TaskStore(ABC):
    """Operations the autonomy runner needs from a task board."""

    @abstractmethod
    async def poll_ready(self, *, limit: int = 1, allow_failure: bool = False) -> List[Dict[str, Any]]:
        """Ready tasks for this assignee; ``allow_failure`` tolerates a failing store."""
        pass

    @abstractmethod
    async def claim(self, task_id: str) -> Optional[Dict[str, Any]]:
        """Return the claimed task, or None if someone else got it."""
        pass

    @abstractmethod
    async def append_log(self, task_id: str, message: str) -> None:
        pass

    @abstractmethod
    async def create_document(self, task_id: str, *, title: str, content_md: str) -> Optional[str]:
        """Return the new document id when the store reports one."""
        pass

    @abstractmethod
    async def complete_with_output(self, task_id: str, *, summary: str, link: str = "") -> None:
        pass

    @abstractmethod
    async def mark_blocked(self, task_id: str, *, reason: str) -> None:
        pass


class MissionControlCliTaskStore(TaskStore):
    """Drives ``mission-control-cli.mjs`` through ``node``."""

    def __init__(
        self,
        cli_path: Optional[str] = None,
        *,
        assignee: Optional[str] = None,
        agent: Optional[str] = None,
        node_binary: str = "node",
    ):
        intake_settings = get_settings().task_intake
        self.cli_path = str(cli_path or intake_settings.mission_control_cli or "").strip()
        if not self.cli_path:
            raise ConfigurationError("MISSION_CONTROL_CLI is not configured")
        self.assignee = str(assignee or intake_settings.assignee or "sherlock")
        self.agent = str(agent or self.assignee)
        self.node_binary = node_binary

    async def _run(self, action: str, args: Sequence[str], *, allow_failure: bool = False) -> Dict[str, Any]:
        process = await asyncio.create_subprocess_exec(
            self.node_binary,
            self.cli_path,
            action,
            *args,
            "--json",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")

        parsed = extract_last_json_object(stdout or stderr)
        if process.returncode != 0 and not allow_failure:
            raise TaskStoreError(
                f"Mission Control command failed ({action}): {strip_ansi(stderr or stdout).strip()}",
                action=action,
                exit_code=process.returncode,
            )
        return parsed or {"ok": False, "action": action, "raw": strip_ansi(stdout or stderr)}

    def _identity(self, task_id: str) -> List[str]:
        return ["--task-id", str(task_id), "--assignee", self.assignee, "--agent", self.agent]

    async def poll_ready(self, *, limit: int = 1, allow_failure: bool = False) -> List[Dict[str, Any]]:
        payload = await self._run(
            "task_poll_ready_for_assignee",
            ["--assignee", self.assignee, "--limit", str(limit)],
            allow_failure=allow_failure,
        )
        tasks = payload.get("tasks")
        return [task for task in tasks if isinstance(task, dict)] if isinstance(tasks, list) else []

    async def claim(self, task_id: str) -> Optional[Dict[str, Any]]:
        payload = await self._run("task_claim", self._identity(task_id))
        if payload.get("ok") is True and payload.get("claimed") is True:
            task = payload.get("task")
            return task if isinstance(task, dict) else {"_id": task_id}
        return None

    async def append_log(self, task_id: str, message: str) -> None:
        await self._run("task_append_log", ["--task-id", str(task_id), "--agent", self.agent, "--message", message])

    async def create_document(self, task_id: str, *, title: str, content_md: str) -> Optional[str]:
        payload = await self._run(
            "document_create",
            [
                *self._identity(task_id),
                "--title",
                title,
                "--source",
                "agent",
                "--context-mode",
                "full",
                "--delegation-safe",
                "true",
                "--content-md",
                content_md,
            ],
        )
        document = payload.get("document")
        document_id = document.get("_id") if isinstance(document, dict) else None
        return str(document_id) if document_id else None

    async def complete_with_output(self, task_id: str, *, summary: str, link: str = "") -> None:
        await self._run(
            "task_complete_with_output",
            [*self._identity(task_id), "--summary", summary, "--link", link],
        )

    async def mark_blocked(self, task_id: str, *, reason: str) -> None:
        await self._run(
            "task_mark_blocked",
            [*self._identity(task_id), "--reason", str(reason)[:BLOCKED_REASON_LIMIT]],
        )
