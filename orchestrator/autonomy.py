"""
Autonomy runner.

Picks up one ready directed task (or a manual brief), runs a focused cycle
for it and reports back to the task store. With no task it falls back to a
plain autonomous cycle.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from config import get_settings
from core import AutonomySummary, RunMode, RunSummary, TaskIntake, utc_now_iso
from orchestrator.task_intake import parse_task_intake
from orchestrator.task_store import MissionControlCliTaskStore, TaskStore
from pipeline.cycle import CycleOptions, run_cycle
from sources.focus import parse_focus_locations
from utils.exceptions import SubmissionError, TaskStoreError


logger = logging.getLogger(__name__)

CycleRunner = Callable[[CycleOptions], Awaitable[RunSummary]]

MANUAL_TASK_ID = "manual-task"


@dataclass
class AutonomyOptions:
    dry_run: bool = False
    skip_task_poll: bool = False
    task_description: str = ""
    task_name: str = "Manual directed task"
    focus_locations: Optional[List[str]] = None
    min_incidents: int = 3
    max_passes: int = 2
    state_file: Optional[Union[str, Path]] = None
    limit: Optional[int] = None


def _task_name(task: Dict[str, Any], default: str = "Directed Sherlock task") -> str:
    return str(task.get("task_name") or task.get("taskName") or default)


def build_task_document_markdown(task: Dict[str, Any], intake: TaskIntake, cycle: RunSummary) -> str:
    """Fixed-shape markdown handoff attached to a completed task."""
    submission = cycle.submission
    lines = [
        "# Sherlock Directed Task Output",
        "",
        "## Task",
        f"- Task ID: {task.get('_id') or 'unknown'}",
        f"- Task Name: {_task_name(task, 'Unnamed task')}",
        f"- Query Family: {intake.query_plan.query_family.value}",
        "",
        "## Lead Summary",
        f"- Lead URLs: {len(intake.lead_urls)}",
        f"- Focus Locations: {', '.join(intake.focus_locations) or 'none'}",
        f"- Notes: {' | '.join(intake.notes) or 'none'}",
        "",
        "## Lead Evidence",
        *(
            f"- [{index}] {item.url} | title={item.title or 'n/a'} | error={item.error or 'none'}"
            for index, item in enumerate(intake.lead_evidence, start=1)
        ),
        "",
        "## Cycle Outcome",
        f"- Accepted: {submission.accepted if submission else 0}",
        f"- Duplicates: {submission.duplicates if submission else 0}",
        f"- Failed: {submission.failed if submission else 0}",
        f"- Normalized incidents: {cycle.normalization.accepted}",
        f"- Connector errors: {len(cycle.connector_errors)}",
        "",
        "## Raw Summary",
        "```json",
        json.dumps(cycle.to_payload(), indent=2),
        "```",
    ]
    return "\n".join(lines)


class AutonomyRunner:
    """One invocation: acquire a task, run a cycle, report back."""

    def __init__(
        self,
        options: AutonomyOptions,
        *,
        task_store: Optional[TaskStore] = None,
        cycle_runner: CycleRunner = run_cycle,
    ):
        self.options = options
        self.task_store = task_store
        self.cycle_runner = cycle_runner
        if self.task_store is None and not (options.task_description or options.skip_task_poll):
            if get_settings().task_intake.mission_control_cli:
                self.task_store = MissionControlCliTaskStore()
            else:
                logger.warning("MISSION_CONTROL_CLI is not configured; skipping task poll")

    def _focus_locations(self) -> List[str]:
        if self.options.focus_locations is not None:
            return parse_focus_locations(self.options.focus_locations)
        return parse_focus_locations(get_settings().focus.locations)

    async def _acquire_task(self, summary: AutonomySummary) -> Optional[Dict[str, Any]]:
        if self.options.task_description:
            return {
                "_id": MANUAL_TASK_ID,
                "task_name": self.options.task_name,
                "description": self.options.task_description,
            }
        if self.options.skip_task_poll or self.task_store is None:
            return None

        summary.task_lifecycle.polled = True
        tasks = await self.task_store.poll_ready(limit=1, allow_failure=self.options.dry_run)
        if not tasks or self.options.dry_run:
            return None

        first = tasks[0]
        claimed = await self.task_store.claim(str(first.get("_id")))
        if claimed is None:
            logger.info(f"Task {first.get('_id')} was claimed elsewhere")
            return None
        summary.task_lifecycle.claimed = True
        return claimed or first

    async def _run_cycle(self, options: CycleOptions) -> RunSummary:
        cycle = await self.cycle_runner(options)
        if cycle.submission_error:
            raise SubmissionError(f"Sherlock cycle failed: {cycle.submission_error}")
        return cycle

    async def run(self) -> AutonomySummary:
        """
        Execute once.

        A failure after a task was claimed marks that task blocked before the
        error propagates.
        """
        summary = AutonomySummary(started_at=utc_now_iso())
        focus_locations = self._focus_locations()
        task: Optional[Dict[str, Any]] = None

        try:
            task = await self._acquire_task(summary)
            if task is None:
                summary.cycle = await self._run_cycle(
                    CycleOptions(
                        mode=RunMode.AUTONOMOUS,
                        dry_run=self.options.dry_run,
                        state_file=self.options.state_file,
                        focus_locations=focus_locations,
                        min_incidents=self.options.min_incidents,
                        max_passes=self.options.max_passes,
                        limit=self.options.limit,
                    )
                )
            else:
                await self._run_directed(task, focus_locations, summary)
        except Exception as exc:
            if summary.task_lifecycle.claimed and task and task.get("_id"):
                await self._mark_blocked(str(task["_id"]), str(exc), summary)
            raise

        summary.finished_at = utc_now_iso()
        logger.info(
            f"Autonomy run complete ({summary.mode}); "
            f"accepted={summary.cycle.submission.accepted if summary.cycle and summary.cycle.submission else 0}"
        )
        return summary

    async def _run_directed(
        self,
        task: Dict[str, Any],
        focus_locations: List[str],
        summary: AutonomySummary,
    ) -> None:
        task_id = str(task.get("_id") or "") or None
        summary.mode = "directed_task"
        summary.task = {"id": task_id, "name": _task_name(task)}

        intake = await parse_task_intake(
            task_id=task_id,
            task_name=_task_name(task),
            description=task.get("description") or "",
            focus_locations=focus_locations,
            default_min_incidents=self.options.min_incidents,
            default_max_passes=self.options.max_passes,
        )
        summary.task_intake = intake

        claimed = summary.task_lifecycle.claimed and self.task_store is not None
        if claimed:
            await self.task_store.append_log(
                task_id, "Parsed directed task intake and starting focused Sherlock cycle."
            )

        cycle = await self._run_cycle(
            CycleOptions(
                mode=RunMode.DIRECTED,
                task_id=task_id,
                dry_run=self.options.dry_run,
                state_file=self.options.state_file,
                focus_locations=intake.focus_locations,
                min_incidents=intake.run_config.min_incidents,
                max_passes=intake.run_config.max_passes,
                x_query=intake.query_plan.x_query,
                perplexity_queries=intake.query_plan.perplexity_queries,
                limit=self.options.limit,
            )
        )
        summary.cycle = cycle

        if not claimed:
            return

        document_id = await self.task_store.create_document(
            task_id,
            title=f"Sherlock directed output: {_task_name(task, 'Task')}",
            content_md=build_task_document_markdown(task, intake, cycle),
        )
        summary.document_id = document_id
        accepted = cycle.submission.accepted if cycle.submission else 0
        await self.task_store.complete_with_output(
            task_id,
            summary=f"Processed directed lead and completed Sherlock cycle (accepted={accepted}).",
            link=f"mongo://documents/{document_id}" if document_id else "",
        )
        summary.task_lifecycle.completed = True

    async def _mark_blocked(self, task_id: str, reason: str, summary: AutonomySummary) -> None:
        try:
            await self.task_store.mark_blocked(task_id, reason=reason)
        except TaskStoreError as exc:
            logger.warning(f"Could not mark task {task_id} blocked: {exc}")
            return
        summary.task_lifecycle.blocked = True


async def run_autonomy(
    options: AutonomyOptions,
    *,
    task_store: Optional[TaskStore] = None,
    cycle_runner: CycleRunner = run_cycle,
) -> AutonomySummary:
    return await AutonomyRunner(options, task_store=task_store, cycle_runner=cycle_runner).run()
