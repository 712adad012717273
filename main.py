"""CLI entrypoint for the Sherlock incident pipeline."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
import sys
from typing import Any, List, Optional, Sequence

from core import QueryFamily, RunMode
from orchestrator import parse_task_intake
from orchestrator.autonomy import AutonomyOptions, run_autonomy
from pipeline import (
    CycleOptions,
    FinalizeOptions,
    enrich_incident_candidates,
    finalize_agentic_cycle,
    run_cycle,
    submit_incident_batch,
)
from sources.focus import parse_focus_locations, parse_query_list
from utils.exceptions import ConfigurationError, SherlockError
from utils.logger import configure_module_loggers


logger = logging.getLogger("sherlock.cli")


def _print_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, ensure_ascii=False) + "\n")


def _read_input_list(path: str, key: str) -> List[Any]:
    """Read a JSON array, or an object holding the array under ``key``."""
    try:
        parsed = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Could not read input file: {path}", {"error": str(exc)}) from exc
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict) and isinstance(parsed.get(key), list):
        return parsed[key]
    raise ConfigurationError(f"Input payload must be an array or object with {key}[]")


def _parse_flag(raw: str) -> bool:
    value = str(raw).strip().lower()
    if value in ("1", "true", "yes", "y"):
        return True
    if value in ("0", "false", "no", "n"):
        return False
    raise argparse.ArgumentTypeError(f"expected a boolean, got {raw!r}")


def _payload_query_family(path: str) -> Optional[QueryFamily]:
    """``meta.queryFamily`` from an object payload; arrays carry none."""
    parsed = json.loads(Path(path).read_text(encoding="utf-8"))
    meta = parsed.get("meta") if isinstance(parsed, dict) else None
    raw = meta.get("queryFamily") if isinstance(meta, dict) else None
    if not raw:
        return None
    try:
        return QueryFamily(raw)
    except ValueError:
        logger.warning(f"Ignoring unknown query family in payload: {raw}")
        return None


def _focus(raw: Optional[str]) -> Optional[List[str]]:
    return parse_focus_locations(raw) if raw is not None else None


async def _cmd_cycle(args: argparse.Namespace) -> int:
    summary = await run_cycle(
        CycleOptions(
            mode=RunMode(args.mode),
            task_id=args.task_id,
            dry_run=args.dry_run,
            state_file=args.state_file,
            focus_locations=_focus(args.focus_locations),
            min_incidents=args.min_incidents,
            max_passes=args.max_passes,
            x_query=args.x_query or "",
            perplexity_queries=parse_query_list(args.perplexity_queries),
            limit=args.limit,
        )
    )

    if args.json:
        _print_json(summary.to_payload())
    else:
        accepted = summary.submission.accepted if summary.submission else 0
        logger.info(
            f"Sherlock cycle complete: passes={len(summary.pass_summaries)} raw={summary.candidate_counts.raw} "
            f"normalized={summary.normalization.accepted} accepted={accepted} "
            f"state_committed={summary.state_committed}"
        )
        for connector in summary.connectors:
            for warning in connector.warnings:
                logger.warning(f"[{connector.connector}] {warning}")

    if summary.submission_error:
        logger.error(f"Submission failed: {summary.submission_error}")
        return 1
    return 0


async def _cmd_autonomy(args: argparse.Namespace) -> int:
    summary = await run_autonomy(
        AutonomyOptions(
            dry_run=args.dry_run,
            skip_task_poll=args.skip_task_poll,
            task_description=args.task_description or "",
            task_name=args.task_name,
            focus_locations=_focus(args.focus_locations),
            min_incidents=args.min_incidents,
            max_passes=args.max_passes,
            state_file=args.state_file,
            limit=args.limit,
        )
    )
    if args.json:
        _print_json(summary.to_payload())
    return 0


async def _cmd_intake(args: argparse.Namespace) -> int:
    intake = await parse_task_intake(
        task_id=args.task_id,
        task_name=args.task_name,
        description=args.task_description,
        focus_locations=parse_focus_locations(args.focus_locations),
        default_min_incidents=args.default_min_incidents,
        default_max_passes=args.default_max_passes,
    )
    if args.json:
        _print_json(intake.to_payload())
    else:
        logger.info(
            f"Task intake complete: leads={len(intake.lead_urls)} focus={intake.focus_locations} "
            f"query_family={intake.query_plan.query_family.value}"
        )
    return 0


async def _cmd_enrich(args: argparse.Namespace) -> int:
    candidates = _read_input_list(args.input_file, "candidates")
    result = await enrich_incident_candidates(
        candidates,
        previous_fingerprints=parse_query_list(args.previous_fingerprints),
    )
    if args.json:
        _print_json(result.to_payload())
    else:
        logger.info(
            f"Incident enrichment complete: raw={result.dedupe.raw} "
            f"normalized={len(result.normalized_incidents)} rejected={len(result.rejected)} "
            f"dropped_cross_cycle={result.dedupe.dropped_cross_cycle}"
        )
    return 0


async def _cmd_submit(args: argparse.Namespace) -> int:
    incidents = _read_input_list(args.input_file, "incidents")
    submission, error = await submit_incident_batch(incidents, dry_run=args.dry_run)
    if args.json:
        _print_json(
            {
                "submission": submission.to_payload() if submission else None,
                "submissionError": error,
            }
        )
    if error:
        logger.error(f"Wolf submission failed: {error}")
        return 1
    if not args.json and submission:
        logger.info(
            f"Wolf submission complete: submitted={submission.submitted} "
            f"accepted={submission.accepted} duplicates={submission.duplicates}"
        )
    return 0


async def _cmd_finalize(args: argparse.Namespace) -> int:
    candidates = _read_input_list(args.input_file, "candidates")
    query_family = QueryFamily(args.query_family) if args.query_family else _payload_query_family(args.input_file)
    summary = await finalize_agentic_cycle(
        candidates,
        FinalizeOptions(
            mode=RunMode(args.mode),
            task_id=args.task_id,
            dry_run=args.dry_run,
            state_file=args.state_file,
            query_family=query_family,
            min_summary_length=args.min_summary_length,
            require_source_identity=args.require_source_identity,
        ),
    )

    if args.json:
        _print_json(summary.to_payload())
    else:
        accepted = summary.submission.accepted if summary.submission else 0
        logger.info(
            f"Sherlock finalize complete: raw={summary.candidate_counts.raw} "
            f"normalized={summary.normalization.accepted} accepted={accepted} "
            f"state_committed={summary.state_committed}"
        )

    if summary.submission_error:
        logger.error(f"Submission failed: {summary.submission_error}")
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sherlock", description="Sherlock incident discovery pipeline")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    cycle = sub.add_parser("cycle", help="Run one collect -> enrich -> submit cycle")
    cycle.add_argument("--mode", choices=[mode.value for mode in RunMode], default=RunMode.AUTONOMOUS.value)
    cycle.add_argument("--task-id", default=None)
    cycle.add_argument("--dry-run", action="store_true")
    cycle.add_argument("--json", action="store_true")
    cycle.add_argument("--state-file", default=None)
    cycle.add_argument("--focus-locations", default=None)
    cycle.add_argument("--min-incidents", type=int, default=1)
    cycle.add_argument("--max-passes", type=int, default=1)
    cycle.add_argument("--x-query", default="")
    cycle.add_argument("--perplexity-queries", default="", help="||-joined queries")
    cycle.add_argument("--limit", type=int, default=None)

    autonomy = sub.add_parser("autonomy", help="Run a directed task if one is ready, else an autonomous cycle")
    autonomy.add_argument("--dry-run", action="store_true")
    autonomy.add_argument("--json", action="store_true")
    autonomy.add_argument("--skip-task-poll", action="store_true")
    autonomy.add_argument("--task-description", default="")
    autonomy.add_argument("--task-name", default="Manual directed task")
    autonomy.add_argument("--focus-locations", default=None)
    autonomy.add_argument("--min-incidents", type=int, default=3)
    autonomy.add_argument("--max-passes", type=int, default=2)
    autonomy.add_argument("--state-file", default=None)
    autonomy.add_argument("--limit", type=int, default=None)

    intake = sub.add_parser("intake", help="Parse a task brief into a directed run plan")
    intake.add_argument("--task-id", default=None)
    intake.add_argument("--task-name", default="Directed Sherlock task")
    intake.add_argument("--task-description", default="")
    intake.add_argument("--focus-locations", default="")
    intake.add_argument("--default-min-incidents", type=int, default=2)
    intake.add_argument("--default-max-passes", type=int, default=2)
    intake.add_argument("--json", action="store_true")

    enrich = sub.add_parser("enrich", help="Enrich a candidates JSON file")
    enrich.add_argument("--input-file", required=True)
    enrich.add_argument("--previous-fingerprints", default="", help="||-joined fingerprints")
    enrich.add_argument("--json", action="store_true")

    submit = sub.add_parser("submit", help="Submit a normalized incidents JSON file")
    submit.add_argument("--input-file", required=True)
    submit.add_argument("--dry-run", action="store_true")
    submit.add_argument("--json", action="store_true")

    finalize = sub.add_parser("finalize", help="Enrich, submit and commit externally gathered candidates")
    finalize.add_argument("--input-file", required=True)
    finalize.add_argument("--mode", choices=[mode.value for mode in RunMode], default=RunMode.DIRECTED.value)
    finalize.add_argument("--task-id", default=None)
    finalize.add_argument("--dry-run", action="store_true")
    finalize.add_argument("--json", action="store_true")
    finalize.add_argument("--state-file", default=None)
    finalize.add_argument("--query-family", choices=[family.value for family in QueryFamily], default=None)
    finalize.add_argument("--min-summary-length", type=int, default=None)
    finalize.add_argument("--require-source-identity", type=_parse_flag, default=None)

    return parser


_COMMANDS = {
    "cycle": _cmd_cycle,
    "autonomy": _cmd_autonomy,
    "intake": _cmd_intake,
    "enrich": _cmd_enrich,
    "submit": _cmd_submit,
    "finalize": _cmd_finalize,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.INFO
    configure_module_loggers(level)

    try:
        return asyncio.run(_COMMANDS[args.command](args))
    except SherlockError as exc:
        logger.error(f"{args.command} failed: {exc}")
        return 1
    except Exception:
        logger.exception(f"{args.command} crashed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
