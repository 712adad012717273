"""JSON file store for the cross-cycle run state."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

from pydantic import ValidationError

from config import get_settings
from core import RunState
from utils.exceptions import StateStoreError


logger = logging.getLogger(__name__)


def resolve_state_file(state_file: Optional[Union[str, Path]] = None) -> Path:
    return Path(state_file or get_settings().general.state_file)


def keep_last_unique(values: Iterable[object], max_items: int) -> List[str]:
    """Order-preserving unique values, trimmed to the newest ``max_items``."""
    output: List[str] = []
    for value in values:
        normalized = str(value or "").strip()
        if not normalized or normalized in output:
            continue
        output.append(normalized)
    limit = max(1, int(max_items or 1))
    return output[-limit:]


class RunStateStore:
    """Single-document state file; read at cycle start, written once at the end."""

    def __init__(self, state_file: Optional[Union[str, Path]] = None) -> None:
        self.path = resolve_state_file(state_file)

    def load(self) -> RunState:
        if not self.path.exists():
            logger.info(f"No state file at {self.path}; starting from defaults")
            return RunState()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            raise StateStoreError(f"Unreadable state file: {self.path}", {"error": str(exc)}) from exc
        if not isinstance(raw, dict):
            raise StateStoreError(f"State file must hold a JSON object: {self.path}")
        try:
            return RunState.model_validate(raw)
        except ValidationError as exc:
            raise StateStoreError(f"Invalid state file: {self.path}", {"errors": exc.error_count()}) from exc

    def save(self, state: RunState) -> Path:
        payload = state.model_dump(mode="json", by_alias=True)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        except OSError as exc:
            raise StateStoreError(f"Could not write state file: {self.path}", {"error": str(exc)}) from exc
        logger.info(f"State saved to {self.path}")
        return self.path
