from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from core import ConnectorResult, IncidentCandidate
from sources.base import BaseConnector, CollectionContext
from utils.exceptions import ConnectorError


def make_candidate(source_id: str, **overrides: Any) -> IncidentCandidate:
    fields: Dict[str, Any] = {
        "connector": "fake",
        "sourcePlatform": "x",
        "sourceId": source_id,
        "sourceUrl": f"https://x.com/i/web/status/{source_id}",
        "summary": f"Robbery reported near the taxi rank, case {source_id}",
        "rawText": f"Robbery reported near the taxi rank, case {source_id}",
        "latitude": -26.2041,
        "longitude": 28.0473,
        "postedAt": "2026-03-01T08:30:00Z",
    }
    fields.update(overrides)
    return IncidentCandidate.model_validate(fields)


class FakeConnector(BaseConnector):
    """Returns scripted batches per call; a batch that is an Exception is raised."""

    def __init__(self, name: str, batches: Sequence[Any], checkpoint: Optional[Dict[str, Any]] = None):
        super().__init__([])
        self._name = name
        self._batches = list(batches)
        self._checkpoint = checkpoint or {}
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    async def collect(self, context: CollectionContext) -> ConnectorResult:
        batch = self._batches[min(self.calls, len(self._batches) - 1)] if self._batches else []
        self.calls += 1
        if isinstance(batch, Exception):
            raise batch
        return ConnectorResult(
            connector=self._name,
            candidates=list(batch),
            checkpoint=dict(self._checkpoint, lastRunAt="2026-03-01T09:00:00.000Z"),
            meta={"focusLocations": [], "query": f"{self._name}-query"},
        )


def factory_for(*connectors: BaseConnector):
    plans: List[Any] = []

    def _factory(plan):
        plans.append(plan)
        return list(connectors)

    _factory.plans = plans
    return _factory


def failing(message: str, connector: str = "fake") -> ConnectorError:
    return ConnectorError(message, connector=connector)
