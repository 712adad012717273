"""
Base Connector
Abstract base for incident source connectors
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional
import logging

from config import get_settings
from core import ConnectorResult, RunState, utc_now_iso


logger = logging.getLogger(__name__)


@dataclass
class CollectionContext:
    """Inputs shared by every connector in one pass."""

    state: RunState = field(default_factory=RunState)
    limit: Optional[int] = None


class BaseConnector(ABC):
    """
    Source connector contract.

    ``collect`` never raises for missing credentials or empty results; those
    come back as warnings on an empty result. A non-2xx response from the
    connector's own provider raises ``ConnectorError``.
    """
    
    def __init__(self, focus_locations: Optional[List[str]] = None):
        self.settings = get_settings()
        self.focus_locations = [str(item).strip() for item in list(focus_locations or []) if str(item or "").strip()]
    
    @property
    @abstractmethod
    def name(self) -> str:
        """Connector key used in state checkpoints and summaries"""
        pass
    
    @abstractmethod
    async def collect(self, context: CollectionContext) -> ConnectorResult:
        """
        Run one collection pass.
        
        Args:
            context: persisted state and page limit for this pass
            
        Returns:
            candidates, resumption checkpoint, meta and warnings
        """
        pass
    
    def is_configured(self) -> bool:
        """Subclasses check their credentials here."""
        return True

    def _skipped(self, warning: str, checkpoint: dict, meta: dict) -> ConnectorResult:
        self._log_warning(warning)
        return ConnectorResult(
            connector=self.name,
            candidates=[],
            checkpoint=checkpoint,
            meta=meta,
            warnings=[warning],
        )

    @staticmethod
    def _now() -> str:
        return utc_now_iso()
    
    def _log_collect(self, query: str, count: int):
        logger.info(f"[{self.name}] Query '{query[:120]}' returned {count} candidates")
    
    def _log_warning(self, message: str):
        logger.warning(f"[{self.name}] {message}")
