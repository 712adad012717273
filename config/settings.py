"""
Settings Configuration
Pydantic-backed configuration for connectors, geocoding and Wolf ingest
"""
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class PerplexitySettings(BaseSettings):
    """Perplexity web/LLM retrieval connector"""
    api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PERPLEXITY_API_KEY", "SHERLOCK_PERPLEXITY_API_KEY"),
        description="Perplexity API key",
    )
    model: str = Field(default="sonar-pro", description="Chat completion model")
    api_url: str = Field(default="https://api.perplexity.ai/chat/completions", description="Chat completions endpoint")
    queries: str = Field(default="", description="Base queries joined with ||")
    timeout_ms: int = Field(default=25000, description="Per-request timeout (ms)")

    class Config:
        env_prefix = "SHERLOCK_PERPLEXITY_"


class XApiSettings(BaseSettings):
    """X recent-search connector"""
    bearer_token: Optional[str] = Field(default=None, description="X API bearer token")
    api_url: str = Field(default="https://api.x.com/2/tweets/search/recent", description="Recent search endpoint")
    query: Optional[str] = Field(default=None, description="Base search query")
    max_results: int = Field(default=25, description="Page size, clamped to [10, 100]")
    timeout_ms: int = Field(default=15000, description="Per-request timeout (ms)")

    class Config:
        env_prefix = "SHERLOCK_X_"


class GeocodeSettings(BaseSettings):
    """Geocoding fallback chain"""
    here_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("HERE_API_KEY", "SHERLOCK_HERE_API_KEY"),
        description="HERE geocoding API key (optional)",
    )
    timeout_ms: int = Field(default=8000, description="Per-lookup timeout (ms)")
    user_agent: str = Field(default="SherlockIncidentDiscovery/1.0", description="Nominatim User-Agent")

    class Config:
        env_prefix = "SHERLOCK_GEOCODE_"


class FocusSettings(BaseSettings):
    """Geographic focus terms"""
    locations: str = Field(default="", description="JSON array, ||-delimited or newline-delimited")

    class Config:
        env_prefix = "SHERLOCK_FOCUS_"


class WolfIngestSettings(BaseSettings):
    """Downstream Wolf ingest endpoint"""
    ingest_url: Optional[str] = Field(default=None, description="Batch ingest URL")
    ingest_token: Optional[str] = Field(default=None, description="Bearer token for ingest")
    product_type: str = Field(default="community", description="Product type tag")
    dispatch_alerts: bool = Field(default=False, description="Ask Wolf to dispatch alerts")
    ingest_timeout_ms: int = Field(default=15000, description="Submission timeout (ms)")

    class Config:
        env_prefix = "SHERLOCK_WOLF_"


class QualitySettings(BaseSettings):
    """Enrichment quality gate"""
    min_summary_length: int = Field(default=24, description="Minimum summary length (floor 8)")
    require_source_identity: bool = Field(default=True, description="Reject candidates without url/id")
    reporter_id: str = Field(default="sherlock-agent", description="reporterId on normalized incidents")

    class Config:
        env_prefix = "SHERLOCK_"


class TaskIntakeSettings(BaseSettings):
    """Directed task intake and Mission Control access"""
    task_url_timeout_ms: int = Field(
        default=10000,
        validation_alias=AliasChoices("SHERLOCK_TASK_URL_TIMEOUT_MS"),
        description="Lead URL fetch timeout (ms)",
    )
    mission_control_cli: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MISSION_CONTROL_CLI"),
        description="Path to mission-control-cli.mjs",
    )
    assignee: str = Field(default="sherlock", validation_alias=AliasChoices("SHERLOCK_TASK_ASSIGNEE"))


class GeneralSettings(BaseSettings):
    """General settings"""
    state_file: str = Field(default="memory/heartbeat-state.json", description="RunState JSON path")
    max_retries: int = Field(default=2, description="Connect-error retry attempts")

    class Config:
        env_prefix = "SHERLOCK_"


class Settings(BaseSettings):
    """Aggregated settings"""

    perplexity: PerplexitySettings = Field(default_factory=PerplexitySettings)
    x_api: XApiSettings = Field(default_factory=XApiSettings)
    geocode: GeocodeSettings = Field(default_factory=GeocodeSettings)
    focus: FocusSettings = Field(default_factory=FocusSettings)
    wolf: WolfIngestSettings = Field(default_factory=WolfIngestSettings)
    quality: QualitySettings = Field(default_factory=QualitySettings)
    task_intake: TaskIntakeSettings = Field(default_factory=TaskIntakeSettings)
    general: GeneralSettings = Field(default_factory=GeneralSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_dir: Optional[Path] = None) -> "Settings":
        """Load .env and .env.local without overriding variables already set."""
        root = env_dir or Path(os.getenv("SHERLOCK_WORKSPACE", ".")).resolve()
        from dotenv import load_dotenv

        for name in (".env", ".env.local"):
            env_path = root / name
            if env_path.exists():
                load_dotenv(env_path, override=False)

        return cls(
            perplexity=PerplexitySettings(),
            x_api=XApiSettings(),
            geocode=GeocodeSettings(),
            focus=FocusSettings(),
            wolf=WolfIngestSettings(),
            quality=QualitySettings(),
            task_intake=TaskIntakeSettings(),
            general=GeneralSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings singleton"""
    return Settings.load_from_env_file()
