"""Settings loading and validation for the discovery pipeline."""
from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Literal, Optional

import tomllib
from pydantic import BaseModel, Field

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")


class AppSettings(BaseModel):
    database_path: Path = Path("data/discovery.db")
    log_config: Path = Path("config/logging.yaml")


class WorkerSettings(BaseModel):
    """Dispatcher cadence and retry budget."""

    poll_interval_ms: int = Field(default=2000, ge=0)
    rate_limit_per_sec: float = Field(default=2.0, gt=0)
    max_retries: int = Field(default=3, ge=1)


class FreshnessSettings(BaseModel):
    """Time-to-live per source type, in hours."""

    portfolio: float = Field(default=168, ge=0)
    organization: float = Field(default=24, ge=0)
    job_board: float = Field(default=168, ge=0)
    job: float = Field(default=168, ge=0)
    directory: float = Field(default=168, ge=0)

    def ttl(self, source_type: str) -> timedelta:
        return timedelta(hours=getattr(self, source_type))


class DiscoverySettings(BaseModel):
    """Recursion depth and per-stage fan-out caps."""

    max_depth: int = Field(default=1, ge=0)
    portfolio_links: int = Field(default=50, ge=0)
    organizations: int = Field(default=25, ge=0)
    job_postings: int = Field(default=25, ge=0)
    job_boards: int = Field(default=2, ge=0)
    directories: int = Field(default=2, ge=0)


class FetchSettings(BaseModel):
    user_agent: str = "startup-discovery/0.1 (+https://example.org/bot)"
    timeout_seconds: float = Field(default=30.0, gt=0)
    respect_robots: bool = True
    max_attempts: int = Field(default=4, ge=1)


class SnapshotSettings(BaseModel):
    """Bounds for the browser pagination walk."""

    pagination_selector: Optional[str] = None
    content_selector: str = "body"
    post_click_delay_ms: int = Field(default=1500, ge=0)
    change_timeout_ms: int = Field(default=8000, ge=0)
    iteration_timeout_ms: int = Field(default=20000, gt=0)
    walk_timeout_ms: int = Field(default=60000, gt=0)
    max_snapshots: int = Field(default=4, ge=1)
    stable_captures: int = Field(default=3, ge=1)
    navigation_timeout_ms: int = Field(default=30000, gt=0)


class ReconcileSettings(BaseModel):
    chunk_chars: int = Field(default=10000, ge=64)
    append_probe_chars: int = Field(default=2000, ge=1)
    dedup: Literal["block", "snapshot"] = "block"


class ExtractionSettings(BaseModel):
    model: str = "gpt-4.1"
    fast_model: str = "gpt-4.1-mini"
    temperature: float = Field(default=0.0, ge=0, le=2)


class PipelineSettings(BaseModel):
    """Validated view over ``config/settings.toml``."""

    app: AppSettings = Field(default_factory=AppSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    freshness: FreshnessSettings = Field(default_factory=FreshnessSettings)
    discovery: DiscoverySettings = Field(default_factory=DiscoverySettings)
    fetch: FetchSettings = Field(default_factory=FetchSettings)
    snapshot: SnapshotSettings = Field(default_factory=SnapshotSettings)
    reconcile: ReconcileSettings = Field(default_factory=ReconcileSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)


def load_settings(path: Path = DEFAULT_SETTINGS_PATH) -> PipelineSettings:
    """Read the TOML configuration file, falling back to defaults when absent."""
    if not path.exists():
        return PipelineSettings()
    with path.open("rb") as handle:
        return PipelineSettings.model_validate(tomllib.load(handle))
