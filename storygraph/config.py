"""Pipeline configuration.

Configuration is a frozen pydantic model with built-in defaults. A TOML file
can override any field; it is looked up in order:

  1. Path in the STORYGRAPH_CONFIG env var (if set)
  2. storygraph.toml in the current working directory

The first existing file wins. ``OLLAMA_HOST`` overrides ``[llm].host``.

Example ``storygraph.toml``::

    [pipeline]
    registry_limit = 40

    [segmentation]
    target_max_size = 5000

    [retry]
    delays = [0.5, 1.0, 2.0]

    [llm]
    model = "llama3.1:8b"
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)


class SegmentationConfig(BaseModel):
    """Size targets for segment detection, in characters."""

    model_config = {"frozen": True}

    min_document_length: int = Field(4000, gt=0, description="Shorter documents are a single segment")
    target_min_size: int = Field(750, gt=0, description="Regions are merged until at least this long")
    target_max_size: int = Field(6000, gt=0, description="Regions longer than this are split")
    hard_max_size: int = Field(8000, gt=0, description="No segment may exceed this")
    split_search_window: int = Field(200, ge=0, description="Word-boundary search radius when splitting")
    min_sentence_length: int = Field(10, ge=1, description="Shorter sentences are dropped")

    @model_validator(mode="after")
    def _ordered(self) -> SegmentationConfig:
        if not self.target_min_size <= self.target_max_size <= self.hard_max_size:
            raise ValueError("expected target_min_size <= target_max_size <= hard_max_size")
        return self


class RetryConfig(BaseModel):
    """Backoff envelope for extraction-service calls."""

    model_config = {"frozen": True}

    max_attempts: int = Field(3, ge=1)
    delays: tuple[float, ...] = Field((1.0, 2.0, 4.0), description="Seconds to wait after each failed attempt")

    def delay_for(self, attempt: int) -> float:
        """Delay after the given 0-based failed attempt."""
        if not self.delays:
            return 0.0
        return self.delays[min(attempt, len(self.delays) - 1)]


class LLMConfig(BaseModel):
    model_config = {"frozen": True}

    model: str = "llama3.1:8b"
    embedding_model: str = "nomic-embed-text"
    host: str = "http://localhost:11434"
    timeout: float = Field(300.0, gt=0)
    temperature: float = Field(0.1, ge=0.0, le=2.0)


class PipelineConfig(BaseModel):
    """Top-level configuration for a NarrativePipeline."""

    model_config = {"frozen": True}

    registry_limit: int = Field(50, gt=0, description="Max registry entries sent per segment")
    registry_key_facets: int = Field(3, ge=0, description="Representative facets per registry entry")
    key_facet_count: int = Field(3, ge=0, description="Facets shown per entity in relationship prompts")
    registry_match_threshold: float = Field(0.85, ge=0.0, le=1.0)
    merge_similarity_threshold: float = Field(0.85, ge=0.0, le=1.0)
    broadcast_progress: bool = True

    segmentation: SegmentationConfig = Field(default_factory=SegmentationConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)


def _default_config_paths() -> list[Path]:
    """Return paths to check for storygraph.toml (first existing wins)."""
    paths: list[Path] = []
    if os.environ.get("STORYGRAPH_CONFIG"):
        paths.append(Path(os.environ["STORYGRAPH_CONFIG"]))
    paths.append(Path.cwd() / "storygraph.toml")
    return paths


def _from_toml(data: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = dict(data.get("pipeline") or {})
    for section in ("segmentation", "retry", "llm"):
        table = data.get(section)
        if isinstance(table, dict):
            out[section] = table
    return out


def load_pipeline_config(paths: list[Path] | None = None) -> PipelineConfig:
    """Load configuration from the first readable TOML file, else defaults."""
    values: dict[str, Any] = {}
    for path in paths if paths is not None else _default_config_paths():
        if not path.is_file():
            continue
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
            PipelineConfig.model_validate(_from_toml(data))
        except (OSError, ValueError, ValidationError) as e:
            logger.warning("Skipping config file %s: %s", path, e)
            continue
        values = _from_toml(data)
        break

    host = os.environ.get("OLLAMA_HOST")
    if host:
        values["llm"] = {**values.get("llm", {}), "host": host}
    return PipelineConfig.model_validate(values)
