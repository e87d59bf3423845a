"""
Engine Configuration

Runtime settings for the categorization engine:
- Confidence thresholds (when to categorize vs. suggest vs. give up)
- Matching limits
- Cache capacities
- Circuit breaker tuning
- Metrics backend selection

An ``EngineConfig`` is an immutable snapshot. Reconfiguring builds a new
snapshot and swaps the reference, so readers never see a half-applied change.
"""
import logging
import os
from typing import Any, Dict, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ledgersort.services.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "LEDGERSORT_"


class EngineConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    min_confidence: float = Field(0.5, ge=0.0, le=1.0)
    auto_categorize_threshold: float = Field(0.7, ge=0.0, le=1.0)
    high_confidence_threshold: float = Field(0.85, ge=0.0, le=1.0)
    max_alternatives: int = Field(3, ge=0)

    match_min_similarity: float = Field(0.6, ge=0.0, le=1.0)
    max_match_results: int = Field(5, ge=1)

    pattern_cache_size: int = Field(1000, ge=1)
    scorer_cache_size: int = Field(5000, ge=1)

    breaker_failure_threshold: int = Field(5, ge=1)
    breaker_timeout_seconds: float = Field(30.0, gt=0)

    metrics_backend: Literal["memory", "logging"] = "memory"
    db_path: str = "ledgersort.sqlite3"

    @model_validator(mode="after")
    def _check_thresholds(self) -> "EngineConfig":
        if self.auto_categorize_threshold > self.high_confidence_threshold:
            raise ValueError("auto_categorize_threshold must not exceed high_confidence_threshold")
        return self

    def merged(self, **overrides: Any) -> "EngineConfig":
        """Return a new snapshot with ``overrides`` applied."""
        unknown = sorted(set(overrides) - set(type(self).model_fields))
        if unknown:
            raise ConfigError(unknown[0], f"Unknown option(s): {', '.join(unknown)}")
        data = self.model_dump()
        data.update(overrides)
        try:
            return type(self).model_validate(data)
        except ValidationError as e:
            field_name = str(e.errors()[0]["loc"][0]) if e.errors() and e.errors()[0]["loc"] else "config"
            raise ConfigError(field_name, str(e)) from e

    @classmethod
    def from_env(cls, environ: Dict[str, str] = None) -> "EngineConfig":
        """Build a snapshot from ``LEDGERSORT_*`` environment variables."""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw.strip() != "":
                values[name] = raw.strip()
        try:
            config = cls.model_validate(values)
        except ValidationError as e:
            raise ConfigError("environment", str(e)) from e
        logger.debug("Loaded engine config from environment: %s", values)
        return config
