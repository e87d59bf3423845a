"""
Tests for engine configuration snapshots.
"""

import pytest
from pydantic import ValidationError

from ledgersort.core.config import EngineConfig
from ledgersort.services.errors import ConfigError, ErrorCode


class TestEngineConfig:

    def test_defaults(self):
        config = EngineConfig()
        assert config.min_confidence == 0.5
        assert config.auto_categorize_threshold == 0.7
        assert config.high_confidence_threshold == 0.85
        assert config.match_min_similarity == 0.6
        assert config.max_match_results == 5
        assert config.max_alternatives == 3
        assert config.breaker_failure_threshold == 5
        assert config.breaker_timeout_seconds == 30.0

    def test_snapshots_are_frozen(self):
        config = EngineConfig()
        with pytest.raises(ValidationError):
            config.min_confidence = 0.1

    def test_merged_returns_new_snapshot(self):
        config = EngineConfig()
        updated = config.merged(min_confidence=0.3)
        assert updated.min_confidence == 0.3
        assert config.min_confidence == 0.5

    def test_unknown_option(self):
        with pytest.raises(ConfigError) as exc_info:
            EngineConfig().merged(turbo=True)
        assert exc_info.value.code == ErrorCode.INVALID_CONFIG
        assert exc_info.value.context["field"] == "turbo"

    def test_out_of_range_value(self):
        with pytest.raises(ConfigError) as exc_info:
            EngineConfig().merged(max_match_results=0)
        assert exc_info.value.context["field"] == "max_match_results"

    def test_thresholds_must_be_ordered(self):
        with pytest.raises(ConfigError):
            EngineConfig().merged(auto_categorize_threshold=0.9, high_confidence_threshold=0.8)


class TestFromEnv:

    def test_reads_prefixed_variables(self):
        config = EngineConfig.from_env({
            "LEDGERSORT_MIN_CONFIDENCE": "0.4",
            "LEDGERSORT_PATTERN_CACHE_SIZE": "250",
            "LEDGERSORT_DB_PATH": "/tmp/patterns.sqlite3",
            "UNRELATED": "ignored",
        })
        assert config.min_confidence == 0.4
        assert config.pattern_cache_size == 250
        assert config.db_path == "/tmp/patterns.sqlite3"

    def test_blank_values_fall_back_to_defaults(self):
        assert EngineConfig.from_env({"LEDGERSORT_MIN_CONFIDENCE": "  "}).min_confidence == 0.5

    def test_bad_value_raises_config_error(self):
        with pytest.raises(ConfigError):
            EngineConfig.from_env({"LEDGERSORT_MAX_MATCH_RESULTS": "lots"})
