"""Tests for configuration.

This module tests:
- GraphConfig defaults and environment overrides
- RunConfig coercion from dicts
- Per-run limits taking their defaults from GraphConfig
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from stepgraph.core.config import GraphConfig, RunConfig, get_config, set_config
from stepgraph.core.logging import LogLevel


class TestGraphConfig:
    """Test suite for process-wide settings."""

    def test_defaults(self):
        config = GraphConfig()
        assert config.recursion_limit == 25
        assert config.max_concurrency is None
        assert config.checkpoint_dir == Path(".stepgraph") / "checkpoints"
        assert config.log_level == LogLevel.INFO

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STEPGRAPH_RECURSION_LIMIT", "7")
        monkeypatch.setenv("STEPGRAPH_MAX_CONCURRENCY", "2")
        monkeypatch.setenv("STEPGRAPH_CHECKPOINT_DIR", str(tmp_path))
        config = GraphConfig()
        assert config.recursion_limit == 7
        assert config.max_concurrency == 2
        assert config.checkpoint_dir == tmp_path

    def test_invalid_limit(self):
        with pytest.raises(ValidationError):
            GraphConfig(recursion_limit=0)

    def test_validate_assignment(self):
        config = GraphConfig()
        with pytest.raises(ValidationError):
            config.max_concurrency = -1

    def test_get_config_is_cached(self):
        assert get_config() is get_config()

    def test_set_config(self):
        custom = GraphConfig(recursion_limit=3)
        set_config(custom)
        assert get_config() is custom
        set_config(None)
        assert get_config() is not custom


class TestRunConfig:
    """Test suite for per-run settings."""

    def test_defaults_follow_graph_config(self):
        set_config(GraphConfig(recursion_limit=4, max_concurrency=3))
        config = RunConfig()
        assert config.recursion_limit == 4
        assert config.max_concurrency == 3

    def test_coerce_none(self):
        config = RunConfig.coerce(None)
        assert config.thread_id is None
        assert config.configurable == {}

    def test_coerce_dict(self):
        config = RunConfig.coerce({
            "configurable": {"thread_id": "t1", "checkpoint_id": "c1", "user": "ada"},
            "recursion_limit": 10,
            "tags": ["nightly"],
        })
        assert config.thread_id == "t1"
        assert config.checkpoint_id == "c1"
        assert config.recursion_limit == 10
        assert config.configurable == {"user": "ada"}
        assert config.get("user") == "ada"
        assert config.get("missing", 1) == 1

    def test_top_level_ids_win(self):
        config = RunConfig.coerce({"thread_id": "top", "configurable": {"thread_id": "nested"}})
        assert config.thread_id == "top"

    def test_coerce_run_config(self):
        config = RunConfig(thread_id="t1")
        assert RunConfig.coerce(config) is config

    def test_merge(self):
        config = RunConfig(thread_id="t1")
        merged = config.merge(checkpoint_id="c2")
        assert merged.checkpoint_id == "c2"
        assert merged.thread_id == "t1"
        assert config.checkpoint_id is None

    def test_frozen(self):
        config = RunConfig(thread_id="t1")
        with pytest.raises(ValidationError):
            config.thread_id = "t2"

    def test_unknown_field(self):
        """Test unknown top-level keys are ignored rather than stored."""
        config = RunConfig.coerce({"thread_id": "t1", "callbacks": []})
        assert not hasattr(config, "callbacks")
