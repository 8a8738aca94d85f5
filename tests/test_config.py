"""Unit tests for environment-driven configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from config import Config, ThrottleSettings


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for key in (
        "SUBREDDITS", "SORT_MODE", "FETCH_LIMIT", "POLL_INTERVAL_MS", "INSIGHT_MODEL",
        "ANTHROPIC_API_KEY", "SOURCE_BASE_INTERVAL_MS", "INFERENCE_BASE_INTERVAL_MS",
        "DB_PATH", "LOG_LEVEL", "ENABLE_LOGFIRE", "MAX_WORKERS",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestLoad:

    def test_defaults(self, clean_env: pytest.MonkeyPatch) -> None:
        config = Config.load()

        assert config.sort_mode == "hot"
        assert config.poll_interval_ms == 30000
        assert config.source_throttle == ThrottleSettings()
        assert config.inference_throttle.base_interval_ms == 1200
        assert config.inference_throttle.breaker_threshold_ms == 30000
        assert config.db_path == Path("sift.db")
        assert "Journaling" in config.subreddits

    def test_overrides(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("SUBREDDITS", "Notion, ADHD ,")
        clean_env.setenv("SORT_MODE", "NEW")
        clean_env.setenv("POLL_INTERVAL_MS", "60000")
        clean_env.setenv("SOURCE_BASE_INTERVAL_MS", "2000")
        clean_env.setenv("ENABLE_LOGFIRE", "yes")

        config = Config.load()

        assert config.subreddits == ["Notion", "ADHD"]
        assert config.sort_mode == "new"
        assert config.poll_interval_ms == 60000
        assert config.source_throttle.base_interval_ms == 2000
        assert config.inference_throttle.base_interval_ms == 1200
        assert config.enable_logfire is True

    def test_invalid_integer(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("FETCH_LIMIT", "ten")
        with pytest.raises(ValueError, match="FETCH_LIMIT"):
            Config.load()

    def test_instances_do_not_share_throttle_settings(self) -> None:
        first, second = Config(), Config()
        first.source_throttle.base_interval_ms = 1
        assert second.source_throttle.base_interval_ms == 5000


class TestValidate:

    def valid(self, **overrides) -> Config:
        config = Config(anthropic_api_key="sk-test")
        for key, value in overrides.items():
            setattr(config, key, value)
        return config

    def test_valid(self) -> None:
        assert self.valid().validate() is None

    def test_api_key_required_for_anthropic(self) -> None:
        assert "ANTHROPIC_API_KEY" in self.valid(anthropic_api_key="").validate()

    def test_local_model_needs_no_key(self) -> None:
        config = self.valid(anthropic_api_key="", insight_model="openai:qwen@http://127.0.0.1:8080/v1")
        assert config.validate() is None

    @pytest.mark.parametrize("overrides, fragment", [
        ({"sort_mode": "best"}, "SORT_MODE"),
        ({"fetch_limit": 0}, "FETCH_LIMIT"),
        ({"fetch_limit": 101}, "FETCH_LIMIT"),
        ({"poll_interval_ms": 0}, "POLL_INTERVAL_MS"),
        ({"max_workers": 0}, "MAX_WORKERS"),
        ({"log_format": "xml"}, "LOG_FORMAT"),
        ({"source_throttle": ThrottleSettings(backoff_step_ms=0)}, "SOURCE"),
        ({"inference_throttle": ThrottleSettings(breaker_reset_ms=0)}, "INFERENCE"),
    ])
    def test_invalid_values(self, overrides: dict, fragment: str) -> None:
        assert fragment in self.valid(**overrides).validate()
