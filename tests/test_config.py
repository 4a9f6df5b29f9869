"""Tests for run configuration loading from abtest.toml."""

from __future__ import annotations

from pathlib import Path

import pytest

from prompt_expert.config import ABTestSettings, Settings, load_abtest_settings
from prompt_expert.errors import ConfigurationError
from prompt_expert.schemas.content import ContentKind
from prompt_expert.schemas.run import LoadingMode


class TestABTestSettingsDefaults:
    """Defaults apply when a table or key is absent."""

    def test_default_model_and_timeout(self):
        s = ABTestSettings()
        assert s.defaults.model == "anthropic/claude-3.5-sonnet"
        assert s.defaults.timeout == 120
        assert s.defaults.min_response_length == 20

    def test_temperature_per_purpose(self):
        s = ABTestSettings()
        assert s.temperature_for("evaluation") == 0.0
        assert s.temperature_for("comparison") == 0.3
        assert s.temperature_for("verdict") == 0.0
        assert s.temperature_for("unknown") == 0.0

    def test_max_tokens_per_purpose(self):
        s = ABTestSettings()
        assert s.max_tokens_for("comparison") == 1500
        assert s.max_tokens_for("verdict") == 1000

    def test_limits_defaults(self):
        limits = ABTestSettings().limits
        assert limits.max_tokens == 200_000
        assert limits.max_files_per_collection == 20
        assert limits.loading_mode == LoadingMode.PROGRESSIVE

    def test_providers_disabled_by_default(self):
        s = ABTestSettings()
        assert s.providers.groq.enabled is False
        assert s.providers.ollama.enabled is False


class TestABTestSettingsOverrides:
    """Loading from parsed TOML data (dict)."""

    def test_override_judge_temperature(self):
        s = ABTestSettings.model_validate({"judge": {"comparison_temperature": 0.7}})
        assert s.temperature_for("comparison") == 0.7
        assert s.temperature_for("evaluation") == 0.0  # unchanged

    def test_override_limits_keeps_kind_defaults(self):
        data = {"limits": {"max_tokens": 5000, "kind_limits": {"code": {"max_bytes": 100, "warn_bytes": 50}}}}
        s = ABTestSettings.model_validate(data)
        assert s.limits.max_tokens == 5000
        assert s.limits.kind_limit(ContentKind.CODE).max_bytes == 100
        assert s.limits.kind_limit(ContentKind.TEXT).max_bytes == 1024 * 1024

    def test_invalid_loading_mode_rejected(self):
        with pytest.raises(ValueError):
            ABTestSettings.model_validate({"limits": {"loading_mode": "yolo"}})

    def test_empty_dict_uses_defaults(self):
        s = ABTestSettings.model_validate({})
        assert s.retry.max_attempts == 4
        assert s.cache.floating_ttl == 300


class TestLoadFile:
    def test_missing_file_gives_defaults(self, tmp_path):
        s = load_abtest_settings(tmp_path / "nope.toml")
        assert s == ABTestSettings()

    def test_loads_partial_file(self, tmp_path):
        path = tmp_path / "abtest.toml"
        path.write_text('[defaults]\nmodel = "openai/gpt-4o"\n\n[retry]\nmax_attempts = 2\n')
        s = load_abtest_settings(path)
        assert s.defaults.model == "openai/gpt-4o"
        assert s.retry.max_attempts == 2
        assert s.retry.base_delay == 1.0


class TestAbtestTomlFile:
    """The shipped abtest.toml parses and matches the code defaults."""

    toml_path = Path(__file__).parent.parent / "abtest.toml"

    def test_abtest_toml_exists_and_parses(self):
        assert self.toml_path.exists()
        s = load_abtest_settings(self.toml_path)
        assert s.defaults.model is not None
        assert s.limits.kind_limit(ContentKind.BINARY).max_bytes == 0

    def test_abtest_toml_limits_match_defaults(self):
        assert load_abtest_settings(self.toml_path).limits == ABTestSettings().limits

    def test_abtest_toml_has_providers(self):
        s = load_abtest_settings(self.toml_path)
        assert s.providers.groq.default_model == "llama-3.3-70b-versatile"
        assert s.providers.ollama.base_url == "http://localhost:11434"


class TestEnvironmentSettings:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "k")
        monkeypatch.setenv("DEFAULT_NAMESPACE", "acme/prompts")
        s = Settings(_env_file=None)
        assert s.openrouter_api_key == "k"
        assert s.default_namespace == "acme/prompts"
        assert s.github_api_url == "https://api.github.com"

    def test_api_key_required(self, monkeypatch):
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        with pytest.raises(ValueError):
            Settings(_env_file=None)


class TestInvalidFile:
    def test_malformed_toml_raises_configuration_error(self, tmp_path):
        path = tmp_path / "abtest.toml"
        path.write_text("[defaults\nmodel = 1\n")
        with pytest.raises(ConfigurationError, match="Invalid settings"):
            load_abtest_settings(path)

    def test_bad_values_raise_configuration_error(self, tmp_path):
        path = tmp_path / "abtest.toml"
        path.write_text('[limits]\nloading_mode = "yolo"\n')
        with pytest.raises(ConfigurationError):
            load_abtest_settings(path)
