"""Application configuration using pydantic-settings.

Loads secrets and endpoints from environment variables and the .env file.
Judge, limits, cache and retry behaviour is loaded from abtest.toml.

Priority: CLI args > Environment variables (.env) > abtest.toml > hardcoded defaults
"""

import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from prompt_expert.errors import ConfigurationError
from prompt_expert.schemas.run import MIB, RunConfig


# ---------------------------------------------------------------------------
# Run settings from abtest.toml
# ---------------------------------------------------------------------------


class DefaultsTable(BaseModel):
    """The [defaults] table from abtest.toml."""

    model: str = "anthropic/claude-3.5-sonnet"
    timeout: float = 120.0           # seconds per judge call
    min_response_length: int = 20    # shorter responses cascade to the next provider


class JudgeTable(BaseModel):
    """The [judge] table: sampling parameters per kind of judge call."""

    evaluation_temperature: float = 0.0
    comparison_temperature: float = 0.3
    verdict_temperature: float = 0.0
    max_tokens: int = 1000
    comparison_max_tokens: int = 1500


class CacheTable(BaseModel):
    """The [cache] table from abtest.toml."""

    floating_ttl: float = 300.0     # "latest" / branches / tags
    pinned_ttl: float = 86400.0     # commit SHAs
    max_bytes: int = 100 * MIB
    max_evictions: int = 10


class RetryTable(BaseModel):
    """The [retry] table from abtest.toml."""

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.1
    rate_limit_max_wait: float = 300.0


class ProviderConfig(BaseModel):
    """Configuration for a single fallback provider."""

    enabled: bool = False
    default_model: str = ""
    base_url: str = ""


class ProvidersTable(BaseModel):
    """The [providers] table from abtest.toml."""

    groq: ProviderConfig = Field(default_factory=ProviderConfig)
    ollama: ProviderConfig = Field(default_factory=ProviderConfig)


class ABTestSettings(BaseModel):
    """Configuration loaded from abtest.toml."""

    defaults: DefaultsTable = Field(default_factory=DefaultsTable)
    judge: JudgeTable = Field(default_factory=JudgeTable)
    limits: RunConfig = Field(default_factory=RunConfig)
    cache: CacheTable = Field(default_factory=CacheTable)
    retry: RetryTable = Field(default_factory=RetryTable)
    providers: ProvidersTable = Field(default_factory=ProvidersTable)

    def temperature_for(self, purpose: str) -> float:
        """Temperature for a judge call purpose (evaluation, comparison, verdict)."""
        return getattr(self.judge, f"{purpose}_temperature", self.judge.evaluation_temperature)

    def max_tokens_for(self, purpose: str) -> int:
        if purpose == "comparison":
            return self.judge.comparison_max_tokens
        return self.judge.max_tokens


_ABTEST_SETTINGS_CACHE: ABTestSettings | None = None


def load_abtest_settings(path: Path) -> ABTestSettings:
    """Parse an abtest.toml file; a missing file means all defaults."""
    if not path.exists():
        return ABTestSettings()
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
        return ABTestSettings.model_validate(data)
    except (tomllib.TOMLDecodeError, ValidationError) as exc:
        raise ConfigurationError(f"Invalid settings in {path}: {exc}") from exc


def get_abtest_settings() -> ABTestSettings:
    """Load and cache settings from abtest.toml at the repository root."""
    global _ABTEST_SETTINGS_CACHE
    if _ABTEST_SETTINGS_CACHE is None:
        _ABTEST_SETTINGS_CACHE = load_abtest_settings(
            Path(__file__).parent.parent / "abtest.toml"
        )
    return _ABTEST_SETTINGS_CACHE


# ---------------------------------------------------------------------------
# Environment settings from .env (API keys, endpoints)
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Judge
    openrouter_api_key: str
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    groq_api_key: str = ""  # Optional: Groq fallback provider

    # Remote content API
    github_token: str = ""
    github_api_url: str = "https://api.github.com"
    default_namespace: str = ""  # owner/repo used when a path omits it

    # Logging
    log_level: str = "INFO"


def get_settings() -> Settings:
    return Settings()
