"""Runtime configuration for the generation pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

PROVIDER_KINDS: tuple[str, ...] = ("http", "dummy")


@dataclass(slots=True)
class ProviderSettings:
    """Content provider connection settings."""

    kind: str = "http"
    api_base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    generation_model: str = "gpt-4o"
    agents_model: str = "gpt-4o-mini"
    fixer_model: str = "gpt-4o"
    timeout_seconds: float = 120.0


@dataclass(slots=True)
class BreakerSettings:
    """Circuit breaker thresholds."""

    failure_threshold: int = 5
    reset_timeout_seconds: float = 60.0


@dataclass(slots=True)
class OrchestratorSettings:
    """Episode retry, deadline and validation settings."""

    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    episode_deadline_seconds: float = 300.0
    auto_fix: bool = True
    semantic_validation_enabled: bool = True
    max_fixes: int = 10


@dataclass(slots=True)
class StorageSettings:
    """Quota ledger and worksheet store settings."""

    db_path: Path = Path(".worksheet_gen.db")


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    provider: ProviderSettings = field(default_factory=ProviderSettings)
    breaker: BreakerSettings = field(default_factory=BreakerSettings)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        defaults = ProviderSettings()
        return cls(
            provider=ProviderSettings(
                kind=os.getenv("WORKSHEET_GEN_PROVIDER", defaults.kind).strip().lower(),
                api_base_url=os.getenv("WORKSHEET_GEN_API_BASE_URL", defaults.api_base_url),
                api_key=os.getenv("WORKSHEET_GEN_API_KEY", ""),
                generation_model=os.getenv(
                    "WORKSHEET_GEN_GENERATION_MODEL",
                    defaults.generation_model,
                ),
                agents_model=os.getenv("WORKSHEET_GEN_AGENTS_MODEL", defaults.agents_model),
                fixer_model=os.getenv("WORKSHEET_GEN_FIXER_MODEL", defaults.fixer_model),
                timeout_seconds=_env_float("WORKSHEET_GEN_PROVIDER_TIMEOUT_SECONDS", 120.0),
            ),
            breaker=BreakerSettings(
                failure_threshold=_env_int("WORKSHEET_GEN_BREAKER_FAILURE_THRESHOLD", 5),
                reset_timeout_seconds=_env_float(
                    "WORKSHEET_GEN_BREAKER_RESET_TIMEOUT_SECONDS",
                    60.0,
                ),
            ),
            orchestrator=OrchestratorSettings(
                max_retries=_env_int("WORKSHEET_GEN_MAX_RETRIES", 3),
                backoff_base_seconds=_env_float("WORKSHEET_GEN_BACKOFF_BASE_SECONDS", 1.0),
                episode_deadline_seconds=_env_float(
                    "WORKSHEET_GEN_EPISODE_DEADLINE_SECONDS",
                    300.0,
                ),
                auto_fix=_env_bool("WORKSHEET_GEN_AUTO_FIX", default=True),
                semantic_validation_enabled=_env_bool(
                    "WORKSHEET_GEN_SEMANTIC_VALIDATION",
                    default=True,
                ),
                max_fixes=_env_int("WORKSHEET_GEN_MAX_FIXES", 10),
            ),
            storage=StorageSettings(
                db_path=db_path
                or Path(os.getenv("WORKSHEET_GEN_DB_PATH", ".worksheet_gen.db")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error naming the offending variable."""

        if self.provider.kind not in PROVIDER_KINDS:
            raise ValueError(
                f"WORKSHEET_GEN_PROVIDER must be one of {', '.join(PROVIDER_KINDS)}, "
                f"got {self.provider.kind!r}.",
            )
        if self.provider.kind == "http":
            parsed = urlparse(self.provider.api_base_url)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(
                    "WORKSHEET_GEN_API_BASE_URL must be an absolute http(s) URL, "
                    f"got {self.provider.api_base_url!r}.",
                )
            if not self.provider.api_key.strip():
                raise ValueError(
                    "WORKSHEET_GEN_API_KEY is required when WORKSHEET_GEN_PROVIDER=http.",
                )
        if self.provider.timeout_seconds <= 0:
            raise ValueError("WORKSHEET_GEN_PROVIDER_TIMEOUT_SECONDS must be > 0.")
        if self.breaker.failure_threshold < 1:
            raise ValueError("WORKSHEET_GEN_BREAKER_FAILURE_THRESHOLD must be >= 1.")
        if self.breaker.reset_timeout_seconds < 0:
            raise ValueError("WORKSHEET_GEN_BREAKER_RESET_TIMEOUT_SECONDS must be >= 0.")
        if self.orchestrator.max_retries < 0:
            raise ValueError("WORKSHEET_GEN_MAX_RETRIES must be >= 0.")
        if self.orchestrator.backoff_base_seconds < 0:
            raise ValueError("WORKSHEET_GEN_BACKOFF_BASE_SECONDS must be >= 0.")
        if self.orchestrator.episode_deadline_seconds <= 0:
            raise ValueError("WORKSHEET_GEN_EPISODE_DEADLINE_SECONDS must be > 0.")
        if self.orchestrator.max_fixes < 0:
            raise ValueError("WORKSHEET_GEN_MAX_FIXES must be >= 0.")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
