from __future__ import annotations

from pathlib import Path

import allure
import pytest

from worksheet_gen.config import Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in (
        "WORKSHEET_GEN_PROVIDER",
        "WORKSHEET_GEN_API_BASE_URL",
        "WORKSHEET_GEN_API_KEY",
        "WORKSHEET_GEN_DB_PATH",
        "WORKSHEET_GEN_MAX_RETRIES",
        "WORKSHEET_GEN_AUTO_FIX",
        "WORKSHEET_GEN_BACKOFF_BASE_SECONDS",
        "WORKSHEET_GEN_EPISODE_DEADLINE_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    settings = Settings.from_env()

    assert settings.provider.kind == "http"
    assert settings.breaker.failure_threshold == 5
    assert settings.breaker.reset_timeout_seconds == 60.0
    assert settings.orchestrator.max_retries == 3
    assert settings.orchestrator.backoff_base_seconds == 1.0
    assert settings.orchestrator.auto_fix is True
    assert settings.storage.db_path == Path(".worksheet_gen.db")


def test_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("WORKSHEET_GEN_PROVIDER", " Dummy ")
    monkeypatch.setenv("WORKSHEET_GEN_MAX_RETRIES", "5")
    monkeypatch.setenv("WORKSHEET_GEN_AUTO_FIX", "off")
    monkeypatch.setenv("WORKSHEET_GEN_DB_PATH", "/tmp/worksheets.db")

    settings = Settings.from_env()

    assert settings.provider.kind == "dummy"
    assert settings.orchestrator.max_retries == 5
    assert settings.orchestrator.auto_fix is False
    assert settings.storage.db_path == Path("/tmp/worksheets.db")
    settings.validate()


def test_explicit_db_path_wins(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("WORKSHEET_GEN_DB_PATH", "/tmp/other.db")

    assert Settings.from_env(db_path=tmp_path / "a.db").storage.db_path == tmp_path / "a.db"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("WORKSHEET_GEN_AUTO_FIX", "maybe"),
        ("WORKSHEET_GEN_MAX_RETRIES", "three"),
        ("WORKSHEET_GEN_BACKOFF_BASE_SECONDS", "fast"),
    ],
)
def test_invalid_values_name_the_variable(monkeypatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=name):
        Settings.from_env()


def test_http_provider_requires_api_key() -> None:
    with pytest.raises(ValueError, match="WORKSHEET_GEN_API_KEY"):
        Settings.from_env().validate()


def test_http_provider_requires_absolute_url(monkeypatch) -> None:
    monkeypatch.setenv("WORKSHEET_GEN_API_KEY", "secret")
    monkeypatch.setenv("WORKSHEET_GEN_API_BASE_URL", "llm.local/v1")

    with pytest.raises(ValueError, match="WORKSHEET_GEN_API_BASE_URL"):
        Settings.from_env().validate()


def test_unknown_provider_kind_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("WORKSHEET_GEN_PROVIDER", "local")

    with pytest.raises(ValueError, match="WORKSHEET_GEN_PROVIDER"):
        Settings.from_env().validate()


def test_deadline_must_be_positive(monkeypatch) -> None:
    monkeypatch.setenv("WORKSHEET_GEN_PROVIDER", "dummy")
    monkeypatch.setenv("WORKSHEET_GEN_EPISODE_DEADLINE_SECONDS", "0")

    with pytest.raises(ValueError, match="WORKSHEET_GEN_EPISODE_DEADLINE_SECONDS"):
        Settings.from_env().validate()
