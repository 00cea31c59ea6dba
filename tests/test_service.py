from __future__ import annotations

import json
import uuid
from pathlib import Path

import allure
import pytest

from worksheet_gen.config import Settings
from worksheet_gen.generation.breaker import CircuitBreaker
from worksheet_gen.generation.errors import (
    GenerationFailedError,
    ProviderError,
    QuotaExhaustedError,
)
from worksheet_gen.generation.models import CLOSED_TYPES, ContentRequest, EpisodeResult, TaskType
from worksheet_gen.generation.provider.dummy_provider import DummyContentProvider
from worksheet_gen.generation.service import build_service
from worksheet_gen.storage.ledger import SqlQuotaLedger
from worksheet_gen.storage.worksheet_store import SqlWorksheetStore

pytestmark = [
    allure.epic("Generation Pipeline"),
    allure.feature("Generation Service"),
]

_REQUEST = ContentRequest(
    subject="physics",
    grade=8,
    topic="Simple machines",
    task_types=CLOSED_TYPES,
    closed_count=2,
)


class _BrokenStore:
    def __init__(self) -> None:
        self.calls = 0

    def store(self, account_id: str, result: EpisodeResult) -> str:
        self.calls += 1
        raise RuntimeError("disk full")


class _BrokenLedger:
    def decrement_if_positive(self, account_id: str) -> bool:
        return True

    def increment(self, account_id: str) -> None:
        raise RuntimeError("ledger offline")


def _settings(tmp_path: Path) -> Settings:
    settings = Settings.from_env(db_path=tmp_path / "service.db")
    settings.provider.kind = "dummy"
    settings.orchestrator.semantic_validation_enabled = False
    return settings


def _single_choice_reply(request) -> str:
    return json.dumps(
        {
            "tasks": [
                {
                    "type": "single_choice",
                    "question": "Which simple machine is a ramp?",
                    "options": ["Lever", "Inclined plane", "Pulley", "Wheel"],
                    "correctIndex": 1,
                },
            ],
        },
    )


@pytest.fixture()
def ledger(tmp_path: Path):
    ledger = SqlQuotaLedger(tmp_path / "service.db")
    ledger.init_schema()
    yield ledger
    ledger.close()


@pytest.fixture()
def store(tmp_path: Path, ledger: SqlQuotaLedger):
    store = SqlWorksheetStore(tmp_path / "service.db")
    yield store
    store.close()


def test_generate_charges_one_unit_and_stores_result(tmp_path: Path, ledger, store) -> None:
    ledger.grant("teacher-1", 2)
    service = build_service(
        _settings(tmp_path),
        ledger=ledger,
        store=store,
        provider=DummyContentProvider(),
    )

    outcome = service.generate("teacher-1", _REQUEST)

    assert outcome.result.is_complete
    assert ledger.balance("teacher-1") == 1
    payload = store.load(outcome.worksheet_id)
    assert payload is not None
    assert len(payload["closed_tasks"]) == 2


def test_zero_balance_refuses_without_provider_call(
    tmp_path: Path,
    ledger,
    store,
    scripted_provider,
) -> None:
    provider = scripted_provider()
    service = build_service(_settings(tmp_path), ledger=ledger, store=store, provider=provider)

    with pytest.raises(QuotaExhaustedError) as caught:
        service.generate("teacher-1", _REQUEST)

    assert caught.value.account_id == "teacher-1"
    assert provider.requests == []


def test_primary_failure_restores_balance(tmp_path: Path, ledger, store, scripted_provider) -> None:
    ledger.grant("teacher-1", 1)
    provider = scripted_provider(
        generation=[ProviderError("Provider call timed out", code="timeout")],
    )
    service = build_service(_settings(tmp_path), ledger=ledger, store=store, provider=provider)

    with pytest.raises(GenerationFailedError) as caught:
        service.generate("teacher-1", _REQUEST)

    assert isinstance(caught.value.__cause__, ProviderError)
    assert caught.value.code == "generation_failed"
    assert ledger.balance("teacher-1") == 1


def test_invalid_request_is_not_charged(tmp_path: Path, ledger, store, scripted_provider) -> None:
    ledger.grant("teacher-1", 1)
    service = build_service(
        _settings(tmp_path),
        ledger=ledger,
        store=store,
        provider=scripted_provider(),
    )

    with pytest.raises(ValueError, match="Grade"):
        service.generate(
            "teacher-1",
            ContentRequest(
                subject="physics",
                grade=14,
                topic="Simple machines",
                task_types=CLOSED_TYPES,
                closed_count=2,
            ),
        )

    assert ledger.balance("teacher-1") == 1


def test_persistence_failure_still_returns_result(tmp_path: Path, ledger) -> None:
    ledger.grant("teacher-1", 1)
    broken_store = _BrokenStore()
    service = build_service(
        _settings(tmp_path),
        ledger=ledger,
        store=broken_store,
        provider=DummyContentProvider(),
    )

    outcome = service.generate("teacher-1", _REQUEST)

    assert broken_store.calls == 1
    assert uuid.UUID(outcome.worksheet_id)
    assert outcome.result.is_complete
    assert ledger.balance("teacher-1") == 0


def test_rollback_failure_keeps_original_error(tmp_path: Path, store, scripted_provider) -> None:
    provider = scripted_provider(generation=["no json"])
    service = build_service(
        _settings(tmp_path),
        ledger=_BrokenLedger(),
        store=store,
        provider=provider,
    )

    with pytest.raises(GenerationFailedError) as caught:
        service.generate("teacher-1", _REQUEST)

    assert isinstance(caught.value.__cause__, ProviderError)


def test_regenerate_task_charges_one_unit(tmp_path: Path, ledger, store, scripted_provider) -> None:
    ledger.grant("teacher-1", 1)
    provider = scripted_provider(generation=[_single_choice_reply])
    service = build_service(_settings(tmp_path), ledger=ledger, store=store, provider=provider)

    task = service.regenerate_task("teacher-1", _REQUEST, TaskType.SINGLE_CHOICE)

    assert task.task_type == TaskType.SINGLE_CHOICE
    assert ledger.balance("teacher-1") == 0


def test_failed_regeneration_is_rolled_back(
    tmp_path: Path,
    ledger,
    store,
    scripted_provider,
) -> None:
    ledger.grant("teacher-1", 1)
    provider = scripted_provider(generation=[_single_choice_reply])
    service = build_service(_settings(tmp_path), ledger=ledger, store=store, provider=provider)

    with pytest.raises(GenerationFailedError):
        service.regenerate_task("teacher-1", _REQUEST, TaskType.MATCHING)

    assert ledger.balance("teacher-1") == 1


def test_invalid_regeneration_request_is_not_charged(
    tmp_path: Path,
    ledger,
    store,
    scripted_provider,
) -> None:
    ledger.grant("teacher-1", 1)
    provider = scripted_provider(generation=[_single_choice_reply])
    service = build_service(_settings(tmp_path), ledger=ledger, store=store, provider=provider)

    with pytest.raises(ValueError, match="Topic"):
        service.regenerate_task(
            "teacher-1",
            ContentRequest(
                subject="physics",
                grade=8,
                topic="x",
                task_types=CLOSED_TYPES,
                closed_count=2,
            ),
            TaskType.SINGLE_CHOICE,
        )

    assert provider.requests == []
    assert ledger.balance("teacher-1") == 1


def test_services_share_the_given_breaker(tmp_path: Path, ledger, store, scripted_provider) -> None:
    breaker = CircuitBreaker(failure_threshold=1)
    breaker.record_failure()
    ledger.grant("teacher-1", 1)
    provider = scripted_provider(generation=[_single_choice_reply])
    service = build_service(
        _settings(tmp_path),
        ledger=ledger,
        store=store,
        provider=provider,
        breaker=breaker,
    )

    outcome = service.generate("teacher-1", _REQUEST)

    assert outcome.result.telemetry.breaker_skipped
    assert len(provider.requests) == 1
