"""Request-handling seam: quota charge, episode run, rollback and persistence."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol
from uuid import uuid4

from worksheet_gen.config import Settings
from worksheet_gen.generation.agents import SemanticValidator
from worksheet_gen.generation.breaker import CircuitBreaker
from worksheet_gen.generation.errors import GenerationFailedError, QuotaExhaustedError
from worksheet_gen.generation.models import (
    ContentRequest,
    EpisodeResult,
    GeneratedTask,
    TaskType,
)
from worksheet_gen.generation.orchestrator import GenerationOrchestrator
from worksheet_gen.generation.provider.base import ContentProvider, ProviderRole
from worksheet_gen.generation.provider.dummy_provider import DummyContentProvider
from worksheet_gen.generation.provider.http_provider import HttpContentProvider

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[], GenerationOrchestrator]


class QuotaLedger(Protocol):
    def decrement_if_positive(self, account_id: str) -> bool: ...

    def increment(self, account_id: str) -> None: ...


class WorksheetStore(Protocol):
    def store(self, account_id: str, result: EpisodeResult) -> str: ...


@dataclass(slots=True)
class GenerationOutcome:
    """Stored worksheet id and the episode that produced it."""

    worksheet_id: str
    result: EpisodeResult


class GenerationService:
    """Charge one quota unit per request and give it back when the episode fails."""

    def __init__(
        self,
        orchestrator_factory: OrchestratorFactory,
        ledger: QuotaLedger,
        store: WorksheetStore,
    ) -> None:
        self._orchestrator_factory = orchestrator_factory
        self._ledger = ledger
        self._store = store

    def generate(self, account_id: str, request: ContentRequest) -> GenerationOutcome:
        request.validate()
        self._charge(account_id)
        try:
            result = self._orchestrator_factory().run(request)
        except Exception as error:
            self._rollback(account_id)
            logger.exception("Generation failed for account %s", account_id)
            raise GenerationFailedError(
                f"Generation failed: {error}",
                account_id=account_id,
            ) from error

        try:
            worksheet_id = self._store.store(account_id, result)
        except Exception:  # noqa: BLE001
            worksheet_id = str(uuid4())
            logger.exception(
                "Failed to persist worksheet for account %s, returning local id %s",
                account_id,
                worksheet_id,
            )
        return GenerationOutcome(worksheet_id=worksheet_id, result=result)

    def regenerate_task(
        self,
        account_id: str,
        request: ContentRequest,
        task_type: TaskType,
    ) -> GeneratedTask:
        """Replace one task of a worksheet for one quota unit."""

        request.validate()
        self._charge(account_id)
        try:
            return self._orchestrator_factory().regenerate_task(request, task_type)
        except Exception as error:
            self._rollback(account_id)
            logger.exception("Task regeneration failed for account %s", account_id)
            raise GenerationFailedError(
                f"Task regeneration failed: {error}",
                account_id=account_id,
            ) from error

    def _charge(self, account_id: str) -> None:
        if not self._ledger.decrement_if_positive(account_id):
            raise QuotaExhaustedError(
                f"No generation quota left for account {account_id}",
                account_id=account_id,
            )

    def _rollback(self, account_id: str) -> None:
        try:
            self._ledger.increment(account_id)
        except Exception:  # noqa: BLE001
            logger.exception("Quota rollback failed for account %s", account_id)


def build_provider(settings: Settings) -> ContentProvider:
    if settings.provider.kind == "dummy":
        return DummyContentProvider()
    return HttpContentProvider(
        base_url=settings.provider.api_base_url,
        api_key=settings.provider.api_key,
        models={
            ProviderRole.GENERATION: settings.provider.generation_model,
            ProviderRole.AGENT: settings.provider.agents_model,
            ProviderRole.FIXER: settings.provider.fixer_model,
        },
        timeout_seconds=settings.provider.timeout_seconds,
    )


def build_breaker(settings: Settings) -> CircuitBreaker:
    return CircuitBreaker(
        failure_threshold=settings.breaker.failure_threshold,
        reset_timeout=settings.breaker.reset_timeout_seconds,
    )


def build_service(
    settings: Settings,
    *,
    ledger: QuotaLedger,
    store: WorksheetStore,
    provider: ContentProvider | None = None,
    breaker: CircuitBreaker | None = None,
) -> GenerationService:
    """Wire one service; the breaker is shared by every orchestrator it creates."""

    shared_provider = provider or build_provider(settings)
    shared_breaker = breaker or build_breaker(settings)
    orchestrator_settings = settings.orchestrator

    def orchestrator_factory() -> GenerationOrchestrator:
        return GenerationOrchestrator(
            shared_provider,
            shared_breaker,
            settings=orchestrator_settings,
            semantic_validator=SemanticValidator(shared_provider, orchestrator_settings),
        )

    return GenerationService(orchestrator_factory, ledger, store)
