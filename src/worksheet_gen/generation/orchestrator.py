"""One generation episode: plan, primary call, backfill, validation, repair."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from worksheet_gen.config import OrchestratorSettings
from worksheet_gen.generation.agents import SemanticValidator
from worksheet_gen.generation.breaker import CircuitBreaker
from worksheet_gen.generation.decoding import decode_task_batch
from worksheet_gen.generation.errors import ProviderError
from worksheet_gen.generation.failure_classifier import classify_provider_failure
from worksheet_gen.generation.models import (
    ContentRequest,
    EpisodeResult,
    EpisodeTelemetry,
    GeneratedTask,
    TaskCategory,
    TaskDistribution,
    TaskType,
    ValidationReport,
)
from worksheet_gen.generation.planner import distribution_counts, plan_all
from worksheet_gen.generation.prompts import (
    build_backfill_prompt,
    build_generation_prompt,
    build_regenerate_prompt,
    build_system_prompt,
)
from worksheet_gen.generation.provider.base import ContentProvider, ProviderRequest, ProviderRole
from worksheet_gen.generation.validator import validate_task, validate_tasks

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], None]
Clock = Callable[[], float]
TaskValidator = Callable[..., ValidationReport]

PRIMARY_MAX_OUTPUT_TOKENS = 8000
PRIMARY_TEMPERATURE = 0.5
BACKFILL_MAX_OUTPUT_TOKENS = 4000
BACKFILL_TEMPERATURE = 0.4
REGENERATE_MAX_OUTPUT_TOKENS = 2000
REGENERATE_TEMPERATURE = 0.5


@dataclass(slots=True)
class _Collected:
    closed: list[GeneratedTask] = field(default_factory=list)
    open: list[GeneratedTask] = field(default_factory=list)

    def add(self, tasks: Sequence[GeneratedTask]) -> None:
        for task in tasks:
            if task.task_type.category == TaskCategory.CLOSED:
                self.closed.append(task)
            else:
                self.open.append(task)

    def type_counts(self) -> dict[TaskType, int]:
        counts: dict[TaskType, int] = {}
        for task in (*self.closed, *self.open):
            counts[task.task_type] = counts.get(task.task_type, 0) + 1
        return counts


def backoff_delay_seconds(attempt: int, *, base_seconds: float) -> float:
    """Delay before backfill attempt `attempt` (1-based): base, 2*base, 4*base..."""

    return base_seconds * (2 ** max(attempt - 1, 0))


def backfill_breakdown(
    plan: Sequence[TaskDistribution],
    collected: dict[TaskType, int],
    *,
    missing_closed: int,
    missing_open: int,
) -> list[TaskDistribution]:
    """Per-type deficits of the plan, trimmed to what each category still misses."""

    remaining = {TaskCategory.CLOSED: missing_closed, TaskCategory.OPEN: missing_open}
    breakdown: list[TaskDistribution] = []
    for entry in plan:
        category = entry.task_type.category
        deficit = max(entry.count - collected.get(entry.task_type, 0), 0)
        count = min(deficit, remaining[category])
        if count > 0:
            breakdown.append(TaskDistribution(task_type=entry.task_type, count=count))
            remaining[category] -= count
    return breakdown


class GenerationOrchestrator:
    """Compose planner, provider, breaker, validators and fixer into one episode.

    Only a failed primary call aborts the episode (`ProviderError` propagates).
    Backfill failures are recorded on the shared breaker and the loop goes on
    while attempts, breaker and episode deadline allow.
    """

    def __init__(  # noqa: PLR0913
        self,
        provider: ContentProvider,
        breaker: CircuitBreaker,
        *,
        settings: OrchestratorSettings,
        validator: TaskValidator = validate_tasks,
        semantic_validator: SemanticValidator | None = None,
        sleeper: Sleeper = time.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self._provider = provider
        self._breaker = breaker
        self._settings = settings
        self._validator = validator
        self._semantic_validator = semantic_validator
        self._sleeper = sleeper
        self._clock = clock

    def run(self, request: ContentRequest) -> EpisodeResult:
        request.validate()
        started = self._clock()
        deadline = started + self._settings.episode_deadline_seconds
        telemetry = EpisodeTelemetry(
            requested_closed=request.closed_count,
            requested_open=request.open_count,
            breaker_state_start=self._breaker.snapshot().state,
        )

        if request.total_count == 0:
            telemetry.breaker_state_end = self._breaker.snapshot().state
            return EpisodeResult(
                request=request,
                closed_tasks=[],
                open_tasks=[],
                telemetry=telemetry,
            )

        plan = plan_all(request.closed_count, request.open_count, request.task_types)
        target_closed, target_open = _category_totals(plan)
        if (target_closed, target_open) != (request.closed_count, request.open_count):
            logger.warning(
                "Selected task types cannot cover the request: planned closed=%d/%d open=%d/%d",
                target_closed,
                request.closed_count,
                target_open,
                request.open_count,
            )
        logger.info(
            "Episode started: subject=%s grade=%d plan=%s",
            request.subject,
            request.grade,
            ", ".join(f"{entry.task_type.value}={entry.count}" for entry in plan),
        )

        collected = _Collected()
        if plan:
            reply = self._provider.complete(
                ProviderRequest(
                    system_instructions=build_system_prompt(request),
                    user_instructions=build_generation_prompt(request, plan),
                    max_output_tokens=PRIMARY_MAX_OUTPUT_TOKENS,
                    temperature=PRIMARY_TEMPERATURE,
                    label=ProviderRole.GENERATION,
                ),
            )
            telemetry.record_usage(ProviderRole.GENERATION.value, reply.usage)
            primary = decode_task_batch(reply.text)
            telemetry.discarded_items += primary.discarded
            collected.add(primary.tasks)
            logger.info(
                "Primary call returned closed=%d/%d open=%d/%d",
                len(collected.closed),
                target_closed,
                len(collected.open),
                target_open,
            )

        self._backfill(request, plan, collected, telemetry, deadline, target_closed, target_open)

        closed_tasks, open_tasks = self._drop_structurally_invalid(request, collected, telemetry)
        closed_tasks = closed_tasks[: request.closed_count]
        open_tasks = open_tasks[: request.open_count]

        closed_tasks, open_tasks = self._validate_semantics(
            request,
            closed_tasks,
            open_tasks,
            telemetry,
        )

        telemetry.delivered_closed = len(closed_tasks)
        telemetry.delivered_open = len(open_tasks)
        telemetry.breaker_state_end = self._breaker.snapshot().state
        telemetry.duration_ms = int((self._clock() - started) * 1000)
        result = EpisodeResult(
            request=request,
            closed_tasks=closed_tasks,
            open_tasks=open_tasks,
            telemetry=telemetry,
        )
        log = logger.info if result.is_complete else logger.warning
        log(
            "Episode finished: closed=%d/%d open=%d/%d backfill_attempts=%d duration_ms=%d "
            "tokens=%d",
            telemetry.delivered_closed,
            request.closed_count,
            telemetry.delivered_open,
            request.open_count,
            telemetry.attempts,
            telemetry.duration_ms,
            telemetry.total_usage.total_tokens,
        )
        return result

    def regenerate_task(self, request: ContentRequest, task_type: TaskType) -> GeneratedTask:
        """Ask for one fresh task of `task_type`; raise `ProviderError` unless it is valid."""

        request.validate()
        reply = self._provider.complete(
            ProviderRequest(
                system_instructions=build_system_prompt(request),
                user_instructions=build_regenerate_prompt(request, task_type),
                max_output_tokens=REGENERATE_MAX_OUTPUT_TOKENS,
                temperature=REGENERATE_TEMPERATURE,
                label=ProviderRole.GENERATION,
            ),
        )
        decoded = decode_task_batch(reply.text)
        candidate = next((task for task in decoded.tasks if task.task_type == task_type), None)
        if candidate is None:
            raise ProviderError(
                f"Provider reply holds no {task_type.value} task",
                code="malformed_output",
            )
        report = validate_task(candidate, subject=request.subject, grade=request.grade)
        if not report.valid:
            codes = ", ".join(sorted({issue.code for issue in report.errors}))
            raise ProviderError(
                f"Regenerated task failed structural validation: {codes}",
                code="malformed_output",
            )
        logger.info(
            "Regenerated one %s task (tokens=%s)",
            task_type.value,
            reply.usage.total_tokens if reply.usage is not None else "n/a",
        )
        return candidate

    def _backfill(  # noqa: PLR0913
        self,
        request: ContentRequest,
        plan: list[TaskDistribution],
        collected: _Collected,
        telemetry: EpisodeTelemetry,
        deadline: float,
        target_closed: int,
        target_open: int,
    ) -> None:
        while telemetry.attempts < self._settings.max_retries:
            missing_closed = max(target_closed - len(collected.closed), 0)
            missing_open = max(target_open - len(collected.open), 0)
            if missing_closed == 0 and missing_open == 0:
                return
            if self._breaker.is_open():
                telemetry.breaker_skipped = True
                logger.warning(
                    "Circuit breaker is open, skipping backfill (missing closed=%d open=%d)",
                    missing_closed,
                    missing_open,
                )
                return

            attempt = telemetry.attempts + 1
            delay = backoff_delay_seconds(attempt, base_seconds=self._settings.backoff_base_seconds)
            if self._clock() + delay >= deadline:
                telemetry.deadline_reached = True
                logger.warning("Episode deadline reached before backfill attempt %d", attempt)
                return
            self._sleeper(delay)
            if self._clock() >= deadline:
                telemetry.deadline_reached = True
                logger.warning("Episode deadline reached before backfill attempt %d", attempt)
                return

            breakdown = backfill_breakdown(
                plan,
                collected.type_counts(),
                missing_closed=missing_closed,
                missing_open=missing_open,
            )
            telemetry.attempts = attempt
            logger.info(
                "Backfill attempt %d/%d: missing closed=%d open=%d",
                attempt,
                self._settings.max_retries,
                missing_closed,
                missing_open,
            )
            try:
                reply = self._provider.complete(
                    ProviderRequest(
                        system_instructions=build_system_prompt(request),
                        user_instructions=build_backfill_prompt(
                            request,
                            breakdown,
                            [*collected.closed, *collected.open],
                        ),
                        max_output_tokens=BACKFILL_MAX_OUTPUT_TOKENS,
                        temperature=BACKFILL_TEMPERATURE,
                        label=ProviderRole.GENERATION,
                    ),
                )
                telemetry.record_usage(ProviderRole.GENERATION.value, reply.usage)
                decoded = decode_task_batch(reply.text)
            except ProviderError as error:
                self._breaker.record_failure()
                classification = classify_provider_failure(error)
                telemetry.backfill_failed += 1
                telemetry.backfill_failure_reasons.append(classification.reason_code)
                logger.warning(
                    "Backfill attempt %d failed: %s (%s)",
                    attempt,
                    error.message,
                    classification.to_log_details(),
                )
                continue

            self._breaker.record_success()
            telemetry.backfill_succeeded += 1
            telemetry.discarded_items += decoded.discarded
            collected.add(decoded.tasks)
            if not decoded.tasks:
                logger.warning("Backfill attempt %d returned no usable tasks", attempt)

    def _drop_structurally_invalid(
        self,
        request: ContentRequest,
        collected: _Collected,
        telemetry: EpisodeTelemetry,
    ) -> tuple[list[GeneratedTask], list[GeneratedTask]]:
        merged = [*collected.closed, *collected.open]
        report = self._validator(merged, subject=request.subject, grade=request.grade)
        telemetry.structural_errors = list(report.errors)
        telemetry.structural_warnings = list(report.warnings)
        invalid = report.invalid_indices()
        if not invalid:
            return list(collected.closed), list(collected.open)

        offset = len(collected.closed)
        closed_tasks = [task for index, task in enumerate(collected.closed) if index not in invalid]
        open_tasks = [
            task for index, task in enumerate(collected.open) if offset + index not in invalid
        ]
        telemetry.dropped_tasks = len(invalid)
        logger.warning(
            "Dropped %d structurally invalid tasks: %s",
            len(invalid),
            ", ".join(sorted({issue.code for issue in report.errors})),
        )
        return closed_tasks, open_tasks

    def _validate_semantics(
        self,
        request: ContentRequest,
        closed_tasks: list[GeneratedTask],
        open_tasks: list[GeneratedTask],
        telemetry: EpisodeTelemetry,
    ) -> tuple[list[GeneratedTask], list[GeneratedTask]]:
        if (
            self._semantic_validator is None
            or not self._settings.semantic_validation_enabled
            or not (closed_tasks or open_tasks)
        ):
            return closed_tasks, open_tasks

        result = self._semantic_validator.run_validation(
            [*closed_tasks, *open_tasks],
            request,
            auto_fix=self._settings.auto_fix,
        )
        telemetry.semantic_issues = list(result.issues)
        telemetry.unresolved_issues = result.unresolved_issues
        telemetry.fix_attempts = len(result.fix_results)
        telemetry.auto_fixed = sum(1 for fix in result.fix_results if fix.success)
        for report in result.agent_reports:
            telemetry.record_usage(ProviderRole.AGENT.value, report.usage)
        for fix in result.fix_results:
            telemetry.record_usage(ProviderRole.FIXER.value, fix.usage)
        split = len(closed_tasks)
        return result.fixed_tasks[:split], result.fixed_tasks[split:]


def _category_totals(plan: Sequence[TaskDistribution]) -> tuple[int, int]:
    closed = 0
    open_ = 0
    for task_type, count in distribution_counts(plan).items():
        if task_type.category == TaskCategory.CLOSED:
            closed += count
        else:
            open_ += count
    return closed, open_
