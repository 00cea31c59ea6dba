"""Semantic validation agents and the auto-fix pass over their findings."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from worksheet_gen.config import OrchestratorSettings
from worksheet_gen.generation.decoding import describe_json_error, find_json_span, loads_lenient
from worksheet_gen.generation.errors import ProviderError
from worksheet_gen.generation.fixer import TaskFixer
from worksheet_gen.generation.models import (
    AgentIssue,
    AgentReport,
    ContentRequest,
    FixResult,
    GeneratedTask,
    SemanticValidationResult,
    Severity,
    TokenUsage,
)
from worksheet_gen.generation.prompts import build_agent_prompt, build_system_prompt
from worksheet_gen.generation.provider.base import ContentProvider, ProviderRequest, ProviderRole

logger = logging.getLogger(__name__)

AGENT_MAX_OUTPUT_TOKENS = 4000
AGENT_TEMPERATURE = 0.1
AGENT_LEVEL_INDEX = -1


@dataclass(frozen=True, slots=True)
class AgentSpec:
    """One semantic review pass: its instructions and how statuses map to codes."""

    name: str
    instructions: str
    error_code: str
    error_suggestion: str
    warning_code: str | None = None
    warning_suggestion: str | None = None


ANSWER_VERIFIER = AgentSpec(
    name="answer-verifier",
    instructions=(
        "You are a teacher checking a worksheet. For every task: solve it yourself, "
        "compare your answer with the stated one, and if they differ describe the "
        'mistake and give the correct answer. Use "error" for a wrong stated answer.'
    ),
    error_code="WRONG_ANSWER",
    error_suggestion="Regenerate the task or correct the stated answer",
)
CONTENT_CHECKER = AgentSpec(
    name="content-checker",
    instructions=(
        "You are a curriculum methodologist. For every task check that it matches the "
        "topic, stays within the grade curriculum, and uses only terms the student "
        'already knows. Use "error" when the task does not match the topic or grade '
        'at all, "warning" when it partly goes beyond the grade.'
    ),
    error_code="OFF_TOPIC",
    error_suggestion="Regenerate the task on the requested topic",
    warning_code="PARTIAL_MISMATCH",
    warning_suggestion="Check the task against the grade curriculum",
)
QUALITY_CHECKER = AgentSpec(
    name="quality-checker",
    instructions=(
        "You are an editor of teaching materials. For every task check the wording: "
        "it must be unambiguous, grammatical and age-appropriate, and distractors must "
        'be plausible. Use "error" for a badly formulated task and "warning" when the '
        "task does not match the requested difficulty."
    ),
    error_code="BAD_FORMULATION",
    error_suggestion="Rewrite the task wording",
    warning_code="DIFFICULTY_MISMATCH",
    warning_suggestion="Re-create the task at the requested difficulty",
)

DEFAULT_AGENTS: tuple[AgentSpec, ...] = (ANSWER_VERIFIER, CONTENT_CHECKER, QUALITY_CHECKER)


def run_agent(
    provider: ContentProvider,
    spec: AgentSpec,
    tasks: Sequence[GeneratedTask],
    request: ContentRequest,
) -> AgentReport:
    """Run one agent over the batch. Failures come back as an annotated report."""

    started = time.monotonic()
    provider_request = ProviderRequest(
        system_instructions=build_system_prompt(request),
        user_instructions=build_agent_prompt(spec.instructions, tasks, request),
        max_output_tokens=AGENT_MAX_OUTPUT_TOKENS,
        temperature=AGENT_TEMPERATURE,
        label=ProviderRole.AGENT,
    )
    try:
        reply = provider.complete(provider_request)
    except ProviderError as error:
        logger.warning("Agent %s failed: %s", spec.name, error.message)
        return _failed_report(spec, "AGENT_ERROR", error.message)

    usage = reply.usage
    span = find_json_span(reply.text)
    if span is None:
        logger.warning("Agent %s returned no JSON", spec.name)
        return _failed_report(
            spec,
            "NO_JSON_RESPONSE",
            "Agent reply contains no JSON object",
            usage=usage,
        )
    try:
        payload = loads_lenient(span)
    except (ValueError, RecursionError) as error:
        reason = describe_json_error(error)
        logger.warning("Agent %s returned undecodable JSON: %s", spec.name, reason)
        return _failed_report(
            spec,
            "JSON_PARSE_ERROR",
            f"Agent reply JSON is invalid: {reason}",
            usage=usage,
        )
    entries = payload.get("tasks") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        logger.warning("Agent %s reply has no 'tasks' list", spec.name)
        return _failed_report(
            spec,
            "JSON_PARSE_ERROR",
            "Agent reply has no 'tasks' list",
            usage=usage,
        )

    issues = [
        issue
        for entry in entries
        if (issue := _issue_from_entry(spec, entry, len(tasks))) is not None
    ]
    logger.info(
        "Agent %s done in %d ms: %d errors, %d warnings",
        spec.name,
        int((time.monotonic() - started) * 1000),
        sum(1 for issue in issues if issue.severity == Severity.ERROR),
        sum(1 for issue in issues if issue.severity == Severity.WARNING),
    )
    return AgentReport(agent_name=spec.name, issues=issues, completed=True, usage=usage)


class SemanticValidator:
    """Fan agents out over a batch, merge their findings, then auto-fix."""

    def __init__(
        self,
        provider: ContentProvider,
        settings: OrchestratorSettings,
        *,
        agents: Sequence[AgentSpec] = DEFAULT_AGENTS,
        fixer: TaskFixer | None = None,
    ) -> None:
        self._provider = provider
        self._settings = settings
        self._agents = tuple(agents)
        self._fixer = fixer or TaskFixer(provider)

    def run_validation(
        self,
        tasks: Sequence[GeneratedTask],
        request: ContentRequest,
        *,
        auto_fix: bool,
    ) -> SemanticValidationResult:
        batch = list(tasks)
        if not batch or not self._agents:
            return SemanticValidationResult(fixed_tasks=batch)

        reports = self._run_agents(batch, request)
        issues = [issue for report in reports for issue in report.issues]
        result = SemanticValidationResult(
            fixed_tasks=list(batch),
            issues=issues,
            agent_reports=reports,
        )
        flagged = result.problem_indices
        logger.info(
            "Semantic validation: %d tasks, %d issues, %d flagged",
            len(batch),
            len([issue for issue in issues if issue.task_index >= 0]),
            len(flagged),
        )
        if auto_fix and flagged:
            result.fix_results = self._fix_flagged(result, request, flagged)
        return result

    def _run_agents(
        self,
        tasks: list[GeneratedTask],
        request: ContentRequest,
    ) -> list[AgentReport]:
        reports: dict[str, AgentReport] = {}
        with ThreadPoolExecutor(max_workers=len(self._agents)) as executor:
            future_to_spec = {
                executor.submit(run_agent, self._provider, spec, tasks, request): spec
                for spec in self._agents
            }
            for future in as_completed(future_to_spec):
                spec = future_to_spec[future]
                try:
                    reports[spec.name] = future.result()
                except Exception as error:  # noqa: BLE001
                    logger.exception("Agent %s crashed", spec.name)
                    reports[spec.name] = _failed_report(spec, "AGENT_ERROR", str(error))
        return [reports[spec.name] for spec in self._agents]

    def _fix_flagged(
        self,
        result: SemanticValidationResult,
        request: ContentRequest,
        flagged: list[int],
    ) -> list[FixResult]:
        to_fix = flagged[: self._settings.max_fixes]
        if len(flagged) > len(to_fix):
            logger.info("Fixing %d of %d flagged tasks (limit reached)", len(to_fix), len(flagged))
        by_task = result.issues_by_task()
        fix_results: list[FixResult] = []
        for task_index in to_fix:
            first_error = next(
                issue for issue in by_task[task_index] if issue.severity == Severity.ERROR
            )
            fix_result = self._fixer.fix(
                result.fixed_tasks[task_index],
                first_error,
                request,
                task_index=task_index,
            )
            if fix_result.success and fix_result.replacement_task is not None:
                result.fixed_tasks[task_index] = fix_result.replacement_task
            fix_results.append(fix_result)
        return fix_results


def _issue_from_entry(spec: AgentSpec, entry: object, task_count: int) -> AgentIssue | None:
    if not isinstance(entry, dict):
        return None
    index = entry.get("index")
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < task_count:
        return None
    status = str(entry.get("status", "ok")).strip().lower()
    raw_issue = entry.get("issue")
    message = raw_issue.strip() if isinstance(raw_issue, str) and raw_issue.strip() else ""
    if status == "error":
        return AgentIssue(
            task_index=index,
            agent_name=spec.name,
            code=spec.error_code,
            message=message or f"Flagged by {spec.name} without details",
            severity=Severity.ERROR,
            suggestion=spec.error_suggestion,
        )
    if status == "warning" and spec.warning_code is not None:
        return AgentIssue(
            task_index=index,
            agent_name=spec.name,
            code=spec.warning_code,
            message=message or f"Warning from {spec.name} without details",
            severity=Severity.WARNING,
            suggestion=spec.warning_suggestion,
        )
    return None


def _failed_report(
    spec: AgentSpec,
    code: str,
    message: str,
    *,
    usage: TokenUsage | None = None,
) -> AgentReport:
    return AgentReport(
        agent_name=spec.name,
        issues=[
            AgentIssue(
                task_index=AGENT_LEVEL_INDEX,
                agent_name=spec.name,
                code=code,
                message=f"Agent could not complete its check: {message}",
                severity=Severity.WARNING,
            ),
        ],
        completed=False,
        usage=usage,
    )
