"""Targeted single-task repair through the provider."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from worksheet_gen.generation.decoding import (
    extract_json_object,
    task_from_payload,
    task_from_payload_as,
)
from worksheet_gen.generation.errors import ProviderError
from worksheet_gen.generation.models import (
    AgentIssue,
    ContentRequest,
    FixResult,
    GeneratedTask,
    TokenUsage,
)
from worksheet_gen.generation.prompts import build_fix_prompt, build_system_prompt
from worksheet_gen.generation.provider.base import ContentProvider, ProviderRequest, ProviderRole
from worksheet_gen.generation.validator import validate_task

logger = logging.getLogger(__name__)

FIX_MAX_OUTPUT_TOKENS = 3000
FIX_TEMPERATURE = 0.2


class TaskFixer:
    """Resubmit one flagged task with its issue and accept only a valid replacement."""

    def __init__(self, provider: ContentProvider) -> None:
        self._provider = provider

    def fix(
        self,
        task: GeneratedTask,
        issue: AgentIssue,
        request: ContentRequest,
        *,
        task_index: int,
    ) -> FixResult:
        """Never raises: every failure becomes ``FixResult(success=False)``."""

        provider_request = ProviderRequest(
            system_instructions=build_system_prompt(request),
            user_instructions=build_fix_prompt(task, issue, request),
            max_output_tokens=FIX_MAX_OUTPUT_TOKENS,
            temperature=FIX_TEMPERATURE,
            label=ProviderRole.FIXER,
        )
        usage: TokenUsage | None = None
        try:
            reply = self._provider.complete(provider_request)
            usage = reply.usage
            replacement = _decode_replacement(reply.text, task)
        except ProviderError as error:
            logger.warning(
                "Fix of task %d failed (%s): %s",
                task_index,
                issue.code,
                error.message,
            )
            return FixResult(
                task_index=task_index,
                success=False,
                issue_code=issue.code,
                error=error.message,
                usage=usage,
            )

        report = validate_task(replacement, subject=request.subject, grade=request.grade)
        if not report.valid:
            codes = ", ".join(sorted({found.code for found in report.errors}))
            logger.warning(
                "Fix of task %d rejected, replacement is structurally invalid: %s",
                task_index,
                codes,
            )
            return FixResult(
                task_index=task_index,
                success=False,
                issue_code=issue.code,
                error=f"Replacement failed structural validation: {codes}",
                usage=usage,
            )

        logger.info("Task %d fixed (%s)", task_index, issue.code)
        return FixResult(
            task_index=task_index,
            success=True,
            issue_code=issue.code,
            replacement_task=replacement,
            usage=usage,
        )


def _decode_replacement(raw: str, original: GeneratedTask) -> GeneratedTask:
    payload = extract_json_object(raw)
    item: object = payload
    nested = payload.get("tasks")
    if isinstance(nested, list):
        if len(nested) != 1:
            raise ProviderError(
                f"Fix reply must contain exactly one task, got {len(nested)}",
                code="malformed_output",
            )
        item = nested[0]
    if not isinstance(item, Mapping):
        raise ProviderError("Fix reply task is not an object", code="malformed_output")

    candidate = task_from_payload(item)
    if candidate is not None and candidate.task_type == original.task_type:
        return candidate
    # Type changed or missing: keep the reply only if it still reads as the original type.
    coerced = task_from_payload_as(item, original.task_type)
    if coerced is None:
        raise ProviderError(
            f"Fix reply does not decode as {original.task_type.value}",
            code="malformed_output",
        )
    return coerced
