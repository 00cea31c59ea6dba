"""Turn raw provider text into typed tasks.

Every failure surfaces as `ProviderError` with ``code="malformed_output"``;
individual items with the wrong shape are skipped and counted instead.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from worksheet_gen.generation.errors import ProviderError
from worksheet_gen.generation.models import (
    Blank,
    FillBlankTask,
    GeneratedTask,
    MatchingTask,
    MultipleChoiceTask,
    OpenQuestionTask,
    SingleChoiceTask,
    TaskType,
)

logger = logging.getLogger(__name__)

_INVALID_ESCAPE = re.compile(r'\\(?!["\\/bfnrtu])')


@dataclass(slots=True)
class DecodedBatch:
    """Tasks decoded from one reply and the number of skipped items."""

    tasks: list[GeneratedTask] = field(default_factory=list)
    discarded: int = 0


def find_json_span(raw: str) -> str | None:
    """Return the first balanced ``{...}`` span of `raw`, or ``None``.

    Braces inside JSON strings do not count, and escaped quotes do not end a
    string, so code fences and surrounding prose are skipped naturally.
    """

    start = raw.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for position in range(start, len(raw)):
        char = raw[position]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return raw[start : position + 1]
    return None


def loads_lenient(span: str) -> Any:
    """Decode JSON, retrying once with invalid escape sequences removed.

    Models writing formulas often emit ``\\(`` or ``\\frac`` inside strings;
    dropping the lone backslash keeps the text readable.
    """

    try:
        return json.loads(span)
    except json.JSONDecodeError:
        return json.loads(_INVALID_ESCAPE.sub("", span))


def describe_json_error(error: ValueError | RecursionError) -> str:
    """Short reason for a failed ``json.loads``."""

    if isinstance(error, json.JSONDecodeError):
        return error.msg
    if isinstance(error, RecursionError):
        return "nesting is too deep"
    return str(error)


def extract_json_object(raw: str) -> dict[str, Any]:
    span = find_json_span(raw)
    if span is None:
        raise ProviderError("Provider reply contains no JSON object", code="malformed_output")
    try:
        payload = loads_lenient(span)
    except (ValueError, RecursionError) as exc:
        # JSONDecodeError, oversized integer literals and runaway nesting alike.
        raise ProviderError(
            f"Provider reply JSON could not be decoded: {describe_json_error(exc)}",
            code="malformed_output",
        ) from exc
    if not isinstance(payload, dict):
        raise ProviderError("Provider reply JSON is not an object", code="malformed_output")
    return payload


def decode_task_batch(raw: str) -> DecodedBatch:
    """Decode a ``{"tasks": [...]}`` reply into typed tasks."""

    payload = extract_json_object(raw)
    items = payload.get("tasks")
    if not isinstance(items, list):
        raise ProviderError("Provider reply has no 'tasks' list", code="malformed_output")

    batch = DecodedBatch()
    for position, item in enumerate(items):
        task = task_from_payload(item) if isinstance(item, Mapping) else None
        if task is None:
            batch.discarded += 1
            logger.debug("Skipping undecodable task item at position %d", position)
            continue
        batch.tasks.append(task)
    if batch.discarded:
        logger.info(
            "Decoded %d tasks, skipped %d malformed items",
            len(batch.tasks),
            batch.discarded,
        )
    return batch


def task_from_payload(item: Mapping[str, Any]) -> GeneratedTask | None:
    """Build the task named by ``item["type"]``; ``None`` on unknown type or bad shape."""

    raw_type = item.get("type")
    if not isinstance(raw_type, str):
        return None
    try:
        task_type = TaskType(raw_type.strip().lower())
    except ValueError:
        return None
    return task_from_payload_as(item, task_type)


def task_from_payload_as(  # noqa: PLR0911
    item: Mapping[str, Any],
    task_type: TaskType,
) -> GeneratedTask | None:
    """Build a task of `task_type` from `item`, ignoring its ``type`` key."""

    if task_type == TaskType.SINGLE_CHOICE:
        question = _text(item, "question")
        options = _text_list(item, "options")
        correct_index = _integer(item.get("correctIndex"))
        if question is None or options is None or correct_index is None:
            return None
        return SingleChoiceTask(
            question=question,
            options=options,
            correct_index=correct_index,
            explanation=_text(item, "explanation") or "",
        )
    if task_type == TaskType.MULTIPLE_CHOICE:
        question = _text(item, "question")
        options = _text_list(item, "options")
        correct_indices = _integer_list(item.get("correctIndices"))
        if question is None or options is None or correct_indices is None:
            return None
        return MultipleChoiceTask(
            question=question,
            options=options,
            correct_indices=correct_indices,
            explanation=_text(item, "explanation") or "",
        )
    if task_type == TaskType.OPEN_QUESTION:
        question = _text(item, "question")
        answer = _text(item, "correctAnswer")
        if question is None or answer is None:
            return None
        return OpenQuestionTask(
            question=question,
            correct_answer=answer,
            acceptable_variants=_text_list(item, "acceptableVariants") or [],
        )
    if task_type == TaskType.MATCHING:
        instruction = _text(item, "instruction")
        left = _text_list(item, "leftColumn")
        right = _text_list(item, "rightColumn")
        pairs = _pairs(item.get("correctPairs"))
        if instruction is None or left is None or right is None or pairs is None:
            return None
        return MatchingTask(
            instruction=instruction,
            left_column=left,
            right_column=right,
            correct_pairs=pairs,
        )
    text = _text(item, "textWithBlanks")
    blanks = _blanks(item.get("blanks"))
    if text is None or blanks is None:
        return None
    return FillBlankTask(text_with_blanks=text, blanks=blanks)


def _text(item: Mapping[str, Any], key: str) -> str | None:
    value = item.get(key)
    if isinstance(value, str):
        return value
    return None


def _text_list(item: Mapping[str, Any], key: str) -> list[str] | None:
    value = item.get(key)
    if not isinstance(value, list):
        return None
    if not all(isinstance(entry, str) for entry in value):
        return None
    return list(value)


def _integer(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _integer_list(value: Any) -> list[int] | None:
    if not isinstance(value, list):
        return None
    result: list[int] = []
    for entry in value:
        number = _integer(entry)
        if number is None:
            return None
        result.append(number)
    return result


def _pairs(value: Any) -> list[tuple[int, int]] | None:
    if not isinstance(value, list):
        return None
    pairs: list[tuple[int, int]] = []
    for entry in value:
        numbers = _integer_list(entry)
        if numbers is None or len(numbers) != 2:  # noqa: PLR2004
            return None
        pairs.append((numbers[0], numbers[1]))
    return pairs


def _blanks(value: Any) -> list[Blank] | None:
    if not isinstance(value, list):
        return None
    blanks: list[Blank] = []
    for entry in value:
        if not isinstance(entry, Mapping):
            return None
        position = _integer(entry.get("position"))
        answer = _text(entry, "correctAnswer")
        if position is None or answer is None:
            return None
        blanks.append(
            Blank(
                position=position,
                correct_answer=answer,
                acceptable_variants=_text_list(entry, "acceptableVariants") or [],
            ),
        )
    return blanks
