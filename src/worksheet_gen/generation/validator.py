"""Rule-based structural validation of generated tasks."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import assert_never

from worksheet_gen.generation.models import (
    FillBlankTask,
    GeneratedTask,
    MatchingTask,
    MultipleChoiceTask,
    OpenQuestionTask,
    Severity,
    SingleChoiceTask,
    ValidationIssue,
    ValidationReport,
)

MIN_QUESTION_LENGTH = 10
MIN_OPTIONS = 2
FEW_OPTIONS_COUNT = 3
NUMERIC_SUBJECTS: frozenset[str] = frozenset({"math", "algebra", "geometry"})
GRADE_NUMBER_CEILINGS: dict[int, int] = {1: 20, 2: 100, 3: 1_000, 4: 1_000_000}

_BLANK_MARKER = re.compile(r"___\((\d+)\)___")
_NUMBER = re.compile(r"-?\d+(?:[.,]\d+)?")
_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True)
class _Collector:
    task_index: int
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    def error(self, field_name: str, code: str, message: str) -> None:
        self.errors.append(
            ValidationIssue(
                task_index=self.task_index,
                field=field_name,
                code=code,
                message=message,
                severity=Severity.ERROR,
            ),
        )

    def warning(self, field_name: str, code: str, message: str) -> None:
        self.warnings.append(
            ValidationIssue(
                task_index=self.task_index,
                field=field_name,
                code=code,
                message=message,
                severity=Severity.WARNING,
            ),
        )


def validate_tasks(
    tasks: Sequence[GeneratedTask],
    *,
    subject: str,
    grade: int,
) -> ValidationReport:
    """Check every task of a batch plus cross-task duplicates.

    The caller drops every task index referenced by an error; warnings are
    advisory only.
    """

    report = ValidationReport()
    seen_questions: set[str] = set()
    number_ceiling = number_ceiling_for(subject, grade)

    for index, task in enumerate(tasks):
        collector = _Collector(task_index=index)
        _check_task(task, collector)

        question = question_text(task)
        normalized = _normalize(question)
        if len(normalized) >= MIN_QUESTION_LENGTH:
            if normalized in seen_questions:
                collector.error(
                    "question",
                    "DUPLICATE_QUESTIONS",
                    f'Duplicate question: "{question.strip()[:50]}"',
                )
            else:
                seen_questions.add(normalized)
        _check_question_length(question, collector)

        if number_ceiling is not None:
            _check_numbers(task, number_ceiling, grade, collector)

        report.errors.extend(collector.errors)
        report.warnings.extend(collector.warnings)
    return report


def validate_task(task: GeneratedTask, *, subject: str, grade: int) -> ValidationReport:
    """Validate one task in isolation (index 0)."""

    return validate_tasks([task], subject=subject, grade=grade)


def question_text(task: GeneratedTask) -> str:
    """The text that plays the role of the question for `task`."""

    match task:
        case SingleChoiceTask() | MultipleChoiceTask() | OpenQuestionTask():
            return task.question
        case MatchingTask():
            return task.instruction
        case FillBlankTask():
            return task.text_with_blanks
        case _:
            assert_never(task)


def task_text_parts(task: GeneratedTask) -> list[str]:
    """Every human-readable string of `task`."""

    match task:
        case SingleChoiceTask() | MultipleChoiceTask():
            return [task.question, *task.options]
        case OpenQuestionTask():
            return [task.question, task.correct_answer]
        case MatchingTask():
            return [task.instruction, *task.left_column, *task.right_column]
        case FillBlankTask():
            return [task.text_with_blanks, *(blank.correct_answer for blank in task.blanks)]
        case _:
            assert_never(task)


def number_ceiling_for(subject: str, grade: int) -> int | None:
    """Largest absolute number expected in `subject` tasks for `grade`, if limited."""

    if subject.strip().lower() not in NUMERIC_SUBJECTS:
        return None
    return GRADE_NUMBER_CEILINGS.get(grade)


def _check_task(task: GeneratedTask, collector: _Collector) -> None:
    match task:
        case SingleChoiceTask():
            _check_single_choice(task, collector)
        case MultipleChoiceTask():
            _check_multiple_choice(task, collector)
        case OpenQuestionTask():
            _check_open_question(task, collector)
        case MatchingTask():
            _check_matching(task, collector)
        case FillBlankTask():
            _check_fill_blank(task, collector)
        case _:
            assert_never(task)


def _check_single_choice(task: SingleChoiceTask, collector: _Collector) -> None:
    options = task.options
    if not 0 <= task.correct_index < len(options):
        collector.error(
            "correctIndex",
            "INVALID_INDEX",
            f"correctIndex {task.correct_index} is outside [0, {len(options) - 1}]",
        )
    _check_question_present(task.question, collector)
    _check_options(options, collector)
    if len(options) == FEW_OPTIONS_COUNT:
        collector.warning("options", "FEW_OPTIONS", "Only 3 options (4 recommended)")


def _check_multiple_choice(task: MultipleChoiceTask, collector: _Collector) -> None:
    options = task.options
    for correct in task.correct_indices:
        if not 0 <= correct < len(options):
            collector.error(
                "correctIndices",
                "INVALID_INDEX",
                f"correctIndices contains {correct} outside [0, {len(options) - 1}]",
            )
    if len(set(task.correct_indices)) != len(task.correct_indices):
        collector.error("correctIndices", "DUPLICATE_INDICES", "correctIndices has duplicates")
    if not task.correct_indices:
        collector.error("correctIndices", "EMPTY_FIELD", "No correct options given")
    _check_question_present(task.question, collector)
    _check_options(options, collector)


def _check_open_question(task: OpenQuestionTask, collector: _Collector) -> None:
    if not task.correct_answer.strip():
        collector.error("correctAnswer", "EMPTY_FIELD", "Empty correct answer")
    _check_question_present(task.question, collector)


def _check_matching(task: MatchingTask, collector: _Collector) -> None:
    left = task.left_column
    right = task.right_column
    if not task.instruction.strip():
        collector.error("instruction", "EMPTY_FIELD", "Empty instruction")
    for column_name, column in (("leftColumn", left), ("rightColumn", right)):
        for position, item in enumerate(column):
            if not item.strip():
                collector.error(f"{column_name}[{position}]", "EMPTY_FIELD", "Empty column item")
    if len(left) != len(right):
        collector.error(
            "leftColumn/rightColumn",
            "COLUMN_LENGTH_MISMATCH",
            f"Column lengths differ: left={len(left)}, right={len(right)}",
        )
    if len(task.correct_pairs) != len(left):
        collector.error(
            "correctPairs",
            "INCOMPLETE_PAIRS",
            f"{len(task.correct_pairs)} pairs for {len(left)} left items",
        )

    used_left: set[int] = set()
    used_right: set[int] = set()
    for left_index, right_index in task.correct_pairs:
        if not 0 <= left_index < len(left):
            collector.error(
                "correctPairs",
                "INVALID_PAIR_INDEX",
                f"Left index {left_index} is outside [0, {len(left) - 1}]",
            )
        if not 0 <= right_index < len(right):
            collector.error(
                "correctPairs",
                "INVALID_PAIR_INDEX",
                f"Right index {right_index} is outside [0, {len(right) - 1}]",
            )
        if left_index in used_left:
            collector.error(
                "correctPairs",
                "DUPLICATE_PAIRS",
                f"Left index {left_index} is paired twice",
            )
        if right_index in used_right:
            collector.error(
                "correctPairs",
                "DUPLICATE_PAIRS",
                f"Right index {right_index} is paired twice",
            )
        used_left.add(left_index)
        used_right.add(right_index)

    _check_duplicates(left, "leftColumn", collector)
    _check_duplicates(right, "rightColumn", collector)


def _check_fill_blank(task: FillBlankTask, collector: _Collector) -> None:
    text = task.text_with_blanks
    if not text.strip():
        collector.error("textWithBlanks", "EMPTY_FIELD", "Empty text")
    markers = {int(found) for found in _BLANK_MARKER.findall(text)}
    if len(markers) != len(task.blanks):
        collector.error(
            "textWithBlanks/blanks",
            "BLANK_MARKER_MISMATCH",
            f"{len(markers)} markers in text, {len(task.blanks)} blank definitions",
        )
    defined = set()
    for blank in task.blanks:
        defined.add(blank.position)
        if blank.position not in markers:
            collector.error(
                f"blanks[{blank.position}]",
                "MISSING_BLANK",
                f"Marker ___({blank.position})___ is not in the text",
            )
        if not blank.correct_answer.strip():
            collector.error(
                f"blanks[{blank.position}].correctAnswer",
                "EMPTY_FIELD",
                "Empty blank answer",
            )
    for position in sorted(markers - defined):
        collector.error(
            "blanks",
            "MISSING_BLANK",
            f"Marker ___({position})___ has no blank definition",
        )


def _check_question_present(question: str, collector: _Collector) -> None:
    if not question.strip():
        collector.error("question", "EMPTY_FIELD", "Empty question")


def _check_options(options: list[str], collector: _Collector) -> None:
    for position, option in enumerate(options):
        if not option.strip():
            collector.error(f"options[{position}]", "EMPTY_FIELD", "Empty option")
    if len(options) < MIN_OPTIONS:
        collector.error(
            "options",
            "TOO_FEW_OPTIONS",
            f"{len(options)} options, at least {MIN_OPTIONS} required",
        )
    _check_duplicates(options, "options", collector)


def _check_duplicates(items: list[str], field_name: str, collector: _Collector) -> None:
    seen: set[str] = set()
    for item in items:
        normalized = _normalize(item)
        if not normalized:
            continue
        if normalized in seen:
            collector.error(field_name, "DUPLICATE_OPTIONS", f'Duplicate item: "{item}"')
        seen.add(normalized)


def _check_question_length(question: str, collector: _Collector) -> None:
    stripped = question.strip()
    if stripped and len(stripped) < MIN_QUESTION_LENGTH:
        collector.error(
            "question",
            "QUESTION_TOO_SHORT",
            f"Question is {len(stripped)} characters long, at least {MIN_QUESTION_LENGTH} needed",
        )


def _check_numbers(task: GeneratedTask, ceiling: int, grade: int, collector: _Collector) -> None:
    text = " ".join(task_text_parts(task))
    for raw_number in _NUMBER.findall(text):
        value = float(raw_number.replace(",", "."))
        if abs(value) > ceiling:
            collector.warning(
                "content",
                "POSSIBLE_NUMBER_OVERFLOW",
                f"Number {raw_number} exceeds the grade {grade} limit of {ceiling}",
            )
            return


def _normalize(text: str) -> str:
    return _WHITESPACE.sub(" ", text.strip().lower())
