"""Instruction texts for every provider call of an episode."""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from typing import assert_never

from worksheet_gen.generation.models import (
    AgentIssue,
    ContentRequest,
    Difficulty,
    FillBlankTask,
    GeneratedTask,
    MatchingTask,
    MultipleChoiceTask,
    OpenQuestionTask,
    SingleChoiceTask,
    TaskCategory,
    TaskDistribution,
    TaskType,
)
from worksheet_gen.generation.validator import question_text

BREAKDOWN_PREFIX = "Required count per type:"
_USER_INPUT_LIMIT = 200
_BREAKDOWN_ENTRY = re.compile(r"([a-z_]+)=(\d+)")
_REVIEW_COUNT = re.compile(r"Check ALL (\d+) tasks")
_UNSAFE_INPUT = re.compile(r"[<>{}\x00-\x1f\x7f]")

SYSTEM_PROMPT = """\
You are an experienced methodologist who writes exercise worksheets for schools.

Every task you write must:
- match the school curriculum of the given grade;
- have exactly one unambiguous correct answer (or an explicit set of answers);
- use wording the student of that grade understands.

Reply with JSON only. No markdown, no comments, no prose before or after the JSON.
"""

TASK_TYPE_TITLES: dict[TaskType, str] = {
    TaskType.SINGLE_CHOICE: "single choice",
    TaskType.MULTIPLE_CHOICE: "multiple choice",
    TaskType.OPEN_QUESTION: "open question",
    TaskType.MATCHING: "matching",
    TaskType.FILL_BLANK: "fill in the blank",
}

TASK_TYPE_INSTRUCTIONS: dict[TaskType, str] = {
    TaskType.SINGLE_CHOICE: (
        "A question with 4 options and exactly one correct option. "
        "correctIndex is the zero-based index of the correct option."
    ),
    TaskType.MULTIPLE_CHOICE: (
        "A question with 4-6 options and two or more correct options. "
        "correctIndices lists the zero-based indices of every correct option."
    ),
    TaskType.OPEN_QUESTION: (
        "A question answered with a short free-text answer. "
        "acceptableVariants lists other spellings of the same answer."
    ),
    TaskType.MATCHING: (
        "Two columns of the same length. correctPairs lists [left, right] "
        "zero-based index pairs, one per left item, each right item used once."
    ),
    TaskType.FILL_BLANK: (
        "A text with gaps marked ___(1)___, ___(2)___ and so on. "
        "blanks holds one entry per marker with the same position number."
    ),
}

TASK_TYPE_EXAMPLES: dict[TaskType, str] = {
    TaskType.SINGLE_CHOICE: (
        '{"type":"single_choice","question":"...","options":["A","B","C","D"],'
        '"correctIndex":0,"explanation":"..."}'
    ),
    TaskType.MULTIPLE_CHOICE: (
        '{"type":"multiple_choice","question":"...","options":["A","B","C","D"],'
        '"correctIndices":[0,2],"explanation":"..."}'
    ),
    TaskType.OPEN_QUESTION: (
        '{"type":"open_question","question":"...","correctAnswer":"...",'
        '"acceptableVariants":["..."]}'
    ),
    TaskType.MATCHING: (
        '{"type":"matching","instruction":"...","leftColumn":["...","..."],'
        '"rightColumn":["...","..."],"correctPairs":[[0,1],[1,0]]}'
    ),
    TaskType.FILL_BLANK: (
        '{"type":"fill_blank","textWithBlanks":"Text ___(1)___ text.",'
        '"blanks":[{"position":1,"correctAnswer":"...","acceptableVariants":[]}]}'
    ),
}

DIFFICULTY_INSTRUCTIONS: dict[Difficulty, str] = {
    Difficulty.EASY: (
        "BASIC level: direct application of one rule or formula, at most two steps, "
        "textbook-style numbers and wording, no trick questions."
    ),
    Difficulty.MEDIUM: (
        "INTERMEDIATE level: two or three steps, combine the topic with material "
        "studied earlier, standard but not trivial wording."
    ),
    Difficulty.HARD: (
        "ADVANCED level: multi-step reasoning, non-standard situations, tasks that "
        "require justification or comparison of approaches."
    ),
}


def sanitize_user_input(text: str) -> str:
    """Strip markup-like characters and cap free text supplied by the caller."""

    cleaned = _UNSAFE_INPUT.sub(" ", text)
    cleaned = " ".join(cleaned.split())
    return cleaned[:_USER_INPUT_LIMIT]


def breakdown_line(plan: Sequence[TaskDistribution]) -> str:
    """Closing count line, e.g. ``Required count per type: single_choice=7 matching=1``."""

    entries = " ".join(f"{entry.task_type.value}={entry.count}" for entry in plan)
    return f"{BREAKDOWN_PREFIX} {entries}"


def parse_breakdown_line(text: str) -> list[TaskDistribution]:
    """Inverse of `breakdown_line`; looks for the first breakdown line in `text`."""

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped.startswith(BREAKDOWN_PREFIX):
            continue
        plan: list[TaskDistribution] = []
        for raw_type, raw_count in _BREAKDOWN_ENTRY.findall(stripped[len(BREAKDOWN_PREFIX) :]):
            try:
                task_type = TaskType(raw_type)
            except ValueError:
                continue
            plan.append(TaskDistribution(task_type=task_type, count=int(raw_count)))
        return plan
    return []


def parse_review_count(text: str) -> int:
    """Batch size stated on the last review line of an agent prompt; 0 when absent."""

    found = _REVIEW_COUNT.findall(text)
    return int(found[-1]) if found else 0


def build_system_prompt(request: ContentRequest) -> str:
    subject = sanitize_user_input(request.subject)
    return f"{SYSTEM_PROMPT}\nSubject: {subject}. Grade: {request.grade}."


def build_generation_prompt(request: ContentRequest, plan: Sequence[TaskDistribution]) -> str:
    """Primary call: the full batch with the exact per-type breakdown."""

    total = sum(entry.count for entry in plan)
    closed = [entry for entry in plan if entry.task_type.category == TaskCategory.CLOSED]
    open_ = [entry for entry in plan if entry.task_type.category == TaskCategory.OPEN]

    sections = [
        _context_block(request),
        f"Create EXACTLY {total} tasks. Not {total - 1}, not {total + 1}: exactly {total}.",
    ]
    if closed:
        sections.append(
            f"TEST PART ({sum(entry.count for entry in closed)} tasks):\n"
            + "\n".join(_distribution_line(entry) for entry in closed),
        )
    if open_:
        sections.append(
            f"OPEN PART ({sum(entry.count for entry in open_)} tasks):\n"
            + "\n".join(_distribution_line(entry) for entry in open_),
        )
    if len(closed) > 1 or len(open_) > 1:
        sections.append(
            "Mix the task types inside each part; do not group tasks by type.",
        )
    sections.append(_type_instructions(plan))
    sections.append(_reply_format(plan, total))
    sections.append(breakdown_line(plan))
    return "\n\n".join(sections)


def build_backfill_prompt(
    request: ContentRequest,
    plan: Sequence[TaskDistribution],
    existing_tasks: Sequence[GeneratedTask],
) -> str:
    """Backfill call: only the missing counts, avoiding questions already written."""

    total = sum(entry.count for entry in plan)
    sections = [
        _context_block(request),
        f"Create {total} ADDITIONAL tasks:\n"
        + "\n".join(_distribution_line(entry) for entry in plan),
        _type_instructions(plan),
    ]
    if existing_tasks:
        questions = "\n".join(
            f"- {_short(question_text(task))}" for task in existing_tasks if question_text(task)
        )
        sections.append(f"Do not repeat these existing tasks:\n{questions}")
    sections.append(_reply_format(plan, total))
    sections.append(breakdown_line(plan))
    return "\n\n".join(sections)


def build_regenerate_prompt(
    request: ContentRequest,
    task_type: TaskType,
) -> str:
    """One replacement task of `task_type`."""

    plan = [TaskDistribution(task_type=task_type, count=1)]
    return "\n\n".join(
        [
            _context_block(request),
            f"Create ONE new task of type {task_type.value} "
            f"({TASK_TYPE_TITLES[task_type]}).",
            _type_instructions(plan),
            _reply_format(plan, 1),
            breakdown_line(plan),
        ],
    )


def build_agent_prompt(
    instructions: str,
    tasks: Sequence[GeneratedTask],
    request: ContentRequest,
) -> str:
    """Review call for one semantic agent over the whole batch."""

    tasks_text = "\n\n".join(
        format_task_for_review(task, index) for index, task in enumerate(tasks)
    )
    count = len(tasks)
    return f"""\
{instructions}

{_context_block(request)}

Tasks to check:

{tasks_text}

Reply with JSON only:
{{
  "tasks": [
    {{"index": 0, "status": "ok"}},
    {{"index": 1, "status": "error", "issue": "What is wrong and how to fix it"}}
  ]
}}

Check ALL {count} tasks, indices 0 to {count - 1}."""


def build_fix_prompt(task: GeneratedTask, issue: AgentIssue, request: ContentRequest) -> str:
    """Single-task repair call; difficulty issues ask for a full re-creation."""

    task_json = json.dumps(task.to_payload(), ensure_ascii=False, indent=2)
    suggestion = f"\nSUGGESTION: {issue.suggestion}" if issue.suggestion else ""
    plan = [TaskDistribution(task_type=task.task_type, count=1)]
    if issue.code == "DIFFICULTY_MISMATCH":
        header = (
            "You are an editor of teaching materials. Re-create this task from scratch "
            f"at the required difficulty.\n{_context_block(request)}\n\n"
            f"CURRENT TASK (wrong difficulty):\n{task_json}\n\n"
            f"PROBLEM:\n{issue.message}{suggestion}\n\n"
            "1. Write a NEW task on the same topic, strictly at the required level.\n"
            "2. Make sure the answer is correct.\n"
            f'3. Keep the task type ("type": "{task.task_type.value}") and its JSON shape.'
        )
    else:
        header = (
            "You are an editor of teaching materials. Fix the error in this task.\n"
            f"{_context_block(request)}\n\n"
            f"TASK WITH AN ERROR:\n{task_json}\n\n"
            f"ERROR FOUND:\n{issue.message}{suggestion}\n\n"
            "1. Fix the error.\n"
            "2. Make sure the answer is correct.\n"
            f'3. Keep the task type ("type": "{task.task_type.value}") and its JSON shape.'
        )
    return f"{header}\n\nReturn the task as one JSON object, nothing else.\n{breakdown_line(plan)}"


def format_task_for_review(task: GeneratedTask, index: int) -> str:
    lines = [f"--- Task {index} (type: {task.task_type.value}) ---"]
    match task:
        case SingleChoiceTask():
            lines.append(f"Question: {task.question}")
            lines.append(f"Options: {_numbered(task.options)}")
            chosen = _option_at(task.options, task.correct_index)
            lines.append(f"Stated correct answer: option {task.correct_index} ({chosen})")
        case MultipleChoiceTask():
            lines.append(f"Question: {task.question}")
            lines.append(f"Options: {_numbered(task.options)}")
            chosen = "; ".join(
                f"{position}) {_option_at(task.options, position)}"
                for position in task.correct_indices
            )
            lines.append(f"Stated correct answers: {chosen}")
        case OpenQuestionTask():
            lines.append(f"Question: {task.question}")
            lines.append(f"Stated answer: {task.correct_answer}")
        case MatchingTask():
            lines.append(f"Instruction: {task.instruction}")
            lines.append(f"Left column: {_numbered(task.left_column)}")
            lines.append(f"Right column: {_numbered(task.right_column)}")
            pairs = ", ".join(f"{left}-{right}" for left, right in task.correct_pairs)
            lines.append(f"Stated pairs: {pairs}")
        case FillBlankTask():
            lines.append(f"Text: {task.text_with_blanks}")
            blanks = "; ".join(
                f"({blank.position}) {blank.correct_answer}" for blank in task.blanks
            )
            lines.append(f"Blanks: {blanks}")
        case _:
            assert_never(task)
    return "\n".join(lines)


def _context_block(request: ContentRequest) -> str:
    return (
        f"Subject: {sanitize_user_input(request.subject)}\n"
        f"Grade: {request.grade}\n"
        f"Topic: <user_topic>{sanitize_user_input(request.topic)}</user_topic>\n"
        f"Difficulty: {DIFFICULTY_INSTRUCTIONS[request.difficulty]}"
    )


def _distribution_line(entry: TaskDistribution) -> str:
    noun = "task" if entry.count == 1 else "tasks"
    return (
        f"- EXACTLY {entry.count} {noun} of type {entry.task_type.value} "
        f"({TASK_TYPE_TITLES[entry.task_type]})"
    )


def _type_instructions(plan: Sequence[TaskDistribution]) -> str:
    seen: list[TaskType] = []
    for entry in plan:
        if entry.task_type not in seen:
            seen.append(entry.task_type)
    return "TASK TYPES:\n" + "\n".join(
        f"{task_type.value}: {TASK_TYPE_INSTRUCTIONS[task_type]}" for task_type in seen
    )


def _reply_format(plan: Sequence[TaskDistribution], total: int) -> str:
    examples = ",\n".join(
        f"    {TASK_TYPE_EXAMPLES[task_type]}"
        for task_type in dict.fromkeys(entry.task_type for entry in plan)
    )
    return (
        'Reply with JSON in exactly this shape:\n{\n  "tasks": [\n'
        f"{examples}\n  ]\n}}\n"
        f'The "tasks" array must contain exactly {total} items, each with a "type" field.'
    )


def _short(text: str, limit: int = 80) -> str:
    compact = " ".join(text.split())
    if len(compact) <= limit:
        return compact
    return compact[: limit - 3] + "..."


def _numbered(items: Sequence[str]) -> str:
    return "; ".join(f"{position}) {item}" for position, item in enumerate(items))


def _option_at(options: Sequence[str], position: int) -> str:
    if 0 <= position < len(options):
        return options[position]
    return "<out of range>"
