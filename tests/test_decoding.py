from __future__ import annotations

import json

import allure
import pytest

from worksheet_gen.generation.decoding import (
    decode_task_batch,
    find_json_span,
    task_from_payload,
    task_from_payload_as,
)
from worksheet_gen.generation.errors import ProviderError
from worksheet_gen.generation.models import (
    FillBlankTask,
    MatchingTask,
    MultipleChoiceTask,
    OpenQuestionTask,
    SingleChoiceTask,
    TaskType,
)

pytestmark = [
    allure.epic("Generation Pipeline"),
    allure.feature("Reply Decoding"),
]

_SINGLE = {
    "type": "single_choice",
    "question": "How much is 2 + 2?",
    "options": ["3", "4", "5", "6"],
    "correctIndex": 1,
}


def test_decodes_fenced_json_with_leading_prose() -> None:
    raw = "Here are the tasks:\n```json\n" + json.dumps({"tasks": [_SINGLE]}) + "\n```\nEnjoy!"

    batch = decode_task_batch(raw)

    assert batch.discarded == 0
    assert batch.tasks == [
        SingleChoiceTask(
            question="How much is 2 + 2?",
            options=["3", "4", "5", "6"],
            correct_index=1,
        ),
    ]


def test_span_ignores_braces_and_escaped_quotes_inside_strings() -> None:
    raw = 'noise {"a": "curly } brace \\" and { more", "b": {"c": 1}} trailing }'

    assert find_json_span(raw) == '{"a": "curly } brace \\" and { more", "b": {"c": 1}}'


def test_span_is_none_without_object() -> None:
    assert find_json_span("no json here") is None
    assert find_json_span('{"unterminated": 1') is None


def test_invalid_escapes_are_stripped_on_retry() -> None:
    raw = (
        '{"tasks": [{"type": "open_question", "question": "Solve \\(x + 1 = 3\\) for x", '
        '"correctAnswer": "2"}]}'
    )

    batch = decode_task_batch(raw)

    assert batch.tasks == [OpenQuestionTask(question="Solve (x + 1 = 3) for x", correct_answer="2")]


@pytest.mark.parametrize(
    "raw",
    [
        "The model refused to answer.",
        '{"tasks": [1, 2,]}',
        '{"items": []}',
        '{"tasks": {"type": "single_choice"}}',
    ],
)
def test_unusable_reply_raises_malformed_output(raw: str) -> None:
    with pytest.raises(ProviderError) as caught:
        decode_task_batch(raw)

    assert caught.value.code == "malformed_output"


_HUGE_INTEGER_REPLY = '{"tasks": [], "n": ' + "1" * 5000 + "}"
_DEEPLY_NESTED_REPLY = '{"tasks": ' + "[" * 100_000 + "]" * 100_000 + "}"


@pytest.mark.parametrize(
    "raw",
    [_HUGE_INTEGER_REPLY, _DEEPLY_NESTED_REPLY],
    ids=["oversized-integer", "deep-nesting"],
)
def test_json_beyond_parser_limits_is_malformed_output(raw: str) -> None:
    with pytest.raises(ProviderError) as caught:
        decode_task_batch(raw)

    assert caught.value.code == "malformed_output"
    assert "could not be decoded" in caught.value.message


def test_bad_items_are_skipped_and_counted() -> None:
    raw = json.dumps(
        {
            "tasks": [
                _SINGLE,
                {"type": "essay", "question": "Write an essay"},
                {"question": "No type at all"},
                {"type": "single_choice", "question": "Missing options", "correctIndex": 0},
                {
                    "type": "single_choice",
                    "question": "Bool index",
                    "options": ["a", "b"],
                    "correctIndex": True,
                },
                "not an object",
            ],
        },
    )

    batch = decode_task_batch(raw)

    assert len(batch.tasks) == 1
    assert batch.discarded == 5


def test_every_task_type_decodes() -> None:
    items = [
        {
            "type": "multiple_choice",
            "question": "Pick the prime numbers",
            "options": ["2", "4", "5", "9"],
            "correctIndices": [0, 2],
        },
        {
            "type": "matching",
            "instruction": "Match the countries with capitals",
            "leftColumn": ["France", "Italy"],
            "rightColumn": ["Rome", "Paris"],
            "correctPairs": [[0, 1], [1, 0]],
        },
        {
            "type": "fill_blank",
            "textWithBlanks": "Water boils at ___(1)___ degrees.",
            "blanks": [{"position": 1, "correctAnswer": "100", "acceptableVariants": ["hundred"]}],
        },
        {
            "type": "OPEN_QUESTION",
            "question": "Why is the sky blue?",
            "correctAnswer": "Scattering",
        },
    ]

    tasks = decode_task_batch(json.dumps({"tasks": items})).tasks

    assert [type(task) for task in tasks] == [
        MultipleChoiceTask,
        MatchingTask,
        FillBlankTask,
        OpenQuestionTask,
    ]
    matching = tasks[1]
    assert isinstance(matching, MatchingTask)
    assert matching.correct_pairs == [(0, 1), (1, 0)]
    fill_blank = tasks[2]
    assert isinstance(fill_blank, FillBlankTask)
    assert fill_blank.blanks[0].acceptable_variants == ["hundred"]


def test_payload_round_trip_keeps_wire_keys() -> None:
    task = task_from_payload(_SINGLE)

    assert task is not None
    assert task.to_payload() == _SINGLE


def test_decode_as_given_type_ignores_type_key() -> None:
    item = {**_SINGLE, "type": "multiple_choice"}

    task = task_from_payload_as(item, TaskType.SINGLE_CHOICE)

    assert isinstance(task, SingleChoiceTask)
    assert task_from_payload(item) is None
