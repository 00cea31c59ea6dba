from __future__ import annotations

import allure
import pytest

from worksheet_gen.generation.formats import FORMATS, get_format, resolve_variant
from worksheet_gen.generation.models import CLOSED_TYPES, ContentRequest, Difficulty, TaskType

pytestmark = [
    allure.epic("Generation Pipeline"),
    allure.feature("Worksheet Formats"),
]


def test_catalogue_lists_three_formats_with_growing_cost() -> None:
    assert sorted(FORMATS) == ["open_only", "test_and_open", "test_only"]
    for worksheet_format in FORMATS.values():
        costs = [variant.cost for variant in worksheet_format.variants]
        assert costs == sorted(costs)


def test_resolve_variant_returns_counts() -> None:
    worksheet_format, variant = resolve_variant("test_and_open", 1)

    assert worksheet_format.format_id == "test_and_open"
    assert (variant.closed_count, variant.open_count) == (15, 10)
    assert variant.total_count == 25


def test_unknown_format_and_variant_raise() -> None:
    with pytest.raises(ValueError, match="Unknown worksheet format"):
        get_format("slides")
    with pytest.raises(ValueError, match="Unknown variant 7"):
        resolve_variant("test_only", 7)


def test_request_from_format_uses_recommended_types() -> None:
    request = ContentRequest.from_format(
        "test_only",
        0,
        subject="history",
        grade=7,
        topic="Ancient Rome",
    )

    assert request.task_types == CLOSED_TYPES
    assert (request.closed_count, request.open_count) == (10, 0)
    assert request.difficulty == Difficulty.MEDIUM


def test_request_from_format_keeps_explicit_types() -> None:
    request = ContentRequest.from_format(
        "open_only",
        2,
        subject="biology",
        grade=9,
        topic="Cell structure",
        task_types=(TaskType.OPEN_QUESTION,),
    )

    assert request.task_types == (TaskType.OPEN_QUESTION,)
    assert request.open_count == 15


@pytest.mark.parametrize(
    ("grade", "topic", "message"),
    [
        (0, "Fractions", "Grade"),
        (12, "Fractions", "Grade"),
        (5, "ab", "Topic"),
        (5, "x" * 201, "Topic"),
    ],
)
def test_request_validation_rejects_bad_input(grade: int, topic: str, message: str) -> None:
    request = ContentRequest(
        subject="math",
        grade=grade,
        topic=topic,
        task_types=CLOSED_TYPES,
        closed_count=10,
    )

    with pytest.raises(ValueError, match=message):
        request.validate()


def test_request_validation_requires_task_types() -> None:
    with pytest.raises(ValueError, match="task type"):
        ContentRequest(subject="math", grade=5, topic="Fractions", closed_count=10).validate()
