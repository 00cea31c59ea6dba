from __future__ import annotations

from itertools import combinations

import allure
import pytest

from worksheet_gen.generation.models import CLOSED_TYPES, OPEN_TYPES, TaskDistribution, TaskType
from worksheet_gen.generation.planner import (
    distribution_counts,
    plan_all,
    plan_closed,
    plan_open,
)

pytestmark = [
    allure.epic("Generation Pipeline"),
    allure.feature("Task Distribution Planner"),
]


def _subsets(types: tuple[TaskType, ...]) -> list[tuple[TaskType, ...]]:
    return [combo for size in range(1, len(types) + 1) for combo in combinations(types, size)]


@pytest.mark.parametrize("total", [0, 5, 10, 15, 20])
def test_plan_sums_to_total_for_every_type_subset(total: int) -> None:
    for selected in _subsets(CLOSED_TYPES):
        assert sum(entry.count for entry in plan_closed(total, selected)) == total
    for selected in _subsets(OPEN_TYPES):
        assert sum(entry.count for entry in plan_open(total, selected)) == total


def test_closed_plan_uses_multiple_choice_table() -> None:
    plan = plan_closed(10, [TaskType.SINGLE_CHOICE, TaskType.MULTIPLE_CHOICE])

    assert plan == [
        TaskDistribution(task_type=TaskType.MULTIPLE_CHOICE, count=3),
        TaskDistribution(task_type=TaskType.SINGLE_CHOICE, count=7),
    ]
    assert distribution_counts(plan_closed(20, CLOSED_TYPES))[TaskType.MULTIPLE_CHOICE] == 7


def test_closed_plan_falls_back_to_rounded_thirty_percent() -> None:
    counts = distribution_counts(plan_closed(7, CLOSED_TYPES))

    assert counts == {TaskType.MULTIPLE_CHOICE: 2, TaskType.SINGLE_CHOICE: 5}
    assert distribution_counts(plan_closed(1, CLOSED_TYPES)) == {TaskType.MULTIPLE_CHOICE: 1}


def test_open_plan_gives_remainder_to_open_question() -> None:
    counts = distribution_counts(plan_open(15, OPEN_TYPES))

    assert counts == {
        TaskType.MATCHING: 3,
        TaskType.FILL_BLANK: 3,
        TaskType.OPEN_QUESTION: 9,
    }


def test_open_plan_without_catch_all_spreads_remainder_round_robin() -> None:
    counts = distribution_counts(plan_open(5, [TaskType.MATCHING, TaskType.FILL_BLANK]))

    assert counts == {TaskType.MATCHING: 3, TaskType.FILL_BLANK: 2}


def test_single_quota_type_takes_everything() -> None:
    assert plan_closed(10, [TaskType.MULTIPLE_CHOICE]) == [
        TaskDistribution(task_type=TaskType.MULTIPLE_CHOICE, count=10),
    ]
    assert plan_open(10, [TaskType.OPEN_QUESTION]) == [
        TaskDistribution(task_type=TaskType.OPEN_QUESTION, count=10),
    ]


def test_plan_is_empty_without_applicable_types() -> None:
    assert plan_closed(10, OPEN_TYPES) == []
    assert plan_open(5, CLOSED_TYPES) == []
    assert plan_open(0, OPEN_TYPES) == []


def test_plan_rejects_negative_total() -> None:
    with pytest.raises(ValueError, match=">= 0"):
        plan_closed(-1, CLOSED_TYPES)


def test_plan_all_lists_closed_before_open() -> None:
    plan = plan_all(10, 5, [*CLOSED_TYPES, *OPEN_TYPES])

    assert [entry.task_type.category.value for entry in plan] == [
        "closed",
        "closed",
        "open",
        "open",
        "open",
    ]
    assert sum(entry.count for entry in plan) == 15
