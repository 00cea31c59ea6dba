"""Exact per-type count breakdown of a worksheet request."""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from worksheet_gen.generation.models import TaskDistribution, TaskType


@dataclass(frozen=True, slots=True)
class _QuotaRule:
    task_type: TaskType
    table: dict[int, int]
    fallback: Callable[[int], int]

    def quota_for(self, total: int) -> int:
        if total in self.table:
            return self.table[total]
        return self.fallback(total)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


_CLOSED_RULES: tuple[_QuotaRule, ...] = (
    _QuotaRule(
        task_type=TaskType.MULTIPLE_CHOICE,
        table={10: 3, 15: 5, 20: 7},
        fallback=lambda total: max(1, _round_half_up(total * 0.3)),
    ),
)
_OPEN_RULES: tuple[_QuotaRule, ...] = (
    _QuotaRule(
        task_type=TaskType.MATCHING,
        table={5: 1, 10: 2, 15: 3},
        fallback=lambda total: max(1, total // 5),
    ),
    _QuotaRule(
        task_type=TaskType.FILL_BLANK,
        table={5: 1, 10: 2, 15: 3},
        fallback=lambda total: max(1, total // 5),
    ),
)


def plan_closed(total: int, selected: Iterable[TaskType]) -> list[TaskDistribution]:
    """Split `total` closed-form tasks between the selected closed types."""

    return _plan(total, set(selected), _CLOSED_RULES, TaskType.SINGLE_CHOICE)


def plan_open(total: int, selected: Iterable[TaskType]) -> list[TaskDistribution]:
    """Split `total` open-form tasks between the selected open types."""

    return _plan(total, set(selected), _OPEN_RULES, TaskType.OPEN_QUESTION)


def plan_all(
    closed_total: int,
    open_total: int,
    selected: Iterable[TaskType],
) -> list[TaskDistribution]:
    """Closed breakdown followed by the open breakdown."""

    selected_set = set(selected)
    return [*plan_closed(closed_total, selected_set), *plan_open(open_total, selected_set)]


def _plan(
    total: int,
    selected: set[TaskType],
    rules: tuple[_QuotaRule, ...],
    catch_all: TaskType,
) -> list[TaskDistribution]:
    """Allocate quota types first, give the rest to the catch-all type.

    Without a selected catch-all the remainder goes round-robin, one unit at
    a time, to the quota types that already received an allocation.
    """

    if total < 0:
        raise ValueError(f"Task total must be >= 0, got {total}.")
    if total == 0:
        return []

    allocation: dict[TaskType, int] = {}
    remaining = total
    for rule in rules:
        if rule.task_type not in selected or remaining <= 0:
            continue
        count = min(rule.quota_for(total), remaining)
        if count > 0:
            allocation[rule.task_type] = count
            remaining -= count

    if remaining > 0:
        if catch_all in selected:
            allocation[catch_all] = remaining
        elif allocation:
            order = list(allocation)
            cursor = 0
            while remaining > 0:
                allocation[order[cursor % len(order)]] += 1
                remaining -= 1
                cursor += 1
        else:
            return []

    return [
        TaskDistribution(task_type=task_type, count=count)
        for task_type, count in allocation.items()
        if count > 0
    ]


def distribution_counts(plan: Iterable[TaskDistribution]) -> dict[TaskType, int]:
    """Collapse a plan into a ``{task_type: count}`` mapping."""

    counts: dict[TaskType, int] = {}
    for entry in plan:
        counts[entry.task_type] = counts.get(entry.task_type, 0) + entry.count
    return counts
