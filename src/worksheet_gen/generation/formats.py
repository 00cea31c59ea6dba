"""Catalogue of worksheet formats and their count variants."""

from __future__ import annotations

from dataclasses import dataclass

from worksheet_gen.generation.models import CLOSED_TYPES, OPEN_TYPES, TaskType

DEFAULT_FORMAT_ID = "test_and_open"
DEFAULT_VARIANT_INDEX = 0


@dataclass(frozen=True, slots=True)
class FormatVariant:
    """One selectable size of a worksheet format."""

    closed_count: int
    open_count: int
    cost: int

    @property
    def total_count(self) -> int:
        return self.closed_count + self.open_count


@dataclass(frozen=True, slots=True)
class WorksheetFormat:
    """Named format with its variants and the task types it recommends."""

    format_id: str
    title: str
    variants: tuple[FormatVariant, ...]
    recommended_types: tuple[TaskType, ...]


FORMATS: dict[str, WorksheetFormat] = {
    "open_only": WorksheetFormat(
        format_id="open_only",
        title="Open questions only",
        variants=(
            FormatVariant(closed_count=0, open_count=5, cost=1),
            FormatVariant(closed_count=0, open_count=10, cost=2),
            FormatVariant(closed_count=0, open_count=15, cost=3),
        ),
        recommended_types=OPEN_TYPES,
    ),
    "test_only": WorksheetFormat(
        format_id="test_only",
        title="Test questions only",
        variants=(
            FormatVariant(closed_count=10, open_count=0, cost=1),
            FormatVariant(closed_count=15, open_count=0, cost=2),
            FormatVariant(closed_count=20, open_count=0, cost=3),
        ),
        recommended_types=CLOSED_TYPES,
    ),
    "test_and_open": WorksheetFormat(
        format_id="test_and_open",
        title="Test and open questions",
        variants=(
            FormatVariant(closed_count=10, open_count=5, cost=1),
            FormatVariant(closed_count=15, open_count=10, cost=2),
            FormatVariant(closed_count=20, open_count=15, cost=3),
        ),
        recommended_types=(*CLOSED_TYPES, *OPEN_TYPES),
    ),
}


def get_format(format_id: str) -> WorksheetFormat:
    """Return the format with `format_id` or raise ``ValueError``."""

    try:
        return FORMATS[format_id]
    except KeyError:
        known = ", ".join(sorted(FORMATS))
        raise ValueError(
            f"Unknown worksheet format {format_id!r}; expected one of: {known}.",
        ) from None


def resolve_variant(format_id: str, variant_index: int) -> tuple[WorksheetFormat, FormatVariant]:
    worksheet_format = get_format(format_id)
    if not 0 <= variant_index < len(worksheet_format.variants):
        raise ValueError(
            f"Unknown variant {variant_index} for format {format_id!r}; "
            f"expected 0..{len(worksheet_format.variants) - 1}.",
        )
    return worksheet_format, worksheet_format.variants[variant_index]
