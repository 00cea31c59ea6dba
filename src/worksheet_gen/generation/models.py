"""Domain models for the generation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar


class TaskCategory(str, Enum):
    """Super-categories a worksheet request is split into."""

    CLOSED = "closed"
    OPEN = "open"


class TaskType(str, Enum):
    """Closed set of exercise task kinds the provider can produce."""

    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    OPEN_QUESTION = "open_question"
    MATCHING = "matching"
    FILL_BLANK = "fill_blank"

    @property
    def category(self) -> TaskCategory:
        if self in CLOSED_TYPES:
            return TaskCategory.CLOSED
        return TaskCategory.OPEN


CLOSED_TYPES: tuple[TaskType, ...] = (TaskType.SINGLE_CHOICE, TaskType.MULTIPLE_CHOICE)
OPEN_TYPES: tuple[TaskType, ...] = (
    TaskType.OPEN_QUESTION,
    TaskType.MATCHING,
    TaskType.FILL_BLANK,
)


class Difficulty(str, Enum):
    """Requested difficulty level."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Severity(str, Enum):
    """Issue severity shared by structural and semantic checks."""

    ERROR = "error"
    WARNING = "warning"


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(slots=True)
class SingleChoiceTask:
    """Question with options and exactly one correct option."""

    task_type: ClassVar[TaskType] = TaskType.SINGLE_CHOICE

    question: str
    options: list[str]
    correct_index: int
    explanation: str = ""

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.task_type.value,
            "question": self.question,
            "options": list(self.options),
            "correctIndex": self.correct_index,
        }
        if self.explanation:
            payload["explanation"] = self.explanation
        return payload


@dataclass(slots=True)
class MultipleChoiceTask:
    """Question with options and one or more correct options."""

    task_type: ClassVar[TaskType] = TaskType.MULTIPLE_CHOICE

    question: str
    options: list[str]
    correct_indices: list[int]
    explanation: str = ""

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.task_type.value,
            "question": self.question,
            "options": list(self.options),
            "correctIndices": list(self.correct_indices),
        }
        if self.explanation:
            payload["explanation"] = self.explanation
        return payload


@dataclass(slots=True)
class OpenQuestionTask:
    """Free-text answer question."""

    task_type: ClassVar[TaskType] = TaskType.OPEN_QUESTION

    question: str
    correct_answer: str
    acceptable_variants: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.task_type.value,
            "question": self.question,
            "correctAnswer": self.correct_answer,
        }
        if self.acceptable_variants:
            payload["acceptableVariants"] = list(self.acceptable_variants)
        return payload


@dataclass(slots=True)
class MatchingTask:
    """Two columns and the left-to-right pairing."""

    task_type: ClassVar[TaskType] = TaskType.MATCHING

    instruction: str
    left_column: list[str]
    right_column: list[str]
    correct_pairs: list[tuple[int, int]]

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.task_type.value,
            "instruction": self.instruction,
            "leftColumn": list(self.left_column),
            "rightColumn": list(self.right_column),
            "correctPairs": [[left, right] for left, right in self.correct_pairs],
        }


@dataclass(slots=True)
class Blank:
    """One blank definition of a fill-in-the-blank task."""

    position: int
    correct_answer: str
    acceptable_variants: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "position": self.position,
            "correctAnswer": self.correct_answer,
        }
        if self.acceptable_variants:
            payload["acceptableVariants"] = list(self.acceptable_variants)
        return payload


@dataclass(slots=True)
class FillBlankTask:
    """Text with ``___(N)___`` markers and the answer for every marker."""

    task_type: ClassVar[TaskType] = TaskType.FILL_BLANK

    text_with_blanks: str
    blanks: list[Blank]

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.task_type.value,
            "textWithBlanks": self.text_with_blanks,
            "blanks": [blank.to_payload() for blank in self.blanks],
        }


GeneratedTask = (
    SingleChoiceTask | MultipleChoiceTask | OpenQuestionTask | MatchingTask | FillBlankTask
)


@dataclass(slots=True)
class TaskDistribution:
    """Planned number of tasks of one type."""

    task_type: TaskType
    count: int


@dataclass(slots=True)
class ValidationIssue:
    """Structural finding produced by the deterministic validator."""

    task_index: int
    field: str
    code: str
    message: str
    severity: Severity = Severity.ERROR


@dataclass(slots=True)
class ValidationReport:
    """Deterministic validation outcome for one batch."""

    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def invalid_indices(self) -> set[int]:
        """Indices of every task referenced by at least one error."""

        return {issue.task_index for issue in self.errors}


@dataclass(slots=True)
class AgentIssue:
    """Semantic finding reported by one validation agent.

    ``task_index == -1`` marks an agent-level annotation: the agent could not
    complete its pass.
    """

    task_index: int
    agent_name: str
    code: str
    message: str
    severity: Severity = Severity.ERROR
    suggestion: str | None = None


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token counts the provider reported for one or more calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(slots=True)
class AgentReport:
    """Everything one agent returned for one batch."""

    agent_name: str
    issues: list[AgentIssue] = field(default_factory=list)
    completed: bool = True
    usage: TokenUsage | None = None


@dataclass(slots=True)
class FixResult:
    """Outcome of one auto-fix attempt."""

    task_index: int
    success: bool
    issue_code: str
    replacement_task: GeneratedTask | None = None
    error: str | None = None
    usage: TokenUsage | None = None


@dataclass(slots=True)
class SemanticValidationResult:
    """Merged agent findings and the batch after auto-fix."""

    fixed_tasks: list[GeneratedTask]
    issues: list[AgentIssue] = field(default_factory=list)
    fix_results: list[FixResult] = field(default_factory=list)
    agent_reports: list[AgentReport] = field(default_factory=list)

    @property
    def problem_indices(self) -> list[int]:
        return sorted(
            {
                issue.task_index
                for issue in self.issues
                if issue.task_index >= 0 and issue.severity == Severity.ERROR
            },
        )

    @property
    def fixed_indices(self) -> set[int]:
        return {result.task_index for result in self.fix_results if result.success}

    @property
    def unresolved_issues(self) -> list[AgentIssue]:
        fixed = self.fixed_indices
        return [issue for issue in self.issues if issue.task_index not in fixed]

    def issues_by_task(self) -> dict[int, list[AgentIssue]]:
        grouped: dict[int, list[AgentIssue]] = {}
        for issue in self.issues:
            if issue.task_index < 0:
                continue
            grouped.setdefault(issue.task_index, []).append(issue)
        return dict(sorted(grouped.items()))


@dataclass(slots=True)
class ContentRequest:
    """What the caller asked for in one episode."""

    subject: str
    grade: int
    topic: str
    difficulty: Difficulty = Difficulty.MEDIUM
    task_types: tuple[TaskType, ...] = ()
    closed_count: int = 0
    open_count: int = 0

    @classmethod
    def from_format(  # noqa: PLR0913
        cls,
        format_id: str,
        variant_index: int,
        *,
        subject: str,
        grade: int,
        topic: str,
        difficulty: Difficulty = Difficulty.MEDIUM,
        task_types: tuple[TaskType, ...] = (),
    ) -> ContentRequest:
        """Build a request whose counts come from the worksheet format catalogue."""

        from worksheet_gen.generation.formats import resolve_variant

        worksheet_format, variant = resolve_variant(format_id, variant_index)
        return cls(
            subject=subject,
            grade=grade,
            topic=topic,
            difficulty=difficulty,
            task_types=task_types or worksheet_format.recommended_types,
            closed_count=variant.closed_count,
            open_count=variant.open_count,
        )

    def validate(self) -> None:
        """Raise ``ValueError`` when the request cannot be planned."""

        if not 1 <= self.grade <= 11:  # noqa: PLR2004
            raise ValueError(f"Grade must be within 1..11, got {self.grade}.")
        topic = self.topic.strip()
        if not 3 <= len(topic) <= 200:  # noqa: PLR2004
            raise ValueError("Topic must be 3..200 characters long.")
        if self.closed_count < 0 or self.open_count < 0:
            raise ValueError("Requested task counts must be >= 0.")
        if not self.task_types:
            raise ValueError("At least one task type must be selected.")

    @property
    def total_count(self) -> int:
        return self.closed_count + self.open_count

    def requested_for(self, category: TaskCategory) -> int:
        if category == TaskCategory.CLOSED:
            return self.closed_count
        return self.open_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "grade": self.grade,
            "topic": self.topic,
            "difficulty": self.difficulty.value,
            "task_types": [task_type.value for task_type in self.task_types],
            "closed_count": self.closed_count,
            "open_count": self.open_count,
        }


@dataclass(slots=True)
class EpisodeTelemetry:
    """Counters collected while running one episode."""

    requested_closed: int = 0
    requested_open: int = 0
    delivered_closed: int = 0
    delivered_open: int = 0
    attempts: int = 0
    backfill_succeeded: int = 0
    backfill_failed: int = 0
    backfill_failure_reasons: list[str] = field(default_factory=list)
    breaker_state_start: CircuitState | None = None
    breaker_state_end: CircuitState | None = None
    breaker_skipped: bool = False
    deadline_reached: bool = False
    discarded_items: int = 0
    structural_errors: list[ValidationIssue] = field(default_factory=list)
    structural_warnings: list[ValidationIssue] = field(default_factory=list)
    dropped_tasks: int = 0
    semantic_issues: list[AgentIssue] = field(default_factory=list)
    unresolved_issues: list[AgentIssue] = field(default_factory=list)
    fix_attempts: int = 0
    auto_fixed: int = 0
    duration_ms: int = 0
    token_usage: dict[str, TokenUsage] = field(default_factory=dict)

    def record_usage(self, role: str, usage: TokenUsage | None) -> None:
        """Add one call's usage to the per-role totals; ``None`` means not reported."""

        if usage is None:
            return
        self.token_usage[role] = self.token_usage.get(role, TokenUsage()) + usage

    @property
    def total_usage(self) -> TokenUsage:
        return sum(self.token_usage.values(), TokenUsage())

    @property
    def issues_found(self) -> int:
        return len(self.structural_errors) + len(
            [issue for issue in self.semantic_issues if issue.task_index >= 0],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "requested": {"closed": self.requested_closed, "open": self.requested_open},
            "delivered": {"closed": self.delivered_closed, "open": self.delivered_open},
            "attempts": self.attempts,
            "backfill_succeeded": self.backfill_succeeded,
            "backfill_failed": self.backfill_failed,
            "backfill_failure_reasons": list(self.backfill_failure_reasons),
            "breaker_state_start": (
                self.breaker_state_start.value if self.breaker_state_start else None
            ),
            "breaker_state_end": self.breaker_state_end.value if self.breaker_state_end else None,
            "breaker_skipped": self.breaker_skipped,
            "deadline_reached": self.deadline_reached,
            "discarded_items": self.discarded_items,
            "structural_errors": [_issue_dict(issue) for issue in self.structural_errors],
            "structural_warnings": [_issue_dict(issue) for issue in self.structural_warnings],
            "dropped_tasks": self.dropped_tasks,
            "semantic_issues": [_agent_issue_dict(issue) for issue in self.semantic_issues],
            "unresolved_issues": [_agent_issue_dict(issue) for issue in self.unresolved_issues],
            "issues_found": self.issues_found,
            "fix_attempts": self.fix_attempts,
            "auto_fixed": self.auto_fixed,
            "duration_ms": self.duration_ms,
            "token_usage": {
                role: usage.to_dict() for role, usage in sorted(self.token_usage.items())
            },
            "total_usage": self.total_usage.to_dict(),
        }


@dataclass(slots=True)
class EpisodeResult:
    """Final batch of one episode plus its telemetry."""

    request: ContentRequest
    closed_tasks: list[GeneratedTask]
    open_tasks: list[GeneratedTask]
    telemetry: EpisodeTelemetry

    @property
    def tasks(self) -> list[GeneratedTask]:
        return [*self.closed_tasks, *self.open_tasks]

    @property
    def is_complete(self) -> bool:
        return (
            len(self.closed_tasks) == self.request.closed_count
            and len(self.open_tasks) == self.request.open_count
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "request": self.request.to_dict(),
            "closed_tasks": [task.to_payload() for task in self.closed_tasks],
            "open_tasks": [task.to_payload() for task in self.open_tasks],
            "telemetry": self.telemetry.to_dict(),
        }


def _issue_dict(issue: ValidationIssue) -> dict[str, Any]:
    return {
        "task_index": issue.task_index,
        "field": issue.field,
        "code": issue.code,
        "message": issue.message,
        "severity": issue.severity.value,
    }


def _agent_issue_dict(issue: AgentIssue) -> dict[str, Any]:
    return {
        "task_index": issue.task_index,
        "agent_name": issue.agent_name,
        "code": issue.code,
        "message": issue.message,
        "severity": issue.severity.value,
        "suggestion": issue.suggestion,
    }
