"""Controllers for worksheet-gen CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, replace
from pathlib import Path

from worksheet_gen.config import Settings
from worksheet_gen.generation.formats import FORMATS
from worksheet_gen.generation.models import ContentRequest, Difficulty, TaskType
from worksheet_gen.generation.planner import plan_all
from worksheet_gen.generation.provider.http_provider import HttpContentProvider
from worksheet_gen.generation.service import build_provider, build_service
from worksheet_gen.storage.ledger import SqlQuotaLedger
from worksheet_gen.storage.worksheet_store import SqlWorksheetStore


@dataclass(slots=True)
class PlanCommand:
    """CLI inputs for the plan command."""

    closed_count: int
    open_count: int
    task_types: tuple[TaskType, ...]


@dataclass(slots=True)
class LedgerGrantCommand:
    """CLI inputs for ledger grant."""

    db_path: Path | None
    account_id: str
    amount: int


@dataclass(slots=True)
class LedgerBalanceCommand:
    """CLI inputs for ledger balance."""

    db_path: Path | None
    account_id: str


@dataclass(slots=True)
class GenerateCommand:
    """CLI inputs for the generate command."""

    db_path: Path | None
    account_id: str
    subject: str
    grade: int
    topic: str
    difficulty: Difficulty
    format_id: str
    variant_index: int
    task_types: tuple[TaskType, ...]
    dummy: bool
    auto_fix: bool


class WorksheetCliController:
    """Coordinates CLI command execution."""

    def plan(self, command: PlanCommand) -> list[str]:
        task_types = command.task_types or tuple(TaskType)
        plan = plan_all(command.closed_count, command.open_count, task_types)
        lines = [f"Plan for closed={command.closed_count} open={command.open_count}:"]
        if not plan:
            lines.append("  (nothing to generate)")
        for entry in plan:
            lines.append(
                f"  {entry.task_type.value}={entry.count} ({entry.task_type.category.value})",
            )
        return lines

    def formats(self) -> list[str]:
        lines: list[str] = []
        for worksheet_format in FORMATS.values():
            lines.append(f"{worksheet_format.format_id}: {worksheet_format.title}")
            for index, variant in enumerate(worksheet_format.variants):
                lines.append(
                    f"  [{index}] closed={variant.closed_count} open={variant.open_count} "
                    f"cost={variant.cost}",
                )
        return lines

    def ledger_grant(self, command: LedgerGrantCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _ledger(settings) as ledger:
            balance = ledger.grant(command.account_id, command.amount)
        return [f"Granted {command.amount} to {command.account_id}: balance={balance}"]

    def ledger_balance(self, command: LedgerBalanceCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _ledger(settings) as ledger:
            balance = ledger.balance(command.account_id)
        return [f"Account {command.account_id}: balance={balance}"]

    def generate(self, command: GenerateCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if command.dummy:
            settings = replace(settings, provider=replace(settings.provider, kind="dummy"))
        if not command.auto_fix:
            settings = replace(
                settings,
                orchestrator=replace(settings.orchestrator, auto_fix=False),
            )
        settings.validate()

        request = ContentRequest.from_format(
            command.format_id,
            command.variant_index,
            subject=command.subject,
            grade=command.grade,
            topic=command.topic,
            difficulty=command.difficulty,
            task_types=command.task_types,
        )
        with ExitStack() as stack:
            ledger = stack.enter_context(_ledger(settings))
            store = SqlWorksheetStore(settings.storage.db_path)
            stack.callback(store.close)
            provider = build_provider(settings)
            if isinstance(provider, HttpContentProvider):
                stack.callback(provider.close)
            service = build_service(settings, ledger=ledger, store=store, provider=provider)
            outcome = service.generate(command.account_id, request)
            balance = ledger.balance(command.account_id)

        result = outcome.result
        telemetry = result.telemetry
        return [
            f"Worksheet stored: worksheet_id={outcome.worksheet_id} "
            f"complete={'yes' if result.is_complete else 'no'}",
            f"Delivered: closed={telemetry.delivered_closed}/{telemetry.requested_closed} "
            f"open={telemetry.delivered_open}/{telemetry.requested_open}",
            f"Backfill: attempts={telemetry.attempts} "
            f"succeeded={telemetry.backfill_succeeded} failed={telemetry.backfill_failed} "
            f"breaker_skipped={'yes' if telemetry.breaker_skipped else 'no'} "
            f"deadline_reached={'yes' if telemetry.deadline_reached else 'no'}",
            f"Validation: dropped={telemetry.dropped_tasks} "
            f"issues={telemetry.issues_found} fix_attempts={telemetry.fix_attempts} "
            f"auto_fixed={telemetry.auto_fixed} unresolved={len(telemetry.unresolved_issues)}",
            f"Tokens: prompt={telemetry.total_usage.prompt_tokens} "
            f"completion={telemetry.total_usage.completion_tokens}",
            f"Duration: {telemetry.duration_ms} ms; remaining balance={balance}",
        ]


@contextmanager
def _ledger(settings: Settings) -> Iterator[SqlQuotaLedger]:
    ledger = SqlQuotaLedger(settings.storage.db_path)
    try:
        ledger.init_schema()
        yield ledger
    finally:
        ledger.close()
