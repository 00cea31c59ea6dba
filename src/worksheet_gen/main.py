"""CLI entrypoint for worksheet-gen."""

import logging
from pathlib import Path

import rich_click as click

from worksheet_gen import __version__
from worksheet_gen.controllers import (
    GenerateCommand,
    LedgerBalanceCommand,
    LedgerGrantCommand,
    PlanCommand,
    WorksheetCliController,
)
from worksheet_gen.generation.errors import GenerationError
from worksheet_gen.generation.formats import DEFAULT_FORMAT_ID, DEFAULT_VARIANT_INDEX, FORMATS
from worksheet_gen.generation.models import Difficulty, TaskType

click.rich_click.USE_MARKDOWN = True
CONTROLLER = WorksheetCliController()

_TASK_TYPE_CHOICE = click.Choice([task_type.value for task_type in TaskType])


@click.group()
@click.version_option(version=__version__, prog_name="worksheet-gen")
def worksheet_gen() -> None:
    """Worksheet generation CLI."""


@worksheet_gen.command("plan")
@click.option("--closed", "closed_count", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--open", "open_count", type=click.IntRange(min=0), default=0, show_default=True)
@click.option(
    "--type",
    "task_types",
    type=_TASK_TYPE_CHOICE,
    multiple=True,
    help="Selected task type. Can be repeated; all types when omitted.",
)
def plan(closed_count: int, open_count: int, task_types: tuple[str, ...]) -> None:
    """Print the per-type breakdown for the requested counts."""

    _emit_lines(
        CONTROLLER.plan(
            PlanCommand(
                closed_count=closed_count,
                open_count=open_count,
                task_types=tuple(TaskType(value) for value in task_types),
            ),
        ),
    )


@worksheet_gen.command("formats")
def formats() -> None:
    """List worksheet formats, their variants and quota cost."""

    _emit_lines(CONTROLLER.formats())


@worksheet_gen.group()
def ledger() -> None:
    """Quota ledger commands."""


@ledger.command("grant")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--account", "account_id", required=True, help="Account id.")
@click.option("--amount", type=click.IntRange(min=1), required=True, help="Units to add.")
def ledger_grant(db_path: Path | None, account_id: str, amount: int) -> None:
    """Add generation quota to an account."""

    _emit_lines(
        CONTROLLER.ledger_grant(
            LedgerGrantCommand(db_path=db_path, account_id=account_id, amount=amount),
        ),
    )


@ledger.command("balance")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--account", "account_id", required=True, help="Account id.")
def ledger_balance(db_path: Path | None, account_id: str) -> None:
    """Show the remaining quota of an account."""

    _emit_lines(
        CONTROLLER.ledger_balance(LedgerBalanceCommand(db_path=db_path, account_id=account_id)),
    )


@worksheet_gen.command("generate")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--account", "account_id", required=True, help="Account charged for the worksheet.")
@click.option("--subject", required=True, help="Subject, for example math.")
@click.option("--grade", type=click.IntRange(min=1, max=11), required=True)
@click.option("--topic", required=True, help="Worksheet topic.")
@click.option(
    "--difficulty",
    type=click.Choice([difficulty.value for difficulty in Difficulty]),
    default=Difficulty.MEDIUM.value,
    show_default=True,
)
@click.option(
    "--format",
    "format_id",
    type=click.Choice(sorted(FORMATS)),
    default=DEFAULT_FORMAT_ID,
    show_default=True,
)
@click.option(
    "--variant",
    "variant_index",
    type=click.IntRange(min=0),
    default=DEFAULT_VARIANT_INDEX,
    show_default=True,
    help="Index of the format variant (see `formats`).",
)
@click.option(
    "--type",
    "task_types",
    type=_TASK_TYPE_CHOICE,
    multiple=True,
    help="Selected task type. Can be repeated; format defaults when omitted.",
)
@click.option("--dummy", is_flag=True, help="Use the offline dummy provider.")
@click.option("--no-auto-fix", is_flag=True, help="Report semantic issues without fixing them.")
@click.option("--verbose", is_flag=True, help="Log pipeline progress to stderr.")
def generate(  # noqa: PLR0913
    db_path: Path | None,
    account_id: str,
    subject: str,
    grade: int,
    topic: str,
    difficulty: str,
    format_id: str,
    variant_index: int,
    task_types: tuple[str, ...],
    dummy: bool,
    no_auto_fix: bool,
    verbose: bool,
) -> None:
    """Generate one worksheet and charge one quota unit."""

    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    try:
        lines = CONTROLLER.generate(
            GenerateCommand(
                db_path=db_path,
                account_id=account_id,
                subject=subject,
                grade=grade,
                topic=topic,
                difficulty=Difficulty(difficulty),
                format_id=format_id,
                variant_index=variant_index,
                task_types=tuple(TaskType(value) for value in task_types),
                dummy=dummy,
                auto_fix=not no_auto_fix,
            ),
        )
    except (GenerationError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    worksheet_gen()
