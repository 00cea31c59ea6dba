from __future__ import annotations

from pathlib import Path

import allure
from click.testing import CliRunner

from worksheet_gen import __version__
from worksheet_gen.main import worksheet_gen

pytestmark = [
    allure.epic("CLI"),
    allure.feature("worksheet-gen commands"),
]


def test_version() -> None:
    result = CliRunner().invoke(worksheet_gen, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_plan_prints_breakdown() -> None:
    result = CliRunner().invoke(
        worksheet_gen,
        ["plan", "--closed", "10", "--open", "15"],
    )

    assert result.exit_code == 0, result.output
    assert "multiple_choice=3 (closed)" in result.output
    assert "single_choice=7 (closed)" in result.output
    assert "matching=3 (open)" in result.output
    assert "open_question=9 (open)" in result.output


def test_plan_with_selected_types() -> None:
    result = CliRunner().invoke(
        worksheet_gen,
        ["plan", "--open", "5", "--type", "matching", "--type", "fill_blank"],
    )

    assert result.exit_code == 0, result.output
    assert "matching=3 (open)" in result.output
    assert "fill_blank=2 (open)" in result.output


def test_formats_lists_variants() -> None:
    result = CliRunner().invoke(worksheet_gen, ["formats"])

    assert result.exit_code == 0
    assert "test_and_open: Test and open questions" in result.output
    assert "[2] closed=20 open=15 cost=3" in result.output


def test_ledger_grant_and_balance(tmp_path: Path) -> None:
    db_path = str(tmp_path / "cli.db")
    runner = CliRunner()

    grant = runner.invoke(
        worksheet_gen,
        ["ledger", "grant", "--db-path", db_path, "--account", "teacher-1", "--amount", "3"],
    )
    balance = runner.invoke(
        worksheet_gen,
        ["ledger", "balance", "--db-path", db_path, "--account", "teacher-1"],
    )

    assert grant.exit_code == 0, grant.output
    assert "balance=3" in grant.output
    assert balance.exit_code == 0, balance.output
    assert "Account teacher-1: balance=3" in balance.output


def test_generate_with_dummy_provider(tmp_path: Path) -> None:
    db_path = str(tmp_path / "cli.db")
    runner = CliRunner()
    runner.invoke(
        worksheet_gen,
        ["ledger", "grant", "--db-path", db_path, "--account", "teacher-1", "--amount", "1"],
    )

    result = runner.invoke(
        worksheet_gen,
        [
            "generate",
            "--db-path",
            db_path,
            "--account",
            "teacher-1",
            "--subject",
            "biology",
            "--grade",
            "6",
            "--topic",
            "Photosynthesis",
            "--format",
            "test_and_open",
            "--dummy",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "complete=yes" in result.output
    assert "Delivered: closed=10/10 open=5/5" in result.output
    assert "Tokens: prompt=0 completion=0" in result.output
    assert "remaining balance=0" in result.output


def test_generate_without_quota_fails(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        worksheet_gen,
        [
            "generate",
            "--db-path",
            str(tmp_path / "cli.db"),
            "--account",
            "nobody",
            "--subject",
            "biology",
            "--grade",
            "6",
            "--topic",
            "Photosynthesis",
            "--dummy",
        ],
    )

    assert result.exit_code == 1
    assert "No generation quota left" in result.output
