"""Prepaid generation quota ledger backed by SQLModel + SQLite."""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from worksheet_gen.storage.alembic_runner import upgrade_head
from worksheet_gen.storage.common import build_sqlite_engine, utc_now
from worksheet_gen.storage.sqlmodel_models import Account

logger = logging.getLogger(__name__)


class SqlQuotaLedger:
    """Integer balance per account, mutated only through atomic conditional updates."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def decrement_if_positive(self, account_id: str) -> bool:
        """Take one unit when the balance allows it; ``False`` otherwise."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Account)
                .where(
                    col(Account.account_id) == account_id,
                    col(Account.balance) > 0,
                )
                .values(balance=col(Account.balance) - 1, updated_at=utc_now()),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.info("Quota decrement refused for account %s", account_id)
                return False
            session.commit()
        return True

    def increment(self, account_id: str) -> None:
        """Give one unit back; compensates a decrement of a failed episode."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Account)
                .where(col(Account.account_id) == account_id)
                .values(balance=col(Account.balance) + 1, updated_at=utc_now()),
            )
            if result.rowcount != 1:
                session.rollback()
                raise LookupError(f"Unknown account: {account_id}")
            session.commit()

    def grant(self, account_id: str, amount: int) -> int:
        """Add `amount` units, creating the account when needed. Returns the new balance."""

        if amount <= 0:
            raise ValueError("Granted amount must be > 0.")
        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Account)
                .where(col(Account.account_id) == account_id)
                .values(balance=col(Account.balance) + amount, updated_at=now),
            )
            if result.rowcount != 1:
                session.add(
                    Account(
                        account_id=account_id,
                        balance=amount,
                        created_at=now,
                        updated_at=now,
                    ),
                )
            session.commit()
        return self.balance(account_id)

    def balance(self, account_id: str) -> int:
        """Current balance; unknown accounts hold zero."""

        with Session(self.engine) as session:
            account = session.exec(
                select(Account).where(Account.account_id == account_id),
            ).one_or_none()
            if account is None:
                return 0
            return account.balance
