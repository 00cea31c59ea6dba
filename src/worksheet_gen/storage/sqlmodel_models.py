"""SQLModel ORM tables for quota and worksheet storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Text
from sqlmodel import Field, SQLModel


class Account(SQLModel, table=True):
    __tablename__ = "accounts"  # type: ignore[bad-override]

    account_id: str = Field(primary_key=True)
    balance: int = Field(default=0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Worksheet(SQLModel, table=True):
    __tablename__ = "worksheets"  # type: ignore[bad-override]

    worksheet_id: str = Field(primary_key=True)
    account_id: str = Field(
        sa_column=Column(
            ForeignKey("accounts.account_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    subject: str
    grade: int
    topic: str
    closed_count: int
    open_count: int
    is_complete: bool
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
