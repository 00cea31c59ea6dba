"""Write-only persistence of generated worksheets."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlmodel import Session, select

from worksheet_gen.generation.models import EpisodeResult
from worksheet_gen.storage.alembic_runner import upgrade_head
from worksheet_gen.storage.common import build_sqlite_engine, utc_now
from worksheet_gen.storage.sqlmodel_models import Worksheet


class SqlWorksheetStore:
    """Store episode results as JSON payload rows in the ``worksheets`` table."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def store(self, account_id: str, result: EpisodeResult) -> str:
        worksheet_id = str(uuid4())
        request = result.request
        row = Worksheet(
            worksheet_id=worksheet_id,
            account_id=account_id,
            subject=request.subject,
            grade=request.grade,
            topic=request.topic,
            closed_count=len(result.closed_tasks),
            open_count=len(result.open_tasks),
            is_complete=result.is_complete,
            payload_json=json.dumps(result.to_payload(), ensure_ascii=False),
            created_at=utc_now(),
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
        return worksheet_id

    def load(self, worksheet_id: str) -> dict[str, Any] | None:
        """Stored payload, or ``None`` for an unknown id."""

        with Session(self.engine) as session:
            row = session.exec(
                select(Worksheet).where(Worksheet.worksheet_id == worksheet_id),
            ).one_or_none()
            if row is None:
                return None
            return json.loads(row.payload_json)
