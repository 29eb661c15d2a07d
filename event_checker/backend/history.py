from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import DateTime, Integer, String, Text, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from ..engine.models import Verdict

UTC = timezone.utc


class Base(DeclarativeBase):
    pass


class CheckRunRecord(Base):
    __tablename__ = "check_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    expectation_id: Mapped[str] = mapped_column(String(255), index=True)
    status: Mapped[str] = mapped_column(String(32))
    detail: Mapped[str] = mapped_column(Text, default="")
    unmatched: Mapped[str] = mapped_column(Text, default="[]")
    events_seen: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    @property
    def unmatched_patterns(self) -> List[str]:
        return json.loads(self.unmatched or "[]")


def get_session_factory(database_url: str) -> sessionmaker:
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, future=True, connect_args=connect_args)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


class RunHistoryRepository:
    """Encapsulates read/write operations on recorded checker verdicts."""

    def __init__(self, session: Session):
        self.session = session

    def record(self, expectation_id: str, verdict: Verdict) -> CheckRunRecord:
        record = CheckRunRecord(
            expectation_id=expectation_id,
            status=verdict.status.value,
            detail=verdict.detail,
            unmatched=json.dumps([pattern.describe() for pattern in verdict.unmatched]),
            events_seen=verdict.events_seen,
            created_at=datetime.now(UTC),
        )
        self.session.add(record)
        return record

    def recent(
        self, limit: int = 20, expectation_id: Optional[str] = None
    ) -> List[CheckRunRecord]:
        stmt = select(CheckRunRecord)
        if expectation_id is not None:
            stmt = stmt.where(CheckRunRecord.expectation_id == expectation_id)
        stmt = stmt.order_by(CheckRunRecord.id.desc()).limit(limit)
        return list(self.session.execute(stmt).scalars().all())


class HistoryStore:
    """Creates the history database on first use."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._factory: Optional[sessionmaker] = None
        self._lock = threading.Lock()

    def session(self) -> Session:
        with self._lock:
            if self._factory is None:
                self._factory = get_session_factory(self.database_url)
        return self._factory()
