"""
Verification history: a caller-scoped, append-only audit trail of verdicts.

Re-verifying the same certificate is a new event and always appends. The
only de-duplication is per pipeline invocation, so an internal retry never
records the same verification twice.
"""

import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import DEFAULT_DATABASE_URL
from .models import HistoryEntry, Verdict

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50

Base = declarative_base()


class VerificationHistoryRecord(Base):
    __tablename__ = 'verification_history'
    __table_args__ = (
        UniqueConstraint('caller_id', 'invocation_id', name='uq_history_invocation'),
    )

    id = Column(Integer, primary_key=True, index=True)
    caller_id = Column(String, index=True, nullable=False)
    invocation_id = Column(String, nullable=True)
    certificate_id = Column(String, index=True, nullable=False)
    status = Column(String, nullable=False)  # 'verified', 'tampered', 'invalid'
    result = Column(Text, nullable=False)  # verdict JSON
    reasons = Column(Text, nullable=False)  # JSON array, verbatim
    created_at = Column(DateTime(timezone=True), nullable=False)

    def to_entry(self) -> HistoryEntry:
        created_at = self.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return HistoryEntry(
            id=self.id,
            caller_id=self.caller_id,
            identifier=self.certificate_id,
            verdict=Verdict.from_dict(json.loads(self.result)),
            created_at=created_at,
        )


def make_engine(database_url: str = DEFAULT_DATABASE_URL):
    if database_url in ('sqlite://', 'sqlite:///:memory:'):
        # One shared connection so every thread sees the same in-memory database
        return create_engine(database_url, connect_args={'check_same_thread': False},
                             poolclass=StaticPool)
    if database_url.startswith('sqlite'):
        return create_engine(database_url, connect_args={'check_same_thread': False})
    return create_engine(database_url)


class DatabaseManager:
    """Session scope for history operations"""

    def __init__(self, session_factory):
        self.session = session_factory()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.session.rollback()
        self.session.close()


class VerificationHistoryRecorder:
    """Persist verdicts to the caller's audit trail"""

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL, engine=None):
        self.engine = engine if engine is not None else make_engine(database_url)
        self.SessionLocal = sessionmaker(bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    def _find(self, db: DatabaseManager, caller_id: str, invocation_id: str):
        return db.session.query(VerificationHistoryRecord).filter(
            VerificationHistoryRecord.caller_id == caller_id,
            VerificationHistoryRecord.invocation_id == invocation_id,
        ).one_or_none()

    def record(self, caller_id: str, verdict: Verdict, invocation_id: Optional[str] = None) -> HistoryEntry:
        """Append a verdict; a repeated invocation id returns the existing entry"""
        with DatabaseManager(self.SessionLocal) as db:
            if invocation_id is not None:
                existing = self._find(db, caller_id, invocation_id)
                if existing is not None:
                    logger.info(f"Invocation {invocation_id} already recorded for {caller_id}, skipping")
                    return existing.to_entry()

            row = VerificationHistoryRecord(
                caller_id=caller_id,
                invocation_id=invocation_id,
                certificate_id=verdict.identifier,
                status=verdict.outcome.history_status,
                result=json.dumps(verdict.to_dict()),
                reasons=json.dumps(list(verdict.reasons)),
                created_at=datetime.now(timezone.utc),
            )
            db.session.add(row)
            try:
                db.session.commit()
            except IntegrityError:
                # Lost a race with a retry of the same invocation
                db.session.rollback()
                existing = self._find(db, caller_id, invocation_id)
                if existing is None:
                    raise
                return existing.to_entry()

            logger.info(f"Stored verification history entry {row.id} for {caller_id}: "
                        f"{verdict.identifier} -> {row.status}")
            return row.to_entry()

    def entries(self, caller_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[HistoryEntry]:
        """Caller's history, newest first"""
        with DatabaseManager(self.SessionLocal) as db:
            rows = db.session.query(VerificationHistoryRecord).filter(
                VerificationHistoryRecord.caller_id == caller_id
            ).order_by(
                VerificationHistoryRecord.created_at.desc(),
                VerificationHistoryRecord.id.desc(),
            ).limit(limit).all()
            return [row.to_entry() for row in rows]

    def count(self, caller_id: Optional[str] = None) -> int:
        with DatabaseManager(self.SessionLocal) as db:
            query = db.session.query(VerificationHistoryRecord)
            if caller_id is not None:
                query = query.filter(VerificationHistoryRecord.caller_id == caller_id)
            return query.count()
