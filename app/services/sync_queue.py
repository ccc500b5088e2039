"""
Persistent ordered queue of outbound mutating calls for offline clients.

Lives in a local SQLite file on the device, separate from the server
schema. Entries are replayed strictly by sequence number; each carries a
client-generated idempotency key so the server can recognise replays.
"""
import json
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, DateTime, Enum as SAEnum, Integer, String, Text
from sqlalchemy.orm import declarative_base, sessionmaker

from app.core.config import settings
from app.db.session import build_engine
from app.utils.timeutils import utcnow

LocalBase = declarative_base()


class EntryState(str, Enum):
    pending = "pending"
    done = "done"
    failed = "failed"


class OutboundRequest(LocalBase):
    __tablename__ = "outbound_requests"

    sequence = Column(Integer, primary_key=True, autoincrement=True)
    method = Column(String(10), nullable=False)
    path = Column(String(255), nullable=False)
    body = Column(Text, nullable=True)
    idempotency_key = Column(String(64), nullable=False, unique=True)
    state = Column(SAEnum(EntryState, native_enum=False, length=16), nullable=False,
                   default=EntryState.pending, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    response_status = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=True)

    @property
    def payload(self) -> Optional[Dict[str, Any]]:
        return json.loads(self.body) if self.body else None


class SyncQueue:
    def __init__(self, url: Optional[str] = None):
        self.engine = build_engine(url or settings.SYNC_QUEUE_URL)
        LocalBase.metadata.create_all(bind=self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    def enqueue(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> OutboundRequest:
        entry = OutboundRequest(
            method=method.upper(),
            path=path,
            body=json.dumps(body, default=str) if body is not None else None,
            idempotency_key=str(uuid.uuid4()),
            state=EntryState.pending,
            attempts=0,
            created_at=utcnow(),
        )
        with self.Session() as session:
            session.add(entry)
            session.commit()
        return entry

    def pending(self, limit: Optional[int] = None) -> List[OutboundRequest]:
        """Pending entries, oldest first"""
        with self.Session() as session:
            query = session.query(OutboundRequest)\
                .filter(OutboundRequest.state == EntryState.pending)\
                .order_by(OutboundRequest.sequence)
            if limit is not None:
                query = query.limit(limit)
            return query.all()

    def pending_count(self) -> int:
        with self.Session() as session:
            return session.query(OutboundRequest)\
                .filter(OutboundRequest.state == EntryState.pending)\
                .count()

    def failed(self) -> List[OutboundRequest]:
        with self.Session() as session:
            return session.query(OutboundRequest)\
                .filter(OutboundRequest.state == EntryState.failed)\
                .order_by(OutboundRequest.sequence)\
                .all()

    def mark_done(self, sequence: int, status_code: int) -> None:
        self._update(sequence, state=EntryState.done, response_status=status_code, last_error=None)

    def mark_failed(self, sequence: int, status_code: int, error: str) -> None:
        self._update(sequence, state=EntryState.failed, response_status=status_code, last_error=error)

    def record_attempt(self, sequence: int, error: str) -> None:
        with self.Session() as session:
            entry = session.get(OutboundRequest, sequence)
            entry.attempts += 1
            entry.last_error = error
            entry.updated_at = utcnow()
            session.commit()

    def _update(self, sequence: int, **fields) -> None:
        with self.Session() as session:
            entry = session.get(OutboundRequest, sequence)
            for name, value in fields.items():
                setattr(entry, name, value)
            entry.attempts += 1
            entry.updated_at = utcnow()
            session.commit()
