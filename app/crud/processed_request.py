from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
from app.models.processed_request import ProcessedRequest

def get_processed_request(db: Session, idempotency_key: str) -> Optional[ProcessedRequest]:
    return db.query(ProcessedRequest)\
        .filter(ProcessedRequest.idempotency_key == idempotency_key)\
        .first()

def remember_request(
    db: Session,
    idempotency_key: str,
    actor_id: int,
    operation: str,
    created_at: datetime,
    visit_id: Optional[int] = None,
    location_id: Optional[int] = None,
) -> ProcessedRequest:
    """Record an applied request in the caller's transaction"""
    record = ProcessedRequest(
        idempotency_key=idempotency_key,
        actor_id=actor_id,
        operation=operation,
        visit_id=visit_id,
        location_id=location_id,
        created_at=created_at,
    )
    db.add(record)
    return record
