from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from app.db.base import Base

class ProcessedRequest(Base):
    """Idempotency key of a mutating call that has already been applied"""
    __tablename__ = "processed_requests"

    idempotency_key = Column(String(128), primary_key=True)
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    operation = Column(String(64), nullable=False)
    visit_id = Column(Integer, ForeignKey("visits.id"), nullable=True)
    location_id = Column(Integer, ForeignKey("location_samples.id"), nullable=True)
    created_at = Column(DateTime, nullable=False)
