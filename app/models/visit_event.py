from sqlalchemy import Column, Integer, Text, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from app.db.base import Base
from app.schemas.visit_status import VisitStatus, VisitTransition

class VisitEvent(Base):
    __tablename__ = "visit_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    visit_id = Column(Integer, ForeignKey("visits.id"), nullable=False, index=True)
    transition = Column(Enum(VisitTransition, native_enum=False, length=32), nullable=False)
    from_status = Column(Enum(VisitStatus, native_enum=False, length=32), nullable=True)
    to_status = Column(Enum(VisitStatus, native_enum=False, length=32), nullable=False)

    # Metadata
    actor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    previous_user_id = Column(Integer, nullable=True)
    new_user_id = Column(Integer, nullable=True)
    detail = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)

    # Relationships
    visit = relationship("Visit", back_populates="events")
    actor = relationship("User")
