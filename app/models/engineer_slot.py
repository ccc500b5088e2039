from sqlalchemy import Column, Integer, DateTime, Enum, ForeignKey, func
from sqlalchemy.orm import relationship
from app.db.base import Base
from app.schemas.visit_status import SlotRole

class EngineerActiveSlot(Base):
    """Held while an engineer owns or collaborates on an ON_ROUTE/IN_SERVICE visit.

    The primary key on engineer_id is what stops two near-simultaneous
    claims for the same engineer from both succeeding.
    """
    __tablename__ = "engineer_active_slots"

    engineer_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    visit_id = Column(Integer, ForeignKey("visits.id"), nullable=False, index=True)
    role = Column(Enum(SlotRole, native_enum=False, length=16), nullable=False)
    claimed_at = Column(DateTime, server_default=func.now())

    visit = relationship("Visit")
