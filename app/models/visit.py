from sqlalchemy import Column, Integer, String, Text, DateTime, Enum, ForeignKey, func
from sqlalchemy.orm import relationship
from app.db.base import Base
from app.schemas.visit_status import VisitStatus, PhaseKind, VisitTransition


class Visit(Base):
    __tablename__ = "visits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(100), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(Enum(VisitStatus, native_enum=False, length=32), nullable=False,
                    default=VisitStatus.NOT_STARTED, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)

    # Location snapshot at creation, stored exactly as the client sent it
    latitude = Column(String(32), nullable=True)
    longitude = Column(String(32), nullable=True)

    block_reason = Column(Text, nullable=True)
    blocked_since = Column(DateTime, nullable=True)
    paused_phase = Column(Enum(PhaseKind, native_enum=False, length=16), nullable=True)

    # Minutes, frozen when the corresponding phase closes
    total_journey_time = Column(Integer, nullable=True)
    total_service_time = Column(Integer, nullable=True)

    last_transition = Column(Enum(VisitTransition, native_enum=False, length=32), nullable=True)
    notes = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    engineer = relationship("User", back_populates="visits", foreign_keys=[user_id])
    phases = relationship("VisitPhase", back_populates="visit", lazy="selectin",
                          order_by="VisitPhase.id")
    collaborator_links = relationship("VisitCollaborator", back_populates="visit", lazy="selectin",
                                      order_by="VisitCollaborator.id")
    events = relationship("VisitEvent", back_populates="visit", order_by="VisitEvent.id")

    def latest_phase(self, kind: PhaseKind):
        for phase in reversed(self.phases):
            if phase.kind == kind:
                return phase
        return None

    def open_phase(self):
        for phase in reversed(self.phases):
            if phase.ended_at is None:
                return phase
        return None

    @property
    def journey_start_time(self):
        phase = self.latest_phase(PhaseKind.journey)
        return phase.started_at if phase else None

    @property
    def journey_end_time(self):
        phase = self.latest_phase(PhaseKind.journey)
        return phase.ended_at if phase else None

    @property
    def service_start_time(self):
        phase = self.latest_phase(PhaseKind.service)
        return phase.started_at if phase else None

    @property
    def service_end_time(self):
        phase = self.latest_phase(PhaseKind.service)
        return phase.ended_at if phase else None

    @property
    def collaborators(self):
        current = []
        for link in self.collaborator_links:
            if link.left_at is None and link.engineer_id != self.user_id and link.engineer_id not in current:
                current.append(link.engineer_id)
        return current

    @property
    def collaboration_notes(self):
        notes = [link.note for link in self.collaborator_links if link.note]
        return "\n".join(notes) if notes else None


class VisitPhase(Base):
    """One journey or service interval of a visit"""
    __tablename__ = "visit_phases"

    id = Column(Integer, primary_key=True, autoincrement=True)
    visit_id = Column(Integer, ForeignKey("visits.id"), nullable=False, index=True)
    kind = Column(Enum(PhaseKind, native_enum=False, length=16), nullable=False)
    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    minutes = Column(Integer, nullable=True)

    visit = relationship("Visit", back_populates="phases")


class VisitCollaborator(Base):
    __tablename__ = "visit_collaborators"

    id = Column(Integer, primary_key=True, autoincrement=True)
    visit_id = Column(Integer, ForeignKey("visits.id"), nullable=False, index=True)
    engineer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    note = Column(Text, nullable=True)
    joined_at = Column(DateTime, nullable=False)
    left_at = Column(DateTime, nullable=True)

    visit = relationship("Visit", back_populates="collaborator_links")
    engineer = relationship("User")
