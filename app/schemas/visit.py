from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional, Union

from app.schemas.visit_status import VisitStatus, PauseReason, ResumeType, PhaseKind, VisitTransition

Coordinate = Union[str, float]


class CamelModel(BaseModel):
    class Config:
        populate_by_name = True


class StartJourneyRequest(CamelModel):
    job_id: Optional[str] = Field(None, alias="jobId")
    latitude: Optional[Coordinate] = None
    longitude: Optional[Coordinate] = None
    notes: Optional[str] = None


class PlannedVisitCreate(CamelModel):
    job_id: Optional[str] = Field(None, alias="jobId")
    engineer_id: int = Field(..., alias="engineerId")
    start_time: Optional[datetime] = Field(None, alias="startTime")
    latitude: Optional[Coordinate] = None
    longitude: Optional[Coordinate] = None
    notes: Optional[str] = None


class StartServiceRequest(CamelModel):
    # Client stopwatch value, minutes; only stored when TRUST_CLIENT_DURATIONS is on
    total_journey_time: Optional[int] = Field(None, alias="totalJourneyTime")


class CompleteRequest(CamelModel):
    total_service_time: Optional[int] = Field(None, alias="totalServiceTime")


class PauseRequest(CamelModel):
    reason: PauseReason
    block_reason: Optional[str] = Field(None, alias="blockReason")
    total_journey_time: Optional[int] = Field(None, alias="totalJourneyTime")
    total_service_time: Optional[int] = Field(None, alias="totalServiceTime")


class ResumeRequest(CamelModel):
    resume_type: ResumeType = Field(..., alias="resumeType")
    new_engineer_id: Optional[int] = Field(None, alias="newEngineerId")


class UnblockRequest(CamelModel):
    new_engineer_id: Optional[int] = Field(None, alias="newEngineerId")


class ReassignRequest(CamelModel):
    new_engineer_id: int = Field(..., alias="newEngineerId")


class JoinRequest(CamelModel):
    note: Optional[str] = None
    latitude: Optional[Coordinate] = None
    longitude: Optional[Coordinate] = None


class VisitResponse(CamelModel):
    id: int
    job_id: str = Field(..., alias="jobId")
    user_id: int = Field(..., alias="userId")
    status: VisitStatus
    start_time: datetime = Field(..., alias="startTime")
    end_time: Optional[datetime] = Field(None, alias="endTime")
    journey_start_time: Optional[datetime] = Field(None, alias="journeyStartTime")
    journey_end_time: Optional[datetime] = Field(None, alias="journeyEndTime")
    service_start_time: Optional[datetime] = Field(None, alias="serviceStartTime")
    service_end_time: Optional[datetime] = Field(None, alias="serviceEndTime")
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    block_reason: Optional[str] = Field(None, alias="blockReason")
    blocked_since: Optional[datetime] = Field(None, alias="blockedSince")
    paused_phase: Optional[PhaseKind] = Field(None, alias="pausedPhase")
    total_journey_time: Optional[int] = Field(None, alias="totalJourneyTime")
    total_service_time: Optional[int] = Field(None, alias="totalServiceTime")
    collaborators: List[int] = []
    collaboration_notes: Optional[str] = Field(None, alias="collaborationNotes")
    notes: Optional[str] = None
    last_transition: Optional[VisitTransition] = Field(None, alias="lastTransition")
    version: int
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    class Config:
        from_attributes = True
        populate_by_name = True


class VisitEventResponse(CamelModel):
    id: int
    visit_id: int = Field(..., alias="visitId")
    transition: VisitTransition
    from_status: Optional[VisitStatus] = Field(None, alias="fromStatus")
    to_status: VisitStatus = Field(..., alias="toStatus")
    actor_id: Optional[int] = Field(None, alias="actorId")
    previous_user_id: Optional[int] = Field(None, alias="previousUserId")
    new_user_id: Optional[int] = Field(None, alias="newUserId")
    detail: Optional[str] = None
    created_at: datetime = Field(..., alias="createdAt")

    class Config:
        from_attributes = True
        populate_by_name = True


class CalendarEvent(CamelModel):
    """Read-only calendar entry derived from a closed journey or service interval"""
    id: str
    title: str
    start: datetime
    end: datetime
    type: PhaseKind
    engineer_id: int = Field(..., alias="engineerId")
    visit_id: int = Field(..., alias="visitId")
    job_id: str = Field(..., alias="jobId")
    editable: bool = False
