from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.core.deps import (
    get_collaboration_manager,
    get_current_user,
    get_idempotency_key,
    get_visit_engine,
)
from app.schemas.user import ActingUser
from app.schemas.visit import (
    CalendarEvent,
    CompleteRequest,
    JoinRequest,
    PauseRequest,
    PlannedVisitCreate,
    ReassignRequest,
    ResumeRequest,
    StartJourneyRequest,
    StartServiceRequest,
    UnblockRequest,
    VisitEventResponse,
    VisitResponse,
)
from app.services.collaboration import CollaborationManager
from app.services.visit_lifecycle import VisitLifecycleEngine

router = APIRouter()


@router.post("", response_model=VisitResponse)
def plan_visit(
    payload: PlannedVisitCreate,
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
    current_user: ActingUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
):
    """Admin assigns a job to an engineer; the visit starts as NOT_STARTED"""
    return engine.create_planned(
        current_user,
        payload.job_id,
        payload.engineer_id,
        start_time=payload.start_time,
        latitude=payload.latitude,
        longitude=payload.longitude,
        notes=payload.notes,
        idempotency_key=idempotency_key,
    )


@router.post("/start-journey", response_model=VisitResponse)
def start_journey(
    payload: StartJourneyRequest,
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
    current_user: ActingUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
):
    """
    Start travelling to a job. Creates the visit in ON_ROUTE.
    Rejected with 409 while the engineer already has an active visit.
    """
    return engine.start_journey(
        current_user,
        payload.job_id,
        latitude=payload.latitude,
        longitude=payload.longitude,
        notes=payload.notes,
        idempotency_key=idempotency_key,
    )


@router.get("", response_model=List[VisitResponse])
def list_visits(
    user_id: Optional[int] = Query(None, alias="userId", description="Only visits of this engineer"),
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
    current_user: ActingUser = Depends(get_current_user),
):
    """Admins see all visits; engineers see their own and the ones they collaborated on"""
    return engine.list_visits(current_user, user_id)


@router.get("/calendar", response_model=List[CalendarEvent])
def get_calendar_events(
    user_id: Optional[int] = Query(None, alias="userId"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
    current_user: ActingUser = Depends(get_current_user),
):
    """Journey and service intervals as read-only calendar events"""
    return engine.calendar_events(current_user, user_id, start, end)


@router.get("/{visit_id}", response_model=VisitResponse)
def get_visit(
    visit_id: int,
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
    current_user: ActingUser = Depends(get_current_user),
):
    return engine.get_visit(current_user, visit_id)


@router.get("/{visit_id}/events", response_model=List[VisitEventResponse])
def get_visit_events(
    visit_id: int,
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
    current_user: ActingUser = Depends(get_current_user),
):
    """Audit trail of applied transitions, oldest first"""
    return engine.get_events(current_user, visit_id)


@router.post("/{visit_id}/start-journey", response_model=VisitResponse)
def start_planned_journey(
    visit_id: int,
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
    current_user: ActingUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
):
    return engine.start_planned_journey(current_user, visit_id, idempotency_key=idempotency_key)


@router.post("/{visit_id}/start-service", response_model=VisitResponse)
def start_service(
    visit_id: int,
    payload: Optional[StartServiceRequest] = None,
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
    current_user: ActingUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
):
    payload = payload or StartServiceRequest()
    return engine.start_service(
        current_user,
        visit_id,
        total_journey_time=payload.total_journey_time,
        idempotency_key=idempotency_key,
    )


@router.post("/{visit_id}/complete", response_model=VisitResponse)
def complete_visit(
    visit_id: int,
    payload: Optional[CompleteRequest] = None,
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
    current_user: ActingUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
):
    payload = payload or CompleteRequest()
    return engine.complete(
        current_user,
        visit_id,
        total_service_time=payload.total_service_time,
        idempotency_key=idempotency_key,
    )


@router.post("/{visit_id}/pause", response_model=VisitResponse)
def pause_visit(
    visit_id: int,
    payload: PauseRequest,
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
    current_user: ActingUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
):
    """Pause until the next day, or mark blocked (blockReason required)"""
    return engine.pause(
        current_user,
        visit_id,
        payload.reason,
        block_reason=payload.block_reason,
        total_journey_time=payload.total_journey_time,
        total_service_time=payload.total_service_time,
        idempotency_key=idempotency_key,
    )


@router.post("/{visit_id}/resume", response_model=VisitResponse)
def resume_visit(
    visit_id: int,
    payload: ResumeRequest,
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
    current_user: ActingUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
):
    """Resume a visit paused for the next day; admins may hand it to another engineer"""
    return engine.resume(
        current_user,
        visit_id,
        payload.resume_type,
        new_engineer_id=payload.new_engineer_id,
        idempotency_key=idempotency_key,
    )


@router.post("/{visit_id}/unblock", response_model=VisitResponse)
def unblock_visit(
    visit_id: int,
    payload: Optional[UnblockRequest] = None,
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
    current_user: ActingUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
):
    payload = payload or UnblockRequest()
    return engine.unblock(
        current_user,
        visit_id,
        new_engineer_id=payload.new_engineer_id,
        idempotency_key=idempotency_key,
    )


@router.post("/{visit_id}/join", response_model=VisitResponse)
def join_visit(
    visit_id: int,
    payload: Optional[JoinRequest] = None,
    collaboration: CollaborationManager = Depends(get_collaboration_manager),
    current_user: ActingUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
):
    """Attach the logged-in engineer to another engineer's active visit"""
    payload = payload or JoinRequest()
    return collaboration.join(
        current_user,
        visit_id,
        note=payload.note,
        latitude=payload.latitude,
        longitude=payload.longitude,
        idempotency_key=idempotency_key,
    )


@router.post("/{visit_id}/reassign", response_model=VisitResponse)
def reassign_visit(
    visit_id: int,
    payload: ReassignRequest,
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
    current_user: ActingUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
):
    """Admin only: move the visit to another engineer, status unchanged"""
    return engine.reassign(current_user, visit_id, payload.new_engineer_id,
                           idempotency_key=idempotency_key)
