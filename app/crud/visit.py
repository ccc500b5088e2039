"""
Visit Record Store.

Storage-level reads and writes for visits, their phase intervals, the
per-engineer active slots and the audit trail. Nothing here decides
whether a transition is legal; that is the lifecycle engine's job. Writes
to the visit row go through compare_and_set so two requests racing on the
same visit cannot both apply against the same version.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import desc, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import ConflictError
from app.models.engineer_slot import EngineerActiveSlot
from app.models.visit import Visit, VisitCollaborator, VisitPhase
from app.models.visit_event import VisitEvent
from app.schemas.visit_status import PhaseKind, SlotRole, VisitStatus, VisitTransition
from app.utils.timeutils import minutes_between


def get_visit(db: Session, visit_id: int) -> Optional[Visit]:
    return db.query(Visit).filter(Visit.id == visit_id).first()


def create_visit(db: Session, **fields) -> Visit:
    """Insert a visit row and flush so it has an id; the caller commits"""
    visit = Visit(version=1, **fields)
    db.add(visit)
    db.flush()
    return visit


def compare_and_set(db: Session, visit: Visit, values: Dict[str, Any]) -> bool:
    """
    Apply values to the visit row only if nobody else has written it since
    it was read. Returns False when the version moved on.
    """
    values = dict(values)
    values["version"] = visit.version + 1
    updated = db.query(Visit)\
        .filter(Visit.id == visit.id, Visit.version == visit.version)\
        .update(values, synchronize_session=False)
    return updated == 1


def list_visits(db: Session, engineer_id: Optional[int] = None) -> List[Visit]:
    """All visits, or the ones an engineer owns or has collaborated on"""
    query = db.query(Visit)
    if engineer_id is not None:
        collaborated = db.query(VisitCollaborator.visit_id)\
            .filter(VisitCollaborator.engineer_id == engineer_id)
        query = query.filter(or_(Visit.user_id == engineer_id, Visit.id.in_(collaborated)))
    return query.order_by(desc(Visit.start_time), desc(Visit.id)).all()


def has_collaborated(db: Session, visit_id: int, engineer_id: int) -> bool:
    return db.query(VisitCollaborator)\
        .filter(VisitCollaborator.visit_id == visit_id,
                VisitCollaborator.engineer_id == engineer_id)\
        .first() is not None


# Phase intervals

def open_phase(db: Session, visit_id: int, kind: PhaseKind, started_at: datetime) -> VisitPhase:
    phase = VisitPhase(visit_id=visit_id, kind=kind, started_at=started_at)
    db.add(phase)
    return phase


def close_phase(phase: VisitPhase, ended_at: datetime) -> int:
    """Stamp the end of an interval and freeze its elapsed minutes"""
    phase.ended_at = ended_at
    phase.minutes = minutes_between(phase.started_at, ended_at)
    return phase.minutes


# Collaborators

def add_collaborator(db: Session, visit_id: int, engineer_id: int, joined_at: datetime,
                     note: Optional[str] = None) -> VisitCollaborator:
    link = VisitCollaborator(visit_id=visit_id, engineer_id=engineer_id,
                             joined_at=joined_at, note=note)
    db.add(link)
    return link


def detach_collaborators(db: Session, visit_id: int, left_at: datetime,
                         engineer_id: Optional[int] = None) -> int:
    query = db.query(VisitCollaborator)\
        .filter(VisitCollaborator.visit_id == visit_id, VisitCollaborator.left_at.is_(None))
    if engineer_id is not None:
        query = query.filter(VisitCollaborator.engineer_id == engineer_id)
    return query.update({"left_at": left_at}, synchronize_session=False)


# Active slots (one ON_ROUTE/IN_SERVICE visit per engineer)

def get_active_slot(db: Session, engineer_id: int) -> Optional[EngineerActiveSlot]:
    return db.query(EngineerActiveSlot)\
        .filter(EngineerActiveSlot.engineer_id == engineer_id)\
        .first()


def claim_slot(db: Session, engineer_id: int, visit_id: int, role: SlotRole) -> EngineerActiveSlot:
    """
    Mark the engineer as active on a visit. A concurrent claim for the same
    engineer loses on the primary key; the whole transaction is rolled back.
    """
    existing = get_active_slot(db, engineer_id)
    if existing is not None:
        db.rollback()
        raise ConflictError(
            f"Engineer {engineer_id} already has an active visit ({existing.visit_id})"
        )
    slot = EngineerActiveSlot(engineer_id=engineer_id, visit_id=visit_id, role=role)
    db.add(slot)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Engineer {engineer_id} already has an active visit")
    return slot


def release_slots(db: Session, visit_id: int, engineer_id: Optional[int] = None) -> int:
    query = db.query(EngineerActiveSlot).filter(EngineerActiveSlot.visit_id == visit_id)
    if engineer_id is not None:
        query = query.filter(EngineerActiveSlot.engineer_id == engineer_id)
    return query.delete(synchronize_session=False)


def promote_slot(db: Session, engineer_id: int, visit_id: int) -> int:
    """Turn a collaborator slot into the owner slot of the same visit"""
    return db.query(EngineerActiveSlot)\
        .filter(EngineerActiveSlot.engineer_id == engineer_id,
                EngineerActiveSlot.visit_id == visit_id)\
        .update({"role": SlotRole.owner}, synchronize_session=False)


# Audit trail

def add_event(
    db: Session,
    visit_id: int,
    transition: VisitTransition,
    from_status: Optional[VisitStatus],
    to_status: VisitStatus,
    actor_id: Optional[int],
    created_at: datetime,
    previous_user_id: Optional[int] = None,
    new_user_id: Optional[int] = None,
    detail: Optional[str] = None,
) -> VisitEvent:
    event = VisitEvent(
        visit_id=visit_id,
        transition=transition,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor_id,
        previous_user_id=previous_user_id,
        new_user_id=new_user_id,
        detail=detail,
        created_at=created_at,
    )
    db.add(event)
    return event


def get_events(db: Session, visit_id: int) -> List[VisitEvent]:
    return db.query(VisitEvent)\
        .filter(VisitEvent.visit_id == visit_id)\
        .order_by(VisitEvent.id)\
        .all()
