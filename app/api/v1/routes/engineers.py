from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.deps import get_db, get_current_user, get_location_ledger, require_admin
from app.crud.user import create_user, get_engineers, get_user_by_username
from app.schemas.location import LocationResponse
from app.schemas.user import ActingUser, EngineerCreate, EngineerResponse
from app.services.location_ledger import LocationLedger

router = APIRouter()


def _check_location_access(engineer_id: int, current_user: ActingUser) -> None:
    if not current_user.is_admin and current_user.id != engineer_id:
        raise HTTPException(status_code=403, detail="Not authorized to view this engineer's location")


@router.post("", response_model=EngineerResponse)
def create_engineer(
    engineer: EngineerCreate,
    db: Session = Depends(get_db),
    current_user: ActingUser = Depends(require_admin),
):
    """Create an engineer (or admin) account"""
    if get_user_by_username(db, engineer.username):
        raise HTTPException(status_code=400, detail="Username already exists")
    return create_user(db, engineer)


@router.get("", response_model=List[EngineerResponse])
def list_engineers(
    db: Session = Depends(get_db),
    current_user: ActingUser = Depends(require_admin),
):
    """All non-admin users"""
    return get_engineers(db)


@router.get("/{engineer_id}/location", response_model=List[LocationResponse])
def get_location_history(
    engineer_id: int,
    start: Optional[datetime] = Query(None, description="Only samples at or after this time"),
    end: Optional[datetime] = Query(None, description="Only samples at or before this time"),
    ledger: LocationLedger = Depends(get_location_ledger),
    current_user: ActingUser = Depends(get_current_user),
):
    """
    Location samples for an engineer, oldest first.
    Engineers may read their own history, admins anyone's.
    """
    _check_location_access(engineer_id, current_user)
    return ledger.history(engineer_id, start=start, end=end)


@router.get("/{engineer_id}/location/latest", response_model=Optional[LocationResponse])
def get_latest_location(
    engineer_id: int,
    ledger: LocationLedger = Depends(get_location_ledger),
    current_user: ActingUser = Depends(get_current_user),
):
    """Current position: the sample with the greatest timestamp"""
    _check_location_access(engineer_id, current_user)
    return ledger.latest(engineer_id)
