from typing import Optional

from fastapi import APIRouter, Depends

from app.core.deps import get_current_user, get_idempotency_key, get_location_ledger
from app.schemas.location import LocationCreate, LocationResponse
from app.schemas.user import ActingUser
from app.services.location_ledger import LocationLedger

router = APIRouter()

@router.post("", response_model=LocationResponse)
def record_location(
    location: LocationCreate,
    ledger: LocationLedger = Depends(get_location_ledger),
    current_user: ActingUser = Depends(get_current_user),
    idempotency_key: Optional[str] = Depends(get_idempotency_key),
):
    """
    Record a position sample for the logged-in engineer.
    Called periodically by the mobile app, and replayed from its offline queue.
    """
    return ledger.record(
        current_user.id,
        location.latitude,
        location.longitude,
        timestamp=location.timestamp,
        idempotency_key=idempotency_key,
    )
