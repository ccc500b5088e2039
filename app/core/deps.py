from datetime import datetime
from typing import Callable, Generator, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import verify_token
from app.crud.user import get_user_by_id
from app.db.session import SessionLocal
from app.schemas.user import ActingUser
from app.services.collaboration import CollaborationManager
from app.services.location_cache import get_location_cache
from app.services.location_ledger import LocationLedger
from app.services.visit_lifecycle import VisitLifecycleEngine
from app.utils.timeutils import utcnow

bearer_scheme = HTTPBearer(auto_error=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> ActingUser:
    """Resolve the bearer token to the acting user"""
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise unauthorized
    user_id = verify_token(credentials.credentials)
    if user_id is None or not user_id.isdigit():
        raise unauthorized
    user = get_user_by_id(db, int(user_id))
    if user is None:
        raise unauthorized
    return ActingUser(id=user.id, is_admin=user.is_admin, name=user.name or user.username)


def require_admin(current_user: ActingUser = Depends(get_current_user)) -> ActingUser:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


def get_idempotency_key(
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
) -> Optional[str]:
    if idempotency_key is None:
        return None
    idempotency_key = idempotency_key.strip()
    if not idempotency_key:
        return None
    if len(idempotency_key) > 128:
        raise HTTPException(status_code=400, detail="Idempotency-Key must be at most 128 characters")
    return idempotency_key


def get_location_ledger(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> LocationLedger:
    return LocationLedger(db, cache=get_location_cache(), clock=clock)


def get_visit_engine(
    db: Session = Depends(get_db),
    ledger: LocationLedger = Depends(get_location_ledger),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> VisitLifecycleEngine:
    return VisitLifecycleEngine(
        db,
        ledger=ledger,
        clock=clock,
        trust_client_durations=settings.TRUST_CLIENT_DURATIONS,
    )


def get_collaboration_manager(
    engine: VisitLifecycleEngine = Depends(get_visit_engine),
) -> CollaborationManager:
    return CollaborationManager(engine)
