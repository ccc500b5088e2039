"""
Collaboration Manager: lets a second engineer attach to someone else's
active visit.

A collaborator holds the same active slot an owner does, so joining is
refused while the engineer has an active visit of their own. Membership
ends implicitly: pausing detaches everyone (see the lifecycle engine) and
completion freezes the set with the record.
"""
import logging
from typing import Optional

from app.core.exceptions import ConflictError, InvalidTransitionError
from app.crud import visit as visit_crud
from app.models.visit import Visit
from app.schemas.user import ActingUser
from app.schemas.visit_status import ACTIVE_STATUSES, SlotRole, VisitTransition
from app.services.visit_lifecycle import VisitLifecycleEngine
from app.utils.coordinates import optional_coordinates

logger = logging.getLogger(__name__)


class CollaborationManager:
    def __init__(self, engine: VisitLifecycleEngine):
        self.engine = engine
        self.db = engine.db

    def join(
        self,
        actor: ActingUser,
        visit_id: int,
        note: Optional[str] = None,
        latitude=None,
        longitude=None,
        idempotency_key: Optional[str] = None,
    ) -> Visit:
        transition = VisitTransition.join
        replay = self.engine.replay_request(actor, idempotency_key, transition)
        if replay is not None:
            return replay

        visit = self.engine.load(visit_id)
        if visit.status not in ACTIVE_STATUSES:
            raise InvalidTransitionError(
                visit.status.value,
                transition.value,
                f"Visit {visit.id} is {visit.status.value}; only ON_ROUTE or IN_SERVICE visits can be joined",
            )
        if actor.id == visit.user_id:
            raise ConflictError("You already own this visit")
        if actor.id in visit.collaborators:
            raise ConflictError("You are already collaborating on this visit")

        lat, lon = optional_coordinates(latitude, longitude)
        now = self.engine.clock()
        note = (note or "").strip() or None

        def effects():
            visit_crud.claim_slot(self.db, actor.id, visit.id, SlotRole.collaborator)
            visit_crud.add_collaborator(self.db, visit.id, actor.id, now, note)

        visit = self.engine.apply_transition(actor, visit, transition, {}, now, effects,
                                             idempotency_key, detail=note)
        if actor.id not in visit.collaborators:
            # Lost a race with another write on the same visit
            raise ConflictError("The visit was changed by another request, please retry")
        logger.info("Engineer %s joined visit %s", actor.id, visit.id)

        if lat is not None and self.engine.ledger is not None:
            self.engine.ledger.record(actor.id, lat, lon)
        return visit
