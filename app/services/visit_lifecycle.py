"""
Visit Lifecycle Engine.

Validates and applies every status change of a visit:

    NOT_STARTED      --start_journey-->  ON_ROUTE
    ON_ROUTE         --start_service-->  IN_SERVICE
    IN_SERVICE       --complete------->  COMPLETED
    ON_ROUTE/IN_SERVICE --pause------->  PAUSED_NEXT_DAY | BLOCKED
    PAUSED_NEXT_DAY  --resume--------->  ON_ROUTE | IN_SERVICE
    BLOCKED          --unblock-------->  phase it was paused in
    any              --reassign------->  same status, new owner (admin only)

The engine gets its storage handle (a SQLAlchemy session) at construction
and commits once per operation. Each write is a compare-and-set on the
visit's version, and the one-active-visit-per-engineer rule is backed by
the engineer_active_slots primary key, so concurrent requests cannot both
succeed against the same state.

Replays from offline clients are recognised either by idempotency key or,
without one, by the visit already being in the requested target state
through the same operation; both return the stored record unchanged.
"""
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.crud import visit as visit_crud
from app.crud.processed_request import get_processed_request, remember_request
from app.crud.user import get_user_by_id
from app.models.visit import Visit
from app.models.visit_event import VisitEvent
from app.schemas.user import ActingUser
from app.schemas.visit import CalendarEvent
from app.schemas.visit_status import (
    ACTIVE_STATUSES,
    PHASE_STATUS,
    PauseReason,
    PhaseKind,
    ResumeType,
    SlotRole,
    VisitStatus,
    VisitTransition,
)
from app.services.location_ledger import LocationLedger
from app.utils.coordinates import optional_coordinates
from app.utils.timeutils import minutes_between, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

ADMIN_ONLY = frozenset({VisitTransition.reassign})


class VisitLifecycleEngine:
    def __init__(
        self,
        db: Session,
        ledger: Optional[LocationLedger] = None,
        clock: Callable[[], datetime] = utcnow,
        trust_client_durations: bool = False,
    ):
        self.db = db
        self.ledger = ledger
        self.clock = clock
        self.trust_client_durations = trust_client_durations

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_planned(
        self,
        actor: ActingUser,
        job_id: Optional[str],
        engineer_id: int,
        start_time: Optional[datetime] = None,
        latitude=None,
        longitude=None,
        notes: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Visit:
        """Admin pre-assigns a job; the visit waits in NOT_STARTED"""
        if not actor.is_admin:
            raise AuthorizationError("Only admins can plan visits for engineers")
        replay = self.replay_request(actor, idempotency_key, VisitTransition.create)
        if replay is not None:
            return replay

        job_id = self._require_job_id(job_id)
        self._require_engineer(engineer_id)
        lat, lon = optional_coordinates(latitude, longitude)
        now = self.clock()

        visit = visit_crud.create_visit(
            self.db,
            job_id=job_id,
            user_id=engineer_id,
            status=VisitStatus.NOT_STARTED,
            start_time=to_naive_utc(start_time) or now,
            latitude=lat,
            longitude=lon,
            notes=notes,
            last_transition=VisitTransition.create,
        )
        visit_crud.add_event(self.db, visit.id, VisitTransition.create, None,
                             VisitStatus.NOT_STARTED, actor.id, now, new_user_id=engineer_id)
        return self._finish(actor, visit, VisitTransition.create, None,
                            VisitStatus.NOT_STARTED, idempotency_key, now)

    def start_journey(
        self,
        actor: ActingUser,
        job_id: Optional[str],
        latitude=None,
        longitude=None,
        notes: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Visit:
        """Create a visit for the acting engineer directly in ON_ROUTE"""
        replay = self.replay_request(actor, idempotency_key, VisitTransition.start_journey)
        if replay is not None:
            return replay

        job_id = self._require_job_id(job_id)
        lat, lon = optional_coordinates(latitude, longitude)

        slot = visit_crud.get_active_slot(self.db, actor.id)
        if slot is not None:
            active = visit_crud.get_visit(self.db, slot.visit_id)
            if self._is_replayed_start(active, actor, job_id):
                logger.info("Duplicate start-journey for job %s returns visit %s", job_id, active.id)
                return active
            raise ConflictError(
                f"Cannot start new journey while visit {slot.visit_id} is active"
            )

        if lat is None and self.ledger is not None:
            sample = self.ledger.latest(actor.id)
            if sample is not None:
                lat, lon = sample.latitude, sample.longitude

        now = self.clock()
        visit = visit_crud.create_visit(
            self.db,
            job_id=job_id,
            user_id=actor.id,
            status=VisitStatus.ON_ROUTE,
            start_time=now,
            latitude=lat,
            longitude=lon,
            notes=notes,
            last_transition=VisitTransition.start_journey,
        )
        visit_crud.claim_slot(self.db, actor.id, visit.id, SlotRole.owner)
        visit_crud.open_phase(self.db, visit.id, PhaseKind.journey, now)
        visit_crud.add_event(self.db, visit.id, VisitTransition.start_journey, None,
                             VisitStatus.ON_ROUTE, actor.id, now, new_user_id=actor.id)
        return self._finish(actor, visit, VisitTransition.start_journey, None,
                            VisitStatus.ON_ROUTE, idempotency_key, now)

    # ------------------------------------------------------------------
    # Transitions on an existing visit
    # ------------------------------------------------------------------

    def start_planned_journey(
        self, actor: ActingUser, visit_id: int, idempotency_key: Optional[str] = None
    ) -> Visit:
        """NOT_STARTED -> ON_ROUTE for a visit an admin planned"""
        transition = VisitTransition.start_journey
        replay = self.replay_request(actor, idempotency_key, transition)
        if replay is not None:
            return replay
        visit = self.load(visit_id)
        if self._already_applied(actor, visit, VisitStatus.ON_ROUTE, transition):
            return self._duplicate(visit, transition)
        self._authorize(actor, visit, transition)
        self._require_status(visit, transition, VisitStatus.NOT_STARTED)

        now = self.clock()

        def effects():
            visit_crud.claim_slot(self.db, visit.user_id, visit.id, SlotRole.owner)
            visit_crud.open_phase(self.db, visit.id, PhaseKind.journey, now)

        return self.apply_transition(actor, visit, transition, {
            "status": VisitStatus.ON_ROUTE,
            "start_time": now,
        }, now, effects, idempotency_key)

    def start_service(
        self,
        actor: ActingUser,
        visit_id: int,
        total_journey_time: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> Visit:
        """ON_ROUTE -> IN_SERVICE; closes the journey interval and freezes its minutes"""
        transition = VisitTransition.start_service
        replay = self.replay_request(actor, idempotency_key, transition)
        if replay is not None:
            return replay
        visit = self.load(visit_id)
        if self._already_applied(actor, visit, VisitStatus.IN_SERVICE, transition):
            return self._duplicate(visit, transition)
        self._authorize(actor, visit, transition)
        self._require_status(visit, transition, VisitStatus.ON_ROUTE)

        now = self.clock()
        journey = visit.open_phase()
        elapsed = self._elapsed(journey, now)
        total = self._resolve_total(
            (visit.total_journey_time or 0) + elapsed, total_journey_time,
            "totalJourneyTime", visit.id,
        )

        def effects():
            if journey is not None:
                visit_crud.close_phase(journey, now)
            visit_crud.open_phase(self.db, visit.id, PhaseKind.service, now)

        return self.apply_transition(actor, visit, transition, {
            "status": VisitStatus.IN_SERVICE,
            "total_journey_time": total,
        }, now, effects, idempotency_key)

    def complete(
        self,
        actor: ActingUser,
        visit_id: int,
        total_service_time: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> Visit:
        """IN_SERVICE -> COMPLETED; after this the record only accepts reassignment"""
        transition = VisitTransition.complete
        replay = self.replay_request(actor, idempotency_key, transition)
        if replay is not None:
            return replay
        visit = self.load(visit_id)
        if self._already_applied(actor, visit, VisitStatus.COMPLETED, transition):
            return self._duplicate(visit, transition)
        self._authorize(actor, visit, transition)
        self._require_status(visit, transition, VisitStatus.IN_SERVICE)

        now = self.clock()
        service = visit.open_phase()
        elapsed = self._elapsed(service, now)
        total = self._resolve_total(
            (visit.total_service_time or 0) + elapsed, total_service_time,
            "totalServiceTime", visit.id,
        )

        def effects():
            if service is not None:
                visit_crud.close_phase(service, now)
            visit_crud.release_slots(self.db, visit.id)

        return self.apply_transition(actor, visit, transition, {
            "status": VisitStatus.COMPLETED,
            "end_time": now,
            "total_service_time": total,
            "paused_phase": None,
        }, now, effects, idempotency_key)

    def pause(
        self,
        actor: ActingUser,
        visit_id: int,
        reason: PauseReason,
        block_reason: Optional[str] = None,
        total_journey_time: Optional[int] = None,
        total_service_time: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> Visit:
        """
        Stop work until the next day or because the site is blocked.

        The open interval is closed and its minutes added to the running
        total. Collaborators leave the visit and every active slot on it is
        released.
        """
        transition = VisitTransition.pause
        reason = PauseReason(reason)
        target = VisitStatus.BLOCKED if reason == PauseReason.blocked else VisitStatus.PAUSED_NEXT_DAY
        replay = self.replay_request(actor, idempotency_key, transition)
        if replay is not None:
            return replay
        visit = self.load(visit_id)
        if self._already_applied(actor, visit, target, transition):
            return self._duplicate(visit, transition)
        self._authorize(actor, visit, transition)
        self._require_status(visit, transition, VisitStatus.ON_ROUTE, VisitStatus.IN_SERVICE)

        block_reason = (block_reason or "").strip()
        if reason == PauseReason.blocked and not block_reason:
            raise ValidationError("blockReason is required when pausing a visit as blocked")

        now = self.clock()
        phase = visit.open_phase()
        paused_phase = phase.kind if phase is not None else (
            PhaseKind.service if visit.status == VisitStatus.IN_SERVICE else PhaseKind.journey
        )
        elapsed = self._elapsed(phase, now)
        values = {"status": target, "paused_phase": paused_phase}
        if paused_phase == PhaseKind.service:
            values["total_service_time"] = self._resolve_total(
                (visit.total_service_time or 0) + elapsed, total_service_time,
                "totalServiceTime", visit.id,
            )
        else:
            values["total_journey_time"] = self._resolve_total(
                (visit.total_journey_time or 0) + elapsed, total_journey_time,
                "totalJourneyTime", visit.id,
            )
        if target == VisitStatus.BLOCKED:
            values["blocked_since"] = now
            values["block_reason"] = block_reason

        def effects():
            if phase is not None:
                visit_crud.close_phase(phase, now)
            visit_crud.release_slots(self.db, visit.id)
            visit_crud.detach_collaborators(self.db, visit.id, now)

        return self.apply_transition(actor, visit, transition, values, now, effects, idempotency_key,
                                     detail=block_reason or reason.value)

    def resume(
        self,
        actor: ActingUser,
        visit_id: int,
        resume_type: ResumeType,
        new_engineer_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> Visit:
        """PAUSED_NEXT_DAY -> ON_ROUTE or IN_SERVICE, optionally handing the visit to another engineer"""
        transition = VisitTransition.resume
        resume_type = ResumeType(resume_type)
        kind = PhaseKind(resume_type.value)
        target = PHASE_STATUS[kind]
        replay = self.replay_request(actor, idempotency_key, transition)
        if replay is not None:
            return replay
        visit = self.load(visit_id)
        if self._already_applied(actor, visit, target, transition, new_engineer_id):
            return self._duplicate(visit, transition)
        self._authorize(actor, visit, transition)
        owner_id = self._new_owner(actor, visit, new_engineer_id)
        self._require_status(visit, transition, VisitStatus.PAUSED_NEXT_DAY)
        return self._reopen(actor, visit, transition, kind, owner_id, {
            "status": target,
            "paused_phase": None,
            "end_time": None,
        }, idempotency_key)

    def unblock(
        self,
        actor: ActingUser,
        visit_id: int,
        new_engineer_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> Visit:
        """BLOCKED -> the phase the visit was in when it was blocked"""
        transition = VisitTransition.unblock
        replay = self.replay_request(actor, idempotency_key, transition)
        if replay is not None:
            return replay
        visit = self.load(visit_id)
        reopened = visit.status if visit.status in ACTIVE_STATUSES else None
        if self._already_applied(actor, visit, reopened, transition, new_engineer_id):
            return self._duplicate(visit, transition)
        self._authorize(actor, visit, transition)
        owner_id = self._new_owner(actor, visit, new_engineer_id)
        self._require_status(visit, transition, VisitStatus.BLOCKED)

        kind = visit.paused_phase or PhaseKind.service
        return self._reopen(actor, visit, transition, kind, owner_id, {
            "status": PHASE_STATUS[kind],
            "paused_phase": None,
            "blocked_since": None,
            "block_reason": None,
        }, idempotency_key)

    def reassign(
        self,
        actor: ActingUser,
        visit_id: int,
        new_engineer_id: int,
        idempotency_key: Optional[str] = None,
    ) -> Visit:
        """Admin moves a visit to another engineer without changing its status"""
        transition = VisitTransition.reassign
        replay = self.replay_request(actor, idempotency_key, transition)
        if replay is not None:
            return replay
        visit = self._load_for_write(actor, visit_id, transition)
        owner_id = self._new_owner(actor, visit, new_engineer_id)
        if owner_id == visit.user_id:
            logger.info("Visit %s already belongs to engineer %s", visit.id, owner_id)
            return visit

        now = self.clock()
        previous_owner = visit.user_id
        active = visit.status in ACTIVE_STATUSES
        promoted = owner_id in visit.collaborators

        def effects():
            if not active:
                return
            visit_crud.release_slots(self.db, visit.id, previous_owner)
            if promoted:
                visit_crud.detach_collaborators(self.db, visit.id, now, engineer_id=owner_id)
                visit_crud.promote_slot(self.db, owner_id, visit.id)
            else:
                visit_crud.claim_slot(self.db, owner_id, visit.id, SlotRole.owner)

        return self.apply_transition(actor, visit, transition, {"user_id": owner_id}, now, effects,
                                     idempotency_key, previous_user_id=previous_owner, new_user_id=owner_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_visit(self, actor: ActingUser, visit_id: int) -> Visit:
        visit = self.load(visit_id)
        if not self._can_view(actor, visit):
            raise AuthorizationError("Not authorized to view this visit")
        return visit

    def list_visits(self, actor: ActingUser, user_id: Optional[int] = None) -> List[Visit]:
        """Admins see everything (optionally one engineer); engineers see own and collaborations"""
        if actor.is_admin:
            return visit_crud.list_visits(self.db, user_id)
        if user_id is not None and user_id != actor.id:
            raise AuthorizationError("Engineers can only list their own visits")
        return visit_crud.list_visits(self.db, actor.id)

    def get_events(self, actor: ActingUser, visit_id: int) -> List[VisitEvent]:
        visit = self.get_visit(actor, visit_id)
        return visit_crud.get_events(self.db, visit.id)

    def calendar_events(
        self,
        actor: ActingUser,
        user_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[CalendarEvent]:
        """
        Journey and service intervals as read-only calendar entries with the
        stable ids journey-{visitId} and service-{visitId}. Only closed
        intervals are shown; entries outside [start, end] are dropped.
        """
        start, end = to_naive_utc(start), to_naive_utc(end)
        events = []
        for visit in self.list_visits(actor, user_id):
            for kind in (PhaseKind.journey, PhaseKind.service):
                phase = visit.latest_phase(kind)
                if phase is None or phase.ended_at is None:
                    continue
                if start is not None and phase.ended_at < start:
                    continue
                if end is not None and phase.started_at > end:
                    continue
                title = "Journey to Site" if kind == PhaseKind.journey else f"Service Visit - {visit.job_id}"
                events.append(CalendarEvent(
                    id=f"{kind.value}-{visit.id}",
                    title=title,
                    start=phase.started_at,
                    end=phase.ended_at,
                    type=kind,
                    engineer_id=visit.user_id,
                    visit_id=visit.id,
                    job_id=visit.job_id,
                ))
        events.sort(key=lambda e: e.start)
        return events

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def load(self, visit_id: int) -> Visit:
        visit = visit_crud.get_visit(self.db, visit_id)
        if visit is None:
            raise NotFoundError(f"Visit {visit_id} not found")
        return visit

    def _load_for_write(self, actor: ActingUser, visit_id: int, transition: VisitTransition) -> Visit:
        visit = self.load(visit_id)
        self._authorize(actor, visit, transition)
        return visit

    def _authorize(self, actor: ActingUser, visit: Visit, transition: VisitTransition) -> None:
        """Owner and current collaborators are equally privileged; admins may do anything"""
        if actor.is_admin:
            return
        if transition in ADMIN_ONLY:
            raise AuthorizationError(f"Only admins can {transition.value} visits")
        if actor.id == visit.user_id or actor.id in visit.collaborators:
            return
        raise AuthorizationError("Not authorized to modify this visit")

    def _can_view(self, actor: ActingUser, visit: Visit) -> bool:
        if actor.is_admin or actor.id == visit.user_id:
            return True
        return visit_crud.has_collaborated(self.db, visit.id, actor.id)

    def _require_status(self, visit: Visit, transition: VisitTransition, *allowed: VisitStatus) -> None:
        if visit.status not in allowed:
            expected = " or ".join(s.value for s in allowed)
            logger.warning("Rejected %s on visit %s in %s", transition.value, visit.id, visit.status.value)
            raise InvalidTransitionError(
                visit.status.value,
                transition.value,
                f"Visit {visit.id} is {visit.status.value}; {transition.value} requires {expected}",
            )

    def _require_job_id(self, job_id: Optional[str]) -> str:
        job_id = (job_id or "").strip()
        if not job_id:
            raise ValidationError("jobId is required")
        return job_id

    def _require_engineer(self, engineer_id: int):
        engineer = get_user_by_id(self.db, engineer_id)
        if engineer is None:
            raise NotFoundError(f"Engineer {engineer_id} not found")
        if engineer.is_admin:
            raise ValidationError(f"User {engineer_id} is not an engineer")
        return engineer

    def _new_owner(self, actor: ActingUser, visit: Visit, new_engineer_id: Optional[int]) -> int:
        """Owner after the operation; only admins may hand a visit to someone else"""
        if new_engineer_id is None or new_engineer_id == visit.user_id:
            return visit.user_id
        if not actor.is_admin:
            raise AuthorizationError("Only admins can reassign visits")
        self._require_engineer(new_engineer_id)
        return new_engineer_id

    def _is_duplicate(self, visit: Visit, target: Optional[VisitStatus], transition: VisitTransition) -> bool:
        return target is not None and visit.status == target and visit.last_transition == transition

    def _already_applied(
        self,
        actor: ActingUser,
        visit: Visit,
        target: Optional[VisitStatus],
        transition: VisitTransition,
        new_engineer_id: Optional[int] = None,
    ) -> bool:
        """
        The visit already sits where this transition would put it.

        Anyone who can view the visit gets it back, including a collaborator
        whose own pause detached them.
        """
        if new_engineer_id is not None and new_engineer_id != visit.user_id:
            return False
        return self._is_duplicate(visit, target, transition) and self._can_view(actor, visit)

    def _is_replayed_start(self, visit: Optional[Visit], actor: ActingUser, job_id: str) -> bool:
        return (
            visit is not None
            and visit.user_id == actor.id
            and visit.job_id == job_id
            and visit.status == VisitStatus.ON_ROUTE
            and visit.last_transition == VisitTransition.start_journey
        )

    def _duplicate(self, visit: Visit, transition: VisitTransition) -> Visit:
        logger.info("Duplicate %s on visit %s ignored; already %s",
                    transition.value, visit.id, visit.status.value)
        return visit

    def replay_request(self, actor: ActingUser, key: Optional[str], transition: VisitTransition) -> Optional[Visit]:
        if not key:
            return None
        processed = get_processed_request(self.db, key)
        if processed is None:
            return None
        if processed.operation != transition.value or processed.actor_id != actor.id:
            raise ConflictError("Idempotency key was already used for a different request")
        logger.info("Replayed request %s (%s) returns visit %s", key, transition.value, processed.visit_id)
        return self.load(processed.visit_id)

    def _elapsed(self, phase, now: datetime) -> int:
        if phase is None:
            return 0
        return minutes_between(phase.started_at, now)

    def _resolve_total(self, computed: int, client_value: Optional[int], field: str, visit_id: int) -> int:
        """Server-computed minutes win unless client stopwatch values are trusted"""
        if client_value is None:
            return computed
        if client_value < 0:
            raise ValidationError(f"{field} must not be negative")
        if self.trust_client_durations:
            return client_value
        if client_value != computed:
            logger.info("Visit %s: ignoring client %s=%s, computed %s",
                        visit_id, field, client_value, computed)
        return computed

    def _reopen(
        self,
        actor: ActingUser,
        visit: Visit,
        transition: VisitTransition,
        kind: PhaseKind,
        owner_id: int,
        values: Dict,
        idempotency_key: Optional[str],
    ) -> Visit:
        now = self.clock()
        previous_owner = visit.user_id
        if owner_id != previous_owner:
            values["user_id"] = owner_id

        def effects():
            visit_crud.claim_slot(self.db, owner_id, visit.id, SlotRole.owner)
            visit_crud.open_phase(self.db, visit.id, kind, now)

        return self.apply_transition(actor, visit, transition, values, now, effects, idempotency_key,
                                     previous_user_id=previous_owner if owner_id != previous_owner else None,
                                     new_user_id=owner_id if owner_id != previous_owner else None)

    def apply_transition(
        self,
        actor: ActingUser,
        visit: Visit,
        transition: VisitTransition,
        values: Dict,
        now: datetime,
        effects: Callable[[], None],
        idempotency_key: Optional[str],
        previous_user_id: Optional[int] = None,
        new_user_id: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> Visit:
        """Compare-and-set the visit row, then write dependent rows, all in one transaction"""
        from_status = visit.status
        to_status = values.get("status", from_status)
        values = dict(values, last_transition=transition)
        visit_id = visit.id

        if not visit_crud.compare_and_set(self.db, visit, values):
            self.db.rollback()
            return self._lost_race(visit_id, transition, to_status)

        effects()
        visit_crud.add_event(self.db, visit_id, transition, from_status, to_status, actor.id, now,
                             previous_user_id=previous_user_id, new_user_id=new_user_id,
                             detail=detail)
        return self._finish(actor, visit, transition, from_status, to_status, idempotency_key, now)

    def _finish(
        self,
        actor: ActingUser,
        visit: Visit,
        transition: VisitTransition,
        from_status: Optional[VisitStatus],
        to_status: VisitStatus,
        idempotency_key: Optional[str],
        now: datetime,
    ) -> Visit:
        if idempotency_key:
            remember_request(self.db, idempotency_key, actor.id, transition.value, now, visit_id=visit.id)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning("Concurrent write rejected %s on visit %s", transition.value, visit.id)
            raise ConflictError("The visit was changed by another request, please retry")
        self.db.refresh(visit)
        logger.info("Visit %s %s: %s -> %s by user %s", visit.id, transition.value,
                    from_status.value if from_status else "-", to_status.value, actor.id)
        return visit

    def _lost_race(self, visit_id: int, transition: VisitTransition, target: VisitStatus) -> Visit:
        """Another request wrote the visit first; report its outcome or reject ours"""
        visit = self.load(visit_id)
        if self._is_duplicate(visit, target, transition):
            return self._duplicate(visit, transition)
        logger.warning("Lost update race for %s on visit %s (now %s)",
                       transition.value, visit_id, visit.status.value)
        raise InvalidTransitionError(
            visit.status.value,
            transition.value,
            f"Visit {visit_id} changed to {visit.status.value} while applying {transition.value}",
        )
