from enum import Enum


class VisitStatus(str, Enum):
    """Closed set of visit states"""
    NOT_STARTED = "NOT_STARTED"
    ON_ROUTE = "ON_ROUTE"
    IN_SERVICE = "IN_SERVICE"
    COMPLETED = "COMPLETED"
    PAUSED_NEXT_DAY = "PAUSED_NEXT_DAY"
    BLOCKED = "BLOCKED"


# An engineer may hold at most one visit in these states
ACTIVE_STATUSES = frozenset({VisitStatus.ON_ROUTE, VisitStatus.IN_SERVICE})


class PhaseKind(str, Enum):
    journey = "journey"
    service = "service"


class VisitTransition(str, Enum):
    """Operations that change a visit, recorded as last_transition and in visit_events"""
    create = "create"
    start_journey = "start_journey"
    start_service = "start_service"
    complete = "complete"
    pause = "pause"
    resume = "resume"
    unblock = "unblock"
    join = "join"
    reassign = "reassign"


class PauseReason(str, Enum):
    next_day = "next_day"
    blocked = "blocked"


class ResumeType(str, Enum):
    journey = "journey"
    service = "service"


class SlotRole(str, Enum):
    owner = "owner"
    collaborator = "collaborator"


PHASE_STATUS = {
    PhaseKind.journey: VisitStatus.ON_ROUTE,
    PhaseKind.service: VisitStatus.IN_SERVICE,
}
