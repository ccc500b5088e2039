from .user import User
from .visit import Visit, VisitPhase, VisitCollaborator
from .engineer_slot import EngineerActiveSlot
from .visit_event import VisitEvent
from .location_sample import LocationSample
from .processed_request import ProcessedRequest

# Import Base for database operations
from app.db.base import Base
