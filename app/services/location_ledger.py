"""
Location Ledger: append-only per-engineer position samples.

Samples are never rewritten or deduplicated. Replayed uploads from the
sync gateway are harmless: a duplicate sample carries the same timestamp,
so it cannot change which sample is latest. When the upload carries an
idempotency key the replay is recognised and the stored sample returned.
"""
import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.crud import location as location_crud
from app.crud.processed_request import get_processed_request, remember_request
from app.crud.user import get_user_by_id
from app.models.location_sample import LocationSample
from app.services.location_cache import LatestLocationCache
from app.utils.coordinates import validate_coordinates
from app.utils.timeutils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

RECORD_OPERATION = "record_location"


class LocationLedger:
    def __init__(
        self,
        db: Session,
        cache: Optional[LatestLocationCache] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.cache = cache
        self.clock = clock

    def record(
        self,
        engineer_id: int,
        latitude,
        longitude,
        timestamp: Optional[datetime] = None,
        idempotency_key: Optional[str] = None,
    ) -> LocationSample:
        """Append a sample; timestamp defaults to receipt time"""
        if idempotency_key:
            processed = get_processed_request(self.db, idempotency_key)
            if processed is not None:
                if processed.operation != RECORD_OPERATION or processed.actor_id != engineer_id:
                    raise ConflictError("Idempotency key was already used for a different request")
                logger.info("Duplicate location upload %s ignored", idempotency_key)
                return location_crud.get_location_sample(self.db, processed.location_id)

        if get_user_by_id(self.db, engineer_id) is None:
            raise NotFoundError(f"Engineer {engineer_id} not found")
        lat, lon = validate_coordinates(latitude, longitude)

        received_at = self.clock()
        sample_time = to_naive_utc(timestamp) if timestamp is not None else received_at
        sample = location_crud.create_location_sample(
            self.db,
            engineer_id=engineer_id,
            latitude=lat,
            longitude=lon,
            timestamp=sample_time,
            received_at=received_at,
        )
        if idempotency_key:
            remember_request(self.db, idempotency_key, engineer_id, RECORD_OPERATION,
                             received_at, location_id=sample.id)
        self.db.commit()
        self.db.refresh(sample)

        if self.cache is not None:
            self._cache_latest(sample)
        logger.debug("Location %s recorded for engineer %s at %s", sample.id, engineer_id, sample_time)
        return sample

    def latest(self, engineer_id: int) -> Optional[LocationSample]:
        """The sample with the greatest timestamp, or None"""
        if self.cache is not None:
            cached = self.cache.latest(engineer_id)
            if cached is not None:
                return cached
        sample = location_crud.get_latest_location(self.db, engineer_id)
        if sample is not None and self.cache is not None:
            self.cache.remember(sample)
        return sample

    def _cache_latest(self, sample: LocationSample) -> None:
        # A cold key is seeded from the database, never from a possibly older arrival
        if self.cache.latest(sample.engineer_id) is None:
            sample = location_crud.get_latest_location(self.db, sample.engineer_id)
        self.cache.remember(sample)

    def history(
        self,
        engineer_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[LocationSample]:
        start, end = to_naive_utc(start), to_naive_utc(end)
        if start is not None and end is not None and start > end:
            raise ValidationError("start must not be after end")
        return location_crud.get_location_history(self.db, engineer_id, start, end)
