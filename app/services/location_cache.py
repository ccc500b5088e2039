"""
Optional Redis cache of each engineer's latest position.

One sorted set per engineer, scored by sample timestamp and trimmed to the
highest-scored member after every write. ZADD and the trim are both
atomic, so samples written concurrently or out of order still leave the
greatest timestamp in place. The database stays authoritative: every
Redis failure is logged and the caller falls back to a database read.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional

import redis

from app.core.config import settings
from app.models.location_sample import LocationSample

logger = logging.getLogger(__name__)

KEY_PREFIX = "location:latest:"

_redis_client = None


def _score(timestamp: datetime) -> float:
    return timestamp.replace(tzinfo=timezone.utc).timestamp()


class LatestLocationCache:
    def __init__(self, client):
        self.client = client

    def _key(self, engineer_id: int) -> str:
        return f"{KEY_PREFIX}{engineer_id}"

    def remember(self, sample: LocationSample) -> None:
        member = json.dumps({
            "id": sample.id,
            "engineer_id": sample.engineer_id,
            "latitude": sample.latitude,
            "longitude": sample.longitude,
            "timestamp": sample.timestamp.isoformat(),
            "received_at": sample.received_at.isoformat() if sample.received_at else None,
        })
        key = self._key(sample.engineer_id)
        try:
            pipe = self.client.pipeline()
            pipe.zadd(key, {member: _score(sample.timestamp)})
            pipe.zremrangebyrank(key, 0, -2)
            pipe.execute()
        except redis.RedisError as e:
            logger.warning("Could not cache location for engineer %s: %s", sample.engineer_id, e)
            # A missed write must not leave an older sample looking like the latest
            self.forget(sample.engineer_id)

    def forget(self, engineer_id: int) -> None:
        try:
            self.client.delete(self._key(engineer_id))
        except redis.RedisError as e:
            logger.warning("Could not drop cached location for engineer %s: %s", engineer_id, e)

    def latest(self, engineer_id: int) -> Optional[LocationSample]:
        try:
            members = self.client.zrevrange(self._key(engineer_id), 0, 0)
        except redis.RedisError as e:
            logger.warning("Location cache read failed for engineer %s: %s", engineer_id, e)
            return None
        if not members:
            return None
        data = json.loads(members[0])
        # Detached instance, never added to a session
        return LocationSample(
            id=data["id"],
            engineer_id=data["engineer_id"],
            latitude=data["latitude"],
            longitude=data["longitude"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            received_at=datetime.fromisoformat(data["received_at"]) if data["received_at"] else None,
        )


def get_location_cache() -> Optional[LatestLocationCache]:
    """Shared cache when LOCATION_CACHE_ENABLED, otherwise None"""
    global _redis_client
    if not settings.LOCATION_CACHE_ENABLED:
        return None
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return LatestLocationCache(_redis_client)
