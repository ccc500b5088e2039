"""Tests for the location ledger and the latest-location cache."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import redis

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.location_sample import LocationSample
from app.services.location_cache import LatestLocationCache
from app.services.location_ledger import LocationLedger


class FakeRedis:
    """Just enough of the redis client for sorted sets and pipelines"""

    def __init__(self):
        self.sets = {}
        self._queued = []

    def pipeline(self):
        self._queued = []
        return self

    def execute(self):
        queued, self._queued = self._queued, []
        for name, args in queued:
            getattr(self, "_" + name)(*args)

    def zadd(self, key, mapping):
        self._queued.append(("zadd", (key, mapping)))

    def zremrangebyrank(self, key, start, stop):
        self._queued.append(("zremrangebyrank", (key, start, stop)))

    def _zadd(self, key, mapping):
        self.sets.setdefault(key, {}).update(mapping)

    def _zremrangebyrank(self, key, start, stop):
        ranked = sorted(self.sets.get(key, {}).items(), key=lambda item: item[1])
        count = len(ranked)
        start = start if start >= 0 else count + start
        stop = stop if stop >= 0 else count + stop
        for member, _ in ranked[start:stop + 1]:
            del self.sets[key][member]

    def zrevrange(self, key, start, stop):
        ranked = sorted(self.sets.get(key, {}).items(), key=lambda item: item[1], reverse=True)
        return [member for member, _ in ranked[start:stop + 1]]

    def delete(self, key):
        self.sets.pop(key, None)


class FlakyRedis(FakeRedis):
    """Fails the next pipelined write, then behaves"""

    def __init__(self):
        super().__init__()
        self.fail_next_write = False

    def execute(self):
        if self.fail_next_write:
            self.fail_next_write = False
            self._queued = []
            raise redis.ConnectionError("write lost")
        super().execute()


class TestRecord:
    def test_defaults_timestamp_to_receipt_time(self, ledger, alice, clock):
        sample = ledger.record(alice.id, "51.5074", "-0.1278")

        assert sample.timestamp == clock.now
        assert sample.received_at == clock.now
        assert sample.engineer_id == alice.id

    def test_keeps_device_timestamp(self, ledger, alice, clock):
        taken = clock.now - timedelta(minutes=30)

        sample = ledger.record(alice.id, "51.5074", "-0.1278", timestamp=taken)

        assert sample.timestamp == taken
        assert sample.received_at == clock.now

    def test_coordinates_are_verbatim(self, ledger, alice):
        sample = ledger.record(alice.id, "40.712800", -74.006)

        assert sample.latitude == "40.712800"
        assert sample.longitude == "-74.006"

    @pytest.mark.parametrize("latitude,longitude", [
        ("abc", "0"),
        ("90.5", "0"),
        ("0", "-180.01"),
        ("", "10"),
        ("nan", "10"),
    ])
    def test_rejects_bad_coordinates(self, ledger, alice, latitude, longitude):
        with pytest.raises(ValidationError):
            ledger.record(alice.id, latitude, longitude)

    def test_unknown_engineer(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.record(404, "1", "1")

    def test_duplicates_are_kept(self, db, ledger, alice):
        ledger.record(alice.id, "1.0", "2.0")
        ledger.record(alice.id, "1.0", "2.0")

        assert db.query(LocationSample).count() == 2

    def test_idempotency_key_replay(self, db, ledger, alice):
        first = ledger.record(alice.id, "1.0", "2.0", idempotency_key="loc-1")
        again = ledger.record(alice.id, "1.0", "2.0", idempotency_key="loc-1")

        assert again.id == first.id
        assert db.query(LocationSample).count() == 1

    def test_idempotency_key_of_other_engineer(self, ledger, alice, bob):
        ledger.record(alice.id, "1.0", "2.0", idempotency_key="loc-1")

        with pytest.raises(ConflictError):
            ledger.record(bob.id, "1.0", "2.0", idempotency_key="loc-1")


class TestLatestAndHistory:
    def test_out_of_order_arrival_keeps_newest(self, ledger, alice, clock):
        t2 = clock.now
        t1 = t2 - timedelta(minutes=5)

        newest = ledger.record(alice.id, "2.0", "2.0", timestamp=t2)
        ledger.record(alice.id, "1.0", "1.0", timestamp=t1)

        assert ledger.latest(alice.id).id == newest.id

    def test_latest_without_samples(self, ledger, alice):
        assert ledger.latest(alice.id) is None

    def test_latest_is_per_engineer(self, ledger, alice, bob):
        mine = ledger.record(alice.id, "1.0", "1.0")
        ledger.record(bob.id, "2.0", "2.0")

        assert ledger.latest(alice.id).id == mine.id

    def test_history_is_ordered_and_bounded(self, ledger, alice, clock):
        base = clock.now
        for offset in (30, 10, 20, 0):
            ledger.record(alice.id, "1.0", str(offset), timestamp=base + timedelta(minutes=offset))

        history = ledger.history(alice.id)
        assert [s.longitude for s in history] == ["0", "10", "20", "30"]

        bounded = ledger.history(alice.id, start=base + timedelta(minutes=10), end=base + timedelta(minutes=20))
        assert [s.longitude for s in bounded] == ["10", "20"]

    def test_history_rejects_inverted_range(self, ledger, alice, clock):
        with pytest.raises(ValidationError):
            ledger.history(alice.id, start=clock.now, end=clock.now - timedelta(minutes=1))


class TestLatestLocationCache:
    def test_cache_keeps_greatest_timestamp(self, db, alice, clock):
        cache = LatestLocationCache(FakeRedis())
        ledger = LocationLedger(db, cache=cache, clock=clock)
        t2 = clock.now
        t1 = t2 - timedelta(minutes=5)

        newest = ledger.record(alice.id, "2.0", "2.0", timestamp=t2)
        ledger.record(alice.id, "1.0", "1.0", timestamp=t1)

        cached = cache.latest(alice.id)
        assert cached.id == newest.id
        assert cached.timestamp == t2
        assert cached.latitude == "2.0"

    def test_ledger_reads_from_cache(self, db, alice, clock):
        client = FakeRedis()
        ledger = LocationLedger(db, cache=LatestLocationCache(client), clock=clock)
        sample = ledger.record(alice.id, "3.0", "4.0")

        latest = ledger.latest(alice.id)

        assert latest.id == sample.id
        assert latest not in db

    def test_cold_cache_is_filled_from_database(self, db, ledger, alice, clock):
        sample = ledger.record(alice.id, "3.0", "4.0")
        cache = LatestLocationCache(FakeRedis())

        assert LocationLedger(db, cache=cache, clock=clock).latest(alice.id).id == sample.id
        assert cache.latest(alice.id).id == sample.id

    def test_redis_failure_falls_back_to_database(self, db, alice, clock):
        client = MagicMock()
        client.pipeline.side_effect = redis.ConnectionError("down")
        client.zrevrange.side_effect = redis.ConnectionError("down")
        ledger = LocationLedger(db, cache=LatestLocationCache(client), clock=clock)

        sample = ledger.record(alice.id, "3.0", "4.0")

        assert ledger.latest(alice.id).id == sample.id

    def test_lost_write_does_not_hide_newer_sample(self, db, alice, clock):
        client = FlakyRedis()
        ledger = LocationLedger(db, cache=LatestLocationCache(client), clock=clock)
        t2 = clock.now
        t1 = t2 - timedelta(hours=1)

        client.fail_next_write = True
        newest = ledger.record(alice.id, "2.0", "2.0", timestamp=t2)
        ledger.record(alice.id, "1.0", "1.0", timestamp=t1)

        latest = ledger.latest(alice.id)
        assert latest.id == newest.id
        assert latest.timestamp == t2

    def test_cache_enabled_after_samples_exist(self, db, ledger, alice, clock):
        newest = ledger.record(alice.id, "2.0", "2.0")
        cached = LocationLedger(db, cache=LatestLocationCache(FakeRedis()), clock=clock)

        cached.record(alice.id, "1.0", "1.0", timestamp=clock.now - timedelta(minutes=10))

        assert cached.latest(alice.id).id == newest.id
