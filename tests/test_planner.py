"""
Unit tests for the query planner – primary query, index fallback, owner-field
retry and outages.
"""

import asyncio
from datetime import datetime, timezone

from carecoord.models import QuerySpec, RangeFilter, SortOrder
from carecoord.planner import QueryPlanner
from carecoord.store import MemoryStore

from conftest import FailingStore


def run(coro):
    return asyncio.run(coro)


def utc(seconds):
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def requests_store(indexed: bool) -> MemoryStore:
    store = MemoryStore()
    if indexed:
        store.add_index("requests", "doctorId", "status", "createdAt")
    # r2 and r3 share a timestamp: ties break on document id.
    store.add("requests", "r1", {"doctorId": "D1", "status": "pending", "createdAt": {"_seconds": 100}})
    store.add("requests", "r3", {"doctorId": "D1", "status": "pending", "createdAt": {"_seconds": 300}})
    store.add("requests", "r2", {"doctorId": "D1", "status": "pending", "createdAt": {"_seconds": 300}})
    store.add("requests", "r4", {"doctorId": "D1", "status": "done", "createdAt": {"_seconds": 400}})
    store.add("requests", "r5", {"doctorId": "D2", "status": "pending", "createdAt": {"_seconds": 500}})
    store.add("requests", "r6", {"doctorId": "D1", "status": "pending", "createdAt": "garbage"})
    return store


PENDING_NEWEST_FIRST = QuerySpec(
    collection="requests",
    filters=(("status", "pending"),),
    sort=SortOrder("createdAt", descending=True),
    owner_fields=("doctorId", "assignedDoctorId"),
    owner_id="D1",
)


# ── Tests: primary and fallback ──────────────────────────────────────

def test_indexed_query_is_single_and_not_degraded():
    store = requests_store(indexed=True)
    result = run(QueryPlanner(store).query(PENDING_NEWEST_FIRST))
    assert [r["id"] for r in result.records] == ["r3", "r2", "r1"]
    assert not result.degraded
    assert not result.failed
    assert len(store.query_log) == 1


def test_fallback_reproduces_indexed_ordering():
    indexed = run(QueryPlanner(requests_store(indexed=True)).query(PENDING_NEWEST_FIRST))

    store = requests_store(indexed=False)
    fallback = run(QueryPlanner(store).query(PENDING_NEWEST_FIRST))

    assert [r["id"] for r in fallback.records] == [r["id"] for r in indexed.records]
    assert fallback.degraded
    assert not fallback.failed
    assert len(fallback.failures) == 1
    assert "IndexRequiredError" in fallback.failures[0]


def test_exactly_one_fallback_query_without_range_or_sort():
    store = requests_store(indexed=False)
    run(QueryPlanner(store).query(PENDING_NEWEST_FIRST))
    assert len(store.query_log) == 2
    collection, filters, range_filter, sort = store.query_log[1]
    assert set(filters) == {("status", "pending"), ("doctorId", "D1")}
    assert range_filter is None
    assert sort is None


def test_fallback_applies_range_in_memory():
    store = requests_store(indexed=False)
    spec = QuerySpec(
        collection="requests",
        range_filter=RangeFilter("createdAt", utc(200), utc(450)),
        owner_fields=("doctorId",),
        owner_id="D1",
    )
    result = run(QueryPlanner(store).query(spec))
    # No sort requested: id order.
    assert [r["id"] for r in result.records] == ["r2", "r3", "r4"]
    assert result.degraded


def test_no_owner_runs_plain_query():
    store = requests_store(indexed=False)
    result = run(QueryPlanner(store).query(QuerySpec(collection="requests", filters=(("doctorId", "D2"),))))
    assert [r["id"] for r in result.records] == ["r5"]
    assert not result.degraded


# ── Tests: owner-field retry ─────────────────────────────────────────

def test_missing_owner_field_retries_next_candidate():
    store = MemoryStore()
    store.add("patients", "P1", {"assignedDoctorId": "D1"})
    store.add("patients", "P2", {"assignedDoctorId": "D2"})
    spec = QuerySpec(collection="patients", owner_fields=("doctorId", "assignedDoctorId"), owner_id="D1")

    result = run(QueryPlanner(store).query(spec))

    assert [r["id"] for r in result.records] == ["P1"]
    assert result.degraded
    assert not result.failed
    assert [entry[1][0][0] for entry in store.query_log] == ["doctorId", "assignedDoctorId"]


def test_both_owner_fields_missing_fails_softly():
    store = MemoryStore()
    store.add("patients", "P1", {"name": "x"})
    spec = QuerySpec(collection="patients", owner_fields=("doctorId", "assignedDoctorId"), owner_id="D1")

    result = run(QueryPlanner(store).query(spec))

    assert result.records == ()
    assert result.failed and result.degraded
    assert len(result.failures) == 2
    assert all("FieldNotFoundError" in f for f in result.failures)


def test_at_most_two_owner_candidates():
    store = MemoryStore()
    store.add("patients", "P1", {"thirdId": "D1"})
    spec = QuerySpec(collection="patients", owner_fields=("a", "b", "thirdId"), owner_id="D1")

    result = run(QueryPlanner(store).query(spec))

    assert result.failed
    assert len(store.query_log) == 2


# ── Tests: outages ───────────────────────────────────────────────────

def test_store_outage_is_recorded_not_raised():
    store = FailingStore(requests_store(indexed=True), {"requests"})
    result = run(QueryPlanner(store).query(PENDING_NEWEST_FIRST))
    assert result.failed
    assert result.records == ()
    assert store.find_calls == ["requests"]
    assert "UNAVAILABLE" in result.failures[0]


def test_unexpected_exception_is_contained():
    store = FailingStore(requests_store(indexed=True), {"requests"}, error=RuntimeError("boom"))
    result = run(QueryPlanner(store).query(PENDING_NEWEST_FIRST))
    assert result.failed
    assert "RuntimeError: boom" in result.failures[0]


# ── Tests: date+time pairs ───────────────────────────────────────────

def test_date_time_pair_drives_range_and_order():
    store = MemoryStore()
    store.add("visits", "v1", {"doctorId": "D1", "date": "2024-02-20", "time": "14:30",
                               "appointmentDate": {"_seconds": 0}})
    store.add("visits", "v2", {"doctorId": "D1", "date": "2024-02-20", "time": "08:00"})
    store.add("visits", "v3", {"doctorId": "D1", "date": "2024-02-21", "time": "08:00"})
    day_start = datetime(2024, 2, 20).astimezone()
    day_end = datetime(2024, 2, 21).astimezone()
    spec = QuerySpec(
        collection="visits",
        range_filter=RangeFilter("appointmentDate", day_start, day_end),
        sort=SortOrder("appointmentDate"),
        owner_fields=("doctorId",),
        owner_id="D1",
        use_date_time=True,
    )

    result = run(QueryPlanner(store).query(spec))

    assert [r["id"] for r in result.records] == ["v2", "v1"]
    assert not result.degraded
    # Range and sort stay in memory for date+time specs.
    assert store.query_log[0][2:] == (None, None)
