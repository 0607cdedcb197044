"""
Unit tests for timestamp normalisation and the day window.
"""

from datetime import date, datetime, timedelta, timezone

from carecoord.timestamps import combine_date_time, day_window, normalize, normalize_record


# ── Tests: normalize ─────────────────────────────────────────────────

def test_epoch_map_keeps_microsecond_precision():
    got = normalize({"_seconds": 1708439400, "_nanoseconds": 123456789})
    assert got == datetime(2024, 2, 20, 14, 30, 0, 123456, tzinfo=timezone.utc)


def test_epoch_map_without_nanos():
    assert normalize({"_seconds": 0}) == datetime(1970, 1, 1, tzinfo=timezone.utc)


def test_epoch_map_rejects_bad_parts():
    assert normalize({"_seconds": 10, "_nanoseconds": 1_000_000_000}) is None
    assert normalize({"_seconds": 10, "_nanoseconds": -1}) is None
    assert normalize({"_seconds": "10"}) is None
    assert normalize({"_seconds": True}) is None
    assert normalize({"_seconds": 10**20}) is None


def test_export_timestamp_map():
    got = normalize({"_firestore_timestamp": "2024-02-20T14:30:00.000Z"})
    assert got == datetime(2024, 2, 20, 14, 30, tzinfo=timezone.utc)


def test_iso_strings():
    assert normalize("2024-02-20T14:30:00+02:00") == datetime(2024, 2, 20, 12, 30, tzinfo=timezone.utc)
    naive = normalize("2024-02-20T14:30:00")
    assert naive.tzinfo is not None
    assert naive == datetime(2024, 2, 20, 14, 30).astimezone()


def test_datetime_and_date_objects():
    aware = datetime(2024, 2, 20, 14, 30, tzinfo=timezone.utc)
    assert normalize(aware) is aware
    assert normalize(datetime(2024, 2, 20, 14, 30)) == datetime(2024, 2, 20, 14, 30).astimezone()
    assert normalize(date(2024, 2, 20)) == datetime(2024, 2, 20).astimezone()


def test_date_time_map():
    got = normalize({"date": "2024-02-20", "time": "14:30"})
    assert got == datetime(2024, 2, 20, 14, 30).astimezone()


def test_garbage_is_none():
    for raw in (None, True, 42, 4.2, [], {}, "", "not a date", {"seconds": 5}):
        assert normalize(raw) is None


# ── Tests: combine_date_time ─────────────────────────────────────────

def test_combine_reads_local_wall_clock():
    got = combine_date_time("2024-02-20", "14:30")
    assert got == datetime(2024, 2, 20, 14, 30).astimezone()
    assert got.tzinfo is not None


def test_combine_accepts_seconds():
    assert combine_date_time("2024-02-20", "14:30:15") == datetime(2024, 2, 20, 14, 30, 15).astimezone()


def test_combine_missing_time_is_midnight():
    assert combine_date_time("2024-02-20") == datetime(2024, 2, 20).astimezone()
    assert combine_date_time("2024-02-20", "  ") == datetime(2024, 2, 20).astimezone()


def test_combine_malformed_parts():
    assert combine_date_time("2024-02-20", "25:99") is None
    assert combine_date_time("2024-02-20", "2pm") is None
    assert combine_date_time("20/02/2024", "14:30") is None
    assert combine_date_time(None, "14:30") is None
    assert combine_date_time("2024-02-20", 1430) is None


# ── Tests: normalize_record ──────────────────────────────────────────

def test_date_time_pair_beats_stale_timestamp():
    record = {
        "date": "2024-02-20",
        "time": "14:30",
        "appointmentDate": {"_seconds": 1708250400, "_nanoseconds": 0},
    }
    assert normalize_record(record, "appointmentDate") == datetime(2024, 2, 20, 14, 30).astimezone()


def test_record_without_pair_uses_field():
    record = {"appointmentDate": {"_seconds": 1708439400, "_nanoseconds": 0}}
    assert normalize_record(record, "appointmentDate") == datetime(2024, 2, 20, 14, 30, tzinfo=timezone.utc)


def test_record_with_bad_time_falls_back_to_field():
    record = {"date": "2024-02-20", "time": "later", "scheduledTime": "2024-02-20T10:00:00Z"}
    assert normalize_record(record, "scheduledTime") == datetime(2024, 2, 20, 10, 0, tzinfo=timezone.utc)


def test_record_date_only():
    assert normalize_record({"date": "2024-02-20"}, "date") == datetime(2024, 2, 20).astimezone()


# ── Tests: day_window ────────────────────────────────────────────────

def test_day_window_bounds():
    now = datetime(2024, 2, 20, 9, 0).astimezone()
    window = day_window(now)
    assert window.now == now
    assert window.day_start == datetime(2024, 2, 20).astimezone()
    assert window.day_end == window.day_start + timedelta(hours=24)
    assert window.recent_since == now - timedelta(days=7)


def test_day_window_accepts_naive_now():
    window = day_window(datetime(2024, 2, 20, 23, 59))
    assert window.day_start == datetime(2024, 2, 20).astimezone()
