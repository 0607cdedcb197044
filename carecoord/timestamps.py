"""
Timestamp normalisation – one canonical instant from every date shape the
collections have accumulated.

Instants are always timezone-aware. Naive values (local wall-clock strings,
naive datetimes) are read as local time; epoch maps are UTC.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Mapping, Optional

from carecoord.config import DATE_FIELD, RECENT_PRESCRIPTION_DAYS, TIME_FIELD
from carecoord.models import DayWindow

_NANOS_PER_SECOND = 1_000_000_000
_TIME_FORMATS = ("%H:%M", "%H:%M:%S")


# ── Helpers ──────────────────────────────────────────────────────────

def _aware(value: datetime) -> Optional[datetime]:
    if value.tzinfo is not None and value.utcoffset() is not None:
        return value
    try:
        return value.astimezone()
    except (OverflowError, OSError, ValueError):
        return None


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _from_epoch(seconds: Any, nanos: Any) -> Optional[datetime]:
    if nanos is None:
        nanos = 0
    if not _is_int(seconds) or not _is_int(nanos):
        return None
    if not 0 <= nanos < _NANOS_PER_SECOND:
        return None
    try:
        base = datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return base + timedelta(microseconds=nanos // 1000)


def _from_iso(text: str) -> Optional[datetime]:
    text = text.strip()
    if not text:
        return None
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        return _aware(datetime.fromisoformat(text))
    except ValueError:
        return None


def combine_date_time(date_str: Any, time_str: Any = None) -> Optional[datetime]:
    """Merge a "YYYY-MM-DD" date and an optional "HH:mm" time into a local instant."""
    if not isinstance(date_str, str):
        return None
    try:
        day = datetime.strptime(date_str.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None

    if time_str is None or (isinstance(time_str, str) and not time_str.strip()):
        return _aware(datetime.combine(day, time.min))
    if not isinstance(time_str, str):
        return None

    for fmt in _TIME_FORMATS:
        try:
            clock = datetime.strptime(time_str.strip(), fmt).time()
        except ValueError:
            continue
        return _aware(datetime.combine(day, clock))
    return None


# ── Public API ───────────────────────────────────────────────────────

def normalize(raw: Any) -> Optional[datetime]:
    """
    Convert any supported date representation to an aware datetime.

    Accepts datetime/date objects, {_seconds, _nanoseconds} maps,
    {_firestore_timestamp} export maps, ISO-8601 strings and
    {date, time} pairs. Anything else, or anything out of range, is None.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, datetime):
        return _aware(raw)
    if isinstance(raw, date):
        return _aware(datetime.combine(raw, time.min))
    if isinstance(raw, str):
        return _from_iso(raw)
    if isinstance(raw, Mapping):
        if "_seconds" in raw:
            return _from_epoch(raw.get("_seconds"), raw.get("_nanoseconds"))
        if "_firestore_timestamp" in raw:
            value = raw.get("_firestore_timestamp")
            return _from_iso(value) if isinstance(value, str) else None
        if DATE_FIELD in raw:
            return combine_date_time(raw.get(DATE_FIELD), raw.get(TIME_FIELD))
    return None


def normalize_record(record: Mapping[str, Any], field: str) -> Optional[datetime]:
    """
    Instant of *record*, preferring its date+time pair over record[field].

    The pair is what the newer schema writes; a structured timestamp left on
    the same record may be stale.
    """
    date_str = record.get(DATE_FIELD)
    time_str = record.get(TIME_FIELD)
    if isinstance(date_str, str) and isinstance(time_str, str) and time_str.strip():
        paired = combine_date_time(date_str, time_str)
        if paired is not None:
            return paired
    return normalize(record.get(field))


def day_window(now: datetime) -> DayWindow:
    """[start of local day, +24h) plus the recent-activity lower bound."""
    now = _aware(now) or datetime.now().astimezone()
    local_now = now.astimezone()
    day_start = datetime.combine(local_now.date(), time.min).astimezone()
    return DayWindow(
        now=now,
        day_start=day_start,
        day_end=day_start + timedelta(hours=24),
        recent_since=now - timedelta(days=RECENT_PRESCRIPTION_DAYS),
    )
