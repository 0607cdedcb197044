"""
Domain dataclasses used across the application.

Every entity is frozen: a snapshot is built once and replaced wholesale on
refresh, never patched in place.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple


# ── Read models ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class PersonRef:
    """A person as shown in a view: staff member, patient, or responsible party."""
    id: str
    display_name: str
    role: str                              # "doctor", "nurse", "patient", "responsible"
    linked_patient_id: Optional[str] = None
    roles: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.roles:
            object.__setattr__(self, "roles", (self.role,))


@dataclass(frozen=True)
class Appointment:
    id: str
    patient: PersonRef
    doctor: PersonRef
    occurs_at: datetime
    source: str                            # collection the record was read from
    nurse: Optional[PersonRef] = None
    room: str = ""
    reason: str = ""
    status: str = "scheduled"


@dataclass(frozen=True)
class LabRequest:
    id: str
    patient: PersonRef
    doctor: PersonRef
    test_type: str
    status: str                            # "pending", "completed", "cancelled"
    created_at: Optional[datetime]         # None only for stubs
    urgency: str = "normal"


@dataclass(frozen=True)
class LabResult:
    id: str
    request: LabRequest
    result_fields: Tuple[Tuple[str, Any], ...]
    reviewer_note: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def status(self) -> str:
        return "completed" if self.reviewer_note else "pending"


@dataclass(frozen=True)
class OverrideRequest:
    id: str
    patient: PersonRef
    requesting_role: str
    reviewing_role: str
    requested_by: PersonRef
    message: str
    status: str                            # "pending", "approved", "rejected"
    created_at: Optional[datetime]
    medication_name: Optional[str] = None
    current_dosage: Optional[str] = None
    requested_dosage: Optional[str] = None


@dataclass(frozen=True)
class RoleSnapshot:
    """Everything one role's dashboard needs, assembled in a single build."""
    for_user: PersonRef
    patients: Tuple[PersonRef, ...] = ()
    appointments_today: Tuple[Appointment, ...] = ()
    pending_lab_requests: Tuple[LabRequest, ...] = ()
    recent_prescriptions_count: int = 0
    pending_overrides: Tuple[OverrideRequest, ...] = ()
    lab_results: Tuple[LabResult, ...] = ()
    partial: bool = False
    failed_sections: Tuple[str, ...] = ()
    degraded_sections: Tuple[str, ...] = ()
    diagnostics: Tuple[str, ...] = ()
    built_at: Optional[datetime] = field(default=None, compare=False)


# ── Query / join plumbing ────────────────────────────────────────────

@dataclass(frozen=True)
class DayWindow:
    """Clock reading shared by every date-bounded query of one build."""
    now: datetime
    day_start: datetime
    day_end: datetime
    recent_since: datetime


@dataclass(frozen=True)
class RangeFilter:
    field: str
    start: Optional[datetime] = None       # inclusive
    end: Optional[datetime] = None         # exclusive

    def contains(self, instant: datetime) -> bool:
        if self.start is not None and instant < self.start:
            return False
        if self.end is not None and instant >= self.end:
            return False
        return True


@dataclass(frozen=True)
class SortOrder:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class QuerySpec:
    """One logical query: equality filters, an optional range and sort."""
    collection: str
    filters: Tuple[Tuple[str, Any], ...] = ()
    range_filter: Optional[RangeFilter] = None
    sort: Optional[SortOrder] = None
    owner_fields: Tuple[str, ...] = ()     # candidate spellings of the owner field
    owner_id: Optional[str] = None
    use_date_time: bool = False            # a date+time pair overrides the range field


@dataclass(frozen=True)
class QueryResult:
    records: Tuple[Dict[str, Any], ...] = ()
    degraded: bool = False
    failed: bool = False
    failures: Tuple[str, ...] = ()


@dataclass(frozen=True)
class JoinStep:
    key: str
    foreign_key_fields: Tuple[str, ...]
    target_collection: str
    target_fields: Tuple[str, ...]
    default_on_miss: Mapping[str, Any] = field(default_factory=dict)
    then: Tuple["JoinStep", ...] = ()

    def depth(self) -> int:
        return 1 + max((step.depth() for step in self.then), default=0)


# ── Serialisation ────────────────────────────────────────────────────

def _jsonable(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def snapshot_to_dict(snapshot: RoleSnapshot) -> Dict[str, Any]:
    """Convert a snapshot to JSON-ready primitives (instants as ISO-8601)."""
    data = asdict(snapshot)
    data["lab_results"] = [
        dict(result, status=obj.status)
        for result, obj in zip(data["lab_results"], snapshot.lab_results)
    ]
    return _jsonable(data)
