"""
Role-scoped view assembly.

A build fetches everything one role's dashboard needs in two concurrent
stages (owned by the user, then per listed patient), enriches the records
that reference other collections, and reconciles the lot into a single
immutable RoleSnapshot. Failed data needs degrade to empty sections; only a
missing user or a programming error aborts a build.
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence, Set, Tuple

from carecoord.config import (
    DOCTORS,
    LAB_REQUESTS,
    LAB_RESULTS,
    LEGACY_APPOINTMENTS,
    NURSES,
    OVERRIDE_REQUESTS,
    OWNER_FIELDS,
    PATIENT_LINK_FIELDS,
    PATIENTS,
    PRESCRIPTIONS,
    PROFILE_COLLECTIONS,
    STAFF_ROLES,
    SUPPORTED_ROLES,
    UNKNOWN_NURSE,
    UNKNOWN_PATIENT,
    UNKNOWN_PHYSICIAN,
    UNKNOWN_USER,
    USERS,
    WEB_APPOINTMENTS,
)
from carecoord.identity import build_patient_index, detect_multi_role_link
from carecoord.joiner import Joiner
from carecoord.models import (
    Appointment,
    DayWindow,
    JoinStep,
    LabRequest,
    LabResult,
    OverrideRequest,
    PersonRef,
    QueryResult,
    QuerySpec,
    RangeFilter,
    RoleSnapshot,
    SortOrder,
)
from carecoord.planner import QueryPlanner
from carecoord.reconcile import (
    appointment_from_record,
    lab_request_from_record,
    lab_result_from_record,
    override_from_record,
    person_from_patient,
    profile_name,
)
from carecoord.store import DocumentStore, FieldNotFoundError
from carecoord.timestamps import day_window

logger = logging.getLogger(__name__)


class NoAuthenticatedUser(ValueError):
    """Raised when a build is requested without a signed-in user."""


class BuildState(Enum):
    IDLE = 0
    FETCHING = 1
    RECONCILING = 2
    READY = 3


# ── Sections ─────────────────────────────────────────────────────────

SECTION_PATIENTS = "patients"
SECTION_APPOINTMENTS = "appointmentsToday"
SECTION_LAB_REQUESTS = "pendingLabRequests"
SECTION_PRESCRIPTIONS = "recentPrescriptionsCount"
SECTION_OVERRIDES = "pendingOverrides"
SECTION_LAB_RESULTS = "labResults"

SECTIONS = (
    SECTION_PATIENTS,
    SECTION_APPOINTMENTS,
    SECTION_LAB_REQUESTS,
    SECTION_PRESCRIPTIONS,
    SECTION_OVERRIDES,
    SECTION_LAB_RESULTS,
)

NEWEST_FIRST = SortOrder("createdAt", descending=True)
PENDING = (("status", "pending"),)


@dataclass(frozen=True)
class DataNeed:
    """One query feeding one section of a role's snapshot."""
    section: str
    collection: str
    owner: str                             # key into OWNER_FIELDS
    filters: Tuple[Tuple[str, Any], ...] = ()
    window: Optional[str] = None           # "today", "recent" or None
    time_field: Optional[str] = None
    sort: Optional[SortOrder] = None
    use_date_time: bool = False
    per_patient: bool = False              # run once per listed patient


def _patient_scoped_needs() -> Tuple[DataNeed, ...]:
    owner = "records.patient"
    return (
        DataNeed(SECTION_APPOINTMENTS, WEB_APPOINTMENTS, owner, window="today", time_field="date",
                 use_date_time=True, per_patient=True),
        DataNeed(SECTION_APPOINTMENTS, LEGACY_APPOINTMENTS, owner, window="today", time_field="appointmentDate",
                 use_date_time=True, per_patient=True),
        DataNeed(SECTION_LAB_REQUESTS, LAB_REQUESTS, owner, filters=PENDING, sort=NEWEST_FIRST, per_patient=True),
        DataNeed(SECTION_PRESCRIPTIONS, PRESCRIPTIONS, owner, window="recent", time_field="createdAt",
                 per_patient=True),
        DataNeed(SECTION_LAB_RESULTS, LAB_RESULTS, owner, sort=NEWEST_FIRST, per_patient=True),
    )


ROLE_NEEDS: Dict[str, Tuple[DataNeed, ...]] = {
    "doctor": (
        DataNeed(SECTION_PATIENTS, PATIENTS, "patients.doctor"),
        DataNeed(SECTION_APPOINTMENTS, WEB_APPOINTMENTS, "records.doctor", window="today", time_field="date",
                 use_date_time=True),
        DataNeed(SECTION_APPOINTMENTS, LEGACY_APPOINTMENTS, "records.doctor", window="today",
                 time_field="appointmentDate", use_date_time=True),
        DataNeed(SECTION_LAB_REQUESTS, LAB_REQUESTS, "records.doctor", filters=PENDING, sort=NEWEST_FIRST),
        DataNeed(SECTION_PRESCRIPTIONS, PRESCRIPTIONS, "records.doctor", window="recent", time_field="createdAt"),
        DataNeed(SECTION_OVERRIDES, OVERRIDE_REQUESTS, "records.doctor", filters=PENDING, sort=NEWEST_FIRST),
        DataNeed(SECTION_LAB_RESULTS, LAB_RESULTS, "records.doctor", sort=NEWEST_FIRST),
    ),
    "nurse": (
        DataNeed(SECTION_PATIENTS, PATIENTS, "patients.nurse"),
        DataNeed(SECTION_APPOINTMENTS, LEGACY_APPOINTMENTS, "records.nurse", window="today",
                 time_field="scheduledTime", use_date_time=True),
        DataNeed(SECTION_APPOINTMENTS, WEB_APPOINTMENTS, "records.nurse", window="today", time_field="date",
                 use_date_time=True),
        DataNeed(SECTION_LAB_REQUESTS, LAB_REQUESTS, "records.patient", filters=PENDING, sort=NEWEST_FIRST,
                 per_patient=True),
        DataNeed(SECTION_PRESCRIPTIONS, PRESCRIPTIONS, "records.patient", window="recent", time_field="createdAt",
                 per_patient=True),
        DataNeed(SECTION_OVERRIDES, OVERRIDE_REQUESTS, "records.nurse", filters=PENDING, sort=NEWEST_FIRST),
        DataNeed(SECTION_LAB_RESULTS, LAB_RESULTS, "records.patient", sort=NEWEST_FIRST, per_patient=True),
    ),
    "patient": (DataNeed(SECTION_PATIENTS, PATIENTS, "patients.self"),) + _patient_scoped_needs(),
    "responsible": (DataNeed(SECTION_PATIENTS, PATIENTS, "patients.responsible"),) + _patient_scoped_needs(),
}

# ── Join plans ───────────────────────────────────────────────────────

ATTENDING_DOCTOR = JoinStep("doctorDoc", OWNER_FIELDS["records.doctor"], DOCTORS, ("name",),
                            {"name": UNKNOWN_PHYSICIAN})

APPOINTMENT_JOINS = (
    ATTENDING_DOCTOR,
    JoinStep("nurseDoc", OWNER_FIELDS["records.nurse"], NURSES, ("name",), {"name": UNKNOWN_NURSE}),
)

LAB_REQUEST_JOINS = (ATTENDING_DOCTOR,)

LAB_RESULT_JOINS = (
    JoinStep(
        "request",
        ("requestId",),
        LAB_REQUESTS,
        ("doctorId", "assignedDoctorId", "patientId", "patientName", "testType", "test", "status",
         "createdAt", "urgency"),
        then=(
            JoinStep("orderedBy", OWNER_FIELDS["records.doctor"], DOCTORS, ("name",),
                     {"name": UNKNOWN_PHYSICIAN}),
        ),
    ),
    JoinStep("patientDoc", ("patientId",), PATIENTS, ("name",), {"name": UNKNOWN_PATIENT}),
)

OVERRIDE_JOINS = (
    JoinStep("requester", OWNER_FIELDS["records.nurse"], NURSES, ("name",), {"name": UNKNOWN_NURSE}),
    JoinStep("patientDoc", ("patientId",), PATIENTS, ("name",), {"name": UNKNOWN_PATIENT}),
)

PROFILE_DEFAULTS = {
    "doctor": UNKNOWN_PHYSICIAN,
    "nurse": UNKNOWN_NURSE,
    "patient": UNKNOWN_PATIENT,
    "responsible": UNKNOWN_USER,
}


class _Fetched(NamedTuple):
    profile: Dict[str, Any]
    self_link: QueryResult
    patients: List[Dict[str, Any]]
    appointments: List[Tuple[DataNeed, Dict[str, Any]]]
    lab_requests: List[Dict[str, Any]]
    lab_results: List[Dict[str, Any]]
    overrides: List[Dict[str, Any]]


def _dedupe(records, key=lambda r: r.get("id")) -> List[Dict[str, Any]]:
    seen: Set[Any] = set()
    unique = []
    for record in records:
        marker = key(record)
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(record)
    return unique


class _RoleLinks:
    """
    Multi-role annotation for the people of one snapshot.

    Every staff member shown in the view is looked up once in the patient
    index; a hit tags the staff PersonRef with the patient record id and
    remembers the staff role for that patient's own listing.
    """

    def __init__(self, patient_index: Mapping[str, str]):
        self.patient_index = patient_index
        self.staff_roles: Dict[str, List[str]] = {}

    def link(self, person: Optional[PersonRef]) -> Optional[PersonRef]:
        if person is None:
            return None
        patient_id = detect_multi_role_link(person.id, self.patient_index)
        if patient_id is None:
            return person
        roles = self.staff_roles.setdefault(patient_id, [])
        if person.role not in roles:
            roles.append(person.role)
        return replace(person, linked_patient_id=patient_id, roles=(person.role, "patient"))

    def appointment(self, appointment: Appointment) -> Appointment:
        return replace(appointment, doctor=self.link(appointment.doctor), nurse=self.link(appointment.nurse))

    def lab_request(self, request: LabRequest) -> LabRequest:
        return replace(request, doctor=self.link(request.doctor))

    def lab_result(self, result: LabResult) -> LabResult:
        return replace(result, request=self.lab_request(result.request))

    def override(self, override: OverrideRequest) -> OverrideRequest:
        return replace(override, requested_by=self.link(override.requested_by))

    def patient(self, record: Mapping[str, Any]) -> PersonRef:
        return person_from_patient(record, self.staff_roles.get(str(record.get("id", "")), ()))


def _newest_first(items):
    dated = sorted((i for i in items if i.created_at is not None), key=lambda i: (i.created_at, i.id), reverse=True)
    undated = sorted((i for i in items if i.created_at is None), key=lambda i: i.id)
    return tuple(dated + undated)


# ── One build ────────────────────────────────────────────────────────

class SnapshotBuild:
    """
    A single snapshot build for one (role, user) pair.

    Moves strictly forward through BuildState; ``history`` records every
    state it passed through.
    """

    def __init__(self, role: str, user_id: str, window: DayWindow, planner: QueryPlanner, joiner: Joiner):
        self.role = role
        self.user_id = user_id
        self.window = window
        self.planner = planner
        self.joiner = joiner
        self.state = BuildState.IDLE
        self.history = [BuildState.IDLE]

        self._outcomes: Dict[str, List[Tuple[DataNeed, QueryResult]]] = {s: [] for s in SECTIONS}
        self._blocked: Set[str] = set()
        self._diagnostics: List[str] = []

    def _advance(self, state: BuildState) -> None:
        if state.value != self.state.value + 1:
            raise RuntimeError(f"Illegal build transition {self.state.name} -> {state.name}")
        self.state = state
        self.history.append(state)

    # ── Query construction ───────────────────────────────────────────

    def _spec(self, need: DataNeed, owner_id: str) -> QuerySpec:
        range_filter = None
        if need.window == "today":
            range_filter = RangeFilter(need.time_field, self.window.day_start, self.window.day_end)
        elif need.window == "recent":
            range_filter = RangeFilter(need.time_field, self.window.recent_since, None)
        return QuerySpec(
            collection=need.collection,
            filters=need.filters,
            range_filter=range_filter,
            sort=need.sort,
            owner_fields=OWNER_FIELDS[need.owner],
            owner_id=owner_id,
            use_date_time=need.use_date_time,
        )

    async def _run_needs(self, pairs: Sequence[Tuple[DataNeed, str]]) -> None:
        results = await asyncio.gather(*(self.planner.query(self._spec(need, owner)) for need, owner in pairs))
        for (need, _), result in zip(pairs, results):
            self._outcomes[need.section].append((need, result))
            for failure in result.failures:
                self._diagnostics.append(f"{need.section}: {failure}")

    async def _load_profile(self) -> Dict[str, Any]:
        collection = PROFILE_COLLECTIONS[self.role]
        name_field = "profile.name" if collection == USERS else "name"
        step = JoinStep("profile", ("id",), collection, (name_field,), {"name": PROFILE_DEFAULTS[self.role]})
        return await self.joiner.enrich({"id": self.user_id}, [step])

    async def _self_link_by(self, field: str) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        try:
            return await self.planner.store.find(PATIENTS, ((field, self.user_id),)), None
        except FieldNotFoundError:
            return [], None
        except Exception as exc:
            return [], f"{PATIENTS}[{field}]: {type(exc).__name__}: {exc}"

    async def _load_self_link(self) -> QueryResult:
        """Patient records sharing the staff user's id through any link field."""
        if self.role not in STAFF_ROLES:
            return QueryResult()
        answers = await asyncio.gather(*(self._self_link_by(field) for field in PATIENT_LINK_FIELDS))
        failures = tuple(failure for _, failure in answers if failure)
        records = _dedupe(record for found, _ in answers for record in found)
        return QueryResult(records=tuple(records), failed=len(failures) == len(answers), failures=failures)

    # ── Section bookkeeping ──────────────────────────────────────────

    def _records(self, section: str) -> List[Tuple[DataNeed, Dict[str, Any]]]:
        return [(need, record) for need, result in self._outcomes[section] for record in result.records]

    def _failed(self, section: str) -> bool:
        if section in self._blocked:
            return True
        results = [result for _, result in self._outcomes[section]]
        return bool(results) and all(result.failed for result in results)

    def _degraded(self, section: str) -> bool:
        return any(result.degraded or result.failed for _, result in self._outcomes[section])

    # ── Stages ───────────────────────────────────────────────────────

    async def _fetch(self):
        needs = ROLE_NEEDS[self.role]
        owned = [(need, self.user_id) for need in needs if not need.per_patient]
        _, profile, self_link = await asyncio.gather(
            self._run_needs(owned),
            self._load_profile(),
            self._load_self_link(),
        )
        for failure in self_link.failures:
            self._diagnostics.append(f"selfLink: {failure}")

        patient_records = _dedupe(record for _, record in self._records(SECTION_PATIENTS))
        per_patient = [need for need in needs if need.per_patient]
        if per_patient and self._failed(SECTION_PATIENTS):
            for need in per_patient:
                if need.section not in self._blocked:
                    self._blocked.add(need.section)
                    self._diagnostics.append(f"{need.section}: skipped, patient list unavailable")
        elif per_patient:
            await self._run_needs([(need, record["id"]) for need in per_patient for record in patient_records])

        appointment_pairs = _dedupe(
            self._records(SECTION_APPOINTMENTS), key=lambda pair: (pair[0].collection, pair[1].get("id"))
        )
        appointments, lab_requests, lab_results, overrides = await asyncio.gather(
            self.joiner.enrich_many([record for _, record in appointment_pairs], APPOINTMENT_JOINS),
            self.joiner.enrich_many(_dedupe(r for _, r in self._records(SECTION_LAB_REQUESTS)), LAB_REQUEST_JOINS),
            self.joiner.enrich_many(_dedupe(r for _, r in self._records(SECTION_LAB_RESULTS)), LAB_RESULT_JOINS),
            self.joiner.enrich_many(_dedupe(r for _, r in self._records(SECTION_OVERRIDES)), OVERRIDE_JOINS),
        )
        return _Fetched(
            profile=profile,
            self_link=self_link,
            patients=patient_records,
            appointments=[(need, record) for (need, _), record in zip(appointment_pairs, appointments)],
            lab_requests=lab_requests,
            lab_results=lab_results,
            overrides=overrides,
        )

    def _reconcile(self, fetched: "_Fetched") -> RoleSnapshot:
        links = _RoleLinks(build_patient_index(list(fetched.self_link.records) + fetched.patients))

        name = profile_name(fetched.profile, PROFILE_DEFAULTS[self.role])
        if self.role == "patient" and not fetched.profile["profile"]["_found"] and fetched.patients:
            name = person_from_patient(fetched.patients[0]).display_name
        for_user = PersonRef(id=self.user_id, display_name=name, role=self.role)
        if self.role in STAFF_ROLES:
            for_user = links.link(for_user)

        appointments = []
        for need, record in fetched.appointments:
            appointment = appointment_from_record(record, need.collection, need.time_field)
            if appointment is not None:
                appointments.append(links.appointment(appointment))
        appointments.sort(key=lambda a: (a.occurs_at, a.source, a.id))

        lab_requests = [links.lab_request(lab_request_from_record(record)) for record in fetched.lab_requests]
        lab_results = [links.lab_result(lab_result_from_record(record)) for record in fetched.lab_results]
        overrides = [links.override(override_from_record(record)) for record in fetched.overrides]
        # Patients last, once every staff member in the view has been linked.
        patients = tuple(links.patient(record) for record in fetched.patients)
        prescriptions = _dedupe(r for _, r in self._records(SECTION_PRESCRIPTIONS))

        failed = tuple(s for s in SECTIONS if self._failed(s))
        degraded = tuple(s for s in SECTIONS if not self._failed(s) and self._degraded(s))
        return RoleSnapshot(
            for_user=for_user,
            patients=patients,
            appointments_today=tuple(appointments),
            pending_lab_requests=_newest_first(lab_requests),
            recent_prescriptions_count=len(prescriptions),
            pending_overrides=_newest_first(overrides),
            lab_results=_newest_first(lab_results),
            partial=bool(failed),
            failed_sections=failed,
            degraded_sections=degraded,
            diagnostics=tuple(self._diagnostics),
            built_at=self.window.now,
        )

    async def run(self) -> RoleSnapshot:
        self._advance(BuildState.FETCHING)
        fetched = await self._fetch()
        self._advance(BuildState.RECONCILING)
        snapshot = self._reconcile(fetched)
        self._advance(BuildState.READY)

        if snapshot.partial:
            logger.warning("Snapshot for %s %s is partial; failed sections: %s",
                           self.role, self.user_id, ", ".join(snapshot.failed_sections))
        logger.info(
            "Built %s snapshot for %s: %d patients, %d appointments today, %d pending lab requests, "
            "%d recent prescriptions, %d pending overrides, %d lab results",
            self.role, self.user_id, len(snapshot.patients), len(snapshot.appointments_today),
            len(snapshot.pending_lab_requests), snapshot.recent_prescriptions_count,
            len(snapshot.pending_overrides), len(snapshot.lab_results),
        )
        return snapshot


# ── Public entry points ──────────────────────────────────────────────

class ViewAssembler:
    """Builds role snapshots against an injected document store."""

    def __init__(self, store: DocumentStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or (lambda: datetime.now().astimezone())
        self.planner = QueryPlanner(store)
        self.joiner = Joiner(store)

    def start_build(self, role: Optional[str], user_id: Optional[str]) -> SnapshotBuild:
        if not user_id or not str(user_id).strip():
            raise NoAuthenticatedUser("No authenticated user; sign in before loading a dashboard.")
        role = (role or "").strip().lower()
        if role not in SUPPORTED_ROLES:
            raise ValueError(f"Unsupported role '{role}'. Must be one of: {sorted(SUPPORTED_ROLES)}")
        return SnapshotBuild(role, str(user_id).strip(), day_window(self.clock()), self.planner, self.joiner)

    async def build_snapshot(self, role: Optional[str], user_id: Optional[str]) -> RoleSnapshot:
        return await self.start_build(role, user_id).run()

    def build_snapshot_sync(self, role: Optional[str], user_id: Optional[str]) -> RoleSnapshot:
        return asyncio.run(self.build_snapshot(role, user_id))


class SnapshotController:
    """
    Presentation-facing loader. Only the newest build is ever published;
    a build overtaken by a later load() or refresh() is dropped on completion.
    """

    def __init__(self, assembler: ViewAssembler, session):
        self.assembler = assembler
        self.session = session
        self.current: Optional[RoleSnapshot] = None
        self._generation = 0

    async def load(self) -> Optional[RoleSnapshot]:
        self._generation += 1
        generation = self._generation
        snapshot = await self.assembler.build_snapshot(
            self.session.current_user_role(), self.session.current_user_id()
        )
        if generation != self._generation:
            logger.info("Discarding superseded snapshot build #%d (latest is #%d)", generation, self._generation)
            return None
        self.current = snapshot
        return snapshot

    async def refresh(self) -> Optional[RoleSnapshot]:
        return await self.load()

    def load_sync(self) -> Optional[RoleSnapshot]:
        return asyncio.run(self.load())
