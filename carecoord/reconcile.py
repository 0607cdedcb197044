"""
Raw record → dataclass conversion.

Everything read from a collection passes through here exactly once, so the
rest of the application only sees typed, defaulted values.
"""

from typing import Any, Dict, Mapping, Optional, Sequence

from carecoord.config import (
    LAB_REQUEST_STATUSES,
    OVERRIDE_STATUSES,
    OWNER_FIELDS,
    NO_DESCRIPTION,
    UNKNOWN_NURSE,
    UNKNOWN_PATIENT,
    UNKNOWN_PHYSICIAN,
    UNKNOWN_TEST,
)
from carecoord.identity import resolve_owner_id
from carecoord.joiner import pick
from carecoord.models import Appointment, LabRequest, LabResult, OverrideRequest, PersonRef
from carecoord.timestamps import normalize, normalize_record


def _text(record: Mapping[str, Any], names: Sequence[str], default: str = "") -> str:
    for name in names:
        value = record.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return default


def _status(value: Any, allowed: Sequence[str], default: str) -> str:
    if isinstance(value, str) and value.strip().lower() in allowed:
        return value.strip().lower()
    return default


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _staff(record: Mapping[str, Any], owner: str, name_field: str, joined: str, role: str, default: str) -> PersonRef:
    """Staff member referenced by *record*: inline name first, then the joined profile."""
    person_id = resolve_owner_id(record, OWNER_FIELDS[owner])
    name = _text(record, (name_field,))
    if not name:
        name = (record.get(joined) or {}).get("name") or ""
    return PersonRef(id=person_id or "", display_name=name or default, role=role)


# ── People ───────────────────────────────────────────────────────────

def person_from_patient(record: Mapping[str, Any], also_roles: Sequence[str] = ()) -> PersonRef:
    """A listed patient; *also_roles* tags a patient who is also a staff member in the view."""
    return PersonRef(
        id=str(record.get("id", "")),
        display_name=_text(record, ("name", "displayName"), UNKNOWN_PATIENT),
        role="patient",
        roles=("patient",) + tuple(also_roles),
    )


def profile_name(enriched: Mapping[str, Any], default: str) -> str:
    profile = enriched.get("profile") or {}
    name = profile.get("name")
    return name.strip() if isinstance(name, str) and name.strip() else default


# ── Appointments ─────────────────────────────────────────────────────

def appointment_from_record(record: Mapping[str, Any], source: str, time_field: str) -> Optional[Appointment]:
    """
    Build an Appointment from a record enriched with ``doctorDoc`` and
    ``nurseDoc``. None when the record carries no resolvable instant.
    """
    occurs_at = normalize_record(record, time_field)
    if occurs_at is None:
        return None

    nurse = None
    if resolve_owner_id(record, OWNER_FIELDS["records.nurse"]):
        nurse = _staff(record, "records.nurse", "nurseName", "nurseDoc", "nurse", UNKNOWN_NURSE)

    return Appointment(
        id=str(record.get("id", "")),
        patient=PersonRef(
            id=resolve_owner_id(record, OWNER_FIELDS["records.patient"]) or "",
            display_name=_text(record, ("patientName", "patient"), UNKNOWN_PATIENT),
            role="patient",
        ),
        doctor=_staff(record, "records.doctor", "doctorName", "doctorDoc", "doctor", UNKNOWN_PHYSICIAN),
        occurs_at=occurs_at,
        source=source,
        nurse=nurse,
        room=_text(record, ("room",)),
        reason=_text(record, ("reason", "type", "appointmentType")),
        status=_text(record, ("status",), "scheduled").lower(),
    )


# ── Lab work ─────────────────────────────────────────────────────────

def lab_request_from_record(record: Mapping[str, Any]) -> LabRequest:
    """Build a LabRequest from a record enriched with ``doctorDoc``."""
    return LabRequest(
        id=str(record.get("id", "")),
        patient=PersonRef(
            id=resolve_owner_id(record, OWNER_FIELDS["records.patient"]) or "",
            display_name=_text(record, ("patientName",), UNKNOWN_PATIENT),
            role="patient",
        ),
        doctor=_staff(record, "records.doctor", "doctorName", "doctorDoc", "doctor", UNKNOWN_PHYSICIAN),
        test_type=_text(record, ("testType", "test"), UNKNOWN_TEST),
        status=_status(record.get("status"), LAB_REQUEST_STATUSES, "pending"),
        created_at=normalize(record.get("createdAt")),
        urgency=_text(record, ("urgency",), "normal").lower(),
    )


def lab_result_from_record(enriched: Mapping[str, Any]) -> LabResult:
    """
    Build a LabResult from a record enriched with the ``request``,
    ``orderedBy`` and ``patientDoc`` joins.

    A result whose request was deleted still shows up, attached to a stub
    request carrying default labels.
    """
    request: Dict[str, Any] = enriched.get("request") or {}
    ordered_by: Dict[str, Any] = enriched.get("orderedBy") or {}
    patient_doc: Dict[str, Any] = enriched.get("patientDoc") or {}
    results = enriched.get("results")
    results = results if isinstance(results, Mapping) else {}

    patient_id = resolve_owner_id(enriched, OWNER_FIELDS["records.patient"]) or resolve_owner_id(
        request, OWNER_FIELDS["records.patient"]
    )
    if patient_doc.get("_found"):
        patient_name = patient_doc.get("name") or UNKNOWN_PATIENT
    else:
        patient_name = _text(request, ("patientName",)) or _text(enriched, ("patientName",), UNKNOWN_PATIENT)

    found = bool(request.get("_found"))
    linked_request = LabRequest(
        id=request.get("id") or "",
        patient=PersonRef(id=patient_id or "", display_name=patient_name, role="patient"),
        doctor=PersonRef(
            id=ordered_by.get("id") or "",
            display_name=ordered_by.get("name") or UNKNOWN_PHYSICIAN,
            role="doctor",
        ),
        test_type=_text(request, ("testType", "test")) or _text(results, ("testType",), UNKNOWN_TEST),
        status=_status(request.get("status"), LAB_REQUEST_STATUSES, "pending") if found else "completed",
        created_at=normalize(request.get("createdAt")) if found else None,
        urgency=_text(request, ("urgency",), "normal").lower(),
    )

    return LabResult(
        id=str(enriched.get("id", "")),
        request=linked_request,
        result_fields=tuple((str(name), value) for name, value in results.items()),
        reviewer_note=_optional_text(enriched.get("doctorNotes")),
        created_at=normalize(enriched.get("createdAt")),
    )


# ── Override requests ────────────────────────────────────────────────

def override_from_record(enriched: Mapping[str, Any]) -> OverrideRequest:
    """Build an OverrideRequest from a record enriched with ``requester`` and ``patientDoc``."""
    requester: Dict[str, Any] = enriched.get("requester") or {}
    patient_doc: Dict[str, Any] = enriched.get("patientDoc") or {}

    if patient_doc.get("_found"):
        patient_name = patient_doc.get("name") or UNKNOWN_PATIENT
    else:
        patient_name = _text(enriched, ("patientName",), UNKNOWN_PATIENT)

    return OverrideRequest(
        id=str(enriched.get("id", "")),
        patient=PersonRef(
            id=resolve_owner_id(enriched, OWNER_FIELDS["records.patient"]) or "",
            display_name=patient_name,
            role="patient",
        ),
        requesting_role=_text(enriched, ("requestingRole",), "nurse").lower(),
        reviewing_role=_text(enriched, ("reviewingRole",), "doctor").lower(),
        requested_by=PersonRef(
            id=requester.get("id") or "",
            display_name=requester.get("name") or UNKNOWN_NURSE,
            role="nurse",
        ),
        message=_text(enriched, ("reason", "message", "description"), NO_DESCRIPTION),
        status=_status(enriched.get("status"), OVERRIDE_STATUSES, "pending"),
        created_at=normalize(enriched.get("createdAt")),
        medication_name=_optional_text(pick(enriched, "medicationName")),
        current_dosage=_optional_text(pick(enriched, "currentDosage")),
        requested_dosage=_optional_text(pick(enriched, "requestedDosage")),
    )
