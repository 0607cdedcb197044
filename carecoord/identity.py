"""
Identity resolution – owner-field aliases and staff/patient linkage.
"""

from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from carecoord.config import PATIENT_LINK_FIELDS


def _clean_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def resolve_owner_id(record: Mapping[str, Any], candidate_fields: Sequence[str]) -> Optional[str]:
    """Return the first present, non-empty value among *candidate_fields*."""
    for name in candidate_fields:
        value = _clean_id(record.get(name))
        if value is not None:
            return value
    return None


def build_patient_index(
    patient_records: Iterable[Mapping[str, Any]],
    alias_fields: Sequence[str] = PATIENT_LINK_FIELDS,
) -> Dict[str, str]:
    """
    Map every explicit identifier of a patient record to that record's id.

    A record is reachable by its own id and by any shared account id it
    carries (uid, userId, linkedStaffId). Names are never indexed.
    """
    index: Dict[str, str] = {}
    for record in patient_records:
        patient_id = _clean_id(record.get("id"))
        if patient_id is None:
            continue
        index.setdefault(patient_id, patient_id)
        for name in alias_fields:
            alias = _clean_id(record.get(name))
            if alias is not None:
                index.setdefault(alias, patient_id)
    return index


def detect_multi_role_link(person_id: Optional[str], patient_index: Mapping[str, str]) -> Optional[str]:
    """Return the patient record id that shares *person_id*, if any."""
    person_id = _clean_id(person_id)
    if person_id is None:
        return None
    return patient_index.get(person_id)
