"""
Unit tests for owner-field resolution and multi-role linkage.
"""

from carecoord.identity import build_patient_index, detect_multi_role_link, resolve_owner_id


def test_first_present_candidate_wins():
    record = {"doctorId": "D1", "assignedDoctorId": "D9"}
    assert resolve_owner_id(record, ("doctorId", "assignedDoctorId")) == "D1"
    assert resolve_owner_id(record, ("assignedDoctorId", "doctorId")) == "D9"


def test_empty_values_are_skipped():
    record = {"doctorId": "  ", "assignedDoctorId": "D2"}
    assert resolve_owner_id(record, ("doctorId", "assignedDoctorId")) == "D2"
    assert resolve_owner_id({"doctorId": None}, ("doctorId",)) is None
    assert resolve_owner_id({}, ("doctorId", "assignedDoctorId")) is None


def test_ids_are_strings():
    assert resolve_owner_id({"doctorId": 7}, ("doctorId",)) == "7"
    assert resolve_owner_id({"doctorId": " D1 "}, ("doctorId",)) == "D1"
    assert resolve_owner_id({"doctorId": True}, ("doctorId",)) is None
    assert resolve_owner_id({"doctorId": {"id": "D1"}}, ("doctorId",)) is None


def test_index_maps_ids_and_aliases():
    index = build_patient_index([
        {"id": "P1", "uid": "U1"},
        {"id": "P2", "userId": "N1", "linkedStaffId": "N1"},
        {"id": "P3"},
    ])
    assert index == {"P1": "P1", "U1": "P1", "P2": "P2", "N1": "P2", "P3": "P3"}


def test_index_keeps_first_claim_on_an_alias():
    index = build_patient_index([{"id": "P1", "uid": "X"}, {"id": "P2", "uid": "X"}])
    assert index["X"] == "P1"


def test_index_skips_records_without_id():
    assert build_patient_index([{"uid": "U1"}, {"id": "", "uid": "U2"}]) == {}


def test_detect_link_is_exact():
    index = build_patient_index([{"id": "P2", "uid": "N1", "name": "Nina Park"}])
    assert detect_multi_role_link("N1", index) == "P2"
    assert detect_multi_role_link(" N1 ", index) == "P2"
    assert detect_multi_role_link("n1", index) is None
    assert detect_multi_role_link("Nina Park", index) is None
    assert detect_multi_role_link(None, index) is None
