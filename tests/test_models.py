"""
Unit tests for the domain dataclasses and snapshot serialisation.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from carecoord.models import (
    JoinStep,
    LabRequest,
    LabResult,
    PersonRef,
    RangeFilter,
    RoleSnapshot,
    snapshot_to_dict,
)

T0 = datetime(2024, 2, 20, 9, 0, tzinfo=timezone.utc)


def person(pid="P1", role="patient"):
    return PersonRef(id=pid, display_name="Pat One", role=role)


def lab_result(note=None):
    request = LabRequest(id="LR1", patient=person(), doctor=person("D1", "doctor"), test_type="CBC",
                         status="completed", created_at=T0)
    return LabResult(id="RES1", request=request, result_fields=(("value", 1.0),), reviewer_note=note, created_at=T0)


def test_person_roles_default_to_role():
    assert person().roles == ("patient",)
    assert PersonRef("N1", "Nina", "nurse", roles=("nurse", "patient")).roles == ("nurse", "patient")


def test_range_filter_bounds():
    r = RangeFilter("createdAt", T0, T0 + timedelta(days=1))
    assert r.contains(T0)
    assert not r.contains(T0 + timedelta(days=1))
    assert not r.contains(T0 - timedelta(seconds=1))
    assert RangeFilter("createdAt", start=T0).contains(T0 + timedelta(days=365))


def test_join_step_depth():
    leaf = JoinStep("doctor", ("doctorId",), "doctors", ("name",))
    assert leaf.depth() == 1
    assert JoinStep("request", ("requestId",), "requests", ("doctorId",), then=(leaf,)).depth() == 2


def test_lab_result_status_follows_reviewer_note():
    assert lab_result().status == "pending"
    assert lab_result("Looks fine").status == "completed"


def test_built_at_is_ignored_by_equality():
    snap = RoleSnapshot(for_user=person("D1", "doctor"), built_at=T0)
    assert snap == replace(snap, built_at=T0 + timedelta(hours=1))
    assert snap != replace(snap, partial=True)


def test_snapshot_to_dict_is_json_ready():
    snap = RoleSnapshot(for_user=person("D1", "doctor"), lab_results=(lab_result("ok"),), built_at=T0)
    data = snapshot_to_dict(snap)

    assert data["built_at"] == "2024-02-20T09:00:00+00:00"
    assert data["lab_results"][0]["status"] == "completed"
    assert data["lab_results"][0]["request"]["created_at"] == "2024-02-20T09:00:00+00:00"
    assert data["lab_results"][0]["result_fields"] == [["value", 1.0]]
    assert data["for_user"]["roles"] == ["doctor"]
