"""
Shared fixtures – a small clinic seeded into a MemoryStore, a fixed clock,
and store fakes.
"""

from datetime import datetime

import pytest

from carecoord.config import (
    DOCTORS,
    LAB_REQUESTS,
    LAB_RESULTS,
    LEGACY_APPOINTMENTS,
    NURSES,
    OVERRIDE_REQUESTS,
    PATIENTS,
    PRESCRIPTIONS,
    USERS,
    WEB_APPOINTMENTS,
)
from carecoord.store import DocumentStore, MemoryStore, StoreError

# 2024-02-20 09:00 on the local wall clock.
NOW = datetime(2024, 2, 20, 9, 0).astimezone()


def ts(*args):
    """Firestore-style {_seconds, _nanoseconds} map for a local wall-clock time."""
    return {"_seconds": int(datetime(*args).astimezone().timestamp()), "_nanoseconds": 0}


# ── Fakes ────────────────────────────────────────────────────────────

class FailingStore(DocumentStore):
    """Delegates to *inner* but fails every find on the given collections."""

    def __init__(self, inner, failing_collections, error=None):
        self.inner = inner
        self.failing = set(failing_collections)
        self.error = error or StoreError("UNAVAILABLE: backend unreachable")
        self.find_calls = []

    async def find(self, collection, filters, range_filter=None, sort=None):
        self.find_calls.append(collection)
        if collection in self.failing:
            raise self.error
        return await self.inner.find(collection, filters, range_filter, sort)

    async def get_by_id(self, collection, doc_id):
        return await self.inner.get_by_id(collection, doc_id)


class BrokenLookupStore(DocumentStore):
    """find works; every get_by_id raises."""

    def __init__(self, inner):
        self.inner = inner

    async def find(self, collection, filters, range_filter=None, sort=None):
        return await self.inner.find(collection, filters, range_filter, sort)

    async def get_by_id(self, collection, doc_id):
        raise StoreError("DEADLINE_EXCEEDED")


# ── Clinic data ──────────────────────────────────────────────────────

def seed_clinic(store: MemoryStore) -> MemoryStore:
    store.add(DOCTORS, "D1", {"name": "Dr. Ada Grey"})
    store.add(DOCTORS, "D2", {"name": "Dr. Ben Stone"})
    store.add(NURSES, "N1", {"name": "Nina Park"})
    store.add(NURSES, "N2", {"name": "Omar Reyes"})

    store.add(PATIENTS, "P1", {"name": "Pat One", "assignedDoctorId": "D1", "assignedNurseId": "N2", "uid": "U1"})
    # Nurse N1 is also a patient of D1.
    store.add(PATIENTS, "P2", {"name": "Nina Park", "assignedDoctorId": "D1", "assignedNurseId": "N1", "uid": "N1"})
    store.add(PATIENTS, "P3", {"name": "Pat Three", "assignedDoctorId": "D2", "assignedNurseId": "N1", "uid": "U3",
                               "responsiblePartyId": "R1"})

    store.add(USERS, "D1", {"role": "doctor", "apiKey": "key-doctor", "profile": {"name": "Dr. Ada Grey"}})
    store.add(USERS, "N1", {"role": "nurse", "apiKey": "key-nurse", "profile": {"name": "Nina Park"}})
    store.add(USERS, "U1", {"role": "patient", "apiKey": "key-patient", "profile": {"name": "Pat One"}})
    store.add(USERS, "R1", {"role": "responsible", "apiKey": "key-guardian", "profile": {"name": "Rita Guard"}})
    store.add(USERS, "X1", {"role": "pharmacy", "apiKey": "key-pharmacy"})

    store.add(WEB_APPOINTMENTS, "W1", {"patientId": "P1", "patientName": "Pat One", "doctorId": "D1", "nurseId": "N2",
                                       "date": "2024-02-20", "time": "14:30", "reason": "Follow-up", "room": "101"})
    store.add(WEB_APPOINTMENTS, "W2", {"patientId": "P3", "patientName": "Pat Three", "doctorId": "D2",
                                       "nurseId": "N1", "date": "2024-02-20", "time": "08:15"})
    store.add(WEB_APPOINTMENTS, "W3", {"patientId": "P1", "patientName": "Pat One", "doctorId": "D1",
                                       "date": "2024-02-21", "time": "09:00"})
    # The date+time pair is authoritative; appointmentDate is stale.
    store.add(LEGACY_APPOINTMENTS, "A1", {"patientId": "P2", "patientName": "Nina Park", "assignedDoctorId": "D1",
                                          "nurseId": "N1", "appointmentDate": ts(2024, 2, 18, 10, 0),
                                          "date": "2024-02-20", "time": "14:30", "type": "Vitals"})
    store.add(LEGACY_APPOINTMENTS, "A2", {"patientId": "P3", "patientName": "Pat Three", "assignedDoctorId": "D2",
                                          "nurseId": "N1", "appointmentDate": ts(2024, 2, 20, 11, 0),
                                          "scheduledTime": ts(2024, 2, 20, 11, 0)})

    store.add(LAB_REQUESTS, "LR1", {"patientId": "P1", "patientName": "Pat One", "doctorId": "D1",
                                    "testType": "CBC", "status": "pending", "createdAt": ts(2024, 2, 19, 10, 0)})
    store.add(LAB_REQUESTS, "LR2", {"patientId": "P2", "patientName": "Nina Park", "doctorId": "D1",
                                    "testType": "Lipid Panel", "status": "pending",
                                    "createdAt": ts(2024, 2, 20, 8, 0)})
    store.add(LAB_REQUESTS, "LR3", {"patientId": "P1", "patientName": "Pat One", "doctorId": "D1",
                                    "testType": "TSH", "status": "completed", "createdAt": ts(2024, 2, 10, 9, 0)})
    store.add(LAB_REQUESTS, "LR4", {"patientId": "P3", "patientName": "Pat Three", "doctorId": "D2",
                                    "testType": "HbA1c", "status": "pending", "createdAt": ts(2024, 2, 18, 9, 0)})

    store.add(LAB_RESULTS, "RES1", {"requestId": "LR3", "patientId": "P1", "doctorId": "D1",
                                    "results": {"value": 2.1, "unit": "mIU/L"}, "doctorNotes": "Normal",
                                    "createdAt": ts(2024, 2, 12, 9, 0)})
    # Its request was deleted.
    store.add(LAB_RESULTS, "RES2", {"requestId": "LR-gone", "patientId": "P1", "doctorId": "D1",
                                    "results": {"testType": "Ferritin", "value": 30},
                                    "createdAt": ts(2024, 2, 14, 9, 0)})

    store.add(PRESCRIPTIONS, "RX1", {"patientId": "P1", "doctorId": "D1", "createdAt": ts(2024, 2, 18, 9, 0)})
    store.add(PRESCRIPTIONS, "RX2", {"patientId": "P2", "doctorId": "D1", "createdAt": ts(2024, 1, 1, 9, 0)})
    store.add(PRESCRIPTIONS, "RX3", {"patientId": "P3", "doctorId": "D2", "createdAt": ts(2024, 2, 19, 9, 0)})

    store.add(OVERRIDE_REQUESTS, "OV1", {"patientId": "P1", "patientName": "Pat One", "nurseId": "N2",
                                         "doctorId": "D1", "status": "pending", "reason": "Dose too low",
                                         "medicationName": "Metformin", "currentDosage": "500 mg",
                                         "requestedDosage": "850 mg", "createdAt": ts(2024, 2, 19, 9, 0)})
    store.add(OVERRIDE_REQUESTS, "OV2", {"patientId": "P3", "nurseId": "N1", "doctorId": "D2",
                                         "status": "pending", "createdAt": ts(2024, 2, 18, 9, 0)})
    store.add(OVERRIDE_REQUESTS, "OV3", {"patientId": "P1", "nurseId": "N-gone", "doctorId": "D1",
                                         "status": "pending", "createdAt": ts(2024, 2, 17, 9, 0)})
    store.add(OVERRIDE_REQUESTS, "OV4", {"patientId": "P1", "nurseId": "N2", "doctorId": "D1",
                                         "status": "approved", "createdAt": ts(2024, 2, 16, 9, 0)})
    return store


@pytest.fixture
def clinic():
    return seed_clinic(MemoryStore())


@pytest.fixture
def clock():
    return lambda: NOW
