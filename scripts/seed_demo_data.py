#!/usr/bin/env python3
"""
Fill the collection tables with Faker-generated demo data.

Creates the schema if needed, then seeds doctors, nurses, patients (one
nurse is also a patient), appointments in both schemas, lab requests and
results, prescriptions and override requests, plus one access key per
role. Usage: DB_URI=sqlite:///demo.db python scripts/seed_demo_data.py
"""

import random
from datetime import datetime, timedelta, timezone

from faker import Faker

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
from carecoord.database import describe_collections, init_engine, init_schema, metadata
from carecoord.session import generate_api_key

# --------------------------------------------------------------------
# CONFIG
# --------------------------------------------------------------------
NUM_DOCTORS = 3
NUM_NURSES = 4
NUM_PATIENTS = 25

PER_PATIENT = {
    WEB_APPOINTMENTS: (0, 2),            # min, max per patient
    LEGACY_APPOINTMENTS: (0, 1),
    LAB_REQUESTS: (0, 2),
    PRESCRIPTIONS: (0, 3),
    OVERRIDE_REQUESTS: (0, 1),
}

TESTS = ["CBC", "Lipid Panel", "HbA1c", "TSH", "Vitamin D", "Metabolic Panel"]
MEDICATIONS = ["Metformin", "Lisinopril", "Atorvastatin", "Levothyroxine", "Amlodipine"]

# --------------------------------------------------------------------
# SETUP
# --------------------------------------------------------------------
fake = Faker()
random.seed(42)
Faker.seed(42)


def table(name):
    return metadata.tables[name]


# --------------------------------------------------------------------
# HELPERS
# --------------------------------------------------------------------
def utc_naive(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def random_datetime_within(days_back=30):
    now = datetime.now(timezone.utc)
    delta = timedelta(days=random.randint(0, days_back), seconds=random.randint(0, 86400))
    return utc_naive(now - delta)


def today_at(hour, minute):
    return datetime.now().astimezone().replace(hour=hour, minute=minute, second=0, microsecond=0)


def per_patient_count(name):
    lo, hi = PER_PATIENT.get(name, (0, 0))
    return random.randint(lo, hi) if hi > 0 else 0


# --------------------------------------------------------------------
# SEED FUNCTIONS
# --------------------------------------------------------------------
def seed_staff(conn):
    doctors = [
        {"id": f"D{i:03d}", "name": f"Dr. {fake.name()}", "email": fake.email(),
         "specialty": random.choice(["Family Medicine", "Internal Medicine", "Cardiology"])}
        for i in range(1, NUM_DOCTORS + 1)
    ]
    nurses = [
        {"id": f"N{i:03d}", "name": fake.name(), "email": fake.email()}
        for i in range(1, NUM_NURSES + 1)
    ]
    conn.execute(table(DOCTORS).insert(), doctors)
    conn.execute(table(NURSES).insert(), nurses)
    return [d["id"] for d in doctors], {n["id"]: n["name"] for n in nurses}


def seed_patients(conn, doctor_ids, nurses):
    rows = []
    for i in range(1, NUM_PATIENTS + 1):
        rows.append(
            {
                "id": f"P{i:03d}",
                "name": fake.name(),
                "email": fake.email(),
                "dateOfBirth": fake.date_of_birth(minimum_age=18, maximum_age=95).isoformat(),
                "assignedDoctorId": random.choice(doctor_ids),
                "assignedNurseId": random.choice(list(nurses)),
                "doctorId": None,
                "nurseId": None,
                "uid": f"U{i:03d}",
                "userId": None,
                "linkedStaffId": None,
                "responsiblePartyId": "R001" if i <= 2 else None,
            }
        )

    # The first nurse is also a patient under the first doctor.
    nurse_id, nurse_name = next(iter(nurses.items()))
    rows.append(
        {
            "id": f"P{NUM_PATIENTS + 1:03d}",
            "name": nurse_name,
            "email": fake.email(),
            "dateOfBirth": fake.date_of_birth(minimum_age=25, maximum_age=60).isoformat(),
            "assignedDoctorId": doctor_ids[0],
            "assignedNurseId": nurse_id,
            "doctorId": None,
            "nurseId": None,
            "uid": nurse_id,
            "userId": None,
            "linkedStaffId": nurse_id,
            "responsiblePartyId": None,
        }
    )
    conn.execute(table(PATIENTS).insert(), rows)
    return rows


def seed_appointments(conn, patients):
    web, legacy = [], []
    for patient in patients:
        for _ in range(per_patient_count(WEB_APPOINTMENTS)):
            when = today_at(random.randint(8, 16), random.choice([0, 15, 30, 45]))
            when += timedelta(days=random.choice([0, 0, 1, -1]))
            web.append(
                {
                    "id": fake.uuid4(),
                    "patientId": patient["id"],
                    "patientName": patient["name"],
                    "doctorId": patient["assignedDoctorId"],
                    "doctorName": None,
                    "nurseId": patient["assignedNurseId"],
                    "date": when.strftime("%Y-%m-%d"),
                    "time": when.strftime("%H:%M"),
                    "room": f"Room {random.randint(100, 120)}",
                    "reason": random.choice(["Follow-up", "Consultation", "Check-up"]),
                    "status": "scheduled",
                    "createdAt": random_datetime_within(14),
                }
            )
        for _ in range(per_patient_count(LEGACY_APPOINTMENTS)):
            when = utc_naive(today_at(random.randint(8, 16), random.choice([0, 30])))
            legacy.append(
                {
                    "id": fake.uuid4(),
                    "patientId": patient["id"],
                    "patientName": patient["name"],
                    "doctorId": None,
                    "assignedDoctorId": patient["assignedDoctorId"],
                    "nurseId": patient["assignedNurseId"],
                    "appointmentDate": when,
                    "scheduledTime": when,
                    "date": None,
                    "time": None,
                    "room": f"Room {random.randint(100, 120)}",
                    "type": random.choice(["Vitals", "Vaccination", "Wound care"]),
                    "status": random.choice(["scheduled", "completed"]),
                }
            )
    if web:
        conn.execute(table(WEB_APPOINTMENTS).insert(), web)
    if legacy:
        conn.execute(table(LEGACY_APPOINTMENTS).insert(), legacy)


def seed_lab_work(conn, patients):
    requests, results = [], []
    for patient in patients:
        for _ in range(per_patient_count(LAB_REQUESTS)):
            created = random_datetime_within(21)
            status = random.choice(["pending", "pending", "completed"])
            request_id = fake.uuid4()
            requests.append(
                {
                    "id": request_id,
                    "patientId": patient["id"],
                    "patientName": patient["name"],
                    "doctorId": patient["assignedDoctorId"],
                    "doctorName": None,
                    "testType": random.choice(TESTS),
                    "status": status,
                    "urgency": random.choice(["normal", "normal", "urgent"]),
                    "createdAt": created,
                }
            )
            if status == "completed":
                results.append(
                    {
                        "id": fake.uuid4(),
                        "requestId": request_id,
                        "patientId": patient["id"],
                        "doctorId": patient["assignedDoctorId"],
                        "results": {"value": round(random.uniform(1, 200), 1), "unit": "mg/dL"},
                        "doctorNotes": fake.sentence() if random.random() < 0.5 else None,
                        "createdAt": created + timedelta(days=2),
                    }
                )
    if requests:
        conn.execute(table(LAB_REQUESTS).insert(), requests)
    if results:
        conn.execute(table(LAB_RESULTS).insert(), results)


def seed_medications(conn, patients):
    prescriptions, overrides = [], []
    for patient in patients:
        for _ in range(per_patient_count(PRESCRIPTIONS)):
            prescriptions.append(
                {
                    "id": fake.uuid4(),
                    "patientId": patient["id"],
                    "doctorId": patient["assignedDoctorId"],
                    "medicationName": random.choice(MEDICATIONS),
                    "dosage": f"{random.choice([5, 10, 20, 40])} mg",
                    "createdAt": random_datetime_within(14),
                }
            )
        for _ in range(per_patient_count(OVERRIDE_REQUESTS)):
            overrides.append(
                {
                    "id": fake.uuid4(),
                    "patientId": patient["id"],
                    "patientName": patient["name"],
                    "nurseId": patient["assignedNurseId"],
                    "doctorId": patient["assignedDoctorId"],
                    "requestingRole": "nurse",
                    "reviewingRole": "doctor",
                    "medicationName": random.choice(MEDICATIONS),
                    "currentDosage": "10 mg",
                    "requestedDosage": "20 mg",
                    "reason": fake.sentence(),
                    "status": random.choice(["pending", "pending", "approved"]),
                    "createdAt": random_datetime_within(7),
                }
            )
    if prescriptions:
        conn.execute(table(PRESCRIPTIONS).insert(), prescriptions)
    if overrides:
        conn.execute(table(OVERRIDE_REQUESTS).insert(), overrides)


def seed_users(conn, doctor_ids, nurses, patients):
    accounts = [(doctor_ids[0], "doctor", "Doctor"), (next(iter(nurses)), "nurse", "Nurse"),
                (patients[0]["uid"], "patient", patients[0]["name"]), ("R001", "responsible", fake.name())]
    rows = []
    for user_id, role, name in accounts:
        rows.append({"id": user_id, "role": role, "apiKey": generate_api_key(),
                     "email": fake.email(), "profile": {"name": name}})
    conn.execute(table(USERS).insert(), rows)
    return rows


# --------------------------------------------------------------------
# MAIN
# --------------------------------------------------------------------
def main():
    engine = init_engine()
    init_schema(engine)

    with engine.begin() as conn:
        print("Seeding staff...")
        doctor_ids, nurses = seed_staff(conn)

        print("Seeding patients...")
        patients = seed_patients(conn, doctor_ids, nurses)

        print("Seeding appointments, lab work and medications...")
        seed_appointments(conn, patients)
        seed_lab_work(conn, patients)
        seed_medications(conn, patients)

        print("Seeding users...")
        users = seed_users(conn, doctor_ids, nurses, patients)

    print("\n" + describe_collections(engine))
    print("\nAccess keys:")
    for user in users:
        print(f"  {user['role']:<12} {user['id']:<6} {user['apiKey']}")
    print("Done!")


if __name__ == "__main__":
    main()
