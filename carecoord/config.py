"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── Roles ────────────────────────────────────────────────────────────
STAFF_ROLES = {"doctor", "nurse"}
SUPPORTED_ROLES = {"doctor", "nurse", "patient", "responsible"}

# ── Collections ──────────────────────────────────────────────────────
PATIENTS = "patients"
DOCTORS = "doctors"
NURSES = "nurses"
USERS = "users"
WEB_APPOINTMENTS = "web_appointments"
LEGACY_APPOINTMENTS = "appointments"
LAB_REQUESTS = "mobile_lab_test_requests"
LAB_RESULTS = "mobile_lab_results"
PRESCRIPTIONS = "mobile_prescriptions"
OVERRIDE_REQUESTS = "mobile_override_requests"

# Profile collection holding the display name for each role.
PROFILE_COLLECTIONS = {
    "doctor": DOCTORS,
    "nurse": NURSES,
    "patient": PATIENTS,
    "responsible": USERS,
}

# ── Field aliases (ordered: first non-empty wins) ────────────────────
# Shared collections spell ownership "assigned*"; phone-app collections do not.
OWNER_FIELDS = {
    "patients.doctor": ("assignedDoctorId", "doctorId"),
    "patients.nurse": ("assignedNurseId", "nurseId"),
    "patients.self": ("uid", "userId"),
    "patients.responsible": ("responsiblePartyId",),
    "records.doctor": ("doctorId", "assignedDoctorId"),
    "records.nurse": ("nurseId", "assignedNurseId"),
    "records.patient": ("patientId",),
}

# Identifiers a patient record may share with a staff account.
PATIENT_LINK_FIELDS = ("uid", "userId", "linkedStaffId")

# ── Time ─────────────────────────────────────────────────────────────
RECENT_PRESCRIPTION_DAYS = 7
DATE_FIELD = "date"
TIME_FIELD = "time"

# ── Joins ────────────────────────────────────────────────────────────
MAX_JOIN_DEPTH = 2

UNKNOWN_PHYSICIAN = "unknown physician"
UNKNOWN_NURSE = "Unknown Nurse"
UNKNOWN_PATIENT = "Unknown Patient"
UNKNOWN_TEST = "Unknown Test"
NO_DESCRIPTION = "No description"
UNKNOWN_USER = "Unknown User"

LAB_REQUEST_STATUSES = ("pending", "completed", "cancelled")
OVERRIDE_STATUSES = ("pending", "approved", "rejected")

# ── Store ────────────────────────────────────────────────────────────
STORE_BACKEND = os.getenv("STORE_BACKEND", "sql")   # "sql" or "export"
EXPORT_PATH = os.getenv("EXPORT_PATH", "firestore_export.json")

# ── API server ───────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_EXPIRY_HOURS = 24

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
