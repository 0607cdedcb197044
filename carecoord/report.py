"""
Tabular views of a snapshot – one DataFrame per section plus a text summary.
"""

from typing import Dict, List

import pandas as pd

from carecoord.models import RoleSnapshot

MAX_CATEGORY_UNIQUE = 20


# ── Frames ───────────────────────────────────────────────────────────

def snapshot_frames(snapshot: RoleSnapshot) -> Dict[str, pd.DataFrame]:
    """Flatten each list section of *snapshot* into a DataFrame."""
    patients = pd.DataFrame(
        [{"id": p.id, "name": p.display_name, "roles": "/".join(p.roles)} for p in snapshot.patients],
        columns=["id", "name", "roles"],
    )
    appointments = pd.DataFrame(
        [
            {
                "time": a.occurs_at.strftime("%H:%M"),
                "patient": a.patient.display_name,
                "doctor": a.doctor.display_name,
                "nurse": a.nurse.display_name if a.nurse else "",
                "room": a.room,
                "reason": a.reason,
                "status": a.status,
                "source": a.source,
            }
            for a in snapshot.appointments_today
        ],
        columns=["time", "patient", "doctor", "nurse", "room", "reason", "status", "source"],
    )
    lab_requests = pd.DataFrame(
        [
            {
                "created": r.created_at.isoformat() if r.created_at else "",
                "patient": r.patient.display_name,
                "test": r.test_type,
                "urgency": r.urgency,
                "status": r.status,
            }
            for r in snapshot.pending_lab_requests
        ],
        columns=["created", "patient", "test", "urgency", "status"],
    )
    overrides = pd.DataFrame(
        [
            {
                "created": o.created_at.isoformat() if o.created_at else "",
                "patient": o.patient.display_name,
                "requested_by": o.requested_by.display_name,
                "medication": o.medication_name or "",
                "requested_dosage": o.requested_dosage or "",
                "message": o.message,
                "status": o.status,
            }
            for o in snapshot.pending_overrides
        ],
        columns=["created", "patient", "requested_by", "medication", "requested_dosage", "message", "status"],
    )
    lab_results = pd.DataFrame(
        [
            {
                "created": r.created_at.isoformat() if r.created_at else "",
                "patient": r.request.patient.display_name,
                "test": r.request.test_type,
                "ordered_by": r.request.doctor.display_name,
                "fields": len(r.result_fields),
                "status": r.status,
            }
            for r in snapshot.lab_results
        ],
        columns=["created", "patient", "test", "ordered_by", "fields", "status"],
    )
    return {
        "patients": patients,
        "appointmentsToday": appointments,
        "pendingLabRequests": lab_requests,
        "pendingOverrides": overrides,
        "labResults": lab_results,
    }


# ── Summary ──────────────────────────────────────────────────────────

def _value_counts(df: pd.DataFrame, col: str) -> str:
    vals = df[col].dropna()
    vals = vals[vals != ""]
    if vals.empty or vals.nunique() > MAX_CATEGORY_UNIQUE:
        return ""
    vc = vals.value_counts().reset_index()
    vc.columns = [col, "count"]
    return vc.to_string(index=False)


def summarize_snapshot(snapshot: RoleSnapshot) -> str:
    """Section counts, value counts for status/test columns, and any failures."""
    frames = snapshot_frames(snapshot)
    lines: List[str] = [
        f"{snapshot.for_user.display_name} ({'/'.join(snapshot.for_user.roles)})",
        f"  patients:               {len(snapshot.patients)}",
        f"  appointments today:     {len(snapshot.appointments_today)}",
        f"  pending lab requests:   {len(snapshot.pending_lab_requests)}",
        f"  recent prescriptions:   {snapshot.recent_prescriptions_count}",
        f"  pending overrides:      {len(snapshot.pending_overrides)}",
        f"  lab results:            {len(snapshot.lab_results)}",
    ]

    for name in ("appointmentsToday", "pendingLabRequests", "labResults"):
        df = frames[name]
        for col in ("status", "test"):
            if col not in df.columns or df.empty:
                continue
            counts = _value_counts(df, col)
            if counts:
                lines.append(f"\n{name} by {col}:\n{counts}")

    if snapshot.partial:
        lines.append(f"\n[WARN] Incomplete sections: {', '.join(snapshot.failed_sections)}")
    if snapshot.degraded_sections:
        lines.append(f"[info] Served via fallback: {', '.join(snapshot.degraded_sections)}")
    return "\n".join(lines)
