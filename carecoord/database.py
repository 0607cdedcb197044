"""
Database engine initialisation, collection schema, and the SQL-backed store.

Each collection is one table; the columns are the record fields. DateTime
columns are stored as naive UTC and read back as aware UTC instants.
"""

import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    inspect,
    select,
    text,
)
from sqlalchemy.exc import SQLAlchemyError

from carecoord.config import (
    DOCTORS,
    EXPORT_PATH,
    LAB_REQUESTS,
    LAB_RESULTS,
    LEGACY_APPOINTMENTS,
    NURSES,
    OVERRIDE_REQUESTS,
    PATIENTS,
    PRESCRIPTIONS,
    STORE_BACKEND,
    USERS,
    WEB_APPOINTMENTS,
    get_env,
)
from carecoord.store import (
    DocumentStore,
    FieldNotFoundError,
    IndexRequiredError,
    MemoryStore,
    StoreError,
    index_covers,
    required_index,
)

logger = logging.getLogger(__name__)

metadata = MetaData()


def _id():
    return Column("id", String(64), primary_key=True)


# ── Collections ──────────────────────────────────────────────────────

Table(
    PATIENTS, metadata, _id(),
    Column("name", String(200)),
    Column("email", String(200)),
    Column("dateOfBirth", String(10)),
    Column("assignedDoctorId", String(64)),
    Column("assignedNurseId", String(64)),
    Column("doctorId", String(64)),
    Column("nurseId", String(64)),
    Column("uid", String(64)),
    Column("userId", String(64)),
    Column("linkedStaffId", String(64)),
    Column("responsiblePartyId", String(64)),
)

Table(DOCTORS, metadata, _id(), Column("name", String(200)), Column("email", String(200)),
      Column("specialty", String(100)))

Table(NURSES, metadata, _id(), Column("name", String(200)), Column("email", String(200)))

Table(
    USERS, metadata, _id(),
    Column("role", String(20)),
    Column("apiKey", String(128), unique=True),
    Column("email", String(200)),
    Column("profile", JSON),
)

Table(
    WEB_APPOINTMENTS, metadata, _id(),
    Column("patientId", String(64)),
    Column("patientName", String(200)),
    Column("doctorId", String(64)),
    Column("doctorName", String(200)),
    Column("nurseId", String(64)),
    Column("date", String(10)),
    Column("time", String(8)),
    Column("room", String(50)),
    Column("reason", Text),
    Column("status", String(20)),
    Column("createdAt", DateTime),
)

Table(
    LEGACY_APPOINTMENTS, metadata, _id(),
    Column("patientId", String(64)),
    Column("patientName", String(200)),
    Column("doctorId", String(64)),
    Column("assignedDoctorId", String(64)),
    Column("nurseId", String(64)),
    Column("appointmentDate", DateTime),
    Column("scheduledTime", DateTime),
    Column("date", String(10)),
    Column("time", String(8)),
    Column("room", String(50)),
    Column("type", String(100)),
    Column("status", String(20)),
)

lab_requests = Table(
    LAB_REQUESTS, metadata, _id(),
    Column("patientId", String(64)),
    Column("patientName", String(200)),
    Column("doctorId", String(64)),
    Column("doctorName", String(200)),
    Column("testType", String(100)),
    Column("status", String(20)),
    Column("urgency", String(20)),
    Column("createdAt", DateTime),
)
Index("ix_lab_requests_doctor_status_created", lab_requests.c.doctorId, lab_requests.c.status,
      lab_requests.c.createdAt)
Index("ix_lab_requests_patient_status_created", lab_requests.c.patientId, lab_requests.c.status,
      lab_requests.c.createdAt)

lab_results = Table(
    LAB_RESULTS, metadata, _id(),
    Column("requestId", String(64)),
    Column("patientId", String(64)),
    Column("doctorId", String(64)),
    Column("results", JSON),
    Column("doctorNotes", Text),
    Column("createdAt", DateTime),
)
Index("ix_lab_results_doctor_created", lab_results.c.doctorId, lab_results.c.createdAt)
Index("ix_lab_results_patient_created", lab_results.c.patientId, lab_results.c.createdAt)

prescriptions = Table(
    PRESCRIPTIONS, metadata, _id(),
    Column("patientId", String(64)),
    Column("doctorId", String(64)),
    Column("medicationName", String(200)),
    Column("dosage", String(100)),
    Column("createdAt", DateTime),
)
Index("ix_prescriptions_doctor_created", prescriptions.c.doctorId, prescriptions.c.createdAt)

overrides = Table(
    OVERRIDE_REQUESTS, metadata, _id(),
    Column("patientId", String(64)),
    Column("patientName", String(200)),
    Column("nurseId", String(64)),
    Column("doctorId", String(64)),
    Column("requestingRole", String(20)),
    Column("reviewingRole", String(20)),
    Column("medicationName", String(200)),
    Column("currentDosage", String(100)),
    Column("requestedDosage", String(100)),
    Column("reason", Text),
    Column("status", String(20)),
    Column("createdAt", DateTime),
)
Index("ix_overrides_doctor_status_created", overrides.c.doctorId, overrides.c.status, overrides.c.createdAt)
Index("ix_overrides_nurse_status_created", overrides.c.nurseId, overrides.c.status, overrides.c.createdAt)


# ── Engine ───────────────────────────────────────────────────────────

def init_engine(db_uri: Optional[str] = None):
    """Create a SQLAlchemy engine and verify the connection."""
    db_uri = db_uri or get_env("DB_URI")
    engine = create_engine(db_uri, echo=False, future=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    print("[init] Connected to DB.")
    return engine


def init_schema(engine) -> None:
    """Create every collection table and composite index that is missing."""
    metadata.create_all(engine)


def describe_collections(engine) -> str:
    """One line per collection table: its columns and composite indexes."""
    insp = inspect(engine)
    lines = []
    for name in sorted(insp.get_table_names()):
        cols = ", ".join(f"{c['name']} {c['type']}" for c in insp.get_columns(name))
        lines.append(f"Collection {name}({cols})")
        for ix in insp.get_indexes(name):
            lines.append(f"  index {ix['name']}: {', '.join(ix['column_names'])}")
    return "\n".join(lines)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ── Store ────────────────────────────────────────────────────────────

class SqlStore(DocumentStore):
    """
    DocumentStore over the collection tables.

    Mirrors the managed store's query rules: a filter on an unknown column
    raises FieldNotFoundError, and equality combined with a range or sort
    needs a matching composite index in the database.
    """

    def __init__(self, engine):
        self.engine = engine
        insp = inspect(engine)
        self._present = set(insp.get_table_names())
        self._indexes: Dict[str, List[tuple]] = {
            name: [tuple(ix["column_names"]) for ix in insp.get_indexes(name)]
            for name in self._present
        }

    def _table(self, collection: str) -> Optional[Table]:
        if collection not in self._present:
            return None
        return metadata.tables.get(collection)

    @staticmethod
    def _column(table: Table, collection: str, name: str):
        if name not in table.c:
            raise FieldNotFoundError(f"Field '{name}' does not exist in collection '{collection}'.")
        return table.c[name]

    def _check_index(self, collection: str, filters, range_filter, sort) -> None:
        need = required_index(filters, range_filter, sort)
        if need is None:
            return
        equality, ordered = need
        if any(index_covers(index, equality, ordered) for index in self._indexes.get(collection, [])):
            return
        raise IndexRequiredError(
            f"FAILED_PRECONDITION: no index on '{collection}' over {list(equality) + list(ordered)}."
        )

    @staticmethod
    def _to_record(row) -> Dict[str, Any]:
        record = {}
        for key, value in row._mapping.items():
            if value is None:
                continue
            if isinstance(value, datetime) and value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            record[key] = value
        return record

    def _find_blocking(self, collection, filters, range_filter, sort) -> List[Dict[str, Any]]:
        table = self._table(collection)
        if table is None:
            return []

        stmt = select(table)
        for name, value in filters:
            stmt = stmt.where(self._column(table, collection, name) == value)
        self._check_index(collection, filters, range_filter, sort)

        if range_filter is not None:
            col = self._column(table, collection, range_filter.field)
            if not isinstance(col.type, DateTime):
                raise IndexRequiredError(f"Range on non-timestamp field '{range_filter.field}' of '{collection}'.")
            stmt = stmt.where(col.isnot(None))
            if range_filter.start is not None:
                stmt = stmt.where(col >= _naive_utc(range_filter.start))
            if range_filter.end is not None:
                stmt = stmt.where(col < _naive_utc(range_filter.end))

        if sort is not None:
            col = self._column(table, collection, sort.field)
            stmt = stmt.where(col.isnot(None))
            if sort.descending:
                stmt = stmt.order_by(col.desc(), table.c.id.desc())
            else:
                stmt = stmt.order_by(col.asc(), table.c.id.asc())
        else:
            stmt = stmt.order_by(table.c.id)

        try:
            with self.engine.connect() as conn:
                rows = conn.execute(stmt).fetchall()
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc
        return [self._to_record(row) for row in rows]

    def _get_blocking(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        table = self._table(collection)
        if table is None:
            return None
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(table).where(table.c.id == doc_id)).first()
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc
        return self._to_record(row) if row is not None else None

    async def find(self, collection, filters, range_filter=None, sort=None):
        logger.debug("SQL find on %s filters=%s", collection, filters)
        return await asyncio.to_thread(self._find_blocking, collection, tuple(filters), range_filter, sort)

    async def get_by_id(self, collection, doc_id):
        return await asyncio.to_thread(self._get_blocking, collection, doc_id)

    # ── Writes (seeding) ─────────────────────────────────────────────

    def insert(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        table = metadata.tables[collection]
        row = {"id": doc_id}
        for key, value in data.items():
            if key not in table.c:
                logger.debug("Dropping unknown field %s.%s", collection, key)
                continue
            row[key] = _naive_utc(value) if isinstance(value, datetime) else value
        with self.engine.begin() as conn:
            conn.execute(table.insert().values(**row))
        self._present.add(collection)


def open_store(backend: str = STORE_BACKEND) -> DocumentStore:
    """Store selected by STORE_BACKEND: the SQL database or a JSON export."""
    if backend == "export":
        print(f"[init] Loading export from {EXPORT_PATH}...")
        return MemoryStore.from_export(EXPORT_PATH)
    engine = init_engine()
    return SqlStore(engine)
