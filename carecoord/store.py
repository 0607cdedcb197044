"""
Document store contract, store errors, and the in-memory store.

The aggregation layer only ever calls ``find`` and ``get_by_id``. Records
come back as plain dicts carrying their document id under ``"id"``.
"""

import asyncio
import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from carecoord.models import RangeFilter, SortOrder
from carecoord.timestamps import normalize

logger = logging.getLogger(__name__)

Filters = Sequence[Tuple[str, Any]]


# ── Errors ───────────────────────────────────────────────────────────

class StoreError(Exception):
    """Any failure reported by the store."""


class IndexRequiredError(StoreError):
    """The store refused the query because no composite index covers it."""


class FieldNotFoundError(StoreError):
    """A filter named a field the collection does not have."""


# ── Contract ─────────────────────────────────────────────────────────

class DocumentStore:
    """Narrow read contract consumed by the planner and joiner."""

    async def find(
        self,
        collection: str,
        filters: Filters,
        range_filter: Optional[RangeFilter] = None,
        sort: Optional[SortOrder] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def get_by_id(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


def required_index(filters: Filters, range_filter: Optional[RangeFilter], sort: Optional[SortOrder]):
    """
    Return the composite index a query needs, or None when none is needed.

    Equality-only queries and single-field ordering are always served;
    mixing equality with a range or sort needs (equality fields..., ordered field).
    """
    ordered: List[str] = []
    for name in (range_filter.field if range_filter else None, sort.field if sort else None):
        if name and name not in ordered:
            ordered.append(name)
    if not ordered:
        return None
    equality = tuple(name for name, _ in filters)
    if not equality and len(ordered) == 1:
        return None
    return equality, tuple(ordered)


def index_covers(index: Sequence[str], equality: Sequence[str], ordered: Sequence[str]) -> bool:
    n = len(equality)
    return (
        len(index) == n + len(ordered)
        and set(index[:n]) == set(equality)
        and tuple(index[n:]) == tuple(ordered)
    )


def sort_records(records: Iterable[Dict[str, Any]], key_of, descending: bool = False) -> List[Dict[str, Any]]:
    """Order by instant then document id; records without an instant are dropped."""
    keyed = []
    for record in records:
        instant = key_of(record)
        if instant is None:
            continue
        keyed.append(((instant, str(record.get("id", ""))), record))
    keyed.sort(key=lambda pair: pair[0], reverse=descending)
    return [record for _, record in keyed]


# ── In-memory store ──────────────────────────────────────────────────

class MemoryStore(DocumentStore):
    """
    Dict-backed store with Firestore-like query rules.

    Composite indexes must be declared with ``add_index``; an uncovered
    equality+range/sort query raises IndexRequiredError. Filtering on a
    field no document in the collection has raises FieldNotFoundError.
    """

    def __init__(self, indexes: Optional[Mapping[str, Iterable[Sequence[str]]]] = None):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._indexes: Dict[str, List[Tuple[str, ...]]] = {}
        self.query_log: List[Tuple[str, Tuple[Tuple[str, Any], ...], Optional[RangeFilter], Optional[SortOrder]]] = []
        for collection, fields_list in (indexes or {}).items():
            for fields in fields_list:
                self.add_index(collection, *fields)

    # ── Writes (seeding / tests) ─────────────────────────────────────

    def add(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        self._collections.setdefault(collection, {})[doc_id] = dict(data)

    def delete(self, collection: str, doc_id: str) -> None:
        self._collections.get(collection, {}).pop(doc_id, None)

    def add_index(self, collection: str, *fields: str) -> None:
        self._indexes.setdefault(collection, []).append(tuple(fields))

    def collections(self) -> List[str]:
        return sorted(self._collections)

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))

    @classmethod
    def from_export(cls, source: Union[str, Path, Mapping[str, Any]], indexes=None) -> "MemoryStore":
        """Load a Firestore JSON export ({"collections": {name: {"documents": ...}}})."""
        if isinstance(source, Mapping):
            payload = source
        else:
            with open(source, "r", encoding="utf-8") as fh:
                payload = json.load(fh)

        store = cls(indexes=indexes)
        collections = payload.get("collections", payload)
        for name, body in collections.items():
            if not isinstance(body, Mapping):
                continue
            if body.get("error"):
                logger.warning("Export of collection %s was incomplete: %s", name, body["error"])
            for doc_id, doc in (body.get("documents") or {}).items():
                data = doc.get("data", doc) if isinstance(doc, Mapping) else None
                if isinstance(data, Mapping):
                    store.add(name, doc_id, data)
        logger.info("Loaded export with %d collections", len(store.collections()))
        return store

    # ── Reads ────────────────────────────────────────────────────────

    def _record(self, doc_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
        record = copy.deepcopy(dict(data))
        record["id"] = doc_id
        return record

    def _check_fields(self, collection: str, filters: Filters) -> None:
        docs = self._collections.get(collection, {})
        if not docs:
            return
        known = set()
        for data in docs.values():
            known.update(data)
        for name, _ in filters:
            if name != "id" and name not in known:
                raise FieldNotFoundError(f"Field '{name}' does not exist in collection '{collection}'.")

    def _check_index(self, collection: str, filters: Filters, range_filter, sort) -> None:
        need = required_index(filters, range_filter, sort)
        if need is None:
            return
        equality, ordered = need
        for index in self._indexes.get(collection, []):
            if index_covers(index, equality, ordered):
                return
        raise IndexRequiredError(
            f"FAILED_PRECONDITION: The query requires an index on '{collection}' "
            f"over {list(equality) + list(ordered)}."
        )

    async def find(self, collection, filters, range_filter=None, sort=None):
        filters = tuple(filters)
        self.query_log.append((collection, filters, range_filter, sort))
        await asyncio.sleep(0)

        self._check_fields(collection, filters)
        self._check_index(collection, filters, range_filter, sort)

        matched = []
        for doc_id, data in self._collections.get(collection, {}).items():
            record = self._record(doc_id, data)
            if any(record.get(name) != value for name, value in filters):
                continue
            if range_filter is not None:
                instant = normalize(record.get(range_filter.field))
                if instant is None or not range_filter.contains(instant):
                    continue
            matched.append(record)

        if sort is not None:
            return sort_records(matched, lambda r: normalize(r.get(sort.field)), sort.descending)
        return sorted(matched, key=lambda r: r["id"])

    async def get_by_id(self, collection, doc_id):
        await asyncio.sleep(0)
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return self._record(doc_id, data)
