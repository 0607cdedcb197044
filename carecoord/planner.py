"""
Collection query planning – indexed query first, equality-only fallback with
in-memory filtering and ordering when the store lacks a composite index.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from carecoord.models import QueryResult, QuerySpec
from carecoord.store import DocumentStore, FieldNotFoundError, IndexRequiredError, sort_records
from carecoord.timestamps import normalize, normalize_record

logger = logging.getLogger(__name__)


class QueryPlanner:
    """Runs one QuerySpec against the store; never raises."""

    def __init__(self, store: DocumentStore, owner_attempts: int = 2):
        self.store = store
        self.owner_attempts = owner_attempts

    # ── Helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _instant_getter(spec: QuerySpec, field: str):
        if spec.use_date_time:
            return lambda record: normalize_record(record, field)
        return lambda record: normalize(record.get(field))

    def _apply_range(self, records: Sequence[Dict[str, Any]], spec: QuerySpec) -> List[Dict[str, Any]]:
        if spec.range_filter is None:
            return list(records)
        instant_of = self._instant_getter(spec, spec.range_filter.field)
        kept = []
        for record in records:
            instant = instant_of(record)
            if instant is not None and spec.range_filter.contains(instant):
                kept.append(record)
        return kept

    def _apply_sort(self, records: List[Dict[str, Any]], spec: QuerySpec) -> List[Dict[str, Any]]:
        if spec.sort is None:
            return sorted(records, key=lambda r: str(r.get("id", "")))
        instant_of = self._instant_getter(spec, spec.sort.field)
        return sort_records(records, instant_of, spec.sort.descending)

    def _owner_candidates(self, spec: QuerySpec) -> Tuple[Optional[str], ...]:
        if spec.owner_id is None or not spec.owner_fields:
            return (None,)
        return tuple(spec.owner_fields[: self.owner_attempts])

    @staticmethod
    def _note(failures: List[str], spec: QuerySpec, owner_field: Optional[str], stage: str, exc: Exception) -> None:
        where = f"{spec.collection}[{owner_field}]" if owner_field else spec.collection
        message = f"{where} {stage}: {type(exc).__name__}: {exc}"
        failures.append(message)
        logger.warning("Query attempt failed – %s", message)

    # ── Main entry point ─────────────────────────────────────────────

    async def query(self, spec: QuerySpec) -> QueryResult:
        failures: List[str] = []
        degraded = False

        for attempt, owner_field in enumerate(self._owner_candidates(spec)):
            filters = tuple(spec.filters)
            if owner_field is not None:
                filters += ((owner_field, spec.owner_id),)
            if attempt:
                degraded = True

            # 1) Fully specified query, pushed to the store. The store cannot
            #    read a date+time pair, so those bounds stay in memory.
            pushed_range, pushed_sort = (None, None) if spec.use_date_time else (spec.range_filter, spec.sort)
            try:
                logger.debug("Primary query on %s filters=%s", spec.collection, filters)
                records = await self.store.find(spec.collection, filters, pushed_range, pushed_sort)
            except IndexRequiredError as exc:
                self._note(failures, spec, owner_field, "primary", exc)
            except FieldNotFoundError as exc:
                self._note(failures, spec, owner_field, "primary", exc)
                continue
            except Exception as exc:
                self._note(failures, spec, owner_field, "primary", exc)
                break
            else:
                kept = self._apply_range(records, spec)
                if spec.use_date_time:
                    kept = self._apply_sort(kept, spec)
                return QueryResult(records=tuple(kept), degraded=degraded, failures=tuple(failures))

            # 2) Equality-only fallback, range and ordering done here
            degraded = True
            try:
                logger.debug("Fallback query on %s filters=%s", spec.collection, filters)
                records = await self.store.find(spec.collection, filters)
            except FieldNotFoundError as exc:
                self._note(failures, spec, owner_field, "fallback", exc)
                continue
            except Exception as exc:
                self._note(failures, spec, owner_field, "fallback", exc)
                break
            kept = self._apply_sort(self._apply_range(records, spec), spec)
            return QueryResult(records=tuple(kept), degraded=True, failures=tuple(failures))

        logger.warning("Giving up on %s after %d failed attempt(s)", spec.collection, len(failures))
        return QueryResult(records=(), degraded=True, failed=True, failures=tuple(failures))
