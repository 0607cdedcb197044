"""
Cross-collection joins – resolve referenced documents and merge selected
fields into the primary record, with defaults when a reference is missing.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from carecoord.config import MAX_JOIN_DEPTH
from carecoord.identity import resolve_owner_id
from carecoord.models import JoinStep
from carecoord.store import DocumentStore

logger = logging.getLogger(__name__)

_MISSING = object()


def pick(document: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Read a possibly dotted field ("profile.name") from nested maps."""
    current: Any = document
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return default
        current = current.get(part, _MISSING)
        if current is _MISSING or current is None:
            return default
    return current


class Joiner:
    """Applies a bounded join plan to one record or a batch of records."""

    def __init__(self, store: DocumentStore, max_depth: int = MAX_JOIN_DEPTH):
        self.store = store
        self.max_depth = max_depth

    def _check_plan(self, plan: Sequence[JoinStep]) -> None:
        for step in plan:
            if step.depth() > self.max_depth:
                raise ValueError(
                    f"Join plan '{step.key}' is {step.depth()} hops deep; at most {self.max_depth} allowed."
                )

    async def _fetch(self, source: Mapping[str, Any], step: JoinStep) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
        key = resolve_owner_id(source, step.foreign_key_fields)
        if key is None:
            logger.debug("No %s on record %s for join '%s'", step.foreign_key_fields, source.get("id"), step.key)
            return None, None
        try:
            target = await self.store.get_by_id(step.target_collection, key)
        except Exception as exc:
            logger.warning("Join '%s' could not fetch %s/%s: %s", step.key, step.target_collection, key, exc)
            return key, None
        if target is None:
            logger.info("Join '%s': %s/%s not found, using defaults", step.key, step.target_collection, key)
        return key, target

    async def _run_step(self, source: Mapping[str, Any], step: JoinStep, result: Dict[str, Any]) -> None:
        key, target = await self._fetch(source, step)
        merged: Dict[str, Any] = dict(step.default_on_miss)
        if target is not None:
            for path in step.target_fields:
                name = path.rsplit(".", 1)[-1]
                merged[name] = pick(target, path, step.default_on_miss.get(name))
        merged["id"] = key
        merged["_found"] = target is not None
        result[step.key] = merged
        await self._run_steps(target or {}, step.then, result)

    async def _run_steps(self, source: Mapping[str, Any], steps: Iterable[JoinStep], result: Dict[str, Any]) -> None:
        steps = list(steps)
        if steps:
            await asyncio.gather(*(self._run_step(source, step, result) for step in steps))

    async def enrich(self, primary: Mapping[str, Any], plan: Sequence[JoinStep]) -> Dict[str, Any]:
        """Return a copy of *primary* with one namespaced entry per join step."""
        self._check_plan(plan)
        result = dict(primary)
        await self._run_steps(primary, plan, result)
        return result

    async def enrich_many(self, records: Iterable[Mapping[str, Any]], plan: Sequence[JoinStep]) -> List[Dict[str, Any]]:
        self._check_plan(plan)
        return list(await asyncio.gather(*(self.enrich(record, plan) for record in records)))
