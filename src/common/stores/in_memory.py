"""In-memory RecordStore used for local runs and unit tests."""

import asyncio
import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from common.errors import NotFoundError
from common.interfaces.record_store import Record

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "gte": lambda left, right: left is not None and left >= right,
    "gt": lambda left, right: left is not None and left > right,
    "lte": lambda left, right: left is not None and left <= right,
    "lt": lambda left, right: left is not None and left < right,
    "in": lambda left, right: left in right,
    "ne": lambda left, right: left != right,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _matches(record: Record, where: Optional[Record]) -> bool:
    for field_name, expected in (where or {}).items():
        actual = record.get(field_name)
        if isinstance(expected, dict) and expected and set(expected) <= set(_OPERATORS):
            if not all(_OPERATORS[op](actual, value) for op, value in expected.items()):
                return False
        elif actual != expected:
            return False
    return True


class InMemoryRecordStore:
    """Dict-backed store with serialized writes.

    All mutations take a single ``asyncio.Lock`` so read-modify-write sequences
    (per-record merge updates, upserts with increments) are atomic with respect to
    other coroutines. Reads and writes deep-copy so callers never share state with
    the store.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Record]] = {}
        self._lock = asyncio.Lock()

    def _collection(self, name: str) -> Dict[str, Record]:
        return self._collections.setdefault(name, {})

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        record = self._collection(collection).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def create(self, collection: str, record: Record) -> Record:
        async with self._lock:
            stored = copy.deepcopy(record)
            stored.setdefault("id", str(uuid.uuid4()))
            stored.setdefault("created_at", _now_iso())
            stored["updated_at"] = stored["created_at"]
            self._collection(collection)[stored["id"]] = stored
            return copy.deepcopy(stored)

    async def update(self, collection: str, record_id: str, changes: Record) -> Record:
        async with self._lock:
            records = self._collection(collection)
            if record_id not in records:
                raise NotFoundError(f"{collection} record '{record_id}' not found")
            records[record_id].update(copy.deepcopy(changes))
            records[record_id]["updated_at"] = _now_iso()
            return copy.deepcopy(records[record_id])

    async def delete(self, collection: str, record_id: str) -> bool:
        async with self._lock:
            return self._collection(collection).pop(record_id, None) is not None

    async def find_many(
        self,
        collection: str,
        where: Optional[Record] = None,
        *,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        rows = [r for r in self._collection(collection).values() if _matches(r, where)]
        if order_by:
            descending = order_by.startswith("-")
            field_name = order_by.lstrip("-")
            rows.sort(
                key=lambda r: (r.get(field_name) is None, r.get(field_name)),
                reverse=descending,
            )
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def upsert(
        self,
        collection: str,
        key: Sequence[str],
        create: Record,
        update: Record,
    ) -> Record:
        async with self._lock:
            records = self._collection(collection)
            key_values = {name: create[name] for name in key}
            existing = next((r for r in records.values() if _matches(r, key_values)), None)
            if existing is None:
                stored = copy.deepcopy(create)
                stored.setdefault("id", str(uuid.uuid4()))
                stored.setdefault("created_at", _now_iso())
                stored["updated_at"] = stored["created_at"]
                records[stored["id"]] = stored
                return copy.deepcopy(stored)

            changes = copy.deepcopy(update)
            for field_name, delta in changes.pop("increment", {}).items():
                existing[field_name] = (existing.get(field_name) or 0) + delta
            existing.update(changes)
            existing["updated_at"] = _now_iso()
            return copy.deepcopy(existing)
