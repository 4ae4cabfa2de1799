from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

Record = Dict[str, Any]


@runtime_checkable
class RecordStore(Protocol):
    """Protocol for the persistence collaborator (executions, steps, usage events).

    Records are plain JSON-compatible dicts grouped by collection name. Every record
    carries an ``id`` field assigned on create.
    """

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        """Fetch a record by id, or None."""
        ...

    async def create(self, collection: str, record: Record) -> Record:
        """Insert a record, assigning an id when absent. Returns the stored record."""
        ...

    async def update(self, collection: str, record_id: str, changes: Record) -> Record:
        """Merge ``changes`` into a single record. Raises NotFoundError when missing."""
        ...

    async def delete(self, collection: str, record_id: str) -> bool:
        """Delete a record. Returns True if it existed."""
        ...

    async def find_many(
        self,
        collection: str,
        where: Optional[Record] = None,
        *,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """Return records whose fields match ``where``.

        Filter values may be plain values (equality) or operator dicts using
        ``gte``/``gt``/``lte``/``lt``/``in``. ``order_by`` names a field, with a
        leading ``-`` for descending order.
        """
        ...

    async def upsert(
        self,
        collection: str,
        key: Sequence[str],
        create: Record,
        update: Record,
    ) -> Record:
        """Atomically create the record identified by ``key`` fields or apply ``update``.

        Numeric values in ``update`` under an ``increment`` mapping are added to the
        existing values rather than replacing them.
        """
        ...
