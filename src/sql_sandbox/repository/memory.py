"""In-process repository used by tests and single-instance development."""

from __future__ import annotations

from datetime import datetime

from sql_sandbox.models.database import DatabaseCopy, LogicalDatabase
from sql_sandbox.repository.base import Repository


class InMemoryRepository(Repository):
    """Dictionary-backed :class:`Repository`.

    All methods complete without awaiting anything, so on a single event
    loop each one is atomic, including :meth:`insert_copy_if_absent`.
    """

    def __init__(self) -> None:
        self._databases: dict[str, LogicalDatabase] = {}
        self._copies: dict[tuple[str, int], DatabaseCopy] = {}
        self._worksheet_refs: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Logical databases
    # ------------------------------------------------------------------

    async def get_database(self, name: str) -> LogicalDatabase | None:
        return self._databases.get(name)

    async def list_databases(self, owner_id: int | None = None) -> list[LogicalDatabase]:
        return sorted(
            (db for db in self._databases.values() if owner_id is None or db.owner_id == owner_id),
            key=lambda db: db.name,
        )

    async def add_database(self, database: LogicalDatabase) -> bool:
        if database.name in self._databases:
            return False
        self._databases[database.name] = database
        return True

    async def delete_database(self, name: str) -> None:
        self._databases.pop(name, None)
        self._worksheet_refs.pop(name, None)

    async def worksheet_reference_count(self, name: str) -> int:
        return self._worksheet_refs.get(name, 0)

    async def add_worksheet_reference(self, name: str) -> int:
        self._worksheet_refs[name] = self._worksheet_refs.get(name, 0) + 1
        return self._worksheet_refs[name]

    async def remove_worksheet_reference(self, name: str) -> int:
        count = self._worksheet_refs.get(name, 0) - 1
        if count <= 0:
            self._worksheet_refs.pop(name, None)
            return 0
        self._worksheet_refs[name] = count
        return count

    # ------------------------------------------------------------------
    # Copies
    # ------------------------------------------------------------------

    async def get_copy(self, logical_name: str, requester_id: int) -> DatabaseCopy | None:
        return self._copies.get((logical_name, requester_id))

    async def insert_copy_if_absent(self, copy: DatabaseCopy) -> bool:
        key = (copy.logical_name, copy.requester_id)
        if key in self._copies:
            return False
        self._copies[key] = copy
        return True

    async def touch_copy(self, logical_name: str, requester_id: int, used_at: datetime) -> None:
        key = (logical_name, requester_id)
        existing = self._copies.get(key)
        if existing is not None:
            self._copies[key] = existing.model_copy(update={"last_used_at": used_at})

    async def delete_copy(self, logical_name: str, requester_id: int) -> None:
        self._copies.pop((logical_name, requester_id), None)

    async def list_copies(self, logical_name: str) -> list[DatabaseCopy]:
        return [c for c in self._copies.values() if c.logical_name == logical_name]

    async def list_expired_copies(self, now: datetime) -> list[DatabaseCopy]:
        return [c for c in self._copies.values() if c.is_expired(now)]
