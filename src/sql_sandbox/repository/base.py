"""Abstract repository for logical database and copy records."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from sql_sandbox.models.database import DatabaseCopy, LogicalDatabase


class Repository(ABC):
    """Persistence boundary of the sandbox.

    The sandbox never locks anything itself.  The one-copy-per-pair
    invariant rests entirely on :meth:`insert_copy_if_absent` being atomic.
    """

    # ------------------------------------------------------------------
    # Logical databases
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_database(self, name: str) -> LogicalDatabase | None:
        ...

    @abstractmethod
    async def list_databases(self, owner_id: int | None = None) -> list[LogicalDatabase]:
        """Return all databases (optionally only those of *owner_id*) by name."""
        ...

    @abstractmethod
    async def add_database(self, database: LogicalDatabase) -> bool:
        """Register *database*; return ``False`` if the name is taken."""
        ...

    @abstractmethod
    async def delete_database(self, name: str) -> None:
        ...

    @abstractmethod
    async def worksheet_reference_count(self, name: str) -> int:
        """Number of worksheets that use the database *name*."""
        ...

    @abstractmethod
    async def add_worksheet_reference(self, name: str) -> int:
        """Record one more worksheet using *name*; return the new count."""
        ...

    @abstractmethod
    async def remove_worksheet_reference(self, name: str) -> int:
        """Forget one worksheet using *name*; the count never drops below zero."""
        ...

    # ------------------------------------------------------------------
    # Copies
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_copy(self, logical_name: str, requester_id: int) -> DatabaseCopy | None:
        ...

    @abstractmethod
    async def insert_copy_if_absent(self, copy: DatabaseCopy) -> bool:
        """Atomically store *copy* unless its (database, requester) pair
        already has a record.  Return whether the insert happened."""
        ...

    @abstractmethod
    async def touch_copy(self, logical_name: str, requester_id: int, used_at: datetime) -> None:
        """Set ``last_used_at`` of an existing copy record."""
        ...

    @abstractmethod
    async def delete_copy(self, logical_name: str, requester_id: int) -> None:
        ...

    @abstractmethod
    async def list_copies(self, logical_name: str) -> list[DatabaseCopy]:
        ...

    @abstractmethod
    async def list_expired_copies(self, now: datetime) -> list[DatabaseCopy]:
        """Return every copy whose ``expires_at`` lies strictly before *now*."""
        ...

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None
