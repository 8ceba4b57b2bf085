"""Access control for logical databases.

Access is granted by *capabilities*: small policy objects that each answer
"does this capability let *caller* use *database*?".  The gate grants
access as soon as any configured capability does.  A denied caller gets
exactly the same :class:`~sql_sandbox.errors.NotFound` as a caller asking
for a database that does not exist.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Sequence

from sql_sandbox.errors import NotFound
from sql_sandbox.models.database import LogicalDatabase
from sql_sandbox.repository.base import Repository

logger = logging.getLogger(__name__)


class AccessCapability(ABC):
    """One way a caller can be entitled to use a logical database."""

    name: str

    @abstractmethod
    async def grants(
        self,
        database: LogicalDatabase,
        caller_id: int,
        repository: Repository,
    ) -> bool:
        ...


class OwnerCapability(AccessCapability):
    """The caller created the database."""

    name = "owner"

    async def grants(
        self,
        database: LogicalDatabase,
        caller_id: int,
        repository: Repository,
    ) -> bool:
        return database.owner_id is not None and database.owner_id == caller_id


class WorksheetDelegation(AccessCapability):
    """The database is used by at least one worksheet.

    Publishing a database in any exercise lets every authenticated caller
    query it, not only the worksheet's students.
    """

    name = "worksheet"

    async def grants(
        self,
        database: LogicalDatabase,
        caller_id: int,
        repository: Repository,
    ) -> bool:
        return await repository.worksheet_reference_count(database.name) > 0


DEFAULT_CAPABILITIES: tuple[AccessCapability, ...] = (OwnerCapability(), WorksheetDelegation())
OWNER_ONLY: tuple[AccessCapability, ...] = (OwnerCapability(),)


class AccessGate:
    """Resolves whether a caller may operate on a named logical database."""

    def __init__(
        self,
        repository: Repository,
        capabilities: Sequence[AccessCapability] = DEFAULT_CAPABILITIES,
    ) -> None:
        self._repository = repository
        self._capabilities = tuple(capabilities)

    async def require_access(
        self,
        name: str,
        caller_id: int,
        capabilities: Sequence[AccessCapability] | None = None,
    ) -> LogicalDatabase:
        """Return the database *name* if *caller_id* may use it.

        Raises
        ------
        NotFound
            The database does not exist or no capability grants access.
        """
        database = await self._repository.get_database(name)
        if database is not None:
            for capability in capabilities or self._capabilities:
                if await capability.grants(database, caller_id, self._repository):
                    logger.debug(
                        "Access to %s granted to %s via %s", name, caller_id, capability.name
                    )
                    return database
            logger.info("Access to %s denied for caller %s", name, caller_id)
        raise NotFound(f"Database {name!r} not found.")

    async def check_access(self, name: str, caller_id: int) -> bool:
        try:
            await self.require_access(name, caller_id)
        except NotFound:
            return False
        return True
