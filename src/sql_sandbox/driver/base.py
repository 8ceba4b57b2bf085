"""Abstract database driver interface and shared data structures."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


class DriverError(Exception):
    """Error reported by the database backend.

    Attributes
    ----------
    message:
        The backend's original error message.
    sqlstate:
        Five-character SQLSTATE code, or ``None`` if the backend did not
        report one (e.g. the connection could not be established).
    """

    def __init__(self, message: str, sqlstate: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.sqlstate = sqlstate


@dataclass
class QueryOutcome:
    """Raw result of running one statement on a connection.

    Attributes
    ----------
    columns:
        Column names in result order; empty when the statement returned no
        result set.
    rows:
        Fetched rows as ``column -> value`` mappings.
    rowcount:
        Number of rows affected (or returned), ``-1`` when unknown.
    truncated:
        Whether more rows were available than were fetched.
    """

    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    rowcount: int = -1
    truncated: bool = False


class Connection(ABC):
    """A single dedicated connection to one physical database."""

    @abstractmethod
    async def execute(self, statement: str, max_rows: int | None = None) -> QueryOutcome:
        """Run *statement* and fetch at most *max_rows* rows of its result."""
        ...

    @abstractmethod
    async def begin(self) -> None:
        """Open an explicit transaction."""
        ...

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...

    @abstractmethod
    async def cancel(self) -> None:
        """Ask the server to abort whatever statement is currently running."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection.  It is never reused afterwards."""
        ...


class DatabaseDriver(ABC):
    """Factory for connections plus the administrative operations the
    copy manager and importer need.

    Implementations raise :class:`DriverError` for every backend failure.
    """

    @abstractmethod
    async def connect(
        self,
        database: str,
        *,
        read_only: bool = False,
        statement_timeout: float | None = None,
    ) -> Connection:
        """Open a new connection to *database*.

        Parameters
        ----------
        database:
            Physical database name.
        read_only:
            Run every transaction on this connection in read-only mode.
        statement_timeout:
            Optional server-side statement timeout in seconds.
        """
        ...

    @abstractmethod
    async def create_database(self, name: str) -> None:
        ...

    @abstractmethod
    async def clone_database(self, source: str, target: str) -> None:
        """Create *target* as a full schema + data copy of *source*."""
        ...

    @abstractmethod
    async def drop_database(self, name: str) -> None:
        """Drop *name* if it exists, terminating its connections first."""
        ...

    @abstractmethod
    async def terminate_connections(self, name: str) -> int:
        """Terminate other sessions connected to *name*; return how many."""
        ...

    async def health_check(self) -> bool:
        """Return ``True`` if the database server is reachable."""
        return True
