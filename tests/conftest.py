"""Shared fixtures: an in-memory repository and a scriptable fake driver."""

from __future__ import annotations

import asyncio
import re
from datetime import UTC, datetime, timedelta

import pytest

from sql_sandbox.driver.base import Connection, DatabaseDriver, DriverError, QueryOutcome
from sql_sandbox.repository.memory import InMemoryRepository

_CREATE_TABLE_RE = re.compile(r"^CREATE\s+TABLE\s+(\w+)", re.IGNORECASE)


class FakeConnection(Connection):
    def __init__(self, driver: FakeDriver, database: str, read_only: bool) -> None:
        self.driver = driver
        self.database = database
        self.read_only = read_only
        self.executed: list[str] = []
        self.in_transaction = False
        self.committed = False
        self.rolled_back = False
        self.cancelled = False
        self.closed = False

    async def execute(self, statement: str, max_rows: int | None = None) -> QueryOutcome:
        assert not self.closed, "statement sent on a closed connection"
        self.executed.append(statement)
        if statement in self.driver.slow:
            await asyncio.sleep(5)
        if statement in self.driver.failures:
            raise self.driver.failures[statement]

        if "information_schema.tables" in statement:
            rows = [
                {"table_schema": "public", "table_name": name}
                for name in sorted(self.driver.tables.get(self.database, []))
            ]
            return QueryOutcome(columns=["table_schema", "table_name"], rows=rows, rowcount=len(rows))
        if "information_schema.columns" in statement:
            return QueryOutcome(columns=["table_schema", "table_name"], rows=[], rowcount=0)
        if statement.startswith("SELECT count(*)"):
            return QueryOutcome(columns=["n"], rows=[{"n": 3}], rowcount=1)
        if statement in self.driver.results:
            outcome = self.driver.results[statement]
            if max_rows is not None and len(outcome.rows) > max_rows:
                return QueryOutcome(
                    columns=outcome.columns,
                    rows=outcome.rows[:max_rows],
                    rowcount=outcome.rowcount,
                    truncated=True,
                )
            return outcome
        return QueryOutcome(rowcount=1)

    async def begin(self) -> None:
        self.in_transaction = True

    async def commit(self) -> None:
        self.committed = True
        for statement in self.executed:
            match = _CREATE_TABLE_RE.match(statement)
            if match:
                self.driver.tables.setdefault(self.database, set()).add(match.group(1))

    async def rollback(self) -> None:
        self.rolled_back = True

    async def cancel(self) -> None:
        self.cancelled = True

    async def close(self) -> None:
        self.closed = True


class FakeDriver(DatabaseDriver):
    """Driver double that keeps database names in a set.

    ``failures`` maps exact statements to the :class:`DriverError` they
    raise, ``slow`` lists statements that block for seconds, ``results``
    maps statements to canned outcomes.
    """

    def __init__(self) -> None:
        self.databases: set[str] = set()
        self.tables: dict[str, set[str]] = {}
        self.connections: list[FakeConnection] = []
        self.failures: dict[str, DriverError] = {}
        self.slow: set[str] = set()
        self.results: dict[str, QueryOutcome] = {}
        self.fail_clone = False
        self.fail_drop: set[str] = set()
        self.clones: list[tuple[str, str]] = []
        self.dropped: list[str] = []

    async def connect(self, database, *, read_only=False, statement_timeout=None):
        if database not in self.databases:
            raise DriverError(f'database "{database}" does not exist', sqlstate="3D000")
        conn = FakeConnection(self, database, read_only)
        self.connections.append(conn)
        return conn

    async def create_database(self, name: str) -> None:
        if name in self.databases:
            raise DriverError(f'database "{name}" already exists', sqlstate="42P04")
        self.databases.add(name)

    async def clone_database(self, source: str, target: str) -> None:
        if self.fail_clone:
            raise DriverError(f'source database "{source}" is being accessed by other users', "55006")
        if source not in self.databases:
            raise DriverError(f'template database "{source}" does not exist', "3D000")
        self.databases.add(target)
        self.tables[target] = set(self.tables.get(source, set()))
        self.clones.append((source, target))

    async def drop_database(self, name: str) -> None:
        if name in self.fail_drop:
            raise DriverError(f'database "{name}" is being accessed by other users', "55006")
        self.databases.discard(name)
        self.tables.pop(name, None)
        self.dropped.append(name)

    async def terminate_connections(self, name: str) -> int:
        return 0


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
