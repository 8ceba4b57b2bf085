"""Service facade composing the sandbox core.

:class:`SqlSandbox` is what controllers and schedulers talk to.  It wires
the access gate, the command validator, the copy manager and the execution
engine together in the order every request goes through them::

    access gate -> validator -> (manipulation) copy manager -> engine

Repository and driver are injected; nothing here opens a connection or a
Redis client on its own.
"""

from __future__ import annotations

import logging
import re
from datetime import timedelta
from typing import Sequence

from sql_sandbox.driver.base import DatabaseDriver, DriverError
from sql_sandbox.errors import (
    DatabaseAlreadyExists,
    InvalidDatabaseName,
    MissingCreateStatement,
    OracleUnavailable,
    classify_driver_error,
)
from sql_sandbox.models.database import LogicalDatabase, is_valid_database_name
from sql_sandbox.models.enums import CommandKind
from sql_sandbox.models.result import (
    DatabaseSchema,
    ExecutionResult,
    ImportResult,
    ManipulationResult,
    QueryCheck,
)
from sql_sandbox.oracle.client import FeedbackClient
from sql_sandbox.repository.base import Repository
from sql_sandbox.sandbox.access import OWNER_ONLY, AccessGate
from sql_sandbox.sandbox.copies import DEFAULT_COPY_TTL, CopyManager
from sql_sandbox.sandbox.engine import DEFAULT_MAX_ROWS, ExecutionEngine
from sql_sandbox.sandbox.splitter import split_statements
from sql_sandbox.sandbox.validator import (
    reject_script_escapes,
    validate_manipulation,
    validate_read_only,
)

logger = logging.getLogger(__name__)

_CREATE_DATABASE_RE: re.Pattern[str] = re.compile(
    r'^CREATE\s+DATABASE\s+(?:"(?P<quoted>[^"]+)"|(?P<bare>[^\s;"]+))',
    re.IGNORECASE,
)

# SQLSTATE duplicate_database
_DUPLICATE_DATABASE = "42P04"


def parse_create_database(statement: str) -> str:
    """Extract the database name from a ``CREATE DATABASE`` statement.

    Unquoted names are folded to lower case, as PostgreSQL does.

    Raises
    ------
    MissingCreateStatement
        *statement* is not a ``CREATE DATABASE`` statement.
    InvalidDatabaseName
        The name does not satisfy the naming rules.
    """
    match = _CREATE_DATABASE_RE.match(statement)
    if match is None:
        raise MissingCreateStatement(
            "The first statement of the script must be CREATE DATABASE <name>."
        )
    name = match.group("quoted") or match.group("bare").lower()
    _require_valid_name(name)
    return name


def _require_valid_name(name: str) -> None:
    if not is_valid_database_name(name):
        raise InvalidDatabaseName(
            f"Invalid database name {name!r}: use 3-63 letters, digits or underscores, "
            "starting with a letter."
        )


class SqlSandbox:
    """Entry point for every sandboxed SQL operation.

    Parameters
    ----------
    repository:
        Store for logical databases and copy records.
    driver:
        Driver for the PostgreSQL server hosting all databases.
    read_timeout, manipulation_timeout, script_timeout:
        Deadlines in seconds for inspection queries, exercise statements and
        script imports.
    copy_ttl:
        Lease length of per-user copies.
    max_rows:
        Row cap for a single result set.
    oracle:
        Feedback client for query checks; optional.
    """

    def __init__(
        self,
        repository: Repository,
        driver: DatabaseDriver,
        *,
        read_timeout: float = 10.0,
        manipulation_timeout: float = 30.0,
        script_timeout: float = 120.0,
        copy_ttl: timedelta = DEFAULT_COPY_TTL,
        max_rows: int = DEFAULT_MAX_ROWS,
        copy_manager: CopyManager | None = None,
        oracle: FeedbackClient | None = None,
    ) -> None:
        self._repository = repository
        self._driver = driver
        self._oracle = oracle
        self.read_timeout = read_timeout
        self.manipulation_timeout = manipulation_timeout
        self.script_timeout = script_timeout

        self.gate = AccessGate(repository)
        self.copies = copy_manager or CopyManager(repository, driver, ttl=copy_ttl)
        self.engine = ExecutionEngine(driver, max_rows=max_rows)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def check_access(self, name: str, caller_id: int) -> bool:
        return await self.gate.check_access(name, caller_id)

    async def ensure_copy(self, name: str, requester_id: int) -> str:
        return await self.copies.ensure_copy(name, requester_id)

    async def reset_copy(self, name: str, requester_id: int) -> bool:
        return await self.copies.reset_copy(name, requester_id)

    async def sweep_expired_copies(self) -> int:
        return await self.copies.sweep_expired_copies()

    async def execute(
        self,
        statement: str,
        physical_name: str,
        *,
        timeout: float | None = None,
        kind: CommandKind | None = None,
        read_only: bool = False,
    ) -> ExecutionResult:
        return await self.engine.execute(
            statement,
            physical_name,
            timeout=timeout or self.read_timeout,
            kind=kind,
            read_only=read_only,
        )

    async def import_script(self, script: str, owner_id: int) -> ImportResult:
        """Create and register a logical database from an SQL script.

        The first statement must be ``CREATE DATABASE <name>``; the rest runs
        inside the new database in one transaction.  If any of it fails the
        new database is dropped again and nothing is registered.
        """
        statements = split_statements(script)
        name = parse_create_database(statements[0])
        reject_script_escapes(statements[1:], first_index=2)
        return await self._build_database(name, statements[1:], owner_id, first_index=2)

    # ------------------------------------------------------------------
    # Database administration
    # ------------------------------------------------------------------

    async def create_database(
        self,
        name: str,
        script: str,
        owner_id: int,
        description: str | None = None,
    ) -> ImportResult:
        """Create database *name* and populate it with *script*.

        Unlike :meth:`import_script` the name is given separately, so the
        script itself may not create databases.
        """
        _require_valid_name(name)
        statements = split_statements(script)
        reject_script_escapes(statements)
        return await self._build_database(
            name, statements, owner_id, first_index=1, description=description
        )

    async def list_databases(self, owner_id: int | None = None) -> list[LogicalDatabase]:
        return await self._repository.list_databases(owner_id)

    async def delete_database(self, name: str, caller_id: int) -> None:
        """Delete a logical database and all of its copies (owner only)."""
        await self.gate.require_access(name, caller_id, capabilities=OWNER_ONLY)
        dropped = await self.copies.drop_all_copies(name)
        try:
            await self._driver.drop_database(name)
        except DriverError as exc:
            raise classify_driver_error(exc) from exc
        await self._repository.delete_database(name)
        logger.info("Deleted database %s and %d copy(ies)", name, dropped)

    async def inspect_database(self, name: str, caller_id: int) -> DatabaseSchema:
        database = await self.gate.require_access(name, caller_id)
        return await self.engine.inspect(database.name, timeout=self.read_timeout)

    async def publish_to_worksheet(self, name: str, caller_id: int) -> int:
        """Record that a worksheet uses *name* and return the new count.

        While the count is positive every caller may query the database
        and work on a private copy of it.  Owner only.
        """
        database = await self.gate.require_access(name, caller_id, capabilities=OWNER_ONLY)
        count = await self._repository.add_worksheet_reference(database.name)
        logger.info("Database %s now used by %d worksheet(s)", database.name, count)
        return count

    async def withdraw_from_worksheet(self, name: str, caller_id: int) -> int:
        """Drop one worksheet reference to *name*.  Owner only."""
        database = await self.gate.require_access(name, caller_id, capabilities=OWNER_ONLY)
        count = await self._repository.remove_worksheet_reference(database.name)
        logger.info("Database %s now used by %d worksheet(s)", database.name, count)
        return count

    # ------------------------------------------------------------------
    # Request flows
    # ------------------------------------------------------------------

    async def run_query(self, query: str, name: str, caller_id: int) -> ExecutionResult:
        """Run a read-only inspection query directly on a logical database."""
        database = await self.gate.require_access(name, caller_id)
        kind = validate_read_only(query)
        return await self.engine.execute(
            query,
            database.name,
            timeout=self.read_timeout,
            kind=kind,
            read_only=True,
        )

    async def run_manipulation(
        self,
        query: str,
        name: str,
        caller_id: int,
        reset: bool = False,
    ) -> ManipulationResult:
        """Run an exercise statement inside the caller's private copy."""
        database = await self.gate.require_access(name, caller_id)
        kind = validate_manipulation(query)

        reset_performed = False
        if reset:
            reset_performed = await self.copies.reset_copy(database.name, caller_id)

        copy_name = await self.copies.ensure_copy(database.name, caller_id)
        result = await self.engine.execute(
            query,
            copy_name,
            timeout=self.manipulation_timeout,
            kind=kind,
        )
        return ManipulationResult(
            **result.model_dump(),
            copy_database=copy_name,
            reset_performed=reset_performed,
        )

    async def check_query_matches_task(self, task_description: str, query: str) -> QueryCheck:
        """Ask the feedback oracle whether *query* solves *task_description*."""
        return await self._require_oracle().check_query_matches_task(task_description, query)

    async def generate_task(self, topic: str, difficulty: str, name: str, caller_id: int) -> str:
        """Draft an exercise task for database *name* with the feedback oracle."""
        oracle = self._require_oracle()
        schema = await self.inspect_database(name, caller_id)
        return await oracle.generate_task(topic, difficulty, schema)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _build_database(
        self,
        name: str,
        statements: Sequence[str],
        owner_id: int,
        *,
        first_index: int,
        description: str | None = None,
    ) -> ImportResult:
        if await self._repository.get_database(name) is not None:
            raise DatabaseAlreadyExists(f"Database {name!r} already exists.")

        try:
            await self._driver.create_database(name)
        except DriverError as exc:
            if exc.sqlstate == _DUPLICATE_DATABASE:
                raise DatabaseAlreadyExists(f"Database {name!r} already exists.") from exc
            raise classify_driver_error(exc) from exc

        # Any exit short of registration drops the new database, cancellation included.
        try:
            result = await self.engine.execute_script(
                statements,
                name,
                timeout=self.script_timeout,
                first_index=first_index,
            )
            schema = await self.engine.inspect(name, timeout=self.read_timeout)
            database = LogicalDatabase(name=name, owner_id=owner_id, description=description)
            if not await self._repository.add_database(database):
                raise DatabaseAlreadyExists(f"Database {name!r} already exists.")
        except BaseException:
            await self._drop_quietly(name)
            raise

        logger.info(
            "Imported database %s for owner %s (%d statements)",
            name,
            owner_id,
            result.statements_executed,
        )
        return ImportResult(
            database=name,
            statements_executed=result.statements_executed,
            tables_created=[table.name for table in schema.tables],
        )

    def _require_oracle(self) -> FeedbackClient:
        if self._oracle is None:
            raise OracleUnavailable("No feedback oracle is configured.")
        return self._oracle

    async def _drop_quietly(self, name: str) -> None:
        try:
            await self._driver.drop_database(name)
        except DriverError as exc:
            logger.error("Failed to drop partially imported database %s: %s", name, exc.message)
