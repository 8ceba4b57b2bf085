"""Statement and script execution under deadlines.

Every call acquires its own connection from the driver and releases it on
every exit path.  A statement that outlives its deadline is cancelled on
the server and its connection is closed, never handed out again.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Sequence

from sql_sandbox.driver.base import Connection, DatabaseDriver, DriverError
from sql_sandbox.errors import QueryTimeout, StatementFailed, classify_driver_error
from sql_sandbox.models.enums import CommandKind
from sql_sandbox.models.result import (
    ColumnInfo,
    DatabaseSchema,
    ExecutionResult,
    ScriptResult,
    TableInfo,
)
from sql_sandbox.sandbox.splitter import preview
from sql_sandbox.sandbox.validator import classify

logger = logging.getLogger(__name__)

DEFAULT_MAX_ROWS = 1000

# The server-side statement_timeout trails the client deadline so the client
# always observes the timeout first.
_SERVER_TIMEOUT_GRACE_SECONDS = 1.0

_SYSTEM_SCHEMAS = "('pg_catalog', 'information_schema', 'pg_toast')"

_TABLES_SQL = (
    "SELECT table_schema, table_name FROM information_schema.tables "
    f"WHERE table_type = 'BASE TABLE' AND table_schema NOT IN {_SYSTEM_SCHEMAS} "
    "ORDER BY table_schema, table_name"
)

_COLUMNS_SQL = (
    "SELECT table_schema, table_name, column_name, data_type, is_nullable, column_default "
    f"FROM information_schema.columns WHERE table_schema NOT IN {_SYSTEM_SCHEMAS} "
    "ORDER BY table_schema, table_name, ordinal_position"
)


def _quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class ExecutionEngine:
    """Runs validated SQL against physical databases.

    Parameters
    ----------
    driver:
        Injected database driver; the engine never builds its own.
    max_rows:
        Maximum number of rows returned for a single statement.
    """

    def __init__(self, driver: DatabaseDriver, max_rows: int = DEFAULT_MAX_ROWS) -> None:
        self._driver = driver
        self._max_rows = max_rows

    # ------------------------------------------------------------------
    # Single statements
    # ------------------------------------------------------------------

    async def execute(
        self,
        statement: str,
        database: str,
        *,
        timeout: float,
        kind: CommandKind | None = None,
        read_only: bool = False,
    ) -> ExecutionResult:
        """Run one statement on *database* within *timeout* seconds.

        ``SELECT``-kind statements return columns and rows, every other kind
        only the affected row count.

        Raises
        ------
        QueryTimeout
            The deadline expired; the statement was cancelled.
        DatabaseError
            The backend rejected the statement (categorised subclass).
        """
        kind = kind or classify(statement)
        start = time.monotonic()
        conn = await self._connect(database, read_only=read_only, timeout=timeout)
        try:
            try:
                async with asyncio.timeout(timeout):
                    outcome = await conn.execute(statement, max_rows=self._max_rows)
            except TimeoutError:
                await conn.cancel()
                logger.warning(
                    "Statement on %s exceeded %.1fs deadline: %s",
                    database,
                    timeout,
                    preview(statement),
                )
                raise QueryTimeout(
                    f"Query exceeded the time limit of {timeout:g} seconds.",
                    timeout_seconds=timeout,
                ) from None
            except DriverError as exc:
                raise classify_driver_error(exc) from exc
        finally:
            await conn.close()

        elapsed_ms = round((time.monotonic() - start) * 1000, 3)
        if kind is CommandKind.SELECT:
            return ExecutionResult(
                command_kind=kind,
                columns=outcome.columns,
                rows=outcome.rows,
                row_count=len(outcome.rows),
                execution_time_ms=elapsed_ms,
                truncated=outcome.truncated,
            )
        return ExecutionResult(
            command_kind=kind,
            affected_rows=max(outcome.rowcount, 0),
            execution_time_ms=elapsed_ms,
        )

    # ------------------------------------------------------------------
    # Scripts
    # ------------------------------------------------------------------

    async def execute_script(
        self,
        statements: Sequence[str],
        database: str,
        *,
        timeout: float,
        first_index: int = 1,
    ) -> ScriptResult:
        """Run *statements* on *database* inside a single transaction.

        Either every statement is committed or none is.  *first_index* is
        the 1-based script position of ``statements[0]`` so errors point at
        the right line of the submitted script.

        Raises
        ------
        StatementFailed
            A statement failed or the deadline expired; the transaction was
            rolled back.
        """
        if not statements:
            return ScriptResult(database=database, statements_executed=0)

        conn = await self._connect(database, read_only=False, timeout=timeout)
        index = first_index
        try:
            async with asyncio.timeout(timeout):
                await conn.begin()
                for offset, statement in enumerate(statements):
                    index = first_index + offset
                    await conn.execute(statement)
                await conn.commit()
        except TimeoutError:
            # Closing the connection without COMMIT aborts the transaction.
            await conn.cancel()
            failed = statements[index - first_index]
            logger.warning("Script on %s timed out at statement %d", database, index)
            raise StatementFailed(
                index,
                QueryTimeout(
                    f"Script exceeded the time limit of {timeout:g} seconds.",
                    timeout_seconds=timeout,
                ),
                preview(failed),
            ) from None
        except DriverError as exc:
            await self._rollback_quietly(conn)
            failed = statements[index - first_index]
            logger.info(
                "Script on %s failed at statement %d (%s): %s",
                database,
                index,
                preview(failed),
                exc.message,
            )
            raise StatementFailed(index, classify_driver_error(exc), preview(failed)) from exc
        finally:
            await conn.close()

        logger.info("Committed %d statement(s) on %s", len(statements), database)
        return ScriptResult(database=database, statements_executed=len(statements))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def inspect(self, database: str, *, timeout: float) -> DatabaseSchema:
        """Describe the user tables of *database* with columns and row counts."""
        conn = await self._connect(database, read_only=True, timeout=timeout)
        try:
            async with asyncio.timeout(timeout):
                table_rows = (await conn.execute(_TABLES_SQL)).rows
                column_rows = (await conn.execute(_COLUMNS_SQL)).rows

                tables: dict[tuple[str, str], TableInfo] = {}
                for row in table_rows:
                    key = (row["table_schema"], row["table_name"])
                    count = await conn.execute(
                        f"SELECT count(*) AS n FROM {_quote_ident(key[0])}.{_quote_ident(key[1])}"
                    )
                    tables[key] = TableInfo(
                        schema_name=key[0],
                        name=key[1],
                        row_count=count.rows[0]["n"] if count.rows else 0,
                    )
        except TimeoutError:
            await conn.cancel()
            raise QueryTimeout(
                f"Inspecting {database!r} exceeded {timeout:g} seconds.",
                timeout_seconds=timeout,
            ) from None
        except DriverError as exc:
            raise classify_driver_error(exc) from exc
        finally:
            await conn.close()

        for row in column_rows:
            table = tables.get((row["table_schema"], row["table_name"]))
            if table is None:
                # Views and foreign tables also show up in information_schema.columns.
                continue
            table.columns.append(
                ColumnInfo(
                    name=row["column_name"],
                    data_type=row["data_type"],
                    nullable=row["is_nullable"] == "YES",
                    default=row["column_default"],
                )
            )
        return DatabaseSchema(database=database, tables=list(tables.values()))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _connect(self, database: str, *, read_only: bool, timeout: float) -> Connection:
        try:
            return await self._driver.connect(
                database,
                read_only=read_only,
                statement_timeout=timeout + _SERVER_TIMEOUT_GRACE_SECONDS,
            )
        except DriverError as exc:
            raise classify_driver_error(exc) from exc

    @staticmethod
    async def _rollback_quietly(conn: Connection) -> None:
        try:
            await conn.rollback()
        except DriverError as exc:
            logger.warning("Rollback failed, discarding connection: %s", exc.message)
