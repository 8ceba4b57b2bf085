"""PostgreSQL driver built on psycopg 3's async API.

Every :meth:`PostgresDriver.connect` call opens a fresh, short-lived
connection.  Nothing is pooled: a connection that saw a cancelled statement
is closed and forgotten, so it can never leak a half-finished state into a
later request.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from sql_sandbox.driver.base import Connection, DatabaseDriver, DriverError, QueryOutcome

logger = logging.getLogger(__name__)


def _driver_error(exc: psycopg.Error) -> DriverError:
    return DriverError(str(exc).strip() or exc.__class__.__name__, sqlstate=exc.sqlstate)


class PostgresConnection(Connection):
    """Thin wrapper translating psycopg errors into :class:`DriverError`."""

    def __init__(self, conn: psycopg.AsyncConnection) -> None:
        self._conn = conn

    async def execute(self, statement: str, max_rows: int | None = None) -> QueryOutcome:
        try:
            async with self._conn.cursor() as cur:
                await cur.execute(statement)  # type: ignore[arg-type]
                if cur.description is None:
                    return QueryOutcome(rowcount=cur.rowcount)

                columns = [col.name for col in cur.description]
                if max_rows is None:
                    rows = await cur.fetchall()
                    truncated = False
                else:
                    rows = await cur.fetchmany(max_rows + 1)
                    truncated = len(rows) > max_rows
                    rows = rows[:max_rows]
                return QueryOutcome(
                    columns=columns,
                    rows=list(rows),
                    rowcount=cur.rowcount,
                    truncated=truncated,
                )
        except psycopg.Error as exc:
            raise _driver_error(exc) from exc

    async def begin(self) -> None:
        # With autocommit off psycopg opens the transaction on the next
        # statement.
        try:
            await self._conn.set_autocommit(False)
        except psycopg.Error as exc:
            raise _driver_error(exc) from exc

    async def commit(self) -> None:
        try:
            await self._conn.commit()
        except psycopg.Error as exc:
            raise _driver_error(exc) from exc

    async def rollback(self) -> None:
        try:
            await self._conn.rollback()
        except psycopg.Error as exc:
            raise _driver_error(exc) from exc

    async def cancel(self) -> None:
        try:
            await self._conn.cancel_safe()
        except psycopg.Error as exc:
            logger.warning("Failed to cancel running statement: %s", exc)

    async def close(self) -> None:
        await self._conn.close()


class PostgresDriver(DatabaseDriver):
    """Connects to databases on a single PostgreSQL server.

    Parameters
    ----------
    host, port, user, password:
        Server coordinates and credentials.  The role needs ``CREATEDB``.
    admin_database:
        Maintenance database used for ``CREATE``/``DROP DATABASE`` and
        catalog lookups.
    connect_timeout:
        Seconds to wait for a connection to be established.
    """

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        admin_database: str = "postgres",
        connect_timeout: int = 10,
    ) -> None:
        self._params = {
            "host": host,
            "port": port,
            "user": user,
            "password": password,
            "connect_timeout": connect_timeout,
        }
        self._admin_database = admin_database

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def connect(
        self,
        database: str,
        *,
        read_only: bool = False,
        statement_timeout: float | None = None,
    ) -> PostgresConnection:
        options: list[str] = []
        if statement_timeout is not None:
            options.append(f"-c statement_timeout={int(statement_timeout * 1000)}")
        if read_only:
            options.append("-c default_transaction_read_only=on")

        try:
            conn = await psycopg.AsyncConnection.connect(
                dbname=database,
                autocommit=True,
                row_factory=dict_row,
                options=" ".join(options),
                **self._params,
            )
        except psycopg.Error as exc:
            raise _driver_error(exc) from exc
        return PostgresConnection(conn)

    @asynccontextmanager
    async def _admin(self) -> AsyncIterator[psycopg.AsyncConnection]:
        try:
            conn = await psycopg.AsyncConnection.connect(
                dbname=self._admin_database,
                autocommit=True,
                **self._params,
            )
        except psycopg.Error as exc:
            raise _driver_error(exc) from exc
        try:
            yield conn
        except psycopg.Error as exc:
            raise _driver_error(exc) from exc
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def create_database(self, name: str) -> None:
        async with self._admin() as conn:
            await conn.execute(sql.SQL("CREATE DATABASE {}").format(sql.Identifier(name)))
        logger.info("Created database %s", name)

    async def clone_database(self, source: str, target: str) -> None:
        async with self._admin() as conn:
            await conn.execute(
                sql.SQL("CREATE DATABASE {} TEMPLATE {}").format(
                    sql.Identifier(target),
                    sql.Identifier(source),
                )
            )
        logger.info("Cloned database %s -> %s", source, target)

    async def drop_database(self, name: str) -> None:
        await self.terminate_connections(name)
        async with self._admin() as conn:
            await conn.execute(sql.SQL("DROP DATABASE IF EXISTS {}").format(sql.Identifier(name)))
        logger.info("Dropped database %s", name)

    async def terminate_connections(self, name: str) -> int:
        async with self._admin() as conn:
            cur = await conn.execute(
                "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
                "WHERE datname = %s AND pid <> pg_backend_pid()",
                (name,),
            )
            terminated = len(await cur.fetchall())
        if terminated:
            logger.debug("Terminated %d connection(s) on %s", terminated, name)
        return terminated

    async def health_check(self) -> bool:
        try:
            async with self._admin() as conn:
                await conn.execute("SELECT 1")
        except DriverError as exc:
            logger.warning("PostgreSQL health check failed: %s", exc.message)
            return False
        return True
