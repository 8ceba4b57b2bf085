"""Database driver interface and the PostgreSQL implementation."""

from sql_sandbox.driver.base import Connection, DatabaseDriver, DriverError, QueryOutcome
from sql_sandbox.driver.postgres import PostgresConnection, PostgresDriver

__all__ = [
    "Connection",
    "DatabaseDriver",
    "DriverError",
    "PostgresConnection",
    "PostgresDriver",
    "QueryOutcome",
]
