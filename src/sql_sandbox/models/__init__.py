"""Core domain models for the sql-sandbox service."""

from sql_sandbox.models.database import DatabaseCopy, LogicalDatabase, is_valid_database_name
from sql_sandbox.models.enums import CommandKind, CopyState, StatementPolicy
from sql_sandbox.models.result import (
    ColumnInfo,
    DatabaseSchema,
    ExecutionResult,
    ImportResult,
    ManipulationResult,
    QueryCheck,
    ScriptResult,
    TableInfo,
)

__all__ = [
    "ColumnInfo",
    "CommandKind",
    "CopyState",
    "DatabaseCopy",
    "DatabaseSchema",
    "ExecutionResult",
    "ImportResult",
    "LogicalDatabase",
    "ManipulationResult",
    "QueryCheck",
    "ScriptResult",
    "StatementPolicy",
    "TableInfo",
    "is_valid_database_name",
]
