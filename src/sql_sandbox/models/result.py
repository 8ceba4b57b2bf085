"""Execution, script, import and schema result models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from sql_sandbox.models.enums import CommandKind


class ExecutionResult(BaseModel):
    """Shaped outcome of a single executed statement."""

    command_kind: CommandKind = Field(
        description="Classified command of the executed statement.",
    )
    columns: list[str] = Field(
        default_factory=list,
        description="Result column names in order; empty for non-SELECT statements.",
    )
    rows: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Result rows keyed by column name; empty for non-SELECT statements.",
    )
    row_count: int = Field(
        default=0,
        ge=0,
        description="Number of rows returned.",
    )
    affected_rows: int = Field(
        default=0,
        ge=0,
        description="Number of rows affected by a data-modifying statement.",
    )
    execution_time_ms: float = Field(
        ge=0,
        description="Wall-clock execution time in milliseconds.",
    )
    truncated: bool = Field(
        default=False,
        description="Whether the result set was cut at the configured row limit.",
    )


class ManipulationResult(ExecutionResult):
    """Execution result of a statement run inside a per-user copy."""

    copy_database: str = Field(
        description="Physical copy the statement was executed against.",
    )
    reset_performed: bool = Field(
        default=False,
        description="Whether the copy was reset before executing.",
    )


class ScriptResult(BaseModel):
    """Outcome of a committed multi-statement script."""

    database: str
    statements_executed: int = Field(ge=0)
    committed: bool = True


class ImportResult(BaseModel):
    """Outcome of importing a script as a new logical database."""

    database: str = Field(description="Name of the registered logical database.")
    statements_executed: int = Field(
        ge=0,
        description="Number of statements run inside the new database.",
    )
    tables_created: list[str] = Field(
        default_factory=list,
        description="Tables present in the database after the import.",
    )


class ColumnInfo(BaseModel):
    name: str
    data_type: str
    nullable: bool
    default: str | None = None


class TableInfo(BaseModel):
    schema_name: str
    name: str
    row_count: int = 0
    columns: list[ColumnInfo] = Field(default_factory=list)


class DatabaseSchema(BaseModel):
    """Structural overview of a database for instructors."""

    database: str
    tables: list[TableInfo] = Field(default_factory=list)


class QueryCheck(BaseModel):
    """Verdict of the feedback oracle on whether a query solves a task."""

    matches: bool
    answer: str = Field(description="Raw oracle answer including its reasoning.")
