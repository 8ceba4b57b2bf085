"""Error taxonomy for the SQL sandbox.

Every failure the core can produce is a subclass of :class:`SandboxError`
carrying an :class:`ErrorCategory`.  Callers dispatch on the exception
class (or on ``exc.category``) to decide user-facing messaging; the core
itself has no notion of transport.

Backend errors reported by the database driver are mapped onto the closed
set of :class:`DatabaseError` subclasses through :data:`SQLSTATE_ERRORS`,
which can be extended with :func:`register_sqlstate` without touching any
call site.
"""

from __future__ import annotations

from enum import StrEnum

from sql_sandbox.driver.base import DriverError


class ErrorCategory(StrEnum):
    """Closed set of failure categories surfaced by the sandbox."""

    EMPTY_SCRIPT = "EmptyScript"
    MISSING_CREATE_STATEMENT = "MissingCreateStatement"
    INVALID_DATABASE_NAME = "InvalidDatabaseName"
    DATABASE_ALREADY_EXISTS = "DatabaseAlreadyExists"
    FORBIDDEN_COMMAND = "ForbiddenCommand"
    UNRECOGNIZED_COMMAND = "UnrecognizedCommand"
    MULTIPLE_STATEMENTS = "MultipleStatements"
    NOT_FOUND = "NotFound"
    TIMEOUT = "Timeout"
    STATEMENT_FAILED = "StatementFailed"
    UNDEFINED_TABLE = "UndefinedTable"
    UNDEFINED_COLUMN = "UndefinedColumn"
    SYNTAX_ERROR = "SyntaxError"
    UNIQUE_VIOLATION = "UniqueViolation"
    FOREIGN_KEY_VIOLATION = "ForeignKeyViolation"
    NOT_NULL_VIOLATION = "NotNullViolation"
    UNCLASSIFIED_DATABASE_ERROR = "UnclassifiedDatabaseError"
    PROVISIONING_FAILED = "ProvisioningFailed"
    ORACLE_UNAVAILABLE = "OracleUnavailable"


class SandboxError(Exception):
    """Base class for every categorised sandbox failure."""

    category: ErrorCategory

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Serialisable representation used by the HTTP layer."""
        return {"category": self.category.value, "message": self.message}


# ---------------------------------------------------------------------------
# Script / validation errors
# ---------------------------------------------------------------------------


class EmptyScript(SandboxError):
    category = ErrorCategory.EMPTY_SCRIPT


class MissingCreateStatement(SandboxError):
    category = ErrorCategory.MISSING_CREATE_STATEMENT


class InvalidDatabaseName(SandboxError):
    category = ErrorCategory.INVALID_DATABASE_NAME


class DatabaseAlreadyExists(SandboxError):
    category = ErrorCategory.DATABASE_ALREADY_EXISTS


class ForbiddenCommand(SandboxError):
    category = ErrorCategory.FORBIDDEN_COMMAND


class UnrecognizedCommand(SandboxError):
    category = ErrorCategory.UNRECOGNIZED_COMMAND


class MultipleStatements(SandboxError):
    category = ErrorCategory.MULTIPLE_STATEMENTS


class NotFound(SandboxError):
    """The database does not exist *or* the caller may not see it."""

    category = ErrorCategory.NOT_FOUND


# ---------------------------------------------------------------------------
# Execution errors
# ---------------------------------------------------------------------------


class QueryTimeout(SandboxError):
    category = ErrorCategory.TIMEOUT

    def __init__(self, message: str, timeout_seconds: float) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["timeout_seconds"] = self.timeout_seconds
        return data


class ProvisioningFailed(SandboxError):
    category = ErrorCategory.PROVISIONING_FAILED


class OracleUnavailable(SandboxError):
    """No feedback oracle is configured for this service."""

    category = ErrorCategory.ORACLE_UNAVAILABLE


class StatementFailed(SandboxError):
    """A statement inside a multi-statement script failed.

    ``index`` is the 1-based position of the statement in the submitted
    script, ``preview`` a truncated copy of its text and ``cause`` the
    categorised error that made it fail.
    """

    category = ErrorCategory.STATEMENT_FAILED

    def __init__(self, index: int, cause: SandboxError, preview: str) -> None:
        super().__init__(f"Statement {index} failed ({preview}): {cause.message}")
        self.index = index
        self.cause = cause
        self.preview = preview

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["index"] = self.index
        data["preview"] = self.preview
        data["cause"] = self.cause.to_dict()
        return data


class DatabaseError(SandboxError):
    """Base class for errors reported by the database backend."""

    category = ErrorCategory.UNCLASSIFIED_DATABASE_ERROR

    def __init__(self, message: str, sqlstate: str | None = None) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["sqlstate"] = self.sqlstate
        return data


class UndefinedTable(DatabaseError):
    category = ErrorCategory.UNDEFINED_TABLE


class UndefinedColumn(DatabaseError):
    category = ErrorCategory.UNDEFINED_COLUMN


class SqlSyntaxError(DatabaseError):
    category = ErrorCategory.SYNTAX_ERROR


class UniqueViolation(DatabaseError):
    category = ErrorCategory.UNIQUE_VIOLATION


class ForeignKeyViolation(DatabaseError):
    category = ErrorCategory.FOREIGN_KEY_VIOLATION


class NotNullViolation(DatabaseError):
    category = ErrorCategory.NOT_NULL_VIOLATION


class UnclassifiedDatabaseError(DatabaseError):
    category = ErrorCategory.UNCLASSIFIED_DATABASE_ERROR


# ---------------------------------------------------------------------------
# SQLSTATE -> error class mapping
# ---------------------------------------------------------------------------

SQLSTATE_ERRORS: dict[str, type[DatabaseError]] = {
    "42P01": UndefinedTable,
    "42703": UndefinedColumn,
    "42601": SqlSyntaxError,
    "23505": UniqueViolation,
    "23503": ForeignKeyViolation,
    "23502": NotNullViolation,
}


def register_sqlstate(sqlstate: str, error_cls: type[DatabaseError]) -> None:
    """Map an additional backend SQLSTATE code to *error_cls*."""
    if not issubclass(error_cls, DatabaseError):
        raise TypeError(f"{error_cls!r} is not a DatabaseError subclass")
    SQLSTATE_ERRORS[sqlstate] = error_cls


def classify_driver_error(exc: DriverError) -> DatabaseError:
    """Translate a driver-level error into its :class:`DatabaseError` category.

    Unknown or missing SQLSTATE codes fall back to
    :class:`UnclassifiedDatabaseError`.  The original backend message is kept
    for diagnostics.
    """
    error_cls = SQLSTATE_ERRORS.get(exc.sqlstate or "", UnclassifiedDatabaseError)
    return error_cls(exc.message, sqlstate=exc.sqlstate)
