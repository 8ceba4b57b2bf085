"""CommandKind, CopyState, and StatementPolicy enums."""

from enum import StrEnum


class CommandKind(StrEnum):
    """Classified SQL operation derived from a statement's leading keyword.

    Row-returning read commands (``SHOW``, ``DESCRIBE``, ``EXPLAIN``,
    ``WITH``) are reported as ``SELECT`` since they are shaped the same way.
    """

    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CREATE = "CREATE"
    ALTER = "ALTER"
    DROP = "DROP"
    REJECTED = "REJECTED"


class StatementPolicy(StrEnum):
    """Which command policy a statement is validated against."""

    READ_ONLY = "READ_ONLY"
    MANIPULATION = "MANIPULATION"


class CopyState(StrEnum):
    """Lifecycle of the physical copy for one (database, requester) pair."""

    ABSENT = "ABSENT"
    PROVISIONING = "PROVISIONING"
    ACTIVE = "ACTIVE"
