"""Command policies and statement classification.

Statements are classified by their leading keyword only.  This is a policy
filter, not a parser: it decides whether a statement may be sent to the
database at all, the database itself remains the authority on everything
else.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Sequence

from sql_sandbox.errors import ForbiddenCommand, MultipleStatements, UnrecognizedCommand
from sql_sandbox.models.enums import CommandKind, StatementPolicy
from sql_sandbox.sandbox.splitter import split_statements

_WORD_RE: re.Pattern[str] = re.compile(r"[A-Za-z]+")

# Any run of leading "-- ..." lines and "/* ... */" blocks.
_LEADING_COMMENTS_RE: re.Pattern[str] = re.compile(
    r"\A(?:\s*(?:--[^\n]*(?:\n|\Z)|/\*.*?\*/))*\s*", re.DOTALL
)

# Keywords that return rows without modifying anything.
READ_KEYWORDS: frozenset[str] = frozenset({
    "SELECT", "SHOW", "DESCRIBE", "DESC", "EXPLAIN", "WITH",
})

# Keywords known to modify data, schema or privileges.
WRITE_KEYWORDS: frozenset[str] = frozenset({
    "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER", "TRUNCATE", "GRANT", "REVOKE",
})

# Commands that reach beyond a single database and are therefore refused
# under every policy.
_ESCAPE_KEYWORDS: frozenset[str] = frozenset({"GRANT", "REVOKE", "COPY"})
_ESCAPE_VERBS: frozenset[str] = frozenset({"CREATE", "DROP", "ALTER"})
_ESCAPE_OBJECTS: frozenset[str] = frozenset({"DATABASE", "SCHEMA", "USER", "ROLE"})

# Modifiers that may sit between a DDL verb and its object type.
_DDL_MODIFIERS: frozenset[str] = frozenset({"UNIQUE", "TEMP", "TEMPORARY", "UNLOGGED"})

_KIND_BY_KEYWORD: dict[str, CommandKind] = {
    **{keyword: CommandKind.SELECT for keyword in READ_KEYWORDS},
    "INSERT": CommandKind.INSERT,
    "UPDATE": CommandKind.UPDATE,
    "DELETE": CommandKind.DELETE,
    "CREATE": CommandKind.CREATE,
    "ALTER": CommandKind.ALTER,
    "DROP": CommandKind.DROP,
}


@dataclass(frozen=True)
class CommandPolicy:
    """Which leading keywords a policy accepts.

    ``allowed_objects`` restricts DDL verbs to the listed object types
    (``CREATE`` -> ``{"TABLE", ...}``); a verb absent from it is accepted
    with any object.
    """

    name: StatementPolicy
    allowed_keywords: frozenset[str]
    allowed_objects: dict[str, frozenset[str]] = field(default_factory=dict)


READ_ONLY_POLICY = CommandPolicy(
    name=StatementPolicy.READ_ONLY,
    allowed_keywords=READ_KEYWORDS,
)

MANIPULATION_POLICY = CommandPolicy(
    name=StatementPolicy.MANIPULATION,
    allowed_keywords=READ_KEYWORDS | {"INSERT", "UPDATE", "DELETE", "CREATE", "ALTER", "DROP"},
    allowed_objects={
        "CREATE": frozenset({"TABLE", "INDEX", "SEQUENCE"}),
        "ALTER": frozenset({"TABLE"}),
        "DROP": frozenset({"TABLE", "INDEX", "SEQUENCE"}),
    },
)


def _keywords(statement: str, limit: int = 4) -> list[str]:
    """Upper-cased leading letters of the first *limit* whitespace tokens."""
    words: list[str] = []
    for token in statement.split(None, limit)[:limit]:
        match = _WORD_RE.match(token)
        words.append(match.group(0).upper() if match else "")
    return words


def _ddl_object(keywords: list[str]) -> str:
    """Object type following a DDL verb, skipping modifiers like ``UNIQUE``."""
    for word in keywords[1:]:
        if word not in _DDL_MODIFIERS:
            return word
    return ""


def classify(statement: str) -> CommandKind:
    """Return the :class:`CommandKind` of *statement*'s leading keyword.

    Unknown keywords classify as ``REJECTED``; no policy is applied.
    """
    keywords = _keywords(statement, limit=1)
    if not keywords:
        return CommandKind.REJECTED
    return _KIND_BY_KEYWORD.get(keywords[0], CommandKind.REJECTED)


def _reject_sandbox_escape(keywords: list[str]) -> None:
    keyword = keywords[0]
    if keyword in _ESCAPE_KEYWORDS:
        raise ForbiddenCommand(f"{keyword} statements are never allowed.")
    if keyword in _ESCAPE_VERBS and _ddl_object(keywords) in _ESCAPE_OBJECTS:
        raise ForbiddenCommand(
            f"{keyword} {_ddl_object(keywords)} statements are never allowed."
        )


def validate(statement: str, policy: CommandPolicy) -> CommandKind:
    """Check a single statement against *policy* and return its kind.

    Raises
    ------
    EmptyScript
        The statement is blank.
    MultipleStatements
        The text contains more than one statement.
    ForbiddenCommand
        The command is known but not permitted by *policy*, or it would
        escape the per-database sandbox.
    UnrecognizedCommand
        The leading keyword is not a known command.
    """
    statements = split_statements(statement)
    if len(statements) > 1:
        raise MultipleStatements(
            f"Only one statement per request is allowed, got {len(statements)}."
        )

    keywords = _keywords(statements[0])
    keyword = keywords[0]
    _reject_sandbox_escape(keywords)

    if keyword in policy.allowed_keywords:
        allowed_objects = policy.allowed_objects.get(keyword)
        if allowed_objects is not None and _ddl_object(keywords) not in allowed_objects:
            raise ForbiddenCommand(
                f"{keyword} {_ddl_object(keywords) or '<missing object>'} is not allowed; "
                f"supported objects: {', '.join(sorted(allowed_objects))}."
            )
        return _KIND_BY_KEYWORD[keyword]

    if keyword in WRITE_KEYWORDS:
        raise ForbiddenCommand(
            f"{keyword} is not allowed under the {policy.name.value.lower()} policy."
        )
    raise UnrecognizedCommand(
        f"Unrecognized command {keyword or statements[0][:20]!r}."
    )


def validate_read_only(statement: str) -> CommandKind:
    """Validate an ad hoc inspection query."""
    return validate(statement, READ_ONLY_POLICY)


def validate_manipulation(statement: str) -> CommandKind:
    """Validate a statement for execution inside a per-user copy."""
    return validate(statement, MANIPULATION_POLICY)


def reject_script_escapes(statements: Sequence[str], first_index: int = 1) -> None:
    """Refuse imported script statements that reach beyond their database.

    Imported scripts run with the service's own privileges, so the
    commands forbidden under every policy are refused here as well.
    Leading comments are skipped before the check.  *first_index* is the
    script position of ``statements[0]``.

    Raises
    ------
    ForbiddenCommand
        Naming the 1-based position of the first offending statement.
    """
    for index, statement in enumerate(statements, start=first_index):
        keywords = _keywords(_LEADING_COMMENTS_RE.sub("", statement, count=1))
        if not keywords:
            continue
        try:
            _reject_sandbox_escape(keywords)
        except ForbiddenCommand as exc:
            raise ForbiddenCommand(f"Statement {index}: {exc.message}") from exc
