"""Split multi-statement SQL scripts into standalone statements.

The scanner walks the script once and is always in exactly one of three
modes:

* *plain* -- a ``;`` ends the current statement;
* *quoted literal* -- inside ``'...'`` or ``"..."``, where a doubled quote
  character is an escaped quote;
* *delimited block* -- inside a PostgreSQL dollar-quoted block
  ``$tag$ ... $tag$`` (``tag`` may be empty and must match on close).

Semicolons are only honoured in plain mode.  An unterminated literal or
block simply runs to the end of the input.
"""

from __future__ import annotations

import re

from sql_sandbox.errors import EmptyScript

# Opening/closing marker of a dollar-quoted block.  The tag follows the
# identifier rules but may not start with a digit, so ``$1`` placeholders
# are never mistaken for a block.
_DOLLAR_TAG_RE: re.Pattern[str] = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")

_WHITESPACE_RE: re.Pattern[str] = re.compile(r"\s+")

_QUOTES = ("'", '"')


def _skip_quoted(script: str, pos: int, quote: str) -> int:
    """Return the index just past the literal whose body starts at *pos*."""
    length = len(script)
    while pos < length:
        if script[pos] == quote:
            if pos + 1 < length and script[pos + 1] == quote:
                pos += 2
                continue
            return pos + 1
        pos += 1
    return length


def _dollar_marker_at(script: str, pos: int) -> str | None:
    """Return the ``$tag$`` marker starting at *pos*, if there is one.

    A ``$`` that continues an identifier (``price$usd$``) does not open a
    block.
    """
    if pos > 0 and (script[pos - 1].isalnum() or script[pos - 1] == "_"):
        return None
    match = _DOLLAR_TAG_RE.match(script, pos)
    return match.group(0) if match else None


def split_statements(script: str) -> list[str]:
    """Split *script* into an ordered list of trimmed statements.

    Empty statements (``;;``) are dropped.  Text after the last ``;`` is a
    statement of its own if it is not blank.

    Raises
    ------
    EmptyScript
        If the script contains no statement at all.
    """
    statements: list[str] = []
    start = 0
    pos = 0
    length = len(script)

    while pos < length:
        char = script[pos]

        if char in _QUOTES:
            pos = _skip_quoted(script, pos + 1, char)
            continue

        if char == "$":
            marker = _dollar_marker_at(script, pos)
            if marker is not None:
                close = script.find(marker, pos + len(marker))
                pos = length if close == -1 else close + len(marker)
                continue

        if char == ";":
            _append_statement(statements, script[start:pos])
            start = pos + 1

        pos += 1

    _append_statement(statements, script[start:])

    if not statements:
        raise EmptyScript("The SQL script does not contain any statements.")
    return statements


def _append_statement(statements: list[str], text: str) -> None:
    text = text.strip()
    if text:
        statements.append(text)


def preview(statement: str, limit: int = 80) -> str:
    """Single-line, truncated rendering of *statement* for error messages."""
    flat = _WHITESPACE_RE.sub(" ", statement).strip()
    if len(flat) <= limit:
        return flat
    return flat[: limit - 3] + "..."
