"""LogicalDatabase and DatabaseCopy records."""

from __future__ import annotations

import re
from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

DATABASE_NAME_RE: re.Pattern[str] = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
MIN_NAME_LENGTH = 3
MAX_NAME_LENGTH = 63


def is_valid_database_name(name: str) -> bool:
    """Return ``True`` if *name* is an acceptable logical database name."""
    return MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH and bool(DATABASE_NAME_RE.match(name))


class LogicalDatabase(BaseModel):
    """An instructor-owned, durable database definition."""

    name: str = Field(
        description="Unique database name; also the physical database name on the server.",
    )
    owner_id: int | None = Field(
        default=None,
        description="Identifier of the instructor who created the database.",
    )
    description: str | None = Field(
        default=None,
        description="Optional free-text description shown to instructors.",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="UTC timestamp when the database was registered.",
    )

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not is_valid_database_name(value):
            raise ValueError(
                f"Invalid database name {value!r}: must match "
                f"{DATABASE_NAME_RE.pattern} and be {MIN_NAME_LENGTH}-{MAX_NAME_LENGTH} characters"
            )
        return value


class DatabaseCopy(BaseModel):
    """An ephemeral physical clone of a logical database for one requester."""

    copy_name: str = Field(
        max_length=MAX_NAME_LENGTH,
        description="Generated physical database name of the clone.",
    )
    logical_name: str = Field(
        description="Name of the logical database this copy was cloned from.",
    )
    requester_id: int = Field(
        description="Identifier of the user the copy belongs to.",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="UTC timestamp when the copy was provisioned.",
    )
    last_used_at: datetime | None = Field(
        default=None,
        description="UTC timestamp of the most recent use, if any.",
    )
    expires_at: datetime = Field(
        description="UTC timestamp after which the copy may be reaped.",
    )

    def is_expired(self, now: datetime) -> bool:
        """A copy expires once its expiry lies strictly in the past."""
        return self.expires_at < now
