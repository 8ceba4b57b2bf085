"""Per-user ephemeral database copies.

Destructive exercise statements never run against an instructor's
database.  Each (logical database, requester) pair gets its own physical
clone, created on first use and leased for a fixed time window::

    ABSENT --ensure_copy--> PROVISIONING --clone + record--> ACTIVE
    ACTIVE --ensure_copy--> ACTIVE            (last_used_at bumped)
    ACTIVE --reset_copy / sweep / expiry--> ABSENT

There are no locks here.  Concurrent provisioning for the same pair is
settled by the repository's atomic insert: the loser drops its redundant
clone and adopts the winner's copy.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Callable
from uuid import uuid4

from sql_sandbox.driver.base import DatabaseDriver, DriverError
from sql_sandbox.errors import ProvisioningFailed, classify_driver_error
from sql_sandbox.models.database import MAX_NAME_LENGTH, DatabaseCopy
from sql_sandbox.models.enums import CopyState
from sql_sandbox.repository.base import Repository

logger = logging.getLogger(__name__)

DEFAULT_COPY_TTL = timedelta(hours=4)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def generate_copy_name(logical_name: str, requester_id: int, now: datetime) -> str:
    """Unique physical name derived from database, requester and time.

    The logical part is shortened so the result fits PostgreSQL's
    63-character identifier limit.
    """
    suffix = f"_u{requester_id}_{int(now.timestamp() * 1000)}{uuid4().hex[:4]}"
    prefix = logical_name.lower()[: MAX_NAME_LENGTH - len(suffix)]
    return f"{prefix}{suffix}"


class CopyManager:
    """Creates, leases, refreshes and reaps per-user database copies.

    Parameters
    ----------
    repository:
        Store for copy records; must provide an atomic insert-if-absent.
    driver:
        Database driver used to clone and drop physical databases.
    ttl:
        Lease length of a freshly provisioned copy.
    clock:
        Returns the current UTC time; replaceable in tests.
    """

    def __init__(
        self,
        repository: Repository,
        driver: DatabaseDriver,
        ttl: timedelta = DEFAULT_COPY_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._driver = driver
        self._ttl = ttl
        self._clock = clock
        self._provisioning: set[tuple[str, int]] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ensure_copy(self, logical_name: str, requester_id: int) -> str:
        """Return the physical name of the requester's live copy, creating it
        if necessary.

        Safe to call concurrently; once a copy is active every call returns
        the same name until the copy is reset or expires.

        Raises
        ------
        ProvisioningFailed
            The physical clone could not be created.  No record is stored.
        """
        now = self._clock()
        existing = await self._repository.get_copy(logical_name, requester_id)
        if existing is not None:
            if not existing.is_expired(now):
                await self._repository.touch_copy(logical_name, requester_id, now)
                return existing.copy_name

            logger.info(
                "Copy %s of %s for requester %s expired at %s, replacing it",
                existing.copy_name,
                logical_name,
                requester_id,
                existing.expires_at.isoformat(),
            )
            try:
                await self._discard(existing)
            except DriverError as exc:
                raise ProvisioningFailed(
                    f"Could not remove expired copy of {logical_name!r}: {exc.message}"
                ) from exc

        key = (logical_name, requester_id)
        self._provisioning.add(key)
        try:
            return await self._provision(logical_name, requester_id, now)
        finally:
            self._provisioning.discard(key)

    async def reset_copy(self, logical_name: str, requester_id: int) -> bool:
        """Drop the requester's copy and forget it.

        Returns ``False`` if there was no copy to reset.
        """
        existing = await self._repository.get_copy(logical_name, requester_id)
        if existing is None:
            return False
        try:
            await self._discard(existing)
        except DriverError as exc:
            raise classify_driver_error(exc) from exc
        logger.info(
            "Reset copy %s of %s for requester %s",
            existing.copy_name,
            logical_name,
            requester_id,
        )
        return True

    async def sweep_expired_copies(self, now: datetime | None = None) -> int:
        """Drop every copy whose lease ended strictly before *now*.

        A copy whose physical drop fails is logged and left in place for the
        next sweep; the others are still processed.  Returns the number of
        copies actually removed.
        """
        now = now or self._clock()
        deleted = 0
        for copy in await self._repository.list_expired_copies(now):
            try:
                await self._driver.drop_database(copy.copy_name)
            except DriverError as exc:
                logger.warning(
                    "Failed to drop expired copy %s of %s: %s",
                    copy.copy_name,
                    copy.logical_name,
                    exc.message,
                )
                continue
            await self._delete_record_if_current(copy)
            deleted += 1

        if deleted:
            logger.info("Swept %d expired database copies", deleted)
        return deleted

    async def drop_all_copies(self, logical_name: str) -> int:
        """Remove every copy of *logical_name*; used when it is deleted."""
        dropped = 0
        for copy in await self._repository.list_copies(logical_name):
            try:
                await self._discard(copy)
            except DriverError as exc:
                raise classify_driver_error(exc) from exc
            dropped += 1
        return dropped

    async def state_of(self, logical_name: str, requester_id: int) -> CopyState:
        """Lifecycle state of the requester's copy as seen by this manager.

        ``PROVISIONING`` is only known to the manager running the clone; other
        instances report ``ABSENT`` until the record is inserted.
        """
        if (logical_name, requester_id) in self._provisioning:
            return CopyState.PROVISIONING
        existing = await self._repository.get_copy(logical_name, requester_id)
        if existing is None or existing.is_expired(self._clock()):
            return CopyState.ABSENT
        return CopyState.ACTIVE

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _provision(self, logical_name: str, requester_id: int, now: datetime) -> str:
        copy_name = generate_copy_name(logical_name, requester_id, now)
        logger.info(
            "Provisioning copy %s of %s for requester %s",
            copy_name,
            logical_name,
            requester_id,
        )

        try:
            # A template database must not have other sessions while cloning.
            await self._driver.terminate_connections(logical_name)
            await self._driver.clone_database(logical_name, copy_name)
        except DriverError as exc:
            raise ProvisioningFailed(
                f"Could not create a copy of {logical_name!r}: {exc.message}"
            ) from exc

        record = DatabaseCopy(
            copy_name=copy_name,
            logical_name=logical_name,
            requester_id=requester_id,
            created_at=now,
            last_used_at=now,
            expires_at=now + self._ttl,
        )
        try:
            inserted = await self._repository.insert_copy_if_absent(record)
        except Exception:
            await self._drop_quietly(copy_name)
            raise

        if inserted:
            return copy_name

        logger.info(
            "Copy of %s for requester %s was provisioned concurrently, discarding %s",
            logical_name,
            requester_id,
            copy_name,
        )
        await self._drop_quietly(copy_name)
        winner = await self._repository.get_copy(logical_name, requester_id)
        if winner is None:
            raise ProvisioningFailed(
                f"Copy of {logical_name!r} disappeared while it was being provisioned."
            )
        await self._repository.touch_copy(logical_name, requester_id, now)
        return winner.copy_name

    async def _discard(self, copy: DatabaseCopy) -> None:
        await self._driver.drop_database(copy.copy_name)
        await self._delete_record_if_current(copy)

    async def _delete_record_if_current(self, copy: DatabaseCopy) -> None:
        # The pair may already have a newer copy; never delete that one.
        current = await self._repository.get_copy(copy.logical_name, copy.requester_id)
        if current is not None and current.copy_name == copy.copy_name:
            await self._repository.delete_copy(copy.logical_name, copy.requester_id)

    async def _drop_quietly(self, copy_name: str) -> None:
        try:
            await self._driver.drop_database(copy_name)
        except DriverError as exc:
            logger.error("Failed to drop orphaned copy %s: %s", copy_name, exc.message)
