"""Redis-backed repository.

Provides :class:`RedisRepository` -- the production :class:`Repository`
storing logical databases and copy records as JSON strings.  Copy
uniqueness per (database, requester) pair is guaranteed by ``SET NX`` on
the copy key, so several service instances can share one Redis without any
application-level locking.
"""

from __future__ import annotations

import logging
from datetime import datetime

import redis.asyncio as redis

from sql_sandbox.models.database import DatabaseCopy, LogicalDatabase
from sql_sandbox.repository.base import Repository

logger = logging.getLogger(__name__)

# Redis key prefixes / names
DB_PREFIX = "sqlsandbox:db:"
DB_INDEX_KEY = "sqlsandbox:dbs"
COPY_PREFIX = "sqlsandbox:copy:"
COPY_EXPIRY_KEY = "sqlsandbox:copies:expiry"
COPIES_BY_DB_PREFIX = "sqlsandbox:copies:db:"
WORKSHEET_REFS_KEY = "sqlsandbox:worksheet_refs"


def _text(raw: bytes | str) -> str:
    return raw.decode() if isinstance(raw, bytes) else raw


def _copy_member(logical_name: str, requester_id: int) -> str:
    return f"{logical_name}:{requester_id}"


class RedisRepository(Repository):
    """Repository on top of a Redis server.

    Parameters
    ----------
    redis_client:
        An ``redis.asyncio.Redis`` instance connected to the Redis server.
    """

    def __init__(self, redis_client: redis.Redis) -> None:
        self._redis = redis_client

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def health_check(self) -> bool:
        """Return ``True`` if Redis is reachable."""
        try:
            return await self._redis.ping()
        except redis.RedisError:
            return False

    # ------------------------------------------------------------------
    # Logical databases
    # ------------------------------------------------------------------

    async def get_database(self, name: str) -> LogicalDatabase | None:
        raw = await self._redis.get(f"{DB_PREFIX}{name}")
        if raw is None:
            return None
        return LogicalDatabase.model_validate_json(_text(raw))

    async def list_databases(self, owner_id: int | None = None) -> list[LogicalDatabase]:
        names = sorted(_text(raw) for raw in await self._redis.smembers(DB_INDEX_KEY))
        if not names:
            return []
        raws = await self._redis.mget([f"{DB_PREFIX}{name}" for name in names])
        databases = [
            LogicalDatabase.model_validate_json(_text(raw)) for raw in raws if raw is not None
        ]
        if owner_id is not None:
            databases = [db for db in databases if db.owner_id == owner_id]
        return databases

    async def add_database(self, database: LogicalDatabase) -> bool:
        created = await self._redis.set(
            f"{DB_PREFIX}{database.name}",
            database.model_dump_json(),
            nx=True,
        )
        if not created:
            return False
        await self._redis.sadd(DB_INDEX_KEY, database.name)
        logger.debug("Registered database %s", database.name)
        return True

    async def delete_database(self, name: str) -> None:
        await self._redis.delete(f"{DB_PREFIX}{name}")
        await self._redis.srem(DB_INDEX_KEY, name)
        await self._redis.hdel(WORKSHEET_REFS_KEY, name)

    async def worksheet_reference_count(self, name: str) -> int:
        raw = await self._redis.hget(WORKSHEET_REFS_KEY, name)
        return int(_text(raw)) if raw is not None else 0

    async def add_worksheet_reference(self, name: str) -> int:
        """Record that one more worksheet uses *name*; return the new count."""
        return await self._redis.hincrby(WORKSHEET_REFS_KEY, name, 1)

    async def remove_worksheet_reference(self, name: str) -> int:
        """Record that a worksheet stopped using *name*; return the new count."""
        count = await self._redis.hincrby(WORKSHEET_REFS_KEY, name, -1)
        if count <= 0:
            await self._redis.hdel(WORKSHEET_REFS_KEY, name)
            return 0
        return count

    # ------------------------------------------------------------------
    # Copies
    # ------------------------------------------------------------------

    async def get_copy(self, logical_name: str, requester_id: int) -> DatabaseCopy | None:
        raw = await self._redis.get(f"{COPY_PREFIX}{_copy_member(logical_name, requester_id)}")
        if raw is None:
            return None
        return DatabaseCopy.model_validate_json(_text(raw))

    async def insert_copy_if_absent(self, copy: DatabaseCopy) -> bool:
        member = _copy_member(copy.logical_name, copy.requester_id)
        created = await self._redis.set(
            f"{COPY_PREFIX}{member}",
            copy.model_dump_json(),
            nx=True,
        )
        if not created:
            return False
        await self._redis.zadd(COPY_EXPIRY_KEY, {member: copy.expires_at.timestamp()})
        await self._redis.sadd(f"{COPIES_BY_DB_PREFIX}{copy.logical_name}", copy.requester_id)
        return True

    async def touch_copy(self, logical_name: str, requester_id: int, used_at: datetime) -> None:
        existing = await self.get_copy(logical_name, requester_id)
        if existing is None:
            return
        updated = existing.model_copy(update={"last_used_at": used_at})
        # XX: never resurrect a record deleted in the meantime.
        await self._redis.set(
            f"{COPY_PREFIX}{_copy_member(logical_name, requester_id)}",
            updated.model_dump_json(),
            xx=True,
        )

    async def delete_copy(self, logical_name: str, requester_id: int) -> None:
        member = _copy_member(logical_name, requester_id)
        await self._redis.delete(f"{COPY_PREFIX}{member}")
        await self._redis.zrem(COPY_EXPIRY_KEY, member)
        await self._redis.srem(f"{COPIES_BY_DB_PREFIX}{logical_name}", requester_id)

    async def list_copies(self, logical_name: str) -> list[DatabaseCopy]:
        copies: list[DatabaseCopy] = []
        for raw_id in await self._redis.smembers(f"{COPIES_BY_DB_PREFIX}{logical_name}"):
            copy = await self.get_copy(logical_name, int(_text(raw_id)))
            if copy is not None:
                copies.append(copy)
        return copies

    async def list_expired_copies(self, now: datetime) -> list[DatabaseCopy]:
        # "(" makes the upper bound exclusive: expiry strictly before now.
        members = await self._redis.zrangebyscore(
            COPY_EXPIRY_KEY, "-inf", f"({now.timestamp()}"
        )
        expired: list[DatabaseCopy] = []
        for raw_member in members:
            member = _text(raw_member)
            raw = await self._redis.get(f"{COPY_PREFIX}{member}")
            if raw is None:
                logger.debug("Dropping stale expiry entry %s", member)
                await self._redis.zrem(COPY_EXPIRY_KEY, member)
                continue
            expired.append(DatabaseCopy.model_validate_json(_text(raw)))
        return expired

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying Redis connection."""
        await self._redis.aclose()
