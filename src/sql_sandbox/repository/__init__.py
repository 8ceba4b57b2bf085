"""Persistence for logical databases and their per-user copies."""

from sql_sandbox.repository.base import Repository
from sql_sandbox.repository.memory import InMemoryRepository
from sql_sandbox.repository.redis_repository import RedisRepository

__all__ = [
    "InMemoryRepository",
    "RedisRepository",
    "Repository",
]
