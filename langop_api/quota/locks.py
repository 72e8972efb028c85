"""Per-organization locks serializing quota updates."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import LockNotOwnedError

from .errors import ConflictError

logger = logging.getLogger(__name__)


def lock_key(organization_id: str) -> str:
    return f"quota:lock:{organization_id}"


class OrgLocks(Protocol):
    def hold(self, organization_id: str) -> AbstractAsyncContextManager[None]: ...


class RedisOrgLocks:
    """Redis-backed locks, shared by every API replica."""

    def __init__(self, redis: aioredis.Redis, *, timeout: int = 60, blocking_timeout: float = 15) -> None:
        self.redis = redis
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    @asynccontextmanager
    async def hold(self, organization_id: str) -> AsyncIterator[None]:
        lock = self.redis.lock(
            lock_key(organization_id),
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        if not await lock.acquire(blocking=True):
            logger.warning("Could not acquire quota lock for organization %s", organization_id)
            raise ConflictError("Another quota update is in progress for this organization")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockNotOwnedError:
                # Lock expired mid-operation; nothing left to release.
                logger.warning("Quota lock for organization %s expired before release", organization_id)


class LocalOrgLocks:
    """In-process locks for single-worker deployments and tests."""

    def __init__(self, *, blocking_timeout: float = 15) -> None:
        self.blocking_timeout = blocking_timeout
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, organization_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(organization_id, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.blocking_timeout)
        except asyncio.TimeoutError:
            logger.warning("Could not acquire quota lock for organization %s", organization_id)
            raise ConflictError("Another quota update is in progress for this organization") from None
        try:
            yield
        finally:
            lock.release()
