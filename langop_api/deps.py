from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from fastapi import Depends, Header, HTTPException, Request
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from langop_api.config import settings
from langop_api.database import async_session
from langop_api.k8s import QuotaCluster
from langop_api.quota.locks import OrgLocks
from langop_api.quota.reconciler import QuotaReconciler
from langop_api.quota.snapshot import QuotaSnapshotReader
from langop_api.quota.store import OrganizationStore

_redis_pool: aioredis.Redis | None = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def get_redis() -> aioredis.Redis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(settings.redis_url, decode_responses=True)
    return _redis_pool


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None


async def get_current_user_id(
    request: Request,
    x_user_id: str | None = Header(None),
) -> str:
    """Extract user id from JWT Bearer token, with debug fallback to X-User-Id header."""
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.removeprefix("Bearer ")
        try:
            payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
            return payload["sub"]
        except (JWTError, KeyError):
            raise HTTPException(status_code=401, detail="Invalid or expired token")

    if settings.debug and x_user_id:
        return x_user_id

    raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")


async def get_cluster(request: Request) -> QuotaCluster:
    cluster = getattr(request.app.state, "cluster", None)
    if cluster is None:
        raise HTTPException(status_code=503, detail="Kubernetes API not available")
    return cluster


async def get_org_locks(request: Request) -> OrgLocks:
    return request.app.state.org_locks


async def get_organization_store() -> OrganizationStore:
    return OrganizationStore(async_session)


async def get_snapshot_reader(cluster: QuotaCluster = Depends(get_cluster)) -> QuotaSnapshotReader:
    return QuotaSnapshotReader(cluster, warn_threshold=settings.quota_warn_threshold)


async def get_reconciler(
    store: OrganizationStore = Depends(get_organization_store),
    cluster: QuotaCluster = Depends(get_cluster),
    locks: OrgLocks = Depends(get_org_locks),
    reader: QuotaSnapshotReader = Depends(get_snapshot_reader),
) -> QuotaReconciler:
    return QuotaReconciler(store, cluster, locks, reader, apply_timeout=settings.k8s_apply_timeout)
