"""Quota endpoints.

The organization-scoped family (``/api/{org_id}/quota``) serves the
dashboard of the active organization; the cluster-scoped family
(``/api/organizations/{id}/quota``) serves the admin console. Both go
through ``read_quota`` / ``write_quota`` so they cannot drift apart.
"""

import logging

from fastapi import APIRouter, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from langop_api.deps import (
    get_current_user_id,
    get_db,
    get_organization_store,
    get_reconciler,
    get_snapshot_reader,
)
from langop_api.permissions import require_permission
from langop_api.quota.errors import NotFoundError, QuotaError, ValidationError
from langop_api.quota.reconciler import QuotaReconciler
from langop_api.quota.snapshot import QuotaSnapshotReader
from langop_api.quota.store import OrganizationRecord, OrganizationStore
from langop_api.schemas import QuotaData, QuotaResponse, QuotaUpdateRequest

logger = logging.getLogger(__name__)

org_router = APIRouter(prefix="/api/{org_id}", tags=["quota"])
admin_router = APIRouter(prefix="/api/organizations", tags=["quota"])


# ---------------------------------------------------------------------------
# Shared handlers
# ---------------------------------------------------------------------------


async def _find_organization(store: OrganizationStore, organization_id: str) -> OrganizationRecord:
    # 404 comes before the permission check.
    org = await store.find_organization(organization_id)
    if org is None:
        raise NotFoundError("Organization not found")
    return org


async def read_quota(
    organization_id: str,
    user_id: str,
    db: AsyncSession,
    store: OrganizationStore,
    reader: QuotaSnapshotReader,
) -> QuotaResponse:
    org = await _find_organization(store, organization_id)
    await require_permission(db, user_id, organization_id, "view")

    try:
        snapshot = await reader.read(org.namespace)
    except Exception as exc:
        logger.exception("Error fetching quota for organization %s", organization_id)
        raise QuotaError("Failed to fetch organization quota", details=str(exc)) from exc

    return QuotaResponse(data=QuotaData.build(org, snapshot))


async def write_quota(
    organization_id: str,
    body: QuotaUpdateRequest,
    user_id: str,
    db: AsyncSession,
    store: OrganizationStore,
    reconciler: QuotaReconciler,
) -> QuotaResponse:
    await _find_organization(store, organization_id)
    await require_permission(db, user_id, organization_id, "manage_billing")

    outcome = await reconciler.update_quota(organization_id, plan=body.plan, quotas=body.quotas)
    return QuotaResponse(data=QuotaData.build(outcome.organization, outcome.snapshot))


async def get_organization_context(x_organization_id: str | None = Header(None)) -> str:
    if not x_organization_id:
        raise ValidationError("Organization context not found")
    return x_organization_id


def _check_context(org_id: str, context_org_id: str) -> None:
    if org_id != context_org_id:
        raise ValidationError("Organization ID mismatch")


# ---------------------------------------------------------------------------
# /api/{org_id}/quota
# ---------------------------------------------------------------------------


@org_router.get("/quota", response_model=QuotaResponse)
async def get_org_quota(
    org_id: str,
    context_org_id: str = Depends(get_organization_context),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    store: OrganizationStore = Depends(get_organization_store),
    reader: QuotaSnapshotReader = Depends(get_snapshot_reader),
):
    _check_context(org_id, context_org_id)
    return await read_quota(org_id, user_id, db, store, reader)


@org_router.put("/quota", response_model=QuotaResponse)
async def update_org_quota(
    org_id: str,
    body: QuotaUpdateRequest,
    context_org_id: str = Depends(get_organization_context),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    store: OrganizationStore = Depends(get_organization_store),
    reconciler: QuotaReconciler = Depends(get_reconciler),
):
    _check_context(org_id, context_org_id)
    return await write_quota(org_id, body, user_id, db, store, reconciler)


# ---------------------------------------------------------------------------
# /api/organizations/{id}/quota
# ---------------------------------------------------------------------------


@admin_router.get("/{organization_id}/quota", response_model=QuotaResponse)
async def get_organization_quota(
    organization_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    store: OrganizationStore = Depends(get_organization_store),
    reader: QuotaSnapshotReader = Depends(get_snapshot_reader),
):
    return await read_quota(organization_id, user_id, db, store, reader)


@admin_router.put("/{organization_id}/quota", response_model=QuotaResponse)
async def update_organization_quota(
    organization_id: str,
    body: QuotaUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    store: OrganizationStore = Depends(get_organization_store),
    reconciler: QuotaReconciler = Depends(get_reconciler),
):
    return await write_quota(organization_id, body, user_id, db, store, reconciler)
