"""Quota updates: database first, then cluster, with rollback.

The plan is written to the database before the ResourceQuota is applied.
If the apply fails, the previous plan is restored with a compare-and-set so
the database never names a plan the cluster did not receive. Each step
returns a result object and ``update_quota`` branches on those, which keeps
every terminal state (committed, failed, inconsistent) reachable on its own.
"""

import asyncio
import dataclasses
import functools
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from kubernetes.client.exceptions import ApiException

from langop_api.k8s import QuotaCluster

from .errors import (
    ClusterApplyError,
    CompensationError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .locks import OrgLocks
from .plans import CUSTOM_PLAN, validate_plan, validate_quota_spec
from .snapshot import QuotaSnapshot, QuotaSnapshotReader
from .store import OrganizationRecord, OrganizationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaChange:
    plan: str
    quotas: dict[str, str] | None = None


@dataclass(frozen=True)
class PersistResult:
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class ApplyResult:
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class CompensationResult:
    ok: bool
    restored: bool = False
    error: str | None = None


@dataclass(frozen=True)
class QuotaUpdateOutcome:
    organization: OrganizationRecord
    snapshot: QuotaSnapshot


def resolve_change(plan: Any = None, quotas: Any = None) -> QuotaChange:
    """Validate an update request and work out the plan it results in."""
    if plan is None and quotas is None:
        raise ValidationError("Either plan or quotas must be provided", details=["plan", "quotas"])
    if plan is not None and quotas is not None:
        raise ValidationError("Provide either plan or quotas, not both", details=["plan", "quotas"])

    if quotas is not None:
        result = validate_quota_spec(quotas)
        if not result.valid:
            raise ValidationError("Invalid quota specification", details=result.errors)
        return QuotaChange(plan=CUSTOM_PLAN, quotas={k: v.strip() for k, v in quotas.items()})

    result = validate_plan(plan)
    if not result.valid:
        raise ValidationError("Invalid plan", details=result.errors)
    return QuotaChange(plan=plan)


def _upstream_message(exc: BaseException) -> str:
    if isinstance(exc, ApiException):
        try:
            message = json.loads(exc.body or "{}").get("message")
        except (TypeError, ValueError, AttributeError):
            message = None
        return message or f"{exc.status} {exc.reason}"
    return str(exc) or exc.__class__.__name__


class QuotaReconciler:
    def __init__(
        self,
        store: OrganizationStore,
        cluster: QuotaCluster,
        locks: OrgLocks,
        reader: QuotaSnapshotReader,
        *,
        apply_timeout: float = 10.0,
    ) -> None:
        self.store = store
        self.cluster = cluster
        self.locks = locks
        self.reader = reader
        self.apply_timeout = apply_timeout

    # -----------------------------------------------------------------------
    # Steps
    # -----------------------------------------------------------------------

    async def _persist(self, organization_id: str, plan: str) -> PersistResult:
        try:
            await self.store.update_organization_plan(organization_id, plan)
        except Exception as exc:
            logger.exception("Failed to persist plan %s for organization %s", plan, organization_id)
            return PersistResult(ok=False, error=str(exc))
        return PersistResult(ok=True)

    async def _apply(self, org: OrganizationRecord, change: QuotaChange) -> ApplyResult:
        if change.quotas is None:
            call = functools.partial(self.cluster.update_resource_quota, org.namespace, change.plan, org.id)
        else:
            call = functools.partial(
                self.cluster.update_resource_quota_with_custom_spec, org.namespace, change.quotas, org.id
            )
        worker = asyncio.ensure_future(asyncio.to_thread(call))
        try:
            await asyncio.wait_for(asyncio.shield(worker), timeout=self.apply_timeout)
        except Exception as exc:
            # The client raises TimeoutError too; only an unfinished worker
            # means the deadline passed.
            if not worker.done():
                return await self._settle(org, worker)
            return ApplyResult(ok=False, error=_upstream_message(exc))
        return ApplyResult(ok=True)

    async def _settle(self, org: OrganizationRecord, worker: asyncio.Future) -> ApplyResult:
        # A thread cannot be interrupted. Its write may still land, so the
        # outcome is whatever it ends with; the client's request budget,
        # below apply_timeout, bounds the wait.
        logger.warning(
            "ResourceQuota apply for organization %s still running after %gs; waiting for it to settle",
            org.id, self.apply_timeout,
        )
        try:
            await worker
        except Exception as exc:
            return ApplyResult(
                ok=False,
                error=f"ResourceQuota apply timed out after {self.apply_timeout:g}s: {_upstream_message(exc)}",
            )
        logger.warning(
            "ResourceQuota apply for organization %s landed after the %gs deadline", org.id, self.apply_timeout
        )
        return ApplyResult(ok=True)

    async def _compensate(self, organization_id: str, written: str, previous: str) -> CompensationResult:
        try:
            restored = await self.store.compare_and_set_plan(organization_id, expected=written, plan=previous)
        except Exception as exc:
            return CompensationResult(ok=False, error=str(exc) or exc.__class__.__name__)
        return CompensationResult(ok=True, restored=restored)

    # -----------------------------------------------------------------------
    # Update
    # -----------------------------------------------------------------------

    async def update_quota(
        self,
        organization_id: str,
        plan: str | None = None,
        quotas: Mapping[str, str] | None = None,
    ) -> QuotaUpdateOutcome:
        change = resolve_change(plan, quotas)

        async with self.locks.hold(organization_id):
            org = await self.store.find_organization(organization_id)
            if org is None:
                raise NotFoundError("Organization not found")
            previous_plan = org.plan

            logger.info(
                "Updating quota for organization %s (%s): %s -> %s",
                org.id, org.namespace, previous_plan, change.plan,
            )

            persisted = await self._persist(org.id, change.plan)
            if not persisted.ok:
                raise PersistenceError("Failed to update organization plan", details=persisted.error)

            applied = await self._apply(org, change)
            if not applied.ok:
                logger.warning(
                    "ResourceQuota apply failed for organization %s: %s; restoring plan %s",
                    org.id, applied.error, previous_plan,
                )
                compensation = await self._compensate(org.id, written=change.plan, previous=previous_plan)
                if not compensation.ok:
                    logger.error(
                        "Organization %s is inconsistent: plan %s was written but not applied, "
                        "and restoring plan %s failed (%s). Manual reconciliation required.",
                        org.id, change.plan, previous_plan, compensation.error,
                    )
                    raise CompensationError(
                        "Quota update failed and the plan could not be restored",
                        org_id=org.id,
                        attempted_plan=change.plan,
                        previous_plan=previous_plan,
                        apply_error=applied.error or "",
                        rollback_error=compensation.error or "",
                    )
                if not compensation.restored:
                    logger.warning(
                        "Plan for organization %s changed since it was written; rollback to %s skipped",
                        org.id, previous_plan,
                    )
                raise ClusterApplyError("Failed to update Kubernetes quotas", details=applied.error)

        logger.info("Applied plan %s to organization %s", change.plan, org.id)
        snapshot = await self.reader.read(org.namespace)
        return QuotaUpdateOutcome(organization=dataclasses.replace(org, plan=change.plan), snapshot=snapshot)
