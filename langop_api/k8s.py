import logging
import time
from dataclasses import dataclass, field
from typing import Protocol

from kubernetes import config
from kubernetes.client import (
    CoreV1Api,
    CustomObjectsApi,
    V1ObjectMeta,
    V1ResourceQuota,
    V1ResourceQuotaSpec,
)
from kubernetes.client.exceptions import ApiException

from .quota.plans import CUSTOM_PLAN, ValidationResult, get_quota_hard, validate_quota_spec

logger = logging.getLogger(__name__)

CRD_GROUP = "langop.io"
CRD_VERSION = "v1alpha1"

# Custom resources Kubernetes does not count on its own; usage is filled in
# by listing the objects when the quota tracks them.
COUNTED_PLURALS = (
    "languagemodels",
    "languageagents",
    "languageclusters",
    "languagetools",
    "languagepersonas",
)


@dataclass(frozen=True)
class QuotaUsage:
    quota: dict[str, str] = field(default_factory=dict)
    used: dict[str, str] = field(default_factory=dict)


class QuotaCluster(Protocol):
    """What the quota engine needs from the cluster."""

    def get_resource_quota_usage(self, namespace: str) -> QuotaUsage: ...

    def update_resource_quota(self, namespace: str, plan: str, organization_id: str) -> None: ...

    def update_resource_quota_with_custom_spec(
        self, namespace: str, spec: dict[str, str], organization_id: str
    ) -> None: ...


def quota_name(namespace: str) -> str:
    return f"{namespace}-quota"


def init_k8s(request_timeout: float | None = None) -> "KubernetesQuotaClient | None":
    """Load kubeconfig, in-cluster first with a local fallback."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster K8s config")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.info("Loaded local kubeconfig")
        except Exception:
            logger.warning("No K8s config found; quota endpoints will return 503")
            return None
    return KubernetesQuotaClient(CoreV1Api(), CustomObjectsApi(), request_timeout=request_timeout)


class KubernetesQuotaClient:
    def __init__(
        self,
        core_v1: CoreV1Api,
        custom_objects: CustomObjectsApi,
        request_timeout: float | None = None,
    ) -> None:
        self.core_v1 = core_v1
        self.custom_objects = custom_objects
        self.request_timeout = request_timeout

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get_resource_quota_usage(self, namespace: str) -> QuotaUsage:
        name = quota_name(namespace)
        try:
            rq = self.core_v1.read_namespaced_resource_quota(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                logger.info("No resource quota %s in %s", name, namespace)
                return QuotaUsage()
            raise

        quota = dict((rq.spec.hard if rq.spec else None) or {})
        used = dict((rq.status.used if rq.status else None) or {})

        for plural in COUNTED_PLURALS:
            key = f"count/{plural}"
            if key in quota and key not in used:
                used[key] = str(self._count_custom_objects(namespace, plural))

        return QuotaUsage(quota=quota, used=used)

    def _count_custom_objects(self, namespace: str, plural: str) -> int:
        try:
            result = self.custom_objects.list_namespaced_custom_object(
                group=CRD_GROUP,
                version=CRD_VERSION,
                namespace=namespace,
                plural=plural,
            )
        except ApiException as e:
            logger.error("Failed to count %s in %s: %s", plural, namespace, e.reason)
            return 0
        return len(result.get("items") or [])

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def _build_quota(self, namespace: str, hard: dict[str, str], plan: str, organization_id: str) -> V1ResourceQuota:
        return V1ResourceQuota(
            metadata=V1ObjectMeta(
                name=quota_name(namespace),
                namespace=namespace,
                labels={
                    "langop.io/organization-id": organization_id,
                    "langop.io/plan": plan.lower(),
                    "langop.io/resource": "quota",
                },
            ),
            spec=V1ResourceQuotaSpec(hard=hard),
        )

    def _remaining(self, deadline: float | None) -> dict:
        """``_request_timeout`` for the next call, out of what is left of the budget."""
        if deadline is None:
            return {}
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError(f"ResourceQuota apply exceeded its {self.request_timeout:g}s budget")
        return {"_request_timeout": remaining}

    def _apply(self, namespace: str, body: V1ResourceQuota) -> None:
        # request_timeout bounds replace and the create fallback together.
        deadline = None if self.request_timeout is None else time.monotonic() + self.request_timeout
        name = quota_name(namespace)
        try:
            self.core_v1.replace_namespaced_resource_quota(
                name=name, namespace=namespace, body=body, **self._remaining(deadline)
            )
            logger.info("Replaced resource quota %s in %s", name, namespace)
        except ApiException as e:
            if e.status != 404:
                raise
            self.core_v1.create_namespaced_resource_quota(
                namespace=namespace, body=body, **self._remaining(deadline)
            )
            logger.info("Created resource quota %s in %s", name, namespace)

    def update_resource_quota(self, namespace: str, plan: str, organization_id: str) -> None:
        self._apply(namespace, self._build_quota(namespace, get_quota_hard(plan), plan, organization_id))

    def update_resource_quota_with_custom_spec(
        self, namespace: str, spec: dict[str, str], organization_id: str
    ) -> None:
        self._apply(namespace, self._build_quota(namespace, dict(spec), CUSTOM_PLAN, organization_id))

    def validate_quota_spec(self, spec: dict[str, str]) -> ValidationResult:
        return validate_quota_spec(spec)
