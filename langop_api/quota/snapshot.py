import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field

from langop_api.k8s import QuotaCluster

from .errors import MalformedQuantityError
from .quantity import NormalizedQuantity, classify, parse, render
from .usage import DEFAULT_WARN_THRESHOLD, UtilizationReport, report


@dataclass(frozen=True)
class QuotaSnapshot:
    quota: dict[str, str] = field(default_factory=dict)
    used: dict[str, str] = field(default_factory=dict)
    available: dict[str, str] = field(default_factory=dict)
    report: UtilizationReport = field(default_factory=UtilizationReport)


def compute_available(quota: Mapping[str, str], used: Mapping[str, str]) -> dict[str, str]:
    """Headroom per resource, floored at zero. Unparseable resources are left out."""
    available: dict[str, str] = {}
    for resource, limit in quota.items():
        dimension = classify(resource)
        try:
            hard = parse(dimension, limit).value
            consumed = parse(dimension, used.get(resource, "0")).value
        except MalformedQuantityError:
            continue
        available[resource] = render(NormalizedQuantity(dimension, max(hard - consumed, 0)))
    return available


class QuotaSnapshotReader:
    """Reads a namespace's ResourceQuota and derives utilization from it.

    Reads take no lock. A read that overlaps an in-flight update can see the
    new plan in the database while the cluster still holds the old quota (or
    the reverse during a rollback); the next read converges.
    """

    def __init__(self, cluster: QuotaCluster, warn_threshold: float = DEFAULT_WARN_THRESHOLD) -> None:
        self.cluster = cluster
        self.warn_threshold = warn_threshold

    async def read(self, namespace: str) -> QuotaSnapshot:
        usage = await asyncio.to_thread(self.cluster.get_resource_quota_usage, namespace)
        quota = dict(usage.quota)
        used = dict(usage.used)
        return QuotaSnapshot(
            quota=quota,
            used=used,
            available=compute_available(quota, used),
            report=report(quota, used, self.warn_threshold),
        )
