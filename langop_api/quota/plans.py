from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .quantity import Dimension, classify

NAMED_PLANS: tuple[str, ...] = ("free", "pro", "enterprise")
CUSTOM_PLAN = "custom"


@dataclass(frozen=True)
class PlanLimits:
    agents: str
    models: str
    tools: str
    personas: str
    clusters: str
    cpu_request: str
    memory_request: str
    cpu_limit: str
    memory_limit: str


PLAN_LIMITS: dict[str, PlanLimits] = {
    "free": PlanLimits(
        agents="2",
        models="2",
        tools="5",
        personas="3",
        clusters="1",
        cpu_request="1000m",
        memory_request="2Gi",
        cpu_limit="2000m",
        memory_limit="4Gi",
    ),
    "pro": PlanLimits(
        agents="20",
        models="10",
        tools="50",
        personas="20",
        clusters="5",
        cpu_request="10000m",
        memory_request="20Gi",
        cpu_limit="20000m",
        memory_limit="40Gi",
    ),
    "enterprise": PlanLimits(
        agents="100",
        models="50",
        tools="200",
        personas="100",
        clusters="20",
        cpu_request="50000m",
        memory_request="100Gi",
        cpu_limit="100000m",
        memory_limit="200Gi",
    ),
}


def get_quota_hard(plan: str) -> dict[str, str]:
    """Return the ``spec.hard`` map of the ResourceQuota for a named plan."""
    limits = PLAN_LIMITS[plan]
    return {
        "count/languageagents": limits.agents,
        "count/languagemodels": limits.models,
        "count/languagetools": limits.tools,
        "count/languagepersonas": limits.personas,
        "count/languageclusters": limits.clusters,
        "requests.cpu": limits.cpu_request,
        "requests.memory": limits.memory_request,
        "limits.cpu": limits.cpu_limit,
        "limits.memory": limits.memory_limit,
    }


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


def validate_plan(plan: Any) -> ValidationResult:
    # "custom" is only ever an outcome of a quota update, never an input.
    if isinstance(plan, str) and plan in NAMED_PLANS:
        return ValidationResult(valid=True)
    return ValidationResult(
        valid=False,
        errors=[f"plan must be one of {', '.join(NAMED_PLANS)}; got {plan!r}"],
    )


def validate_quota_spec(spec: Any) -> ValidationResult:
    """Structural check of a custom quota map.

    Values are not parsed here; quantities are only interpreted when usage
    is read back from the cluster.
    """
    if not isinstance(spec, Mapping) or not spec:
        return ValidationResult(valid=False, errors=["quotas must be a non-empty mapping of resource to quantity"])

    errors: list[str] = []
    dimensions = set()
    for resource, value in spec.items():
        if not isinstance(resource, str) or not resource.strip():
            errors.append("resource names must be non-empty strings")
            continue
        dimensions.add(classify(resource))
        if not isinstance(value, str) or not value.strip():
            errors.append(f"{resource} must be a non-empty quantity string")

    if Dimension.cpu not in dimensions:
        errors.append("quotas must include a cpu resource (e.g. cpu, requests.cpu, limits.cpu)")
    if Dimension.memory not in dimensions:
        errors.append("quotas must include a memory resource (e.g. memory, requests.memory, limits.memory)")

    return ValidationResult(valid=not errors, errors=errors)
