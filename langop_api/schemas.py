from typing import Any

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from langop_api.quota.snapshot import QuotaSnapshot
from langop_api.quota.store import OrganizationRecord


class QuotaUpdateRequest(BaseModel):
    # Exactly-one and value checks happen in the reconciler so both route
    # families report them the same way.
    plan: str | None = None
    quotas: dict[str, Any] | None = None


class OrganizationResponse(BaseModel):
    id: str
    name: str
    namespace: str
    plan: str

    model_config = {"from_attributes": True}


class QuotaData(BaseModel):
    organization: OrganizationResponse
    quota: dict[str, str]
    used: dict[str, str]
    available: dict[str, str]
    percent_used: dict[str, float]
    warnings: list[str]
    is_near_limit: bool

    model_config = {"alias_generator": to_camel, "populate_by_name": True}

    @classmethod
    def build(cls, organization: OrganizationRecord, snapshot: QuotaSnapshot) -> "QuotaData":
        return cls(
            organization=OrganizationResponse.model_validate(organization),
            quota=snapshot.quota,
            used=snapshot.used,
            available=snapshot.available,
            percent_used=snapshot.report.percent_used,
            warnings=snapshot.report.warnings,
            is_near_limit=snapshot.report.is_near_limit,
        )


class QuotaResponse(BaseModel):
    success: bool = True
    data: QuotaData


class ErrorResponse(BaseModel):
    error: str
    details: Any = None
