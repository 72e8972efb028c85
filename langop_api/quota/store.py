import uuid
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import func

from langop_api.models import Organization


@dataclass(frozen=True)
class OrganizationRecord:
    id: str
    name: str
    namespace: str
    plan: str


class OrganizationStore:
    """Organization rows as seen by the quota engine.

    Each call runs in its own session and commits immediately: the plan
    write and the cluster apply are separate remote calls with no shared
    transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def find_organization(self, organization_id: str) -> OrganizationRecord | None:
        try:
            uuid.UUID(organization_id)
        except ValueError:
            # Not an id Postgres would accept; no such organization.
            return None
        async with self.session_factory() as db:
            result = await db.execute(
                select(Organization.id, Organization.name, Organization.namespace, Organization.plan)
                .where(Organization.id == organization_id)
            )
            row = result.one_or_none()
            return OrganizationRecord(*row) if row else None

    async def update_organization_plan(self, organization_id: str, plan: str) -> None:
        async with self.session_factory() as db:
            await db.execute(
                update(Organization)
                .where(Organization.id == organization_id)
                .values(plan=plan, updated_at=func.now())
            )
            await db.commit()

    async def compare_and_set_plan(self, organization_id: str, expected: str, plan: str) -> bool:
        """Set ``plan`` only if the row still holds ``expected``. Returns whether it did."""
        async with self.session_factory() as db:
            result = await db.execute(
                update(Organization)
                .where(Organization.id == organization_id, Organization.plan == expected)
                .values(plan=plan, updated_at=func.now())
            )
            await db.commit()
            return result.rowcount == 1
