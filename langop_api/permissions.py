from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from langop_api.models import MemberRole, OrganizationMember
from langop_api.quota.errors import AuthorizationError

ROLE_PERMISSIONS: dict[MemberRole, frozenset[str]] = {
    MemberRole.owner: frozenset(
        {"view", "create", "edit", "delete", "manage_members", "delete_org", "manage_billing"}
    ),
    MemberRole.admin: frozenset({"view", "create", "edit", "delete", "manage_members"}),
    MemberRole.editor: frozenset({"view", "create", "edit", "delete"}),
    MemberRole.viewer: frozenset({"view"}),
}


async def get_user_role(db: AsyncSession, user_id: str, organization_id: str) -> MemberRole | None:
    result = await db.execute(
        select(OrganizationMember.role)
        .where(OrganizationMember.organization_id == organization_id)
        .where(OrganizationMember.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def has_permission(db: AsyncSession, user_id: str, organization_id: str, permission: str) -> bool:
    role = await get_user_role(db, user_id, organization_id)
    if role is None:
        return False
    return permission in ROLE_PERMISSIONS.get(MemberRole(role), frozenset())


async def require_permission(db: AsyncSession, user_id: str, organization_id: str, permission: str) -> None:
    if not await has_permission(db, user_id, organization_id, permission):
        raise AuthorizationError("Insufficient permissions", details={"required": permission})
