import threading
import time
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from fastapi import Header
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, event
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.schema import ColumnDefault

from langop_api.deps import (
    get_cluster,
    get_current_user_id,
    get_db,
    get_org_locks,
    get_organization_store,
)
from langop_api.k8s import QuotaUsage
from langop_api.main import app
from langop_api.models import Base, MemberRole, Organization, OrganizationMember
from langop_api.quota.locks import LocalOrgLocks
from langop_api.quota.plans import CUSTOM_PLAN, get_quota_hard
from langop_api.quota.store import OrganizationStore


# --- SQLite compatibility ---


@compiles(PG_UUID, "sqlite")
def _compile_uuid_sqlite(type_, compiler, **kw):
    return "VARCHAR(36)"


# Replace server-side UUID generation with a Python-side default so SQLite
# doesn't need INSERT...RETURNING to populate primary keys.
_uuid_default = ColumnDefault(lambda: str(uuid.uuid4()))

for table in Base.metadata.tables.values():
    for col in table.columns:
        if col.primary_key and isinstance(col.type, PG_UUID):
            col.server_default = None
            col.default = _uuid_default


# --- Test constants ---

TEST_ORG_ID = "00000000-0000-0000-0000-000000000001"
TEST_UNKNOWN_ORG_ID = "00000000-0000-0000-0000-0000000000ff"
TEST_ORG_NAME = "Acme"
TEST_NAMESPACE = "acme"
TEST_OWNER_ID = "user-owner"
TEST_VIEWER_ID = "user-viewer"
TEST_OUTSIDER_ID = "user-outsider"

engine = create_async_engine(
    "sqlite+aiosqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine.sync_engine, "connect")
def _set_sqlite_compat(dbapi_conn, _):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=OFF")
    cursor.close()
    dbapi_conn.create_function("gen_random_uuid", 0, lambda: str(uuid.uuid4()))
    dbapi_conn.create_function("now", 0, lambda: datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f"))


test_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# --- Fake cluster ---


class FakeCluster:
    """In-memory stand-in for KubernetesQuotaClient."""

    def __init__(self) -> None:
        self.quotas: dict[str, dict[str, str]] = {}
        self.used: dict[str, dict[str, str]] = {}
        self.labels: dict[str, dict[str, str]] = {}
        self.apply_calls: list[tuple[str, str]] = []
        self.apply_error: Exception | None = None
        self.failing_plans: set[str] = set()
        self.apply_delay = 0.0

    def get_resource_quota_usage(self, namespace: str) -> QuotaUsage:
        return QuotaUsage(
            quota=dict(self.quotas.get(namespace, {})),
            used=dict(self.used.get(namespace, {})),
        )

    def update_resource_quota(self, namespace: str, plan: str, organization_id: str) -> None:
        self._apply(namespace, get_quota_hard(plan), plan, organization_id)

    def update_resource_quota_with_custom_spec(
        self, namespace: str, spec: dict[str, str], organization_id: str
    ) -> None:
        self._apply(namespace, dict(spec), CUSTOM_PLAN, organization_id)

    def _apply(self, namespace: str, hard: dict[str, str], plan: str, organization_id: str) -> None:
        self.apply_calls.append((namespace, plan))
        if self.apply_delay:
            time.sleep(self.apply_delay)
        if self.apply_error is not None:
            raise self.apply_error
        if plan in self.failing_plans:
            raise RuntimeError(f"admission webhook denied {plan} quota")
        self.quotas[namespace] = hard
        self.labels[namespace] = {"langop.io/plan": plan, "langop.io/organization-id": organization_id}


class GatedCluster(FakeCluster):
    """Custom-spec applies block until ``gate`` is set, then fail."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.gate = threading.Event()

    def update_resource_quota_with_custom_spec(
        self, namespace: str, spec: dict[str, str], organization_id: str
    ) -> None:
        self.apply_calls.append((namespace, CUSTOM_PLAN))
        self.entered.set()
        self.gate.wait(timeout=5)
        raise RuntimeError("resourcequotas \"acme-quota\" is forbidden")


# --- Fixtures ---


@pytest.fixture
def cluster() -> FakeCluster:
    fake = FakeCluster()
    fake.quotas[TEST_NAMESPACE] = get_quota_hard("pro")
    fake.used[TEST_NAMESPACE] = {
        "count/languageagents": "4",
        "requests.cpu": "8500m",
        "requests.memory": "10Gi",
        "limits.cpu": "4",
        "limits.memory": "12Gi",
    }
    return fake


@pytest.fixture
def gated_cluster() -> GatedCluster:
    return GatedCluster()


@pytest.fixture
def org_locks() -> LocalOrgLocks:
    return LocalOrgLocks(blocking_timeout=5)


@pytest.fixture
def store() -> OrganizationStore:
    return OrganizationStore(test_session)


async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with test_session() as session:
        yield session


async def override_get_user_id(x_user_id: str | None = Header(None)) -> str:
    return x_user_id or TEST_OWNER_ID


@pytest_asyncio.fixture
async def client(cluster, org_locks, store):
    async def override_get_cluster():
        return cluster

    async def override_get_org_locks():
        return org_locks

    async def override_get_store():
        return store

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user_id] = override_get_user_id
    app.dependency_overrides[get_cluster] = override_get_cluster
    app.dependency_overrides[get_org_locks] = override_get_org_locks
    app.dependency_overrides[get_organization_store] = override_get_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def db():
    async with test_session() as session:
        yield session


@pytest_asyncio.fixture
async def seed_org(db: AsyncSession):
    org = Organization(id=TEST_ORG_ID, name=TEST_ORG_NAME, namespace=TEST_NAMESPACE, plan="pro")
    db.add(org)
    await db.commit()
    return org


@pytest_asyncio.fixture
async def seed_members(db: AsyncSession, seed_org):
    db.add_all([
        OrganizationMember(organization_id=TEST_ORG_ID, user_id=TEST_OWNER_ID, role=MemberRole.owner),
        OrganizationMember(organization_id=TEST_ORG_ID, user_id=TEST_VIEWER_ID, role=MemberRole.viewer),
    ])
    await db.commit()
