import os
import sqlite3
import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import sqltypes

# sqlite has no UUID type. Store UUIDs as their canonical string and accept
# plain strings as bind values, the way psycopg does. Installed before the
# models are imported so every Uuid column picks it up.
sqlite3.register_adapter(uuid.UUID, str)

_uuid_bind = sqltypes.Uuid.bind_processor
_uuid_result = sqltypes.Uuid.result_processor


def _as_uuid(value):
    if value is None or value == "" or isinstance(value, uuid.UUID):
        return value or None
    return uuid.UUID(str(value))


def _bind_processor(self, dialect):
    if dialect.name != "sqlite":
        return _uuid_bind(self, dialect)

    def process(value):
        value = _as_uuid(value)
        return None if value is None else str(value)

    return process


def _result_processor(self, dialect, coltype):
    if dialect.name != "sqlite":
        return _uuid_result(self, dialect, coltype)
    return _as_uuid


sqltypes.Uuid.bind_processor = _bind_processor
sqltypes.Uuid.result_processor = _result_processor

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

from ispsync.db import Base  # noqa: E402
from ispsync.models import (  # noqa: E402
    ApiKeyScope,
    Bill,
    BillStatus,
    ConnectionStatus,
    Customer,
    NetworkIntegration,
    Package,
    ProviderType,
    SyncMode,
    Tenant,
)
from ispsync.schemas.api_keys import ApiKeyCreate  # noqa: E402
from ispsync.services import api_keys as api_keys_service  # noqa: E402
from ispsync.services import network_providers  # noqa: E402
from ispsync.services.rate_limit import reset_rate_limiter  # noqa: E402
from tests.mocks import FakeNetworkProvider  # noqa: E402


def _sqlite_engine():
    sqlite_engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(sqlite_engine, "connect")
    def _on_connect(dbapi_connection, _record):
        # pysqlite's own transaction handling breaks SAVEPOINT; let
        # SQLAlchemy emit BEGIN itself.
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(sqlite_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


@pytest.fixture(scope="session")
def engine():
    url = os.getenv("TEST_DATABASE_URL")
    test_engine = create_engine(url) if url else _sqlite_engine()
    Base.metadata.create_all(test_engine)
    return test_engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    outer = connection.begin()
    # Service code commits and rolls back freely; each of those only touches
    # a savepoint inside the outer test transaction.
    session = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        join_transaction_mode="create_savepoint",
    )()
    try:
        yield session
    finally:
        session.close()
        outer.rollback()
        connection.close()


@pytest.fixture(autouse=True)
def auth_env(monkeypatch):
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.setenv("JWT_ALGORITHM", "HS256")


@pytest.fixture(autouse=True)
def _fresh_rate_limiter():
    reset_rate_limiter()
    yield
    reset_rate_limiter()


@pytest.fixture()
def fake_provider():
    """Replace the custom HTTP provider with a scripted fake."""
    provider = FakeNetworkProvider(ProviderType.custom)
    network_providers.register_provider(provider)
    try:
        yield provider
    finally:
        network_providers.register_default_providers()


def _make_tenant(db_session, name: str, **overrides) -> Tenant:
    tenant = Tenant(
        name=name,
        subdomain=f"{name.lower().replace(' ', '-')}-{uuid.uuid4().hex[:8]}",
        api_enabled=overrides.pop("api_enabled", True),
        auto_suspend_days=overrides.pop("auto_suspend_days", 7),
        **overrides,
    )
    db_session.add(tenant)
    db_session.commit()
    db_session.refresh(tenant)
    return tenant


@pytest.fixture()
def tenant(db_session):
    return _make_tenant(db_session, "Rural Net")


@pytest.fixture()
def other_tenant(db_session):
    return _make_tenant(db_session, "City Fibre")


@pytest.fixture()
def package(db_session, tenant):
    package = Package(
        tenant_id=tenant.id,
        name="Home 20",
        speed_label="20M/20M",
        monthly_price=Decimal("800.00"),
    )
    db_session.add(package)
    db_session.commit()
    db_session.refresh(package)
    return package


@pytest.fixture()
def make_customer(db_session):
    def _make(tenant, **overrides) -> Customer:
        defaults = {
            "name": "Karim Uddin",
            "phone": f"017{uuid.uuid4().int % 10**8:08d}",
            "connection_status": ConnectionStatus.active,
            "network_username": f"user-{uuid.uuid4().hex[:8]}",
            "due_balance": Decimal("0.00"),
        }
        defaults.update(overrides)
        customer = Customer(tenant_id=tenant.id, **defaults)
        db_session.add(customer)
        db_session.commit()
        db_session.refresh(customer)
        return customer

    return _make


@pytest.fixture()
def customer(make_customer, tenant, package):
    return make_customer(tenant, package_id=package.id)


@pytest.fixture()
def make_bill(db_session):
    def _make(customer, amount="800.00", due_date=None, status=BillStatus.due) -> Bill:
        bill = Bill(
            tenant_id=customer.tenant_id,
            customer_id=customer.id,
            amount=Decimal(amount),
            due_date=due_date or date.today() - timedelta(days=10),
            status=status,
        )
        db_session.add(bill)
        db_session.commit()
        db_session.refresh(bill)
        return bill

    return _make


@pytest.fixture()
def make_integration(db_session):
    def _make(tenant, **overrides) -> NetworkIntegration:
        defaults = {
            "name": "Core router",
            "provider_type": ProviderType.custom,
            "api_base_url": "https://provisioning.example.net/api",
            "sync_mode": SyncMode.event_driven,
            "is_enabled": True,
        }
        defaults.update(overrides)
        integration = NetworkIntegration(tenant_id=tenant.id, **defaults)
        db_session.add(integration)
        db_session.commit()
        db_session.refresh(integration)
        return integration

    return _make


@pytest.fixture()
def integration(make_integration, tenant):
    return make_integration(tenant)


@pytest.fixture()
def make_api_key(db_session):
    def _make(tenant, scope=ApiKeyScope.read_write, **payload):
        api_key, raw_key = api_keys_service.api_keys.create(
            db_session,
            tenant.id,
            ApiKeyCreate(name=payload.pop("name", "billing export"), scope=scope, **payload),
            created_by="test",
        )
        return api_key, raw_key

    return _make


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient

    from ispsync.api.deps import limiter
    from ispsync.db import get_db
    from ispsync.main import app

    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    limiter.reset()
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def operator_headers():
    from ispsync.services.auth_flow import issue_access_token

    def _headers(tenant, roles=("admin",), user_id="operator-1"):
        tenant_id = tenant.id if tenant is not None else None
        token = issue_access_token(user_id, tenant_id, list(roles))
        return {"Authorization": f"Bearer {token}"}

    return _headers
