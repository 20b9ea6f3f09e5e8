"""
Test Configuration - Fixtures for async DB, test client, fake upstream APIs and seed data.

Each test gets its own in-memory SQLite database. Outbound gateway and
courier calls go through an httpx.MockTransport (``upstream``) so no test
ever reaches Billplz, BayarCash or NinjaVan.
"""

import uuid
from collections.abc import Callable

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from api.deps import get_current_user, get_db, get_http_transport
from api.main import app
from db.session import Base

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ─── Database ───────────────────────────────────────────────────────────────


@pytest.fixture
async def test_engine():
    """Fresh in-memory database per test, all tables created."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session = AsyncSession(bind=test_engine, expire_on_commit=False)
    yield session
    await session.close()


# ─── Fake upstream APIs ─────────────────────────────────────────────────────


class FakeUpstream:
    """Route table for httpx.MockTransport. Unrouted requests answer 599."""

    def __init__(self):
        self.routes: list[tuple[str, str, Callable[[httpx.Request], httpx.Response]]] = []
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path_fragment: str, handler):
        """Register a handler: a callable, a dict (JSON 200) or an httpx.Response."""
        if isinstance(handler, dict):
            payload = handler
            handler = lambda request: httpx.Response(200, json=payload)  # noqa: E731
        elif isinstance(handler, httpx.Response):
            response = handler
            handler = lambda request: response  # noqa: E731
        self.routes.insert(0, (method.upper(), path_fragment, handler))

    def calls(self, method: str, path_fragment: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and path_fragment in r.url.path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, fragment, handler in self.routes:
            if request.method == method and fragment in request.url.path:
                return handler(request)
        return httpx.Response(599, json={"message": f"unrouted {request.method} {request.url.path}"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture
def upstream():
    return FakeUpstream()


# ─── API client ─────────────────────────────────────────────────────────────


@pytest.fixture
def caller():
    """Token payload returned by the auth override; tests point ``sub`` at a seeded profile."""
    return {"sub": "", "email": "test@fulfilops.local"}


@pytest.fixture
async def client(test_db, caller, upstream):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return caller

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_http_transport] = lambda: upstream.transport

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# ─── Seed data ──────────────────────────────────────────────────────────────


@pytest.fixture
async def seeded_db(test_db):
    """HQ, master agent, agent, branch with marketer, two products, a bundle and courier config."""
    from core.security import encrypt
    from db.models import Bundle, Inventory, NinjaVanConfig, Product, Profile

    hq = Profile(id=uuid.UUID("00000000-0000-0000-0000-000000000001"), idstaff="HQ001", email="hq@t.my", role="hq")
    master = Profile(idstaff="MA001", full_name="Aminah", email="ma@t.my", role="master_agent")
    branch = Profile(idstaff="BR001", full_name="Cawangan Shah Alam", email="br@t.my", role="branch")
    test_db.add_all([hq, master, branch])
    await test_db.flush()

    agent = Profile(
        idstaff="AG001",
        full_name="Badrul",
        email="ag@t.my",
        phone_number="60145556666",
        role="agent",
        master_agent_id=master.id,
    )
    marketer = Profile(idstaff="MK001", full_name="Siti", email="mk@t.my", role="marketer", branch_id=branch.id)
    test_db.add_all([agent, marketer])
    await test_db.flush()

    product = Product(sku="ZP250", name="Zaitun Premium 250ml", base_cost=18.0)
    other = Product(sku="LT100", name="Losyen Tangan 100ml", base_cost=9.5)
    test_db.add_all([product, other])
    await test_db.flush()

    bundle = Bundle(
        product_id=product.id,
        name="Zaitun x6",
        units=6,
        agent_price=120.0,
        master_agent_price=100.0,
    )
    test_db.add(bundle)
    test_db.add(Inventory(user_id=hq.id, product_id=product.id, quantity=500))
    test_db.add(Inventory(user_id=branch.id, product_id=product.id, quantity=20))
    test_db.add(Inventory(user_id=branch.id, product_id=other.id, quantity=5))
    test_db.add(
        NinjaVanConfig(
            profile_id=branch.id,
            client_id="nv-client",
            client_secret_encrypted=encrypt("nv-secret"),
            sender_name="Cawangan Shah Alam",
            sender_phone="60133334444",
            sender_email="br@t.my",
            sender_address1="No 12, Jalan Kristal 7/69",
            sender_address2="Seksyen 7",
            sender_postcode="40000",
            sender_city="Shah Alam",
            sender_state="Selangor",
        )
    )
    await test_db.commit()

    return {
        "hq": hq,
        "master": master,
        "agent": agent,
        "branch": branch,
        "marketer": marketer,
        "product": product,
        "other_product": other,
        "bundle": bundle,
    }


@pytest.fixture
def gateway_settings(monkeypatch):
    """Billplz and BayarCash credentials on the cached settings object."""
    from core.config import get_settings

    settings = get_settings()
    monkeypatch.setattr(settings, "billplz_api_key", "bp-key")
    monkeypatch.setattr(settings, "billplz_collection_id", "col123")
    monkeypatch.setattr(settings, "bayarcash_portal_key", "portal-key")
    monkeypatch.setattr(settings, "bayarcash_api_secret_key", "bc-secret")
    monkeypatch.setattr(settings, "bayarcash_api_token", "bc-token")
    monkeypatch.setattr(settings, "public_base_url", "https://ops.example.my")
    return settings
