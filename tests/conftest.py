import os

# Test configuration must be in place before the application modules load
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key"
os.environ["CREDENTIAL_SIGNING_SECRET"] = "test-signing-secret"
os.environ["BASE_URL"] = "https://observer.test"
for name in ("DIDIT_API_ENDPOINT", "DIDIT_CLIENT_ID", "DIDIT_CLIENT_SECRET", "DIDIT_API_KEY"):
    os.environ.pop(name, None)

from typing import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from observer_identity.api.v1.endpoints.kyc import get_http_client
from observer_identity.config import settings
from observer_identity.core.security import CryptoPrimitives
from observer_identity.database import Base, get_db
from observer_identity.main import app

OPERATOR_PASSWORD = "operator-password"

test_engine = create_async_engine(
    "sqlite+aiosqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)
test_async_session_maker = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class DictSettingsStore:
    """In-memory settings store"""

    def __init__(self, values: dict[str, str | None] | None = None):
        self.values = dict(values or {})

    async def get_setting_by_key(self, key: str) -> str | None:
        return self.values.get(key)


class FakeDidit:
    """
    Programmable stand-in for the Didit API.

    Routes are keyed by (method, path); each maps to a response or a
    callable taking the request. Every request seen is recorded.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], httpx.Response | Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, response) -> None:
        self.routes[(method.upper(), path)] = response

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            return route(request)
        return route

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))

    def paths(self) -> list[tuple[str, str]]:
        return [(request.method, request.url.path) for request in self.requests]


@pytest.fixture
def store() -> DictSettingsStore:
    return DictSettingsStore()


@pytest.fixture
def didit() -> FakeDidit:
    return FakeDidit()


@pytest.fixture
def crypto() -> CryptoPrimitives:
    return CryptoPrimitives("test-encryption-key")


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with test_async_session_maker() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, didit: FakeDidit) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db():
        yield db_session

    async def override_get_http_client():
        async with didit.client() as provider_client:
            yield provider_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_http_client] = override_get_http_client

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def operator_credentials(monkeypatch: pytest.MonkeyPatch) -> dict:
    monkeypatch.setattr(settings, "OPERATOR_PASSWORD_HASH", CryptoPrimitives.hash_password(OPERATOR_PASSWORD))
    return {"username": settings.OPERATOR_USERNAME, "password": OPERATOR_PASSWORD}


@pytest_asyncio.fixture
async def auth_token(client: AsyncClient, operator_credentials: dict) -> str:
    response = await client.post("/api/v1/auth/token", data=operator_credentials)
    return response.json()["access_token"]


@pytest.fixture
def auth_headers(auth_token: str) -> dict:
    return {"Authorization": f"Bearer {auth_token}"}
