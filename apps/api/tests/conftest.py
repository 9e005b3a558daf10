import json
from decimal import Decimal
from typing import Any, Dict, List, Tuple

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from models.user import User
from routers import rate_limit
from routers.auth_scope import get_bypass_client_factory
from services.bypass_client import BypassClientFactory, ExternalApiConfig
from services.passwords import hash_password
from services.session_token import issue_session_token


OWNER_ID = "owner-user"
MEMBER_ID = "member-user"
OTHER_ID = "other-user"
TEST_PASSWORD = "secret-pass"


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


class FakeBypassProvider:
    """In-memory stand-in for the bypass provider behind httpx.MockTransport."""

    def __init__(self):
        self.requests: List[Tuple[str, Dict[str, Any]]] = []
        self.failures: Dict[str, Any] = {}
        self.remote_uids: List[Dict[str, Any]] = []
        self.player_names: Dict[str, str] = {}
        self.player_lookups: List[str] = []

    def fail(self, action: str, status: int = 400, body: Any = None) -> None:
        self.failures[action] = (status, body if body is not None else {"error": f"{action} rejected", "code": "E_REJECTED"})

    def respond(self, action: str, body: Any, status: int = 200) -> None:
        self.failures[action] = (status, body)

    def actions(self) -> List[str]:
        return [action for action, _ in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if "/api/player/" in request.url.path:
            uid = request.url.path.rsplit("/", 1)[-1]
            self.player_lookups.append(uid)
            if uid not in self.player_names:
                return httpx.Response(404, json={"error": "Player not found"})
            return httpx.Response(200, json={"playerName": self.player_names[uid]})

        params: Dict[str, Any] = dict(request.url.params)
        action = params.pop("action", "")
        if request.content:
            params.update(json.loads(request.content))
        self.requests.append((action, params))

        failure = self.failures.get(action)
        if isinstance(failure, Exception):
            raise failure
        if failure is not None:
            status, body = failure
            return httpx.Response(status, json=body)

        if action == "list_uids_api":
            return httpx.Response(200, json={"success": True, "data": self.remote_uids})
        return httpx.Response(
            200,
            json={"success": True, "data": {"uid": params.get("uid"), "player_name": "Remote Player"}},
        )


class StaticSettingsProvider:
    def __init__(self, config):
        self.config = config

    async def load(self):
        return self.config


@pytest.fixture
def bypass_provider():
    return FakeBypassProvider()


@pytest.fixture
def client_factory(bypass_provider):
    return BypassClientFactory(
        StaticSettingsProvider(ExternalApiConfig(base_url="https://bypass.test/api", api_key="remote-key")),
        timeout_seconds=5,
        transport=httpx.MockTransport(bypass_provider.handler),
    )


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "uid_dashboard.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with maker() as session:
        password_hash = hash_password(TEST_PASSWORD)
        session.add_all(
            [
                User(id=OWNER_ID, username="owner", password_hash=password_hash, is_owner=True, credits=Decimal("100.00")),
                User(id=MEMBER_ID, username="member", password_hash=password_hash, credits=Decimal("5.00")),
                User(id=OTHER_ID, username="other", password_hash=password_hash, credits=Decimal("10.00")),
            ]
        )
        await session.commit()

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def api_client(session_maker, client_factory):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_bypass_client_factory] = lambda: client_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_bypass_client_factory, None)


def auth_header(user_id: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {issue_session_token(user_id).token}"}


OWNER_HEADER = auth_header(OWNER_ID)
MEMBER_HEADER = auth_header(MEMBER_ID)
OTHER_HEADER = auth_header(OTHER_ID)
