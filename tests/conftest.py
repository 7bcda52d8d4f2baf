"""
Shared fixtures: a file-backed SQLite database per test (several connections
must see the same data), fakeredis in place of a Redis server, and an httpx
client bound to the app through ASGITransport.
"""
from datetime import date, datetime, timedelta, timezone

import fakeredis.aioredis
import httpx
import pytest
import pytest_asyncio
from jose import jwt

from bistro.core.config import get_settings
from bistro.core.order_locks import OrderLockRegistry
from bistro.core.redis_client import set_redis
from bistro.db.database import Base, build_engine, build_session_factory
from bistro.main import app, wire_services
from bistro.models import order as _order_models  # noqa: F401  (registers tables)
from bistro.models import reservation as _reservation_models  # noqa: F401

settings = get_settings()


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def notify(self, account_id, event):
        self.sent.append((account_id, event))


class FailingNotifier:
    def __init__(self):
        self.attempts = 0

    async def notify(self, account_id, event):
        self.attempts += 1
        raise RuntimeError("push channel down")


# ─── Storage ───────────────────────────────────────────────────────────────────
@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'bistro.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def fake_redis():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    set_redis(client)
    yield client
    set_redis(None)
    await client.aclose()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest_asyncio.fixture
async def locks():
    registry = OrderLockRegistry()
    yield registry
    await registry.stop()


# ─── HTTP ──────────────────────────────────────────────────────────────────────
@pytest_asyncio.fixture
async def client(engine, session_factory, notifier, fake_redis, locks):
    wire_services(app, engine, session_factory, notifier, locks)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def token_for():
    def _make(sub: str = "acct-guest", email: str = "guest@example.com", is_admin: bool = False) -> str:
        claims = {
            "sub": sub,
            "email": email,
            "is_admin": is_admin,
            "exp": datetime.now(tz=timezone.utc) + timedelta(minutes=30),
        }
        return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return _make


@pytest.fixture
def auth(token_for):
    def _headers(**kwargs) -> dict[str, str]:
        return {"Authorization": f"Bearer {token_for(**kwargs)}"}
    return _headers


# ─── Payloads ──────────────────────────────────────────────────────────────────
@pytest.fixture
def booking_day() -> date:
    return date.today() + timedelta(days=7)


@pytest.fixture
def reservation_payload(booking_day):
    def _make(**overrides) -> dict:
        body = {
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "phone": "+1 555 010 2030",
            "guests": 4,
            "date": booking_day.isoformat(),
            "time": "19:30",
            "message": "Window seat if possible",
        }
        body.update(overrides)
        return body
    return _make


@pytest.fixture
def order_payload():
    def _make(**overrides) -> dict:
        body = {
            "items": [
                {"name": "Margherita", "quantity": 2, "price": 12.5},
                {"name": "Tiramisu", "quantity": 1, "price": 6.0},
            ],
            "totalAmount": 31.0,
            "address": "12 Harbour Street, Springfield",
            "userEmail": "guest@example.com",
            "clientReferenceId": "cart-0001",
            "requestId": "req-0001",
        }
        body.update(overrides)
        return body
    return _make
