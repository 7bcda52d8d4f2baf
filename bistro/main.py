"""
Bistro — FastAPI application entrypoint
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from bistro.api import health, notifications, orders, reservations
from bistro.core.config import get_settings
from bistro.core.errors import register_exception_handlers
from bistro.core.logging_config import configure_logging
from bistro.core.order_locks import OrderLockRegistry
from bistro.core.redis_client import close_redis
from bistro.db import database
from bistro.db.database import Base
from bistro.middleware.auth import JWTAuthMiddleware
from bistro.middleware.rate_limiter import SlidingWindowRateLimiter
from bistro.services.notifier import Notifier, build_notifier
from bistro.services.order_gate import OrderDedupGate
from bistro.services.orders import OrderManager
from bistro.services.reservations import ReservationManager

settings = get_settings()
configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def wire_services(
    app: FastAPI,
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
    locks: OrderLockRegistry,
) -> None:
    """Build the lifecycle managers and attach them to app.state."""
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.notifier = notifier
    app.state.order_locks = locks
    app.state.reservation_manager = ReservationManager(session_factory, notifier)
    app.state.order_manager = OrderManager(session_factory, OrderDedupGate(locks))


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    locks = OrderLockRegistry()
    wire_services(app, database.engine, database.SessionLocal, build_notifier(), locks)
    await locks.start()
    logger.info("%s %s started", settings.SERVICE_NAME, settings.SERVICE_VERSION)
    yield
    await locks.stop()
    await close_redis()
    await database.engine.dispose()


app = FastAPI(
    title="Bistro",
    description="Restaurant reservations and online orders: slot capacity, idempotent checkout, live notifications.",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Order matters: Auth is added last so it runs first and the limiter can key on the account
app.add_middleware(SlidingWindowRateLimiter)
app.add_middleware(JWTAuthMiddleware)

if settings.METRICS_ENABLED:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")

register_exception_handlers(app)

app.include_router(reservations.router)
app.include_router(orders.router)
app.include_router(notifications.router)
app.include_router(health.router)


@app.get("/")
async def root():
    return {"service": settings.SERVICE_NAME, "version": settings.SERVICE_VERSION}
