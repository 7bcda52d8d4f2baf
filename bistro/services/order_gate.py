"""
Bistro — Order dedup gate

Existence check run inside the order-creation transaction, before the insert:
  - exact_duplicate: an order with the same client_reference_id exists
  - similar_order:   the same purchaser placed an order sharing an item name
                     within the last SIMILAR_WINDOW
A duplicate is answered with the existing order; the caller treats it as
success (the client may be retrying a write that already went through).
"""
from datetime import datetime, timedelta

from sqlalchemy import and_, case, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bistro.core.config import get_settings
from bistro.core.order_locks import OrderLockRegistry
from bistro.models.order import Order, OrderItem

settings = get_settings()

EXACT_DUPLICATE = "exact_duplicate"
SIMILAR_ORDER = "similar_order"
SIMILAR_WINDOW = timedelta(seconds=30)


async def find_duplicate(
    session: AsyncSession,
    user_email: str,
    client_reference_id: str,
    item_names: list[str],
    now: datetime,
) -> tuple[Order, str] | None:
    exact = Order.client_reference_id == client_reference_id
    similar = and_(
        Order.user_email == user_email,
        Order.created_at >= now - SIMILAR_WINDOW,
        Order.items.any(OrderItem.name.in_(item_names)),
    )
    result = await session.execute(
        select(Order)
        .where(or_(exact, similar))
        .order_by(case((exact, 0), else_=1), Order.created_at.desc())
        .limit(1)
    )
    order = result.scalar_one_or_none()
    if order is None:
        return None
    kind = EXACT_DUPLICATE if order.client_reference_id == client_reference_id else SIMILAR_ORDER
    return order, kind


class OrderDedupGate:
    """Admission control in front of order creation: process-local lock + in-transaction check."""

    def __init__(self, locks: OrderLockRegistry, lock_timeout: float | None = None):
        self.locks = locks
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.LOCK_WAIT_TIMEOUT_SECONDS

    def admit(self, lock_key: str):
        """Serialize same-key requests in this process. Raises BusyError on timeout."""
        return self.locks.hold(lock_key, timeout=self.lock_timeout)

    async def check(self, session: AsyncSession, user_email: str, client_reference_id: str,
                    item_names: list[str], now: datetime) -> tuple[Order, str] | None:
        return await find_duplicate(session, user_email, client_reference_id, item_names, now)
