"""
Bistro — Order lifecycle

Flow for a checkout:
  1. Schema + normalize_order: field checks and total reconciliation (no storage access)
  2. Dedup gate admission: wait for any in-flight request with the same
     (email, clientReferenceId) in this process, bounded by LOCK_WAIT_TIMEOUT_SECONDS
  3. Transaction: duplicate check → abort and answer with the existing order,
     or generate an order number and insert
  4. Unique violation on commit (a racer in another process won) → answered
     as exact_duplicate with the winner's order
"""
import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bistro.core.errors import ConflictError, ForbiddenError, NotFoundError
from bistro.core.security import Account
from bistro.core.tx_retry import with_serialization_retry
from bistro.db.database import transaction
from bistro.models.order import Order, OrderItem
from bistro.schemas.order import DeletedOrder, OrderCreate, OrderOut
from bistro.services.order_gate import EXACT_DUPLICATE, OrderDedupGate
from bistro.services.order_rules import NormalizedOrder, ensure_total_matches, normalize_order

logger = logging.getLogger(__name__)

MAX_ORDER_NUMBER_ATTEMPTS = 10
ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number(now: datetime) -> str:
    suffix = "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(6))
    return f"ORD-{now.astimezone(timezone.utc).strftime('%Y%m%d')}-{suffix}"


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True)
class OrderOutcome:
    order: OrderOut
    duplicate: bool = False
    duplicate_type: str | None = None


class _DuplicateDetected(Exception):
    """Raised inside the transaction to abort it when the gate finds an existing order."""

    def __init__(self, order: OrderOut, kind: str):
        super().__init__(kind)
        self.order = order
        self.kind = kind


class OrderManager:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gate: OrderDedupGate,
        clock: Callable[[], datetime] = utcnow,
        number_factory: Callable[[datetime], str] = generate_order_number,
    ):
        self._session_factory = session_factory
        self._gate = gate
        self._clock = clock
        self._number_factory = number_factory

    # ── Create ────────────────────────────────────────────────
    async def create(self, request: OrderCreate) -> OrderOutcome:
        order = normalize_order(request)

        async with self._gate.admit(order.lock_key):
            try:
                created = await self._persist(order)
            except _DuplicateDetected as dup:
                logger.info(
                    "Duplicate order detected (%s) for %s ref=%s -> %s",
                    dup.kind, order.user_email, order.client_reference_id, dup.order.order_number,
                )
                return OrderOutcome(order=dup.order, duplicate=True, duplicate_type=dup.kind)
            except IntegrityError:
                existing = await self._find_by_reference(order.client_reference_id)
                if existing is None:
                    logger.exception("Order insert rejected for ref=%s", order.client_reference_id)
                    raise ConflictError("Duplicate order detected")
                logger.info("Concurrent insert lost for ref=%s, returning %s",
                            order.client_reference_id, existing.order_number)
                return OrderOutcome(order=existing, duplicate=True, duplicate_type=EXACT_DUPLICATE)

        logger.info("New order created: %s for %s", created.order_number, created.user_email)
        return OrderOutcome(order=created)

    @with_serialization_retry()
    async def _persist(self, draft: NormalizedOrder) -> OrderOut:
        async with transaction(self._session_factory) as session:
            now = self._clock()
            found = await self._gate.check(
                session, draft.user_email, draft.client_reference_id, draft.item_names, now
            )
            if found is not None:
                existing, kind = found
                raise _DuplicateDetected(OrderOut.model_validate(existing), kind)

            order = Order(
                order_number=await self._unique_order_number(session, now),
                client_reference_id=draft.client_reference_id,
                request_id=draft.request_id,
                user_email=draft.user_email,
                total_amount=draft.total_amount,
                address=draft.address,
                created_at=now,
                updated_at=now,
                items=[
                    OrderItem(position=i, name=item.name, quantity=item.quantity, price=item.price)
                    for i, item in enumerate(draft.items)
                ],
            )
            # Re-check on the rounded values that are about to be stored
            ensure_total_matches(order.items, order.total_amount)
            session.add(order)
            await session.flush()
            return OrderOut.model_validate(order)

    async def _unique_order_number(self, session: AsyncSession, now: datetime) -> str:
        for _ in range(MAX_ORDER_NUMBER_ATTEMPTS):
            number = self._number_factory(now)
            taken = await session.execute(select(Order.id).where(Order.order_number == number))
            if taken.first() is None:
                return number
        raise ConflictError(f"Failed to generate unique order number after {MAX_ORDER_NUMBER_ATTEMPTS} attempts")

    async def _find_by_reference(self, client_reference_id: str) -> OrderOut | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Order).where(Order.client_reference_id == client_reference_id)
            )
            order = result.scalar_one_or_none()
            return OrderOut.model_validate(order) if order else None

    # ── Reads ─────────────────────────────────────────────────
    async def get(self, order_id: str, account: Account) -> OrderOut:
        async with self._session_factory() as session:
            order = await session.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order not found")
            if not account.is_admin and order.user_email != account.email:
                raise ForbiddenError("Access denied")
            return OrderOut.model_validate(order)

    async def list_all(
        self,
        user_email: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        page: int = 1,
        limit: int = 50,
        sort_order: str = "desc",
    ) -> tuple[list[OrderOut], int]:
        filters = []
        if user_email:
            filters.append(Order.user_email.ilike(f"%{user_email.strip()}%"))
        if start is not None:
            filters.append(Order.created_at >= start)
        if end is not None:
            filters.append(Order.created_at <= end)
        return await self._page(filters, page, limit, sort_order)

    async def list_for_account(self, email: str, page: int = 1, limit: int = 20) -> tuple[list[OrderOut], int]:
        return await self._page([Order.user_email == email], page, limit, "desc")

    async def _page(self, filters, page: int, limit: int, sort_order: str) -> tuple[list[OrderOut], int]:
        ordering = Order.created_at.asc() if sort_order == "asc" else Order.created_at.desc()
        query = select(Order).where(*filters).order_by(ordering).offset((page - 1) * limit).limit(limit)
        count_query = select(func.count()).select_from(Order).where(*filters)
        async with self._session_factory() as session:
            rows = (await session.execute(query)).scalars().all()
            total = (await session.execute(count_query)).scalar_one()
            return [OrderOut.model_validate(o) for o in rows], int(total)

    # ── Delete ────────────────────────────────────────────────
    async def delete(self, order_id: str) -> DeletedOrder:
        async with transaction(self._session_factory) as session:
            order = await session.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order not found")
            deleted = DeletedOrder(id=order.id, order_number=order.order_number, user_email=order.user_email)
            await session.delete(order)
        logger.info("Order %s deleted", deleted.order_number)
        return deleted
