"""
Bistro — Reservation lifecycle

Flow for a booking:
  1. Pure validation and derivation (reservation_rules) — no storage access
  2. Transaction: re-check the slot ledger against the live snapshot,
     enforce one active booking per account per day, insert with a fresh
     confirmation code and the first status-history entry
  3. Commit (whole transaction retried on serialization failure)
  4. Best-effort notification to the owning account
"""
import logging
import random
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bistro.core.config import get_settings
from bistro.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailed
from bistro.core.security import Account
from bistro.core.tx_retry import with_serialization_retry
from bistro.db.database import transaction
from bistro.models.reservation import ACTIVE_STATUSES, Reservation, ReservationStatus
from bistro.schemas.reservation import ReservationCreate, ReservationOut
from bistro.services import slot_ledger
from bistro.services.notifier import (
    RESERVATION_CREATED,
    RESERVATION_DELETED,
    RESERVATION_STATUS_UPDATED,
    NotificationEvent,
    Notifier,
    deliver,
)
from bistro.services.reservation_rules import ReservationDraft, can_be_cancelled, prepare_reservation

logger = logging.getLogger(__name__)

ALLOWED_STATUSES = tuple(s.value for s in ReservationStatus)
MAX_CODE_ATTEMPTS = 10


def generate_confirmation_code(day: date, hhmm: str) -> str:
    return f"RES{day.strftime('%Y%m%d')}{hhmm.replace(':', '')}{random.randint(0, 999):03d}"


def restaurant_clock(tz_name: str = "") -> Callable[[], datetime]:
    """
    Wall clock of the restaurant as a naive datetime.

    Reservation dates and times are local wall-clock values, so the booking
    window and the cancellation cutoff are judged against this clock, not UTC.
    An empty name means the server's local time.
    """
    if not tz_name:
        return datetime.now
    zone = ZoneInfo(tz_name)
    return lambda: datetime.now(zone).replace(tzinfo=None)


@dataclass(frozen=True)
class ReservationBooking:
    reservation: ReservationOut
    confirmation_code: str
    table_size: str
    available_slots: int
    total_slots: int


def _status_message(reservation: ReservationOut, status: str) -> str:
    when = reservation.date.strftime("%a %b %d %Y")
    messages = {
        ReservationStatus.CONFIRMED.value: (
            f"Great news! Your reservation for {reservation.guests} guests on {when} "
            f"at {reservation.time} has been confirmed."
        ),
        ReservationStatus.CANCELLED.value: (
            f"Your reservation for {reservation.guests} guests on {when} "
            f"at {reservation.time} has been cancelled."
        ),
        ReservationStatus.COMPLETED.value: (
            f"Thank you! Your reservation for {reservation.guests} guests has been marked as completed."
        ),
    }
    return messages.get(status, f"Your reservation is now {status}.")


class ReservationManager:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        clock: Callable[[], datetime] | None = None,
        code_factory: Callable[[date, str], str] = generate_confirmation_code,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self._clock = clock or restaurant_clock(get_settings().RESTAURANT_TIMEZONE)
        self._code_factory = code_factory

    # ── Availability ──────────────────────────────────────────
    async def availability(self, day: date, time: str, guests: int) -> slot_ledger.Availability:
        async with self._session_factory() as session:
            return await slot_ledger.check_availability(session, day, time, guests)

    async def day_availability(self, day: date, guests: int) -> list[tuple[str, slot_ledger.Availability]]:
        async with self._session_factory() as session:
            return await slot_ledger.day_availability(session, day, guests)

    # ── Create ────────────────────────────────────────────────
    async def create(self, request: ReservationCreate, account: Account | None = None) -> ReservationBooking:
        draft = prepare_reservation(
            name=request.name,
            email=request.email,
            phone=request.phone,
            guests=request.guests,
            day=request.date,
            time=request.time,
            message=request.message,
            today=self._clock().date(),
        )

        try:
            booking = await self._book(draft, account)
        except IntegrityError:
            logger.warning("Unique constraint hit while booking slot %s", draft.slot_key)
            raise ConflictError("A conflict occurred while creating your reservation. Please try again.")

        logger.info(
            "New reservation created: %s for %s (%s)",
            booking.confirmation_code, booking.reservation.name, booking.reservation.email,
        )
        if account is not None:
            await deliver(self._notifier, account.id, NotificationEvent(
                type=RESERVATION_CREATED,
                recipient_account_id=account.id,
                title="Reservation Submitted",
                message="Thanks for the reservation, your reservation is pending approval",
                data={
                    "reservationId": booking.reservation.id,
                    "confirmationCode": booking.confirmation_code,
                    "status": ReservationStatus.PENDING.value,
                },
            ))
        return booking

    @with_serialization_retry()
    async def _book(self, draft: ReservationDraft, account: Account | None) -> ReservationBooking:
        async with transaction(self._session_factory) as session:
            availability = await slot_ledger.check_availability(session, draft.date, draft.time, draft.guests)
            if not availability.available:
                raise ConflictError(
                    f"No {availability.required_table_size} tables available for {draft.guests} guests "
                    f"at {draft.time} on {draft.date.isoformat()}. "
                    f"{availability.available_slots}/{availability.total_slots} slots remaining.",
                    {
                        "availableSlots": availability.available_slots,
                        "totalSlots": availability.total_slots,
                        "requiredTableSize": availability.required_table_size,
                    },
                )

            if account is not None and await self._has_active_on(session, account.id, draft.date):
                raise ConflictError("You already have a reservation on this date")

            reservation = Reservation(
                account_id=account.id if account else None,
                name=draft.name,
                email=draft.email,
                phone=draft.phone,
                guests=draft.guests,
                date=draft.date,
                time=draft.time,
                message=draft.message,
                table_size=draft.table_size,
                slot_key=draft.slot_key,
                confirmation_code=await self._unique_code(session, draft),
            )
            reservation.record_status(
                ReservationStatus.PENDING.value,
                changed_by=draft.email or "system",
                note="Reservation created",
            )
            session.add(reservation)
            await session.flush()
            snapshot = ReservationOut.model_validate(reservation)

        return ReservationBooking(
            reservation=snapshot,
            confirmation_code=snapshot.confirmation_code,
            table_size=snapshot.table_size,
            available_slots=availability.available_slots - 1,
            total_slots=availability.total_slots,
        )

    async def _has_active_on(self, session: AsyncSession, account_id: str, day: date) -> bool:
        result = await session.execute(
            select(func.count())
            .select_from(Reservation)
            .where(
                Reservation.account_id == account_id,
                Reservation.date == day,
                Reservation.status.in_(ACTIVE_STATUSES),
            )
        )
        return result.scalar_one() > 0

    async def _unique_code(self, session: AsyncSession, draft: ReservationDraft) -> str:
        for _ in range(MAX_CODE_ATTEMPTS):
            code = self._code_factory(draft.date, draft.time)
            taken = await session.execute(select(Reservation.id).where(Reservation.confirmation_code == code))
            if taken.first() is None:
                return code
        raise ConflictError("Failed to generate unique confirmation code")

    # ── Status transitions ────────────────────────────────────
    async def update_status(self, reservation_id: str, status: str, actor: str, note: str | None = None) -> ReservationOut:
        if status not in ALLOWED_STATUSES:
            raise ValidationFailed(
                f"Status must be one of: {', '.join(ALLOWED_STATUSES)}",
                {"status": "Invalid reservation status"},
            )
        reservation, old_status = await self._transition(reservation_id, status, actor, note)
        await self._announce_status(reservation, old_status)
        return reservation

    async def cancel_own(self, reservation_id: str, account: Account) -> ReservationOut:
        """Owner self-service cancellation, allowed until two hours before seating."""
        reservation, old_status = await self._transition(
            reservation_id,
            ReservationStatus.CANCELLED.value,
            actor=account.email or account.id,
            note="Cancelled by guest",
            owner=account,
        )
        await self._announce_status(reservation, old_status)
        return reservation

    @with_serialization_retry()
    async def _transition(
        self,
        reservation_id: str,
        status: str,
        actor: str,
        note: str | None,
        owner: Account | None = None,
    ) -> tuple[ReservationOut, str]:
        async with transaction(self._session_factory) as session:
            reservation = await session.get(Reservation, reservation_id)
            if reservation is None:
                raise NotFoundError("Reservation not found")

            if owner is not None:
                if reservation.account_id != owner.id:
                    raise ForbiddenError("You can only cancel your own reservations")
                if not can_be_cancelled(reservation.date, reservation.time, reservation.status, self._clock()):
                    raise ConflictError(
                        "Reservations can only be cancelled up to 2 hours before the booking time"
                    )

            old_status = reservation.status
            if old_status != status:
                reservation.record_status(status, changed_by=actor, note=note or f"Status updated to {status}")
                await session.flush()
            snapshot = ReservationOut.model_validate(reservation)

        return snapshot, old_status

    async def _announce_status(self, reservation: ReservationOut, old_status: str) -> None:
        status = reservation.status
        if old_status == status or status == ReservationStatus.PENDING.value:
            return
        await deliver(self._notifier, reservation.account_id, NotificationEvent(
            type=RESERVATION_STATUS_UPDATED,
            recipient_account_id=reservation.account_id or "",
            title=f"Reservation {status.capitalize()}",
            message=_status_message(reservation, status),
            priority="high" if status == ReservationStatus.CANCELLED.value else "medium",
            data={
                "reservationId": reservation.id,
                "confirmationCode": reservation.confirmation_code,
                "status": status,
                "oldStatus": old_status,
            },
        ))

    # ── Delete ────────────────────────────────────────────────
    async def delete(self, reservation_id: str) -> None:
        async with transaction(self._session_factory) as session:
            reservation = await session.get(Reservation, reservation_id)
            if reservation is None:
                raise NotFoundError("Reservation not found")
            account_id, code = reservation.account_id, reservation.confirmation_code
            await session.delete(reservation)
        logger.info("Reservation %s (%s) deleted", reservation_id, code)
        await deliver(self._notifier, account_id, NotificationEvent(
            type=RESERVATION_DELETED,
            recipient_account_id=account_id or "",
            title="Reservation Removed",
            message=f"Your reservation {code} has been removed by the restaurant.",
            priority="high",
            data={"reservationId": reservation_id, "confirmationCode": code},
        ))

    # ── Reads ─────────────────────────────────────────────────
    async def get(self, reservation_id: str) -> ReservationOut:
        async with self._session_factory() as session:
            reservation = await session.get(Reservation, reservation_id)
            if reservation is None:
                raise NotFoundError("Reservation not found")
            return ReservationOut.model_validate(reservation)

    def can_cancel(self, reservation: ReservationOut) -> bool:
        return can_be_cancelled(reservation.date, reservation.time, reservation.status, self._clock())

    async def list_all(
        self,
        day: date | None = None,
        status: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[ReservationOut], int]:
        query = select(Reservation)
        count_query = select(func.count()).select_from(Reservation)
        if day is not None:
            query = query.where(Reservation.date == day)
            count_query = count_query.where(Reservation.date == day)
        if status:
            query = query.where(Reservation.status == status)
            count_query = count_query.where(Reservation.status == status)

        query = query.order_by(Reservation.date.asc(), Reservation.time.asc()).offset((page - 1) * limit).limit(limit)
        async with self._session_factory() as session:
            rows = (await session.execute(query)).scalars().all()
            total = (await session.execute(count_query)).scalar_one()
            return [ReservationOut.model_validate(r) for r in rows], int(total)

    async def list_for_account(self, account_id: str, limit: int = 20) -> list[ReservationOut]:
        query = (
            select(Reservation)
            .where(Reservation.account_id == account_id)
            .order_by(Reservation.date.desc(), Reservation.time.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(query)).scalars().all()
            return [ReservationOut.model_validate(r) for r in rows]
