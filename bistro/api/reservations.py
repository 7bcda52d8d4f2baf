"""
Bistro — Reservations API

Flow:
  1. JWT validated by middleware (request.state.user set; availability is public)
  2. Rate limit applied by middleware (POST 3 / 5 min, availability 20 / min)
  3. ReservationManager validates, books inside a transaction and notifies
"""
import datetime as dt
import math

from fastapi import APIRouter, Depends, Query, status

from bistro.api.deps import current_account, require_admin, reservation_manager
from bistro.core.security import Account
from bistro.schemas.common import Pagination
from bistro.schemas.reservation import (
    AvailabilityOut,
    DayAvailabilityOut,
    OwnReservationList,
    OwnReservationOut,
    ReservationCreate,
    ReservationCreated,
    ReservationList,
    ReservationMessage,
    SlotAvailabilityOut,
    StatusUpdate,
    TableInfo,
)
from bistro.services.reservation_rules import check_guests, parse_time
from bistro.services.reservations import ReservationManager

router = APIRouter(prefix="/reservations", tags=["reservations"])


@router.post("", response_model=ReservationCreated, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    account: Account = Depends(current_account),
    manager: ReservationManager = Depends(reservation_manager),
):
    booking = await manager.create(payload, account)
    return ReservationCreated(
        msg="Reservation created successfully",
        reservation=booking.reservation,
        confirmation_code=booking.confirmation_code,
        table_info=TableInfo(
            table_size=booking.table_size,
            available_slots=booking.available_slots,
            total_slots=booking.total_slots,
        ),
    )


@router.get("/availability", response_model=AvailabilityOut)
async def check_availability(
    date: dt.date = Query(...),
    time: str = Query(...),
    guests: int = Query(...),
    manager: ReservationManager = Depends(reservation_manager),
):
    """Public: remaining tables of the size `guests` needs at one slot."""
    hhmm = parse_time(time)
    guests = check_guests(guests)
    result = await manager.availability(date, hhmm, guests)
    return AvailabilityOut(
        available=result.available,
        available_slots=result.available_slots,
        total_slots=result.total_slots,
        required_table_size=result.required_table_size,
        date=date,
        time=hhmm,
        guests=guests,
    )


@router.get("/availability/day", response_model=DayAvailabilityOut)
async def check_day_availability(
    date: dt.date = Query(...),
    guests: int = Query(...),
    manager: ReservationManager = Depends(reservation_manager),
):
    guests = check_guests(guests)
    slots = await manager.day_availability(date, guests)
    return DayAvailabilityOut(
        date=date,
        guests=guests,
        slots=[
            SlotAvailabilityOut(
                time=time,
                available=a.available,
                available_slots=a.available_slots,
                total_slots=a.total_slots,
                required_table_size=a.required_table_size,
            )
            for time, a in slots
        ],
    )


@router.get("/mine", response_model=OwnReservationList)
async def my_reservations(
    account: Account = Depends(current_account),
    manager: ReservationManager = Depends(reservation_manager),
):
    reservations = await manager.list_for_account(account.id)
    return OwnReservationList(
        reservations=[
            OwnReservationOut(**r.model_dump(), can_cancel=manager.can_cancel(r)) for r in reservations
        ]
    )


@router.get("", response_model=ReservationList)
async def list_reservations(
    date: dt.date | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    _: Account = Depends(require_admin),
    manager: ReservationManager = Depends(reservation_manager),
):
    reservations, total = await manager.list_all(day=date, status=status_filter, page=page, limit=limit)
    return ReservationList(
        reservations=reservations,
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.put("/{reservation_id}/status", response_model=ReservationMessage)
async def update_reservation_status(
    reservation_id: str,
    payload: StatusUpdate,
    admin: Account = Depends(require_admin),
    manager: ReservationManager = Depends(reservation_manager),
):
    reservation = await manager.update_status(reservation_id, payload.status, admin.email or admin.id, payload.note)
    return ReservationMessage(msg=f"Reservation {reservation.status} successfully", reservation=reservation)


@router.post("/{reservation_id}/cancel", response_model=ReservationMessage)
async def cancel_my_reservation(
    reservation_id: str,
    account: Account = Depends(current_account),
    manager: ReservationManager = Depends(reservation_manager),
):
    reservation = await manager.cancel_own(reservation_id, account)
    return ReservationMessage(msg="Reservation cancelled successfully", reservation=reservation)


@router.delete("/{reservation_id}")
async def delete_reservation(
    reservation_id: str,
    _: Account = Depends(require_admin),
    manager: ReservationManager = Depends(reservation_manager),
):
    await manager.delete(reservation_id)
    return {"msg": "Reservation deleted successfully"}
