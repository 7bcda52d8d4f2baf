"""
Bistro — Reservation Pydantic schemas

Only types and plain field constraints live here. Business rules (opening
hours, 30-minute grid, booking window, guest bounds) are enforced by
bistro.services.reservation_rules so they also hold for non-HTTP callers.
"""
import datetime as dt

from pydantic import EmailStr, Field

from bistro.schemas.common import CamelModel, Pagination


class ReservationCreate(CamelModel):
    name: str = Field(..., min_length=2, max_length=50, examples=["Ada Lovelace"])
    email: EmailStr
    phone: str = Field(..., min_length=1, max_length=32, examples=["+1 555 010 2030"])
    guests: int = Field(..., examples=[4])
    date: dt.date
    time: str = Field(..., examples=["19:30"])
    message: str | None = Field(None, max_length=500)


class StatusUpdate(CamelModel):
    status: str
    note: str | None = Field(None, max_length=500)


class StatusEntryOut(CamelModel):
    status: str
    previous_status: str | None = None
    changed_at: dt.datetime
    changed_by: str
    note: str = ""


class ReservationOut(CamelModel):
    id: str
    confirmation_code: str
    account_id: str | None = None
    name: str
    email: str
    phone: str
    guests: int
    date: dt.date
    time: str
    table_size: str
    slot_key: str
    status: str
    message: str = ""
    status_history: list[StatusEntryOut] = []
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class OwnReservationOut(ReservationOut):
    can_cancel: bool


class TableInfo(CamelModel):
    table_size: str
    available_slots: int
    total_slots: int


class ReservationCreated(CamelModel):
    msg: str
    reservation: ReservationOut
    confirmation_code: str
    table_info: TableInfo


class ReservationMessage(CamelModel):
    msg: str
    reservation: ReservationOut


class ReservationList(CamelModel):
    reservations: list[ReservationOut]
    pagination: Pagination


class OwnReservationList(CamelModel):
    reservations: list[OwnReservationOut]


class AvailabilityOut(CamelModel):
    available: bool
    available_slots: int
    total_slots: int
    required_table_size: str
    date: dt.date
    time: str
    guests: int


class SlotAvailabilityOut(CamelModel):
    time: str
    available: bool
    available_slots: int
    total_slots: int
    required_table_size: str


class DayAvailabilityOut(CamelModel):
    date: dt.date
    guests: int
    slots: list[SlotAvailabilityOut]
