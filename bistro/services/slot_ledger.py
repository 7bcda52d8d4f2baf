"""
Bistro — Slot ledger

Capacity accounting for reservations. A slot is (date, time, table size); the
number of active reservations on a slot is always counted from the
reservations table through the caller's session, so a check made inside a
transaction sees the rows that transaction already wrote.
"""
from dataclasses import dataclass
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bistro.models.reservation import ACTIVE_STATUSES, Reservation, TableSize

# Fixed restaurant floor plan: number of tables per size category.
TABLE_CAPACITY: dict[str, int] = {
    TableSize.SMALL.value: 5,   # up to 2 guests
    TableSize.MEDIUM.value: 4,  # up to 4 guests
    TableSize.LARGE.value: 3,   # up to 8 guests
    TableSize.VIP.value: 2,     # up to 20 guests
}

OPENING_TIME = "10:00"
LAST_SEATING_TIME = "21:30"
SLOT_MINUTES = 30


def table_size_for(guests: int) -> str:
    if guests <= 2:
        return TableSize.SMALL.value
    if guests <= 4:
        return TableSize.MEDIUM.value
    if guests <= 8:
        return TableSize.LARGE.value
    return TableSize.VIP.value


def slot_key(day: date, time: str, table_size: str) -> str:
    return f"{day.isoformat()}|{time}|{table_size}"


def day_slots() -> list[str]:
    """All bookable HH:MM times, OPENING_TIME through LAST_SEATING_TIME."""
    start_h, start_m = map(int, OPENING_TIME.split(":"))
    end_h, end_m = map(int, LAST_SEATING_TIME.split(":"))
    minute, last = start_h * 60 + start_m, end_h * 60 + end_m
    slots = []
    while minute <= last:
        slots.append(f"{minute // 60:02d}:{minute % 60:02d}")
        minute += SLOT_MINUTES
    return slots


@dataclass(frozen=True)
class Availability:
    available: bool
    available_slots: int
    total_slots: int
    required_table_size: str
    existing_reservations: int


async def count_active(session: AsyncSession, key: str) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(Reservation)
        .where(Reservation.slot_key == key, Reservation.status.in_(ACTIVE_STATUSES))
    )
    return int(result.scalar_one())


async def check_availability(session: AsyncSession, day: date, time: str, guests: int) -> Availability:
    required = table_size_for(guests)
    capacity = TABLE_CAPACITY[required]
    existing = await count_active(session, slot_key(day, time, required))
    remaining = capacity - existing
    return Availability(
        available=remaining > 0,
        available_slots=max(0, remaining),
        total_slots=capacity,
        required_table_size=required,
        existing_reservations=existing,
    )


async def day_availability(session: AsyncSession, day: date, guests: int) -> list[tuple[str, Availability]]:
    required = table_size_for(guests)
    capacity = TABLE_CAPACITY[required]
    prefix = f"{day.isoformat()}|"
    result = await session.execute(
        select(Reservation.time, func.count())
        .where(
            Reservation.slot_key.startswith(prefix),
            Reservation.table_size == required,
            Reservation.status.in_(ACTIVE_STATUSES),
        )
        .group_by(Reservation.time)
    )
    taken = {row[0]: int(row[1]) for row in result.all()}

    out = []
    for time in day_slots():
        existing = taken.get(time, 0)
        remaining = capacity - existing
        out.append((time, Availability(
            available=remaining > 0,
            available_slots=max(0, remaining),
            total_slots=capacity,
            required_table_size=required,
            existing_reservations=existing,
        )))
    return out
