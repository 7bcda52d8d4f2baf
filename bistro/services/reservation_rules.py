"""
Bistro — Reservation rules

Pure validation and derivation for reservation requests. Nothing here touches
storage: the lifecycle manager calls `prepare_reservation` before it opens a
transaction, and the result carries every derived field the insert needs.
"""
import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from bistro.core.errors import ValidationFailed
from bistro.models.reservation import ACTIVE_STATUSES
from bistro.services.slot_ledger import LAST_SEATING_TIME, OPENING_TIME, slot_key, table_size_for

MIN_GUESTS = 1
MAX_GUESTS = 20
BOOKING_WINDOW_MONTHS = 3
CANCELLATION_CUTOFF = timedelta(hours=2)

TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")
PHONE_RE = re.compile(r"^[+]?[\d\-()]{10,15}$")


@dataclass(frozen=True)
class ReservationDraft:
    name: str
    email: str
    phone: str
    guests: int
    date: date
    time: str
    message: str
    table_size: str
    slot_key: str


def add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def _minutes(hhmm: str) -> int:
    h, m = hhmm.split(":")
    return int(h) * 60 + int(m)


def parse_time(value: str) -> str:
    """Return `value` as zero-padded HH:MM or raise ValidationFailed."""
    match = TIME_RE.match(value.strip() if isinstance(value, str) else "")
    if not match:
        raise ValidationFailed("Invalid time format. Use HH:MM", {"time": "Time must be in HH:MM format"})
    return f"{int(match.group(1)):02d}:{match.group(2)}"


def check_guests(guests) -> int:
    if isinstance(guests, bool) or not isinstance(guests, int) or not MIN_GUESTS <= guests <= MAX_GUESTS:
        raise ValidationFailed(
            f"Guests must be between {MIN_GUESTS} and {MAX_GUESTS}",
            {"guests": f"Guests must be a whole number between {MIN_GUESTS} and {MAX_GUESTS}"},
        )
    return guests


def check_business_hours(hhmm: str) -> None:
    minutes = _minutes(hhmm)
    if minutes < _minutes(OPENING_TIME) or minutes > _minutes(LAST_SEATING_TIME):
        raise ValidationFailed(
            "Reservations are only available between 10:00 AM and 9:30 PM",
            {"time": "Outside business hours"},
        )
    if minutes % 30 != 0:
        raise ValidationFailed(
            "Reservations are only available at 30-minute intervals",
            {"time": "Time must be on the hour or half hour"},
        )


def check_booking_window(day: date, today: date) -> None:
    if day < today:
        raise ValidationFailed("Reservation date cannot be in the past", {"date": "Date is in the past"})
    if day > add_months(today, BOOKING_WINDOW_MONTHS):
        raise ValidationFailed(
            "Reservations can only be made up to 3 months in advance",
            {"date": "Date is too far in the future"},
        )


def check_phone(phone: str) -> str:
    phone = phone.strip()
    if not PHONE_RE.match(re.sub(r"\s", "", phone)):
        raise ValidationFailed("Please provide a valid phone number", {"phone": "Invalid phone number"})
    return phone


def prepare_reservation(
    *,
    name: str,
    email: str,
    phone: str,
    guests,
    day: date,
    time: str,
    message: str | None,
    today: date,
) -> ReservationDraft:
    missing = {
        field: "This field is required"
        for field, value in (("name", name), ("email", email), ("phone", phone), ("date", day), ("time", time))
        if value is None or (isinstance(value, str) and not value.strip())
    }
    if missing:
        raise ValidationFailed("All fields except message are required", missing)

    guests = check_guests(guests)
    hhmm = parse_time(time)
    check_booking_window(day, today)
    check_business_hours(hhmm)
    phone = check_phone(phone)

    size = table_size_for(guests)
    return ReservationDraft(
        name=name.strip(),
        email=email.strip().lower(),
        phone=phone,
        guests=guests,
        date=day,
        time=hhmm,
        message=(message or "").strip(),
        table_size=size,
        slot_key=slot_key(day, hhmm, size),
    )


def can_be_cancelled(day: date, hhmm: str, status: str, now: datetime) -> bool:
    """Guests may cancel their own booking until two hours before the seating."""
    h, m = map(int, hhmm.split(":"))
    starts_at = datetime(day.year, day.month, day.day, h, m)
    return now < starts_at - CANCELLATION_CUTOFF and status in ACTIVE_STATUSES
