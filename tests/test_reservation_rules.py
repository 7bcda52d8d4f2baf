"""
Reservation rules — pure validation, no database.
"""
from datetime import date, datetime

import pytest

from bistro.core.errors import ValidationFailed
from bistro.services.reservation_rules import (
    add_months,
    can_be_cancelled,
    check_booking_window,
    check_business_hours,
    check_guests,
    check_phone,
    parse_time,
    prepare_reservation,
)
from bistro.services.slot_ledger import table_size_for

TODAY = date(2026, 3, 10)


def _prepare(**overrides):
    fields = dict(
        name="  Ada Lovelace ",
        email="ADA@Example.com",
        phone="+1 555 010 2030",
        guests=4,
        day=date(2026, 3, 20),
        time=" 19:30",
        message=None,
        today=TODAY,
    )
    fields.update(overrides)
    return prepare_reservation(**fields)


# ─── Table sizes ───────────────────────────────────────────────────────────────
@pytest.mark.parametrize(
    "guests, expected",
    [(1, "small"), (2, "small"), (3, "medium"), (4, "medium"), (5, "large"), (8, "large"), (9, "vip"), (20, "vip")],
)
def test_table_size_boundaries(guests, expected):
    assert table_size_for(guests) == expected


# ─── Business hours ────────────────────────────────────────────────────────────
@pytest.mark.parametrize("hhmm", ["09:45", "22:00", "14:15", "09:30", "21:45"])
def test_times_outside_hours_or_grid_rejected(hhmm):
    with pytest.raises(ValidationFailed) as exc:
        check_business_hours(hhmm)
    assert "time" in exc.value.details


@pytest.mark.parametrize("hhmm", ["10:00", "14:00", "14:30", "21:30"])
def test_times_on_grid_accepted(hhmm):
    check_business_hours(hhmm)


def test_outside_hours_reported_before_grid():
    with pytest.raises(ValidationFailed) as exc:
        check_business_hours("09:45")
    assert "between 10:00 AM and 9:30 PM" in exc.value.message


def test_parse_time_zero_pads_and_rejects_garbage():
    assert parse_time("9:30") == "09:30"
    assert parse_time(" 19:00 ") == "19:00"
    for bad in ("24:00", "7pm", "12:60", ""):
        with pytest.raises(ValidationFailed):
            parse_time(bad)


# ─── Guests / phone / window ───────────────────────────────────────────────────
@pytest.mark.parametrize("guests", [0, 21, -3, 2.5, True, "4"])
def test_guest_count_bounds_and_type(guests):
    with pytest.raises(ValidationFailed):
        check_guests(guests)


def test_phone_format():
    assert check_phone(" (555) 010-2030 ") == "(555) 010-2030"
    with pytest.raises(ValidationFailed):
        check_phone("12345")
    with pytest.raises(ValidationFailed):
        check_phone("call me maybe")


def test_booking_window_is_three_calendar_months():
    check_booking_window(TODAY, TODAY)
    check_booking_window(date(2026, 6, 10), TODAY)
    with pytest.raises(ValidationFailed):
        check_booking_window(date(2026, 6, 11), TODAY)
    with pytest.raises(ValidationFailed):
        check_booking_window(date(2026, 3, 9), TODAY)


def test_add_months_clamps_to_month_end():
    assert add_months(date(2026, 11, 30), 3) == date(2027, 2, 28)
    assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)


# ─── prepare_reservation ──────────────────────────────────────────────────────
def test_prepare_normalizes_and_derives_slot():
    draft = _prepare()
    assert draft.name == "Ada Lovelace"
    assert draft.email == "ada@example.com"
    assert draft.time == "19:30"
    assert draft.table_size == "medium"
    assert draft.slot_key == "2026-03-20|19:30|medium"
    assert draft.message == ""


def test_prepare_reports_missing_fields():
    with pytest.raises(ValidationFailed) as exc:
        _prepare(name=" ", phone="")
    assert set(exc.value.details) == {"name", "phone"}


# ─── Cancellation window ───────────────────────────────────────────────────────
def test_cancellation_allowed_until_two_hours_before():
    day = date(2026, 3, 20)
    assert can_be_cancelled(day, "19:30", "pending", datetime(2026, 3, 20, 17, 29))
    assert not can_be_cancelled(day, "19:30", "confirmed", datetime(2026, 3, 20, 17, 30))
    assert not can_be_cancelled(day, "19:30", "cancelled", datetime(2026, 3, 19, 12, 0))
    assert not can_be_cancelled(day, "19:30", "completed", datetime(2026, 3, 19, 12, 0))
