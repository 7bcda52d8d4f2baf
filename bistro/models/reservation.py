"""
Bistro — Reservation DB models

[TRANSACTIONAL DATA] reservations — slot capacity is derived from these rows,
                     there is no separate counter table.
[AUDIT DATA]         reservation_status_history — append-only, removed only
                     together with its reservation.
"""
import uuid
from datetime import date, datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import Date, ForeignKey, Integer, String, Text, func, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bistro.db.database import Base, UTCDateTime


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class ReservationStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


ACTIVE_STATUSES = (ReservationStatus.PENDING.value, ReservationStatus.CONFIRMED.value)


class TableSize(str, PyEnum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    VIP = "vip"


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        Index("ix_reservations_slot_status", "slot_key", "status"),
        Index("ix_reservations_account_date", "account_id", "date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    confirmation_code: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    account_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    guests: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, index=True, nullable=False)
    time: Mapped[str] = mapped_column(String(5), nullable=False)  # HH:MM, 30-minute grid
    table_size: Mapped[str] = mapped_column(String(16), nullable=False)
    slot_key: Mapped[str] = mapped_column(String(40), nullable=False)  # date|time|tableSize
    status: Mapped[str] = mapped_column(String(16), default=ReservationStatus.PENDING.value, nullable=False)
    message: Mapped[str] = mapped_column(Text, default="", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    status_history: Mapped[list["ReservationStatusEntry"]] = relationship(
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="ReservationStatusEntry.seq",
        lazy="selectin",
    )

    def record_status(self, status: str, changed_by: str, note: str = "") -> "ReservationStatusEntry":
        """Set the status and append the matching history entry."""
        previous = self.status if self.status_history else None
        now = utcnow()
        self.status = status
        self.updated_at = now
        entry = ReservationStatusEntry(
            status=status,
            previous_status=previous,
            changed_by=changed_by,
            note=note,
            changed_at=now,
        )
        self.status_history.append(entry)
        return entry

    def __repr__(self) -> str:
        return f"<Reservation code={self.confirmation_code} slot={self.slot_key} status={self.status}>"


class ReservationStatusEntry(Base):
    __tablename__ = "reservation_status_history"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reservation_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("reservations.id", ondelete="CASCADE"), index=True, nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    previous_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    changed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    changed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    note: Mapped[str] = mapped_column(Text, default="", nullable=False)

    reservation: Mapped[Reservation] = relationship(back_populates="status_history")
