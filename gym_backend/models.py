from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRole(enum.Enum):
    MEMBER = "member"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"


class MembershipStatus(enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class ReservationStatus(enum.Enum):
    CONFIRMED = "confirmed"
    WAITLISTED = "waitlisted"
    CANCELLED = "cancelled"


def _enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    # store the lowercase values, not the member names
    return Enum(enum_cls, name=name, values_callable=lambda e: [m.value for m in e])


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(160), nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    role: Mapped[UserRole] = mapped_column(_enum_column(UserRole, "user_role"), nullable=False)
    # only meaningful for members
    membership_status: Mapped[MembershipStatus | None] = mapped_column(
        _enum_column(MembershipStatus, "membership_status"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    instructed_classes: Mapped[list["GymClass"]] = relationship(back_populates="instructor")
    reservations: Mapped[list["Reservation"]] = relationship(back_populates="member")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def can_book(self) -> bool:
        return self.role == UserRole.MEMBER and self.membership_status == MembershipStatus.ACTIVE

    def __repr__(self) -> str:
        return f"User({self.id}, {self.name}, {self.role.value})"


class GymClass(Base):
    __tablename__ = "gym_classes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    instructor_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    # written only by CapacityLedger
    current_bookings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    instructor: Mapped["User"] = relationship(back_populates="instructed_classes")
    reservations: Mapped[list["Reservation"]] = relationship(back_populates="gym_class")

    @property
    def available_seats(self) -> int:
        if self.is_cancelled:
            return 0
        return max(self.capacity - self.current_bookings, 0)

    def __repr__(self) -> str:
        return f"GymClass({self.id}, {self.name}, {self.current_bookings}/{self.capacity})"


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        # at most one live (non-cancelled) reservation per member and class
        Index(
            "uq_reservation_live_member_class",
            "member_id",
            "class_id",
            unique=True,
            sqlite_where=text("status != 'cancelled'"),
            postgresql_where=text("status != 'cancelled'"),
        ),
        Index("ix_reservation_class_status_reserved", "class_id", "status", "reserved_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    class_id: Mapped[int] = mapped_column(ForeignKey("gym_classes.id"), nullable=False)

    status: Mapped[ReservationStatus] = mapped_column(
        _enum_column(ReservationStatus, "reservation_status"),
        default=ReservationStatus.CONFIRMED,
        nullable=False,
    )

    reserved_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    member: Mapped["User"] = relationship(back_populates="reservations")
    gym_class: Mapped["GymClass"] = relationship(back_populates="reservations")

    @property
    def is_live(self) -> bool:
        return self.status != ReservationStatus.CANCELLED

    def __repr__(self) -> str:
        return f"Reservation({self.id}, member={self.member_id}, class={self.class_id}, {self.status.value})"
