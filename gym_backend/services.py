from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from .db import Database
from .errors import ClassCancelledError, NotFoundError, UnauthorizedError, ValidationError
from .models import (
    GymClass,
    MembershipStatus,
    Reservation,
    ReservationStatus,
    User,
    UserRole,
    utcnow,
)

log = logging.getLogger(__name__)

_UNSET = object()


# =========================
# Helper / DTO
# =========================
@dataclass(frozen=True)
class LedgerDrift:
    class_id: int
    recorded: int
    actual: int
    is_cancelled: bool


def _coerce_enum(enum_cls, value, field: str):
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"{field} must be one of: {allowed}") from None


def _naive_utc(value: datetime) -> datetime:
    """Class times are stored as naive UTC, the form SQLite hands back."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _require_user(s: Session, user_id: int) -> User:
    u = s.get(User, user_id)
    if u is None:
        raise NotFoundError("user", user_id)
    return u


def _require_class(s: Session, class_id: int) -> GymClass:
    c = s.get(GymClass, class_id)
    if c is None:
        raise NotFoundError("class", class_id)
    return c


def _check_email_free(s: Session, email: str, user_id: int | None = None) -> None:
    q = select(User.id).where(User.email == email)
    if user_id is not None:
        q = q.where(User.id != user_id)
    if s.execute(q.limit(1)).first() is not None:
        raise ValidationError(f"email {email} is already registered")


def _check_instructor(s: Session, instructor_id: int) -> None:
    u = s.get(User, instructor_id)
    if u is None or u.role != UserRole.INSTRUCTOR:
        raise ValidationError(f"user {instructor_id} is not an instructor")


# =========================
# Users
# =========================
def create_user(
    db: Database,
    name: str,
    email: str,
    role: UserRole | str,
    phone: str | None = None,
    membership_status: MembershipStatus | str | None = None,
) -> User:
    role = _coerce_enum(UserRole, role, "role")
    membership_status = _coerce_enum(MembershipStatus, membership_status, "membership_status")
    name = (name or "").strip()
    email = (email or "").strip().lower()

    if not name:
        raise ValidationError("name is required")
    if not email or "@" not in email:
        raise ValidationError("a valid email is required")
    if role != UserRole.MEMBER and membership_status is not None:
        raise ValidationError("membership status can only be set for members")

    with db.session() as s:
        _check_email_free(s, email)
        u = User(name=name, email=email, phone=phone, role=role, membership_status=membership_status)
        s.add(u)
        s.flush()

    log.info("user %s created (%s)", u.id, role.value)
    return u


def require_admin(db: Database, user_id: int) -> User:
    """Access check for admin-only operations such as cancelling a class."""
    with db.session() as s:
        u = _require_user(s, user_id)
    if not u.is_admin:
        raise UnauthorizedError(f"user {user_id} is not an admin")
    return u


def list_users(db: Database) -> list[User]:
    with db.session() as s:
        return list(s.scalars(select(User).order_by(User.id)))


def get_user(db: Database, user_id: int) -> User:
    with db.session() as s:
        return _require_user(s, user_id)


def update_user(
    db: Database,
    user_id: int,
    *,
    name=_UNSET,
    email=_UNSET,
    phone=_UNSET,
    membership_status=_UNSET,
) -> User:
    """Partial update: only the keyword arguments actually passed are written."""
    with db.session() as s:
        u = _require_user(s, user_id)

        if name is not _UNSET:
            name = (name or "").strip()
            if not name:
                raise ValidationError("name is required")
            u.name = name
        if email is not _UNSET:
            email = (email or "").strip().lower()
            if not email or "@" not in email:
                raise ValidationError("a valid email is required")
            _check_email_free(s, email, user_id=user_id)
            u.email = email
        if phone is not _UNSET:
            u.phone = phone
        if membership_status is not _UNSET:
            status = _coerce_enum(MembershipStatus, membership_status, "membership_status")
            if u.role != UserRole.MEMBER and status is not None:
                raise ValidationError("membership status can only be set for members")
            u.membership_status = status

        u.updated_at = utcnow()
        s.flush()
        return u


# =========================
# Gym classes
# =========================
def create_gym_class(
    db: Database,
    name: str,
    instructor_id: int,
    start_time: datetime,
    end_time: datetime,
    capacity: int,
) -> GymClass:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    start_time, end_time = _naive_utc(start_time), _naive_utc(end_time)
    if start_time >= end_time:
        raise ValidationError("start time must be before end time")
    if capacity <= 0:
        raise ValidationError("capacity must be a positive integer")

    with db.session() as s:
        _check_instructor(s, instructor_id)
        c = GymClass(
            name=name,
            instructor_id=instructor_id,
            start_time=start_time,
            end_time=end_time,
            capacity=capacity,
            current_bookings=0,
            is_cancelled=False,
        )
        s.add(c)
        s.flush()

    log.info("class %s created (%s, capacity %s)", c.id, c.name, c.capacity)
    return c


def list_gym_classes(db: Database, include_cancelled: bool = True) -> list[GymClass]:
    q = select(GymClass).order_by(GymClass.start_time.asc(), GymClass.id.asc())
    if not include_cancelled:
        q = q.where(GymClass.is_cancelled.is_(False))
    with db.session() as s:
        return list(s.scalars(q))


def get_gym_class(db: Database, class_id: int) -> GymClass:
    with db.session() as s:
        return _require_class(s, class_id)


def update_gym_class(
    db: Database,
    class_id: int,
    *,
    name=_UNSET,
    instructor_id=_UNSET,
    start_time=_UNSET,
    end_time=_UNSET,
) -> GymClass:
    """
    Partial update of the descriptive fields of a class.

    Capacity is fixed at creation and the seat counter belongs to the
    ledger, so neither can be changed here.
    """
    with db.session() as s:
        c = _require_class(s, class_id)
        if c.is_cancelled:
            raise ClassCancelledError(f"class {class_id} is cancelled")

        if name is not _UNSET:
            name = (name or "").strip()
            if not name:
                raise ValidationError("name is required")
            c.name = name
        if instructor_id is not _UNSET:
            _check_instructor(s, instructor_id)
            c.instructor_id = instructor_id

        new_start = c.start_time if start_time is _UNSET else _naive_utc(start_time)
        new_end = c.end_time if end_time is _UNSET else _naive_utc(end_time)
        if new_start >= new_end:
            raise ValidationError("start time must be before end time")
        c.start_time, c.end_time = new_start, new_end

        c.updated_at = utcnow()
        s.flush()
        return c


# =========================
# Reservations (read side)
# =========================
def reservations_by_member(db: Database, member_id: int) -> list[Reservation]:
    with db.session() as s:
        _require_user(s, member_id)
        q = (
            select(Reservation)
            .where(Reservation.member_id == member_id)
            .order_by(Reservation.reserved_at.desc(), Reservation.id.desc())
        )
        return list(s.scalars(q))


def reservations_by_class(db: Database, class_id: int) -> list[Reservation]:
    with db.session() as s:
        _require_class(s, class_id)
        q = (
            select(Reservation)
            .where(Reservation.class_id == class_id)
            .order_by(Reservation.reserved_at.asc(), Reservation.id.asc())
        )
        return list(s.scalars(q))


def all_reservations(db: Database) -> list[Reservation]:
    with db.session() as s:
        return list(s.scalars(select(Reservation).order_by(Reservation.id)))


def waitlist_position(db: Database, reservation_id: int) -> int | None:
    """1-based position in promotion order, None unless the reservation is waitlisted."""
    with db.session() as s:
        r = s.get(Reservation, reservation_id)
        if r is None:
            raise NotFoundError("reservation", reservation_id)
        if r.status != ReservationStatus.WAITLISTED:
            return None

        ahead = s.scalar(
            select(func.count(Reservation.id)).where(
                and_(
                    Reservation.class_id == r.class_id,
                    Reservation.status == ReservationStatus.WAITLISTED,
                    (Reservation.reserved_at < r.reserved_at)
                    | and_(Reservation.reserved_at == r.reserved_at, Reservation.id < r.id),
                )
            )
        )
        return int(ahead or 0) + 1


# =========================
# Ledger audit
# =========================
def audit_ledger(db: Database) -> list[LedgerDrift]:
    """
    Compare every class counter with its confirmed reservations.

    Active classes must match the confirmed count exactly; cancelled
    classes must sit at 0. An empty list means the ledger is consistent.
    """
    confirmed = (
        select(Reservation.class_id, func.count(Reservation.id).label("n"))
        .where(Reservation.status == ReservationStatus.CONFIRMED)
        .group_by(Reservation.class_id)
        .subquery()
    )
    q = (
        select(GymClass.id, GymClass.current_bookings, GymClass.is_cancelled, func.coalesce(confirmed.c.n, 0))
        .outerjoin(confirmed, confirmed.c.class_id == GymClass.id)
        .order_by(GymClass.id)
    )

    drifts = []
    with db.session() as s:
        for class_id, recorded, is_cancelled, actual in s.execute(q).all():
            expected = 0 if is_cancelled else actual
            if recorded != expected or (is_cancelled and actual):
                drifts.append(LedgerDrift(class_id, recorded, actual, is_cancelled))

    for d in drifts:
        log.warning("ledger drift on class %s: counter %s, confirmed %s", d.class_id, d.recorded, d.actual)
    return drifts


# =========================
# Flat views (JSON-safe dicts for API and CLI)
# =========================
def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def user_flat(u: User) -> dict:
    return {
        "id": u.id,
        "name": u.name,
        "email": u.email,
        "phone": u.phone,
        "role": u.role.value,
        "membership_status": u.membership_status.value if u.membership_status else None,
        "created_at": _iso(u.created_at),
        "updated_at": _iso(u.updated_at),
    }


def gym_class_flat(c: GymClass) -> dict:
    return {
        "id": c.id,
        "name": c.name,
        "instructor_id": c.instructor_id,
        "start_time": _iso(c.start_time),
        "end_time": _iso(c.end_time),
        "capacity": c.capacity,
        "current_bookings": c.current_bookings,
        "available_seats": c.available_seats,
        "is_cancelled": c.is_cancelled,
        "created_at": _iso(c.created_at),
        "updated_at": _iso(c.updated_at),
    }


def reservation_flat(r: Reservation) -> dict:
    return {
        "id": r.id,
        "member_id": r.member_id,
        "class_id": r.class_id,
        "status": r.status.value,
        "reserved_at": _iso(r.reserved_at),
        "cancelled_at": _iso(r.cancelled_at),
    }


def drift_flat(d: LedgerDrift) -> dict:
    return {
        "class_id": d.class_id,
        "recorded": d.recorded,
        "actual": d.actual,
        "is_cancelled": d.is_cancelled,
    }
