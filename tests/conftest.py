from datetime import datetime, timedelta
from itertools import count

import pytest
from sqlalchemy import func, select

from gym_backend.db import Database
from gym_backend.models import MembershipStatus, Reservation, ReservationStatus, UserRole
from gym_backend.reservations import ReservationService
from gym_backend.services import create_gym_class, create_user

CLASS_START = datetime(2030, 1, 14, 9, 0)


@pytest.fixture
def db(tmp_path):
    """A fresh SQLite database per test."""
    database = Database.from_url(f"sqlite:///{tmp_path / 'gym.sqlite'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def service(db):
    return ReservationService(db)


@pytest.fixture
def make_user(db):
    seq = count(1)

    def _make(role=UserRole.MEMBER, membership_status=MembershipStatus.ACTIVE, name=None):
        n = next(seq)
        if role != UserRole.MEMBER:
            membership_status = None
        return create_user(
            db,
            name or f"User {n}",
            f"user{n}@gym.test",
            role,
            membership_status=membership_status,
        )

    return _make


@pytest.fixture
def member(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role=UserRole.ADMIN)


@pytest.fixture
def instructor(make_user):
    return make_user(role=UserRole.INSTRUCTOR)


@pytest.fixture
def make_class(db, instructor):
    def _make(capacity=2, name="Spinning"):
        return create_gym_class(
            db,
            name,
            instructor_id=instructor.id,
            start_time=CLASS_START,
            end_time=CLASS_START + timedelta(hours=1),
            capacity=capacity,
        )

    return _make


@pytest.fixture
def reload(db):
    """Read a row again from the database."""

    def _reload(model, pk):
        with db.session() as s:
            return s.get(model, pk)

    return _reload


@pytest.fixture
def confirmed_count(db):
    def _count(class_id):
        with db.session() as s:
            return s.scalar(
                select(func.count(Reservation.id)).where(
                    Reservation.class_id == class_id,
                    Reservation.status == ReservationStatus.CONFIRMED,
                )
            )

    return _count
