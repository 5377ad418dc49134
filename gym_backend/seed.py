from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import select

from .db import Database
from .models import GymClass, MembershipStatus, User, UserRole


def seed_base(db: Database, now: datetime | None = None) -> None:
    """
    Load the minimal demo data (idempotent):
    - one admin
    - instructors
    - members (one of them inactive)
    - a few classes over the next days
    """
    now = now or datetime.now().replace(minute=0, second=0, microsecond=0)

    with db.session() as s:
        users = [
            ("Gym Admin", "admin@gym.local", UserRole.ADMIN, None),
            ("Sara Conti", "sara.conti@gym.local", UserRole.INSTRUCTOR, None),
            ("Luca Ferri", "luca.ferri@gym.local", UserRole.INSTRUCTOR, None),
            ("Anna Greco", "anna.greco@gym.local", UserRole.MEMBER, MembershipStatus.ACTIVE),
            ("Marco Riva", "marco.riva@gym.local", UserRole.MEMBER, MembershipStatus.ACTIVE),
            ("Giulia Neri", "giulia.neri@gym.local", UserRole.MEMBER, MembershipStatus.ACTIVE),
            ("Paolo Sala", "paolo.sala@gym.local", UserRole.MEMBER, MembershipStatus.INACTIVE),
        ]
        for name, email, role, status in users:
            if s.execute(select(User).where(User.email == email)).scalar_one_or_none() is None:
                s.add(User(name=name, email=email, role=role, membership_status=status))

        s.flush()

        sara = s.execute(select(User).where(User.email == "sara.conti@gym.local")).scalar_one()
        luca = s.execute(select(User).where(User.email == "luca.ferri@gym.local")).scalar_one()

        classes = [
            ("Morning Yoga", sara.id, timedelta(days=1, hours=8), 60, 12),
            ("Spinning", luca.id, timedelta(days=1, hours=18), 45, 2),
            ("HIIT", luca.id, timedelta(days=2, hours=7), 30, 8),
        ]
        for name, instructor_id, offset, minutes, capacity in classes:
            exists = s.execute(
                select(GymClass).where(GymClass.name == name, GymClass.instructor_id == instructor_id)
            ).scalar_one_or_none()
            if exists is None:
                start = now.replace(hour=0) + offset
                s.add(
                    GymClass(
                        name=name,
                        instructor_id=instructor_id,
                        start_time=start,
                        end_time=start + timedelta(minutes=minutes),
                        capacity=capacity,
                    )
                )
