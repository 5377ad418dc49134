from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .db import Database
from .errors import (
    AlreadyCancelledError,
    ClassCancelledError,
    DuplicateBookingError,
    InvalidMemberError,
    NotFoundError,
    UnauthorizedError,
)
from .ledger import CapacityLedger
from .locks import ClassLocks
from .models import GymClass, Reservation, ReservationStatus, User, utcnow

log = logging.getLogger(__name__)

LIVE_STATUSES = (ReservationStatus.CONFIRMED, ReservationStatus.WAITLISTED)


class ReservationService:
    """
    Reservation lifecycle: booking, cancellation, waitlist promotion and the
    cascade triggered by cancelling a whole class.

    States and transitions:

    - (new)      -> confirmed   booking with an open seat, occupies it
    - (new)      -> waitlisted  booking on a full class
    - confirmed  -> cancelled   releases the seat, then promotes the head of the waitlist
    - waitlisted -> cancelled   no seat involved
    - waitlisted -> confirmed   promotion, occupies the freed seat
    - any live   -> cancelled   class cancellation, counter zeroed once

    Each public method is one unit of work: the lock of the class is taken
    first and held until the database transaction has committed, the class
    row is read ``FOR UPDATE``, and any failure rolls everything back.
    """

    def __init__(
        self,
        db: Database,
        ledger: CapacityLedger | None = None,
        locks: ClassLocks | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.ledger = ledger or CapacityLedger()
        self.locks = locks or ClassLocks()
        self.clock = clock

    # =========================
    # Booking
    # =========================
    def create_reservation(self, member_id: int, class_id: int) -> Reservation:
        """
        Book ``class_id`` for ``member_id``.

        The reservation is ``confirmed`` when the class has an open seat and
        ``waitlisted`` otherwise.
        """
        with self.locks.hold(class_id):
            try:
                with self.db.session() as s:
                    member = s.get(User, member_id)
                    if member is None:
                        raise NotFoundError("member", member_id)
                    gym_class = self._class_for_update(s, class_id)
                    if gym_class is None:
                        raise NotFoundError("class", class_id)

                    if not member.can_book:
                        raise InvalidMemberError(f"user {member_id} is not a member with an active membership")
                    if gym_class.is_cancelled:
                        raise ClassCancelledError(f"class {class_id} is cancelled")
                    if self._live_reservation(s, member_id, class_id) is not None:
                        raise DuplicateBookingError(f"member {member_id} already holds a reservation for class {class_id}")

                    if self.ledger.has_open_seat(gym_class):
                        status = ReservationStatus.CONFIRMED
                        self.ledger.occupy_seat(gym_class)
                    else:
                        status = ReservationStatus.WAITLISTED

                    reservation = Reservation(
                        member_id=member_id,
                        class_id=class_id,
                        status=status,
                        reserved_at=self.clock(),
                        cancelled_at=None,
                    )
                    s.add(reservation)
                    s.flush()
            except IntegrityError as exc:
                # the partial unique index caught a live duplicate this lock could not see
                raise DuplicateBookingError(
                    f"member {member_id} already holds a reservation for class {class_id}"
                ) from exc

        log.info(
            "reservation %s: member %s booked class %s as %s",
            reservation.id, member_id, class_id, reservation.status.value,
        )
        return reservation

    # =========================
    # Cancellation
    # =========================
    def cancel_reservation(self, reservation_id: int, acting_user_id: int) -> Reservation:
        """
        Cancel a reservation on behalf of ``acting_user_id`` (its own member
        or an admin).

        Cancelling a confirmed reservation frees its seat, and the earliest
        waitlisted reservation of the class (ties broken by lowest id) takes
        it. A single cancellation promotes at most one reservation.
        """
        # the class id is needed to pick the lock; everything is re-read under it
        with self.db.session() as s:
            found = s.get(Reservation, reservation_id)
            if found is None:
                raise NotFoundError("reservation", reservation_id)
            class_id = found.class_id

        with self.locks.hold(class_id):
            with self.db.session() as s:
                gym_class = self._class_for_update(s, class_id)
                reservation = s.get(Reservation, reservation_id)

                if reservation.status == ReservationStatus.CANCELLED:
                    raise AlreadyCancelledError(f"reservation {reservation_id} is already cancelled")

                actor = s.get(User, acting_user_id)
                if actor is None:
                    raise NotFoundError("user", acting_user_id)
                if not actor.is_admin and reservation.member_id != acting_user_id:
                    raise UnauthorizedError(f"user {acting_user_id} may not cancel reservation {reservation_id}")

                prior = reservation.status
                reservation.status = ReservationStatus.CANCELLED
                reservation.cancelled_at = self.clock()

                promoted = None
                if prior == ReservationStatus.CONFIRMED:
                    self.ledger.release_seat(gym_class)
                    promoted = self._promote_next(s, gym_class)
                s.flush()

        log.info("reservation %s cancelled by user %s (was %s)", reservation_id, acting_user_id, prior.value)
        if promoted is not None:
            log.info("reservation %s promoted from the waitlist of class %s", promoted.id, class_id)
        return reservation

    def cancel_class(self, class_id: int) -> GymClass:
        """
        Cancel a class and every live reservation it has.

        Confirmed and waitlisted reservations alike become cancelled (no seat
        will ever open for the waitlist) and the counter drops to 0. Access
        control is the caller's job: only admins should reach this.
        """
        with self.locks.hold(class_id):
            with self.db.session() as s:
                gym_class = self._class_for_update(s, class_id)
                if gym_class is None:
                    raise NotFoundError("class", class_id)

                now = self.clock()
                gym_class.is_cancelled = True

                live = s.scalars(
                    select(Reservation).where(
                        Reservation.class_id == class_id,
                        Reservation.status.in_(LIVE_STATUSES),
                    )
                ).all()
                for reservation in live:
                    reservation.status = ReservationStatus.CANCELLED
                    reservation.cancelled_at = now

                self.ledger.zero_out(gym_class)
                s.flush()

        log.info("class %s cancelled, %s reservations closed", class_id, len(live))
        return gym_class

    # =========================
    # Helpers
    # =========================
    def _class_for_update(self, s: Session, class_id: int) -> GymClass | None:
        return s.execute(
            select(GymClass).where(GymClass.id == class_id).with_for_update()
        ).scalar_one_or_none()

    def _live_reservation(self, s: Session, member_id: int, class_id: int) -> Reservation | None:
        q = (
            select(Reservation)
            .where(
                Reservation.member_id == member_id,
                Reservation.class_id == class_id,
                Reservation.status != ReservationStatus.CANCELLED,
            )
            .limit(1)
        )
        return s.scalars(q).first()

    def _promote_next(self, s: Session, gym_class: GymClass) -> Reservation | None:
        """
        Hand the seat just released to the head of the waitlist.

        No ``has_open_seat`` check: the caller released that seat in this
        same unit of work.
        """
        q = (
            select(Reservation)
            .where(
                Reservation.class_id == gym_class.id,
                Reservation.status == ReservationStatus.WAITLISTED,
            )
            .order_by(Reservation.reserved_at.asc(), Reservation.id.asc())
            .limit(1)
        )
        head = s.scalars(q).first()
        if head is None:
            return None

        head.status = ReservationStatus.CONFIRMED
        self.ledger.occupy_seat(gym_class)
        return head
