"""Tests for the class cancellation cascade."""

import pytest

from gym_backend.errors import NotFoundError
from gym_backend.models import GymClass, Reservation, ReservationStatus
from gym_backend.services import audit_ledger, reservations_by_class


def test_cascade_cancels_confirmed_and_waitlisted(db, service, make_user, make_class, reload):
    c = make_class(capacity=2)
    booked = [service.create_reservation(make_user().id, c.id) for _ in range(3)]
    assert [r.status for r in booked] == [
        ReservationStatus.CONFIRMED,
        ReservationStatus.CONFIRMED,
        ReservationStatus.WAITLISTED,
    ]

    result = service.cancel_class(c.id)

    assert result.is_cancelled
    assert result.current_bookings == 0
    stored = reload(GymClass, c.id)
    assert stored.is_cancelled and stored.current_bookings == 0
    for r in reservations_by_class(db, c.id):
        assert r.status == ReservationStatus.CANCELLED
        assert r.cancelled_at is not None
    assert audit_ledger(db) == []


def test_previously_cancelled_reservation_keeps_its_timestamp(service, member, make_class, reload):
    c = make_class()
    r = service.create_reservation(member.id, c.id)
    first = service.cancel_reservation(r.id, member.id).cancelled_at

    service.cancel_class(c.id)

    assert reload(Reservation, r.id).cancelled_at == first


def test_other_classes_untouched(service, member, make_class, reload):
    yoga = make_class(name="Yoga")
    hiit = make_class(name="HIIT")
    r = service.create_reservation(member.id, hiit.id)

    service.cancel_class(yoga.id)

    assert reload(Reservation, r.id).status == ReservationStatus.CONFIRMED
    assert reload(GymClass, hiit.id).current_bookings == 1


def test_unknown_class(service):
    with pytest.raises(NotFoundError):
        service.cancel_class(999)


def test_cancelling_twice_is_harmless(service, member, make_class, reload):
    c = make_class()
    service.create_reservation(member.id, c.id)
    service.cancel_class(c.id)

    again = service.cancel_class(c.id)

    assert again.is_cancelled
    assert reload(GymClass, c.id).current_bookings == 0


def test_cascade_rolls_back_on_failure(db, service, make_user, make_class, reload, monkeypatch):
    c = make_class(capacity=1)
    confirmed = service.create_reservation(make_user().id, c.id)
    waiting = service.create_reservation(make_user().id, c.id)

    def boom(gym_class):
        raise RuntimeError("store failure")

    monkeypatch.setattr(service.ledger, "zero_out", boom)
    with pytest.raises(RuntimeError):
        service.cancel_class(c.id)

    stored = reload(GymClass, c.id)
    assert not stored.is_cancelled
    assert stored.current_bookings == 1
    assert reload(Reservation, confirmed.id).status == ReservationStatus.CONFIRMED
    assert reload(Reservation, waiting.id).status == ReservationStatus.WAITLISTED
