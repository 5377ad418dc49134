from __future__ import annotations

import logging

from .models import GymClass, utcnow

log = logging.getLogger(__name__)


class CapacityLedger:
    """
    Seat counter of a gym class (``capacity`` / ``current_bookings``).

    Only counter arithmetic lives here: no reservation rows are read or
    written and no domain errors are raised, deciding whether a call is
    valid is up to the caller. Every call must happen inside the same
    session as the reservation change it accompanies, so both are committed
    or rolled back together.
    """

    def has_open_seat(self, gym_class: GymClass) -> bool:
        return not gym_class.is_cancelled and gym_class.current_bookings < gym_class.capacity

    def occupy_seat(self, gym_class: GymClass) -> None:
        gym_class.current_bookings += 1
        gym_class.updated_at = utcnow()
        log.debug("class %s: seat occupied (%s/%s)", gym_class.id, gym_class.current_bookings, gym_class.capacity)

    def release_seat(self, gym_class: GymClass) -> None:
        gym_class.current_bookings = max(gym_class.current_bookings - 1, 0)
        gym_class.updated_at = utcnow()
        log.debug("class %s: seat released (%s/%s)", gym_class.id, gym_class.current_bookings, gym_class.capacity)

    def zero_out(self, gym_class: GymClass) -> None:
        gym_class.current_bookings = 0
        gym_class.updated_at = utcnow()
        log.debug("class %s: counter zeroed", gym_class.id)
