"""Typed failures raised by the reservation core and the directory services."""

from __future__ import annotations


class GymBookingError(Exception):
    """Base class for every domain-level error."""

    code = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(GymBookingError):
    """A member, user, class or reservation does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidMemberError(GymBookingError):
    """The user is not a member, or the membership is not active."""

    code = "invalid_member"


class ClassCancelledError(GymBookingError):
    code = "class_cancelled"


class DuplicateBookingError(GymBookingError):
    code = "duplicate_booking"


class AlreadyCancelledError(GymBookingError):
    code = "already_cancelled"


class UnauthorizedError(GymBookingError):
    code = "unauthorized"


class ValidationError(GymBookingError):
    """Rejected input on the user/class CRUD paths."""

    code = "validation_error"


class TransientError(GymBookingError):
    """
    The store could not complete the unit of work.

    Nothing was committed; the caller may retry.
    """

    code = "transient"
