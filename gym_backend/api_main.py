from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import configure_logging
from .db import Database
from .errors import (
    AlreadyCancelledError,
    ClassCancelledError,
    DuplicateBookingError,
    GymBookingError,
    InvalidMemberError,
    NotFoundError,
    TransientError,
    UnauthorizedError,
    ValidationError,
)
from .models import MembershipStatus, UserRole
from .reservations import ReservationService
from .seed import seed_base
from .services import (
    all_reservations,
    audit_ledger,
    create_gym_class,
    create_user,
    drift_flat,
    get_gym_class,
    get_user,
    gym_class_flat,
    list_gym_classes,
    list_users,
    require_admin,
    reservation_flat,
    reservations_by_class,
    reservations_by_member,
    update_gym_class,
    update_user,
    user_flat,
    waitlist_position,
)

log = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFoundError: 404,
    InvalidMemberError: 422,
    ValidationError: 422,
    ClassCancelledError: 409,
    DuplicateBookingError: 409,
    AlreadyCancelledError: 409,
    UnauthorizedError: 403,
    TransientError: 503,
}


# Request schemas

class UserCreateIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: str
    role: UserRole
    phone: str | None = None
    membership_status: MembershipStatus | None = None


class UserUpdateIn(BaseModel):
    name: str | None = Field(None, min_length=1)
    email: str | None = None
    phone: str | None = None
    membership_status: MembershipStatus | None = None


class GymClassCreateIn(BaseModel):
    name: str = Field(..., min_length=1)
    instructor_id: int
    start_time: datetime
    end_time: datetime
    capacity: int = Field(..., gt=0)


class GymClassUpdateIn(BaseModel):
    name: str | None = Field(None, min_length=1)
    instructor_id: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


class ReservationCreateIn(BaseModel):
    member_id: int
    class_id: int


class ActingUserIn(BaseModel):
    # stands in for the authenticated caller, resolved by the transport layer
    acting_user_id: int


# Dependencies

def get_db(request: Request) -> Database:
    return request.app.state.db


def get_reservations(request: Request) -> ReservationService:
    return request.app.state.reservations


def create_app(database: Database | None = None, seed: bool = True) -> FastAPI:
    """
    Build the HTTP app around an explicit Database.

    One ReservationService is shared by every request so that all of them
    go through the same per-class locks.
    """
    configure_logging()
    db = database or Database.from_settings()

    app = FastAPI(title="Gym Reservations API", version="1.0.0")
    app.state.db = db
    app.state.reservations = ReservationService(db)

    @app.on_event("startup")
    def startup() -> None:
        # create tables and the idempotent seed
        db.create_all()
        if seed:
            seed_base(db)

    @app.exception_handler(GymBookingError)
    def domain_error(request: Request, exc: GymBookingError) -> JSONResponse:
        code = next(
            (c for cls, c in ERROR_STATUS.items() if isinstance(exc, cls)),
            status.HTTP_400_BAD_REQUEST,
        )
        if code >= 500:
            log.warning("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=code, content={"detail": exc.message, "error": exc.code})

    @app.get("/api/health")
    def health() -> dict[str, Any]:
        return {"status": "ok", "timestamp": datetime.now().isoformat()}

    # Users

    @app.post("/api/users", status_code=status.HTTP_201_CREATED)
    def api_create_user(payload: UserCreateIn, db: Database = Depends(get_db)) -> dict:
        u = create_user(db, payload.name, payload.email, payload.role, payload.phone, payload.membership_status)
        return user_flat(u)

    @app.get("/api/users")
    def api_users(db: Database = Depends(get_db)) -> list[dict]:
        return [user_flat(u) for u in list_users(db)]

    @app.get("/api/users/{user_id}")
    def api_user(user_id: int, db: Database = Depends(get_db)) -> dict:
        return user_flat(get_user(db, user_id))

    @app.patch("/api/users/{user_id}")
    def api_update_user(user_id: int, payload: UserUpdateIn, db: Database = Depends(get_db)) -> dict:
        return user_flat(update_user(db, user_id, **payload.model_dump(exclude_unset=True)))

    # Classes

    @app.post("/api/classes", status_code=status.HTTP_201_CREATED)
    def api_create_class(payload: GymClassCreateIn, db: Database = Depends(get_db)) -> dict:
        c = create_gym_class(
            db,
            payload.name,
            instructor_id=payload.instructor_id,
            start_time=payload.start_time,
            end_time=payload.end_time,
            capacity=payload.capacity,
        )
        return gym_class_flat(c)

    @app.get("/api/classes")
    def api_classes(include_cancelled: bool = True, db: Database = Depends(get_db)) -> list[dict]:
        return [gym_class_flat(c) for c in list_gym_classes(db, include_cancelled=include_cancelled)]

    @app.get("/api/classes/{class_id}")
    def api_class(class_id: int, db: Database = Depends(get_db)) -> dict:
        return gym_class_flat(get_gym_class(db, class_id))

    @app.patch("/api/classes/{class_id}")
    def api_update_class(class_id: int, payload: GymClassUpdateIn, db: Database = Depends(get_db)) -> dict:
        return gym_class_flat(update_gym_class(db, class_id, **payload.model_dump(exclude_unset=True, exclude_none=True)))

    @app.post("/api/classes/{class_id}/cancel")
    def api_cancel_class(
        class_id: int,
        payload: ActingUserIn,
        db: Database = Depends(get_db),
        service: ReservationService = Depends(get_reservations),
    ) -> dict:
        require_admin(db, payload.acting_user_id)
        return gym_class_flat(service.cancel_class(class_id))

    @app.get("/api/classes/{class_id}/reservations")
    def api_class_reservations(class_id: int, db: Database = Depends(get_db)) -> list[dict]:
        return [reservation_flat(r) for r in reservations_by_class(db, class_id)]

    @app.get("/api/members/{member_id}/reservations")
    def api_member_reservations(member_id: int, db: Database = Depends(get_db)) -> list[dict]:
        return [reservation_flat(r) for r in reservations_by_member(db, member_id)]

    # Reservations

    @app.get("/api/reservations")
    def api_reservations(db: Database = Depends(get_db)) -> list[dict]:
        return [reservation_flat(r) for r in all_reservations(db)]

    @app.post("/api/reservations", status_code=status.HTTP_201_CREATED)
    def api_create_reservation(
        payload: ReservationCreateIn,
        db: Database = Depends(get_db),
        service: ReservationService = Depends(get_reservations),
    ) -> dict:
        r = service.create_reservation(payload.member_id, payload.class_id)
        out = reservation_flat(r)
        out["waitlist_position"] = waitlist_position(db, r.id)
        return out

    @app.post("/api/reservations/{reservation_id}/cancel")
    def api_cancel_reservation(
        reservation_id: int,
        payload: ActingUserIn,
        service: ReservationService = Depends(get_reservations),
    ) -> dict:
        return reservation_flat(service.cancel_reservation(reservation_id, payload.acting_user_id))

    # Ledger

    @app.get("/api/ledger/audit")
    def api_audit(db: Database = Depends(get_db)) -> dict[str, Any]:
        drifts = audit_ledger(db)
        return {"consistent": not drifts, "drifts": [drift_flat(d) for d in drifts]}

    return app


def main() -> None:
    import uvicorn

    uvicorn.run("gym_backend.api_main:create_app", factory=True, host="127.0.0.1", port=8000)


if __name__ == "__main__":
    main()
