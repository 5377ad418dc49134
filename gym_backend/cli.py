from __future__ import annotations

import argparse
import sys
from datetime import datetime

from .config import configure_logging, load_settings
from .db import Database
from .errors import GymBookingError
from .reservations import ReservationService
from .seed import seed_base
from .services import (
    all_reservations,
    audit_ledger,
    create_gym_class,
    create_user,
    list_gym_classes,
    list_users,
    require_admin,
    reservations_by_class,
    reservations_by_member,
)


def cmd_init(db: Database, args: argparse.Namespace) -> None:
    seed_base(db)
    print("Database initialised and seed loaded.")


def cmd_list(db: Database, args: argparse.Namespace) -> None:
    if args.entity == "users":
        for u in list_users(db):
            status = u.membership_status.value if u.membership_status else "-"
            print(f"{u.id} | {u.name} | {u.email} | {u.role.value} | {status}")
    elif args.entity == "classes":
        for c in list_gym_classes(db):
            flag = " [CANCELLED]" if c.is_cancelled else ""
            print(
                f"{c.id} | {c.name} | {c.start_time:%Y-%m-%d %H:%M} | "
                f"{c.current_bookings}/{c.capacity}{flag}"
            )
    elif args.entity == "reservations":
        if args.class_id is not None:
            rows = reservations_by_class(db, args.class_id)
        elif args.member_id is not None:
            rows = reservations_by_member(db, args.member_id)
        else:
            rows = all_reservations(db)
        for r in rows:
            print(f"{r.id} | member {r.member_id} | class {r.class_id} | {r.status.value} | {r.reserved_at.isoformat()}")


def cmd_add_user(db: Database, args: argparse.Namespace) -> None:
    u = create_user(db, args.name, args.email, args.role, phone=args.phone, membership_status=args.membership)
    print(f"User created: {u.id}")


def cmd_add_class(db: Database, args: argparse.Namespace) -> None:
    c = create_gym_class(
        db,
        args.name,
        instructor_id=args.instructor_id,
        start_time=datetime.fromisoformat(args.start),  # e.g. 2026-01-14T10:30
        end_time=datetime.fromisoformat(args.end),
        capacity=args.capacity,
    )
    print(f"Class created: {c.id}")


def cmd_book(db: Database, args: argparse.Namespace) -> None:
    r = ReservationService(db).create_reservation(args.member_id, args.class_id)
    print(f"Reservation {r.id}: {r.status.value}")


def cmd_cancel(db: Database, args: argparse.Namespace) -> None:
    r = ReservationService(db).cancel_reservation(args.reservation_id, args.acting_user_id)
    print(f"Reservation {r.id} cancelled.")


def cmd_cancel_class(db: Database, args: argparse.Namespace) -> None:
    require_admin(db, args.acting_user_id)
    c = ReservationService(db).cancel_class(args.class_id)
    print(f"Class {c.id} cancelled.")


def cmd_audit(db: Database, args: argparse.Namespace) -> int:
    drifts = audit_ledger(db)
    if not drifts:
        print("Ledger consistent.")
        return 0
    for d in drifts:
        print(f"class {d.class_id}: counter {d.recorded}, confirmed {d.actual}")
    return 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="gym_backend", description="Gym class reservations CLI")
    p.add_argument("--database-url", default=None, help="Overrides GYM_DATABASE_URL")
    sub = p.add_subparsers(required=True)

    p_init = sub.add_parser("init", help="Create tables and load seed data")
    p_init.set_defaults(func=cmd_init)

    p_list = sub.add_parser("list", help="List entities")
    p_list.add_argument("entity", choices=["users", "classes", "reservations"])
    p_list.add_argument("--class-id", type=int, default=None)
    p_list.add_argument("--member-id", type=int, default=None)
    p_list.set_defaults(func=cmd_list)

    p_user = sub.add_parser("add-user", help="Create a user")
    p_user.add_argument("--name", required=True)
    p_user.add_argument("--email", required=True)
    p_user.add_argument("--role", choices=["member", "instructor", "admin"], default="member")
    p_user.add_argument("--membership", choices=["active", "inactive", "suspended"], default=None)
    p_user.add_argument("--phone", default=None)
    p_user.set_defaults(func=cmd_add_user)

    p_class = sub.add_parser("add-class", help="Create a class")
    p_class.add_argument("--name", required=True)
    p_class.add_argument("--instructor-id", type=int, required=True)
    p_class.add_argument("--start", required=True, help="ISO datetime e.g. 2026-01-14T10:30")
    p_class.add_argument("--end", required=True, help="ISO datetime e.g. 2026-01-14T11:30")
    p_class.add_argument("--capacity", type=int, required=True)
    p_class.set_defaults(func=cmd_add_class)

    p_book = sub.add_parser("book", help="Book a class (waitlisted when full)")
    p_book.add_argument("--member-id", type=int, required=True)
    p_book.add_argument("--class-id", type=int, required=True)
    p_book.set_defaults(func=cmd_book)

    p_cancel = sub.add_parser("cancel", help="Cancel a reservation")
    p_cancel.add_argument("--reservation-id", type=int, required=True)
    p_cancel.add_argument("--acting-user-id", type=int, required=True)
    p_cancel.set_defaults(func=cmd_cancel)

    p_cc = sub.add_parser("cancel-class", help="Cancel a class and all its reservations (admin)")
    p_cc.add_argument("--class-id", type=int, required=True)
    p_cc.add_argument("--acting-user-id", type=int, required=True)
    p_cc.set_defaults(func=cmd_cancel_class)

    p_audit = sub.add_parser("audit", help="Check counters against confirmed reservations")
    p_audit.set_defaults(func=cmd_audit)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging()

    db = Database.from_url(args.database_url) if args.database_url else Database.from_settings(load_settings())
    db.create_all()  # make sure the tables exist
    try:
        return args.func(db, args) or 0
    except GymBookingError as e:
        print(f"Error ({e.code}): {e.message}", file=sys.stderr)
        return 2
    finally:
        db.dispose()


if __name__ == "__main__":
    raise SystemExit(main())
