"""
Gym class reservation backend.

Layout:
- config.py       : settings read from the environment (.env)
- db.py           : SQLAlchemy engine and sessions (injected Database object)
- models.py       : ORM models and enums
- errors.py       : typed domain errors
- locks.py        : in-process lock per class
- ledger.py       : seat counter (capacity / current_bookings)
- reservations.py : reservation state machine and waitlist promotion
- services.py     : user/class CRUD, listings, ledger audit
- seed.py         : initial data (admin, instructors, members, classes)
- cli.py          : command line front end
- api_main.py     : FastAPI HTTP API
"""
