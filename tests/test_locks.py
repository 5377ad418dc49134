import threading

import pytest

from gym_backend.errors import TransientError
from gym_backend.locks import ClassLocks


def test_same_class_is_exclusive():
    locks = ClassLocks(timeout=0.05)
    with locks.hold(1):
        with pytest.raises(TransientError):
            with locks.hold(1):
                pass


def test_different_classes_do_not_block():
    locks = ClassLocks(timeout=0.05)
    entered = threading.Event()

    def other():
        with locks.hold(2):
            entered.set()

    with locks.hold(1):
        t = threading.Thread(target=other)
        t.start()
        t.join(timeout=1)
    assert entered.is_set()


def test_lock_released_after_error():
    locks = ClassLocks(timeout=0.05)
    with pytest.raises(ValueError):
        with locks.hold(1):
            raise ValueError("boom")
    with locks.hold(1):
        pass


def test_one_lock_per_class_id():
    locks = ClassLocks()
    for _ in range(3):
        for class_id in (1, 2):
            with locks.hold(class_id):
                pass
    assert len(locks._locks) == 2
    assert locks._lock_for(1) is locks._lock_for(1)
