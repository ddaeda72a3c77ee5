"""
实体锁测试
"""

import threading

from ..core import locks
from ..core.locks import entity_locks, profile_key, subscription_key


def test_registry_drops_released_locks(ledger, student, make_subscription):
    before = len(locks._registry)
    for _ in range(50):
        sid = make_subscription(total_plates=1)
        ledger.consume_plates(sid, 1, student_id=student)
    assert len(locks._registry) == before


def test_nested_acquire_is_reentrant():
    key = subscription_key(42)
    with entity_locks(key, profile_key(7)):
        with entity_locks(key):
            assert locks._registry[key][1] == 2
        assert locks._registry[key][1] == 1
    assert key not in locks._registry


def test_waiting_thread_keeps_entry_alive():
    key = subscription_key(99)
    acquired = threading.Event()
    release = threading.Event()
    order = []

    def holder():
        with entity_locks(key):
            acquired.set()
            release.wait(timeout=5)
            order.append("holder")

    def waiter():
        acquired.wait(timeout=5)
        with entity_locks(key):
            order.append("waiter")

    threads = [threading.Thread(target=holder), threading.Thread(target=waiter)]
    for t in threads:
        t.start()
    acquired.wait(timeout=5)
    release.set()
    for t in threads:
        t.join(timeout=5)

    assert order == ["holder", "waiter"]
    assert key not in locks._registry
