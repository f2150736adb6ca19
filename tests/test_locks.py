from __future__ import annotations

import threading
import time

import pytest

from ucdp.registry.locks import KeyedLocks

from tests.helpers import addr


def test_shard_assignment_is_stable():
    locks = KeyedLocks(16)
    assert locks.shard_of(addr(1)) == KeyedLocks(16).shard_of(addr(1))
    assert 0 <= locks.shard_of(addr(2)) < 16


def test_rejects_empty_pool():
    with pytest.raises(ValueError):
        KeyedLocks(0)


def test_hold_is_reentrant_and_accepts_duplicate_keys():
    locks = KeyedLocks(4)
    with locks.hold(addr(1), addr(1)):
        with locks.hold(addr(1)):
            pass


def test_same_key_is_serialized():
    locks = KeyedLocks(8)
    inside = []
    overlap = []

    def worker():
        with locks.hold(addr(7)):
            if inside:
                overlap.append(True)
            inside.append(True)
            time.sleep(0.01)
            inside.pop()

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert overlap == []


def test_different_shards_do_not_block_each_other():
    locks = KeyedLocks(64)
    a = addr(1)
    b = next(addr(i) for i in range(2, 500) if locks.shard_of(addr(i)) != locks.shard_of(a))
    acquired = threading.Event()

    def other():
        with locks.hold(b):
            acquired.set()

    with locks.hold(a):
        t = threading.Thread(target=other)
        t.start()
        assert acquired.wait(timeout=2.0)
        t.join()


def test_overlapping_key_sets_do_not_deadlock():
    locks = KeyedLocks(64)
    a, b = addr(1), addr(2)
    done = []

    def forward():
        for _ in range(200):
            with locks.hold(a, b):
                pass
        done.append("f")

    def backward():
        for _ in range(200):
            with locks.hold(b, a):
                pass
        done.append("b")

    threads = [threading.Thread(target=forward), threading.Thread(target=backward)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5.0)
    assert sorted(done) == ["b", "f"]
