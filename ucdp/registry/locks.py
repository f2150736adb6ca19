from __future__ import annotations

import zlib
from contextlib import contextmanager
from threading import RLock
from typing import Iterator, List


class KeyedLocks:
    """
    Fixed pool of lock shards keyed by identity address.

    Mutations on the same identity are serialized; mutations on identities
    that land in different shards run in parallel. There is no global lock.
    """

    def __init__(self, shards: int = 64) -> None:
        if shards < 1:
            raise ValueError("shards must be >= 1")
        self._locks: List[RLock] = [RLock() for _ in range(shards)]

    @property
    def shards(self) -> int:
        return len(self._locks)

    def shard_of(self, key: str) -> int:
        # crc32 is stable across processes, unlike hash()
        return zlib.crc32(key.encode("utf-8")) % len(self._locks)

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """
        Acquire the shards for all keys, always in ascending shard order so two
        callers holding overlapping key sets cannot deadlock.
        """
        indexes = sorted({self.shard_of(k) for k in keys})
        acquired: List[RLock] = []
        try:
            for i in indexes:
                lock = self._locks[i]
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
