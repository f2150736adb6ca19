from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..registry.errors import IdentityNotFound
from ..registry.service import RegistryService
from ..registry.types import Identity


logger = logging.getLogger("ucdp.gateway")


@dataclass
class _CacheEntry:
    partner: Identity
    expires_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"hits": self.hits, "misses": self.misses}


class PartnerDirectory:
    """
    Read-through cache of partner records in front of the registry.

    Only found partners are cached, so a partner that registers after a miss
    is visible on the next request. Partner records never change after
    registration, so a stale hit can only be a partner that still exists.
    ttl_seconds <= 0 disables caching.
    """

    def __init__(
        self,
        registry: RegistryService,
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def get_partner(self, address: str) -> Optional[Identity]:
        """Partner record for a canonical address, or None when not a partner."""
        now = self._clock()
        if self.ttl_seconds > 0:
            with self._lock:
                entry = self._entries.get(address)
                if entry is not None and entry.expires_at > now:
                    self.stats.hits += 1
                    return entry.partner
                if entry is not None:
                    del self._entries[address]
                self.stats.misses += 1

        try:
            partner = self.registry.get_partner(address)
        except IdentityNotFound:
            return None

        if self.ttl_seconds > 0:
            with self._lock:
                self._entries[address] = _CacheEntry(partner=partner, expires_at=now + self.ttl_seconds)
        logger.debug("partner %s loaded from registry", address)
        return partner

    def invalidate(self, address: Optional[str] = None) -> None:
        with self._lock:
            if address is None:
                self._entries.clear()
            else:
                self._entries.pop(address, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
