from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx

from ..config import Settings
from ..registry.db import utc_now_iso
from ..registry.errors import UnknownConnector


logger = logging.getLogger("ucdp.stream")


class StreamError(Exception):
    pass


@dataclass(frozen=True)
class EventBatch:
    """Envelope handed to the stream. token is also the stream key."""
    token: str
    partner: str
    user: str
    events: List[Dict[str, Any]]
    received_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "partner": self.partner,
            "user": self.user,
            "events": list(self.events),
            "received_at": self.received_at,
        }


@runtime_checkable
class StreamProducer(Protocol):
    def produce(self, batch: EventBatch) -> None:
        """Deliver one batch. Raise StreamError on failure."""
        ...

    def close(self) -> None:
        ...


# ----------------------------
# Producers
# ----------------------------

class LogStreamProducer:
    """Writes each batch to the ucdp.stream logger. Default when no sink is configured."""

    def produce(self, batch: EventBatch) -> None:
        logger.info("batch %s: %s", batch.token, json.dumps(batch.to_dict(), ensure_ascii=False))

    def close(self) -> None:
        return None


class MemoryStreamProducer:
    def __init__(self) -> None:
        self.batches: List[EventBatch] = []
        self._lock = threading.Lock()

    def produce(self, batch: EventBatch) -> None:
        with self._lock:
            self.batches.append(batch)

    def tokens(self) -> List[str]:
        with self._lock:
            return [b.token for b in self.batches]

    def close(self) -> None:
        return None


class HttpStreamProducer:
    """POSTs each batch as JSON to a collector endpoint."""

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.Client] = None) -> None:
        if not url:
            raise ValueError("HttpStreamProducer requires a URL")
        self.url = url
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def produce(self, batch: EventBatch) -> None:
        try:
            resp = self._client.post(
                self.url,
                json=batch.to_dict(),
                headers={"X-UCDP-TOKEN": batch.token, "Accept": "application/json"},
            )
        except httpx.RequestError as exc:
            raise StreamError(f"Request error delivering batch {batch.token}: {exc}") from exc

        if resp.status_code >= 400:
            raise StreamError(f"Collector returned {resp.status_code} for batch {batch.token}: {resp.text}")

    def close(self) -> None:
        self._client.close()


def build_stream_producer(settings: Settings) -> StreamProducer:
    connector = settings.stream_connector
    if connector == "log":
        return LogStreamProducer()
    if connector == "memory":
        return MemoryStreamProducer()
    if connector == "http":
        return HttpStreamProducer(settings.stream_http_url, timeout=settings.stream_timeout_seconds)
    raise UnknownConnector("stream", connector)


# ----------------------------
# Dispatcher
# ----------------------------

_STOP = object()


class StreamDispatcher:
    """
    Background worker draining an unbounded queue into a producer.

    submit() never blocks on delivery. Delivery failures are logged and
    counted; they never reach the ingestion caller.
    """

    def __init__(self, producer: StreamProducer) -> None:
        self.producer = producer
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._stopping = False
        self._pending = 0
        self._idle = threading.Condition()
        self.delivered = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._thread = threading.Thread(target=self._run, name="ucdp-stream", daemon=True)
        self._thread.start()
        logger.info("stream dispatcher started (%s)", type(self.producer).__name__)

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        if not self._stopping:
            self._queue.put(_STOP)
            self._stopping = True
        self._thread.join(timeout)
        if self._thread.is_alive():
            # Producer is still busy; closing it under the worker would break delivery
            logger.warning("stream dispatcher did not stop within %.1fs; producer left open", timeout)
            return
        self._thread = None
        self.producer.close()
        logger.info("stream dispatcher stopped (delivered=%d failed=%d)", self.delivered, self.failed)

    def submit(self, batch: EventBatch) -> None:
        with self._idle:
            self._pending += 1
        self._queue.put(batch)

    def flush(self, timeout: float = 5.0) -> bool:
        """Wait until every submitted batch has been handled. False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout=timeout)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            try:
                self.producer.produce(item)
                self.delivered += 1
            except StreamError as exc:
                self.failed += 1
                logger.error("stream delivery failed: %s", exc)
            except Exception:  # noqa: BLE001
                self.failed += 1
                logger.exception("stream producer crashed on batch %s", getattr(item, "token", "?"))
            finally:
                with self._idle:
                    self._pending -= 1
                    self._idle.notify_all()

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "producer": type(self.producer).__name__,
            "delivered": self.delivered,
            "failed": self.failed,
            "pending": self._pending,
        }
