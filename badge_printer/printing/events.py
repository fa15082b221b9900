"""
Status publisher for Badge Printer.

The print queue pushes one event per job transition into the publisher; the
publisher fans it out to subscribers (e.g. the /api/v1/events stream).
publish() never blocks: each subscriber has a bounded buffer, and a
subscriber that falls behind loses events rather than stalling the queue.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusEvent:
    """One job transition. status is None when the job was cancelled (removed)."""

    seq: int
    job_id: str
    status: Optional[str]
    job: Optional[Dict[str, Any]]
    snapshot: Dict[str, Any]
    ts: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def kind(self) -> str:
        return "jobRemoved" if self.status is None else "jobStatusChange"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "job_id": self.job_id,
            "status": self.status,
            "job": self.job,
            "snapshot": self.snapshot,
            "ts": self.ts,
        }


class Subscription:
    """A subscriber's buffered view of the event stream."""

    def __init__(self, publisher: "StatusPublisher", maxsize: int) -> None:
        self._publisher = publisher
        self._queue: "queue.Queue[StatusEvent]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def offer(self, event: StatusEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            logger.warning("Subscriber buffer full; dropped event seq=%d job=%s", event.seq, event.job_id)

    def get(self, timeout: Optional[float] = None) -> Optional[StatusEvent]:
        """Next event, or None if nothing arrived within timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[StatusEvent]:
        items: List[StatusEvent] = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def iter(self, timeout: float = 15.0) -> Iterator[Optional[StatusEvent]]:
        """Yield events as they arrive, or None after each idle timeout."""
        while not self.closed:
            yield self.get(timeout=timeout)

    def close(self) -> None:
        self.closed = True
        self._publisher.unsubscribe(self)


class StatusPublisher:
    """Fan-out sink for job status events."""

    def __init__(self, buffer_size: int = 256) -> None:
        self.buffer_size = buffer_size
        self._subs: List[Subscription] = []
        self._lock = threading.Lock()
        self._seq = itertools.count(1)

    def subscribe(self) -> Subscription:
        sub = Subscription(self, self.buffer_size)
        with self._lock:
            self._subs.append(sub)
        logger.info("Status subscriber added (total=%d)", len(self._subs))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)

    def publish(
        self,
        job_id: str,
        status: Optional[str],
        snapshot: Dict[str, Any],
        job: Optional[Dict[str, Any]] = None,
    ) -> StatusEvent:
        event = StatusEvent(seq=next(self._seq), job_id=job_id, status=status, job=job, snapshot=snapshot)
        with self._lock:
            subs = list(self._subs)
        for sub in subs:
            sub.offer(event)
        return event


__all__ = ["StatusEvent", "StatusPublisher", "Subscription"]
