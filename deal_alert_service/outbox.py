"""Delivery boundary between state changes and client channels.

State changes never write to a channel directly.  They put a *batch* of
`Delivery` records on the `Outbox`; the `Dispatcher` drains batches in order
and resolves each target session's channel at delivery time.  A batch is
delivered completely before the next one starts, so clients never see two
ingestion batches interleaved.

Channel failures are logged per delivery and never stop the rest of the
batch.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, List, Optional, Protocol, Sequence

if TYPE_CHECKING:
    from .sessions import SessionRegistry

logger = logging.getLogger(__name__)

# Outbound event names.
PRODUCTS_UPDATE = "products-update"
SESSION_ALERTS = "session-alerts"
NEW_ALERT = "new-alert"
ALERT_DISMISSED = "alert-dismissed"
CRAWLING_STARTED = "crawling-started"
CRAWLING_FINISHED = "crawling-finished"
SETTINGS_UPDATE = "settings-update"


class Channel(Protocol):
    """Outbound half of a client connection."""

    def send(self, event: str, data: Any) -> None: ...


@dataclass(frozen=True)
class Delivery:
    session_id: str
    event: str
    data: Any
    # Set for new-alert deliveries so the dismissed check can run at delivery time.
    alert_id: Optional[int] = None


def to_sessions(session_ids: Iterable[str], event: str, data: Any, alert_id: Optional[int] = None) -> List[Delivery]:
    return [Delivery(sid, event, data, alert_id) for sid in session_ids]


class Outbox:
    """FIFO of delivery batches."""

    def __init__(self) -> None:
        self._queue: "queue.Queue[Sequence[Delivery]]" = queue.Queue()

    def put(self, batch: Sequence[Delivery]) -> None:
        if batch:
            self._queue.put(tuple(batch))

    def get(self, timeout: Optional[float] = None) -> Optional[Sequence[Delivery]]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def get_nowait(self) -> Optional[Sequence[Delivery]]:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()


class Dispatcher:
    def __init__(self, outbox: Outbox, registry: "SessionRegistry"):
        self.outbox = outbox
        self.registry = registry

    def deliver(self, batch: Sequence[Delivery]) -> int:
        """Deliver one batch; returns the number of messages sent."""
        sent = 0
        for d in batch:
            channel = self.registry.channel_for(d.session_id)
            if channel is None:
                logger.debug("Dropping %s for closed session %s", d.event, d.session_id)
                continue
            if d.alert_id is not None and self.registry.has_dismissed(d.session_id, d.alert_id):
                continue
            try:
                channel.send(d.event, d.data)
                sent += 1
            except Exception:
                logger.exception("Delivery of %s to session %s failed", d.event, d.session_id)
        return sent

    def drain(self) -> int:
        """Deliver every queued batch on the calling thread."""
        sent = 0
        while True:
            batch = self.outbox.get_nowait()
            if batch is None:
                return sent
            sent += self.deliver(batch)

    def run(self, stop: threading.Event, poll_seconds: float = 0.5) -> None:
        """Dispatcher loop; returns once `stop` is set and the queue is empty."""
        logger.info("Starting dispatcher loop")
        while not stop.is_set() or self.outbox.pending():
            try:
                batch = self.outbox.get(timeout=poll_seconds)
                if batch is not None:
                    self.deliver(batch)
            except Exception:
                logger.exception("Error in dispatcher loop")
        logger.info("Dispatcher loop stopped")


__all__ = [
    "Channel",
    "Delivery",
    "Outbox",
    "Dispatcher",
    "to_sessions",
    "PRODUCTS_UPDATE",
    "SESSION_ALERTS",
    "NEW_ALERT",
    "ALERT_DISMISSED",
    "CRAWLING_STARTED",
    "CRAWLING_FINISHED",
    "SETTINGS_UPDATE",
]
