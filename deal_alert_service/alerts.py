"""Global alert log.

Append-only and bounded; every alert gets an integer id from a process-local
counter, so ids are unique and ordered by creation even after the oldest
alerts have been evicted.  Nothing here is persisted.
"""

from __future__ import annotations

import datetime as _dt
import itertools
import logging
import threading
from collections import deque
from typing import Deque, List, Optional

from .models import Alert
from .utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 100


class AlertLog:
    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._alerts: Deque[Alert] = deque()
        self._ids = itertools.count(1)
        self._last_id = 0
        self._lock = threading.RLock()

    def append(
        self,
        category: str,
        title: str,
        description: str,
        discount: int,
        price: float,
        url: str,
        product_id: str,
        now: Optional[_dt.datetime] = None,
    ) -> Alert:
        with self._lock:
            alert = Alert(
                id=next(self._ids),
                category=category,
                title=title,
                description=description,
                discount=discount,
                price=price,
                url=url,
                product_id=product_id,
                timestamp=now or utc_now(),
            )
            self._last_id = alert.id
            self._alerts.append(alert)
            while len(self._alerts) > self.capacity:
                old = self._alerts.popleft()
                logger.debug("Alert log full: evicted alert %s", old.id)
        logger.info("Alert %s added [%s] %s", alert.id, alert.category, alert.title)
        return alert

    def snapshot(self) -> List[Alert]:
        """Retained alerts, oldest first."""
        with self._lock:
            return list(self._alerts)

    def remove_by_id(self, alert_id: int) -> bool:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    self._alerts.remove(alert)
                    logger.info("Alert %s removed from log", alert_id)
                    return True
        return False

    @property
    def last_id(self) -> int:
        """Id of the most recently appended alert (0 before the first)."""
        return self._last_id

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)


__all__ = ["AlertLog", "DEFAULT_CAPACITY"]
