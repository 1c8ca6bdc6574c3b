"""Bounded, deduplicated product catalog."""

from __future__ import annotations

import datetime as _dt
import logging
import threading
from collections import OrderedDict
from typing import Callable, Iterable, List, Optional

from .models import Product
from .utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


class Catalog:
    """Products keyed by id, in ingestion order.

    A record is new iff its id is not currently held.  Once the catalog grows
    past `capacity` the oldest products are evicted.  Removed or evicted ids
    count as new again if a later crawl brings them back.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._items: "OrderedDict[str, Product]" = OrderedDict()
        self._lock = threading.RLock()

    def ingest(
        self,
        records: Iterable[Product],
        now: Optional[_dt.datetime] = None,
        label: Optional[Callable[[Product], Optional[str]]] = None,
    ) -> List[Product]:
        """Add unseen products and return the ones added.

        `label` supplies a category for records that arrive without one; it
        runs before insertion so stored products are never modified.
        """
        stamp = now or utc_now()
        added: List[Product] = []
        with self._lock:
            for record in records:
                if record.id in self._items:
                    continue
                product = record.stamped(stamp, label(record) if label and not record.category else None)
                self._items[product.id] = product
                added.append(product)
            evicted = self._evict_overflow()
        if evicted:
            gone = set(evicted)
            added = [p for p in added if p.id not in gone]
        return added

    def _evict_overflow(self) -> List[str]:
        evicted: List[str] = []
        while len(self._items) > self.capacity:
            pid, _ = self._items.popitem(last=False)
            evicted.append(pid)
        if evicted:
            logger.debug("Catalog full: evicted %d oldest products", len(evicted))
        return evicted

    def remove(self, product_id: str) -> bool:
        with self._lock:
            return self._items.pop(product_id, None) is not None

    def seed(self, products: Iterable[Product]) -> int:
        """Replace contents with previously persisted products.

        Products keep their stored timestamps (missing ones get now).  When
        more than `capacity` are given, the newest are kept.
        """
        now = utc_now()
        with self._lock:
            self._items.clear()
            for p in products:
                if p.id in self._items:
                    continue
                self._items[p.id] = p if p.timestamp else p.stamped(now)
            self._evict_overflow()
            return len(self._items)

    def get(self, product_id: str) -> Optional[Product]:
        with self._lock:
            return self._items.get(product_id)

    def snapshot(self) -> List[Product]:
        with self._lock:
            return list(self._items.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, product_id: object) -> bool:
        with self._lock:
            return product_id in self._items


__all__ = ["Catalog", "DEFAULT_CAPACITY"]
