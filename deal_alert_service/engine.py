"""Distribution engine.

Ties the stores together: new listing records go into the catalog, new
products are classified, alert-worthy ones are appended to the alert log and
fanned out to every live session.  Client actions (join, dismiss, ban,
settings) and crawl runs go through here as well.

Every state change runs under one engine lock and hands its outbound
messages to the outbox as a single batch, so a batch is observed by all
sessions as one update.  Delivery to channels happens on the dispatcher.
"""

from __future__ import annotations

import datetime as _dt
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple

from .alerts import AlertLog
from .catalog import Catalog
from .classifier import category_label, classify
from .models import ALERT_CATEGORIES, Alert, Product, Settings
from .outbox import (
    CRAWLING_FINISHED,
    CRAWLING_STARTED,
    NEW_ALERT,
    PRODUCTS_UPDATE,
    SESSION_ALERTS,
    SETTINGS_UPDATE,
    Channel,
    Delivery,
    Dispatcher,
    Outbox,
    to_sessions,
)
from .sessions import Session, SessionRegistry
from .utils import utc_now

logger = logging.getLogger(__name__)

NEW_PRODUCT_WINDOW = _dt.timedelta(hours=1)


@dataclass
class IngestResult:
    new_products: List[Product] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)


@dataclass
class CrawlOutcome:
    total: int = 0
    new_products: List[Product] = field(default_factory=list)
    alerts: List[Alert] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        if self.error is not None:
            return {"error": self.error}
        return {
            "results": {
                "new_products": [p.to_dict() for p in self.new_products],
                "alerts": [a.to_dict() for a in self.alerts],
                "total": self.total,
            }
        }


class DistributionEngine:
    def __init__(
        self,
        *,
        catalog: Optional[Catalog] = None,
        alert_log: Optional[AlertLog] = None,
        outbox: Optional[Outbox] = None,
        settings: Optional[Settings] = None,
        idle_timeout: _dt.timedelta = _dt.timedelta(hours=1),
        clock: Callable[[], _dt.datetime] = utc_now,
    ):
        self.outbox = outbox or Outbox()
        self.catalog = catalog or Catalog()
        self.alerts = alert_log or AlertLog()
        self.registry = SessionRegistry(self.outbox, clock=clock)
        self.dispatcher = Dispatcher(self.outbox, self.registry)
        self.settings = settings or Settings()
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._lock = threading.RLock()
        self._crawl_lock = threading.Lock()
        self._crawls_in_flight = 0
        # Held across snapshot and write so saves land in mutation order.
        self._persist_lock = threading.Lock()
        # Persistence hooks, set by the host process.
        self.persist_catalog: Optional[Callable[[List[Product]], None]] = None
        self.persist_settings: Optional[Callable[[Settings], None]] = None

    # ---- ingestion ----------------------------------------------------------

    def ingest_and_alert(self, records: Iterable[Product], settings: Optional[Settings] = None) -> IngestResult:
        """Add new products, mint alerts for the classified ones and fan them out."""
        with self._lock:
            settings = settings or self.settings
            now = self._clock()
            new_products = self.catalog.ingest(
                records, now=now, label=lambda p: category_label(p, settings)
            )

            minted: List[Alert] = []
            for product in new_products:
                verdict = classify(product, settings)
                if verdict is None:
                    continue
                minted.append(
                    self.alerts.append(
                        verdict.category,
                        product.title,
                        verdict.message,
                        product.discount,
                        product.price,
                        product.url,
                        product.id,
                        now=now,
                    )
                )

            # Brand-new ids cannot be in anyone's dismissed set yet; the
            # dispatcher re-checks at delivery time all the same.
            session_ids = self.registry.session_ids()
            batch: List[Delivery] = []
            for alert in minted:
                batch.extend(to_sessions(session_ids, NEW_ALERT, alert.to_dict(), alert_id=alert.id))
            self.outbox.put(batch)

        if new_products:
            logger.info(
                "Ingested %d new products, %d alerts, fanned out to %d sessions",
                len(new_products), len(minted), len(session_ids),
            )
        return IngestResult(new_products=new_products, alerts=minted)

    def ban_product(self, product_id: str, session_id: Optional[str] = None) -> bool:
        """Remove a product from the catalog.

        Alerts already minted for it stay in the log and stay visible to
        sessions that have not dismissed them.
        """
        with self._lock:
            if session_id:
                self.registry.touch(session_id)
            removed = self.catalog.remove(product_id)
            if removed:
                self._broadcast(PRODUCTS_UPDATE, self.snapshot_payload())
        if removed:
            logger.info("Product %s banned", product_id)
            self._save_catalog()
        else:
            logger.info("Ban for product %s ignored: not in catalog", product_id)
        return removed

    # ---- crawl runs ---------------------------------------------------------

    @property
    def is_crawling(self) -> bool:
        with self._crawl_lock:
            return self._crawls_in_flight > 0

    def run_crawl(self, source, manual: bool = False) -> Optional[CrawlOutcome]:
        """Fetch from `source` and ingest the result.

        Scheduled runs are skipped while another crawl is in flight; manual
        runs always proceed.  Fetches may overlap but ingestion is serialized
        by the engine lock, so an overlap never double-inserts or double-alerts.
        Returns None when the run was skipped.
        """
        with self._crawl_lock:
            if self._crawls_in_flight and not manual:
                logger.info("Crawl already running; skipping scheduled run.")
                return None
            self._crawls_in_flight += 1

        try:
            self.broadcast(CRAWLING_STARTED, {"manual": manual})
            logger.info("%s crawl started", "Manual" if manual else "Scheduled")
            try:
                products = source.fetch()
            except Exception as e:
                logger.error("Crawl failed: %s", e)
                outcome = CrawlOutcome(error=str(e))
                self.broadcast(CRAWLING_FINISHED, outcome.to_dict())
                return outcome

            result = self.ingest_and_alert(products)
            outcome = CrawlOutcome(
                total=len(products), new_products=result.new_products, alerts=result.alerts
            )
            with self._lock:
                batch = to_sessions(self.registry.session_ids(), CRAWLING_FINISHED, outcome.to_dict())
                if result.new_products:
                    batch += to_sessions(self.registry.session_ids(), PRODUCTS_UPDATE, self.snapshot_payload())
                self.outbox.put(batch)
            logger.info(
                "Crawl finished: %d products fetched, %d new, %d alerts",
                outcome.total, len(outcome.new_products), len(outcome.alerts),
            )
            if result.new_products:
                self._save_catalog()
            return outcome
        finally:
            with self._crawl_lock:
                self._crawls_in_flight -= 1

    # ---- sessions -----------------------------------------------------------

    def join(self, session_id: Optional[str], channel: Channel) -> Session:
        """Create or reattach a session and send it the snapshot and its backlog."""
        with self._lock:
            session = self.registry.create_or_attach(session_id, channel)
            backlog = self.registry.visible_alerts(session.session_id, self.alerts)
            self.outbox.put(
                [
                    Delivery(session.session_id, PRODUCTS_UPDATE, self.snapshot_payload()),
                    Delivery(session.session_id, SESSION_ALERTS, [a.to_dict() for a in backlog]),
                ]
            )
        logger.info("Session %s joined with %d alerts in backlog", session.session_id, len(backlog))
        return session

    def leave(self, session_id: Optional[str], channel: Optional[Channel] = None) -> bool:
        with self._lock:
            return self.registry.destroy(session_id, channel)

    def dismiss_alert(self, session_id: Optional[str], alert_id: int) -> bool:
        with self._lock:
            return self.registry.dismiss(session_id, alert_id)

    def touch(self, session_id: Optional[str]) -> bool:
        with self._lock:
            return self.registry.touch(session_id)

    def mark_seen(self, session_id: Optional[str], product_id: str) -> bool:
        touched = self.touch(session_id)
        logger.info("Product %s marked as seen by session %s", product_id, session_id)
        return touched

    def visible_alerts(self, session_id: str) -> List[Alert]:
        with self._lock:
            return self.registry.visible_alerts(session_id, self.alerts)

    def sweep_idle(
        self,
        now: Optional[_dt.datetime] = None,
        threshold: Optional[_dt.timedelta] = None,
    ) -> int:
        with self._lock:
            return self.registry.sweep_idle(now or self._clock(), threshold or self.idle_timeout)

    # ---- settings -----------------------------------------------------------

    def update_settings(self, partial: Mapping[str, Any], session_id: Optional[str] = None) -> Settings:
        """Apply a partial settings update and broadcast the result.

        Raises SettingsError (nothing applied) when a value is invalid.
        """
        with self._lock:
            if session_id:
                self.registry.touch(session_id)
            self.settings = self.settings.merged(partial)
            self._broadcast(SETTINGS_UPDATE, self.settings.to_dict())
            current = self.settings
        logger.info("Settings updated: %s", sorted((partial or {}).keys()))
        self._save_settings()
        return current

    # ---- snapshots & stats --------------------------------------------------

    def stats(self, now: Optional[_dt.datetime] = None) -> dict:
        cutoff = (now or self._clock()) - NEW_PRODUCT_WINDOW
        products = self.catalog.snapshot()
        out = {"total": len(products), "new": 0}
        out.update({c: 0 for c in ALERT_CATEGORIES})
        for p in products:
            if p.timestamp is not None and p.timestamp > cutoff:
                out["new"] += 1
            if p.category in ALERT_CATEGORIES:
                out[p.category] += 1
        return out

    def snapshot_payload(self) -> dict:
        with self._lock:
            return {
                "products": [p.to_dict() for p in self.catalog.snapshot()],
                "settings": self.settings.to_dict(),
                "stats": self.stats(),
            }

    def session_stats(self) -> dict:
        out = self.registry.stats()
        out["total_alerts"] = len(self.alerts)
        out["last_alert_id"] = self.alerts.last_id
        return out

    # ---- persistence hooks --------------------------------------------------

    def seed(self, products: Iterable[Product], settings: Optional[Settings] = None) -> None:
        with self._lock:
            count = self.catalog.seed(products)
            if settings is not None:
                self.settings = settings
        logger.info("Seeded catalog with %d products", count)

    def export(self) -> Tuple[List[Product], Settings]:
        with self._lock:
            return self.catalog.snapshot(), self.settings

    def _save_catalog(self) -> None:
        if self.persist_catalog is None:
            return
        with self._persist_lock:
            with self._lock:
                products = self.catalog.snapshot()
            try:
                self.persist_catalog(products)
            except Exception:
                logger.exception("Failed to persist catalog")

    def _save_settings(self) -> None:
        if self.persist_settings is None:
            return
        with self._persist_lock:
            with self._lock:
                settings = self.settings
            try:
                self.persist_settings(settings)
            except Exception:
                logger.exception("Failed to persist settings")

    # ---- delivery helpers ---------------------------------------------------

    def broadcast(self, event: str, data: Any) -> None:
        with self._lock:
            self._broadcast(event, data)

    def _broadcast(self, event: str, data: Any) -> None:
        self.outbox.put(to_sessions(self.registry.session_ids(), event, data))

    def close(self) -> None:
        """Drop every session (shutdown)."""
        with self._lock:
            self.registry.clear()


__all__ = ["DistributionEngine", "IngestResult", "CrawlOutcome", "NEW_PRODUCT_WINDOW"]
