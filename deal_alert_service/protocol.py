"""Inbound client messages.

Maps the events a client sends over its channel onto engine operations.
Transport details (framing, the socket itself) live in `server`; this
module only sees already-decoded `(event, data)` pairs, which keeps it
testable without a socket.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from .engine import DistributionEngine
from .models import SettingsError
from .outbox import Channel

logger = logging.getLogger(__name__)

# Inbound event names.
SESSION_INIT = "session-init"
MANUAL_CRAWL = "manual-crawl"
MARK_AS_SEEN = "mark-as-seen"
BAN_PRODUCT = "ban-product"
DISMISS_ALERT = "dismiss-alert"
UPDATE_SETTINGS = "update-settings"


@dataclass
class Connection:
    """One client connection; `session_id` is set by session-init."""

    channel: Channel
    session_id: Optional[str] = None


def _field(data: Any, *keys: str) -> Any:
    # Clients send either {"product_id": ...} or the bare value.
    if isinstance(data, Mapping):
        for k in keys:
            if data.get(k) not in (None, ""):
                return data[k]
        return None
    return data


class MessageHandler:
    def __init__(
        self,
        engine: DistributionEngine,
        source,
        *,
        spawn: Optional[Callable[[Callable[[], Any]], None]] = None,
    ):
        self.engine = engine
        self.source = source
        self._spawn = spawn or _spawn_thread
        self._routes: Dict[str, Callable[[Connection, Any], None]] = {
            SESSION_INIT: self._session_init,
            MANUAL_CRAWL: self._manual_crawl,
            MARK_AS_SEEN: self._mark_as_seen,
            BAN_PRODUCT: self._ban_product,
            DISMISS_ALERT: self._dismiss_alert,
            UPDATE_SETTINGS: self._update_settings,
        }

    def handle(self, conn: Connection, event: Any, data: Any = None) -> None:
        route = self._routes.get(event) if isinstance(event, str) else None
        if route is None:
            logger.warning("Ignoring unknown event %r", event)
            return
        route(conn, data)

    def disconnect(self, conn: Connection) -> None:
        if conn.session_id:
            self.engine.leave(conn.session_id, conn.channel)

    # ---- routes ----

    def _session_init(self, conn: Connection, data: Any) -> None:
        requested = _field(data, "session_id", "sessionId")
        requested = str(requested) if requested is not None else None
        if conn.session_id and conn.session_id != requested:
            self.engine.leave(conn.session_id, conn.channel)
        session = self.engine.join(requested, conn.channel)
        conn.session_id = session.session_id

    def _manual_crawl(self, conn: Connection, data: Any) -> None:
        logger.info("Manual crawl requested by session %s", conn.session_id)
        if conn.session_id:
            self.engine.touch(conn.session_id)
        self._spawn(lambda: self.engine.run_crawl(self.source, manual=True))

    def _mark_as_seen(self, conn: Connection, data: Any) -> None:
        if not self._require_session(conn, MARK_AS_SEEN):
            return
        product_id = _field(data, "product_id", "productId")
        if product_id is None:
            logger.warning("%s without a product id", MARK_AS_SEEN)
            return
        self.engine.mark_seen(conn.session_id, str(product_id))

    def _ban_product(self, conn: Connection, data: Any) -> None:
        product_id = _field(data, "product_id", "productId")
        if product_id is None:
            logger.warning("%s without a product id", BAN_PRODUCT)
            return
        self.engine.ban_product(str(product_id), session_id=conn.session_id)

    def _dismiss_alert(self, conn: Connection, data: Any) -> None:
        if not self._require_session(conn, DISMISS_ALERT):
            return
        raw = _field(data, "alert_id", "alertId")
        alert_id = _alert_id(raw)
        if alert_id is None:
            logger.warning("%s with invalid alert id %r", DISMISS_ALERT, raw)
            return
        self.engine.dismiss_alert(conn.session_id, alert_id)

    def _update_settings(self, conn: Connection, data: Any) -> None:
        if not isinstance(data, Mapping):
            logger.warning("%s payload must be an object, got %s", UPDATE_SETTINGS, type(data).__name__)
            return
        try:
            self.engine.update_settings(data, session_id=conn.session_id)
        except SettingsError as e:
            logger.warning("Rejected settings update: %s", e)

    def _require_session(self, conn: Connection, event: str) -> bool:
        if conn.session_id is None:
            logger.warning("Rejected %s before session-init", event)
            return False
        if not self.engine.registry.has_session(conn.session_id):
            logger.warning("Rejected %s for expired session %s; client must send session-init", event, conn.session_id)
            return False
        return True


def _alert_id(value: Any) -> Optional[int]:
    # Alert ids are integers; digit strings are accepted, floats are not.
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _spawn_thread(target: Callable[[], Any]) -> None:
    def run() -> None:
        try:
            target()
        except Exception:
            logger.exception("Manual crawl failed")

    threading.Thread(target=run, name="manual-crawl", daemon=True).start()


__all__ = [
    "Connection",
    "MessageHandler",
    "SESSION_INIT",
    "MANUAL_CRAWL",
    "MARK_AS_SEEN",
    "BAN_PRODUCT",
    "DISMISS_ALERT",
    "UPDATE_SETTINGS",
]
