"""Per-connection session state.

A session records which alerts one viewer has dismissed.  It lives from the
first `create_or_attach` until it is destroyed (disconnect) or swept for
inactivity; nothing survives destruction, so a returning client with the
same id starts with an empty dismissed set.
"""

from __future__ import annotations

import datetime as _dt
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .alerts import AlertLog
from .models import Alert
from .outbox import ALERT_DISMISSED, Channel, Delivery, Outbox
from .utils import isoformat, utc_now

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Session:
    session_id: str
    channel: Channel
    created_at: _dt.datetime
    last_activity_at: _dt.datetime
    dismissed_alert_ids: Set[int] = field(default_factory=set)


class SessionRegistry:
    """Owns every live Session.  All methods are thread-safe."""

    def __init__(self, outbox: Optional[Outbox] = None, clock=utc_now):
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.RLock()
        self._outbox = outbox
        self._clock = clock

    def create_or_attach(self, session_id: Optional[str], channel: Channel) -> Session:
        """Return the live session for `session_id`, creating it if needed.

        A live session keeps its dismissed set and gets the new channel.  A
        blank id is replaced by a generated one.
        """
        sid = (session_id or "").strip() or new_session_id()
        now = self._clock()
        with self._lock:
            session = self._sessions.get(sid)
            if session is not None:
                session.channel = channel
                session.last_activity_at = now
                logger.info("Session %s reattached", sid)
                return session
            session = Session(session_id=sid, channel=channel, created_at=now, last_activity_at=now)
            self._sessions[sid] = session
        logger.info("Session %s created", sid)
        return session

    def dismiss(self, session_id: Optional[str], alert_id: int) -> bool:
        with self._lock:
            session = self._sessions.get(session_id or "")
            if session is None:
                logger.warning("Dismiss for unknown session %r (alert %s)", session_id, alert_id)
                return False
            session.dismissed_alert_ids.add(alert_id)
            session.last_activity_at = self._clock()
            if self._outbox is not None:
                self._outbox.put([Delivery(session.session_id, ALERT_DISMISSED, {"alert_id": alert_id})])
        logger.info("Session %s dismissed alert %s", session_id, alert_id)
        return True

    def touch(self, session_id: Optional[str]) -> bool:
        with self._lock:
            session = self._sessions.get(session_id or "")
            if session is None:
                logger.warning("Activity from unknown session %r ignored", session_id)
                return False
            session.last_activity_at = self._clock()
            return True

    def visible_alerts(self, session_id: str, log: AlertLog) -> List[Alert]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.warning("Alert backlog requested for unknown session %r", session_id)
                return []
            dismissed = set(session.dismissed_alert_ids)
        return [a for a in log.snapshot() if a.id not in dismissed]

    def destroy(self, session_id: Optional[str], channel: Optional[Channel] = None) -> bool:
        """Remove a session.

        With `channel`, only remove it if that channel is still attached, so
        the disconnect of a superseded connection leaves a reattached
        session alone.
        """
        with self._lock:
            session = self._sessions.get(session_id or "")
            if session is None:
                return False
            if channel is not None and session.channel is not channel:
                logger.debug("Session %s already reattached; keeping it", session_id)
                return False
            del self._sessions[session.session_id]
        logger.info("Session %s destroyed", session_id)
        return True

    def sweep_idle(self, now: _dt.datetime, threshold: _dt.timedelta) -> int:
        with self._lock:
            idle = [sid for sid, s in self._sessions.items() if now - s.last_activity_at > threshold]
            for sid in idle:
                del self._sessions[sid]
                logger.info("Idle session %s removed", sid)
        if idle:
            logger.info("Removed %d idle sessions", len(idle))
        return len(idle)

    # ---- queries used by the engine and dispatcher ----

    def has_session(self, session_id: Optional[str]) -> bool:
        with self._lock:
            return (session_id or "") in self._sessions

    def has_dismissed(self, session_id: str, alert_id: int) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            return session is not None and alert_id in session.dismissed_alert_ids

    def channel_for(self, session_id: str) -> Optional[Channel]:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.channel if session is not None else None

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def stats(self) -> dict:
        with self._lock:
            return {
                "active_sessions": len(self._sessions),
                "sessions": [
                    {
                        "session_id": s.session_id,
                        "dismissed_alerts": len(s.dismissed_alert_ids),
                        "created_at": isoformat(s.created_at),
                        "last_activity_at": isoformat(s.last_activity_at),
                    }
                    for s in self._sessions.values()
                ],
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


__all__ = ["Session", "SessionRegistry", "new_session_id"]
