from conftest import RecordingChannel, StaticSource, make_product

from deal_alert_service.outbox import ALERT_DISMISSED, PRODUCTS_UPDATE, SESSION_ALERTS
from deal_alert_service.protocol import Connection, MessageHandler


def _handler(engine, products=()):
    return MessageHandler(engine, StaticSource(products), spawn=lambda fn: fn())


def test_session_init_joins_and_replays(engine):
    handler = _handler(engine)
    conn = Connection(RecordingChannel())
    handler.handle(conn, "session-init", {"session_id": "abc"})
    engine.dispatcher.drain()

    assert conn.session_id == "abc"
    assert conn.channel.events() == [PRODUCTS_UPDATE, SESSION_ALERTS]


def test_session_init_without_id_generates_one(engine):
    conn = Connection(RecordingChannel())
    _handler(engine).handle(conn, "session-init", None)
    assert conn.session_id and conn.session_id in engine.registry.session_ids()


def test_dismiss_requires_session(engine):
    handler = _handler(engine)
    conn = Connection(RecordingChannel())
    handler.handle(conn, "dismiss-alert", {"alert_id": 1})
    engine.dispatcher.drain()
    assert conn.channel.sent == []


def test_dismiss_accepts_bare_and_string_ids(engine):
    handler = _handler(engine)
    conn = Connection(RecordingChannel())
    handler.handle(conn, "session-init", {"session_id": "s1"})
    handler.handle(conn, "dismiss-alert", "4")
    handler.handle(conn, "dismiss-alert", {"alert_id": "not-a-number"})
    engine.dispatcher.drain()
    assert conn.channel.of(ALERT_DISMISSED) == [{"alert_id": 4}]


def test_manual_crawl_runs_source(engine):
    handler = _handler(engine, [make_product("p1", discount=80)])
    conn = Connection(RecordingChannel())
    handler.handle(conn, "manual-crawl")
    assert "p1" in engine.catalog
    assert len(engine.alerts) == 1


def test_ban_and_mark_seen(engine):
    engine.ingest_and_alert([make_product("p1")])
    handler = _handler(engine)
    conn = Connection(RecordingChannel())
    handler.handle(conn, "session-init", {"session_id": "s1"})
    handler.handle(conn, "mark-as-seen", {"product_id": "p1"})
    handler.handle(conn, "ban-product", {"product_id": "p1"})
    assert "p1" not in engine.catalog


def test_invalid_settings_are_ignored(engine):
    handler = _handler(engine)
    conn = Connection(RecordingChannel())
    handler.handle(conn, "update-settings", {"crawling_interval": "soon"})
    handler.handle(conn, "update-settings", ["not", "a", "dict"])
    handler.handle(conn, "update-settings", {"keywords": "tv, switch"})
    assert engine.settings.crawling_interval == 5
    assert engine.settings.keywords == ["tv", "switch"]


def test_unknown_event_is_ignored(engine):
    conn = Connection(RecordingChannel())
    _handler(engine).handle(conn, "self-destruct", {})
    _handler(engine).handle(conn, None, {})
    assert len(engine.registry) == 0


def test_disconnect_leaves_session(engine):
    handler = _handler(engine)
    conn = Connection(RecordingChannel())
    handler.handle(conn, "session-init", {"session_id": "s1"})
    handler.disconnect(conn)
    assert "s1" not in engine.registry.session_ids()


def test_out_of_range_numbers_are_rejected_without_raising(engine):
    handler = _handler(engine)
    conn = Connection(RecordingChannel())
    handler.handle(conn, "session-init", {"session_id": "s1"})
    before = engine.settings

    # json.loads('1e999') yields float("inf")
    handler.handle(conn, "update-settings", {"crawling_interval": float("inf")})
    handler.handle(conn, "dismiss-alert", {"alert_id": float("inf")})
    handler.handle(conn, "dismiss-alert", {"alert_id": 1.0})
    handler.handle(conn, "dismiss-alert", {"alert_id": True})
    engine.dispatcher.drain()

    assert engine.settings == before
    assert conn.channel.of(ALERT_DISMISSED) == []


def test_settings_over_the_socket_follow_http_validation(engine):
    handler = _handler(engine)
    conn = Connection(RecordingChannel())
    before = engine.settings

    handler.handle(conn, "update-settings", {"super_discount_threshold": -5})
    handler.handle(conn, "update-settings", {"best_discount_threshold": 101})
    handler.handle(conn, "update-settings", {"keywords": [None]})
    assert engine.settings == before

    handler.handle(conn, "update-settings", {"super_discount_threshold": 100, "keywords": [" tv ", ""]})
    assert engine.settings.super_discount_threshold == 100
    assert engine.settings.keywords == ["tv"]


def test_actions_from_expired_session_are_rejected(engine, clock):
    handler = _handler(engine)
    conn = Connection(RecordingChannel())
    handler.handle(conn, "session-init", {"session_id": "s1"})
    clock.advance(hours=2)
    engine.sweep_idle()

    handler.handle(conn, "dismiss-alert", {"alert_id": 1})
    engine.dispatcher.drain()
    assert conn.channel.of(ALERT_DISMISSED) == []
