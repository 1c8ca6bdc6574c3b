import pytest
from conftest import StaticSource, make_product
from fastapi.testclient import TestClient

from deal_alert_service.protocol import MessageHandler
from deal_alert_service.server import create_app


@pytest.fixture
def client(engine):
    app = create_app(engine, StaticSource([make_product("p1", discount=80)]))
    with TestClient(app) as c:
        yield c


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_products_and_stats(client, engine):
    engine.ingest_and_alert([make_product("p1", discount=80)])
    body = client.get("/api/products").json()
    assert [p["id"] for p in body["products"]] == ["p1"]
    assert body["stats"]["super"] == 1
    assert client.get("/api/stats").json()["total"] == 1


def test_settings_update_validates(client, engine):
    resp = client.post("/api/settings", json={"crawling_interval": 0})
    assert resp.status_code == 422

    resp = client.post("/api/settings", json={"keywords": ["tv"], "unknown": True})
    assert resp.status_code == 200
    assert resp.json()["keywords"] == ["tv"]
    assert resp.json()["crawling_interval"] == 5
    assert client.get("/api/settings").json()["keywords"] == ["tv"]


def test_websocket_session_flow(client, engine):
    engine.ingest_and_alert([make_product("p0", discount=90)])
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "session-init", "data": {"session_id": "s1"}})
        first = ws.receive_json()
        second = ws.receive_json()
        assert first["event"] == "products-update"
        assert second == {"event": "session-alerts", "data": [engine.alerts.snapshot()[0].to_dict()]}

        ws.send_json({"event": "dismiss-alert", "data": {"alert_id": 1}})
        assert ws.receive_json() == {"event": "alert-dismissed", "data": {"alert_id": 1}}

        sessions = client.get("/api/sessions").json()
        assert sessions["active_sessions"] == 1
        assert sessions["sessions"][0]["dismissed_alerts"] == 1


def test_failing_frame_does_not_end_the_session(engine):
    handler = MessageHandler(engine, StaticSource())

    def explode(conn, data):
        raise RuntimeError("handler bug")

    handler._routes["explode"] = explode
    app = create_app(engine, StaticSource(), handler=handler)
    engine.ingest_and_alert([make_product("p0", discount=90)])

    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"event": "session-init", "data": {"session_id": "s1"}})
            ws.receive_json()
            ws.receive_json()

            ws.send_json({"event": "explode", "data": {}})
            ws.send_text('{"event": "dismiss-alert", "data": {"alert_id": 1e999}}')
            ws.send_text("not json")
            ws.send_json({"event": "dismiss-alert", "data": {"alert_id": 1}})

            assert ws.receive_json() == {"event": "alert-dismissed", "data": {"alert_id": 1}}
            assert "s1" in engine.registry.session_ids()
            assert client.get("/api/sessions").json()["sessions"][0]["dismissed_alerts"] == 1
