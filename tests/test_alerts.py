from conftest import T0

from deal_alert_service.alerts import AlertLog


def _append(log, pid):
    return log.append("super", f"Product {pid}", "Super deal: 80% off", 80, 100.0, "u", pid, now=T0)


def test_ids_start_at_one_and_increase():
    log = AlertLog()
    ids = [_append(log, f"p{i}").id for i in range(3)]
    assert ids == [1, 2, 3]
    assert log.last_id == 3


def test_bound_evicts_oldest_and_ids_keep_increasing():
    log = AlertLog(capacity=100)
    for i in range(150):
        _append(log, f"p{i}")

    snap = log.snapshot()
    assert len(log) == 100
    assert snap[0].id == 51
    assert snap[-1].id == 150
    assert all(a.id < b.id for a, b in zip(snap, snap[1:]))
    assert _append(log, "next").id == 151


def test_remove_by_id():
    log = AlertLog()
    a = _append(log, "p1")
    _append(log, "p2")
    assert log.remove_by_id(a.id) is True
    assert log.remove_by_id(a.id) is False
    assert [x.product_id for x in log.snapshot()] == ["p2"]


def test_alert_to_dict_is_json_ready():
    log = AlertLog()
    d = _append(log, "p1").to_dict()
    assert d["id"] == 1
    assert d["product_id"] == "p1"
    assert d["timestamp"] == T0.isoformat()
