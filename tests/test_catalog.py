from conftest import T0, make_product

from deal_alert_service.catalog import Catalog
from deal_alert_service.models import GENERAL, SUPER


def test_ingest_returns_only_new_products():
    cat = Catalog()
    first = cat.ingest([make_product("p1"), make_product("p2")], now=T0)
    again = cat.ingest([make_product("p2"), make_product("p3")], now=T0)

    assert [p.id for p in first] == ["p1", "p2"]
    assert [p.id for p in again] == ["p3"]
    assert len(cat) == 3


def test_duplicate_ids_within_one_batch_are_added_once():
    cat = Catalog()
    added = cat.ingest([make_product("p1"), make_product("p1", discount=90)], now=T0)
    assert [p.id for p in added] == ["p1"]
    assert cat.get("p1").discount == 0


def test_ingest_stamps_timestamp_and_category():
    cat = Catalog()
    cat.ingest([make_product("p1"), make_product("p2", category="best")], now=T0, label=lambda p: SUPER)

    assert cat.get("p1").timestamp == T0
    assert cat.get("p1").category == SUPER
    assert cat.get("p2").category == "best"


def test_unlabelled_products_fall_back_to_general():
    cat = Catalog()
    cat.ingest([make_product("p1")], now=T0, label=lambda p: None)
    assert cat.get("p1").category == GENERAL


def test_capacity_evicts_oldest_first():
    cat = Catalog(capacity=1000)
    cat.ingest([make_product(f"a{i}") for i in range(1000)], now=T0)
    cat.ingest([make_product("b0"), make_product("b1")], now=T0)

    ids = [p.id for p in cat.snapshot()]
    assert len(ids) == 1000
    assert "a0" not in cat and "a1" not in cat
    assert ids[0] == "a2"
    assert ids[-2:] == ["b0", "b1"]


def test_oversized_batch_keeps_only_newest():
    cat = Catalog(capacity=3)
    added = cat.ingest([make_product(f"p{i}") for i in range(5)], now=T0)
    assert [p.id for p in added] == ["p2", "p3", "p4"]
    assert [p.id for p in cat.snapshot()] == ["p2", "p3", "p4"]


def test_removed_id_is_new_again():
    cat = Catalog()
    cat.ingest([make_product("p1")], now=T0)
    assert cat.remove("p1") is True
    assert cat.remove("p1") is False
    assert [p.id for p in cat.ingest([make_product("p1")], now=T0)] == ["p1"]


def test_seed_keeps_timestamps_and_trims_to_newest():
    cat = Catalog(capacity=2)
    stored = [make_product(f"p{i}").stamped(T0) for i in range(3)]
    assert cat.seed(stored) == 2
    assert [p.id for p in cat.snapshot()] == ["p1", "p2"]
    assert all(p.timestamp == T0 for p in cat.snapshot())


def test_snapshot_is_a_copy():
    cat = Catalog()
    cat.ingest([make_product("p1")], now=T0)
    snap = cat.snapshot()
    snap.clear()
    assert len(cat) == 1
