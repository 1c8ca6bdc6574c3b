import json

import pytest
import requests

from deal_alert_service.crawler import (
    FetchError,
    HttpCrawlSource,
    UnconfiguredSource,
    build_product,
    build_products,
    parse_product_tiles,
)


class FakeResponse:
    def __init__(self, body, status_code=200):
        self.status_code = status_code
        self.text = body if isinstance(body, str) else json.dumps(body)

    def json(self):
        return json.loads(self.text)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.requests = []

    def get(self, url, **kwargs):
        self.requests.append((url, kwargs))
        return self.response

    def close(self):
        pass


LISTING_HTML = """
<ul>
  <li data-product-id="1001" data-category="electronics">
    <a href="/p/1001"><img alt="Galaxy Buds"></a>
    <span class="price">89,000원</span>
    <del>178,000원</del>
    <span class="discount">50%</span>
  </li>
  <li data-product-id="1002">
    <a href="/p/1002"><h3>Socks 5-pack</h3></a>
    <span class="price">9,900원</span>
  </li>
</ul>
"""


def test_build_product_accepts_camel_case_keys():
    p = build_product(
        {"productId": 7, "displayName": "TV", "salePrice": "$12.50", "listPrice": "$25", "link": "/p/7"},
        base_url="https://shop.example/deals",
    )
    assert p.id == "7"
    assert p.title == "TV"
    assert p.price == 12.5
    assert p.original_price == 25.0
    assert p.discount == 50
    assert p.url == "https://shop.example/p/7"


def test_build_product_parses_won_prices_and_percent():
    p = build_product({"id": "a", "title": "x", "price": "12,900원", "discount": "35%"})
    assert p.price == 12900.0
    assert p.discount == 35


def test_unknown_category_is_dropped():
    assert build_product({"id": "a", "category": "Toys"}).category is None
    assert build_product({"id": "b", "category": "Best"}).category == "best"


def test_records_without_id_are_skipped():
    products = build_products([{"title": "no id"}, "junk", {"id": "ok"}])
    assert [p.id for p in products] == ["ok"]


def test_parse_product_tiles():
    records = parse_product_tiles(LISTING_HTML)
    assert [r["id"] for r in records] == ["1001", "1002"]
    assert records[0]["title"] == "Galaxy Buds"
    assert records[0]["category"] == "electronics"
    assert records[1]["title"] == "Socks 5-pack"

    products = build_products(records, "https://shop.example/")
    assert products[0].discount == 50
    assert products[0].price == 89000.0
    assert products[1].discount == 0
    assert products[1].url == "https://shop.example/p/1002"


def test_json_source_accepts_wrapped_list():
    session = FakeSession(FakeResponse({"products": [{"id": "1", "title": "A", "price": 10, "discount": 80}]}))
    source = HttpCrawlSource("https://shop.example/api", "json", timeout=3, session=session)
    products = source.fetch()

    assert [p.id for p in products] == ["1"]
    assert session.requests == [("https://shop.example/api", {"timeout": 3})]


def test_html_source():
    source = HttpCrawlSource("https://shop.example/", "html", session=FakeSession(FakeResponse(LISTING_HTML)))
    assert [p.id for p in source.fetch()] == ["1001", "1002"]


def test_client_error_becomes_fetch_error():
    source = HttpCrawlSource("https://shop.example/api", session=FakeSession(FakeResponse("nope", 404)))
    with pytest.raises(FetchError):
        source.fetch()


def test_bad_payload_becomes_fetch_error():
    source = HttpCrawlSource("https://shop.example/api", session=FakeSession(FakeResponse({"products": "x"})))
    with pytest.raises(FetchError):
        source.fetch()
    source = HttpCrawlSource("https://shop.example/api", session=FakeSession(FakeResponse("<html>")))
    with pytest.raises(FetchError):
        source.fetch()


def test_unconfigured_source_always_fails():
    with pytest.raises(FetchError):
        UnconfiguredSource().fetch()
