"""Crawl source.

Fetches the current deal listing and turns it into `Product` records.  Two
listing formats are understood:

- json: a list of product records, or an object with a "products" list
- html: one tile per product, located with the CSS selectors from config

The engine only relies on `fetch()` returning a list of products or raising
`FetchError`.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List, Mapping, Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup
from bs4.element import Tag

from . import config
from .models import PRODUCT_CATEGORIES, Product
from .utils import get_http_session, retryable_request

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """The listing could not be fetched or parsed."""


@retryable_request
def _get(session: requests.Session, url: str, **kwargs: Any) -> requests.Response:
    """Thin wrapper around session.get with retry policy from utils.retryable_request."""
    return session.get(url, **kwargs)


# ---------------------------
# Record normalisation
# ---------------------------

def _parse_price_number(text: Any) -> float | None:
    """'12,900원' -> 12900.0, '$12.50' -> 12.5, 12900 -> 12900.0"""
    if text is None or isinstance(text, bool):
        return None
    if isinstance(text, (int, float)):
        return float(text)
    t = re.sub(r"[^0-9\.,]", "", str(text)).replace(",", "")
    try:
        return float(t) if t else None
    except ValueError:
        return None


def _parse_discount(value: Any) -> int | None:
    """'35%' -> 35, 35.6 -> 35"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    m = re.search(r"\d+", str(value))
    return int(m.group(0)) if m else None


def _derive_discount(price: float | None, original: float | None) -> int:
    if not price or not original or original <= price:
        return 0
    return int(round((1 - price / original) * 100))


def _first(record: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        v = record.get(k)
        if v not in (None, ""):
            return v
    return None


def build_product(record: Mapping[str, Any], base_url: str = "") -> Optional[Product]:
    """Normalise one raw record; None when it has no usable id."""
    pid = _first(record, "id", "productId", "product_id")
    if pid is None:
        return None

    price = _parse_price_number(_first(record, "price", "salePrice", "sale_price"))
    original = _parse_price_number(_first(record, "originalPrice", "original_price", "listPrice"))
    discount = _parse_discount(_first(record, "discount", "discountRate", "discount_rate"))
    if discount is None:
        discount = _derive_discount(price, original)

    category = str(record.get("category") or "").strip().lower() or None
    if category is not None and category not in PRODUCT_CATEGORIES:
        logger.debug("Unknown category %r for product %s; leaving it unset", category, pid)
        category = None

    url = str(_first(record, "url", "link", "href") or "")
    if url and base_url:
        url = urljoin(base_url, url)

    return Product(
        id=str(pid),
        title=str(_first(record, "title", "name", "displayName") or ""),
        price=price or 0.0,
        original_price=original,
        discount=max(0, min(100, discount)),
        category=category,
        url=url,
    )


def build_products(records: Iterable[Mapping[str, Any]], base_url: str = "") -> List[Product]:
    products: List[Product] = []
    skipped = 0
    for record in records:
        if not isinstance(record, Mapping):
            skipped += 1
            continue
        product = build_product(record, base_url)
        if product is None:
            skipped += 1
            continue
        products.append(product)
    if skipped:
        logger.warning("Skipped %d listing records without a product id", skipped)
    return products


# ---------------------------
# HTML listing tiles
# ---------------------------

def _tile_text(tile: Tag, selector: str) -> Optional[str]:
    el = tile.select_one(selector) if selector else None
    if el is None:
        return None
    t = el.get_text(" ", strip=True)
    return t or None


def _tile_id(tile: Tag) -> Optional[str]:
    for attr in ("data-product-id", "data-id", "id"):
        v = tile.get(attr)
        if v:
            return str(v)
    a = tile.find("a", href=True)
    if a:
        m = re.search(r"(\d{4,})", a["href"])
        if m:
            return m.group(1)
    return None


def parse_product_tiles(html: str, base_url: str = "") -> List[dict]:
    """Extract raw records from a listing page."""
    soup = BeautifulSoup(html, "html.parser")
    records: List[dict] = []
    for tile in soup.select(config.CRAWL_TILE_SELECTOR):
        a = tile.find("a", href=True)
        title = _tile_text(tile, config.CRAWL_TITLE_SELECTOR)
        if not title:
            img = tile.find("img")
            title = (img.get("alt") or "").strip() if img else ""
        records.append(
            {
                "id": _tile_id(tile),
                "title": title,
                "price": _tile_text(tile, config.CRAWL_PRICE_SELECTOR),
                "originalPrice": _tile_text(tile, config.CRAWL_ORIGINAL_PRICE_SELECTOR),
                "discount": _tile_text(tile, config.CRAWL_DISCOUNT_SELECTOR),
                "category": tile.get("data-category"),
                "url": a["href"] if a else "",
            }
        )
    logger.debug("Parsed %d product tiles", len(records))
    return records


# ---------------------------
# Source
# ---------------------------

class HttpCrawlSource:
    """Polls one listing URL."""

    def __init__(
        self,
        url: str,
        fmt: str = "json",
        *,
        timeout: float = 20,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.fmt = fmt
        self.timeout = timeout
        self._session = session

    def fetch(self) -> List[Product]:
        close_session = False
        session = self._session
        if session is None:
            session = get_http_session()
            close_session = True
        try:
            logger.info("Fetching deal listing %s (%s)", self.url, self.fmt)
            resp = _get(session, self.url, timeout=self.timeout)
            if self.fmt == "html":
                records = parse_product_tiles(resp.text, self.url)
            else:
                data = resp.json()
                records = data.get("products", []) if isinstance(data, Mapping) else data
                if not isinstance(records, list):
                    raise FetchError(f"Unexpected listing payload type {type(records).__name__}")
            products = build_products(records, self.url)
            logger.info("Fetched %d products from %s", len(products), self.url)
            return products
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(f"Fetching {self.url} failed: {e}") from e
        finally:
            if close_session:
                session.close()


class UnconfiguredSource:
    """Stand-in when CRAWL_SOURCE_URL is unset; every crawl reports an error."""

    def fetch(self) -> List[Product]:
        raise FetchError("CRAWL_SOURCE_URL is not configured")


def source_from_config():
    if not config.CRAWL_SOURCE_URL:
        logger.warning("CRAWL_SOURCE_URL is not set; crawls will report an error.")
        return UnconfiguredSource()
    return HttpCrawlSource(
        config.CRAWL_SOURCE_URL,
        config.CRAWL_SOURCE_FORMAT,
        timeout=config.CRAWL_TIMEOUT_SECONDS,
    )


__all__ = [
    "FetchError",
    "HttpCrawlSource",
    "UnconfiguredSource",
    "build_product",
    "build_products",
    "parse_product_tiles",
    "source_from_config",
]
