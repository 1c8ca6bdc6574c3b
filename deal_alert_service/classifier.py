"""Alert classification.

Maps a product and the current settings to at most one alert category.
Rules are checked in a fixed priority order and the first match wins:

    super > electronics > best > keyword

- super:        discount >= super_discount_threshold, any product category
- electronics:  product category is electronics and
                discount >= electronics_discount_threshold
- best:         product category is best and discount >= best_discount_threshold
- keyword:      a configured keyword occurs in the title (case-insensitive)
                and discount >= keyword_discount_threshold
"""

from __future__ import annotations

from typing import Iterable, Optional

from .models import BEST, ELECTRONICS, KEYWORD, SUPER, Classification, Product, Settings


def _matched_keyword(title: str, keywords: Iterable[str]) -> Optional[str]:
    hay = (title or "").casefold()
    for kw in keywords:
        needle = (kw or "").strip().casefold()
        if needle and needle in hay:
            return kw.strip()
    return None


def classify(product: Product, settings: Settings) -> Optional[Classification]:
    """Return the alert classification for `product`, or None."""
    discount = int(product.discount or 0)

    if discount >= settings.super_discount_threshold:
        return Classification(SUPER, f"Super deal: {discount}% off")

    if product.category == ELECTRONICS and discount >= settings.electronics_discount_threshold:
        return Classification(ELECTRONICS, f"Electronics deal: {discount}% off")

    if product.category == BEST and discount >= settings.best_discount_threshold:
        return Classification(BEST, f"Best seller deal: {discount}% off")

    if discount >= settings.keyword_discount_threshold:
        kw = _matched_keyword(product.title, settings.keywords)
        if kw:
            return Classification(KEYWORD, f"Keyword '{kw}' matched: {discount}% off")

    return None


def category_label(product: Product, settings: Settings) -> Optional[str]:
    """Category to stamp on a product that arrived without one."""
    verdict = classify(product, settings)
    return verdict.category if verdict else None


__all__ = ["classify", "category_label"]
