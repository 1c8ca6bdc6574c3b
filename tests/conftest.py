from __future__ import annotations

import datetime as _dt
from typing import Any, List, Tuple

import pytest

from deal_alert_service.engine import DistributionEngine
from deal_alert_service.models import Product


T0 = _dt.datetime(2024, 5, 1, 12, 0, tzinfo=_dt.timezone.utc)


class RecordingChannel:
    """Channel that keeps every frame sent to it."""

    def __init__(self, fail: bool = False):
        self.sent: List[Tuple[str, Any]] = []
        self.fail = fail

    def send(self, event: str, data: Any) -> None:
        if self.fail:
            raise ConnectionError("channel is broken")
        self.sent.append((event, data))

    def events(self) -> List[str]:
        return [e for e, _ in self.sent]

    def of(self, event: str) -> List[Any]:
        return [d for e, d in self.sent if e == event]

    def clear(self) -> None:
        self.sent.clear()


class FakeClock:
    def __init__(self, now: _dt.datetime = T0):
        self.now = now

    def __call__(self) -> _dt.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += _dt.timedelta(**kwargs)


class StaticSource:
    def __init__(self, products=None, error: Exception | None = None):
        self.products = list(products or [])
        self.error = error
        self.calls = 0

    def fetch(self) -> List[Product]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.products)


def make_product(pid: str, discount: int = 0, title: str | None = None, category: str | None = None, price: float = 10000.0) -> Product:
    return Product(
        id=pid,
        title=title or f"Product {pid}",
        price=price,
        discount=discount,
        url=f"https://shop.example/p/{pid}",
        category=category,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(clock) -> DistributionEngine:
    return DistributionEngine(clock=clock)
