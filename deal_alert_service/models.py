"""Domain records shared by the stores, the engine and the wire layer."""

from __future__ import annotations

import datetime as _dt
import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .utils import isoformat

logger = logging.getLogger(__name__)

# Alert categories in classification priority order.
SUPER = "super"
ELECTRONICS = "electronics"
BEST = "best"
KEYWORD = "keyword"
ALERT_CATEGORIES = (SUPER, ELECTRONICS, BEST, KEYWORD)

# Products matching no rule and carrying no category of their own.
GENERAL = "general"
PRODUCT_CATEGORIES = ALERT_CATEGORIES + (GENERAL,)


class SettingsError(ValueError):
    """Raised when a settings update carries a value of the wrong shape."""


@dataclass(frozen=True)
class Product:
    id: str
    title: str
    price: float
    discount: int
    url: str
    category: Optional[str] = None
    original_price: Optional[float] = None
    # Set by the catalog on ingestion.
    timestamp: Optional[_dt.datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "price": self.price,
            "original_price": self.original_price,
            "discount": self.discount,
            "category": self.category,
            "url": self.url,
            "timestamp": isoformat(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Product":
        """Rebuild a product persisted with `to_dict`."""
        ts = data.get("timestamp")
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            price=float(data.get("price") or 0.0),
            original_price=(float(data["original_price"]) if data.get("original_price") is not None else None),
            discount=int(data.get("discount") or 0),
            category=data.get("category") or None,
            url=str(data.get("url") or ""),
            timestamp=_dt.datetime.fromisoformat(ts) if isinstance(ts, str) and ts else None,
        )

    def stamped(self, timestamp: _dt.datetime, category: Optional[str] = None) -> "Product":
        """Copy with the ingestion timestamp (and a category if it had none)."""
        return replace(self, timestamp=timestamp, category=self.category or category or GENERAL)


@dataclass(frozen=True)
class Alert:
    id: int
    category: str
    title: str
    description: str
    discount: int
    price: float
    url: str
    product_id: str
    timestamp: _dt.datetime

    def to_dict(self) -> dict:
        out = asdict(self)
        out["timestamp"] = isoformat(self.timestamp)
        return out


@dataclass(frozen=True)
class Classification:
    category: str
    message: str


@dataclass
class Settings:
    """Runtime settings editable by clients and persisted across restarts."""

    crawling_interval: int = 5
    keywords: List[str] = field(default_factory=list)
    enable_notifications: bool = True
    enable_sound: bool = True
    # Client-side sound repeat counts per alert category.
    super_alert_repeat: int = 3
    electronics_alert_repeat: int = 2
    best_alert_repeat: int = 2
    keyword_alert_repeat: int = 3
    # Classifier thresholds, in discount percent.
    super_discount_threshold: int = 70
    electronics_discount_threshold: int = 50
    best_discount_threshold: int = 40
    keyword_discount_threshold: int = 0

    def to_dict(self) -> dict:
        out = asdict(self)
        out["keywords"] = list(self.keywords)
        return out

    def merged(self, partial: Mapping[str, Any]) -> "Settings":
        """Return a copy with `partial` applied.

        The update is validated with `SettingsUpdate`.  Unknown keys are
        dropped with a warning and null values are ignored; any invalid value
        raises SettingsError and nothing is applied.
        """
        partial = dict(partial or {})
        for key in partial.keys() - SettingsUpdate.model_fields.keys():
            logger.warning("Ignoring unknown settings key %r", key)
        try:
            update = SettingsUpdate.model_validate(partial)
        except ValidationError as e:
            raise SettingsError(_describe(e)) from e
        return replace(self, **update.model_dump(exclude_unset=True, exclude_none=True))

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Settings":
        return cls().merged(data or {})


class SettingsUpdate(BaseModel):
    """Partial settings update; omitted fields keep their current value."""

    model_config = ConfigDict(extra="ignore")

    crawling_interval: Optional[int] = Field(default=None, ge=1)
    keywords: Optional[List[str]] = None
    enable_notifications: Optional[bool] = None
    enable_sound: Optional[bool] = None
    super_alert_repeat: Optional[int] = Field(default=None, ge=0)
    electronics_alert_repeat: Optional[int] = Field(default=None, ge=0)
    best_alert_repeat: Optional[int] = Field(default=None, ge=0)
    keyword_alert_repeat: Optional[int] = Field(default=None, ge=0)
    super_discount_threshold: Optional[int] = Field(default=None, ge=0, le=100)
    electronics_discount_threshold: Optional[int] = Field(default=None, ge=0, le=100)
    best_discount_threshold: Optional[int] = Field(default=None, ge=0, le=100)
    keyword_discount_threshold: Optional[int] = Field(default=None, ge=0, le=100)

    @field_validator("keywords", mode="before")
    @classmethod
    def split_keywords(cls, value: Any) -> Any:
        # "tv, switch" from simple clients
        if isinstance(value, str):
            return value.split(",")
        return value

    @field_validator("keywords")
    @classmethod
    def strip_keywords(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        return [kw.strip() for kw in value if kw.strip()]


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in error.errors()
    )


__all__ = [
    "SUPER",
    "ELECTRONICS",
    "BEST",
    "KEYWORD",
    "GENERAL",
    "ALERT_CATEGORIES",
    "PRODUCT_CATEGORIES",
    "Product",
    "Alert",
    "Classification",
    "Settings",
    "SettingsUpdate",
    "SettingsError",
]
