"""SQLite persistence layer for the deal alert service.

Only the catalog and the runtime settings survive a restart.  Sessions and
the alert log are rebuilt from scratch.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Iterable, List, Optional

from . import config
from .models import Product, Settings

logger = logging.getLogger(__name__)


def _get_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    path = db_path or config.SQLITE_DB_PATH
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(path)


def init_db(db_path: Optional[str] = None) -> None:
    """Create tables if they don't exist."""
    with _get_connection(db_path) as conn:
        conn.execute("""
          CREATE TABLE IF NOT EXISTS products (
            seq INTEGER NOT NULL,
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            price REAL NOT NULL,
            original_price REAL,
            discount INTEGER NOT NULL,
            category TEXT,
            url TEXT NOT NULL,
            timestamp TEXT
          )
        """)
        conn.execute("""
          CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
          )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_products_seq ON products(seq)")
        conn.commit()


def load_products(db_path: Optional[str] = None) -> List[Product]:
    """Stored catalog, oldest first."""
    with _get_connection(db_path) as conn:
        cur = conn.execute(
            "SELECT id, title, price, original_price, discount, category, url, timestamp "
            "FROM products ORDER BY seq ASC"
        )
        result: List[Product] = []
        for row in cur.fetchall():
            pid, title, price, original, discount, category, url, ts = row
            result.append(
                Product.from_dict(
                    {
                        "id": pid,
                        "title": title,
                        "price": price,
                        "original_price": original,
                        "discount": discount,
                        "category": category,
                        "url": url,
                        "timestamp": ts,
                    }
                )
            )
        return result


def save_products(products: Iterable[Product], db_path: Optional[str] = None) -> None:
    """Replace the stored catalog with `products`, keeping their order."""
    rows = []
    for seq, p in enumerate(products):
        d = p.to_dict()
        rows.append((
            seq,
            d["id"],
            d["title"],
            float(d["price"] or 0.0),
            d["original_price"],
            int(d["discount"] or 0),
            d["category"],
            d["url"],
            d["timestamp"],
        ))

    with _get_connection(db_path) as conn:
        conn.execute("DELETE FROM products")
        conn.executemany("""
            INSERT INTO products (
              seq, id, title, price, original_price, discount, category, url, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, rows)
        conn.commit()
    logger.debug("Saved %d products", len(rows))


def load_settings(db_path: Optional[str] = None) -> Optional[Settings]:
    """Stored settings, or None when nothing has been saved yet."""
    with _get_connection(db_path) as conn:
        cur = conn.execute("SELECT key, value FROM settings")
        rows = cur.fetchall()
    if not rows:
        return None
    data = {}
    for key, value in rows:
        try:
            data[key] = json.loads(value)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable stored setting %r", key)
    return Settings.from_dict(data)


def save_settings(settings: Settings, db_path: Optional[str] = None) -> None:
    rows = [(k, json.dumps(v)) for k, v in settings.to_dict().items()]
    with _get_connection(db_path) as conn:
        conn.executemany("""
            INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """, rows)
        conn.commit()


__all__ = [
    "init_db",
    "load_products",
    "save_products",
    "load_settings",
    "save_settings",
]
