from __future__ import annotations

import datetime as _dt
import logging
import threading

import uvicorn

from . import config, db
from .alerts import AlertLog
from .catalog import Catalog
from .crawler import source_from_config
from .engine import DistributionEngine
from .models import Settings
from .server import create_app


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def scheduler_loop(engine: DistributionEngine, source, stop: threading.Event) -> None:
    """Run a crawl every `crawling_interval` minutes; the interval is re-read each cycle."""
    logger = logging.getLogger(__name__)
    if stop.wait(config.INITIAL_CRAWL_DELAY_SECONDS):
        return
    while not stop.is_set():
        try:
            engine.run_crawl(source)
        except Exception:
            logger.exception("Error in scheduler_loop")
        minutes = engine.settings.crawling_interval
        logger.info("Sleeping for %d minutes before next crawl.", minutes)
        if stop.wait(minutes * 60):
            break


def sweeper_loop(engine: DistributionEngine, stop: threading.Event) -> None:
    """Drop sessions idle for longer than SESSION_IDLE_TIMEOUT_MINUTES."""
    logger = logging.getLogger(__name__)
    threshold = _dt.timedelta(minutes=config.SESSION_IDLE_TIMEOUT_MINUTES)
    logger.info(
        "Starting idle-session sweeper (interval=%dm, timeout=%dm)",
        config.SWEEP_INTERVAL_MINUTES,
        config.SESSION_IDLE_TIMEOUT_MINUTES,
    )
    while not stop.wait(config.SWEEP_INTERVAL_MINUTES * 60):
        try:
            removed = engine.sweep_idle(threshold=threshold)
            logger.info("Sweep removed %d idle sessions; %d active.", removed, len(engine.registry))
        except Exception:
            logger.exception("Error in sweeper_loop")


def build_engine() -> DistributionEngine:
    """Engine seeded from the database; starts empty when loading fails."""
    logger = logging.getLogger(__name__)
    engine = DistributionEngine(
        catalog=Catalog(config.CATALOG_CAPACITY),
        alert_log=AlertLog(config.ALERT_LOG_CAPACITY),
        settings=Settings(crawling_interval=config.DEFAULT_CRAWL_INTERVAL_MINUTES),
        idle_timeout=_dt.timedelta(minutes=config.SESSION_IDLE_TIMEOUT_MINUTES),
    )
    try:
        db.init_db()
        products = db.load_products()
        settings = db.load_settings()
        engine.seed(products, settings)
        logger.info("Loaded %d products from %s", len(products), config.SQLITE_DB_PATH)
    except Exception:
        logger.exception("Failed to load saved state; starting empty")
    engine.persist_catalog = db.save_products
    engine.persist_settings = db.save_settings
    return engine


def save_state(engine: DistributionEngine) -> None:
    logger = logging.getLogger(__name__)
    products, settings = engine.export()
    try:
        db.save_products(products)
        db.save_settings(settings)
        logger.info("Saved %d products to %s", len(products), config.SQLITE_DB_PATH)
    except Exception:
        logger.exception("Failed to save state on shutdown")


def main() -> None:
    """Initialise the engine, start the background loops and serve clients."""
    config.validate()
    setup_logging()
    logger = logging.getLogger(__name__)

    logger.info("Initializing database…")
    engine = build_engine()
    source = source_from_config()
    stop = threading.Event()

    if config.ENABLE_SCHEDULER:
        t_sched = threading.Thread(
            target=scheduler_loop, args=(engine, source, stop), name="scheduler", daemon=True
        )
        t_sched.start()
    else:
        logger.info("Scheduler disabled.")

    t_sweep = threading.Thread(target=sweeper_loop, args=(engine, stop), name="sweeper", daemon=True)
    t_sweep.start()

    logger.info("Serving on %s:%d", config.HOST, config.PORT)
    try:
        uvicorn.run(create_app(engine, source), host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())
    finally:
        stop.set()
        save_state(engine)
        engine.close()


if __name__ == "__main__":
    main()
