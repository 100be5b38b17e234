"""Run reconciliation tasks once against the configured store and cache.

Usage:
    python -m scripts.run_reconciliation              # heal + retention
    python -m scripts.run_reconciliation --task heal
    python -m scripts.run_reconciliation --task retention --days 60
"""

import argparse
import asyncio
import logging
import sys

from chatflux.cache.redis_client import RedisMessageCache
from chatflux.db.store import SqlMessageStore
from chatflux.reconciliation import ReconciliationConfig, ReconciliationScheduler
from chatflux.settings import get_settings

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def run(task: str, days: int) -> int:
    settings = get_settings()
    store = SqlMessageStore.from_url(settings.database_url)
    cache = RedisMessageCache.from_url(settings.redis_url, max_size=settings.cache_max_messages)
    scheduler = ReconciliationScheduler(
        store,
        cache,
        ReconciliationConfig(
            heal_window_minutes=settings.heal_window_minutes,
            cache_max_messages=settings.cache_max_messages,
            retention_days=days,
        ),
    )

    runs = []
    try:
        if task in ("heal", "all"):
            runs.append(await scheduler.run_cache_heal())
        if task in ("retention", "all"):
            runs.append(await scheduler.run_retention())
    finally:
        await cache.close()
        await store.close()

    for job in runs:
        status = "ok" if job.succeeded else f"failed: {job.error}"
        logger.info("%s: %d affected in %.1f ms (%s)", job.task.value, job.count, job.duration_ms, status)
    return 0 if all(job.succeeded for job in runs) else 1


def main():
    parser = argparse.ArgumentParser(description="Run ChatFlux reconciliation tasks once")
    parser.add_argument("--task", choices=["heal", "retention", "all"], default="all")
    parser.add_argument("--days", type=int, default=None, help="Retention horizon in days")
    args = parser.parse_args()

    days = args.days if args.days is not None else get_settings().retention_days
    sys.exit(asyncio.run(run(args.task, days)))


if __name__ == "__main__":
    main()
