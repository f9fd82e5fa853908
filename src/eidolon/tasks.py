"""Background jobs: Celery app and the periodic nonce sweep."""

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from celery import Celery

from . import config
from .db.database import Database
from .session.nonce import NonceManager

logger = logging.getLogger(__name__)

app = Celery(
    "eidolon",
    broker=config.REDIS_URL,
    backend=config.REDIS_URL,
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_time_limit=300,
    worker_prefetch_multiplier=1,
)

# Periodic task schedule
app.conf.beat_schedule = {
    "cleanup-expired-nonces": {
        "task": "eidolon.tasks.cleanup_expired_nonces",
        "schedule": timedelta(minutes=5),
    },
}


async def sweep_expired_nonces(database: Optional[Database] = None) -> bool:
    """Delete expired nonces; owns (and closes) the database when none is given."""
    owned = database is None
    database = database or Database()
    try:
        if owned:
            await database.init()
        return await NonceManager(database).cleanup_expired_nonces()
    finally:
        if owned:
            await database.close()


@app.task(name="eidolon.tasks.cleanup_expired_nonces")
def cleanup_expired_nonces():
    """Runs every 5 minutes. Best-effort: a failed sweep is retried next tick."""
    logger.info("Sweeping expired nonces...")
    swept = asyncio.run(sweep_expired_nonces())
    if not swept:
        logger.warning("Nonce sweep failed; will retry on the next schedule")
    return {"success": swept}
