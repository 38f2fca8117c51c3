"""
Promotion Expiry Scheduler
Runs as a background asyncio task on app startup.
Every PROMOTION_SWEEP_INTERVAL_SECONDS it marks active or paused promotions
whose validity window has ended as 'expired'. Promotions are never deleted.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from app.config.database import db_config, Collections
from app.models.promotion import PromotionStatus

logger = logging.getLogger(__name__)

# Statuses that can still run out
EXPIRABLE_STATUSES = [PromotionStatus.ACTIVE.value, PromotionStatus.PAUSED.value]


async def expire_ended_promotions(now: Optional[datetime] = None) -> int:
    """
    Bulk-expire promotions whose conditions.valid_to is in the past.
    Returns the number of promotions updated.
    """
    now = now or datetime.utcnow()
    collection = db_config.get_collection(Collections.PROMOTIONS)
    result = await collection.update_many(
        {
            "status": {"$in": EXPIRABLE_STATUSES},
            "conditions.valid_to": {"$lt": now},
        },
        {
            "$set": {
                "status": PromotionStatus.EXPIRED.value,
                "is_active": False,
                "expired_at": now,
                "updated_at": now,
            }
        },
    )
    if result.modified_count > 0:
        logger.info("⏰ Expired %d promotion(s)", result.modified_count)
    return result.modified_count


async def run_promotion_scheduler(interval_seconds: int = 300) -> None:
    """
    Infinite loop that calls expire_ended_promotions() every `interval_seconds`.
    Launched as an asyncio background task from the app lifespan.
    """
    logger.info("🕐 Promotion Expiry Scheduler started (interval: %ss)", interval_seconds)
    while True:
        try:
            await expire_ended_promotions()
        except Exception as exc:
            logger.error("❌ Error expiring promotions: %s", exc)
        await asyncio.sleep(interval_seconds)
