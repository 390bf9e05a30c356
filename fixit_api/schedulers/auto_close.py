import logging
from datetime import UTC, datetime, timedelta

from fixit_api.config import settings
from fixit_api.services.storage_service import get_storage_service

logger = logging.getLogger(__name__)


async def run_auto_close(now: datetime | None = None) -> list[int]:
    """Close resolved issues once they have been resolved long enough"""
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(days=settings.auto_close_after_days)
    logger.info(f"Closing issues resolved before {cutoff.isoformat()}")

    try:
        closed = await get_storage_service().close_resolved_before(cutoff)
    except Exception as e:
        logger.error(f"Auto-close run failed: {e}", exc_info=True)
        return []

    if closed:
        logger.info(f"Closed {len(closed)} resolved issues: {closed}")
    else:
        logger.info("No resolved issues due for closing")
    return closed
