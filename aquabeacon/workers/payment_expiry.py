"""
Payment Expiry Worker.

Runs every five minutes to expire payments that never received a callback.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from aquabeacon.workers.celery_app import celery_app
from aquabeacon.database import get_db_context

logger = logging.getLogger(__name__)


async def run_expiry_sweep(session_factory: Optional[async_sessionmaker] = None) -> int:
    """Expire overdue pending/processing payments in one transaction."""
    from aquabeacon.services.payment_service import PaymentService

    async with get_db_context(session_factory) as db:
        return await PaymentService(db).expire_stale_payments()


@celery_app.task(bind=True, max_retries=3)
def expire_stale_payments(self):
    """Celery entry point for the expiry sweep."""
    import asyncio

    try:
        count = asyncio.run(run_expiry_sweep())
        logger.info(f"Expired {count} stale payments")
        return {"success": True, "count": count}
    except Exception as e:
        logger.error(f"Payment expiry sweep failed: {e}")
        self.retry(exc=e, countdown=60)
