"""
Admin Payment Endpoints.
Manual expiry sweep and the reconciliation queue.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from aquabeacon.api.deps import verify_admin_key
from aquabeacon.api.payments import serialize_payment
from aquabeacon.database import get_db
from aquabeacon.models.payment import Payment
from aquabeacon.services.payment_service import PaymentService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/payments/expire")
async def expire_payments(
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_admin_key),
):
    """Run the expiry sweep now instead of waiting for the beat schedule."""
    count = await PaymentService(db).expire_stale_payments()
    logger.info(f"Manual expiry sweep expired {count} payments")
    return {"success": True, "data": {"expired": count}}


@router.get("/payments/reconciliation")
async def reconciliation_queue(
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_admin_key),
):
    """Expired payments that later received a successful callback."""
    result = await db.execute(
        select(Payment)
        .where(Payment.reconciliation_required.is_(True))
        .order_by(Payment.initiated_at.desc())
    )
    payments = result.scalars().all()
    return {
        "success": True,
        "data": {"payments": [serialize_payment(p) for p in payments]},
    }
