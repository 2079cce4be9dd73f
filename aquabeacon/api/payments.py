"""
Payment Endpoints.
STK push initiation, status polling, history, cancellation and
subscription access.
"""

import logging
import math
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from aquabeacon.api.deps import (
    RequestContext,
    enforce_payment_rate_limit,
    get_current_user,
    get_mpesa_service,
    get_request_context,
)
from aquabeacon.config import settings
from aquabeacon.database import get_db
from aquabeacon.exceptions import (
    ActivePaymentExists,
    GatewayAuthError,
    GatewayRequestFailed,
    InvalidPaymentRequest,
    InvalidPhoneNumber,
    InvalidTransition,
    RateLimitExceeded,
    RecordNotFound,
)
from aquabeacon.fsm.states import PaymentSource, PaymentStatus, PaymentType, SubscriptionPlan
from aquabeacon.models.payment import Payment
from aquabeacon.models.user import User, as_utc
from aquabeacon.services.mpesa_service import MAX_STK_AMOUNT, MpesaService
from aquabeacon.services.payment_service import PaymentService
from aquabeacon.services.subscription_service import SubscriptionService

router = APIRouter()
logger = logging.getLogger(__name__)


class InitiatePaymentRequest(BaseModel):
    """Request body for starting an STK push."""

    model_config = ConfigDict(populate_by_name=True)

    phone_number: str = Field(alias="phoneNumber", min_length=1)
    amount: Decimal = Field(ge=1, le=MAX_STK_AMOUNT)
    payment_type: PaymentType = Field(alias="paymentType")
    description: str = Field(min_length=10, max_length=200)
    account_reference: Optional[str] = Field(
        default=None, alias="accountReference", min_length=3, max_length=50
    )
    plan: Optional[SubscriptionPlan] = None
    source: PaymentSource = PaymentSource.WEB


def error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, **extra},
    )


def _iso(value) -> Optional[str]:
    return as_utc(value).isoformat() if value else None


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    """Client-facing projection of a payment record."""
    return {
        "paymentId": str(payment.id),
        "transactionId": payment.transaction_id,
        "status": payment.status,
        "message": payment.payment_status.display_message,
        "amount": float(payment.amount),
        "currency": payment.currency,
        "paymentType": payment.payment_type,
        "paymentMethod": payment.payment_method,
        "plan": payment.subscription_plan,
        "description": payment.description,
        "accountReference": payment.account_reference,
        "phoneNumber": payment.phone_number,
        "checkoutRequestID": payment.checkout_request_id,
        "mpesaReceiptNumber": payment.mpesa_receipt_number,
        "resultDescription": payment.result_description,
        "initiatedAt": _iso(payment.initiated_at),
        "completedAt": _iso(payment.completed_at),
        "expiresAt": _iso(payment.expires_at),
    }


@router.post("/initiate")
async def initiate_payment(
    request: InitiatePaymentRequest,
    context: RequestContext = Depends(get_request_context),
    db: AsyncSession = Depends(get_db),
    gateway: MpesaService = Depends(get_mpesa_service),
):
    """
    Initiate an STK push.

    The payment row is written before the gateway is called, so a record
    exists for every valid request whatever Daraja answers.
    """
    try:
        await enforce_payment_rate_limit(context)
    except RateLimitExceeded as e:
        return error_response(429, str(e))

    service = PaymentService(db, gateway)

    try:
        payment = await service.initiate_payment(
            context.user,
            phone_number=request.phone_number,
            amount=request.amount,
            payment_type=request.payment_type,
            description=request.description,
            account_reference=request.account_reference,
            subscription_plan=request.plan,
            source=request.source,
            user_agent=context.user_agent,
            ip_address=context.ip_address,
        )
    except ActivePaymentExists as e:
        return error_response(
            400,
            str(e),
            existingPayment={
                "paymentId": str(e.payment.id),
                "status": e.payment.status,
                "expiresAt": _iso(e.payment.expires_at),
            },
        )
    except (InvalidPhoneNumber, InvalidPaymentRequest) as e:
        return error_response(400, str(e))
    except GatewayAuthError:
        return error_response(502, "Unable to connect to M-Pesa. Please try again.")
    except GatewayRequestFailed as e:
        return error_response(502, f"Payment initiation failed: {e}")

    return {
        "success": True,
        "message": "Payment request sent. Check your phone for the M-Pesa prompt.",
        "data": {
            "paymentId": str(payment.id),
            "transactionId": payment.transaction_id,
            "checkoutRequestID": payment.checkout_request_id,
            "status": payment.status,
            "plan": payment.subscription_plan,
            "customerMessage": payment.result_description,
            "expiresAt": _iso(payment.expires_at),
        },
    }


@router.get("/history")
async def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    status: Optional[PaymentStatus] = Query(None),
    payment_type: Optional[PaymentType] = Query(None, alias="type"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Paginated payment history for the authenticated user."""
    service = PaymentService(db)
    payments, total = await service.get_history(
        user,
        page=page,
        limit=limit,
        status=status,
        payment_type=payment_type,
    )

    return {
        "success": True,
        "data": {
            "payments": [serialize_payment(p) for p in payments],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": math.ceil(total / limit) if total else 0,
            },
        },
    }


@router.get("/subscription/access")
async def subscription_access(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Current subscription plan and premium access."""
    access = await SubscriptionService(db).get_access(user)
    return {"success": True, "data": access}


@router.get("/test-connection")
async def test_connection(
    user: User = Depends(get_current_user),
    gateway: MpesaService = Depends(get_mpesa_service),
):
    """Check Daraja credentials. Admins only, never in production."""
    if settings.is_production:
        return error_response(404, "Not found")
    if not user.is_admin:
        return error_response(403, "Access denied. Admin role required.")

    try:
        await gateway.check_connection()
    except GatewayAuthError as e:
        logger.error(f"M-Pesa connection test failed: {e}")
        return error_response(502, "M-Pesa connection failed")

    return {
        "success": True,
        "message": "M-Pesa connection successful",
        "data": {
            "tokenGenerated": True,
            "environment": settings.mpesa_environment,
            "shortcode": settings.mpesa_shortcode,
        },
    }


@router.get("/{payment_id}/status")
async def payment_status(
    payment_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: MpesaService = Depends(get_mpesa_service),
):
    """Current status of one payment; polled by the checkout client."""
    try:
        payment = await PaymentService(db, gateway).get_status(payment_id, user)
    except RecordNotFound:
        return error_response(404, "Payment not found")

    return {"success": True, "data": serialize_payment(payment)}


@router.put("/{payment_id}/cancel")
async def cancel_payment(
    payment_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a payment that is still pending or processing."""
    try:
        payment = await PaymentService(db).cancel_payment(payment_id, user)
    except RecordNotFound:
        return error_response(404, "Payment not found")
    except InvalidTransition:
        return error_response(400, "Only pending or processing payments can be cancelled")

    return {
        "success": True,
        "message": "Payment cancelled",
        "data": serialize_payment(payment),
    }
