"""
M-Pesa STK Callback Handler.
Acknowledges Daraja immediately, then applies the result in the background.
In production only Safaricom addresses may post here.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from aquabeacon.api.deps import verify_callback_origin
from aquabeacon.database import get_db_context, get_session_factory
from aquabeacon.exceptions import CallbackParseError, RecordNotFound
from aquabeacon.services.mpesa_callback import parse_stk_callback
from aquabeacon.services.payment_service import PaymentService

router = APIRouter()
logger = logging.getLogger(__name__)

ACKNOWLEDGEMENT = {"ResultCode": 0, "ResultDesc": "Accepted"}


@router.post("/stkcallback", dependencies=[Depends(verify_callback_origin)])
async def stk_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    session_factory: Optional[async_sessionmaker] = Depends(get_session_factory),
):
    """
    Receive the STK push result.

    Always answers 200 with the acknowledgement; Daraja treats the delivery
    as done once it gets it, so nothing after this point may turn into an
    error response. The record update runs after the response is sent.
    """
    try:
        payload = await request.json()
    except ValueError:
        body = await request.body()
        logger.error(f"M-Pesa callback body is not JSON: {body[:200]!r}")
        payload = None

    background_tasks.add_task(process_stk_callback, payload, session_factory)
    return ACKNOWLEDGEMENT


@router.get("/stkcallback")
async def stk_callback_reachable():
    """Lets operators confirm the callback URL is reachable."""
    return {"status": "Callback URL is active. Waiting for POST data."}


async def process_stk_callback(payload: Any, session_factory: Optional[async_sessionmaker]) -> None:
    """Parse and apply a callback. Every failure is logged and contained here."""
    try:
        callback = parse_stk_callback(payload)
    except CallbackParseError as e:
        logger.error(f"Malformed M-Pesa callback: {e}")
        return

    logger.info(
        f"M-Pesa callback {callback.checkout_request_id}: {callback.result_code} {callback.result_description}",
        extra={"checkout_request_id": callback.checkout_request_id},
    )

    try:
        async with get_db_context(session_factory) as db:
            await PaymentService(db).apply_callback(callback, raw=payload)
    except RecordNotFound as e:
        logger.error(f"M-Pesa callback for unknown payment: {e}")
    except Exception as e:
        logger.error(f"Error processing M-Pesa callback: {e}", exc_info=True)
