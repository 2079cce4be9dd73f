"""
STK callback parsing.

Daraja posts:
    {"Body": {"stkCallback": {
        "MerchantRequestID": "...", "CheckoutRequestID": "ws_CO_...",
        "ResultCode": 0, "ResultDesc": "...",
        "CallbackMetadata": {"Item": [{"Name": "MpesaReceiptNumber", "Value": "QGH..."}, ...]}
    }}}
CallbackMetadata is only present on success.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from aquabeacon.exceptions import CallbackParseError

logger = logging.getLogger(__name__)

NAIROBI_TZ = ZoneInfo("Africa/Nairobi")


@dataclass
class StkCallback:
    """Parsed STK push result."""

    checkout_request_id: str
    merchant_request_id: Optional[str]
    result_code: int
    result_description: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.result_code == 0

    @property
    def receipt_number(self) -> Optional[str]:
        value = self.metadata.get("MpesaReceiptNumber")
        return str(value) if value is not None else None

    @property
    def amount(self) -> Optional[Decimal]:
        value = self.metadata.get("Amount")
        if value is None:
            return None
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None

    @property
    def phone_number(self) -> Optional[str]:
        value = self.metadata.get("PhoneNumber")
        return str(value) if value is not None else None

    @property
    def balance(self) -> Optional[Decimal]:
        value = self.metadata.get("Balance")
        if value in (None, ""):
            return None
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None

    @property
    def transaction_date(self) -> Optional[datetime]:
        """TransactionDate is YYYYMMDDHHMMSS in Nairobi time; returned in UTC."""
        value = self.metadata.get("TransactionDate")
        if value is None:
            return None
        try:
            local = datetime.strptime(str(value), "%Y%m%d%H%M%S").replace(tzinfo=NAIROBI_TZ)
        except ValueError:
            logger.warning(f"Unparseable TransactionDate in callback: {value}")
            return None
        return local.astimezone(timezone.utc)


def parse_stk_callback(payload: Any) -> StkCallback:
    """
    Extract the STK result from a webhook body.

    Raises CallbackParseError if the body is not an STK callback.
    """
    if not isinstance(payload, dict):
        raise CallbackParseError("Callback body is not a JSON object")

    body = payload.get("Body")
    stk = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(stk, dict):
        raise CallbackParseError("Callback body has no Body.stkCallback")

    checkout_request_id = stk.get("CheckoutRequestID")
    if not checkout_request_id:
        raise CallbackParseError("Callback has no CheckoutRequestID")

    try:
        result_code = int(stk.get("ResultCode"))
    except (TypeError, ValueError):
        raise CallbackParseError(f"Invalid ResultCode: {stk.get('ResultCode')!r}")

    metadata: Dict[str, Any] = {}
    callback_metadata = stk.get("CallbackMetadata") or {}
    items = callback_metadata.get("Item", []) if isinstance(callback_metadata, dict) else []
    for item in items or []:
        if isinstance(item, dict) and item.get("Name"):
            metadata[item["Name"]] = item.get("Value")

    return StkCallback(
        checkout_request_id=str(checkout_request_id),
        merchant_request_id=stk.get("MerchantRequestID"),
        result_code=result_code,
        result_description=str(stk.get("ResultDesc") or ""),
        metadata=metadata,
    )
