"""Services package."""

from aquabeacon.services.mpesa_service import MpesaService, StkPushResponse, StkQueryResult
from aquabeacon.services.mpesa_callback import StkCallback, parse_stk_callback
from aquabeacon.services.payment_service import PaymentService
from aquabeacon.services.subscription_service import SubscriptionService

__all__ = [
    "MpesaService",
    "StkPushResponse",
    "StkQueryResult",
    "StkCallback",
    "parse_stk_callback",
    "PaymentService",
    "SubscriptionService",
]
