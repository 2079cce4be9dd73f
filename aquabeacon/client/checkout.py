"""
Checkout session - the state behind the payment modal.

Holds the phone number and the fixed amount of the selected item, sends
the STK push through the API, follows the payment with the status poller
and exposes what the modal should currently show.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from aquabeacon.client.api import APIError, AquaBeaconClient
from aquabeacon.client.poller import PaymentStatusPoller, PollResult
from aquabeacon.exceptions import InvalidPhoneNumber
from aquabeacon.fsm.states import PaymentStatus, PaymentType, SubscriptionPlan
from aquabeacon.phone import format_phone_display, normalize_phone_number

logger = logging.getLogger(__name__)


class CheckoutState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    EXPIRED = "expired"


MESSAGES = {
    "initiating": "Initiating payment...",
    "sent": "Payment request sent! Please check your phone for M-Pesa prompt.",
    "success": "Payment completed successfully!",
    "failed": "Payment failed. Please try again.",
    "expired": "Payment request expired. Please try again.",
    "initiate_failed": "Failed to initiate payment. Please try again.",
}


@dataclass(frozen=True)
class CheckoutItem:
    """What is being paid for. The amount is never editable by the customer."""

    name: str
    amount: Decimal
    payment_type: PaymentType
    plan: Optional[SubscriptionPlan] = None

    @classmethod
    def for_plan(cls, plan: SubscriptionPlan) -> "CheckoutItem":
        return cls(
            name=plan.display_name,
            amount=plan.price,
            payment_type=PaymentType.SUBSCRIPTION,
            plan=plan,
        )

    @property
    def description(self) -> str:
        if self.payment_type is PaymentType.SUBSCRIPTION:
            return f"{self.name} subscription"
        return f"{self.name} payment"


@dataclass(frozen=True)
class StatusView:
    """Icon + message pair the modal renders for the current state."""

    state: CheckoutState
    icon: str
    tone: str
    message: str
    can_retry: bool
    is_loading: bool = False


_ICONS = {
    CheckoutState.IDLE: ("credit-card", "info"),
    CheckoutState.PROCESSING: ("clock", "warning"),
    CheckoutState.SUCCESS: ("check", "success"),
    CheckoutState.FAILED: ("alert-circle", "error"),
    CheckoutState.EXPIRED: ("alert-circle", "error"),
}


class CheckoutSession:
    """One open payment modal."""

    def __init__(
        self,
        api: AquaBeaconClient,
        item: CheckoutItem,
        profile_phone: Optional[str] = None,
        poller_factory: Optional[Callable[..., PaymentStatusPoller]] = None,
        **poll_options,
    ):
        self.api = api
        self.item = item
        self.phone = format_phone_display(profile_phone) if profile_phone else ""
        factory = poller_factory or PaymentStatusPoller
        self.poller = factory(
            fetch_status=api.get_payment_status,
            on_update=self._on_poll_update,
            **poll_options,
        )
        self._reset()

    def _reset(self) -> None:
        self.state = CheckoutState.IDLE
        self.payment_id: Optional[str] = None
        self.checkout_request_id: Optional[str] = None
        self.message = ""
        self.is_loading = False

    @property
    def amount(self) -> Decimal:
        return self.item.amount

    def set_phone(self, value: str) -> None:
        self.phone = value

    async def submit(self) -> StatusView:
        """Send the STK push for the current phone number and start polling."""
        self.poller.cancel()
        self._reset()

        try:
            phone = normalize_phone_number(self.phone)
        except InvalidPhoneNumber as e:
            # Stay on the form and ask for a corrected number
            self.message = str(e)
            return self.view()

        self.is_loading = True
        self.message = MESSAGES["initiating"]
        try:
            data = await self.api.initiate_payment(
                phone_number=phone,
                amount=self.item.amount,
                payment_type=self.item.payment_type,
                description=self.item.description,
                plan=self.item.plan,
            )
        except APIError as e:
            logger.warning(f"Payment initiation failed: {e.message}")
            self.state = CheckoutState.FAILED
            self.message = e.message or MESSAGES["initiate_failed"]
            return self.view()
        finally:
            self.is_loading = False

        payment_id = data.get("paymentId")
        if not payment_id:
            logger.warning("Payment initiation response has no paymentId")
            self.state = CheckoutState.FAILED
            self.message = MESSAGES["initiate_failed"]
            return self.view()

        self.payment_id = payment_id
        self.checkout_request_id = data.get("checkoutRequestID")
        self.state = CheckoutState.PROCESSING
        self.message = MESSAGES["sent"]
        self.poller.start(payment_id, expires_at=data.get("expiresAt"))
        return self.view()

    def _on_poll_update(self, result: PollResult) -> None:
        if result.payment_id != self.payment_id:
            return

        if result.status is PaymentStatus.COMPLETED:
            self.state = CheckoutState.SUCCESS
            self.message = MESSAGES["success"]
        elif result.status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            self.state = CheckoutState.FAILED
            self.message = MESSAGES["failed"]
        elif result.status is PaymentStatus.EXPIRED:
            self.state = CheckoutState.EXPIRED
            self.message = MESSAGES["expired"]

    async def wait_for_outcome(self) -> StatusView:
        """Block until polling settles (or was cancelled) and return the view."""
        await self.poller.wait()
        return self.view()

    def try_again(self) -> StatusView:
        """Back to the form; the item and phone number are kept."""
        self.poller.cancel()
        self._reset()
        return self.view()

    def close(self) -> None:
        self.poller.cancel()
        self._reset()

    def view(self) -> StatusView:
        icon, tone = _ICONS[self.state]
        return StatusView(
            state=self.state,
            icon=icon,
            tone=tone,
            message=self.message,
            can_retry=self.state in (CheckoutState.FAILED, CheckoutState.EXPIRED),
            is_loading=self.is_loading,
        )
