"""
Payment state and enum definitions.
Status values are stored as plain strings on the payments table.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional


class PaymentStatus(str, Enum):
    """
    Lifecycle of a single payment attempt.

    pending -> processing -> completed | failed | cancelled | expired
    """

    PENDING = "pending"          # Created, not yet accepted by the gateway
    PROCESSING = "processing"    # STK prompt in flight on the customer's phone
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"          # No callback before expires_at

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def display_message(self) -> str:
        """Customer-facing status line."""
        messages = {
            self.PENDING: "Payment is being initiated.",
            self.PROCESSING: "Waiting for you to confirm the M-Pesa prompt on your phone.",
            self.COMPLETED: "Payment completed successfully!",
            self.FAILED: "Payment was unsuccessful. Please try again.",
            self.CANCELLED: "Payment was cancelled. Please try again.",
            self.EXPIRED: "Payment request expired. Please try again.",
        }
        return messages.get(self, self.value)


TERMINAL_STATUSES = frozenset({
    PaymentStatus.COMPLETED,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
    PaymentStatus.EXPIRED,
})

ACTIVE_STATUSES = frozenset({
    PaymentStatus.PENDING,
    PaymentStatus.PROCESSING,
})


class PaymentMethod(str, Enum):
    MPESA = "mpesa"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class PaymentType(str, Enum):
    """What the payment is for."""

    SUBSCRIPTION = "subscription"
    PERMIT_FEE = "permit_fee"
    INSPECTION_FEE = "inspection_fee"
    LAB_TEST = "lab_test"
    OTHER = "other"


class PaymentSource(str, Enum):
    WEB = "web"
    MOBILE = "mobile"
    API = "api"


class SubscriptionPlan(str, Enum):
    """
    Monthly subscription plans.
    Prices are in Kenya shillings.
    """

    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"

    @property
    def price(self) -> Decimal:
        prices = {
            self.FREE: Decimal("0"),
            self.BASIC: Decimal("1500"),
            self.PREMIUM: Decimal("5000"),
            self.ENTERPRISE: Decimal("12000"),
        }
        return prices[self]

    @property
    def display_name(self) -> str:
        names = {
            self.FREE: "Free",
            self.BASIC: "Basic Plan",
            self.PREMIUM: "Premium Plan",
            self.ENTERPRISE: "Enterprise Plan",
        }
        return names[self]

    @property
    def level(self) -> int:
        levels = {
            self.FREE: 0,
            self.BASIC: 1,
            self.PREMIUM: 2,
            self.ENTERPRISE: 3,
        }
        return levels[self]

    @classmethod
    def paid_plans(cls) -> list:
        return [plan for plan in cls if plan is not cls.FREE]

    @classmethod
    def for_amount(cls, amount) -> Optional["SubscriptionPlan"]:
        """Paid plan priced at exactly `amount`, if any."""
        value = Decimal(str(amount))
        for plan in cls.paid_plans():
            if plan.price == value:
                return plan
        return None


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class UserRole(str, Enum):
    USER = "user"
    INSPECTOR = "inspector"
    ADMIN = "admin"
