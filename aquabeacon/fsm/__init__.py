"""FSM package for payment state management."""

from aquabeacon.fsm.states import (
    PaymentStatus,
    PaymentMethod,
    PaymentType,
    SubscriptionPlan,
    TERMINAL_STATUSES,
)
from aquabeacon.fsm.machine import PaymentStateMachine, classify_failure, status_for_result

__all__ = [
    "PaymentStatus",
    "PaymentMethod",
    "PaymentType",
    "SubscriptionPlan",
    "TERMINAL_STATUSES",
    "PaymentStateMachine",
    "classify_failure",
    "status_for_result",
]
