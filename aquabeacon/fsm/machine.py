"""
Payment state machine - allowed transitions and M-Pesa result classification.
"""

import logging
from typing import FrozenSet, Optional, Union

from aquabeacon.exceptions import InvalidTransition
from aquabeacon.fsm.states import PaymentStatus

logger = logging.getLogger(__name__)

# Daraja result codes that mean the customer dismissed or rejected the prompt
CANCELLATION_RESULT_CODES = frozenset({1032})
CANCELLATION_KEYWORDS = ("cancel",)


class PaymentStateMachine:
    """
    Transition table for payment records.

    Terminal states have no outgoing edges, so a record that reached
    completed/failed/cancelled/expired can never change status again.
    """

    ALLOWED_TRANSITIONS = {
        PaymentStatus.PENDING: frozenset({
            PaymentStatus.PROCESSING,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
            PaymentStatus.EXPIRED,
        }),
        PaymentStatus.PROCESSING: frozenset({
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
            PaymentStatus.EXPIRED,
        }),
        PaymentStatus.COMPLETED: frozenset(),
        PaymentStatus.FAILED: frozenset(),
        PaymentStatus.CANCELLED: frozenset(),
        PaymentStatus.EXPIRED: frozenset(),
    }

    @classmethod
    def can_transition(
        cls,
        current: Union[PaymentStatus, str],
        target: Union[PaymentStatus, str],
    ) -> bool:
        return PaymentStatus(target) in cls.ALLOWED_TRANSITIONS[PaymentStatus(current)]

    @classmethod
    def assert_transition(
        cls,
        current: Union[PaymentStatus, str],
        target: Union[PaymentStatus, str],
    ) -> None:
        if not cls.can_transition(current, target):
            raise InvalidTransition(PaymentStatus(current).value, PaymentStatus(target).value)

    @classmethod
    def sources_for(cls, target: Union[PaymentStatus, str]) -> FrozenSet[PaymentStatus]:
        """All states from which `target` can be reached in one step."""
        target = PaymentStatus(target)
        return frozenset(
            state for state, targets in cls.ALLOWED_TRANSITIONS.items()
            if target in targets
        )


def classify_failure(result_code: int, description: Optional[str]) -> PaymentStatus:
    """
    Map a non-zero Daraja result to cancelled or failed.

    1032 is "Request cancelled by user"; other codes (1037 timeout,
    1 insufficient balance, 2001 wrong PIN, ...) are failures.
    """
    if result_code in CANCELLATION_RESULT_CODES:
        return PaymentStatus.CANCELLED

    text = (description or "").lower()
    if any(keyword in text for keyword in CANCELLATION_KEYWORDS):
        return PaymentStatus.CANCELLED

    return PaymentStatus.FAILED


def status_for_result(result_code: int, description: Optional[str]) -> PaymentStatus:
    """Target status for an STK callback result."""
    if result_code == 0:
        return PaymentStatus.COMPLETED
    status = classify_failure(result_code, description)
    logger.debug(f"Result {result_code} ({description}) classified as {status.value}")
    return status
