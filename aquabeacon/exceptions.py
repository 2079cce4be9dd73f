"""Domain exceptions for the payment flow."""

from typing import Optional


class AquaBeaconError(Exception):
    """Base class for all AquaBeacon errors."""


class GatewayError(AquaBeaconError):
    """M-Pesa gateway call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class GatewayAuthError(GatewayError):
    """OAuth token exchange failed."""


class GatewayRequestFailed(GatewayError):
    """STK push was rejected by the provider or never reached it."""


class CallbackParseError(AquaBeaconError):
    """Webhook body does not look like an STK callback."""


class RecordNotFound(AquaBeaconError):
    """No payment matches the given identifier."""


class InvalidTransition(AquaBeaconError):
    """Requested status change is not allowed by the payment state machine."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move payment from {current} to {target}")
        self.current = current
        self.target = target


class InvalidPhoneNumber(AquaBeaconError):
    """Phone number cannot be mapped to a Kenyan mobile number unambiguously."""


class InvalidPaymentRequest(AquaBeaconError):
    """Initiation request violates an amount, plan or reference constraint."""


class ActivePaymentExists(InvalidPaymentRequest):
    """The user already has an STK prompt in flight."""

    def __init__(self, message: str, payment=None):
        super().__init__(message)
        self.payment = payment


class RateLimitExceeded(AquaBeaconError):
    """Too many payment initiations in the current window."""


class PollTimeout(AquaBeaconError):
    """Status polling gave up before the payment reached a terminal state."""
