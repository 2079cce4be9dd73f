"""Client-side payment flow: API client, status poller and checkout session."""

from aquabeacon.client.api import APIError, AquaBeaconClient
from aquabeacon.client.checkout import CheckoutItem, CheckoutSession, CheckoutState, StatusView
from aquabeacon.client.poller import PaymentStatusPoller, PollResult
from aquabeacon.client.views import AnonymousView, FreeView, SubscribedView, resolve_pricing_view

__all__ = [
    "APIError",
    "AquaBeaconClient",
    "CheckoutItem",
    "CheckoutSession",
    "CheckoutState",
    "StatusView",
    "PaymentStatusPoller",
    "PollResult",
    "AnonymousView",
    "FreeView",
    "SubscribedView",
    "resolve_pricing_view",
]
