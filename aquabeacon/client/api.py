"""
Async HTTP client for the AquaBeacon payments API.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Union

import httpx

from aquabeacon.exceptions import AquaBeaconError
from aquabeacon.fsm.states import PaymentStatus, PaymentType, SubscriptionPlan

logger = logging.getLogger(__name__)


class APIError(AquaBeaconError):
    """The API answered with success=false, a non-2xx status, or not at all."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _json_amount(amount: Union[Decimal, int, float]) -> Union[int, float]:
    value = Decimal(str(amount))
    return int(value) if value == value.to_integral_value() else float(value)


class AquaBeaconClient:
    """Thin wrapper over the payment endpoints; returns the `data` member."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            transport=transport,
            timeout=timeout,
        )

    async def __aenter__(self) -> "AquaBeaconClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise APIError(f"Network error: {e}") from e

        try:
            body = response.json()
        except ValueError:
            raise APIError(f"Unexpected response ({response.status_code})", response.status_code)
        if not isinstance(body, dict):
            raise APIError(f"Unexpected response ({response.status_code})", response.status_code)

        if not response.is_success or not body.get("success"):
            raise APIError(body.get("message") or "Request failed", response.status_code)

        return body.get("data") or {}

    async def initiate_payment(
        self,
        phone_number: str,
        amount: Union[Decimal, int, float],
        payment_type: PaymentType,
        description: str,
        account_reference: Optional[str] = None,
        plan: Optional[SubscriptionPlan] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "phoneNumber": phone_number,
            "amount": _json_amount(amount),
            "paymentType": payment_type.value,
            "description": description,
        }
        if account_reference:
            payload["accountReference"] = account_reference
        if plan:
            payload["plan"] = plan.value
        return await self._request("POST", "/api/payments/initiate", json=payload)

    async def get_payment_status(self, payment_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/payments/{payment_id}/status")

    async def get_payment_history(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[PaymentStatus] = None,
        payment_type: Optional[PaymentType] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page": page, "limit": limit}
        if status:
            params["status"] = status.value
        if payment_type:
            params["type"] = payment_type.value
        return await self._request("GET", "/api/payments/history", params=params)

    async def cancel_payment(self, payment_id: str) -> Dict[str, Any]:
        return await self._request("PUT", f"/api/payments/{payment_id}/cancel")

    async def get_subscription_access(self) -> Dict[str, Any]:
        return await self._request("GET", "/api/payments/subscription/access")
