"""
M-Pesa Service - Safaricom Daraja OAuth and STK push.
"""

import base64
import logging
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncGenerator, Dict, Optional, Tuple, Union
from zoneinfo import ZoneInfo

import httpx

from aquabeacon.config import Settings, settings
from aquabeacon.exceptions import GatewayAuthError, GatewayRequestFailed, InvalidPaymentRequest
from aquabeacon.phone import mask_phone, normalize_phone_number
from aquabeacon.redis import KeyValueStore

logger = logging.getLogger(__name__)

OAUTH_PATH = "/oauth/v1/generate?grant_type=client_credentials"
STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"

TOKEN_CACHE_KEY = "mpesa:access_token"

# Query answer while the customer has not yet acted on the prompt
QUERY_IN_PROGRESS_ERROR = "500.001.1001"

# Daraja limits
MAX_STK_AMOUNT = Decimal("70000")
MAX_ACCOUNT_REFERENCE_LENGTH = 12
MAX_TRANSACTION_DESC_LENGTH = 13

# Daraja timestamps are in Nairobi local time
NAIROBI_TZ = ZoneInfo("Africa/Nairobi")


@dataclass
class StkPushResponse:
    """Synchronous acknowledgement of an STK push."""

    checkout_request_id: str
    merchant_request_id: Optional[str]
    response_code: str
    response_description: str
    customer_message: str


@dataclass
class StkQueryResult:
    """Final outcome of an STK push as reported by the query endpoint."""

    checkout_request_id: str
    merchant_request_id: Optional[str]
    result_code: int
    result_description: str


def validate_amount(amount: Union[Decimal, int, float, str]) -> int:
    """Whole shillings in 1..70000; fractional amounts are rounded up."""
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidPaymentRequest(f"Invalid amount: {amount}")

    if not value.is_finite() or value <= 0:
        raise InvalidPaymentRequest("Amount must be greater than zero")
    if value > MAX_STK_AMOUNT:
        raise InvalidPaymentRequest(f"Amount must not exceed KSH {MAX_STK_AMOUNT:,.0f}")

    return int(math.ceil(value))


class MpesaService:
    """Client for the Daraja API."""

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        config: Optional[Settings] = None,
    ):
        config = config or settings
        self.base_url = config.mpesa_base_url
        self.consumer_key = config.mpesa_consumer_key
        self.consumer_secret = config.mpesa_consumer_secret
        self.shortcode = config.mpesa_shortcode
        self.passkey = config.mpesa_passkey
        self.callback_url = config.mpesa_callback_url
        self.transaction_type = config.mpesa_transaction_type
        self.timeout = config.mpesa_timeout_seconds
        self.store = store
        self._client = http_client

    @asynccontextmanager
    async def _http(self) -> AsyncGenerator[httpx.AsyncClient, None]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def get_access_token(self, use_cache: bool = True) -> str:
        """
        Client-credentials grant against Daraja.

        Raises GatewayAuthError on any failure. Does not retry.
        """
        if use_cache and self.store:
            cached = await self.store.get(TOKEN_CACHE_KEY)
            if cached:
                return cached

        try:
            async with self._http() as client:
                response = await client.get(
                    f"{self.base_url}{OAUTH_PATH}",
                    auth=httpx.BasicAuth(self.consumer_key, self.consumer_secret),
                )
        except httpx.TimeoutException as e:
            logger.error("M-Pesa token request timeout")
            raise GatewayAuthError("M-Pesa authentication timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"M-Pesa token request error: {e}")
            raise GatewayAuthError(f"M-Pesa authentication failed: {e}") from e

        if not response.is_success:
            logger.error(f"M-Pesa token HTTP error: {response.status_code}")
            raise GatewayAuthError(
                "Failed to generate M-Pesa access token",
                status_code=response.status_code,
                response_body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayAuthError("M-Pesa token response is not valid JSON") from e

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise GatewayAuthError("M-Pesa token response has no access_token")

        if self.store:
            try:
                expires_in = int(data.get("expires_in", 3599))
            except (TypeError, ValueError):
                expires_in = 3599
            # Refresh a minute before Daraja does
            await self.store.set(TOKEN_CACHE_KEY, token, ttl=max(expires_in - 60, 60))

        return token

    def generate_password(self, timestamp: str) -> str:
        """base64(ShortCode + PassKey + Timestamp)."""
        data_to_encode = f"{self.shortcode}{self.passkey}{timestamp}"
        return base64.b64encode(data_to_encode.encode()).decode("utf-8")

    @staticmethod
    def generate_timestamp(now: Optional[datetime] = None) -> str:
        now = now or datetime.now(NAIROBI_TZ)
        return now.strftime("%Y%m%d%H%M%S")

    async def _post(self, path: str, payload: Dict[str, Any], action: str) -> Tuple[httpx.Response, Dict[str, Any]]:
        """
        Authenticated JSON POST to Daraja.

        Returns the response and its JSON object body ({} when the body is
        not an object). Transport failures raise GatewayRequestFailed.
        """
        token = await self.get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

        try:
            async with self._http() as client:
                response = await client.post(f"{self.base_url}{path}", json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"M-Pesa {action} timeout")
            raise GatewayRequestFailed("M-Pesa request timed out. Please try again.") from e
        except httpx.HTTPError as e:
            logger.error(f"M-Pesa {action} error: {e}")
            raise GatewayRequestFailed(f"Could not reach M-Pesa: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code == 401 and self.store:
            await self.store.delete(TOKEN_CACHE_KEY)

        return response, data

    async def initiate_push(
        self,
        amount: Union[Decimal, int, float, str],
        phone_number: str,
        account_reference: str,
        description: str,
    ) -> StkPushResponse:
        """
        Send an STK push prompt to the customer's phone.

        Raises:
            InvalidPaymentRequest: amount outside 1..70000
            InvalidPhoneNumber: phone cannot be normalized
            GatewayAuthError: token exchange failed
            GatewayRequestFailed: network error or Daraja rejected the push
        """
        whole_amount = validate_amount(amount)
        phone = normalize_phone_number(phone_number)

        timestamp = self.generate_timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self.generate_password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": self.transaction_type,
            "Amount": whole_amount,
            "PartyA": phone,
            "PartyB": self.shortcode,
            "PhoneNumber": phone,
            "CallBackURL": self.callback_url,
            "AccountReference": account_reference[:MAX_ACCOUNT_REFERENCE_LENGTH],
            "TransactionDesc": description[:MAX_TRANSACTION_DESC_LENGTH],
        }

        logger.info(f"STK push: KES {whole_amount} to {mask_phone(phone)} ref={account_reference}")

        response, data = await self._post(STK_PUSH_PATH, payload, "STK push")

        if not response.is_success:
            message = data.get("errorMessage") or "M-Pesa rejected the payment request"
            logger.error(f"M-Pesa STK push HTTP error: {response.status_code} {message}")
            raise GatewayRequestFailed(
                message,
                status_code=response.status_code,
                response_body=response.text,
            )

        response_code = str(data.get("ResponseCode", ""))
        checkout_request_id = data.get("CheckoutRequestID")
        if response_code != "0" or not checkout_request_id:
            message = data.get("ResponseDescription") or data.get("errorMessage") or "M-Pesa rejected the payment request"
            logger.error(f"M-Pesa STK push rejected: {response_code} {message}")
            raise GatewayRequestFailed(
                message,
                status_code=response.status_code,
                response_body=response.text,
            )

        logger.info(f"STK push accepted: {checkout_request_id}")

        return StkPushResponse(
            checkout_request_id=checkout_request_id,
            merchant_request_id=data.get("MerchantRequestID"),
            response_code=response_code,
            response_description=data.get("ResponseDescription", ""),
            customer_message=data.get("CustomerMessage", ""),
        )

    async def query_push(self, checkout_request_id: str) -> Optional[StkQueryResult]:
        """
        Ask Daraja for the outcome of an earlier STK push.

        Returns None while the prompt is still open on the customer's phone.

        Raises:
            GatewayAuthError: token exchange failed
            GatewayRequestFailed: network error or Daraja refused the query
        """
        timestamp = self.generate_timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self.generate_password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }

        response, data = await self._post(STK_QUERY_PATH, payload, "STK query")

        if data.get("errorCode") == QUERY_IN_PROGRESS_ERROR:
            return None

        if not response.is_success or str(data.get("ResponseCode", "")) != "0":
            message = data.get("errorMessage") or data.get("ResponseDescription") or "M-Pesa rejected the status query"
            logger.warning(f"M-Pesa STK query for {checkout_request_id} failed: {response.status_code} {message}")
            raise GatewayRequestFailed(
                message,
                status_code=response.status_code,
                response_body=response.text,
            )

        try:
            result_code = int(data["ResultCode"])
        except (KeyError, TypeError, ValueError):
            raise GatewayRequestFailed(
                "M-Pesa status query returned no result code",
                status_code=response.status_code,
                response_body=response.text,
            )

        logger.info(
            f"STK query {checkout_request_id}: {result_code} {data.get('ResultDesc')}",
            extra={"checkout_request_id": checkout_request_id},
        )

        return StkQueryResult(
            checkout_request_id=data.get("CheckoutRequestID") or checkout_request_id,
            merchant_request_id=data.get("MerchantRequestID"),
            result_code=result_code,
            result_description=data.get("ResultDesc") or "",
        )

    async def check_connection(self) -> bool:
        """Fetch a fresh token to prove the credentials work."""
        token = await self.get_access_token(use_cache=False)
        return bool(token)
