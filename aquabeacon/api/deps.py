"""
Request dependencies: bearer-token user resolution, the per-request context,
admin key check, the M-Pesa callback origin check and the payment rate limit.
"""

import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from aquabeacon.config import settings
from aquabeacon.database import get_db
from aquabeacon.exceptions import RateLimitExceeded
from aquabeacon.models.user import User
from aquabeacon.redis import KeyValueStore, get_key_value_store
from aquabeacon.services.mpesa_service import MpesaService

logger = logging.getLogger(__name__)


def _sign(user_id: str) -> str:
    return hmac.new(
        settings.secret_key.encode(),
        user_id.encode(),
        hashlib.sha256,
    ).hexdigest()


def issue_user_token(user_id: uuid.UUID) -> str:
    """Bearer token of the form '<user-id>.<hmac>'."""
    return f"{user_id}.{_sign(str(user_id))}"


def verify_user_token(token: str) -> Optional[uuid.UUID]:
    """User id carried by a valid token, else None."""
    user_id, _, signature = token.partition(".")
    if not user_id or not signature:
        return None
    if not hmac.compare_digest(_sign(user_id), signature):
        return None
    try:
        return uuid.UUID(user_id)
    except ValueError:
        return None


@dataclass
class RequestContext:
    """Everything a payment handler needs about the caller."""

    user: User
    store: KeyValueStore
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


async def get_current_user(
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve `Authorization: Bearer <token>` to a user or raise 401."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    user_id = verify_user_token(authorization[7:].strip())
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )

    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


async def get_request_context(
    request: Request,
    user: User = Depends(get_current_user),
    store: KeyValueStore = Depends(get_key_value_store),
    user_agent: Optional[str] = Header(None),
    x_forwarded_for: Optional[str] = Header(None),
) -> RequestContext:
    return RequestContext(
        user=user,
        store=store,
        user_agent=user_agent,
        ip_address=client_ip(request, x_forwarded_for),
    )


def get_mpesa_service(
    store: KeyValueStore = Depends(get_key_value_store),
) -> MpesaService:
    return MpesaService(store=store)


async def verify_admin_key(x_admin_key: Optional[str] = Header(None)) -> None:
    """Verify admin API key from header."""
    if not settings.admin_api_key or not x_admin_key or x_admin_key != settings.admin_api_key:
        raise HTTPException(status_code=401, detail="Invalid admin key")


def client_ip(request: Request, x_forwarded_for: Optional[str]) -> Optional[str]:
    """First X-Forwarded-For hop when behind the proxy, else the socket peer."""
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else None


async def verify_callback_origin(
    request: Request,
    x_forwarded_for: Optional[str] = Header(None),
) -> None:
    """Reject M-Pesa callbacks from outside Safaricom's addresses in production."""
    if not settings.verify_mpesa_callback_origin:
        return

    ip_address = client_ip(request, x_forwarded_for)
    if ip_address not in settings.mpesa_callback_allowed_ips:
        logger.warning(f"Rejected M-Pesa callback from {ip_address}")
        raise HTTPException(status_code=403, detail="Unauthorized access")


async def enforce_payment_rate_limit(context: RequestContext) -> None:
    """Fixed-window limit on initiations per user. Raises RateLimitExceeded."""
    key = f"ratelimit:payments:{context.user.id}"
    count = await context.store.incr(key, ttl=settings.payment_rate_window_seconds)
    if count > settings.payment_rate_limit:
        logger.warning(
            f"Payment rate limit hit by user {context.user.id} ({count} attempts)",
            extra={"user_id": context.user.id},
        )
        raise RateLimitExceeded("Too many payment attempts. Please try again later.")
