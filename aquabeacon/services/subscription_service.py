"""
Subscription Service - plan activation after payment and access checks.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from aquabeacon.config import settings
from aquabeacon.fsm.states import SubscriptionPlan, SubscriptionStatus
from aquabeacon.models.user import User, as_utc

logger = logging.getLogger(__name__)


class SubscriptionService:
    """Service for user subscription state."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def activate(
        self,
        user: User,
        plan: SubscriptionPlan,
        now: Optional[datetime] = None,
    ) -> User:
        """
        Start or extend a subscription period.

        Renewing the plan that is already active extends from its current end
        date; any other purchase starts a fresh period today.
        """
        now = now or datetime.now(timezone.utc)
        period = timedelta(days=settings.subscription_period_days)

        current_end = as_utc(user.subscription_end)
        renewing = (
            user.has_premium_access
            and user.subscription_plan == plan.value
            and current_end is not None
        )

        if renewing:
            user.subscription_end = current_end + period
        else:
            user.subscription_start = now
            user.subscription_end = now + period

        user.subscription_plan = plan.value
        user.subscription_status = SubscriptionStatus.ACTIVE.value
        await self.db.flush()

        logger.info(
            f"Subscription {plan.value} active for user {user.id} until {user.subscription_end.isoformat()}"
        )
        return user

    async def deactivate_if_expired(self, user: User) -> bool:
        """Drop an expired subscription back to the free plan."""
        if not user.subscription_expired:
            return False
        if (
            user.subscription_plan == SubscriptionPlan.FREE.value
            and user.subscription_status == SubscriptionStatus.INACTIVE.value
        ):
            return False

        user.subscription_plan = SubscriptionPlan.FREE.value
        user.subscription_status = SubscriptionStatus.INACTIVE.value
        await self.db.flush()
        logger.info(f"Subscription expired for user {user.id}")
        return True

    async def get_access(self, user: User) -> Dict[str, Any]:
        """Current subscription summary for the user."""
        await self.deactivate_if_expired(user)
        end = as_utc(user.subscription_end)
        return {
            "plan": user.subscription_plan,
            "status": user.subscription_status,
            "startDate": as_utc(user.subscription_start).isoformat() if user.subscription_start else None,
            "endDate": end.isoformat() if end else None,
            "hasPremiumAccess": user.has_premium_access,
            "expiringSoon": user.is_subscription_expiring_soon(7),
        }
