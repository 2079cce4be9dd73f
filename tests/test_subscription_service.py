"""
Tests for subscription activation and access checks.
"""

from datetime import datetime, timedelta, timezone

import pytest

from aquabeacon.fsm.states import SubscriptionPlan, SubscriptionStatus
from aquabeacon.models.user import as_utc
from aquabeacon.services.subscription_service import SubscriptionService


class TestActivate:

    @pytest.mark.asyncio
    async def test_first_activation_starts_period(self, db, user):
        now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

        await SubscriptionService(db).activate(user, SubscriptionPlan.BASIC, now=now)

        assert user.subscription_plan == "basic"
        assert user.subscription_status == "active"
        assert user.subscription_start == now
        assert user.subscription_end == now + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_renewal_extends_current_period(self, db, user):
        service = SubscriptionService(db)
        now = datetime.now(timezone.utc)
        await service.activate(user, SubscriptionPlan.PREMIUM, now=now)
        first_end = as_utc(user.subscription_end)

        await service.activate(user, SubscriptionPlan.PREMIUM, now=now + timedelta(days=5))

        assert as_utc(user.subscription_end) == first_end + timedelta(days=30)
        assert as_utc(user.subscription_start) == now

    @pytest.mark.asyncio
    async def test_plan_change_starts_new_period(self, db, user):
        service = SubscriptionService(db)
        now = datetime.now(timezone.utc)
        await service.activate(user, SubscriptionPlan.BASIC, now=now)

        later = now + timedelta(days=10)
        await service.activate(user, SubscriptionPlan.ENTERPRISE, now=later)

        assert user.subscription_plan == "enterprise"
        assert as_utc(user.subscription_start) == later
        assert as_utc(user.subscription_end) == later + timedelta(days=30)


class TestAccess:

    @pytest.mark.asyncio
    async def test_free_user(self, db, user):
        access = await SubscriptionService(db).get_access(user)

        assert access == {
            "plan": "free",
            "status": "inactive",
            "startDate": None,
            "endDate": None,
            "hasPremiumAccess": False,
            "expiringSoon": False,
        }

    @pytest.mark.asyncio
    async def test_active_subscriber(self, db, user):
        await SubscriptionService(db).activate(user, SubscriptionPlan.PREMIUM)

        access = await SubscriptionService(db).get_access(user)

        assert access["plan"] == "premium"
        assert access["hasPremiumAccess"] is True
        assert access["expiringSoon"] is False
        assert access["endDate"] is not None

    @pytest.mark.asyncio
    async def test_expiring_soon(self, db, user):
        now = datetime.now(timezone.utc)
        await SubscriptionService(db).activate(user, SubscriptionPlan.BASIC, now=now - timedelta(days=25))

        access = await SubscriptionService(db).get_access(user)

        assert access["hasPremiumAccess"] is True
        assert access["expiringSoon"] is True

    @pytest.mark.asyncio
    async def test_expired_subscription_is_deactivated(self, db, user):
        now = datetime.now(timezone.utc)
        await SubscriptionService(db).activate(user, SubscriptionPlan.PREMIUM, now=now - timedelta(days=31))

        access = await SubscriptionService(db).get_access(user)

        assert access["plan"] == SubscriptionPlan.FREE.value
        assert access["status"] == SubscriptionStatus.INACTIVE.value
        assert access["hasPremiumAccess"] is False

    @pytest.mark.asyncio
    async def test_has_subscription_level(self, db, user):
        await SubscriptionService(db).activate(user, SubscriptionPlan.PREMIUM)

        assert user.has_subscription_level(SubscriptionPlan.BASIC)
        assert user.has_subscription_level(SubscriptionPlan.PREMIUM)
        assert not user.has_subscription_level(SubscriptionPlan.ENTERPRISE)
