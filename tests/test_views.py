"""
Tests for pricing page view selection.
"""

from aquabeacon.client.views import AnonymousView, FreeView, SubscribedView, resolve_pricing_view
from aquabeacon.fsm.states import SubscriptionPlan


class TestResolvePricingView:

    def test_visitor(self):
        view = resolve_pricing_view(None)

        assert isinstance(view, AnonymousView)
        rendered = view.render()
        assert rendered["action"] == "login"
        assert [p["price"] for p in rendered["plans"]] == [1500, 5000, 12000]

    def test_free_user(self):
        view = resolve_pricing_view({"plan": "free", "hasPremiumAccess": False})

        assert isinstance(view, FreeView)
        assert view.render()["action"] == "subscribe"

    def test_subscriber_sees_upgrades_only(self):
        view = resolve_pricing_view({
            "plan": "basic",
            "hasPremiumAccess": True,
            "endDate": "2026-11-18T12:00:00+00:00",
            "expiringSoon": False,
        })

        assert view == SubscribedView(SubscriptionPlan.BASIC, "2026-11-18T12:00:00+00:00")
        rendered = view.render()
        assert [p["id"] for p in rendered["plans"]] == ["premium", "enterprise"]
        assert rendered["action"] == "upgrade"
        assert "notice" not in rendered

    def test_top_plan_has_nothing_to_upgrade(self):
        rendered = SubscribedView(SubscriptionPlan.ENTERPRISE, None, expiring_soon=True).render()

        assert rendered["plans"] == []
        assert rendered["action"] == "manage"
        assert "expires soon" in rendered["notice"]
