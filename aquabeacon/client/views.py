"""
Pricing page view states.

The page renders differently for visitors, free users and subscribers; each
case is its own type with its own render().
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from aquabeacon.fsm.states import SubscriptionPlan


def plan_catalog(current: Optional[SubscriptionPlan] = None) -> List[Dict[str, Any]]:
    return [
        {
            "id": plan.value,
            "name": plan.display_name,
            "price": int(plan.price),
            "duration": "monthly",
            "current": plan is current,
        }
        for plan in SubscriptionPlan.paid_plans()
    ]


@dataclass(frozen=True)
class AnonymousView:
    kind = "anonymous"

    def render(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "headline": "Choose a plan",
            "plans": plan_catalog(),
            "action": "login",
            "notice": "Please login to subscribe to a plan",
        }


@dataclass(frozen=True)
class FreeView:
    kind = "free"

    def render(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "headline": "Upgrade to unlock premium compliance tools",
            "plans": plan_catalog(SubscriptionPlan.FREE),
            "action": "subscribe",
        }


@dataclass(frozen=True)
class SubscribedView:
    plan: SubscriptionPlan
    end_date: Optional[str]
    expiring_soon: bool = False

    kind = "subscribed"

    def render(self) -> Dict[str, Any]:
        upgrades = [p for p in plan_catalog(self.plan) if SubscriptionPlan(p["id"]).level > self.plan.level]
        rendered = {
            "kind": self.kind,
            "headline": f"You are on the {self.plan.display_name}",
            "plans": upgrades,
            "action": "upgrade" if upgrades else "manage",
            "endDate": self.end_date,
        }
        if self.expiring_soon:
            rendered["notice"] = "Your subscription expires soon. Renew to keep premium access."
        return rendered


PricingView = Union[AnonymousView, FreeView, SubscribedView]


def resolve_pricing_view(access: Optional[Dict[str, Any]]) -> PricingView:
    """
    Pick the view for a subscription access payload
    (GET /api/payments/subscription/access), or None for a visitor.
    """
    if access is None:
        return AnonymousView()
    if not access.get("hasPremiumAccess"):
        return FreeView()
    return SubscribedView(
        plan=SubscriptionPlan(access["plan"]),
        end_date=access.get("endDate"),
        expiring_soon=bool(access.get("expiringSoon")),
    )
