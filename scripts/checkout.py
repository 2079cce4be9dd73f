"""
Checkout from the command line
------------------------------
Runs the same checkout flow as the payment modal: sends the STK push for a
plan, then polls the payment until it settles.

Usage:
    python scripts/checkout.py --token <bearer> --plan premium --phone 0712345678
"""

import argparse
import asyncio
import logging
import os
import sys

# Add project root to python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from aquabeacon.client import AquaBeaconClient, CheckoutItem, CheckoutSession
from aquabeacon.fsm.states import SubscriptionPlan


async def main(args: argparse.Namespace) -> int:
    item = CheckoutItem.for_plan(SubscriptionPlan(args.plan))

    async with AquaBeaconClient(args.base_url, token=args.token) as api:
        session = CheckoutSession(api, item, profile_phone=args.phone, max_polls=args.max_polls)
        print(f"Paying KSH {item.amount:,.0f} for {item.name} from {session.phone}")

        view = await session.submit()
        print(f"[{view.state.value}] {view.message}")
        if view.state.value != "processing":
            return 1

        view = await session.wait_for_outcome()
        print(f"[{view.state.value}] {view.message}")
        return 0 if view.state.value == "success" else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Pay for an AquaBeacon plan via M-Pesa")
    parser.add_argument("--base-url", default=os.environ.get("AQUABEACON_URL", "http://localhost:8000"))
    parser.add_argument("--token", required=True, help="Bearer token of the paying user")
    parser.add_argument("--plan", choices=[p.value for p in SubscriptionPlan.paid_plans()], default="basic")
    parser.add_argument("--phone", required=True, help="M-Pesa number, e.g. 0712345678")
    parser.add_argument("--max-polls", type=int, default=40)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    sys.exit(asyncio.run(main(args)))
