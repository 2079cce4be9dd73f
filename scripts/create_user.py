"""
Create a user and print a bearer token for local testing.

Usage:
    python scripts/create_user.py --email owner@example.co.ke --phone 0712345678
"""

import argparse
import asyncio
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from aquabeacon.api.deps import issue_user_token
from aquabeacon.database import get_db_context, init_db
from aquabeacon.fsm.states import UserRole
from aquabeacon.models.user import User
from aquabeacon.phone import normalize_phone_number


async def create_user(email: str, phone: str, name: str, admin: bool) -> None:
    await init_db()
    async with get_db_context() as db:
        result = await db.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()
        if user is None:
            user = User(
                email=email,
                name=name,
                phone_number=normalize_phone_number(phone) if phone else None,
                role=UserRole.ADMIN.value if admin else UserRole.USER.value,
            )
            db.add(user)
            await db.flush()
            print(f"Created user {user.id}")
        else:
            print(f"User {user.id} already exists")

        print(f"Token: {issue_user_token(user.id)}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create an AquaBeacon user")
    parser.add_argument("--email", required=True)
    parser.add_argument("--phone", default="")
    parser.add_argument("--name", default="")
    parser.add_argument("--admin", action="store_true")
    args = parser.parse_args()

    asyncio.run(create_user(args.email, args.phone, args.name, args.admin))
