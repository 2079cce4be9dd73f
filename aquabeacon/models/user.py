"""User model - account owner of payments and holder of the subscription."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import String, DateTime, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from aquabeacon.database import Base
from aquabeacon.fsm.states import SubscriptionPlan, SubscriptionStatus, UserRole


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class User(Base):
    """
    User table. Authentication lives elsewhere; this row only carries what
    the payment flow reads and writes.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )

    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Profile phone, stored in 2547XXXXXXXX form
    phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    role: Mapped[str] = mapped_column(
        String(20),
        default=UserRole.USER.value,
        nullable=False,
    )

    # Subscription
    subscription_plan: Mapped[str] = mapped_column(
        String(20),
        default=SubscriptionPlan.FREE.value,
        nullable=False,
    )
    subscription_status: Mapped[str] = mapped_column(
        String(20),
        default=SubscriptionStatus.INACTIVE.value,
        nullable=False,
    )
    subscription_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    subscription_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    payments: Mapped[list["Payment"]] = relationship(back_populates="user")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User {self.email} plan={self.subscription_plan}>"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def subscription_expired(self) -> bool:
        end = as_utc(self.subscription_end)
        return end is not None and datetime.now(timezone.utc) > end

    @property
    def has_premium_access(self) -> bool:
        """Paid plan, active, and not past its end date."""
        if self.subscription_plan == SubscriptionPlan.FREE.value:
            return False
        if self.subscription_status != SubscriptionStatus.ACTIVE.value:
            return False
        return not self.subscription_expired

    def has_subscription_level(self, required: SubscriptionPlan) -> bool:
        current = SubscriptionPlan(self.subscription_plan)
        return current.level >= required.level and self.has_premium_access

    def is_subscription_expiring_soon(self, days: int = 7) -> bool:
        if not self.has_premium_access:
            return False
        end = as_utc(self.subscription_end)
        if end is None:
            return False
        return end <= datetime.now(timezone.utc) + timedelta(days=days)
