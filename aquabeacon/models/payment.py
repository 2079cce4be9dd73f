"""Payment model - one M-Pesa payment attempt and its lifecycle."""

import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, ForeignKey, Numeric, Boolean, Integer, JSON, Text, Uuid, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from aquabeacon.database import Base
from aquabeacon.fsm.states import PaymentStatus, PaymentMethod, PaymentSource
from aquabeacon.models.user import as_utc


def generate_transaction_id() -> str:
    """Unique, human-quotable payment reference."""
    return f"AQB-{secrets.token_hex(10).upper()}"


class Payment(Base):
    """
    Payment record.

    Rows are never deleted; status only moves forward along the edges in
    PaymentStateMachine, and amount / transaction_id are write-once.
    """

    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_user_status", "user_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    transaction_id: Mapped[str] = mapped_column(
        String(32),
        unique=True,
        nullable=False,
        default=generate_transaction_id,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    user: Mapped["User"] = relationship(back_populates="payments")

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="KES", nullable=False)

    payment_method: Mapped[str] = mapped_column(
        String(20),
        default=PaymentMethod.MPESA.value,
        nullable=False,
    )
    payment_type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Only for subscription payments
    subscription_plan: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # 2547XXXXXXXX / 2541XXXXXXXX
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    account_reference: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    # Daraja identifiers and result
    merchant_request_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    checkout_request_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    mpesa_receipt_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    transaction_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    result_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    result_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Callback tracking
    callback_received: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    callback_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    # Success callback arrived after the record had already expired
    reconciliation_required: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Request metadata
    source: Mapped[str] = mapped_column(String(10), default=PaymentSource.WEB.value, nullable=False)
    user_agent: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)

    # Timestamps
    initiated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

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
        return f"<Payment {self.transaction_id} status={self.status}>"

    @validates("transaction_id", "amount")
    def _write_once(self, key, value):
        current = self.__dict__.get(key)
        if current is not None and current != value:
            raise ValueError(f"Payment.{key} cannot be changed once set")
        return value

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.payment_status.is_terminal

    @property
    def is_expired(self) -> bool:
        """Past expires_at while still waiting on the gateway."""
        if self.is_terminal:
            return self.status == PaymentStatus.EXPIRED.value
        return datetime.now(timezone.utc) > as_utc(self.expires_at)

    @property
    def formatted_amount(self) -> str:
        return f"KSH {self.amount:,.0f}"
