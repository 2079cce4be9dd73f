"""
Payment Service - STK push initiation, callback application and expiry.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from aquabeacon.config import settings
from aquabeacon.exceptions import (
    ActivePaymentExists,
    GatewayAuthError,
    GatewayError,
    GatewayRequestFailed,
    InvalidPaymentRequest,
    InvalidTransition,
    RecordNotFound,
)
from aquabeacon.fsm.machine import PaymentStateMachine, status_for_result
from aquabeacon.fsm.states import (
    ACTIVE_STATUSES,
    PaymentSource,
    PaymentStatus,
    PaymentType,
    SubscriptionPlan,
)
from aquabeacon.models.payment import Payment, generate_transaction_id
from aquabeacon.models.user import User
from aquabeacon.phone import normalize_phone_number
from aquabeacon.services.mpesa_callback import StkCallback
from aquabeacon.services.mpesa_service import MpesaService, StkQueryResult, validate_amount
from aquabeacon.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

EXPIRED_DESCRIPTION = "Payment request expired before confirmation"


class PaymentService:
    """Service for the M-Pesa payment lifecycle."""

    def __init__(self, db: AsyncSession, gateway: Optional[MpesaService] = None):
        self.db = db
        self.gateway = gateway

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _transition(
        self,
        payment: Payment,
        target: PaymentStatus,
        **values: Any,
    ) -> bool:
        """
        Move `payment` to `target` with a single conditional UPDATE.

        The WHERE clause only matches rows still in a valid source state, so
        of two concurrent writers only the first one changes the row.
        Returns False when the row had already moved on.
        """
        sources = [state.value for state in PaymentStateMachine.sources_for(target)]
        stmt = (
            update(Payment)
            .where(Payment.id == payment.id, Payment.status.in_(sources))
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        await self.db.refresh(payment)

        if result.rowcount == 0:
            logger.info(
                f"Payment {payment.transaction_id} already {payment.status}; skipped -> {target.value}",
                extra={"payment_id": payment.id},
            )
            return False

        logger.info(
            f"Payment {payment.transaction_id} -> {target.value}",
            extra={"payment_id": payment.id},
        )
        return True

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    def _resolve_plan(
        self,
        payment_type: PaymentType,
        amount: Decimal,
        subscription_plan: Optional[SubscriptionPlan],
    ) -> Optional[SubscriptionPlan]:
        """
        Plan a payment buys, checked against its amount.

        A subscription payment without an explicit plan gets the plan priced
        at exactly its amount; an amount matching no plan is rejected.
        """
        if payment_type is not PaymentType.SUBSCRIPTION:
            if subscription_plan is not None:
                raise InvalidPaymentRequest("A plan can only be given for subscription payments")
            return None

        if subscription_plan is None:
            subscription_plan = SubscriptionPlan.for_amount(amount)
            if subscription_plan is None:
                prices = ", ".join(f"KSH {plan.price:,.0f}" for plan in SubscriptionPlan.paid_plans())
                raise InvalidPaymentRequest(f"Subscription amount must match a plan price ({prices})")
            return subscription_plan

        if subscription_plan is SubscriptionPlan.FREE:
            raise InvalidPaymentRequest("The free plan does not require payment")
        if amount != subscription_plan.price:
            raise InvalidPaymentRequest(
                f"Amount for the {subscription_plan.display_name} must be KSH {subscription_plan.price:,.0f}"
            )
        return subscription_plan

    async def create_payment(
        self,
        user: User,
        phone_number: str,
        amount: Union[Decimal, int, float, str],
        payment_type: PaymentType,
        description: str,
        account_reference: Optional[str] = None,
        subscription_plan: Optional[SubscriptionPlan] = None,
        source: PaymentSource = PaymentSource.WEB,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Payment:
        """Validate input and persist a pending payment."""
        validate_amount(amount)
        value = Decimal(str(amount)).quantize(Decimal("0.01"))
        subscription_plan = self._resolve_plan(payment_type, value, subscription_plan)
        phone = normalize_phone_number(phone_number)

        now = datetime.now(timezone.utc)
        transaction_id = generate_transaction_id()

        payment = Payment(
            transaction_id=transaction_id,
            user_id=user.id,
            amount=value,
            payment_type=payment_type.value,
            subscription_plan=subscription_plan.value if subscription_plan else None,
            phone_number=phone,
            description=description,
            account_reference=account_reference or transaction_id,
            status=PaymentStatus.PENDING.value,
            source=source.value,
            user_agent=(user_agent or "")[:255] or None,
            ip_address=ip_address,
            initiated_at=now,
            expires_at=now + timedelta(minutes=settings.payment_expiry_minutes),
        )
        self.db.add(payment)
        await self.db.flush()

        logger.info(
            f"Payment {transaction_id} created for user {user.id}: KES {value} ({payment_type.value})",
            extra={"payment_id": payment.id, "user_id": user.id},
        )
        return payment

    async def initiate_payment(self, user: User, **request: Any) -> Payment:
        """
        Create a payment record and push the M-Pesa prompt.

        Raises ActivePaymentExists while an earlier prompt is still open.

        GatewayAuthError leaves the record pending for the expiry sweep;
        GatewayRequestFailed marks it failed. Both are re-raised.
        """
        if self.gateway is None:
            raise RuntimeError("PaymentService needs a gateway to initiate payments")

        active = await self.get_active_payment(user)
        if active is not None:
            logger.info(
                f"User {user.id} already has payment {active.transaction_id} in flight",
                extra={"payment_id": active.id, "user_id": user.id},
            )
            raise ActivePaymentExists(
                "You have a pending payment. Please complete or cancel it before initiating a new one.",
                payment=active,
            )

        payment = await self.create_payment(user, **request)

        try:
            push = await self.gateway.initiate_push(
                amount=payment.amount,
                phone_number=payment.phone_number,
                account_reference=payment.account_reference,
                description=payment.description,
            )
        except GatewayAuthError:
            logger.error(
                f"M-Pesa authentication failed for payment {payment.transaction_id}",
                extra={"payment_id": payment.id},
            )
            raise
        except GatewayRequestFailed as e:
            await self._transition(
                payment,
                PaymentStatus.FAILED,
                result_description=str(e),
            )
            raise

        await self._transition(
            payment,
            PaymentStatus.PROCESSING,
            checkout_request_id=push.checkout_request_id,
            merchant_request_id=push.merchant_request_id,
            result_description=push.customer_message or push.response_description,
        )
        return payment

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_payment_for_user(
        self,
        payment_id: Union[uuid.UUID, str],
        user: User,
    ) -> Payment:
        """Owner (or admin) view of a payment. Raises RecordNotFound."""
        try:
            payment_uuid = payment_id if isinstance(payment_id, uuid.UUID) else uuid.UUID(str(payment_id))
        except ValueError:
            raise RecordNotFound(f"Payment {payment_id} not found")

        payment = await self.db.get(Payment, payment_uuid)
        if payment is None or (payment.user_id != user.id and not user.is_admin):
            raise RecordNotFound(f"Payment {payment_id} not found")
        return payment

    async def get_active_payment(self, user: User) -> Optional[Payment]:
        """
        The user's unexpired payment whose STK prompt is still open.

        Pending rows without a CheckoutRequestID never reached a phone and
        cannot be charged, so they do not count.
        """
        result = await self.db.execute(
            select(Payment)
            .where(
                Payment.user_id == user.id,
                Payment.status.in_([state.value for state in ACTIVE_STATUSES]),
                Payment.checkout_request_id.is_not(None),
                Payment.expires_at > datetime.now(timezone.utc),
            )
            .order_by(Payment.initiated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_status(
        self,
        payment_id: Union[uuid.UUID, str],
        user: User,
    ) -> Payment:
        """
        Payment for status polling.

        A live processing payment is checked against the Daraja query API
        when a gateway is available, which recovers results whose callback
        never arrived. Overdue active payments are expired on read.
        """
        payment = await self.get_payment_for_user(payment_id, user)

        if (
            self.gateway is not None
            and payment.status == PaymentStatus.PROCESSING.value
            and payment.checkout_request_id
            and not payment.is_expired
        ):
            await self._sync_with_gateway(payment)

        if not payment.is_terminal and payment.is_expired:
            await self._transition(
                payment,
                PaymentStatus.EXPIRED,
                result_description=EXPIRED_DESCRIPTION,
            )
        return payment

    async def _sync_with_gateway(self, payment: Payment) -> None:
        """Apply the STK query result, if Daraja has one. Gateway errors are logged only."""
        try:
            outcome: Optional[StkQueryResult] = await self.gateway.query_push(payment.checkout_request_id)
        except GatewayError as e:
            logger.warning(
                f"STK query for payment {payment.transaction_id} failed: {e}",
                extra={"payment_id": payment.id, "checkout_request_id": payment.checkout_request_id},
            )
            return

        if outcome is None:
            return

        target = status_for_result(outcome.result_code, outcome.result_description)
        values: Dict[str, Any] = {
            "result_code": outcome.result_code,
            "result_description": outcome.result_description,
        }
        if target is PaymentStatus.COMPLETED:
            values["completed_at"] = datetime.now(timezone.utc)

        applied = await self._transition(payment, target, **values)
        if applied and target is PaymentStatus.COMPLETED:
            await self._after_completion(payment)

    async def get_by_checkout_request_id(self, checkout_request_id: str) -> Optional[Payment]:
        result = await self.db.execute(
            select(Payment).where(Payment.checkout_request_id == checkout_request_id)
        )
        return result.scalar_one_or_none()

    async def get_history(
        self,
        user: User,
        page: int = 1,
        limit: int = 10,
        status: Optional[PaymentStatus] = None,
        payment_type: Optional[PaymentType] = None,
    ) -> Tuple[List[Payment], int]:
        """Newest-first page of the user's payments and the total match count."""
        conditions = [Payment.user_id == user.id]
        if status is not None:
            conditions.append(Payment.status == status.value)
        if payment_type is not None:
            conditions.append(Payment.payment_type == payment_type.value)

        total = await self.db.scalar(
            select(func.count()).select_from(Payment).where(*conditions)
        )

        result = await self.db.execute(
            select(Payment)
            .where(*conditions)
            .order_by(Payment.initiated_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    # ------------------------------------------------------------------
    # Cancellation and expiry
    # ------------------------------------------------------------------

    async def cancel_payment(
        self,
        payment_id: Union[uuid.UUID, str],
        user: User,
    ) -> Payment:
        """Cancel an active payment on the owner's request."""
        payment = await self.get_payment_for_user(payment_id, user)
        PaymentStateMachine.assert_transition(payment.status, PaymentStatus.CANCELLED)

        applied = await self._transition(
            payment,
            PaymentStatus.CANCELLED,
            result_description="Cancelled by user",
        )
        if not applied:
            raise InvalidTransition(payment.status, PaymentStatus.CANCELLED.value)
        return payment

    async def expire_stale_payments(self, now: Optional[datetime] = None) -> int:
        """Move every overdue pending/processing payment to expired."""
        now = now or datetime.now(timezone.utc)
        stmt = (
            update(Payment)
            .where(
                Payment.status.in_([state.value for state in ACTIVE_STATUSES]),
                Payment.expires_at < now,
            )
            .values(
                status=PaymentStatus.EXPIRED.value,
                result_description=EXPIRED_DESCRIPTION,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        count = result.rowcount or 0
        if count:
            logger.info(f"Expired {count} stale payments")
        return count

    # ------------------------------------------------------------------
    # Callback
    # ------------------------------------------------------------------

    async def apply_callback(
        self,
        callback: StkCallback,
        raw: Optional[Dict[str, Any]] = None,
    ) -> Payment:
        """
        Apply an STK callback to its payment.

        Duplicate deliveries and callbacks for terminal records are no-ops,
        except a success arriving after expires_at, which is recorded and
        flagged for reconciliation while the status stays expired, and a
        success for a payment already completed through the status query,
        which fills in the receipt.

        Raises RecordNotFound for an unknown CheckoutRequestID.
        """
        payment = await self.get_by_checkout_request_id(callback.checkout_request_id)
        if payment is None:
            raise RecordNotFound(f"No payment for CheckoutRequestID {callback.checkout_request_id}")

        if not payment.is_terminal and payment.is_expired:
            # expires_at is the deadline the client polls against
            await self._transition(
                payment,
                PaymentStatus.EXPIRED,
                result_description=EXPIRED_DESCRIPTION,
            )

        if payment.is_terminal:
            await self._handle_late_callback(payment, callback, raw)
            return payment

        target = status_for_result(callback.result_code, callback.result_description)
        values: Dict[str, Any] = {
            "callback_received": True,
            "callback_data": raw,
            "result_code": callback.result_code,
            "result_description": callback.result_description,
        }
        if target is PaymentStatus.COMPLETED:
            values.update(
                mpesa_receipt_number=callback.receipt_number,
                transaction_date=callback.transaction_date,
                completed_at=datetime.now(timezone.utc),
            )
            if callback.amount is not None and callback.amount != payment.amount:
                logger.warning(
                    f"Callback amount {callback.amount} differs from payment amount {payment.amount}",
                    extra={"payment_id": payment.id},
                )

        applied = await self._transition(payment, target, **values)

        if applied and target is PaymentStatus.COMPLETED:
            await self._after_completion(payment)

        return payment

    async def _handle_late_callback(
        self,
        payment: Payment,
        callback: StkCallback,
        raw: Optional[Dict[str, Any]],
    ) -> None:
        if (
            payment.status == PaymentStatus.EXPIRED.value
            and callback.is_success
            and not payment.reconciliation_required
        ):
            await self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.status == PaymentStatus.EXPIRED.value)
                .values(
                    reconciliation_required=True,
                    callback_received=True,
                    callback_data=raw,
                    result_code=callback.result_code,
                    mpesa_receipt_number=callback.receipt_number,
                    transaction_date=callback.transaction_date,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.refresh(payment)
            logger.warning(
                f"Late success for expired payment {payment.transaction_id} "
                f"(receipt {callback.receipt_number}); flagged for reconciliation",
                extra={"payment_id": payment.id, "checkout_request_id": callback.checkout_request_id},
            )
            return

        if (
            payment.status == PaymentStatus.COMPLETED.value
            and callback.is_success
            and not payment.mpesa_receipt_number
        ):
            await self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.mpesa_receipt_number.is_(None))
                .values(
                    callback_received=True,
                    callback_data=raw,
                    mpesa_receipt_number=callback.receipt_number,
                    transaction_date=callback.transaction_date,
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.refresh(payment)
            logger.info(
                f"Receipt {callback.receipt_number} recorded for payment {payment.transaction_id}",
                extra={"payment_id": payment.id, "checkout_request_id": callback.checkout_request_id},
            )
            return

        logger.info(
            f"Duplicate callback for {payment.transaction_id} in {payment.status}; ignored",
            extra={"payment_id": payment.id, "checkout_request_id": callback.checkout_request_id},
        )

    async def _after_completion(self, payment: Payment) -> None:
        """Post-payment effects. Only subscription payments have any today."""
        if payment.payment_type != PaymentType.SUBSCRIPTION.value:
            return

        plan = (
            SubscriptionPlan(payment.subscription_plan)
            if payment.subscription_plan
            else SubscriptionPlan.for_amount(payment.amount)
        )
        if plan is None:
            logger.error(
                f"Subscription payment {payment.transaction_id} matches no plan; not activated",
                extra={"payment_id": payment.id},
            )
            return

        user = await self.db.get(User, payment.user_id)
        if user is None:
            logger.error(f"User not found for payment {payment.transaction_id}")
            return

        await SubscriptionService(self.db).activate(user, plan)
