"""
Tests for the M-Pesa STK callback webhook.
"""

from datetime import timedelta

import pytest

from aquabeacon.api.webhooks.mpesa import ACKNOWLEDGEMENT, process_stk_callback
from aquabeacon.config import settings
from aquabeacon.fsm.states import PaymentStatus, PaymentType, SubscriptionPlan
from aquabeacon.models import Payment, User
from aquabeacon.services.payment_service import PaymentService
from tests.factories import make_payment, stk_callback_payload


async def reload(session_factory, model, pk):
    async with session_factory() as session:
        return await session.get(model, pk)


class TestStkCallbackWebhook:

    @pytest.mark.asyncio
    async def test_get_reports_url_active(self, app_client):
        response = await app_client.get("/api/mpesa/stkcallback")

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_success_callback_completes_payment(self, app_client, db, user, session_factory):
        payment = await make_payment(db, user, checkout_request_id="ws_CO_1")

        response = await app_client.post("/api/mpesa/stkcallback", json=stk_callback_payload("ws_CO_1"))

        assert response.status_code == 200
        assert response.json() == ACKNOWLEDGEMENT

        stored = await reload(session_factory, Payment, payment.id)
        assert stored.status == PaymentStatus.COMPLETED.value
        assert stored.mpesa_receipt_number == "QGH123"
        assert stored.callback_received

    @pytest.mark.asyncio
    async def test_cancelled_callback(self, app_client, db, user, session_factory):
        payment = await make_payment(db, user, checkout_request_id="ws_CO_2")

        payload = stk_callback_payload("ws_CO_2", result_code=1032, result_desc="Request cancelled by user")
        response = await app_client.post("/api/mpesa/stkcallback", json=payload)

        assert response.json() == ACKNOWLEDGEMENT
        stored = await reload(session_factory, Payment, payment.id)
        assert stored.status == PaymentStatus.CANCELLED.value

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, app_client, db, user, session_factory):
        payment = await make_payment(db, user, checkout_request_id="ws_CO_1")
        payload = stk_callback_payload("ws_CO_1")

        first = await app_client.post("/api/mpesa/stkcallback", json=payload)
        second = await app_client.post("/api/mpesa/stkcallback", json=payload)

        assert first.json() == second.json() == ACKNOWLEDGEMENT
        stored = await reload(session_factory, Payment, payment.id)
        assert stored.status == PaymentStatus.COMPLETED.value
        assert stored.mpesa_receipt_number == "QGH123"

    @pytest.mark.asyncio
    async def test_unknown_checkout_request_is_acknowledged(self, app_client):
        response = await app_client.post("/api/mpesa/stkcallback", json=stk_callback_payload("ws_CO_missing"))

        assert response.status_code == 200
        assert response.json() == ACKNOWLEDGEMENT

    @pytest.mark.asyncio
    async def test_malformed_json_is_acknowledged(self, app_client):
        response = await app_client.post(
            "/api/mpesa/stkcallback",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == ACKNOWLEDGEMENT

    @pytest.mark.asyncio
    async def test_wrong_shape_is_acknowledged(self, app_client):
        response = await app_client.post("/api/mpesa/stkcallback", json={"hello": "world"})

        assert response.status_code == 200
        assert response.json() == ACKNOWLEDGEMENT

    @pytest.mark.asyncio
    async def test_late_success_after_expiry(self, app_client, db, user, session_factory):
        payment = await make_payment(db, user, checkout_request_id="ws_CO_8", expires_in=timedelta(minutes=-1))
        await PaymentService(db).expire_stale_payments()
        await db.commit()

        await app_client.post("/api/mpesa/stkcallback", json=stk_callback_payload("ws_CO_8", receipt="QGH888"))

        stored = await reload(session_factory, Payment, payment.id)
        assert stored.status == PaymentStatus.EXPIRED.value
        assert stored.reconciliation_required
        assert stored.mpesa_receipt_number == "QGH888"

    @pytest.mark.asyncio
    async def test_subscription_activation(self, app_client, db, user, session_factory):
        await make_payment(
            db,
            user,
            checkout_request_id="ws_CO_4",
            payment_type=PaymentType.SUBSCRIPTION,
            subscription_plan=SubscriptionPlan.BASIC.value,
            amount=SubscriptionPlan.BASIC.price,
        )

        await app_client.post("/api/mpesa/stkcallback", json=stk_callback_payload("ws_CO_4", amount=1500))

        stored = await reload(session_factory, User, user.id)
        assert stored.subscription_plan == SubscriptionPlan.BASIC.value
        assert stored.has_premium_access


class TestCallbackOrigin:

    @pytest.fixture
    def production_mpesa(self, monkeypatch):
        monkeypatch.setattr(settings, "mpesa_environment", "production")

    @pytest.mark.asyncio
    async def test_unknown_address_is_refused(self, production_mpesa, app_client, db, user, session_factory):
        payment = await make_payment(db, user, checkout_request_id="ws_CO_1")

        response = await app_client.post(
            "/api/mpesa/stkcallback",
            json=stk_callback_payload("ws_CO_1"),
            headers={"X-Forwarded-For": "203.0.113.50"},
        )

        assert response.status_code == 403
        stored = await reload(session_factory, Payment, payment.id)
        assert stored.status == PaymentStatus.PROCESSING.value

    @pytest.mark.asyncio
    async def test_direct_peer_is_checked_without_proxy_header(self, production_mpesa, app_client):
        response = await app_client.post("/api/mpesa/stkcallback", json=stk_callback_payload("ws_CO_1"))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_safaricom_address_is_accepted(self, production_mpesa, app_client, db, user, session_factory):
        payment = await make_payment(db, user, checkout_request_id="ws_CO_1")

        response = await app_client.post(
            "/api/mpesa/stkcallback",
            json=stk_callback_payload("ws_CO_1"),
            headers={"X-Forwarded-For": "196.201.214.200, 10.0.0.1"},
        )

        assert response.json() == ACKNOWLEDGEMENT
        stored = await reload(session_factory, Payment, payment.id)
        assert stored.status == PaymentStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_sandbox_accepts_any_address(self, app_client):
        response = await app_client.post(
            "/api/mpesa/stkcallback",
            json=stk_callback_payload("ws_CO_1"),
            headers={"X-Forwarded-For": "203.0.113.50"},
        )

        assert response.status_code == 200


class TestProcessStkCallback:

    @pytest.mark.asyncio
    async def test_missing_session_factory_is_contained(self):
        await process_stk_callback(stk_callback_payload("ws_CO_1"), None)

    @pytest.mark.asyncio
    async def test_none_payload_is_contained(self, session_factory):
        await process_stk_callback(None, session_factory)
