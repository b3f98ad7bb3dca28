"""Tests for the Razorpay action endpoints and get-subscription.

WHAT: create-order, create-subscription, cancel-subscription, verify-payment,
      get-subscription against a fake Razorpay API
WHY: These endpoints initiate gateway operations; they must validate input,
     authorize the caller, and never write billing state themselves

REFERENCES:
  - billing_bridge/routers/razorpay.py
  - billing_bridge/routers/user.py
"""

from datetime import datetime

import pytest

from billing_bridge.models import Payment, PaymentStatusEnum, Subscription, SubscriptionStatusEnum, User

from conftest import KEY_ID, KEY_SECRET, sign


class TestCreateOrder:
    def test_creates_order_in_minor_units(self, client, razorpay_api):
        razorpay_api.respond("POST", "/orders", json_body={"id": "order_1", "amount": 99950, "currency": "INR"})

        response = client.post("/razorpay/create-order", json={"amount": 999.5})

        assert response.status_code == 200
        assert response.json() == {"orderId": "order_1", "amount": 99950, "currency": "INR", "keyId": KEY_ID}

        sent = razorpay_api.calls("POST", "/orders")[0]
        assert sent["amount"] == 99950
        assert sent["currency"] == "INR"
        assert sent["receipt"].startswith("receipt_order_")
        assert sent["notes"] == {"type": "one-time_payment"}

    def test_uses_basic_auth(self, client, razorpay_api):
        razorpay_api.respond("POST", "/orders", json_body={"id": "order_1", "amount": 100, "currency": "INR"})

        client.post("/razorpay/create-order", json={"amount": 1, "receipt": "rcpt_42"})

        request = razorpay_api.requests[0]
        assert request.headers["Authorization"].startswith("Basic ")
        assert razorpay_api.calls("POST", "/orders")[0]["receipt"] == "rcpt_42"

    @pytest.mark.parametrize("amount", [0, -5, "100", True, None, 1e308])
    def test_rejects_invalid_amount(self, client, razorpay_api, amount):
        response = client.post("/razorpay/create-order", json={"amount": amount})

        assert response.status_code == 400
        assert "error" in response.json()
        assert razorpay_api.requests == []

    def test_gateway_error_passes_through(self, client, razorpay_api):
        razorpay_api.respond(
            "POST",
            "/orders",
            status_code=400,
            json_body={"error": {
                "code": "BAD_REQUEST_ERROR",
                "description": "Order amount less than minimum amount allowed",
                "field": "amount",
                "source": "business",
                "step": "payment_initiation",
                "reason": "input_validation_failed",
            }},
        )

        response = client.post("/razorpay/create-order", json={"amount": 0.5})

        assert response.status_code == 400
        assert response.json() == {
            "error": "Order amount less than minimum amount allowed",
            "field": "amount",
            "reason": "input_validation_failed",
            "step": "payment_initiation",
            "source": "business",
        }

    def test_missing_api_keys_is_500(self, app, client, test_settings):
        from billing_bridge.billing.gateway import get_razorpay_client

        app.dependency_overrides.pop(get_razorpay_client)
        from billing_bridge.deps import get_settings
        app.dependency_overrides[get_settings] = lambda: test_settings.model_copy(update={"RAZORPAY_KEY_ID": None})

        response = client.post("/razorpay/create-order", json={"amount": 10})

        assert response.status_code == 500


class TestCreateSubscription:
    def test_requires_authentication(self, client):
        response = client.post("/razorpay/create-subscription", json={"plan_id": "plan_1"})

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized. User session not found."}

    def test_rejects_invalid_token(self, client):
        response = client.post(
            "/razorpay/create-subscription",
            json={"plan_id": "plan_1"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401

    def test_requires_plan_id(self, client, auth_headers):
        response = client.post("/razorpay/create-subscription", json={}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json() == {"error": "`plan_id` is required."}

    def test_creates_customer_then_subscription(self, client, razorpay_api, test_user, auth_headers, test_db_session):
        razorpay_api.respond("POST", "/customers", json_body={"id": "cust_new"})
        razorpay_api.respond("POST", "/subscriptions", json_body={"id": "sub_1", "status": "created"})

        response = client.post(
            "/razorpay/create-subscription",
            json={"plan_id": "plan_monthly", "total_count": 6},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json() == {
            "subscriptionId": "sub_1",
            "razorpayCustomerId": "cust_new",
            "keyId": KEY_ID,
            "planId": "plan_monthly",
            "status": "created",
        }

        customer_call = razorpay_api.calls("POST", "/customers")[0]
        assert customer_call["notes"] == {"internal_user_id": test_user.id}

        subscription_call = razorpay_api.calls("POST", "/subscriptions")[0]
        assert subscription_call["customer_id"] == "cust_new"
        assert subscription_call["total_count"] == 6
        assert subscription_call["quantity"] == 1
        assert subscription_call["customer_notify"] == 1
        assert subscription_call["notes"] == {"internal_user_id": test_user.id, "plan_selected": "plan_monthly"}

        user = test_db_session.query(User).filter(User.id == test_user.id).one()
        assert user.razorpay_customer_id == "cust_new"
        # The local row is written by the subscription.activated webhook
        assert test_db_session.query(Subscription).count() == 0

    def test_reuses_existing_customer(self, client, razorpay_api, customer_user, auth_headers_for):
        razorpay_api.respond("POST", "/subscriptions", json_body={"id": "sub_2", "status": "created"})

        response = client.post(
            "/razorpay/create-subscription",
            json={"plan_id": "plan_monthly"},
            headers=auth_headers_for(customer_user.id),
        )

        assert response.status_code == 200
        assert razorpay_api.calls("POST", "/customers") == []
        assert razorpay_api.calls("POST", "/subscriptions")[0]["total_count"] == 12

    def test_accepts_cookie_session(self, client, razorpay_api, customer_user):
        from billing_bridge.security import create_access_token

        razorpay_api.respond("POST", "/subscriptions", json_body={"id": "sub_3", "status": "created"})
        client.cookies.set("access_token", create_access_token(customer_user.id))

        response = client.post("/razorpay/create-subscription", json={"plan_id": "plan_monthly"})

        assert response.status_code == 200


class TestCancelSubscription:
    def test_cancels_at_cycle_end(self, client, razorpay_api, customer_user, make_subscription, auth_headers_for, test_db_session):
        make_subscription(customer_user.id, "sub_1", status=SubscriptionStatusEnum.active)
        razorpay_api.respond(
            "POST",
            "/subscriptions/sub_1/cancel",
            json_body={"id": "sub_1", "status": "active", "schedule_change_at": 1700000000},
        )

        response = client.post(
            "/razorpay/cancel-subscription",
            json={"razorpay_subscription_id": "sub_1"},
            headers=auth_headers_for(customer_user.id),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "active"
        assert body["schedule_change_at"] == 1700000000
        assert "end of the current billing cycle" in body["message"]
        assert razorpay_api.calls("POST", "/subscriptions/sub_1/cancel") == [{"cancel_at_cycle_end": 1}]

        # Status changes only via webhook
        test_db_session.expire_all()
        assert test_db_session.query(Subscription).one().status == SubscriptionStatusEnum.active

    def test_requires_subscription_id(self, client, auth_headers):
        response = client.post("/razorpay/cancel-subscription", json={}, headers=auth_headers)

        assert response.status_code == 400

    def test_other_users_subscription_is_404(self, client, razorpay_api, customer_user, test_user, make_subscription, auth_headers):
        make_subscription(customer_user.id, "sub_1")

        response = client.post(
            "/razorpay/cancel-subscription",
            json={"razorpay_subscription_id": "sub_1"},
            headers=auth_headers,
        )

        assert response.status_code == 404
        assert response.json() == {"error": "Subscription not found or does not belong to the user."}
        assert razorpay_api.requests == []

    @pytest.mark.parametrize("terminal", [SubscriptionStatusEnum.cancelled, SubscriptionStatusEnum.completed])
    def test_terminal_subscription_is_400(self, client, razorpay_api, customer_user, make_subscription, auth_headers_for, terminal):
        make_subscription(customer_user.id, "sub_1", status=terminal)

        response = client.post(
            "/razorpay/cancel-subscription",
            json={"razorpay_subscription_id": "sub_1"},
            headers=auth_headers_for(customer_user.id),
        )

        assert response.status_code == 400
        assert response.json() == {"error": f"Subscription is already {terminal.value}."}
        assert razorpay_api.requests == []


class TestVerifyPayment:
    def _payload(self, signature):
        return {
            "razorpay_order_id": "order_1",
            "razorpay_payment_id": "pay_1",
            "razorpay_signature": signature,
        }

    def test_valid_signature(self, client):
        response = client.post("/razorpay/verify-payment", json=self._payload(sign(b"order_1|pay_1", KEY_SECRET)))

        assert response.status_code == 200
        assert response.json()["verified"] is True
        assert response.json()["message"] == "Payment signature verified successfully."

    def test_invalid_signature(self, client):
        response = client.post("/razorpay/verify-payment", json=self._payload("deadbeef"))

        assert response.status_code == 400
        assert response.json() == {"verified": False, "error": "Invalid payment signature."}

    def test_missing_fields(self, client):
        response = client.post("/razorpay/verify-payment", json={"razorpay_order_id": "order_1"})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing payment verification details."}

    def test_does_not_mutate_payment(self, client, test_db_session):
        test_db_session.add(Payment(razorpay_payment_id="pay_1", user_id="u1", status=PaymentStatusEnum.authorized))
        test_db_session.commit()

        response = client.post("/razorpay/verify-payment", json=self._payload(sign(b"order_1|pay_1", KEY_SECRET)))

        assert response.status_code == 200
        test_db_session.expire_all()
        assert test_db_session.query(Payment).one().status == PaymentStatusEnum.authorized

    def test_missing_key_secret_is_500(self, app, client, test_settings):
        from billing_bridge.deps import get_settings

        app.dependency_overrides[get_settings] = lambda: test_settings.model_copy(update={"RAZORPAY_KEY_SECRET": None})

        response = client.post("/razorpay/verify-payment", json=self._payload("deadbeef"))

        assert response.status_code == 500
        assert response.json() == {"error": "Server configuration error for payment verification."}


class TestGetSubscription:
    def test_requires_authentication(self, client):
        assert client.get("/user/get-subscription").status_code == 401

    def test_no_subscription(self, client, auth_headers):
        response = client.get("/user/get-subscription", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["subscription"] is None
        assert response.json()["message"] == "No subscription found for this user."

    def test_returns_most_recent(self, client, customer_user, make_subscription, auth_headers_for):
        make_subscription(customer_user.id, "sub_old", status=SubscriptionStatusEnum.cancelled, created_at=datetime(2024, 1, 1))
        make_subscription(customer_user.id, "sub_new", status=SubscriptionStatusEnum.active, created_at=datetime(2024, 6, 1))

        response = client.get("/user/get-subscription", headers=auth_headers_for(customer_user.id))

        assert response.status_code == 200
        subscription = response.json()["subscription"]
        assert subscription["razorpay_subscription_id"] == "sub_new"
        assert subscription["status"] == "active"
        assert subscription["user_id"] == customer_user.id

    def test_post_not_allowed(self, client, auth_headers):
        assert client.post("/user/get-subscription", headers=auth_headers).status_code == 405
