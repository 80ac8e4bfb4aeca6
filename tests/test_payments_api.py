"""Tests for the simulated payment endpoints."""


class TestPaymentIntent:
    def test_create_intent(self, client, user_headers):
        response = client.post(
            "/api/payments/create-payment-intent", json={"amount": 65.5, "currency": "INR"}, headers=user_headers
        )
        assert response.status_code == 200
        data = response.json()
        assert data["payment_intent_id"].startswith("pi_demo_")
        assert data["client_secret"].startswith(data["payment_intent_id"])
        assert data["amount"] == 6550
        assert data["currency"] == "inr"
        assert data["is_demo_mode"] is True

    def test_amount_must_be_positive(self, client, user_headers):
        response = client.post("/api/payments/create-payment-intent", json={"amount": 0}, headers=user_headers)
        assert response.status_code == 400

    def test_unsupported_currency(self, client, user_headers):
        response = client.post(
            "/api/payments/create-payment-intent", json={"amount": 10, "currency": "eur"}, headers=user_headers
        )
        assert response.status_code == 400


class TestConfirm:
    def test_confirm_without_order(self, client, user_headers):
        response = client.post("/api/payments/confirm", json={"payment_intent_id": "pi_demo_1"}, headers=user_headers)
        assert response.status_code == 200
        assert response.json()["payment_intent"]["status"] == "succeeded"

    def test_confirm_twice_is_accepted(self, client, order, user_headers, db):
        body = {"payment_intent_id": "pi_demo_1", "order_id": order["_id"]}
        first = client.post("/api/payments/confirm", json=body, headers=user_headers)
        second = client.post("/api/payments/confirm", json=body, headers=user_headers)
        assert first.status_code == 200
        assert second.status_code == 200
        summary = second.json()["order"]
        assert summary["is_paid"] is True
        assert summary["status"] == "confirmed"
        stored = db["order"].find_one()
        assert stored["payment_result"]["is_demo_mode"] is True
        assert len(stored["status_history"]) == 1

    def test_confirm_someone_elses_order(self, client, order, other_headers):
        response = client.post(
            "/api/payments/confirm",
            json={"payment_intent_id": "pi_demo_1", "order_id": order["_id"]},
            headers=other_headers,
        )
        assert response.status_code == 403

    def test_intent_id_required(self, client, user_headers):
        response = client.post("/api/payments/confirm", json={}, headers=user_headers)
        assert response.status_code == 400


class TestProcessDemo:
    def test_stores_last_four_digits(self, client, order, user_headers, db):
        response = client.post(
            "/api/payments/process-demo",
            json={"order_id": order["_id"], "card_details": {"card_number": "4242424242424242"}},
            headers=user_headers,
        )
        assert response.status_code == 200
        assert response.json()["order"]["is_paid"] is True
        result = db["order"].find_one()["payment_result"]
        assert result["card_last4"] == "4242"
        assert result["id"].startswith("demo_")

    def test_missing_order(self, client, user_headers):
        response = client.post(
            "/api/payments/process-demo", json={"order_id": "64b000000000000000000000"}, headers=user_headers
        )
        assert response.status_code == 404


class TestRefund:
    def test_admin_refunds_order(self, client, order, admin_headers, db):
        response = client.post(
            "/api/payments/refund",
            json={"order_id": order["_id"], "amount": 65, "reason": "damaged"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["refund"]["id"].startswith("re_demo_")
        stored = db["order"].find_one()
        assert stored["status"] == "refunded"
        assert stored["refund_reason"] == "damaged"
        assert stored["status_history"][-1]["note"] == "Refunded: damaged"

    def test_customer_cannot_refund(self, client, order, user_headers):
        response = client.post("/api/payments/refund", json={"order_id": order["_id"]}, headers=user_headers)
        assert response.status_code == 403


class TestHistory:
    def test_only_paid_orders(self, client, order, user_headers, order_payload):
        order_payload["is_paid"] = True
        client.post("/api/orders", json=order_payload, headers=user_headers)
        data = client.get("/api/payments/history", headers=user_headers).json()
        assert data["total"] == 1
        assert data["stats"]["total_spent"] == 65.0
        assert data["stats"]["total_orders"] == 1

    def test_webhook_is_acknowledged(self, client):
        response = client.post("/api/payments/webhook", json={"type": "payment_intent.succeeded"})
        assert response.json()["received"] is True
