"""Tests for the /api/orders endpoints."""

import main
from notifications import Dispatcher, get_dispatcher

MISSING_ID = "64b000000000000000000000"


class TestCreateOrder:
    def test_create_pending_order(self, client, user_headers, order_payload, db):
        response = client.post("/api/orders", json=order_payload, headers=user_headers)
        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        order = data["order"]
        assert order["status"] == "pending"
        assert [i["subtotal"] for i in order["order_items"]] == [50.0, 15.0]
        assert order["status_history"] == []
        assert order["order_items"][0]["service"]["name"] == "Cotton Shirt"
        assert order["user"]["name"] == "John Doe"
        assert db["order"].count_documents({}) == 1

    def test_paid_order_starts_confirmed(self, client, user_headers, order_payload):
        order_payload["is_paid"] = True
        order = client.post("/api/orders", json=order_payload, headers=user_headers).json()["order"]
        assert order["status"] == "confirmed"
        assert order["paid_at"] is not None

    def test_unknown_service_fails_whole_order(self, client, user_headers, order_payload, db):
        order_payload["order_items"].append(
            {"service": MISSING_ID, "service_type": "wash", "quantity": 1, "price": 10}
        )
        response = client.post("/api/orders", json=order_payload, headers=user_headers)
        assert response.status_code == 404
        assert response.json()["message"] == f"Service not found: {MISSING_ID}"
        assert db["order"].count_documents({}) == 0

    def test_requires_authentication(self, client, order_payload):
        response = client.post("/api/orders", json=order_payload)
        assert response.status_code == 401
        assert "message" in response.json()

    def test_validation_errors(self, client, user_headers, order_payload):
        order_payload["total_price"] = 0
        order_payload["order_items"][0]["quantity"] = 0
        response = client.post("/api/orders", json=order_payload, headers=user_headers)
        assert response.status_code == 400
        data = response.json()
        assert data["message"] == "Validation errors"
        fields = {e["field"] for e in data["errors"]}
        assert "total_price" in fields
        assert "order_items.0.quantity" in fields

    def test_sends_confirmation_email(self, client, user_headers, order_payload, sender):
        client.post("/api/orders", json=order_payload, headers=user_headers)
        assert [e.to for e in sender.sent] == ["john@example.com"]
        assert "Order Confirmation" in sender.sent[0].subject

    def test_notification_failure_does_not_fail_request(self, client, user_headers, order_payload):
        class BrokenSender:
            def send(self, email):
                raise ConnectionError("smtp down")

        main.app.dependency_overrides[get_dispatcher] = lambda: Dispatcher(sender=BrokenSender())
        response = client.post("/api/orders", json=order_payload, headers=user_headers)
        assert response.status_code == 201


class TestReadOrders:
    def test_my_orders_paginates(self, client, user_headers, order_payload):
        for _ in range(3):
            client.post("/api/orders", json=order_payload, headers=user_headers)
        data = client.get("/api/orders/myorders?limit=2", headers=user_headers).json()
        assert len(data["orders"]) == 2
        assert data["total"] == 3
        assert data["total_pages"] == 2
        assert data["current_page"] == 1

    def test_my_orders_status_filter(self, client, user_headers, order, admin_headers):
        client.put(f"/api/orders/{order['_id']}/status", json={"status": "confirmed"}, headers=admin_headers)
        data = client.get("/api/orders/myorders?status=pending", headers=user_headers).json()
        assert data["total"] == 0

    def test_my_orders_only_own(self, client, order, other_headers):
        data = client.get("/api/orders/myorders", headers=other_headers).json()
        assert data["orders"] == []

    def test_limit_out_of_range(self, client, user_headers):
        response = client.get("/api/orders/myorders?limit=500", headers=user_headers)
        assert response.status_code == 400

    def test_owner_and_admin_can_read(self, client, order, user_headers, admin_headers):
        for headers in (user_headers, admin_headers):
            response = client.get(f"/api/orders/{order['_id']}", headers=headers)
            assert response.status_code == 200
            assert response.json()["order"]["_id"] == order["_id"]

    def test_stranger_is_forbidden(self, client, order, other_headers):
        response = client.get(f"/api/orders/{order['_id']}", headers=other_headers)
        assert response.status_code == 403

    def test_missing_and_malformed_ids(self, client, user_headers):
        assert client.get(f"/api/orders/{MISSING_ID}", headers=user_headers).status_code == 404
        assert client.get("/api/orders/nope", headers=user_headers).status_code == 404

    def test_admin_list_filters(self, client, order, admin_headers, user_headers):
        data = client.get("/api/orders?status=pending", headers=admin_headers).json()
        assert data["total"] == 1
        data = client.get("/api/orders?search=john", headers=admin_headers).json()
        assert data["total"] == 1
        data = client.get("/api/orders?search=nobody", headers=admin_headers).json()
        assert data["total"] == 0
        assert client.get("/api/orders", headers=user_headers).status_code == 403


class TestStatusUpdates:
    def test_admin_moves_to_in_progress(self, client, order, admin_headers, sender):
        response = client.put(
            f"/api/orders/{order['_id']}/status", json={"status": "in-progress"}, headers=admin_headers
        )
        assert response.status_code == 200
        updated = response.json()["order"]
        assert updated["status"] == "in-progress"
        assert len(updated["status_history"]) == 1
        assert updated["status_history"][0]["status"] == "in-progress"
        assert updated["status_history"][0]["note"] == "Status changed from pending to in-progress by admin"
        assert any("Status Update" in e.subject for e in sender.sent)

    def test_customer_cannot_set_status(self, client, order, user_headers):
        response = client.put(
            f"/api/orders/{order['_id']}/status", json={"status": "completed"}, headers=user_headers
        )
        assert response.status_code == 403

    def test_invalid_status_value(self, client, order, admin_headers):
        response = client.put(f"/api/orders/{order['_id']}/status", json={"status": "lost"}, headers=admin_headers)
        assert response.status_code == 400

    def test_stale_version_is_rejected(self, client, order, admin_headers):
        url = f"/api/orders/{order['_id']}/status"
        assert client.put(url, json={"status": "confirmed", "version": 0}, headers=admin_headers).status_code == 200
        response = client.put(url, json={"status": "in-progress", "version": 0}, headers=admin_headers)
        assert response.status_code == 409

    def test_completion_marks_delivered(self, client, order, admin_headers):
        updated = client.put(
            f"/api/orders/{order['_id']}/status", json={"status": "completed"}, headers=admin_headers
        ).json()["order"]
        assert updated["is_delivered"] is True
        assert updated["delivered_at"] is not None


class TestCancel:
    def test_owner_cancels_pending(self, client, order, user_headers):
        response = client.put(f"/api/orders/{order['_id']}/cancel", headers=user_headers)
        assert response.status_code == 200
        assert response.json()["message"] == "Order cancelled successfully"
        assert response.json()["order"]["status"] == "cancelled"

    def test_completed_order_cannot_be_cancelled(self, client, order, user_headers, admin_headers, db):
        client.put(f"/api/orders/{order['_id']}/status", json={"status": "completed"}, headers=admin_headers)
        response = client.put(f"/api/orders/{order['_id']}/cancel", headers=user_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Order cannot be cancelled at this stage"
        assert db["order"].find_one()["status"] == "completed"

    def test_stranger_cannot_cancel(self, client, order, other_headers):
        response = client.put(f"/api/orders/{order['_id']}/cancel", headers=other_headers)
        assert response.status_code == 403


class TestPay:
    def test_pay_twice_succeeds(self, client, order, user_headers):
        url = f"/api/orders/{order['_id']}/pay"
        body = {"id": "PAY-1", "status": "COMPLETED", "payer": {"email_address": "john@example.com"}}
        first = client.put(url, json=body, headers=user_headers)
        second = client.put(url, json=body, headers=user_headers)
        assert first.status_code == 200
        assert second.status_code == 200
        paid = second.json()["order"]
        assert paid["is_paid"] is True
        assert paid["status"] == "confirmed"
        assert paid["payment_result"]["email_address"] == "john@example.com"

    def test_only_owner_can_pay(self, client, order, admin_headers):
        response = client.put(f"/api/orders/{order['_id']}/pay", json={}, headers=admin_headers)
        assert response.status_code == 403
