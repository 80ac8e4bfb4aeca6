"""Tests for registration, login and profile endpoints."""

from fastapi.testclient import TestClient

import main


class TestRegister:
    def test_register_returns_token(self, client, db, sender):
        response = client.post(
            "/api/auth/register",
            json={"name": "Asha", "email": "Asha@Example.com", "password": "secret123", "phone": "9123456789"},
        )
        assert response.status_code == 201
        data = response.json()
        assert data["access_token"]
        assert data["user"]["email"] == "asha@example.com"
        assert "password_hash" not in data["user"]
        assert db["user"].count_documents({}) == 1
        assert "Welcome" in sender.sent[0].subject

    def test_duplicate_email(self, client, user):
        response = client.post(
            "/api/auth/register", json={"name": "John", "email": "john@example.com", "password": "secret123"}
        )
        assert response.status_code == 409

    def test_invalid_phone(self, client):
        response = client.post(
            "/api/auth/register",
            json={"name": "Asha", "email": "asha@example.com", "password": "secret123", "phone": "12345"},
        )
        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "phone"


class TestLogin:
    def test_login(self, client, user, db):
        response = client.post("/api/auth/login", json={"email": "john@example.com", "password": "secret123"})
        assert response.status_code == 200
        token = response.json()["access_token"]
        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["user"]["email"] == "john@example.com"
        assert db["user"].find_one({"_id": user["_id"]})["last_login"] is not None

    def test_wrong_password(self, client, user):
        response = client.post("/api/auth/login", json={"email": "john@example.com", "password": "nope"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid email or password"

    def test_deactivated_user(self, client, user, user_headers, db):
        db["user"].update_one({"_id": user["_id"]}, {"$set": {"is_active": False}})
        response = client.post("/api/auth/login", json={"email": "john@example.com", "password": "secret123"})
        assert response.status_code == 401
        assert client.get("/api/auth/me", headers=user_headers).status_code == 401

    def test_bad_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401


class TestProfile:
    def test_null_fields_are_ignored(self, client, user, user_headers, db):
        response = client.put("/api/auth/profile", json={"name": None, "address": None}, headers=user_headers)
        assert response.status_code == 200
        stored = db["user"].find_one({"_id": user["_id"]})
        assert stored["name"] == "John Doe"
        assert stored["address"]["country"] == "India"

    def test_status_email_after_null_update(self, client, user_headers, order, admin_headers, sender):
        client.put("/api/auth/profile", json={"name": None}, headers=user_headers)
        sender.sent.clear()
        client.put(f"/api/orders/{order['_id']}/status", json={"status": "confirmed"}, headers=admin_headers)
        assert [e.to for e in sender.sent] == ["john@example.com"]
        assert "John Doe" in sender.sent[0].html

    def test_update_profile(self, client, user_headers):
        response = client.put(
            "/api/auth/profile",
            json={"name": "Johnny", "address": {"city": "Pune", "state": "Maharashtra"}},
            headers=user_headers,
        )
        assert response.status_code == 200
        updated = response.json()["user"]
        assert updated["name"] == "Johnny"
        assert updated["address"]["city"] == "Pune"
        assert updated["email"] == "john@example.com"

    def test_change_password(self, client, user, user_headers):
        client.put("/api/auth/profile", json={"password": "newsecret"}, headers=user_headers)
        response = client.post("/api/auth/login", json={"email": "john@example.com", "password": "newsecret"})
        assert response.status_code == 200


class TestDiagnostics:
    def test_root(self, client):
        assert client.get("/").json()["message"] == "FreshWash Laundry API is running"

    def test_health(self, client):
        assert client.get("/api/health").status_code == 200

    def test_no_database_configured(self, monkeypatch):
        monkeypatch.setattr("database.db", None)
        main.app.dependency_overrides.clear()
        response = TestClient(main.app).get("/api/services")
        assert response.status_code == 503
        assert "DATABASE_URL" in response.json()["message"]
