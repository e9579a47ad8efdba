"""
HTTP tests through the FastAPI app

Requests go through the real routers, dependencies and error handlers;
Stripe and web push are replaced by fakes.
"""

import pytest

from helpers import MT5_ACCOUNT, auth_headers


@pytest.mark.asyncio
async def test_health(api_client):
    response = await api_client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["database"] == "ok"


class TestAuth:
    @pytest.mark.asyncio
    async def test_register_login_me(self, api_client):
        response = await api_client.post(
            "/api/auth/register",
            json={
                "username": "alice",
                "email": "alice@example.com",
                "password": "correct-horse",
                "firstName": "Alice",
                "lastName": "Trader",
            },
        )
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["user"]["username"] == "alice"
        assert "passwordHash" not in body["data"]["user"]

        response = await api_client.post(
            "/api/auth/login", json={"email": "alice@example.com", "password": "correct-horse"}
        )
        assert response.status_code == 200
        token = response.json()["data"]["token"]

        response = await api_client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json()["data"]["email"] == "alice@example.com"

    @pytest.mark.asyncio
    async def test_duplicate_email(self, api_client, make_user):
        await make_user("alice")

        response = await api_client.post(
            "/api/auth/register",
            json={
                "username": "alice2",
                "email": "alice@example.com",
                "password": "correct-horse",
                "firstName": "Alice",
                "lastName": "Trader",
            },
        )

        assert response.status_code == 400
        assert response.json()["fields"] == ["email"]

    @pytest.mark.asyncio
    async def test_wrong_password(self, api_client, make_user):
        await make_user("alice")

        response = await api_client.post(
            "/api/auth/login", json={"email": "alice@example.com", "password": "wrong-password"}
        )

        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "message": "Invalid email or password",
            "error": "Invalid email or password",
        }

    @pytest.mark.asyncio
    async def test_missing_token(self, api_client):
        response = await api_client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_garbage_token(self, api_client):
        response = await api_client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401


class TestErrors:
    @pytest.mark.asyncio
    async def test_not_found_envelope(self, api_client):
        response = await api_client.get("/api/challenges/9999")

        assert response.status_code == 404
        assert response.json()["success"] is False
        assert response.json()["message"] == "Challenge not found"

    @pytest.mark.asyncio
    async def test_malformed_body_is_400(self, api_client, make_user):
        user = await make_user("alice")

        response = await api_client.post(
            "/api/payments/create", json={"amount": "lots", "type": "signal_plan"}, headers=auth_headers(user)
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Validation failed"
        assert response.json()["fields"] == ["amount"]

    @pytest.mark.asyncio
    async def test_admin_route_forbidden(self, api_client, make_user):
        user = await make_user("alice")

        response = await api_client.get("/api/users", headers=auth_headers(user))

        assert response.status_code == 403
        assert response.json()["success"] is False


class TestChallenges:
    @pytest.mark.asyncio
    async def test_join_until_full(self, api_client, make_user, make_challenge, admin_user):
        challenge = await make_challenge(account_size=100000, max_participants=2)
        alice, bob, carol = [await make_user(name) for name in ("alice", "bob", "carol")]
        url = f"/api/challenges/{challenge.id}"

        response = await api_client.post(f"{url}/join", json={"mt5Account": MT5_ACCOUNT}, headers=auth_headers(alice))
        assert response.status_code == 200
        assert response.json()["data"]["currentParticipants"] == 1
        participant_id = response.json()["data"]["participants"][0]["id"]

        response = await api_client.put(
            f"{url}/participants/{participant_id}", json={"profit": 5000}, headers=auth_headers(admin_user)
        )
        assert response.status_code == 200
        assert response.json()["data"]["profitPercent"] == pytest.approx(5.0)

        response = await api_client.post(f"{url}/join", json={"mt5Account": MT5_ACCOUNT}, headers=auth_headers(bob))
        assert response.json()["data"]["currentParticipants"] == 2

        response = await api_client.post(
            f"{url}/join", json={"mt5Account": MT5_ACCOUNT}, headers=auth_headers(carol)
        )
        assert response.status_code == 400
        assert "Challenge is full" in response.json()["message"]

        response = await api_client.get(url)
        data = response.json()["data"]
        assert data["currentParticipants"] == 2
        assert len(data["participants"]) == 2
        assert all("mt5Account" not in participant for participant in data["participants"])

        response = await api_client.get(f"/api/leaderboard/challenge/{challenge.id}")
        assert response.json()["data"]["leaderboard"][0]["username"] == "alice"

    @pytest.mark.asyncio
    async def test_participant_update_requires_admin(self, api_client, make_user, make_challenge):
        challenge = await make_challenge()
        alice = await make_user("alice")
        response = await api_client.post(
            f"/api/challenges/{challenge.id}/join", json={"mt5Account": MT5_ACCOUNT}, headers=auth_headers(alice)
        )
        participant_id = response.json()["data"]["participants"][0]["id"]

        response = await api_client.put(
            f"/api/challenges/{challenge.id}/participants/{participant_id}",
            json={"profit": 1},
            headers=auth_headers(alice),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_own_mt5_account_is_masked(self, api_client, make_user, make_challenge):
        challenge = await make_challenge()
        alice = await make_user("alice")
        await api_client.post(
            f"/api/challenges/{challenge.id}/join", json={"mt5Account": MT5_ACCOUNT}, headers=auth_headers(alice)
        )

        response = await api_client.get("/api/challenges/my-challenges", headers=auth_headers(alice))

        assert response.status_code == 200
        participation = response.json()["data"][0]
        assert participation["mt5Account"]["id"] == MT5_ACCOUNT["id"]
        assert participation["mt5Account"]["password"] == "***"


class TestPayments:
    @pytest.mark.asyncio
    async def test_create_and_confirm(self, api_client, make_user, make_signal_plan, fake_stripe):
        alice = await make_user("alice")
        plan = await make_signal_plan()

        response = await api_client.post(
            "/api/payments/create",
            json={"amount": 49.0, "type": "signal_plan", "planId": plan.id},
            headers=auth_headers(alice),
        )
        assert response.status_code == 201
        created = response.json()["data"]
        assert created["clientSecret"].startswith("pi_test_")

        response = await api_client.post(f"/api/payments/{created['paymentId']}/confirm", headers=auth_headers(alice))
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["payment"]["status"] == "completed"
        assert data["subscription"]["status"] == "active"

        response = await api_client.get("/api/payments/my-payments", headers=auth_headers(alice))
        assert response.json()["count"] == 1

    @pytest.mark.asyncio
    async def test_declined_confirm_is_400(self, api_client, make_user, make_signal_plan, fake_stripe):
        fake_stripe.intent_status = "requires_payment_method"
        alice = await make_user("alice")
        plan = await make_signal_plan()
        response = await api_client.post(
            "/api/payments/create",
            json={"amount": 49.0, "type": "signal_plan", "planId": plan.id},
            headers=auth_headers(alice),
        )

        response = await api_client.post(
            f"/api/payments/{response.json()['data']['paymentId']}/confirm", headers=auth_headers(alice)
        )

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["data"]["status"] == "failed"


class TestNotifications:
    @pytest.mark.asyncio
    async def test_vapid_key(self, api_client):
        response = await api_client.get("/api/notifications/vapid-key")

        assert response.json()["data"] == {"publicKey": "BFakeVapidPublicKey", "enabled": True}

    @pytest.mark.asyncio
    async def test_subscribe_and_send(self, api_client, make_user, admin_user, fake_push):
        alice = await make_user("alice")
        response = await api_client.post(
            "/api/notifications/subscribe",
            json={"endpoint": "https://push.example.com/alice", "keys": {"p256dh": "key", "auth": "secret"}},
            headers=auth_headers(alice),
        )
        assert response.status_code == 201

        response = await api_client.post(
            "/api/notifications",
            json={"title": "Hi", "message": "Welcome", "type": "system", "targetAudience": "all"},
            headers=auth_headers(admin_user),
        )

        assert response.status_code == 201
        assert len(fake_push.sent) == 1


class TestJobs:
    @pytest.mark.asyncio
    async def test_sweep_with_cron_secret(self, api_client, make_challenge, monkeypatch):
        monkeypatch.setattr("src.api.auth.CRON_SECRET", "cron-secret")
        await make_challenge(status="upcoming")

        response = await api_client.post("/api/tasks/challenge-statuses", headers={"X-Cron-Secret": "cron-secret"})

        assert response.status_code == 200
        assert response.json()["data"] == {"success": True, "updated": 1}

    @pytest.mark.asyncio
    async def test_wrong_secret_needs_admin(self, api_client, monkeypatch):
        monkeypatch.setattr("src.api.auth.CRON_SECRET", "cron-secret")

        response = await api_client.post("/api/tasks/challenge-statuses", headers={"X-Cron-Secret": "guess"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_status_for_admin(self, api_client, admin_user):
        response = await api_client.get("/api/tasks/status", headers=auth_headers(admin_user))

        assert response.status_code == 200
        assert "runs" in response.json()["data"]
