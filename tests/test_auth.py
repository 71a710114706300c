"""
Tests for authentication endpoints (login, logout, me).

These tests verify:
  - Successful login returns a token, its lifetime and the user, and sets
    the session cookie
  - Wrong password and unknown username get the same 401 (anti-enumeration)
  - Inactive, not-yet-valid, expired and deleted accounts can't log in
  - /auth/me accepts the bearer header or the session cookie, and answers
    from the stored record (404 once the user is deleted)
  - Missing, garbage, forged, expired and revoked tokens are rejected with 401
  - The full login -> me -> logout -> rejected flow; logout itself needs a
    valid token
"""

from datetime import date, datetime, timedelta, timezone

from httpx import ASGITransport, AsyncClient

from app.models.user import Role


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


class TestLogin:
    """Tests for POST /auth/login."""

    async def test_login_success(self, client, managed_user, password):
        response = await client.post(
            "/auth/login", json={"username": "alice", "password": password},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["token"]
        assert data["expires_in"] == 24 * 3600
        assert data["user"]["username"] == "alice"
        assert data["user"]["id"] == str(managed_user.id)
        assert "password_hash" not in data["user"]

    async def test_login_sets_session_cookie(self, client, managed_user, password):
        response = await client.post(
            "/auth/login", json={"username": "alice", "password": password},
        )
        cookie = response.headers["set-cookie"]
        assert cookie.startswith("token=")
        assert "HttpOnly" in cookie
        assert "samesite=lax" in cookie.lower()
        assert "Max-Age=28800" in cookie

    async def test_wrong_password(self, client, managed_user):
        response = await client.post(
            "/auth/login", json={"username": "alice", "password": "WrongPassword!"},
        )
        assert response.status_code == 401
        assert response.json() == {
            "error": "Unauthorized",
            "message": "Invalid username or password",
            "code": 401,
        }

    async def test_unknown_user_same_error(self, client, managed_user):
        wrong_password = await client.post(
            "/auth/login", json={"username": "alice", "password": "WrongPassword!"},
        )
        unknown_user = await client.post(
            "/auth/login", json={"username": "nobody", "password": "WrongPassword!"},
        )
        assert unknown_user.status_code == 401
        assert unknown_user.json()["message"] == wrong_password.json()["message"]

    async def test_missing_fields(self, client):
        response = await client.post("/auth/login", json={"username": "alice"})
        assert response.status_code == 400
        assert response.json()["code"] == 400

    async def test_inactive_user(self, client, seed, password):
        await seed("sleepy", is_active=False)
        response = await client.post(
            "/auth/login", json={"username": "sleepy", "password": password},
        )
        assert response.status_code == 401
        assert response.json()["message"] == "User account is inactive"

    async def test_not_yet_valid_user(self, client, seed, password):
        await seed("future", valid_from=date.today() + timedelta(days=1))
        response = await client.post(
            "/auth/login", json={"username": "future", "password": password},
        )
        assert response.status_code == 401
        assert response.json()["message"] == "User account is not yet valid"

    async def test_expired_user(self, client, seed, password):
        await seed("past", valid_to=date.today() - timedelta(days=1))
        response = await client.post(
            "/auth/login", json={"username": "past", "password": password},
        )
        assert response.status_code == 401
        assert response.json()["message"] == "User account has expired"

    async def test_validity_window_is_inclusive(self, client, seed, password):
        today = date.today()
        await seed("today", valid_from=today, valid_to=today)
        response = await client.post(
            "/auth/login", json={"username": "today", "password": password},
        )
        assert response.status_code == 200

    async def test_deleted_user_cannot_login(self, client, seed, password):
        await seed("gone", deleted_at=datetime.now(timezone.utc))
        response = await client.post(
            "/auth/login", json={"username": "gone", "password": password},
        )
        assert response.status_code == 401


class TestRequestAuthentication:
    """Tests for GET /auth/me and token handling on protected routes."""

    async def test_me_with_bearer(self, client, user_headers, managed_user):
        response = await client.get("/auth/me", headers=user_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["id"] == str(managed_user.id)
        assert data["username"] == "alice"
        assert data["role"] == "USER"
        assert data["vpn_ip"] == "10.8.0.2"
        assert "password_hash" not in data

    async def test_me_reflects_current_record(
        self, client, user_headers, admin_headers, managed_user,
    ):
        """Changes made after login show up; the token is not a snapshot."""
        await client.put(
            f"/users/{managed_user.id}", json={"last_name": "Liddell"}, headers=admin_headers,
        )
        response = await client.get("/auth/me", headers=user_headers)
        assert response.json()["last_name"] == "Liddell"

    async def test_me_after_deletion(self, client, admin_headers, other_headers, other_user):
        response = await client.delete(f"/users/{other_user.id}", headers=admin_headers)
        assert response.status_code == 200

        response = await client.get("/auth/me", headers=other_headers)
        assert response.status_code == 404

    async def test_me_with_cookie(self, client, managed_user, issue_token):
        token = issue_token(managed_user.id, "alice")
        response = await client.get("/auth/me", headers={"Cookie": f"token={token}"})
        assert response.status_code == 200
        assert response.json()["username"] == "alice"

    async def test_raw_authorization_header(self, client, managed_user, issue_token):
        token = issue_token(managed_user.id, "alice")
        response = await client.get("/auth/me", headers={"Authorization": token})
        assert response.status_code == 200

    async def test_no_token(self, client):
        response = await client.get("/auth/me")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    async def test_garbage_token(self, client):
        response = await client.get("/auth/me", headers=bearer("not-a-jwt"))
        assert response.status_code == 401

    async def test_token_signed_with_other_secret(self, client, managed_user, issue_token):
        forged = issue_token(managed_user.id, "alice", Role.ADMIN, secret="some-other-secret")
        response = await client.get("/users", headers=bearer(forged))
        assert response.status_code == 401

    async def test_expired_token(self, client, managed_user, issue_token):
        expired = issue_token(managed_user.id, "alice", ttl=timedelta(seconds=-1))
        response = await client.get("/auth/me", headers=bearer(expired))
        assert response.status_code == 401


class TestLogout:
    """Tests for POST /auth/logout."""

    async def test_login_me_logout_flow(self, client, managed_user, password):
        """End to end: a token stops working everywhere once logged out."""
        response = await client.post(
            "/auth/login", json={"username": "alice", "password": password},
        )
        assert response.status_code == 200
        token = response.json()["token"]
        assert token
        assert response.json()["user"]["username"] == "alice"
        client.cookies.clear()

        me = await client.get("/auth/me", headers=bearer(token))
        assert me.status_code == 200
        assert me.json()["id"] == str(managed_user.id)

        logout = await client.post("/auth/logout", headers=bearer(token))
        assert logout.status_code == 200
        assert logout.json()["message"] == "Logged out successfully"

        for path in ("/auth/me", "/users", f"/users/{managed_user.id}", "/vpn/used-ips"):
            response = await client.get(path, headers=bearer(token))
            assert response.status_code == 401, path

    async def test_logout_only_revokes_that_token(self, client, managed_user, issue_token):
        first = issue_token(managed_user.id, "alice", ttl=timedelta(hours=1))
        second = issue_token(managed_user.id, "alice", ttl=timedelta(hours=2))

        await client.post("/auth/logout", headers=bearer(first))
        assert (await client.get("/auth/me", headers=bearer(first))).status_code == 401
        assert (await client.get("/auth/me", headers=bearer(second))).status_code == 200

    async def test_logout_clears_cookie(self, client, managed_user, issue_token):
        token = issue_token(managed_user.id, "alice")
        response = await client.post("/auth/logout", headers=bearer(token))
        cookie = response.headers["set-cookie"]
        assert cookie.startswith("token=")
        assert "Max-Age=0" in cookie

    async def test_logout_without_token(self, client):
        response = await client.post("/auth/logout")
        assert response.status_code == 401

    async def test_logout_refuses_forged_token(self, make_app, managed_user, issue_token):
        """A token signed with another secret is never written to the blacklist."""
        app = make_app()
        forged = issue_token(
            managed_user.id, "alice", ttl=timedelta(days=365 * 75), secret="attacker-secret",
        )
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.post("/auth/logout", headers=bearer(forged))
        assert response.status_code == 401
        assert len(app.state.blacklist) == 0

    async def test_logout_twice(self, client, managed_user, issue_token):
        token = issue_token(managed_user.id, "alice")
        assert (await client.post("/auth/logout", headers=bearer(token))).status_code == 200
        assert (await client.post("/auth/logout", headers=bearer(token))).status_code == 401
