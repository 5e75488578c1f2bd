"""Integration tests for the authentication flow over HTTP.

Covers registration, login, logout revocation, token refresh and /auth/me.
"""

from conftest import STRONG_PASSWORD, auth_header


def _register_payload(email="a@b.com", user_type="professional", **extra):
    payload = {
        "email": email,
        "password": STRONG_PASSWORD,
        "userType": user_type,
        "consents": {"terms": True, "privacy": True},
    }
    payload.update(extra)
    return payload


class TestRegister:
    def test_register_professional(self, client):
        response = client.post("/api/v1/auth/register", json=_register_payload())

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "ok"
        user = body["data"]["user"]
        assert user["email"] == "a@b.com"
        assert user["userType"] == "professional"
        assert user["emailVerified"] is False
        assert "passwordHash" not in user and "password_hash" not in user
        assert body["data"]["token"]
        assert body["data"]["refreshToken"]

        runtime = client.app.state.runtime
        profile = runtime.store.get_profile(user["id"])
        assert profile.account_type.value == "professional"
        assert len(runtime.store.list_consents(user["id"])) == 2

    def test_register_records_client_details_on_consents(self, client):
        response = client.post(
            "/api/v1/auth/register",
            json=_register_payload(),
            headers={"User-Agent": "integration-agent"},
        )
        user_id = response.json()["data"]["user"]["id"]

        consents = client.app.state.runtime.store.list_consents(user_id)
        assert {c.user_agent for c in consents} == {"integration-agent"}
        assert all(c.ip_address for c in consents)

    def test_register_company_with_name(self, client):
        response = client.post(
            "/api/v1/auth/register",
            json=_register_payload("hr@acme.io", "company", companyName="Acme Ltd"),
        )

        assert response.status_code == 201
        user_id = response.json()["data"]["user"]["id"]
        profile = client.app.state.runtime.store.get_profile(user_id)
        assert profile.company_name == "Acme Ltd"

    def test_duplicate_email_is_conflict(self, client):
        assert client.post("/api/v1/auth/register", json=_register_payload()).status_code == 201

        response = client.post("/api/v1/auth/register", json=_register_payload("A@B.COM"))

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "USER_EXISTS"
        assert error["message"] == "User with this email already exists"
        assert len(client.app.state.runtime.store.accounts) == 1

    def test_weak_password_rejected(self, client):
        response = client.post(
            "/api/v1/auth/register", json=_register_payload(password="abcdefgh")
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "WEAK_PASSWORD"
        assert client.app.state.runtime.store.accounts == {}

    def test_missing_consents_is_validation_error(self, client):
        payload = _register_payload()
        del payload["consents"]

        response = client.post("/api/v1/auth/register", json=payload)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert any(d["field"] == "consents" for d in error["details"])

    def test_unknown_user_type_is_validation_error(self, client):
        response = client.post(
            "/api/v1/auth/register", json=_register_payload(user_type="admin")
        )
        assert response.status_code == 400

    def test_invalid_email_is_validation_error(self, client):
        response = client.post(
            "/api/v1/auth/register", json=_register_payload(email="not-an-email")
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestLoginLogout:
    def test_end_to_end_session(self, client, register):
        register("a@b.com")

        bad = client.post("/api/v1/auth/login", json={"email": "a@b.com", "password": "Wrong1!x"})
        assert bad.status_code == 401
        assert bad.json()["error"]["code"] == "INVALID_CREDENTIALS"

        login = client.post("/api/v1/auth/login", json={"email": "a@b.com", "password": STRONG_PASSWORD})
        assert login.status_code == 200
        token = login.json()["data"]["token"]

        me = client.get("/api/v1/auth/me", headers=auth_header(token))
        assert me.status_code == 200
        assert me.json()["data"]["lastLoginAt"] is not None

        logout = client.post("/api/v1/auth/logout", headers=auth_header(token))
        assert logout.status_code == 200
        assert logout.json()["data"] == {"message": "Logged out successfully"}

        after = client.get("/api/v1/auth/me", headers=auth_header(token))
        assert after.status_code == 401
        assert after.json()["error"]["code"] == "UNAUTHORIZED"
        assert after.json()["error"]["message"] == "Token has been revoked"

    def test_unknown_email_gets_same_error(self, client):
        response = client.post(
            "/api/v1/auth/login", json={"email": "ghost@b.com", "password": STRONG_PASSWORD}
        )
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid email or password"

    def test_logout_without_token_is_ok(self, client):
        response = client.post("/api/v1/auth/logout")
        assert response.status_code == 200

    def test_logout_with_garbage_token_is_ok(self, client):
        response = client.post("/api/v1/auth/logout", headers=auth_header("garbage"))
        assert response.status_code == 200


class TestGatewayOverHttp:
    def test_me_without_token(self, client):
        response = client.get("/api/v1/auth/me")
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "No token provided"

    def test_me_with_invalid_token(self, client):
        response = client.get("/api/v1/auth/me", headers=auth_header("x.y.z"))
        assert response.status_code == 401
        assert response.json()["error"]["message"] == "Invalid or expired token"

    def test_me_returns_profile(self, client, register):
        data = register("pro@b.com", firstName="Ada", lastName="Lovelace")

        response = client.get("/api/v1/auth/me", headers=auth_header(data["token"]))

        body = response.json()["data"]
        assert body["email"] == "pro@b.com"
        assert body["userType"] == "professional"
        assert body["profile"]["firstName"] == "Ada"
        assert body["profile"]["lastName"] == "Lovelace"


class TestRefresh:
    def test_refresh_rotates_tokens(self, client, register):
        data = register("a@b.com")

        response = client.post("/api/v1/auth/refresh", json={"refreshToken": data["refreshToken"]})

        assert response.status_code == 200
        fresh = response.json()["data"]
        assert fresh["token"] != data["token"]
        assert fresh["refreshToken"] != data["refreshToken"]
        me = client.get("/api/v1/auth/me", headers=auth_header(fresh["token"]))
        assert me.status_code == 200

        reused = client.post("/api/v1/auth/refresh", json={"refreshToken": data["refreshToken"]})
        assert reused.status_code == 401

    def test_access_token_cannot_be_used_to_refresh(self, client, register):
        data = register("a@b.com")
        response = client.post("/api/v1/auth/refresh", json={"refreshToken": data["token"]})
        assert response.status_code == 401
