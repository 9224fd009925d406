"""
BountyHub - Login / Refresh / Logout Flow Tests

Integration tests through the HTTP surface:
- Login per role route, including enumeration-safe failures
- Refresh rotation and replay rejection
- Idempotent logout
- Full end-to-end flows

Run with: pytest tests/test_login_flow.py -v
"""

from sqlalchemy.exc import OperationalError
from sqlmodel import select

from bountyhub.auth.models import RefreshToken, Session
from bountyhub.auth.tokens import hash_token
from tests.conftest import (
    ADMIN_EMAIL,
    ADMIN_PASSWORD,
    ORGANIZATION_EMAIL,
    ORGANIZATION_PASSWORD,
    RESEARCHER_EMAIL,
    RESEARCHER_PASSWORD,
    audit_rows,
    auth_headers,
    login_user,
    refresh_with,
)


LOGIN_URL = "/api/v1/auth/login/researcher"


# =============================================================================
# LOGIN ENDPOINT TESTS
# =============================================================================

class TestLoginEndpoint:
    """Integration tests for POST /auth/login/{role}."""

    def test_login_success(self, client, db_session, test_researcher):
        response = client.post(
            LOGIN_URL,
            json={"email": RESEARCHER_EMAIL, "password": RESEARCHER_PASSWORD},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["token"]
        assert data["token_type"] == "bearer"
        assert data["expires_in"] > 0
        assert data["user"]["id"] == test_researcher.id
        assert data["user"]["role"] == "RESEARCHER"
        assert "password_hash" not in data["user"]
        assert data["session"]["id"]
        assert data["session"]["device"]["browser"] == "Chrome"

        session = db_session.exec(select(Session).where(Session.id == data["session"]["id"])).first()
        assert session is not None
        assert session.is_active is True
        assert session.user_id == test_researcher.id

    def test_login_sets_scoped_refresh_cookie(self, client, test_researcher):
        response = client.post(
            LOGIN_URL,
            json={"email": RESEARCHER_EMAIL, "password": RESEARCHER_PASSWORD},
        )

        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith("refreshToken=")
        assert "HttpOnly" in set_cookie
        assert "Path=/api/v1/auth" in set_cookie
        assert "samesite=strict" in set_cookie.lower()
        # Not production, so no Secure attribute
        assert "Secure" not in set_cookie
        assert "refreshToken" not in response.json()

    def test_login_stores_only_token_hash(self, client, db_session, test_researcher):
        tokens = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)

        record = db_session.exec(
            select(RefreshToken).where(RefreshToken.session_id == tokens["session"]["id"])
        ).first()
        assert record.token_hash == hash_token(tokens["refresh_token"])

    def test_login_updates_last_login(self, client, db_session, test_researcher):
        assert test_researcher.last_login is None

        login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)

        db_session.expire_all()
        db_session.refresh(test_researcher)
        assert test_researcher.last_login is not None

    def test_login_email_is_case_insensitive(self, client, test_researcher):
        response = client.post(
            LOGIN_URL,
            json={"email": "A@Test.com", "password": RESEARCHER_PASSWORD},
        )

        assert response.status_code == 200

    def test_login_invalid_password(self, client, test_researcher):
        response = client.post(
            LOGIN_URL,
            json={"email": RESEARCHER_EMAIL, "password": "WrongPassword123"},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid email or password"}

    def test_login_user_not_found(self, client):
        response = client.post(
            LOGIN_URL,
            json={"email": "nonexistent@test.com", "password": "SomePassword123"},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid email or password"}

    def test_login_without_password_hash(self, client, passwordless_researcher):
        response = client.post(
            LOGIN_URL,
            json={"email": "sso@test.com", "password": "SomePassword123"},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid email or password"}

    def test_login_inactive_user(self, client, inactive_researcher):
        response = client.post(
            LOGIN_URL,
            json={"email": "inactive@test.com", "password": "InactivePass123"},
        )

        assert response.status_code == 401
        assert "inactive" in response.json()["error"].lower()

    def test_login_short_password_rejected(self, client):
        response = client.post(
            LOGIN_URL,
            json={"email": "test@test.com", "password": "short"},
        )

        assert response.status_code == 422
        assert "error" in response.json()

    def test_sql_injection_email_blocked(self, client):
        response = client.post(
            LOGIN_URL,
            json={"email": "'; DROP TABLE users; --", "password": "password123"},
        )

        assert response.status_code == 422

    def test_unknown_login_role(self, client, test_researcher):
        response = client.post(
            "/api/v1/auth/login/superuser",
            json={"email": RESEARCHER_EMAIL, "password": RESEARCHER_PASSWORD},
        )

        assert response.status_code == 404
        assert response.json() == {"error": "Not found"}

    def test_admin_login_route(self, client, test_admin):
        tokens = login_user(client, ADMIN_EMAIL, ADMIN_PASSWORD, role="admin")

        assert tokens is not None
        assert tokens["user"]["role"] == "ADMIN"


class TestRoleIsolation:
    """A login route only admits users of its role."""

    def test_organization_on_researcher_route_looks_like_wrong_password(
        self, client, db_session, pending_organization
    ):
        pending_organization.is_active = True
        db_session.add(pending_organization)
        db_session.commit()

        wrong_role = client.post(
            LOGIN_URL,
            json={"email": ORGANIZATION_EMAIL, "password": ORGANIZATION_PASSWORD},
        )
        wrong_password = client.post(
            "/api/v1/auth/login/organization",
            json={"email": ORGANIZATION_EMAIL, "password": "WrongPassword123"},
        )

        assert wrong_role.status_code == wrong_password.status_code == 401
        assert wrong_role.json() == wrong_password.json()

    def test_researcher_on_admin_route_rejected(self, client, test_researcher):
        response = client.post(
            "/api/v1/auth/login/admin",
            json={"email": RESEARCHER_EMAIL, "password": RESEARCHER_PASSWORD},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid email or password"}


# =============================================================================
# REFRESH ENDPOINT TESTS
# =============================================================================

class TestRefreshEndpoint:
    """Integration tests for POST /auth/refresh."""

    def test_refresh_rotates_pair(self, client, test_researcher):
        tokens = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)

        response = client.post("/api/v1/auth/refresh")

        assert response.status_code == 200
        assert response.json()["token"] != tokens["token"]
        new_refresh = response.cookies.get("refreshToken")
        assert new_refresh and new_refresh != tokens["refresh_token"]

    def test_refreshed_access_token_works(self, client, test_researcher):
        login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)

        token = client.post("/api/v1/auth/refresh").json()["token"]

        assert client.get("/api/v1/auth/me", headers=auth_headers(token)).status_code == 200

    def test_refresh_without_cookie(self, client):
        response = client.post("/api/v1/auth/refresh")

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_refresh_with_garbage_cookie_clears_it(self, client):
        response = refresh_with(client, "not-a-token")

        assert response.status_code == 401
        assert 'refreshToken=""' in response.headers["set-cookie"] or "Max-Age=0" in response.headers["set-cookie"]

    def test_access_token_cannot_refresh(self, client, test_researcher):
        tokens = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)

        response = refresh_with(client, tokens["token"])

        assert response.status_code == 401

    def test_refresh_updates_last_seen_not_expiry(self, client, db_session, test_researcher):
        tokens = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)
        before = db_session.exec(select(Session).where(Session.id == tokens["session"]["id"])).first()
        expires_at, last_seen = before.expires_at, before.last_seen

        assert client.post("/api/v1/auth/refresh").status_code == 200

        db_session.expire_all()
        after = db_session.exec(select(Session).where(Session.id == tokens["session"]["id"])).first()
        assert after.expires_at == expires_at
        assert after.last_seen >= last_seen

    def test_refresh_records_audit_event(self, client, db_session, test_researcher):
        login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)
        client.post("/api/v1/auth/refresh")

        rows = audit_rows(db_session, "TOKEN_REFRESH")
        assert len(rows) == 1
        assert rows[0].user_id == test_researcher.id


class TestReplayDetection:
    """A rotated-away refresh token is a hard rejection."""

    def test_old_token_rejected_after_rotation(self, client, test_researcher):
        tokens = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)
        assert refresh_with(client, tokens["refresh_token"]).status_code == 200

        replay = refresh_with(client, tokens["refresh_token"])

        assert replay.status_code == 401
        assert replay.json() == {"error": "Unauthorized"}

    def test_replay_revokes_rotation_chain(self, client, db_session, test_researcher):
        tokens = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)
        current = refresh_with(client, tokens["refresh_token"]).cookies.get("refreshToken")

        assert refresh_with(client, tokens["refresh_token"]).status_code == 401
        # The legitimate holder's newer token is ended too
        assert refresh_with(client, current).status_code == 401

        rows = audit_rows(db_session, "REFRESH_REUSE_DETECTED")
        assert len(rows) == 1
        assert rows[0].details["session_id"] == tokens["session"]["id"]

    def test_other_sessions_unaffected_by_replay(self, client, test_researcher):
        laptop = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)
        phone = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)

        refresh_with(client, laptop["refresh_token"])
        refresh_with(client, laptop["refresh_token"])

        assert refresh_with(client, phone["refresh_token"]).status_code == 200


# =============================================================================
# LOGOUT ENDPOINT TESTS
# =============================================================================

class TestLogoutEndpoint:
    """Integration tests for POST /auth/logout."""

    def test_logout_invalidates_session(self, client, db_session, test_researcher):
        tokens = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)

        response = client.post("/api/v1/auth/logout", headers=auth_headers(tokens["token"]))

        assert response.status_code == 200
        assert response.json()["sessions_invalidated"] == 1
        assert "refreshToken=" in response.headers["set-cookie"]

        db_session.expire_all()
        session = db_session.exec(select(Session).where(Session.id == tokens["session"]["id"])).first()
        assert session.is_active is False
        record = db_session.exec(
            select(RefreshToken).where(RefreshToken.session_id == tokens["session"]["id"])
        ).first()
        assert record.token_hash is None

    def test_request_after_logout_fails(self, client, test_researcher):
        tokens = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)
        headers = auth_headers(tokens["token"])

        assert client.get("/api/v1/auth/me", headers=headers).status_code == 200

        client.post("/api/v1/auth/logout", headers=headers)

        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401

    def test_logout_twice_is_idempotent(self, client, test_researcher):
        tokens = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)
        headers = auth_headers(tokens["token"])

        first = client.post("/api/v1/auth/logout", headers=headers)
        second = client.post("/api/v1/auth/logout", headers=headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["sessions_invalidated"] == 0

    def test_logout_without_credentials(self, client):
        response = client.post("/api/v1/auth/logout")

        assert response.status_code == 200
        assert response.json()["sessions_invalidated"] == 0

    def test_logout_all_sessions(self, client, test_researcher):
        tokens1 = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)
        tokens2 = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)

        response = client.post(
            "/api/v1/auth/logout",
            headers=auth_headers(tokens1["token"]),
            json={"all_sessions": True},
        )

        assert response.status_code == 200
        assert response.json()["sessions_invalidated"] == 2
        assert client.get("/api/v1/auth/me", headers=auth_headers(tokens1["token"])).status_code == 401
        assert client.get("/api/v1/auth/me", headers=auth_headers(tokens2["token"])).status_code == 401
        assert refresh_with(client, tokens2["refresh_token"]).status_code == 401


# =============================================================================
# END-TO-END SCENARIOS
# =============================================================================

class TestEndToEnd:

    def test_login_creates_active_session(self, client, db_session, test_researcher):
        response = client.post(
            LOGIN_URL,
            json={"email": "a@test.com", "password": "Abc12345!"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["token"]
        assert body["session"]["id"]
        session = db_session.exec(select(Session).where(Session.id == body["session"]["id"])).first()
        assert session.is_active is True

    def test_refresh_then_replay_original_cookie(self, client, test_researcher):
        login = client.post(LOGIN_URL, json={"email": "a@test.com", "password": "Abc12345!"})
        original_token = login.json()["token"]
        original_cookie = login.cookies.get("refreshToken")

        refreshed = client.post("/api/v1/auth/refresh")
        assert refreshed.status_code == 200
        assert refreshed.json()["token"] != original_token

        assert refresh_with(client, original_cookie).status_code == 401

    def test_pending_organization_gets_activation_message(self, client, pending_organization):
        response = client.post(
            "/api/v1/auth/login/organization",
            json={"email": ORGANIZATION_EMAIL, "password": ORGANIZATION_PASSWORD},
        )

        assert response.status_code == 401
        error = response.json()["error"]
        assert "pending activation" in error.lower()
        assert error != "Invalid email or password"

    def test_refresh_after_logout_rejected(self, client, test_researcher):
        tokens = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)

        logout = client.post("/api/v1/auth/logout", headers=auth_headers(tokens["token"]))
        assert logout.status_code == 200

        assert refresh_with(client, tokens["refresh_token"]).status_code == 401

    def test_wrong_password_audited_once(self, client, db_session, test_researcher):
        response = client.post(
            LOGIN_URL,
            json={"email": "a@test.com", "password": "Wrong12345!"},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid email or password"}
        rows = audit_rows(db_session, "LOGIN_FAILED")
        assert len(rows) == 1
        assert rows[0].user_id == test_researcher.id
        assert audit_rows(db_session, "LOGIN_SUCCESS") == []

    def test_full_auth_flow_login_refresh_logout_retry(self, client, test_researcher):
        tokens = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)
        me = client.get("/api/v1/auth/me", headers=auth_headers(tokens["token"]))
        assert me.status_code == 200
        assert me.json()["email"] == RESEARCHER_EMAIL

        token = client.post("/api/v1/auth/refresh").json()["token"]
        assert client.post("/api/v1/auth/logout", headers=auth_headers(token)).status_code == 200

        assert client.get("/api/v1/auth/me", headers=auth_headers(token)).status_code == 401
        assert client.get("/api/v1/auth/me", headers=auth_headers(tokens["token"])).status_code == 401


# =============================================================================
# STORE FAILURE TESTS
# =============================================================================

class _UnreachableDatabase:
    """Session stand-in whose every statement fails at the driver."""

    def exec(self, *args, **kwargs):
        raise OperationalError("SELECT users", {}, Exception("could not connect to server: 10.1.2.3:5432"))

    def rollback(self):
        pass

    def close(self):
        pass


class TestStoreFailures:
    """Persistence failures surface as a bare 500 with nothing internal in the body."""

    def test_login_store_failure(self, client, test_researcher, monkeypatch):
        monkeypatch.setattr(client.app.state, "db_session_factory", _UnreachableDatabase)

        response = client.post(LOGIN_URL, json={"email": RESEARCHER_EMAIL, "password": RESEARCHER_PASSWORD})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        assert "10.1.2.3" not in response.text
        assert "refreshToken" not in response.cookies

    def test_refresh_store_failure(self, client, test_researcher, monkeypatch):
        tokens = login_user(client, RESEARCHER_EMAIL, RESEARCHER_PASSWORD)
        monkeypatch.setattr(client.app.state, "db_session_factory", _UnreachableDatabase)

        response = refresh_with(client, tokens["refresh_token"])

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}
        assert "could not connect" not in response.text
