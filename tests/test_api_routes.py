"""
tests/test_api_routes.py -- Integration tests for the session REST endpoints.

These tests exercise the full stack: FastAPI routing -> pydantic validation ->
SessionService -> SQLite stores -> response serialization and cookies.

Coverage:
  - sign-up: 200 with id, 422 on bad field shapes, 500 generic on duplicates
  - sign-in: access token in body, refresh token in httpOnly cookie, no-store
  - sign-in failures: identical 401 body for unknown email and wrong password
  - refresh: rotates the cookie; replaying the old cookie is 401
  - logout: clears the cookie; refresh afterwards is 401
  - /me: requires a valid Bearer token
"""

from __future__ import annotations

from fastapi.testclient import TestClient

_ALICE = {"username": "alice", "email": "a@x.com", "password": "secure123"}


def _sign_up_and_in(client: TestClient) -> dict:
    resp = client.post("/api/v1/auth/sign-up", json=_ALICE)
    assert resp.status_code == 200, resp.text
    resp = client.post("/api/v1/auth/sign-in", json={"email": "a@x.com", "password": "secure123"})
    assert resp.status_code == 200, resp.text
    return resp.json()


def _set_cookie_headers(resp) -> list[str]:
    return [v for k, v in resp.headers.multi_items() if k.lower() == "set-cookie"]


class TestSignUp:
    def test_sign_up_returns_id(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/sign-up", json=_ALICE)
        assert resp.status_code == 200
        assert len(resp.json()["id"]) == 36

    def test_sign_up_bad_email(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/sign-up", json={**_ALICE, "email": "not-an-email"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_sign_up_short_password_not_echoed(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/sign-up", json={**_ALICE, "password": "short"})
        assert resp.status_code == 422
        assert "short" not in resp.text

    def test_sign_up_duplicate_is_generic_error(self, api_client: TestClient) -> None:
        api_client.post("/api/v1/auth/sign-up", json=_ALICE)
        resp = api_client.post("/api/v1/auth/sign-up", json={**_ALICE, "username": "alice2"})
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "internal_error"


class TestSignIn:
    def test_sign_in_sets_refresh_cookie(self, api_client: TestClient) -> None:
        api_client.post("/api/v1/auth/sign-up", json=_ALICE)
        resp = api_client.post("/api/v1/auth/sign-in", json={"email": "a@x.com", "password": "secure123"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["access_token"]
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 900
        assert resp.headers["Cache-Control"] == "no-store"
        cookies = _set_cookie_headers(resp)
        assert any(c.startswith("refresh_token=") and "httponly" in c.lower() for c in cookies)
        assert "refresh_token" not in data

    def test_sign_in_failures_are_indistinguishable(self, api_client: TestClient) -> None:
        api_client.post("/api/v1/auth/sign-up", json=_ALICE)
        wrong = api_client.post("/api/v1/auth/sign-in", json={"email": "a@x.com", "password": "wrong-pass"})
        unknown = api_client.post("/api/v1/auth/sign-in", json={"email": "b@x.com", "password": "secure123"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()


class TestRefreshAndLogout:
    def test_refresh_rotates_cookie(self, api_client: TestClient) -> None:
        _sign_up_and_in(api_client)
        old = api_client.cookies.get("refresh_token")
        resp = api_client.post("/api/v1/auth/refresh")
        assert resp.status_code == 200, resp.text
        new = api_client.cookies.get("refresh_token")
        assert new and new != old

        me = api_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {resp.json()['access_token']}"})
        assert me.status_code == 200
        assert me.json()["username"] == "alice"

    def test_replayed_refresh_cookie_rejected(self, api_client: TestClient) -> None:
        _sign_up_and_in(api_client)
        old = api_client.cookies.get("refresh_token")
        assert api_client.post("/api/v1/auth/refresh").status_code == 200

        api_client.cookies.clear()
        replay = api_client.post("/api/v1/auth/refresh", headers={"Cookie": f"refresh_token={old}"})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "unauthorized"

    def test_refresh_without_cookie(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/refresh")
        assert resp.status_code == 401

    def test_logout_then_refresh(self, api_client: TestClient) -> None:
        _sign_up_and_in(api_client)
        old = api_client.cookies.get("refresh_token")
        resp = api_client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert api_client.cookies.get("refresh_token") is None

        resp = api_client.post("/api/v1/auth/refresh", headers={"Cookie": f"refresh_token={old}"})
        assert resp.status_code == 401


class TestMe:
    def test_me_requires_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_rejects_garbage_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not.a.token"})
        assert resp.status_code == 401

    def test_me_returns_profile_without_hash(self, api_client: TestClient) -> None:
        tokens = _sign_up_and_in(api_client)
        resp = api_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["email"] == "a@x.com"
        assert "password_hash" not in data
