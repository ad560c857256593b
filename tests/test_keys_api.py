import pytest
from fastapi.testclient import TestClient

from pupu.api import routes_keys
from pupu.core.config import get_settings
from pupu.core.errors import KeyStoreError
from pupu.core.identity import AuthUser
from pupu.core.security import current_user, generate_csrf_token
from pupu.main import app


@pytest.fixture
def signed_in():
    app.dependency_overrides[current_user] = lambda: AuthUser(id="user-1", email="me@example.com")
    yield
    app.dependency_overrides.clear()


def test_keys_require_authentication():
    with TestClient(app) as client:
        resp = client.get("/api/keys")
    assert resp.status_code == 401
    assert resp.json()["detail"]["error"]["code"] == "PUPU_4010"


def test_empty_then_saved_keys(signed_in):
    with TestClient(app) as client:
        empty = client.get("/api/keys").json()
        assert empty["keys"] == {"openai": "", "gemini": "", "xai": "", "search": ""}
        assert empty["configured"] == {"openai": False, "gemini": False, "xai": False, "search": False}

        saved = client.put("/api/keys", json={"openai": " sk-user ", "search": ""})
        assert saved.status_code == 200
        assert saved.json()["configured"]["openai"] is True
        assert saved.json()["configured"]["search"] is False

        again = client.get("/api/keys").json()
    assert again["keys"]["openai"] == "sk-user"
    assert again["updated_at"]


def test_cookie_session_needs_csrf_token(signed_in):
    secret = get_settings().csrf_secret
    with TestClient(app) as client:
        client.cookies.set("access_token", "cookie-token")
        missing = client.put("/api/keys", json={"openai": "sk"})
        wrong_user = client.put(
            "/api/keys",
            json={"openai": "sk"},
            headers={"X-CSRF-Token": generate_csrf_token(secret, "someone-else")},
        )
        ok = client.put(
            "/api/keys",
            json={"openai": "sk"},
            headers={"X-CSRF-Token": generate_csrf_token(secret, "user-1")},
        )
    assert missing.status_code == 403
    assert missing.json()["detail"]["error"]["code"] == "PUPU_4030"
    assert wrong_user.status_code == 403
    assert ok.status_code == 200


def test_save_failure_explains_policy_error(signed_in, monkeypatch):
    class DeniedStore:
        async def get(self, user_id):
            return None

        async def upsert(self, record):
            raise KeyStoreError("new row violates row-level security policy", code="42501")

        async def ping(self):
            return None

    monkeypatch.setattr(routes_keys, "get_key_store", lambda settings, access_token=None: DeniedStore())
    with TestClient(app) as client:
        resp = client.put("/api/keys", json={"openai": "sk"})
    assert resp.status_code == 500
    error = resp.json()["detail"]["error"]
    assert error["code"] == "PUPU_5002"
    assert error["message"].startswith("Permission denied")
    assert error["details"] == "42501"
