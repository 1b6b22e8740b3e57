"""
Tests for the shared auth rate limiter.

ENV=test replaces limiter.limit with a no-op so repeated auth calls in tests
never hit the limit.
"""

from fastapi.testclient import TestClient

from backend.api import routes
from backend.api.main import app
from backend.services import user_service


def test_limiter_is_disabled_in_test_env():
    assert routes.IS_TEST_ENV is True

    def handler():
        return "ok"

    assert routes.limiter.limit(routes.AUTH_RATE_LIMIT)(handler) is handler


def test_repeated_logins_are_not_limited(monkeypatch):
    async def fake_get_user_by_email(session, email):
        return None

    monkeypatch.setattr(user_service, "get_user_by_email", fake_get_user_by_email, raising=True)
    client = TestClient(app)

    statuses = [
        client.post(
            "/api/v1/auth/login", json={"email": "a@example.com", "password": "wrong-pass"}
        ).status_code
        for _ in range(15)
    ]
    assert statuses == [401] * 15


def test_limiter_registered_on_app():
    assert app.state.limiter is routes.limiter
