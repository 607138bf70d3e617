import inspect
import pathlib
import sys
from datetime import datetime, timedelta

import pytest
from fastapi import HTTPException


ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import backend.main as backend_main
from backend import app_context
from backend.app.routes import checkout as checkout_routes


def test_get_current_user_missing_cookie_is_unauthorized():
    with pytest.raises(HTTPException) as excinfo:
        backend_main.get_current_user(None)

    assert excinfo.value.status_code == 401


def test_get_current_user_invalid_token_is_unauthorized():
    with pytest.raises(HTTPException) as excinfo:
        backend_main.get_current_user("not-a-valid-token")

    assert excinfo.value.status_code == 401


def test_get_current_user_expired_token_is_unauthorized(monkeypatch):
    expired_token = backend_main.create_access_token(
        subject="42", expires_delta=timedelta(minutes=-5)
    )

    def _unexpected_get_user_by_id(_uid: int):
        raise AssertionError("get_user_by_id should not be called for expired tokens")

    monkeypatch.setattr(backend_main, "get_user_by_id", _unexpected_get_user_by_id)

    with pytest.raises(HTTPException):
        backend_main.get_current_user(expired_token)


def test_get_current_user_valid_token_returns_user(monkeypatch):
    user = backend_main.UserOut(
        id=123,
        username="alice",
        role="user",
        organization_id=42,
        created_utc=datetime.utcnow(),
    )

    monkeypatch.setattr(backend_main, "get_user_by_id", lambda uid: user if uid == 123 else None)

    token = backend_main.create_access_token(subject=str(user.id))

    assert backend_main.get_current_user(token) is user


def test_deleted_user_token_is_unauthorized(monkeypatch):
    monkeypatch.setattr(backend_main, "get_user_by_id", lambda uid: None)
    token = backend_main.create_access_token(subject="7")

    with pytest.raises(HTTPException):
        backend_main.get_current_user(token)


def test_checkout_routes_read_the_login_cookie():
    cookie = inspect.signature(checkout_routes._get_current_user).parameters["session_token"].default

    assert backend_main.SESSION_COOKIE_NAME == app_context.SESSION_COOKIE_NAME
    assert cookie.alias == backend_main.SESSION_COOKIE_NAME
