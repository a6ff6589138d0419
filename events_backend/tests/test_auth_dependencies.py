from datetime import timedelta

import pytest
from fastapi import HTTPException

import events_backend.main as backend_main


def test_get_current_user_missing_cookie_is_unauthorized():
    with pytest.raises(HTTPException) as excinfo:
        backend_main.get_current_user(None)

    assert excinfo.value.status_code == 401


def test_get_current_user_rejects_invalid_and_expired_tokens():
    expired_token = backend_main.create_access_token(subject="42", expires_delta=timedelta(minutes=-5))

    for token in ("not-a-valid-token", expired_token):
        with pytest.raises(HTTPException) as excinfo:
            backend_main.get_current_user(token)
        assert excinfo.value.status_code == 401


def test_get_current_user_valid_token_returns_subject():
    token = backend_main.create_access_token(subject="user-123")

    user = backend_main.get_current_user(token)

    assert user.id == "user-123"

