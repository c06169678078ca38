from __future__ import annotations

import time

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from jose import jwt

import lexdraft.auth as auth_module
from lexdraft.config import settings
from lexdraft.main import create_app

_TEST_SECRET = "test-jwt-secret-with-enough-length"


def _configure_auth() -> None:
    settings.auth_enabled = True
    settings.supabase_jwt_secret = _TEST_SECRET


def _token(**overrides: object) -> str:
    claims: dict[str, object] = {
        "sub": "user-123",
        "aud": "authenticated",
        "exp": int(time.time()) + 600,
        "role": "authenticated",
    }
    claims.update(overrides)
    return jwt.encode(claims, _TEST_SECRET, algorithm="HS256")


def test_protected_routes_require_bearer_token_when_auth_enabled() -> None:
    _configure_auth()
    app = create_app()
    with TestClient(app) as client:
        for path in ("/templates/extract-variables", "/api/templates/extract-variables"):
            response = client.post(path, json={"content": None})
            assert response.status_code == 401
            assert response.json()["detail"] == "Missing bearer token."


def test_protected_routes_accept_valid_bearer_token_when_auth_enabled() -> None:
    _configure_auth()
    app = create_app()
    with TestClient(app) as client:
        for path in ("/templates/extract-variables", "/api/templates/extract-variables"):
            response = client.post(
                path,
                json={"content": None},
                headers={"Authorization": f"Bearer {_token()}"},
            )
            assert response.status_code == 200
            assert response.json() == {"variables": []}


def test_system_routes_stay_public_when_auth_enabled() -> None:
    _configure_auth()
    app = create_app()
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200


def test_expired_token_is_rejected() -> None:
    _configure_auth()
    app = create_app()
    with TestClient(app) as client:
        response = client.post(
            "/templates/extract-variables",
            json={"content": None},
            headers={"Authorization": f"Bearer {_token(exp=int(time.time()) - 60)}"},
        )
    assert response.status_code == 401
    assert response.json()["detail"] == "Token has expired."


def test_token_with_wrong_audience_is_rejected() -> None:
    _configure_auth()
    app = create_app()
    with TestClient(app) as client:
        response = client.post(
            "/templates/extract-variables",
            json={"content": None},
            headers={"Authorization": f"Bearer {_token(aud='anon')}"},
        )
    assert response.status_code == 401
    assert response.json()["detail"].startswith("Invalid token")


def test_token_signed_with_other_secret_is_rejected() -> None:
    _configure_auth()
    forged = jwt.encode(
        {"sub": "user-123", "aud": "authenticated", "exp": int(time.time()) + 600},
        "some-other-secret",
        algorithm="HS256",
    )
    app = create_app()
    with TestClient(app) as client:
        response = client.post(
            "/templates/extract-variables",
            json={"content": None},
            headers={"Authorization": f"Bearer {forged}"},
        )
    assert response.status_code == 401


def test_missing_secret_is_reported_as_misconfiguration() -> None:
    settings.auth_enabled = True
    settings.supabase_jwt_secret = ""
    app = create_app()
    with TestClient(app) as client:
        response = client.post(
            "/templates/extract-variables",
            json={"content": None},
            headers={"Authorization": "Bearer whatever"},
        )
    assert response.status_code == 503


def test_token_subject_wins_over_body_user_id(monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_auth()
    monkeypatch.setattr(auth_module, "decode_and_validate_supabase_token", lambda token: {"sub": "user-abc"})
    app = create_app()
    with TestClient(app) as client:
        response = client.delete(
            "/api/conversations",
            params={"user_id": "someone-else"},
            headers={"Authorization": "Bearer test-token"},
        )
    assert response.status_code == 200
    assert response.json() == {"message": "No conversations found to delete."}


def test_resolve_user_id_requires_identity_when_auth_disabled() -> None:
    with pytest.raises(HTTPException) as excinfo:
        auth_module.resolve_user_id(None, "  ")
    assert excinfo.value.status_code == 401
    assert auth_module.resolve_user_id(None, "user-9") == "user-9"
    assert auth_module.resolve_user_id({"sub": "user-1"}, "user-9") == "user-1"
