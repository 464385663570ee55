from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.main import app
from app.services.identity_service import ExternalIdentity, IdentityService
from app.services.security_utils import SESSION_TOKEN_TYPE, create_signed_token
from app.services.user_store import clear_user_store_cache


@pytest.fixture(autouse=True)
def reset_auth(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATA_STORE", "memory")

    clear_user_store_cache()
    get_settings.cache_clear()
    yield
    clear_user_store_cache()
    get_settings.cache_clear()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def _session_token(claims: dict[str, object], *, ttl_minutes: int = 60) -> str:
    token, _ = create_signed_token(
        claims=claims,
        secret_key=get_settings().session_secret_key,
        ttl_minutes=ttl_minutes,
        token_type=SESSION_TOKEN_TYPE,
    )
    return token


def test_me_returns_resolved_user_and_role(client: TestClient) -> None:
    token = _session_token(
        {
            "sub": "ext-123",
            "email": "Test@Example.com",
            "first_name": "Test",
            "last_name": "User",
            "role": "org-fte",
        },
    )

    first_response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    second_response = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert first_response.status_code == 200
    payload = first_response.json()
    assert payload["externalId"] == "ext-123"
    assert payload["email"] == "test@example.com"
    assert payload["firstName"] == "Test"
    assert payload["role"] == "elevated"
    assert second_response.json()["id"] == payload["id"]


def test_me_requires_valid_session(client: TestClient) -> None:
    missing = client.get("/api/auth/me")
    invalid = client.get("/api/auth/me", headers={"Authorization": "Bearer invalid-token"})
    expired = client.get(
        "/api/auth/me",
        headers={"Authorization": f"Bearer {_session_token({'sub': 'ext-1'}, ttl_minutes=-1)}"},
    )

    assert missing.status_code == 401
    assert invalid.status_code == 401
    assert invalid.json() == {"error": "Invalid or expired session."}
    assert expired.status_code == 401


def test_unknown_user_without_email_is_not_found(client: TestClient) -> None:
    token = _session_token({"sub": "ext-no-email", "role": "member"})

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 404
    assert response.json() == {"error": "User profile not found."}


def test_resolve_reuses_existing_user_by_external_id() -> None:
    service = IdentityService()
    created = service.resolve(ExternalIdentity(id="ext-9", email="first@example.com"))

    resolved = service.resolve(ExternalIdentity(id="ext-9", email="second@example.com"))
    without_email = service.resolve(ExternalIdentity(id="ext-9"))

    assert resolved["_id"] == created["_id"]
    assert resolved["email"] == "first@example.com"
    assert without_email["_id"] == created["_id"]


def test_concurrent_resolution_creates_a_single_user() -> None:
    service = IdentityService()
    identity = ExternalIdentity(id="ext-race", email="race@example.com")

    with ThreadPoolExecutor(max_workers=8) as executor:
        users = list(executor.map(lambda _: service.resolve(identity), range(16)))

    assert len({user["_id"] for user in users}) == 1
