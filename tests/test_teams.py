from datetime import UTC, datetime

import pytest
from fastapi.testclient import TestClient

from app.core.config import get_settings
from app.main import app
from app.services.security_utils import SESSION_TOKEN_TYPE, create_signed_token
from app.services.team_store import clear_team_store_cache
from app.services.transcript_share_store import (
    clear_transcript_share_store_cache,
    create_transcript_share_store,
)
from app.services.transcript_store import clear_transcript_store_cache, create_transcript_store
from app.services.user_store import clear_user_store_cache


def _clear_caches() -> None:
    clear_user_store_cache()
    clear_team_store_cache()
    clear_transcript_store_cache()
    clear_transcript_share_store_cache()
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_team_state(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATA_STORE", "memory")
    monkeypatch.setenv("TEAM_EMAIL_DOMAINS", "co.example")
    _clear_caches()
    yield
    _clear_caches()


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def _auth_headers(email: str, *, role: str = "org-fte") -> dict[str, str]:
    token, _ = create_signed_token(
        claims={"sub": f"user-{email}", "email": email, "role": role},
        secret_key=get_settings().session_secret_key,
        ttl_minutes=60,
        token_type=SESSION_TOKEN_TYPE,
    )
    return {"Authorization": f"Bearer {token}"}


def _seed_transcript(transcript_id: int, *, participants: list[str], summary: str) -> None:
    create_transcript_store(get_settings()).save(
        {
            "id": transcript_id,
            "recording_start": datetime(2024, 5, transcript_id, 15, 0, tzinfo=UTC),
            "summary": summary,
            "transcript_content": {"cleaned": f"Full content of transcript {transcript_id}"},
            "meeting_type": "internal",
            "extracted_participants": ["Alice", "Bob"],
            "verified_participant_emails": participants,
        },
    )


def _create_team(client: TestClient, owner_email: str, name: str = "Platform") -> str:
    response = client.post("/api/teams", json={"name": name}, headers=_auth_headers(owner_email))
    assert response.status_code == 200
    return response.json()["data"]["id"]


def test_auto_share_rule_grants_team_members_full_access(client: TestClient) -> None:
    owner_headers = _auth_headers("alice@co.example")
    member_headers = _auth_headers("bob@co.example", role="member")

    create_response = client.post("/api/teams", json={"name": "  Platform  "}, headers=owner_headers)
    assert create_response.status_code == 200
    team = create_response.json()["data"]
    assert team["name"] == "Platform"
    assert team["role"] == "owner"
    assert team["createdByEmail"] == "alice@co.example"
    team_id = team["id"]

    add_response = client.post(
        f"/api/teams/{team_id}/members",
        json={"email": "Bob@Co.Example"},
        headers=owner_headers,
    )
    assert add_response.status_code == 200
    assert add_response.json() == {"ok": True}

    rule_response = client.post(
        f"/api/teams/{team_id}/rules",
        json={"type": "summary_topic_exact", "value": "Weekly Sync"},
        headers=owner_headers,
    )
    assert rule_response.status_code == 200
    assert rule_response.json()["data"]["value"] == "Weekly Sync"

    _seed_transcript(
        1,
        participants=["alice@co.example"],
        summary="**Topic:** weekly sync\n\nDiscussed the roadmap.",
    )

    before_listing = client.get("/api/transcripts/shared", headers=member_headers)
    assert before_listing.status_code == 200
    assert before_listing.json()["data"] == []

    owner_listing = client.get("/api/transcripts", headers=owner_headers)
    assert owner_listing.status_code == 200
    assert owner_listing.json()["data"][0]["sharedInTeams"] == ["Platform"]

    shared_listing = client.get("/api/transcripts/shared", headers=member_headers)
    assert shared_listing.status_code == 200
    shared_items = shared_listing.json()["data"]
    assert [item["id"] for item in shared_items] == [1]
    assert shared_items[0]["canViewFullContent"] is True
    assert shared_items[0]["sharedInTeams"] == ["Platform"]

    content_response = client.get("/api/transcripts/1", headers=member_headers)
    assert content_response.status_code == 200
    assert content_response.json()["content"] == "Full content of transcript 1"

    member_teams = client.get("/api/teams", headers=member_headers)
    assert member_teams.status_code == 200
    assert [(item["name"], item["role"]) for item in member_teams.json()["data"]] == [("Platform", "member")]


def test_rule_with_partial_topic_does_not_share(client: TestClient) -> None:
    owner_headers = _auth_headers("alice@co.example")
    team_id = _create_team(client, "alice@co.example")
    client.post(
        f"/api/teams/{team_id}/rules",
        json={"type": "summary_topic_exact", "value": "Sync"},
        headers=owner_headers,
    )
    _seed_transcript(2, participants=["alice@co.example"], summary="Topic: Weekly Sync")

    listing = client.get("/api/transcripts", headers=owner_headers)

    assert listing.status_code == 200
    assert listing.json()["data"][0]["sharedInTeams"] == []


def test_team_detail_lists_members_and_rules(client: TestClient) -> None:
    owner_headers = _auth_headers("alice@co.example")
    team_id = _create_team(client, "alice@co.example")
    client.post(f"/api/teams/{team_id}/members", json={"email": "bob@co.example"}, headers=owner_headers)
    client.post(
        f"/api/teams/{team_id}/rules",
        json={"type": "summary_topic_exact", "value": "Planning"},
        headers=owner_headers,
    )

    response = client.get(f"/api/v1/teams/{team_id}", headers=owner_headers)

    assert response.status_code == 200
    detail = response.json()["data"]
    assert detail["team"]["id"] == team_id
    assert sorted((member["userEmail"], member["role"]) for member in detail["members"]) == [
        ("alice@co.example", "owner"),
        ("bob@co.example", "member"),
    ]
    assert [rule["value"] for rule in detail["rules"]] == ["Planning"]
    assert detail["rules"][0]["enabled"] is True


def test_adding_member_twice_is_idempotent(client: TestClient) -> None:
    owner_headers = _auth_headers("alice@co.example")
    team_id = _create_team(client, "alice@co.example")

    for _ in range(2):
        response = client.post(
            f"/api/teams/{team_id}/members",
            json={"email": "bob@co.example"},
            headers=owner_headers,
        )
        assert response.status_code == 200

    detail = client.get(f"/api/teams/{team_id}", headers=owner_headers).json()["data"]
    assert len(detail["members"]) == 2


def test_add_member_rejects_other_domains_and_non_owners(client: TestClient) -> None:
    owner_headers = _auth_headers("alice@co.example")
    team_id = _create_team(client, "alice@co.example")
    client.post(f"/api/teams/{team_id}/members", json={"email": "bob@co.example"}, headers=owner_headers)

    outside_response = client.post(
        f"/api/teams/{team_id}/members",
        json={"email": "eve@elsewhere.example"},
        headers=owner_headers,
    )
    assert outside_response.status_code == 400

    member_response = client.post(
        f"/api/teams/{team_id}/members",
        json={"email": "carol@co.example"},
        headers=_auth_headers("bob@co.example"),
    )
    assert member_response.status_code == 403
    assert member_response.json() == {"error": "Only the team owner can add members."}

    stranger_response = client.post(
        f"/api/teams/{team_id}/members",
        json={"email": "carol@co.example"},
        headers=_auth_headers("dave@co.example"),
    )
    assert stranger_response.status_code == 404
    assert stranger_response.json() == {"error": "Team not found."}


def test_remove_member_rules(client: TestClient) -> None:
    owner_headers = _auth_headers("alice@co.example")
    team_id = _create_team(client, "alice@co.example")
    client.post(f"/api/teams/{team_id}/members", json={"email": "bob@co.example"}, headers=owner_headers)

    self_removal = client.request(
        "DELETE",
        f"/api/teams/{team_id}/members",
        json={"email": "alice@co.example"},
        headers=owner_headers,
    )
    assert self_removal.status_code == 400

    member_attempt = client.request(
        "DELETE",
        f"/api/teams/{team_id}/members",
        json={"email": "alice@co.example"},
        headers=_auth_headers("bob@co.example"),
    )
    assert member_attempt.status_code == 403

    removal = client.request(
        "DELETE",
        f"/api/teams/{team_id}/members",
        json={"email": "bob@co.example"},
        headers=owner_headers,
    )
    assert removal.status_code == 200
    assert removal.json() == {"ok": True}

    bob_teams = client.get("/api/teams", headers=_auth_headers("bob@co.example"))
    assert bob_teams.json()["data"] == []


def test_removed_member_loses_team_share_access(client: TestClient) -> None:
    owner_headers = _auth_headers("alice@co.example")
    member_headers = _auth_headers("bob@co.example", role="member")
    team_id = _create_team(client, "alice@co.example")
    client.post(f"/api/teams/{team_id}/members", json={"email": "bob@co.example"}, headers=owner_headers)
    _seed_transcript(3, participants=["alice@co.example"], summary="Topic: Retro")
    client.post(f"/api/teams/{team_id}/shares", json={"transcriptId": 3}, headers=owner_headers)
    assert client.get("/api/transcripts/3", headers=member_headers).status_code == 200

    client.request(
        "DELETE",
        f"/api/teams/{team_id}/members",
        json={"email": "bob@co.example"},
        headers=owner_headers,
    )

    assert client.get("/api/transcripts/3", headers=member_headers).status_code == 403


def test_create_team_validates_name(client: TestClient) -> None:
    headers = _auth_headers("alice@co.example")

    blank_response = client.post("/api/teams", json={"name": "   "}, headers=headers)
    long_response = client.post("/api/teams", json={"name": "x" * 81}, headers=headers)

    assert blank_response.status_code == 400
    assert long_response.status_code == 400
    assert "error" in long_response.json()


def test_team_routes_require_allowed_domain_session(client: TestClient) -> None:
    unauthenticated = client.get("/api/teams")
    assert unauthenticated.status_code == 401
    assert unauthenticated.json() == {"error": "Unauthorized"}

    outside = client.get("/api/teams", headers=_auth_headers("eve@elsewhere.example"))
    assert outside.status_code == 403
    assert outside.json() == {"error": "Forbidden"}


def test_rule_management_is_owner_only_and_validated(client: TestClient) -> None:
    owner_headers = _auth_headers("alice@co.example")
    team_id = _create_team(client, "alice@co.example")
    client.post(f"/api/teams/{team_id}/members", json={"email": "bob@co.example"}, headers=owner_headers)

    member_response = client.post(
        f"/api/teams/{team_id}/rules",
        json={"type": "summary_topic_exact", "value": "Planning"},
        headers=_auth_headers("bob@co.example"),
    )
    assert member_response.status_code == 403

    unknown_type = client.post(
        f"/api/teams/{team_id}/rules",
        json={"type": "summary_contains", "value": "Planning"},
        headers=owner_headers,
    )
    assert unknown_type.status_code == 400

    blank_value = client.post(
        f"/api/teams/{team_id}/rules",
        json={"type": "summary_topic_exact", "value": "  "},
        headers=owner_headers,
    )
    assert blank_value.status_code == 400

    member_listing = client.get(f"/api/teams/{team_id}/rules", headers=_auth_headers("bob@co.example"))
    assert member_listing.status_code == 200
    assert member_listing.json()["data"] == []


def test_share_to_team_checks_role_and_transcript_access(client: TestClient) -> None:
    owner_headers = _auth_headers("alice@co.example")
    team_id = _create_team(client, "alice@co.example")
    _seed_transcript(4, participants=["alice@co.example"], summary="Topic: Budget")
    _seed_transcript(5, participants=["carol@co.example"], summary="Topic: Hiring")

    member_response = client.post(
        f"/api/teams/{team_id}/shares",
        json={"transcriptId": 4},
        headers=_auth_headers("alice@co.example", role="member"),
    )
    assert member_response.status_code == 403
    assert member_response.json() == {"error": "Members cannot share transcripts."}

    not_participant = client.post(
        f"/api/teams/{team_id}/shares",
        json={"transcriptId": 5},
        headers=owner_headers,
    )
    assert not_participant.status_code == 404

    missing = client.post(
        f"/api/teams/{team_id}/shares",
        json={"transcriptId": 999},
        headers=_auth_headers("alice@co.example", role="admin"),
    )
    assert missing.status_code == 404

    for _ in range(2):
        response = client.post(
            f"/api/teams/{team_id}/shares",
            json={"transcriptId": 4},
            headers=owner_headers,
        )
        assert response.status_code == 200
        assert response.json() == {"ok": True}

    assert len(create_transcript_share_store(get_settings()).list_team_shares([team_id])) == 1

    admin_share = client.post(
        f"/api/teams/{team_id}/shares",
        json={"transcriptId": 5},
        headers=_auth_headers("alice@co.example", role="admin"),
    )
    assert admin_share.status_code == 200


def test_unknown_team_returns_not_found(client: TestClient) -> None:
    headers = _auth_headers("alice@co.example")

    response = client.get("/api/teams/0b6f3c52-7d1e-4a8e-9c3f-2f5d8a1b4e77", headers=headers)

    assert response.status_code == 404
    assert response.json() == {"error": "Team not found."}


def test_malformed_team_id_is_rejected(client: TestClient) -> None:
    headers = _auth_headers("alice@co.example")

    detail = client.get("/api/teams/does-not-exist", headers=headers)
    add_member = client.post("/api/teams/not-a-uuid/members", json={"email": "bob@co.example"}, headers=headers)
    share = client.post("/api/v1/teams/not-a-uuid/shares", json={"transcriptId": 1}, headers=headers)

    assert detail.status_code == 400
    assert detail.json()["error"].startswith("Invalid request")
    assert add_member.status_code == 400
    assert share.status_code == 400


def test_owner_member_management_flow(client: TestClient) -> None:
    owner_headers = _auth_headers("owner@co.example")
    member_headers = _auth_headers("a@co.example")
    team_id = _create_team(client, "owner@co.example", name="Eng")

    add_a = client.post(f"/api/teams/{team_id}/members", json={"email": "a@co.example"}, headers=owner_headers)
    assert add_a.status_code == 200

    member_adds_b = client.post(
        f"/api/teams/{team_id}/members",
        json={"email": "b@co.example"},
        headers=member_headers,
    )
    assert member_adds_b.status_code == 403

    owner_adds_b = client.post(
        f"/api/teams/{team_id}/members",
        json={"email": "b@co.example"},
        headers=owner_headers,
    )
    assert owner_adds_b.status_code == 200

    owner_removes_self = client.request(
        "DELETE",
        f"/api/teams/{team_id}/members",
        json={"email": "owner@co.example"},
        headers=owner_headers,
    )
    assert owner_removes_self.status_code == 400

    owner_removes_b = client.request(
        "DELETE",
        f"/api/teams/{team_id}/members",
        json={"email": "b@co.example"},
        headers=owner_headers,
    )
    assert owner_removes_b.status_code == 200

    members = client.get(f"/api/teams/{team_id}", headers=owner_headers).json()["data"]["members"]
    assert sorted(member["userEmail"] for member in members) == ["a@co.example", "owner@co.example"]
    assert [member["role"] for member in members if member["userEmail"] == "owner@co.example"] == ["owner"]


def test_payloads_use_camel_case_and_accept_snake_case_requests(client: TestClient) -> None:
    owner_headers = _auth_headers("alice@co.example")
    team_id = _create_team(client, "alice@co.example")
    _seed_transcript(6, participants=["alice@co.example"], summary="Topic: Standup")

    snake_share = client.post(f"/api/teams/{team_id}/shares", json={"transcript_id": 6}, headers=owner_headers)
    team = client.get("/api/teams", headers=owner_headers).json()["data"][0]
    listing = client.get("/api/transcripts", headers=owner_headers).json()

    assert snake_share.status_code == 200
    assert "createdByEmail" in team
    assert "created_by_email" not in team
    assert listing["data"][0]["sharedInTeams"] == ["Platform"]
    assert set(listing["pagination"]) == {"page", "limit", "total", "totalPages", "hasNext", "hasPrev"}
