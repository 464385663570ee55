from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, status

from app.core.config import Settings, get_settings
from app.schemas.auth import CurrentUserResponse
from app.schemas.team import (
    TeamDetail,
    TeamDetailResponse,
    TeamListResponse,
    TeamMember,
    TeamResponse,
    TeamRuleListResponse,
    TeamRuleResponse,
    TeamSummary,
    TeamTranscriptRule,
)
from app.services.access_roles import can_bypass_participant_filter, can_share
from app.services.team_store import (
    RULE_TYPE_SUMMARY_TOPIC_EXACT,
    TEAM_ROLE_MEMBER,
    TEAM_ROLE_OWNER,
    TeamStore,
    create_team_store,
)
from app.services.transcript_share_service import TranscriptShareService
from app.services.transcript_store import TranscriptStore, create_transcript_store

TEAM_NAME_MAX_LENGTH = 80
RULE_VALUE_MAX_LENGTH = 200
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

logger = logging.getLogger(__name__)


def is_allowed_team_email(email: str, settings: Settings) -> bool:
    normalized_email = email.strip().lower()
    if not _EMAIL_PATTERN.match(normalized_email):
        return False
    domain = normalized_email.rsplit("@", maxsplit=1)[1]
    return domain in settings.team_email_domains


class TeamService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        team_store: TeamStore | None = None,
        transcript_store: TranscriptStore | None = None,
        share_service: TranscriptShareService | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.team_store = team_store or create_team_store(self.settings)
        self.transcript_store = transcript_store or create_transcript_store(self.settings)
        self.share_service = share_service or TranscriptShareService(
            self.settings,
            team_store=self.team_store,
        )

    def list_teams(self, current_user: CurrentUserResponse) -> TeamListResponse:
        return TeamListResponse(data=self.list_teams_for_email(current_user.email))

    def list_teams_for_email(self, email: str) -> list[TeamSummary]:
        memberships = self.team_store.list_memberships_for_email(email)
        role_by_team_id = {
            str(membership.get("team_id", "")): str(membership.get("role", TEAM_ROLE_MEMBER))
            for membership in memberships
        }
        teams = self.team_store.list_teams_by_ids(list(role_by_team_id))
        summaries = [
            self._to_team_summary(team, role=role_by_team_id[str(team.get("_id", ""))])
            for team in teams
        ]
        summaries.sort(key=lambda team: team.name.lower())
        return summaries

    def create_team(self, *, current_user: CurrentUserResponse, name: str) -> TeamResponse:
        normalized_name = name.strip()
        if not normalized_name:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Team name is required.",
            )
        if len(normalized_name) > TEAM_NAME_MAX_LENGTH:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Team name must be at most {TEAM_NAME_MAX_LENGTH} characters.",
            )

        team = self.team_store.create_team_with_owner(
            name=normalized_name,
            created_by_email=current_user.email,
        )
        logger.info("Team created team_id=%s owner=%s", team.get("_id"), current_user.email)
        return TeamResponse(data=self._to_team_summary(team, role=TEAM_ROLE_OWNER))

    def get_team_for_user(self, team_id: str, email: str) -> TeamSummary | None:
        membership = self.team_store.get_membership(team_id=team_id, user_email=email)
        if not membership:
            return None
        team = self.team_store.get_team(team_id)
        if not team:
            return None
        return self._to_team_summary(team, role=str(membership.get("role", TEAM_ROLE_MEMBER)))

    def get_team_detail(self, *, current_user: CurrentUserResponse, team_id: str) -> TeamDetailResponse:
        team = self._require_team(team_id, current_user.email)
        members = [self._to_member(membership) for membership in self.team_store.list_memberships_for_team(team_id)]
        rules = [self._to_rule(rule) for rule in self.team_store.list_rules_for_team(team_id)]
        return TeamDetailResponse(data=TeamDetail(team=team, members=members, rules=rules))

    def add_member(self, *, current_user: CurrentUserResponse, team_id: str, email: str) -> None:
        normalized_email = email.strip().lower()
        if not is_allowed_team_email(normalized_email, self.settings):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only emails from allowed domains can be added.",
            )
        team = self._require_team(team_id, current_user.email)
        if team.role != TEAM_ROLE_OWNER:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the team owner can add members.",
            )

        self.team_store.add_membership(
            team_id=team_id,
            user_email=normalized_email,
            role=TEAM_ROLE_MEMBER,
            created_by_email=current_user.email,
        )
        logger.info("Team member added team_id=%s member=%s actor=%s", team_id, normalized_email, current_user.email)

    def remove_member(self, *, current_user: CurrentUserResponse, team_id: str, email: str) -> None:
        normalized_email = email.strip().lower()
        team = self._require_team(team_id, current_user.email)
        if team.role != TEAM_ROLE_OWNER:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the team owner can remove members.",
            )
        if normalized_email == current_user.email.strip().lower():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Owner cannot remove themselves.",
            )

        target = self.team_store.get_membership(team_id=team_id, user_email=normalized_email)
        if target and target.get("role") == TEAM_ROLE_OWNER and self._owner_count(team_id) <= 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="A team must keep at least one owner.",
            )

        removed = self.team_store.remove_membership(team_id=team_id, user_email=normalized_email)
        if removed:
            logger.info(
                "Team member removed team_id=%s member=%s actor=%s",
                team_id,
                normalized_email,
                current_user.email,
            )

    def list_rules(self, *, current_user: CurrentUserResponse, team_id: str) -> TeamRuleListResponse:
        self._require_team(team_id, current_user.email)
        rules = [self._to_rule(rule) for rule in self.team_store.list_rules_for_team(team_id)]
        return TeamRuleListResponse(data=rules)

    def create_rule(
        self,
        *,
        current_user: CurrentUserResponse,
        team_id: str,
        rule_type: str,
        value: str,
    ) -> TeamRuleResponse:
        team = self._require_team(team_id, current_user.email)
        if team.role != TEAM_ROLE_OWNER:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only the team owner can manage rules.",
            )
        if rule_type != RULE_TYPE_SUMMARY_TOPIC_EXACT:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Unsupported rule type.",
            )
        normalized_value = value.strip()
        if not normalized_value or len(normalized_value) > RULE_VALUE_MAX_LENGTH:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Rule value must contain between 1 and {RULE_VALUE_MAX_LENGTH} characters.",
            )

        rule = self.team_store.create_rule(
            team_id=team_id,
            rule_type=rule_type,
            value=normalized_value,
            created_by_email=current_user.email,
        )
        logger.info("Team rule created team_id=%s rule_id=%s type=%s", team_id, rule.get("_id"), rule_type)
        return TeamRuleResponse(data=self._to_rule(rule))

    def share_transcript(
        self,
        *,
        current_user: CurrentUserResponse,
        team_id: str,
        transcript_id: int,
    ) -> None:
        if not can_share(current_user.role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Members cannot share transcripts.",
            )
        self._require_team(team_id, current_user.email)

        transcript = self.transcript_store.get_by_id(transcript_id)
        has_access = transcript is not None and (
            can_bypass_participant_filter(current_user.role)
            or current_user.email.lower() in (transcript.get("verified_participant_emails") or [])
        )
        if not has_access:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Transcript not found or access denied.",
            )

        self.share_service.share_to_team(team_id, transcript_id, current_user.email)

    def _require_team(self, team_id: str, email: str) -> TeamSummary:
        team = self.get_team_for_user(team_id, email)
        if not team:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Team not found.",
            )
        return team

    def _owner_count(self, team_id: str) -> int:
        return sum(
            1
            for membership in self.team_store.list_memberships_for_team(team_id)
            if membership.get("role") == TEAM_ROLE_OWNER
        )

    def _to_team_summary(self, team: dict[str, Any], *, role: str) -> TeamSummary:
        return TeamSummary(
            id=str(team.get("_id", "")),
            name=str(team.get("name", "")).strip(),
            created_by_email=str(team.get("created_by_email", "")),
            created_at=_to_datetime(team.get("created_at")),
            role=role,
        )

    def _to_member(self, membership: dict[str, Any]) -> TeamMember:
        return TeamMember(
            team_id=str(membership.get("team_id", "")),
            user_email=str(membership.get("user_email", "")),
            role=str(membership.get("role", TEAM_ROLE_MEMBER)),
            created_by_email=str(membership.get("created_by_email", "")),
            created_at=_to_datetime(membership.get("created_at")),
        )

    def _to_rule(self, rule: dict[str, Any]) -> TeamTranscriptRule:
        return TeamTranscriptRule(
            id=str(rule.get("_id", "")),
            team_id=str(rule.get("team_id", "")),
            type=str(rule.get("type", RULE_TYPE_SUMMARY_TOPIC_EXACT)),
            value=str(rule.get("value", "")),
            enabled=bool(rule.get("enabled", True)),
            created_by_email=str(rule.get("created_by_email", "")),
            created_at=_to_datetime(rule.get("created_at")),
        )


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.now(UTC)
