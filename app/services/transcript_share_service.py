from __future__ import annotations

import logging

from app.core.config import Settings, get_settings
from app.services.team_store import TeamStore, create_team_store
from app.services.transcript_share_store import (
    TranscriptShareStore,
    create_transcript_share_store,
)

logger = logging.getLogger(__name__)


class TranscriptShareService:
    """Answers whether a transcript was granted to a user, via a team or directly.

    A transcript counts as shared with a user when it was shared to any team
    the user currently belongs to, or shared to the user's email. Grants are
    permanent and writes are idempotent.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        team_store: TeamStore | None = None,
        share_store: TranscriptShareStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.team_store = team_store or create_team_store(self.settings)
        self.share_store = share_store or create_transcript_share_store(self.settings)

    def is_shared(self, transcript_id: int, user_email: str) -> bool:
        if self.share_store.has_user_share(user_email=user_email, transcript_id=transcript_id):
            return True
        return self.share_store.has_team_share(
            team_ids=self._team_ids_for_email(user_email),
            transcript_id=transcript_id,
        )

    def share_to_team(self, team_id: str, transcript_id: int, actor_email: str) -> bool:
        created = self.share_store.share_to_team(
            team_id=team_id,
            transcript_id=transcript_id,
            created_by_email=actor_email,
        )
        if created:
            logger.info(
                "Transcript shared to team transcript_id=%s team_id=%s actor=%s",
                transcript_id,
                team_id,
                actor_email,
            )
        return created

    def share_to_user(self, user_email: str, transcript_id: int, actor_email: str) -> bool:
        created = self.share_store.share_to_user(
            user_email=user_email,
            transcript_id=transcript_id,
            created_by_email=actor_email,
        )
        if created:
            logger.info(
                "Transcript shared to user transcript_id=%s user_email=%s actor=%s",
                transcript_id,
                user_email,
                actor_email,
            )
        return created

    def shared_team_names(self, user_email: str) -> dict[int, list[str]]:
        team_ids = self._team_ids_for_email(user_email)
        if not team_ids:
            return {}
        team_names = {
            str(team.get("_id", "")): str(team.get("name", "")).strip()
            for team in self.team_store.list_teams_by_ids(team_ids)
        }
        names_by_transcript_id: dict[int, list[str]] = {}
        for share in self.share_store.list_team_shares(team_ids):
            team_name = team_names.get(str(share.get("team_id", "")))
            if not team_name:
                continue
            names = names_by_transcript_id.setdefault(int(share["transcript_id"]), [])
            if team_name not in names:
                names.append(team_name)
        for names in names_by_transcript_id.values():
            names.sort(key=str.lower)
        return names_by_transcript_id

    def direct_shared_ids(self, user_email: str) -> set[int]:
        return {int(share["transcript_id"]) for share in self.share_store.list_user_shares(user_email)}

    def shared_transcript_ids(self, user_email: str) -> set[int]:
        return set(self.shared_team_names(user_email)) | self.direct_shared_ids(user_email)

    def _team_ids_for_email(self, user_email: str) -> list[str]:
        return sorted(
            {
                str(membership.get("team_id", "")).strip()
                for membership in self.team_store.list_memberships_for_email(user_email)
                if str(membership.get("team_id", "")).strip()
            },
        )
