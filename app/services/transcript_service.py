from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from datetime import date
from typing import Any

from fastapi import HTTPException, status

from app.core.config import Settings, get_settings
from app.schemas.auth import CurrentUserResponse
from app.schemas.transcript import (
    KeywordSearchScope,
    Pagination,
    TranscriptContentResponse,
    TranscriptListResponse,
    TranscriptListScope,
    TranscriptSearchResponse,
    TranscriptSearchResult,
    TranscriptSummary,
)
from app.services.access_roles import (
    AccessRole,
    can_bypass_participant_filter,
    can_share,
    can_view_full_content,
)
from app.services.team_service import is_allowed_team_email
from app.services.transcript_rule_engine import TranscriptRuleEngine
from app.services.transcript_share_service import TranscriptShareService
from app.services.transcript_store import TranscriptQuery, TranscriptStore, create_transcript_store

logger = logging.getLogger(__name__)

MEMBER_CONTENT_DENIED_DETAIL = (
    "Access denied: Members can only view transcript details when the transcript "
    "has been explicitly shared with them."
)
TRANSCRIPT_NOT_FOUND_DETAIL = "Transcript not found or access denied."


def build_pagination(*, page: int, limit: int, total: int) -> Pagination:
    total_pages = math.ceil(total / limit) if limit > 0 else 0
    return Pagination(
        page=page,
        limit=limit,
        total=total,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_prev=page > 1,
    )


class TranscriptService:
    """Decides which transcripts a caller may list, read, search and share.

    Listing returns low-sensitivity metadata. Full content is a separate,
    stricter check: members only read transcripts explicitly shared with them.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: TranscriptStore | None = None,
        share_service: TranscriptShareService | None = None,
        rule_engine: TranscriptRuleEngine | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or create_transcript_store(self.settings)
        self.share_service = share_service or TranscriptShareService(self.settings)
        self.rule_engine = rule_engine or TranscriptRuleEngine(
            self.settings,
            team_store=self.share_service.team_store,
            share_service=self.share_service,
        )

    def list_transcripts(
        self,
        *,
        current_user: CurrentUserResponse,
        page: int = 1,
        limit: int | None = None,
        scope: TranscriptListScope = TranscriptListScope.mine,
    ) -> TranscriptListResponse:
        page_size = self._resolve_page_size(limit)
        if page < 1:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="page must be greater than or equal to 1.",
            )
        offset = (page - 1) * page_size
        if scope == TranscriptListScope.shared:
            return self._list_shared(current_user=current_user, page=page, limit=page_size, offset=offset)
        return self._list_mine(current_user=current_user, page=page, limit=page_size, offset=offset)

    def get_content(
        self,
        *,
        current_user: CurrentUserResponse,
        transcript_id: int,
    ) -> TranscriptContentResponse:
        transcript = self.load_readable_transcript(
            transcript_id=transcript_id,
            email=current_user.email,
            role=current_user.role,
        )
        return TranscriptContentResponse(
            id=int(transcript["id"]),
            content=_cleaned_content(transcript),
            can_view_full_content=True,
        )

    def load_readable_transcript(
        self,
        *,
        transcript_id: int,
        email: str,
        role: AccessRole,
    ) -> dict[str, Any]:
        try:
            is_shared = self.share_service.is_shared(transcript_id, email)
        except Exception as exc:
            logger.exception("Share lookup failed transcript_id=%s", transcript_id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Unable to query share storage.",
            ) from exc

        if not can_view_full_content(role, is_shared=is_shared):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=MEMBER_CONTENT_DENIED_DETAIL,
            )

        transcript = self._get_transcript(transcript_id)
        if not transcript or not (
            can_bypass_participant_filter(role) or is_shared or _is_participant(transcript, email)
        ):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=TRANSCRIPT_NOT_FOUND_DETAIL,
            )
        return transcript

    def share_to_user(
        self,
        *,
        current_user: CurrentUserResponse,
        transcript_id: int,
        email: str,
    ) -> None:
        if not can_share(current_user.role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Members cannot share transcripts.",
            )
        normalized_email = email.strip().lower()
        if not is_allowed_team_email(normalized_email, self.settings):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Only emails from allowed domains can receive shares.",
            )

        transcript = self._get_transcript(transcript_id)
        if not transcript or not (
            can_bypass_participant_filter(current_user.role) or _is_participant(transcript, current_user.email)
        ):
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=TRANSCRIPT_NOT_FOUND_DETAIL,
            )
        self.share_service.share_to_user(normalized_email, transcript_id, current_user.email)

    def search_by_keyword(
        self,
        *,
        current_user: CurrentUserResponse,
        keyword: str,
        scope: KeywordSearchScope = KeywordSearchScope.summary,
        fuzzy: bool = False,
        start_date: date | None = None,
        end_date: date | None = None,
        meeting_type: str | None = None,
        limit: int = 10,
    ) -> TranscriptSearchResponse:
        normalized_keyword = keyword.strip()
        if not normalized_keyword:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="keyword is required.",
            )
        query = TranscriptQuery(
            participant_email=self._participant_filter(current_user),
            keyword=normalized_keyword,
            keyword_scope=scope.value,
            fuzzy=fuzzy,
            start_date=start_date,
            end_date=end_date,
            meeting_type=meeting_type,
        )
        return self._search(query, limit=limit)

    def search_by_user(
        self,
        *,
        current_user: CurrentUserResponse,
        host_email: str | None = None,
        verified_participant_email: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        meeting_type: str | None = None,
        limit: int = 10,
    ) -> TranscriptSearchResponse:
        query = TranscriptQuery(
            participant_email=self._participant_filter(current_user),
            host_email=(host_email or "").strip() or None,
            verified_participant_emails=[verified_participant_email] if verified_participant_email else [],
            start_date=start_date,
            end_date=end_date,
            meeting_type=meeting_type,
        )
        return self._search(query, limit=limit)

    def _list_mine(
        self,
        *,
        current_user: CurrentUserResponse,
        page: int,
        limit: int,
        offset: int,
    ) -> TranscriptListResponse:
        # Participant filter applies to every role on this listing, admin included.
        query = TranscriptQuery(participant_email=current_user.email)
        try:
            total = self.store.count(query)
            records = self.store.find(query, offset=offset, limit=limit)
        except Exception as exc:
            logger.exception("Transcript listing failed user=%s", current_user.email)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to fetch transcripts.",
            ) from exc

        if can_share(current_user.role):
            try:
                self.rule_engine.evaluate_rules(records, current_user.email)
            except Exception:
                # Retried on the next listing.
                logger.exception("Auto-share rule evaluation failed user=%s", current_user.email)

        try:
            team_names = self.share_service.shared_team_names(current_user.email)
            direct_ids = self.share_service.direct_shared_ids(current_user.email)
        except Exception as exc:
            logger.exception("Share lookup failed user=%s", current_user.email)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to fetch transcripts.",
            ) from exc

        items = []
        for record in records:
            transcript_id = int(record["id"])
            is_shared = transcript_id in team_names or transcript_id in direct_ids
            items.append(
                _to_summary(
                    record,
                    can_view_full_content=can_view_full_content(current_user.role, is_shared=is_shared),
                    shared_in_teams=team_names.get(transcript_id, []),
                ),
            )
        return TranscriptListResponse(
            data=items,
            pagination=build_pagination(page=page, limit=limit, total=total),
        )

    def _list_shared(
        self,
        *,
        current_user: CurrentUserResponse,
        page: int,
        limit: int,
        offset: int,
    ) -> TranscriptListResponse:
        try:
            team_names = self.share_service.shared_team_names(current_user.email)
            shared_ids = set(team_names) | self.share_service.direct_shared_ids(current_user.email)
            if not shared_ids:
                return TranscriptListResponse(
                    data=[],
                    pagination=build_pagination(page=page, limit=limit, total=0),
                )
            query = TranscriptQuery(transcript_ids=sorted(shared_ids))
            total = self.store.count(query)
            records = self.store.find(query, offset=offset, limit=limit)
        except Exception as exc:
            logger.exception("Shared transcript listing failed user=%s", current_user.email)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to fetch shared transcripts.",
            ) from exc

        items = [
            _to_summary(
                record,
                can_view_full_content=True,
                shared_in_teams=team_names.get(int(record["id"]), []),
            )
            for record in records
        ]
        return TranscriptListResponse(
            data=items,
            pagination=build_pagination(page=page, limit=limit, total=total),
        )

    def _search(self, query: TranscriptQuery, *, limit: int) -> TranscriptSearchResponse:
        try:
            records = self.store.find(query, offset=0, limit=limit)
        except Exception as exc:
            logger.exception("Transcript search failed")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to search transcripts.",
            ) from exc
        return TranscriptSearchResponse(
            data=[
                TranscriptSearchResult(
                    id=int(record["id"]),
                    recording_start=record.get("recording_start"),
                    summary=record.get("summary"),
                    projects=list(record.get("projects") or []),
                    clients=list(record.get("clients") or []),
                    meeting_type=record.get("meeting_type") or "unknown",
                    extracted_participants=list(record.get("extracted_participants") or []),
                    host_email=record.get("host_email"),
                )
                for record in records
            ],
        )

    def _participant_filter(self, current_user: CurrentUserResponse) -> str | None:
        if can_bypass_participant_filter(current_user.role):
            return None
        return current_user.email

    def _get_transcript(self, transcript_id: int) -> dict[str, Any] | None:
        try:
            return self.store.get_by_id(transcript_id)
        except Exception as exc:
            logger.exception("Transcript lookup failed transcript_id=%s", transcript_id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to fetch transcript.",
            ) from exc

    def _resolve_page_size(self, limit: int | None) -> int:
        if limit is None:
            return self.settings.transcripts_default_page_size
        if limit < 1 or limit > self.settings.transcripts_max_page_size:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"limit must be between 1 and {self.settings.transcripts_max_page_size}.",
            )
        return limit


def _is_participant(transcript: Mapping[str, Any], email: str) -> bool:
    return email.strip().lower() in (transcript.get("verified_participant_emails") or [])


def _cleaned_content(transcript: Mapping[str, Any]) -> str | None:
    content = transcript.get("transcript_content")
    if isinstance(content, Mapping):
        cleaned = content.get("cleaned")
        if isinstance(cleaned, str):
            return cleaned
    return None


def _to_summary(
    record: Mapping[str, Any],
    *,
    can_view_full_content: bool,
    shared_in_teams: list[str],
) -> TranscriptSummary:
    return TranscriptSummary(
        id=int(record["id"]),
        recording_start=record.get("recording_start"),
        summary=record.get("summary"),
        projects=list(record.get("projects") or []),
        clients=list(record.get("clients") or []),
        meeting_type=record.get("meeting_type") or "unknown",
        extracted_participants=list(record.get("extracted_participants") or []),
        verified_participant_emails=list(record.get("verified_participant_emails") or []),
        can_view_full_content=can_view_full_content,
        shared_in_teams=list(shared_in_teams),
    )
