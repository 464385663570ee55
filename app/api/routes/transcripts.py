from datetime import date

from fastapi import APIRouter, Depends, Query, Response

from app.schemas.auth import CurrentUserResponse
from app.schemas.team import OperationResponse
from app.schemas.transcript import (
    KeywordSearchScope,
    MeetingType,
    TranscriptContentResponse,
    TranscriptDirectShareRequest,
    TranscriptDownloadLinkResponse,
    TranscriptListResponse,
    TranscriptListScope,
    TranscriptSearchResponse,
)
from app.services.identity_service import require_current_session, require_team_session
from app.services.transcript_download_service import TranscriptDownloadService
from app.services.transcript_service import TranscriptService

router = APIRouter(prefix="/transcripts", tags=["transcripts"])


@router.get("", response_model=TranscriptListResponse)
def list_transcripts(
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    current_user: CurrentUserResponse = Depends(require_current_session),
) -> TranscriptListResponse:
    service = TranscriptService()
    return service.list_transcripts(
        current_user=current_user,
        page=page,
        limit=limit,
        scope=TranscriptListScope.mine,
    )


@router.get("/shared", response_model=TranscriptListResponse)
def list_shared_transcripts(
    page: int = Query(default=1, ge=1),
    limit: int | None = Query(default=None, ge=1),
    current_user: CurrentUserResponse = Depends(require_current_session),
) -> TranscriptListResponse:
    service = TranscriptService()
    return service.list_transcripts(
        current_user=current_user,
        page=page,
        limit=limit,
        scope=TranscriptListScope.shared,
    )


@router.get("/search", response_model=TranscriptSearchResponse)
def search_transcripts(
    keyword: str = Query(..., min_length=1, max_length=200),
    scope: KeywordSearchScope = Query(default=KeywordSearchScope.summary),
    fuzzy: bool = Query(default=False),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    meeting_type: MeetingType | None = Query(default=None),
    limit: int = Query(default=10, ge=1, le=50),
    current_user: CurrentUserResponse = Depends(require_current_session),
) -> TranscriptSearchResponse:
    service = TranscriptService()
    return service.search_by_keyword(
        current_user=current_user,
        keyword=keyword,
        scope=scope,
        fuzzy=fuzzy,
        start_date=start_date,
        end_date=end_date,
        meeting_type=meeting_type.value if meeting_type else None,
        limit=limit,
    )


@router.get("/search/by-user", response_model=TranscriptSearchResponse)
def search_transcripts_by_user(
    host_email: str | None = Query(default=None, max_length=256),
    verified_participant_email: str | None = Query(default=None, max_length=256),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    meeting_type: MeetingType | None = Query(default=None),
    limit: int = Query(default=10, ge=1, le=50),
    current_user: CurrentUserResponse = Depends(require_current_session),
) -> TranscriptSearchResponse:
    service = TranscriptService()
    return service.search_by_user(
        current_user=current_user,
        host_email=host_email,
        verified_participant_email=verified_participant_email,
        start_date=start_date,
        end_date=end_date,
        meeting_type=meeting_type.value if meeting_type else None,
        limit=limit,
    )


@router.get("/{transcript_id}", response_model=TranscriptContentResponse)
def get_transcript_content(
    transcript_id: int,
    current_user: CurrentUserResponse = Depends(require_current_session),
) -> TranscriptContentResponse:
    service = TranscriptService()
    return service.get_content(current_user=current_user, transcript_id=transcript_id)


@router.post("/{transcript_id}/shares", response_model=OperationResponse)
def share_transcript_to_user(
    transcript_id: int,
    payload: TranscriptDirectShareRequest,
    current_user: CurrentUserResponse = Depends(require_team_session),
) -> OperationResponse:
    service = TranscriptService()
    service.share_to_user(
        current_user=current_user,
        transcript_id=transcript_id,
        email=payload.email,
    )
    return OperationResponse()


@router.post("/{transcript_id}/download-link", response_model=TranscriptDownloadLinkResponse)
def create_transcript_download_link(
    transcript_id: int,
    current_user: CurrentUserResponse = Depends(require_current_session),
) -> TranscriptDownloadLinkResponse:
    service = TranscriptDownloadService()
    return service.create_download_link(current_user=current_user, transcript_id=transcript_id)


@router.get("/{transcript_id}/download")
def download_transcript(
    transcript_id: int,
    token: str | None = Query(default=None),
) -> Response:
    service = TranscriptDownloadService()
    markdown = service.render_download(transcript_id=transcript_id, token=token)
    return Response(
        content=markdown,
        media_type="text/markdown; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="transcript-{transcript_id}.md"'},
    )
