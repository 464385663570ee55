from datetime import datetime
from enum import StrEnum

from pydantic import Field

from app.schemas.base import ApiModel


class MeetingType(StrEnum):
    internal = "internal"
    external = "external"
    unknown = "unknown"


class TranscriptListScope(StrEnum):
    mine = "mine"
    shared = "shared"


class KeywordSearchScope(StrEnum):
    summary = "summary"
    content = "content"
    both = "both"


class TranscriptSummary(ApiModel):
    id: int
    recording_start: datetime | None = None
    summary: str | None = None
    projects: list[str] = Field(default_factory=list)
    clients: list[str] = Field(default_factory=list)
    meeting_type: MeetingType = MeetingType.unknown
    extracted_participants: list[str] = Field(default_factory=list)
    verified_participant_emails: list[str] = Field(default_factory=list)
    can_view_full_content: bool = False
    shared_in_teams: list[str] = Field(default_factory=list)


class Pagination(ApiModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class TranscriptListResponse(ApiModel):
    data: list[TranscriptSummary] = Field(default_factory=list)
    pagination: Pagination


class TranscriptContentResponse(ApiModel):
    id: int
    content: str | None = None
    can_view_full_content: bool = True


class TranscriptSearchResult(ApiModel):
    id: int
    recording_start: datetime | None = None
    summary: str | None = None
    projects: list[str] = Field(default_factory=list)
    clients: list[str] = Field(default_factory=list)
    meeting_type: MeetingType = MeetingType.unknown
    extracted_participants: list[str] = Field(default_factory=list)
    host_email: str | None = None


class TranscriptSearchResponse(ApiModel):
    data: list[TranscriptSearchResult] = Field(default_factory=list)


class TranscriptDirectShareRequest(ApiModel):
    email: str = Field(max_length=256)


class TranscriptDownloadLinkResponse(ApiModel):
    url: str
    expires_in_seconds: int
