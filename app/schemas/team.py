from datetime import datetime
from typing import Literal

from pydantic import Field

from app.schemas.base import ApiModel


class TeamSummary(ApiModel):
    id: str
    name: str
    created_by_email: str
    created_at: datetime
    role: str


class TeamMember(ApiModel):
    team_id: str
    user_email: str
    role: str
    created_by_email: str
    created_at: datetime


class TeamTranscriptRule(ApiModel):
    id: str
    team_id: str
    type: str
    value: str
    enabled: bool = True
    created_by_email: str
    created_at: datetime


class TeamDetail(ApiModel):
    team: TeamSummary
    members: list[TeamMember] = Field(default_factory=list)
    rules: list[TeamTranscriptRule] = Field(default_factory=list)


class TeamListResponse(ApiModel):
    data: list[TeamSummary] = Field(default_factory=list)


class TeamResponse(ApiModel):
    data: TeamSummary


class TeamDetailResponse(ApiModel):
    data: TeamDetail


class TeamRuleListResponse(ApiModel):
    data: list[TeamTranscriptRule] = Field(default_factory=list)


class TeamRuleResponse(ApiModel):
    data: TeamTranscriptRule


class OperationResponse(ApiModel):
    ok: bool = True


class TeamCreateRequest(ApiModel):
    name: str


class TeamMemberRequest(ApiModel):
    email: str = Field(max_length=256)


class TeamRuleCreateRequest(ApiModel):
    type: Literal["summary_topic_exact"]
    value: str


class TeamShareRequest(ApiModel):
    transcript_id: int = Field(gt=0)
