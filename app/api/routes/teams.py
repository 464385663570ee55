from uuid import UUID

from fastapi import APIRouter, Depends

from app.schemas.auth import CurrentUserResponse
from app.schemas.team import (
    OperationResponse,
    TeamCreateRequest,
    TeamDetailResponse,
    TeamListResponse,
    TeamMemberRequest,
    TeamResponse,
    TeamRuleCreateRequest,
    TeamRuleListResponse,
    TeamRuleResponse,
    TeamShareRequest,
)
from app.services.identity_service import require_team_session
from app.services.team_service import TeamService

router = APIRouter(prefix="/teams", tags=["teams"])


@router.get("", response_model=TeamListResponse)
def list_teams(
    current_user: CurrentUserResponse = Depends(require_team_session),
) -> TeamListResponse:
    service = TeamService()
    return service.list_teams(current_user)


@router.post("", response_model=TeamResponse)
def create_team(
    payload: TeamCreateRequest,
    current_user: CurrentUserResponse = Depends(require_team_session),
) -> TeamResponse:
    service = TeamService()
    return service.create_team(current_user=current_user, name=payload.name)


@router.get("/{team_id}", response_model=TeamDetailResponse)
def get_team(
    team_id: UUID,
    current_user: CurrentUserResponse = Depends(require_team_session),
) -> TeamDetailResponse:
    service = TeamService()
    return service.get_team_detail(current_user=current_user, team_id=str(team_id))


@router.post("/{team_id}/members", response_model=OperationResponse)
def add_team_member(
    team_id: UUID,
    payload: TeamMemberRequest,
    current_user: CurrentUserResponse = Depends(require_team_session),
) -> OperationResponse:
    service = TeamService()
    service.add_member(current_user=current_user, team_id=str(team_id), email=payload.email)
    return OperationResponse()


@router.delete("/{team_id}/members", response_model=OperationResponse)
def remove_team_member(
    team_id: UUID,
    payload: TeamMemberRequest,
    current_user: CurrentUserResponse = Depends(require_team_session),
) -> OperationResponse:
    service = TeamService()
    service.remove_member(current_user=current_user, team_id=str(team_id), email=payload.email)
    return OperationResponse()


@router.get("/{team_id}/rules", response_model=TeamRuleListResponse)
def list_team_rules(
    team_id: UUID,
    current_user: CurrentUserResponse = Depends(require_team_session),
) -> TeamRuleListResponse:
    service = TeamService()
    return service.list_rules(current_user=current_user, team_id=str(team_id))


@router.post("/{team_id}/rules", response_model=TeamRuleResponse)
def create_team_rule(
    team_id: UUID,
    payload: TeamRuleCreateRequest,
    current_user: CurrentUserResponse = Depends(require_team_session),
) -> TeamRuleResponse:
    service = TeamService()
    return service.create_rule(
        current_user=current_user,
        team_id=str(team_id),
        rule_type=payload.type,
        value=payload.value,
    )


@router.post("/{team_id}/shares", response_model=OperationResponse)
def share_transcript_to_team(
    team_id: UUID,
    payload: TeamShareRequest,
    current_user: CurrentUserResponse = Depends(require_team_session),
) -> OperationResponse:
    service = TeamService()
    service.share_transcript(
        current_user=current_user,
        team_id=str(team_id),
        transcript_id=payload.transcript_id,
    )
    return OperationResponse()
