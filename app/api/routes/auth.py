from fastapi import APIRouter, Depends

from app.schemas.auth import CurrentUserResponse
from app.services.identity_service import require_current_session

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=CurrentUserResponse)
def get_me(
    current_user: CurrentUserResponse = Depends(require_current_session),
) -> CurrentUserResponse:
    return current_user
