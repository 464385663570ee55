from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import Settings, get_settings
from app.schemas.auth import CurrentUserResponse
from app.services.access_roles import classify_role
from app.services.security_utils import SESSION_TOKEN_TYPE, decode_signed_token
from app.services.team_service import is_allowed_team_email
from app.services.user_store import UserStore, create_user_store

_HTTP_BEARER = HTTPBearer(auto_error=False)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExternalIdentity:
    id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None


class IdentityService:
    def __init__(
        self,
        settings: Settings | None = None,
        user_store: UserStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.user_store = user_store or create_user_store(self.settings)

    def resolve(self, identity: ExternalIdentity) -> dict[str, Any]:
        external_id = identity.id.strip()
        if not external_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid session payload.",
            )

        try:
            existing_user = self.user_store.get_user_by_external_id(external_id)
            if existing_user:
                return existing_user

            email = (identity.email or "").strip().lower()
            if not email:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="User profile not found.",
                )

            user_record = self.user_store.get_or_create_user(
                external_id=external_id,
                email=email,
                first_name=identity.first_name,
                last_name=identity.last_name,
            )
        except HTTPException:
            raise
        except Exception as exc:
            logger.exception("User resolution failed external_id=%s", external_id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Unable to query user storage.",
            ) from exc

        logger.info("Resolved user external_id=%s user_id=%s", external_id, user_record.get("_id"))
        return user_record

    def get_current_user_from_token(self, access_token: str) -> CurrentUserResponse:
        claims = decode_signed_token(
            access_token,
            self.settings.session_secret_key,
            token_type=SESSION_TOKEN_TYPE,
        )
        if not claims:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired session.",
            )

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject.strip():
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid session payload.",
            )

        user_record = self.resolve(
            ExternalIdentity(
                id=subject,
                email=_optional_claim(claims, "email"),
                first_name=_optional_claim(claims, "first_name"),
                last_name=_optional_claim(claims, "last_name"),
            ),
        )
        return CurrentUserResponse(
            id=str(user_record.get("_id", "")),
            external_id=str(user_record.get("external_id", "")),
            email=str(user_record.get("email", "")),
            first_name=user_record.get("first_name"),
            last_name=user_record.get("last_name"),
            role=classify_role(claims),
        )


def _optional_claim(claims: dict[str, Any], name: str) -> str | None:
    value = claims.get(name)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def require_current_session(
    credentials: HTTPAuthorizationCredentials | None = Depends(_HTTP_BEARER),
) -> CurrentUserResponse:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    service = IdentityService()
    return service.get_current_user_from_token(credentials.credentials)


def require_team_session(
    current_user: CurrentUserResponse = Depends(require_current_session),
) -> CurrentUserResponse:
    if not is_allowed_team_email(current_user.email, get_settings()):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden",
        )
    return current_user
