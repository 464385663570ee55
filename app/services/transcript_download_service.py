from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from fastapi import HTTPException, status

from app.core.config import Settings, get_settings
from app.schemas.auth import CurrentUserResponse
from app.schemas.transcript import TranscriptDownloadLinkResponse
from app.services.access_roles import AccessRole
from app.services.security_utils import (
    DOWNLOAD_TOKEN_TYPE,
    create_signed_token,
    decode_signed_token,
)
from app.services.transcript_service import TranscriptService

logger = logging.getLogger(__name__)


class TranscriptDownloadService:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transcript_service: TranscriptService | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.transcript_service = transcript_service or TranscriptService(self.settings)

    def create_download_link(
        self,
        *,
        current_user: CurrentUserResponse,
        transcript_id: int,
    ) -> TranscriptDownloadLinkResponse:
        self.transcript_service.load_readable_transcript(
            transcript_id=transcript_id,
            email=current_user.email,
            role=current_user.role,
        )
        token, expires_in_seconds = create_signed_token(
            claims={
                "sub": current_user.external_id,
                "email": current_user.email,
                "role": current_user.role.value,
                "transcript_id": transcript_id,
            },
            secret_key=self.settings.session_secret_key,
            ttl_minutes=self.settings.download_token_ttl_minutes,
            token_type=DOWNLOAD_TOKEN_TYPE,
        )
        base_url = self.settings.app_base_url.rstrip("/")
        if not base_url.startswith("http"):
            base_url = f"https://{base_url}"
        url = f"{base_url}{self.settings.api_prefix}/transcripts/{transcript_id}/download?token={token}"
        logger.info("Download link issued transcript_id=%s user=%s", transcript_id, current_user.email)
        return TranscriptDownloadLinkResponse(url=url, expires_in_seconds=expires_in_seconds)

    def render_download(self, *, transcript_id: int, token: str | None) -> str:
        if not token:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing download token.",
            )
        claims = decode_signed_token(
            token,
            self.settings.session_secret_key,
            token_type=DOWNLOAD_TOKEN_TYPE,
        )
        role = _parse_role(claims.get("role")) if claims else None
        if (
            not claims
            or role is None
            or not isinstance(claims.get("sub"), str)
            or not isinstance(claims.get("email"), str)
            or isinstance(claims.get("transcript_id"), bool)
            or not isinstance(claims.get("transcript_id"), int)
        ):
            logger.warning("Download token rejected transcript_id=%s reason=invalid", transcript_id)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired download token.",
            )

        if claims["transcript_id"] != transcript_id:
            logger.warning("Download token rejected transcript_id=%s reason=mismatch", transcript_id)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Token does not match requested transcript.",
            )

        transcript = self.transcript_service.load_readable_transcript(
            transcript_id=transcript_id,
            email=claims["email"],
            role=role,
        )
        return render_transcript_markdown(transcript)


def _parse_role(value: Any) -> AccessRole | None:
    try:
        return AccessRole(value)
    except ValueError:
        return None


def render_transcript_markdown(transcript: Mapping[str, Any]) -> str:
    recording_start = transcript.get("recording_start")
    if isinstance(recording_start, str):
        try:
            recording_start = datetime.fromisoformat(recording_start.replace("Z", "+00:00"))
        except ValueError:
            recording_start = None
    recording_date = "Unknown"
    if isinstance(recording_start, datetime):
        recording_date = f"{recording_start:%B} {recording_start.day}, {recording_start.year}"

    content_payload = transcript.get("transcript_content")
    content = "No transcript content available"
    if isinstance(content_payload, Mapping) and isinstance(content_payload.get("cleaned"), str):
        content = content_payload["cleaned"]

    return (
        f"# Transcript {transcript.get('id')}\n"
        "\n"
        f"**Date**: {recording_date}\n"
        f"**Meeting Type**: {transcript.get('meeting_type') or 'Unknown'}\n"
        f"**Participants**: {_join_or(transcript.get('extracted_participants'), 'Unknown')}\n"
        f"**Projects**: {_join_or(transcript.get('projects'), 'None')}\n"
        f"**Clients**: {_join_or(transcript.get('clients'), 'None')}\n"
        "\n"
        "## Summary\n"
        "\n"
        f"{transcript.get('summary') or 'No summary available'}\n"
        "\n"
        "## Content\n"
        "\n"
        f"{content}\n"
    )


def _join_or(values: Any, fallback: str) -> str:
    if not values:
        return fallback
    return ", ".join(str(value) for value in values)
