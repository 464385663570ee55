from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from datetime import UTC, datetime, timedelta
from typing import Any

SESSION_TOKEN_TYPE = "session"
DOWNLOAD_TOKEN_TYPE = "transcript_download"


def create_signed_token(
    *,
    claims: dict[str, Any],
    secret_key: str,
    ttl_minutes: int,
    token_type: str,
) -> tuple[str, int]:
    """Sign ``claims`` into a compact ``payload.signature`` token.

    Returns the token and its lifetime in seconds. ``typ`` is always embedded
    so a token minted for one purpose is rejected by every other verifier.
    """
    issued_at = datetime.now(UTC)
    expires_at = issued_at + timedelta(minutes=ttl_minutes)

    payload = {
        **claims,
        "typ": token_type,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    payload_bytes = json.dumps(
        payload,
        separators=(",", ":"),
        sort_keys=True,
    ).encode("utf-8")
    payload_segment = _b64url_encode(payload_bytes)
    signature_segment = _b64url_encode(_sign(payload_segment, secret_key))
    token = f"{payload_segment}.{signature_segment}"
    expires_in_seconds = max(int((expires_at - issued_at).total_seconds()), 0)
    return token, expires_in_seconds


def decode_signed_token(
    token: str,
    secret_key: str,
    *,
    token_type: str,
) -> dict[str, Any] | None:
    try:
        payload_segment, signature_segment = token.split(".", maxsplit=1)
    except ValueError:
        return None

    try:
        provided_signature = _b64url_decode(signature_segment)
        payload_bytes = _b64url_decode(payload_segment)
    except (ValueError, binascii.Error):
        return None

    expected_signature = _sign(payload_segment, secret_key)
    if not hmac.compare_digest(expected_signature, provided_signature):
        return None

    try:
        payload = json.loads(payload_bytes.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None
    if payload.get("typ") != token_type:
        return None

    raw_expiration = payload.get("exp")
    if not isinstance(raw_expiration, int):
        return None
    if raw_expiration < int(datetime.now(UTC).timestamp()):
        return None

    return payload


def _sign(payload_segment: str, secret_key: str) -> bytes:
    return hmac.new(
        secret_key.encode("utf-8"),
        payload_segment.encode("utf-8"),
        hashlib.sha256,
    ).digest()


def _b64url_encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    padding_size = (-len(value)) % 4
    padded = f"{value}{'=' * padding_size}"
    return base64.urlsafe_b64decode(padded.encode("ascii"))
