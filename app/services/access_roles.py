from __future__ import annotations

from collections.abc import Mapping
from enum import StrEnum
from typing import Any


class AccessRole(StrEnum):
    admin = "admin"
    elevated = "elevated"
    member = "member"


def classify_role(claims: Mapping[str, Any]) -> AccessRole:
    """Map the organization role slug from session claims to an access tier.

    ``admin`` and ``member`` are taken literally. Any other slug (for example
    ``org-fte``) is elevated. A missing role is treated as the most
    restricted tier.
    """
    raw_role = claims.get("role")
    if not isinstance(raw_role, str):
        return AccessRole.member
    normalized_role = raw_role.strip().lower()
    if not normalized_role or normalized_role == AccessRole.member:
        return AccessRole.member
    if normalized_role == AccessRole.admin:
        return AccessRole.admin
    return AccessRole.elevated


def can_bypass_participant_filter(role: AccessRole) -> bool:
    return role == AccessRole.admin


def can_share(role: AccessRole) -> bool:
    return role != AccessRole.member


def can_view_full_content(role: AccessRole, *, is_shared: bool) -> bool:
    return role != AccessRole.member or is_shared
