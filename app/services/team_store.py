from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from app.core.config import Settings

TEAM_ROLE_OWNER = "owner"
TEAM_ROLE_MEMBER = "member"
RULE_TYPE_SUMMARY_TOPIC_EXACT = "summary_topic_exact"


class TeamStore(ABC):
    @abstractmethod
    def create_team_with_owner(self, *, name: str, created_by_email: str) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def get_team(self, team_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def list_teams_by_ids(self, team_ids: list[str]) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def get_membership(self, *, team_id: str, user_email: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def list_memberships_for_email(self, user_email: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def list_memberships_for_team(self, team_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def add_membership(
        self,
        *,
        team_id: str,
        user_email: str,
        role: str,
        created_by_email: str,
    ) -> dict[str, Any]:
        """Insert the membership if absent; an existing row is returned untouched."""
        raise NotImplementedError

    @abstractmethod
    def remove_membership(self, *, team_id: str, user_email: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def create_rule(
        self,
        *,
        team_id: str,
        rule_type: str,
        value: str,
        created_by_email: str,
    ) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def list_rules_for_team(self, team_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def list_enabled_rules_for_teams(
        self,
        team_ids: list[str],
        *,
        rule_type: str,
    ) -> list[dict[str, Any]]:
        raise NotImplementedError


class InMemoryTeamStore(TeamStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._teams_by_id: dict[str, dict[str, Any]] = {}
        self._memberships_by_key: dict[tuple[str, str], dict[str, Any]] = {}
        self._rules_by_id: dict[str, dict[str, Any]] = {}

    def create_team_with_owner(self, *, name: str, created_by_email: str) -> dict[str, Any]:
        now = datetime.now(UTC)
        team_id = str(uuid.uuid4())
        normalized_creator = _normalize_email(created_by_email)
        team = {
            "_id": team_id,
            "name": name.strip(),
            "created_by_email": normalized_creator,
            "created_at": now,
        }
        with self._lock:
            self._teams_by_id[team_id] = team
            self._memberships_by_key[(team_id, normalized_creator)] = {
                "team_id": team_id,
                "user_email": normalized_creator,
                "role": TEAM_ROLE_OWNER,
                "created_by_email": normalized_creator,
                "created_at": now,
            }
        return dict(team)

    def get_team(self, team_id: str) -> dict[str, Any] | None:
        team = self._teams_by_id.get(team_id)
        if not team:
            return None
        return dict(team)

    def list_teams_by_ids(self, team_ids: list[str]) -> list[dict[str, Any]]:
        return [
            dict(self._teams_by_id[team_id])
            for team_id in team_ids
            if team_id in self._teams_by_id
        ]

    def get_membership(self, *, team_id: str, user_email: str) -> dict[str, Any] | None:
        membership = self._memberships_by_key.get((team_id, _normalize_email(user_email)))
        if not membership:
            return None
        return dict(membership)

    def list_memberships_for_email(self, user_email: str) -> list[dict[str, Any]]:
        normalized_email = _normalize_email(user_email)
        memberships = [
            dict(membership)
            for membership in self._memberships_by_key.values()
            if membership.get("user_email") == normalized_email
        ]
        memberships.sort(key=lambda membership: membership["created_at"])
        return memberships

    def list_memberships_for_team(self, team_id: str) -> list[dict[str, Any]]:
        memberships = [
            dict(membership)
            for membership in self._memberships_by_key.values()
            if membership.get("team_id") == team_id
        ]
        memberships.sort(key=lambda membership: membership["created_at"])
        return memberships

    def add_membership(
        self,
        *,
        team_id: str,
        user_email: str,
        role: str,
        created_by_email: str,
    ) -> dict[str, Any]:
        key = (team_id, _normalize_email(user_email))
        with self._lock:
            existing = self._memberships_by_key.get(key)
            if existing:
                return dict(existing)
            membership = {
                "team_id": team_id,
                "user_email": key[1],
                "role": role.strip().lower(),
                "created_by_email": _normalize_email(created_by_email),
                "created_at": datetime.now(UTC),
            }
            self._memberships_by_key[key] = membership
            return dict(membership)

    def remove_membership(self, *, team_id: str, user_email: str) -> bool:
        with self._lock:
            removed = self._memberships_by_key.pop((team_id, _normalize_email(user_email)), None)
        return removed is not None

    def create_rule(
        self,
        *,
        team_id: str,
        rule_type: str,
        value: str,
        created_by_email: str,
    ) -> dict[str, Any]:
        rule_id = str(uuid.uuid4())
        rule = {
            "_id": rule_id,
            "team_id": team_id,
            "type": rule_type,
            "value": value.strip(),
            "enabled": True,
            "created_by_email": _normalize_email(created_by_email),
            "created_at": datetime.now(UTC),
        }
        self._rules_by_id[rule_id] = rule
        return dict(rule)

    def list_rules_for_team(self, team_id: str) -> list[dict[str, Any]]:
        rules = [dict(rule) for rule in self._rules_by_id.values() if rule.get("team_id") == team_id]
        rules.sort(key=lambda rule: rule["created_at"])
        return rules

    def list_enabled_rules_for_teams(
        self,
        team_ids: list[str],
        *,
        rule_type: str,
    ) -> list[dict[str, Any]]:
        wanted_team_ids = set(team_ids)
        return [
            dict(rule)
            for rule in self._rules_by_id.values()
            if rule.get("team_id") in wanted_team_ids
            and rule.get("type") == rule_type
            and bool(rule.get("enabled", True))
        ]


class MongoTeamStore(TeamStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        teams_collection_name: str,
        memberships_collection_name: str,
        rules_collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        database = self._client[db_name]
        self._teams = database[teams_collection_name]
        self._memberships = database[memberships_collection_name]
        self._rules = database[rules_collection_name]

        self._teams.create_index("created_by_email")
        self._memberships.create_index([("team_id", 1), ("user_email", 1)], unique=True)
        self._memberships.create_index("user_email")
        self._rules.create_index([("team_id", 1), ("type", 1), ("enabled", 1)])

    def create_team_with_owner(self, *, name: str, created_by_email: str) -> dict[str, Any]:
        now = datetime.now(UTC)
        team_id = str(uuid.uuid4())
        normalized_creator = _normalize_email(created_by_email)
        payload = {
            "_id": team_id,
            "name": name.strip(),
            "created_by_email": normalized_creator,
            "created_at": now,
        }
        self._teams.insert_one(payload)
        try:
            self._memberships.insert_one(
                {
                    "team_id": team_id,
                    "user_email": normalized_creator,
                    "role": TEAM_ROLE_OWNER,
                    "created_by_email": normalized_creator,
                    "created_at": now,
                },
            )
        except Exception:
            # A team without its owner row must not survive.
            self._teams.delete_one({"_id": team_id})
            raise
        return self.get_team(team_id) or {}

    def get_team(self, team_id: str) -> dict[str, Any] | None:
        record = self._teams.find_one({"_id": team_id})
        return _serialize_record(record)

    def list_teams_by_ids(self, team_ids: list[str]) -> list[dict[str, Any]]:
        if not team_ids:
            return []
        records = list(self._teams.find({"_id": {"$in": team_ids}}))
        by_id = {str(record.get("_id")): _serialize_record(record) for record in records}
        return [by_id[team_id] for team_id in team_ids if team_id in by_id]

    def get_membership(self, *, team_id: str, user_email: str) -> dict[str, Any] | None:
        record = self._memberships.find_one(
            {"team_id": team_id, "user_email": _normalize_email(user_email)},
            {"_id": 0},
        )
        return dict(record) if record else None

    def list_memberships_for_email(self, user_email: str) -> list[dict[str, Any]]:
        cursor = self._memberships.find(
            {"user_email": _normalize_email(user_email)},
            {"_id": 0},
        ).sort("created_at", 1)
        return [dict(record) for record in cursor]

    def list_memberships_for_team(self, team_id: str) -> list[dict[str, Any]]:
        cursor = self._memberships.find({"team_id": team_id}, {"_id": 0}).sort("created_at", 1)
        return [dict(record) for record in cursor]

    def add_membership(
        self,
        *,
        team_id: str,
        user_email: str,
        role: str,
        created_by_email: str,
    ) -> dict[str, Any]:
        from pymongo.errors import DuplicateKeyError

        query = {"team_id": team_id, "user_email": _normalize_email(user_email)}
        try:
            self._memberships.update_one(
                query,
                {
                    "$setOnInsert": {
                        "role": role.strip().lower(),
                        "created_by_email": _normalize_email(created_by_email),
                        "created_at": datetime.now(UTC),
                    },
                },
                upsert=True,
            )
        except DuplicateKeyError:
            pass
        record = self._memberships.find_one(query, {"_id": 0})
        return dict(record) if record else {}

    def remove_membership(self, *, team_id: str, user_email: str) -> bool:
        result = self._memberships.delete_one(
            {"team_id": team_id, "user_email": _normalize_email(user_email)},
        )
        return result.deleted_count > 0

    def create_rule(
        self,
        *,
        team_id: str,
        rule_type: str,
        value: str,
        created_by_email: str,
    ) -> dict[str, Any]:
        payload = {
            "_id": str(uuid.uuid4()),
            "team_id": team_id,
            "type": rule_type,
            "value": value.strip(),
            "enabled": True,
            "created_by_email": _normalize_email(created_by_email),
            "created_at": datetime.now(UTC),
        }
        self._rules.insert_one(payload)
        return _serialize_record(payload) or {}

    def list_rules_for_team(self, team_id: str) -> list[dict[str, Any]]:
        cursor = self._rules.find({"team_id": team_id}).sort("created_at", 1)
        return [_serialize_record(record) for record in cursor]

    def list_enabled_rules_for_teams(
        self,
        team_ids: list[str],
        *,
        rule_type: str,
    ) -> list[dict[str, Any]]:
        if not team_ids:
            return []
        cursor = self._rules.find(
            {
                "team_id": {"$in": team_ids},
                "type": rule_type,
                "enabled": True,
            },
        )
        return [_serialize_record(record) for record in cursor]


def _serialize_record(record: Any) -> dict[str, Any] | None:
    if not record:
        return None
    payload = dict(record)
    payload["_id"] = str(record.get("_id", ""))
    return payload


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def create_team_store(settings: Settings) -> TeamStore:
    return _create_team_store_cached(
        data_store=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_teams_collection=settings.mongodb_teams_collection,
        mongodb_team_memberships_collection=settings.mongodb_team_memberships_collection,
        mongodb_team_rules_collection=settings.mongodb_team_rules_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_team_store_cached(
    *,
    data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_teams_collection: str,
    mongodb_team_memberships_collection: str,
    mongodb_team_rules_collection: str,
    mongodb_connect_timeout_ms: int,
) -> TeamStore:
    if data_store == "memory":
        return InMemoryTeamStore()

    if data_store == "mongodb":
        return MongoTeamStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            teams_collection_name=mongodb_teams_collection,
            memberships_collection_name=mongodb_team_memberships_collection,
            rules_collection_name=mongodb_team_rules_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryTeamStore()


def clear_team_store_cache() -> None:
    _create_team_store_cached.cache_clear()
