from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from app.core.config import Settings


class TranscriptShareStore(ABC):
    @abstractmethod
    def share_to_team(self, *, team_id: str, transcript_id: int, created_by_email: str) -> bool:
        """Record a team grant. Returns ``True`` only when a new row was written."""
        raise NotImplementedError

    @abstractmethod
    def share_to_user(self, *, user_email: str, transcript_id: int, created_by_email: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_team_shares(self, team_ids: list[str]) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def list_user_shares(self, user_email: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def has_team_share(self, *, team_ids: list[str], transcript_id: int) -> bool:
        raise NotImplementedError

    @abstractmethod
    def has_user_share(self, *, user_email: str, transcript_id: int) -> bool:
        raise NotImplementedError


class InMemoryTranscriptShareStore(TranscriptShareStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._team_shares: dict[tuple[str, int], dict[str, Any]] = {}
        self._user_shares: dict[tuple[str, int], dict[str, Any]] = {}

    def share_to_team(self, *, team_id: str, transcript_id: int, created_by_email: str) -> bool:
        key = (team_id, int(transcript_id))
        with self._lock:
            if key in self._team_shares:
                return False
            self._team_shares[key] = {
                "team_id": team_id,
                "transcript_id": int(transcript_id),
                "created_by_email": _normalize_email(created_by_email),
                "created_at": datetime.now(UTC),
            }
        return True

    def share_to_user(self, *, user_email: str, transcript_id: int, created_by_email: str) -> bool:
        key = (_normalize_email(user_email), int(transcript_id))
        with self._lock:
            if key in self._user_shares:
                return False
            self._user_shares[key] = {
                "user_email": key[0],
                "transcript_id": int(transcript_id),
                "created_by_email": _normalize_email(created_by_email),
                "created_at": datetime.now(UTC),
            }
        return True

    def list_team_shares(self, team_ids: list[str]) -> list[dict[str, Any]]:
        wanted_team_ids = set(team_ids)
        return [
            dict(share)
            for share in self._team_shares.values()
            if share["team_id"] in wanted_team_ids
        ]

    def list_user_shares(self, user_email: str) -> list[dict[str, Any]]:
        normalized_email = _normalize_email(user_email)
        return [
            dict(share)
            for share in self._user_shares.values()
            if share["user_email"] == normalized_email
        ]

    def has_team_share(self, *, team_ids: list[str], transcript_id: int) -> bool:
        return any((team_id, int(transcript_id)) in self._team_shares for team_id in team_ids)

    def has_user_share(self, *, user_email: str, transcript_id: int) -> bool:
        return (_normalize_email(user_email), int(transcript_id)) in self._user_shares


class MongoTranscriptShareStore(TranscriptShareStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        team_shares_collection_name: str,
        user_shares_collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        database = self._client[db_name]
        self._team_shares = database[team_shares_collection_name]
        self._user_shares = database[user_shares_collection_name]

        self._team_shares.create_index([("team_id", 1), ("transcript_id", 1)], unique=True)
        self._user_shares.create_index([("user_email", 1), ("transcript_id", 1)], unique=True)

    def share_to_team(self, *, team_id: str, transcript_id: int, created_by_email: str) -> bool:
        return self._insert_once(
            self._team_shares,
            {"team_id": team_id, "transcript_id": int(transcript_id)},
            created_by_email,
        )

    def share_to_user(self, *, user_email: str, transcript_id: int, created_by_email: str) -> bool:
        return self._insert_once(
            self._user_shares,
            {"user_email": _normalize_email(user_email), "transcript_id": int(transcript_id)},
            created_by_email,
        )

    def list_team_shares(self, team_ids: list[str]) -> list[dict[str, Any]]:
        if not team_ids:
            return []
        cursor = self._team_shares.find({"team_id": {"$in": team_ids}}, {"_id": 0})
        return [dict(record) for record in cursor]

    def list_user_shares(self, user_email: str) -> list[dict[str, Any]]:
        cursor = self._user_shares.find({"user_email": _normalize_email(user_email)}, {"_id": 0})
        return [dict(record) for record in cursor]

    def has_team_share(self, *, team_ids: list[str], transcript_id: int) -> bool:
        if not team_ids:
            return False
        record = self._team_shares.find_one(
            {"team_id": {"$in": team_ids}, "transcript_id": int(transcript_id)},
            {"_id": 1},
        )
        return record is not None

    def has_user_share(self, *, user_email: str, transcript_id: int) -> bool:
        record = self._user_shares.find_one(
            {"user_email": _normalize_email(user_email), "transcript_id": int(transcript_id)},
            {"_id": 1},
        )
        return record is not None

    def _insert_once(self, collection: Any, key: dict[str, Any], created_by_email: str) -> bool:
        from pymongo.errors import DuplicateKeyError

        try:
            result = collection.update_one(
                key,
                {
                    "$setOnInsert": {
                        "created_by_email": _normalize_email(created_by_email),
                        "created_at": datetime.now(UTC),
                    },
                },
                upsert=True,
            )
        except DuplicateKeyError:
            return False
        return result.upserted_id is not None


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def create_transcript_share_store(settings: Settings) -> TranscriptShareStore:
    return _create_transcript_share_store_cached(
        data_store=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_team_shares_collection=settings.mongodb_team_shares_collection,
        mongodb_user_shares_collection=settings.mongodb_user_shares_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_transcript_share_store_cached(
    *,
    data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_team_shares_collection: str,
    mongodb_user_shares_collection: str,
    mongodb_connect_timeout_ms: int,
) -> TranscriptShareStore:
    if data_store == "memory":
        return InMemoryTranscriptShareStore()

    if data_store == "mongodb":
        return MongoTranscriptShareStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            team_shares_collection_name=mongodb_team_shares_collection,
            user_shares_collection_name=mongodb_user_shares_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryTranscriptShareStore()


def clear_transcript_share_store_cache() -> None:
    _create_transcript_share_store_cached.cache_clear()
