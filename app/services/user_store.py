from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from app.core.config import Settings


class UserStore(ABC):
    @abstractmethod
    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def get_user_by_external_id(self, external_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def get_or_create_user(
        self,
        *,
        external_id: str,
        email: str,
        first_name: str | None,
        last_name: str | None,
    ) -> dict[str, Any]:
        """Return the user mapped to ``external_id``, creating it on first sight."""
        raise NotImplementedError


class InMemoryUserStore(UserStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users_by_id: dict[str, dict[str, Any]] = {}
        self._user_id_by_external_id: dict[str, str] = {}

    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        user = self._users_by_id.get(user_id)
        if not user:
            return None
        return dict(user)

    def get_user_by_external_id(self, external_id: str) -> dict[str, Any] | None:
        user_id = self._user_id_by_external_id.get(external_id.strip())
        if not user_id:
            return None
        return self.get_user_by_id(user_id)

    def get_or_create_user(
        self,
        *,
        external_id: str,
        email: str,
        first_name: str | None,
        last_name: str | None,
    ) -> dict[str, Any]:
        normalized_external_id = external_id.strip()
        with self._lock:
            existing_user_id = self._user_id_by_external_id.get(normalized_external_id)
            if existing_user_id:
                return dict(self._users_by_id[existing_user_id])

            now = datetime.now(UTC)
            user_id = str(uuid.uuid4())
            user = {
                "_id": user_id,
                "external_id": normalized_external_id,
                "email": _normalize_email(email),
                "first_name": _normalize_name(first_name),
                "last_name": _normalize_name(last_name),
                "created_at": now,
                "updated_at": now,
            }
            self._users_by_id[user_id] = user
            self._user_id_by_external_id[normalized_external_id] = user_id
            return dict(user)


class MongoUserStore(UserStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        users_collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
        )
        database = self._client[db_name]
        self._users = database[users_collection_name]

        self._users.create_index("external_id", unique=True)
        self._users.create_index("email")

    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        record = self._users.find_one({"_id": user_id})
        return _serialize_user_record(record)

    def get_user_by_external_id(self, external_id: str) -> dict[str, Any] | None:
        record = self._users.find_one({"external_id": external_id.strip()})
        return _serialize_user_record(record)

    def get_or_create_user(
        self,
        *,
        external_id: str,
        email: str,
        first_name: str | None,
        last_name: str | None,
    ) -> dict[str, Any]:
        from pymongo.errors import DuplicateKeyError

        normalized_external_id = external_id.strip()
        now = datetime.now(UTC)
        query = {"external_id": normalized_external_id}
        try:
            self._users.update_one(
                query,
                {
                    "$setOnInsert": {
                        "_id": str(uuid.uuid4()),
                        "email": _normalize_email(email),
                        "first_name": _normalize_name(first_name),
                        "last_name": _normalize_name(last_name),
                        "created_at": now,
                        "updated_at": now,
                    },
                },
                upsert=True,
            )
        except DuplicateKeyError:
            # A concurrent first touch won the insert; its row is the mapping.
            pass
        record = self._users.find_one(query)
        serialized = _serialize_user_record(record)
        if not serialized:
            raise RuntimeError("Unable to read resolved user.")
        return serialized


def _serialize_user_record(record: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if not record:
        return None
    serialized = dict(record)
    serialized["_id"] = str(record.get("_id", ""))
    return serialized


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _normalize_name(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def create_user_store(settings: Settings) -> UserStore:
    return _create_user_store_cached(
        data_store=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_users_collection=settings.mongodb_users_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_user_store_cached(
    *,
    data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_users_collection: str,
    mongodb_connect_timeout_ms: int,
) -> UserStore:
    if data_store == "memory":
        return InMemoryUserStore()

    if data_store == "mongodb":
        return MongoUserStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            users_collection_name=mongodb_users_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryUserStore()


def clear_user_store_cache() -> None:
    _create_user_store_cached.cache_clear()
