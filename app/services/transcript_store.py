from __future__ import annotations

import re
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from functools import lru_cache
from typing import Any

from app.core.config import Settings

KEYWORD_SCOPE_SUMMARY = "summary"
KEYWORD_SCOPE_CONTENT = "content"
KEYWORD_SCOPE_BOTH = "both"

_CONTENT_FIELD = "transcript_content.cleaned"
MEETING_TYPES = frozenset({"internal", "external", "unknown"})


@dataclass
class TranscriptQuery:
    participant_email: str | None = None
    transcript_ids: list[int] | None = None
    keyword: str | None = None
    keyword_scope: str = KEYWORD_SCOPE_SUMMARY
    fuzzy: bool = False
    start_date: date | None = None
    end_date: date | None = None
    meeting_type: str | None = None
    host_email: str | None = None
    verified_participant_emails: list[str] = field(default_factory=list)


class TranscriptStore(ABC):
    @abstractmethod
    def save(self, record: Mapping[str, Any]) -> int:
        """Insert or replace a transcript keyed by its numeric ``id``."""
        raise NotImplementedError

    @abstractmethod
    def get_by_id(self, transcript_id: int) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    def count(self, query: TranscriptQuery) -> int:
        raise NotImplementedError

    @abstractmethod
    def find(self, query: TranscriptQuery, *, offset: int, limit: int) -> list[dict[str, Any]]:
        """Return matching transcripts, newest ``recording_start`` first."""
        raise NotImplementedError


class InMemoryTranscriptStore(TranscriptStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records_by_id: dict[int, dict[str, Any]] = {}

    def save(self, record: Mapping[str, Any]) -> int:
        stored_record = build_transcript_document(record)
        with self._lock:
            self._records_by_id[stored_record["id"]] = stored_record
        return stored_record["id"]

    def get_by_id(self, transcript_id: int) -> dict[str, Any] | None:
        record = self._records_by_id.get(int(transcript_id))
        if not record:
            return None
        return dict(record)

    def count(self, query: TranscriptQuery) -> int:
        return len(self._matching(query))

    def find(self, query: TranscriptQuery, *, offset: int, limit: int) -> list[dict[str, Any]]:
        matching = self._matching(query)
        matching.sort(key=lambda record: _sortable_datetime(record.get("recording_start")), reverse=True)
        return [dict(record) for record in matching[offset : offset + limit]]

    def _matching(self, query: TranscriptQuery) -> list[dict[str, Any]]:
        return [record for record in self._records_by_id.values() if _matches(record, query)]


class MongoTranscriptStore(TranscriptStore):
    def __init__(
        self,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import DESCENDING, MongoClient

        self._desc = DESCENDING
        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            tz_aware=True,
        )
        self._collection = self._client[db_name][collection_name]
        self._collection.create_index("id", unique=True)
        self._collection.create_index([("recording_start", self._desc)])
        self._collection.create_index("verified_participant_emails")

    def save(self, record: Mapping[str, Any]) -> int:
        payload = build_transcript_document(record)
        self._collection.replace_one({"id": payload["id"]}, payload, upsert=True)
        return payload["id"]

    def get_by_id(self, transcript_id: int) -> dict[str, Any] | None:
        record = self._collection.find_one({"id": int(transcript_id)}, {"_id": 0})
        return dict(record) if record else None

    def count(self, query: TranscriptQuery) -> int:
        return int(self._collection.count_documents(_build_mongo_filter(query)))

    def find(self, query: TranscriptQuery, *, offset: int, limit: int) -> list[dict[str, Any]]:
        cursor = (
            self._collection.find(_build_mongo_filter(query), {"_id": 0})
            .sort("recording_start", self._desc)
            .skip(offset)
            .limit(limit)
        )
        return [dict(record) for record in cursor]


def build_transcript_document(record: Mapping[str, Any]) -> dict[str, Any]:
    raw_id = record.get("id")
    if isinstance(raw_id, bool) or not isinstance(raw_id, int):
        raise ValueError("Transcript records require an integer id.")
    transcript_content = record.get("transcript_content")
    return {
        "id": raw_id,
        "recording_start": _normalize_recording_start(record.get("recording_start")),
        "summary": record.get("summary"),
        "transcript_content": dict(transcript_content) if isinstance(transcript_content, Mapping) else None,
        "projects": list(record.get("projects") or []),
        "clients": list(record.get("clients") or []),
        "meeting_type": _normalize_meeting_type(record.get("meeting_type")),
        "extracted_participants": list(record.get("extracted_participants") or []),
        "verified_participant_emails": [
            email.strip().lower()
            for email in record.get("verified_participant_emails") or []
            if isinstance(email, str) and email.strip()
        ],
        "host_email": _normalize_optional_email(record.get("host_email")),
    }


def _matches(record: Mapping[str, Any], query: TranscriptQuery) -> bool:
    participant_emails = record.get("verified_participant_emails") or []
    if query.participant_email and query.participant_email.strip().lower() not in participant_emails:
        return False
    if query.transcript_ids is not None and record.get("id") not in set(query.transcript_ids):
        return False
    for required_email in query.verified_participant_emails:
        if required_email.strip().lower() not in participant_emails:
            return False
    if query.host_email and record.get("host_email") != query.host_email.strip().lower():
        return False
    if query.meeting_type and record.get("meeting_type") != query.meeting_type:
        return False

    recording_start = _sortable_datetime(record.get("recording_start"))
    if query.start_date and recording_start < _day_start(query.start_date):
        return False
    if query.end_date and recording_start >= _day_start(query.end_date + timedelta(days=1)):
        return False

    if query.keyword:
        haystacks = _keyword_haystacks(record, query.keyword_scope)
        terms = _keyword_terms(query.keyword, fuzzy=query.fuzzy)
        if not any(all(term in haystack for term in terms) for haystack in haystacks):
            return False
    return True


def _keyword_haystacks(record: Mapping[str, Any], scope: str) -> list[str]:
    summary = str(record.get("summary") or "").lower()
    content_payload = record.get("transcript_content")
    content = ""
    if isinstance(content_payload, Mapping):
        content = str(content_payload.get("cleaned") or "").lower()
    if scope == KEYWORD_SCOPE_CONTENT:
        return [content]
    if scope == KEYWORD_SCOPE_BOTH:
        return [summary, content]
    return [summary]


def _keyword_terms(keyword: str, *, fuzzy: bool) -> list[str]:
    normalized_keyword = keyword.strip().lower()
    if not fuzzy:
        return [normalized_keyword]
    return normalized_keyword.split() or [normalized_keyword]


def _build_mongo_filter(query: TranscriptQuery) -> dict[str, Any]:
    clauses: list[dict[str, Any]] = []
    if query.participant_email:
        clauses.append({"verified_participant_emails": query.participant_email.strip().lower()})
    if query.transcript_ids is not None:
        clauses.append({"id": {"$in": [int(transcript_id) for transcript_id in query.transcript_ids]}})
    for required_email in query.verified_participant_emails:
        clauses.append({"verified_participant_emails": required_email.strip().lower()})
    if query.host_email:
        clauses.append({"host_email": query.host_email.strip().lower()})
    if query.meeting_type:
        clauses.append({"meeting_type": query.meeting_type})

    date_range: dict[str, Any] = {}
    if query.start_date:
        date_range["$gte"] = _day_start(query.start_date)
    if query.end_date:
        date_range["$lt"] = _day_start(query.end_date + timedelta(days=1))
    if date_range:
        clauses.append({"recording_start": date_range})

    if query.keyword:
        fields = {
            KEYWORD_SCOPE_SUMMARY: ["summary"],
            KEYWORD_SCOPE_CONTENT: [_CONTENT_FIELD],
            KEYWORD_SCOPE_BOTH: ["summary", _CONTENT_FIELD],
        }.get(query.keyword_scope, ["summary"])
        terms = _keyword_terms(query.keyword, fuzzy=query.fuzzy)
        clauses.append(
            {
                "$or": [
                    {
                        "$and": [
                            {field_name: {"$regex": re.escape(term), "$options": "i"}}
                            for term in terms
                        ],
                    }
                    for field_name in fields
                ],
            },
        )

    if not clauses:
        return {}
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=UTC)


def _sortable_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
    if isinstance(value, str):
        try:
            return _sortable_datetime(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            pass
    return datetime.min.replace(tzinfo=UTC)


def _normalize_recording_start(value: Any) -> datetime | None:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _normalize_meeting_type(value: Any) -> str:
    if isinstance(value, str) and value.strip().lower() in MEETING_TYPES:
        return value.strip().lower()
    return "unknown"


def _normalize_optional_email(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip().lower()


def create_transcript_store(settings: Settings) -> TranscriptStore:
    return _create_transcript_store_cached(
        data_store=settings.data_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_collection_name=settings.mongodb_transcripts_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_transcript_store_cached(
    *,
    data_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> TranscriptStore:
    if data_store == "memory":
        return InMemoryTranscriptStore()

    if data_store == "mongodb":
        return MongoTranscriptStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryTranscriptStore()


def clear_transcript_store_cache() -> None:
    _create_transcript_store_cached.cache_clear()
