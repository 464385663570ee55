from datetime import UTC, date, datetime

from app.services.transcript_store import (
    InMemoryTranscriptStore,
    TranscriptQuery,
    _build_mongo_filter,
    build_transcript_document,
)


def test_build_transcript_document_parses_iso_recording_start() -> None:
    document = build_transcript_document({"id": 1, "recording_start": "2024-03-01T10:00:00Z"})

    assert document["recording_start"] == datetime(2024, 3, 1, 10, 0, tzinfo=UTC)


def test_build_transcript_document_normalizes_naive_and_invalid_recording_start() -> None:
    naive = build_transcript_document({"id": 2, "recording_start": datetime(2024, 3, 2, 8, 0)})
    invalid = build_transcript_document({"id": 3, "recording_start": "yesterday"})
    missing = build_transcript_document({"id": 4})

    assert naive["recording_start"] == datetime(2024, 3, 2, 8, 0, tzinfo=UTC)
    assert invalid["recording_start"] is None
    assert missing["recording_start"] is None


def test_iso_recording_start_is_filtered_and_ordered_as_datetime() -> None:
    store = InMemoryTranscriptStore()
    store.save({"id": 10, "recording_start": "2024-03-01T10:00:00Z", "verified_participant_emails": ["a@co.example"]})
    store.save(
        {
            "id": 11,
            "recording_start": datetime(2024, 3, 5, 9, 0, tzinfo=UTC),
            "verified_participant_emails": ["a@co.example"],
        },
    )
    query = TranscriptQuery(participant_email="a@co.example", start_date=date(2024, 3, 1), end_date=date(2024, 3, 1))

    assert [record["id"] for record in store.find(query, offset=0, limit=10)] == [10]
    assert [
        record["id"]
        for record in store.find(TranscriptQuery(participant_email="a@co.example"), offset=0, limit=10)
    ] == [11, 10]
    assert isinstance(store.get_by_id(10)["recording_start"], datetime)


def test_mongo_date_filter_uses_datetime_bounds() -> None:
    mongo_filter = _build_mongo_filter(TranscriptQuery(start_date=date(2024, 3, 1), end_date=date(2024, 3, 1)))

    assert mongo_filter == {
        "recording_start": {
            "$gte": datetime(2024, 3, 1, tzinfo=UTC),
            "$lt": datetime(2024, 3, 2, tzinfo=UTC),
        },
    }
