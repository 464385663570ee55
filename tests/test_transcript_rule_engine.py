from app.core.config import Settings
from app.services.team_store import RULE_TYPE_SUMMARY_TOPIC_EXACT, InMemoryTeamStore
from app.services.transcript_rule_engine import (
    TranscriptRuleEngine,
    extract_summary_topic,
    topic_matches_rule,
)
from app.services.transcript_share_service import TranscriptShareService
from app.services.transcript_share_store import InMemoryTranscriptShareStore


def test_extract_summary_topic_variants() -> None:
    assert extract_summary_topic("Topic: Weekly Sync\nNotes follow.") == "Weekly Sync"
    assert extract_summary_topic("Intro line\n**Topic:** Planning  ") == "Planning"
    assert extract_summary_topic("## Topic:\n\n  Roadmap review\nMore") == "Roadmap review"
    assert extract_summary_topic("\n\nQuarterly kickoff\nDetails") == "Quarterly kickoff"
    assert extract_summary_topic("") is None
    assert extract_summary_topic(None) is None


def test_topic_matching_is_exact_and_case_insensitive() -> None:
    assert topic_matches_rule("Weekly Sync", "weekly sync") is True
    assert topic_matches_rule("Weekly Sync", "  WEEKLY SYNC ") is True
    assert topic_matches_rule("Weekly Sync", "Sync") is False
    assert topic_matches_rule("Weekly Sync Extended", "Weekly Sync") is False
    assert topic_matches_rule(None, "Weekly Sync") is False


def _build_engine() -> tuple[TranscriptRuleEngine, InMemoryTeamStore, InMemoryTranscriptShareStore]:
    settings = Settings(data_store="memory")
    team_store = InMemoryTeamStore()
    share_store = InMemoryTranscriptShareStore()
    share_service = TranscriptShareService(settings, team_store=team_store, share_store=share_store)
    engine = TranscriptRuleEngine(settings, team_store=team_store, share_service=share_service)
    return engine, team_store, share_store


def test_evaluate_rules_shares_matching_transcripts_once() -> None:
    engine, team_store, share_store = _build_engine()
    team = team_store.create_team_with_owner(name="Platform", created_by_email="alice@co.example")
    team_store.create_rule(
        team_id=team["_id"],
        rule_type=RULE_TYPE_SUMMARY_TOPIC_EXACT,
        value="Weekly Sync",
        created_by_email="alice@co.example",
    )
    transcripts = [
        {"id": 1, "summary": "Topic: weekly sync"},
        {"id": 2, "summary": "Topic: Hiring"},
        {"id": 3, "summary": None},
    ]

    first_run = engine.evaluate_rules(transcripts, "alice@co.example")
    second_run = engine.evaluate_rules(transcripts, "alice@co.example")

    assert first_run == 1
    assert second_run == 0
    shares = share_store.list_team_shares([team["_id"]])
    assert [(share["transcript_id"], share["created_by_email"]) for share in shares] == [
        (1, "alice@co.example"),
    ]


def test_evaluate_rules_ignores_teams_the_actor_is_not_in() -> None:
    engine, team_store, share_store = _build_engine()
    team = team_store.create_team_with_owner(name="Sales", created_by_email="carol@co.example")
    team_store.create_rule(
        team_id=team["_id"],
        rule_type=RULE_TYPE_SUMMARY_TOPIC_EXACT,
        value="Pipeline",
        created_by_email="carol@co.example",
    )

    created = engine.evaluate_rules([{"id": 7, "summary": "Topic: Pipeline"}], "alice@co.example")

    assert created == 0
    assert share_store.list_team_shares([team["_id"]]) == []
