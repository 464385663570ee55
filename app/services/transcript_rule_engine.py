from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any

from app.core.config import Settings, get_settings
from app.services.team_store import RULE_TYPE_SUMMARY_TOPIC_EXACT, TeamStore, create_team_store
from app.services.transcript_share_service import TranscriptShareService

logger = logging.getLogger(__name__)

# Matches "Topic:", "**Topic:**", "- Topic:" and "## Topic:" style markers.
_TOPIC_MARKER_PATTERN = re.compile(
    r"^[\s#>*_\-]*topic[*_]*\s*:[*_]*\s*(?P<topic>.*)$",
    re.IGNORECASE,
)
_EMPHASIS_CHARACTERS = "*_` "


def extract_summary_topic(summary: str | None) -> str | None:
    """Return the meeting topic line of a generated summary.

    The text following the first ``Topic:`` marker wins; when the marker sits
    alone on its line the next non-empty line is used. Without a marker the
    first non-empty line of the summary is the topic.
    """
    if not summary:
        return None
    lines = [line.strip() for line in summary.splitlines()]
    for index, line in enumerate(lines):
        match = _TOPIC_MARKER_PATTERN.match(line)
        if not match:
            continue
        topic = _clean_topic(match.group("topic"))
        if topic:
            return topic
        for following_line in lines[index + 1 :]:
            topic = _clean_topic(following_line)
            if topic:
                return topic
        return None

    for line in lines:
        topic = _clean_topic(line)
        if topic:
            return topic
    return None


def topic_matches_rule(topic: str | None, rule_value: str) -> bool:
    if not topic:
        return False
    return topic.strip().casefold() == rule_value.strip().casefold()


def _clean_topic(value: str) -> str:
    return value.strip().strip(_EMPHASIS_CHARACTERS).lstrip("#").strip()


class TranscriptRuleEngine:
    """Materializes team shares for transcripts matching auto-share rules.

    Runs on the transcript listing path, so a rule created after a transcript
    was last listed only takes effect the next time an eligible user lists it.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        team_store: TeamStore | None = None,
        share_service: TranscriptShareService | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.team_store = team_store or create_team_store(self.settings)
        self.share_service = share_service or TranscriptShareService(
            self.settings,
            team_store=self.team_store,
        )

    def evaluate_rules(self, transcripts: Sequence[Mapping[str, Any]], actor_email: str) -> int:
        if not transcripts:
            return 0
        team_ids = sorted(
            {
                str(membership.get("team_id", "")).strip()
                for membership in self.team_store.list_memberships_for_email(actor_email)
                if str(membership.get("team_id", "")).strip()
            },
        )
        if not team_ids:
            return 0
        rules = self.team_store.list_enabled_rules_for_teams(
            team_ids,
            rule_type=RULE_TYPE_SUMMARY_TOPIC_EXACT,
        )
        if not rules:
            return 0

        created_count = 0
        for transcript in transcripts:
            topic = extract_summary_topic(transcript.get("summary"))
            if not topic:
                continue
            for rule in rules:
                if not topic_matches_rule(topic, str(rule.get("value", ""))):
                    continue
                created = self.share_service.share_to_team(
                    str(rule.get("team_id", "")),
                    int(transcript["id"]),
                    actor_email,
                )
                if created:
                    created_count += 1
                    logger.info(
                        "Auto-share rule matched rule_id=%s team_id=%s transcript_id=%s",
                        rule.get("_id"),
                        rule.get("team_id"),
                        transcript["id"],
                    )
        return created_count
