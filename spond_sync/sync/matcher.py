"""
Fuzzy event matching between the local database and Spond.

Until an event has been synced once, the two systems share no
identifier. The matcher scores how likely a local and a remote event
describe the same occurrence using three signals:
- Time proximity of the start times (dominant)
- Team / group name similarity
- Location similarity

Scores are integers from 0 to 100. Matches are only ever used to warn
about probable duplicates, never to merge events.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from rapidfuzz import fuzz

from spond_sync.sync.event import LocalEvent, RemoteEvent
from spond_sync.utils.normalization import normalize_string

logger = logging.getLogger(__name__)

# Separate logger for per-comparison decisions (see utils.logging)
matching_logger = logging.getLogger("spond_sync.matching")


class MatchBand(Enum):
    """Presentation band of a match score."""

    HIGH = "high"  # >= 80
    LIKELY = "likely"  # 60-79
    POSSIBLE = "possible"  # floor-59


# Sub-score weights, summing to 1.0
TIME_WEIGHT = 0.60
TEAM_WEIGHT = 0.25
LOCATION_WEIGHT = 0.15

# Start times this close get full time credit
FULL_CREDIT_MINUTES = 30

# A sub-score at or above this is listed as a reason
REASON_THRESHOLD = 0.5

HIGH_BAND_SCORE = 80
LIKELY_BAND_SCORE = 60

DEFAULT_TIME_WINDOW_MINUTES = 180
DEFAULT_MATCH_FLOOR = 40

# rapidfuzz ratios (0-100) below these earn no credit
TEAM_RATIO_THRESHOLD = 85
LOCATION_RATIO_THRESHOLD = 90

# Credit for one normalized string containing the other
SUBSTRING_CREDIT = 0.8


@dataclass
class MatchConfig:
    """Configuration for the event matcher."""

    # Start-time difference (minutes) at which time credit reaches zero
    time_window_minutes: int = DEFAULT_TIME_WINDOW_MINUTES

    # Scores below this produce no candidate
    floor: int = DEFAULT_MATCH_FLOOR


@dataclass
class MatchScore:
    """Similarity of one local/remote pair."""

    score: int
    reasons: list[str] = field(default_factory=list)


@dataclass
class MatchCandidate:
    """
    A probable local/remote duplicate found during one run.

    Only the best candidate above the floor is kept per event.
    """

    local: LocalEvent
    remote: RemoteEvent
    score: int
    reasons: list[str] = field(default_factory=list)

    @property
    def band(self) -> MatchBand:
        return band_for(self.score)

    def to_dict(self) -> dict:
        return {
            "localEventId": self.local.id,
            "localTitle": self.local.heading,
            "localStartTime": self.local.start.isoformat(),
            "spondId": self.remote.id,
            "spondHeading": self.remote.heading,
            "spondStartTime": self.remote.start.isoformat(),
            "score": self.score,
            "band": self.band.value,
            "reasons": list(self.reasons),
        }


def band_for(score: int) -> MatchBand:
    if score >= HIGH_BAND_SCORE:
        return MatchBand.HIGH
    if score >= LIKELY_BAND_SCORE:
        return MatchBand.LIKELY
    return MatchBand.POSSIBLE


class EventMatcher:
    """
    Scores local events against remote events.

    The matcher knows which Spond groups each team is linked to and
    what each team is called, so a remote event addressed to a team's
    linked group earns full team credit even when the names differ.

    Usage:
        matcher = EventMatcher(team_groups={1: {"G1"}}, team_names={1: "Lions"})
        result = matcher.score(local_event, remote_event)
        candidate = matcher.best_remote_match(local_event, remote_events)
    """

    def __init__(
        self,
        config: Optional[MatchConfig] = None,
        team_groups: Optional[dict[int, set[str]]] = None,
        team_names: Optional[dict[int, str]] = None,
    ):
        self.config = config or MatchConfig()
        self.team_groups = team_groups or {}
        self.team_names = team_names or {}

    def score(self, local: LocalEvent, remote: RemoteEvent) -> MatchScore:
        """
        Score how likely two events are the same occurrence.

        Pure: identical inputs always give an identical result.
        """
        sub_scores = [
            ("time", self._time_score(local, remote), TIME_WEIGHT),
            ("team", self._team_score(local, remote), TEAM_WEIGHT),
            ("location", self._location_score(local, remote), LOCATION_WEIGHT),
        ]
        weighted = sum(value * weight for _, value, weight in sub_scores)
        reasons = [name for name, value, _ in sub_scores if value >= REASON_THRESHOLD]
        return MatchScore(score=int(round(100 * weighted)), reasons=reasons)

    def best_remote_match(
        self, local: LocalEvent, remotes: list[RemoteEvent]
    ) -> Optional[MatchCandidate]:
        """Highest-scoring remote event above the floor, if any."""
        best: Optional[MatchCandidate] = None
        for remote in remotes:
            result = self.score(local, remote)
            if result.score < self.config.floor:
                continue
            if best is None or result.score > best.score:
                best = MatchCandidate(local, remote, result.score, result.reasons)

        self._log_decision(local.heading, best)
        return best

    def best_local_match(
        self, remote: RemoteEvent, locals_: list[LocalEvent]
    ) -> Optional[MatchCandidate]:
        """Highest-scoring local event above the floor, if any."""
        best: Optional[MatchCandidate] = None
        for local in locals_:
            result = self.score(local, remote)
            if result.score < self.config.floor:
                continue
            if best is None or result.score > best.score:
                best = MatchCandidate(local, remote, result.score, result.reasons)

        self._log_decision(remote.heading, best)
        return best

    # =========================================================================
    # Sub-scores (each 0.0 to 1.0)
    # =========================================================================

    def _time_score(self, local: LocalEvent, remote: RemoteEvent) -> float:
        minutes = abs((local.start - remote.start).total_seconds()) / 60.0
        if minutes <= FULL_CREDIT_MINUTES:
            return 1.0

        window = self.config.time_window_minutes
        if window <= FULL_CREDIT_MINUTES or minutes >= window:
            return 0.0
        return (window - minutes) / (window - FULL_CREDIT_MINUTES)

    def _team_score(self, local: LocalEvent, remote: RemoteEvent) -> float:
        if local.team_id is None:
            return 0.0

        for group_id in self.team_groups.get(local.team_id, ()):
            if remote.targets_group(group_id):
                return 1.0

        team_name = self.team_names.get(local.team_id)
        return max(
            (
                _name_similarity(team_name, group_name, TEAM_RATIO_THRESHOLD, True)
                for group_name in remote.group_names()
            ),
            default=0.0,
        )

    def _location_score(self, local: LocalEvent, remote: RemoteEvent) -> float:
        return _name_similarity(
            local.location, remote.location, LOCATION_RATIO_THRESHOLD, False
        )

    def _log_decision(self, subject: str, best: Optional[MatchCandidate]) -> None:
        if best is None:
            matching_logger.debug(f"No candidate above {self.config.floor} for '{subject}'")
            return
        matching_logger.debug(
            f"'{best.local.heading}' ({best.local.start.isoformat()}) ~ "
            f"'{best.remote.heading}' ({best.remote.start.isoformat()}): "
            f"score={best.score} band={best.band.value} "
            f"reasons={','.join(best.reasons) or '-'}"
        )


def _name_similarity(
    first: Optional[str], second: Optional[str], threshold: int, token_set: bool
) -> float:
    """
    Similarity of two names.

    Equal after normalization scores 1.0, containment 0.8, otherwise
    the rapidfuzz ratio when it clears the threshold.
    """
    a = normalize_string(first, remove_spaces=False)
    b = normalize_string(second, remove_spaces=False)
    if not a or not b:
        return 0.0

    compact_a = a.replace(" ", "")
    compact_b = b.replace(" ", "")
    if compact_a == compact_b:
        return 1.0
    if compact_a in compact_b or compact_b in compact_a:
        return SUBSTRING_CREDIT

    ratio = fuzz.token_set_ratio(a, b) if token_set else fuzz.ratio(a, b)
    if ratio >= threshold:
        return ratio / 100.0
    return 0.0
