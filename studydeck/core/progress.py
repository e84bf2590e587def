"""
Progress aggregation over study sessions.

Computes mastery percentage and day streak from the append-only study
session stream. Everything is recomputed from scratch on each call; there is
no incremental state.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Union

from studydeck.storage.models import StudySession, StudyStatus
from studydeck.storage.repository import StudyRepository

Outcome = Union[StudyStatus, bool]


def round_half_up(numerator: int, denominator: int) -> int:
    """Round ``100 * numerator / denominator`` half up using integers only."""
    return (200 * numerator + denominator) // (2 * denominator)


def mastery_percentage(sessions: Sequence[StudySession]) -> int:
    """Share of review outcomes marked known, as a rounded percentage.

    Args:
        sessions: Study sessions for one scope (deck or user)

    Returns:
        Integer in [0, 100]; 0 when there are no sessions
    """
    total = len(sessions)
    if total == 0:
        return 0
    known = sum(1 for session in sessions if session.status == StudyStatus.KNOWN)
    return round_half_up(known, total)


def _local_day(timestamp: datetime) -> date:
    """Calendar day of ``timestamp`` in local time."""
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone()
    return timestamp.date()


def study_streak(sessions: Iterable[StudySession], today: Optional[date] = None) -> int:
    """Count consecutive study days ending today.

    Distinct session days are walked newest first, expecting ``today`` and
    then each previous day. A day earlier than the expected one ends the
    walk, so if the latest session is from yesterday the streak is 0.

    Args:
        sessions: Study sessions for one user
        today: Reference day (defaults to the local current date)

    Returns:
        Number of consecutive qualifying days, including today
    """
    expected = today or date.today()
    days = sorted({_local_day(session.created_at) for session in sessions}, reverse=True)

    streak = 0
    for day in days:
        if day == expected:
            streak += 1
            expected -= timedelta(days=1)
        elif day < expected:
            break
    return streak


@dataclass(frozen=True)
class SessionScore:
    """Scoreboard of a single study run."""
    known: int
    unknown: int
    current_streak: int
    best_streak: int

    @property
    def reviewed(self) -> int:
        return self.known + self.unknown

    @property
    def accuracy(self) -> float:
        """Percentage of known answers, 0.0 before any known answer."""
        if self.known == 0:
            return 0.0
        return self.known / self.reviewed * 100


def _is_known(outcome: Outcome) -> bool:
    if isinstance(outcome, StudyStatus):
        return outcome == StudyStatus.KNOWN
    return bool(outcome)


def score_session(outcomes: Iterable[Outcome]) -> SessionScore:
    """Fold a run's outcomes, in answer order, into a SessionScore."""
    known = unknown = current = best = 0
    for outcome in outcomes:
        if _is_known(outcome):
            known += 1
            current += 1
            best = max(best, current)
        else:
            unknown += 1
            current = 0
    return SessionScore(known=known, unknown=unknown, current_streak=current, best_streak=best)


@dataclass(frozen=True)
class DeckStats:
    """Card count and mastery of one deck."""
    card_count: int
    mastery_percentage: int


@dataclass(frozen=True)
class UserStats:
    """Dashboard statistics of one user."""
    study_streak: int
    mastery_percentage: int
    total_reviews: int
    deck_count: int


class ProgressService:
    """Reads study sessions from the store and aggregates them."""

    def __init__(self, repository: StudyRepository):
        self.repository = repository

    def deck_stats(self, deck_id: str) -> DeckStats:
        sessions = self.repository.list_study_sessions(deck_id=deck_id)
        return DeckStats(
            card_count=self.repository.count_flashcards(deck_id),
            mastery_percentage=mastery_percentage(sessions),
        )

    def user_stats(self, user_id: str, today: Optional[date] = None) -> UserStats:
        sessions: List[StudySession] = self.repository.list_study_sessions(user_id=user_id)
        return UserStats(
            study_streak=study_streak(sessions, today=today),
            mastery_percentage=mastery_percentage(sessions),
            total_reviews=len(sessions),
            deck_count=len(self.repository.list_decks(user_id)),
        )
