"""
Study session recording.

Appends one immutable review outcome per answered card. Failures are raised
as RecordingFailed instead of being dropped, so callers can retry or alert.
"""

import logging
import sqlite3
from typing import Union

from .errors import RecordingFailed, StudyDeckError
from studydeck.storage.models import Flashcard, StudySession, StudyStatus
from studydeck.storage.repository import StudyRepository

logger = logging.getLogger(__name__)

CardRef = Union[str, int]


def to_status(outcome: Union[StudyStatus, bool, str]) -> StudyStatus:
    """Normalize a known/unknown outcome given as enum, bool or string."""
    if isinstance(outcome, StudyStatus):
        return outcome
    if isinstance(outcome, bool):
        return StudyStatus.KNOWN if outcome else StudyStatus.UNKNOWN
    try:
        return StudyStatus(outcome)
    except ValueError:
        raise RecordingFailed(f"Invalid study status: {outcome!r}")


class StudyRecorder:
    """Records per-card review outcomes for a user."""

    def __init__(self, repository: StudyRepository):
        self.repository = repository

    def _resolve_card(self, deck_id: str, card: CardRef) -> Flashcard:
        """Resolve a card id, or a position in the deck's newest-first list."""
        if isinstance(card, bool):
            raise RecordingFailed(f"Invalid card reference: {card!r}")

        if isinstance(card, int):
            cards = self.repository.list_flashcards(deck_id)
            if not 0 <= card < len(cards):
                raise RecordingFailed(
                    f"Card index {card} out of range for deck {deck_id} ({len(cards)} cards)"
                )
            return cards[card]

        flashcard = self.repository.get_flashcard(card)
        if flashcard is None or flashcard.deck_id != deck_id:
            raise RecordingFailed(f"Card {card} not found in deck {deck_id}")
        return flashcard

    def record_outcome(
        self,
        user_id: str,
        deck_id: str,
        card: CardRef,
        status: Union[StudyStatus, bool, str],
    ) -> StudySession:
        """Append one review outcome.

        Args:
            user_id: Reviewing user; must own the deck
            deck_id: Deck being studied
            card: Flashcard id, or index into the deck's newest-first cards
            status: Known/unknown outcome

        Returns:
            The persisted study session

        Raises:
            RecordingFailed: If the deck or card cannot be resolved, the deck
                belongs to another user, or the write fails
        """
        resolved_status = to_status(status)
        try:
            deck = self.repository.get_deck(deck_id)
            if deck is None or deck.user_id != user_id:
                raise RecordingFailed(f"Deck {deck_id} not found for user {user_id}")

            flashcard = self._resolve_card(deck_id, card)
            return self.repository.insert_study_session(
                user_id=user_id,
                deck_id=deck_id,
                card_id=flashcard.id,
                status=resolved_status,
            )
        except RecordingFailed as e:
            logger.warning("Study outcome not recorded: %s", e.message)
            raise
        except (sqlite3.Error, StudyDeckError) as e:
            logger.error("Error saving study session for deck %s: %s", deck_id, e)
            raise RecordingFailed(f"Failed to save study session: {e}") from e
