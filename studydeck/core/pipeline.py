"""
Flashcard generation pipeline.

Runs the deck creation and card generation flows. Steps execute strictly in
order:

1. Quota check - deck budget, then combined token estimate
2. Deck creation (deck flow only)
3. Card generation - single AI call, capped at max_cards
4. Card insertion - one transaction
5. Ledger charges - tokens, then the deck (deck flow only)

There is no compensation across steps: a failure after the deck is created
leaves the deck in place and the usage uncharged.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import NotFoundError, ValidationError
from .quota import QuotaLedger
from .token_counter import estimate_generated_cards, estimate_tokens
from studydeck.config.loader import GenerationSettings
from studydeck.sdk.openai_client import FlashcardGenerator
from studydeck.storage.models import Deck, FlashcardDraft
from studydeck.storage.repository import StudyRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of generating cards for one deck."""
    flashcards: List[FlashcardDraft] = field(default_factory=list)
    tokens_used: int = 0

    @property
    def count(self) -> int:
        return len(self.flashcards)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "flashcards": [
                {"question": card.question, "answer": card.answer}
                for card in self.flashcards
            ],
            "count": self.count,
            "tokensUsed": self.tokens_used,
        }


@dataclass(frozen=True)
class DeckCreation:
    """A newly created deck and the cards generated for it."""
    deck: Deck
    generation: GenerationResult
    decks_created_this_month: int


class FlashcardPipeline:
    """Coordinates quota checks, generation, persistence and charging."""

    def __init__(
        self,
        repository: StudyRepository,
        ledger: QuotaLedger,
        generator: FlashcardGenerator,
        settings: Optional[GenerationSettings] = None,
    ):
        self.repository = repository
        self.ledger = ledger
        self.generator = generator
        self.settings = settings or GenerationSettings()

    def estimate_request(self, content: str) -> int:
        """Combined pre-generation estimate: input plus the expected card allowance."""
        return estimate_tokens(content) + estimate_generated_cards(
            self.settings.expected_card_count
        )

    def generate_for_deck(self, user_id: str, content: str, deck_id: str) -> GenerationResult:
        """Generate flashcards from ``content`` and add them to a deck.

        Args:
            user_id: Requesting user; must own the deck
            content: Study notes as plain text
            deck_id: Target deck

        Returns:
            GenerationResult with the accepted cards and tokens charged

        Raises:
            ValidationError: If content or deck_id is missing
            NotFoundError: If the deck or the owner's profile does not exist
            QuotaExceededError: If the combined estimate exceeds the token budget
            GenerationFailed: If the AI call fails or returns unusable output
            PersistenceFailed: If the cards or the charge cannot be written
        """
        if not content or not content.strip() or not deck_id:
            raise ValidationError("Content and deckId are required")

        deck = self.repository.get_deck(deck_id)
        if deck is None or deck.user_id != user_id:
            raise NotFoundError("Deck not found")

        profile = self.repository.get_profile(deck.user_id)
        if profile is None:
            raise NotFoundError("User profile not found")

        input_tokens = estimate_tokens(content)
        self.ledger.ensure_can_process(profile, self.estimate_request(content))

        logger.info("Generating flashcards for deck %s (%d input tokens)",
                    deck_id, input_tokens)
        cards = self.generator.generate(content)
        if len(cards) > self.settings.max_cards:
            logger.warning("Capping %d generated cards at %d",
                           len(cards), self.settings.max_cards)
            cards = cards[:self.settings.max_cards]

        if cards:
            self.repository.insert_flashcards(deck_id, cards)

        tokens_used = input_tokens + estimate_generated_cards(len(cards))
        self.ledger.record_tokens_processed(
            deck.user_id, tokens_used, source="text_content", deck_id=deck_id
        )

        return GenerationResult(flashcards=cards, tokens_used=tokens_used)

    def create_deck(
        self,
        user_id: str,
        title: str,
        content: str,
        description: Optional[str] = None,
    ) -> DeckCreation:
        """Create a deck from notes, charging one deck on success.

        Raises:
            ValidationError: If title or content is empty
            QuotaExceededError: If the deck or token budget is used up
            plus everything generate_for_deck raises
        """
        if not title or not title.strip():
            raise ValidationError("Deck title is required")
        if not content or not content.strip():
            raise ValidationError("Provide notes to generate flashcards from")

        self.ledger.ensure_can_create_deck(user_id)
        profile = self.repository.get_profile(user_id)
        if profile is None:
            raise NotFoundError("User profile not found")
        self.ledger.ensure_can_process(profile, self.estimate_request(content))

        deck = self.repository.create_deck(user_id, title.strip(), description)
        logger.info("Created deck %s for %s", deck.id, user_id)

        generation = self.generate_for_deck(user_id, content, deck.id)
        decks_created = self.ledger.record_deck_created(user_id)

        return DeckCreation(
            deck=deck,
            generation=generation,
            decks_created_this_month=decks_created,
        )
