"""
Data models for storage layer.

Defines the persisted entities: profiles, decks, flashcards, study sessions
and usage events.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class Plan(Enum):
    """Subscription status of a profile."""
    FREE = "free"
    PRO = "pro"
    CANCELLED = "cancelled"


class StudyStatus(Enum):
    """Outcome of a single card review."""
    KNOWN = "known"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Profile:
    """User profile with subscription plan and monthly usage counters."""
    id: str
    email: str
    plan: Plan = Plan.FREE
    subscription_id: Optional[str] = None
    decks_created_this_month: int = 0
    tokens_processed_this_month: int = 0

    @property
    def is_pro(self) -> bool:
        return self.plan == Plan.PRO


@dataclass(frozen=True)
class Deck:
    """A named collection of flashcards owned by one user."""
    id: str
    user_id: str
    title: str
    created_at: datetime
    description: Optional[str] = None


@dataclass(frozen=True)
class FlashcardDraft:
    """Question/answer pair that has not been persisted yet."""
    question: str
    answer: str


@dataclass(frozen=True)
class Flashcard:
    """Persisted flashcard belonging to exactly one deck."""
    id: str
    deck_id: str
    question: str
    answer: str
    created_at: datetime


@dataclass(frozen=True)
class StudySession:
    """Immutable record of one card review.

    A card reviewed several times produces several records. Rows are
    append-only and never updated.
    """
    user_id: str
    deck_id: str
    card_id: str
    status: StudyStatus
    created_at: datetime
    id: Optional[int] = None

    @property
    def is_known(self) -> bool:
        return self.status == StudyStatus.KNOWN


@dataclass(frozen=True)
class UsageEvent:
    """Write-only audit record of a metered action."""
    user_id: str
    action_type: str
    created_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
