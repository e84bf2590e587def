"""
Per-user monthly quota ledger.

Tracks decks created and tokens processed against plan limits and gates deck
creation and content processing.

Enforcement:
1. Deck creation - blocked once the monthly deck budget is used up
2. Content processing - blocked when current usage plus the combined
   pre-generation estimate would exceed the monthly token budget
"""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Optional

from .errors import NotFoundError, QuotaExceededError, StudyDeckError
from studydeck.config.loader import PlanConfig, PlanLimits
from studydeck.storage.models import Plan, Profile
from studydeck.storage.repository import StudyRepository

logger = logging.getLogger(__name__)

DECK_CREATED = "deck_created"
TOKENS_PROCESSED = "tokens_processed"


@dataclass(frozen=True)
class UsageLimits:
    """Result of a limit check. Remaining values are None when unbounded."""
    can_create_deck: bool
    can_process_tokens: bool
    decks_remaining: Optional[int]
    tokens_remaining: Optional[int]
    plan: Plan

    def to_dict(self) -> dict:
        return {
            "canCreateDeck": self.can_create_deck,
            "canProcessTokens": self.can_process_tokens,
            "decksRemaining": self.decks_remaining,
            "tokensRemaining": self.tokens_remaining,
            "plan": self.plan.value,
        }


# Returned whenever the profile cannot be read.
CLOSED_LIMITS = UsageLimits(
    can_create_deck=False,
    can_process_tokens=False,
    decks_remaining=0,
    tokens_remaining=0,
    plan=Plan.FREE,
)


@dataclass(frozen=True)
class UsageStats:
    """Current monthly counters of a profile."""
    decks_created_this_month: int
    tokens_processed_this_month: int
    plan: Plan


def limits_for_plan(plan: Plan, plans: PlanConfig) -> PlanLimits:
    """Limits that apply to ``plan``; cancelled subscriptions fall back to free."""
    return plans.pro if plan == Plan.PRO else plans.free


def _remaining(limit: Optional[int], used: int) -> Optional[int]:
    if limit is None:
        return None
    return max(0, limit - used)


def _within(limit: Optional[int], used: int) -> bool:
    return limit is None or used < limit


def compute_limits(profile: Profile, plans: Optional[PlanConfig] = None) -> UsageLimits:
    """Compute a profile's limit flags and remaining budgets.

    Args:
        profile: Profile with plan and monthly counters
        plans: Plan limits (defaults: free 5 decks / 50k tokens, pro unbounded)

    Returns:
        UsageLimits for the profile
    """
    limits = limits_for_plan(profile.plan, plans or PlanConfig())
    decks_used = profile.decks_created_this_month
    tokens_used = profile.tokens_processed_this_month

    return UsageLimits(
        can_create_deck=_within(limits.monthly_deck_limit, decks_used),
        can_process_tokens=_within(limits.monthly_token_limit, tokens_used),
        decks_remaining=_remaining(limits.monthly_deck_limit, decks_used),
        tokens_remaining=_remaining(limits.monthly_token_limit, tokens_used),
        plan=profile.plan,
    )


def format_token_usage(
    tokens_used: int, plan: Plan, plans: Optional[PlanConfig] = None
) -> str:
    """Human-readable token usage, e.g. ``"1,234/50,000 tokens"``."""
    limit = limits_for_plan(plan, plans or PlanConfig()).monthly_token_limit
    if limit is None:
        return f"{tokens_used:,} tokens (unlimited)"
    return f"{tokens_used:,}/{limit:,} tokens"


class QuotaLedger:
    """Reads and charges per-user monthly usage counters.

    The ledger is the only writer of the monthly counters. Every charge is an
    atomic increment at the store, paired with a usage event.
    """

    def __init__(self, repository: StudyRepository, plans: Optional[PlanConfig] = None):
        self.repository = repository
        self.plans = plans or PlanConfig()

    def check_limits(self, user_id: str) -> UsageLimits:
        """Check a user's limits, failing closed.

        If the profile is missing or cannot be read, every flag is False and
        every remaining value is 0.
        """
        try:
            profile = self.repository.get_profile(user_id)
        except (sqlite3.Error, StudyDeckError) as e:
            logger.error("Error checking usage limits for %s: %s", user_id, e)
            return CLOSED_LIMITS

        if profile is None:
            logger.warning("No profile found for %s, limits closed", user_id)
            return CLOSED_LIMITS

        return compute_limits(profile, self.plans)

    def get_usage_stats(self, user_id: str) -> Optional[UsageStats]:
        profile = self.repository.get_profile(user_id)
        if profile is None:
            return None
        return UsageStats(
            decks_created_this_month=profile.decks_created_this_month,
            tokens_processed_this_month=profile.tokens_processed_this_month,
            plan=profile.plan,
        )

    def ensure_can_create_deck(self, user_id: str) -> UsageLimits:
        """Raise QuotaExceededError unless the user may create another deck.

        Raises:
            NotFoundError: If the profile does not exist
            QuotaExceededError: If the monthly deck budget is used up
        """
        profile = self.repository.get_profile(user_id)
        if profile is None:
            raise NotFoundError("User profile not found")

        limits = compute_limits(profile, self.plans)
        if not limits.can_create_deck:
            limit = limits_for_plan(profile.plan, self.plans).monthly_deck_limit
            logger.info("Deck limit reached for %s (%s decks)",
                        user_id, profile.decks_created_this_month)
            raise QuotaExceededError(
                "Monthly deck limit reached. Upgrade to Pro for unlimited decks.",
                resource="decks",
                used=profile.decks_created_this_month,
                limit=limit,
                remaining=0,
                requested=1,
            )
        return limits

    def ensure_can_process(self, profile: Profile, estimated_tokens: int) -> None:
        """Raise QuotaExceededError if the estimate would exceed the token budget.

        The check uses current usage plus the full pre-generation estimate,
        not current usage alone.
        """
        limit = limits_for_plan(profile.plan, self.plans).monthly_token_limit
        if limit is None:
            return

        used = profile.tokens_processed_this_month
        if used + estimated_tokens > limit:
            logger.info("Token limit reached for %s: %s used + %s estimated > %s",
                        profile.id, used, estimated_tokens, limit)
            raise QuotaExceededError(
                "Token usage limit reached for this month",
                resource="tokens",
                used=used,
                limit=limit,
                remaining=max(0, limit - used),
                requested=estimated_tokens,
            )

    def record_deck_created(self, user_id: str) -> int:
        """Charge one deck creation; returns the new monthly deck count.

        Call exactly once per successful deck creation.
        """
        return self.repository.increment_usage(user_id, DECK_CREATED, 1)

    def record_tokens_processed(self, user_id: str, amount: int, **metadata: Any) -> int:
        """Charge ``amount`` tokens; returns the new monthly token count.

        Raises:
            ValueError: If amount is negative
        """
        if amount < 0:
            raise ValueError("amount must be >= 0")
        return self.repository.increment_usage(
            user_id, TOKENS_PROCESSED, amount, {"token_count": amount, **metadata}
        )
