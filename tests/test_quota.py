"""
Unit tests for the quota ledger.

Tests plan limit computation, fail-closed checks, enforcement and atomic
counter charging.
"""

import os
import sqlite3
import tempfile
from unittest.mock import Mock

import pytest

from studydeck.config.loader import PlanConfig, PlanLimits
from studydeck.core.errors import NotFoundError, QuotaExceededError
from studydeck.core.quota import (
    CLOSED_LIMITS,
    QuotaLedger,
    compute_limits,
    format_token_usage,
)
from studydeck.storage.models import Plan, Profile
from studydeck.storage.repository import StudyRepository, initialize_schema


def make_profile(plan=Plan.FREE, decks=0, tokens=0) -> Profile:
    return Profile(
        id="user-1",
        email="student@example.com",
        plan=plan,
        decks_created_this_month=decks,
        tokens_processed_this_month=tokens,
    )


class TestComputeLimits:
    """Test pure limit computation."""

    def test_free_plan_below_deck_limit(self):
        limits = compute_limits(make_profile(decks=4))
        assert limits.can_create_deck is True
        assert limits.decks_remaining == 1

    def test_free_plan_at_deck_limit(self):
        limits = compute_limits(make_profile(decks=5))
        assert limits.can_create_deck is False
        assert limits.decks_remaining == 0

    def test_free_plan_over_deck_limit_remaining_is_zero(self):
        limits = compute_limits(make_profile(decks=9))
        assert limits.can_create_deck is False
        assert limits.decks_remaining == 0

    def test_free_plan_tokens(self):
        below = compute_limits(make_profile(tokens=49_999))
        assert below.can_process_tokens is True
        assert below.tokens_remaining == 1

        at_limit = compute_limits(make_profile(tokens=50_000))
        assert at_limit.can_process_tokens is False
        assert at_limit.tokens_remaining == 0

    def test_fresh_free_profile(self):
        limits = compute_limits(make_profile())
        assert limits.decks_remaining == 5
        assert limits.tokens_remaining == 50_000
        assert limits.plan == Plan.FREE

    def test_pro_plan_is_unbounded(self):
        """Pro passes every check regardless of counters."""
        limits = compute_limits(make_profile(plan=Plan.PRO, decks=500, tokens=10**9))
        assert limits.can_create_deck is True
        assert limits.can_process_tokens is True
        assert limits.decks_remaining is None
        assert limits.tokens_remaining is None
        assert limits.plan == Plan.PRO

    def test_cancelled_plan_is_limited_like_free(self):
        limits = compute_limits(make_profile(plan=Plan.CANCELLED, decks=5))
        assert limits.can_create_deck is False
        assert limits.plan == Plan.CANCELLED

    def test_custom_plan_limits(self):
        plans = PlanConfig(free=PlanLimits(monthly_deck_limit=2, monthly_token_limit=100))
        limits = compute_limits(make_profile(decks=1, tokens=40), plans)
        assert limits.decks_remaining == 1
        assert limits.tokens_remaining == 60

    def test_to_dict(self):
        body = compute_limits(make_profile(decks=4)).to_dict()
        assert body == {
            "canCreateDeck": True,
            "canProcessTokens": True,
            "decksRemaining": 1,
            "tokensRemaining": 50_000,
            "plan": "free",
        }


class TestFormatTokenUsage:
    """Test usage display text."""

    def test_free_plan(self):
        assert format_token_usage(1234, Plan.FREE) == "1,234/50,000 tokens"

    def test_pro_plan(self):
        assert format_token_usage(1234, Plan.PRO) == "1,234 tokens (unlimited)"


class TestQuotaLedger:
    """Test ledger checks and charges against a real database."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repository = StudyRepository(self.db_path)
        self.ledger = QuotaLedger(self.repository)

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_check_limits_reads_profile(self):
        self.repository.create_profile("user-1", "a@example.com", decks_created_this_month=4)
        limits = self.ledger.check_limits("user-1")
        assert limits.can_create_deck is True
        assert limits.decks_remaining == 1

    def test_check_limits_missing_profile_fails_closed(self):
        assert self.ledger.check_limits("missing") == CLOSED_LIMITS

    def test_check_limits_store_error_fails_closed(self):
        repository = Mock()
        repository.get_profile.side_effect = sqlite3.OperationalError("disk I/O error")
        ledger = QuotaLedger(repository)

        limits = ledger.check_limits("user-1")

        assert limits.can_create_deck is False
        assert limits.can_process_tokens is False
        assert limits.decks_remaining == 0
        assert limits.tokens_remaining == 0

    def test_check_limits_is_idempotent(self):
        self.repository.create_profile("user-1", "a@example.com", tokens_processed_this_month=10)
        assert self.ledger.check_limits("user-1") == self.ledger.check_limits("user-1")
        assert self.repository.get_profile("user-1").tokens_processed_this_month == 10

    def test_record_deck_created(self):
        self.repository.create_profile("user-1", "a@example.com")

        assert self.ledger.record_deck_created("user-1") == 1
        assert self.ledger.record_deck_created("user-1") == 2

        events = self.repository.list_usage_events("user-1")
        assert [event.action_type for event in events] == ["deck_created", "deck_created"]

    def test_record_tokens_processed(self):
        self.repository.create_profile("user-1", "a@example.com", tokens_processed_this_month=5)

        total = self.ledger.record_tokens_processed("user-1", 100, source="text_content")

        assert total == 105
        assert self.repository.get_profile("user-1").tokens_processed_this_month == 105
        events = self.repository.list_usage_events("user-1")
        assert len(events) == 1
        assert events[0].action_type == "tokens_processed"
        assert events[0].metadata["token_count"] == 100
        assert events[0].metadata["source"] == "text_content"
        assert "timestamp" in events[0].metadata

    def test_record_zero_tokens(self):
        self.repository.create_profile("user-1", "a@example.com")
        assert self.ledger.record_tokens_processed("user-1", 0) == 0

    def test_record_negative_tokens_rejected(self):
        self.repository.create_profile("user-1", "a@example.com")
        with pytest.raises(ValueError, match="amount"):
            self.ledger.record_tokens_processed("user-1", -1)
        assert self.repository.list_usage_events("user-1") == []

    def test_record_for_missing_profile(self):
        with pytest.raises(NotFoundError):
            self.ledger.record_deck_created("missing")
        assert self.repository.list_usage_events("missing") == []

    def test_increments_do_not_lose_updates(self):
        """Two ledgers working from the same stale read both count."""
        self.repository.create_profile("user-1", "a@example.com", tokens_processed_this_month=10)
        other_ledger = QuotaLedger(StudyRepository(self.db_path))

        stale = self.repository.get_profile("user-1")
        self.ledger.record_tokens_processed(stale.id, 20)
        other_ledger.record_tokens_processed(stale.id, 30)

        assert self.repository.get_profile("user-1").tokens_processed_this_month == 60

    def test_ensure_can_create_deck(self):
        self.repository.create_profile("user-1", "a@example.com", decks_created_this_month=4)
        limits = self.ledger.ensure_can_create_deck("user-1")
        assert limits.decks_remaining == 1

    def test_ensure_can_create_deck_at_limit(self):
        self.repository.create_profile("user-1", "a@example.com", decks_created_this_month=5)
        with pytest.raises(QuotaExceededError) as exc_info:
            self.ledger.ensure_can_create_deck("user-1")
        assert exc_info.value.resource == "decks"
        assert exc_info.value.remaining == 0
        assert exc_info.value.status_code == 429

    def test_ensure_can_create_deck_missing_profile(self):
        with pytest.raises(NotFoundError):
            self.ledger.ensure_can_create_deck("missing")


class TestEnsureCanProcess:
    """Test the combined token estimate check."""

    def setup_method(self):
        self.ledger = QuotaLedger(Mock())

    def test_combined_estimate_exceeding_limit_is_rejected(self):
        """Current usage is below the limit but usage + estimate is not."""
        profile = make_profile(tokens=49_990)
        assert compute_limits(profile).can_process_tokens is True

        with pytest.raises(QuotaExceededError) as exc_info:
            self.ledger.ensure_can_process(profile, 15 + 250)

        error = exc_info.value
        assert error.resource == "tokens"
        assert error.used == 49_990
        assert error.limit == 50_000
        assert error.remaining == 10
        assert error.requested == 265
        assert error.to_dict()["remaining"] == 10

    def test_estimate_reaching_limit_exactly_is_allowed(self):
        self.ledger.ensure_can_process(make_profile(tokens=49_990), 10)

    def test_pro_is_never_rejected(self):
        self.ledger.ensure_can_process(make_profile(plan=Plan.PRO, tokens=10**9), 10**6)
