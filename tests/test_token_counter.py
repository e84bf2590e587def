"""
Unit tests for token estimation.

Tests word/character based estimation, card allowances and cost estimates.
"""

import math
from decimal import Decimal

import pytest

from studydeck.core.token_counter import (
    TokenEstimate,
    calculate_total_tokens,
    count_words,
    estimate_cost,
    estimate_generated_cards,
    estimate_pdf_tokens,
    estimate_tokens,
)


class TestCountWords:
    """Test whitespace word counting."""

    def test_counts_words(self):
        assert count_words("one two three") == 3

    def test_ignores_repeated_whitespace(self):
        """Empty tokens from repeated whitespace are discarded."""
        assert count_words("  one \n\t two   three  ") == 3

    def test_empty_text(self):
        assert count_words("") == 0
        assert count_words("   ") == 0
        assert count_words(None) == 0


class TestEstimateTokens:
    """Test the text token estimate policy."""

    def test_short_text_uses_word_count(self):
        """Fewer than 10 words: ceil(words / 0.75)."""
        assert estimate_tokens("one two three") == 4
        assert estimate_tokens("a b c d e f g h i") == 12
        assert estimate_tokens("word") == 2

    def test_long_text_uses_character_count(self):
        """10 words or more: ceil(characters / 4)."""
        text = " ".join(["word"] * 10)
        assert len(text) == 49
        assert estimate_tokens(text) == 13

    @pytest.mark.parametrize("text", [
        " ".join(["alpha"] * 10),
        "The mitochondria is the powerhouse of the cell and produces ATP.",
        "x " * 200,
        "Lorem ipsum dolor sit amet, consectetur adipiscing elit, sed do eiusmod.",
    ])
    def test_character_rule_for_ten_or_more_words(self, text):
        assert count_words(text) >= 10
        assert estimate_tokens(text) == math.ceil(len(text) / 4)

    @pytest.mark.parametrize("text", [
        "photosynthesis",
        "What is osmosis?",
        "one two three four five six seven eight nine",
    ])
    def test_word_rule_for_fewer_than_ten_words(self, text):
        assert count_words(text) < 10
        assert estimate_tokens(text) == math.ceil(count_words(text) / 0.75)

    def test_long_single_word_is_sized_by_words(self):
        """Character count is ignored for short word counts."""
        assert estimate_tokens("a" * 400) == 2

    def test_empty_text_is_zero(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("   ") == 0
        assert estimate_tokens(None) == 0

    def test_deterministic(self):
        text = "Cells are the basic structural and functional units of life forms."
        assert estimate_tokens(text) == estimate_tokens(text)


class TestCardAllowance:
    """Test the flat per-card token allowance."""

    @pytest.mark.parametrize("count", [0, 1, 8, 15, 1000])
    def test_twenty_five_tokens_per_card(self, count):
        assert estimate_generated_cards(count) == 25 * count

    def test_negative_count_is_zero(self):
        assert estimate_generated_cards(-3) == 0


class TestPdfEstimate:
    """Test PDF size based estimation."""

    def test_small_files_use_minimum(self):
        assert estimate_pdf_tokens(500) == 1000

    def test_scales_with_size(self):
        assert estimate_pdf_tokens(100_000) == 10_000

    def test_large_files_use_maximum(self):
        assert estimate_pdf_tokens(10_000_000) == 50_000


class TestTotalEstimate:
    """Test the combined pre-generation estimate."""

    def test_defaults_to_ten_cards(self):
        estimate = calculate_total_tokens("one two three")
        assert estimate == TokenEstimate(input_tokens=4, output_tokens=250)
        assert estimate.total_tokens == 254

    def test_custom_card_count(self):
        estimate = calculate_total_tokens("one two three", expected_cards=2)
        assert estimate.total_tokens == 54

    def test_empty_text(self):
        assert calculate_total_tokens("").total_tokens == 250


class TestCostEstimate:
    """Test provider cost estimates."""

    def test_one_million_tokens(self):
        """800k input at $0.15/1M plus 200k output at $0.60/1M."""
        assert estimate_cost(1_000_000) == Decimal("0.24")

    def test_zero_tokens(self):
        assert estimate_cost(0) == Decimal("0")

    def test_rounds_up(self):
        """10 tokens cost $0.0000024, rounded up to six places."""
        assert estimate_cost(10) == Decimal("0.000003")
