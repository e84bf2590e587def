"""
Token estimation for quota accounting.

Maps raw text to an estimated token count without a tokenizer. The same
estimates are used for the pre-generation quota check and for charging the
ledger afterwards, so both functions are deterministic and never raise.
"""

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_UP
from typing import Optional

# Below this word count character-based estimation is unreliable.
SHORT_TEXT_WORDS = 10
WORDS_PER_TOKEN = 0.75
CHARS_PER_TOKEN = 4

# Flat allowance per generated card: question, answer and JSON overhead.
TOKENS_PER_CARD = 25

DEFAULT_EXPECTED_CARDS = 10

PDF_BYTES_PER_TOKEN = 10
PDF_MIN_TOKENS = 1000
PDF_MAX_TOKENS = 50000

# Provider prices per 1M tokens.
INPUT_COST_PER_1M = Decimal("0.15")
OUTPUT_COST_PER_1M = Decimal("0.60")


@dataclass(frozen=True)
class TokenEstimate:
    """Estimated token usage of one generation request."""
    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens charged (input + output)."""
        return self.input_tokens + self.output_tokens


def count_words(text: Optional[str]) -> int:
    """Count whitespace-separated words, ignoring empty tokens."""
    if not text:
        return 0
    return len(text.split())


def estimate_tokens(text: Optional[str]) -> int:
    """Estimate the token count of ``text``.

    Short texts (fewer than 10 words) are sized by words at 0.75 words per
    token; anything longer by characters at 4 characters per token.

    Args:
        text: Raw text, may be empty

    Returns:
        Estimated tokens, 0 for empty text
    """
    if not text:
        return 0

    word_count = count_words(text)
    if word_count < SHORT_TEXT_WORDS:
        return math.ceil(word_count / WORDS_PER_TOKEN)
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_generated_cards(card_count: int) -> int:
    """Token allowance for ``card_count`` generated flashcards."""
    return max(0, card_count) * TOKENS_PER_CARD


def estimate_pdf_tokens(file_size_bytes: int) -> int:
    """Rough token estimate for a PDF, clamped to [1000, 50000]."""
    estimated = math.ceil(max(0, file_size_bytes) / PDF_BYTES_PER_TOKEN)
    return max(PDF_MIN_TOKENS, min(estimated, PDF_MAX_TOKENS))


def calculate_total_tokens(
    text: Optional[str],
    expected_cards: int = DEFAULT_EXPECTED_CARDS,
) -> TokenEstimate:
    """Combined pre-generation estimate for a generation request."""
    return TokenEstimate(
        input_tokens=estimate_tokens(text),
        output_tokens=estimate_generated_cards(expected_cards),
    )


def estimate_cost(tokens: int) -> Decimal:
    """Estimated provider cost in dollars, assuming an 80/20 input/output split.

    Rounded up to 6 decimal places.
    """
    input_tokens = math.floor(tokens * 0.8)
    output_tokens = math.floor(tokens * 0.2)
    cost = (
        Decimal(input_tokens) / Decimal(1_000_000) * INPUT_COST_PER_1M
        + Decimal(output_tokens) / Decimal(1_000_000) * OUTPUT_COST_PER_1M
    )
    return cost.quantize(Decimal("0.000001"), rounding=ROUND_UP)
