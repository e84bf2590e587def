"""
Study data export.

Renders a deck's cards as delimited text or as numbered plain text.
"""

import re
from typing import Iterable, Protocol

CSV_HEADER = ("Question", "Answer")


class QuestionAnswer(Protocol):
    question: str
    answer: str


def to_csv(cards: Iterable[QuestionAnswer]) -> str:
    """Render cards as delimited text with a ``Question,Answer`` header.

    Every field is wrapped in double quotes. Embedded quotes are written
    as-is, not doubled, and rows are joined by newlines without a trailing
    newline.
    """
    rows = [CSV_HEADER] + [(card.question, card.answer) for card in cards]
    return "\n".join(",".join(f'"{value}"' for value in row) for row in rows)


def to_txt(cards: Iterable[QuestionAnswer]) -> str:
    """Render cards as ``Card N:`` blocks with Q/A lines."""
    return "".join(
        f"Card {index}:\nQ: {card.question}\nA: {card.answer}\n\n"
        for index, card in enumerate(cards, start=1)
    )


EXPORTERS = {
    "csv": to_csv,
    "txt": to_txt,
}

MEDIA_TYPES = {
    "csv": "text/csv;charset=utf-8",
    "txt": "text/plain;charset=utf-8",
}


def export_cards(cards: Iterable[QuestionAnswer], fmt: str) -> str:
    """Render cards in ``fmt`` ("csv" or "txt")."""
    try:
        exporter = EXPORTERS[fmt]
    except KeyError:
        raise ValueError(f"Unsupported export format: {fmt}. Use one of: {sorted(EXPORTERS)}")
    return exporter(cards)


def export_filename(deck_title: str, fmt: str) -> str:
    """Download filename for a deck export, e.g. ``Biology-flashcards.csv``."""
    title = re.sub(r'[\\/:*?"<>|]+', "-", (deck_title or "").strip()) or "deck"
    return f"{title}-flashcards.{fmt}"
