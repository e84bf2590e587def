"""
Tests for deck export formats.
"""

import pytest

from studydeck.core.export import export_cards, export_filename, to_csv, to_txt
from studydeck.storage.models import FlashcardDraft


class TestCsvExport:
    """Test delimited text export."""

    def test_header_and_quoted_fields(self):
        content = to_csv([FlashcardDraft("A,B", "C")])
        assert content == '"Question","Answer"\n"A,B","C"'

    def test_embedded_quotes_are_not_escaped(self):
        content = to_csv([FlashcardDraft('Who said "hi"?', "Bob")])
        assert content.splitlines()[1] == '"Who said "hi"?","Bob"'

    def test_no_cards_is_header_only(self):
        assert to_csv([]) == '"Question","Answer"'

    def test_rows_keep_order(self):
        content = to_csv([FlashcardDraft("Q1", "A1"), FlashcardDraft("Q2", "A2")])
        assert content.split("\n") == ['"Question","Answer"', '"Q1","A1"', '"Q2","A2"']


class TestTxtExport:
    """Test numbered plain text export."""

    def test_numbered_blocks(self):
        content = to_txt([FlashcardDraft("Q1", "A1"), FlashcardDraft("Q2", "A2")])
        assert content == "Card 1:\nQ: Q1\nA: A1\n\nCard 2:\nQ: Q2\nA: A2\n\n"

    def test_no_cards(self):
        assert to_txt([]) == ""


class TestExportCards:
    """Test format dispatch and filenames."""

    def test_dispatch(self):
        cards = [FlashcardDraft("Q", "A")]
        assert export_cards(cards, "csv") == to_csv(cards)
        assert export_cards(cards, "txt") == to_txt(cards)

    def test_unsupported_format(self):
        with pytest.raises(ValueError, match="Unsupported export format"):
            export_cards([], "pdf")

    def test_filename(self):
        assert export_filename("Biology", "csv") == "Biology-flashcards.csv"

    def test_filename_sanitizes_title(self):
        assert export_filename('Ch 1/2: "Cells"', "txt") == "Ch 1-2- -Cells--flashcards.txt"

    def test_filename_for_blank_title(self):
        assert export_filename("  ", "csv") == "deck-flashcards.csv"
