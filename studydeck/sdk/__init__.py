"""
SDK for studydeck.

Provides the AI flashcard generation client.
"""

from .openai_client import FlashcardGenerator, parse_flashcards

__all__ = ["FlashcardGenerator", "parse_flashcards"]
