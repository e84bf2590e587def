"""
studydeck - AI generated flashcards with usage quotas and study progress.
"""

__version__ = "0.1.0"
