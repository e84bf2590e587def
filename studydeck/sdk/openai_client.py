"""
Flashcard generation client.

Wraps a single OpenAI chat completion that turns study notes into
question/answer flashcards, and validates the returned JSON.
"""

import json
import logging
import re
from typing import Any, List, Optional

from openai import OpenAI, OpenAIError

from ..core.errors import GenerationFailed
from ..storage.models import FlashcardDraft

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert at creating high-quality study flashcards. Create flashcards from the provided content that are:

- Clear and concise (questions should be specific, answers should be comprehensive but brief)
- Focused on key concepts, definitions, important facts, and relationships
- Appropriate for active recall study
- Cover the most important and testable information
- Use proper academic language and terminology

Return ONLY a valid JSON array of objects with 'question' and 'answer' properties. Each flashcard should be well-structured and educational.

Example format:
[
  {
    "question": "What is the definition of [key term]?",
    "answer": "The definition is [clear, concise definition]"
  }
]

Create 8-15 flashcards depending on the content density."""

USER_PROMPT_TEMPLATE = "Convert these notes into study flashcards:\n\n{notes}"

_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\r?\n(.*?)\r?\n?[ \t]*```", re.DOTALL)


def strip_code_fence(content: str) -> str:
    """Return the body of a ```json fenced block, or the content unchanged."""
    if "```" not in content:
        return content
    match = _FENCE_RE.search(content)
    return match.group(1) if match else content


def _coerce_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def parse_flashcards(content: str) -> List[FlashcardDraft]:
    """Parse and validate a provider response into flashcard drafts.

    Elements missing a question or an answer are dropped; a response that is
    not a JSON array fails outright.

    Args:
        content: Raw message content, optionally wrapped in a code fence

    Returns:
        Validated flashcard drafts in provider order

    Raises:
        GenerationFailed: If the content is not valid JSON or not an array
    """
    json_content = strip_code_fence(content)

    try:
        data = json.loads(json_content)
    except json.JSONDecodeError as e:
        logger.error("Failed to parse generation response as JSON: %s", e)
        raise GenerationFailed(
            "Invalid JSON response from AI provider", detail=str(e)
        ) from e

    if not isinstance(data, list):
        raise GenerationFailed(
            "Invalid response format",
            detail=f"expected a JSON array, got {type(data).__name__}",
        )

    cards = []
    for item in data:
        fields = item if isinstance(item, dict) else {}
        question = _coerce_text(fields.get("question"))
        answer = _coerce_text(fields.get("answer"))
        if question and answer:
            cards.append(FlashcardDraft(question=question, answer=answer))
    return cards


class FlashcardGenerator:
    """Generates flashcards from notes with one chat completion call.

    Single shot: there is no retry. Every failure surfaces as
    GenerationFailed and the caller decides whether to try again.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        temperature: float = 0.3,
        max_tokens: int = 1500,
        client: Optional[OpenAI] = None,
    ):
        """Initialize the generator.

        Args:
            model: OpenAI model name (required)
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            client: Preconfigured OpenAI client (created on first use if omitted)

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def generate(self, content: str) -> List[FlashcardDraft]:
        """Generate flashcards for ``content``.

        Args:
            content: Study notes as plain text (required)

        Returns:
            Validated flashcard drafts

        Raises:
            ValueError: If content is empty
            GenerationFailed: On provider errors, empty responses or
                malformed JSON
        """
        if not content or not content.strip():
            raise ValueError("content is required and cannot be empty")

        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": USER_PROMPT_TEMPLATE.format(notes=content)},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except OpenAIError as e:
            logger.error("Flashcard generation request failed: %s", e)
            raise GenerationFailed(
                "Failed to generate flashcards. Please try again.", detail=str(e)
            ) from e

        message_content = None
        if completion.choices:
            message_content = completion.choices[0].message.content
        if not message_content:
            raise GenerationFailed("No content generated")

        logger.debug("Generation response content: %s", message_content)
        cards = parse_flashcards(message_content)
        logger.info("Generated %d flashcards with %s", len(cards), self.model)
        return cards
