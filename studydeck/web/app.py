"""
HTTP API for studydeck.

The caller's identity is passed explicitly in the ``X-User-Id`` header and
threaded through every core call; core logic never looks up a session.
StudyDeckError subclasses are converted to ``{"error": ...}`` responses
with their status code at this boundary.
"""

import logging
import sqlite3
from dataclasses import dataclass
from typing import Optional, Union

import stripe
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from studydeck.config.loader import AppConfig, load_config
from studydeck.core.billing import apply_billing_event, create_checkout_session, verify_webhook
from studydeck.core.errors import NotFoundError, StudyDeckError, ValidationError
from studydeck.core.export import MEDIA_TYPES, export_cards, export_filename
from studydeck.core.pipeline import FlashcardPipeline
from studydeck.core.progress import ProgressService
from studydeck.core.quota import QuotaLedger, format_token_usage
from studydeck.core.study import StudyRecorder
from studydeck.sdk.openai_client import FlashcardGenerator
from studydeck.storage.db import resolve_db_path
from studydeck.storage.models import Deck, Flashcard, StudyStatus
from studydeck.storage.repository import StudyRepository, initialize_schema

logger = logging.getLogger(__name__)


class GenerateFlashcardsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: Optional[str] = None
    deck_id: Optional[str] = Field(default=None, alias="deckId")


class CreateDeckRequest(BaseModel):
    title: str = ""
    description: Optional[str] = None
    content: str = ""


class StudyOutcomeRequest(BaseModel):
    card: Union[int, str]
    status: StudyStatus


class CardRequest(BaseModel):
    question: str = ""
    answer: str = ""


@dataclass
class Services:
    """Collaborators shared by all request handlers."""
    config: AppConfig
    repository: StudyRepository
    ledger: QuotaLedger
    pipeline: FlashcardPipeline
    recorder: StudyRecorder
    progress: ProgressService


def build_services(
    config: Optional[AppConfig] = None,
    repository: Optional[StudyRepository] = None,
    generator: Optional[FlashcardGenerator] = None,
) -> Services:
    config = config or load_config()
    repository = repository or StudyRepository(resolve_db_path())
    generator = generator or FlashcardGenerator(
        model=config.generation.model,
        temperature=config.generation.temperature,
        max_tokens=config.generation.max_tokens,
    )
    ledger = QuotaLedger(repository, config.plans)
    return Services(
        config=config,
        repository=repository,
        ledger=ledger,
        pipeline=FlashcardPipeline(repository, ledger, generator, config.generation),
        recorder=StudyRecorder(repository),
        progress=ProgressService(repository),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return x_user_id


def _owned_deck(services: Services, deck_id: str, user_id: str) -> Deck:
    deck = services.repository.get_deck(deck_id)
    if deck is None or deck.user_id != user_id:
        raise NotFoundError("Deck not found")
    return deck


def _owned_card(services: Services, card_id: str, user_id: str) -> Flashcard:
    card = services.repository.get_flashcard(card_id)
    if card is not None:
        deck = services.repository.get_deck(card.deck_id)
        if deck is not None and deck.user_id == user_id:
            return card
    raise NotFoundError("Flashcard not found")


def _card_fields(body: CardRequest) -> tuple:
    question, answer = body.question.strip(), body.answer.strip()
    if not question or not answer:
        raise ValidationError("Question and answer are required")
    return question, answer


def _deck_dict(deck: Deck) -> dict:
    return {
        "id": deck.id,
        "title": deck.title,
        "description": deck.description,
        "createdAt": deck.created_at.isoformat(),
    }


def _card_dict(card: Flashcard) -> dict:
    return {
        "id": card.id,
        "deckId": card.deck_id,
        "question": card.question,
        "answer": card.answer,
        "createdAt": card.created_at.isoformat(),
    }


def _validation_details(exc: RequestValidationError) -> list:
    return [
        {
            "field": ".".join(str(loc) for loc in error.get("loc", ())),
            "message": error.get("msg", "invalid value"),
        }
        for error in exc.errors()
    ]


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the FastAPI application, creating the schema if needed."""
    services = services or build_services()
    initialize_schema(services.repository.db_path)

    app = FastAPI(title="studydeck API")
    app.state.services = services

    @app.exception_handler(StudyDeckError)
    async def studydeck_error_handler(request: Request, exc: StudyDeckError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Request to %s failed: %s", request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        details = _validation_details(exc)
        message = "Invalid request"
        if details:
            message = f"{message}: {details[0]['field']}: {details[0]['message']}"
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": message, "details": details},
        )

    @app.post("/api/generate-flashcards")
    def generate_flashcards(
        body: GenerateFlashcardsRequest,
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> dict:
        result = services.pipeline.generate_for_deck(user_id, body.content, body.deck_id)
        return result.to_dict()

    @app.post("/api/decks", status_code=status.HTTP_201_CREATED)
    def create_deck(
        body: CreateDeckRequest,
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> dict:
        created = services.pipeline.create_deck(
            user_id, body.title, body.content, body.description
        )
        return {
            "deck": _deck_dict(created.deck),
            "decksCreatedThisMonth": created.decks_created_this_month,
            **created.generation.to_dict(),
        }

    @app.get("/api/usage")
    def usage(
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> dict:
        limits = services.ledger.check_limits(user_id)
        stats = services.ledger.get_usage_stats(user_id)
        body = limits.to_dict()
        if stats is not None:
            body["decksCreatedThisMonth"] = stats.decks_created_this_month
            body["tokensProcessedThisMonth"] = stats.tokens_processed_this_month
            body["tokenUsage"] = format_token_usage(
                stats.tokens_processed_this_month, stats.plan, services.config.plans
            )
        return body

    @app.get("/api/stats")
    def user_stats(
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> dict:
        stats = services.progress.user_stats(user_id)
        return {
            "studyStreak": stats.study_streak,
            "masteryPercentage": stats.mastery_percentage,
            "totalReviews": stats.total_reviews,
            "deckCount": stats.deck_count,
        }

    @app.get("/api/decks/{deck_id}/stats")
    def deck_stats(
        deck_id: str,
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> dict:
        _owned_deck(services, deck_id, user_id)
        stats = services.progress.deck_stats(deck_id)
        return {"cardCount": stats.card_count, "masteryPercentage": stats.mastery_percentage}

    @app.post("/api/decks/{deck_id}/study", status_code=status.HTTP_201_CREATED)
    def record_study_outcome(
        deck_id: str,
        body: StudyOutcomeRequest,
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> dict:
        session = services.recorder.record_outcome(user_id, deck_id, body.card, body.status)
        return {
            "id": session.id,
            "cardId": session.card_id,
            "status": session.status.value,
            "createdAt": session.created_at.isoformat(),
        }

    @app.get("/api/usage/events")
    def usage_events(
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> list:
        return [
            {
                "actionType": event.action_type,
                "metadata": event.metadata,
                "createdAt": event.created_at.isoformat(),
            }
            for event in services.repository.list_usage_events(user_id)
        ]

    @app.get("/api/decks")
    def list_decks(
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> list:
        return [
            {**_deck_dict(deck), "cardCount": services.repository.count_flashcards(deck.id)}
            for deck in services.repository.list_decks(user_id)
        ]

    @app.delete("/api/decks/{deck_id}")
    def delete_deck(
        deck_id: str,
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> dict:
        _owned_deck(services, deck_id, user_id)
        services.repository.delete_deck(deck_id)
        logger.info("Deleted deck %s for %s", deck_id, user_id)
        return {"deleted": True}

    @app.get("/api/decks/{deck_id}/cards")
    def list_cards(
        deck_id: str,
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> list:
        _owned_deck(services, deck_id, user_id)
        return [_card_dict(card) for card in services.repository.list_flashcards(deck_id)]

    @app.post("/api/decks/{deck_id}/cards", status_code=status.HTTP_201_CREATED)
    def add_card(
        deck_id: str,
        body: CardRequest,
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> dict:
        _owned_deck(services, deck_id, user_id)
        question, answer = _card_fields(body)
        return _card_dict(services.repository.add_flashcard(deck_id, question, answer))

    @app.put("/api/cards/{card_id}")
    def update_card(
        card_id: str,
        body: CardRequest,
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> dict:
        _owned_card(services, card_id, user_id)
        question, answer = _card_fields(body)
        return _card_dict(services.repository.update_flashcard(card_id, question, answer))

    @app.delete("/api/cards/{card_id}")
    def delete_card(
        card_id: str,
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> dict:
        _owned_card(services, card_id, user_id)
        services.repository.delete_flashcard(card_id)
        return {"deleted": True}

    @app.get("/api/decks/{deck_id}/export")
    def export_deck(
        deck_id: str,
        fmt: str = Query(default="csv", alias="format", pattern="^(csv|txt)$"),
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> Response:
        deck = _owned_deck(services, deck_id, user_id)
        cards = services.repository.list_flashcards(deck_id)
        filename = export_filename(deck.title, fmt)
        return Response(
            content=export_cards(cards, fmt),
            media_type=MEDIA_TYPES[fmt],
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.post("/api/stripe/create-checkout-session")
    def checkout_session(
        user_id: str = Depends(get_user_id),
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        try:
            url = create_checkout_session(user_id, services.config.billing)
        except stripe.StripeError as e:
            logger.error("Error creating checkout session: %s", e)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Failed to create checkout session"},
            )
        return JSONResponse(content={"url": url})

    @app.post("/api/stripe/webhook")
    async def stripe_webhook(
        request: Request,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        payload = await request.body()
        event = verify_webhook(
            payload,
            request.headers.get("stripe-signature"),
            services.config.billing.webhook_secret,
        )
        try:
            apply_billing_event(event, services.repository)
        except (sqlite3.Error, StudyDeckError) as e:
            logger.error("Error processing webhook: %s", e)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Webhook processing failed"},
            )
        return JSONResponse(content={"received": True})

    return app
