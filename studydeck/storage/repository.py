"""
Repository pattern for data access.

Handles persistence of profiles, decks, flashcards, study sessions and
usage events. Study sessions and usage events are append-only ledgers:
no method updates or deletes them directly (deck deletion cascades).
"""

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import (
    Deck,
    Flashcard,
    FlashcardDraft,
    Plan,
    Profile,
    StudySession,
    StudyStatus,
    UsageEvent,
)
from studydeck.core.errors import NotFoundError, PersistenceFailed

SCHEMA = """
CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL,
    subscription_status TEXT NOT NULL DEFAULT 'free'
        CHECK (subscription_status IN ('free', 'pro', 'cancelled')),
    subscription_id TEXT,
    decks_created_this_month INTEGER NOT NULL DEFAULT 0
        CHECK (decks_created_this_month >= 0),
    tokens_processed_this_month INTEGER NOT NULL DEFAULT 0
        CHECK (tokens_processed_this_month >= 0),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS decks (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS flashcards (
    id TEXT PRIMARY KEY,
    deck_id TEXT NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
    question TEXT NOT NULL,
    answer TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS study_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
    deck_id TEXT NOT NULL REFERENCES decks(id) ON DELETE CASCADE,
    card_id TEXT NOT NULL REFERENCES flashcards(id) ON DELETE CASCADE,
    status TEXT NOT NULL CHECK (status IN ('known', 'unknown')),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS usage_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    action_type TEXT NOT NULL,
    metadata TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_decks_user ON decks(user_id);
CREATE INDEX IF NOT EXISTS idx_flashcards_deck ON flashcards(deck_id);
CREATE INDEX IF NOT EXISTS idx_study_sessions_deck ON study_sessions(deck_id);
CREATE INDEX IF NOT EXISTS idx_study_sessions_user ON study_sessions(user_id);
"""

# Counter columns the ledger may increment, keyed by usage action type.
_COUNTER_COLUMNS = {
    "deck_created": "decks_created_this_month",
    "tokens_processed": "tokens_processed_this_month",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _row_to_profile(row: sqlite3.Row) -> Profile:
    return Profile(
        id=row["id"],
        email=row["email"],
        plan=Plan(row["subscription_status"]),
        subscription_id=row["subscription_id"],
        decks_created_this_month=row["decks_created_this_month"] or 0,
        tokens_processed_this_month=row["tokens_processed_this_month"] or 0,
    )


def _row_to_deck(row: sqlite3.Row) -> Deck:
    return Deck(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        description=row["description"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_flashcard(row: sqlite3.Row) -> Flashcard:
    return Flashcard(
        id=row["id"],
        deck_id=row["deck_id"],
        question=row["question"],
        answer=row["answer"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_session(row: sqlite3.Row) -> StudySession:
    return StudySession(
        id=row["id"],
        user_id=row["user_id"],
        deck_id=row["deck_id"],
        card_id=row["card_id"],
        status=StudyStatus(row["status"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class StudyRepository:
    """Repository for profiles, decks, flashcards and study sessions.

    Each call opens its own connection and closes it before returning.
    Writes that fail at the database level surface as PersistenceFailed.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def _write(self, query: str, params: Iterable[Any]) -> int:
        """Run a single write statement and return the affected row count."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(query, tuple(params))
            conn.commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceFailed(f"Database write failed: {e}") from e
        finally:
            conn.close()

    # Profiles

    def create_profile(
        self,
        user_id: str,
        email: str,
        plan: Plan = Plan.FREE,
        decks_created_this_month: int = 0,
        tokens_processed_this_month: int = 0,
    ) -> Profile:
        now = _now().isoformat()
        self._write(
            """
            INSERT INTO profiles
            (id, email, subscription_status, decks_created_this_month,
             tokens_processed_this_month, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (user_id, email, plan.value, decks_created_this_month,
             tokens_processed_this_month, now, now),
        )
        return Profile(
            id=user_id,
            email=email,
            plan=plan,
            decks_created_this_month=decks_created_this_month,
            tokens_processed_this_month=tokens_processed_this_month,
        )

    def get_profile(self, user_id: str) -> Optional[Profile]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM profiles WHERE id = ?", (user_id,)
            ).fetchone()
            return _row_to_profile(row) if row else None
        finally:
            conn.close()

    def find_profile_by_subscription(self, subscription_id: str) -> Optional[Profile]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM profiles WHERE subscription_id = ?",
                (subscription_id,),
            ).fetchone()
            return _row_to_profile(row) if row else None
        finally:
            conn.close()

    def set_plan(self, user_id: str, plan: Plan) -> bool:
        """Change the subscription status, keeping the subscription id."""
        return self._write(
            "UPDATE profiles SET subscription_status = ?, updated_at = ? WHERE id = ?",
            (plan.value, _now().isoformat(), user_id),
        ) > 0

    def set_subscription(
        self, user_id: str, plan: Plan, subscription_id: Optional[str]
    ) -> bool:
        """Change the subscription status and id together (None clears the id)."""
        return self._write(
            """
            UPDATE profiles
            SET subscription_status = ?, subscription_id = ?, updated_at = ?
            WHERE id = ?
            """,
            (plan.value, subscription_id, _now().isoformat(), user_id),
        ) > 0

    def increment_usage(
        self,
        user_id: str,
        action_type: str,
        amount: int,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Atomically add ``amount`` to a monthly counter and log the event.

        The increment is a single ``SET col = col + ?`` statement and shares a
        transaction with the usage event insert, so concurrent callers cannot
        lose updates and the audit trail never diverges from the counter.

        Args:
            user_id: Profile to charge
            action_type: "deck_created" or "tokens_processed"
            amount: Non-negative increment
            metadata: Extra fields stored with the usage event

        Returns:
            The counter value after the increment

        Raises:
            NotFoundError: If the profile does not exist
            PersistenceFailed: If the database rejects the write
        """
        column = _COUNTER_COLUMNS[action_type]
        now = _now()
        event_metadata = dict(metadata or {})
        event_metadata.setdefault("timestamp", now.isoformat())

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"UPDATE profiles SET {column} = {column} + ?, updated_at = ? WHERE id = ?",
                (amount, now.isoformat(), user_id),
            )
            if cursor.rowcount == 0:
                conn.rollback()
                raise NotFoundError(f"Profile {user_id} not found")
            conn.execute(
                """
                INSERT INTO usage_events (user_id, action_type, metadata, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (user_id, action_type, json.dumps(event_metadata, default=str),
                 now.isoformat()),
            )
            row = conn.execute(
                f"SELECT {column} FROM profiles WHERE id = ?", (user_id,)
            ).fetchone()
            conn.commit()
            return row[0]
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceFailed(f"Failed to record {action_type}: {e}") from e
        finally:
            conn.close()

    def reset_monthly_usage(self, user_id: Optional[str] = None) -> int:
        """Zero the monthly counters for one profile, or for all of them."""
        query = """
            UPDATE profiles
            SET decks_created_this_month = 0,
                tokens_processed_this_month = 0,
                updated_at = ?
        """
        params: List[Any] = [_now().isoformat()]
        if user_id is not None:
            query += " WHERE id = ?"
            params.append(user_id)
        return self._write(query, params)

    def list_usage_events(self, user_id: str) -> List[UsageEvent]:
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT user_id, action_type, metadata, created_at
                FROM usage_events WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (user_id,),
            ).fetchall()
            return [
                UsageEvent(
                    user_id=row["user_id"],
                    action_type=row["action_type"],
                    metadata=json.loads(row["metadata"]) if row["metadata"] else {},
                    created_at=datetime.fromisoformat(row["created_at"]),
                )
                for row in rows
            ]
        finally:
            conn.close()

    # Decks

    def create_deck(
        self, user_id: str, title: str, description: Optional[str] = None
    ) -> Deck:
        """Create a deck owned by ``user_id``.

        Raises:
            NotFoundError: If the owner profile does not exist
        """
        if self.get_profile(user_id) is None:
            raise NotFoundError(f"Profile {user_id} not found")

        deck = Deck(
            id=_new_id(),
            user_id=user_id,
            title=title,
            description=description or None,
            created_at=_now(),
        )
        self._write(
            """
            INSERT INTO decks (id, user_id, title, description, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (deck.id, deck.user_id, deck.title, deck.description,
             deck.created_at.isoformat(), deck.created_at.isoformat()),
        )
        return deck

    def get_deck(self, deck_id: str) -> Optional[Deck]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM decks WHERE id = ?", (deck_id,)
            ).fetchone()
            return _row_to_deck(row) if row else None
        finally:
            conn.close()

    def list_decks(self, user_id: str) -> List[Deck]:
        """List a user's decks, newest first."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM decks WHERE user_id = ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (user_id,),
            ).fetchall()
            return [_row_to_deck(row) for row in rows]
        finally:
            conn.close()

    def delete_deck(self, deck_id: str) -> bool:
        """Delete a deck; flashcards and study sessions cascade."""
        return self._write("DELETE FROM decks WHERE id = ?", (deck_id,)) > 0

    # Flashcards

    def insert_flashcards(self, deck_id: str, drafts: List[FlashcardDraft]) -> int:
        """Insert a batch of flashcards atomically.

        Either every card is written or none is.

        Returns:
            Number of inserted cards

        Raises:
            PersistenceFailed: If any insert fails (the batch is rolled back)
        """
        if not drafts:
            return 0

        now = _now().isoformat()
        conn = get_connection(self.db_path)
        try:
            conn.executemany(
                """
                INSERT INTO flashcards (id, deck_id, question, answer, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (_new_id(), deck_id, draft.question, draft.answer, now, now)
                    for draft in drafts
                ],
            )
            conn.commit()
            return len(drafts)
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceFailed(f"Failed to save flashcards: {e}") from e
        finally:
            conn.close()

    def add_flashcard(self, deck_id: str, question: str, answer: str) -> Flashcard:
        card = Flashcard(
            id=_new_id(),
            deck_id=deck_id,
            question=question,
            answer=answer,
            created_at=_now(),
        )
        self._write(
            """
            INSERT INTO flashcards (id, deck_id, question, answer, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (card.id, card.deck_id, card.question, card.answer,
             card.created_at.isoformat(), card.created_at.isoformat()),
        )
        return card

    def get_flashcard(self, card_id: str) -> Optional[Flashcard]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM flashcards WHERE id = ?", (card_id,)
            ).fetchone()
            return _row_to_flashcard(row) if row else None
        finally:
            conn.close()

    def update_flashcard(self, card_id: str, question: str, answer: str) -> Flashcard:
        """Replace a card's question and answer in place."""
        updated = self._write(
            "UPDATE flashcards SET question = ?, answer = ?, updated_at = ? WHERE id = ?",
            (question, answer, _now().isoformat(), card_id),
        )
        if not updated:
            raise NotFoundError(f"Flashcard {card_id} not found")
        return self.get_flashcard(card_id)

    def delete_flashcard(self, card_id: str) -> bool:
        return self._write("DELETE FROM flashcards WHERE id = ?", (card_id,)) > 0

    def list_flashcards(self, deck_id: str) -> List[Flashcard]:
        """List a deck's flashcards, newest first."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM flashcards WHERE deck_id = ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (deck_id,),
            ).fetchall()
            return [_row_to_flashcard(row) for row in rows]
        finally:
            conn.close()

    def count_flashcards(self, deck_id: str) -> int:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT COUNT(*) FROM flashcards WHERE deck_id = ?", (deck_id,)
            ).fetchone()
            return row[0]
        finally:
            conn.close()

    # Study sessions

    def insert_study_session(
        self, user_id: str, deck_id: str, card_id: str, status: StudyStatus
    ) -> StudySession:
        """Append one review outcome to the study session ledger."""
        created_at = _now()
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                """
                INSERT INTO study_sessions (user_id, deck_id, card_id, status, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, deck_id, card_id, status.value, created_at.isoformat()),
            )
            conn.commit()
            session_id = cursor.lastrowid
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceFailed(f"Failed to save study session: {e}") from e
        finally:
            conn.close()

        return StudySession(
            id=session_id,
            user_id=user_id,
            deck_id=deck_id,
            card_id=card_id,
            status=status,
            created_at=created_at,
        )

    def list_study_sessions(
        self,
        user_id: Optional[str] = None,
        deck_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[StudySession]:
        """Get study sessions with optional filtering, newest first."""
        query = "SELECT * FROM study_sessions"
        params: List[Any] = []
        conditions = []

        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if deck_id:
            conditions.append("deck_id = ?")
            params.append(deck_id)

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
            return [_row_to_session(row) for row in rows]
        finally:
            conn.close()


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create all tables and indexes if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()
