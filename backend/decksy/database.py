from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, AsyncEngine
from sqlalchemy.orm import sessionmaker
from sqlalchemy import text
import json
import logging
from typing import Dict, List, Optional

from decksy.models import FeedbackPreferences
from decksy.recommendation_store import StoredRecommendation

logger = logging.getLogger(__name__)


class Database:
    """Persistence Postgres des recommandations et du feedback"""

    def __init__(self, url: str):
        self.engine: AsyncEngine = create_async_engine(url, echo=False, future=True)
        self.session_factory = sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def init_db(self):
        """Initialize database tables"""
        async with self.engine.begin() as conn:
            await conn.execute(text("""
                CREATE TABLE IF NOT EXISTS recommendations (
                    session_id VARCHAR(64) PRIMARY KEY,
                    user_id VARCHAR(64),
                    player_tag VARCHAR(20) NOT NULL,
                    variant VARCHAR(32),
                    player JSONB NOT NULL,
                    quiz JSONB NOT NULL,
                    decks JSONB NOT NULL,
                    profile_signature TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))

            await conn.execute(text("""
                CREATE TABLE IF NOT EXISTS feedback (
                    id SERIAL PRIMARY KEY,
                    session_id VARCHAR(64) NOT NULL,
                    rating SMALLINT NOT NULL,
                    notes TEXT,
                    user_agent TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))

            # Poids personnalisés par utilisateur (NULL = poids de base)
            await conn.execute(text("""
                CREATE TABLE IF NOT EXISTS feedback_preferences (
                    user_id VARCHAR(64) PRIMARY KEY,
                    collection_weight FLOAT,
                    trophies_weight FLOAT,
                    playstyle_weight FLOAT,
                    difficulty_weight FLOAT,
                    prefer_archetypes JSONB,
                    avoid_archetypes JSONB,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))

            await conn.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_feedback_session
                ON feedback(session_id, created_at DESC)
            """))

            await conn.execute(text("""
                CREATE INDEX IF NOT EXISTS idx_recommendations_user
                ON recommendations(user_id, created_at DESC)
            """))

        logger.info("Database tables initialized")

    async def save_recommendation(self, record: StoredRecommendation):
        async with self.session_factory() as db:
            await db.execute(
                text("""
                    INSERT INTO recommendations (
                        session_id, user_id, player_tag, variant, player, quiz, decks, profile_signature
                    ) VALUES (
                        :session_id, :user_id, :player_tag, :variant, CAST(:player AS jsonb),
                        CAST(:quiz AS jsonb), CAST(:decks AS jsonb), :signature
                    )
                    ON CONFLICT (session_id) DO UPDATE SET
                        variant = EXCLUDED.variant,
                        player = EXCLUDED.player,
                        quiz = EXCLUDED.quiz,
                        decks = EXCLUDED.decks,
                        profile_signature = EXCLUDED.profile_signature
                """),
                {
                    "session_id": record.session_id,
                    "user_id": record.user_id,
                    "player_tag": record.player.tag,
                    "variant": record.variant,
                    "player": json.dumps(record.player.to_wire()),
                    "quiz": json.dumps(record.quiz.to_wire()),
                    "decks": json.dumps(record.decks),
                    "signature": record.profile_signature,
                }
            )
            await db.commit()

    async def get_recommendation(self, session_id: str) -> Optional[Dict]:
        async with self.session_factory() as db:
            result = await db.execute(
                text("""
                    SELECT session_id, user_id, variant, player, quiz, decks, profile_signature, created_at
                    FROM recommendations
                    WHERE session_id = :session_id
                """),
                {"session_id": session_id}
            )
            row = result.fetchone()

        if not row:
            return None

        return {
            "sessionId": row[0],
            "userId": row[1],
            "variant": row[2],
            "player": row[3],
            "quiz": row[4],
            "decks": row[5],
            "profileSignature": row[6],
            "createdAt": row[7].isoformat() if row[7] else None,
        }

    async def save_feedback(self, session_id: str, rating: int, notes: Optional[str], user_agent: Optional[str]):
        async with self.session_factory() as db:
            await db.execute(
                text("""
                    INSERT INTO feedback (session_id, rating, notes, user_agent)
                    VALUES (:session_id, :rating, :notes, :user_agent)
                """),
                {"session_id": session_id, "rating": rating, "notes": notes, "user_agent": user_agent}
            )
            await db.commit()

    async def list_feedback(self, session_id: str) -> List[Dict]:
        async with self.session_factory() as db:
            result = await db.execute(
                text("""
                    SELECT rating, notes, created_at
                    FROM feedback
                    WHERE session_id = :session_id
                    ORDER BY created_at DESC
                """),
                {"session_id": session_id}
            )
            rows = result.fetchall()

        return [
            {
                "rating": row[0],
                "notes": row[1],
                "createdAt": row[2].isoformat() if row[2] else None,
            }
            for row in rows
        ]

    async def get_feedback_preferences(self, user_id: str) -> Optional[FeedbackPreferences]:
        async with self.session_factory() as db:
            result = await db.execute(
                text("""
                    SELECT collection_weight, trophies_weight, playstyle_weight, difficulty_weight,
                           prefer_archetypes, avoid_archetypes
                    FROM feedback_preferences
                    WHERE user_id = :user_id
                """),
                {"user_id": user_id}
            )
            row = result.fetchone()

        if not row:
            return None

        return FeedbackPreferences(
            collection_weight=row[0],
            trophies_weight=row[1],
            playstyle_weight=row[2],
            difficulty_weight=row[3],
            prefer_archetypes=row[4],
            avoid_archetypes=row[5],
        )

    async def close(self):
        await self.engine.dispose()
