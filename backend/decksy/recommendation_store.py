"""
In-memory store of served recommendations, keyed by session id.

Each record carries a profile signature so a later lookup can tell whether
the player's trophies or collection changed since the recommendation.
"""
import math
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from decksy.models import CollectionCard, PlayerProfile, QuizResponse

TROPHY_BAND_SIZE = 200


def _sanitise_tag(tag: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9]", "", tag).lower()
    return cleaned or "unknown"


def _trophy_band(trophies: Optional[float]) -> str:
    if trophies is None or (isinstance(trophies, float) and math.isnan(trophies)):
        return "unknown"
    start = int(max(trophies, 0) // TROPHY_BAND_SIZE) * TROPHY_BAND_SIZE
    return f"{start}-{start + TROPHY_BAND_SIZE - 1}"


def _collection_readiness(collection: List[CollectionCard]) -> str:
    if not collection:
        return "empty"
    return "|".join(sorted(f"{card.key}:{max(0, card.level)}" for card in collection))


def build_profile_signature(player: PlayerProfile) -> str:
    return ":".join([
        _sanitise_tag(player.tag),
        _trophy_band(player.trophies),
        _collection_readiness(player.collection),
    ])


@dataclass
class StoredRecommendation:
    session_id: str
    player: PlayerProfile
    quiz: QuizResponse
    decks: List[Dict]
    profile_signature: str = ""
    user_id: Optional[str] = None
    variant: Optional[str] = None
    feedback: List[Dict] = field(default_factory=list)

    def has_profile_drift(self, player: PlayerProfile) -> bool:
        return self.profile_signature != build_profile_signature(player)

    def to_dict(self) -> Dict:
        return {
            "sessionId": self.session_id,
            "player": self.player.to_wire(),
            "quiz": self.quiz.to_wire(),
            "decks": self.decks,
            "profileSignature": self.profile_signature,
            "userId": self.user_id,
            "variant": self.variant,
        }


class RecommendationStore:

    def __init__(self):
        self._records: Dict[str, StoredRecommendation] = {}

    def save(self, record: StoredRecommendation) -> StoredRecommendation:
        record.profile_signature = build_profile_signature(record.player)
        # Réinsertion pour garder l'ordre d'enregistrement
        self._records.pop(record.session_id, None)
        self._records[record.session_id] = record
        return record

    def get(self, session_id: str) -> Optional[StoredRecommendation]:
        return self._records.get(session_id)

    def list(self) -> List[StoredRecommendation]:
        """Records in save order, most recently saved first"""
        return list(reversed(self._records.values()))

    def add_feedback(self, session_id: str, entry: Dict) -> bool:
        record = self._records.get(session_id)
        if record is None:
            return False
        record.feedback.append(entry)
        return True

    def clear(self) -> None:
        self._records.clear()
