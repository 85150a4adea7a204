"""
Domain models for players, decks and recommendations.

Field names are snake_case in Python and camelCase on the wire.
"""
import uuid
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class Archetype(str, Enum):
    BEATDOWN = "beatdown"
    CONTROL = "control"
    CYCLE = "cycle"
    SIEGE = "siege"
    SPELL = "spell"
    TEMPO = "tempo"


class Playstyle(str, Enum):
    AGGRO = "aggro"
    CONTROL = "control"
    BRIDGE = "bridge"
    SPELL = "spell"
    CYCLE = "cycle"


class Pace(str, Enum):
    AGGRO = "aggro"
    BALANCED = "balanced"
    CONTROL = "control"


class Comfort(str, Enum):
    CYCLE = "cycle"
    BRIDGE = "bridge"
    SPELL = "spell"


class Risk(str, Enum):
    SAFE = "safe"
    MID = "mid"
    GREEDY = "greedy"


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    def to_wire(self) -> Dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# =============================================================================
# Player
# =============================================================================


class CollectionCard(CamelModel):
    key: str = Field(..., min_length=1)
    level: int = Field(..., ge=0)


class PlayerProfile(CamelModel):
    tag: str = Field(..., min_length=1, description="Opaque player identifier")
    name: str = Field(..., min_length=1)
    trophies: int = Field(..., ge=0)
    arena: str = Field(..., min_length=1)
    collection: List[CollectionCard] = Field(default_factory=list)

    @field_validator("collection")
    @classmethod
    def unique_card_keys(cls, cards: List[CollectionCard]) -> List[CollectionCard]:
        seen = set()
        for card in cards:
            if card.key in seen:
                raise ValueError(f"duplicate collection card key: {card.key}")
            seen.add(card.key)
        return cards

    def levels_by_key(self) -> Dict[str, int]:
        return {card.key: card.level for card in self.collection}


class QuizResponse(CamelModel):
    preferred_pace: Pace
    comfort_level: Comfort
    risk_tolerance: Risk


# =============================================================================
# Decks
# =============================================================================


class DeckCard(CamelModel):
    name: str = Field(..., min_length=1)
    key: str = Field(..., min_length=1)
    level_requirement: int = Field(..., ge=0)
    is_champ: bool = False


class DeckDefinition(CamelModel):
    model_config = ConfigDict(frozen=True)

    slug: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    archetype: Archetype
    trophy_range: Tuple[int, int]
    description: str = ""
    average_elixir: float = Field(..., gt=0)
    playstyles: List[Playstyle] = Field(..., min_length=1)
    cards: List[DeckCard] = Field(..., min_length=8, max_length=8)
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def ordered_trophy_range(self) -> "DeckDefinition":
        low, high = self.trophy_range
        if low > high:
            raise ValueError(f"trophy range minimum {low} exceeds maximum {high}")
        return self


# =============================================================================
# Recommendation inputs
# =============================================================================


class FeedbackPreferences(CamelModel):
    collection_weight: Optional[float] = Field(None, ge=0, le=1)
    trophies_weight: Optional[float] = Field(None, ge=0, le=1)
    playstyle_weight: Optional[float] = Field(None, ge=0, le=1)
    difficulty_weight: Optional[float] = Field(None, ge=0, le=1)
    prefer_archetypes: Optional[List[Archetype]] = None
    avoid_archetypes: Optional[List[Archetype]] = None


class BattleArchetypeAggregate(CamelModel):
    total_battles: int = Field(..., ge=0)
    archetype_exposure: Dict[Archetype, int] = Field(default_factory=dict)

    def share(self, archetype: Archetype) -> float:
        if self.total_battles == 0:
            return 0.0
        return self.archetype_exposure.get(archetype, 0) / self.total_battles


class RecommendationPayload(CamelModel):
    player: PlayerProfile
    quiz: QuizResponse
    preferences: Optional[str] = None
    user_id: Optional[str] = Field(None, min_length=1)
    # Seeds the experiment assignment only; stored sessions get a server id
    session_id: Optional[str] = None
    feedback_preferences: Optional[FeedbackPreferences] = None
    battle_aggregate: Optional[BattleArchetypeAggregate] = None
    weight_variant_override: Optional[str] = Field(None, min_length=1)

    @field_validator("session_id")
    @classmethod
    def session_id_is_uuid(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            uuid.UUID(value)
        return value


class FeedbackRequest(CamelModel):
    session_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=-1, le=1)
    notes: Optional[str] = Field(None, max_length=2000)


# =============================================================================
# Outputs
# =============================================================================


class ScoreBreakdown(CamelModel):
    collection: int = Field(..., ge=0, le=100)
    trophies: int = Field(..., ge=0, le=100)
    playstyle: int = Field(..., ge=0, le=100)
    difficulty: int = Field(..., ge=0, le=100)


class DeckScore(CamelModel):
    deck: DeckDefinition
    score: int = Field(..., ge=0, le=100)
    breakdown: ScoreBreakdown
    notes: List[str] = Field(default_factory=list)
