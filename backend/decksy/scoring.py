"""
Deck scoring and ranking against a player profile.

Everything in this module is synchronous and side-effect free, except
rank_decks which forwards two experiment events to the analytics sink it
is given.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from decksy.analytics import AnalyticsSink, emit
from decksy.experiments import ExperimentContext, ExperimentKey, assign_experiment_variant
from decksy.models import (
    Archetype,
    BattleArchetypeAggregate,
    DeckDefinition,
    DeckScore,
    FeedbackPreferences,
    Pace,
    PlayerProfile,
    Playstyle,
    QuizResponse,
    RecommendationPayload,
    Risk,
    ScoreBreakdown,
)
from decksy.weights import (
    ARCHETYPE_DIFFICULTY,
    BASE_WEIGHTS,
    COMFORT_MATCH_POINTS,
    COUNTER_BONUS_SCALE,
    COUNTER_MATRIX,
    DIFFICULTY_FLOOR,
    EXPOSURE_ADJUSTMENTS,
    MAX_META_BONUS,
    MIN_WEIGHT,
    PACE_MATCH_POINTS,
    PLAYSTYLE_NOTE_THRESHOLD,
    PREFERENCE_BONUS,
    RISK_MATCH_POINTS,
    RISK_TARGET_DIFFICULTY,
    TOP_N,
    TROPHY_DECAY_RANGE,
    TROPHY_NOTE_THRESHOLD,
    VARIANT_INTENSITY,
    clamp,
    round_half_up,
)

logger = logging.getLogger(__name__)

META_AWARE_VARIANT = "meta-aware"

PACE_TO_PLAYSTYLE = {
    Pace.AGGRO: Playstyle.AGGRO,
    Pace.BALANCED: Playstyle.BRIDGE,
    Pace.CONTROL: Playstyle.CONTROL,
}


@dataclass(frozen=True)
class WeightVector:
    collection: float
    trophies: float
    playstyle: float
    difficulty: float

    @classmethod
    def from_dict(cls, values: Dict[str, float]) -> "WeightVector":
        return cls(**values)

    def as_dict(self) -> Dict[str, float]:
        return {
            "collection": self.collection,
            "trophies": self.trophies,
            "playstyle": self.playstyle,
            "difficulty": self.difficulty,
        }

    def total(self) -> float:
        return self.collection + self.trophies + self.playstyle + self.difficulty


@dataclass(frozen=True)
class WeightStrategy:
    weights: WeightVector
    variant: str
    default_variant: str
    assignment_reason: str
    notes: List[str] = field(default_factory=list)

    @property
    def is_default(self) -> bool:
        return self.variant == self.default_variant


# =============================================================================
# Weight resolution
# =============================================================================


def normalise_weights(weights: WeightVector) -> WeightVector:
    """
    Scale weights to sum to 1 with every weight at least MIN_WEIGHT.

    Weights under the floor are pinned to it and the remaining mass is
    shared by the others in proportion to their normalised values.
    """
    total = weights.total()
    if total <= 0:
        return WeightVector.from_dict(BASE_WEIGHTS)

    normalised = {key: value / total for key, value in weights.as_dict().items()}
    result = {key: 0.0 for key in normalised}
    remaining = 1.0
    adjustable = []

    for key, value in normalised.items():
        if value < MIN_WEIGHT:
            result[key] = MIN_WEIGHT
            remaining -= MIN_WEIGHT
        else:
            adjustable.append(key)

    adjustable_total = sum(normalised[key] for key in adjustable)
    safe_remaining = max(remaining, 0.0)

    for key in adjustable:
        if adjustable_total == 0:
            result[key] = safe_remaining / len(adjustable)
        else:
            result[key] = normalised[key] / adjustable_total * safe_remaining

    return WeightVector.from_dict(result)


def apply_feedback_weights(
    weights: WeightVector,
    preferences: Optional[FeedbackPreferences]
) -> WeightVector:
    if preferences is None:
        return weights

    overridden = WeightVector(
        collection=_pick(preferences.collection_weight, weights.collection),
        trophies=_pick(preferences.trophies_weight, weights.trophies),
        playstyle=_pick(preferences.playstyle_weight, weights.playstyle),
        difficulty=_pick(preferences.difficulty_weight, weights.difficulty),
    )
    return normalise_weights(overridden)


def _pick(value: Optional[float], fallback: float) -> float:
    return fallback if value is None else value


def apply_exposure_weights(
    weights: WeightVector,
    aggregate: Optional[BattleArchetypeAggregate],
    intensity: float = 1.0
) -> WeightVector:
    """Nudge the weights toward the factors that help against recent opponents"""
    if aggregate is None or aggregate.total_battles == 0:
        return weights

    adjusted = weights.as_dict()

    for archetype in aggregate.archetype_exposure:
        ratio = aggregate.share(archetype)
        if ratio <= 0:
            continue
        for category, delta in EXPOSURE_ADJUSTMENTS.get(archetype.value, {}).items():
            adjusted[category] = max(MIN_WEIGHT, adjusted[category] + delta * ratio * intensity)

    return normalise_weights(WeightVector.from_dict(adjusted))


def resolve_weight_strategy(payload: RecommendationPayload) -> WeightStrategy:
    """
    Pick the experiment variant for this request and derive the scoring weights.

    Baseline weights are overridden by explicit feedback preferences, then
    adjusted for recent opponent exposure. The meta-aware variant applies the
    exposure adjustments at a higher intensity.
    """
    assignment = assign_experiment_variant(
        ExperimentKey.DECK_WEIGHTING,
        ExperimentContext(
            user_id=payload.user_id,
            player_tag=payload.player.tag,
            session_id=payload.session_id,
            override_variant=payload.weight_variant_override,
        ),
    )
    variant = assignment.variant
    default_variant = assignment.descriptor.default_variant
    intensity = VARIANT_INTENSITY.get(variant, VARIANT_INTENSITY[default_variant])

    weights = normalise_weights(WeightVector.from_dict(BASE_WEIGHTS))
    weights = apply_feedback_weights(weights, payload.feedback_preferences)
    weights = apply_exposure_weights(weights, payload.battle_aggregate, intensity)

    notes = []
    if variant == META_AWARE_VARIANT:
        notes.append("Using meta-aware weighting based on recent opponent exposure.")
    if variant != default_variant:
        notes.append(f"Weight variant: {variant} ({assignment.reason}).")

    return WeightStrategy(
        weights=weights,
        variant=variant,
        default_variant=default_variant,
        assignment_reason=assignment.reason,
        notes=notes,
    )


# =============================================================================
# Sub-scores
# =============================================================================


def score_collection(deck: DeckDefinition, player: PlayerProfile) -> Tuple[float, List[str]]:
    """
    Collection readiness (0-100).

    A card counts fully when owned within one level of the requirement,
    half when owned but lower, and not at all when missing.
    """
    levels = player.levels_by_key()
    points = 0.0
    missing_cards = []

    for card in deck.cards:
        level = levels.get(card.key)
        if level is not None and level >= card.level_requirement - 1:
            points += 1
        elif level is not None:
            points += 0.5
            missing_cards.append(f"{card.name} (needs level {card.level_requirement})")
        else:
            missing_cards.append(card.name)

    return points / len(deck.cards) * 100, missing_cards


def score_trophies(deck: DeckDefinition, player: PlayerProfile) -> float:
    low, high = deck.trophy_range
    if low <= player.trophies <= high:
        return 100.0

    distance = low - player.trophies if player.trophies < low else player.trophies - high
    penalty = clamp(distance / TROPHY_DECAY_RANGE, 0, 1)
    return (1 - penalty) * 100


def score_playstyle(deck: DeckDefinition, quiz: QuizResponse) -> float:
    pace_match = PACE_TO_PLAYSTYLE[quiz.preferred_pace] in deck.playstyles
    comfort_match = Playstyle(quiz.comfort_level.value) in deck.playstyles
    risk_match = (
        (quiz.risk_tolerance == Risk.SAFE and deck.archetype == Archetype.CONTROL)
        or (quiz.risk_tolerance == Risk.GREEDY and deck.archetype == Archetype.BEATDOWN)
        or quiz.risk_tolerance == Risk.MID
    )

    points = (
        (PACE_MATCH_POINTS if pace_match else 0)
        + (COMFORT_MATCH_POINTS if comfort_match else 0)
        + (RISK_MATCH_POINTS if risk_match else 0)
    )
    return clamp(points, 0, 100)


def score_difficulty(deck: DeckDefinition, quiz: QuizResponse) -> float:
    target = RISK_TARGET_DIFFICULTY[quiz.risk_tolerance.value]
    difficulty = ARCHETYPE_DIFFICULTY[deck.archetype.value]
    return clamp(100 - abs(difficulty - target), DIFFICULTY_FLOOR, 100)


def meta_alignment_bonus(
    deck: DeckDefinition,
    preferences: Optional[FeedbackPreferences],
    aggregate: Optional[BattleArchetypeAggregate]
) -> float:
    """
    Bonus/penalty in score points from archetype preferences and recent meta.

    Decks that counter what the player keeps facing gain up to
    MAX_META_BONUS points; mirrors of the dominant archetype lose some.
    """
    bonus = 0.0

    if preferences is not None:
        if preferences.prefer_archetypes and deck.archetype in preferences.prefer_archetypes:
            bonus += PREFERENCE_BONUS
        if preferences.avoid_archetypes and deck.archetype in preferences.avoid_archetypes:
            bonus -= PREFERENCE_BONUS

    if aggregate is not None and aggregate.total_battles > 0:
        counter_ratio = 0.0
        for archetype, count in aggregate.archetype_exposure.items():
            if count <= 0:
                continue
            ratio = count / aggregate.total_battles
            if deck.archetype.value in COUNTER_MATRIX.get(archetype.value, []):
                counter_ratio += ratio
            elif deck.archetype == archetype:
                counter_ratio -= ratio * 0.5

        if counter_ratio != 0:
            bonus += clamp(counter_ratio * COUNTER_BONUS_SCALE, -MAX_META_BONUS, MAX_META_BONUS)

    return bonus


def _dominant_exposure(aggregate: BattleArchetypeAggregate) -> Optional[Tuple[Archetype, int]]:
    exposures = [(archetype, count) for archetype, count in aggregate.archetype_exposure.items() if count > 0]
    if not exposures:
        return None
    # sorted() est stable : à égalité, l'ordre de déclaration est conservé
    return sorted(exposures, key=lambda item: item[1], reverse=True)[0]


# =============================================================================
# Scoring & ranking
# =============================================================================


def score_deck(
    deck: DeckDefinition,
    payload: RecommendationPayload,
    strategy: Optional[WeightStrategy] = None
) -> DeckScore:
    """
    Score a single deck for the player (0-100) with a per-factor breakdown.

    Args:
        deck: Catalog deck
        payload: Player profile, quiz answers and optional signals
        strategy: Pre-resolved weights; resolved from the payload if omitted

    Returns:
        DeckScore with rounded composite score, breakdown and advisory notes
    """
    collection, missing_cards = score_collection(deck, payload.player)
    trophies = score_trophies(deck, payload.player)
    playstyle = score_playstyle(deck, payload.quiz)
    difficulty = score_difficulty(deck, payload.quiz)

    strategy = strategy or resolve_weight_strategy(payload)
    weights = strategy.weights

    weighted = clamp(
        collection * weights.collection
        + trophies * weights.trophies
        + playstyle * weights.playstyle
        + difficulty * weights.difficulty,
        0,
        100,
    )
    bonus = meta_alignment_bonus(deck, payload.feedback_preferences, payload.battle_aggregate)
    final_score = clamp(weighted + bonus, 0, 100)

    notes = []
    if missing_cards:
        notes.append(f"Consider upgrading or substituting: {', '.join(missing_cards)}.")
    if trophies < TROPHY_NOTE_THRESHOLD:
        notes.append("Deck is outside your current trophy comfort zone.")
    if playstyle < PLAYSTYLE_NOTE_THRESHOLD:
        notes.append("Playstyle alignment is limited; expect a learning curve.")

    aggregate = payload.battle_aggregate
    if aggregate is not None and aggregate.total_battles > 0:
        dominant = _dominant_exposure(aggregate)
        if dominant is not None:
            archetype, count = dominant
            share = count / aggregate.total_battles * 100
            notes.append(f"Recent opponents leaned into {archetype.value} archetypes (~{round_half_up(share)}%).")

    if bonus > 1:
        notes.append(f"Meta alignment bonus applied (+{round_half_up(bonus)}).")
    elif bonus < -1:
        notes.append(f"Meta alignment penalty applied ({round_half_up(bonus)}).")

    notes.extend(strategy.notes)

    return DeckScore(
        deck=deck,
        score=round_half_up(final_score),
        breakdown=ScoreBreakdown(
            collection=round_half_up(collection),
            trophies=round_half_up(trophies),
            playstyle=round_half_up(playstyle),
            difficulty=round_half_up(difficulty),
        ),
        notes=notes,
    )


# Mots-clés reconnus dans les préférences libres -> fragment de nom de carte
PREFERENCE_KEYWORDS = [
    (r"balloon|loon", "balloon"),
    (r"hog", "hog"),
    (r"graveyard|gy", "graveyard"),
    (r"miner", "miner"),
    (r"xbow|x-bow", "x-bow"),
    (r"mortar", "mortar"),
    (r"golem", "golem"),
    (r"giant", "giant"),
    (r"pekka", "pekka"),
    (r"mega knight|mk", "mega knight"),
]


def filter_decks_by_preferences(decks: List[DeckDefinition], preferences: Optional[str]) -> List[DeckDefinition]:
    """
    Filter decks using free-text preferences ("balloon", "no hog", ...).

    "no <card>" excludes decks holding the card. When any positive keyword is
    present, only decks matching one of them are kept.
    """
    if not preferences or not preferences.strip():
        return decks

    text = preferences.lower()
    wanted = []
    excluded = []
    for pattern, fragment in PREFERENCE_KEYWORDS:
        if re.search(rf"\bno\s+(?:{pattern})", text):
            excluded.append(fragment)
        elif re.search(pattern, text):
            wanted.append(fragment)
    wants_logbait = "logbait" in text or "log bait" in text

    def keep(deck: DeckDefinition) -> bool:
        card_names = [card.name.lower() for card in deck.cards]

        def has_card(fragment: str) -> bool:
            return any(fragment in name for name in card_names)

        if any(has_card(fragment) for fragment in excluded):
            return False
        if wants_logbait and ("bait" in deck.name.lower() or has_card("goblin barrel")):
            return True
        if any(has_card(fragment) for fragment in wanted):
            return True
        return not (wanted or wants_logbait)

    return [deck for deck in decks if keep(deck)]


def rank_decks(
    decks: List[DeckDefinition],
    payload: RecommendationPayload,
    sink: Optional[AnalyticsSink] = None,
    strategy: Optional[WeightStrategy] = None
) -> List[DeckScore]:
    """
    Score every deck and return the TOP_N best, highest score first.

    Weights are resolved once for the whole pass unless the caller already
    resolved them. Ties keep catalog order.
    """
    if strategy is None:
        strategy = resolve_weight_strategy(payload)

    emit(sink, "experiment_assignment", {
        "experiment": ExperimentKey.DECK_WEIGHTING.value,
        "variant": strategy.variant,
        "reason": strategy.assignment_reason,
        "userId": payload.user_id,
        "playerTag": payload.player.tag,
    })

    candidates = filter_decks_by_preferences(decks, payload.preferences) or decks

    scores = [score_deck(deck, payload, strategy) for deck in candidates]
    scores.sort(key=lambda entry: entry.score, reverse=True)
    top = scores[:TOP_N]

    emit(sink, "experiment_exposure", {
        "experiment": ExperimentKey.DECK_WEIGHTING.value,
        "variant": strategy.variant,
        "topDecks": [entry.deck.slug for entry in top],
        "userId": payload.user_id,
        "playerTag": payload.player.tag,
    })

    logger.info(
        f"Ranked {len(candidates)} decks for {payload.player.tag} "
        f"(variant={strategy.variant}): {[entry.deck.slug for entry in top]}"
    )
    return top
