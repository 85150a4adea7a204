"""
Static deck catalog used as the recommendation universe.

Loaded once at import; request handlers only read it.
"""
import math
from collections import Counter
from typing import Dict, List, Optional, Tuple

from decksy.models import Archetype, DeckDefinition


def _deck(slug, name, archetype, trophy_range, description, average_elixir,
          playstyles, cards, strengths, weaknesses) -> DeckDefinition:
    return DeckDefinition(
        slug=slug,
        name=name,
        archetype=archetype,
        trophy_range=trophy_range,
        description=description,
        average_elixir=average_elixir,
        playstyles=playstyles,
        cards=[
            {"name": card_name, "key": key, "level_requirement": 13}
            for card_name, key in cards
        ],
        strengths=strengths,
        weaknesses=weaknesses,
    )


DECK_CATALOG: List[DeckDefinition] = [
    _deck(
        "mega-knight-miner-control",
        "Mega Knight Miner Control",
        "control",
        (4500, 8000),
        "Grounded control deck that punishes overcommitments and excels at counterpushing.",
        3.3,
        ["control"],
        [
            ("Mega Knight", "mega_knight"),
            ("Miner", "miner"),
            ("Wall Breakers", "wall_breakers"),
            ("Bats", "bats"),
            ("Inferno Dragon", "inferno_dragon"),
            ("Musketeer", "musketeer"),
            ("Zap", "zap"),
            ("Snowball", "snowball"),
        ],
        ["Punishes bridge spam", "Resilient defense", "Strong counterpush potential"],
        ["Struggles vs air swarm", "Requires precise elixir management"],
    ),
    _deck(
        "royal-giant-fisherman",
        "Royal Giant Fisherman",
        "beatdown",
        (5000, 9000),
        "Control the tempo with Fisherman pulls and chip damage while defending efficiently.",
        3.6,
        ["bridge", "control"],
        [
            ("Royal Giant", "royal_giant"),
            ("Fisherman", "fisherman"),
            ("Mother Witch", "mother_witch"),
            ("Hunter", "hunter"),
            ("Lightning", "lightning"),
            ("Log", "log"),
            ("Electro Spirit", "electro_spirit"),
            ("Royal Ghost", "royal_ghost"),
        ],
        ["Flexible defence", "Reliable win condition", "Punishes heavy tanks"],
        ["Fast cycle matchups", "High skill ceiling"],
    ),
    _deck(
        "x-bow-ice-spirit",
        "X-Bow Ice Spirit Cycle",
        "siege",
        (5500, 10000),
        "Technical siege deck with fast cycle and relentless chip potential.",
        3.0,
        ["cycle", "spell"],
        [
            ("X-Bow", "x_bow"),
            ("Tesla", "tesla"),
            ("Archers", "archers"),
            ("Knight", "knight"),
            ("Ice Spirit", "ice_spirit"),
            ("Log", "log"),
            ("Fireball", "fireball"),
            ("Skeletons", "skeletons"),
        ],
        ["Outcycles opponents", "High tower damage potential", "Excellent control"],
        ["Needs defensive discipline", "Vulnerable to heavy spells"],
    ),
    _deck(
        "lava-hound-balloon",
        "Lava Hound Balloon",
        "beatdown",
        (4000, 9000),
        "Air-focused beatdown deck that overwhelms opponents in double elixir.",
        3.9,
        ["aggro", "bridge"],
        [
            ("Lava Hound", "lava_hound"),
            ("Balloon", "balloon"),
            ("Baby Dragon", "baby_dragon"),
            ("Mega Minion", "mega_minion"),
            ("Miner", "miner"),
            ("Tombstone", "tombstone"),
            ("Fireball", "fireball"),
            ("Zap", "zap"),
        ],
        ["Snowballs with support troops", "Multiple win conditions", "Excellent versus ground decks"],
        ["Air-targeting swarms", "Rocket cycle"],
    ),
]

# Coût en élixir des cartes du catalogue
CARD_ELIXIR_COST: Dict[str, int] = {
    "archers": 3,
    "baby_dragon": 4,
    "balloon": 5,
    "bats": 2,
    "electro_spirit": 1,
    "fireball": 4,
    "fisherman": 3,
    "hunter": 4,
    "ice_spirit": 1,
    "inferno_dragon": 4,
    "knight": 3,
    "lava_hound": 7,
    "lightning": 6,
    "log": 2,
    "mega_knight": 7,
    "mega_minion": 3,
    "miner": 3,
    "mother_witch": 4,
    "musketeer": 4,
    "royal_ghost": 3,
    "royal_giant": 6,
    "skeletons": 1,
    "snowball": 2,
    "tesla": 4,
    "tombstone": 3,
    "wall_breakers": 2,
    "x_bow": 6,
    "zap": 2,
}

MAX_TROPHIES = 10000
ELIXIR_TOLERANCE = 0.1


def get_deck_by_slug(slug: str, decks: Optional[List[DeckDefinition]] = None) -> Optional[DeckDefinition]:
    for deck in decks if decks is not None else DECK_CATALOG:
        if deck.slug == slug:
            return deck
    return None


def _round_one_decimal(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def computed_average_elixir(deck: DeckDefinition, costs: Dict[str, int] = CARD_ELIXIR_COST) -> Optional[float]:
    """Mean elixir cost of the deck, or None if a card cost is unknown"""
    total = 0
    for card in deck.cards:
        if card.key not in costs:
            return None
        total += costs[card.key]
    return total / len(deck.cards)


def lint_catalog(
    decks: List[DeckDefinition],
    costs: Dict[str, int] = CARD_ELIXIR_COST
) -> Tuple[List[str], List[str]]:
    """
    Check catalog consistency.

    Returns:
        (errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []
    seen_slugs = set()
    coverage = Counter(deck.archetype for deck in decks)

    for deck in decks:
        if deck.slug in seen_slugs:
            errors.append(f"Duplicate deck slug detected: {deck.slug}")
        seen_slugs.add(deck.slug)

        if len(deck.cards) != 8:
            errors.append(f"Deck {deck.slug} should contain exactly 8 cards but has {len(deck.cards)}.")

        low, high = deck.trophy_range
        if low < 0 or high < 0 or low > high or high > MAX_TROPHIES:
            errors.append(f"Deck {deck.slug} has an invalid trophy range: [{low}, {high}].")

        if not deck.strengths or not deck.weaknesses:
            warnings.append(f"Deck {deck.slug} should include strengths and weaknesses notes.")

        missing = [card.key for card in deck.cards if card.key not in costs]
        for key in missing:
            errors.append(f'No elixir cost found for card key "{key}" (deck {deck.slug}).')
        if missing:
            continue

        average = computed_average_elixir(deck, costs)
        diff = abs(_round_one_decimal(average) - _round_one_decimal(deck.average_elixir))
        # Tolérance de flottants sur la différence arrondie
        if diff > ELIXIR_TOLERANCE + 1e-9:
            errors.append(
                f"Average elixir mismatch for deck {deck.slug}. "
                f"Declared {deck.average_elixir}, computed {average:.2f}."
            )
        elif diff > 0.05:
            warnings.append(
                f"Average elixir rounding for deck {deck.slug} is slightly off "
                f"({deck.average_elixir} vs {average:.2f})."
            )

    uncovered = [archetype.value for archetype in Archetype if coverage.get(archetype, 0) == 0]
    if uncovered:
        warnings.append(f"Missing archetype coverage for: {', '.join(uncovered)}.")

    used_keys = {card.key for deck in decks for card in deck.cards}
    unused = sorted(key for key in costs if key not in used_keys)
    if unused:
        warnings.append(f"Elixir cost map contains unused keys: {', '.join(unused)}.")

    return errors, warnings
