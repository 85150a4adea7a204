"""
tests/conftest.py
Shared fixtures: player profiles, quiz answers and a controllable clock.
"""

import pytest

from decksy.catalog import DECK_CATALOG, get_deck_by_slug
from decksy.models import PlayerProfile, QuizResponse, RecommendationPayload

MEGA_KNIGHT_KEYS = [card.key for card in get_deck_by_slug("mega-knight-miner-control").cards]


class FakeClock:
    """Manually advanced clock (milliseconds or seconds, caller's choice)"""

    def __init__(self, now=1_700_000_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, amount):
        self.now += amount


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog():
    return list(DECK_CATALOG)


@pytest.fixture
def control_player():
    """Owns every Mega Knight control card at the required level"""
    return PlayerProfile(
        tag="#PLAYER1",
        name="Control Main",
        trophies=6200,
        arena="Master I",
        collection=[{"key": key, "level": 13} for key in MEGA_KNIGHT_KEYS],
    )


@pytest.fixture
def empty_player():
    return PlayerProfile(tag="#NEWBIE", name="Newbie", trophies=1200, arena="Spell Valley", collection=[])


@pytest.fixture
def control_quiz():
    return QuizResponse(preferred_pace="control", comfort_level="bridge", risk_tolerance="mid")


@pytest.fixture
def make_payload(control_player, control_quiz):
    """Factory for recommendation payloads; pinned to the control variant unless told otherwise"""

    def _make(**overrides):
        fields = {
            "player": control_player,
            "quiz": control_quiz,
            "weight_variant_override": "control",
        }
        fields.update(overrides)
        return RecommendationPayload(**fields)

    return _make
