import pytest

from decksy.player_tag import (
    describe_player_tag_requirements,
    is_valid_player_tag,
    normalize_player_tag,
    player_tag_validation_message,
)


@pytest.mark.parametrize("raw, expected", [
    ("#2PP", "2PP"),
    ("  #2ppQ8ly ", "2PPQ8LY"),
    ("2PPQ8LY", "2PPQ8LY"),
    ("#9O2LQ", "902LQ"),
    ("2P-P Q8", "2PPQ8"),
    ("tag #ABC2", "C2"),
    ("", ""),
    (None, ""),
])
def test_normalize_player_tag(raw, expected):
    assert normalize_player_tag(raw) == expected


@pytest.mark.parametrize("raw, valid", [
    ("#2PPQ8LY", True),
    ("#2PPQ8L", False),
    ("#2PPQ8", False),
    ("#" + "2" * 14, True),
    ("#" + "2" * 15, False),
    ("#ABCDEFG", False),
])
def test_is_valid_player_tag(raw, valid):
    assert is_valid_player_tag(raw) is valid


def test_validation_messages():
    assert player_tag_validation_message("#2PPQ8LY") is None
    assert player_tag_validation_message("###") == "Only enter characters found in Clash Royale tags."
    assert player_tag_validation_message("#2PPQ8L") == "Add 1 more character to reach a valid tag."
    assert player_tag_validation_message("#2PP") == "Add 4 more characters to reach a valid tag."
    assert player_tag_validation_message("2" * 20) == "Player tags must be no more than 14 characters."


def test_requirements_text():
    text = describe_player_tag_requirements()

    assert "0, 2, 8, 9, P, Y, L, Q, G, R, J, C, U, V" in text
    assert "7-14" in text
