"""
Clash Royale player tag normalisation and validation.
"""
import re
from typing import Optional

PLAYER_TAG_ALPHABET = "0289PYLQGRJCUV"
CHARACTER_CORRECTIONS = {"O": "0"}

MIN_PLAYER_TAG_LENGTH = 7
MAX_PLAYER_TAG_LENGTH = 14


def normalize_player_tag(value: Optional[str]) -> str:
    """
    Clean a user-supplied tag.

    Keeps what follows a '#', uppercases, drops separators, maps common
    mistakes (O -> 0) and filters to the tag alphabet.
    """
    if not value or not isinstance(value, str):
        return ""

    raw = value.strip()
    if "#" in raw:
        raw = raw[raw.index("#") + 1:]

    cleaned = re.sub(r"[^A-Z0-9]", "", raw.upper())
    corrected = (CHARACTER_CORRECTIONS.get(character, character) for character in cleaned)
    return "".join(character for character in corrected if character in PLAYER_TAG_ALPHABET)


def is_valid_player_tag(value: Optional[str]) -> bool:
    normalized = normalize_player_tag(value)
    return MIN_PLAYER_TAG_LENGTH <= len(normalized) <= MAX_PLAYER_TAG_LENGTH


def describe_player_tag_requirements() -> str:
    return (
        f"Player tags use the characters {', '.join(PLAYER_TAG_ALPHABET)} and are "
        f"{MIN_PLAYER_TAG_LENGTH}-{MAX_PLAYER_TAG_LENGTH} characters long."
    )


def player_tag_validation_message(value: Optional[str]) -> Optional[str]:
    """Error message for display, None when the tag is valid"""
    normalized = normalize_player_tag(value)
    if not normalized:
        return "Only enter characters found in Clash Royale tags."
    if len(normalized) < MIN_PLAYER_TAG_LENGTH:
        remaining = MIN_PLAYER_TAG_LENGTH - len(normalized)
        return f"Add {remaining} more {'character' if remaining == 1 else 'characters'} to reach a valid tag."
    if len(normalized) > MAX_PLAYER_TAG_LENGTH:
        return f"Player tags must be no more than {MAX_PLAYER_TAG_LENGTH} characters."
    return None
