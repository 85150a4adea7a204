import asyncio
import aiohttp
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from decksy.catalog import get_deck_by_slug
from decksy.explainer import ExplainerService, build_prompt, fallback_explainer, parse_explainer_text
from decksy.scoring import score_deck


@pytest.fixture
def deck():
    return get_deck_by_slug("mega-knight-miner-control")


@pytest.fixture
def score(deck, make_payload):
    return score_deck(deck, make_payload())


def test_prompt_leaves_out_player_name(deck, score, control_player):
    prompt = build_prompt(deck, score, control_player)

    assert prompt.startswith("You are Decksy AI.")
    assert "Mega Knight, Miner" in prompt
    assert "6200 trophies" in prompt
    assert control_player.name not in prompt


def test_fallback_explainer(deck, score):
    explainer = fallback_explainer(deck, score)

    # playstyle breakdown is 60
    assert explainer["summary"].startswith(
        "Mega Knight Miner Control leans into your preferred playstyle and keeps elixir cost at 3.3."
    )
    assert [s["card"] for s in explainer["substitutions"]] == ["Mega Knight", "Miner"]
    assert [t["archetype"] for t in explainer["matchupTips"]] == ["Beatdown", "Cycle"]


def test_parse_model_text(deck, score):
    text = "\n".join([
        "# Overview",
        "A sturdy control deck for your ladder climb.",
        "",
        "Substitute Zap with Giant Snowball if it is underlevelled.",
        "Beatdown: play against Golem by splitting the lanes.",
        "Cycle matchup: keep Inferno Dragon for Hog Rider.",
    ])

    explainer = parse_explainer_text(text, deck, score)

    assert explainer["summary"] == "A sturdy control deck for your ladder climb."
    assert explainer["substitutions"] == [
        {"card": "Zap", "suggestion": "Substitute Zap with Giant Snowball if it is underlevelled."}
    ]
    assert [t["archetype"] for t in explainer["matchupTips"]] == ["Beatdown", "Cycle matchup"]


def test_parse_fills_missing_sections_from_fallback(deck, score):
    explainer = parse_explainer_text("Just play it.", deck, score)

    assert explainer["summary"] == "Just play it."
    assert explainer["substitutions"] == fallback_explainer(deck, score)["substitutions"]
    assert explainer["matchupTips"] == fallback_explainer(deck, score)["matchupTips"]


def test_service_without_key_uses_fallback(deck, score, control_player):
    service = ExplainerService(api_key=None)

    with patch.object(ExplainerService, "_generate_text", new=AsyncMock()) as generate:
        explainer = asyncio.run(service.generate(deck, score, control_player))

    generate.assert_not_called()
    assert explainer == fallback_explainer(deck, score)


def test_service_parses_model_output(deck, score, control_player):
    service = ExplainerService(api_key="key")

    with patch.object(ExplainerService, "_generate_text", new=AsyncMock(return_value="Great pick.")):
        explainer = asyncio.run(service.generate(deck, score, control_player))

    assert explainer["summary"] == "Great pick."


@pytest.mark.parametrize("failure", [
    aiohttp.ClientConnectionError("offline"),
    asyncio.TimeoutError(),
    ValueError("Gemini returned status 500"),
])
def test_service_failure_falls_back(deck, score, control_player, failure):
    service = ExplainerService(api_key="key")

    with patch.object(ExplainerService, "_generate_text", new=AsyncMock(side_effect=failure)):
        explainer = asyncio.run(service.generate(deck, score, control_player))

    assert explainer == fallback_explainer(deck, score)


def test_service_empty_text_falls_back(deck, score, control_player):
    service = ExplainerService(api_key="key")

    with patch.object(ExplainerService, "_generate_text", new=AsyncMock(return_value="")):
        explainer = asyncio.run(service.generate(deck, score, control_player))

    assert explainer == fallback_explainer(deck, score)


def gemini_session(body, status=200):
    """Fake aiohttp.ClientSession whose POST answers with the given JSON body"""
    response = MagicMock(status=status)
    response.json = AsyncMock(return_value=body)
    response.__aenter__.return_value = response
    session = MagicMock()
    session.post.return_value = response
    session.__aenter__.return_value = session
    return session


def test_service_reads_gemini_parts(deck, score, control_player):
    service = ExplainerService(api_key="key")
    body = {"candidates": [{"content": {"parts": [{"text": "Solid "}, {"text": "control pick."}]}}]}

    with patch("decksy.explainer.aiohttp.ClientSession", return_value=gemini_session(body)):
        explainer = asyncio.run(service.generate(deck, score, control_player))

    assert explainer["summary"] == "Solid control pick."


@pytest.mark.parametrize("body", [
    {"candidates": [{"content": {"parts": None}}]},
    {"candidates": [{"content": {"parts": ["plain text"]}}]},
    {"candidates": [{"content": None}]},
    {"candidates": None},
])
def test_service_malformed_response_falls_back(deck, score, control_player, body):
    service = ExplainerService(api_key="key")

    with patch("decksy.explainer.aiohttp.ClientSession", return_value=gemini_session(body)):
        explainer = asyncio.run(service.generate(deck, score, control_player))

    assert explainer == fallback_explainer(deck, score)
