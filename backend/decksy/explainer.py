import logging
from typing import Dict, List, Optional

import aiohttp

from decksy.models import DeckDefinition, DeckScore, PlayerProfile

logger = logging.getLogger(__name__)

GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
MAX_SUGGESTIONS = 3

FALLBACK_MATCHUP_TIPS = [
    {"archetype": "Beatdown", "tip": "Punish heavy tanks by splitting pressure once they drop Golem/Giant."},
    {"archetype": "Cycle", "tip": "Keep spell value high and hold your best counter for their win condition."},
]


def build_prompt(deck: DeckDefinition, score: DeckScore, player: PlayerProfile) -> str:
    return (
        f"You are Decksy AI. Explain why the deck {deck.name} fits a player with "
        f"{player.trophies} trophies in {player.arena}, without mentioning any player names."
        f" Cards: {', '.join(card.name for card in deck.cards)}."
        f" Score breakdown: collection {score.breakdown.collection}, trophies {score.breakdown.trophies},"
        f" playstyle {score.breakdown.playstyle}, difficulty {score.breakdown.difficulty}."
        f" Provide a summary, up to {MAX_SUGGESTIONS} substitution suggestions, and matchup tips"
        f" for common archetypes."
    )


def fallback_explainer(deck: DeckDefinition, score: DeckScore) -> Dict:
    """Deterministic explainer used without Gemini"""
    style = "preferred" if score.breakdown.playstyle >= 60 else "developing"
    return {
        "summary": (
            f"{deck.name} leans into your {style} playstyle and keeps elixir cost at "
            f"{deck.average_elixir}. Use counterpush opportunities from your defensive wins."
        ),
        "substitutions": [
            {
                "card": card.name,
                "suggestion": f"Swap with a similarly costed {card.name} alternative if levels are low.",
            }
            for card in deck.cards[:2]
        ],
        "matchupTips": [dict(tip) for tip in FALLBACK_MATCHUP_TIPS],
    }


def parse_explainer_text(text: str, deck: DeckDefinition, score: DeckScore) -> Dict:
    """
    Turn free-form model output into an explainer.

    First meaningful line is the summary, lines mentioning "substitute" become
    substitutions, lines mentioning "matchup" or "against" become tips.
    Missing sections are filled from the fallback explainer.
    """
    lines = [line.strip() for line in text.split("\n")]
    lines = [line for line in lines if line and not line.startswith("#")]
    fallback = fallback_explainer(deck, score)

    substitutions = []
    for line in lines:
        if "substitute" not in line.lower():
            continue
        card = next((card.name for card in deck.cards if card.name.lower() in line.lower()), deck.cards[0].name)
        substitutions.append({"card": card, "suggestion": line})

    matchup_tips = []
    for line in lines:
        lowered = line.lower()
        if "matchup" in lowered or "against" in lowered:
            matchup_tips.append({"archetype": line.split(":")[0], "tip": line})

    return {
        "summary": lines[0] if lines else f"Play {deck.name} with confidence.",
        "substitutions": substitutions[:MAX_SUGGESTIONS] or fallback["substitutions"],
        "matchupTips": matchup_tips[:MAX_SUGGESTIONS] or fallback["matchupTips"],
    }


class ExplainerService:
    """Coaching notes for a recommended deck (Gemini, with a local fallback)"""

    def __init__(self, api_key: Optional[str] = None, model: str = "gemini-1.5-flash", timeout: float = 15):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def generate(self, deck: DeckDefinition, score: DeckScore, player: PlayerProfile) -> Dict:
        if not self.enabled:
            logger.debug("GEMINI_API_KEY missing. Using fallback explainer.")
            return fallback_explainer(deck, score)

        try:
            text = await self._generate_text(build_prompt(deck, score, player))
            if not text:
                raise ValueError("Gemini returned empty response")
            return parse_explainer_text(text, deck, score)
        except Exception as e:
            logger.warning(f"Gemini request failed. Falling back. Reason: {e}")
            return fallback_explainer(deck, score)

    async def _generate_text(self, prompt: str) -> str:
        body = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        url = GEMINI_API_URL.format(model=self.model)

        async with aiohttp.ClientSession() as session:
            async with session.post(
                url,
                params={"key": self.api_key},
                json=body,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status != 200:
                    logger.error(f"Gemini API Error {resp.status}")
                    raise ValueError(f"Gemini returned status {resp.status}")
                data = await resp.json()

        parts: List[Dict] = data["candidates"][0]["content"]["parts"]
        return "".join(part.get("text", "") for part in parts)
