import asyncio
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Optional
from urllib.parse import quote

import aiohttp

from decksy.cache import SharedStore
from decksy.catalog import CARD_ELIXIR_COST
from decksy.models import Archetype, BattleArchetypeAggregate, PlayerProfile

logger = logging.getLogger(__name__)

PROFILE_CACHE_SECONDS = 300
BATTLE_LOG_CACHE_SECONDS = 300
FALLBACK_PROFILE_CACHE_SECONDS = 60
FALLBACK_BATTLE_LOG_CACHE_SECONDS = 120
MAX_BATTLES = 5

MOCK_COLLECTION = [
    {"key": "mega_knight", "level": 13},
    {"key": "miner", "level": 12},
    {"key": "wall_breakers", "level": 13},
    {"key": "bats", "level": 13},
    {"key": "inferno_dragon", "level": 11},
    {"key": "musketeer", "level": 13},
    {"key": "zap", "level": 13},
    {"key": "snowball", "level": 12},
    {"key": "royal_giant", "level": 13},
    {"key": "fisherman", "level": 11},
    {"key": "mother_witch", "level": 12},
    {"key": "hunter", "level": 13},
    {"key": "lightning", "level": 12},
    {"key": "log", "level": 13},
    {"key": "electro_spirit", "level": 13},
    {"key": "royal_ghost", "level": 12},
]

# Cartes utilisées pour classer les decks adverses
BEATDOWN_TANKS = {"golem", "giant", "royal_giant", "electro_giant", "lava_hound", "pekka"}
SIEGE_BUILDINGS = {"x_bow", "mortar"}
CYCLE_WIN_CONDITIONS = {"hog_rider", "miner"}
BAIT_CARDS = {"goblin_barrel", "princess", "goblin_gang", "skeleton_army"}
BRIDGE_SPAM_CARDS = {"battle_ram", "ram_rider", "bandit", "royal_ghost", "dark_prince"}
SPELL_CARDS = {
    "arrows", "earthquake", "fireball", "freeze", "giant_snowball", "lightning", "log",
    "poison", "rage", "rocket", "snowball", "tornado", "zap", "the_log",
}
EXTRA_ELIXIR_COST = {
    "arrows": 3, "bandit": 3, "battle_ram": 4, "dark_prince": 4, "earthquake": 3,
    "electro_giant": 7, "freeze": 4, "giant": 5, "goblin_barrel": 3, "goblin_gang": 3,
    "golem": 8, "graveyard": 5, "hog_rider": 4, "ice_golem": 2, "mortar": 4, "pekka": 7,
    "poison": 4, "princess": 3, "rage": 2, "ram_rider": 5, "rocket": 6,
    "skeleton_army": 3, "the_log": 2, "tornado": 3,
}
ELIXIR_COST = {**CARD_ELIXIR_COST, **EXTRA_ELIXIR_COST}


def card_key(card: Dict) -> Optional[str]:
    """Card key from an API card entry (explicit key or derived from its name)"""
    if card.get("key"):
        return card["key"]
    name = card.get("name")
    if not name:
        return None
    return name.lower().replace("-", "_").replace(".", "").replace(" ", "_")


def detect_archetype(card_keys: List[str]) -> Optional[Archetype]:
    """
    Classify an 8-card deck into an archetype.

    Returns None for incomplete decks.
    """
    if len(card_keys) < 8:
        return None

    keys = set(card_keys)
    costs = [ELIXIR_COST[key] for key in card_keys if key in ELIXIR_COST]
    average_elixir = sum(costs) / len(costs) if costs else 4.0

    if average_elixir < 3.0 and keys & CYCLE_WIN_CONDITIONS:
        return Archetype.CYCLE
    if keys & BEATDOWN_TANKS:
        return Archetype.BEATDOWN
    if "goblin_barrel" in keys and len(keys & BAIT_CARDS) >= 2:
        return Archetype.SPELL
    if len(keys & BRIDGE_SPAM_CARDS) >= 2:
        return Archetype.TEMPO
    if keys & SIEGE_BUILDINGS:
        return Archetype.SIEGE
    if len(keys & SPELL_CARDS) >= 4:
        return Archetype.SPELL
    return Archetype.CONTROL


class ClashRoyaleAPI:
    """Client for the Clash Royale API (through the RoyaleAPI proxy)"""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://proxy.royaleapi.dev",
        store: Optional[SharedStore] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.store = store or SharedStore()
        self.headers = {
            "Authorization": f"Bearer {api_key}" if api_key else "",
            "Accept": "application/json"
        }

    def _player_url(self, tag: str, suffix: str = "") -> str:
        return f"{self.base_url}/v1/players/{quote('#' + tag.lstrip('#'), safe='')}{suffix}"

    async def _request(self, url: str, session: aiohttp.ClientSession) -> Optional[Dict]:
        """Make request with retry on rate limit"""
        max_retries = 3

        for attempt in range(max_retries):
            try:
                async with session.get(url, headers=self.headers, timeout=aiohttp.ClientTimeout(total=10)) as resp:
                    if resp.status == 200:
                        return await resp.json()

                    elif resp.status == 429:
                        retry_after = int(resp.headers.get("Retry-After", 2)) + 1
                        logger.warning(f"Rate limited, waiting {retry_after}s (attempt {attempt + 1}/{max_retries})")
                        await asyncio.sleep(retry_after)
                        continue

                    elif resp.status == 404:
                        return None

                    else:
                        logger.error(f"API Error {resp.status}")
                        return None

            except asyncio.TimeoutError:
                logger.warning(f"Timeout (attempt {attempt + 1})")
                await asyncio.sleep(1)

        return None

    async def fetch_player_profile(self, tag: str) -> PlayerProfile:
        """
        Get a player's profile and card collection.

        Falls back to a mock profile when the API is unavailable.
        """
        cache_key = f"player:{tag}"
        cached = await self.store.get_json(cache_key)
        if cached:
            return PlayerProfile.model_validate(cached)

        try:
            if not self.api_key:
                raise ValueError("CLASH_ROYALE_API_KEY not configured")

            async with aiohttp.ClientSession() as session:
                data = await self._request(self._player_url(tag), session)

            if not data:
                raise ValueError(f"No player data for {tag}")

            collection = {}
            for card in data.get("cards", []):
                key = card_key(card)
                if key:
                    collection[key] = {"key": key, "level": card.get("level", 0)}

            profile = PlayerProfile(
                tag=data["tag"],
                name=data["name"],
                trophies=data.get("trophies", 0),
                arena=(data.get("currentArena") or {}).get("name", "Unknown Arena"),
                collection=list(collection.values()),
            )
            await self.store.set_json(cache_key, profile.to_wire(), PROFILE_CACHE_SECONDS)
            return profile

        except Exception as e:
            logger.warning(f"Clash Royale API unavailable, returning mock data. Reason: {e}")
            profile = PlayerProfile(
                tag=tag,
                name="Mock Player",
                trophies=6200,
                arena="Master I",
                collection=MOCK_COLLECTION,
            )
            await self.store.set_json(cache_key, profile.to_wire(), FALLBACK_PROFILE_CACHE_SECONDS)
            return profile

    async def fetch_battle_log(self, tag: str) -> List[Dict]:
        """
        Get the player's most recent battles.

        Each entry: opponent, result (win/loss/draw), deck, opponentDeck, timestamp.
        """
        cache_key = f"battles:{tag}"
        cached = await self.store.get_json(cache_key)
        if cached:
            return cached

        try:
            if not self.api_key:
                raise ValueError("CLASH_ROYALE_API_KEY not configured")

            async with aiohttp.ClientSession() as session:
                raw_battles = await self._request(self._player_url(tag, "/battlelog"), session)

            if raw_battles is None:
                raise ValueError(f"No battle log for {tag}")

            battle_log = [self._parse_battle(match) for match in raw_battles[:MAX_BATTLES]]
            await self.store.set_json(cache_key, battle_log, BATTLE_LOG_CACHE_SECONDS)
            return battle_log

        except Exception as e:
            logger.warning(f"Clash Royale battle log fallback. Reason: {e}")
            now = datetime.utcnow()
            mock = [
                {
                    "opponent": "Ladder Legend",
                    "result": "win",
                    "deck": ["mega_knight", "miner", "wall_breakers", "bats"],
                    "opponentDeck": [],
                    "timestamp": now.isoformat(),
                },
                {
                    "opponent": "Spell Cycle",
                    "result": "loss",
                    "deck": ["x_bow", "tesla", "archers"],
                    "opponentDeck": [],
                    "timestamp": (now - timedelta(hours=1)).isoformat(),
                },
            ]
            await self.store.set_json(cache_key, mock, FALLBACK_BATTLE_LOG_CACHE_SECONDS)
            return mock

    def _parse_battle(self, match: Dict) -> Dict:
        team = (match.get("team") or [{}])[0]
        opponent = (match.get("opponent") or match.get("opponentTeam") or [{}])[0]

        team_crowns = match.get("teamCrowns")
        if not isinstance(team_crowns, int):
            team_crowns = team.get("crowns", team.get("crownsEarned", 0)) or 0
        opponent_crowns = match.get("opponentCrowns")
        if not isinstance(opponent_crowns, int):
            opponent_crowns = opponent.get("crowns", opponent.get("crownsEarned", 0)) or 0

        if team_crowns > opponent_crowns:
            result = "win"
        elif team_crowns < opponent_crowns:
            result = "loss"
        else:
            result = "draw"

        return {
            "opponent": opponent.get("name", "Unknown"),
            "result": result,
            "deck": self._deck_keys(team),
            "opponentDeck": self._deck_keys(opponent),
            "timestamp": match.get("battleTime"),
        }

    def _deck_keys(self, player: Dict) -> List[str]:
        cards = player.get("cards") or player.get("deck") or []
        return [key for key in (card_key(card) for card in cards if card) if key]

    async def fetch_battle_archetype_aggregate(self, tag: str) -> Optional[BattleArchetypeAggregate]:
        """
        Count recent opponent decks by archetype.

        Returns None when no opponent deck could be classified.
        """
        battles = await self.fetch_battle_log(tag)

        exposure = Counter()
        for battle in battles:
            archetype = detect_archetype(battle.get("opponentDeck") or [])
            if archetype is not None:
                exposure[archetype] += 1

        if not exposure:
            return None

        return BattleArchetypeAggregate(
            total_battles=len(battles),
            archetype_exposure=dict(exposure),
        )
