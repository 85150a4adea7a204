"""
Configuration des poids et constantes pour le scoring des decks.
"""

import math

# Poids de base (somme = 1.0)
BASE_WEIGHTS = {
    "collection": 0.4,
    "trophies": 0.2,
    "playstyle": 0.3,
    "difficulty": 0.1
}

# Aucun poids ne descend sous ce plancher après normalisation
MIN_WEIGHT = 0.05

# Intensité des ajustements d'exposition par variante
VARIANT_INTENSITY = {
    "control": 1.0,
    "meta-aware": 1.5
}

# Ajustements appliqués selon l'archétype des adversaires récents
EXPOSURE_ADJUSTMENTS = {
    "beatdown": {"playstyle": 0.05, "difficulty": 0.05},
    "control": {"collection": 0.05, "playstyle": 0.05},
    "cycle": {"difficulty": 0.05, "trophies": 0.05},
    "siege": {"playstyle": 0.05, "collection": 0.05},
    "spell": {"collection": 0.05, "difficulty": 0.05},
    "tempo": {"playstyle": 0.05, "trophies": 0.05}
}

# Archétypes qui contrent chaque archétype
COUNTER_MATRIX = {
    "beatdown": ["control", "cycle"],
    "control": ["beatdown", "tempo"],
    "cycle": ["beatdown", "spell"],
    "siege": ["beatdown", "tempo"],
    "spell": ["control", "cycle"],
    "tempo": ["control", "cycle"]
}

# Bonus/malus méta
PREFERENCE_BONUS = 5
COUNTER_BONUS_SCALE = 15
MAX_META_BONUS = 8

# Difficulté nominale par archétype
ARCHETYPE_DIFFICULTY = {
    "beatdown": 60,
    "control": 70,
    "cycle": 80,
    "siege": 90,
    "spell": 75,
    "tempo": 65
}

# Difficulté cible selon la tolérance au risque
RISK_TARGET_DIFFICULTY = {
    "safe": 60,
    "mid": 75,
    "greedy": 90
}

# Le score de difficulté ne descend jamais sous ce plancher
DIFFICULTY_FLOOR = 40

# Distance (en trophées) à laquelle le score de trophées atteint 0
TROPHY_DECAY_RANGE = 400

# Points du score de playstyle
PACE_MATCH_POINTS = 40
COMFORT_MATCH_POINTS = 40
RISK_MATCH_POINTS = 20

# Seuils des notes
TROPHY_NOTE_THRESHOLD = 60
PLAYSTYLE_NOTE_THRESHOLD = 50

# Nombre de decks retournés
TOP_N = 3


def clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


def round_half_up(value: float) -> int:
    """Arrondi au plus proche, .5 vers le haut (62.5 -> 63, -2.5 -> -2)."""
    return math.floor(value + 0.5)
