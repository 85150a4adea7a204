"""
Deterministic A/B variant assignment for recommendation experiments.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union


class ExperimentKey(str, Enum):
    DECK_WEIGHTING = "deck-weighting"


@dataclass(frozen=True)
class VariantDescriptor:
    name: str
    weight: int
    description: str = ""


@dataclass(frozen=True)
class ExperimentDescriptor:
    key: ExperimentKey
    description: str
    owner: str
    variants: List[VariantDescriptor]
    default_variant: str
    tags: List[str] = field(default_factory=list)

    @property
    def total_weight(self) -> int:
        return sum(variant.weight for variant in self.variants)


@dataclass
class ExperimentContext:
    user_id: Optional[str] = None
    player_tag: Optional[str] = None
    session_id: Optional[str] = None
    seed: Optional[str] = None
    override_variant: Optional[str] = None


@dataclass(frozen=True)
class ExperimentAssignment:
    descriptor: ExperimentDescriptor
    variant: str
    reason: str  # "override" | "rollout"


EXPERIMENT_CATALOG: Dict[ExperimentKey, ExperimentDescriptor] = {
    ExperimentKey.DECK_WEIGHTING: ExperimentDescriptor(
        key=ExperimentKey.DECK_WEIGHTING,
        description=(
            "Tune recommendation scoring weights with player feedback preferences "
            "and recent opponent archetype exposure."
        ),
        owner="Data Science",
        variants=[
            VariantDescriptor("control", 80, "Baseline weights with mild exposure adjustments."),
            VariantDescriptor(
                "meta-aware",
                20,
                "Aggressively rebalances weights using meta exposure and preference signals.",
            ),
        ],
        default_variant="control",
        tags=["rec-engine", "weighting", "experiment"],
    ),
}


def hash_seed(seed: str) -> int:
    """
    Stable 32-bit polynomial hash (h * 31 + code unit), absolute value.

    Works on UTF-16 code units so that assignments match the ones computed
    by the web client for the same seed.
    """
    value = 0
    encoded = seed.encode("utf-16-le")
    for index in range(0, len(encoded), 2):
        unit = encoded[index] | (encoded[index + 1] << 8)
        value = (value * 31 + unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return abs(value)


def get_experiment_descriptor(key: Union[ExperimentKey, str]) -> ExperimentDescriptor:
    """Raises ValueError for keys outside ExperimentKey."""
    return EXPERIMENT_CATALOG[ExperimentKey(key)]


def list_experiments() -> List[ExperimentDescriptor]:
    return list(EXPERIMENT_CATALOG.values())


def _resolve_seed(context: ExperimentContext, descriptor: ExperimentDescriptor) -> str:
    key = descriptor.key.value
    if context.seed:
        return context.seed
    if context.user_id:
        return f"{key}:{context.user_id}"
    if context.player_tag:
        return f"{key}:{context.player_tag}"
    if context.session_id:
        return f"{key}:{context.session_id}"
    return key


def assign_experiment_variant(
    key: Union[ExperimentKey, str],
    context: Optional[ExperimentContext] = None
) -> ExperimentAssignment:
    """
    Bucket a context into one of the experiment's variants.

    An override is returned as-is, known variant or not. Otherwise the
    seed is hashed and mapped onto the cumulative variant weights, so the
    same context always lands in the same variant.
    """
    descriptor = get_experiment_descriptor(key)
    context = context or ExperimentContext()

    if context.override_variant:
        return ExperimentAssignment(descriptor, context.override_variant, "override")

    roll = hash_seed(_resolve_seed(context, descriptor)) % descriptor.total_weight

    cumulative = 0
    for variant in descriptor.variants:
        cumulative += variant.weight
        if roll < cumulative:
            return ExperimentAssignment(descriptor, variant.name, "rollout")

    return ExperimentAssignment(descriptor, descriptor.default_variant, "rollout")
