import pytest
from unittest.mock import MagicMock, patch

from decksy import weights
from decksy.analytics import AnalyticsTracker
from decksy.catalog import get_deck_by_slug
from decksy.models import BattleArchetypeAggregate, FeedbackPreferences, PlayerProfile, QuizResponse
from decksy.scoring import (
    WeightVector,
    filter_decks_by_preferences,
    normalise_weights,
    rank_decks,
    resolve_weight_strategy,
    score_collection,
    score_deck,
    score_difficulty,
    score_playstyle,
    score_trophies,
)

MK = "mega-knight-miner-control"
RG = "royal-giant-fisherman"
XBOW = "x-bow-ice-spirit"
LAVA = "lava-hound-balloon"

BEATDOWN_HEAVY = BattleArchetypeAggregate(total_battles=5, archetype_exposure={"beatdown": 4, "cycle": 1})


def with_trophies(player, trophies):
    return player.model_copy(update={"trophies": trophies})


# --- Sub-scores ---

def test_collection_fully_owned(control_player):
    score, missing = score_collection(get_deck_by_slug(MK), control_player)

    assert score == 100
    assert missing == []


def test_collection_nothing_owned(empty_player):
    score, missing = score_collection(get_deck_by_slug(MK), empty_player)

    assert score == 0
    assert len(missing) == 8
    assert "Mega Knight" in missing


def test_collection_underlevelled_cards_count_half(control_player):
    """One level under the requirement still counts; two levels under counts half."""
    collection = [{"key": card.key, "level": 13} for card in control_player.collection]
    collection[0]["level"] = 12
    collection[1]["level"] = 11
    player = PlayerProfile(tag="#X", name="X", trophies=6200, arena="Master I", collection=collection)

    score, missing = score_collection(get_deck_by_slug(MK), player)

    assert score == pytest.approx(7.5 / 8 * 100)
    assert missing == ["Miner (needs level 13)"]


@pytest.mark.parametrize("trophies, expected", [
    (6200, 100),
    (4500, 100),
    (8000, 100),
    (4300, 50),
    (8200, 50),
    (4100, 0),
    (9000, 0),
    (0, 0),
])
def test_trophy_score_decays_over_400(control_player, trophies, expected):
    deck = get_deck_by_slug(MK)  # 4500-8000

    assert score_trophies(deck, with_trophies(control_player, trophies)) == pytest.approx(expected)


@pytest.mark.parametrize("quiz, slug, expected", [
    ({"preferred_pace": "control", "comfort_level": "bridge", "risk_tolerance": "mid"}, MK, 60),
    ({"preferred_pace": "control", "comfort_level": "bridge", "risk_tolerance": "mid"}, RG, 100),
    ({"preferred_pace": "aggro", "comfort_level": "cycle", "risk_tolerance": "safe"}, LAVA, 40),
    ({"preferred_pace": "aggro", "comfort_level": "cycle", "risk_tolerance": "greedy"}, LAVA, 60),
    ({"preferred_pace": "balanced", "comfort_level": "spell", "risk_tolerance": "safe"}, MK, 20),
    ({"preferred_pace": "balanced", "comfort_level": "cycle", "risk_tolerance": "greedy"}, XBOW, 40),
])
def test_playstyle_points(quiz, slug, expected):
    assert score_playstyle(get_deck_by_slug(slug), QuizResponse(**quiz)) == expected


@pytest.mark.parametrize("risk, slug, expected", [
    ("mid", MK, 95),
    ("greedy", RG, 70),
    ("safe", XBOW, 70),
    ("greedy", XBOW, 100),
])
def test_difficulty_distance_to_target(risk, slug, expected):
    quiz = QuizResponse(preferred_pace="control", comfort_level="bridge", risk_tolerance=risk)

    assert score_difficulty(get_deck_by_slug(slug), quiz) == expected


def test_difficulty_never_below_floor(monkeypatch):
    monkeypatch.setitem(weights.ARCHETYPE_DIFFICULTY, "siege", 0)
    quiz = QuizResponse(preferred_pace="control", comfort_level="bridge", risk_tolerance="greedy")

    assert score_difficulty(get_deck_by_slug(XBOW), quiz) == 40


# --- Weight resolution ---

def test_normalise_weights_sums_to_one_with_floor():
    result = normalise_weights(WeightVector(collection=1, trophies=0, playstyle=0, difficulty=0))

    assert result.total() == pytest.approx(1)
    assert result.trophies == pytest.approx(0.05)
    assert result.collection == pytest.approx(0.85)


def test_normalise_zero_weights_returns_baseline():
    result = normalise_weights(WeightVector(0, 0, 0, 0))

    assert result.as_dict() == weights.BASE_WEIGHTS


def test_baseline_strategy(make_payload):
    strategy = resolve_weight_strategy(make_payload())

    assert strategy.variant == "control"
    assert strategy.is_default
    assert strategy.notes == []
    for key, value in weights.BASE_WEIGHTS.items():
        assert strategy.weights.as_dict()[key] == pytest.approx(value)


def test_feedback_preferences_override_weights(make_payload):
    strategy = resolve_weight_strategy(make_payload(
        feedback_preferences=FeedbackPreferences(collection_weight=0.2, playstyle_weight=0.5)
    ))

    assert strategy.weights.playstyle == pytest.approx(0.5)
    assert strategy.weights.collection == pytest.approx(0.2)
    assert strategy.weights.total() == pytest.approx(1)


def test_exposure_shifts_weights_toward_playstyle_and_difficulty(make_payload):
    baseline = resolve_weight_strategy(make_payload()).weights
    control = resolve_weight_strategy(make_payload(battle_aggregate=BEATDOWN_HEAVY)).weights
    meta = resolve_weight_strategy(make_payload(
        battle_aggregate=BEATDOWN_HEAVY, weight_variant_override="meta-aware"
    )).weights

    assert control.playstyle > baseline.playstyle
    assert meta.playstyle > control.playstyle
    assert meta.difficulty > baseline.difficulty
    assert meta.total() == pytest.approx(1)


def test_meta_aware_strategy_notes(make_payload):
    strategy = resolve_weight_strategy(make_payload(weight_variant_override="meta-aware"))

    assert not strategy.is_default
    assert strategy.assignment_reason == "override"
    assert "Using meta-aware weighting based on recent opponent exposure." in strategy.notes
    assert "Weight variant: meta-aware (override)." in strategy.notes


def test_unknown_variant_behaves_like_control(make_payload):
    unknown = resolve_weight_strategy(make_payload(battle_aggregate=BEATDOWN_HEAVY, weight_variant_override="beta"))
    control = resolve_weight_strategy(make_payload(battle_aggregate=BEATDOWN_HEAVY))

    assert unknown.variant == "beta"
    assert unknown.weights == control.weights


def test_resolver_has_no_side_effects(make_payload):
    payload = make_payload(battle_aggregate=BEATDOWN_HEAVY)
    before = payload.model_dump()

    resolve_weight_strategy(payload)

    assert payload.model_dump() == before


# --- Deck scoring ---

def test_well_matched_deck_scores_high(make_payload):
    result = score_deck(get_deck_by_slug(MK), make_payload())

    assert result.score >= 80
    assert result.breakdown.collection == 100
    assert result.breakdown.trophies == 100
    assert result.breakdown.playstyle == 60
    assert result.breakdown.difficulty == 95
    assert result.notes == []


def test_mismatched_deck_is_low_but_valid(make_payload, empty_player):
    quiz = QuizResponse(preferred_pace="aggro", comfort_level="spell", risk_tolerance="safe")

    result = score_deck(get_deck_by_slug(XBOW), make_payload(player=empty_player, quiz=quiz))

    assert 0 <= result.score < 40
    assert result.breakdown.collection == 0
    assert result.breakdown.trophies == 0
    assert any(note.startswith("Consider upgrading or substituting: X-Bow") for note in result.notes)
    assert "Deck is outside your current trophy comfort zone." in result.notes
    assert "Playstyle alignment is limited; expect a learning curve." in result.notes


def test_scores_are_deterministic(make_payload, catalog):
    payload = make_payload(battle_aggregate=BEATDOWN_HEAVY)

    first = [score_deck(deck, payload) for deck in catalog]
    second = [score_deck(deck, payload) for deck in catalog]

    assert first == second


@pytest.mark.parametrize("risk", ["safe", "mid", "greedy"])
@pytest.mark.parametrize("trophies", [0, 4000, 6500, 20000])
def test_scores_stay_in_bounds(make_payload, catalog, empty_player, risk, trophies):
    quiz = QuizResponse(preferred_pace="balanced", comfort_level="cycle", risk_tolerance=risk)
    for player in (empty_player, make_payload().player):
        payload = make_payload(
            player=with_trophies(player, trophies),
            quiz=quiz,
            battle_aggregate=BEATDOWN_HEAVY,
            feedback_preferences=FeedbackPreferences(prefer_archetypes=["control", "beatdown"]),
        )
        for deck in catalog:
            result = score_deck(deck, payload)
            assert 0 <= result.score <= 100
            for value in result.breakdown.model_dump().values():
                assert 0 <= value <= 100


def test_preferred_archetype_bonus(make_payload):
    deck = get_deck_by_slug(MK)
    plain = score_deck(deck, make_payload())
    preferred = score_deck(deck, make_payload(feedback_preferences=FeedbackPreferences(prefer_archetypes=["control"])))

    assert 4 <= preferred.score - plain.score <= 6
    assert "Meta alignment bonus applied (+5)." in preferred.notes


def test_counter_bonus_is_capped(make_payload):
    result = score_deck(get_deck_by_slug(MK), make_payload(battle_aggregate=BEATDOWN_HEAVY))

    assert "Meta alignment bonus applied (+8)." in result.notes
    assert "Recent opponents leaned into beatdown archetypes (~80%)." in result.notes


def test_strategy_notes_are_appended(make_payload):
    result = score_deck(get_deck_by_slug(MK), make_payload(weight_variant_override="meta-aware"))

    assert result.notes[-1] == "Weight variant: meta-aware (override)."


# --- Preference filter ---

def test_filter_by_wanted_card(catalog):
    assert [deck.slug for deck in filter_decks_by_preferences(catalog, "I love balloon")] == [LAVA]


def test_filter_excludes_negated_card(catalog):
    assert [deck.slug for deck in filter_decks_by_preferences(catalog, "no miner please")] == [RG, XBOW]


def test_filter_without_keywords_keeps_everything(catalog):
    assert filter_decks_by_preferences(catalog, "") == catalog
    assert filter_decks_by_preferences(catalog, "something fun") == catalog


def test_filter_logbait_without_bait_decks(catalog):
    assert filter_decks_by_preferences(catalog, "logbait") == []


# --- Ranking ---

def test_ranking_puts_best_match_first(make_payload, catalog):
    results = rank_decks(catalog, make_payload())

    assert len(results) == 3
    assert results[0].deck.slug == MK
    assert results[0].score >= 80
    assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)


def test_ranking_ties_keep_catalog_order(make_payload):
    base = get_deck_by_slug(XBOW)
    first = base.model_copy(update={"slug": "first"})
    second = base.model_copy(update={"slug": "second"})
    third = base.model_copy(update={"slug": "third"})

    results = rank_decks([first, second, third], make_payload())

    assert [r.deck.slug for r in results] == ["first", "second", "third"]
    assert len({r.score for r in results}) == 1


def test_ranking_falls_back_to_all_decks_when_filter_is_empty(make_payload, catalog):
    results = rank_decks(catalog, make_payload(preferences="logbait"))

    assert len(results) == 3


def test_ranking_respects_preferences(make_payload, catalog):
    results = rank_decks(catalog, make_payload(preferences="balloon"))

    assert [r.deck.slug for r in results] == [LAVA]


def test_ranking_emits_experiment_events(make_payload, catalog):
    tracker = AnalyticsTracker(log_events=False)

    results = rank_decks(catalog, make_payload(user_id="user-1"), sink=tracker)

    assignment, exposure = tracker.events()
    assert assignment.name == "experiment_assignment"
    assert assignment.properties["experiment"] == "deck-weighting"
    assert assignment.properties["variant"] == "control"
    assert assignment.properties["reason"] == "override"
    assert assignment.properties["userId"] == "user-1"
    assert exposure.name == "experiment_exposure"
    assert exposure.properties["topDecks"] == [r.deck.slug for r in results]


def test_ranking_survives_failing_sink(make_payload, catalog):
    sink = MagicMock()
    sink.track.side_effect = RuntimeError("collector down")

    results = rank_decks(catalog, make_payload(), sink=sink)

    assert len(results) == 3
    assert sink.track.call_count == 2


def test_ranking_uses_a_resolved_strategy(make_payload, catalog):
    tracker = AnalyticsTracker(log_events=False)
    strategy = resolve_weight_strategy(make_payload(weight_variant_override="meta-aware"))

    with patch("decksy.scoring.resolve_weight_strategy", side_effect=AssertionError("resolved again")):
        rank_decks(catalog, make_payload(), sink=tracker, strategy=strategy)

    assert [e.properties["variant"] for e in tracker.events()] == ["meta-aware", "meta-aware"]


def test_aggregate_share():
    assert BEATDOWN_HEAVY.share("beatdown") == 0.8
    assert BEATDOWN_HEAVY.share("siege") == 0.0
    assert BattleArchetypeAggregate(total_battles=0).share("beatdown") == 0.0
