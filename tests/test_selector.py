"""
Tests for selector.py - candidate scoring and tiered portfolio selection.
"""

import math
from datetime import date

import numpy as np
import pytest

from golf_edge.blend import ProbabilityBlender
from golf_edge.calibration import CalibrationSet
from golf_edge.config import Config
from golf_edge.errors import InsufficientTierCandidates
from golf_edge.models import (
    Candidate, ConsensusEntry, ConsensusSource, Market, MarketConsensus, OddsOffer,
    OutcomeProbabilities, PlayerPrediction, SimulationResult, Tier, TourEvent,
)
from golf_edge.selector import (
    CandidateSelector, SelectionDiagnostics, analysis_bullets, analysis_paragraph,
    classify_tier, confidence_score, expected_value,
)

EVENT = TourEvent(tour="PGA", event_id="14", event_name="Masters Tournament", start_date=date(2025, 4, 10))


def _config(**overrides):
    config = Config()
    config.min_picks_per_tier = 0
    config.max_picks_per_tier = 8
    config.max_picks_per_player = 2
    config.max_picks_per_market = 6
    config.allow_fallback = True
    config.min_ev_threshold = 0.0
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def _outcome(win, top_5=0.5, top_10=0.6, top_20=0.7, make_cut=0.9, frl=0.1):
    return OutcomeProbabilities(win=win, top_5=top_5, top_10=top_10, top_20=top_20, make_cut=make_cut, frl=frl)


def _offer(key, book, odds, group_id=None):
    return OddsOffer(selection_key=key, selection_name=key.title(), bookmaker=book,
                     odds_decimal=odds, group_id=group_id)


def _candidate(key, odds, ev, edge=0.05, event_key="PGA:14", market=Market.WIN, tier=None):
    return Candidate(
        event_key=event_key, event_name="Masters Tournament", tour=event_key.split(":")[0],
        market=market, selection_key=key, selection=key.title(), fair_prob=0.3,
        market_prob=0.3 - edge, edge=edge, ev=ev, best_odds=odds, best_book="bet365",
        tier=tier or classify_tier(odds),
    )


@pytest.fixture
def selector():
    return CandidateSelector(_config(), CalibrationSet(offsets={}), ProbabilityBlender((1.0, 0.0, 0.0)))


class TestTierClassification:
    """Tests for odds band tiers."""

    def test_band_boundaries(self):
        """Test inclusive band edges."""
        assert classify_tier(5.99) == Tier.PAR
        assert classify_tier(6.00) == Tier.BIRDIE
        assert classify_tier(10.99) == Tier.BIRDIE
        assert classify_tier(11.00) == Tier.EAGLE
        assert classify_tier(60.00) == Tier.EAGLE
        assert classify_tier(60.01) == Tier.LONG_SHOTS

    def test_gaps_go_to_nearest_band(self):
        """Test that prices between bands go to the closer band."""
        assert classify_tier(5.993) == Tier.PAR
        assert classify_tier(5.997) == Tier.BIRDIE

    def test_gap_tie_goes_to_shorter_band(self):
        """Test that an exact midpoint goes to the shorter-odds band."""
        assert classify_tier(5.995) == Tier.PAR
        assert classify_tier(60.005) == Tier.EAGLE

    def test_outside_all_bands(self):
        """Test prices below and above every band."""
        assert classify_tier(1.005) == Tier.PAR
        assert classify_tier(2500.0) == Tier.LONG_SHOTS

    def test_unusable_price(self):
        """Test that prices at or below evens-minus have no tier."""
        assert classify_tier(1.0) is None
        assert classify_tier(float("nan")) is None


class TestScoringHelpers:
    """Tests for EV, confidence and rationale text."""

    def test_expected_value(self):
        """Test EV = p * odds - 1."""
        assert expected_value(0.25, 5.0) == pytest.approx(0.25)
        assert expected_value(0.1, 5.0) == pytest.approx(-0.5)

    def test_confidence_thresholds(self):
        """Test the edge thresholds."""
        assert confidence_score(0.12) == 5
        assert confidence_score(0.06) == 4
        assert confidence_score(0.03) == 3
        assert confidence_score(0.015) == 2
        assert confidence_score(0.005) == 1
        assert confidence_score(float("nan")) == 1

    def test_confidence_penalties(self):
        """Test reductions for fallback pricing and a disagreeing prior."""
        assert confidence_score(0.12, ConsensusSource.NORMALIZED_IMPLIED) == 4
        assert confidence_score(0.12, external=0.20, market_prob=0.25) == 4
        assert confidence_score(0.12, external=0.30, market_prob=0.25) == 5
        assert confidence_score(0.005, ConsensusSource.NORMALIZED_IMPLIED, 0.1, 0.2) == 1

    def test_analysis_text(self):
        """Test the rationale paragraph and bullets."""
        text = analysis_paragraph("Scottie Scheffler", Market.TOP_10, 2.5, 0.5, 0.25)
        assert "Scottie Scheffler is priced at 2.50 for Top 10." in text
        assert "50.0% probability" in text
        assert "expected value of 25.0%" in text

        bullets = analysis_bullets(Market.WIN, 5.0, 0.25, 0.2, 0.05, 0.25, "bet365")
        assert bullets[0] == "Market: Win"
        assert bullets[1] == "Best odds: 5.00 (bet365)"
        assert "Edge: 5.00%" in bullets

    def test_analysis_text_missing_probability(self):
        """Test N/A rendering for missing values."""
        assert "N/A% probability" in analysis_paragraph("X", Market.WIN, 3.0, math.nan, math.nan)


class TestScoreEvent:
    """Tests for scoring an event's offers."""

    def test_scores_outright_candidates(self, selector):
        """Test fair probability, edge, EV and alternatives for an outright."""
        simulation = SimulationResult(probabilities={"a": _outcome(0.4), "b": _outcome(0.3)}, sim_count=100)
        offers = {Market.WIN: [_offer("a", "bet365", 3.0), _offer("a", "fanduel", 3.2), _offer("b", "bet365", 2.0)]}
        consensus = {Market.WIN: MarketConsensus(Market.WIN, {
            "a": ConsensusEntry(0.30, ConsensusSource.CONSENSUS, 2),
            "b": ConsensusEntry(0.45, ConsensusSource.NORMALIZED_IMPLIED, 1),
        })}
        diagnostics = SelectionDiagnostics()

        candidates = {c.selection_key: c for c in selector.score_event(EVENT, simulation, consensus, offers,
                                                                          diagnostics=diagnostics)}
        a = candidates["a"]
        assert a.fair_prob == pytest.approx(0.4)
        assert a.edge == pytest.approx(0.1)
        assert a.best_odds == 3.2
        assert a.best_book == "fanduel"
        assert a.ev == pytest.approx(0.4 * 3.2 - 1)
        assert a.alt_offers == (("bet365", 3.0),)
        assert a.tier == Tier.PAR
        assert a.event_key == "PGA:14"
        assert len(a.bullets) >= 4

        b = candidates["b"]
        assert b.edge < 0
        assert b.market_source == ConsensusSource.NORMALIZED_IMPLIED
        assert diagnostics.scored == 2

    def test_drops_unsimulated_and_unpriced(self, selector):
        """Test that selections without simulation or consensus are counted and skipped."""
        simulation = SimulationResult(probabilities={"a": _outcome(0.4)}, sim_count=100)
        offers = {Market.WIN: [_offer("a", "bet365", 3.0), _offer("ghost", "bet365", 9.0), _offer("c", "bet365", 5.0)]}
        consensus = {Market.WIN: MarketConsensus(Market.WIN, {
            "a": ConsensusEntry(0.3, ConsensusSource.CONSENSUS, 2),
            "ghost": ConsensusEntry(0.1, ConsensusSource.CONSENSUS, 2),
        })}
        diagnostics = SelectionDiagnostics()
        candidates = selector.score_event(EVENT, simulation, consensus, offers, diagnostics=diagnostics)

        assert [c.selection_key for c in candidates] == ["a"]
        assert diagnostics.no_simulation == 1
        assert diagnostics.no_market == 1

    def test_invalid_market_probability_rejected(self, selector):
        """Test that an out-of-range market probability is rejected, not scored."""
        simulation = SimulationResult(probabilities={"a": _outcome(0.4)}, sim_count=100)
        offers = {Market.WIN: [_offer("a", "bet365", 3.0)]}
        consensus = {Market.WIN: MarketConsensus(Market.WIN, {"a": ConsensusEntry(1.0, ConsensusSource.CONSENSUS)})}
        diagnostics = SelectionDiagnostics()
        assert selector.score_event(EVENT, simulation, consensus, offers, diagnostics=diagnostics) == []
        assert len(diagnostics.invalid) == 1

    def test_external_prior_recorded(self):
        """Test that the external prior is blended and kept on the candidate."""
        selector = CandidateSelector(_config(), CalibrationSet(offsets={}), ProbabilityBlender((0.5, 0.5, 0.0)))
        simulation = SimulationResult(probabilities={"a": _outcome(0.4)}, sim_count=100)
        offers = {Market.WIN: [_offer("a", "bet365", 3.0)]}
        consensus = {Market.WIN: MarketConsensus(Market.WIN, {"a": ConsensusEntry(0.3, ConsensusSource.CONSENSUS, 2)})}
        predictions = {"a": PlayerPrediction(name="A", win=0.2)}

        (candidate,) = selector.score_event(EVENT, simulation, consensus, offers, predictions)
        assert candidate.external_prob == 0.2
        assert 0.2 < candidate.fair_prob < 0.4

    def test_matchup_priced_from_scores(self, selector):
        """Test that head-to-head candidates use the exported score matrix."""
        scores = np.array([[280.0, 282.0], [281.0, 279.0], [275.0, 280.0], [284.0, 284.0]])
        simulation = SimulationResult(
            probabilities={"a": _outcome(0.3), "b": _outcome(0.2)},
            sim_count=4, scores=scores, player_keys=("a", "b"),
        )
        group = "tournament_matchups:a|b"
        offers = {Market.MATCHUP: [
            _offer("a", "bet365", 1.6, group), _offer("b", "bet365", 2.4, group),
        ]}
        consensus = {Market.MATCHUP: MarketConsensus(Market.MATCHUP, {
            f"{group}::a": ConsensusEntry(0.6, ConsensusSource.CONSENSUS, 2),
            f"{group}::b": ConsensusEntry(0.4, ConsensusSource.CONSENSUS, 2),
        })}
        candidates = {c.selection_key: c for c in selector.score_event(EVENT, simulation, consensus, offers)}

        # a wins two trials, loses one, ties one
        assert candidates["a"].fair_prob == pytest.approx(0.625)
        assert candidates["b"].fair_prob == pytest.approx(0.375)
        assert candidates["a"].group_id == group

    def test_matchup_without_scores_skipped(self, selector):
        """Test that grouped markets are skipped when scores were not exported."""
        simulation = SimulationResult(probabilities={"a": _outcome(0.3), "b": _outcome(0.2)}, sim_count=4)
        group = "tournament_matchups:a|b"
        offers = {Market.MATCHUP: [_offer("a", "bet365", 1.6, group), _offer("b", "bet365", 2.4, group)]}
        consensus = {Market.MATCHUP: MarketConsensus(Market.MATCHUP, {
            f"{group}::a": ConsensusEntry(0.6, ConsensusSource.CONSENSUS, 2),
        })}
        assert selector.score_event(EVENT, simulation, consensus, offers) == []


class TestPortfolioSelection:
    """Tests for tiered selection under exposure caps."""

    def test_ranked_by_ev(self, selector):
        """Test that picks are ordered by expected value."""
        portfolio = selector.select([
            _candidate("a", 3.0, 0.05), _candidate("b", 3.0, 0.20), _candidate("c", 3.0, 0.10),
        ])
        assert [c.selection_key for c in portfolio.tiers[Tier.PAR]] == ["b", "c", "a"]

    def test_tie_break_is_deterministic(self, selector):
        """Test the tie-break on equal EV and edge: longer odds, then keys."""
        portfolio = selector.select([
            _candidate("b", 3.0, 0.1), _candidate("a", 3.0, 0.1), _candidate("c", 3.5, 0.1),
        ])
        assert [c.selection_key for c in portfolio.tiers[Tier.PAR]] == ["c", "a", "b"]

    def test_non_value_excluded_without_fallback(self):
        """Test that negative-EV candidates are not picked when fallback is off."""
        selector = CandidateSelector(_config(allow_fallback=False, min_picks_per_tier=2))
        portfolio = selector.select([_candidate("a", 3.0, 0.1), _candidate("b", 3.0, -0.1, edge=-0.02)])
        assert [c.selection_key for c in portfolio.tiers[Tier.PAR]] == ["a"]
        assert portfolio.shortfalls[Tier.PAR] == 1

    def test_min_ev_threshold(self):
        """Test that candidates must clear the EV threshold."""
        selector = CandidateSelector(_config(min_ev_threshold=0.1, allow_fallback=False))
        portfolio = selector.select([_candidate("a", 3.0, 0.05), _candidate("b", 3.0, 0.15)])
        assert [c.selection_key for c in portfolio.tiers[Tier.PAR]] == ["b"]

    def test_max_per_tier(self):
        """Test the per-tier cap."""
        selector = CandidateSelector(_config(max_picks_per_tier=2))
        portfolio = selector.select([_candidate(k, 3.0, 0.1 + i / 100) for i, k in enumerate("abcd")])
        assert len(portfolio.tiers[Tier.PAR]) == 2

    def test_max_per_player_across_tiers(self):
        """Test that one player cannot exceed the exposure cap across tiers and events."""
        selector = CandidateSelector(_config(max_picks_per_player=1))
        portfolio = selector.select([
            _candidate("a", 3.0, 0.3),
            _candidate("a", 8.0, 0.2, market=Market.TOP_5),
            _candidate("a", 3.0, 0.1, event_key="DPWT:7"),
        ])
        assert len(portfolio) == 1
        assert portfolio.candidates[0].ev == 0.3

    def test_max_per_market(self):
        """Test the per event and market cap."""
        selector = CandidateSelector(_config(max_picks_per_market=1))
        portfolio = selector.select([
            _candidate("a", 3.0, 0.3), _candidate("b", 8.0, 0.2),
            _candidate("c", 3.0, 0.1, market=Market.TOP_5),
        ])
        assert {(c.selection_key, c.market) for c in portfolio.candidates} == {("a", Market.WIN), ("c", Market.TOP_5)}

    def test_fallback_fills_minimum(self):
        """Test that short tiers are topped up with flagged fallback picks."""
        selector = CandidateSelector(_config(min_picks_per_tier=2))
        portfolio = selector.select([
            _candidate("a", 3.0, 0.1),
            _candidate("b", 3.0, -0.05, edge=-0.01),
            _candidate("c", 3.0, -0.2, edge=-0.04),
        ])
        picks = portfolio.tiers[Tier.PAR]
        assert [c.selection_key for c in picks] == ["a", "b"]
        assert not picks[0].is_fallback
        assert picks[1].is_fallback
        assert "PAR minimum of 2" in picks[1].fallback_reason
        assert Tier.PAR not in portfolio.shortfalls

    def test_shortfall_errors(self):
        """Test that unfilled tiers are reported."""
        selector = CandidateSelector(_config(min_picks_per_tier=1))
        portfolio = selector.select([_candidate("a", 3.0, 0.1)])
        errors = selector.shortfall_errors(portfolio)
        assert {e.tier for e in errors} == {"BIRDIE", "EAGLE", "LONG_SHOTS"}
        assert all(isinstance(e, InsufficientTierCandidates) and e.found == 0 for e in errors)

    def test_candidates_without_tier_ignored(self, selector):
        """Test that untiered candidates never enter the portfolio."""
        candidate = _candidate("a", 3.0, 0.1)
        untiered = Candidate(**{**candidate.__dict__, "tier": None})
        assert len(selector.select([untiered])) == 0
