"""
Candidate scoring and tiered portfolio selection.
"""

import logging
import math
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from .blend import ProbabilityBlender
from .calibration import CalibrationSet
from .config import DEFAULT_TIER_BANDS, Config
from .consensus import group_offers
from .errors import InsufficientTierCandidates, InvalidProbability
from .models import (
    Candidate, ConsensusSource, Market, MarketConsensus, OddsOffer, PlayerPrediction,
    Portfolio, SimulationResult, Tier, TourEvent,
)
from .odds import is_finite
from .simulator import group_win_probability

logger = logging.getLogger(__name__)

MAX_ALT_OFFERS = 5

MARKET_LABELS = {
    Market.WIN: "Win",
    Market.TOP_5: "Top 5",
    Market.TOP_10: "Top 10",
    Market.TOP_20: "Top 20",
    Market.MAKE_CUT: "Make Cut",
    Market.FRL: "First Round Leader",
    Market.MATCHUP: "Tournament Matchup",
    Market.THREE_BALL: "3-Ball",
}


def classify_tier(odds: float, bands: Dict[Tier, Tuple[float, float]] = None) -> Optional[Tier]:
    """
    Tier for a decimal price. Bands are inclusive; prices in a gap (or outside
    every band) go to the nearest band, the shorter-odds band on a tie.
    """
    bands = bands or DEFAULT_TIER_BANDS
    if not is_finite(odds) or odds <= 1:
        return None
    best = None
    for tier, (low, high) in sorted(bands.items(), key=lambda item: item[1][0]):
        if low <= odds <= high:
            return tier
        distance = low - odds if odds < low else odds - high
        # Round away float noise so 5.995 sits exactly between 5.99 and 6.00
        distance = round(distance, 9)
        if best is None or distance < best[0]:
            best = (distance, tier)
    return best[1]


def expected_value(probability: float, odds: float) -> float:
    return probability * odds - 1


def confidence_score(edge: float, source: ConsensusSource = ConsensusSource.CONSENSUS,
                     external: Optional[float] = None, market_prob: Optional[float] = None) -> int:
    """
    Confidence 1-5 from the edge, reduced by one when the market price is a
    single-book fallback and by one when the external prior disagrees.
    """
    if not is_finite(edge):
        return 1
    if edge >= 0.1:
        score = 5
    elif edge >= 0.05:
        score = 4
    elif edge >= 0.02:
        score = 3
    elif edge >= 0.01:
        score = 2
    else:
        score = 1
    if source == ConsensusSource.NORMALIZED_IMPLIED:
        score -= 1
    if is_finite(external) and is_finite(market_prob) and (external - market_prob) * edge < 0:
        score -= 1
    return max(1, min(5, score))


def analysis_paragraph(selection: str, market: Market, odds: float, fair_prob: float, ev: float) -> str:
    prob = f"{fair_prob * 100:.1f}" if is_finite(fair_prob) else "N/A"
    ev_pct = f"{ev * 100:.1f}" if is_finite(ev) else "N/A"
    return (
        f"{selection} is priced at {odds:.2f} for {MARKET_LABELS[market]}. "
        f"Our model assigns a {prob}% probability, yielding an expected value of {ev_pct}%."
    )


def analysis_bullets(market: Market, odds: float, fair_prob: float, market_prob: float,
                     edge: float, ev: float, book: str = "") -> List[str]:
    bullets = [f"Market: {MARKET_LABELS[market]}"]
    bullets.append(f"Best odds: {odds:.2f}" + (f" ({book})" if book else ""))
    if is_finite(fair_prob):
        bullets.append(f"Model probability: {fair_prob * 100:.1f}%")
    if is_finite(market_prob):
        bullets.append(f"Market implied: {market_prob * 100:.1f}%")
    if is_finite(edge):
        bullets.append(f"Edge: {edge * 100:.2f}%")
    if is_finite(ev):
        bullets.append(f"Expected value: {ev * 100:.1f}%")
    return bullets


def _rank_key(candidate: Candidate):
    return (-candidate.ev, -candidate.edge, -candidate.best_odds, candidate.event_key, candidate.selection_key)


@dataclass
class SelectionDiagnostics:
    """Counts of candidates dropped while scoring."""
    scored: int = 0
    no_simulation: int = 0
    no_market: int = 0
    invalid: List[str] = field(default_factory=list)


class CandidateSelector:
    """Scores offers into candidates and picks an exposure-capped tiered portfolio."""

    def __init__(
        self,
        config: Optional[Config] = None,
        calibration: Optional[CalibrationSet] = None,
        blender: Optional[ProbabilityBlender] = None,
    ):
        config = config or Config()
        self.tier_bands = config.tier_bands
        self.min_per_tier = config.min_picks_per_tier
        self.max_per_tier = config.max_picks_per_tier
        self.max_per_player = config.max_picks_per_player
        self.max_per_market = config.max_picks_per_market
        self.allow_fallback = config.allow_fallback
        self.min_ev_threshold = config.min_ev_threshold
        self.calibration = calibration or CalibrationSet()
        self.blender = blender or ProbabilityBlender(config.blend_weights)

    # =========================================================================
    # Scoring
    # =========================================================================

    def _simulated(self, market: Market, offers: List[OddsOffer], simulation: SimulationResult) -> Dict[str, float]:
        """Simulated probability per selection for one market."""
        grouped = group_offers(offers)
        if not market.is_grouped:
            result = {}
            for key, items in grouped.items():
                outcome = simulation.get(items[0].selection_key)
                if outcome is not None:
                    result[key] = outcome.for_market(market)
            return result

        if not simulation.has_scores:
            return {}
        members: Dict[str, List[str]] = {}
        for key, items in grouped.items():
            members.setdefault(items[0].group_id, []).append(items[0].selection_key)
        result = {}
        for group_id, players in members.items():
            players = sorted(set(players))
            probs = group_win_probability(simulation, players)
            if probs is None:
                continue
            for player, prob in zip(players, probs):
                result[f"{group_id}::{player}"] = prob
        return result

    def score_event(
        self,
        event: TourEvent,
        simulation: SimulationResult,
        consensus: Dict[Market, MarketConsensus],
        offers: Dict[Market, List[OddsOffer]],
        predictions: Optional[Dict[str, PlayerPrediction]] = None,
        diagnostics: Optional[SelectionDiagnostics] = None,
    ) -> List[Candidate]:
        """Score every priced selection of an event."""
        predictions = predictions or {}
        diagnostics = diagnostics if diagnostics is not None else SelectionDiagnostics()
        candidates = []

        for market, market_offers in offers.items():
            market_consensus = consensus.get(market)
            simulated = self._simulated(market, market_offers, simulation)

            for key, items in group_offers(market_offers).items():
                best = items[0]
                entry = market_consensus.get(key) if market_consensus else None
                if entry is None:
                    diagnostics.no_market += 1
                    continue

                prediction = predictions.get(best.selection_key)
                external = prediction.for_market(market) if prediction else None

                fair = self.blender.fair_probability(simulated.get(key), external, entry.probability)
                if fair is None:
                    diagnostics.no_simulation += 1
                    continue
                fair = self.calibration.calibrate(market, fair)

                try:
                    self._validate(fair, entry.probability, best.odds_decimal)
                except InvalidProbability as e:
                    diagnostics.invalid.append(f"{event.key} {market.value} {best.selection_name}: {e}")
                    logger.warning(f"[selection] rejected {best.selection_name} ({market.value}): {e}")
                    continue

                edge = fair - entry.probability
                ev = expected_value(fair, best.odds_decimal)
                alternatives = tuple(
                    (o.bookmaker, o.odds_decimal) for o in items[1:] if o.bookmaker != best.bookmaker
                )[:MAX_ALT_OFFERS]

                candidates.append(Candidate(
                    event_key=event.key,
                    event_name=event.event_name,
                    tour=event.tour,
                    market=market,
                    selection_key=best.selection_key,
                    selection=best.selection_name,
                    fair_prob=fair,
                    market_prob=entry.probability,
                    edge=edge,
                    ev=ev,
                    best_odds=best.odds_decimal,
                    best_book=best.bookmaker,
                    market_source=entry.source,
                    external_prob=external,
                    group_id=best.group_id,
                    alt_offers=alternatives,
                    tier=classify_tier(best.odds_decimal, self.tier_bands),
                    confidence=confidence_score(edge, entry.source, external, entry.probability),
                    analysis=analysis_paragraph(best.selection_name, market, best.odds_decimal, fair, ev),
                    bullets=tuple(analysis_bullets(
                        market, best.odds_decimal, fair, entry.probability, edge, ev, best.bookmaker
                    )),
                ))

        diagnostics.scored += len(candidates)
        return candidates

    @staticmethod
    def _validate(fair: float, market_prob: float, odds: float):
        if not is_finite(fair) or not 0 < fair < 1:
            raise InvalidProbability("fair probability", fair)
        if not is_finite(market_prob) or not 0 < market_prob < 1:
            raise InvalidProbability("market probability", market_prob)
        if not is_finite(odds) or odds <= 1:
            raise InvalidProbability("implied probability", 1 / odds if is_finite(odds) and odds > 0 else math.nan)

    # =========================================================================
    # Portfolio
    # =========================================================================

    def select(self, candidates: List[Candidate]) -> Portfolio:
        """
        Fill each tier best-first under the exposure caps, then top up short
        tiers with fallback picks when enabled.
        """
        by_tier: Dict[Tier, List[Candidate]] = {tier: [] for tier in Tier}
        for candidate in candidates:
            if candidate.tier is not None:
                by_tier[candidate.tier].append(candidate)
        for tier in by_tier:
            by_tier[tier].sort(key=_rank_key)

        portfolio = Portfolio(tiers={tier: [] for tier in Tier})
        per_player: Counter = Counter()
        per_market: Counter = Counter()
        chosen = set()

        def identity(c: Candidate):
            return (c.event_key, c.market, c.selection_key, c.group_id)

        def try_add(tier: Tier, candidate: Candidate) -> bool:
            picks = portfolio.tiers[tier]
            if len(picks) >= self.max_per_tier:
                return False
            if identity(candidate) in chosen:
                return False
            if per_player[candidate.selection_key] >= self.max_per_player:
                return False
            if per_market[(candidate.event_key, candidate.market)] >= self.max_per_market:
                return False
            picks.append(candidate)
            chosen.add(identity(candidate))
            per_player[candidate.selection_key] += 1
            per_market[(candidate.event_key, candidate.market)] += 1
            return True

        for tier in Tier:
            for candidate in by_tier[tier]:
                if candidate.has_value and candidate.ev > self.min_ev_threshold:
                    try_add(tier, candidate)

        if self.allow_fallback:
            for tier in Tier:
                if len(portfolio.tiers[tier]) >= self.min_per_tier:
                    continue
                for candidate in by_tier[tier]:
                    if len(portfolio.tiers[tier]) >= self.min_per_tier:
                        break
                    if identity(candidate) in chosen:
                        continue
                    reason = (
                        f"Filled to the {tier.value} minimum of {self.min_per_tier}: "
                        f"edge {candidate.edge * 100:+.2f}%, EV {candidate.ev * 100:+.1f}%"
                    )
                    try_add(tier, replace(candidate, is_fallback=True, fallback_reason=reason))

        for tier in Tier:
            found = len(portfolio.tiers[tier])
            if found < self.min_per_tier:
                portfolio.shortfalls[tier] = self.min_per_tier - found

        logger.info(
            "[selection] portfolio: "
            + ", ".join(f"{tier.value}={len(portfolio.tiers[tier])}" for tier in Tier)
        )
        return portfolio

    def shortfall_errors(self, portfolio: Portfolio) -> List[InsufficientTierCandidates]:
        return [
            InsufficientTierCandidates(tier.value, self.min_per_tier - missing, self.min_per_tier)
            for tier, missing in portfolio.shortfalls.items()
        ]
