"""
Monte Carlo tournament simulator.
Plays every round for the whole field, applies the cut and tallies finishing
outcomes into win/top-N/make-cut/first-round-leader probabilities.
"""

import hashlib
import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from .config import get_config
from .models import (
    CutRule, OutcomeProbabilities, PlayerParameters, SimulationResult, WeatherRound
)
from .odds import clamp_probability

logger = logging.getLogger(__name__)

TOP_N = (5, 10, 20)


def weather_volatility_delta(weather: Optional[WeatherRound]) -> float:
    """
    Extra per-round volatility from forecast conditions.
    Wind over 15 km/h adds 0.03 per km/h, rain chance over 50% adds 0.15,
    temperatures under 10C add 0.10.
    """
    if weather is None:
        return 0.0
    delta = 0.0
    if weather.avg_wind_speed is not None and weather.avg_wind_speed > 15:
        delta += (weather.avg_wind_speed - 15) * 0.03
    if weather.rain_probability is not None and weather.rain_probability > 50:
        delta += 0.15
    if weather.avg_temp is not None and weather.avg_temp < 10:
        delta += 0.1
    return delta


def event_seed(run_seed: Optional[int], event_key: str) -> Optional[int]:
    """Per-event seed derived from the run seed and a stable hash of the event."""
    if run_seed is None:
        return None
    digest = hashlib.sha256(f"{run_seed}:{event_key}".encode("utf-8")).hexdigest()
    return int(digest[:16], 16)


def _split_ties(scores: np.ndarray) -> np.ndarray:
    """Share of first place per player per trial; ties share equally."""
    leaders = scores == scores.min(axis=1, keepdims=True)
    return leaders / leaders.sum(axis=1, keepdims=True)


def _within_top(scores: np.ndarray, n: int) -> np.ndarray:
    """Everyone at or better than the n-th best score in each trial."""
    idx = min(n, scores.shape[1]) - 1
    threshold = np.partition(scores, idx, axis=1)[:, idx:idx + 1]
    return scores <= threshold


class TournamentSimulator:
    """Vectorised Monte Carlo simulation of a stroke-play event."""

    def __init__(
        self,
        sim_count: int = None,
        rounds: int = None,
        momentum_factor: float = None,
        tail_floor: float = None,
        cut_penalty: float = None,
        round_shock: float = None,
        chunk_size: int = None,
    ):
        """Initialize simulator; unset values come from config."""
        config = get_config()
        self.sim_count = sim_count or config.sim_count
        self.rounds = rounds or config.rounds
        self.momentum_factor = config.momentum_factor if momentum_factor is None else momentum_factor
        self.tail_floor = config.tail_floor if tail_floor is None else tail_floor
        self.cut_penalty = config.cut_penalty if cut_penalty is None else cut_penalty
        self.round_shock = config.round_shock if round_shock is None else round_shock
        self.chunk_size = chunk_size or config.sim_chunk_size

    def simulate(
        self,
        players: Sequence[PlayerParameters],
        cut_rule: Optional[CutRule] = None,
        sim_count: int = None,
        seed: Optional[int] = None,
        rounds: int = None,
        weather: Optional[Sequence[WeatherRound]] = None,
        field_strength_scale: Optional[float] = None,
        export_scores: bool = False,
    ) -> SimulationResult:
        """
        Simulate the tournament `sim_count` times.

        Identical players, seed and settings give identical probabilities.
        With `export_scores` the per-trial final totals are kept on the result
        for head-to-head pricing.
        """
        n_trials = int(sim_count or self.sim_count)
        if n_trials <= 0:
            n_trials = 1
        n_rounds = int(rounds or self.rounds)
        cut_rule = cut_rule or CutRule()

        unique: Dict[str, PlayerParameters] = {}
        for player in players:
            if player.key in unique:
                logger.warning(f"Duplicate player key in field ignored: {player.key}")
                continue
            unique[player.key] = player
        field = list(unique.values())
        if not field:
            return SimulationResult(probabilities={}, sim_count=n_trials)

        keys = tuple(p.key for p in field)
        n_players = len(field)

        field_adjust = 0.0 if field_strength_scale is None else (1.0 - field_strength_scale) * 0.5
        means = np.array([p.mean for p in field], dtype=float) + field_adjust
        vols = np.array([p.volatility for p in field], dtype=float)
        uncertainty = np.array([p.uncertainty for p in field], dtype=float)
        tail_cap = np.maximum(self.tail_floor, np.array([p.tail for p in field], dtype=float) * vols)
        lower, upper = means - tail_cap, means + tail_cap

        weather = list(weather or [])
        deltas = [weather_volatility_delta(weather[r] if r < len(weather) else None) for r in range(n_rounds)]

        has_cut = cut_rule.has_cut and cut_rule.cut_after <= n_rounds
        rng = np.random.default_rng(seed)

        wins = np.zeros(n_players)
        frl = np.zeros(n_players)
        made_cut = np.zeros(n_players)
        top = {n: np.zeros(n_players) for n in TOP_N}
        exported: List[np.ndarray] = []

        logger.info(f"Running {n_trials:,} simulations for {n_players} players")

        done = 0
        while done < n_trials:
            size = min(self.chunk_size, n_trials - done)
            player_shock = rng.standard_normal((size, n_players)) * uncertainty
            totals = np.zeros((size, n_players))
            deviation = np.zeros((size, n_players))
            first_round = None
            survived = None

            for rnd in range(n_rounds):
                shared = rng.standard_normal((size, 1)) * self.round_shock
                noise = rng.standard_normal((size, n_players)) * (vols + deltas[rnd])
                raw = means + player_shock + shared + noise
                if rnd > 0 and self.momentum_factor > 0:
                    raw = raw + deviation * self.momentum_factor
                score = np.clip(raw, lower, upper)
                totals += score
                deviation = score - means
                if rnd == 0:
                    first_round = score

                if has_cut and rnd + 1 == cut_rule.cut_after:
                    idx = min(cut_rule.cut_size, n_players) - 1
                    cut_score = np.partition(totals, idx, axis=1)[:, idx:idx + 1]
                    survived = totals <= cut_score
                    totals = np.where(survived, totals, totals + self.cut_penalty)

            wins += _split_ties(totals).sum(axis=0)
            frl += _split_ties(first_round).sum(axis=0)
            for n in TOP_N:
                top[n] += _within_top(totals, n).sum(axis=0)
            if survived is None:
                made_cut += size
            else:
                made_cut += survived.sum(axis=0)
            if export_scores:
                exported.append(totals)
            done += size

        probabilities = {}
        for i, key in enumerate(keys):
            probabilities[key] = OutcomeProbabilities(
                win=clamp_probability(wins[i] / n_trials),
                top_5=clamp_probability(top[5][i] / n_trials),
                top_10=clamp_probability(top[10][i] / n_trials),
                top_20=clamp_probability(top[20][i] / n_trials),
                make_cut=clamp_probability(made_cut[i] / n_trials),
                frl=clamp_probability(frl[i] / n_trials),
            )

        scores = np.vstack(exported) if export_scores else None
        return SimulationResult(
            probabilities=probabilities,
            sim_count=n_trials,
            scores=scores,
            player_keys=keys,
        )


def _columns(result: SimulationResult, keys: Sequence[str]) -> Optional[np.ndarray]:
    if not result.has_scores:
        raise ValueError("Simulation was run without exported scores")
    index = {key: i for i, key in enumerate(result.player_keys)}
    if any(key not in index for key in keys):
        return None
    return result.scores[:, [index[key] for key in keys]]


def group_win_probability(result: SimulationResult, keys: Sequence[str]) -> Optional[List[float]]:
    """
    Probability each player posts the lowest total within the group,
    ties split. None when any player is missing from the simulation.
    """
    scores = _columns(result, keys)
    if scores is None:
        return None
    shares = _split_ties(scores).mean(axis=0)
    return [clamp_probability(float(s)) for s in shares]


def matchup_probability(result: SimulationResult, player_a: str, player_b: str) -> Optional[float]:
    """Probability player_a beats player_b over 72 holes (ties count half)."""
    probs = group_win_probability(result, [player_a, player_b])
    return probs[0] if probs else None


def three_ball_probability(result: SimulationResult, player_a: str, player_b: str, player_c: str) -> Optional[float]:
    """Probability player_a has the best total of the three (ties split)."""
    probs = group_win_probability(result, [player_a, player_b, player_c])
    return probs[0] if probs else None


def get_simulator() -> TournamentSimulator:
    """Get configured simulator."""
    return TournamentSimulator()
