"""
Probability blending in logit space.
"""

import logging
import math
from typing import Optional, Sequence, Tuple

from .odds import clamp_probability, inv_logit, is_finite, logit

logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = (0.70, 0.20, 0.10)


def _usable(p) -> bool:
    return is_finite(p) and 0 < p < 1


def blend(
    sim: Optional[float],
    external: Optional[float] = None,
    market: Optional[float] = None,
    weights: Sequence[float] = DEFAULT_WEIGHTS,
) -> float:
    """
    Weighted average of the available probabilities in logit space.

    Missing or malformed inputs are dropped and the remaining weights
    renormalised. Returns NaN when nothing usable is left.
    """
    total_weight = 0.0
    total = 0.0
    for prob, weight in zip((sim, external, market), weights):
        if not _usable(prob) or not is_finite(weight) or weight <= 0:
            continue
        total += weight * logit(clamp_probability(prob))
        total_weight += weight
    if total_weight == 0:
        return math.nan
    return clamp_probability(inv_logit(total / total_weight))


def fair_probability(
    sim: Optional[float],
    external: Optional[float] = None,
    market: Optional[float] = None,
    weights: Sequence[float] = DEFAULT_WEIGHTS,
) -> Optional[float]:
    """
    Fair probability for a selection.

    The simulation is the authoritative source: without it there is no fair
    probability, and the external prior is never promoted in its place.
    """
    if not _usable(sim):
        return None
    result = blend(sim, external, market, weights)
    return result if is_finite(result) else None


class ProbabilityBlender:
    """Blends simulation, external prior and market probabilities with fixed weights."""

    def __init__(self, weights: Tuple[float, float, float] = DEFAULT_WEIGHTS):
        if any(w < 0 for w in weights):
            raise ValueError(f"Blend weights must be non-negative: {weights}")
        self.weights = tuple(weights)

    def blend(self, sim, external=None, market=None) -> float:
        return blend(sim, external, market, self.weights)

    def fair_probability(self, sim, external=None, market=None) -> Optional[float]:
        return fair_probability(sim, external, market, self.weights)
