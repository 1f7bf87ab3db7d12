"""
Odds and probability utilities: implied probabilities, vig removal,
weighted median and logit helpers, plus bookmaker key normalisation.
"""

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)

PROB_FLOOR = 0.001
PROB_CEILING = 0.999

BOOK_KEY_ALIASES: Dict[str, str] = {
    "dk": "draftkings",
    "draft_kings": "draftkings",
    "mgm": "betmgm",
    "caesars_sportsbook": "caesars",
    "bet_365": "bet365",
    "william_hill": "williamhill",
    "points_bet": "pointsbet",
    "bet_rivers": "betrivers",
    "bet_fair": "betfair",
    "sky_bet": "skybet",
    "paddy_power": "paddypower",
}


def is_finite(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def clamp_probability(value: float) -> float:
    """Clamp into [0.001, 0.999]; non-finite input yields NaN."""
    if not is_finite(value):
        return math.nan
    return min(PROB_CEILING, max(PROB_FLOOR, float(value)))


def implied_probability(odds_decimal: float) -> float:
    """1 / decimal odds, or NaN when the price is unusable."""
    if not is_finite(odds_decimal) or odds_decimal <= 1:
        return math.nan
    return 1.0 / odds_decimal


def validate_probability(value: float, label: str = "probability", **context) -> float:
    """Return value if strictly inside (0, 1), otherwise log and return NaN."""
    if not is_finite(value):
        logger.warning(f"Malformed {label} (non-finite): {value!r} {context or ''}")
        return math.nan
    if value <= 0 or value >= 1:
        logger.warning(f"Malformed {label} (out of range): {value!r} {context or ''}")
        return math.nan
    return float(value)


def remove_vig_normalize(odds: Sequence[float], places: int = 1) -> List[float]:
    """
    Linear vig removal: implied probabilities divided by their sum.
    Unusable prices are dropped. The result sums to `places`.
    """
    implied = [implied_probability(o) for o in odds]
    implied = [p for p in implied if is_finite(p)]
    if not implied:
        return []
    total = sum(implied)
    return [p / total * places for p in implied]


def remove_vig_power(odds: Sequence[float], k: float = 1.25, places: int = 1) -> List[float]:
    """
    Power-method vig removal: implied^k renormalised to sum to `places`.
    Shrinks long shots more than favourites (favourite-longshot bias).
    """
    implied = [implied_probability(o) for o in odds]
    implied = [p for p in implied if is_finite(p)]
    if not implied:
        return []
    powered = [p ** k for p in implied]
    total = sum(powered)
    return [p / total * places for p in powered]


def weighted_median(values: Sequence[float], weights: Sequence[float]) -> float:
    """Weighted median; pairs with non-finite value or non-positive weight are ignored."""
    pairs = sorted(
        (v, w) for v, w in zip(values, weights)
        if is_finite(v) and is_finite(w) and w > 0
    )
    if not pairs:
        return math.nan
    total = sum(w for _, w in pairs)
    cumulative = 0.0
    for value, weight in pairs:
        cumulative += weight
        if cumulative >= total / 2:
            return value
    return pairs[-1][0]


def logit(p: float) -> float:
    return math.log(p / (1 - p))


def inv_logit(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def as_probability(value) -> Optional[float]:
    """
    Interpret a provider value as a probability.
    Values above 1 are treated as decimal odds, values in (0, 1) as probabilities.
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    if number > 1:
        return 1.0 / number
    if number >= 1:
        return None
    return number


def normalize_book_key(key) -> Optional[str]:
    """Canonical bookmaker key (lowercase, underscores, aliases resolved)."""
    if not key:
        return None
    normalized = str(key).strip().lower().replace("\x00", "")
    cleaned = "_".join(normalized.split())
    return BOOK_KEY_ALIASES.get(cleaned) or BOOK_KEY_ALIASES.get(normalized) or cleaned


def allowed_book_set(books: Iterable[str]) -> set:
    return {k for k in (normalize_book_key(b) for b in books) if k}
