"""
Player scoring parameters for the tournament simulator.

Scores are strokes relative to the field per round, lower is better.
A player's skill rating sets the mean and spread; course profile, course-fit
decomposition, approach skill and recent form then nudge them.
"""

import logging
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .config import TOUR_RATING_SCALE
from .models import CourseProfile, FormSnapshot, PlayerParameters, SkillRating
from .odds import clamp_probability

logger = logging.getLogger(__name__)

DEFAULT_TAIL = 6.5
UNRATED_VOLATILITY = 2.4
MIN_VOLATILITY = 1.3
RATED_UNCERTAINTY = 0.15
UNRATED_UNCERTAINTY = 0.45

# Mean adjustments per SG unit
TOTAL_FIT_WEIGHT = 0.35
COMPONENT_WEIGHTS = {
    "driving": 0.08,
    "approach": 0.12,
    "around_green": 0.06,
    "putting": 0.06,
}
COURSE_HISTORY_WEIGHT = 0.10
COURSE_EXPERIENCE_WEIGHT = 0.05
SHORT_FORM_WEIGHT = 0.25
MEDIUM_FORM_WEIGHT = 0.10
SLOPE_WEIGHT = 1.5
STALE_AFTER_WEEKS = 4


def _finite(value) -> bool:
    return value is not None and isinstance(value, (int, float)) and math.isfinite(value)


def build_course_profile(scores: Iterable[float]) -> CourseProfile:
    """Mean and population variance of historical round scores at a course."""
    values = np.array([s for s in scores if _finite(s)], dtype=float)
    if values.size == 0:
        return CourseProfile()
    return CourseProfile(mean=float(values.mean()), variance=float(values.var()))


def _course_fit_shift(rating: SkillRating) -> float:
    if rating.total_fit:
        shift = rating.total_fit * TOTAL_FIT_WEIGHT
    else:
        shift = sum(getattr(rating, attr) * weight for attr, weight in COMPONENT_WEIGHTS.items())
    shift += rating.course_history * COURSE_HISTORY_WEIGHT
    shift += rating.course_experience * COURSE_EXPERIENCE_WEIGHT
    return shift


def _form_shift(form: FormSnapshot) -> float:
    shift = 0.0
    if _finite(form.short_term_sg):
        shift += form.short_term_sg * SHORT_FORM_WEIGHT
    if _finite(form.medium_term_sg):
        shift += form.medium_term_sg * MEDIUM_FORM_WEIGHT
    if _finite(form.trajectory_slope):
        shift += form.trajectory_slope * SLOPE_WEIGHT
    return shift


def staleness_factor(weeks_since_last_event: Optional[float]) -> float:
    """Volatility multiplier for players returning from a break (capped at 1.5)."""
    if not _finite(weeks_since_last_event) or weeks_since_last_event <= STALE_AFTER_WEEKS:
        return 1.0
    return 1.0 + min(0.5, (weeks_since_last_event - STALE_AFTER_WEEKS) * 0.04)


def build_player_parameters(
    players: Sequence[Tuple[str, str]],
    ratings: Dict[str, SkillRating],
    tour: str = "PGA",
    course_profile: Optional[CourseProfile] = None,
    form: Optional[Dict[str, FormSnapshot]] = None,
) -> List[PlayerParameters]:
    """
    Build simulator parameters for a field.

    Args:
        players: (selection key, display name) pairs, keys already canonical
        ratings: skill ratings keyed by selection key
        tour: tour code, selects the cross-tour rating scale
        course_profile: scoring profile of the venue
        form: recent form keyed by selection key
    """
    scale = TOUR_RATING_SCALE.get(str(tour or "PGA").upper(), 1.0)
    form = form or {}

    variance_factor = 0.0
    if course_profile is not None and course_profile.variance:
        variance_factor = math.sqrt(course_profile.variance) / 2.0

    params = []
    for key, name in players:
        rating = ratings.get(key)
        has_rating = rating is not None and _finite(rating.sg_total)

        if has_rating:
            scaled = rating.sg_total * scale
            mean = -scaled / 2
            volatility = max(MIN_VOLATILITY, 2.6 - scaled / 10)
            uncertainty = RATED_UNCERTAINTY
            make_cut = clamp_probability(0.55 + scaled / 100)
        else:
            mean = 0.0
            volatility = UNRATED_VOLATILITY
            uncertainty = UNRATED_UNCERTAINTY
            make_cut = clamp_probability(0.55)

        if course_profile is not None:
            mean += course_profile.mean * 0.2
            volatility *= 1 + variance_factor * 0.1

        if rating is not None:
            # Strokes gained lowers the expected score
            mean -= _course_fit_shift(rating)
            if _finite(rating.approach_skill):
                volatility *= max(0.85, 1 - rating.approach_skill * 0.05)

        snapshot = form.get(key)
        if snapshot is not None:
            mean -= _form_shift(snapshot)
            volatility *= staleness_factor(snapshot.weeks_since_last_event)

        params.append(PlayerParameters(
            key=key,
            name=name,
            mean=mean,
            volatility=volatility,
            uncertainty=uncertainty,
            tail=DEFAULT_TAIL,
            make_cut=make_cut,
        ))

    rated = sum(1 for key, _ in players if key in ratings)
    logger.debug(f"Built parameters for {len(params)} players ({rated} rated, tour {tour})")
    return params
