"""
Recent-form signals from historical rounds.

Per-event strokes gained (most recent first) is smoothed with two
exponentially weighted averages and a linear trend, plus a staleness
measure in weeks since the player last teed it up.
"""

import json
import logging
import math
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import numpy as np

from .models import FormSnapshot

logger = logging.getLogger(__name__)

SHORT_TERM_EVENTS = 4
SHORT_TERM_HALF_LIFE = 2
MEDIUM_TERM_EVENTS = 15
MEDIUM_TERM_HALF_LIFE = 8
TRAJECTORY_EVENTS = 8


def ewma(values: List[float], half_life: float) -> Optional[float]:
    """
    Recursive exponential smoothing over values ordered most-recent-first.

    Starts from the most recent value and folds in each older one with
    weight alpha = 1 - 2 ** (-1 / half_life). Of n values the most recent
    keeps (1 - alpha) ** (n - 1), the k-th older value gets
    alpha * (1 - alpha) ** (n - 1 - k) and the oldest gets alpha, so the
    oldest value outweighs the ones just before it.
    """
    if not values:
        return None
    alpha = 1 - math.exp(-math.log(2) / half_life)
    result = values[0]
    for value in values[1:]:
        result = alpha * value + (1 - alpha) * result
    return result


def trajectory_slope(values: List[float]) -> Optional[float]:
    """Trend over values ordered most-recent-first; positive means improving."""
    if not values or len(values) < 3:
        return None
    y = np.asarray(values, dtype=float)
    if np.allclose(y, y[0]):
        return 0.0
    x = np.arange(len(y), dtype=float)
    slope = np.polyfit(x, y, 1)[0]
    # Index 0 is the latest event
    return float(-slope)


def _parse_sg_total(raw) -> Optional[float]:
    if raw is None:
        return None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw) if math.isfinite(raw) else None
    if isinstance(raw, str):
        try:
            return _parse_sg_total(json.loads(raw))
        except (json.JSONDecodeError, ValueError):
            return None
    if isinstance(raw, dict):
        for key in ("sg_total", "total", "sgTotal"):
            if raw.get(key) is not None:
                try:
                    value = float(raw[key])
                except (TypeError, ValueError):
                    return None
                return value if math.isfinite(value) else None
    return None


def per_event_sg(rounds: Iterable[Dict[str, Any]]) -> List[float]:
    """
    Average SG total per event, most recent event first.

    Each round is a dict with `event_id`, `year`, `tee_time` (datetime) and
    `sg_total` (a number, a dict holding one, or a JSON string).
    """
    events: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for rnd in rounds or []:
        key = f"{rnd.get('event_id')}_{rnd.get('year')}"
        entry = events.setdefault(key, {"tee_time": None, "values": []})
        sg = _parse_sg_total(rnd.get("sg_total", rnd.get("strokes_gained")))
        if sg is not None:
            entry["values"].append(sg)
        tee_time = rnd.get("tee_time")
        if tee_time and (entry["tee_time"] is None or tee_time > entry["tee_time"]):
            entry["tee_time"] = tee_time

    scored = [e for e in events.values() if e["values"]]
    scored.sort(key=lambda e: e["tee_time"] or datetime.min, reverse=True)
    return [sum(e["values"]) / len(e["values"]) for e in scored]


def compute_player_form(rounds: List[Dict[str, Any]], now: Optional[datetime] = None) -> Optional[FormSnapshot]:
    """Build a FormSnapshot for one player, or None without usable rounds."""
    if not rounds:
        return None
    sg_by_event = per_event_sg(rounds)
    if not sg_by_event:
        return None

    tee_times = [r["tee_time"] for r in rounds if r.get("tee_time")]
    weeks = None
    if tee_times:
        now = now or datetime.now()
        weeks = (now - max(tee_times)).total_seconds() / (7 * 24 * 3600)

    return FormSnapshot(
        short_term_sg=ewma(sg_by_event[:SHORT_TERM_EVENTS], SHORT_TERM_HALF_LIFE),
        medium_term_sg=ewma(sg_by_event[:MEDIUM_TERM_EVENTS], MEDIUM_TERM_HALF_LIFE),
        trajectory_slope=trajectory_slope(sg_by_event[:TRAJECTORY_EVENTS]),
        weeks_since_last_event=weeks,
    )


def compute_form_snapshots(rounds_by_player: Dict[str, List[Dict[str, Any]]],
                           now: Optional[datetime] = None) -> Dict[str, FormSnapshot]:
    """Form for every player with history, keyed as the input is."""
    snapshots = {}
    for key, rounds in rounds_by_player.items():
        form = compute_player_form(rounds, now=now)
        if form is not None:
            snapshots[key] = form
    logger.info(f"Computed form for {len(snapshots)}/{len(rounds_by_player)} players")
    return snapshots
