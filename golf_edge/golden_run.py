"""
Golden-run checks: a run may only be persisted when its inputs are
recorded well enough to audit and reproduce it.
"""

import hashlib
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from .errors import GoldenRunInvariantViolation
from .models import OddsSnapshot, TourEvent

logger = logging.getLogger(__name__)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def build_input_summary(events: Sequence[TourEvent], odds_snapshot: Optional[OddsSnapshot]) -> Dict[str, Any]:
    """Descriptor of the run inputs: the events and the odds snapshot."""
    summary = {
        "events": sorted(
            (
                {
                    "tour": e.tour,
                    "event_id": str(e.event_id),
                    "event_name": e.event_name,
                    "start_date": _iso(e.start_date),
                    "end_date": _iso(e.end_date),
                }
                for e in events
            ),
            key=lambda e: (e["tour"], e["event_id"]),
        ),
        "odds_snapshot": None,
    }
    if odds_snapshot is not None:
        summary["odds_snapshot"] = {
            "tours": odds_snapshot.tours,
            "markets": odds_snapshot.markets,
            "fetched_at": _iso(odds_snapshot.fetched_at),
        }
    return summary


def input_fingerprint(summary: Dict[str, Any]) -> str:
    """sha256 of the canonical JSON encoding (key order does not matter)."""
    encoded = json.dumps(summary, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def golden_run_violations(
    run_key: Optional[str],
    input_summary: Optional[Dict[str, Any]],
    input_hash: Optional[str],
    odds_snapshot: Optional[OddsSnapshot],
) -> List[str]:
    violations = []
    if not run_key:
        violations.append("missing run key")
    if not input_summary or not input_summary.get("events"):
        violations.append("missing input summary")
    if not input_hash:
        violations.append("missing input hash")
    if odds_snapshot is None or odds_snapshot.is_empty:
        violations.append("missing odds snapshot")
    return violations


def enforce_golden_run(
    run_key: Optional[str],
    input_summary: Optional[Dict[str, Any]],
    input_hash: Optional[str],
    odds_snapshot: Optional[OddsSnapshot],
):
    """Raise GoldenRunInvariantViolation if any input record is missing."""
    violations = golden_run_violations(run_key, input_summary, input_hash, odds_snapshot)
    if violations:
        logger.error(f"[golden_run] {run_key}: {', '.join(violations)}")
        raise GoldenRunInvariantViolation(violations)
