"""
Probability calibration.

Two interchangeable calibrators share the `calibrate(p)` surface:

* LogitShiftCalibrator: hand-tuned shift and shrinkage in logit space.
* IsotonicCalibrator: monotone bin mapping trained on (prediction, outcome)
  history with pool-adjacent-violators.

CalibrationSet picks the trained isotonic model for a market when one exists
and the logit-shift offsets otherwise.
"""

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from sklearn.metrics import brier_score_loss, log_loss

from .config import CALIBRATION_OFFSETS
from .models import CalibrationBin, Market
from .odds import clamp_probability, inv_logit, is_finite, logit

logger = logging.getLogger(__name__)

MIN_TRAINING_PAIRS = 10
DEFAULT_BIN_SIZE = 50


class LogitShiftCalibrator:
    """Adds a logit shift then shrinks toward 0.5 (0 = no shrinkage)."""

    def __init__(self, logit_shift: float = 0.0, shrinkage: float = 0.0):
        self.logit_shift = logit_shift
        self.shrinkage = shrinkage

    def calibrate(self, p: float) -> float:
        if not is_finite(p) or p <= 0 or p >= 1:
            return p
        value = (logit(p) + self.logit_shift) * (1 - self.shrinkage)
        return clamp_probability(inv_logit(value))


class IsotonicCalibrator:
    """Monotone non-decreasing mapping from raw to calibrated probability."""

    def __init__(self, bins: Optional[List[CalibrationBin]] = None):
        self.bins: List[CalibrationBin] = list(bins or [])

    @property
    def is_trained(self) -> bool:
        return len(self.bins) > 0

    def train(self, predictions: Sequence[float], outcomes: Sequence[int], bin_size: int = DEFAULT_BIN_SIZE):
        """
        Fit bins from prediction/outcome pairs.

        Pairs with a non-finite prediction or an outcome other than 0/1 are
        ignored. Fewer than 10 valid pairs leaves the calibrator untrained.
        """
        if len(predictions) != len(outcomes):
            raise ValueError("Predictions and outcomes must be the same length")

        pairs = sorted(
            (float(p), int(o)) for p, o in zip(predictions, outcomes)
            if is_finite(p) and o in (0, 1)
        )
        if len(pairs) < MIN_TRAINING_PAIRS:
            self.bins = []
            return self

        bins = []
        for start in range(0, len(pairs), bin_size):
            chunk = pairs[start:start + bin_size]
            preds = [p for p, _ in chunk]
            bins.append(CalibrationBin(
                lower=preds[0],
                upper=preds[-1],
                midpoint=sum(preds) / len(chunk),
                frequency=sum(o for _, o in chunk) / len(chunk),
                count=len(chunk),
            ))

        # Pool adjacent violators until frequencies are non-decreasing
        merged = True
        while merged:
            merged = False
            for i in range(len(bins) - 1):
                a, b = bins[i], bins[i + 1]
                if a.frequency > b.frequency:
                    total = a.count + b.count
                    bins[i:i + 2] = [CalibrationBin(
                        lower=a.lower,
                        upper=b.upper,
                        midpoint=(a.midpoint * a.count + b.midpoint * b.count) / total,
                        frequency=(a.frequency * a.count + b.frequency * b.count) / total,
                        count=total,
                    )]
                    merged = True
                    break

        self.bins = bins
        return self

    def calibrate(self, p: float) -> float:
        if not is_finite(p) or not self.bins:
            return p
        p = clamp_probability(p)
        first, last = self.bins[0], self.bins[-1]
        if p <= first.midpoint:
            return clamp_probability(first.frequency)
        if p >= last.midpoint:
            return clamp_probability(last.frequency)

        midpoints = [b.midpoint for b in self.bins]
        frequencies = [b.frequency for b in self.bins]
        return clamp_probability(float(np.interp(p, midpoints, frequencies)))

    def to_dict(self) -> Dict:
        return {"bins": [asdict(b) for b in self.bins]}

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "IsotonicCalibrator":
        bins = []
        for row in (data or {}).get("bins", []) or []:
            bins.append(CalibrationBin(
                lower=float(row["lower"]),
                upper=float(row["upper"]),
                midpoint=float(row["midpoint"]),
                frequency=float(row["frequency"]),
                count=int(row["count"]),
            ))
        return cls(bins)


class CalibrationSet:
    """Per-market calibrators: trained isotonic first, logit shift otherwise."""

    def __init__(self, models: Optional[Dict[Market, IsotonicCalibrator]] = None,
                 offsets: Optional[Dict[Market, Dict[str, float]]] = None):
        self.models = {m: c for m, c in (models or {}).items() if c.is_trained}
        offsets = CALIBRATION_OFFSETS if offsets is None else offsets
        self.fallbacks = {
            market: LogitShiftCalibrator(o.get("logit_shift", 0.0), o.get("shrinkage", 0.0))
            for market, o in offsets.items()
        }

    def calibrator_for(self, market: Market):
        return self.models.get(market) or self.fallbacks.get(market)

    def calibrate(self, market: Market, p: float) -> float:
        calibrator = self.calibrator_for(market)
        if calibrator is None:
            return p
        return calibrator.calibrate(p)

    @classmethod
    def from_database(cls, db) -> "CalibrationSet":
        """Load active models; a model that fails to load is skipped."""
        models = {}
        for market_key, payload in db.get_calibration_models().items():
            try:
                models[Market(market_key)] = IsotonicCalibrator.from_dict(payload)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Failed to load calibration model for {market_key}: {e}")
        calibration = cls(models)
        logger.info(f"Loaded calibration models for {len(calibration.models)} markets")
        return calibration


def _diagnostics(outcomes: np.ndarray, predictions: np.ndarray) -> Dict[str, float]:
    clipped = np.clip(predictions, 0.001, 0.999)
    return {
        "brier": float(brier_score_loss(outcomes, clipped)),
        "log_loss": float(log_loss(outcomes, clipped, labels=[0, 1])),
    }


def train_from_history(
    source: Union[str, Path, pd.DataFrame],
    bin_size: int = DEFAULT_BIN_SIZE,
) -> Dict[Market, Dict]:
    """
    Train one isotonic model per market from historical results.

    `source` is a CSV path or DataFrame with columns `market`, `predicted`
    and `outcome`. Returns, per market, the calibrator plus Brier score and
    log loss before and after calibration.
    """
    frame = source if isinstance(source, pd.DataFrame) else pd.read_csv(source)
    missing = {"market", "predicted", "outcome"} - set(frame.columns)
    if missing:
        raise ValueError(f"Calibration history missing columns: {sorted(missing)}")

    frame = frame.copy()
    frame["predicted"] = pd.to_numeric(frame["predicted"], errors="coerce")
    frame["outcome"] = pd.to_numeric(frame["outcome"], errors="coerce")
    frame = frame[np.isfinite(frame["predicted"]) & frame["outcome"].isin([0, 1])]

    results = {}
    for market_key, group in frame.groupby("market"):
        try:
            market = Market(str(market_key))
        except ValueError:
            logger.warning(f"Skipping unknown market in history: {market_key}")
            continue

        predictions = group["predicted"].to_numpy(dtype=float)
        outcomes = group["outcome"].to_numpy(dtype=int)
        calibrator = IsotonicCalibrator().train(predictions.tolist(), outcomes.tolist(), bin_size=bin_size)
        if not calibrator.is_trained:
            logger.info(f"[calibration] {market.value}: only {len(group)} rows, left untrained")
            continue

        calibrated = np.array([calibrator.calibrate(p) for p in predictions])
        results[market] = {
            "calibrator": calibrator,
            "rows": int(len(group)),
            "before": _diagnostics(outcomes, predictions),
            "after": _diagnostics(outcomes, calibrated),
        }
        logger.info(
            f"[calibration] {market.value}: {len(calibrator.bins)} bins, "
            f"brier {results[market]['before']['brier']:.4f} -> {results[market]['after']['brier']:.4f}"
        )
    return results
