"""
Exception taxonomy for the golf-edge engine.
"""

from typing import List, Optional


class GolfEdgeError(Exception):
    """Base class for engine errors."""


class DatabaseError(GolfEdgeError):
    """Raised when the sqlite store cannot be opened or written."""


class SoftFetchFailure(GolfEdgeError):
    """A scoped upstream fetch failed; the slice is skipped."""

    def __init__(self, scope: str, message: str, tour: Optional[str] = None):
        super().__init__(f"{scope}: {message}")
        self.scope = scope
        self.tour = tour


class HardDependencyMissing(GolfEdgeError):
    """A dependency the run cannot proceed without is absent (no odds anywhere)."""

    def __init__(self, step: str, message: str):
        super().__init__(message)
        self.step = step


class InvalidProbability(GolfEdgeError):
    """A probability was NaN or outside the open unit interval."""

    def __init__(self, label: str, value: float):
        super().__init__(f"Invalid {label}: {value!r}")
        self.label = label
        self.value = value


class InsufficientTierCandidates(GolfEdgeError):
    """A tier could not be filled to its configured minimum."""

    def __init__(self, tier: str, found: int, minimum: int):
        super().__init__(f"Tier {tier} has {found} picks, minimum is {minimum}")
        self.tier = tier
        self.found = found
        self.minimum = minimum


class GoldenRunInvariantViolation(GolfEdgeError):
    """The run is not auditable/reproducible and must not be persisted."""

    def __init__(self, violations: List[str]):
        super().__init__(f"Golden run invariant violated: {', '.join(violations)}")
        self.violations = violations
