"""
Per-run data quality issue tracking.
"""

import itertools
import logging
import threading
from typing import List, Optional

from .models import DataIssue, Severity

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    Severity.ERROR: logging.ERROR,
    Severity.WARNING: logging.WARNING,
    Severity.INFO: logging.INFO,
}


class DataIssueTracker:
    """Collects issues raised while a run progresses."""

    def __init__(self, run_key: Optional[str] = None):
        self.run_key = run_key
        self._issues: List[tuple] = []
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._issues)

    def log_issue(self, severity, step: str, message: str, tour: Optional[str] = None, **context) -> DataIssue:
        """Record an issue and log it at the matching level."""
        severity = Severity(severity)
        issue = DataIssue(severity=severity, step=step, message=message, tour=tour, context=context)
        with self._lock:
            self._issues.append((next(self._sequence), issue))
        logger.log(
            _LOG_LEVELS[severity],
            f"[{step}] {message}" + (f" ({tour})" if tour else "") + (f" {context}" if context else ""),
        )
        return issue

    def error(self, step: str, message: str, tour: Optional[str] = None, **context) -> DataIssue:
        return self.log_issue(Severity.ERROR, step, message, tour, **context)

    def warning(self, step: str, message: str, tour: Optional[str] = None, **context) -> DataIssue:
        return self.log_issue(Severity.WARNING, step, message, tour, **context)

    def info(self, step: str, message: str, tour: Optional[str] = None, **context) -> DataIssue:
        return self.log_issue(Severity.INFO, step, message, tour, **context)

    @property
    def issues(self) -> List[DataIssue]:
        """All issues in the order they were raised."""
        return [issue for _, issue in self._issues]

    def get_issues(self, severity=None, tour: Optional[str] = None) -> List[DataIssue]:
        """Issues filtered by severity and/or tour, newest first."""
        wanted = Severity(severity) if severity is not None else None
        return [
            issue for _, issue in reversed(self._issues)
            if (wanted is None or issue.severity == wanted) and (tour is None or issue.tour == tour)
        ]

    def top_issues(self, limit: int = 10) -> List[DataIssue]:
        """Errors first, then warnings, then info; newest first within a severity."""
        ranked = sorted(self._issues, key=lambda item: (item[1].severity.rank, -item[0]))
        return [issue for _, issue in ranked[:limit]]

    def has_errors(self) -> bool:
        return any(issue.severity == Severity.ERROR for _, issue in self._issues)
