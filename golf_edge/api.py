"""
Data Golf API client for golf-edge.
Fetches schedules, fields, model predictions, skill ratings and live odds.
Payloads are returned raw; `ingestion` turns them into typed records.
"""

import json
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import requests

from .config import get_config
from .database import Database

logger = logging.getLogger(__name__)


class DataGolfAPI:
    """Client for Data Golf API."""

    BASE_URL = "https://feeds.datagolf.com"

    def __init__(self, api_key: Optional[str] = None, db: Optional[Database] = None,
                 base_url: Optional[str] = None):
        """Initialize API client."""
        config = get_config()
        self.api_key = api_key or config.datagolf_api_key
        self.base_url = base_url or config.datagolf_base_url or self.BASE_URL
        self.timeout = config.request_timeout_seconds
        self.db = db if db is not None else Database()
        self._session = requests.Session()
        self.last_error: str = ""

    def _request(self, endpoint: str, params: Optional[Dict] = None, cache_hours: float = 1) -> Optional[Any]:
        """Make API request with caching; None when every attempt fails."""
        if not self.api_key:
            self.last_error = "DATAGOLF_API_KEY not configured"
            raise ValueError(
                "DATAGOLF_API_KEY not configured. "
                "Set the DATAGOLF_API_KEY environment variable. "
                "Get a key at https://datagolf.com/api-access"
            )

        cache_key = f"datagolf:{endpoint}:{json.dumps(params or {}, sort_keys=True)}"
        if cache_hours > 0:
            cached = self.db.get_cache(cache_key)
            if cached:
                logger.debug(f"Using cached data for {endpoint}")
                return cached

        url = f"{self.base_url}{endpoint}"
        query = dict(params or {})
        query["key"] = self.api_key

        max_retries = 3
        base_delay = 1.0  # seconds

        for attempt in range(max_retries):
            try:
                response = self._session.get(url, params=query, timeout=self.timeout)
                response.raise_for_status()

                try:
                    data = response.json()
                except json.JSONDecodeError as e:
                    self.last_error = f"Failed to parse JSON from {endpoint}: {e}"
                    logger.error(self.last_error)
                    return None

                if data and isinstance(data, (dict, list)):
                    if cache_hours > 0:
                        expires = datetime.now() + timedelta(hours=cache_hours)
                        self.db.set_cache(cache_key, data, expires)
                    self.last_error = ""
                else:
                    self.last_error = f"Empty response from {endpoint}"
                    logger.warning(self.last_error)

                return data
            except requests.RequestException as e:
                self.last_error = f"API request failed: {e}"
                if attempt < max_retries - 1:
                    delay = base_delay * (2 ** attempt)
                    logger.warning(
                        f"API request failed (attempt {attempt + 1}/{max_retries}): {e}. Retrying in {delay}s..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(f"API request failed after {max_retries} attempts: {e}")
                    return None

        return None

    def get_schedule(self, tour: str = "pga", upcoming_only: bool = True) -> Optional[Any]:
        """Tour schedule (event ids, names, courses, start dates)."""
        return self._request(
            "/get-schedule",
            params={"tour": tour, "upcoming_only": "yes" if upcoming_only else "no", "file_format": "json"},
            cache_hours=24,
        )

    def get_field_updates(self, tour: str = "pga") -> Optional[Any]:
        """Current field for the tour's upcoming event."""
        return self._request(
            "/field-updates",
            params={"tour": tour, "file_format": "json"},
            cache_hours=1,
        )

    def get_pre_tournament_predictions(self, tour: str = "pga") -> Optional[Any]:
        """Model finish probabilities for the upcoming event (decimal odds format)."""
        return self._request(
            "/preds/pre-tournament",
            params={"tour": tour, "add_position": "yes", "dead_heat": "yes",
                    "odds_format": "decimal", "file_format": "json"},
            cache_hours=1,
        )

    def get_skill_ratings(self) -> Optional[Any]:
        """Strokes-gained skill ratings for every rated player."""
        return self._request(
            "/preds/skill-ratings",
            params={"display": "value", "file_format": "json"},
            cache_hours=24,
        )

    def get_player_decompositions(self, tour: str = "pga") -> Optional[Any]:
        """Course-fit and course-history adjustments for the upcoming event."""
        return self._request(
            "/preds/player-decompositions",
            params={"tour": tour, "file_format": "json"},
            cache_hours=2,
        )

    def get_approach_skill(self) -> Optional[Any]:
        """Approach play by yardage bucket."""
        return self._request(
            "/preds/approach-skill",
            params={"period": "l24", "file_format": "json"},
            cache_hours=24,
        )

    def get_outrights(self, tour: str = "pga", market: str = "win") -> Optional[Any]:
        """
        Live sportsbook odds for an outright market.
        market: 'win', 'top_5', 'top_10', 'top_20', 'make_cut', 'frl'
        """
        return self._request(
            "/betting-tools/outrights",
            params={"tour": tour, "market": market, "odds_format": "decimal", "file_format": "json"},
            cache_hours=0,
        )

    def get_matchups(self, tour: str = "pga", market: str = "tournament_matchups") -> Optional[Any]:
        """
        Live head-to-head odds.
        market: 'tournament_matchups', 'round_matchups' or '3_balls'
        """
        return self._request(
            "/betting-tools/matchups",
            params={"tour": tour, "market": market, "odds_format": "decimal", "file_format": "json"},
            cache_hours=0,
        )

    def health_check(self) -> bool:
        """Check if API is accessible and key is valid."""
        if not self.api_key:
            return False

        try:
            response = self._session.get(
                f"{self.base_url}/get-player-list",
                params={"key": self.api_key, "file_format": "json"},
                timeout=10
            )
            return response.status_code == 200
        except requests.RequestException:
            return False


def get_api() -> DataGolfAPI:
    """Get configured API client."""
    return DataGolfAPI()
