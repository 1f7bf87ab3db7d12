"""
Shared pytest fixtures for golf-edge tests.
"""

import os
import sys
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from golf_edge.errors import SoftFetchFailure
from golf_edge.ingestion import parse_field, parse_matchups, parse_outrights, parse_predictions, parse_skill_ratings
from golf_edge.models import Market, TourEvent


@pytest.fixture(autouse=True)
def isolated_data_dir(tmp_path, monkeypatch):
    """Point the data directory at a temporary path for every test."""
    monkeypatch.setenv("GOLF_EDGE_DATA_DIR", str(tmp_path / "golf_edge"))
    monkeypatch.delenv("GOLF_EDGE_DB_PATH", raising=False)
    monkeypatch.delenv("SIM_SEED", raising=False)
    monkeypatch.delenv("SIM_COUNT", raising=False)
    yield tmp_path / "golf_edge"


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir):
    """Create a temporary database path."""
    return temp_dir / "test_data.db"


@pytest.fixture
def mock_env_no_api_key():
    """Mock environment with no API key."""
    with patch.dict(os.environ, {"DATAGOLF_API_KEY": ""}, clear=False):
        yield


@pytest.fixture
def mock_env_with_api_key():
    """Mock environment with API key set."""
    with patch.dict(os.environ, {"DATAGOLF_API_KEY": "test_api_key_12345"}, clear=False):
        yield


# =============================================================================
# Sample provider payloads
# =============================================================================

@pytest.fixture
def sample_schedule_response():
    return {
        "tour": "pga",
        "schedule": [
            {"event_id": 14, "event_name": "Masters Tournament", "course": "Augusta National Golf Club",
             "location": "Augusta, GA", "start_date": "2025-04-10"},
            {"event_id": 12, "event_name": "RBC Heritage", "course": "Harbour Town Golf Links",
             "location": "Hilton Head, SC", "start_date": "2025-04-17"},
        ],
    }


@pytest.fixture
def sample_field_response():
    return {
        "event_name": "Masters Tournament",
        "field": [
            {"player_name": "Scheffler, Scottie", "dg_id": 18417},
            {"player_name": "McIlroy, Rory", "dg_id": 10091},
            {"player_name": "Åberg, Ludvig", "dg_id": 25804},
        ],
    }


@pytest.fixture
def sample_prediction_response():
    """Pre-tournament predictions in decimal odds format."""
    return {
        "event_name": "Masters Tournament",
        "baseline_history_fit": [
            {"player_name": "Scheffler, Scottie", "dg_id": 18417, "win": 5.0, "top_5": 2.0,
             "top_10": 1.5, "top_20": 1.2, "make_cut": 1.05},
            {"player_name": "McIlroy, Rory", "dg_id": 10091, "win": 8.0, "top_5": 2.6,
             "top_10": 1.8, "top_20": 1.3, "make_cut": 1.08},
            {"player_name": "Åberg, Ludvig", "dg_id": 25804, "win": 12.0, "top_5": 3.5,
             "top_10": 2.2, "top_20": 1.5, "make_cut": 1.12},
        ],
    }


@pytest.fixture
def sample_skill_response():
    return {
        "players": [
            {"player_name": "Scheffler, Scottie", "dg_id": 18417, "sg_total": 3.1, "sg_ott": 0.7,
             "sg_app": 1.4, "sg_arg": 0.4, "sg_putt": 0.6},
            {"player_name": "McIlroy, Rory", "dg_id": 10091, "sg_total": 2.3, "sg_ott": 1.0,
             "sg_app": 0.8, "sg_arg": 0.2, "sg_putt": 0.3},
            {"player_name": "Åberg, Ludvig", "dg_id": 25804, "sg_total": 1.8, "sg_ott": 0.6,
             "sg_app": 0.7, "sg_arg": 0.2, "sg_putt": 0.3},
        ],
    }


@pytest.fixture
def sample_outrights_response():
    return {
        "event_name": "Masters Tournament",
        "last_updated": "2025-04-07 15:01:00 UTC",
        "market": "win",
        "odds": [
            {"player_name": "Scheffler, Scottie", "dg_id": 18417, "datagolf": {"baseline": 4.8},
             "draftkings": 4.5, "fanduel": 4.6, "bet365": 4.4},
            {"player_name": "McIlroy, Rory", "dg_id": 10091, "datagolf": {"baseline": 7.5},
             "draftkings": 7.0, "fanduel": 6.5, "bet365": 7.5},
            {"player_name": "Åberg, Ludvig", "dg_id": 25804, "datagolf": {"baseline": 12.0},
             "draftkings": 13.0, "fanduel": 12.0, "bet365": 15.0},
        ],
    }


@pytest.fixture
def sample_matchups_response():
    return {
        "event_name": "Masters Tournament",
        "last_updated": "2025-04-07 15:01:00 UTC",
        "market": "tournament_matchups",
        "match_list": [
            {
                "p1_player_name": "Scheffler, Scottie", "p1_dg_id": 18417,
                "p2_player_name": "McIlroy, Rory", "p2_dg_id": 10091,
                "odds": {
                    "draftkings": {"p1": 1.6, "p2": 2.4},
                    "fanduel": {"p1": 1.65, "p2": 2.3},
                },
            },
        ],
    }


# =============================================================================
# Fake provider
# =============================================================================

class FakeProvider:
    """In-memory DataProvider built from the sample payloads."""

    def __init__(self, schedule, field, predictions, skill, outrights, matchups, fail=()):
        self.payloads = {
            "schedule": schedule, "field": field, "predictions": predictions,
            "skill": skill, "outrights": outrights, "matchups": matchups,
        }
        self.fail = set(fail)
        self.artifacts = {}
        self.calls = []
        self.tracker = None

    def begin_run(self, tracker=None):
        self.artifacts = {}
        self.tracker = tracker

    def _payload(self, name, tour):
        self.calls.append((name, tour))
        if name in self.fail:
            raise SoftFetchFailure(name, "provider unavailable", tour)
        self.artifacts[f"{name}:{tour}"] = self.payloads[name]
        return self.payloads[name]

    def schedule(self, tour):
        payload = self._payload("schedule", tour)
        return [
            TourEvent(tour=tour, event_id=str(row["event_id"]), event_name=row["event_name"],
                      start_date=date.fromisoformat(row["start_date"]), course=row["course"])
            for row in payload["schedule"]
        ]

    def field(self, tour):
        return parse_field(self._payload("field", tour))

    def predictions(self, tour):
        return parse_predictions(self._payload("predictions", tour))

    def skill_ratings(self, tour):
        return parse_skill_ratings(self._payload("skill", tour))

    def outright_odds(self, tour, market, resolver):
        if market != Market.WIN:
            return []
        return parse_outrights(self._payload("outrights", tour), resolver)

    def grouped_odds(self, tour, market, resolver):
        if market != Market.MATCHUP:
            return []
        return parse_matchups(self._payload("matchups", tour), market, resolver, self.tracker, tour)


@pytest.fixture
def provider_factory(sample_schedule_response, sample_field_response, sample_prediction_response,
                     sample_skill_response, sample_outrights_response, sample_matchups_response):
    """Build fake providers, optionally failing some payloads."""
    def make(fail=()):
        return FakeProvider(
            sample_schedule_response, sample_field_response, sample_prediction_response,
            sample_skill_response, sample_outrights_response, sample_matchups_response, fail=fail,
        )
    return make


@pytest.fixture
def fake_provider(provider_factory):
    return provider_factory()


@pytest.fixture
def run_date():
    """A Tuesday in the week of the sample event."""
    return date(2025, 4, 8)


@pytest.fixture
def captured_at():
    return datetime(2025, 4, 7, 15, 1, tzinfo=timezone.utc)
