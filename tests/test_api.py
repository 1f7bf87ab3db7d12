"""
Tests for api.py - Data Golf API client.
"""

import json
from unittest.mock import patch, MagicMock

import pytest
import requests

from golf_edge.api import DataGolfAPI, get_api


def _response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status = MagicMock()
    return response


@pytest.fixture
def mock_db():
    db = MagicMock()
    db.get_cache.return_value = None
    return db


@pytest.fixture
def api(mock_db):
    """API client with a valid key and no cache hits."""
    with patch('golf_edge.api.get_config') as mock_config:
        mock_config.return_value.datagolf_api_key = "valid_key"
        mock_config.return_value.datagolf_base_url = "https://feeds.example.test"
        yield DataGolfAPI(db=mock_db)


class TestDataGolfAPIInitialization:
    """Tests for API client initialization."""

    def test_api_uses_config_key(self):
        """Test that API uses key from config."""
        with patch('golf_edge.api.get_config') as mock_config:
            mock_config.return_value.datagolf_api_key = "config_key"
            with patch('golf_edge.api.Database'):
                api = DataGolfAPI()
                assert api.api_key == "config_key"

    def test_api_uses_provided_key(self):
        """Test that provided key overrides config."""
        with patch('golf_edge.api.get_config') as mock_config:
            mock_config.return_value.datagolf_api_key = "config_key"
            with patch('golf_edge.api.Database'):
                api = DataGolfAPI(api_key="provided_key")
                assert api.api_key == "provided_key"

    def test_base_url_from_config(self, api):
        """Test that requests go to the configured base URL."""
        api._session.get = MagicMock(return_value=_response({"schedule": []}))
        api._request("/get-schedule")
        assert api._session.get.call_args[0][0] == "https://feeds.example.test/get-schedule"

    def test_get_api_factory(self):
        """Test the factory returns a client."""
        with patch('golf_edge.api.Database'):
            assert isinstance(get_api(), DataGolfAPI)


class TestAPIKeyValidation:
    """Tests for API key validation."""

    def test_request_raises_error_without_api_key(self):
        """Test that _request raises ValueError when API key is missing."""
        with patch('golf_edge.api.get_config') as mock_config:
            mock_config.return_value.datagolf_api_key = ""
            with patch('golf_edge.api.Database'):
                api = DataGolfAPI()

                with pytest.raises(ValueError) as exc_info:
                    api._request("/test-endpoint")

                assert "DATAGOLF_API_KEY not configured" in str(exc_info.value)
                assert "datagolf.com/api-access" in str(exc_info.value)

    def test_key_sent_as_query_param(self, api):
        """Test that the key is added to the query string."""
        api._session.get = MagicMock(return_value=_response({"ok": True}))
        api._request("/test-endpoint", params={"tour": "pga"})
        params = api._session.get.call_args[1]["params"]
        assert params == {"tour": "pga", "key": "valid_key"}


class TestAPIRetryLogic:
    """Tests for API retry logic with exponential backoff."""

    def test_retry_on_request_failure(self, api):
        """Test that API retries on transient failures."""
        call_count = 0

        def side_effect(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise requests.RequestException("Connection failed")
            return _response({"success": True})

        api._session.get = MagicMock(side_effect=side_effect)

        with patch('time.sleep'):  # Don't actually sleep
            result = api._request("/test-endpoint")

        assert result == {"success": True}
        assert call_count == 3
        assert api.last_error == ""

    def test_gives_up_after_max_retries(self, api):
        """Test that API gives up after max retry attempts."""
        api._session.get = MagicMock(side_effect=requests.RequestException("Always fails"))

        with patch('time.sleep'):
            result = api._request("/test-endpoint")

        assert result is None
        assert api._session.get.call_count == 3  # max_retries
        assert "Always fails" in api.last_error

    def test_exponential_backoff_delays(self, api):
        """Test that retry uses exponential backoff."""
        api._session.get = MagicMock(side_effect=requests.RequestException("Fails"))

        sleep_calls = []
        with patch('time.sleep', side_effect=lambda x: sleep_calls.append(x)):
            api._request("/test-endpoint")

        # Delays of 1.0, 2.0 (base_delay * 2^attempt)
        assert sleep_calls == [1.0, 2.0]

    def test_http_error_retried(self, api):
        """Test that HTTP errors count as failed attempts."""
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("503")
        api._session.get = MagicMock(return_value=response)

        with patch('time.sleep'):
            assert api._request("/test-endpoint") is None
        assert api._session.get.call_count == 3


class TestJSONErrorHandling:
    """Tests for JSON parsing error handling."""

    def test_handles_json_decode_error(self, api):
        """Test that JSON decode errors are handled gracefully."""
        mock_response = MagicMock()
        mock_response.raise_for_status = MagicMock()
        mock_response.json.side_effect = json.JSONDecodeError("error", "doc", 0)
        api._session.get = MagicMock(return_value=mock_response)

        assert api._request("/test-endpoint") is None
        assert "Failed to parse JSON" in api.last_error

    def test_empty_response_not_cached(self, api, mock_db):
        """Test that an empty payload is returned but not cached."""
        api._session.get = MagicMock(return_value=_response({}))
        assert api._request("/test-endpoint") == {}
        mock_db.set_cache.assert_not_called()


class TestAPICaching:
    """Tests for API response caching."""

    def test_returns_cached_data(self, api, mock_db):
        """Test that cached data is returned when available."""
        mock_db.get_cache.return_value = {"cached": "response"}
        api._session = MagicMock()

        result = api._request("/test-endpoint")

        assert result == {"cached": "response"}
        api._session.get.assert_not_called()

    def test_caches_api_response(self, api, mock_db):
        """Test that API responses are cached."""
        api._session.get = MagicMock(return_value=_response({"fresh": "data"}))

        api._request("/test-endpoint", cache_hours=2)

        mock_db.set_cache.assert_called_once()
        assert mock_db.set_cache.call_args[0][1] == {"fresh": "data"}

    def test_live_odds_never_cached(self, api, mock_db):
        """Test that odds endpoints bypass the cache in both directions."""
        mock_db.get_cache.return_value = {"stale": True}
        api._session.get = MagicMock(return_value=_response({"odds": [{"player_name": "A"}]}))

        result = api.get_outrights("pga", "top_10")

        assert result == {"odds": [{"player_name": "A"}]}
        mock_db.get_cache.assert_not_called()
        mock_db.set_cache.assert_not_called()

    def test_cache_key_includes_params(self, api, mock_db):
        """Test that different parameters are cached separately."""
        api._session.get = MagicMock(return_value=_response({"data": 1}))
        api.get_field_updates("pga")
        api.get_field_updates("euro")
        keys = [c[0][0] for c in mock_db.set_cache.call_args_list]
        assert len(set(keys)) == 2


class TestEndpoints:
    """Tests for endpoint paths and parameters."""

    @pytest.mark.parametrize("method,args,endpoint,expected", [
        ("get_schedule", ("euro",), "/get-schedule", {"tour": "euro", "upcoming_only": "yes"}),
        ("get_field_updates", ("kft",), "/field-updates", {"tour": "kft"}),
        ("get_pre_tournament_predictions", ("pga",), "/preds/pre-tournament", {"odds_format": "decimal"}),
        ("get_skill_ratings", (), "/preds/skill-ratings", {"display": "value"}),
        ("get_player_decompositions", ("pga",), "/preds/player-decompositions", {"tour": "pga"}),
        ("get_approach_skill", (), "/preds/approach-skill", {"period": "l24"}),
        ("get_outrights", ("alt", "make_cut"), "/betting-tools/outrights", {"tour": "alt", "market": "make_cut"}),
        ("get_matchups", ("pga", "3_balls"), "/betting-tools/matchups", {"market": "3_balls"}),
    ])
    def test_endpoint(self, api, method, args, endpoint, expected):
        """Test each endpoint's path and key parameters."""
        api._session.get = MagicMock(return_value=_response({"data": []}))
        getattr(api, method)(*args)

        url = api._session.get.call_args[0][0]
        params = api._session.get.call_args[1]["params"]
        assert url.endswith(endpoint)
        for key, value in expected.items():
            assert params[key] == value
        assert params["file_format"] == "json"


class TestHealthCheck:
    """Tests for API health check."""

    def test_health_check_returns_false_without_key(self):
        """Test health check returns False when API key missing."""
        with patch('golf_edge.api.get_config') as mock_config:
            mock_config.return_value.datagolf_api_key = ""
            with patch('golf_edge.api.Database'):
                api = DataGolfAPI()
                assert api.health_check() is False

    def test_health_check_returns_true_on_success(self, api):
        """Test health check returns True on successful API call."""
        mock_response = MagicMock()
        mock_response.status_code = 200
        api._session.get = MagicMock(return_value=mock_response)

        assert api.health_check() is True

    def test_health_check_returns_false_on_failure(self, api):
        """Test health check returns False on API failure."""
        mock_response = MagicMock()
        mock_response.status_code = 401
        api._session.get = MagicMock(return_value=mock_response)

        assert api.health_check() is False

    def test_health_check_returns_false_on_exception(self, api):
        """Test health check returns False on request exception."""
        api._session.get = MagicMock(side_effect=requests.RequestException("Failed"))

        assert api.health_check() is False
