"""
Tests for config.py - Configuration management.
"""

import os
from unittest.mock import patch

import pytest

from golf_edge.config import (
    CALIBRATION_OFFSETS, DEFAULT_CUT_RULES, DEFAULT_TIER_BANDS, TOUR_CODES, Config, get_config,
)
from golf_edge.models import CutRule, Market, Tier


class TestConfig:
    """Tests for Config class."""

    def test_config_loads_defaults(self):
        """Test that config loads with default values."""
        with patch.object(Config, '__post_init__', lambda self: None):
            config = Config()
            assert config.sim_count == 50000
            assert config.tours == ["PGA", "DPWT", "KFT", "LIV"]
            assert config.blend_weights == (0.70, 0.20, 0.10)
            assert config.power_k == 1.25
            assert config.min_picks_per_tier == 2
            assert config.allow_fallback is True
            assert config.datagolf_base_url == "https://feeds.datagolf.com"

    def test_config_loads_env_vars(self):
        """Test that config loads environment variables."""
        with patch.dict(os.environ, {
            "DATAGOLF_API_KEY": "test_key",
            "DATAGOLF_BASE_URL": "https://feeds.example.test/",
            "GOLF_EDGE_TOURS": "pga, liv",
            "SIM_COUNT": "2000",
            "SIM_SEED": "42",
            "BLEND_WEIGHT_SIM": "0.8",
            "ALLOWED_BOOKS": "bet365,pinnacle",
            "ALLOW_FALLBACK": "no",
            "MAX_PICKS_PER_PLAYER": "1",
        }, clear=False):
            config = Config()
            assert config.datagolf_api_key == "test_key"
            assert config.datagolf_base_url == "https://feeds.example.test"
            assert config.tours == ["PGA", "LIV"]
            assert config.sim_count == 2000
            assert config.sim_seed == 42
            assert config.weight_sim == 0.8
            assert config.allowed_books == ["bet365", "pinnacle"]
            assert config.allow_fallback is False
            assert config.max_picks_per_player == 1

    def test_data_dir_env(self, tmp_path):
        """Test that the data directory moves the database with it."""
        with patch.dict(os.environ, {"GOLF_EDGE_DATA_DIR": str(tmp_path / "edge")}):
            config = Config()
            assert config.db_path == tmp_path / "edge" / "data.db"
            assert config.data_dir.exists()

    def test_db_path_override(self, tmp_path):
        """Test that an explicit database path wins."""
        with patch.dict(os.environ, {"GOLF_EDGE_DB_PATH": str(tmp_path / "other.db")}):
            assert Config().db_path == tmp_path / "other.db"

    def test_empty_env_keeps_default(self):
        """Test that blank values fall back to defaults."""
        with patch.dict(os.environ, {"SIM_COUNT": "", "ALLOWED_BOOKS": " , "}):
            config = Config()
            assert config.sim_count == 50000
            assert "bet365" in config.allowed_books

    def test_invalid_number_raises(self):
        """Test that a malformed number is not silently ignored."""
        with patch.dict(os.environ, {"SIM_COUNT": "lots"}):
            with pytest.raises(ValueError):
                Config()

    def test_no_hardcoded_api_key(self):
        """Test that no key is hardcoded as a default."""
        with patch.dict(os.environ, {"DATAGOLF_API_KEY": ""}):
            assert Config().datagolf_api_key == ""

    def test_get_config(self):
        """Test the factory."""
        assert isinstance(get_config(), Config)


class TestTourSettings:
    """Tests for per-tour constants."""

    def test_cut_rules(self):
        """Test cut rules per tour, with LIV having none."""
        config = Config()
        assert config.cut_rule_for("PGA") == CutRule(cut_after=2, cut_size=65)
        assert config.cut_rule_for("liv").has_cut is False
        assert config.cut_rule_for("UNKNOWN") == DEFAULT_CUT_RULES["PGA"]

    def test_tour_codes(self):
        """Test DataGolf tour codes."""
        assert TOUR_CODES["DPWT"] == "euro"
        assert TOUR_CODES["LIV"] == "alt"

    def test_tier_bands_ordered(self):
        """Test that tier bands increase and do not overlap."""
        bands = [DEFAULT_TIER_BANDS[t] for t in Tier]
        for (low, high), (next_low, _) in zip(bands, bands[1:]):
            assert low < high < next_low

    def test_calibration_offsets_cover_outrights(self):
        """Test that every outright market has a default calibration."""
        assert Market.MAKE_CUT in CALIBRATION_OFFSETS
        assert Market.MATCHUP not in CALIBRATION_OFFSETS


class TestSaveToEnv:
    """Tests for writing settings back to a .env file."""

    def test_save_to_env(self, tmp_path):
        """Test that tunable settings are written."""
        config = Config()
        config.datagolf_api_key = "abc"
        config.tours = ["PGA", "LIV"]
        config.allow_fallback = False
        path = tmp_path / ".env"
        config.save_to_env(path)

        content = path.read_text()
        assert "DATAGOLF_API_KEY=abc" in content
        assert "GOLF_EDGE_TOURS=PGA,LIV" in content
        assert "ALLOW_FALLBACK=false" in content
