"""
Configuration management for the golf-edge engine.
Values come from the environment (optionally a .env file) with tuned defaults.
"""

import os
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .models import CutRule, Tier, Market


# Load environment variables from .env, then the file `golf-edge setup` writes
load_dotenv()
load_dotenv(Path(os.getenv("GOLF_EDGE_DATA_DIR") or Path.home() / ".golf_edge") / ".env")


# Cut rules per tour (LIV has no cut)
DEFAULT_CUT_RULES: Dict[str, CutRule] = {
    "PGA": CutRule(cut_after=2, cut_size=65),
    "DPWT": CutRule(cut_after=2, cut_size=65),
    "KFT": CutRule(cut_after=2, cut_size=65),
    "LIV": CutRule.no_cut(),
}

# DataGolf tour codes
TOUR_CODES: Dict[str, str] = {
    "PGA": "pga",
    "DPWT": "euro",
    "KFT": "kft",
    "LIV": "alt",
}

# Cross-tour skill rating scale
TOUR_RATING_SCALE: Dict[str, float] = {
    "PGA": 1.0,
    "DPWT": 0.95,
    "KFT": 0.9,
    "LIV": 0.92,
}

# Odds bands per tier, inclusive on both ends; gaps go to the nearer band
DEFAULT_TIER_BANDS: Dict[Tier, Tuple[float, float]] = {
    Tier.PAR: (1.01, 5.99),
    Tier.BIRDIE: (6.00, 10.99),
    Tier.EAGLE: (11.00, 60.00),
    Tier.LONG_SHOTS: (60.01, 1000.0),
}

# Hand-tuned calibration used when no trained model exists for a market.
# logit_shift is added in logit space; shrinkage pulls toward 0.5 (0 = none).
CALIBRATION_OFFSETS: Dict[Market, Dict[str, float]] = {
    Market.WIN: {"logit_shift": 0.0, "shrinkage": 0.05},
    Market.TOP_5: {"logit_shift": 0.0, "shrinkage": 0.03},
    Market.TOP_10: {"logit_shift": 0.0, "shrinkage": 0.02},
    Market.TOP_20: {"logit_shift": 0.0, "shrinkage": 0.01},
    Market.MAKE_CUT: {"logit_shift": -0.05, "shrinkage": 0.02},
    Market.FRL: {"logit_shift": 0.0, "shrinkage": 0.05},
}

DEFAULT_ALLOWED_BOOKS: List[str] = [
    "bet365", "betfair", "williamhill", "skybet", "unibet", "paddypower",
    "betway", "ladbrokes", "coral", "betfred", "boylesports", "fanduel",
    "draftkings", "betmgm", "caesars", "pointsbet",
]


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    parsed = [part.strip() for part in value.split(",") if part.strip()]
    return parsed or list(default)


@dataclass
class Config:
    """Application configuration."""
    datagolf_api_key: str = ""
    datagolf_base_url: str = "https://feeds.datagolf.com"
    request_timeout_seconds: float = 30.0

    # Paths
    data_dir: Path = Path.home() / ".golf_edge"
    db_path: Path = Path.home() / ".golf_edge" / "data.db"

    # Run window
    tours: List[str] = field(default_factory=lambda: ["PGA", "DPWT", "KFT", "LIV"])
    lookahead_days: int = 7

    # Simulation settings
    sim_count: int = 50000
    sim_seed: Optional[int] = None
    rounds: int = 4
    momentum_factor: float = 0.12
    tail_floor: float = 3.0
    cut_penalty: float = 20.0
    round_shock: float = 0.6
    sim_chunk_size: int = 5000
    max_workers: int = 4

    # Probability fusion
    weight_sim: float = 0.70
    weight_external: float = 0.20
    weight_market: float = 0.10
    power_k: float = 1.25
    book_weights: Dict[str, float] = field(default_factory=dict)
    allowed_books: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_BOOKS))
    odds_max_age_hours: float = 6.0

    # Portfolio settings
    tier_bands: Dict[Tier, Tuple[float, float]] = field(default_factory=lambda: dict(DEFAULT_TIER_BANDS))
    min_picks_per_tier: int = 2
    max_picks_per_tier: int = 8
    max_picks_per_player: int = 2
    max_picks_per_market: int = 6
    allow_fallback: bool = True
    min_ev_threshold: float = 0.0

    # Artifacts above this many bytes are stored gzip-compressed
    artifact_compress_bytes: int = 64 * 1024

    def __post_init__(self):
        """Load settings from environment."""
        self.datagolf_api_key = os.getenv("DATAGOLF_API_KEY", self.datagolf_api_key)
        self.datagolf_base_url = os.getenv("DATAGOLF_BASE_URL", self.datagolf_base_url).rstrip("/")
        data_dir = os.getenv("GOLF_EDGE_DATA_DIR")
        if data_dir:
            self.data_dir = Path(data_dir)
            self.db_path = self.data_dir / "data.db"
        db_path = os.getenv("GOLF_EDGE_DB_PATH")
        if db_path:
            self.db_path = Path(db_path)

        self.tours = [t.upper() for t in _env_list("GOLF_EDGE_TOURS", self.tours)]
        self.lookahead_days = _env_int("TOUR_LOOKAHEAD_DAYS", self.lookahead_days)

        self.sim_count = _env_int("SIM_COUNT", self.sim_count)
        seed = os.getenv("SIM_SEED")
        if seed:
            self.sim_seed = int(seed)
        self.momentum_factor = _env_float("SIM_MOMENTUM_FACTOR", self.momentum_factor)
        self.tail_floor = _env_float("SIM_TAIL_FLOOR", self.tail_floor)
        self.max_workers = _env_int("GOLF_EDGE_MAX_WORKERS", self.max_workers)

        self.weight_sim = _env_float("BLEND_WEIGHT_SIM", self.weight_sim)
        self.weight_external = _env_float("BLEND_WEIGHT_EXTERNAL", self.weight_external)
        self.weight_market = _env_float("BLEND_WEIGHT_MARKET", self.weight_market)
        self.power_k = _env_float("VIG_POWER_K", self.power_k)
        self.allowed_books = _env_list("ALLOWED_BOOKS", self.allowed_books)
        self.odds_max_age_hours = _env_float("ODDS_FRESHNESS_HOURS", self.odds_max_age_hours)

        self.min_picks_per_tier = _env_int("MIN_PICKS_PER_TIER", self.min_picks_per_tier)
        self.max_picks_per_tier = _env_int("MAX_PICKS_PER_TIER", self.max_picks_per_tier)
        self.max_picks_per_player = _env_int("MAX_PICKS_PER_PLAYER", self.max_picks_per_player)
        self.max_picks_per_market = _env_int("MAX_PICKS_PER_MARKET", self.max_picks_per_market)
        self.allow_fallback = _env_bool("ALLOW_FALLBACK", self.allow_fallback)
        self.min_ev_threshold = _env_float("MIN_EV_THRESHOLD", self.min_ev_threshold)

        # Ensure directories exist
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def blend_weights(self) -> Tuple[float, float, float]:
        return (self.weight_sim, self.weight_external, self.weight_market)

    def cut_rule_for(self, tour: str) -> CutRule:
        return DEFAULT_CUT_RULES.get(str(tour).upper(), DEFAULT_CUT_RULES["PGA"])

    def save_to_env(self, env_path: Optional[Path] = None):
        """Save the user-tunable settings to a .env file."""
        env_path = env_path or (self.data_dir / ".env")
        with open(env_path, "w") as f:
            f.write(f"DATAGOLF_API_KEY={self.datagolf_api_key}\n")
            f.write(f"GOLF_EDGE_TOURS={','.join(self.tours)}\n")
            f.write(f"SIM_COUNT={self.sim_count}\n")
            f.write(f"MIN_PICKS_PER_TIER={self.min_picks_per_tier}\n")
            f.write(f"MAX_PICKS_PER_TIER={self.max_picks_per_tier}\n")
            f.write(f"ALLOW_FALLBACK={'true' if self.allow_fallback else 'false'}\n")


def get_config() -> Config:
    """Get application configuration."""
    return Config()
