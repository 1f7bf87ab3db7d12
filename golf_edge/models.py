"""
Data models for the golf-edge recommendation engine.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List, Dict, Set, Any
from enum import Enum


class Tier(Enum):
    """Odds-band tier used to diversify the recommendation portfolio."""
    PAR = "PAR"                # short prices
    BIRDIE = "BIRDIE"
    EAGLE = "EAGLE"
    LONG_SHOTS = "LONG_SHOTS"  # 60/1 and beyond


class Market(Enum):
    """Bettable markets."""
    WIN = "win"
    TOP_5 = "top_5"
    TOP_10 = "top_10"
    TOP_20 = "top_20"
    MAKE_CUT = "make_cut"
    FRL = "frl"
    MATCHUP = "tournament_matchups"
    THREE_BALL = "3_balls"

    @property
    def is_grouped(self) -> bool:
        """Head-to-head style markets settle within a small group of players."""
        return self in (Market.MATCHUP, Market.THREE_BALL)

    @property
    def places(self) -> Optional[int]:
        """Number of paying places across the field (None = per-player yes/no)."""
        return {
            Market.WIN: 1,
            Market.FRL: 1,
            Market.TOP_5: 5,
            Market.TOP_10: 10,
            Market.TOP_20: 20,
        }.get(self)


OUTRIGHT_MARKETS = [Market.WIN, Market.TOP_5, Market.TOP_10, Market.TOP_20, Market.MAKE_CUT, Market.FRL]


class RunStatus(Enum):
    """Lifecycle of a pipeline run."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ConsensusSource(Enum):
    """Provenance of a market probability."""
    CONSENSUS = "consensus"                  # weighted median across 2+ books
    NORMALIZED_IMPLIED = "normalized_implied"  # best-odds fallback


class Severity(Enum):
    """Data issue severity, ordered by rank."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        return {"error": 0, "warning": 1, "info": 2}[self.value]


@dataclass(frozen=True)
class CutRule:
    """Cut after a round, keeping the best `cut_size` scores (and ties)."""
    cut_after: int = 2
    cut_size: int = 65

    @property
    def has_cut(self) -> bool:
        return self.cut_after > 0 and self.cut_size > 0

    @classmethod
    def no_cut(cls) -> "CutRule":
        return cls(cut_after=0, cut_size=0)


@dataclass
class PlayerIdentity:
    """A canonical player with every name variant seen for them."""
    id: str
    canonical_name: str
    aliases: Set[str] = field(default_factory=set)
    external_id: Optional[str] = None


@dataclass
class TourEvent:
    """A tournament discovered from a tour schedule."""
    tour: str
    event_id: str
    event_name: str
    start_date: date
    end_date: Optional[date] = None
    course: str = ""
    location: str = ""
    rounds: int = 4

    @property
    def key(self) -> str:
        return f"{self.tour}:{self.event_id}"


@dataclass(frozen=True)
class FieldEntry:
    """A player entered in an event's field."""
    name: str
    external_id: Optional[str] = None
    status: str = "active"


@dataclass(frozen=True)
class PlayerPrediction:
    """Third-party model priors for one player (non-authoritative)."""
    name: str
    external_id: Optional[str] = None
    win: Optional[float] = None
    top_5: Optional[float] = None
    top_10: Optional[float] = None
    top_20: Optional[float] = None
    make_cut: Optional[float] = None

    def for_market(self, market: "Market") -> Optional[float]:
        return {
            Market.WIN: self.win,
            Market.TOP_5: self.top_5,
            Market.TOP_10: self.top_10,
            Market.TOP_20: self.top_20,
            Market.MAKE_CUT: self.make_cut,
        }.get(market)


@dataclass(frozen=True)
class SkillRating:
    """Strokes-gained skill estimate plus course-fit decomposition."""
    name: str
    sg_total: float
    external_id: Optional[str] = None
    # Course fit decomposition (SG/round adjustments)
    driving: float = 0.0
    approach: float = 0.0
    around_green: float = 0.0
    putting: float = 0.0
    total_fit: float = 0.0
    course_history: float = 0.0
    course_experience: float = 0.0
    approach_skill: Optional[float] = None


@dataclass(frozen=True)
class FormSnapshot:
    """Recent form signals computed from historical rounds."""
    short_term_sg: Optional[float] = None
    medium_term_sg: Optional[float] = None
    trajectory_slope: Optional[float] = None
    weeks_since_last_event: Optional[float] = None


@dataclass(frozen=True)
class CourseProfile:
    """Scoring profile of a course from historical rounds."""
    mean: float = 0.0
    variance: float = 4.0


@dataclass(frozen=True)
class WeatherRound:
    """Forecast conditions for one round."""
    avg_wind_speed: Optional[float] = None   # km/h
    rain_probability: Optional[float] = None  # percent
    avg_temp: Optional[float] = None          # celsius


@dataclass(frozen=True)
class PlayerParameters:
    """Per-player scoring distribution (strokes relative to field, lower is better)."""
    key: str
    name: str
    mean: float = 0.0
    volatility: float = 2.5
    uncertainty: float = 0.35
    tail: float = 6.5
    make_cut: float = 0.5


@dataclass(frozen=True)
class OutcomeProbabilities:
    """Simulated outcome probabilities for one player."""
    win: float
    top_5: float
    top_10: float
    top_20: float
    make_cut: float
    frl: float

    def for_market(self, market: Market) -> Optional[float]:
        return {
            Market.WIN: self.win,
            Market.TOP_5: self.top_5,
            Market.TOP_10: self.top_10,
            Market.TOP_20: self.top_20,
            Market.MAKE_CUT: self.make_cut,
            Market.FRL: self.frl,
        }.get(market)


@dataclass(frozen=True)
class SimulationResult:
    """Results from one Monte Carlo tournament simulation."""
    probabilities: Dict[str, OutcomeProbabilities]
    sim_count: int
    # Per-trial final totals, shape (sim_count, n_players); only kept on request
    scores: Optional[Any] = None
    player_keys: tuple = ()

    def get(self, key: str) -> Optional[OutcomeProbabilities]:
        return self.probabilities.get(key)

    @property
    def has_scores(self) -> bool:
        return self.scores is not None


@dataclass(frozen=True)
class OddsOffer:
    """A single bookmaker price for a selection."""
    selection_key: str
    selection_name: str
    bookmaker: str
    odds_decimal: float
    captured_at: Optional[datetime] = None
    external_id: Optional[str] = None
    group_id: Optional[str] = None  # matchup / 3-ball grouping


@dataclass(frozen=True)
class ConsensusEntry:
    """Fair market probability for one selection."""
    probability: float
    source: ConsensusSource
    books: int = 0


@dataclass(frozen=True)
class MarketConsensus:
    """Vig-removed consensus for every selection in a market."""
    market: Market
    entries: Dict[str, ConsensusEntry]
    excluded: int = 0  # offers dropped as unresolvable

    def get(self, key: str) -> Optional[ConsensusEntry]:
        return self.entries.get(key)


@dataclass(frozen=True)
class Candidate:
    """A scored bet candidate."""
    event_key: str
    event_name: str
    tour: str
    market: Market
    selection_key: str
    selection: str
    fair_prob: float
    market_prob: float
    edge: float
    ev: float
    best_odds: float
    best_book: str
    market_source: ConsensusSource = ConsensusSource.CONSENSUS
    external_prob: Optional[float] = None
    group_id: Optional[str] = None
    alt_offers: tuple = ()
    tier: Optional[Tier] = None
    confidence: int = 1
    is_fallback: bool = False
    fallback_reason: str = ""
    analysis: str = ""
    bullets: tuple = ()

    @property
    def has_value(self) -> bool:
        """Genuine value pick: positive edge and positive expected value."""
        return self.edge > 0 and self.ev > 0


@dataclass
class Portfolio:
    """Tiered, exposure-capped recommendation set."""
    tiers: Dict[Tier, List[Candidate]] = field(default_factory=dict)
    shortfalls: Dict[Tier, int] = field(default_factory=dict)

    @property
    def candidates(self) -> List[Candidate]:
        return [c for tier in Tier for c in self.tiers.get(tier, [])]

    def __len__(self) -> int:
        return len(self.candidates)


@dataclass
class OddsSnapshot:
    """All odds fetched for a run, keyed by event key then market."""
    fetched_at: datetime
    offers: Dict[str, Dict[Market, List[OddsOffer]]] = field(default_factory=dict)

    def add(self, event_key: str, market: Market, offers: List[OddsOffer]):
        if offers:
            self.offers.setdefault(event_key, {}).setdefault(market, []).extend(offers)

    def for_event(self, event_key: str) -> Dict[Market, List[OddsOffer]]:
        return self.offers.get(event_key, {})

    @property
    def tours(self) -> List[str]:
        return sorted({key.split(":", 1)[0] for key in self.offers})

    @property
    def markets(self) -> List[str]:
        return sorted({m.value for markets in self.offers.values() for m in markets})

    @property
    def market_count(self) -> int:
        return sum(len(markets) for markets in self.offers.values())

    @property
    def is_empty(self) -> bool:
        return self.market_count == 0


@dataclass(frozen=True)
class CalibrationBin:
    """One isotonic calibration bin."""
    lower: float
    upper: float
    midpoint: float
    frequency: float
    count: int


@dataclass
class DataIssue:
    """A data quality problem recorded during a run."""
    severity: Severity
    step: str
    message: str
    tour: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class Run:
    """A pipeline run record."""
    run_key: str
    week_start: date
    week_end: date
    status: RunStatus = RunStatus.RUNNING
    id: Optional[int] = None
    input_hash: Optional[str] = None
    stages: Dict[str, bool] = field(default_factory=dict)
    failure_reason: Optional[str] = None
    failure_step: Optional[str] = None
    recommendations: List[Candidate] = field(default_factory=list)
    completed_at: Optional[datetime] = None


@dataclass
class RunSummary:
    """Returned by the orchestrator's run entry point."""
    run_key: str
    status: RunStatus
    events_discovered: int = 0
    players_ingested: int = 0
    odds_markets_ingested: int = 0
    recommendations_created: int = 0
    issues: List[DataIssue] = field(default_factory=list)
    input_hash: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_step: Optional[str] = None
