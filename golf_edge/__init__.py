"""
golf-edge
Monte Carlo golf tournament simulation and tiered value-bet recommendations.
"""

__version__ = "0.1.0"

from .models import (
    Candidate, ConsensusSource, CutRule, Market, OddsOffer, PlayerParameters,
    Portfolio, RunStatus, RunSummary, SimulationResult, Tier, TourEvent,
)
from .config import Config, get_config
from .database import Database
from .api import DataGolfAPI, get_api
from .identity import PlayerIdentityResolver, normalize
from .simulator import TournamentSimulator, get_simulator
from .consensus import OddsConsensusEngine
from .blend import ProbabilityBlender
from .calibration import CalibrationSet, IsotonicCalibrator
from .selector import CandidateSelector
from .ingestion import DataGolfProvider, DataProvider
from .pipeline import RunOptions, RunOrchestrator, run_weekly

__all__ = [
    # Models
    "Candidate", "ConsensusSource", "CutRule", "Market", "OddsOffer", "PlayerParameters",
    "Portfolio", "RunStatus", "RunSummary", "SimulationResult", "Tier", "TourEvent",
    # Config
    "Config", "get_config",
    # Core classes
    "Database", "DataGolfAPI", "PlayerIdentityResolver", "TournamentSimulator",
    "OddsConsensusEngine", "ProbabilityBlender", "CalibrationSet", "IsotonicCalibrator",
    "CandidateSelector", "DataGolfProvider", "DataProvider", "RunOptions", "RunOrchestrator",
    # Functions
    "normalize", "get_api", "get_simulator", "run_weekly",
]
