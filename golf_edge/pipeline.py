"""
Weekly run orchestrator.

Drives a run from event discovery through simulation and selection to
persistence:

    schedule -> field -> predictions -> odds -> simulate/select -> persist

Fetch failures scoped to one tour or market are recorded as issues and the
run carries on. Having no odds at all aborts the run. Every fetch completes
before any compute starts, so all events are priced from one odds snapshot.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from .calibration import CalibrationSet
from .config import Config, get_config
from .consensus import OddsConsensusEngine
from .database import Database
from .errors import HardDependencyMissing, SoftFetchFailure
from .form import compute_form_snapshots
from .golden_run import build_input_summary, enforce_golden_run, input_fingerprint
from .identity import PlayerIdentityResolver, normalize
from .ingestion import DataGolfProvider, DataProvider
from .issues import DataIssueTracker
from .models import (
    Candidate, FieldEntry, Market, OddsSnapshot, OUTRIGHT_MARKETS, PlayerPrediction,
    Portfolio, RunStatus, RunSummary, SimulationResult, SkillRating, TourEvent,
)
from .params import build_player_parameters
from .selector import CandidateSelector, SelectionDiagnostics
from .simulator import TournamentSimulator, event_seed

logger = logging.getLogger(__name__)

GROUPED_MARKETS = [Market.MATCHUP, Market.THREE_BALL]
DEFAULT_MARKETS = OUTRIGHT_MARKETS + GROUPED_MARKETS


def week_window(today: date, lookahead_days: int = 7) -> Tuple[date, date]:
    """Monday of the week containing `today`, and that Sunday plus the lookahead."""
    week_start = today - timedelta(days=today.weekday())
    week_end = week_start + timedelta(days=6 + max(0, lookahead_days))
    return week_start, week_end


def generate_run_key(week_start: date) -> str:
    return f"weekly_{week_start.isoformat()}"


@dataclass
class RunOptions:
    """Per-invocation overrides; anything unset comes from config."""
    tours: Optional[List[str]] = None
    markets: Optional[List[Market]] = None
    sim_count: Optional[int] = None
    seed: Optional[int] = None
    today: Optional[date] = None
    dry_run: bool = False


@dataclass
class EventInputs:
    """Everything fetched for one event before compute starts."""
    event: TourEvent
    players: List[Tuple[str, str]] = field(default_factory=list)
    field_keys: Optional[set] = None
    ratings: Dict[str, SkillRating] = field(default_factory=dict)
    predictions: Dict[str, PlayerPrediction] = field(default_factory=dict)
    form_rounds: Dict[str, List[dict]] = field(default_factory=dict)


@dataclass
class EventResult:
    event: TourEvent
    simulation: SimulationResult
    candidates: List[Candidate]
    diagnostics: SelectionDiagnostics


class RunOrchestrator:
    """Runs the weekly recommendation pipeline."""

    def __init__(
        self,
        provider: Optional[DataProvider] = None,
        db: Optional[Database] = None,
        config: Optional[Config] = None,
        simulator: Optional[TournamentSimulator] = None,
    ):
        self.config = config or get_config()
        self.db = db if db is not None else Database(self.config.db_path, self.config.artifact_compress_bytes)
        self.provider = provider or DataGolfProvider()
        self.simulator = simulator or TournamentSimulator(
            rounds=self.config.rounds,
            momentum_factor=self.config.momentum_factor,
            tail_floor=self.config.tail_floor,
            cut_penalty=self.config.cut_penalty,
            round_shock=self.config.round_shock,
            chunk_size=self.config.sim_chunk_size,
        )
        self.consensus = OddsConsensusEngine(
            power_k=self.config.power_k,
            book_weights=self.config.book_weights,
            allowed_books=self.config.allowed_books,
            max_age_hours=self.config.odds_max_age_hours,
        )

    # =========================================================================
    # Entry point
    # =========================================================================

    def run(self, run_key: Optional[str] = None, options: Optional[RunOptions] = None) -> RunSummary:
        """
        Execute one run.

        Re-running with an existing key replaces that run's output. On a
        failure the run is marked failed with the step that broke and the
        exception is re-raised.
        """
        options = options or RunOptions()
        week_start, week_end = week_window(options.today or date.today(), self.config.lookahead_days)
        run_key = run_key or generate_run_key(week_start)
        tours = [t.upper() for t in (options.tours or self.config.tours)]
        markets = list(options.markets or DEFAULT_MARKETS)

        tracker = DataIssueTracker(run_key)
        # Dry runs leave the player table untouched too
        resolver = PlayerIdentityResolver(None if options.dry_run else self.db)
        stages = {"schedule": False, "field": False, "predictions": False, "odds": False,
                  "simulate": False, "select": False, "persist": False}
        summary = RunSummary(run_key=run_key, status=RunStatus.RUNNING)

        logger.info(f"[pipeline] Starting run {run_key} ({week_start} to {week_end}) for {', '.join(tours)}")
        self.provider.begin_run(tracker)
        run_id = None
        if not options.dry_run:
            self.db.clear_expired_cache()
            run_id = self.db.start_run(run_key, week_start, week_end)

        step = "schedule"
        try:
            events = self._discover_events(tours, week_start, week_end, tracker)
            summary.events_discovered = len(events)
            stages["schedule"] = True

            step = "field"
            inputs = self._collect_fields(events, resolver, tracker)
            summary.players_ingested = len({key for i in inputs for key, _ in i.players})
            stages["field"] = True

            step = "predictions"
            self._collect_predictions(inputs, resolver, tracker)
            stages["predictions"] = True

            step = "odds"
            snapshot = self._collect_odds(events, markets, resolver, tracker)
            summary.odds_markets_ingested = snapshot.market_count
            stages["odds"] = True

            step = "simulate"
            results = self._evaluate_events(inputs, snapshot, options)
            stages["simulate"] = True

            step = "select"
            portfolio = self._select(results, tracker)
            summary.recommendations_created = len(portfolio)
            stages["select"] = True

            step = "persist"
            input_summary = build_input_summary(events, snapshot)
            input_hash = input_fingerprint(input_summary)
            enforce_golden_run(run_key, input_summary, input_hash, snapshot)
            summary.input_hash = input_hash
            if options.dry_run:
                logger.info(f"[persist] Dry run, {len(portfolio)} recommendations not saved")
            else:
                # Persist is flagged inside the same transaction as the write
                self.db.complete_run(
                    run_id,
                    input_hash=input_hash,
                    input_summary=input_summary,
                    stages=dict(stages, persist=True),
                    recommendations=portfolio.tiers,
                    artifacts=dict(self.provider.artifacts),
                    issues=tracker.issues,
                )
                stages["persist"] = True
        except Exception as e:
            failed_step = getattr(e, "step", step)
            summary.status = RunStatus.FAILED
            summary.failure_step = failed_step
            summary.failure_reason = str(e)
            tracker.error(failed_step, str(e))
            logger.error(f"[pipeline] Run {run_key} failed at {failed_step}: {e}")
            if run_id is not None:
                try:
                    self.db.fail_run(run_id, failed_step, str(e), stages, tracker.issues)
                except Exception as record_error:
                    logger.error(f"[pipeline] Could not mark run {run_key} failed: {record_error}")
            raise

        summary.status = RunStatus.COMPLETED
        summary.issues = tracker.top_issues()
        logger.info(
            f"[pipeline] Run {run_key} completed: {summary.events_discovered} events, "
            f"{summary.players_ingested} players, {summary.odds_markets_ingested} odds markets, "
            f"{summary.recommendations_created} recommendations"
        )
        return summary

    # =========================================================================
    # Fetch stages
    # =========================================================================

    def _discover_events(self, tours: Sequence[str], week_start: date, week_end: date,
                         tracker: DataIssueTracker) -> List[TourEvent]:
        """The first scheduled event per tour starting inside the window."""
        events = []
        for tour in tours:
            try:
                schedule = self.provider.schedule(tour)
            except SoftFetchFailure as e:
                tracker.warning("schedule", f"Failed to fetch schedule: {e}", tour)
                continue
            upcoming = sorted(
                (e for e in schedule if week_start <= e.start_date <= week_end),
                key=lambda e: (e.start_date, e.event_id),
            )
            if not upcoming:
                tracker.warning("schedule", "No event found in the run window", tour)
                continue
            events.append(upcoming[0])
            logger.info(f"[schedule] {tour}: {upcoming[0].event_name} ({upcoming[0].start_date})")
        return events

    def _field_from_odds(self, event: TourEvent, resolver: PlayerIdentityResolver) -> List[FieldEntry]:
        try:
            offers = self.provider.outright_odds(event.tour, Market.WIN, resolver)
        except SoftFetchFailure:
            return []
        seen = {}
        for offer in offers:
            seen.setdefault(offer.selection_key, FieldEntry(offer.selection_name, offer.external_id))
        return list(seen.values())

    def _collect_fields(self, events: Sequence[TourEvent], resolver: PlayerIdentityResolver,
                        tracker: DataIssueTracker) -> List[EventInputs]:
        inputs = []
        for event in events:
            try:
                entries = self.provider.field(event.tour)
            except SoftFetchFailure as e:
                tracker.warning("field", f"Failed to fetch field: {e}", event.tour, event=event.event_name)
                entries = []

            restricted = bool(entries)
            if not entries:
                # Without a field, price whoever the win market lists
                entries = self._field_from_odds(event, resolver)
                if entries:
                    tracker.info("field", f"Field taken from win odds ({len(entries)} players)", event.tour)

            players = []
            for entry in entries:
                if entry.status != "active":
                    continue
                identity = resolver.resolve_by_external_id(entry.name, entry.external_id)
                if identity is not None:
                    players.append((identity.canonical_name, entry.name))
            players = list(dict.fromkeys(players))
            if not players:
                tracker.warning("field", "Empty field", event.tour, event=event.event_name)

            inputs.append(EventInputs(
                event=event,
                players=players,
                field_keys={key for key, _ in players} if restricted else None,
            ))
            logger.info(f"[field] {event.tour}: {len(players)} players")
        return inputs

    @staticmethod
    def _match_players(items, players: Sequence[Tuple[str, str]], resolver: PlayerIdentityResolver) -> Dict:
        """Key records (ratings, predictions) to the field without creating identities."""
        by_external = {}
        by_name = {}
        for item in items:
            if item.external_id:
                by_external[str(item.external_id)] = item
            by_name.setdefault(normalize(item.name), item)

        matched = {}
        for key, _ in players:
            identity = resolver.lookup(key)
            item = None
            if identity is not None and identity.external_id:
                item = by_external.get(identity.external_id)
            if item is None:
                item = by_name.get(key)
            if item is not None:
                matched[key] = item
        return matched

    def _collect_predictions(self, inputs: Sequence[EventInputs], resolver: PlayerIdentityResolver,
                             tracker: DataIssueTracker):
        """Skill ratings, third-party priors and recent rounds per event (all optional)."""
        total_predictions = 0
        for item in inputs:
            tour = item.event.tour
            try:
                predictions = self.provider.predictions(tour)
            except SoftFetchFailure as e:
                tracker.warning("predictions", f"Failed to fetch predictions: {e}", tour)
                predictions = []
            item.predictions = self._match_players(predictions, item.players, resolver)
            total_predictions += len(item.predictions)

            try:
                ratings = self.provider.skill_ratings(tour)
            except SoftFetchFailure as e:
                tracker.warning("predictions", f"Failed to fetch skill ratings: {e}", tour)
                ratings = []
            item.ratings = self._match_players(ratings, item.players, resolver)
            unrated = len(item.players) - len(item.ratings)
            if unrated:
                tracker.info("predictions", f"{unrated} players without a skill rating", tour)

            recent_rounds = getattr(self.provider, "recent_rounds", None)
            if recent_rounds is not None:
                try:
                    rounds = recent_rounds(tour) or {}
                except SoftFetchFailure as e:
                    tracker.warning("predictions", f"Failed to fetch recent rounds: {e}", tour)
                    rounds = {}
                for name, player_rounds in rounds.items():
                    identity = resolver.lookup(name)
                    if identity is not None:
                        item.form_rounds[identity.canonical_name] = player_rounds

        if inputs and total_predictions == 0:
            tracker.warning("predictions", "No model predictions available for any event")

    def _collect_odds(self, events: Sequence[TourEvent], markets: Sequence[Market],
                      resolver: PlayerIdentityResolver, tracker: DataIssueTracker) -> OddsSnapshot:
        snapshot = OddsSnapshot(fetched_at=datetime.now(timezone.utc))
        for event in events:
            for market in markets:
                fetch = self.provider.grouped_odds if market.is_grouped else self.provider.outright_odds
                try:
                    offers = fetch(event.tour, market, resolver)
                except SoftFetchFailure as e:
                    tracker.warning("odds", f"Failed to fetch {market.value} odds: {e}", event.tour)
                    continue
                if not offers:
                    tracker.info("odds", f"No {market.value} odds", event.tour)
                    continue
                snapshot.add(event.key, market, offers)
                logger.info(f"[odds] {event.tour} {market.value}: {len(offers)} offers")

        if snapshot.is_empty:
            raise HardDependencyMissing("odds", "No odds available for any tour")
        return snapshot

    # =========================================================================
    # Compute stages
    # =========================================================================

    def _evaluate_event(self, item: EventInputs, snapshot: OddsSnapshot, options: RunOptions,
                        calibration: CalibrationSet) -> EventResult:
        event = item.event
        offers = snapshot.for_event(event.key)

        form = compute_form_snapshots(item.form_rounds) if item.form_rounds else None
        params = build_player_parameters(item.players, item.ratings, event.tour, form=form)
        run_seed = options.seed if options.seed is not None else self.config.sim_seed

        simulation = self.simulator.simulate(
            params,
            cut_rule=self.config.cut_rule_for(event.tour),
            sim_count=options.sim_count or self.config.sim_count,
            seed=event_seed(run_seed, event.key),
            rounds=event.rounds,
            export_scores=any(market.is_grouped for market in offers),
        )

        consensus = {
            market: self.consensus.build(market, market_offers, item.field_keys, as_of=snapshot.fetched_at)
            for market, market_offers in offers.items()
        }
        selector = CandidateSelector(self.config, calibration)
        diagnostics = SelectionDiagnostics()
        candidates = selector.score_event(event, simulation, consensus, offers, item.predictions, diagnostics)
        logger.info(
            f"[simulate] {event.event_name}: {len(params)} players, {len(candidates)} candidates "
            f"({diagnostics.no_simulation} unsimulated, {diagnostics.no_market} unpriced, "
            f"{len(diagnostics.invalid)} invalid)"
        )
        return EventResult(event, simulation, candidates, diagnostics)

    def _evaluate_events(self, inputs: Sequence[EventInputs], snapshot: OddsSnapshot,
                         options: RunOptions) -> List[EventResult]:
        """Simulate and score every event with odds, one worker per event."""
        calibration = CalibrationSet.from_database(self.db)
        priced = [item for item in inputs if snapshot.for_event(item.event.key)]
        if not priced:
            return []
        workers = max(1, min(self.config.max_workers, len(priced)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(self._evaluate_event, item, snapshot, options, calibration)
                for item in priced
            ]
            # Results in submission order regardless of completion order
            return [future.result() for future in futures]

    def _select(self, results: Sequence[EventResult], tracker: DataIssueTracker) -> Portfolio:
        selector = CandidateSelector(self.config)
        candidates = []
        for result in results:
            candidates.extend(result.candidates)
            for message in result.diagnostics.invalid:
                tracker.warning("select", message, result.event.tour)

        portfolio = selector.select(candidates)
        for shortfall in selector.shortfall_errors(portfolio):
            tracker.warning("select", str(shortfall), tier=shortfall.tier)
        return portfolio


def run_weekly(run_key: Optional[str] = None, **options) -> RunSummary:
    """Run the pipeline with the default provider and database."""
    return RunOrchestrator().run(run_key, RunOptions(**options))
