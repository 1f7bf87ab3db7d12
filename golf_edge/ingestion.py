"""
Ingestion adapter: the one place that knows what raw Data Golf payloads look
like. Everything downstream works with typed records from `models`.
"""

import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol

from .api import DataGolfAPI
from .config import TOUR_CODES
from .errors import SoftFetchFailure
from .identity import PlayerIdentityResolver
from .issues import DataIssueTracker
from .models import (
    FieldEntry, Market, OddsOffer, PlayerPrediction, SkillRating, TourEvent,
)
from .odds import as_probability, normalize_book_key

logger = logging.getLogger(__name__)

NAME_FIELDS = ("player_name", "player", "name")
ID_FIELDS = ("dg_id", "player_id", "id")

# Row keys in outright payloads that are not sportsbooks
NON_BOOK_FIELDS = {
    "player_name", "player", "name", "dg_id", "player_id", "id", "datagolf", "dg",
    "event_name", "am", "country", "odds", "books", "last_updated",
}

ARRAY_FIELDS = ("data", "events", "schedule", "players", "field", "odds", "match_list", "matchups")


def pick(row: Dict[str, Any], *fields, default=None):
    """First present, non-empty value among field-name aliases."""
    for name in fields:
        value = row.get(name)
        if value not in (None, ""):
            return value
    return default


def rows_of(payload: Any, *preferred) -> List[Dict[str, Any]]:
    """The record list inside a payload, whichever key it lives under."""
    if payload is None:
        return []
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)]
    if not isinstance(payload, dict):
        return []
    for key in preferred + ARRAY_FIELDS:
        value = payload.get(key)
        if isinstance(value, list):
            return [r for r in value if isinstance(r, dict)]
    return []


def to_float(value) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def payload_error(payload: Any) -> Optional[str]:
    """Error message embedded in an otherwise successful response."""
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, str):
        return error
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if payload.get("status") not in (None, "ok", "success"):
        return str(payload["status"])
    return None


def parse_timestamp(value) -> Optional[datetime]:
    """Provider timestamps ('2025-04-07 15:01:00 UTC' or ISO) as aware UTC datetimes."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).strip().replace(" UTC", "").replace("Z", "+00:00")
    for parser in (datetime.fromisoformat, lambda s: datetime.strptime(s, "%Y-%m-%d %H:%M:%S")):
        try:
            parsed = parser(text)
        except ValueError:
            continue
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def parse_date(value) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


# =============================================================================
# Payload parsers
# =============================================================================

def parse_schedule(payload: Any, tour: str) -> List[TourEvent]:
    events = []
    for row in rows_of(payload, "schedule"):
        event_id = pick(row, "event_id", "eventId", "id")
        name = pick(row, "event_name", "eventName", "name")
        start = parse_date(pick(row, "start_date", "date", "startDate"))
        if event_id is None or not name or start is None:
            continue
        end = parse_date(pick(row, "end_date", "endDate")) or start + timedelta(days=3)
        events.append(TourEvent(
            tour=tour,
            event_id=str(event_id),
            event_name=str(name),
            start_date=start,
            end_date=end,
            course=str(pick(row, "course", "course_name", default="")),
            location=str(pick(row, "location", default="")),
        ))
    return events


def parse_field(payload: Any) -> List[FieldEntry]:
    entries = []
    for row in rows_of(payload, "field"):
        name = pick(row, *NAME_FIELDS)
        if not name:
            continue
        external_id = pick(row, *ID_FIELDS)
        entries.append(FieldEntry(
            name=str(name),
            external_id=str(external_id) if external_id is not None else None,
            status="withdrawn" if str(row.get("status", "")).lower() in ("wd", "withdrawn") else "active",
        ))
    return entries


def parse_predictions(payload: Any) -> List[PlayerPrediction]:
    """Model priors; values above 1 are decimal odds and are inverted."""
    rows = []
    if isinstance(payload, dict):
        rows = rows_of(payload, "baseline_history_fit", "baseline")
    else:
        rows = rows_of(payload)

    predictions = []
    for row in rows:
        name = pick(row, *NAME_FIELDS)
        if not name:
            continue
        external_id = pick(row, *ID_FIELDS)
        predictions.append(PlayerPrediction(
            name=str(name),
            external_id=str(external_id) if external_id is not None else None,
            win=as_probability(pick(row, "win", "win_prob", "p_win")),
            top_5=as_probability(pick(row, "top_5", "top5", "top_5_prob")),
            top_10=as_probability(pick(row, "top_10", "top10", "top_10_prob")),
            top_20=as_probability(pick(row, "top_20", "top20", "top_20_prob")),
            make_cut=as_probability(pick(row, "make_cut", "make_cut_prob", "p_make_cut")),
        ))
    return predictions


def _approach_skill(row: Dict[str, Any]) -> Optional[float]:
    direct = to_float(pick(row, "approach_skill", "sg_app", "value"))
    if direct is not None:
        return direct
    buckets = [to_float(v) for k, v in row.items() if k.endswith("_sg_per_shot")]
    buckets = [b for b in buckets if b is not None]
    return sum(buckets) / len(buckets) if buckets else None


def parse_skill_ratings(ratings_payload: Any, decompositions_payload: Any = None,
                        approach_payload: Any = None) -> List[SkillRating]:
    """Skill ratings merged with course-fit decompositions and approach skill by player id or name."""
    def index(payload):
        by_key = {}
        for row in rows_of(payload, "players", "data"):
            name = pick(row, *NAME_FIELDS)
            ext = pick(row, *ID_FIELDS)
            if ext is not None:
                by_key[("id", str(ext))] = row
            if name:
                by_key[("name", str(name))] = row
        return by_key

    decomps = index(decompositions_payload)
    approach = index(approach_payload)

    def lookup(table, ext, name):
        return table.get(("id", ext)) or table.get(("name", name)) or {}

    ratings = []
    for row in rows_of(ratings_payload, "players"):
        name = pick(row, *NAME_FIELDS)
        sg_total = to_float(pick(row, "sg_total", "rating", "value", "skill"))
        if not name or sg_total is None:
            continue
        ext = pick(row, *ID_FIELDS)
        ext = str(ext) if ext is not None else None
        decomp = lookup(decomps, ext, str(name))
        app = lookup(approach, ext, str(name))
        ratings.append(SkillRating(
            name=str(name),
            sg_total=sg_total,
            external_id=ext,
            driving=to_float(pick(decomp, "driving_sg", "sg_ott", "driving_adjustment")) or 0.0,
            approach=to_float(pick(decomp, "approach_sg", "sg_app", "approach_adjustment")) or 0.0,
            around_green=to_float(pick(decomp, "around_green_sg", "sg_arg", "around_green_adjustment")) or 0.0,
            putting=to_float(pick(decomp, "putting_sg", "sg_putt", "putting_adjustment")) or 0.0,
            total_fit=to_float(pick(decomp, "total_fit_adjustment", "total_fit")) or 0.0,
            course_history=to_float(pick(decomp, "course_history_adjustment", "course_history")) or 0.0,
            course_experience=to_float(pick(decomp, "course_experience_adjustment", "course_experience")) or 0.0,
            approach_skill=_approach_skill(app) if app else None,
        ))
    return ratings


def _book_prices(row: Dict[str, Any]) -> Dict[str, float]:
    """Sportsbook -> decimal odds, whichever of the three row layouts is used."""
    prices = {}
    if isinstance(row.get("books"), list):
        for entry in row["books"]:
            if isinstance(entry, dict):
                prices[entry.get("book") or entry.get("bookmaker")] = entry.get("odds")
    elif isinstance(row.get("odds"), dict):
        prices.update(row["odds"])
    else:
        prices.update({k: v for k, v in row.items() if k not in NON_BOOK_FIELDS})

    result = {}
    for book, raw in prices.items():
        key = normalize_book_key(book)
        odds = to_float(raw)
        if key and key not in NON_BOOK_FIELDS and odds is not None and odds > 1:
            result[key] = odds
    return result


def parse_outrights(payload: Any, resolver: PlayerIdentityResolver) -> List[OddsOffer]:
    captured = parse_timestamp(payload.get("last_updated")) if isinstance(payload, dict) else None
    offers = []
    for row in rows_of(payload, "odds"):
        name = pick(row, *NAME_FIELDS)
        ext = pick(row, *ID_FIELDS)
        identity = resolver.resolve_by_external_id(name, ext)
        if identity is None:
            continue
        for book, odds in _book_prices(row).items():
            offers.append(OddsOffer(
                selection_key=identity.canonical_name,
                selection_name=str(name) if name else identity.canonical_name,
                bookmaker=book,
                odds_decimal=odds,
                captured_at=captured,
                external_id=identity.external_id,
            ))
    return offers


def parse_matchups(payload: Any, market: Market, resolver: PlayerIdentityResolver,
                   tracker: Optional[DataIssueTracker] = None, tour: Optional[str] = None) -> List[OddsOffer]:
    """
    Head-to-head and 3-ball odds; each match is its own group.

    Rows whose odds are not a book -> prices mapping are skipped and reported
    to `tracker` when one is given.
    """
    captured = parse_timestamp(payload.get("last_updated")) if isinstance(payload, dict) else None
    offers = []
    for row in rows_of(payload, "match_list", "matchups"):
        players = []
        for slot in ("p1", "p2", "p3"):
            name = row.get(f"{slot}_player_name")
            if not name:
                continue
            identity = resolver.resolve_by_external_id(name, row.get(f"{slot}_dg_id"))
            if identity is not None:
                players.append((slot, str(name), identity))
        expected = 3 if market == Market.THREE_BALL else 2
        if len(players) != expected:
            continue

        group_id = f"{market.value}:" + "|".join(sorted(p[2].canonical_name for p in players))
        book_prices = row.get("odds") or {}
        if not isinstance(book_prices, dict):
            message = f"Skipped {market.value} row with malformed odds ({type(book_prices).__name__})"
            if tracker is not None:
                tracker.warning("odds", message, tour, group=group_id)
            else:
                logger.warning(f"[odds] {message}: {group_id}")
            continue
        for book, prices in book_prices.items():
            key = normalize_book_key(book)
            if not key or key in NON_BOOK_FIELDS or not isinstance(prices, dict):
                continue
            for slot, name, identity in players:
                odds = to_float(prices.get(slot))
                if odds is None or odds <= 1:
                    continue
                offers.append(OddsOffer(
                    selection_key=identity.canonical_name,
                    selection_name=name,
                    bookmaker=key,
                    odds_decimal=odds,
                    captured_at=captured,
                    external_id=identity.external_id,
                    group_id=group_id,
                ))
    return offers


# =============================================================================
# Providers
# =============================================================================

class DataProvider(Protocol):
    """Upstream data the run orchestrator consumes."""

    artifacts: Dict[str, Any]

    def begin_run(self, tracker: Optional[DataIssueTracker] = None) -> None: ...

    def schedule(self, tour: str) -> List[TourEvent]: ...

    def field(self, tour: str) -> List[FieldEntry]: ...

    def predictions(self, tour: str) -> List[PlayerPrediction]: ...

    def skill_ratings(self, tour: str) -> List[SkillRating]: ...

    def outright_odds(self, tour: str, market: Market, resolver: PlayerIdentityResolver) -> List[OddsOffer]: ...

    def grouped_odds(self, tour: str, market: Market, resolver: PlayerIdentityResolver) -> List[OddsOffer]: ...


class DataGolfProvider:
    """DataProvider backed by the Data Golf feeds."""

    def __init__(self, api: Optional[DataGolfAPI] = None):
        self.api = api or DataGolfAPI()
        self.artifacts: Dict[str, Any] = {}
        self._shared: Dict[str, Any] = {}
        self.tracker: Optional[DataIssueTracker] = None

    def begin_run(self, tracker: Optional[DataIssueTracker] = None):
        """Forget payloads and shared ratings from any earlier run."""
        self.artifacts = {}
        self._shared = {}
        self.tracker = tracker

    def _fetch(self, name: str, call, *args, tour: Optional[str] = None):
        try:
            payload = call(*args)
        except ValueError as e:
            raise SoftFetchFailure(name, str(e), tour) from e
        if payload is None:
            raise SoftFetchFailure(name, self.api.last_error or "no response", tour)
        error = payload_error(payload)
        if error:
            raise SoftFetchFailure(name, error, tour)
        self.artifacts[name] = payload
        return payload

    @staticmethod
    def tour_code(tour: str) -> str:
        code = TOUR_CODES.get(str(tour).upper())
        if code is None:
            raise SoftFetchFailure("tour", f"Unsupported tour {tour}", tour)
        return code

    def schedule(self, tour: str) -> List[TourEvent]:
        code = self.tour_code(tour)
        payload = self._fetch(f"schedule:{tour}", self.api.get_schedule, code, tour=tour)
        return parse_schedule(payload, tour)

    def field(self, tour: str) -> List[FieldEntry]:
        code = self.tour_code(tour)
        return parse_field(self._fetch(f"field:{tour}", self.api.get_field_updates, code, tour=tour))

    def predictions(self, tour: str) -> List[PlayerPrediction]:
        code = self.tour_code(tour)
        payload = self._fetch(f"predictions:{tour}", self.api.get_pre_tournament_predictions, code, tour=tour)
        return parse_predictions(payload)

    def skill_ratings(self, tour: str) -> List[SkillRating]:
        code = self.tour_code(tour)
        if "skill_ratings" not in self._shared:
            self._shared["skill_ratings"] = self._fetch("skill_ratings", self.api.get_skill_ratings)
        ratings = self._shared["skill_ratings"]
        try:
            decomps = self._fetch(f"decompositions:{tour}", self.api.get_player_decompositions, code, tour=tour)
        except SoftFetchFailure as e:
            logger.warning(f"[ratings] decompositions unavailable for {tour}: {e}")
            decomps = None
        if "approach_skill" not in self._shared:
            try:
                self._shared["approach_skill"] = self._fetch("approach_skill", self.api.get_approach_skill)
            except SoftFetchFailure as e:
                logger.warning(f"[ratings] approach skill unavailable: {e}")
                self._shared["approach_skill"] = None
        return parse_skill_ratings(ratings, decomps, self._shared["approach_skill"])

    def outright_odds(self, tour: str, market: Market, resolver: PlayerIdentityResolver) -> List[OddsOffer]:
        code = self.tour_code(tour)
        payload = self._fetch(f"odds:{tour}:{market.value}", self.api.get_outrights, code, market.value, tour=tour)
        return parse_outrights(payload, resolver)

    def grouped_odds(self, tour: str, market: Market, resolver: PlayerIdentityResolver) -> List[OddsOffer]:
        code = self.tour_code(tour)
        payload = self._fetch(f"odds:{tour}:{market.value}", self.api.get_matchups, code, market.value, tour=tour)
        return parse_matchups(payload, market, resolver, self.tracker, tour)
