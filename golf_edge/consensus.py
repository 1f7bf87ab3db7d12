"""
Odds consensus: turns raw bookmaker offers into vig-free market probabilities.

Each book's prices are de-vigged across the selections it quotes, then the
books are combined per selection with a weighted median. Selections priced by
fewer than two books fall back to best-price implied probabilities normalised
across the market.
"""

import logging
import math
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from .models import ConsensusEntry, ConsensusSource, Market, MarketConsensus, OddsOffer
from .odds import (
    allowed_book_set, clamp_probability, implied_probability, is_finite,
    normalize_book_key, remove_vig_normalize, remove_vig_power, weighted_median,
)

logger = logging.getLogger(__name__)

MIN_BOOKS_FOR_CONSENSUS = 2


def offer_key(offer: OddsOffer) -> str:
    """Selection key, qualified by group for head-to-head markets."""
    if offer.group_id:
        return f"{offer.group_id}::{offer.selection_key}"
    return offer.selection_key


def group_offers(offers: Iterable[OddsOffer]) -> Dict[str, List[OddsOffer]]:
    """Offers per selection, best price first."""
    grouped: Dict[str, List[OddsOffer]] = defaultdict(list)
    for offer in offers:
        grouped[offer_key(offer)].append(offer)
    return {
        key: sorted(items, key=lambda o: (-o.odds_decimal, o.bookmaker))
        for key, items in grouped.items()
    }


def _devig(market: Market, odds: List[float], power_k: float) -> List[float]:
    if market == Market.MAKE_CUT:
        return [implied_probability(o) for o in odds]
    if market.is_grouped:
        return remove_vig_normalize(odds, places=1)
    if market in (Market.WIN, Market.FRL):
        return remove_vig_power(odds, k=power_k, places=1)
    return remove_vig_normalize(odds, places=market.places or 1)


class OddsConsensusEngine:
    """Builds per-market fair probabilities from a snapshot of offers."""

    def __init__(
        self,
        power_k: float = 1.25,
        book_weights: Optional[Dict[str, float]] = None,
        allowed_books: Optional[Iterable[str]] = None,
        max_age_hours: Optional[float] = None,
    ):
        self.power_k = power_k
        self.book_weights = {
            normalize_book_key(k): float(v) for k, v in (book_weights or {}).items()
        }
        self.allowed_books: Optional[Set[str]] = (
            allowed_book_set(allowed_books) if allowed_books is not None else None
        )
        self.max_age_hours = max_age_hours

    def weight_for(self, book: str) -> float:
        return self.book_weights.get(normalize_book_key(book), 1.0)

    def usable_offers(self, offers: Iterable[OddsOffer], as_of: Optional[datetime] = None) -> List[OddsOffer]:
        """Drop unusable prices, books outside the allowed list and stale quotes."""
        cutoff = None
        if as_of is not None and self.max_age_hours:
            cutoff = as_of - timedelta(hours=self.max_age_hours)

        usable = []
        for offer in offers:
            if not is_finite(offer.odds_decimal) or offer.odds_decimal <= 1:
                continue
            book = normalize_book_key(offer.bookmaker)
            if not book:
                continue
            if self.allowed_books is not None and book not in self.allowed_books:
                continue
            if cutoff is not None and offer.captured_at is not None and offer.captured_at < cutoff:
                continue
            usable.append(offer)
        return usable

    def build(
        self,
        market: Market,
        offers: Iterable[OddsOffer],
        field_keys: Optional[Set[str]] = None,
        as_of: Optional[datetime] = None,
    ) -> MarketConsensus:
        """
        Consensus for one market.

        Args:
            market: market being priced
            offers: raw offers for the market
            field_keys: selection keys of the event field; offers outside it are
                excluded unless the market is head-to-head
            as_of: reference time for the freshness filter
        """
        usable = self.usable_offers(offers, as_of=as_of)

        excluded = 0
        if field_keys is not None and not market.is_grouped:
            kept = [o for o in usable if o.selection_key in field_keys]
            excluded = len(usable) - len(kept)
            usable = kept
        if excluded:
            logger.debug(f"[{market.value}] excluded {excluded} offers not in the field")

        # Per book (and per group for head-to-head markets), de-vig across selections
        per_book: Dict[tuple, List[OddsOffer]] = defaultdict(list)
        for offer in usable:
            per_book[(normalize_book_key(offer.bookmaker), offer.group_id)].append(offer)

        fair_by_selection: Dict[str, List[tuple]] = defaultdict(list)
        for (book, _), book_offers in per_book.items():
            # One price per selection per book
            best: Dict[str, OddsOffer] = {}
            for offer in book_offers:
                key = offer_key(offer)
                if key not in best or offer.odds_decimal > best[key].odds_decimal:
                    best[key] = offer
            keys = list(best)
            fair = _devig(market, [best[k].odds_decimal for k in keys], self.power_k)
            for key, prob in zip(keys, fair):
                if is_finite(prob):
                    fair_by_selection[key].append((prob, self.weight_for(book)))

        fallback = self._normalized_implied(market, usable)

        entries: Dict[str, ConsensusEntry] = {}
        for key, quotes in fair_by_selection.items():
            if len(quotes) >= MIN_BOOKS_FOR_CONSENSUS:
                prob = weighted_median([q[0] for q in quotes], [q[1] for q in quotes])
                source = ConsensusSource.CONSENSUS
            else:
                prob = fallback.get(key, math.nan)
                source = ConsensusSource.NORMALIZED_IMPLIED
            prob = clamp_probability(prob)
            if is_finite(prob):
                entries[key] = ConsensusEntry(probability=prob, source=source, books=len(quotes))

        return MarketConsensus(market=market, entries=entries, excluded=excluded)

    def _normalized_implied(self, market: Market, offers: List[OddsOffer]) -> Dict[str, float]:
        """Best price per selection, de-vigged across the whole market (or group)."""
        best = {key: items[0] for key, items in group_offers(offers).items()}
        if not best:
            return {}

        if market.is_grouped:
            by_group: Dict[Optional[str], List[str]] = defaultdict(list)
            for key, offer in best.items():
                by_group[offer.group_id].append(key)
            result = {}
            for keys in by_group.values():
                probs = remove_vig_normalize([best[k].odds_decimal for k in keys], places=1)
                result.update(zip(keys, probs))
            return result

        keys = list(best)
        odds = [best[k].odds_decimal for k in keys]
        if market == Market.MAKE_CUT:
            return {k: implied_probability(o) for k, o in zip(keys, odds)}
        return dict(zip(keys, remove_vig_normalize(odds, places=market.places or 1)))
