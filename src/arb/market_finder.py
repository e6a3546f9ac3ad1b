"""
Market discovery and quote refresh for crypto up/down markets.

Discovery pages through the Gamma ``/markets`` catalog and keeps the
crypto direction markets for the tracked assets:

- ``{asset}-updown-15m-{end_ts}`` and ``{asset}-updown-4h-{end_ts}``
- ``{name}-up-or-down-...`` (hourly / daily series)
- price-target markets such as ``bitcoin-above-...``

Quotes are then refreshed from the CLOB order book: the best ask on the
"yes" token becomes ``yes_ask`` and the "no" ask is approximated as
``1 - yes_ask + 0.02`` (capped at 0.99). The top five levels on each side
give the depth used by the orderbook filter.

API notes:
- ``clobTokenIds`` and ``outcomePrices`` arrive either as arrays or as
  JSON-encoded strings.
- The CLOB answers 400 / "does not exist" for books that are not live yet.
"""

import json
import logging
import time
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

import requests

from ..config import CLOB_BASE_URL, GAMMA_API_URL
from .models import Asset, MarketQuote, OrderbookDepth

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
MAX_PAGES = 10
MAX_MARKETS = 20

# Only trade markets that are still undecided
MIN_TRADEABLE_YES = 0.20
MAX_TRADEABLE_YES = 0.80

NO_ASK_PREMIUM = 0.02
MAX_NO_ASK = 0.99
DEPTH_LEVELS = 5


def _json_list(value: Any) -> list:
    """Gamma encodes some arrays as JSON strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _parse_end_time(data: dict) -> Optional[int]:
    end_date = data.get("endDate") or data.get("endDateIso") or data.get("end_date_iso")
    if end_date:
        if isinstance(end_date, (int, float)):
            return int(end_date)
        try:
            parsed = datetime.fromisoformat(str(end_date).replace("Z", "+00:00"))
        except ValueError:
            return None
        return int(parsed.timestamp())

    # btc-updown-15m-1767729600 carries the end time in the slug
    tail = (data.get("slug") or "").rsplit("-", 1)[-1]
    return int(tail) if tail.isdigit() else None


def classify_slug(slug: str, assets: Optional[Iterable[Asset]] = None) -> Optional[Asset]:
    """
    Return the asset a crypto direction or price-target slug tracks.

    Example:
        >>> classify_slug("btc-updown-15m-1767729600")
        <Asset.BTC: 'btc'>
        >>> classify_slug("will-it-rain-tomorrow") is None
        True
    """
    slug = (slug or "").lower()
    for asset in assets or list(Asset):
        short, name = asset.value, asset.long_name
        updown = (
            slug.startswith(f"{short}-updown-15m-")
            or slug.startswith(f"{short}-updown-4h-")
            or f"{name}-up-or-down" in slug
        )
        price_target = (
            slug.startswith(f"{name}-above-")
            or slug.startswith(f"{name}-below-")
            or f"{name}-hit" in slug
            or f"{short}-hit" in slug
        )
        if updown or price_target:
            return asset
    return None


def window_from_slug(slug: str) -> int:
    """Resolution window in minutes: 15m and 4h series, otherwise hourly."""
    if "-15m-" in slug:
        return 15
    if "-4h-" in slug:
        return 240
    return 60


def parse_market(
    data: dict,
    assets: Optional[Iterable[Asset]] = None,
    now: Optional[float] = None,
) -> Optional[MarketQuote]:
    """
    Parse a Gamma market into a MarketQuote.

    Returns None for non-crypto, closed, expired or incomplete markets.
    """
    slug = data.get("slug") or ""
    asset = classify_slug(slug, assets)
    if asset is None:
        return None

    if data.get("closed", False) or not data.get("active", True):
        return None

    end_time = _parse_end_time(data)
    now = time.time() if now is None else now
    if end_time is not None and end_time < now:
        return None

    token_ids = _json_list(data.get("clobTokenIds"))
    if len(token_ids) < 2 or not token_ids[0] or not token_ids[1]:
        logger.debug(f"Market {slug} has no usable clobTokenIds")
        return None

    prices = _json_list(data.get("outcomePrices"))
    try:
        yes_price = float(prices[0]) if prices else 0.5
    except (TypeError, ValueError):
        yes_price = 0.5

    return MarketQuote(
        condition_id=data.get("conditionId") or data.get("condition_id") or "",
        yes_token_id=str(token_ids[0]),
        yes_ask=yes_price,
        no_token_id=str(token_ids[1]),
        no_ask=1.0 - yes_price,
        window_minutes=window_from_slug(slug),
        description=data.get("question") or f"{asset} Up or Down",
        asset=asset,
        slug=slug,
        end_time=end_time,
    )


def _levels(raw: Any, best_first_desc: bool) -> list[tuple[float, float]]:
    levels = []
    for level in raw or []:
        try:
            levels.append((float(level["price"]), float(level["size"])))
        except (KeyError, TypeError, ValueError):
            continue
    levels.sort(key=lambda lvl: lvl[0], reverse=best_first_desc)
    return levels


def depth_from_book(book: dict, levels: int = DEPTH_LEVELS) -> OrderbookDepth:
    """
    USD depth over the best ``levels`` on each side and the spread in percent.

    Spread is 100% when there are no bids.
    """
    bids = _levels(book.get("bids"), best_first_desc=True)
    asks = _levels(book.get("asks"), best_first_desc=False)

    bid_depth = sum(price * size for price, size in bids[:levels])
    ask_depth = sum(price * size for price, size in asks[:levels])

    best_bid = bids[0][0] if bids else 0.0
    best_ask = asks[0][0] if asks else 1.0
    spread_pct = (best_ask - best_bid) / best_bid * 100.0 if best_bid > 0 else 100.0

    return OrderbookDepth(bid_depth_usd=bid_depth, ask_depth_usd=ask_depth, spread_pct=spread_pct)


def best_ask(book: dict) -> Optional[float]:
    asks = _levels(book.get("asks"), best_first_desc=False)
    return asks[0][0] if asks else None


def is_tradeable(quote: MarketQuote) -> bool:
    return MIN_TRADEABLE_YES <= quote.yes_ask <= MAX_TRADEABLE_YES


class MarketFinder:
    """
    Finds crypto up/down markets and keeps their quotes fresh.

    All calls are blocking; the bot runs them off the event loop.

    Example:
        finder = MarketFinder(assets=[Asset.BTC, Asset.ETH])
        for quote in finder.find_best_quotes().values():
            print(quote.asset, quote.yes_ask, quote.window_minutes)
    """

    def __init__(
        self,
        assets: Optional[Iterable[Asset]] = None,
        gamma_url: str = GAMMA_API_URL,
        clob_url: str = CLOB_BASE_URL,
        session: Optional[requests.Session] = None,
        timeout: float = 5.0,
        max_pages: int = MAX_PAGES,
        max_markets: int = MAX_MARKETS,
    ):
        self.assets = list(assets or Asset)
        self.gamma_url = gamma_url.rstrip("/")
        self.clob_url = clob_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_pages = max_pages
        self.max_markets = max_markets

    def _fetch_page(self, offset: int) -> Optional[list]:
        params = {
            "active": "true",
            "closed": "false",
            "order": "id",
            "ascending": "false",
            "limit": PAGE_SIZE,
            "offset": offset,
        }
        try:
            response = self.session.get(
                f"{self.gamma_url}/markets", params=params, timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Gamma page at offset {offset} failed: {e}")
            return None
        if isinstance(data, dict):
            data = data.get("markets", [])
        return data if isinstance(data, list) else []

    def fetch_markets(self) -> list[MarketQuote]:
        """
        Page through the catalog and return crypto direction markets.

        Stops early on an empty page or once ``max_markets`` are found.
        Failed pages are skipped.
        """
        quotes: list[MarketQuote] = []
        seen: set[str] = set()
        now = time.time()

        for page in range(self.max_pages):
            raw = self._fetch_page(page * PAGE_SIZE)
            if raw is None:
                continue
            if not raw:
                logger.debug(f"No more markets at page {page}")
                break

            for data in raw:
                quote = parse_market(data, self.assets, now=now)
                if quote is None or quote.condition_id in seen:
                    continue
                seen.add(quote.condition_id)
                quotes.append(quote)
                logger.debug(f"Found {quote.asset} {quote.window_minutes}m market: {quote.slug}")

            if len(quotes) >= self.max_markets:
                break

        logger.info(f"Found {len(quotes)} crypto markets for {[str(a) for a in self.assets]}")
        return quotes

    def fetch_orderbook(self, token_id: str) -> Optional[dict]:
        """Fetch the CLOB book for a token; None if unavailable or not live yet."""
        try:
            response = self.session.get(
                f"{self.clob_url}/book", params={"token_id": token_id}, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.debug(f"Orderbook request for {token_id} failed: {e}")
            return None

        if response.status_code == 400 or "does not exist" in response.text:
            logger.debug(f"Orderbook for {token_id} not active yet")
            return None
        if not response.ok:
            logger.debug(f"Orderbook for {token_id} returned {response.status_code}")
            return None
        try:
            return response.json()
        except ValueError:
            logger.debug(f"Invalid orderbook response for {token_id}")
            return None

    def refresh_quote(self, quote: MarketQuote) -> Optional[MarketQuote]:
        """
        Re-price a quote from the live order book.

        Returns:
            A new MarketQuote with fresh asks and depth, or None if the
            book is missing or has no asks.
        """
        book = self.fetch_orderbook(quote.yes_token_id)
        if book is None:
            return None
        yes_ask = best_ask(book)
        if yes_ask is None:
            logger.debug(f"Orderbook for {quote.slug} has no liquidity")
            return None

        no_ask = min(1.0 - yes_ask + NO_ASK_PREMIUM, MAX_NO_ASK)
        return MarketQuote(
            condition_id=quote.condition_id,
            yes_token_id=quote.yes_token_id,
            yes_ask=yes_ask,
            no_token_id=quote.no_token_id,
            no_ask=no_ask,
            window_minutes=quote.window_minutes,
            description=quote.description,
            asset=quote.asset,
            slug=quote.slug,
            end_time=quote.end_time,
            depth=depth_from_book(book),
            volume=quote.volume,
        )

    def find_best_quotes(
        self, current: Optional[Mapping[Asset, str]] = None
    ) -> dict[Asset, MarketQuote]:
        """
        Pick one live, undecided market per asset.

        Undecided means the yes ask is within [0.20, 0.80]; among those the
        one closest to 0.50 wins.

        Args:
            current: Condition id currently selected per asset. It is kept while
                it stays tradeable so the interval baseline is not reset.
        """
        current = current or {}
        best: dict[Asset, MarketQuote] = {}
        kept: set[Asset] = set()
        for quote in self.fetch_markets():
            fresh = self.refresh_quote(quote)
            if fresh is None or not is_tradeable(fresh) or fresh.asset in kept:
                continue
            if current.get(fresh.asset) == fresh.condition_id:
                best[fresh.asset] = fresh
                kept.add(fresh.asset)
                continue
            current_best = best.get(fresh.asset)
            if current_best is None or abs(fresh.yes_ask - 0.5) < abs(current_best.yes_ask - 0.5):
                best[fresh.asset] = fresh
        return best
