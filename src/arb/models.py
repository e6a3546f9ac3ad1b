"""
Core data types for the crypto latency arbitrage engine.

Everything here is an immutable value object: assets, price samples,
market quotes, momentum readings and the signals the evaluator emits.
Mutable state (price history, positions) lives in its own module.

Example:
    >>> from src.arb.models import Asset, MarketQuote
    >>> quote = MarketQuote(
    ...     condition_id="0xabc",
    ...     yes_token_id="111",
    ...     yes_ask=0.52,
    ...     no_token_id="222",
    ...     no_ask=0.50,
    ...     window_minutes=15,
    ...     description="Bitcoin Up or Down - 15m",
    ...     asset=Asset.BTC,
    ... )
    >>> quote.ask_for(bet_up=False)
    0.5
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Asset(Enum):
    """Tradeable underlyings. BTC is the primary asset."""

    BTC = "btc"
    ETH = "eth"
    SOL = "sol"
    XRP = "xrp"

    def __str__(self) -> str:
        return self.name

    @property
    def binance_symbol(self) -> str:
        """Spot pair on Binance, e.g. ``BTCUSDT``."""
        return f"{self.name}USDT"

    @property
    def long_name(self) -> str:
        return _LONG_NAMES[self]

    @classmethod
    def from_symbol(cls, symbol: str) -> Optional["Asset"]:
        """
        Map an exchange symbol, ticker or full name to an Asset.

        Accepts "BTC", "btc", "BTCUSDT", "bitcoin" and similar.

        Returns:
            The matching Asset, or None for unknown symbols.
        """
        if not symbol:
            return None
        normalized = symbol.strip().lower()
        for asset in cls:
            if normalized in (asset.value, asset.long_name, asset.binance_symbol.lower()):
                return asset
        return None


_LONG_NAMES = {
    Asset.BTC: "bitcoin",
    Asset.ETH: "ethereum",
    Asset.SOL: "solana",
    Asset.XRP: "xrp",
}


@dataclass(frozen=True)
class PriceSample:
    """One observation from the price feed."""

    price: float
    observed_at: float  # monotonic seconds


class MomentumDirection(Enum):
    """Direction of a momentum reading."""

    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class MomentumSignal:
    """
    Trend reading derived from a price history.

    Attributes:
        score: Mean step change scaled into [-1, 1].
        is_accelerating: Second half of the steps is stronger than the first.
        consistency: Share of steps moving in the majority direction.
        direction: UP / DOWN outside the dead zone, NEUTRAL inside it.
    """

    score: float = 0.0
    is_accelerating: bool = False
    consistency: float = 0.0
    direction: MomentumDirection = MomentumDirection.NEUTRAL

    @classmethod
    def neutral(cls) -> "MomentumSignal":
        return cls()

    @property
    def is_strong(self) -> bool:
        """Strong means a meaningful score backed by consistent steps."""
        return abs(self.score) > 0.3 and self.consistency > 0.6

    def supports_direction(self, is_up: bool) -> bool:
        """True if the momentum points the same way as the proposed bet."""
        if self.direction is MomentumDirection.UP:
            return is_up
        if self.direction is MomentumDirection.DOWN:
            return not is_up
        return False

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "is_accelerating": self.is_accelerating,
            "consistency": self.consistency,
            "direction": self.direction.value,
            "is_strong": self.is_strong,
        }


@dataclass(frozen=True)
class OrderbookDepth:
    """Resting liquidity near the touch, in USD."""

    bid_depth_usd: float
    ask_depth_usd: float
    spread_pct: float = 0.0


@dataclass(frozen=True)
class VolumeData:
    """Current traded volume against its trailing average."""

    current_volume: float
    average_volume: float = 0.0


@dataclass(frozen=True)
class MarketQuote:
    """
    Snapshot of one up/down contract pair.

    The "yes" side pays out if the asset finishes the window up, the
    "no" side if it finishes down. Depth and volume are optional and only
    feed the corresponding filters when present.
    """

    condition_id: str
    yes_token_id: str
    yes_ask: float
    no_token_id: str
    no_ask: float
    window_minutes: int
    description: str
    asset: Asset
    slug: str = ""
    end_time: Optional[int] = None  # unix seconds
    depth: Optional[OrderbookDepth] = None
    volume: Optional[VolumeData] = None

    def ask_for(self, bet_up: bool) -> float:
        return self.yes_ask if bet_up else self.no_ask

    def token_for(self, bet_up: bool) -> str:
        return self.yes_token_id if bet_up else self.no_token_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "condition_id": self.condition_id,
            "slug": self.slug,
            "asset": self.asset.value,
            "yes_token_id": self.yes_token_id,
            "yes_ask": self.yes_ask,
            "no_token_id": self.no_token_id,
            "no_ask": self.no_ask,
            "window_minutes": self.window_minutes,
            "description": self.description,
            "end_time": self.end_time,
        }


class EvaluationMode(Enum):
    """Which opportunity detector produced a signal."""

    EDGE = "edge"          # interval change + probability model
    VELOCITY = "velocity"  # short-window reactive threshold

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Signal:
    """
    A sized trade recommendation.

    Attributes:
        bet_up: True to buy the "yes"/up token, False for "no"/down.
        token_id: Token to buy.
        buy_price: Ask price of that token at evaluation time.
        edge_pct: Modelled edge in percentage points.
        crypto_price: Underlying spot price at evaluation time.
        asset: Underlying asset.
        price_change_pct: Interval change (edge mode) or velocity (velocity mode).
        confidence: Heuristic confidence, 0-100.
        recommended_size_usd: Stake in USD.
    """

    bet_up: bool
    token_id: str
    buy_price: float
    edge_pct: float
    crypto_price: float
    asset: Asset
    price_change_pct: float
    confidence: int
    recommended_size_usd: float
    mode: EvaluationMode = EvaluationMode.EDGE
    window_minutes: Optional[int] = None
    condition_id: str = ""
    momentum: MomentumSignal = field(default_factory=MomentumSignal.neutral)

    @property
    def direction_label(self) -> str:
        return "UP" if self.bet_up else "DOWN"

    @property
    def shares(self) -> float:
        """Shares the stake buys at the signal price, floored to cents."""
        if self.buy_price <= 0:
            return 0.0
        return math.floor(self.recommended_size_usd / self.buy_price * 100) / 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset": self.asset.value,
            "direction": self.direction_label,
            "token_id": self.token_id,
            "condition_id": self.condition_id,
            "buy_price": self.buy_price,
            "edge_pct": self.edge_pct,
            "crypto_price": self.crypto_price,
            "price_change_pct": self.price_change_pct,
            "confidence": self.confidence,
            "recommended_size_usd": self.recommended_size_usd,
            "shares": self.shares,
            "mode": self.mode.value,
            "window_minutes": self.window_minutes,
            "momentum": self.momentum.to_dict(),
        }
