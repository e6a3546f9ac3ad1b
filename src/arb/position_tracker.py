"""
Position tracking and exit rules for crypto up/down bets.

Positions are keyed by token id. Repeat fills on the same token average
into the entry price; partial sells reduce shares; a position is gone once
its shares reach zero. At most one position may reference a given asset at
a time, which bounds simultaneous exposure to any single underlying.

Exit rules (checked in order, after the minimum hold time):

1. Take profit: P&L >= take_profit_pct
2. Stop loss: P&L <= -stop_loss_pct
3. Time exit: held for max_hold_fraction of the market's window

P&L is measured in percent. Positions opened from a signal carry the
underlying's reference price; their P&L is the underlying's move, signed
by bet direction, times ``amplification`` (a near-50c binary contract moves
roughly twice as much as the spot). Positions without a reference are
marked to the contract price directly.

Example:
    >>> tracker = PositionTracker(ExitConfig.standard())
    >>> tracker.open_or_average("tok-1", 0.50, 20, asset=Asset.BTC,
    ...                         reference_price=100_000, window_minutes=15)
    >>> tracker.can_open(Asset.BTC)
    False
    >>> exits = tracker.evaluate_exits({Asset.BTC: 101_000})
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from .models import Asset

logger = logging.getLogger(__name__)


class PositionTrackerError(Exception):
    """Raised on caller misuse, such as a non-positive fill."""
    pass


class ExitReason(Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TIME_EXIT = "time_exit"
    MANUAL_CLOSE = "manual_close"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ExitConfig:
    """
    Exit thresholds.

    Attributes:
        take_profit_pct: Close at or above this P&L (percent).
        stop_loss_pct: Close at or below minus this P&L (percent).
        amplification: Underlying move to contract P&L factor.
        min_hold_seconds: No exit of any kind before this age.
        max_hold_fraction: Force exit after this share of the window.
    """

    take_profit_pct: float = 15.0
    stop_loss_pct: float = 10.0
    amplification: float = 2.0
    min_hold_seconds: float = 60.0
    max_hold_fraction: float = 0.8

    @classmethod
    def standard(cls) -> "ExitConfig":
        return cls()

    @classmethod
    def conservative(cls) -> "ExitConfig":
        return cls(
            take_profit_pct=8.0,
            stop_loss_pct=6.0,
            min_hold_seconds=20.0,
            max_hold_fraction=0.6,
        )

    @classmethod
    def from_profile(cls, name: str) -> "ExitConfig":
        profiles = {"standard": cls.standard, "conservative": cls.conservative}
        try:
            return profiles[name.lower()]()
        except KeyError:
            raise ValueError(
                f"Unknown exit profile '{name}', expected one of {sorted(profiles)}"
            ) from None


@dataclass
class Position:
    """
    An open position in one token.

    Attributes:
        token_id: Contract token held.
        entry_price: Volume-weighted average fill price.
        shares: Shares currently held.
        opened_at: Monotonic time of the first fill.
        is_long: Long positions profit when the contract price rises.
        asset: Underlying the bet is on, if known.
        bet_up: Direction of the bet on the underlying.
        reference_price: Underlying price at entry.
        window_minutes: Resolution window of the market.
    """

    token_id: str
    entry_price: float
    shares: float
    opened_at: float
    is_long: bool = True
    asset: Optional[Asset] = None
    bet_up: bool = True
    reference_price: Optional[float] = None
    window_minutes: Optional[int] = None

    @property
    def cost_basis(self) -> float:
        return self.entry_price * self.shares

    def age_seconds(self, now: float) -> float:
        return now - self.opened_at

    def pnl_pct(self, current_price: float) -> float:
        """Contract-price P&L in percent."""
        if self.entry_price == 0:
            return 0.0
        if self.is_long:
            return (current_price - self.entry_price) / self.entry_price * 100.0
        return (self.entry_price - current_price) / self.entry_price * 100.0

    def underlying_pnl_pct(self, underlying_price: float, amplification: float) -> Optional[float]:
        """Estimated P&L in percent from the underlying's move since entry."""
        if not self.reference_price:
            return None
        move = (underlying_price - self.reference_price) / self.reference_price * 100.0
        signed = move if self.bet_up else -move
        return signed * amplification

    def max_hold_seconds(self, fraction: float) -> Optional[float]:
        if not self.window_minutes:
            return None
        return self.window_minutes * 60 * fraction

    def to_dict(self) -> dict[str, Any]:
        return {
            "token_id": self.token_id,
            "entry_price": self.entry_price,
            "shares": self.shares,
            "cost_basis": self.cost_basis,
            "is_long": self.is_long,
            "asset": self.asset.value if self.asset else None,
            "bet_up": self.bet_up,
            "reference_price": self.reference_price,
            "window_minutes": self.window_minutes,
        }


@dataclass(frozen=True)
class ExitEvent:
    """A position that was closed by the exit rules."""

    position: Position
    reason: ExitReason
    pnl_pct: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "position": self.position.to_dict(),
            "reason": self.reason.value,
            "pnl_pct": self.pnl_pct,
        }


class PositionTracker:
    """
    Owns every open position.

    Mutations come from the tick driver; reports may be read from other
    threads. A single lock guards the position map and is never held
    across I/O.
    """

    def __init__(
        self,
        exit_config: Optional[ExitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.exit_config = exit_config or ExitConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._positions: dict[str, Position] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._positions)

    def __contains__(self, token_id: str) -> bool:
        with self._lock:
            return token_id in self._positions

    def open_or_average(
        self,
        token_id: str,
        fill_price: float,
        fill_shares: float,
        *,
        asset: Optional[Asset] = None,
        bet_up: bool = True,
        reference_price: Optional[float] = None,
        window_minutes: Optional[int] = None,
        now: Optional[float] = None,
    ) -> Position:
        """
        Record a fill, averaging into an existing position on the same token.

        Raises:
            PositionTrackerError: If price or shares are not positive.
        """
        if fill_price <= 0 or fill_shares <= 0:
            raise PositionTrackerError(
                f"Fill must have positive price and shares, got {fill_shares} @ {fill_price}"
            )

        with self._lock:
            existing = self._positions.get(token_id)
            if existing is not None:
                total = existing.shares + fill_shares
                existing.entry_price = (
                    existing.entry_price * existing.shares + fill_price * fill_shares
                ) / total
                existing.shares = total
                position = replace(existing)
                action = "updated"
            else:
                position = Position(
                    token_id=token_id,
                    entry_price=fill_price,
                    shares=fill_shares,
                    opened_at=self._clock() if now is None else now,
                    asset=asset,
                    bet_up=bet_up,
                    reference_price=reference_price,
                    window_minutes=window_minutes,
                )
                self._positions[token_id] = position
                position = replace(position)
                action = "opened"

        logger.info(
            f"Position {action}: {token_id} avg={position.entry_price:.4f} "
            f"shares={position.shares:.2f}"
        )
        return position

    def reduce(self, token_id: str, shares_sold: float) -> Optional[Position]:
        """
        Decrement shares after a sell.

        Selling more than is held clamps to zero and closes the position.

        Returns:
            The remaining position, or None if it is now closed or unknown.
        """
        with self._lock:
            position = self._positions.get(token_id)
            if position is None:
                remaining = None
                status = "unknown"
            else:
                oversold = shares_sold > position.shares
                position.shares = max(0.0, position.shares - shares_sold)
                if position.shares <= 0:
                    del self._positions[token_id]
                    remaining = None
                    status = "oversold" if oversold else "closed"
                else:
                    remaining = replace(position)
                    status = "reduced"

        if status == "unknown":
            logger.warning(f"Reduce ignored: no position for {token_id}")
        elif status == "oversold":
            logger.warning(
                f"Sold {shares_sold:.2f} shares of {token_id}, more than held; position closed"
            )
        elif status == "closed":
            logger.info(f"Position closed: {token_id}")
        else:
            logger.info(f"Position reduced: {token_id} remaining={remaining.shares:.2f}")
        return remaining

    def remove(self, token_id: str) -> Optional[Position]:
        """Remove a position outright (confirmed full close)."""
        with self._lock:
            position = self._positions.pop(token_id, None)
        if position is not None:
            logger.info(f"Position removed: {token_id}")
        return position

    def close(self, token_id: str, exit_price: Optional[float] = None) -> Optional[ExitEvent]:
        """Manually close a position, marking P&L at exit_price if given."""
        position = self.remove(token_id)
        if position is None:
            return None
        pnl = position.pnl_pct(exit_price) if exit_price is not None else 0.0
        return ExitEvent(position=position, reason=ExitReason.MANUAL_CLOSE, pnl_pct=pnl)

    def get_position(self, token_id: str) -> Optional[Position]:
        with self._lock:
            position = self._positions.get(token_id)
            return replace(position) if position else None

    def get_all_positions(self) -> list[Position]:
        with self._lock:
            return [replace(p) for p in self._positions.values()]

    def can_open(self, asset: Asset) -> bool:
        """True iff no open position references this asset."""
        with self._lock:
            return all(p.asset is not asset for p in self._positions.values())

    def _exit_pnl(
        self,
        position: Position,
        underlying_prices: Mapping[Asset, float],
        token_prices: Mapping[str, float],
    ) -> Optional[float]:
        if position.reference_price and position.asset in underlying_prices:
            return position.underlying_pnl_pct(
                underlying_prices[position.asset], self.exit_config.amplification
            )
        if position.token_id in token_prices:
            return position.pnl_pct(token_prices[position.token_id])
        return None

    def _exit_reason(self, position: Position, pnl: Optional[float], now: float) -> Optional[ExitReason]:
        cfg = self.exit_config
        age = position.age_seconds(now)
        if age < cfg.min_hold_seconds:
            return None
        if pnl is not None:
            if pnl >= cfg.take_profit_pct:
                return ExitReason.TAKE_PROFIT
            if pnl <= -cfg.stop_loss_pct:
                return ExitReason.STOP_LOSS
        max_hold = position.max_hold_seconds(cfg.max_hold_fraction)
        if max_hold is not None and age >= max_hold:
            return ExitReason.TIME_EXIT
        return None

    def evaluate_exits(
        self,
        current_prices_by_asset: Optional[Mapping[Asset, float]] = None,
        token_prices: Optional[Mapping[str, float]] = None,
        now: Optional[float] = None,
    ) -> list[ExitEvent]:
        """
        Close every position whose exit rule fires.

        Args:
            current_prices_by_asset: Latest underlying prices.
            token_prices: Latest contract prices by token id.
            now: Monotonic time (default: clock).

        Returns:
            One ExitEvent per closed position. Those positions are removed.
        """
        underlying = current_prices_by_asset or {}
        tokens = token_prices or {}
        now = self._clock() if now is None else now

        exits: list[ExitEvent] = []
        with self._lock:
            for token_id, position in list(self._positions.items()):
                pnl = self._exit_pnl(position, underlying, tokens)
                reason = self._exit_reason(position, pnl, now)
                if reason is None:
                    continue
                del self._positions[token_id]
                exits.append(ExitEvent(position=position, reason=reason, pnl_pct=pnl or 0.0))

        for event in exits:
            logger.info(
                f"Exit {event.reason}: {event.position.token_id} "
                f"pnl={event.pnl_pct:+.2f}% shares={event.position.shares:.2f}"
            )
        return exits

    def get_position_report(self) -> dict[str, Any]:
        positions = self.get_all_positions()
        return {
            "open_positions": len(positions),
            "total_cost_basis": sum(p.cost_basis for p in positions),
            "positions": [p.to_dict() for p in positions],
        }
