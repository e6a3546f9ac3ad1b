"""
Opportunity evaluation for crypto up/down markets.

Two independent detectors turn a price snapshot plus a market quote into a
sized Signal:

Edge mode (EvaluationMode.EDGE):
    Uses the move since the start of the market's resolution interval.
    A heuristic fair probability is derived from the move, compared with
    the ask to get an edge, and the stake is a capped Kelly fraction.

Velocity mode (EvaluationMode.VELOCITY):
    Reacts to sharp moves over the last 3-5 seconds. Stakes are flat at
    the configured maximum and entries are capped well below certainty
    to avoid buying contracts that have already re-priced.

Both detectors finish by running the StrategyFilter chain. Every rejection
comes back as a Decision with a reason and no signal; nothing here raises
on bad market data.

Example:
    >>> evaluator = OpportunityEvaluator(EvaluatorConfig(mode=EvaluationMode.EDGE))
    >>> decision = evaluator.evaluate(book.snapshot(Asset.BTC), quote)
    >>> if decision.signal:
    ...     print(decision.signal.direction_label, decision.signal.edge_pct)
    ... else:
    ...     print(decision.reason)
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .models import Asset, EvaluationMode, MarketQuote, MomentumSignal, Signal
from .price_history import AssetSnapshot
from .strategy_filters import FilterResults, StrategyConfig, StrategyFilter
from .thresholds import DEFAULT_TABLES, ThresholdTables

logger = logging.getLogger(__name__)

# Never buy a contract priced above this
MAX_BUY_PRICE = 0.99

# Velocity entries above this carry mean-reversion risk
MAX_ENTRY_PRICE = 0.60

# Trailing windows (seconds) checked by velocity mode
VELOCITY_WINDOWS = (3, 5)

# Implied probability shift is capped at this many points
MAX_PROB_SHIFT = 45.0

KELLY_CAP = 0.25


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class EvaluatorConfig:
    """
    Strategy configuration, consumed once when the evaluator is built.

    Attributes:
        mode: Which detector to run.
        use_momentum: Require momentum to back the move (edge mode). False
            also switches off the momentum entry filter.
        use_edge_check: Edge mode only; enforce the per-window minimum edge.
        max_position_usd: Upper bound on any recommended stake.
        min_position_usd: Lower bound on any recommended stake.
        max_buy_price: Global ceiling on the ask we will pay.
        max_entry_price: Velocity mode ceiling on the ask.
        velocity_windows: Trailing windows compared in velocity mode.
        tables: Threshold lookup tables.
        strategy: Filter chain configuration.
    """

    mode: EvaluationMode = EvaluationMode.VELOCITY
    use_momentum: bool = True
    use_edge_check: bool = True
    max_position_usd: float = 10.0
    min_position_usd: float = 1.0
    max_buy_price: float = MAX_BUY_PRICE
    max_entry_price: float = MAX_ENTRY_PRICE
    velocity_windows: tuple[float, ...] = VELOCITY_WINDOWS
    tables: ThresholdTables = field(default_factory=lambda: DEFAULT_TABLES)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)

    def __post_init__(self):
        if self.min_position_usd <= 0:
            raise ValueError(f"min_position_usd must be positive, got {self.min_position_usd}")
        if self.max_position_usd < self.min_position_usd:
            raise ValueError(
                f"max_position_usd ({self.max_position_usd}) is below "
                f"min_position_usd ({self.min_position_usd})"
            )
        if not self.velocity_windows:
            raise ValueError("velocity_windows must not be empty")


@dataclass(frozen=True)
class Decision:
    """Result of one evaluation: a signal, or the reason there is none."""

    signal: Optional[Signal] = None
    reason: str = ""
    filters: Optional[FilterResults] = None

    @classmethod
    def reject(cls, reason: str, filters: Optional[FilterResults] = None) -> "Decision":
        return cls(signal=None, reason=reason, filters=filters)

    @property
    def fired(self) -> bool:
        return self.signal is not None


def momentum_boost(momentum: MomentumSignal) -> float:
    """Probability boost: 1.2 strong and accelerating, 1.1 strong, else 1.0."""
    if momentum.is_strong and momentum.is_accelerating:
        return 1.2
    if momentum.is_strong:
        return 1.1
    return 1.0


def implied_probability(abs_change_pct: float, prob_multiplier: float, boost: float) -> float:
    return 0.5 + min(abs_change_pct * prob_multiplier * boost, MAX_PROB_SHIFT) / 100.0


def kelly_size(
    edge_pct: float,
    ask_price: float,
    max_position_usd: float,
    min_position_usd: float,
    size_multiplier: float = 1.0,
) -> float:
    """
    Capped Kelly stake.

    kelly = (edge / 100) / (1 - ask), capped at KELLY_CAP, scaled by the
    max position and size multiplier, then clamped to [min, max].
    """
    payout = 1.0 - ask_price
    kelly = (edge_pct / 100.0) / payout if payout > 0 else KELLY_CAP
    size = max_position_usd * min(kelly, KELLY_CAP) * size_multiplier
    return min(max(size, min_position_usd), max_position_usd)


def velocity_confidence(abs_velocity_pct: float) -> int:
    return int(max(30.0, min(abs_velocity_pct * 500.0, 95.0)))


class OpportunityEvaluator:
    """
    Decides whether a quote is worth trading given the current price state.

    The evaluator is stateless between calls; all inputs arrive as an
    AssetSnapshot and a MarketQuote, so it is safe to call from any task.
    """

    def __init__(self, config: Optional[EvaluatorConfig] = None):
        self.config = config or EvaluatorConfig()
        self.tables = self.config.tables
        strategy = self.config.strategy
        if not self.config.use_momentum:
            strategy = strategy.with_flags(enable_momentum=False)
        self.filters = StrategyFilter(strategy)
        self._detect = (
            self._detect_edge
            if self.config.mode is EvaluationMode.EDGE
            else self._detect_velocity
        )

    @property
    def mode(self) -> EvaluationMode:
        return self.config.mode

    def passes_min_move(self, asset: Asset, window_minutes: int, change_pct: float) -> bool:
        """True if an interval move is large enough for edge mode."""
        return abs(change_pct) >= self.tables.min_move(asset, window_minutes)

    def passes_min_velocity(self, asset: Asset, velocity_pct: float) -> bool:
        return abs(velocity_pct) >= self.tables.min_velocity(asset)

    def strongest_velocity(self, snapshot: AssetSnapshot, now: float) -> float:
        """Velocity with the largest magnitude across the configured windows."""
        best = 0.0
        for window in self.config.velocity_windows:
            v = snapshot.velocity(window, now)
            if abs(v) > abs(best):
                best = v
        return best

    def evaluate(
        self,
        snapshot: AssetSnapshot,
        quote: Optional[MarketQuote],
        now: Optional[float] = None,
        at: Optional[datetime] = None,
    ) -> Decision:
        """
        Evaluate one asset against its market quote.

        Args:
            snapshot: Price state for the asset.
            quote: Current market quote for the asset, if any.
            now: Monotonic time for velocity windows (default: time.monotonic()).
            at: Wall-clock time for the session filter (default: now, UTC).

        Returns:
            Decision carrying either a Signal or a rejection reason.
        """
        if quote is None:
            return Decision.reject("No market quote")
        if quote.asset is not snapshot.asset:
            return Decision.reject(
                f"Quote is for {quote.asset}, snapshot is for {snapshot.asset}"
            )
        if not snapshot.has_price:
            return Decision.reject("No price data")

        now = time.monotonic() if now is None else now
        at = _utc_now() if at is None else at

        decision = self._detect(snapshot, quote, now)
        if decision.signal is None:
            return decision
        return self._apply_filters(snapshot, decision.signal, quote, at)

    def _detect_edge(self, snapshot: AssetSnapshot, quote: MarketQuote, now: float) -> Decision:
        asset = snapshot.asset
        window = quote.window_minutes
        if not snapshot.baseline or snapshot.baseline <= 0:
            return Decision.reject("No interval baseline")

        change_pct = snapshot.change_pct
        abs_change = abs(change_pct)
        min_move = self.tables.min_move(asset, window)
        if abs_change < min_move:
            return Decision.reject(f"Move too small: {abs_change:.4f}% < {min_move:.4f}%")

        is_up = snapshot.is_up
        momentum = snapshot.momentum()
        if self.config.use_momentum:
            if not momentum.supports_direction(is_up):
                return Decision.reject(
                    f"Momentum does not support {'UP' if is_up else 'DOWN'} "
                    f"(direction={momentum.direction})"
                )
            if momentum.consistency > 0 and not momentum.is_accelerating and abs(momentum.score) < 0.5:
                return Decision.reject("Weak decelerating momentum")

        ask = quote.ask_for(is_up)
        if ask <= 0:
            return Decision.reject(f"Invalid ask price {ask}")
        if ask > self.config.max_buy_price:
            return Decision.reject(
                f"Ask {ask * 100:.1f}c above max buy price {self.config.max_buy_price * 100:.0f}c"
            )

        boost = momentum_boost(momentum)
        implied = implied_probability(abs_change, self.tables.prob_mult(window), boost)
        edge_pct = (implied - ask) * 100.0

        if self.config.use_edge_check:
            min_edge = self.tables.min_edge(window)
            if edge_pct < min_edge:
                return Decision.reject(f"Edge too low: {edge_pct:.2f}% < {min_edge:.2f}%")

        confidence_boost = 1.0 + momentum.consistency * 0.5 if momentum.is_strong else 1.0
        confidence = int(min(abs_change * self.tables.confidence_mult(window) * confidence_boost, 100.0))

        size_multiplier = 1.5 if momentum.is_strong and momentum.is_accelerating else 1.0
        size = kelly_size(
            edge_pct,
            ask,
            self.config.max_position_usd,
            self.config.min_position_usd,
            size_multiplier,
        )

        return Decision(
            signal=Signal(
                bet_up=is_up,
                token_id=quote.token_for(is_up),
                buy_price=ask,
                edge_pct=edge_pct,
                crypto_price=snapshot.price,
                asset=asset,
                price_change_pct=change_pct,
                confidence=confidence,
                recommended_size_usd=size,
                mode=EvaluationMode.EDGE,
                window_minutes=window,
                condition_id=quote.condition_id,
                momentum=momentum,
            )
        )

    def _detect_velocity(self, snapshot: AssetSnapshot, quote: MarketQuote, now: float) -> Decision:
        asset = snapshot.asset
        velocity = self.strongest_velocity(snapshot, now)
        abs_velocity = abs(velocity)
        min_velocity = self.tables.min_velocity(asset)

        if abs_velocity < min_velocity:
            if abs_velocity > min_velocity * 0.5:
                logger.debug(
                    f"{asset} velocity {abs_velocity:.4f}% < threshold {min_velocity:.4f}% "
                    f"(${snapshot.price * min_velocity / 100:.2f} move needed)"
                )
            return Decision.reject(
                f"Velocity too low: {abs_velocity:.4f}% < {min_velocity:.4f}%"
            )

        is_up = velocity > 0
        ask = quote.ask_for(is_up)
        if ask <= 0:
            return Decision.reject(f"Invalid ask price {ask}")
        if ask > self.config.max_buy_price:
            return Decision.reject(
                f"Ask {ask * 100:.1f}c above max buy price {self.config.max_buy_price * 100:.0f}c"
            )
        if ask > self.config.max_entry_price:
            return Decision.reject(
                f"Ask {ask * 100:.1f}c above max entry {self.config.max_entry_price * 100:.0f}c "
                f"(mean reversion risk)"
            )

        return Decision(
            signal=Signal(
                bet_up=is_up,
                token_id=quote.token_for(is_up),
                buy_price=ask,
                edge_pct=abs_velocity * 10.0,
                crypto_price=snapshot.price,
                asset=asset,
                price_change_pct=velocity,
                confidence=velocity_confidence(abs_velocity),
                recommended_size_usd=self.config.max_position_usd,
                mode=EvaluationMode.VELOCITY,
                window_minutes=quote.window_minutes,
                condition_id=quote.condition_id,
                momentum=snapshot.momentum(),
            )
        )

    def _apply_filters(
        self,
        snapshot: AssetSnapshot,
        signal: Signal,
        quote: MarketQuote,
        at: datetime,
    ) -> Decision:
        momentum = signal.momentum
        results = self.filters.check_all(
            momentum_score=momentum.score,
            consistency=momentum.consistency,
            is_accelerating=momentum.is_accelerating,
            direction_matches=momentum.supports_direction(signal.bet_up),
            orderbook=quote.depth,
            volume=quote.volume,
            at=at,
            buying_yes=signal.bet_up,
        )
        if not results.all_passed():
            reason = "; ".join(results.failure_reasons())
            logger.debug(f"{snapshot.asset} {signal.direction_label} signal filtered: {reason}")
            return Decision.reject(f"Filtered: {reason}", filters=results)

        return Decision(signal=signal, reason="All checks passed", filters=results)
