"""
Signal-and-risk engine facade.

CryptoArbEngine ties together the shared price book, the opportunity
evaluator and the position tracker behind one interface:

- record_price(): feed ingestion (called from feed threads)
- reset_interval_baseline() / reset_interval_baseline_all(): new market window
- set_quote() / evaluate() / evaluate_all(): signal detection
- open_position() / reduce_position() / evaluate_exits() / can_open(): risk
- status_report(): operator diagnostics

The engine performs no I/O. Collaborators (feed, market finder, executor,
notifier) live elsewhere and drive it.

Example:
    >>> engine = CryptoArbEngine(EvaluatorConfig(mode=EvaluationMode.VELOCITY))
    >>> engine.record_price(Asset.BTC, 100_000.0)
    >>> engine.set_quote(quote)
    >>> for signal in engine.evaluate_all():
    ...     if engine.can_open(signal.asset):
    ...         place_order(signal)
"""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Mapping, Optional

from .evaluator import Decision, EvaluatorConfig, OpportunityEvaluator
from .models import Asset, EvaluationMode, MarketQuote, Signal
from .position_tracker import ExitConfig, ExitEvent, Position, PositionTracker
from .price_history import AssetSnapshot, PriceBook

logger = logging.getLogger(__name__)

# Percent-of-threshold bands for the status report
QUIET_PCT = 40.0
WARM_PCT = 70.0


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _threshold_icon(pct: float) -> str:
    if pct >= 100:
        return "✅"
    if pct >= WARM_PCT:
        return "🟡"
    if pct >= QUIET_PCT:
        return "🟠"
    return "⚪"


class CryptoArbEngine:
    """
    Decision core for the crypto latency arbitrage bot.

    Attributes:
        prices: Shared per-asset price state.
        evaluator: Opportunity evaluator built from the evaluator config.
        positions: Open position tracker.
    """

    def __init__(
        self,
        evaluator_config: Optional[EvaluatorConfig] = None,
        exit_config: Optional[ExitConfig] = None,
        assets: Optional[Iterable[Asset]] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utc_now,
    ):
        self._clock = clock
        self._wall_clock = wall_clock
        self.prices = PriceBook(assets=assets, clock=clock)
        self.evaluator = OpportunityEvaluator(evaluator_config)
        self.positions = PositionTracker(exit_config, clock=clock)

        self._quotes: dict[Asset, MarketQuote] = {}
        self._last_decisions: dict[Asset, Decision] = {}
        self._lock = threading.Lock()

        self.signals_emitted = 0
        self.signals_filtered = 0

    @property
    def assets(self) -> list[Asset]:
        return self.prices.assets

    @property
    def config(self) -> EvaluatorConfig:
        return self.evaluator.config

    # ------------------------------------------------------------------
    # Price ingestion
    # ------------------------------------------------------------------

    def record_price(self, asset: Asset, price: float, timestamp: Optional[float] = None) -> bool:
        """Feed entry point. Invalid ticks are dropped, never raised."""
        return self.prices.record(asset, price, now=timestamp)

    def reset_interval_baseline(self, asset: Asset) -> Optional[float]:
        return self.prices.reset_baseline(asset)

    def reset_interval_baseline_all(self) -> None:
        self.prices.reset_all_baselines()

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def set_quote(self, quote: MarketQuote) -> None:
        with self._lock:
            self._quotes[quote.asset] = quote

    def clear_quote(self, asset: Asset) -> None:
        with self._lock:
            self._quotes.pop(asset, None)

    def get_quote(self, asset: Asset) -> Optional[MarketQuote]:
        with self._lock:
            return self._quotes.get(asset)

    def quotes(self) -> dict[Asset, MarketQuote]:
        with self._lock:
            return dict(self._quotes)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate_decision(
        self,
        asset: Asset,
        quote: Optional[MarketQuote] = None,
        at: Optional[datetime] = None,
        now: Optional[float] = None,
    ) -> Decision:
        """Evaluate one asset and keep the decision for the status report."""
        if quote is None:
            quote = self.get_quote(asset)
        snapshot = self.prices.snapshot(asset)
        decision = self.evaluator.evaluate(
            snapshot,
            quote,
            now=self._clock() if now is None else now,
            at=self._wall_clock() if at is None else at,
        )

        with self._lock:
            self._last_decisions[asset] = decision
            if decision.signal is not None:
                self.signals_emitted += 1
            elif decision.filters is not None:
                self.signals_filtered += 1

        if decision.signal is not None:
            signal = decision.signal
            logger.info(
                f"Signal {signal.asset} {signal.direction_label} @ {signal.buy_price:.3f} "
                f"edge={signal.edge_pct:.2f}% conf={signal.confidence} "
                f"size=${signal.recommended_size_usd:.2f} ({signal.mode})"
            )
        return decision

    def evaluate(
        self,
        asset: Asset,
        quote: Optional[MarketQuote] = None,
        at: Optional[datetime] = None,
        now: Optional[float] = None,
    ) -> Optional[Signal]:
        """
        Evaluate one asset.

        Args:
            asset: Asset to evaluate.
            quote: Quote to use; defaults to the last quote set for the asset.
            at: Wall-clock time for the session filter.
            now: Monotonic time for velocity windows.

        Returns:
            A Signal, or None when there is no opportunity.
        """
        return self.evaluate_decision(asset, quote, at=at, now=now).signal

    def evaluate_all(
        self,
        quotes: Optional[Iterable[MarketQuote]] = None,
        at: Optional[datetime] = None,
        now: Optional[float] = None,
    ) -> list[Signal]:
        """
        Evaluate every asset that has a quote.

        Args:
            quotes: Quotes to evaluate; defaults to the stored quotes.
                When several quotes share an asset, each is evaluated.
        """
        if quotes is None:
            quotes = list(self.quotes().values())
        at = self._wall_clock() if at is None else at
        now = self._clock() if now is None else now

        signals = []
        for quote in quotes:
            signal = self.evaluate(quote.asset, quote, at=at, now=now)
            if signal is not None:
                signals.append(signal)
        return signals

    def last_decision(self, asset: Asset) -> Optional[Decision]:
        with self._lock:
            return self._last_decisions.get(asset)

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def open_position(
        self,
        token_id: str,
        price: float,
        shares: float,
        signal: Optional[Signal] = None,
    ) -> Position:
        """Register a fill. A signal links the position to its underlying."""
        if signal is None:
            return self.positions.open_or_average(token_id, price, shares)
        return self.positions.open_or_average(
            token_id,
            price,
            shares,
            asset=signal.asset,
            bet_up=signal.bet_up,
            reference_price=signal.crypto_price,
            window_minutes=signal.window_minutes,
        )

    def reduce_position(self, token_id: str, shares: float) -> Optional[Position]:
        return self.positions.reduce(token_id, shares)

    def remove_position(self, token_id: str) -> Optional[Position]:
        return self.positions.remove(token_id)

    def evaluate_exits(
        self,
        current_prices: Optional[Mapping[Asset, float]] = None,
        token_prices: Optional[Mapping[str, float]] = None,
        now: Optional[float] = None,
    ) -> list[ExitEvent]:
        """Apply exit rules; defaults to the latest underlying prices."""
        if current_prices is None:
            current_prices = {
                asset: snap.price
                for asset, snap in self.prices.snapshot_all().items()
                if snap.has_price
            }
        return self.positions.evaluate_exits(current_prices, token_prices, now=now)

    def can_open(self, asset: Asset) -> bool:
        return self.positions.can_open(asset)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def threshold_progress(self, snapshot: AssetSnapshot, now: float) -> tuple[float, float]:
        """
        Current metric and its threshold for the configured mode.

        Velocity mode compares the strongest short-window velocity with the
        asset's minimum velocity. Edge mode compares the interval change with
        the minimum move for the quoted window.
        """
        if self.evaluator.mode is EvaluationMode.VELOCITY:
            metric = self.evaluator.strongest_velocity(snapshot, now)
            threshold = self.evaluator.tables.min_velocity(snapshot.asset)
        else:
            quote = self.get_quote(snapshot.asset)
            window = quote.window_minutes if quote else None
            metric = snapshot.change_pct
            threshold = self.evaluator.tables.min_move(snapshot.asset, window)
        return metric, threshold

    def status_report(self, now: Optional[float] = None) -> str:
        """
        Human-readable diagnosis of why the bot is or is not trading.

        Distinguishes a quiet market, signals that exist but are filtered,
        and a feed that has delivered no data.
        """
        now = self._clock() if now is None else now
        mode = self.evaluator.mode
        metric_name = "velocity" if mode is EvaluationMode.VELOCITY else "interval change"
        max_buy = self.evaluator.config.max_buy_price

        lines = [f"SIGNAL STATUS ANALYSIS (mode={mode})", ""]
        best_pct = 0.0
        any_price = False
        at_threshold: list[Asset] = []
        fired: list[Asset] = []
        blocked: list[str] = []

        for asset, snapshot in self.prices.snapshot_all().items():
            decision = self.last_decision(asset)
            quote = self.get_quote(asset)

            if not snapshot.has_price:
                lines.append(f"{asset}: No price data available")
                continue

            any_price = True
            metric, threshold = self.threshold_progress(snapshot, now)
            pct = abs(metric) / threshold * 100 if threshold > 0 else 0.0
            best_pct = max(best_pct, pct)
            arrow = "⬆" if metric > 0 else "⬇" if metric < 0 else "·"
            lines.append(
                f"{asset}: ${snapshot.price:,.2f} | {metric_name} {arrow} {metric:+.4f}% "
                f"| threshold {threshold:.4f}% | {pct:.0f}% of threshold {_threshold_icon(pct)}"
            )

            if quote is not None:
                flag = "TOO HIGH" if max(quote.yes_ask, quote.no_ask) > max_buy else "✓"
                lines.append(
                    f"   Market: YES={quote.yes_ask * 100:.1f}c NO={quote.no_ask * 100:.1f}c "
                    f"{flag} | {quote.window_minutes}m | {quote.description}"
                )
            else:
                lines.append("   Market: none")

            if pct >= 100:
                at_threshold.append(asset)
            if decision is not None:
                if decision.signal is not None:
                    fired.append(asset)
                    lines.append("   Last check: SIGNAL")
                else:
                    lines.append(f"   Last check: {decision.reason}")
                    if pct >= 100 or decision.filters is not None:
                        blocked.append(f"{asset}: {decision.reason}")

        lines.append("")
        if not any_price:
            verdict = "NO DATA - no price data received from the feed"
        elif fired:
            verdict = f"SIGNALS FIRING on {', '.join(str(a) for a in fired)}"
        elif at_threshold or blocked:
            verdict = "SIGNALS DETECTED but filtered"
        elif best_pct < QUIET_PCT:
            verdict = f"VERY QUIET - strongest move is {best_pct:.0f}% of threshold"
        else:
            verdict = f"MODERATELY QUIET - strongest move is {best_pct:.0f}% of threshold"
        lines.append(f"VERDICT: {verdict}")

        if blocked:
            lines.append("Blocking reasons:")
            lines.extend(f"   {reason}" for reason in blocked)

        open_positions = self.positions.get_all_positions()
        lines.append(f"Open positions: {len(open_positions)}")
        return "\n".join(lines)

    def get_status(self) -> dict:
        return {
            "mode": self.evaluator.mode.value,
            "signals_emitted": self.signals_emitted,
            "signals_filtered": self.signals_filtered,
            "prices": {
                asset.value: snap.price for asset, snap in self.prices.snapshot_all().items()
            },
            "quotes": {asset.value: q.to_dict() for asset, q in self.quotes().items()},
            "positions": self.positions.get_position_report(),
        }
