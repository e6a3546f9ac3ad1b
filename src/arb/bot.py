"""
Main Bot Runner for the Crypto Latency Arbitrage Strategy.

Wires the engine to its collaborators and drives it on fixed cadences:

- BinanceFeed pushes spot trades into the engine's price book
- MarketFinder refreshes the tradeable up/down market per asset
- Every tick the engine is evaluated; fired signals become FOK orders
- Exit rules run every tick against the latest prices
- A status analysis is logged (and sent to Telegram) periodically

Key Features:
- Paper mode by default (NEVER trades live unless --live flag)
- Kill switch check every tick
- One trade per cooldown period (120s by default)
- One open position per asset
- Clean shutdown on Ctrl+C

Example:
    >>> bot = ArbBot(paper_mode=True)
    >>> await bot.run()
"""

import asyncio
import logging
import signal
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from ..api.binance_feed import BinanceFeed
from ..api.telegram import TelegramNotifier
from ..config import (
    ASSETS,
    CHECK_INTERVAL_MS,
    ENABLE_ORDERBOOK_FILTER,
    ENABLE_TIME_FILTER,
    ENABLE_VOLUME_FILTER,
    EVALUATION_MODE,
    EXIT_PROFILE,
    KILL_SWITCH_FILE,
    MAX_POSITION_USD,
    MIN_POSITION_USD,
    MIN_TRADE_INTERVAL_SECONDS,
    QUOTE_REFRESH_SECONDS,
    STATUS_INTERVAL_SECONDS,
    USE_EDGE_CHECK,
    USE_MOMENTUM,
)
from ..trading.executor import OrderRequest, check_kill_switch, create_executor
from .engine import CryptoArbEngine
from .evaluator import EvaluatorConfig
from .market_finder import MarketFinder
from .models import Asset, EvaluationMode, MarketQuote, Signal
from .position_tracker import ExitConfig, ExitEvent
from .strategy_filters import StrategyConfig

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def resolve_assets(names: Optional[Iterable[str]] = None) -> list[Asset]:
    """Map configured asset names to Assets, skipping unknown ones."""
    assets = []
    for name in names if names is not None else ASSETS:
        asset = Asset.from_symbol(name)
        if asset is None:
            logger.warning(f"Ignoring unknown asset '{name}'")
        elif asset not in assets:
            assets.append(asset)
    return assets


def build_engine(
    mode: Optional[str] = None,
    assets: Optional[Iterable[Asset]] = None,
    exit_profile: Optional[str] = None,
) -> CryptoArbEngine:
    """Build an engine from the environment configuration."""
    evaluator_config = EvaluatorConfig(
        mode=EvaluationMode((mode or EVALUATION_MODE).lower()),
        use_momentum=USE_MOMENTUM,
        use_edge_check=USE_EDGE_CHECK,
        max_position_usd=MAX_POSITION_USD,
        min_position_usd=MIN_POSITION_USD,
        strategy=StrategyConfig(
            enable_orderbook=ENABLE_ORDERBOOK_FILTER,
            enable_volume=ENABLE_VOLUME_FILTER,
            enable_time=ENABLE_TIME_FILTER,
        ),
    )
    return CryptoArbEngine(
        evaluator_config=evaluator_config,
        exit_config=ExitConfig.from_profile(exit_profile or EXIT_PROFILE),
        assets=assets,
    )


@dataclass
class BotState:
    """
    Current state of the arbitrage bot.

    Attributes:
        is_running: Whether the bot is currently running.
        paper_mode: Whether running in paper mode.
        tick_count: Number of evaluation ticks completed.
        trades_executed: Orders filled this session.
        trades_failed: Orders rejected or errored this session.
        exits: Positions closed by the exit rules.
        estimated_pnl: Sum of estimated exit P&L in USD.
        last_trade_at: Monotonic time of the last fill (cooldown anchor).
        last_error: Last error message (if any).
    """

    is_running: bool = False
    paper_mode: bool = True
    tick_count: int = 0
    trades_executed: int = 0
    trades_failed: int = 0
    exits: int = 0
    estimated_pnl: float = 0.0
    last_trade_at: Optional[float] = None
    last_tick_time: Optional[datetime] = None
    last_error: Optional[str] = None
    start_time: Optional[datetime] = None

    def can_trade(self, now: float, min_interval: float) -> bool:
        """True once the cooldown since the last fill has elapsed."""
        if self.last_trade_at is None:
            return True
        return now - self.last_trade_at >= min_interval

    def to_dict(self) -> dict[str, Any]:
        """Convert state to dictionary."""
        return {
            "is_running": self.is_running,
            "paper_mode": self.paper_mode,
            "tick_count": self.tick_count,
            "trades_executed": self.trades_executed,
            "trades_failed": self.trades_failed,
            "exits": self.exits,
            "estimated_pnl": round(self.estimated_pnl, 4),
            "last_tick_time": self.last_tick_time.isoformat() if self.last_tick_time else None,
            "last_error": self.last_error,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "uptime_seconds": (
                int((_utc_now() - self.start_time).total_seconds())
                if self.start_time
                else 0
            ),
        }


class ArbBot:
    """
    Orchestrator for the crypto latency arbitrage strategy.

    Trading Flow (every tick):
    1. Check kill switch
    2. Evaluate every asset with a market quote
    3. For each signal: check cooldown and per-asset exposure
    4. Place a BUY / FOK order (paper or live)
    5. Register the fill with the position tracker
    6. Apply exit rules to open positions

    Blocking I/O (orders, HTTP, Telegram) runs in worker threads so the
    event loop keeps ticking.

    Attributes:
        paper_mode: If True, uses paper trading (default: True)
        engine: Signal-and-risk engine
        market_finder: Discovers and re-prices markets
        executor: Paper or live order executor
        notifier: Telegram notifier
        feed: Binance price feed
        state: Current bot state
    """

    def __init__(
        self,
        paper_mode: bool = True,
        engine: Optional[CryptoArbEngine] = None,
        market_finder: Optional[MarketFinder] = None,
        executor: Any = None,
        notifier: Optional[TelegramNotifier] = None,
        feed: Optional[BinanceFeed] = None,
        check_interval: float = CHECK_INTERVAL_MS / 1000.0,
        quote_refresh: float = QUOTE_REFRESH_SECONDS,
        status_interval: float = STATUS_INTERVAL_SECONDS,
        min_trade_interval: float = MIN_TRADE_INTERVAL_SECONDS,
        kill_switch_file: Path = KILL_SWITCH_FILE,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the bot.

        Args:
            paper_mode: If True, use paper trading (default: True, NEVER live by default)
            engine: Engine to drive (default: built from config)
            market_finder: Market discovery (default: for the engine's assets)
            executor: Order executor (default: paper, or live with credentials)
            notifier: Telegram notifier (default: from config; disabled without credentials)
            feed: Price feed (default: Binance feed into the engine)
            check_interval: Seconds between evaluation ticks
            quote_refresh: Seconds between market refreshes
            status_interval: Seconds between status analyses
            min_trade_interval: Cooldown between fills in seconds

        Raises:
            ExecutorError: If live mode is requested without a working client.
        """
        # SAFETY: Paper mode by default
        self.paper_mode = paper_mode
        self.engine = engine or build_engine()
        self.market_finder = market_finder or MarketFinder(assets=self.engine.assets)
        self.executor = executor if executor is not None else create_executor(live=not paper_mode)
        self.notifier = notifier or TelegramNotifier()
        self.feed = feed or BinanceFeed(self.engine.assets, on_price=self.engine.record_price)

        self.check_interval = check_interval
        self.quote_refresh = quote_refresh
        self.status_interval = status_interval
        self.min_trade_interval = min_trade_interval
        self.kill_switch_file = Path(kill_switch_file)
        self._clock = clock

        self.state = BotState(paper_mode=paper_mode)
        self._shutdown_event = asyncio.Event()
        self._last_status_at: Optional[float] = None
        self._last_blocked: dict[Asset, str] = {}

        self._setup_signal_handlers()

        logger.info(
            f"ArbBot initialized in {self.mode_label} mode: "
            f"assets={[str(a) for a in self.engine.assets]}, "
            f"evaluation={self.engine.config.mode}, "
            f"max_position=${self.engine.config.max_position_usd:.2f}"
        )

    @property
    def mode_label(self) -> str:
        return "PAPER" if self.paper_mode else "LIVE"

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for clean shutdown."""
        try:
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)
        except (ValueError, RuntimeError):
            # Signal handlers can only be set in main thread
            pass

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, initiating shutdown...")
        self.stop()

    async def _notify(self, method: Callable[..., bool], *args, **kwargs) -> None:
        if not self.notifier.enabled:
            return
        await asyncio.to_thread(method, *args, **kwargs)

    async def _notify_blocked(self, asset: Asset, reason: str) -> None:
        """Send a blocked-trade message once per asset until the reason changes."""
        if self._last_blocked.get(asset) == reason:
            return
        self._last_blocked[asset] = reason
        await self._notify(self.notifier.notify_blocked, str(asset), reason)

    # ------------------------------------------------------------------
    # Markets
    # ------------------------------------------------------------------

    def apply_quotes(self, quotes: dict[Asset, MarketQuote]) -> list[str]:
        """
        Install the selected market per asset.

        A different condition id means a new resolution window, so the
        asset's interval baseline is reset. Assets with no tradeable market
        lose their quote.

        Returns:
            Human-readable descriptions of what changed.
        """
        changes = []
        for asset in self.engine.assets:
            new = quotes.get(asset)
            old = self.engine.get_quote(asset)

            if new is None:
                if old is not None:
                    self.engine.clear_quote(asset)
                    changes.append(f"{asset}: dropped {old.description}")
                    logger.info(f"{asset} market no longer tradeable: {old.description}")
                continue

            self.engine.set_quote(new)
            if old is None or old.condition_id != new.condition_id:
                baseline = self.engine.reset_interval_baseline(asset)
                changes.append(f"{asset}: switched to {new.description}")
                logger.info(
                    f"{asset} switched to {new.description} "
                    f"(YES={new.yes_ask * 100:.1f}c, baseline={baseline})"
                )
        return changes

    async def refresh_quotes(self) -> list[str]:
        """Fetch the best markets off the event loop and apply them."""
        current = {asset: quote.condition_id for asset, quote in self.engine.quotes().items()}
        try:
            quotes = await asyncio.to_thread(self.market_finder.find_best_quotes, current)
        except Exception as e:
            logger.error(f"Market refresh failed: {e}", exc_info=True)
            self.state.last_error = f"Market refresh failed: {e}"
            return []
        return self.apply_quotes(quotes)

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    async def _handle_signal(self, sig: Signal, now: float) -> tuple[bool, str]:
        """
        Try to trade one signal.

        Returns:
            (ok, description); ok is False only for execution failures.
        """
        request = OrderRequest.from_signal(sig)
        blocked = None
        if not self.state.can_trade(now, self.min_trade_interval):
            blocked = "trade cooldown active"
        elif not self.engine.can_open(sig.asset):
            blocked = "position already open"
        elif request.size <= 0:
            blocked = f"stake too small for {request.price:.2f}"

        if blocked is not None:
            await self._notify_blocked(sig.asset, blocked)
            return True, f"Skip {sig.asset}: {blocked}"
        self._last_blocked.pop(sig.asset, None)

        await self._notify(
            self.notifier.notify_signal,
            str(sig.asset), sig.price_change_pct, sig.direction_label, sig.confidence,
        )

        try:
            result = await asyncio.to_thread(self.executor.place_order, request)
        except Exception as e:
            logger.error(f"Order for {sig.asset} raised: {e}", exc_info=True)
            self.state.trades_failed += 1
            await self._notify(self.notifier.notify_failed, str(sig.asset), str(e))
            return False, f"Order failed for {sig.asset}: {e}"

        if not result.success:
            self.state.trades_failed += 1
            logger.warning(f"Order for {sig.asset} rejected: {result.message}")
            await self._notify(self.notifier.notify_failed, str(sig.asset), result.message)
            return False, f"Order failed for {sig.asset}: {result.message}"

        self.engine.open_position(sig.token_id, result.filled_price, result.filled_size, signal=sig)
        self.state.trades_executed += 1
        self.state.last_trade_at = now

        quote = self.engine.get_quote(sig.asset)
        market = quote.description if quote else sig.condition_id
        logger.info(
            f"[{self.mode_label}] BUY {sig.direction_label} {sig.asset} "
            f"{result.filled_size:.2f} @ {result.filled_price:.3f} "
            f"(edge={sig.edge_pct:.1f}%, conf={sig.confidence}) on {market}"
        )
        await self._notify(
            self.notifier.notify_trade,
            str(sig.asset), sig.direction_label, result.filled_price,
            result.filled_price * result.filled_size, market, self.paper_mode,
        )
        return True, (
            f"Bought {sig.asset} {sig.direction_label} "
            f"{result.filled_size:.2f} @ {result.filled_price:.3f}"
        )

    async def _process_exits(self, now: float) -> list[ExitEvent]:
        token_prices = {}
        for quote in self.engine.quotes().values():
            token_prices[quote.yes_token_id] = quote.yes_ask
            token_prices[quote.no_token_id] = quote.no_ask

        exits = self.engine.evaluate_exits(token_prices=token_prices, now=now)
        for event in exits:
            pnl_usd = event.position.cost_basis * event.pnl_pct / 100.0
            self.state.exits += 1
            self.state.estimated_pnl += pnl_usd
            logger.info(
                f"[EXIT] {event.reason} {event.position.asset} "
                f"pnl={event.pnl_pct:+.1f}% (${pnl_usd:+.2f})"
            )
            await self._notify(
                self.notifier.notify_exit, event.position.token_id, str(event.reason), event.pnl_pct
            )
        return exits

    async def run_tick(
        self,
        now: Optional[float] = None,
        at: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """
        Run one evaluation tick.

        Args:
            now: Monotonic time (default: clock).
            at: Wall-clock time for the session filter (default: now in UTC).

        Returns:
            Dictionary with tick results
        """
        now = self._clock() if now is None else now
        tick_result = {
            "timestamp": _utc_now().isoformat(),
            "tick_number": self.state.tick_count + 1,
            "signals": 0,
            "actions": [],
            "errors": [],
        }

        try:
            if check_kill_switch(self.kill_switch_file):
                tick_result["actions"].append("HALTED: Kill switch active")
                logger.warning("Kill switch is active - skipping tick")
                return tick_result

            signals = self.engine.evaluate_all(at=at, now=now)
            tick_result["signals"] = len(signals)
            for sig in signals:
                ok, description = await self._handle_signal(sig, now)
                tick_result["actions" if ok else "errors"].append(description)

            for event in await self._process_exits(now):
                tick_result["actions"].append(
                    f"Exit {event.reason} {event.position.token_id}: {event.pnl_pct:+.2f}%"
                )

            self.state.last_error = None
        except Exception as e:
            error_msg = f"Tick error: {e}"
            tick_result["errors"].append(error_msg)
            self.state.last_error = error_msg
            logger.error(error_msg, exc_info=True)
        finally:
            self.state.tick_count += 1
            self.state.last_tick_time = _utc_now()

        return tick_result

    async def report_status(self, now: Optional[float] = None) -> str:
        """Log the engine's status analysis and send it with a trade summary to Telegram."""
        now = self._clock() if now is None else now
        report = self.engine.status_report(now=now)
        self._last_status_at = now
        logger.info(f"\n{report}")
        await self._notify(
            self.notifier.notify_status,
            self.state.trades_executed,
            len(self.engine.positions),
            self.state.estimated_pnl,
            self.mode_label,
        )
        await self._notify(self.notifier.notify_status_analysis, report)
        return report

    async def _maybe_report_status(self, now: float) -> None:
        if self._last_status_at is None:
            self._last_status_at = now
            return
        if now - self._last_status_at >= self.status_interval:
            await self.report_status(now)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _wait(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass  # Normal timeout, continue to next iteration

    async def _tick_loop(self) -> None:
        while not self._shutdown_event.is_set():
            if check_kill_switch(self.kill_switch_file):
                logger.warning("Kill switch detected - stopping bot")
                self.stop()
                break

            tick_result = await self.run_tick()
            for error in tick_result["errors"]:
                logger.error(f"Tick error: {error}")
            await self._maybe_report_status(self._clock())

            await self._wait(self.check_interval)

    async def _quote_loop(self) -> None:
        while not self._shutdown_event.is_set():
            await self._wait(self.quote_refresh)
            if self._shutdown_event.is_set():
                break
            await self.refresh_quotes()

    async def run(self) -> None:
        """
        Main bot loop.

        Starts the price feed, selects markets, then runs the evaluation
        and market-refresh loops until stopped or the kill switch appears.
        """
        logger.info(f"Starting ArbBot main loop (paper_mode={self.paper_mode})")

        self._shutdown_event.clear()
        self.state.is_running = True
        self.state.start_time = _utc_now()

        self.feed.start()
        await self._notify(
            self.notifier.notify_startup, self.mode_label, [str(a) for a in self.engine.assets]
        )

        try:
            await self.refresh_quotes()
            await asyncio.gather(self._tick_loop(), self._quote_loop())
        except asyncio.CancelledError:
            logger.info("Bot run cancelled")
        finally:
            self.feed.stop()
            self.state.is_running = False
            logger.info("ArbBot stopped")

    def stop(self) -> None:
        """
        Stop the bot gracefully.

        Sets the shutdown event to signal both loops to exit.
        """
        logger.info("Stopping ArbBot...")
        self._shutdown_event.set()
        self.state.is_running = False

    def start(self) -> asyncio.Task:
        """
        Start the bot as a background task.

        Returns:
            asyncio.Task that can be awaited or cancelled
        """
        return asyncio.create_task(self.run())

    def get_status(self) -> dict[str, Any]:
        """
        Get comprehensive bot status.

        Returns:
            Dictionary with bot state, engine status and feed stats
        """
        return {
            "bot_state": self.state.to_dict(),
            "engine": self.engine.get_status(),
            "feed": self.feed.get_stats(),
            "notifications": {
                "enabled": self.notifier.enabled,
                "sent": self.notifier.sent,
                "failed": self.notifier.failed,
            },
        }
