"""
Tests for the ArbBot orchestrator.

These tests verify:
- A tick turns a fired signal into a paper fill and a tracked position
- Cooldown, per-asset exposure and kill switch gating
- Failed orders are reported as errors
- Exit rules update the estimated P&L
- Market switches reset the interval baseline
- The run loop starts and stops its collaborators
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from src.arb.bot import ArbBot, BotState, build_engine, resolve_assets
from src.arb.engine import CryptoArbEngine
from src.arb.evaluator import EvaluatorConfig
from src.arb.models import Asset, EvaluationMode, MarketQuote
from src.arb.position_tracker import ExitConfig
from src.arb.strategy_filters import StrategyConfig
from src.trading.executor import OrderResult, OrderStatus, PaperExecutor

# Wednesday 14:00 EST
SESSION = datetime(2026, 10, 14, 19, 0, tzinfo=timezone.utc)


# =============================================================================
# Fixtures
# =============================================================================


def btc_quote(condition_id="cond-btc", yes_ask=0.50, description="Bitcoin Up or Down - 15m"):
    return MarketQuote(
        condition_id=condition_id,
        yes_token_id=f"{condition_id}-yes",
        yes_ask=yes_ask,
        no_token_id=f"{condition_id}-no",
        no_ask=1.0 - yes_ask,
        window_minutes=15,
        description=description,
        asset=Asset.BTC,
    )


@pytest.fixture
def engine():
    config = EvaluatorConfig(
        mode=EvaluationMode.VELOCITY,
        max_position_usd=10.0,
        strategy=StrategyConfig.disabled(),
    )
    return CryptoArbEngine(
        evaluator_config=config,
        exit_config=ExitConfig.standard(),
        assets=[Asset.BTC, Asset.ETH],
        clock=lambda: 0.0,
        wall_clock=lambda: SESSION,
    )


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.enabled = False
    mock.sent = 0
    mock.failed = 0
    return mock


@pytest.fixture
def kill_switch(tmp_path):
    return tmp_path / ".kill_switch"


@pytest.fixture
def finder():
    mock = MagicMock()
    mock.find_best_quotes.return_value = {}
    return mock


@pytest.fixture
def bot(engine, notifier, finder, kill_switch):
    return ArbBot(
        paper_mode=True,
        engine=engine,
        market_finder=finder,
        executor=PaperExecutor(),
        notifier=notifier,
        feed=MagicMock(),
        check_interval=0.01,
        quote_refresh=0.01,
        status_interval=3600.0,
        kill_switch_file=kill_switch,
        clock=lambda: 0.0,
    )


@pytest.fixture
def rallying_bot(bot):
    """Bot whose BTC market has a +0.1% move inside the velocity window."""
    bot.engine.record_price(Asset.BTC, 100_000.0, timestamp=0.0)
    bot.engine.record_price(Asset.BTC, 100_100.0, timestamp=1.0)
    bot.engine.set_quote(btc_quote())
    return bot


# =============================================================================
# Test: BotState
# =============================================================================


class TestBotState:
    """Tests for BotState."""

    def test_cooldown(self):
        state = BotState(last_trade_at=100.0)

        assert state.can_trade(219.9, 120.0) is False
        assert state.can_trade(220.0, 120.0) is True
        assert BotState().can_trade(0.0, 120.0) is True

    def test_to_dict(self):
        data = BotState(trades_executed=2, estimated_pnl=1.23456).to_dict()

        assert data["trades_executed"] == 2
        assert data["estimated_pnl"] == 1.2346
        assert data["uptime_seconds"] == 0

    def test_resolve_assets(self):
        assert resolve_assets(["BTC", "ethereum", "doge", "btc"]) == [Asset.BTC, Asset.ETH]


# =============================================================================
# Test: Ticks
# =============================================================================


class TestRunTick:
    """Tests for a single evaluation tick."""

    @pytest.mark.asyncio
    async def test_signal_becomes_position(self, rallying_bot):
        result = await rallying_bot.run_tick(now=1.0)

        assert result["signals"] == 1
        assert result["errors"] == []
        assert result["actions"] == ["Bought BTC UP 20.00 @ 0.500"]
        assert rallying_bot.state.trades_executed == 1
        assert rallying_bot.state.last_trade_at == 1.0
        assert rallying_bot.state.tick_count == 1

        position = rallying_bot.engine.positions.get_position("cond-btc-yes")
        assert position.asset is Asset.BTC
        assert position.reference_price == 100_100.0
        assert rallying_bot.engine.can_open(Asset.BTC) is False

    @pytest.mark.asyncio
    async def test_cooldown_skips_signal(self, rallying_bot):
        rallying_bot.state.last_trade_at = 0.5

        result = await rallying_bot.run_tick(now=1.0)

        assert result["actions"] == ["Skip BTC: trade cooldown active"]
        assert rallying_bot.state.trades_executed == 0

    @pytest.mark.asyncio
    async def test_open_position_skips_signal(self, rallying_bot):
        rallying_bot.engine.positions.open_or_average("other", 0.40, 5, asset=Asset.BTC)

        result = await rallying_bot.run_tick(now=1.0)

        assert result["actions"] == ["Skip BTC: position already open"]

    @pytest.mark.asyncio
    async def test_kill_switch_halts(self, rallying_bot, kill_switch):
        kill_switch.write_text("stop")

        result = await rallying_bot.run_tick(now=1.0)

        assert result["actions"] == ["HALTED: Kill switch active"]
        assert result["signals"] == 0
        assert rallying_bot.state.tick_count == 1
        assert rallying_bot.state.trades_executed == 0

    @pytest.mark.asyncio
    async def test_failed_order_is_an_error(self, rallying_bot):
        rallying_bot.executor = MagicMock()
        rallying_bot.executor.place_order.return_value = OrderResult(
            success=False, status=OrderStatus.REJECTED, message="Order rejected: not enough balance"
        )

        result = await rallying_bot.run_tick(now=1.0)

        assert result["errors"] == ["Order failed for BTC: Order rejected: not enough balance"]
        assert rallying_bot.state.trades_failed == 1
        assert rallying_bot.state.last_trade_at is None
        assert rallying_bot.engine.can_open(Asset.BTC) is True

    @pytest.mark.asyncio
    async def test_executor_exception_is_an_error(self, rallying_bot):
        rallying_bot.executor = MagicMock()
        rallying_bot.executor.place_order.side_effect = RuntimeError("socket closed")

        result = await rallying_bot.run_tick(now=1.0)

        assert result["errors"] == ["Order failed for BTC: socket closed"]

    @pytest.mark.asyncio
    async def test_take_profit_exit(self, bot):
        bot.engine.set_quote(btc_quote(yes_ask=0.60))
        bot.engine.open_position("cond-btc-yes", 0.50, 10)

        result = await bot.run_tick(now=60.0)

        assert result["actions"] == ["Exit take_profit cond-btc-yes: +20.00%"]
        assert bot.state.exits == 1
        assert bot.state.estimated_pnl == pytest.approx(1.0)
        assert len(bot.engine.positions) == 0

    @pytest.mark.asyncio
    async def test_notifications_when_enabled(self, rallying_bot, notifier):
        notifier.enabled = True

        await rallying_bot.run_tick(now=1.0)

        notifier.notify_signal.assert_called_once()
        assert notifier.notify_signal.call_args.args[2] == "UP"
        args = notifier.notify_trade.call_args.args
        assert args[0] == "BTC"
        assert args[-1] is True

    @pytest.mark.asyncio
    async def test_blocked_signal_is_notified_once(self, rallying_bot, notifier):
        notifier.enabled = True
        rallying_bot.state.last_trade_at = 0.5

        await rallying_bot.run_tick(now=1.0)
        await rallying_bot.run_tick(now=1.0)

        notifier.notify_blocked.assert_called_once_with("BTC", "trade cooldown active")
        notifier.notify_signal.assert_not_called()

    @pytest.mark.asyncio
    async def test_new_block_reason_is_notified(self, rallying_bot, notifier):
        notifier.enabled = True
        rallying_bot.state.last_trade_at = 0.5
        await rallying_bot.run_tick(now=1.0)

        rallying_bot.state.last_trade_at = None
        rallying_bot.engine.positions.open_or_average("other", 0.40, 5, asset=Asset.BTC)
        await rallying_bot.run_tick(now=1.0)

        reasons = [c.args[1] for c in notifier.notify_blocked.call_args_list]
        assert reasons == ["trade cooldown active", "position already open"]

    def test_build_engine_follows_filter_flags(self, monkeypatch):
        monkeypatch.setattr("src.arb.bot.USE_MOMENTUM", False)
        monkeypatch.setattr("src.arb.bot.ENABLE_TIME_FILTER", False)

        engine = build_engine(mode="edge", assets=[Asset.BTC], exit_profile="standard")

        chain = engine.evaluator.filters.config
        assert engine.config.mode is EvaluationMode.EDGE
        assert chain.enable_momentum is False
        assert chain.enable_time is False
        assert chain.enable_orderbook is True


# =============================================================================
# Test: Markets
# =============================================================================


class TestQuotes:
    """Tests for market selection."""

    def test_switch_resets_baseline(self, bot):
        bot.engine.record_price(Asset.BTC, 100_000.0, timestamp=0.0)

        assert bot.apply_quotes({Asset.BTC: btc_quote()}) == [
            "BTC: switched to Bitcoin Up or Down - 15m"
        ]

        bot.engine.record_price(Asset.BTC, 100_500.0, timestamp=1.0)
        assert bot.apply_quotes({Asset.BTC: btc_quote(yes_ask=0.52)}) == []
        assert bot.engine.get_quote(Asset.BTC).yes_ask == 0.52
        assert bot.engine.prices.snapshot(Asset.BTC).baseline == 100_000.0

        bot.apply_quotes({Asset.BTC: btc_quote(condition_id="next", description="Next window")})
        assert bot.engine.prices.snapshot(Asset.BTC).baseline == 100_500.0

    def test_missing_market_clears_quote(self, bot):
        bot.apply_quotes({Asset.BTC: btc_quote()})

        changes = bot.apply_quotes({})

        assert changes == ["BTC: dropped Bitcoin Up or Down - 15m"]
        assert bot.engine.get_quote(Asset.BTC) is None

    @pytest.mark.asyncio
    async def test_refresh_quotes(self, bot, finder):
        finder.find_best_quotes.return_value = {Asset.BTC: btc_quote()}

        changes = await bot.refresh_quotes()

        assert len(changes) == 1
        assert bot.engine.get_quote(Asset.BTC) is not None
        finder.find_best_quotes.assert_called_once_with({})

    @pytest.mark.asyncio
    async def test_refresh_passes_current_markets(self, bot, finder):
        bot.engine.set_quote(btc_quote())
        finder.find_best_quotes.return_value = {Asset.BTC: btc_quote(yes_ask=0.45)}

        assert await bot.refresh_quotes() == []
        finder.find_best_quotes.assert_called_once_with({Asset.BTC: "cond-btc"})

    @pytest.mark.asyncio
    async def test_refresh_failure_is_recorded(self, bot, finder):
        finder.find_best_quotes.side_effect = RuntimeError("gamma down")

        assert await bot.refresh_quotes() == []
        assert bot.state.last_error == "Market refresh failed: gamma down"


# =============================================================================
# Test: Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for run / stop and status."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, bot):
        task = bot.start()
        await asyncio.sleep(0.1)

        assert bot.state.is_running is True
        bot.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert bot.state.is_running is False
        assert bot.state.tick_count >= 1
        bot.feed.start.assert_called_once()
        bot.feed.stop.assert_called_once()
        bot.market_finder.find_best_quotes.assert_called()

    @pytest.mark.asyncio
    async def test_kill_switch_stops_run(self, bot, kill_switch):
        kill_switch.write_text("stop")

        await asyncio.wait_for(bot.run(), timeout=2.0)

        assert bot.state.is_running is False
        assert bot.state.tick_count == 0

    @pytest.mark.asyncio
    async def test_report_status(self, rallying_bot):
        report = await rallying_bot.report_status(now=1.0)

        assert "VERDICT" in report

    @pytest.mark.asyncio
    async def test_report_status_sends_summary(self, bot, notifier):
        notifier.enabled = True
        bot.engine.open_position("tok", 0.50, 10)
        bot.state.trades_executed = 3
        bot.state.estimated_pnl = -1.5

        await bot.report_status(now=1.0)

        notifier.notify_status.assert_called_once_with(3, 1, -1.5, "PAPER")
        notifier.notify_status_analysis.assert_called_once()

    def test_get_status(self, bot):
        bot.feed.get_stats.return_value = {"running": False}

        status = bot.get_status()

        assert status["bot_state"]["paper_mode"] is True
        assert status["feed"] == {"running": False}
        assert status["notifications"]["enabled"] is False
        assert "quotes" in status["engine"]
