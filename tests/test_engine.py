"""
Integration tests for the CryptoArbEngine facade.

These tests verify:
- End-to-end signal flow from price ticks to a sized Signal
- Position registration from signals and exit evaluation
- The status report's NO DATA / quiet / filtered / firing verdicts
"""

from datetime import datetime, timezone

import pytest

from src.arb.engine import CryptoArbEngine
from src.arb.evaluator import EvaluatorConfig
from src.arb.models import Asset, EvaluationMode, MarketQuote
from src.arb.position_tracker import ExitConfig, ExitReason
from src.arb.strategy_filters import StrategyConfig

# Wednesday 14:00 EST
SESSION = datetime(2026, 10, 14, 19, 0, tzinfo=timezone.utc)
# Saturday 10:00 EST
SATURDAY = datetime(2026, 10, 17, 15, 0, tzinfo=timezone.utc)


# =============================================================================
# Fixtures
# =============================================================================


def btc_quote(yes_ask=0.55, no_ask=0.47, condition_id="cond-btc"):
    return MarketQuote(
        condition_id=condition_id,
        yes_token_id="btc-yes",
        yes_ask=yes_ask,
        no_token_id="btc-no",
        no_ask=no_ask,
        window_minutes=15,
        description="Bitcoin Up or Down - 15m",
        asset=Asset.BTC,
    )


def make_engine(mode=EvaluationMode.EDGE, strategy=None, **kwargs):
    config = EvaluatorConfig(
        mode=mode,
        max_position_usd=10.0,
        min_position_usd=1.0,
        strategy=strategy or StrategyConfig(),
        **kwargs,
    )
    return CryptoArbEngine(
        evaluator_config=config,
        exit_config=ExitConfig.standard(),
        assets=[Asset.BTC, Asset.ETH],
        clock=lambda: 0.0,
        wall_clock=lambda: SESSION,
    )


@pytest.fixture
def edge_engine():
    engine = make_engine()
    # Strong, consistent, accelerating rally of +2%
    for price, t in ((100_000.0, 0.0), (100_100.0, 0.3), (100_400.0, 0.6), (102_000.0, 1.0)):
        engine.record_price(Asset.BTC, price, timestamp=t)
    return engine


# =============================================================================
# Test: End-to-end
# =============================================================================


class TestEndToEnd:
    """Price ticks in, Signal out."""

    def test_rally_fires_up_signal(self, edge_engine):
        signal = edge_engine.evaluate(Asset.BTC, btc_quote(), now=1.0)

        assert signal is not None
        assert signal.bet_up is True
        assert signal.edge_pct > 0
        assert signal.confidence <= 100
        assert 1.0 <= signal.recommended_size_usd <= 10.0
        assert edge_engine.signals_emitted == 1

    def test_ask_above_max_buy_price_gives_no_signal(self, edge_engine):
        assert edge_engine.evaluate(Asset.BTC, btc_quote(yes_ask=0.995), now=1.0) is None
        decision = edge_engine.last_decision(Asset.BTC)
        assert "above max buy price" in decision.reason

    def test_stored_quote_is_used(self, edge_engine):
        edge_engine.set_quote(btc_quote())

        signals = edge_engine.evaluate_all(now=1.0)

        assert [s.asset for s in signals] == [Asset.BTC]

    def test_evaluate_without_quote(self, edge_engine):
        assert edge_engine.evaluate(Asset.BTC, now=1.0) is None
        assert edge_engine.last_decision(Asset.BTC).reason == "No market quote"

    def test_baseline_reset_starts_new_interval(self, edge_engine):
        edge_engine.reset_interval_baseline(Asset.BTC)

        assert edge_engine.evaluate(Asset.BTC, btc_quote(), now=1.0) is None
        assert edge_engine.last_decision(Asset.BTC).reason.startswith("Move too small")

    def test_invalid_ticks_are_dropped(self, edge_engine):
        assert edge_engine.record_price(Asset.BTC, -1.0, timestamp=2.0) is False
        assert edge_engine.record_price(Asset.BTC, 101_000.0, timestamp=0.5) is False
        assert edge_engine.prices.current_price(Asset.BTC) == 102_000.0


# =============================================================================
# Test: Positions
# =============================================================================


class TestPositions:
    """Signal to position to exit."""

    def test_signal_position_blocks_asset(self, edge_engine):
        signal = edge_engine.evaluate(Asset.BTC, btc_quote(), now=1.0)

        position = edge_engine.open_position(
            signal.token_id, signal.buy_price, signal.shares, signal=signal
        )

        assert position.asset is Asset.BTC
        assert position.reference_price == 102_000.0
        assert position.window_minutes == 15
        assert edge_engine.can_open(Asset.BTC) is False
        assert edge_engine.can_open(Asset.ETH) is True

    def test_exits_use_latest_underlying_price(self, edge_engine):
        signal = edge_engine.evaluate(Asset.BTC, btc_quote(), now=1.0)
        edge_engine.open_position(signal.token_id, signal.buy_price, signal.shares, signal=signal)

        # -5.1% underlying move on an UP bet, doubled, is past the 10% stop
        edge_engine.record_price(Asset.BTC, 96_798.0, timestamp=100.0)
        exits = edge_engine.evaluate_exits(now=100.0)

        assert len(exits) == 1
        assert exits[0].reason is ExitReason.STOP_LOSS
        assert edge_engine.can_open(Asset.BTC) is True

    def test_reduce_and_remove(self, edge_engine):
        edge_engine.open_position("tok", 0.5, 10)

        assert edge_engine.reduce_position("tok", 4).shares == 6
        assert edge_engine.remove_position("tok").shares == 6


# =============================================================================
# Test: Status report
# =============================================================================


class TestStatusReport:
    """The report distinguishes quiet, filtered and no-data states."""

    def test_no_data(self):
        engine = make_engine()

        report = engine.status_report(now=0.0)

        assert "BTC: No price data available" in report
        assert "VERDICT: NO DATA" in report

    def test_very_quiet(self):
        engine = make_engine(mode=EvaluationMode.VELOCITY)
        engine.record_price(Asset.BTC, 100_000.0, timestamp=0.0)
        engine.record_price(Asset.BTC, 100_000.0, timestamp=1.0)
        engine.set_quote(btc_quote(yes_ask=0.50))
        engine.evaluate_all(now=1.0)

        report = engine.status_report(now=1.0)

        assert "VERDICT: VERY QUIET" in report
        assert "0% of threshold ⚪" in report
        assert "Velocity too low" in report

    def test_signals_filtered(self):
        engine = make_engine(mode=EvaluationMode.VELOCITY)
        engine.record_price(Asset.BTC, 100_000.0, timestamp=0.0)
        engine.record_price(Asset.BTC, 100_100.0, timestamp=1.0)
        engine.set_quote(btc_quote(yes_ask=0.50))

        assert engine.evaluate_all(at=SATURDAY, now=1.0) == []
        report = engine.status_report(now=1.0)

        assert "VERDICT: SIGNALS DETECTED but filtered" in report
        assert "Blocking reasons:" in report
        assert "Weekend trading disabled: Saturday" in report
        assert engine.signals_filtered == 1

    def test_signals_firing(self):
        engine = make_engine(mode=EvaluationMode.VELOCITY, strategy=StrategyConfig.disabled())
        engine.record_price(Asset.BTC, 100_000.0, timestamp=0.0)
        engine.record_price(Asset.BTC, 100_100.0, timestamp=1.0)
        engine.set_quote(btc_quote(yes_ask=0.50))

        assert len(engine.evaluate_all(now=1.0)) == 1
        report = engine.status_report(now=1.0)

        assert "VERDICT: SIGNALS FIRING on BTC" in report
        assert "Last check: SIGNAL" in report
        assert "⬆" in report

    def test_expensive_market_is_flagged(self):
        engine = make_engine(mode=EvaluationMode.VELOCITY)
        engine.record_price(Asset.BTC, 100_000.0, timestamp=0.0)
        engine.set_quote(btc_quote(yes_ask=0.995, no_ask=0.01))

        report = engine.status_report(now=0.0)

        assert "YES=99.5c NO=1.0c TOO HIGH" in report
        assert "Open positions: 0" in report

    def test_get_status(self, edge_engine):
        edge_engine.set_quote(btc_quote())

        status = edge_engine.get_status()

        assert status["mode"] == "edge"
        assert status["prices"]["btc"] == 102_000.0
        assert status["prices"]["eth"] is None
        assert status["quotes"]["btc"]["yes_ask"] == 0.55
        assert status["positions"]["open_positions"] == 0
