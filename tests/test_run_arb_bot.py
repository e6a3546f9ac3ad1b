"""
Tests for the run_arb_bot command-line helpers.

These tests verify:
- --status reports that only --live enables real trading
- The kill switch can be toggled from the CLI
"""

from unittest.mock import MagicMock

import pytest

import scripts.run_arb_bot as cli
from src.arb.models import Asset, MarketQuote


@pytest.fixture
def kill_switch(tmp_path, monkeypatch):
    path = tmp_path / ".kill_switch"
    monkeypatch.setattr(cli, "KILL_SWITCH_FILE", path)
    return path


@pytest.fixture
def finder(monkeypatch):
    instance = MagicMock()
    instance.find_best_quotes.return_value = {
        Asset.BTC: MarketQuote("c1", "y", 0.48, "n", 0.53, 15, "Bitcoin Up or Down", Asset.BTC)
    }
    monkeypatch.setattr(cli, "MarketFinder", MagicMock(return_value=instance))
    return instance


class TestShowStatus:
    """Tests for show_status."""

    def test_trading_mode_follows_live_flag(self, kill_switch, finder, capsys):
        cli.show_status([Asset.BTC])

        out = capsys.readouterr().out
        assert "Trading: PAPER unless started with --live" in out
        assert "Trading Mode" not in out
        assert "Kill Switch: Inactive" in out
        assert "BTC: Bitcoin Up or Down (15m)" in out

    def test_discovery_error_is_reported(self, kill_switch, finder, capsys):
        finder.find_best_quotes.side_effect = RuntimeError("gamma down")

        cli.show_status([Asset.BTC])

        assert "Error finding markets: gamma down" in capsys.readouterr().out


class TestKillSwitch:
    """Tests for the --kill / --resume helpers."""

    def test_activate_and_deactivate(self, kill_switch, finder, capsys):
        cli.activate_kill_switch("test")
        assert kill_switch.exists()

        cli.show_status([Asset.BTC])
        assert "ACTIVE (trading halted)" in capsys.readouterr().out

        cli.deactivate_kill_switch()
        assert not kill_switch.exists()
