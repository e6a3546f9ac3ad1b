#!/usr/bin/env python3
"""
Run Crypto Latency Arbitrage Bot

Command-line interface for the crypto arbitrage bot on Polymarket up/down
markets. Binance spot trades drive the signals; orders are BUY / FOK.

Usage:
    # Paper trading (default, safe)
    python scripts/run_arb_bot.py

    # Edge mode instead of velocity mode
    python scripts/run_arb_bot.py --mode edge

    # Only BTC and ETH, conservative exits
    python scripts/run_arb_bot.py --assets btc,eth --exit-profile conservative

    # Check status (non-blocking, shows current state)
    python scripts/run_arb_bot.py --status

    # Run for a specific duration (in minutes)
    python scripts/run_arb_bot.py --duration 60

    # Live trading (CAUTION - requires proper credentials)
    python scripts/run_arb_bot.py --live

    # Activate / deactivate kill switch
    python scripts/run_arb_bot.py --kill
    python scripts/run_arb_bot.py --resume

Safety Notes:
    - Paper mode is the default. Real money is NEVER risked unless --live is passed.
    - Kill switch: Create .kill_switch file in project root to halt all trading.
    - Live mode requires POLYMARKET_PRIVATE_KEY and POLYMARKET_FUNDER in .env

Environment Variables:
    POLYMARKET_PRIVATE_KEY - Private key for signing orders
    POLYMARKET_FUNDER - Proxy wallet address holding funds
    EVALUATION_MODE - "velocity" (default) or "edge"
    MAX_POSITION_USD / MIN_POSITION_USD - Stake bounds per trade
    TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID - Optional notifications
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.arb.bot import ArbBot, build_engine, resolve_assets
from src.arb.market_finder import MarketFinder
from src.config import (
    ASSETS,
    EVALUATION_MODE,
    EXIT_PROFILE,
    KILL_SWITCH_FILE,
    LOGS_DIR,
    MAX_POSITION_USD,
    MIN_POSITION_USD,
    MIN_TRADE_INTERVAL_SECONDS,
    POLYMARKET_FUNDER,
    POLYMARKET_PRIVATE_KEY,
    TELEGRAM_BOT_TOKEN,
    TELEGRAM_CHAT_ID,
)
from src.trading.executor import ExecutorError, check_kill_switch


def setup_logging(verbose: bool = False) -> Path:
    """Configure console and file logging for the bot."""
    level = logging.DEBUG if verbose else logging.INFO

    console_format = "%(asctime)s [%(levelname)s] %(message)s"
    file_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(console_format, datefmt="%H:%M:%S"))

    log_file = LOGS_DIR / f"arb_bot_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(file_format))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("websocket").setLevel(logging.WARNING)

    print(f"Logs will be written to: {log_file}")
    return log_file


def show_status(assets: list) -> None:
    """Show configuration and live markets without starting the bot."""
    print("\n" + "=" * 70)
    print("Crypto Arbitrage Bot Status")
    print("=" * 70)

    active = check_kill_switch(KILL_SWITCH_FILE)
    print(f"\nKill Switch: {'ACTIVE (trading halted)' if active else 'Inactive'}")
    print(f"Kill Switch Path: {KILL_SWITCH_FILE}")

    print("\nConfiguration:")
    print("  Trading: PAPER unless started with --live")
    print(f"  Evaluation Mode: {EVALUATION_MODE}")
    print(f"  Assets: {', '.join(str(a) for a in assets)}")
    print(f"  Position Size: ${MIN_POSITION_USD:.2f} - ${MAX_POSITION_USD:.2f}")
    print(f"  Trade Cooldown: {MIN_TRADE_INTERVAL_SECONDS:.0f}s")
    print(f"  Exit Profile: {EXIT_PROFILE}")

    print("\nCredentials:")
    has_key = bool(POLYMARKET_PRIVATE_KEY)
    has_funder = bool(POLYMARKET_FUNDER)
    print(f"  Private Key: {'Configured' if has_key else 'NOT CONFIGURED'}")
    print(f"  Funder Address: {'Configured' if has_funder else 'NOT CONFIGURED'}")
    print(f"  Live Trading: {'Ready' if (has_key and has_funder) else 'NOT AVAILABLE'}")
    print(f"  Telegram: {'Enabled' if (TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID) else 'Disabled'}")

    print("\nMarket Discovery:")
    try:
        quotes = MarketFinder(assets=assets).find_best_quotes()
        print(f"  Tradeable markets: {len(quotes)}")
        for asset, quote in quotes.items():
            print(f"    - {asset}: {quote.description} ({quote.window_minutes}m)")
            print(f"      YES: {quote.yes_ask:.3f} | NO: {quote.no_ask:.3f}")
    except Exception as e:
        print(f"  Error finding markets: {e}")

    print("\n" + "=" * 70)


def activate_kill_switch(reason: str = "CLI activation") -> None:
    """Activate the kill switch to halt all trading."""
    KILL_SWITCH_FILE.write_text(f"{datetime.now().isoformat()} {reason}\n")
    print(f"\nKill switch ACTIVATED: {reason}")
    print(f"Kill switch file: {KILL_SWITCH_FILE}")
    print("\nAll trading has been halted.")
    print("To resume, run: python scripts/run_arb_bot.py --resume")


def deactivate_kill_switch() -> None:
    """Deactivate the kill switch to allow trading."""
    if KILL_SWITCH_FILE.exists():
        KILL_SWITCH_FILE.unlink()
    print("\nKill switch DEACTIVATED")
    print("Trading is now allowed.")


async def run_bot(
    paper_mode: bool,
    duration_minutes: int,
    mode: str,
    assets: list,
    exit_profile: str,
) -> None:
    """
    Run the arbitrage bot.

    Args:
        paper_mode: If True, run in paper trading mode
        duration_minutes: How long to run (0 = unlimited)
        mode: Evaluation mode ("velocity" or "edge")
        assets: Assets to watch
        exit_profile: "standard" or "conservative"
    """
    mode_str = "PAPER" if paper_mode else "LIVE"

    print("\n" + "=" * 70)
    print(f"Starting Crypto Arbitrage Bot ({mode_str} MODE)")
    print("=" * 70)

    if not paper_mode:
        print("\n" + "!" * 70)
        print("WARNING: LIVE TRADING MODE")
        print("Real money will be at risk!")
        print("!" * 70)

        confirm = input("\nType 'LIVE' to confirm live trading: ")
        if confirm != "LIVE":
            print("Live trading cancelled.")
            return

    print("\nConfiguration:")
    print(f"  Mode: {mode_str}")
    print(f"  Evaluation: {mode}")
    print(f"  Assets: {', '.join(str(a) for a in assets)}")
    print(f"  Exit Profile: {exit_profile}")
    print(f"  Duration: {duration_minutes} minutes" if duration_minutes > 0 else "  Duration: Unlimited")
    print("\nPress Ctrl+C to stop\n")

    try:
        bot = ArbBot(
            paper_mode=paper_mode,
            engine=build_engine(mode=mode, assets=assets, exit_profile=exit_profile),
        )
    except ExecutorError as e:
        print(f"Error: {e}")
        print("Check that POLYMARKET_PRIVATE_KEY and POLYMARKET_FUNDER are set.")
        return

    try:
        if duration_minutes > 0:
            bot_task = bot.start()
            try:
                await asyncio.wait_for(bot_task, timeout=duration_minutes * 60)
            except asyncio.TimeoutError:
                print(f"\nDuration limit reached ({duration_minutes} minutes)")
        else:
            await bot.run()

    except KeyboardInterrupt:
        print("\nShutdown requested by user...")
    finally:
        bot.stop()

        print("\n" + "=" * 70)
        print("Final Status")
        print("=" * 70)

        status = bot.get_status()
        bot_state = status["bot_state"]
        engine = status["engine"]

        print("\nSession Summary:")
        print(f"  Mode: {mode_str}")
        print(f"  Ticks completed: {bot_state['tick_count']}")
        print(f"  Signals emitted: {engine['signals_emitted']}")
        print(f"  Signals filtered: {engine['signals_filtered']}")
        print(f"  Trades executed: {bot_state['trades_executed']}")
        print(f"  Trades failed: {bot_state['trades_failed']}")
        print(f"  Exits: {bot_state['exits']}")
        print(f"  Estimated P&L: ${bot_state['estimated_pnl']:+.2f}")
        print(f"  Open positions: {engine['positions']['open_positions']}")
        print(f"  Uptime: {bot_state['uptime_seconds']} seconds")

        if bot_state.get("last_error"):
            print(f"\nLast Error: {bot_state['last_error']}")

        print("\n" + "=" * 70)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run the Crypto Latency Arbitrage Bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_arb_bot.py                      # Paper trading (default)
  python scripts/run_arb_bot.py --mode edge          # Edge mode
  python scripts/run_arb_bot.py --status             # Check status
  python scripts/run_arb_bot.py --duration 60        # Run for 60 minutes
  python scripts/run_arb_bot.py --live               # Live trading (CAUTION)
  python scripts/run_arb_bot.py --kill               # Activate kill switch
        """,
    )

    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--live",
        action="store_true",
        help="Enable live trading (CAUTION: real money at risk)",
    )
    mode_group.add_argument(
        "--status",
        action="store_true",
        help="Show current bot status and exit",
    )
    mode_group.add_argument(
        "--kill",
        action="store_true",
        help="Activate kill switch to halt all trading",
    )
    mode_group.add_argument(
        "--resume",
        action="store_true",
        help="Deactivate kill switch to allow trading",
    )

    parser.add_argument(
        "--mode",
        choices=["velocity", "edge"],
        default=EVALUATION_MODE,
        help=f"Evaluation mode (default: {EVALUATION_MODE})",
    )
    parser.add_argument(
        "--assets",
        default=",".join(ASSETS),
        help=f"Comma-separated assets to watch (default: {','.join(ASSETS)})",
    )
    parser.add_argument(
        "--exit-profile",
        choices=["standard", "conservative"],
        default=EXIT_PROFILE,
        help=f"Exit thresholds (default: {EXIT_PROFILE})",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        metavar="MINUTES",
        help="How long to run in minutes (0 = unlimited, default: 0)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()
    assets = resolve_assets(args.assets.split(","))
    if not assets:
        parser.error(f"No known assets in '{args.assets}'")

    if args.status:
        show_status(assets)
        return

    if args.kill:
        activate_kill_switch("CLI --kill flag")
        return

    if args.resume:
        deactivate_kill_switch()
        return

    setup_logging(verbose=args.verbose)

    try:
        asyncio.run(
            run_bot(
                paper_mode=not args.live,
                duration_minutes=args.duration,
                mode=args.mode,
                assets=assets,
                exit_profile=args.exit_profile,
            )
        )
    except Exception as e:
        print(f"\nFatal error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
