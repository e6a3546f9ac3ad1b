"""
Crypto latency arbitrage for Polymarket up/down markets.

This module provides tools for:
- Shared per-asset price history with velocity and momentum (PriceBook)
- Threshold tables and opportunity evaluation (edge and velocity modes)
- Composable entry filters (momentum, orderbook depth, volume, session hours)
- Position tracking with take-profit / stop-loss / time exits
- The engine facade that ties them together (CryptoArbEngine)
- Market discovery and quote refresh (MarketFinder)

The async runner lives in ``src.arb.bot`` and is imported from there.
"""

from .engine import CryptoArbEngine
from .evaluator import Decision, EvaluatorConfig, OpportunityEvaluator
from .market_finder import MarketFinder
from .models import (
    Asset,
    EvaluationMode,
    MarketQuote,
    MomentumDirection,
    MomentumSignal,
    OrderbookDepth,
    PriceSample,
    Signal,
    VolumeData,
)
from .position_tracker import (
    ExitConfig,
    ExitEvent,
    ExitReason,
    Position,
    PositionTracker,
    PositionTrackerError,
)
from .price_history import AssetSnapshot, PriceBook, PriceHistory
from .strategy_filters import FilterResult, FilterResults, StrategyConfig, StrategyFilter
from .thresholds import DEFAULT_TABLES, ThresholdTables

__all__ = [
    # Engine
    "CryptoArbEngine",
    # Evaluation
    "Decision",
    "EvaluatorConfig",
    "OpportunityEvaluator",
    "ThresholdTables",
    "DEFAULT_TABLES",
    # Filters
    "FilterResult",
    "FilterResults",
    "StrategyConfig",
    "StrategyFilter",
    # Prices
    "AssetSnapshot",
    "PriceBook",
    "PriceHistory",
    # Positions
    "ExitConfig",
    "ExitEvent",
    "ExitReason",
    "Position",
    "PositionTracker",
    "PositionTrackerError",
    # Markets
    "MarketFinder",
    # Types
    "Asset",
    "EvaluationMode",
    "MarketQuote",
    "MomentumDirection",
    "MomentumSignal",
    "OrderbookDepth",
    "PriceSample",
    "Signal",
    "VolumeData",
]
