"""
Threshold tables for opportunity evaluation.

These values were tuned by trial and error against live markets and are
business constants. Keys are (asset, resolution window in minutes); any
window not listed falls back to the "default" column.

Shorter windows and more volatile assets get smaller minimum moves; shorter
windows get larger probability multipliers because a given move is more
informative close to resolution.
"""

from dataclasses import dataclass, field
from typing import Mapping

from .models import Asset

DEFAULT_WINDOW = None

# Minimum |interval change| in percent before edge mode considers a bet
MIN_MOVE_PCT: dict[Asset, dict] = {
    Asset.BTC: {5: 0.02, 15: 0.04, 60: 0.08, 240: 0.12, DEFAULT_WINDOW: 0.06},
    Asset.ETH: {5: 0.05, 15: 0.10, 60: 0.20, 240: 0.30, DEFAULT_WINDOW: 0.15},
    Asset.SOL: {5: 0.04, 15: 0.08, 60: 0.15, 240: 0.25, DEFAULT_WINDOW: 0.10},
    Asset.XRP: {5: 0.04, 15: 0.08, 60: 0.15, 240: 0.25, DEFAULT_WINDOW: 0.10},
}

# Interval change -> probability shift
PROB_MULTIPLIER: dict = {5: 8.0, 15: 5.0, 60: 3.0, 240: 2.0, DEFAULT_WINDOW: 4.0}

# Minimum modelled edge in percentage points
MIN_EDGE_PCT: dict = {5: 0.3, 15: 0.5, 60: 1.0, 240: 1.5, DEFAULT_WINDOW: 0.5}

# Interval change -> confidence points
CONFIDENCE_MULTIPLIER: dict = {5: 30.0, 15: 20.0, 60: 15.0, 240: 10.0, DEFAULT_WINDOW: 20.0}

# Minimum |velocity| in percent for the reactive strategy
MIN_VELOCITY_PCT: dict[Asset, float] = {
    Asset.BTC: 0.02,
    Asset.ETH: 0.03,
    Asset.SOL: 0.04,
    Asset.XRP: 0.04,
}


def _by_window(table: Mapping, window_minutes: int) -> float:
    return table.get(window_minutes, table[DEFAULT_WINDOW])


@dataclass(frozen=True)
class ThresholdTables:
    """
    Lookup tables consumed by the evaluator.

    Defaults mirror the module constants; tests and alternative profiles
    can pass their own copies.
    """

    min_move_pct: Mapping[Asset, Mapping] = field(default_factory=lambda: MIN_MOVE_PCT)
    prob_multiplier: Mapping = field(default_factory=lambda: PROB_MULTIPLIER)
    min_edge_pct: Mapping = field(default_factory=lambda: MIN_EDGE_PCT)
    confidence_multiplier: Mapping = field(default_factory=lambda: CONFIDENCE_MULTIPLIER)
    min_velocity_pct: Mapping[Asset, float] = field(default_factory=lambda: MIN_VELOCITY_PCT)

    def min_move(self, asset: Asset, window_minutes: int) -> float:
        return _by_window(self.min_move_pct[asset], window_minutes)

    def prob_mult(self, window_minutes: int) -> float:
        return _by_window(self.prob_multiplier, window_minutes)

    def min_edge(self, window_minutes: int) -> float:
        return _by_window(self.min_edge_pct, window_minutes)

    def confidence_mult(self, window_minutes: int) -> float:
        return _by_window(self.confidence_multiplier, window_minutes)

    def min_velocity(self, asset: Asset) -> float:
        return self.min_velocity_pct[asset]


DEFAULT_TABLES = ThresholdTables()
