"""
Composable entry filters for crypto arbitrage signals.

Four independent gates, each returning a FilterResult:

1. SmartMomentumFilter - trend must agree with the bet and be strong,
   consistent and (optionally) accelerating.
2. OrderbookDepthFilter - enough resting liquidity on the side we buy.
3. VolumeSurgeFilter - the move must come with real volume.
4. TimeOfDayFilter - only trade during configured US session hours.

StrategyFilter runs the enabled filters and collects the outcomes into
FilterResults. A filter that is disabled, or whose input is missing, is
recorded as None and never blocks.

Example:
    >>> chain = StrategyFilter(StrategyConfig())
    >>> results = chain.check_all(
    ...     momentum_score=0.6,
    ...     consistency=0.9,
    ...     is_accelerating=True,
    ...     direction_matches=True,
    ...     orderbook=None,
    ...     volume=None,
    ...     at=datetime(2026, 3, 4, 15, 0, tzinfo=timezone.utc),
    ...     buying_yes=True,
    ... )
    >>> results.all_passed()
    True
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from .models import OrderbookDepth, VolumeData

MIN_MOMENTUM_SCORE = 0.4
MIN_MOMENTUM_CONSISTENCY = 0.8
MIN_ORDERBOOK_DEPTH_USD = 500.0
VOLUME_SURGE_MULTIPLIER = 2.0
MIN_CURRENT_VOLUME = 1000.0

# US session hours in the trading timezone, end-exclusive
TRADING_START_HOUR = 9
TRADING_END_HOUR = 16

# Fixed UTC-5 offset; daylight saving is not applied
TRADING_TZ = timezone(timedelta(hours=-5), "EST")


@dataclass(frozen=True)
class FilterResult:
    """Pass, or fail with a human-readable reason."""

    passed: bool
    reason: Optional[str] = None

    @classmethod
    def pass_(cls) -> "FilterResult":
        return cls(passed=True)

    @classmethod
    def fail(cls, reason: str) -> "FilterResult":
        return cls(passed=False, reason=reason)

    def __bool__(self) -> bool:
        return self.passed


@dataclass(frozen=True)
class MomentumFilterConfig:
    min_score: float = MIN_MOMENTUM_SCORE
    min_consistency: float = MIN_MOMENTUM_CONSISTENCY
    require_acceleration: bool = True


class SmartMomentumFilter:
    """Only trade with strong, consistent momentum in the bet direction."""

    def __init__(self, config: Optional[MomentumFilterConfig] = None):
        self.config = config or MomentumFilterConfig()

    def check(
        self,
        momentum_score: float,
        consistency: float,
        is_accelerating: bool,
        direction_matches: bool,
    ) -> FilterResult:
        if not direction_matches:
            return FilterResult.fail("Momentum direction doesn't match price direction")

        if abs(momentum_score) < self.config.min_score:
            return FilterResult.fail(
                f"Momentum too weak: {abs(momentum_score):.2f} < {self.config.min_score:.2f}"
            )

        if consistency < self.config.min_consistency:
            return FilterResult.fail(
                f"Momentum not consistent: {consistency:.2f} < {self.config.min_consistency:.2f}"
            )

        if self.config.require_acceleration and not is_accelerating:
            return FilterResult.fail("Momentum is decelerating")

        return FilterResult.pass_()


@dataclass(frozen=True)
class OrderbookFilterConfig:
    min_depth_usd: float = MIN_ORDERBOOK_DEPTH_USD
    check_both_sides: bool = False


class OrderbookDepthFilter:
    """Require resting liquidity on the side being bought."""

    def __init__(self, config: Optional[OrderbookFilterConfig] = None):
        self.config = config or OrderbookFilterConfig()

    def check(self, depth: OrderbookDepth, buying_yes: bool) -> FilterResult:
        relevant = depth.ask_depth_usd if buying_yes else depth.bid_depth_usd
        if relevant < self.config.min_depth_usd:
            return FilterResult.fail(
                f"Insufficient orderbook depth: ${relevant:.0f} < ${self.config.min_depth_usd:.0f}"
            )

        if self.config.check_both_sides:
            other = depth.bid_depth_usd if buying_yes else depth.ask_depth_usd
            floor = self.config.min_depth_usd * 0.5
            if other < floor:
                return FilterResult.fail(f"Other side too thin: ${other:.0f} < ${floor:.0f}")

        return FilterResult.pass_()


@dataclass(frozen=True)
class VolumeSurgeFilterConfig:
    surge_multiplier: float = VOLUME_SURGE_MULTIPLIER
    min_current_volume: float = MIN_CURRENT_VOLUME


class VolumeSurgeFilter:
    """Require the current volume to be both material and elevated."""

    def __init__(self, config: Optional[VolumeSurgeFilterConfig] = None):
        self.config = config or VolumeSurgeFilterConfig()

    def check(self, volume: VolumeData) -> FilterResult:
        if volume.current_volume < self.config.min_current_volume:
            return FilterResult.fail(
                f"Volume too low: {volume.current_volume:.0f} < {self.config.min_current_volume:.0f}"
            )

        # No trailing average means no surge check
        if volume.average_volume > 0:
            ratio = volume.current_volume / volume.average_volume
            if ratio < self.config.surge_multiplier:
                return FilterResult.fail(
                    f"No volume surge: {ratio:.1f}x < {self.config.surge_multiplier:.1f}x"
                )

        return FilterResult.pass_()


@dataclass(frozen=True)
class TimeFilterConfig:
    start_hour: int = TRADING_START_HOUR
    end_hour: int = TRADING_END_HOUR
    allow_weekends: bool = False
    tz: timezone = TRADING_TZ


class TimeOfDayFilter:
    """Only trade inside the configured session window."""

    def __init__(self, config: Optional[TimeFilterConfig] = None):
        self.config = config or TimeFilterConfig()

    def check(self, at: datetime) -> FilterResult:
        """
        Args:
            at: Evaluation time. Naive datetimes are taken as UTC.
        """
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        local = at.astimezone(self.config.tz)
        hour = local.hour
        tz_name = local.tzname() or "local"

        if hour < self.config.start_hour or hour >= self.config.end_hour:
            return FilterResult.fail(
                f"Outside trading hours: {hour}:00 {tz_name} "
                f"(allowed: {self.config.start_hour}:00-{self.config.end_hour}:00)"
            )

        if not self.config.allow_weekends and local.weekday() >= 5:
            return FilterResult.fail(f"Weekend trading disabled: {local.strftime('%A')}")

        return FilterResult.pass_()


@dataclass(frozen=True)
class StrategyConfig:
    """Per-filter configuration plus enable flags."""

    momentum: MomentumFilterConfig = field(default_factory=MomentumFilterConfig)
    orderbook: OrderbookFilterConfig = field(default_factory=OrderbookFilterConfig)
    volume: VolumeSurgeFilterConfig = field(default_factory=VolumeSurgeFilterConfig)
    time: TimeFilterConfig = field(default_factory=TimeFilterConfig)
    enable_momentum: bool = True
    enable_orderbook: bool = True
    enable_volume: bool = False
    enable_time: bool = True

    @classmethod
    def disabled(cls) -> "StrategyConfig":
        """A chain that evaluates nothing and therefore passes everything."""
        return cls(
            enable_momentum=False,
            enable_orderbook=False,
            enable_volume=False,
            enable_time=False,
        )

    def with_flags(self, **flags: bool) -> "StrategyConfig":
        return replace(self, **flags)


@dataclass(frozen=True)
class FilterResults:
    """Outcome of each filter; None means not evaluated."""

    momentum: Optional[FilterResult] = None
    orderbook: Optional[FilterResult] = None
    volume: Optional[FilterResult] = None
    time: Optional[FilterResult] = None

    def _named(self) -> list[tuple[str, Optional[FilterResult]]]:
        return [
            ("Momentum", self.momentum),
            ("Orderbook", self.orderbook),
            ("Volume", self.volume),
            ("Time", self.time),
        ]

    def all_passed(self) -> bool:
        return all(result.passed for _, result in self._named() if result is not None)

    def failure_reasons(self) -> list[str]:
        return [
            f"{name}: {result.reason or 'FAIL'}"
            for name, result in self._named()
            if result is not None and not result.passed
        ]

    def evaluated(self) -> list[str]:
        return [name for name, result in self._named() if result is not None]

    def format_summary(self) -> str:
        """Multi-line summary for chat notifications."""
        lines = ["Filter Results:", ""]
        for name, result in self._named():
            if result is None:
                continue
            icon = "✅" if result.passed else "❌"
            detail = "PASS" if result.passed else (result.reason or "FAIL")
            lines.append(f"{icon} {name}: {detail}")
        lines.append("")
        lines.append("All filters PASSED" if self.all_passed() else "Trade REJECTED")
        return "\n".join(lines)


class StrategyFilter:
    """Runs the enabled filters over one candidate trade."""

    def __init__(self, config: Optional[StrategyConfig] = None):
        self.config = config or StrategyConfig()
        self.momentum_filter = SmartMomentumFilter(self.config.momentum)
        self.orderbook_filter = OrderbookDepthFilter(self.config.orderbook)
        self.volume_filter = VolumeSurgeFilter(self.config.volume)
        self.time_filter = TimeOfDayFilter(self.config.time)

    def check_all(
        self,
        momentum_score: float,
        consistency: float,
        is_accelerating: bool,
        direction_matches: bool,
        orderbook: Optional[OrderbookDepth],
        volume: Optional[VolumeData],
        at: datetime,
        buying_yes: bool,
    ) -> FilterResults:
        momentum = None
        if self.config.enable_momentum:
            momentum = self.momentum_filter.check(
                momentum_score, consistency, is_accelerating, direction_matches
            )

        depth = None
        if self.config.enable_orderbook and orderbook is not None:
            depth = self.orderbook_filter.check(orderbook, buying_yes)

        surge = None
        if self.config.enable_volume and volume is not None:
            surge = self.volume_filter.check(volume)

        session = None
        if self.config.enable_time:
            session = self.time_filter.check(at)

        return FilterResults(momentum=momentum, orderbook=depth, volume=surge, time=session)
