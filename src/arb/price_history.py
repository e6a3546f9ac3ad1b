"""
Rolling price history with velocity and momentum statistics.

Each asset keeps the last MOMENTUM_WINDOW_SIZE samples from the price feed.
Two views are derived from them:

- velocity: percentage move over a trailing window of a few seconds,
  used by the reactive strategy to spot a move that just happened.
- momentum: strength, consistency and acceleration of the step-by-step
  trend across the whole buffer, used to confirm interval bets.

PriceBook is the shared state between the feed thread (single writer) and
the evaluation loop (readers). Readers take an AssetSnapshot under the
lock and compute on the copy, so the lock is only held for list copies.

Example:
    >>> book = PriceBook()
    >>> book.record(Asset.BTC, 100_000.0, now=0.0)
    True
    >>> book.record(Asset.BTC, 100_050.0, now=1.0)
    True
    >>> round(book.velocity(Asset.BTC, 5, now=1.0), 3)
    0.05
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .models import Asset, MomentumDirection, MomentumSignal, PriceSample

logger = logging.getLogger(__name__)

# Samples kept per asset
MOMENTUM_WINDOW_SIZE = 20

# Step-change mean is scaled by this before clamping to [-1, 1]
MOMENTUM_SENSITIVITY = 10.0

# Mean step change (in percent) inside this band is neutral
MOMENTUM_DEAD_ZONE = 0.001

MIN_MOMENTUM_SAMPLES = 3


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def velocity_pct(samples: Sequence[PriceSample], window_seconds: float, now: float) -> float:
    """
    Percentage change over the trailing window, ending at the newest sample.

    The window start is the oldest sample (other than the newest) observed
    at or after ``now - window_seconds``. When the feed has been quiet and
    no such sample exists, the oldest sample in the buffer is used instead.

    Args:
        samples: Price samples, oldest first.
        window_seconds: Length of the trailing window.
        now: Evaluation time on the same clock as the samples.

    Returns:
        Percent change, or 0.0 with fewer than two samples.
    """
    if len(samples) < 2:
        return 0.0

    cutoff = now - window_seconds
    newest = samples[-1]
    start = next(
        (s for s in samples[:-1] if s.observed_at >= cutoff),
        samples[0],
    )
    if start.price == 0:
        return 0.0
    return (newest.price - start.price) / start.price * 100.0


def compute_momentum(samples: Sequence[PriceSample]) -> MomentumSignal:
    """
    Derive a MomentumSignal from consecutive step changes.

    Needs at least three samples; anything less is neutral.
    """
    if len(samples) < MIN_MOMENTUM_SAMPLES:
        return MomentumSignal.neutral()

    steps = [
        (cur.price - prev.price) / prev.price * 100.0
        for prev, cur in zip(samples, samples[1:])
        if prev.price > 0
    ]
    if not steps:
        return MomentumSignal.neutral()

    avg = _mean(steps)
    score = max(-1.0, min(1.0, avg * MOMENTUM_SENSITIVITY))

    ups = sum(1 for s in steps if s > 0)
    downs = sum(1 for s in steps if s < 0)
    consistency = max(ups, downs) / len(steps)

    mid = len(steps) // 2
    older = _mean(steps[:mid])
    recent = _mean(steps[mid:])
    if avg > 0:
        is_accelerating = recent > older
    elif avg < 0:
        is_accelerating = recent < older
    else:
        is_accelerating = False

    if avg > MOMENTUM_DEAD_ZONE:
        direction = MomentumDirection.UP
    elif avg < -MOMENTUM_DEAD_ZONE:
        direction = MomentumDirection.DOWN
    else:
        direction = MomentumDirection.NEUTRAL

    return MomentumSignal(
        score=score,
        is_accelerating=is_accelerating,
        consistency=consistency,
        direction=direction,
    )


class PriceHistory:
    """
    Fixed-capacity buffer of price samples, newest last.

    Not thread-safe on its own; PriceBook guards it.
    """

    def __init__(self, capacity: int = MOMENTUM_WINDOW_SIZE):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._samples: deque[PriceSample] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def latest(self) -> Optional[PriceSample]:
        return self._samples[-1] if self._samples else None

    def record(self, price: float, now: float) -> bool:
        """
        Append a sample, evicting the oldest beyond capacity.

        Returns:
            False if the sample was rejected (non-positive price or a
            timestamp older than the newest sample).
        """
        if price <= 0:
            return False
        latest = self.latest
        if latest is not None and now < latest.observed_at:
            return False
        self._samples.append(PriceSample(price=price, observed_at=now))
        return True

    def extend(self, samples: Iterable[tuple[float, float]]) -> int:
        """Record (price, timestamp) pairs in order. Returns how many were kept."""
        return sum(1 for price, ts in samples if self.record(price, ts))

    def samples(self) -> tuple[PriceSample, ...]:
        return tuple(self._samples)

    def velocity(self, window_seconds: float, now: float) -> float:
        return velocity_pct(self._samples, window_seconds, now)

    def momentum(self) -> MomentumSignal:
        return compute_momentum(self._samples)

    def clear(self) -> None:
        self._samples.clear()


@dataclass(frozen=True)
class AssetSnapshot:
    """Consistent read-only copy of one asset's price state."""

    asset: Asset
    price: Optional[float]
    baseline: Optional[float]
    samples: tuple[PriceSample, ...]

    @property
    def has_price(self) -> bool:
        return self.price is not None and self.price > 0

    @property
    def change_pct(self) -> float:
        """Percent change from the interval baseline, 0.0 without one."""
        if not self.has_price or not self.baseline:
            return 0.0
        return (self.price - self.baseline) / self.baseline * 100.0

    @property
    def is_up(self) -> bool:
        return self.change_pct > 0

    def velocity(self, window_seconds: float, now: float) -> float:
        return velocity_pct(self.samples, window_seconds, now)

    def momentum(self) -> MomentumSignal:
        return compute_momentum(self.samples)


class _AssetState:
    __slots__ = ("history", "price", "baseline", "updated_at")

    def __init__(self, capacity: int):
        self.history = PriceHistory(capacity)
        self.price: Optional[float] = None
        self.baseline: Optional[float] = None
        self.updated_at: Optional[float] = None


class PriceBook:
    """
    Per-asset price state shared between the feed and the evaluators.

    Holds the current price, the interval baseline and the rolling history
    for every asset. Writes come from the feed ingestion path; reads go
    through snapshot().

    Example:
        >>> book = PriceBook()
        >>> book.record(Asset.ETH, 3500.0)
        True
        >>> book.snapshot(Asset.ETH).baseline
        3500.0
    """

    def __init__(
        self,
        assets: Optional[Iterable[Asset]] = None,
        capacity: int = MOMENTUM_WINDOW_SIZE,
        clock=time.monotonic,
    ):
        self._clock = clock
        self._lock = threading.Lock()
        self._states: dict[Asset, _AssetState] = {
            asset: _AssetState(capacity) for asset in (assets or list(Asset))
        }
        self.updates_received = 0
        self.rejected_samples = 0

    @property
    def assets(self) -> list[Asset]:
        return list(self._states)

    def now(self) -> float:
        return self._clock()

    def record(self, asset: Asset, price: float, now: Optional[float] = None) -> bool:
        """
        Record a price tick for an asset.

        The first accepted tick after start-up (or after a baseline reset on
        an empty asset) also becomes the interval baseline.

        Returns:
            True if the sample was stored.
        """
        state = self._states.get(asset)
        if state is None:
            logger.debug(f"Ignoring price for untracked asset {asset}")
            return False

        ts = self._clock() if now is None else now
        with self._lock:
            if not state.history.record(price, ts):
                self.rejected_samples += 1
                accepted = False
            else:
                state.price = price
                if state.baseline is None:
                    state.baseline = price
                state.updated_at = ts
                self.updates_received += 1
                accepted = True

        if not accepted:
            logger.debug(f"Rejected {asset} sample price={price} ts={ts}")
        return accepted

    def reset_baseline(self, asset: Asset) -> Optional[float]:
        """
        Start a new interval for an asset at its current price.

        Without a current price the baseline is cleared and the next tick
        sets it.
        """
        state = self._states.get(asset)
        if state is None:
            return None
        with self._lock:
            state.baseline = state.price
            baseline = state.baseline
        logger.info(f"{asset} interval baseline reset to {baseline}")
        return baseline

    def reset_all_baselines(self) -> None:
        for asset in self._states:
            self.reset_baseline(asset)

    def snapshot(self, asset: Asset) -> AssetSnapshot:
        state = self._states.get(asset)
        if state is None:
            return AssetSnapshot(asset=asset, price=None, baseline=None, samples=())
        with self._lock:
            return AssetSnapshot(
                asset=asset,
                price=state.price,
                baseline=state.baseline,
                samples=state.history.samples(),
            )

    def snapshot_all(self) -> dict[Asset, AssetSnapshot]:
        return {asset: self.snapshot(asset) for asset in self._states}

    def current_price(self, asset: Asset) -> Optional[float]:
        return self.snapshot(asset).price

    def velocity(self, asset: Asset, window_seconds: float, now: Optional[float] = None) -> float:
        ts = self._clock() if now is None else now
        return self.snapshot(asset).velocity(window_seconds, ts)

    def momentum(self, asset: Asset) -> MomentumSignal:
        return self.snapshot(asset).momentum()

    def seconds_since_update(self, asset: Asset) -> Optional[float]:
        state = self._states.get(asset)
        if state is None or state.updated_at is None:
            return None
        return self._clock() - state.updated_at
