"""
Tests for rolling price history, velocity and momentum.

These tests verify:
- Velocity over trailing windows, including the quiet-feed fallback
- Momentum direction, consistency and acceleration
- Capacity and ordering invariants of the buffer
- Interval baselines in the shared PriceBook
"""

import threading

import pytest

from src.arb.models import Asset, MomentumDirection, PriceSample
from src.arb.price_history import (
    MOMENTUM_WINDOW_SIZE,
    PriceBook,
    PriceHistory,
    compute_momentum,
    velocity_pct,
)


# =============================================================================
# Fixtures
# =============================================================================


def _samples(*pairs):
    return [PriceSample(price=p, observed_at=t) for p, t in pairs]


@pytest.fixture
def history():
    return PriceHistory(capacity=MOMENTUM_WINDOW_SIZE)


@pytest.fixture
def book():
    """PriceBook with a frozen clock at t=0."""
    return PriceBook(assets=[Asset.BTC, Asset.ETH], clock=lambda: 0.0)


# =============================================================================
# Test: Velocity
# =============================================================================


class TestVelocity:
    """Tests for windowed velocity."""

    def test_identical_prices_have_zero_velocity(self, history):
        """A flat history has zero velocity for any window."""
        for i in range(10):
            history.record(50_000.0, float(i))

        for window in (1, 3, 5, 60):
            assert history.velocity(window, now=9.0) == 0.0

    def test_quiet_feed_falls_back_to_oldest_sample(self):
        """With no sample inside the window besides the newest, the oldest is the start."""
        samples = _samples((100.0, 0.0), (105.0, 10.0))

        assert velocity_pct(samples, 5, now=10.0) == pytest.approx(5.0)

    def test_window_start_is_oldest_sample_inside_window(self):
        """Samples older than the window are ignored."""
        samples = _samples((100.0, 0.0), (200.0, 8.0), (210.0, 10.0))

        assert velocity_pct(samples, 3, now=10.0) == pytest.approx(5.0)

    def test_fewer_than_two_samples(self):
        assert velocity_pct([], 5, now=0.0) == 0.0
        assert velocity_pct(_samples((100.0, 0.0)), 5, now=0.0) == 0.0

    def test_negative_velocity(self):
        samples = _samples((100.0, 0.0), (99.0, 1.0))

        assert velocity_pct(samples, 3, now=1.0) == pytest.approx(-1.0)


# =============================================================================
# Test: Momentum
# =============================================================================


class TestMomentum:
    """Tests for momentum readings."""

    def test_strictly_increasing_is_up_and_consistent(self):
        samples = _samples((100.0, 0), (101.0, 1), (102.0, 2), (103.0, 3))

        momentum = compute_momentum(samples)

        assert momentum.direction is MomentumDirection.UP
        assert momentum.consistency == 1.0
        assert momentum.score > 0

    def test_strictly_decreasing_is_down(self):
        samples = _samples((103.0, 0), (102.0, 1), (101.0, 2))

        momentum = compute_momentum(samples)

        assert momentum.direction is MomentumDirection.DOWN
        assert momentum.consistency == 1.0
        assert momentum.score < 0

    @pytest.mark.parametrize("count", [0, 1, 2])
    def test_fewer_than_three_samples_is_neutral(self, count):
        samples = _samples(*[(100.0 + i * 10, float(i)) for i in range(count)])

        momentum = compute_momentum(samples)

        assert momentum.score == 0.0
        assert momentum.consistency == 0.0
        assert momentum.is_accelerating is False
        assert momentum.direction is MomentumDirection.NEUTRAL

    def test_score_is_clamped(self):
        """Large steps saturate at 1.0."""
        samples = _samples((100.0, 0), (110.0, 1), (125.0, 2))

        assert compute_momentum(samples).score == 1.0

    def test_acceleration(self):
        """Later steps larger than earlier steps means accelerating."""
        accelerating = _samples((100.0, 0), (100.01, 1), (100.1, 2))
        decelerating = _samples((100.0, 0), (100.1, 1), (100.11, 2))

        assert compute_momentum(accelerating).is_accelerating is True
        assert compute_momentum(decelerating).is_accelerating is False

    def test_tiny_moves_are_neutral(self):
        """Average step inside the dead zone has no direction."""
        samples = _samples((100_000.0, 0), (100_000.5, 1), (100_001.0, 2))

        assert compute_momentum(samples).direction is MomentumDirection.NEUTRAL

    def test_mixed_steps_consistency(self):
        samples = _samples((100.0, 0), (101.0, 1), (100.5, 2), (102.0, 3), (103.0, 4))

        assert compute_momentum(samples).consistency == pytest.approx(0.75)


# =============================================================================
# Test: PriceHistory buffer
# =============================================================================


class TestPriceHistory:
    """Tests for buffer invariants."""

    def test_capacity_is_bounded(self):
        history = PriceHistory(capacity=20)

        for i in range(25):
            history.record(100.0 + i, float(i))

        assert len(history) == 20
        assert history.samples()[0].price == 105.0
        assert history.latest.price == 124.0

    def test_rejects_non_positive_price(self, history):
        assert history.record(0.0, 1.0) is False
        assert history.record(-5.0, 1.0) is False
        assert len(history) == 0

    def test_rejects_out_of_order_timestamp(self, history):
        assert history.record(100.0, 5.0) is True
        assert history.record(101.0, 4.0) is False
        assert history.record(101.0, 5.0) is True
        assert [s.observed_at for s in history.samples()] == [5.0, 5.0]

    def test_extend_counts_kept_samples(self, history):
        kept = history.extend([(100.0, 0.0), (0.0, 1.0), (101.0, 2.0)])

        assert kept == 2

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            PriceHistory(capacity=0)


# =============================================================================
# Test: PriceBook
# =============================================================================


class TestPriceBook:
    """Tests for shared per-asset state."""

    def test_first_sample_sets_baseline(self, book):
        book.record(Asset.BTC, 100_000.0, now=0.0)
        book.record(Asset.BTC, 100_500.0, now=1.0)

        snap = book.snapshot(Asset.BTC)
        assert snap.baseline == 100_000.0
        assert snap.price == 100_500.0
        assert snap.change_pct == pytest.approx(0.5)
        assert snap.is_up is True

    def test_reset_baseline_uses_current_price(self, book):
        book.record(Asset.BTC, 100_000.0, now=0.0)
        book.record(Asset.BTC, 101_000.0, now=1.0)

        assert book.reset_baseline(Asset.BTC) == 101_000.0
        assert book.snapshot(Asset.BTC).change_pct == 0.0

    def test_reset_baseline_without_price_waits_for_next_tick(self, book):
        assert book.reset_baseline(Asset.ETH) is None

        book.record(Asset.ETH, 3_500.0, now=0.0)

        assert book.snapshot(Asset.ETH).baseline == 3_500.0

    def test_untracked_asset_is_ignored(self, book):
        assert book.record(Asset.SOL, 150.0) is False
        assert book.snapshot(Asset.SOL).has_price is False

    def test_rejected_samples_are_counted(self, book):
        book.record(Asset.BTC, 100_000.0, now=1.0)
        book.record(Asset.BTC, -1.0, now=2.0)
        book.record(Asset.BTC, 100_000.0, now=0.5)

        assert book.updates_received == 1
        assert book.rejected_samples == 2

    def test_snapshot_without_data(self, book):
        snap = book.snapshot(Asset.ETH)

        assert snap.has_price is False
        assert snap.change_pct == 0.0
        assert snap.velocity(3, now=0.0) == 0.0

    def test_seconds_since_update(self):
        now = [10.0]
        book = PriceBook(assets=[Asset.BTC], clock=lambda: now[0])

        assert book.seconds_since_update(Asset.BTC) is None
        book.record(Asset.BTC, 100_000.0)
        now[0] = 12.5

        assert book.seconds_since_update(Asset.BTC) == pytest.approx(2.5)

    def test_concurrent_appends_keep_invariants(self):
        """Writers on several threads never break capacity or ordering."""
        book = PriceBook(assets=[Asset.BTC], capacity=20)

        def writer():
            for i in range(500):
                book.record(Asset.BTC, 100_000.0 + i)

        threads = [threading.Thread(target=writer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        samples = book.snapshot(Asset.BTC).samples
        assert len(samples) <= 20
        times = [s.observed_at for s in samples]
        assert times == sorted(times)
