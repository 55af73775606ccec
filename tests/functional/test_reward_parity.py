"""
test_reward_parity.py - Decimal accrual vs vectorized float model

The bucket-by-bucket Decimal accrual must agree with a closed numpy model of
the same curve: per-day APR from linear interpolation, seconds of each day
covered by the stake, boosters adding (multiplier - 1) on their overlap.
"""

import pytest
import numpy as np
from datetime import datetime, timedelta
from decimal import Decimal

from tests.conftest import T0
from vestledger import StakingTerms, SECONDS_PER_YEAR, RATE_SCALE, BoosterPeriod, calculate_accrual
from vestledger.units.staking import Stake, StakingCurve


CURVE = StakingCurve.from_terms(StakingTerms())
DAY = 86400


def seconds_since_start(when: datetime) -> float:
    return (when - T0).total_seconds()


def daily_overlap(n_days: int, start: float, end: float) -> np.ndarray:
    """Seconds of [start, end) falling in each day bucket [d, d + 1)."""
    edges = np.arange(n_days + 1, dtype=float) * DAY
    lo = np.clip(edges[:-1], start, end)
    hi = np.clip(edges[1:], start, end)
    return hi - lo


def float_reward(principal: float, since: datetime, until: datetime, boosters=()) -> float:
    start, end = seconds_since_start(since), seconds_since_start(until)
    n_days = int(np.ceil(end / DAY)) + 1
    days = np.arange(n_days, dtype=float)
    apr = np.interp(
        days,
        [0, CURVE.plateau_day, CURVE.floor_day],
        [float(CURVE.initial_apr), float(CURVE.plateau_apr), float(CURVE.floor_apr)],
    )
    weight = daily_overlap(n_days, start, end)
    for booster in boosters:
        b_start = max(start, seconds_since_start(booster.start))
        b_end = min(end, seconds_since_start(booster.end))
        if b_end > b_start:
            weight = weight + (float(booster.multiplier) - 1) * daily_overlap(n_days, b_start, b_end)
    return principal * float(np.sum(apr * weight)) / (SECONDS_PER_YEAR * float(RATE_SCALE))


def decimal_reward(principal: Decimal, since: datetime, until: datetime, boosters=()) -> Decimal:
    stake = Stake(principal, since, Decimal("0"))
    return calculate_accrual(stake, CURVE, T0, tuple(boosters), until).reward


class TestRewardParity:

    @pytest.mark.parametrize("days", [1, 29, 30, 31, 120, 210, 365, 700])
    def test_whole_days(self, days):
        principal = Decimal("125000")
        until = T0 + timedelta(days=days)
        expected = float_reward(float(principal), T0, until)
        actual = float(decimal_reward(principal, T0, until))
        assert actual == pytest.approx(expected, rel=1e-9)

    @pytest.mark.parametrize("offset_hours,length_hours", [(5, 7), (13, 50), (100, 2000), (700, 4000)])
    def test_partial_days(self, offset_hours, length_hours):
        principal = Decimal("3333.333333")
        since = T0 + timedelta(hours=offset_hours)
        until = since + timedelta(hours=length_hours)
        expected = float_reward(float(principal), since, until)
        actual = float(decimal_reward(principal, since, until))
        assert actual == pytest.approx(expected, rel=1e-9)

    def test_overlapping_boosters(self):
        principal = Decimal("50000")
        boosters = [
            BoosterPeriod(T0 + timedelta(days=3, hours=6), T0 + timedelta(days=20), Decimal("2")),
            BoosterPeriod(T0 + timedelta(days=10), T0 + timedelta(days=45, hours=12), Decimal("1.25")),
        ]
        until = T0 + timedelta(days=60)
        expected = float_reward(float(principal), T0, until, boosters)
        actual = float(decimal_reward(principal, T0, until, boosters))
        assert actual == pytest.approx(expected, rel=1e-9)

    def test_many_random_stakes(self):
        rng = np.random.default_rng(20250101)
        for _ in range(25):
            principal = Decimal(str(round(float(rng.uniform(1, 1_000_000)), 6)))
            since = T0 + timedelta(seconds=int(rng.integers(0, 300 * DAY)))
            until = since + timedelta(seconds=int(rng.integers(1, 300 * DAY)))
            expected = float_reward(float(principal), since, until)
            actual = float(decimal_reward(principal, since, until))
            assert actual == pytest.approx(expected, rel=1e-9)
