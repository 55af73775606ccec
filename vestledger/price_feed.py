"""
price_feed.py - Untrusted external price rounds

Purchases paid in an external currency are converted to settlement units
through a price feed. Feed answers are treated as untrusted and every round
passes freshness checks before it is used.

Classes:
- RoundData: One answer of the feed (round id, price, timestamps)
- PriceFeed: Protocol implemented by feeds
- StaticPriceFeed: Always returns the same round
- TimeSeriesPriceFeed: Rounds published over time, answered point-in-time
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Protocol, Tuple, runtime_checkable

from .core import (
    StaleExternalData, ExternalCallFailure, InvalidInput, ReentrantCall,
    seconds_between, to_decimal,
)


@dataclass(frozen=True, slots=True)
class RoundData:
    """
    One feed answer.

    updated_at is None while the round is incomplete. answered_in_round is
    the round in which the price was actually computed; it lags round_id when
    the feed carried an old answer forward.
    """
    round_id: int
    price: Decimal
    started_at: Optional[datetime]
    updated_at: Optional[datetime]
    answered_in_round: int


@runtime_checkable
class PriceFeed(Protocol):
    """Source of settlement-unit prices for one external currency."""
    description: str

    def latest_round_data(self, timestamp: datetime) -> RoundData:
        """Return the latest round known at timestamp."""
        ...


class StaticPriceFeed:
    """Feed that always answers with one fixed round."""

    def __init__(self, round_data: RoundData, description: str = "static"):
        self.round_data = round_data
        self.description = description

    def latest_round_data(self, timestamp: datetime) -> RoundData:
        return self.round_data

    def __repr__(self):
        return f"StaticPriceFeed({self.description}, price={self.round_data.price})"


class TimeSeriesPriceFeed:
    """
    Feed with rounds published at increasing timestamps.

    Each publish() opens a new round answered in itself. Point-in-time
    lookups return the latest round at or before the requested timestamp.

    Example:
        feed = TimeSeriesPriceFeed("ETH/USD")
        feed.publish(datetime(2025, 1, 1), Decimal("3000"))
        feed.publish(datetime(2025, 1, 2), Decimal("3100"))
        feed.latest_round_data(datetime(2025, 1, 1, 12)).price  # 3000
    """

    def __init__(self, description: str):
        self.description = description
        self.rounds: List[Tuple[datetime, RoundData]] = []

    def publish(self, timestamp: datetime, price: Decimal) -> RoundData:
        """Append a completed round; timestamps must not go backwards."""
        if self.rounds and timestamp < self.rounds[-1][0]:
            raise InvalidInput(
                f"round timestamp {timestamp} precedes {self.rounds[-1][0]}"
            )
        round_id = len(self.rounds) + 1
        data = RoundData(
            round_id=round_id,
            price=to_decimal(price, "price"),
            started_at=timestamp,
            updated_at=timestamp,
            answered_in_round=round_id,
        )
        self.rounds.append((timestamp, data))
        return data

    def latest_round_data(self, timestamp: datetime) -> RoundData:
        """
        Latest round at or before timestamp.

        Raises:
            ExternalCallFailure: If no round was published by then
        """
        idx = bisect_right([ts for ts, _ in self.rounds], timestamp)
        if idx == 0:
            raise ExternalCallFailure(f"{self.description}: no round published before {timestamp}")
        return self.rounds[idx - 1][1]

    def __repr__(self):
        return f"TimeSeriesPriceFeed({self.description}, {len(self.rounds)} rounds)"


def validate_round(round_data: RoundData, now: datetime, max_staleness_seconds: int) -> Decimal:
    """
    Return the round's price after freshness checks.

    Raises:
        StaleExternalData: If the price is not positive, the round is
            incomplete, the answer comes from an older round than the one
            requested, or the quote is older than max_staleness_seconds.
    """
    if round_data.price is None or round_data.price <= 0:
        raise StaleExternalData(f"non-positive price {round_data.price} in round {round_data.round_id}")
    if round_data.updated_at is None:
        raise StaleExternalData(f"round {round_data.round_id} is incomplete")
    if round_data.answered_in_round < round_data.round_id:
        raise StaleExternalData(
            f"round {round_data.round_id} answered in older round {round_data.answered_in_round}"
        )
    age = seconds_between(round_data.updated_at, now)
    if age > max_staleness_seconds:
        raise StaleExternalData(
            f"quote from {round_data.updated_at} is {age}s old (limit {max_staleness_seconds}s)"
        )
    return round_data.price


def fetch_price(feed: PriceFeed, now: datetime, max_staleness_seconds: int) -> Decimal:
    """
    Query a feed and validate its answer.

    Raises:
        ExternalCallFailure: If the feed call itself fails
        ReentrantCall: If the feed re-entered a state-changing operation
        StaleExternalData: If the answer fails validation
    """
    try:
        round_data = feed.latest_round_data(now)
    except (ExternalCallFailure, ReentrantCall):
        raise
    except Exception as exc:
        raise ExternalCallFailure(f"price feed {getattr(feed, 'description', feed)!r} failed: {exc}") from exc
    if not isinstance(round_data, RoundData):
        raise ExternalCallFailure(f"price feed returned {type(round_data).__name__}, expected RoundData")
    return validate_round(round_data, now, max_staleness_seconds)
