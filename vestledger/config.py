"""
config.py - Tokenomics term sheets

Module-level constants describe the fixed parts of the distribution (time
units, rate scale, unlock tables). Frozen dataclasses bundle the tunable
terms for each book; the unit factories copy them into unit state at
registration so every book computation reads its terms from the ledger.

Terms can be built directly or loaded from a plain mapping (e.g. parsed
JSON) with TokenomicsTerms.from_mapping(); numeric values are coerced to
Decimal through str() so that floats never leak binary noise.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from decimal import Decimal
from typing import Any, Dict, Mapping, Tuple

from .core import SECONDS_PER_DAY, InvalidInput, to_decimal


# ============================================================================
# CONSTANTS
# ============================================================================

SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY

# APRs are expressed in basis points.
RATE_SCALE = Decimal("10000")

# Reward accrual processes at most this many day buckets per call.
MAX_ACCRUAL_DAYS = 730

# (immediate unlock percent, linear remainder days) for sale phases 1..5.
SALE_UNLOCK_SCHEDULE: Tuple[Tuple[int, int], ...] = (
    (10, 200),
    (15, 180),
    (20, 150),
    (25, 120),
    (30, 90),
)

GAMING_IMMEDIATE_PERCENT = 20
GAMING_LINEAR_DAYS = 150

# Linear remainders start this long after the sale ends.
LINEAR_START_DELAY_DAYS = 1

MAX_SUPPLY = Decimal("1000000000")


def _d(value: Any, name: str) -> Decimal:
    return to_decimal(value, name)


# ============================================================================
# SALE TERMS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PresalePhase:
    """One priced tranche of the sale: counters in tokens, prices in settlement units."""
    start_counter: Decimal
    end_counter: Decimal
    start_price: Decimal
    end_price: Decimal

    def __post_init__(self):
        for name in ('start_counter', 'end_counter', 'start_price', 'end_price'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, _d(value, name))
        if self.end_counter <= self.start_counter:
            raise InvalidInput(
                f"phase end_counter {self.end_counter} must exceed start_counter {self.start_counter}"
            )
        if self.start_price <= 0 or self.end_price < self.start_price:
            raise InvalidInput(
                f"phase prices must satisfy 0 < start_price <= end_price, got "
                f"{self.start_price} -> {self.end_price}"
            )

    @property
    def capacity(self) -> Decimal:
        return self.end_counter - self.start_counter

    def to_dict(self) -> Dict[str, Decimal]:
        return {
            'start_counter': self.start_counter,
            'end_counter': self.end_counter,
            'start_price': self.start_price,
            'end_price': self.end_price,
        }


def contiguous_phases(capacity: Any, prices: Tuple[Tuple[Any, Any], ...]) -> Tuple[PresalePhase, ...]:
    """Build back-to-back phases of equal capacity from (start_price, end_price) pairs."""
    size = _d(capacity, "capacity")
    phases = []
    for i, (start_price, end_price) in enumerate(prices):
        phases.append(PresalePhase(size * i, size * (i + 1), _d(start_price, "start_price"), _d(end_price, "end_price")))
    return tuple(phases)


DEFAULT_PHASES = contiguous_phases(
    64_000_000,
    (
        ("0.10", "0.13"),
        ("0.13", "0.16"),
        ("0.16", "0.19"),
        ("0.19", "0.22"),
        ("0.22", "0.25"),
    ),
)


@dataclass(frozen=True, slots=True)
class SaleTerms:
    """
    Public sale parameters.

    Attributes:
        phases: Ordered, contiguous phase table
        step_tokens: Size of one price step inside a phase
        max_purchase: Largest settlement amount accepted per purchase
        settlement_decimals: Precision of the settlement asset
        max_staleness_seconds: Oldest acceptable price feed quote
    """
    phases: Tuple[PresalePhase, ...] = DEFAULT_PHASES
    step_tokens: Decimal = Decimal("4000000")
    max_purchase: Decimal = Decimal("1000000")
    settlement_decimals: int = 6
    max_staleness_seconds: int = 3600

    def __post_init__(self):
        if not self.phases:
            raise InvalidInput("sale needs at least one phase")
        for prev, nxt in zip(self.phases, self.phases[1:]):
            if nxt.start_counter != prev.end_counter:
                raise InvalidInput("sale phases must be contiguous")
        if _d(self.step_tokens, "step_tokens") <= 0:
            raise InvalidInput("step_tokens must be positive")
        object.__setattr__(self, 'step_tokens', _d(self.step_tokens, "step_tokens"))
        object.__setattr__(self, 'max_purchase', _d(self.max_purchase, "max_purchase"))

    @property
    def total_capacity(self) -> Decimal:
        return self.phases[-1].end_counter - self.phases[0].start_counter


# ============================================================================
# VESTING TERMS
# ============================================================================

@dataclass(frozen=True, slots=True)
class VestingTerms:
    """Cliffs and durations (in days) for the non-sale sources."""
    marketing_cliff_days: int = 90
    long_term_grant_cliff_days: int = 180
    long_term_grant_duration_days: int = 720
    staking_reward_cliff_days: int = 30
    sale_unlock_schedule: Tuple[Tuple[int, int], ...] = SALE_UNLOCK_SCHEDULE
    gaming_immediate_percent: int = GAMING_IMMEDIATE_PERCENT
    gaming_linear_days: int = GAMING_LINEAR_DAYS
    linear_start_delay_days: int = LINEAR_START_DELAY_DAYS

    def __post_init__(self):
        if not self.sale_unlock_schedule:
            raise InvalidInput("sale_unlock_schedule cannot be empty")
        for pct, days in self.sale_unlock_schedule:
            if not 0 <= pct <= 100 or days < 0:
                raise InvalidInput(f"invalid sale unlock row ({pct}, {days})")
        if not 0 <= self.gaming_immediate_percent <= 100:
            raise InvalidInput("gaming_immediate_percent must be within 0..100")


# ============================================================================
# STAKING TERMS
# ============================================================================

@dataclass(frozen=True, slots=True)
class StakingTerms:
    """
    Reward curve and staking limits.

    APRs are basis points: 30000 = 300%. The curve falls linearly from
    initial_apr to plateau_apr over plateau_day days, then linearly to
    floor_apr at floor_day, then stays flat.
    """
    initial_apr: Decimal = Decimal("30000")
    plateau_apr: Decimal = Decimal("10000")
    floor_apr: Decimal = Decimal("2000")
    plateau_day: int = 30
    floor_day: int = 210
    staking_cap: Decimal = Decimal("200000000")
    max_accrual_days: int = MAX_ACCRUAL_DAYS

    def __post_init__(self):
        for name in ('initial_apr', 'plateau_apr', 'floor_apr', 'staking_cap'):
            object.__setattr__(self, name, _d(getattr(self, name), name))
        if not 0 < self.plateau_day < self.floor_day:
            raise InvalidInput("APR curve needs 0 < plateau_day < floor_day")
        if min(self.initial_apr, self.plateau_apr, self.floor_apr) < 0:
            raise InvalidInput("APRs cannot be negative")
        if self.staking_cap <= 0:
            raise InvalidInput("staking_cap must be positive")
        if self.max_accrual_days <= 0:
            raise InvalidInput("max_accrual_days must be positive")


# ============================================================================
# MIGRATION TERMS
# ============================================================================

@dataclass(frozen=True, slots=True)
class MigrationTerms:
    """Migration opens only once the sale has reached min_phase (1-based)."""
    min_phase: int = 1

    def __post_init__(self):
        if self.min_phase < 1:
            raise InvalidInput("min_phase is 1-based")


# ============================================================================
# AGGREGATE
# ============================================================================

@dataclass(frozen=True, slots=True)
class TokenomicsTerms:
    """
    Complete term sheet for one token distribution.

    Pool sizes must add up to max_supply; the remainder of a pool after the
    distribution ends simply stays in its wallet.
    """
    symbol: str = "VEST"
    settlement_symbol: str = "USDT"
    max_supply: Decimal = MAX_SUPPLY
    pools: Mapping[str, Decimal] = field(default_factory=lambda: {
        'sale': Decimal("320000000"),
        'marketing': Decimal("100000000"),
        'long_term_grant': Decimal("200000000"),
        'gaming_credit': Decimal("130000000"),
        'staking_reward': Decimal("250000000"),
    })
    sale: SaleTerms = field(default_factory=SaleTerms)
    vesting: VestingTerms = field(default_factory=VestingTerms)
    staking: StakingTerms = field(default_factory=StakingTerms)
    migration: MigrationTerms = field(default_factory=MigrationTerms)

    def __post_init__(self):
        object.__setattr__(self, 'max_supply', _d(self.max_supply, "max_supply"))
        object.__setattr__(self, 'pools', {k: _d(v, f"pools.{k}") for k, v in self.pools.items()})
        if sum(self.pools.values(), Decimal("0")) != self.max_supply:
            raise InvalidInput(
                f"pool sizes add up to {sum(self.pools.values())}, expected {self.max_supply}"
            )
        if self.pools.get('sale', Decimal("0")) < self.sale.total_capacity:
            raise InvalidInput("sale pool is smaller than the total phase capacity")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> 'TokenomicsTerms':
        """
        Build terms from a nested plain mapping.

        Unknown keys are rejected so that typos do not silently fall back to
        defaults.

        Example:
            terms = TokenomicsTerms.from_mapping({
                "symbol": "GAME",
                "staking": {"initial_apr": 20000},
                "sale": {"phases": [
                    {"start_counter": 0, "end_counter": 1000, "start_price": "0.1", "end_price": "0.2"},
                ]},
            })
        """
        raw = dict(raw)
        kwargs: Dict[str, Any] = {}
        sections = {
            'sale': SaleTerms,
            'vesting': VestingTerms,
            'staking': StakingTerms,
            'migration': MigrationTerms,
        }
        for name, section_cls in sections.items():
            if name in raw:
                section = dict(raw.pop(name))
                if section_cls is SaleTerms and 'phases' in section:
                    section['phases'] = tuple(PresalePhase(**p) for p in section['phases'])
                if section_cls is VestingTerms and 'sale_unlock_schedule' in section:
                    section['sale_unlock_schedule'] = tuple(
                        (int(pct), int(days)) for pct, days in section['sale_unlock_schedule']
                    )
                kwargs[name] = section_cls(**_checked(section_cls, section))
        kwargs.update(_checked(cls, raw))
        return cls(**kwargs)


def _checked(cls, values: Dict[str, Any]) -> Dict[str, Any]:
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise InvalidInput(f"unknown {cls.__name__} keys: {sorted(unknown)}")
    return values


def default_terms(**overrides: Any) -> TokenomicsTerms:
    """Default term sheet, optionally with top-level fields replaced."""
    return TokenomicsTerms(**overrides)


def sale_unlock_row(schedule: Tuple[Tuple[int, int], ...], phase: int) -> Tuple[int, int]:
    """Unlock row for a 1-based phase; phases past the table use its last row."""
    if phase < 1:
        raise InvalidInput(f"phase is 1-based, got {phase}")
    return tuple(schedule[min(phase, len(schedule)) - 1])
