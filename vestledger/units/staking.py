"""
staking.py - Stake Book with Day-Bucketed, Decaying APR Reward Accrual

Staking is logical: staked principal stays in the holder's wallet and only
reduces what the holder may transfer. Rewards accrue as claimable debt and are
paid out as staking-reward vesting allocations, never minted.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - StakingCurve: APR curve and limits (set at creation, never changes)
   - StakePool: Global staking state (start, switches, total principal)
   - Stake: One holder's principal, cursor and reward debt
   - BoosterPeriod: Append-only multiplier window

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - apr_at_day / calculate_base_reward / calculate_accrual

3. ADAPTER FUNCTIONS (load_*)

4. CONVENIENCE FUNCTIONS (compute_*):
   - stake / unstake / claim for holders
   - force reset for the migration book
   - staking switches, reward stop, boosters and early claim for admins

Key Formulas:
    APR(day) = initial -> plateau linearly over [0, plateau_day)
               plateau -> floor linearly over [plateau_day, floor_day)
               floor afterwards
    base     = principal * APR * seconds / (SECONDS_PER_YEAR * RATE_SCALE)
    boosted  = base + sum((multiplier - 1) * base over each booster overlap)

Day buckets are anchored at staking_start. One accrual call processes at most
max_accrual_days buckets; the stake cursor then stops at the end of the last
processed bucket and the next call resumes from there.
Stake and unstake run passes until the cursor reaches the current time before
they change the principal.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Any, List, Optional, Tuple
import logging

from ..core import (
    LedgerView, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    UNIT_TYPE_STAKE_BOOK, SECONDS_PER_DAY, ZERO,
    InvalidInput, StateViolation, CapacityExceeded, InsufficientFunds,
    build_transaction, _freeze_state,
    quantize_amount, require_holder, require_positive, seconds_between, to_decimal,
)
from ..access import Role, require_role
from ..config import SECONDS_PER_YEAR, RATE_SCALE, StakingTerms
from . import vesting

logger = logging.getLogger(__name__)


# ============================================================================
# FROZEN DATACLASSES - Explicit Inputs for Pure Functions
# ============================================================================

@dataclass(frozen=True, slots=True)
class StakingCurve:
    """Immutable APR curve (basis points) and limits."""
    initial_apr: Decimal
    plateau_apr: Decimal
    floor_apr: Decimal
    plateau_day: int
    floor_day: int
    staking_cap: Decimal
    max_accrual_days: int

    @classmethod
    def from_terms(cls, terms: StakingTerms) -> 'StakingCurve':
        return cls(
            initial_apr=terms.initial_apr,
            plateau_apr=terms.plateau_apr,
            floor_apr=terms.floor_apr,
            plateau_day=terms.plateau_day,
            floor_day=terms.floor_day,
            staking_cap=terms.staking_cap,
            max_accrual_days=terms.max_accrual_days,
        )


@dataclass(frozen=True, slots=True)
class StakePool:
    """Global staking state shared by every holder."""
    staking_start: datetime
    staking_enabled: bool
    rewards_stopped_at: Optional[datetime]
    early_claim: bool
    total_staked: Decimal


@dataclass(frozen=True, slots=True)
class Stake:
    """
    One holder's stake.

    last_update is the accrual cursor: rewards up to it are in reward_debt.
    """
    principal: Decimal
    last_update: datetime
    reward_debt: Decimal


@dataclass(frozen=True, slots=True)
class BoosterPeriod:
    """Multiplier window [start, end). Never modified once registered."""
    start: datetime
    end: datetime
    multiplier: Decimal


@dataclass(frozen=True, slots=True)
class AccrualResult:
    """
    Outcome of one accrual pass.

    Attributes:
        reward: Reward accrued over [stake.last_update, cursor)
        cursor: Where accrual stopped
        buckets: Number of day buckets processed
        capped: True if the bucket limit stopped accrual before the end time
    """
    reward: Decimal
    cursor: datetime
    buckets: int
    capped: bool


# ============================================================================
# UNIT CREATION
# ============================================================================

def create_stake_book(
    symbol: str,
    token: str,
    vesting_book: str,
    registry: str,
    staking_start: datetime,
    terms: Optional[StakingTerms] = None,
) -> Unit:
    """
    Create a stake book unit.

    Args:
        symbol: Book symbol (e.g., "VEST.STAKE")
        token: Staked token symbol
        vesting_book: Vesting book receiving staking-reward credits
        registry: Access registry for admin and controller checks
        staking_start: Anchor of the day buckets of the APR curve
        terms: Curve and cap (defaults to StakingTerms())
    """
    curve = StakingCurve.from_terms(terms or StakingTerms())
    return Unit(
        symbol=symbol,
        name=f"{token} Stake Book",
        unit_type=UNIT_TYPE_STAKE_BOOK,
        _frozen_state=_freeze_state({
            'token': token,
            'vesting_book': vesting_book,
            'registry': registry,
            'curve': {
                'initial_apr': curve.initial_apr,
                'plateau_apr': curve.plateau_apr,
                'floor_apr': curve.floor_apr,
                'plateau_day': curve.plateau_day,
                'floor_day': curve.floor_day,
                'staking_cap': curve.staking_cap,
                'max_accrual_days': curve.max_accrual_days,
            },
            'staking_start': staking_start,
            'staking_enabled': True,
            'rewards_stopped_at': None,
            'early_claim': False,
            'total_staked': ZERO,
            'boosters': [],
            'stakes': {},
        }),
    )


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def load_curve(view: LedgerView, symbol: str) -> StakingCurve:
    return StakingCurve(**view.get_unit_state(symbol)['curve'])


def load_pool(view: LedgerView, symbol: str) -> StakePool:
    state = view.get_unit_state(symbol)
    return StakePool(
        staking_start=state['staking_start'],
        staking_enabled=state['staking_enabled'],
        rewards_stopped_at=state.get('rewards_stopped_at'),
        early_claim=state.get('early_claim', False),
        total_staked=state.get('total_staked', ZERO),
    )


def load_stake(view: LedgerView, symbol: str, holder: str) -> Optional[Stake]:
    raw = view.get_unit_state(symbol).get('stakes', {}).get(holder)
    if raw is None:
        return None
    return Stake(raw['principal'], raw['last_update'], raw['reward_debt'])


def load_boosters(view: LedgerView, symbol: str) -> Tuple[BoosterPeriod, ...]:
    return tuple(
        BoosterPeriod(b['start'], b['end'], b['multiplier'])
        for b in view.get_unit_state(symbol).get('boosters', [])
    )


def _stake_to_dict(stake: Stake) -> Dict[str, Any]:
    return {
        'principal': stake.principal,
        'last_update': stake.last_update,
        'reward_debt': stake.reward_debt,
    }


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def apr_at_day(curve: StakingCurve, day: int) -> Decimal:
    """
    APR in basis points for a whole day since staking start.

    Example (default curve):
        apr_at_day(curve, 0)    # 30000
        apr_at_day(curve, 30)   # 10000
        apr_at_day(curve, 500)  # 2000
    """
    if day < 0:
        raise InvalidInput(f"day must be non-negative, got {day}")
    if day < curve.plateau_day:
        slope = (curve.plateau_apr - curve.initial_apr) / Decimal(curve.plateau_day)
        return curve.initial_apr + slope * day
    if day < curve.floor_day:
        span = Decimal(curve.floor_day - curve.plateau_day)
        return curve.plateau_apr + (curve.floor_apr - curve.plateau_apr) * (day - curve.plateau_day) / span
    return curve.floor_apr


def calculate_base_reward(principal: Decimal, apr: Decimal, seconds: Decimal) -> Decimal:
    """principal * apr * seconds / (SECONDS_PER_YEAR * RATE_SCALE)"""
    return principal * apr * seconds / (Decimal(SECONDS_PER_YEAR) * RATE_SCALE)


def calculate_accrual(
    stake: Stake,
    curve: StakingCurve,
    staking_start: datetime,
    boosters: Tuple[BoosterPeriod, ...],
    now: datetime,
    rewards_stopped_at: Optional[datetime] = None,
    max_buckets: Optional[int] = None,
) -> AccrualResult:
    """
    Reward accrued by a stake from its cursor up to now.

    PURE FUNCTION - no side effects.

    The interval is clamped to rewards_stopped_at, split at day boundaries
    anchored on staking_start and priced bucket by bucket. Every booster
    overlapping a bucket adds (multiplier - 1) times the base reward of the
    overlapped seconds, so overlapping boosters add up rather than compound.

    Args:
        max_buckets: Bucket limit for this pass (None processes everything)

    Returns:
        AccrualResult; reward is rounded down to token precision
    """
    end = now
    if rewards_stopped_at is not None and rewards_stopped_at < end:
        end = rewards_stopped_at

    cursor = max(stake.last_update, staking_start)
    if cursor >= end:
        return AccrualResult(ZERO, stake.last_update, 0, False)
    if stake.principal <= 0:
        return AccrualResult(ZERO, end, 0, False)

    reward = ZERO
    buckets = 0
    while cursor < end:
        if max_buckets is not None and buckets >= max_buckets:
            break
        day = int(seconds_between(staking_start, cursor) // SECONDS_PER_DAY)
        bucket_end = min(staking_start + timedelta(days=day + 1), end)
        apr = apr_at_day(curve, day)

        reward += calculate_base_reward(stake.principal, apr, seconds_between(cursor, bucket_end))
        for booster in boosters:
            overlap_start = max(cursor, booster.start)
            overlap_end = min(bucket_end, booster.end)
            if overlap_end > overlap_start:
                overlapped = calculate_base_reward(
                    stake.principal, apr, seconds_between(overlap_start, overlap_end)
                )
                reward += (booster.multiplier - 1) * overlapped

        cursor = bucket_end
        buckets += 1

    return AccrualResult(quantize_amount(reward), cursor, buckets, cursor < end)


def apply_accrual(stake: Stake, result: AccrualResult) -> Stake:
    """Fold an accrual pass into the stake: debt grows, cursor moves."""
    return replace(
        stake,
        reward_debt=stake.reward_debt + result.reward,
        last_update=max(stake.last_update, result.cursor),
    )


# ============================================================================
# CONVENIENCE QUERIES
# ============================================================================

def _accrue(view: LedgerView, symbol: str, stake: Stake, max_buckets: Optional[int]) -> Tuple[Stake, AccrualResult]:
    curve = load_curve(view, symbol)
    pool = load_pool(view, symbol)
    result = calculate_accrual(
        stake, curve, pool.staking_start, load_boosters(view, symbol),
        view.current_time, pool.rewards_stopped_at, max_buckets,
    )
    if result.capped:
        logger.info("accrual capped at %s after %d buckets", result.cursor, result.buckets)
    return apply_accrual(stake, result), result


def _accrue_to_end(view: LedgerView, symbol: str, stake: Stake) -> Stake:
    """Accrue in bucket-limited passes until the cursor reaches the end time."""
    max_buckets = load_curve(view, symbol).max_accrual_days
    stake, result = _accrue(view, symbol, stake, max_buckets)
    while result.capped:
        stake, result = _accrue(view, symbol, stake, max_buckets)
    return stake


def staked_amount(view: LedgerView, symbol: str, holder: str) -> Decimal:
    stake = load_stake(view, symbol, holder)
    return stake.principal if stake else ZERO


def pending_rewards(view: LedgerView, symbol: str, holder: str) -> Decimal:
    """
    Reward debt plus everything accrued up to the current time.

    Read-only, so it is not bucket-limited: cost grows with the days since
    the stake's cursor.
    """
    stake = load_stake(view, symbol, holder)
    if stake is None:
        return ZERO
    accrued, _ = _accrue(view, symbol, stake, None)
    return accrued.reward_debt


def _sale_ended(view: LedgerView, symbol: str) -> bool:
    vesting_book = view.get_unit_state(symbol)['vesting_book']
    return vesting.load_sale_end_time(view, vesting_book) is not None


def _empty_stake(view: LedgerView) -> Stake:
    return Stake(ZERO, view.current_time, ZERO)


# ============================================================================
# HOLDER OPERATIONS
# ============================================================================

def compute_stake(view: LedgerView, symbol: str, holder: str, amount: Decimal) -> PendingTransaction:
    """
    Stake amount of the holder's tokens.

    Locked (vesting) tokens may be staked; only already staked tokens
    cannot be staked twice. Reaching the global cap disables staking.

    Raises:
        InvalidInput: For a non-positive amount or empty holder
        StateViolation: If staking is disabled or the holder has migrated
        CapacityExceeded: If the global cap would be exceeded
        InsufficientFunds: If amount exceeds balance minus current stake
    """
    require_holder(holder)
    amount = quantize_amount(require_positive(amount))
    if amount <= 0:
        raise InvalidInput("amount rounds to zero at token precision")

    old_state = view.get_unit_state(symbol)
    pool = load_pool(view, symbol)
    curve = load_curve(view, symbol)
    if not pool.staking_enabled:
        raise StateViolation("staking is disabled")
    if vesting.is_retired(view, old_state['vesting_book'], holder):
        raise StateViolation(f"{holder} has migrated and cannot stake")
    if pool.total_staked + amount > curve.staking_cap:
        raise CapacityExceeded(
            f"stake of {amount} exceeds the cap: {pool.total_staked} of {curve.staking_cap} staked"
        )

    stake = load_stake(view, symbol, holder) or _empty_stake(view)
    available = view.get_balance(holder, old_state['token']) - stake.principal
    if amount > available:
        raise InsufficientFunds(f"{holder} can stake at most {available}, requested {amount}")

    stake = _accrue_to_end(view, symbol, stake)
    stake = replace(stake, principal=stake.principal + amount)
    total = pool.total_staked + amount

    new_state = {
        **old_state,
        'total_staked': total,
        'stakes': {**old_state['stakes'], holder: _stake_to_dict(stake)},
    }
    if total >= curve.staking_cap:
        new_state['staking_enabled'] = False
        logger.info("staking cap %s reached, staking disabled", curve.staking_cap)

    logger.info("%s staked %s (total %s)", holder, amount, total)
    origin = TransactionOrigin(OriginType.USER_ACTION, holder, symbol, "STAKE")
    return build_transaction(view, [], [UnitStateChange(symbol, old_state, new_state)], origin)


def compute_unstake(view: LedgerView, symbol: str, holder: str) -> PendingTransaction:
    """
    Release the holder's whole principal. Accrued rewards stay claimable.

    Raises:
        StateViolation: Before the sale has ended or with nothing staked
    """
    require_holder(holder)
    if not _sale_ended(view, symbol):
        raise StateViolation("unstaking opens once the sale has ended")
    stake = load_stake(view, symbol, holder)
    if stake is None or stake.principal <= 0:
        raise StateViolation(f"{holder} has nothing staked")

    old_state = view.get_unit_state(symbol)
    stake = _accrue_to_end(view, symbol, stake)
    released = stake.principal
    stake = replace(stake, principal=ZERO)

    new_state = {
        **old_state,
        'total_staked': old_state['total_staked'] - released,
        'stakes': {**old_state['stakes'], holder: _stake_to_dict(stake)},
    }
    logger.info("%s unstaked %s", holder, released)
    origin = TransactionOrigin(OriginType.USER_ACTION, holder, symbol, "UNSTAKE")
    return build_transaction(view, [], [UnitStateChange(symbol, old_state, new_state)], origin)


def compute_claim(view: LedgerView, symbol: str, holder: str) -> PendingTransaction:
    """
    Claim accrued rewards as a staking-reward vesting allocation.

    The stake book requests the credit under its own identity, which must
    hold the staking controller role. The reward vests fully at
    sale_end + staking reward cliff.

    Raises:
        StateViolation: Before sale end without the early-claim override
        InvalidInput: If nothing has accrued
    """
    require_holder(holder)
    pool = load_pool(view, symbol)
    if not (_sale_ended(view, symbol) or pool.early_claim):
        raise StateViolation("claims open once the sale has ended")
    stake = load_stake(view, symbol, holder)
    if stake is None:
        raise InvalidInput(f"{holder} has no rewards to claim")

    old_state = view.get_unit_state(symbol)
    curve = load_curve(view, symbol)
    stake, _ = _accrue(view, symbol, stake, curve.max_accrual_days)
    amount = stake.reward_debt
    if amount <= 0:
        raise InvalidInput(f"{holder} has no rewards to claim")

    move, credit = vesting.plan_staking_reward_credit(
        view, old_state['vesting_book'], symbol, holder, amount
    )
    stake = replace(stake, reward_debt=ZERO)
    new_state = {**old_state, 'stakes': {**old_state['stakes'], holder: _stake_to_dict(stake)}}

    logger.info("%s claimed %s staking rewards", holder, amount)
    origin = TransactionOrigin(OriginType.USER_ACTION, holder, symbol, "CLAIM")
    return build_transaction(
        view, [move], [UnitStateChange(symbol, old_state, new_state), credit], origin
    )


# ============================================================================
# CONTROLLER AND ADMIN OPERATIONS
# ============================================================================

def plan_force_reset(view: LedgerView, symbol: str, caller: str, holder: str) -> Optional[UnitStateChange]:
    """
    Zero a holder's stake without accruing, claiming or moving tokens.

    Used by migration after it has checked that no reward is pending.
    Returns None when there is nothing staked.

    Raises:
        Unauthorized: If caller lacks the migrator role
    """
    old_state = view.get_unit_state(symbol)
    require_role(view, old_state['registry'], caller, Role.MIGRATOR)
    stake = load_stake(view, symbol, holder)
    if stake is None or stake.principal <= 0:
        return None
    reset = replace(stake, principal=ZERO, last_update=view.current_time)
    new_state = {
        **old_state,
        'total_staked': old_state['total_staked'] - stake.principal,
        'stakes': {**old_state['stakes'], holder: _stake_to_dict(reset)},
    }
    return UnitStateChange(symbol, old_state, new_state)


def _admin_update(view: LedgerView, symbol: str, caller: str, event: str, **fields: Any) -> PendingTransaction:
    old_state = view.get_unit_state(symbol)
    require_role(view, old_state['registry'], caller, Role.ADMIN)
    new_state = {**old_state, **fields}
    logger.info("%s on %s by %s: %s", event, symbol, caller, fields)
    origin = TransactionOrigin(OriginType.ADMIN, caller, symbol, event)
    return build_transaction(view, [], [UnitStateChange(symbol, old_state, new_state)], origin)


def compute_set_staking_enabled(view: LedgerView, symbol: str, caller: str, enabled: bool) -> PendingTransaction:
    return _admin_update(view, symbol, caller, "SET_STAKING_ENABLED", staking_enabled=bool(enabled))


def compute_set_early_claim(view: LedgerView, symbol: str, caller: str, enabled: bool) -> PendingTransaction:
    return _admin_update(view, symbol, caller, "SET_EARLY_CLAIM", early_claim=bool(enabled))


def compute_stop_rewards(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """
    Stop reward accrual at the current time. Permanent.

    Raises:
        StateViolation: If rewards were already stopped
    """
    if load_pool(view, symbol).rewards_stopped_at is not None:
        raise StateViolation("rewards are already stopped")
    return _admin_update(view, symbol, caller, "STOP_REWARDS", rewards_stopped_at=view.current_time)


def compute_add_booster(
    view: LedgerView,
    symbol: str,
    caller: str,
    start: datetime,
    end: datetime,
    multiplier: Decimal,
) -> PendingTransaction:
    """
    Append a booster window. Registered boosters are never edited or removed.

    Raises:
        InvalidInput: If end <= start or multiplier < 1
    """
    multiplier = to_decimal(multiplier, "multiplier")
    if end <= start:
        raise InvalidInput(f"booster end {end} must be after start {start}")
    if multiplier < 1:
        raise InvalidInput(f"booster multiplier must be at least 1, got {multiplier}")
    boosters: List[Dict[str, Any]] = view.get_unit_state(symbol).get('boosters', [])
    boosters = boosters + [{'start': start, 'end': end, 'multiplier': multiplier}]
    return _admin_update(view, symbol, caller, "ADD_BOOSTER", boosters=boosters)
