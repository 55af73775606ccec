"""
vesting.py - Vesting Book for Per-Holder, Per-Source Locked Allocations

This module keeps every holder's locked allocations, keyed by
(holder, source), and derives unlocked/locked amounts as a pure function of
the stored allocation, the sale end time and the current time.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - VestingSchedule: Term sheet copied into the book at creation
   - VestingAllocation / SubAllocation: One holder's allocation for one source

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - No LedgerView, all inputs explicit

3. ADAPTER FUNCTIONS (load_*):
   - The only place that reads the vesting book from a LedgerView

4. CONVENIENCE AND PLANNING FUNCTIONS:
   - unlocked_amount / locked_amount / locked_by_source (view-level queries)
   - plan_vesting_credits: the move + state change that funds and records
     new allocations; callers fold it into their own atomic transaction
   - compute_*: complete PendingTransactions for controller/admin credits

Unlock rules (nothing unlocks while the sale is open):
    marketing, staking_reward : 100% at sale_end + cliff
    long_term_grant           : linear over duration from sale_end + cliff
    sale                      : per contribution, phase-dependent immediate
                                share at sale_end, remainder linear from
                                sale_end + 1 day
    gaming_credit             : per credit, 20% at sale_end, 80% linear over
                                150 days from sale_end + 1 day

Allocations only ever grow. Locked and unlocked amounts are derived views,
never stored counters.

Migration retires a holder: the allocations move to retired_allocations, the
holder no longer has anything locked, and new credits to the holder are
refused.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, Any, List, Optional, Sequence, Tuple
import logging

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    UNIT_TYPE_VESTING_BOOK, SECONDS_PER_DAY, ZERO,
    InvalidInput, StateViolation,
    build_transaction, _freeze_state,
    quantize_amount, require_holder, require_positive, seconds_between,
)
from ..access import Role, require_role
from ..config import VestingTerms, sale_unlock_row

logger = logging.getLogger(__name__)


class VestingSource(Enum):
    """The five allocation sources."""
    SALE = "sale"
    MARKETING = "marketing"
    LONG_TERM_GRANT = "long_term_grant"
    GAMING_CREDIT = "gaming_credit"
    STAKING_REWARD = "staking_reward"


class ReleaseMode(Enum):
    FIXED_AT_CLIFF = "fixed_at_cliff"
    LINEAR_AFTER_CLIFF = "linear_after_cliff"


# ============================================================================
# FROZEN DATACLASSES - Explicit Inputs for Pure Functions
# ============================================================================

@dataclass(frozen=True, slots=True)
class VestingSchedule:
    """
    Immutable unlock terms of a vesting book. Durations are in seconds.
    """
    marketing_cliff: int
    long_term_grant_cliff: int
    long_term_grant_duration: int
    staking_reward_cliff: int
    sale_unlock_schedule: Tuple[Tuple[int, int], ...]
    gaming_immediate_percent: int
    gaming_linear_days: int
    linear_start_delay: int

    @classmethod
    def from_terms(cls, terms: VestingTerms) -> 'VestingSchedule':
        return cls(
            marketing_cliff=terms.marketing_cliff_days * SECONDS_PER_DAY,
            long_term_grant_cliff=terms.long_term_grant_cliff_days * SECONDS_PER_DAY,
            long_term_grant_duration=terms.long_term_grant_duration_days * SECONDS_PER_DAY,
            staking_reward_cliff=terms.staking_reward_cliff_days * SECONDS_PER_DAY,
            sale_unlock_schedule=tuple(tuple(row) for row in terms.sale_unlock_schedule),
            gaming_immediate_percent=terms.gaming_immediate_percent,
            gaming_linear_days=terms.gaming_linear_days,
            linear_start_delay=terms.linear_start_delay_days * SECONDS_PER_DAY,
        )

    def cliff_and_duration(self, source: VestingSource) -> Tuple[int, int, ReleaseMode]:
        """Stored (cliff, duration, mode) for a newly created allocation."""
        if source == VestingSource.MARKETING:
            return self.marketing_cliff, 0, ReleaseMode.FIXED_AT_CLIFF
        if source == VestingSource.STAKING_REWARD:
            return self.staking_reward_cliff, 0, ReleaseMode.FIXED_AT_CLIFF
        if source == VestingSource.LONG_TERM_GRANT:
            return self.long_term_grant_cliff, self.long_term_grant_duration, ReleaseMode.LINEAR_AFTER_CLIFF
        # Tranched sources schedule each sub-allocation individually.
        return 0, 0, ReleaseMode.LINEAR_AFTER_CLIFF


@dataclass(frozen=True, slots=True)
class SubAllocation:
    """One contribution (sale, with its phase) or credit (gaming, with its time)."""
    amount: Decimal
    phase: Optional[int] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class VestingAllocation:
    """
    One holder's allocation for one source.

    total always equals the sum of sub_allocations for tranched sources.
    """
    source: VestingSource
    total: Decimal
    cliff: int
    duration: int
    release_mode: ReleaseMode
    sub_allocations: Tuple[SubAllocation, ...] = ()


# ============================================================================
# UNIT CREATION
# ============================================================================

def create_vesting_book(
    symbol: str,
    token: str,
    sale_book: str,
    registry: str,
    pools: Dict[VestingSource, str],
    terms: Optional[VestingTerms] = None,
) -> Unit:
    """
    Create a vesting book unit.

    Args:
        symbol: Book symbol (e.g., "VEST.VESTING")
        token: Symbol of the vested token
        sale_book: Sale book that owns the sale_end_time anchor
        registry: Access registry used for controller/admin credits
        pools: Wallet funding each source's credits
        terms: Unlock terms (defaults to VestingTerms())
    """
    missing = [s.value for s in VestingSource if s not in pools]
    if missing:
        raise InvalidInput(f"vesting pools missing for sources: {missing}")
    schedule = VestingSchedule.from_terms(terms or VestingTerms())
    return Unit(
        symbol=symbol,
        name=f"{token} Vesting Book",
        unit_type=UNIT_TYPE_VESTING_BOOK,
        _frozen_state=_freeze_state({
            'token': token,
            'sale_book': sale_book,
            'registry': registry,
            'pools': {source.value: wallet for source, wallet in pools.items()},
            'schedule': _schedule_to_dict(schedule),
            'allocations': {},
            'retired': {},
            'retired_allocations': {},
        }),
    )


def _schedule_to_dict(schedule: VestingSchedule) -> Dict[str, Any]:
    return {
        'marketing_cliff': schedule.marketing_cliff,
        'long_term_grant_cliff': schedule.long_term_grant_cliff,
        'long_term_grant_duration': schedule.long_term_grant_duration,
        'staking_reward_cliff': schedule.staking_reward_cliff,
        'sale_unlock_schedule': [list(row) for row in schedule.sale_unlock_schedule],
        'gaming_immediate_percent': schedule.gaming_immediate_percent,
        'gaming_linear_days': schedule.gaming_linear_days,
        'linear_start_delay': schedule.linear_start_delay,
    }


# ============================================================================
# ADAPTER FUNCTIONS - Bridge Between LedgerView and Pure Functions
# ============================================================================

def load_schedule(view: LedgerView, symbol: str) -> VestingSchedule:
    raw = view.get_unit_state(symbol)['schedule']
    return VestingSchedule(
        marketing_cliff=raw['marketing_cliff'],
        long_term_grant_cliff=raw['long_term_grant_cliff'],
        long_term_grant_duration=raw['long_term_grant_duration'],
        staking_reward_cliff=raw['staking_reward_cliff'],
        sale_unlock_schedule=tuple(tuple(row) for row in raw['sale_unlock_schedule']),
        gaming_immediate_percent=raw['gaming_immediate_percent'],
        gaming_linear_days=raw['gaming_linear_days'],
        linear_start_delay=raw['linear_start_delay'],
    )


def _allocation_from_dict(source: VestingSource, raw: Dict[str, Any]) -> VestingAllocation:
    return VestingAllocation(
        source=source,
        total=raw['total'],
        cliff=raw['cliff'],
        duration=raw['duration'],
        release_mode=ReleaseMode(raw['release_mode']),
        sub_allocations=tuple(
            SubAllocation(s['amount'], s.get('phase'), s.get('timestamp'))
            for s in raw.get('sub_allocations', [])
        ),
    )


def load_allocations(view: LedgerView, symbol: str, holder: str) -> Dict[VestingSource, VestingAllocation]:
    """All of a holder's allocations, keyed by source."""
    raw = view.get_unit_state(symbol).get('allocations', {}).get(holder, {})
    return {VestingSource(src): _allocation_from_dict(VestingSource(src), alloc) for src, alloc in raw.items()}


def load_retired_at(view: LedgerView, symbol: str, holder: str) -> Optional[datetime]:
    """When the holder's allocations were retired by migration, None if live."""
    return view.get_unit_state(symbol).get('retired', {}).get(holder)


def is_retired(view: LedgerView, symbol: str, holder: str) -> bool:
    return load_retired_at(view, symbol, holder) is not None


def load_sale_end_time(view: LedgerView, symbol: str) -> Optional[datetime]:
    """The global anchor: the sale book's end time, None while the sale is open."""
    sale_book = view.get_unit_state(symbol)['sale_book']
    return view.get_unit_state(sale_book).get('sale_end_time')


# ============================================================================
# PURE CALCULATION FUNCTIONS - No LedgerView, All Inputs Explicit
# ============================================================================

def calculate_linear_release(amount: Decimal, start: datetime, duration: int, now: datetime) -> Decimal:
    """
    amount * clamp(now - start, 0, duration) / duration.

    A zero duration releases everything at start.
    """
    if now < start:
        return ZERO
    if duration <= 0:
        return amount
    elapsed = min(seconds_between(start, now), Decimal(duration))
    return amount * elapsed / Decimal(duration)


def calculate_tranche_unlocked(
    amount: Decimal,
    immediate_percent: int,
    linear_days: int,
    sale_end: datetime,
    linear_start_delay: int,
    now: datetime,
) -> Decimal:
    """
    Unlocked part of one tranche: an immediate share at sale_end plus the
    remainder released linearly from sale_end + linear_start_delay.
    """
    if now < sale_end:
        return ZERO
    immediate = amount * Decimal(immediate_percent) / Decimal(100)
    remainder = amount - immediate
    linear_start = sale_end + timedelta(seconds=linear_start_delay)
    return immediate + calculate_linear_release(remainder, linear_start, linear_days * SECONDS_PER_DAY, now)


def calculate_unlocked(
    allocation: VestingAllocation,
    schedule: VestingSchedule,
    sale_end: Optional[datetime],
    now: datetime,
) -> Decimal:
    """
    Unlocked amount of an allocation at now.

    PURE FUNCTION - non-decreasing in now and never above allocation.total.
    Tranched sources are summed per tranche because each tranche carries its
    own immediate share and duration.
    """
    if sale_end is None:
        return ZERO

    source = allocation.source
    if source == VestingSource.SALE:
        unlocked = ZERO
        for sub in allocation.sub_allocations:
            pct, days = sale_unlock_row(schedule.sale_unlock_schedule, sub.phase)
            unlocked += calculate_tranche_unlocked(
                sub.amount, pct, days, sale_end, schedule.linear_start_delay, now
            )
    elif source == VestingSource.GAMING_CREDIT:
        unlocked = ZERO
        for sub in allocation.sub_allocations:
            unlocked += calculate_tranche_unlocked(
                sub.amount, schedule.gaming_immediate_percent, schedule.gaming_linear_days,
                sale_end, schedule.linear_start_delay, now,
            )
    else:
        start = sale_end + timedelta(seconds=allocation.cliff)
        if allocation.release_mode == ReleaseMode.FIXED_AT_CLIFF:
            unlocked = allocation.total if now >= start else ZERO
        else:
            unlocked = calculate_linear_release(allocation.total, start, allocation.duration, now)

    return min(quantize_amount(unlocked), allocation.total)


def calculate_locked(
    allocation: VestingAllocation,
    schedule: VestingSchedule,
    sale_end: Optional[datetime],
    now: datetime,
) -> Tuple[Decimal, bool]:
    """
    Locked amount and whether the zero floor had to clamp it.

    The floor never clamps for a consistent book; callers surface a True
    flag as accounting drift.
    """
    locked = allocation.total - calculate_unlocked(allocation, schedule, sale_end, now)
    if locked < 0:
        logger.error("negative locked amount %s for %s allocation", locked, allocation.source.value)
        return ZERO, True
    return locked, False


# ============================================================================
# CONVENIENCE QUERIES
# ============================================================================

def _now(view: LedgerView, now: Optional[datetime]) -> datetime:
    return view.current_time if now is None else now


def unlocked_amount(
    view: LedgerView, symbol: str, holder: str, source: VestingSource, now: Optional[datetime] = None
) -> Decimal:
    """Unlocked amount of holder's allocation for source (0 if none)."""
    allocation = load_allocations(view, symbol, holder).get(source)
    if allocation is None:
        return ZERO
    return calculate_unlocked(allocation, load_schedule(view, symbol), load_sale_end_time(view, symbol), _now(view, now))


def locked_amount(
    view: LedgerView, symbol: str, holder: str, source: VestingSource, now: Optional[datetime] = None
) -> Decimal:
    """Locked amount of holder's allocation for source (0 if none)."""
    allocation = load_allocations(view, symbol, holder).get(source)
    if allocation is None:
        return ZERO
    locked, _ = calculate_locked(
        allocation, load_schedule(view, symbol), load_sale_end_time(view, symbol), _now(view, now)
    )
    return locked


def locked_by_source(view: LedgerView, symbol: str, holder: str, now: Optional[datetime] = None) -> Dict[str, Decimal]:
    """Locked amount for each of the five sources, keyed by source value."""
    allocations = load_allocations(view, symbol, holder)
    schedule = load_schedule(view, symbol)
    sale_end = load_sale_end_time(view, symbol)
    at = _now(view, now)
    result = {}
    for source in VestingSource:
        allocation = allocations.get(source)
        result[source.value] = calculate_locked(allocation, schedule, sale_end, at)[0] if allocation else ZERO
    return result


def total_locked(view: LedgerView, symbol: str, holder: str, now: Optional[datetime] = None) -> Decimal:
    return sum(locked_by_source(view, symbol, holder, now).values(), ZERO)


def total_unlocked(view: LedgerView, symbol: str, holder: str, now: Optional[datetime] = None) -> Decimal:
    return sum(
        (unlocked_amount(view, symbol, holder, source, now) for source in VestingSource),
        ZERO,
    )


def allocation_total(view: LedgerView, symbol: str, holder: str, source: VestingSource) -> Decimal:
    allocation = load_allocations(view, symbol, holder).get(source)
    return allocation.total if allocation else ZERO


# ============================================================================
# PLANNING - Moves and State Changes for New Allocations
# ============================================================================

def plan_vesting_credits(
    view: LedgerView,
    symbol: str,
    holder: str,
    source: VestingSource,
    credits: Sequence[Tuple[Decimal, Optional[int]]],
    contract_id: str,
) -> Tuple[Move, UnitStateChange]:
    """
    Fund and record one or more credits for the same (holder, source).

    Each credit is an (amount, phase) pair; phase is only meaningful for sale
    credits, where every pair becomes its own sub-allocation. Returns a
    single move from the source's pool wallet to the holder covering all
    credits, and the vesting book state change that appends them. Callers
    combine both with their own moves and state changes into one transaction.

    Raises:
        InvalidInput: For an empty holder, no credits, a non-positive amount
            or a sale credit without a 1-based phase
        StateViolation: If the holder has migrated
    """
    require_holder(holder)
    if not credits:
        raise InvalidInput("no credits to record")
    if is_retired(view, symbol, holder):
        raise StateViolation(f"{holder} has migrated and cannot receive new allocations")

    old_state = view.get_unit_state(symbol)
    schedule = load_schedule(view, symbol)
    allocations = old_state.get('allocations', {})
    holder_allocs = dict(allocations.get(holder, {}))

    existing = holder_allocs.get(source.value)
    if existing is None:
        cliff, duration, mode = schedule.cliff_and_duration(source)
        record = {
            'total': ZERO,
            'cliff': cliff,
            'duration': duration,
            'release_mode': mode.value,
            'sub_allocations': [],
        }
    else:
        record = {**existing, 'sub_allocations': list(existing.get('sub_allocations', []))}

    funded = ZERO
    for raw_amount, phase in credits:
        amount = quantize_amount(require_positive(raw_amount))
        if amount <= 0:
            raise InvalidInput("amount rounds to zero at token precision")
        if source == VestingSource.SALE:
            if phase is None or phase < 1:
                raise InvalidInput(f"sale credits need a 1-based phase, got {phase}")
            record['sub_allocations'].append({'amount': amount, 'phase': phase})
        elif source == VestingSource.GAMING_CREDIT:
            record['sub_allocations'].append({'amount': amount, 'timestamp': view.current_time})
        funded += amount

    record['total'] = record['total'] + funded
    holder_allocs[source.value] = record
    new_state = {**old_state, 'allocations': {**allocations, holder: holder_allocs}}

    move = Move(
        quantity=funded,
        unit_symbol=old_state['token'],
        source=old_state['pools'][source.value],
        dest=holder,
        contract_id=contract_id,
    )
    return move, UnitStateChange(symbol, old_state, new_state)


def plan_vesting_credit(
    view: LedgerView,
    symbol: str,
    holder: str,
    source: VestingSource,
    amount: Decimal,
    contract_id: str,
    phase: Optional[int] = None,
) -> Tuple[Move, UnitStateChange]:
    """Single-credit form of plan_vesting_credits()."""
    return plan_vesting_credits(view, symbol, holder, source, [(amount, phase)], contract_id)


def plan_retire_holder(view: LedgerView, symbol: str, caller: str, holder: str) -> UnitStateChange:
    """
    Move a migrating holder's allocations out of the live book.

    The allocations are kept under retired_allocations; the holder's locks
    drop to zero and later credits are refused.

    Raises:
        Unauthorized: If caller lacks the migrator role
        StateViolation: If the holder is already retired
    """
    old_state = view.get_unit_state(symbol)
    require_role(view, old_state['registry'], caller, Role.MIGRATOR)
    if is_retired(view, symbol, holder):
        raise StateViolation(f"{holder} is already retired")

    allocations = dict(old_state.get('allocations', {}))
    retired_allocations = {**old_state.get('retired_allocations', {}), holder: allocations.pop(holder, {})}
    new_state = {
        **old_state,
        'allocations': allocations,
        'retired': {**old_state.get('retired', {}), holder: view.current_time},
        'retired_allocations': retired_allocations,
    }
    logger.info("retired vesting allocations of %s", holder)
    return UnitStateChange(symbol, old_state, new_state)


def compute_gaming_credit(
    view: LedgerView, symbol: str, caller: str, holder: str, amount: Decimal
) -> PendingTransaction:
    """
    Gaming controller credits a holder: funded from the gaming pool,
    20% unlocked at sale end and 80% linear afterwards.

    Raises:
        Unauthorized: If caller is not a gaming controller or admin
    """
    registry = view.get_unit_state(symbol)['registry']
    require_role(view, registry, caller, Role.GAMING_CONTROLLER)
    move, change = plan_vesting_credit(
        view, symbol, holder, VestingSource.GAMING_CREDIT, amount, f"gaming_credit_{holder}"
    )
    logger.info("gaming credit %s -> %s", move.quantity, holder)
    origin = TransactionOrigin(OriginType.CONTROLLER, caller, symbol, "GAMING_CREDIT")
    return build_transaction(view, [move], [change], origin)


def plan_staking_reward_credit(
    view: LedgerView, symbol: str, caller: str, holder: str, amount: Decimal
) -> Tuple[Move, UnitStateChange]:
    """
    Staking controller requests a reward allocation (fixed release at
    sale_end + staking reward cliff), funded from the staking reward pool.

    Raises:
        Unauthorized: If caller is not a staking controller or admin
    """
    registry = view.get_unit_state(symbol)['registry']
    require_role(view, registry, caller, Role.STAKING_CONTROLLER)
    return plan_vesting_credit(
        view, symbol, holder, VestingSource.STAKING_REWARD, amount, f"staking_reward_{holder}"
    )


def compute_allocation(
    view: LedgerView,
    symbol: str,
    caller: str,
    holder: str,
    source: VestingSource,
    amount: Decimal,
) -> PendingTransaction:
    """
    Administrator allocates marketing or long-term-grant tokens.

    Raises:
        Unauthorized: If caller is not an admin
        InvalidInput: For any other source
    """
    registry = view.get_unit_state(symbol)['registry']
    require_role(view, registry, caller, Role.ADMIN)
    if source not in (VestingSource.MARKETING, VestingSource.LONG_TERM_GRANT):
        raise InvalidInput(f"{source.value} allocations are created by their own flow")
    move, change = plan_vesting_credit(view, symbol, holder, source, amount, f"{source.value}_{holder}")
    logger.info("%s allocation %s -> %s", source.value, move.quantity, holder)
    origin = TransactionOrigin(OriginType.ADMIN, caller, symbol, "ALLOCATE")
    return build_transaction(view, [move], [change], origin)


def holders(view: LedgerView, symbol: str) -> List[str]:
    """Holders with at least one allocation, sorted."""
    return sorted(view.get_unit_state(symbol).get('allocations', {}).keys())


def require_known_source(value: Any) -> VestingSource:
    """Parse a source value, raising InvalidInput for unknown ones."""
    if isinstance(value, VestingSource):
        return value
    try:
        return VestingSource(value)
    except ValueError as exc:
        raise InvalidInput(f"unknown vesting source {value!r}") from exc
