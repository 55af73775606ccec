"""
migration.py - One-Shot Position Snapshot, Burn and Stake Reset

Migration retires a holder's whole position: it writes an immutable record of
what the holder owned (usable, staked and locked-by-source amounts), burns
the holder's entire balance and zeroes any stake. The holder's vesting
allocations are retired in the same transaction. Records are written at most
once per holder and never modified.

The pending staking reward check is a hard guard: a holder with unclaimed
rewards must claim first, and a query that fails aborts the migration.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional
import logging

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    UNIT_TYPE_MIGRATION_BOOK, SYSTEM_WALLET, ZERO,
    StateViolation, ExternalCallFailure, ReentrantCall,
    build_transaction, _freeze_state, require_holder,
)
from ..access import Role, require_role
from ..config import MigrationTerms
from . import presale, staking, vesting

logger = logging.getLogger(__name__)


# Returns the holder's pending staking rewards.
PendingRewardsQuery = Callable[[str], Decimal]


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    """Write-once snapshot of a migrated position."""
    usable: Decimal
    staked: Decimal
    locked_by_source: Dict[str, Decimal]
    burned: Decimal
    migrated: bool
    migrated_at: datetime


def create_migration_book(
    symbol: str,
    token: str,
    vesting_book: str,
    stake_book: str,
    sale_book: str,
    registry: str,
    terms: Optional[MigrationTerms] = None,
) -> Unit:
    """
    Create a migration book unit. Migration starts disabled.

    The book's symbol must hold Role.MIGRATOR to reset stakes.
    """
    terms = terms or MigrationTerms()
    return Unit(
        symbol=symbol,
        name=f"{token} Migration",
        unit_type=UNIT_TYPE_MIGRATION_BOOK,
        _frozen_state=_freeze_state({
            'token': token,
            'vesting_book': vesting_book,
            'stake_book': stake_book,
            'sale_book': sale_book,
            'registry': registry,
            'min_phase': terms.min_phase,
            'enabled': False,
            'records': {},
        }),
    )


def load_record(view: LedgerView, symbol: str, holder: str) -> Optional[MigrationRecord]:
    raw = view.get_unit_state(symbol).get('records', {}).get(holder)
    if raw is None:
        return None
    return MigrationRecord(
        usable=raw['usable'],
        staked=raw['staked'],
        locked_by_source=dict(raw['locked_by_source']),
        burned=raw['burned'],
        migrated=raw['migrated'],
        migrated_at=raw['migrated_at'],
    )


def is_migrated(view: LedgerView, symbol: str, holder: str) -> bool:
    record = load_record(view, symbol, holder)
    return record is not None and record.migrated


def _checked_pending_rewards(query: PendingRewardsQuery, holder: str) -> Decimal:
    try:
        pending = query(holder)
    except ReentrantCall:
        raise
    except Exception as exc:
        raise ExternalCallFailure(f"pending rewards query failed for {holder}: {exc}") from exc
    if not isinstance(pending, Decimal):
        raise ExternalCallFailure(f"pending rewards query returned {pending!r} for {holder}")
    return pending


def compute_migration(
    view: LedgerView,
    symbol: str,
    holder: str,
    pending_rewards_query: Optional[PendingRewardsQuery] = None,
) -> PendingTransaction:
    """
    Snapshot, burn and reset a holder's position in one transaction.

    Args:
        holder: Migrating holder
        pending_rewards_query: Source of the holder's pending staking
            rewards; defaults to the stake book's pending_rewards()

    Raises:
        StateViolation: If migration is disabled, the sale has not reached
            the minimum phase, the holder already migrated or has pending
            staking rewards
        ExternalCallFailure: If the pending rewards query fails or returns
            something other than a Decimal
    """
    require_holder(holder)
    old_state = view.get_unit_state(symbol)
    if not old_state['enabled']:
        raise StateViolation("migration is not enabled")
    phase = presale.load_sale_book(view, old_state['sale_book']).current_phase
    if phase < old_state['min_phase']:
        raise StateViolation(f"migration opens in phase {old_state['min_phase']}, sale is in phase {phase}")
    if is_migrated(view, symbol, holder):
        raise StateViolation(f"{holder} has already migrated")

    stake_book = old_state['stake_book']
    if pending_rewards_query is None:
        def pending_rewards_query(h: str) -> Decimal:
            return staking.pending_rewards(view, stake_book, h)
    pending = _checked_pending_rewards(pending_rewards_query, holder)
    if pending != 0:
        raise StateViolation(f"{holder} has {pending} pending staking rewards; claim them first")

    token = old_state['token']
    balance = view.get_balance(holder, token)
    locked = vesting.locked_by_source(view, old_state['vesting_book'], holder)
    staked = staking.staked_amount(view, stake_book, holder)

    record = {
        'usable': balance - sum(locked.values(), ZERO),
        'staked': staked,
        'locked_by_source': locked,
        'burned': balance,
        'migrated': True,
        'migrated_at': view.current_time,
    }
    new_state = {**old_state, 'records': {**old_state['records'], holder: record}}
    changes = [
        UnitStateChange(symbol, old_state, new_state),
        vesting.plan_retire_holder(view, old_state['vesting_book'], symbol, holder),
    ]

    reset = staking.plan_force_reset(view, stake_book, symbol, holder)
    if reset is not None:
        changes.append(reset)

    moves = []
    if balance > 0:
        moves.append(Move(balance, token, holder, SYSTEM_WALLET, f"migration_burn:{holder}"))

    logger.info("%s migrated: burned %s, staked %s, locked %s", holder, balance, staked, locked)
    origin = TransactionOrigin(OriginType.USER_ACTION, holder, symbol, "MIGRATE")
    return build_transaction(view, moves, changes, origin)


def compute_set_migration_enabled(view: LedgerView, symbol: str, caller: str, enabled: bool) -> PendingTransaction:
    """Admin switch for migration."""
    old_state = view.get_unit_state(symbol)
    require_role(view, old_state['registry'], caller, Role.ADMIN)
    new_state = {**old_state, 'enabled': bool(enabled)}
    logger.info("migration %s by %s", "enabled" if enabled else "disabled", caller)
    origin = TransactionOrigin(OriginType.ADMIN, caller, symbol, "SET_MIGRATION_ENABLED")
    return build_transaction(view, [], [UnitStateChange(symbol, old_state, new_state)], origin)


def migration_summary(view: LedgerView, symbol: str) -> Dict[str, Any]:
    state = view.get_unit_state(symbol)
    return {
        'enabled': state['enabled'],
        'min_phase': state['min_phase'],
        'migrated_holders': sorted(state.get('records', {})),
    }
