"""
Units module - Token and book units of the distribution.

This module provides factory functions and compute_* operations for:
- The fixed-supply token and its lock-aware transfer rule
- The vesting book (five allocation sources)
- The phased public sale
- The stake book and reward accrual
- The migration recorder

All unit factories and related functions are re-exported here for convenience.
"""

# Token
from .token import (
    create_token_unit,
    lock_transfer_rule,
    encumbered_amount,
    transferable_amount,
    compute_mint,
    compute_transfer,
    compute_burn,
)

# Vesting book
from .vesting import (
    VestingSource,
    ReleaseMode,
    VestingSchedule,
    SubAllocation,
    VestingAllocation,
    create_vesting_book,
    load_schedule,
    load_allocations,
    load_sale_end_time,
    calculate_linear_release,
    calculate_tranche_unlocked,
    calculate_unlocked,
    calculate_locked,
    unlocked_amount,
    locked_amount,
    locked_by_source,
    total_locked,
    total_unlocked,
    allocation_total,
    plan_vesting_credits,
    plan_vesting_credit,
    plan_staking_reward_credit,
    compute_gaming_credit,
    compute_allocation,
)

# Public sale
from .presale import (
    SaleBook,
    PhaseFill,
    PurchasePlan,
    create_sale_book,
    load_sale_book,
    price_at,
    plan_purchase,
    quote,
    compute_purchase,
    compute_purchase_with_feed,
    compute_end_sale,
    compute_advance_phase,
    compute_set_max_purchase,
    compute_set_sale_active,
    sale_summary,
)

# Staking
from .staking import (
    StakingCurve,
    StakePool,
    Stake,
    BoosterPeriod,
    AccrualResult,
    create_stake_book,
    load_curve,
    load_pool,
    load_stake,
    load_boosters,
    apr_at_day,
    calculate_base_reward,
    calculate_accrual,
    apply_accrual,
    staked_amount,
    pending_rewards,
    compute_stake,
    compute_unstake,
    compute_claim,
    plan_force_reset,
    compute_set_staking_enabled,
    compute_set_early_claim,
    compute_stop_rewards,
    compute_add_booster,
)

# Migration
from .migration import (
    MigrationRecord,
    PendingRewardsQuery,
    create_migration_book,
    load_record,
    is_migrated,
    compute_migration,
    compute_set_migration_enabled,
    migration_summary,
)


__all__ = [
    # Token
    'create_token_unit', 'lock_transfer_rule',
    'encumbered_amount', 'transferable_amount',
    'compute_mint', 'compute_transfer', 'compute_burn',
    # Vesting
    'VestingSource', 'ReleaseMode', 'VestingSchedule', 'SubAllocation', 'VestingAllocation',
    'create_vesting_book', 'load_schedule', 'load_allocations', 'load_sale_end_time',
    'calculate_linear_release', 'calculate_tranche_unlocked', 'calculate_unlocked', 'calculate_locked',
    'unlocked_amount', 'locked_amount', 'locked_by_source', 'total_locked', 'total_unlocked',
    'allocation_total', 'plan_vesting_credits', 'plan_vesting_credit', 'plan_staking_reward_credit',
    'compute_gaming_credit', 'compute_allocation',
    # Sale
    'SaleBook', 'PhaseFill', 'PurchasePlan', 'create_sale_book', 'load_sale_book',
    'price_at', 'plan_purchase', 'quote', 'compute_purchase', 'compute_purchase_with_feed',
    'compute_end_sale', 'compute_advance_phase', 'compute_set_max_purchase',
    'compute_set_sale_active', 'sale_summary',
    # Staking
    'StakingCurve', 'StakePool', 'Stake', 'BoosterPeriod', 'AccrualResult',
    'create_stake_book', 'load_curve', 'load_pool', 'load_stake', 'load_boosters',
    'apr_at_day', 'calculate_base_reward', 'calculate_accrual', 'apply_accrual',
    'staked_amount', 'pending_rewards',
    'compute_stake', 'compute_unstake', 'compute_claim', 'plan_force_reset',
    'compute_set_staking_enabled', 'compute_set_early_claim', 'compute_stop_rewards',
    'compute_add_booster',
    # Migration
    'MigrationRecord', 'PendingRewardsQuery', 'create_migration_book', 'load_record',
    'is_migrated', 'compute_migration', 'compute_set_migration_enabled', 'migration_summary',
]
