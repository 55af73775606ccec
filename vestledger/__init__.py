"""
vestledger - Fixed-Supply Token Distribution Ledger

Vesting, a phased public sale and decaying-APR staking for one token, all
recorded on a double-entry ledger with atomic transactions.

Usage:
    from datetime import datetime, timedelta
    from decimal import Decimal
    from vestledger import TokenSystem, VestingSource

    system = TokenSystem.bootstrap(admin="admin", start_time=datetime(2025, 1, 1))

    # Buy in phase 1 with the settlement asset
    system.issue_settlement("alice", Decimal("1000"))
    system.purchase("alice", Decimal("1000"))      # 10,000 VEST at $0.10

    # Tokens are locked until the sale ends, then unlock per phase schedule
    system.end_sale("admin")
    system.unlocked("alice", VestingSource.SALE)   # 1,000 (10%)

    system.advance_time(datetime(2025, 1, 1) + timedelta(days=101))
    system.unlocked("alice", VestingSource.SALE)   # 5,500 (10% + 90% * 100/200)

Lower-level building blocks (Ledger, Move, build_transaction and the units'
compute_* functions) are exported for direct use.
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    LedgerError,
    InvalidInput,
    Unauthorized,
    StateViolation,
    ReentrantCall,
    CapacityExceeded,
    StaleExternalData,
    ExternalCallFailure,
    InsufficientFunds,
    TransferRuleViolation,
    TransactionRejected,
    UnitNotRegistered,
    WalletNotRegistered,
    cash,
    SYSTEM_WALLET,
    UNIT_TYPE_CASH,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_VESTING_BOOK,
    UNIT_TYPE_SALE_BOOK,
    UNIT_TYPE_STAKE_BOOK,
    UNIT_TYPE_MIGRATION_BOOK,
    UNIT_TYPE_ACCESS_REGISTRY,
    SECONDS_PER_DAY,
)

# Ledger
from .ledger import Ledger

# Terms
from .config import (
    PresalePhase,
    SaleTerms,
    VestingTerms,
    StakingTerms,
    MigrationTerms,
    TokenomicsTerms,
    DEFAULT_PHASES,
    SALE_UNLOCK_SCHEDULE,
    SECONDS_PER_YEAR,
    RATE_SCALE,
    MAX_ACCRUAL_DAYS,
    default_terms,
)

# Access control
from .access import Role, create_access_registry, has_role, require_role

# Price feeds
from .price_feed import (
    RoundData,
    PriceFeed,
    StaticPriceFeed,
    TimeSeriesPriceFeed,
    validate_round,
    fetch_price,
)

# Units
from .units import (
    VestingSource,
    ReleaseMode,
    BoosterPeriod,
    MigrationRecord,
    create_token_unit,
    create_vesting_book,
    create_sale_book,
    create_stake_book,
    create_migration_book,
    price_at,
    plan_purchase,
    apr_at_day,
    calculate_accrual,
    calculate_unlocked,
    calculate_locked,
)

# Facade
from .system import TokenSystem, BookSymbols, pool_wallet


__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'Unit', 'UnitStateChange', 'ExecuteResult',
    'cash', 'SYSTEM_WALLET', 'SECONDS_PER_DAY',
    'UNIT_TYPE_CASH', 'UNIT_TYPE_TOKEN', 'UNIT_TYPE_VESTING_BOOK', 'UNIT_TYPE_SALE_BOOK',
    'UNIT_TYPE_STAKE_BOOK', 'UNIT_TYPE_MIGRATION_BOOK', 'UNIT_TYPE_ACCESS_REGISTRY',
    # Errors
    'LedgerError', 'InvalidInput', 'Unauthorized', 'StateViolation', 'ReentrantCall',
    'CapacityExceeded', 'StaleExternalData', 'ExternalCallFailure', 'InsufficientFunds',
    'TransferRuleViolation', 'TransactionRejected', 'UnitNotRegistered', 'WalletNotRegistered',
    # Ledger
    'Ledger',
    # Terms
    'PresalePhase', 'SaleTerms', 'VestingTerms', 'StakingTerms', 'MigrationTerms', 'TokenomicsTerms',
    'DEFAULT_PHASES', 'SALE_UNLOCK_SCHEDULE', 'SECONDS_PER_YEAR', 'RATE_SCALE', 'MAX_ACCRUAL_DAYS',
    'default_terms',
    # Access
    'Role', 'create_access_registry', 'has_role', 'require_role',
    # Price feeds
    'RoundData', 'PriceFeed', 'StaticPriceFeed', 'TimeSeriesPriceFeed', 'validate_round', 'fetch_price',
    # Units
    'VestingSource', 'ReleaseMode', 'BoosterPeriod', 'MigrationRecord',
    'create_token_unit', 'create_vesting_book', 'create_sale_book', 'create_stake_book',
    'create_migration_book', 'price_at', 'plan_purchase', 'apr_at_day', 'calculate_accrual',
    'calculate_unlocked', 'calculate_locked',
    # Facade
    'TokenSystem', 'BookSymbols', 'pool_wallet',
]

__version__ = '0.1.0'
