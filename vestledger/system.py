"""
system.py - Token Distribution System

Wires the token, the settlement asset and the five books onto one Ledger and
exposes every operation as a method.

Each method:
1. Rejects re-entrant calls (an operation is already running)
2. Builds a PendingTransaction with the owning book's compute_* function
3. Executes it atomically; a rejected transaction raises TransactionRejected

Nothing runs in the background. Unlocked amounts and rewards are computed
from stored state and the ledger's logical clock whenever they are read, so
moving time forward is just advance_time().
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional
import logging

from .core import (
    PendingTransaction, ExecuteResult, SYSTEM_WALLET,
    TransactionOrigin, OriginType, Move,
    ReentrantCall, TransactionRejected,
    build_transaction, cash, require_holder, require_positive,
)
from .ledger import Ledger
from .access import Role, create_access_registry, compute_grant_role, compute_revoke_role
from .config import TokenomicsTerms
from .price_feed import PriceFeed
from .units import migration, presale, staking, token, vesting
from .units.vesting import VestingSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BookSymbols:
    """Unit symbols of one distribution."""
    token: str
    settlement: str
    vesting: str
    sale: str
    stake: str
    migration: str
    access: str

    @classmethod
    def for_token(cls, symbol: str, settlement: str) -> 'BookSymbols':
        return cls(
            token=symbol,
            settlement=settlement,
            vesting=f"{symbol}.VESTING",
            sale=f"{symbol}.SALE",
            stake=f"{symbol}.STAKE",
            migration=f"{symbol}.MIGRATION",
            access=f"{symbol}.ACCESS",
        )


def pool_wallet(symbol: str, source: VestingSource) -> str:
    """Wallet funding a source's credits, e.g. "VEST:pool:sale"."""
    return f"{symbol}:pool:{source.value}"


class TokenSystem:
    """
    Facade over one distribution.

    Example:
        system = TokenSystem.bootstrap(admin="admin", start_time=datetime(2025, 1, 1))
        system.issue_settlement("alice", Decimal("1000"))
        system.purchase("alice", Decimal("1000"))
        system.end_sale("admin")
        system.advance_time(datetime(2025, 6, 1))
        system.unlocked("alice", VestingSource.SALE)
    """

    def __init__(self, ledger: Ledger, terms: TokenomicsTerms, symbols: BookSymbols, admin: str, treasury: str):
        self.ledger = ledger
        self.terms = terms
        self.symbols = symbols
        self.admin = admin
        self.treasury = treasury
        self._busy = False

    # ========================================================================
    # GENESIS
    # ========================================================================

    @classmethod
    def bootstrap(
        cls,
        admin: str,
        start_time: Optional[datetime] = None,
        terms: Optional[TokenomicsTerms] = None,
        treasury: str = "treasury",
        gaming_controller: Optional[str] = None,
        ledger_name: str = "vestledger",
        verbose: bool = False,
    ) -> 'TokenSystem':
        """
        Create a ledger, register every unit and mint the fixed supply.

        The whole supply is minted to a reserve wallet and split into the
        five pool wallets in one transaction. Staking starts at start_time.
        """
        terms = terms or TokenomicsTerms()
        symbols = BookSymbols.for_token(terms.symbol, terms.settlement_symbol)
        ledger = Ledger(ledger_name, start_time, verbose=verbose)
        start = ledger.current_time

        pools = {source: pool_wallet(terms.symbol, source) for source in VestingSource}
        reserve = f"{terms.symbol}:reserve"
        for wallet in [admin, treasury, reserve, *pools.values()]:
            ledger.ensure_wallet(wallet)

        grants = {
            symbols.stake: [Role.STAKING_CONTROLLER],
            symbols.migration: [Role.MIGRATOR],
        }
        if gaming_controller:
            ledger.ensure_wallet(gaming_controller)
            grants[gaming_controller] = [Role.GAMING_CONTROLLER]

        ledger.register_unit(cash(terms.settlement_symbol, terms.settlement_symbol, terms.sale.settlement_decimals))
        ledger.register_unit(create_access_registry(symbols.access, admin, grants))
        ledger.register_unit(token.create_token_unit(
            symbols.token, f"{terms.symbol} Token", terms.max_supply, symbols.vesting, symbols.stake, symbols.migration,
        ))
        ledger.register_unit(vesting.create_vesting_book(
            symbols.vesting, symbols.token, symbols.sale, symbols.access, pools, terms.vesting,
        ))
        ledger.register_unit(presale.create_sale_book(
            symbols.sale, symbols.token, symbols.settlement, symbols.vesting, symbols.access,
            treasury, terms.sale,
        ))
        ledger.register_unit(staking.create_stake_book(
            symbols.stake, symbols.token, symbols.vesting, symbols.access, start, terms.staking,
        ))
        ledger.register_unit(migration.create_migration_book(
            symbols.migration, symbols.token, symbols.vesting, symbols.stake, symbols.sale,
            symbols.access, terms.migration,
        ))

        moves = [Move(terms.max_supply, symbols.token, SYSTEM_WALLET, reserve, "genesis")]
        for source, wallet in pools.items():
            amount = terms.pools[source.value]
            if amount > 0:
                moves.append(Move(amount, symbols.token, reserve, wallet, "genesis"))
        origin = TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, symbols.token, "GENESIS")

        system = cls(ledger, terms, symbols, admin, treasury)
        system._commit(build_transaction(ledger, moves, origin=origin))
        logger.info("genesis: minted %s %s into %d pools", terms.max_supply, symbols.token, len(pools))
        return system

    # ========================================================================
    # EXECUTION
    # ========================================================================

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        if self._busy:
            raise ReentrantCall(f"{name} called while another operation is running")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    def _commit(self, pending: PendingTransaction) -> ExecuteResult:
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            raise TransactionRejected(self.ledger.last_rejection)
        if result == ExecuteResult.ALREADY_APPLIED:
            logger.warning("%r was already applied", pending)
        return result

    def _run(self, name: str, build: Callable[[], PendingTransaction]) -> ExecuteResult:
        with self._operation(name):
            return self._commit(build())

    def _reference(self, kind: str) -> str:
        return f"{kind}:{len(self.ledger.transaction_log)}"

    def register_holder(self, holder: str) -> str:
        """Register a holder wallet if it does not exist yet."""
        return self.ledger.ensure_wallet(require_holder(holder))

    def advance_time(self, new_time: datetime) -> None:
        self.ledger.advance_time(new_time)

    @property
    def now(self) -> datetime:
        return self.ledger.current_time

    # ========================================================================
    # SETTLEMENT ASSETS
    # ========================================================================

    def register_currency(self, symbol: str, name: str, decimal_places: int = 18) -> None:
        """Register an external currency accepted through a price feed."""
        self.ledger.register_unit(cash(symbol, name, decimal_places))

    def issue_settlement(self, wallet: str, amount: Decimal, currency: Optional[str] = None) -> ExecuteResult:
        """Credit a wallet with settlement asset (or another registered currency) from outside."""
        unit = currency or self.symbols.settlement
        self.register_holder(wallet)

        def build():
            move = Move(require_positive(amount), unit, SYSTEM_WALLET, wallet, self._reference("deposit"))
            return build_transaction(self.ledger, [move], origin=TransactionOrigin(OriginType.SYSTEM, wallet, unit, "DEPOSIT"))

        return self._run("issue_settlement", build)

    # ========================================================================
    # SALE
    # ========================================================================

    def purchase(self, buyer: str, payment: Decimal) -> ExecuteResult:
        self.register_holder(buyer)
        return self._run("purchase", lambda: presale.compute_purchase(self.ledger, self.symbols.sale, buyer, payment))

    def purchase_with_feed(self, buyer: str, currency: str, amount: Decimal, feed: PriceFeed) -> ExecuteResult:
        self.register_holder(buyer)
        return self._run("purchase_with_feed", lambda: presale.compute_purchase_with_feed(
            self.ledger, self.symbols.sale, buyer, currency, amount, feed,
        ))

    def end_sale(self, caller: str) -> ExecuteResult:
        return self._run("end_sale", lambda: presale.compute_end_sale(self.ledger, self.symbols.sale, caller))

    def advance_phase(self, caller: str) -> ExecuteResult:
        return self._run("advance_phase", lambda: presale.compute_advance_phase(self.ledger, self.symbols.sale, caller))

    def set_max_purchase(self, caller: str, max_purchase: Decimal) -> ExecuteResult:
        return self._run("set_max_purchase", lambda: presale.compute_set_max_purchase(
            self.ledger, self.symbols.sale, caller, max_purchase,
        ))

    def set_sale_active(self, caller: str, active: bool) -> ExecuteResult:
        return self._run("set_sale_active", lambda: presale.compute_set_sale_active(
            self.ledger, self.symbols.sale, caller, active,
        ))

    # ========================================================================
    # VESTING CREDITS
    # ========================================================================

    def credit_gaming(self, caller: str, holder: str, amount: Decimal) -> ExecuteResult:
        self.register_holder(holder)
        return self._run("credit_gaming", lambda: vesting.compute_gaming_credit(
            self.ledger, self.symbols.vesting, caller, holder, amount,
        ))

    def allocate(self, caller: str, holder: str, source: Any, amount: Decimal) -> ExecuteResult:
        """Admin allocation for the marketing or long_term_grant source."""
        self.register_holder(holder)
        source = vesting.require_known_source(source)
        return self._run("allocate", lambda: vesting.compute_allocation(
            self.ledger, self.symbols.vesting, caller, holder, source, amount,
        ))

    # ========================================================================
    # STAKING
    # ========================================================================

    def stake(self, holder: str, amount: Decimal) -> ExecuteResult:
        return self._run("stake", lambda: staking.compute_stake(self.ledger, self.symbols.stake, holder, amount))

    def unstake(self, holder: str) -> ExecuteResult:
        return self._run("unstake", lambda: staking.compute_unstake(self.ledger, self.symbols.stake, holder))

    def claim(self, holder: str) -> ExecuteResult:
        return self._run("claim", lambda: staking.compute_claim(self.ledger, self.symbols.stake, holder))

    def set_staking_enabled(self, caller: str, enabled: bool) -> ExecuteResult:
        return self._run("set_staking_enabled", lambda: staking.compute_set_staking_enabled(
            self.ledger, self.symbols.stake, caller, enabled,
        ))

    def set_early_claim(self, caller: str, enabled: bool) -> ExecuteResult:
        return self._run("set_early_claim", lambda: staking.compute_set_early_claim(
            self.ledger, self.symbols.stake, caller, enabled,
        ))

    def stop_rewards(self, caller: str) -> ExecuteResult:
        return self._run("stop_rewards", lambda: staking.compute_stop_rewards(self.ledger, self.symbols.stake, caller))

    def add_booster(self, caller: str, start: datetime, end: datetime, multiplier: Decimal) -> ExecuteResult:
        return self._run("add_booster", lambda: staking.compute_add_booster(
            self.ledger, self.symbols.stake, caller, start, end, multiplier,
        ))

    # ========================================================================
    # MIGRATION
    # ========================================================================

    def migrate(self, holder: str, pending_rewards_query: Optional[migration.PendingRewardsQuery] = None) -> ExecuteResult:
        return self._run("migrate", lambda: migration.compute_migration(
            self.ledger, self.symbols.migration, holder, pending_rewards_query,
        ))

    def set_migration_enabled(self, caller: str, enabled: bool) -> ExecuteResult:
        return self._run("set_migration_enabled", lambda: migration.compute_set_migration_enabled(
            self.ledger, self.symbols.migration, caller, enabled,
        ))

    # ========================================================================
    # TOKEN AND ROLES
    # ========================================================================

    def transfer(self, sender: str, recipient: str, amount: Decimal) -> ExecuteResult:
        self.register_holder(recipient)
        return self._run("transfer", lambda: token.compute_transfer(
            self.ledger, self.symbols.token, sender, recipient, amount, self._reference("transfer"),
        ))

    def burn(self, holder: str, amount: Decimal) -> ExecuteResult:
        return self._run("burn", lambda: token.compute_burn(
            self.ledger, self.symbols.token, holder, amount, self._reference("burn"),
        ))

    def grant_role(self, caller: str, wallet: str, role: Role) -> ExecuteResult:
        return self._run("grant_role", lambda: compute_grant_role(self.ledger, self.symbols.access, caller, wallet, role))

    def revoke_role(self, caller: str, wallet: str, role: Role) -> ExecuteResult:
        return self._run("revoke_role", lambda: compute_revoke_role(self.ledger, self.symbols.access, caller, wallet, role))

    # ========================================================================
    # VIEWS
    # ========================================================================

    def balance(self, wallet: str, unit: Optional[str] = None) -> Decimal:
        return self.ledger.get_balance(wallet, unit or self.symbols.token)

    def transferable(self, holder: str) -> Decimal:
        return token.transferable_amount(self.ledger, self.symbols.token, holder)

    def unlocked(self, holder: str, source: Any) -> Decimal:
        return vesting.unlocked_amount(self.ledger, self.symbols.vesting, holder, vesting.require_known_source(source))

    def locked(self, holder: str, source: Any) -> Decimal:
        return vesting.locked_amount(self.ledger, self.symbols.vesting, holder, vesting.require_known_source(source))

    def locked_by_source(self, holder: str) -> Dict[str, Decimal]:
        return vesting.locked_by_source(self.ledger, self.symbols.vesting, holder)

    def staked(self, holder: str) -> Decimal:
        return staking.staked_amount(self.ledger, self.symbols.stake, holder)

    def pending_rewards(self, holder: str) -> Decimal:
        return staking.pending_rewards(self.ledger, self.symbols.stake, holder)

    def migration_record(self, holder: str) -> Optional[migration.MigrationRecord]:
        return migration.load_record(self.ledger, self.symbols.migration, holder)

    def circulating_supply(self) -> Decimal:
        return self.ledger.circulating_supply(self.symbols.token)

    def sale_summary(self) -> Dict[str, Any]:
        return presale.sale_summary(self.ledger, self.symbols.sale)

    def position(self, holder: str) -> Dict[str, Any]:
        """Everything the system knows about one holder."""
        return {
            'balance': self.balance(holder),
            'transferable': self.transferable(holder),
            'staked': self.staked(holder),
            'pending_rewards': self.pending_rewards(holder),
            'locked_by_source': self.locked_by_source(holder),
            'unlocked': vesting.total_unlocked(self.ledger, self.symbols.vesting, holder),
            'migrated': migration.is_migrated(self.ledger, self.symbols.migration, holder),
        }

    def holders(self) -> List[str]:
        """Holders with at least one vesting allocation."""
        return vesting.holders(self.ledger, self.symbols.vesting)
