"""
token.py - Fixed-Supply Token with a Lock-Aware Transfer Rule

The token is an ordinary balance-carrying unit. Its transfer rule is where
vesting locks and logical stakes become visible to transfers: a holder can
never move tokens below locked + staked.

Issuance is a move out of SYSTEM_WALLET and a burn is a move into it, so the
circulating supply is the negated system balance. The rule refuses any mint
that would push circulating supply above max_supply.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Any, Dict, Optional

from ..core import (
    LedgerView, Move, PendingTransaction, Unit,
    TransactionOrigin, OriginType,
    UNIT_TYPE_TOKEN, TOKEN_DECIMAL_PLACES, SYSTEM_WALLET, ZERO,
    InsufficientFunds, InvalidInput, TransferRuleViolation,
    build_transaction, _freeze_state,
    quantize_amount, require_holder, require_positive, to_decimal,
)
from . import staking, vesting


def create_token_unit(
    symbol: str,
    name: str,
    max_supply: Decimal,
    vesting_book: str,
    stake_book: str,
    migration_book: Optional[str] = None,
) -> Unit:
    """
    Create the token unit.

    Args:
        symbol: Token symbol (e.g., "VEST")
        name: Human-readable name
        max_supply: Hard cap on circulating supply
        vesting_book: Book consulted for locked amounts
        stake_book: Book consulted for staked amounts
        migration_book: Book whose MIGRATE transactions may burn locked tokens
    """
    max_supply = to_decimal(max_supply, "max_supply")
    if max_supply <= 0:
        raise InvalidInput("max_supply must be positive")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        min_balance=Decimal("0"),
        decimal_places=TOKEN_DECIMAL_PLACES,
        transfer_rule=lock_transfer_rule,
        _frozen_state=_freeze_state({
            'max_supply': max_supply,
            'vesting_book': vesting_book,
            'stake_book': stake_book,
            'migration_book': migration_book,
        }),
    )


def encumbered_amount(view: LedgerView, symbol: str, holder: str) -> Decimal:
    """Locked (all sources) plus staked tokens of a holder."""
    state = view.get_unit_state(symbol)
    locked = vesting.total_locked(view, state['vesting_book'], holder)
    staked = staking.staked_amount(view, state['stake_book'], holder)
    return locked + staked


def transferable_amount(view: LedgerView, symbol: str, holder: str) -> Decimal:
    """balance - locked - staked, floored at zero."""
    balance = view.get_balance(holder, symbol)
    return max(ZERO, balance - encumbered_amount(view, symbol, holder))


def _is_migration_burn(state: Dict[str, Any], move: Move, pending: PendingTransaction) -> bool:
    """A burn of the migrating holder's tokens inside a MIGRATE transaction of the migration book."""
    book = state.get('migration_book')
    origin = pending.origin
    return (
        book is not None
        and move.dest == SYSTEM_WALLET
        and origin.unit_symbol == book
        and origin.event_type == "MIGRATE"
        and origin.source_id == move.source
        and any(sc.unit == book for sc in pending.state_changes)
    )


def lock_transfer_rule(view: LedgerView, move: Move, pending: PendingTransaction) -> None:
    """
    Validate a token move.

    - Mints (source SYSTEM_WALLET) must keep circulating supply within
      max_supply.
    - Burns made by the migration book for the migrating holder skip the
      lock check.
    - Any other move must leave the source with at least locked + staked.

    Raises:
        TransferRuleViolation: If the move breaks either limit
    """
    state = view.get_unit_state(move.unit_symbol)

    if move.source == SYSTEM_WALLET:
        circulating = -view.get_balance(SYSTEM_WALLET, move.unit_symbol)
        if circulating + move.quantity > state['max_supply']:
            raise TransferRuleViolation(
                f"mint of {move.quantity} {move.unit_symbol} exceeds max supply "
                f"{state['max_supply']} (circulating {circulating})"
            )
        return

    if _is_migration_burn(state, move, pending):
        return

    encumbered = encumbered_amount(view, move.unit_symbol, move.source)
    if encumbered <= 0:
        return
    remaining = view.get_balance(move.source, move.unit_symbol) - move.quantity
    if remaining < encumbered:
        raise TransferRuleViolation(
            f"{move.source} would keep {remaining} {move.unit_symbol} "
            f"but {encumbered} is locked or staked"
        )


def compute_mint(
    view: LedgerView, symbol: str, to: str, amount: Decimal, contract_id: str = "genesis"
) -> PendingTransaction:
    """Issue new tokens to a wallet (subject to max supply)."""
    require_holder(to, "to")
    amount = quantize_amount(require_positive(amount))
    move = Move(amount, symbol, SYSTEM_WALLET, to, contract_id)
    origin = TransactionOrigin(OriginType.SYSTEM, SYSTEM_WALLET, symbol, "MINT")
    return build_transaction(view, [move], origin=origin)


def compute_transfer(
    view: LedgerView,
    symbol: str,
    sender: str,
    recipient: str,
    amount: Decimal,
    reference: Optional[str] = None,
) -> PendingTransaction:
    """
    Move transferable tokens between holders.

    Raises:
        InvalidInput: For empty wallets or a non-positive amount
        InsufficientFunds: If amount exceeds the sender's transferable balance
    """
    require_holder(sender, "sender")
    require_holder(recipient, "recipient")
    amount = quantize_amount(require_positive(amount))
    available = transferable_amount(view, symbol, sender)
    if amount > available:
        raise InsufficientFunds(f"{sender} can transfer at most {available}, requested {amount}")
    move = Move(amount, symbol, sender, recipient, reference or f"transfer:{sender}:{recipient}")
    origin = TransactionOrigin(OriginType.USER_ACTION, sender, symbol, "TRANSFER")
    return build_transaction(view, [move], origin=origin)


def compute_burn(
    view: LedgerView, symbol: str, holder: str, amount: Decimal, reference: Optional[str] = None
) -> PendingTransaction:
    """
    Destroy transferable tokens of a holder.

    Raises:
        InsufficientFunds: If amount exceeds the holder's transferable balance
    """
    require_holder(holder)
    amount = quantize_amount(require_positive(amount))
    available = transferable_amount(view, symbol, holder)
    if amount > available:
        raise InsufficientFunds(f"{holder} can burn at most {available}, requested {amount}")
    move = Move(amount, symbol, holder, SYSTEM_WALLET, reference or f"burn:{holder}")
    origin = TransactionOrigin(OriginType.USER_ACTION, holder, symbol, "BURN")
    return build_transaction(view, [move], origin=origin)
