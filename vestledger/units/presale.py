"""
presale.py - Phased Public Sale: Step Pricing and Greedy Allocation

The sale book holds an ordered, contiguous phase table plus two monotone
counters: the cumulative number of tokens sold and the active phase index.
Purchases fill the active phase first and spill into later phases; the
tokens bought are delivered from the sale pool and recorded as sale vesting
sub-allocations, one per phase touched.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES:
   - SaleBook: Phase table, counters and switches read from the ledger
   - PhaseFill / PurchasePlan: Result of planning a purchase

2. PURE CALCULATION FUNCTIONS:
   - price_at: Step price inside one phase
   - plan_purchase: Greedy allocation of a payment across phases

3. ADAPTER FUNCTIONS (load_sale_book)

4. CONVENIENCE FUNCTIONS (compute_*):
   - compute_purchase: Pay in the settlement asset
   - compute_purchase_with_feed: Pay in another currency, converted through
     a freshness-checked price feed
   - Admin: end sale, advance phase, max purchase, active switch

Pricing:
    steps     = capacity // step_tokens
    step_size = (end_price - start_price) / (steps - 1)
    price     = min(end_price, start_price + (sold_in_phase // step_tokens) * step_size)
    (a phase with at most one step is priced at end_price)

Each phase's chunk of a purchase is priced at the step price of the phase's
offset when the chunk starts.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, Any, List, Optional, Tuple
import logging

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    UNIT_TYPE_SALE_BOOK, TOKEN_DECIMAL_PLACES, ZERO,
    InvalidInput, StateViolation, CapacityExceeded,
    build_transaction, _freeze_state,
    quantize_amount, quantize_up, require_holder, require_positive,
)
from ..access import Role, require_role
from ..config import PresalePhase, SaleTerms
from ..price_feed import PriceFeed, fetch_price
from . import vesting

logger = logging.getLogger(__name__)


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class SaleBook:
    """Snapshot of the sale book."""
    phases: Tuple[PresalePhase, ...]
    step_tokens: Decimal
    max_purchase: Decimal
    settlement_decimals: int
    max_staleness_seconds: int
    sold: Decimal
    phase_index: int
    active: bool
    sale_end_time: Optional[datetime]

    @property
    def current_phase(self) -> int:
        """Active phase, 1-based."""
        return self.phase_index + 1

    @property
    def total_capacity(self) -> Decimal:
        return self.phases[-1].end_counter

    @property
    def sold_out(self) -> bool:
        return self.sold >= self.total_capacity


@dataclass(frozen=True, slots=True)
class PhaseFill:
    """The part of a purchase filled in one phase."""
    phase: int
    tokens: Decimal
    price: Decimal
    cost: Decimal


@dataclass(frozen=True, slots=True)
class PurchasePlan:
    """
    Result of plan_purchase().

    Attributes:
        tokens: Total tokens bought
        cost: Exact settlement cost (before rounding up to settlement precision)
        sold: Cumulative-sold counter after the purchase
        phase_index: Active phase index after the purchase (0-based)
        fills: Per-phase breakdown, in phase order
    """
    tokens: Decimal
    cost: Decimal
    sold: Decimal
    phase_index: int
    fills: Tuple[PhaseFill, ...]


# ============================================================================
# UNIT CREATION
# ============================================================================

def create_sale_book(
    symbol: str,
    token: str,
    settlement: str,
    vesting_book: str,
    registry: str,
    treasury: str,
    terms: Optional[SaleTerms] = None,
) -> Unit:
    """
    Create a sale book unit.

    Args:
        symbol: Book symbol (e.g., "VEST.SALE")
        token: Token being sold
        settlement: Settlement asset symbol (e.g., "USDT")
        vesting_book: Vesting book that records sale contributions
        registry: Access registry for admin operations
        treasury: Wallet receiving payments
        terms: Phase table and limits (defaults to SaleTerms())
    """
    terms = terms or SaleTerms()
    return Unit(
        symbol=symbol,
        name=f"{token} Public Sale",
        unit_type=UNIT_TYPE_SALE_BOOK,
        _frozen_state=_freeze_state({
            'token': token,
            'settlement': settlement,
            'vesting_book': vesting_book,
            'registry': registry,
            'treasury': treasury,
            'phases': [p.to_dict() for p in terms.phases],
            'step_tokens': terms.step_tokens,
            'max_purchase': terms.max_purchase,
            'settlement_decimals': terms.settlement_decimals,
            'max_staleness_seconds': terms.max_staleness_seconds,
            'sold': terms.phases[0].start_counter,
            'phase_index': 0,
            'active': True,
            'sale_end_time': None,
            'raised': ZERO,
        }),
    )


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def load_sale_book(view: LedgerView, symbol: str) -> SaleBook:
    state = view.get_unit_state(symbol)
    return SaleBook(
        phases=tuple(PresalePhase(**p) for p in state['phases']),
        step_tokens=state['step_tokens'],
        max_purchase=state['max_purchase'],
        settlement_decimals=state['settlement_decimals'],
        max_staleness_seconds=state['max_staleness_seconds'],
        sold=state['sold'],
        phase_index=state['phase_index'],
        active=state['active'],
        sale_end_time=state.get('sale_end_time'),
    )


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def price_at(phase: PresalePhase, sold_in_phase: Decimal, step_tokens: Decimal) -> Decimal:
    """
    Unit price at an offset into a phase.

    PURE FUNCTION - no side effects.

    Example (phase of 64M tokens, 4M per step, $0.10 -> $0.13):
        price_at(phase, 0, 4_000_000)           # 0.10
        price_at(phase, 4_000_000, 4_000_000)   # 0.102
        price_at(phase, 63_999_999, 4_000_000)  # 0.13
    """
    steps = phase.capacity // step_tokens
    if steps <= 1:
        return phase.end_price
    step_size = (phase.end_price - phase.start_price) / (steps - 1)
    current_step = sold_in_phase // step_tokens
    return min(phase.end_price, phase.start_price + current_step * step_size)


def plan_purchase(
    phases: Tuple[PresalePhase, ...],
    sold: Decimal,
    phase_index: int,
    step_tokens: Decimal,
    payment: Decimal,
) -> PurchasePlan:
    """
    Allocate a settlement payment greedily across phases.

    PURE FUNCTION - no side effects.

    Starting from the active phase, buy as many tokens as the remaining
    payment affords at the phase's current step price, capped by the phase's
    remaining capacity. Exhausting a phase moves on to the next one while
    payment remains. Token amounts are rounded down to token precision, so
    the cost never exceeds the payment.
    """
    remaining = payment
    tokens = ZERO
    cost = ZERO
    fills: List[PhaseFill] = []
    index = phase_index

    while remaining > 0 and index < len(phases):
        phase = phases[index]
        capacity_left = phase.end_counter - sold
        if capacity_left <= 0:
            index += 1
            continue

        price = price_at(phase, sold - phase.start_counter, step_tokens)
        bought = min(quantize_amount(remaining / price), capacity_left)
        if bought <= 0:
            break

        spent = bought * price
        remaining -= spent
        tokens += bought
        cost += spent
        sold += bought
        fills.append(PhaseFill(index + 1, bought, price, spent))

        if sold < phase.end_counter:
            break
        index += 1

    return PurchasePlan(tokens, cost, sold, min(index, len(phases) - 1), tuple(fills))


# ============================================================================
# PURCHASES
# ============================================================================

def _require_open(book: SaleBook) -> None:
    if book.sale_end_time is not None:
        raise StateViolation("the sale has ended")
    if not book.active:
        raise StateViolation("the sale is not active")
    if book.sold_out:
        raise StateViolation("the sale is sold out")


def quote(view: LedgerView, symbol: str, payment: Decimal) -> PurchasePlan:
    """Plan a settlement-asset purchase against the current book without applying it."""
    book = load_sale_book(view, symbol)
    return plan_purchase(book.phases, book.sold, book.phase_index, book.step_tokens, to_settlement(book, payment))


def to_settlement(book: SaleBook, amount: Decimal) -> Decimal:
    return quantize_amount(require_positive(amount), book.settlement_decimals)


def _build_purchase(
    view: LedgerView,
    symbol: str,
    buyer: str,
    value: Decimal,
    payment_unit: str,
    charge_for: Callable[[Decimal], Decimal],
) -> PendingTransaction:
    """
    Shared purchase flow once the payment's settlement value is known.

    charge_for maps the settlement amount actually spent to the amount of
    payment_unit to pull from the buyer.
    """
    old_state = view.get_unit_state(symbol)
    book = load_sale_book(view, symbol)

    if value > book.max_purchase:
        raise CapacityExceeded(f"purchase of {value} exceeds the maximum of {book.max_purchase}")

    plan = plan_purchase(book.phases, book.sold, book.phase_index, book.step_tokens, value)
    if plan.tokens <= 0:
        raise InvalidInput(f"payment of {value} buys no tokens")

    spent = quantize_up(plan.cost, book.settlement_decimals)
    charge = charge_for(spent)

    contract_id = f"presale:{buyer}:{plan.sold}"
    credit_move, credit_change = vesting.plan_vesting_credits(
        view,
        old_state['vesting_book'],
        buyer,
        vesting.VestingSource.SALE,
        [(fill.tokens, fill.phase) for fill in plan.fills],
        contract_id,
    )
    payment_move = Move(charge, payment_unit, buyer, old_state['treasury'], contract_id)

    new_state = {
        **old_state,
        'sold': plan.sold,
        'phase_index': plan.phase_index,
        'raised': old_state.get('raised', ZERO) + spent,
    }
    if plan.phase_index != book.phase_index:
        logger.info("sale advanced to phase %d", plan.phase_index + 1)
    logger.info(
        "%s bought %s tokens for %s %s across phases %s",
        buyer, plan.tokens, charge, payment_unit, [f.phase for f in plan.fills],
    )

    origin = TransactionOrigin(OriginType.USER_ACTION, buyer, symbol, "PURCHASE")
    return build_transaction(
        view,
        [payment_move, credit_move],
        [UnitStateChange(symbol, old_state, new_state), credit_change],
        origin,
    )


def compute_purchase(view: LedgerView, symbol: str, buyer: str, payment: Decimal) -> PendingTransaction:
    """
    Buy tokens with the settlement asset.

    Only the amount actually spent, rounded up to settlement precision, is
    pulled from the buyer to the treasury.

    Raises:
        InvalidInput: For a non-positive payment or one that buys no tokens
        StateViolation: If the sale is ended, inactive or sold out
        CapacityExceeded: If payment exceeds the per-purchase maximum
    """
    require_holder(buyer, "buyer")
    book = load_sale_book(view, symbol)
    _require_open(book)
    settlement = view.get_unit_state(symbol)['settlement']
    return _build_purchase(view, symbol, buyer, to_settlement(book, payment), settlement, lambda spent: spent)


def compute_purchase_with_feed(
    view: LedgerView,
    symbol: str,
    buyer: str,
    currency: str,
    amount: Decimal,
    feed: PriceFeed,
) -> PendingTransaction:
    """
    Buy tokens paying in another currency held on the ledger.

    The feed quotes settlement units per unit of currency. Its answer is
    validated before use; the buyer is charged spent / price in currency,
    rounded up to the currency unit's precision and never more than amount.

    Raises:
        StaleExternalData: If the feed answer fails validation
        ExternalCallFailure: If the feed call fails
        (plus everything compute_purchase raises)
    """
    require_holder(buyer, "buyer")
    amount = require_positive(amount)
    book = load_sale_book(view, symbol)
    _require_open(book)
    price = fetch_price(feed, view.current_time, book.max_staleness_seconds)
    value = quantize_amount(amount * price, book.settlement_decimals)
    currency_decimals = view.get_unit(currency).decimal_places
    if currency_decimals is None:
        currency_decimals = TOKEN_DECIMAL_PLACES

    def charge_for(spent: Decimal) -> Decimal:
        return min(amount, quantize_up(spent / price, currency_decimals))

    return _build_purchase(view, symbol, buyer, value, currency, charge_for)


# ============================================================================
# ADMIN OPERATIONS
# ============================================================================

def _admin_update(view: LedgerView, symbol: str, caller: str, event: str, **fields: Any) -> PendingTransaction:
    old_state = view.get_unit_state(symbol)
    require_role(view, old_state['registry'], caller, Role.ADMIN)
    new_state = {**old_state, **fields}
    logger.info("%s on %s by %s", event, symbol, caller)
    origin = TransactionOrigin(OriginType.ADMIN, caller, symbol, event)
    return build_transaction(view, [], [UnitStateChange(symbol, old_state, new_state)], origin)


def compute_end_sale(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """
    End the sale at the current time; this anchors every vesting schedule.

    Raises:
        StateViolation: If the sale already ended
    """
    if load_sale_book(view, symbol).sale_end_time is not None:
        raise StateViolation("the sale has already ended")
    return _admin_update(view, symbol, caller, "END_SALE", sale_end_time=view.current_time, active=False)


def compute_advance_phase(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """
    Move to the next phase. The sold counter jumps to the new phase's start
    so unsold tokens of the skipped phase are never sold.

    Raises:
        StateViolation: If the sale ended or the last phase is active
    """
    book = load_sale_book(view, symbol)
    if book.sale_end_time is not None:
        raise StateViolation("the sale has ended")
    next_index = book.phase_index + 1
    if next_index >= len(book.phases):
        raise StateViolation("already in the last phase")
    sold = max(book.sold, book.phases[next_index].start_counter)
    return _admin_update(view, symbol, caller, "ADVANCE_PHASE", phase_index=next_index, sold=sold)


def compute_set_max_purchase(view: LedgerView, symbol: str, caller: str, max_purchase: Decimal) -> PendingTransaction:
    return _admin_update(
        view, symbol, caller, "SET_MAX_PURCHASE", max_purchase=require_positive(max_purchase, "max_purchase")
    )


def compute_set_sale_active(view: LedgerView, symbol: str, caller: str, active: bool) -> PendingTransaction:
    """
    Pause or resume purchases.

    Raises:
        StateViolation: When resuming a sale that has ended
    """
    if active and load_sale_book(view, symbol).sale_end_time is not None:
        raise StateViolation("an ended sale cannot be resumed")
    return _admin_update(view, symbol, caller, "SET_SALE_ACTIVE", active=bool(active))


def sale_summary(view: LedgerView, symbol: str) -> Dict[str, Any]:
    """Counters and current price of the sale book."""
    book = load_sale_book(view, symbol)
    phase = book.phases[book.phase_index]
    return {
        'phase': book.current_phase,
        'sold': book.sold,
        'price': price_at(phase, max(book.sold - phase.start_counter, ZERO), book.step_tokens),
        'active': book.active,
        'sale_end_time': book.sale_end_time,
        'raised': view.get_unit_state(symbol).get('raised', ZERO),
    }
