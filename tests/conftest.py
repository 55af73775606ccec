"""
conftest.py - Shared pytest fixtures for vestledger tests

Provides common fixtures used across unit, conformance and functional tests:
- A bootstrapped TokenSystem with default terms
- A system with small phases for cheap multi-phase purchases
- Systems with the sale already ended and funded buyers
- Comparison and invariant helpers
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from vestledger import (
    Ledger, TokenSystem, TokenomicsTerms, SaleTerms,
)
from vestledger.units import vesting
from vestledger.config import contiguous_phases


T0 = datetime(2025, 1, 1)
ADMIN = "admin"
GAMING = "gaming_controller"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def small_phase_terms(**sale_overrides) -> TokenomicsTerms:
    """
    Terms with five 1,000-token phases (100 tokens per step) so purchases
    cross phases with small payments.
    """
    phases = contiguous_phases(
        1000,
        (("0.10", "0.13"), ("0.13", "0.16"), ("0.16", "0.19"), ("0.19", "0.22"), ("0.22", "0.25")),
    )
    sale = SaleTerms(phases=phases, step_tokens=Decimal("100"), **sale_overrides)
    return TokenomicsTerms(sale=sale)


def compare_ledger_states(ledger1: Ledger, ledger2: Ledger) -> dict:
    """Compare balances and unit states of two ledgers."""
    balance_diffs = []
    state_diffs = []

    all_wallets = ledger1.registered_wallets | ledger2.registered_wallets
    all_units = set(ledger1.units.keys()) | set(ledger2.units.keys())

    for wallet in all_wallets:
        for unit in all_units:
            bal1 = ledger1.balances.get(wallet, {}).get(unit, Decimal("0"))
            bal2 = ledger2.balances.get(wallet, {}).get(unit, Decimal("0"))
            if bal1 != bal2:
                balance_diffs.append({"wallet": wallet, "unit": unit, "ledger1": bal1, "ledger2": bal2})

    for unit_sym in all_units:
        if unit_sym in ledger1.units and unit_sym in ledger2.units:
            state1 = ledger1.get_unit_state(unit_sym)
            state2 = ledger2.get_unit_state(unit_sym)
            if state1 != state2:
                state_diffs.append({"unit": unit_sym})

    return {
        "equal": not balance_diffs and not state_diffs,
        "balance_diffs": balance_diffs,
        "state_diffs": state_diffs,
    }


def assert_holder_invariants(system: TokenSystem, holder: str) -> None:
    """
    Lock accounting for one holder, migrated or not:
    locked + unlocked == total per source, the zero floor never clamps,
    locked + transferable <= balance and staked <= balance.
    """
    ledger = system.ledger
    book = system.symbols.vesting
    schedule = vesting.load_schedule(ledger, book)
    sale_end = vesting.load_sale_end_time(ledger, book)
    for source, allocation in vesting.load_allocations(ledger, book, holder).items():
        unlocked = vesting.calculate_unlocked(allocation, schedule, sale_end, ledger.current_time)
        locked, clamped = vesting.calculate_locked(allocation, schedule, sale_end, ledger.current_time)
        assert not clamped, f"locked floor clamped for {holder}/{source.value}"
        assert locked + unlocked == allocation.total
        assert unlocked <= allocation.total

    balance = system.balance(holder)
    assert sum(system.locked_by_source(holder).values()) + system.transferable(holder) <= balance
    assert system.staked(holder) <= balance


# =============================================================================
# SYSTEM FIXTURES
# =============================================================================

@pytest.fixture
def system():
    """Default distribution bootstrapped at T0 with a gaming controller."""
    return TokenSystem.bootstrap(admin=ADMIN, start_time=T0, gaming_controller=GAMING)


@pytest.fixture
def small_system():
    """Distribution with small phases for multi-phase purchase tests."""
    return TokenSystem.bootstrap(
        admin=ADMIN, start_time=T0, terms=small_phase_terms(), gaming_controller=GAMING
    )


@pytest.fixture
def funded_system(system):
    """Default system with alice and bob holding 100,000 settlement units each."""
    system.issue_settlement("alice", Decimal("100000"))
    system.issue_settlement("bob", Decimal("100000"))
    return system


@pytest.fixture
def bought_system(funded_system):
    """alice bought 100,000 tokens in phase 1 (10,000 USDT at $0.10)."""
    funded_system.purchase("alice", Decimal("10000"))
    return funded_system


@pytest.fixture
def ended_system(bought_system):
    """bought_system with the sale ended at T0 + 1 day."""
    bought_system.advance_time(T0 + timedelta(days=1))
    bought_system.end_sale(ADMIN)
    return bought_system


@pytest.fixture
def ledger():
    """Bare ledger for ledger-level tests."""
    return Ledger("test", T0, verbose=False)
