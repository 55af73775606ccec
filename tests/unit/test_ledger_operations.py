"""
test_ledger_operations.py - Unit tests for Ledger class operations

Tests:
- Wallet and unit registration
- Balance queries and position index
- Time management
- Atomic execution, rejection reasons and intent deduplication
- Optimistic concurrency on state changes
- Re-entrant execute()
- clone and clone_at
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from tests.conftest import T0
from vestledger import (
    Ledger, Move, Unit, UnitStateChange, ExecuteResult, SYSTEM_WALLET,
    cash, build_transaction,
    ReentrantCall, TransferRuleViolation,
    UnitNotRegistered, WalletNotRegistered,
)
from vestledger.core import _freeze_state


def _book(symbol="BOOK", **state):
    return Unit(symbol=symbol, name="Book", unit_type="BOOK", _frozen_state=_freeze_state(state or {'n': 0}))


def _fund(ledger, wallet, symbol, quantity):
    ledger.execute(build_transaction(ledger, [Move(Decimal(quantity), symbol, SYSTEM_WALLET, wallet, "faucet")]))


@pytest.fixture
def usdt_ledger(ledger):
    ledger.register_unit(cash("USDT", "Tether USD"))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    _fund(ledger, "alice", "USDT", "100")
    return ledger


class TestRegistration:

    def test_system_wallet_always_registered(self, ledger):
        assert ledger.is_registered(SYSTEM_WALLET)

    def test_duplicate_wallet(self, ledger):
        ledger.register_wallet("alice")
        with pytest.raises(ValueError):
            ledger.register_wallet("alice")
        assert ledger.ensure_wallet("alice") == "alice"

    def test_duplicate_unit(self, ledger):
        ledger.register_unit(cash("USDT", "Tether USD"))
        with pytest.raises(ValueError):
            ledger.register_unit(cash("USDT", "Tether USD"))

    def test_list_units_sorted(self, ledger):
        ledger.register_unit(cash("USDT", "Tether USD"))
        ledger.register_unit(cash("DAI", "Dai"))
        assert ledger.list_units() == ["DAI", "USDT"]

    def test_unregistered_lookups(self, ledger):
        with pytest.raises(UnitNotRegistered):
            ledger.get_unit_state("NOPE")
        with pytest.raises(WalletNotRegistered):
            ledger.get_balance("nobody", "USDT")

    def test_unit_state_is_a_copy(self, ledger):
        ledger.register_unit(_book(items=[1]))
        state = ledger.get_unit_state("BOOK")
        state['items'].append(2)
        assert ledger.get_unit_state("BOOK") == {'items': [1]}


class TestBalances:

    def test_default_zero(self, usdt_ledger):
        assert usdt_ledger.get_balance("bob", "USDT") == 0

    def test_positions(self, usdt_ledger):
        assert usdt_ledger.get_positions("USDT") == {"alice": Decimal("100")}

    def test_circulating_supply_is_negated_system_balance(self, ledger):
        ledger.register_unit(cash("USDT", "Tether USD"))
        ledger.register_wallet("alice")
        ledger.execute(build_transaction(ledger, [Move(Decimal("50"), "USDT", SYSTEM_WALLET, "alice", "mint")]))
        assert ledger.circulating_supply("USDT") == Decimal("50")
        assert ledger.verify_double_entry()['valid']


class TestTime:

    def test_advance(self, ledger):
        ledger.advance_time(T0 + timedelta(days=1))
        assert ledger.current_time == T0 + timedelta(days=1)

    def test_backwards(self, ledger):
        with pytest.raises(ValueError):
            ledger.advance_time(T0 - timedelta(seconds=1))


class TestExecute:

    def test_simple_transfer(self, usdt_ledger):
        tx = build_transaction(usdt_ledger, [Move(Decimal("30"), "USDT", "alice", "bob", "pay")])
        assert usdt_ledger.execute(tx) == ExecuteResult.APPLIED
        assert usdt_ledger.get_balance("alice", "USDT") == Decimal("70")
        assert usdt_ledger.get_balance("bob", "USDT") == Decimal("30")
        assert len(usdt_ledger.transaction_log) == 2

    def test_all_or_nothing(self, usdt_ledger):
        tx = build_transaction(usdt_ledger, [
            Move(Decimal("30"), "USDT", "alice", "bob", "ok"),
            Move(Decimal("80"), "USDT", "alice", "bob", "too_much"),
        ])
        assert usdt_ledger.execute(tx) == ExecuteResult.REJECTED
        assert usdt_ledger.get_balance("alice", "USDT") == Decimal("100")
        assert "min" in usdt_ledger.last_rejection

    def test_same_intent_applied_once(self, usdt_ledger):
        tx = build_transaction(usdt_ledger, [Move(Decimal("10"), "USDT", "alice", "bob", "pay")])
        assert usdt_ledger.execute(tx) == ExecuteResult.APPLIED
        assert usdt_ledger.execute(tx) == ExecuteResult.ALREADY_APPLIED
        assert usdt_ledger.get_balance("bob", "USDT") == Decimal("10")

    def test_unregistered_wallet(self, usdt_ledger):
        tx = build_transaction(usdt_ledger, [Move(Decimal("1"), "USDT", "alice", "carol", "pay")])
        assert usdt_ledger.execute(tx) == ExecuteResult.REJECTED
        assert "carol" in usdt_ledger.last_rejection

    def test_rounding_to_unit_precision(self, usdt_ledger):
        tx = build_transaction(usdt_ledger, [Move(Decimal("0.1234567"), "USDT", "alice", "bob", "pay")])
        usdt_ledger.execute(tx)
        assert usdt_ledger.get_balance("bob", "USDT") == Decimal("0.123457")

    def test_empty_transaction(self, usdt_ledger):
        assert usdt_ledger.execute(build_transaction(usdt_ledger, [])) == ExecuteResult.APPLIED
        assert len(usdt_ledger.transaction_log) == 1

    def test_future_timestamp(self, usdt_ledger):
        later = usdt_ledger.clone()
        later.advance_time(T0 + timedelta(days=1))
        tx = build_transaction(later, [Move(Decimal("1"), "USDT", "alice", "bob", "pay")])
        assert usdt_ledger.execute(tx) == ExecuteResult.REJECTED


class TestStateChanges:

    def test_state_change_applied(self, ledger):
        ledger.register_unit(_book())
        old = ledger.get_unit_state("BOOK")
        tx = build_transaction(ledger, [], [UnitStateChange("BOOK", old, {'n': 1})])
        assert ledger.execute(tx) == ExecuteResult.APPLIED
        assert ledger.get_unit_state("BOOK") == {'n': 1}

    def test_stale_state_rejected(self, ledger):
        ledger.register_unit(_book())
        old = ledger.get_unit_state("BOOK")
        first = build_transaction(ledger, [], [UnitStateChange("BOOK", old, {'n': 1})])
        second = build_transaction(ledger, [], [UnitStateChange("BOOK", old, {'n': 2})])
        ledger.execute(first)
        assert ledger.execute(second) == ExecuteResult.REJECTED
        assert "stale" in ledger.last_rejection
        assert ledger.get_unit_state("BOOK") == {'n': 1}

    def test_caller_mutation_does_not_leak(self, ledger):
        ledger.register_unit(_book())
        old = ledger.get_unit_state("BOOK")
        new = {'n': 1}
        tx = build_transaction(ledger, [], [UnitStateChange("BOOK", old, new)])
        new['n'] = 99
        ledger.execute(tx)
        assert ledger.get_unit_state("BOOK") == {'n': 1}


class TestReentrancy:

    def test_transfer_rule_cannot_execute(self, ledger):
        def reentrant_rule(view, move, pending):
            if move.source == SYSTEM_WALLET:
                return
            ledger.execute(build_transaction(ledger, [Move(Decimal("1"), "USDT", "alice", "bob", "inner")]))

        ledger.register_unit(cash("USDT", "Tether USD"))
        ledger.register_unit(Unit("HOOK", "Hook", "TOKEN", transfer_rule=reentrant_rule))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")
        _fund(ledger, "alice", "USDT", "5")
        _fund(ledger, "alice", "HOOK", "5")

        with pytest.raises(ReentrantCall):
            ledger.execute(build_transaction(ledger, [Move(Decimal("1"), "HOOK", "alice", "bob", "outer")]))
        assert ledger.get_balance("bob", "USDT") == 0
        assert ledger.get_balance("bob", "HOOK") == 0

        # the guard is released afterwards
        tx = build_transaction(ledger, [Move(Decimal("1"), "USDT", "alice", "bob", "after")])
        assert ledger.execute(tx) == ExecuteResult.APPLIED

    def test_rule_violation_becomes_rejection(self, ledger):
        def deny(view, move, pending):
            if move.source == SYSTEM_WALLET:
                return
            raise TransferRuleViolation("frozen")

        ledger.register_unit(Unit("FRZ", "Frozen", "TOKEN", transfer_rule=deny))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")
        _fund(ledger, "alice", "FRZ", "5")
        tx = build_transaction(ledger, [Move(Decimal("1"), "FRZ", "alice", "bob", "x")])
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert ledger.last_rejection == "frozen"


class TestClone:

    def test_clone_is_independent(self, usdt_ledger):
        clone = usdt_ledger.clone()
        clone.execute(build_transaction(clone, [Move(Decimal("10"), "USDT", "alice", "bob", "pay")]))
        assert usdt_ledger.get_balance("bob", "USDT") == 0
        assert clone.get_balance("bob", "USDT") == Decimal("10")

    def test_clone_at_unwinds_moves_and_state(self, usdt_ledger):
        usdt_ledger.register_unit(_book())
        usdt_ledger.advance_time(T0 + timedelta(days=1))
        old = usdt_ledger.get_unit_state("BOOK")
        usdt_ledger.execute(build_transaction(
            usdt_ledger,
            [Move(Decimal("10"), "USDT", "alice", "bob", "pay")],
            [UnitStateChange("BOOK", old, {'n': 7})],
        ))

        past = usdt_ledger.clone_at(T0)
        assert past.current_time == T0
        assert past.get_balance("bob", "USDT") == 0
        assert past.get_unit_state("BOOK") == {'n': 0}
        assert len(past.transaction_log) == 1

        assert usdt_ledger.get_unit_state("BOOK") == {'n': 7}

    def test_clone_at_future(self, ledger):
        with pytest.raises(ValueError):
            ledger.clone_at(T0 + timedelta(days=1))
