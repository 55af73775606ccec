"""
test_token.py - Unit tests for the token unit and its transfer rule

Tests:
- Transferable balance = balance - locked - staked
- Transfers and burns limited to the transferable balance
- The transfer rule itself rejects raw moves into locked tokens
- Max supply cap on mints
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from tests.conftest import T0, ADMIN
from vestledger import (
    Move, ExecuteResult, SYSTEM_WALLET, build_transaction,
    TransactionOrigin, OriginType,
    InvalidInput, InsufficientFunds,
)
from vestledger.units import migration, token


class TestTransferable:

    def test_genesis_supply(self, system):
        assert system.circulating_supply() == Decimal("1000000000")
        assert system.ledger.verify_double_entry()['valid']
        pools = [f"VEST:pool:{name}" for name in system.terms.pools]
        assert sum(system.balance(p) for p in pools) == system.terms.max_supply
        assert system.balance("VEST:reserve") == 0

    def test_locked_tokens_not_transferable(self, ended_system):
        assert ended_system.transferable("alice") == Decimal("10000")
        ended_system.advance_time(T0 + timedelta(days=102))
        assert ended_system.transferable("alice") == Decimal("55000")

    def test_staked_tokens_not_transferable(self, ended_system):
        ended_system.stake("alice", Decimal("95000"))
        assert ended_system.transferable("alice") == 0

    def test_position_view(self, ended_system):
        position = ended_system.position("alice")
        assert position["balance"] == Decimal("100000")
        assert position["transferable"] == Decimal("10000")
        assert position["unlocked"] == Decimal("10000")
        assert position["locked_by_source"]["sale"] == Decimal("90000")
        assert position["migrated"] is False


class TestTransfer:

    def test_transfer_unlocked(self, ended_system):
        ended_system.transfer("alice", "bob", Decimal("10000"))
        assert ended_system.balance("bob") == Decimal("10000")
        assert ended_system.transferable("alice") == 0
        assert ended_system.transferable("bob") == Decimal("10000")

    def test_transfer_beyond_unlocked(self, ended_system):
        with pytest.raises(InsufficientFunds):
            ended_system.transfer("alice", "bob", Decimal("10000.000001"))

    def test_identical_transfers_both_apply(self, ended_system):
        ended_system.transfer("alice", "bob", Decimal("100"))
        ended_system.transfer("alice", "bob", Decimal("100"))
        assert ended_system.balance("bob") == Decimal("200")

    def test_transfer_to_self_rejected(self, ended_system):
        with pytest.raises(InvalidInput):
            ended_system.transfer("alice", "alice", Decimal("1"))

    def test_burn(self, ended_system):
        ended_system.burn("alice", Decimal("1000"))
        assert ended_system.circulating_supply() == Decimal("999999000")
        with pytest.raises(InsufficientFunds):
            ended_system.burn("alice", Decimal("9001"))


class TestTransferRule:

    def test_raw_move_into_locked_tokens_rejected(self, ended_system):
        ledger = ended_system.ledger
        move = Move(Decimal("20000"), "VEST", "alice", "bob", "raw")
        assert ledger.execute(build_transaction(ledger, [move])) == ExecuteResult.REJECTED
        assert "locked or staked" in ledger.last_rejection
        assert ended_system.balance("alice") == Decimal("100000")

    def test_raw_burn_of_locked_tokens_rejected(self, ended_system):
        ledger = ended_system.ledger
        move = Move(Decimal("100000"), "VEST", "alice", SYSTEM_WALLET, "burn:alice")
        assert ledger.execute(build_transaction(ledger, [move])) == ExecuteResult.REJECTED

    def test_migration_contract_id_alone_does_not_unlock(self, ended_system):
        ledger = ended_system.ledger
        move = Move(Decimal("100000"), "VEST", "alice", SYSTEM_WALLET, "migration_burn:alice")
        assert ledger.execute(build_transaction(ledger, [move])) == ExecuteResult.REJECTED
        assert ended_system.balance("alice") == Decimal("100000")

    def test_migrate_origin_without_book_change_rejected(self, ended_system):
        ledger = ended_system.ledger
        book = ended_system.symbols.migration
        origin = TransactionOrigin(OriginType.USER_ACTION, "alice", book, "MIGRATE")
        move = Move(Decimal("100000"), "VEST", "alice", SYSTEM_WALLET, "migration_burn:alice")
        assert ledger.execute(build_transaction(ledger, [move], origin=origin)) == ExecuteResult.REJECTED
        assert ended_system.balance("alice") == Decimal("100000")

    def test_migration_burns_only_the_migrating_holder(self, ended_system):
        s = ended_system
        s.set_migration_enabled(ADMIN, True)
        s.credit_gaming(ADMIN, "bob", Decimal("1000"))
        pending = migration.compute_migration(s.ledger, s.symbols.migration, "alice")
        bob_burn = Move(Decimal("1000"), "VEST", "bob", SYSTEM_WALLET, "migration_burn:bob")
        forged = build_transaction(s.ledger, list(pending.moves) + [bob_burn], list(pending.state_changes), pending.origin)
        assert s.ledger.execute(forged) == ExecuteResult.REJECTED
        assert s.balance("bob") == Decimal("1000")

    def test_unencumbered_holder_moves_freely(self, system):
        system.allocate(ADMIN, "dave", "marketing", Decimal("10"))
        system.end_sale(ADMIN)
        system.advance_time(T0 + timedelta(days=90))
        ledger = system.ledger
        move = Move(Decimal("10"), "VEST", "dave", "treasury", "raw")
        assert ledger.execute(build_transaction(ledger, [move])) == ExecuteResult.APPLIED

    def test_mint_beyond_max_supply_rejected(self, system):
        ledger = system.ledger
        pending = token.compute_mint(ledger, "VEST", "treasury", Decimal("1"), "extra")
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert "max supply" in ledger.last_rejection

    def test_mint_after_burn_within_cap(self, ended_system):
        ended_system.burn("alice", Decimal("5"))
        ledger = ended_system.ledger
        pending = token.compute_mint(ledger, "VEST", "treasury", Decimal("5"), "remint")
        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ended_system.circulating_supply() == ended_system.terms.max_supply

    def test_invalid_max_supply(self):
        with pytest.raises(InvalidInput):
            token.create_token_unit("X", "X", Decimal("0"), "X.VESTING", "X.STAKE")
