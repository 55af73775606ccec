"""
test_lifecycle_scenarios.py - End-to-end distribution scenarios

Walks a distribution from genesis to migration:
- Purchases across two phases
- Gaming credits and admin allocations
- Staking through the sale, claiming after it
- Unlocks over months after sale end
- Migration of a fully settled holder
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from tests.conftest import T0, ADMIN, GAMING, assert_holder_invariants
from vestledger import (
    TokenSystem, VestingSource, StateViolation, InsufficientFunds,
)


SALE_END = T0 + timedelta(days=30)


@pytest.fixture
def distribution():
    """
    Two buyers in different phases, a gamer, a marketer and a grantee.
    alice stakes half her purchase at T0; the sale ends after 30 days.
    """
    s = TokenSystem.bootstrap(admin=ADMIN, start_time=T0, gaming_controller=GAMING)
    s.issue_settlement("alice", Decimal("10000"))
    s.issue_settlement("bob", Decimal("13000"))

    s.purchase("alice", Decimal("10000"))           # 100,000 at $0.10, phase 1
    s.advance_phase(ADMIN)
    s.purchase("bob", Decimal("13000"))             # 100,000 at $0.13, phase 2
    s.credit_gaming(GAMING, "carol", Decimal("1000"))
    s.allocate(ADMIN, "dave", VestingSource.MARKETING, Decimal("5000"))
    s.allocate(ADMIN, "erin", VestingSource.LONG_TERM_GRANT, Decimal("7200"))
    s.stake("alice", Decimal("50000"))

    s.advance_time(SALE_END)
    s.end_sale(ADMIN)
    return s


class TestDistributionLifecycle:

    def test_purchases_and_treasury(self, distribution):
        s = distribution
        assert s.balance("alice") == Decimal("100000")
        assert s.balance("bob") == Decimal("100000")
        assert s.balance("treasury", "USDT") == Decimal("23000")
        summary = s.sale_summary()
        assert summary['phase'] == 2
        assert summary['sale_end_time'] == SALE_END

    def test_unlocks_at_sale_end(self, distribution):
        s = distribution
        assert s.unlocked("alice", VestingSource.SALE) == Decimal("10000")
        assert s.unlocked("bob", VestingSource.SALE) == Decimal("15000")
        assert s.unlocked("carol", VestingSource.GAMING_CREDIT) == Decimal("200")
        assert s.unlocked("dave", VestingSource.MARKETING) == 0
        assert s.unlocked("erin", VestingSource.LONG_TERM_GRANT) == 0

    def test_staking_does_not_free_locked_tokens(self, distribution):
        s = distribution
        # 90,000 locked and 50,000 staked cover the whole balance
        assert s.transferable("alice") == 0
        with pytest.raises(InsufficientFunds):
            s.transfer("alice", "frank", Decimal("1"))

    def test_claim_after_thirty_days(self, distribution):
        s = distribution
        # APR falls linearly 300% -> 100% over the first 30 daily buckets:
        # 50,000 * (610,000 / 10,000) / 365
        expected = Decimal("50000") * Decimal("61") / Decimal("365")
        pending = s.pending_rewards("alice")
        assert abs(pending - expected) < Decimal("0.000001")

        s.claim("alice")
        assert s.pending_rewards("alice") == 0
        assert s.balance("alice") == Decimal("100000") + pending
        assert s.locked("alice", VestingSource.STAKING_REWARD) == pending

        s.advance_time(SALE_END + timedelta(days=30))
        assert s.locked("alice", VestingSource.STAKING_REWARD) == 0

    def test_months_after_sale_end(self, distribution):
        s = distribution
        s.advance_time(SALE_END + timedelta(days=101))

        # 10% at sale end, 90% over 200 days from the day after
        assert s.unlocked("alice", VestingSource.SALE) == Decimal("55000")
        # 15% at sale end, 85% over 180 days
        bob = s.unlocked("bob", VestingSource.SALE)
        assert abs(bob - (Decimal("15000") + Decimal("85000") * 100 / 180)) < Decimal("1e-12")
        # 20% at sale end, 80% over 150 days
        carol = s.unlocked("carol", VestingSource.GAMING_CREDIT)
        assert abs(carol - (Decimal("200") + Decimal("800") * 100 / 150)) < Decimal("1e-12")
        assert s.unlocked("dave", VestingSource.MARKETING) == Decimal("5000")
        assert s.unlocked("erin", VestingSource.LONG_TERM_GRANT) == 0

        s.transfer("dave", "frank", Decimal("5000"))
        assert s.balance("frank") == Decimal("5000")
        assert s.transferable("frank") == Decimal("5000")

    def test_long_term_grant_releases_after_cliff(self, distribution):
        s = distribution
        s.advance_time(SALE_END + timedelta(days=180 + 360))
        assert s.unlocked("erin", VestingSource.LONG_TERM_GRANT) == Decimal("3600")
        s.advance_time(SALE_END + timedelta(days=180 + 720))
        assert s.unlocked("erin", VestingSource.LONG_TERM_GRANT) == Decimal("7200")

    def test_unstake_then_move_freed_tokens(self, distribution):
        s = distribution
        s.advance_time(SALE_END + timedelta(days=101))
        s.claim("alice")
        s.unstake("alice")
        assert s.staked("alice") == 0
        # sale lock is 45,000; the reward allocation is fully unlocked
        assert s.transferable("alice") == s.balance("alice") - Decimal("45000")
        s.transfer("alice", "frank", s.transferable("alice"))
        assert s.transferable("alice") == 0
        with pytest.raises(InsufficientFunds):
            s.transfer("alice", "frank", Decimal("0.000001"))

    def test_invariants_hold_throughout(self, distribution):
        s = distribution
        holders = ["alice", "bob", "carol", "dave", "erin"]
        for days in (0, 1, 30, 90, 150, 181, 365, 900):
            s.advance_time(SALE_END + timedelta(days=days))
            for holder in holders:
                assert_holder_invariants(s, holder)
        assert s.ledger.verify_double_entry()['valid']
        assert s.circulating_supply() == Decimal("1000000000")


class TestMigrationLifecycle:

    def test_staker_migrates_after_claiming(self, distribution):
        s = distribution
        s.set_migration_enabled(ADMIN, True)
        s.advance_time(SALE_END + timedelta(days=10))

        with pytest.raises(StateViolation):
            s.migrate("alice")

        s.claim("alice")
        balance = s.balance("alice")
        locked = s.locked_by_source("alice")
        s.migrate("alice")

        record = s.migration_record("alice")
        assert record.migrated
        assert record.burned == balance
        assert record.staked == Decimal("50000")
        assert record.locked_by_source == locked
        assert record.usable == balance - sum(locked.values())
        assert record.migrated_at == s.now

        assert s.balance("alice") == 0
        assert s.staked("alice") == 0
        assert s.circulating_supply() == Decimal("1000000000") - balance
        assert s.ledger.verify_double_entry()['valid']

    def test_everyone_migrates(self, distribution):
        s = distribution
        s.set_migration_enabled(ADMIN, True)
        s.claim("alice")
        burned = Decimal("0")
        for holder in ("alice", "bob", "carol", "dave", "erin"):
            burned += s.balance(holder)
            s.migrate(holder)
        assert burned == s.migration_record("alice").burned + Decimal("113200")
        assert s.circulating_supply() == Decimal("1000000000") - burned
        for holder in ("alice", "bob", "carol", "dave", "erin"):
            assert_holder_invariants(s, holder)
            assert s.locked_by_source(holder) == {src.value: 0 for src in VestingSource}
        with pytest.raises(StateViolation):
            s.migrate("bob")
