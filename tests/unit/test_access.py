"""
test_access.py - Unit tests for the capability registry
"""

import pytest
from decimal import Decimal
from tests.conftest import ADMIN, GAMING
from vestledger import Role, Unauthorized, InvalidInput, create_access_registry, has_role, require_role
from tests.fake_view import FakeView


def view_with(grants):
    return FakeView(balances={}, states={"ACL": {'grants': grants}})


class TestRegistry:

    def test_initial_grants(self):
        unit = create_access_registry("ACL", "root", {"ctrl": [Role.GAMING_CONTROLLER, Role.GAMING_CONTROLLER]})
        assert unit.state['grants'] == {"root": ["admin"], "ctrl": ["gaming_controller"]}

    def test_empty_admin(self):
        with pytest.raises(InvalidInput):
            create_access_registry("ACL", " ")

    def test_admin_passes_every_check(self):
        view = view_with({"root": ["admin"]})
        for role in Role:
            assert has_role(view, "ACL", "root", role)

    def test_role_holder(self):
        view = view_with({"ctrl": ["migrator"]})
        assert has_role(view, "ACL", "ctrl", Role.MIGRATOR)
        assert not has_role(view, "ACL", "ctrl", Role.STAKING_CONTROLLER)

    def test_require_any_of(self):
        view = view_with({"ctrl": ["migrator"]})
        require_role(view, "ACL", "ctrl", Role.STAKING_CONTROLLER, Role.MIGRATOR)
        with pytest.raises(Unauthorized):
            require_role(view, "ACL", "ctrl", Role.GAMING_CONTROLLER)
        with pytest.raises(Unauthorized):
            require_role(view, "ACL", "", Role.GAMING_CONTROLLER)


class TestGrantRevoke:

    def test_bootstrap_grants(self, system):
        view, acl = system.ledger, system.symbols.access
        assert has_role(view, acl, system.symbols.stake, Role.STAKING_CONTROLLER)
        assert has_role(view, acl, system.symbols.migration, Role.MIGRATOR)
        assert has_role(view, acl, GAMING, Role.GAMING_CONTROLLER)
        assert not has_role(view, acl, GAMING, Role.ADMIN)

    def test_grant_then_revoke(self, system):
        system.grant_role(ADMIN, "studio", Role.GAMING_CONTROLLER)
        system.credit_gaming("studio", "carol", Decimal("1"))

        system.revoke_role(ADMIN, "studio", Role.GAMING_CONTROLLER)
        with pytest.raises(Unauthorized):
            system.credit_gaming("studio", "carol", Decimal("1"))
        assert "studio" not in system.ledger.get_unit_state(system.symbols.access)['grants']

    def test_only_admin_grants(self, system):
        with pytest.raises(Unauthorized):
            system.grant_role(GAMING, "studio", Role.ADMIN)

    def test_grants_are_audited(self, system):
        system.grant_role(ADMIN, "studio", Role.GAMING_CONTROLLER)
        tx = system.ledger.transaction_log[-1]
        assert tx.origin.event_type == "GRANT_ROLE"
        assert tx.origin.source_id == ADMIN
