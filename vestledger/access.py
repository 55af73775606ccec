"""
access.py - Typed capability registry

Privileged operations (crediting gaming vesting, requesting staking-reward
vesting, resetting stakes on migration, administrative toggles) are
authorized against roles stored in an ACCESS_REGISTRY unit. An ADMIN holder
passes every role check.

Grants live in unit state as {wallet_id: [role values]}, so granting and
revoking are ordinary audited transactions.
"""

from __future__ import annotations
from enum import Enum
from typing import Dict, List, Optional

from .core import (
    LedgerView, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    UNIT_TYPE_ACCESS_REGISTRY,
    InvalidInput, Unauthorized,
    build_transaction, _freeze_state,
)


class Role(Enum):
    """Capabilities that gate privileged operations."""
    ADMIN = "admin"
    GAMING_CONTROLLER = "gaming_controller"
    STAKING_CONTROLLER = "staking_controller"
    MIGRATOR = "migrator"


def create_access_registry(symbol: str, admin: str, grants: Optional[Dict[str, List[Role]]] = None) -> Unit:
    """
    Create the registry unit with an initial administrator.

    Args:
        symbol: Registry unit symbol (e.g., "VEST.ACCESS")
        admin: Wallet that receives Role.ADMIN
        grants: Additional initial grants
    """
    if not admin or not admin.strip():
        raise InvalidInput("admin cannot be empty")
    table: Dict[str, List[str]] = {admin: [Role.ADMIN.value]}
    for wallet, roles in (grants or {}).items():
        table.setdefault(wallet, [])
        for role in roles:
            if role.value not in table[wallet]:
                table[wallet].append(role.value)
    return Unit(
        symbol=symbol,
        name="Access Registry",
        unit_type=UNIT_TYPE_ACCESS_REGISTRY,
        _frozen_state=_freeze_state({'grants': table}),
    )


def has_role(view: LedgerView, registry: str, caller: str, role: Role) -> bool:
    """True if caller holds role or is an administrator."""
    grants = view.get_unit_state(registry).get('grants', {})
    held = grants.get(caller, [])
    return role.value in held or Role.ADMIN.value in held


def require_role(view: LedgerView, registry: str, caller: str, *roles: Role) -> None:
    """
    Raise Unauthorized unless caller holds at least one of roles (or ADMIN).
    """
    if not caller:
        raise Unauthorized("caller identity is required")
    if not any(has_role(view, registry, caller, role) for role in roles):
        wanted = ", ".join(r.value for r in roles)
        raise Unauthorized(f"{caller} lacks required role ({wanted})")


def _set_grant(
    view: LedgerView, registry: str, caller: str, wallet: str, role: Role, granted: bool
) -> PendingTransaction:
    require_role(view, registry, caller, Role.ADMIN)
    if not wallet or not wallet.strip():
        raise InvalidInput("wallet cannot be empty")

    old_state = view.get_unit_state(registry)
    grants = {w: list(r) for w, r in old_state.get('grants', {}).items()}
    held = grants.setdefault(wallet, [])
    if granted and role.value not in held:
        held.append(role.value)
    elif not granted and role.value in held:
        held.remove(role.value)
    if not held:
        del grants[wallet]

    new_state = {**old_state, 'grants': grants}
    origin = TransactionOrigin(
        OriginType.ADMIN, caller, registry, "GRANT_ROLE" if granted else "REVOKE_ROLE"
    )
    return build_transaction(view, [], [UnitStateChange(registry, old_state, new_state)], origin)


def compute_grant_role(view: LedgerView, registry: str, caller: str, wallet: str, role: Role) -> PendingTransaction:
    """Admin-only: give wallet a role."""
    return _set_grant(view, registry, caller, wallet, role, True)


def compute_revoke_role(view: LedgerView, registry: str, caller: str, wallet: str, role: Role) -> PendingTransaction:
    """Admin-only: take a role away from wallet."""
    return _set_grant(view, registry, caller, wallet, role, False)
