"""
access.py - Capability-based authorization

Every privileged operation asks an AccessControl instance whether a caller
holds a capability. The administrator implicitly holds all capabilities;
other principals hold only what has been granted to them.

    acl = AccessControl(admin="treasury")
    acl.grant("treasury", "engine", Capability.ISSUE)
    acl.require("engine", Capability.ISSUE)      # ok
    acl.require("mallory", Capability.ISSUE)     # NotAuthorized
"""

from __future__ import annotations
from enum import Enum
from typing import Dict, FrozenSet, Set

from .core import NotAuthorized, InvalidAddress, Principal, is_zero_principal


class Capability(Enum):
    ADMIN = "admin"
    ISSUE = "issue"


class AccessControl:
    """
    Grants per capability plus one implicit administrator.

    Not locked internally; owners call it under their own lock.
    """

    def __init__(self, admin: Principal):
        if is_zero_principal(admin):
            raise InvalidAddress("administrator cannot be empty", {"admin": admin})
        self._admin = admin
        self._grants: Dict[Capability, Set[Principal]] = {c: set() for c in Capability}

    @property
    def admin(self) -> Principal:
        return self._admin

    def has(self, principal: Principal, capability: Capability) -> bool:
        if principal == self._admin:
            return True
        return principal in self._grants[capability]

    def require(self, caller: Principal, capability: Capability) -> None:
        """
        Raise NotAuthorized unless caller holds capability.
        """
        if not self.has(caller, capability):
            raise NotAuthorized(
                f"{caller!r} lacks {capability.value} capability",
                {"caller": caller, "capability": capability.value},
            )

    def grant(self, caller: Principal, principal: Principal, capability: Capability) -> bool:
        """
        Grant a capability. Administrator only.

        Returns:
            True if the grant set changed, False if principal already held it.
        """
        self.require(caller, Capability.ADMIN)
        if is_zero_principal(principal):
            raise InvalidAddress("cannot grant to an empty principal", {"principal": principal})
        members = self._grants[capability]
        if principal in members:
            return False
        members.add(principal)
        return True

    def revoke(self, caller: Principal, principal: Principal, capability: Capability) -> bool:
        """
        Revoke a capability. Administrator only; revoking an absent grant is a no-op.
        """
        self.require(caller, Capability.ADMIN)
        members = self._grants[capability]
        if principal not in members:
            return False
        members.discard(principal)
        return True

    def holders(self, capability: Capability) -> FrozenSet[Principal]:
        """Explicit grants only (the administrator is not listed)."""
        return frozenset(self._grants[capability])

    def transfer_admin(self, caller: Principal, new_admin: Principal) -> Principal:
        """Hand the administrator role to new_admin and return the previous one."""
        self.require(caller, Capability.ADMIN)
        if is_zero_principal(new_admin):
            raise InvalidAddress("administrator cannot be empty", {"admin": new_admin})
        old = self._admin
        self._admin = new_admin
        return old
