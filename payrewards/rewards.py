"""
rewards.py - Reward credit ledger with an authorized-issuer gate

The RewardLedger implements the RewardIssuer protocol. Reward credits are a
loyalty balance independent from the settled asset; they can only be created
by the administrator or by principals the administrator has authorized
(normally the settlement engine).

    rewards = RewardLedger(admin="treasury")
    rewards.authorize("treasury", "settlement-engine")
    rewards.issue("settlement-engine", "alice", 5 * 10**18)
"""

from __future__ import annotations
from typing import Dict, FrozenSet, Optional
import logging
import threading

from .access import AccessControl, Capability
from .core import (
    MAX_UINT256, Principal, InvalidAddress, InvalidAmount, check_amount, is_zero_principal,
)
from .events import (
    AdminChanged, EventBus, IssuerAuthorizationChanged, RewardsIssued,
)

logger = logging.getLogger(__name__)


class RewardLedger:
    """
    Balances of reward credits plus the set of authorized issuers.

    Thread Safety:
        All mutations and reads are serialized by an internal lock.
    """

    def __init__(
        self,
        admin: Principal,
        name: str = "Reward Credit",
        symbol: str = "RWD",
        decimals: int = 18,
        event_bus: Optional[EventBus] = None,
    ):
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self.events = event_bus or EventBus()
        self._access = AccessControl(admin)
        self._balances: Dict[Principal, int] = {}
        self._total_supply = 0
        self._lock = threading.RLock()

    # ========================================================================
    # QUERIES
    # ========================================================================

    @property
    def admin(self) -> Principal:
        return self._access.admin

    @property
    def total_supply(self) -> int:
        with self._lock:
            return self._total_supply

    def balance_of(self, principal: Principal) -> int:
        with self._lock:
            return self._balances.get(principal, 0)

    def is_authorized(self, principal: Principal) -> bool:
        """True if principal was explicitly authorized or is the administrator."""
        with self._lock:
            return self._access.has(principal, Capability.ISSUE)

    def authorized_issuers(self) -> FrozenSet[Principal]:
        """Explicitly authorized issuers; the administrator is implied."""
        with self._lock:
            return self._access.holders(Capability.ISSUE)

    # ========================================================================
    # ISSUANCE
    # ========================================================================

    def issue(self, caller: Principal, principal: Principal, amount: int) -> None:
        """
        Credit amount of reward credit to principal.

        Raises:
            NotAuthorized: If caller is neither an authorized issuer nor the administrator
            InvalidAddress: If principal is empty or the zero principal
            InvalidAmount: If amount is not a positive uint256, or the balance or
                           total supply would pass MAX_UINT256
        """
        with self._lock:
            self._access.require(caller, Capability.ISSUE)
            if is_zero_principal(principal):
                raise InvalidAddress("cannot issue to an empty principal", {"principal": principal})
            check_amount(amount)
            balance = self._balances.get(principal, 0) + amount
            if balance > MAX_UINT256 or self._total_supply + amount > MAX_UINT256:
                raise InvalidAmount(
                    "issuance would exceed uint256 range",
                    {"principal": principal, "amount": amount},
                )
            self._balances[principal] = balance
            self._total_supply += amount
        logger.debug("%s issued %d %s to %s", caller, amount, self.symbol, principal)
        self.events.emit(RewardsIssued(issuer=caller, principal=principal, amount=amount))

    mint = issue

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def authorize(self, caller: Principal, principal: Principal) -> bool:
        """
        Allow principal to issue credits. Administrator only; idempotent.

        Returns:
            True if principal was newly authorized.
        """
        with self._lock:
            changed = self._access.grant(caller, principal, Capability.ISSUE)
        if changed:
            logger.info("authorized reward issuer %s", principal)
            self.events.emit(IssuerAuthorizationChanged(principal=principal, authorized=True))
        return changed

    def revoke(self, caller: Principal, principal: Principal) -> bool:
        """
        Withdraw issuing rights. Administrator only; idempotent.

        Revoking the administrator itself has no effect: it stays implicitly authorized.
        """
        with self._lock:
            changed = self._access.revoke(caller, principal, Capability.ISSUE)
        if changed:
            logger.info("revoked reward issuer %s", principal)
            self.events.emit(IssuerAuthorizationChanged(principal=principal, authorized=False))
        return changed

    def transfer_admin(self, caller: Principal, new_admin: Principal) -> None:
        with self._lock:
            old = self._access.transfer_admin(caller, new_admin)
        logger.info("reward ledger admin %s -> %s", old, new_admin)
        self.events.emit(AdminChanged(old=old, new=new_admin))
