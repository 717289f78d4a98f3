"""
fake_transfers.py - Test helpers for the ValueTransfer protocol

Provides a value-transfer collaborator that wraps a real Ledger but can be
told to fail on execute(), so settlement rollback can be tested without
relying on balance races.
"""

from __future__ import annotations
from typing import List, Optional, Sequence

from payrewards import Ledger, Move, NotAuthorized, Transaction


class FailingTransfers:
    """
    ValueTransfer that delegates to a Ledger until told to fail.

    Example:
        transfers = FailingTransfers(ledger)
        transfers.fail_with(InsufficientBalance("drained"))
        engine.settle(request)   # raises, nothing recorded
    """

    def __init__(self, ledger: Ledger):
        self.ledger = ledger
        self.error: Optional[BaseException] = None
        self.executed: List[Sequence[Move]] = []
        self.attempts = 0

    def fail_with(self, error: Optional[BaseException]) -> None:
        self.error = error

    def balance_of(self, principal: str, asset: str) -> int:
        return self.ledger.balance_of(principal, asset)

    def transfer(self, source: str, dest: str, asset: str, amount: int) -> Transaction:
        return self.execute([Move(amount, asset, source, dest, "transfer")], "transfer")

    def execute(self, moves: Sequence[Move], reference: str) -> Transaction:
        self.attempts += 1
        if self.error is not None:
            raise self.error
        tx = self.ledger.execute(moves, reference)
        self.executed.append(tuple(moves))
        return tx


class RecordingIssuer:
    """
    RewardIssuer that records calls and authorizes a fixed set of callers.

    fail_with() makes every later issue() raise the given error.
    """

    def __init__(self, authorized: Sequence[str] = ()):
        self.authorized = set(authorized)
        self.calls: List[tuple] = []
        self.balances = {}
        self.error: Optional[BaseException] = None

    def fail_with(self, error: Optional[BaseException]) -> None:
        self.error = error

    def issue(self, caller: str, principal: str, amount: int) -> None:
        if caller not in self.authorized:
            raise NotAuthorized(f"{caller} not authorized")
        if self.error is not None:
            raise self.error
        self.calls.append((caller, principal, amount))
        self.balances[principal] = self.balances.get(principal, 0) + amount

    def is_authorized(self, principal: str) -> bool:
        return principal in self.authorized

    def balance_of(self, principal: str) -> int:
        return self.balances.get(principal, 0)
