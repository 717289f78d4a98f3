"""
ledger.py - In-memory double-entry ledger for settlement assets

The Ledger is the reference value-transfer collaborator for the settlement
engine. It implements the ValueTransfer protocol.

Key responsibilities:
    - Holds integer balances per (principal, asset)
    - Executes batches of moves atomically (all moves succeed or all fail)
    - Issues new supply from SYSTEM_WALLET, the only wallet allowed below zero
    - Records every executed batch in an append-only transaction log
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
import logging
import threading

from .core import (
    # Types
    Move, Transaction, BalanceMap, Principal, AssetId,
    # Constants
    SYSTEM_WALLET,
    # Exceptions
    AssetNotRegistered, InsufficientBalance, TransferFailed, PayRewardsError,
    # Helpers
    check_amount, is_zero_principal,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Asset:
    """
    Definition of a settlement asset.

    Attributes:
        symbol: Short identifier (e.g., "USDC").
        name: Human-readable name.
        decimals: Number of decimals in one whole unit; amounts are integers
                  in the smallest denomination.
    """
    symbol: str
    name: str
    decimals: int = 6

    @property
    def one(self) -> int:
        """Smallest-denomination amount equal to one whole unit."""
        return 10 ** self.decimals


def stable_asset(symbol: str, name: str, decimals: int = 6) -> Asset:
    """
    Create a stable-value asset definition.

    Args:
        symbol: Asset code (e.g., "USDC").
        name: Full name (e.g., "USD Coin").
        decimals: Precision of the smallest denomination (default: 6).
    """
    if not symbol or not symbol.strip():
        raise ValueError("asset symbol cannot be empty")
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    return Asset(symbol=symbol, name=name, decimals=decimals)


class Ledger:
    """
    Double-entry ledger with atomic batch execution and an audit trail.

    Principals need no registration: an unknown principal simply holds zero.
    Assets must be registered before they can be moved.

    Thread Safety:
        Mutations and balance reads are serialized by an internal lock.

    Example:
        ledger = Ledger("main")
        ledger.register_asset(stable_asset("USDC", "USD Coin"))
        ledger.issue("alice", "USDC", 1_000_000000)
        ledger.transfer("alice", "bob", "USDC", 250_000000)
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting logical time (default: 1970-01-01)
            test_mode: Enable set_balance() (default: False)
        """
        self.name = name
        self.balances: Dict[Principal, Dict[AssetId, int]] = defaultdict(lambda: defaultdict(int))
        self.assets: Dict[AssetId, Asset] = {}
        self.transaction_log: List[Transaction] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._test_mode = test_mode
        self._next_sequence: int = 0
        self._lock = threading.RLock()

    # ========================================================================
    # READ-ONLY
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        with self._lock:
            return self._current_time

    def balance_of(self, principal: Principal, asset: AssetId) -> int:
        """
        Balance of asset held by principal (0 if it never held any).

        Raises:
            AssetNotRegistered: If asset is not registered
        """
        with self._lock:
            if asset not in self.assets:
                raise AssetNotRegistered(f"Asset {asset} not registered", {"asset": asset})
            if principal not in self.balances:
                return 0
            return self.balances[principal].get(asset, 0)

    def get_balances(self, principal: Principal) -> BalanceMap:
        """All non-zero balances for a principal."""
        with self._lock:
            if principal not in self.balances:
                return {}
            return {a: q for a, q in self.balances[principal].items() if q != 0}

    def get_positions(self, asset: AssetId) -> Dict[Principal, int]:
        """All non-zero holdings of an asset, keyed by principal."""
        with self._lock:
            return {
                p: bals[asset]
                for p, bals in self.balances.items()
                if bals.get(asset, 0) != 0
            }

    def list_assets(self) -> List[AssetId]:
        return sorted(self.assets.keys())

    def total_supply(self, asset: AssetId) -> int:
        """
        Sum of all balances of an asset, excluding SYSTEM_WALLET.

        Equals the amount issued minus the amount redeemed.
        """
        with self._lock:
            if asset not in self.assets:
                raise AssetNotRegistered(f"Asset {asset} not registered", {"asset": asset})
            return sum(
                bals.get(asset, 0)
                for p, bals in self.balances.items()
                if p != SYSTEM_WALLET
            )

    def verify_double_entry(
        self,
        expected_supplies: Optional[Dict[AssetId, int]] = None,
    ) -> Dict[str, Any]:
        """
        Verify that conservation holds for all assets.

        For every asset, the sum of balances across all wallets including
        SYSTEM_WALLET must be exactly zero. If expected_supplies is given, the
        circulating supply (excluding SYSTEM_WALLET) must also match it.

        Returns:
            Dict with keys 'valid', 'supplies' and 'discrepancies'.

        Example:
            result = ledger.verify_double_entry({"USDC": 1_000_000000})
            assert result['valid'], result['discrepancies']
        """
        with self._lock:
            supplies = {}
            discrepancies = []
            for asset in self.assets:
                net = sum(bals.get(asset, 0) for bals in self.balances.values())
                supply = self.total_supply(asset)
                supplies[asset] = supply
                if net != 0:
                    discrepancies.append({'asset': asset, 'error': 'net balance not zero', 'net': net})
                if expected_supplies and asset in expected_supplies:
                    expected = expected_supplies[asset]
                    if supply != expected:
                        discrepancies.append({
                            'asset': asset,
                            'expected': expected,
                            'actual': supply,
                            'difference': supply - expected,
                        })
            if expected_supplies:
                for asset, expected in expected_supplies.items():
                    if asset not in supplies:
                        discrepancies.append({
                            'asset': asset,
                            'expected': expected,
                            'actual': 0,
                            'error': 'asset not registered',
                        })
            return {
                'valid': len(discrepancies) == 0,
                'supplies': supplies,
                'discrepancies': discrepancies,
            }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the logical clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        with self._lock:
            if new_time < self._current_time:
                raise ValueError(
                    f"Cannot move time backwards: {new_time} < {self._current_time}"
                )
            self._current_time = new_time

    # ========================================================================
    # REGISTRATION AND FUNDING
    # ========================================================================

    def register_asset(self, asset: Asset) -> None:
        """
        Raises:
            ValueError: If the symbol is already registered
        """
        with self._lock:
            if asset.symbol in self.assets:
                raise ValueError(f"Asset {asset.symbol} already registered")
            self.assets[asset.symbol] = asset
        logger.debug("registered asset %s (%s, %d decimals)", asset.symbol, asset.name, asset.decimals)

    def issue(self, principal: Principal, asset: AssetId, amount: int) -> Transaction:
        """Create new supply by moving it out of SYSTEM_WALLET."""
        return self.execute(
            [Move(check_amount(amount), asset, SYSTEM_WALLET, principal, "issuance")],
            reference=f"issue:{principal}",
        )

    def redeem(self, principal: Principal, asset: AssetId, amount: int) -> Transaction:
        """Destroy supply by returning it to SYSTEM_WALLET."""
        return self.execute(
            [Move(check_amount(amount), asset, principal, SYSTEM_WALLET, "redemption")],
            reference=f"redeem:{principal}",
        )

    def set_balance(self, principal: Principal, asset: AssetId, quantity: int) -> None:
        """
        Set a balance directly.

        WARNING: Bypasses double-entry accounting; the difference is booked
        against SYSTEM_WALLET so conservation still holds. Only available in
        test mode.

        Raises:
            PayRewardsError: If called when test_mode is False
        """
        if not self._test_mode:
            raise PayRewardsError(
                "set_balance() is disabled in production mode. "
                "Use issue() or execute() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        check_amount(quantity, "quantity", allow_zero=True)
        with self._lock:
            if asset not in self.assets:
                raise AssetNotRegistered(f"Asset {asset} not registered", {"asset": asset})
            delta = quantity - self.balances[principal][asset]
            self.balances[principal][asset] = quantity
            self.balances[SYSTEM_WALLET][asset] -= delta

    # ========================================================================
    # TRANSFER EXECUTION (Mutating)
    # ========================================================================

    def transfer(self, source: Principal, dest: Principal, asset: AssetId, amount: int) -> Transaction:
        """Move amount of asset from source to dest as a single-move batch."""
        return self.execute(
            [Move(check_amount(amount), asset, source, dest, "transfer")],
            reference=f"transfer:{source}:{dest}",
        )

    def execute(self, moves: Sequence[Move], reference: str) -> Transaction:
        """
        Execute a batch of moves atomically.

        All moves are validated against the net balance change per
        (principal, asset) before any balance is touched.

        Returns:
            The logged Transaction

        Raises:
            AssetNotRegistered: If any move names an unknown asset
            TransferFailed: If the batch is empty or names an empty principal
            InsufficientBalance: If any non-system principal would go negative
        """
        moves = tuple(moves)
        if not moves:
            raise TransferFailed("batch has no moves", {"reference": reference})

        with self._lock:
            net = self._validate(moves, reference)

            sequence = self._next_sequence
            self._next_sequence += 1
            tx = Transaction(
                moves=moves,
                reference=reference,
                exec_id=f"exec:{self.name}:{sequence:012d}",
                ledger_name=self.name,
                execution_time=self._current_time,
                sequence_number=sequence,
            )

            for (principal, asset), delta in net.items():
                self.balances[principal][asset] += delta

            self.transaction_log.append(tx)

        logger.debug("applied %s (%s)", tx.exec_id, reference)
        return tx

    def _validate(self, moves: Tuple[Move, ...], reference: str) -> Dict[Tuple[str, str], int]:
        """
        Check assets and balances for a batch and return its net deltas.

        SYSTEM_WALLET is exempt from the non-negative balance check.
        """
        net: Dict[Tuple[str, str], int] = {}
        for move in moves:
            if move.asset not in self.assets:
                raise AssetNotRegistered(f"Asset {move.asset} not registered", {"asset": move.asset})
            if is_zero_principal(move.source) or is_zero_principal(move.dest):
                raise TransferFailed("move names the zero principal", {"reference": reference})
            key_src = (move.source, move.asset)
            key_dst = (move.dest, move.asset)
            net[key_src] = net.get(key_src, 0) - move.quantity
            net[key_dst] = net.get(key_dst, 0) + move.quantity

        for (principal, asset), delta in net.items():
            if principal == SYSTEM_WALLET:
                continue
            current = self.balances[principal].get(asset, 0) if principal in self.balances else 0
            proposed = current + delta
            if proposed < 0:
                raise InsufficientBalance(
                    f"{principal} {asset}: balance {current} cannot cover {-delta}",
                    {"principal": principal, "asset": asset, "balance": current, "required": -delta},
                )
        return net

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create an independent copy of this ledger.

        Modifications to the clone do not affect the original and vice versa.
        """
        with self._lock:
            cloned = Ledger(self.name, initial_time=self._current_time, test_mode=self._test_mode)
            cloned.assets = dict(self.assets)
            for principal, bals in self.balances.items():
                cloned.balances[principal] = defaultdict(int, bals)
            cloned.transaction_log = list(self.transaction_log)
            cloned._next_sequence = self._next_sequence
            return cloned

    def principals(self) -> Set[Principal]:
        """Every principal that has ever held a balance, including SYSTEM_WALLET."""
        with self._lock:
            return set(self.balances.keys())
