"""
Core types and pure helpers for the settlement and reward system.

This module provides the foundational data structures and protocols:
1. Protocols: ValueTransfer and RewardIssuer collaborator contracts
2. Immutable data structures: Move, Transaction, TransferRequest, result records
3. Exceptions: PayRewardsError and the domain-specific error families
4. Type aliases: Principal, AssetId, TransactionId
5. Validation helpers for unsigned amounts, principals and transaction ids

Nothing in this module mutates engine or ledger state.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import (
    Dict, Optional, Any, Protocol, Sequence, Tuple, Union,
    runtime_checkable
)
import hashlib


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and redemption of settlement assets.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# The null principal. Never a valid recipient or configuration target.
ZERO_PRINCIPAL = "0x" + "0" * 40

# Amounts are unsigned 256-bit integers.
MAX_UINT256 = 2 ** 256 - 1

# Fee rates are expressed in basis points (10000 = 100%).
BASIS_POINTS = 10_000

TRANSACTION_ID_LENGTH = 32


# ============================================================================
# TYPE ALIASES
# ============================================================================

Principal = str
AssetId = str
TransactionId = bytes

# Mapping from asset id to quantity held by a single principal.
BalanceMap = Dict[AssetId, int]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class PayRewardsError(Exception):
    """Base exception for all settlement and reward errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ValidationError(PayRewardsError):
    """Request rejected before any side effect; retry with corrected input."""
    pass


class UnsupportedAsset(ValidationError):
    """Raised when the requested asset is not enabled for settlement."""
    pass


class InvalidAmount(ValidationError):
    """Raised when an amount is zero, negative, non-integer or above MAX_UINT256."""
    pass


class InvalidRecipient(ValidationError):
    """Raised for the zero principal, an empty recipient, or a self-transfer."""
    pass


class InvalidTransactionId(ValidationError):
    """Raised when a transaction id is not exactly 32 bytes."""
    pass


class RewardOverflow(ValidationError):
    """Raised when settling would push volume or reward totals past MAX_UINT256."""
    pass


class ReplayError(PayRewardsError):
    """Permanent for the offending transaction id."""
    pass


class TransactionAlreadyProcessed(ReplayError):
    """Raised when a transaction id has already been settled."""
    pass


class FundsError(PayRewardsError):
    """Funds could not be moved. No partial settlement ever occurs."""
    pass


class InsufficientBalance(FundsError):
    """Raised when a move would take a principal's balance below zero."""
    pass


class TransferFailed(FundsError):
    """Raised when the value-transfer collaborator rejects a batch for another reason."""
    pass


class AssetNotRegistered(FundsError):
    """Raised when moving an asset the value-transfer ledger does not know."""
    pass


class AuthorizationError(PayRewardsError):
    """Caller lacks the capability required for the operation."""
    pass


class NotAuthorized(AuthorizationError):
    """Raised when a caller is neither administrator nor an authorized issuer."""
    pass


class ConfigError(PayRewardsError):
    """Configuration change rejected; configuration left unchanged."""
    pass


class InvalidFeeRate(ConfigError):
    """Raised when a fee rate exceeds the configured ceiling."""
    pass


class InvalidAddress(ConfigError):
    """Raised when a configuration target is empty, zero, or otherwise unusable."""
    pass


class InvalidParameters(ConfigError):
    """Raised when engine parameters are inconsistent."""
    pass


class EnginePaused(PayRewardsError):
    """Settlement is gated off until the administrator unpauses the engine."""
    pass


# ============================================================================
# VALIDATION HELPERS
# ============================================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_zero_principal(principal: Optional[str]) -> bool:
    """True for None, blank strings and the zero principal."""
    if principal is None or not isinstance(principal, str):
        return True
    stripped = principal.strip()
    return not stripped or stripped == ZERO_PRINCIPAL


def check_amount(value: Any, name: str = "amount", allow_zero: bool = False) -> int:
    """
    Validate an unsigned integer amount and return it.

    bool is rejected even though it subclasses int.

    Raises:
        InvalidAmount: If value is not an int in [0 or 1, MAX_UINT256].
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount(f"{name} must be an integer", {name: repr(value)})
    lower = 0 if allow_zero else 1
    if value < lower:
        raise InvalidAmount(
            f"{name} must be {'non-negative' if allow_zero else 'positive'}",
            {name: value},
        )
    if value > MAX_UINT256:
        raise InvalidAmount(f"{name} exceeds uint256 range", {name: value})
    return value


def make_transaction_id(*parts: Any) -> TransactionId:
    """
    Derive a deterministic 32-byte transaction id from arbitrary parts.

    Example:
        tx_id = make_transaction_id("alice", "invoice-0042")
    """
    content = "|".join(str(p) for p in parts)
    return hashlib.sha256(content.encode()).digest()


def parse_transaction_id(value: Union[bytes, bytearray, str]) -> TransactionId:
    """
    Normalize a transaction id to 32 raw bytes.

    Accepts raw bytes or a 64-digit hex string with or without a 0x prefix.
    """
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value[2:] if value.lower().startswith("0x") else value
        try:
            raw = bytes.fromhex(text)
        except ValueError:
            raise InvalidTransactionId("transaction id is not valid hex", {"value": value}) from None
    else:
        raise InvalidTransactionId("transaction id must be bytes or hex", {"type": type(value).__name__})
    if len(raw) != TRANSACTION_ID_LENGTH:
        raise InvalidTransactionId(
            f"transaction id must be {TRANSACTION_ID_LENGTH} bytes",
            {"length": len(raw)},
        )
    return raw


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two principals.

    Attributes:
        quantity: Positive integer amount in the asset's smallest denomination.
        asset: The asset being transferred.
        source: The principal debited.
        dest: The principal credited.
        reference: Identifier of the operation generating this move.
    """
    quantity: int
    asset: AssetId
    source: Principal
    dest: Principal
    reference: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.asset or not self.asset.strip():
            raise ValueError("Move asset cannot be empty")
        if not self.reference or not self.reference.strip():
            raise ValueError("Move reference cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.asset}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of balance changes.

    Attributes:
        moves: Tuple of value transfers applied together
        reference: Caller-supplied reference (settlement id, funding note, ...)
        exec_id: Unique execution identifier (ledger + sequence)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed
        sequence_number: Monotonic sequence within the ledger
    """
    moves: Tuple[Move, ...]
    reference: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int

    def __post_init__(self):
        if not self.moves:
            raise ValueError("Transaction must have moves")

    def __repr__(self) -> str:
        return f"Transaction({self.exec_id}, {len(self.moves)} moves, ref={self.reference})"


@dataclass(frozen=True, slots=True)
class TransferRequest:
    """
    Ephemeral settlement input.

    transaction_id is normalized to 32 raw bytes on construction; a malformed
    id raises InvalidTransactionId. All other fields are validated by the
    engine in its documented order.
    """
    sender: Principal
    recipient: Principal
    asset: AssetId
    amount: int
    transaction_id: TransactionId

    def __post_init__(self):
        object.__setattr__(self, 'transaction_id', parse_transaction_id(self.transaction_id))

    @property
    def transaction_hex(self) -> str:
        return "0x" + self.transaction_id.hex()


@dataclass(slots=True)
class AccountRecord:
    """
    Consolidated per-principal settlement state.

    total_volume only grows; each flag flips from False to True at most once.
    """
    total_volume: int = 0
    first_transfer_awarded: bool = False
    milestone1_awarded: bool = False
    milestone2_awarded: bool = False

    def copy(self) -> 'AccountRecord':
        return AccountRecord(
            total_volume=self.total_volume,
            first_transfer_awarded=self.first_transfer_awarded,
            milestone1_awarded=self.milestone1_awarded,
            milestone2_awarded=self.milestone2_awarded,
        )


@dataclass(frozen=True, slots=True)
class RewardBreakdown:
    """Reward owed for one settlement, split by source."""
    volume_reward: int
    milestone_reward: int
    first_transfer_bonus: bool = False
    milestone1_reached: bool = False
    milestone2_reached: bool = False

    @property
    def total(self) -> int:
        return self.volume_reward + self.milestone_reward


@dataclass(frozen=True, slots=True)
class SettlementResult:
    """
    Outcome of a successful settle() call.

    Attributes:
        delivered: Amount credited to the recipient
        fee: Amount credited to the fee recipient
        reward: Reward computed for the sender
        reward_issued: False when issuance was deferred (see pending rewards)
        transaction: The value-transfer record
        settlement_number: 1-based position in the engine's settlement sequence
    """
    delivered: int
    fee: int
    reward: RewardBreakdown
    reward_issued: bool
    transaction: Transaction
    settlement_number: int


@dataclass(frozen=True, slots=True)
class Estimate:
    """Read-only projection of a settlement's fee and reward."""
    delivered: int
    fee: int
    volume_reward: int
    milestone_reward: int

    @property
    def total_reward(self) -> int:
        return self.volume_reward + self.milestone_reward


@dataclass(frozen=True, slots=True)
class UserStats:
    total_volume: int
    first_bonus_given: bool
    milestone1_given: bool
    milestone2_given: bool


@dataclass(frozen=True, slots=True)
class EngineStats:
    total_settlements: int
    current_fee_rate: int
    current_reward_rate: int
    reward_ledger_version: int = 1


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class ValueTransfer(Protocol):
    """
    Value-transfer collaborator contract.

    execute() is all-or-nothing: either every move applies or the call raises
    a FundsError and no balance changes.
    """

    def balance_of(self, principal: Principal, asset: AssetId) -> int:
        ...

    def transfer(self, source: Principal, dest: Principal, asset: AssetId, amount: int) -> Transaction:
        ...

    def execute(self, moves: Sequence[Move], reference: str) -> Transaction:
        ...


@runtime_checkable
class RewardIssuer(Protocol):
    """
    Reward-issuance collaborator contract.

    issue() raises AuthorizationError for callers that are not authorized.
    """

    def issue(self, caller: Principal, principal: Principal, amount: int) -> None:
        ...

    def is_authorized(self, principal: Principal) -> bool:
        ...

    def balance_of(self, principal: Principal) -> int:
        ...
