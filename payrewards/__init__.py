"""
payrewards - Fee-bearing settlement with loyalty rewards

Settles peer-to-peer transfers of a stable-value asset, deducts a bounded
basis-point fee, and pays reward credits for volume and one-time milestones.

Usage:
    from payrewards import (
        Ledger, RewardLedger, SettlementEngine, TransferRequest,
        make_transaction_id, stable_asset,
    )

    ledger = Ledger("main")
    ledger.register_asset(stable_asset("USDC", "USD Coin"))
    ledger.issue("alice", "USDC", 1_000_000000)

    rewards = RewardLedger(admin="treasury")
    engine = SettlementEngine(
        ledger, rewards, admin="treasury", fee_recipient="fees",
        supported_assets=["USDC"],
    )
    rewards.authorize("treasury", engine.principal)

    result = engine.settle(TransferRequest(
        "alice", "bob", "USDC", 100_000000, make_transaction_id("alice", 1)
    ))
"""

# Core types
from .core import (
    Move,
    Transaction,
    TransferRequest,
    AccountRecord,
    RewardBreakdown,
    SettlementResult,
    Estimate,
    UserStats,
    EngineStats,
    ValueTransfer,
    RewardIssuer,
    PayRewardsError,
    ValidationError,
    UnsupportedAsset,
    InvalidAmount,
    InvalidRecipient,
    InvalidTransactionId,
    RewardOverflow,
    ReplayError,
    TransactionAlreadyProcessed,
    FundsError,
    InsufficientBalance,
    TransferFailed,
    AssetNotRegistered,
    AuthorizationError,
    NotAuthorized,
    ConfigError,
    InvalidFeeRate,
    InvalidAddress,
    InvalidParameters,
    EnginePaused,
    check_amount,
    is_zero_principal,
    make_transaction_id,
    parse_transaction_id,
    SYSTEM_WALLET,
    ZERO_PRINCIPAL,
    MAX_UINT256,
    BASIS_POINTS,
)

# Configuration
from .config import (
    EngineParameters,
    FeeConfig,
    RewardConfig,
    MAX_FEE_BPS,
    DEFAULT_FEE_RATE_BPS,
    DEFAULT_REWARD_RATE,
    REWARD_SCALE,
    STABLE_UNIT,
    REWARD_UNIT,
)

# Authorization
from .access import AccessControl, Capability

# Calculations
from .economics import (
    compute_fee,
    compute_volume_reward,
    compute_milestone_reward,
    compute_rewards,
)

# Notifications
from .events import (
    EventBus,
    Notification,
    SettlementCompleted,
    RewardsEarned,
    RewardIssueDeferred,
    RewardsIssued,
    ConfigChanged,
    IssuerAuthorizationChanged,
    AdminChanged,
)

# Collaborators and engine
from .ledger import Ledger, Asset, stable_asset
from .rewards import RewardLedger
from .engine import SettlementEngine, DEFAULT_ENGINE_PRINCIPAL

__all__ = [
    # Core
    'Move', 'Transaction', 'TransferRequest', 'AccountRecord', 'RewardBreakdown',
    'SettlementResult', 'Estimate', 'UserStats', 'EngineStats',
    'ValueTransfer', 'RewardIssuer',
    'check_amount', 'is_zero_principal', 'make_transaction_id', 'parse_transaction_id',
    'SYSTEM_WALLET', 'ZERO_PRINCIPAL', 'MAX_UINT256', 'BASIS_POINTS',
    # Errors
    'PayRewardsError', 'ValidationError', 'UnsupportedAsset', 'InvalidAmount',
    'InvalidRecipient', 'InvalidTransactionId', 'RewardOverflow', 'ReplayError', 'TransactionAlreadyProcessed',
    'FundsError', 'InsufficientBalance', 'TransferFailed', 'AssetNotRegistered',
    'AuthorizationError', 'NotAuthorized', 'ConfigError', 'InvalidFeeRate',
    'InvalidAddress', 'InvalidParameters', 'EnginePaused',
    # Configuration
    'EngineParameters', 'FeeConfig', 'RewardConfig', 'MAX_FEE_BPS',
    'DEFAULT_FEE_RATE_BPS', 'DEFAULT_REWARD_RATE', 'REWARD_SCALE',
    'STABLE_UNIT', 'REWARD_UNIT',
    # Authorization
    'AccessControl', 'Capability',
    # Calculations
    'compute_fee', 'compute_volume_reward', 'compute_milestone_reward', 'compute_rewards',
    # Notifications
    'EventBus', 'Notification', 'SettlementCompleted', 'RewardsEarned',
    'RewardIssueDeferred', 'RewardsIssued', 'ConfigChanged',
    'IssuerAuthorizationChanged', 'AdminChanged',
    # Collaborators and engine
    'Ledger', 'Asset', 'stable_asset', 'RewardLedger',
    'SettlementEngine', 'DEFAULT_ENGINE_PRINCIPAL',
]

__version__ = '1.0.0'
