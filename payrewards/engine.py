"""
engine.py - Settlement Engine

The SettlementEngine is the only component that mutates settlement state.
Each settle() call runs under one engine-wide lock:

1. Validate the request (asset, amount, parties, replay, balance, reward
   bounds, pause) and compute the sender's reward
2. Move funds through the value-transfer collaborator in one atomic batch
3. Record the transaction id, bump the settlement counter and the sender's volume
4. Issue the reward computed in step 1
5. Emit notifications

If step 2 fails nothing is recorded. Once step 2 succeeds the settlement is
final: there is no undo, and a failed reward issuance is deferred rather than
rolled back.
"""

from __future__ import annotations
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, Union
import logging
import threading

from .access import AccessControl, Capability
from .config import (
    DEFAULT_FEE_RATE_BPS, DEFAULT_REWARD_RATE,
    EngineParameters, FeeConfig, RewardConfig,
)
from .core import (
    # Types
    AccountRecord, Estimate, EngineStats, Move, RewardBreakdown, Transaction,
    SettlementResult, TransferRequest, UserStats,
    Principal, AssetId, ValueTransfer, RewardIssuer,
    MAX_UINT256,
    # Exceptions
    PayRewardsError, NotAuthorized, FundsError, RewardOverflow,
    UnsupportedAsset, InvalidRecipient, TransactionAlreadyProcessed,
    InsufficientBalance, TransferFailed, EnginePaused,
    InvalidFeeRate, InvalidAddress, InvalidParameters,
    # Helpers
    check_amount, is_zero_principal, parse_transaction_id, utc_now,
)
from .economics import compute_fee, compute_rewards
from .events import (
    AdminChanged, ConfigChanged, EventBus, RewardIssueDeferred,
    RewardsEarned, SettlementCompleted,
)

logger = logging.getLogger(__name__)

DEFAULT_ENGINE_PRINCIPAL = "settlement-engine"


class SettlementEngine:
    """
    Settles peer-to-peer transfers, charges a bounded fee and pays loyalty rewards.

    All configuration is owned by the instance, so independent engines can
    coexist in one process.

    Example:
        ledger = Ledger("main")
        ledger.register_asset(stable_asset("USDC", "USD Coin"))
        rewards = RewardLedger(admin="treasury")
        engine = SettlementEngine(
            ledger, rewards, admin="treasury", fee_recipient="fees",
            supported_assets=["USDC"],
        )
        rewards.authorize("treasury", engine.principal)

        ledger.issue("alice", "USDC", 500_000000)
        result = engine.settle(TransferRequest(
            "alice", "bob", "USDC", 100_000000, make_transaction_id("inv-1")
        ))
        # result.fee == 500000, result.delivered == 99500000
    """

    def __init__(
        self,
        transfers: ValueTransfer,
        reward_ledger: RewardIssuer,
        *,
        admin: Principal,
        fee_recipient: Principal,
        principal: Principal = DEFAULT_ENGINE_PRINCIPAL,
        fee_rate_bps: int = DEFAULT_FEE_RATE_BPS,
        reward_rate: int = DEFAULT_REWARD_RATE,
        parameters: Optional[EngineParameters] = None,
        supported_assets: Iterable[AssetId] = (),
        clock: Callable[[], datetime] = utc_now,
        event_bus: Optional[EventBus] = None,
    ):
        """
        Create an engine.

        Args:
            transfers: Value-transfer collaborator that moves settlement assets
            reward_ledger: Reward issuer; must authorize `principal` before rewards can be paid
            admin: Principal allowed to change configuration
            fee_recipient: Principal credited with fees
            principal: Identity of the engine (custody wallet and reward issuer)
            fee_rate_bps: Initial fee in basis points (<= parameters.max_fee_bps)
            reward_rate: Reward per reward_scale of volume
            parameters: Fixed economics (default: EngineParameters())
            supported_assets: Assets enabled for settlement at construction
            clock: Source of settlement timestamps
            event_bus: Notification sink (a private bus is created if omitted)

        Raises:
            InvalidAddress: If principal or fee_recipient is empty, or they coincide
            InvalidFeeRate: If fee_rate_bps exceeds the ceiling
            InvalidParameters: If reward_rate is not a uint256
        """
        if transfers is None or reward_ledger is None:
            raise InvalidAddress("collaborators are required")
        if is_zero_principal(principal):
            raise InvalidAddress("engine principal cannot be empty", {"principal": principal})
        self.principal = principal
        self.parameters = parameters or EngineParameters()
        self.events = event_bus or EventBus()
        self._access = AccessControl(admin)
        self._transfers = transfers
        self._clock = clock

        self._check_fee_rate(fee_rate_bps)
        self._check_fee_recipient(fee_recipient)
        self._check_reward_rate(reward_rate)
        self._fee = FeeConfig(fee_rate_bps=fee_rate_bps, fee_recipient=fee_recipient)
        self._reward = RewardConfig(reward_rate=reward_rate, reward_ledger=reward_ledger)
        self._reward_ledger_version = 1

        self._assets: Dict[AssetId, bool] = {}
        for asset in supported_assets:
            self._check_asset_id(asset)
            self._assets[asset] = True

        self._processed: Set[bytes] = set()
        self._accounts: Dict[Principal, AccountRecord] = {}
        self._pending_rewards: Dict[Principal, int] = {}
        self._settlement_count = 0
        self._paused = False
        self._lock = threading.RLock()

    # ========================================================================
    # SETTLEMENT (Mutating)
    # ========================================================================

    def settle(self, request: TransferRequest, caller: Optional[Principal] = None) -> SettlementResult:
        """
        Settle a transfer request exactly once.

        Args:
            request: The transfer to settle
            caller: If given, must be request.sender

        Returns:
            SettlementResult with delivered amount, fee and reward breakdown

        Raises:
            UnsupportedAsset, InvalidAmount, InvalidRecipient: bad input (ValidationError)
            RewardOverflow: volume or reward totals would pass MAX_UINT256 (ValidationError)
            TransactionAlreadyProcessed: id already settled (ReplayError)
            InsufficientBalance, TransferFailed: funds could not move (FundsError)
            EnginePaused: settlement is paused
            NotAuthorized: caller is not the sender
        """
        with self._lock:
            try:
                if caller is not None and caller != request.sender:
                    raise NotAuthorized(
                        "only the sender may settle its own transfer",
                        {"caller": caller, "sender": request.sender},
                    )
                reward_config = self._reward
                breakdown, updated = self._validate(request, reward_config)
                fee_config = self._fee
                delivered, fee = compute_fee(
                    request.amount, fee_config.fee_rate_bps, self.parameters.basis_points
                )
                tx = self._move_funds(request, fee_config, delivered, fee)
            except PayRewardsError as exc:
                logger.warning(
                    "settlement %s rejected: %s: %s",
                    request.transaction_hex, type(exc).__name__, exc,
                )
                raise

            self._processed.add(request.transaction_id)
            self._settlement_count += 1
            settlement_number = self._settlement_count

            self._accounts[request.sender] = updated
            issued = self._issue_reward(request.sender, breakdown, reward_config.reward_ledger)

            self.events.emit(SettlementCompleted(
                sender=request.sender,
                recipient=request.recipient,
                asset=request.asset,
                delivered=delivered,
                fee=fee,
                transaction_id=request.transaction_id,
                timestamp=self._clock(),
            ))
            logger.info(
                "settled %s: %s -> %s %d %s (fee %d, reward %d)",
                request.transaction_hex, request.sender, request.recipient,
                delivered, request.asset, fee, breakdown.total,
            )
            return SettlementResult(
                delivered=delivered,
                fee=fee,
                reward=breakdown,
                reward_issued=issued,
                transaction=tx,
                settlement_number=settlement_number,
            )

    def _validate(
        self,
        request: TransferRequest,
        reward_config: RewardConfig,
    ) -> Tuple[RewardBreakdown, AccountRecord]:
        """
        Checks in order; the first failure raises.

        Returns the sender's reward and updated account record. They are
        computed here so the uint256 bounds hold before any funds move.
        """
        if not self._assets.get(request.asset, False):
            raise UnsupportedAsset(f"asset {request.asset!r} is not supported", {"asset": request.asset})

        check_amount(request.amount)

        if is_zero_principal(request.sender):
            raise InvalidRecipient("sender cannot be empty", {"sender": request.sender})
        if is_zero_principal(request.recipient):
            raise InvalidRecipient("recipient cannot be empty", {"recipient": request.recipient})
        if request.recipient == request.sender:
            raise InvalidRecipient("cannot settle to self", {"principal": request.sender})
        if self.principal in (request.sender, request.recipient):
            raise InvalidRecipient("engine custody cannot be a party", {"principal": self.principal})

        if request.transaction_id in self._processed:
            raise TransactionAlreadyProcessed(
                "transaction already processed", {"transaction_id": request.transaction_hex}
            )

        balance = self._transfers.balance_of(request.sender, request.asset)
        if balance < request.amount:
            raise InsufficientBalance(
                "sender balance too low",
                {"sender": request.sender, "balance": balance, "amount": request.amount},
            )

        breakdown, updated = self._bounded_rewards(request, reward_config)

        if self._paused:
            raise EnginePaused("settlement is paused")
        return breakdown, updated

    def _bounded_rewards(
        self,
        request: TransferRequest,
        reward_config: RewardConfig,
    ) -> Tuple[RewardBreakdown, AccountRecord]:
        record = self._accounts.get(request.sender) or AccountRecord()
        breakdown, updated = compute_rewards(
            record, request.amount, reward_config.reward_rate, self.parameters
        )
        # Reward balance after issuance, counting anything still deferred.
        owed = (
            reward_config.reward_ledger.balance_of(request.sender)
            + self._pending_rewards.get(request.sender, 0)
            + breakdown.total
        )
        if updated.total_volume > MAX_UINT256 or owed > MAX_UINT256:
            raise RewardOverflow(
                "settlement would push volume or rewards past uint256",
                {"sender": request.sender, "amount": request.amount},
            )
        return breakdown, updated

    def _move_funds(
        self,
        request: TransferRequest,
        fee_config: FeeConfig,
        delivered: int,
        fee: int,
    ) -> Transaction:
        reference = f"settle:{request.transaction_hex}"
        moves: List[Move] = [
            Move(request.amount, request.asset, request.sender, self.principal, reference)
        ]
        if fee > 0:
            moves.append(Move(fee, request.asset, self.principal, fee_config.fee_recipient, reference))
        if delivered > 0:
            moves.append(Move(delivered, request.asset, self.principal, request.recipient, reference))
        try:
            return self._transfers.execute(moves, reference)
        except FundsError:
            raise
        except PayRewardsError as exc:
            raise TransferFailed(
                f"value transfer rejected: {exc.message}", {"reference": reference}
            ) from exc

    def _issue_reward(self, user: Principal, breakdown: RewardBreakdown, ledger: RewardIssuer) -> bool:
        """
        Issue the reward for one settlement.

        Funds have already moved, so any ledger error (normally an
        AuthorizationError) defers the amount to pending_rewards instead of
        failing the settlement.
        """
        total = breakdown.total
        if total == 0:
            return True
        deferred_reason = None
        try:
            ledger.issue(self.principal, user, total)
        except PayRewardsError as exc:
            deferred_reason = f"{type(exc).__name__}: {exc}"
            self._pending_rewards[user] = self._pending_rewards.get(user, 0) + total

        self.events.emit(RewardsEarned(
            user=user,
            volume_reward=breakdown.volume_reward,
            milestone_reward=breakdown.milestone_reward,
            total=total,
        ))
        if deferred_reason is not None:
            logger.error("reward issuance for %s deferred (%d): %s", user, total, deferred_reason)
            self.events.emit(RewardIssueDeferred(user=user, amount=total, reason=deferred_reason))
            return False
        return True

    def release_pending_rewards(self, user: Principal) -> int:
        """
        Retry issuance of rewards deferred for user.

        Returns:
            The amount issued (0 if nothing was pending)

        Raises:
            AuthorizationError: If the engine is still not an authorized issuer;
                                the pending amount is kept
        """
        with self._lock:
            amount = self._pending_rewards.get(user, 0)
            if amount == 0:
                return 0
            self._reward.reward_ledger.issue(self.principal, user, amount)
            del self._pending_rewards[user]
        logger.info("released %d deferred reward to %s", amount, user)
        return amount

    # ========================================================================
    # PROJECTION (Read-only)
    # ========================================================================

    def estimate(self, amount: int, user: Principal) -> Estimate:
        """
        Project fee, delivered amount and reward for user sending amount now.

        Uses the same calculations as settle() and never mutates state.
        Available while paused.
        """
        check_amount(amount, allow_zero=True)
        with self._lock:
            record = (self._accounts.get(user) or AccountRecord()).copy()
            fee_rate = self._fee.fee_rate_bps
            reward_rate = self._reward.reward_rate
        delivered, fee = compute_fee(amount, fee_rate, self.parameters.basis_points)
        if amount == 0:
            return Estimate(delivered=delivered, fee=fee, volume_reward=0, milestone_reward=0)
        breakdown, _ = compute_rewards(record, amount, reward_rate, self.parameters)
        return Estimate(
            delivered=delivered,
            fee=fee,
            volume_reward=breakdown.volume_reward,
            milestone_reward=breakdown.milestone_reward,
        )

    # ========================================================================
    # QUERIES
    # ========================================================================

    @property
    def admin(self) -> Principal:
        return self._access.admin

    @property
    def is_paused(self) -> bool:
        with self._lock:
            return self._paused

    @property
    def fee_recipient(self) -> Principal:
        with self._lock:
            return self._fee.fee_recipient

    @property
    def reward_ledger(self) -> RewardIssuer:
        with self._lock:
            return self._reward.reward_ledger

    def is_asset_supported(self, asset: AssetId) -> bool:
        with self._lock:
            return self._assets.get(asset, False)

    def supported_assets(self) -> List[AssetId]:
        with self._lock:
            return sorted(a for a, on in self._assets.items() if on)

    def current_fee_rate(self) -> int:
        with self._lock:
            return self._fee.fee_rate_bps

    def current_reward_rate(self) -> int:
        with self._lock:
            return self._reward.reward_rate

    def is_transaction_processed(self, transaction_id: Union[bytes, str]) -> bool:
        key = parse_transaction_id(transaction_id)
        with self._lock:
            return key in self._processed

    def get_user_stats(self, user: Principal) -> UserStats:
        with self._lock:
            record = self._accounts.get(user) or AccountRecord()
            return UserStats(
                total_volume=record.total_volume,
                first_bonus_given=record.first_transfer_awarded,
                milestone1_given=record.milestone1_awarded,
                milestone2_given=record.milestone2_awarded,
            )

    def get_engine_stats(self) -> EngineStats:
        with self._lock:
            return EngineStats(
                total_settlements=self._settlement_count,
                current_fee_rate=self._fee.fee_rate_bps,
                current_reward_rate=self._reward.reward_rate,
                reward_ledger_version=self._reward_ledger_version,
            )

    def pending_reward(self, user: Principal) -> int:
        with self._lock:
            return self._pending_rewards.get(user, 0)

    # ========================================================================
    # ADMINISTRATION (Mutating)
    # ========================================================================

    def update_fee_rate(self, caller: Principal, new_rate: int) -> None:
        """
        Raises:
            NotAuthorized: If caller is not the administrator
            InvalidFeeRate: If new_rate exceeds parameters.max_fee_bps
        """
        with self._lock:
            self._access.require(caller, Capability.ADMIN)
            self._check_fee_rate(new_rate)
            old = self._fee.fee_rate_bps
            self._fee = FeeConfig(fee_rate_bps=new_rate, fee_recipient=self._fee.fee_recipient)
            self._config_changed("fee_rate_bps", old, new_rate)

    def update_fee_recipient(self, caller: Principal, recipient: Principal) -> None:
        with self._lock:
            self._access.require(caller, Capability.ADMIN)
            self._check_fee_recipient(recipient)
            old = self._fee.fee_recipient
            self._fee = FeeConfig(fee_rate_bps=self._fee.fee_rate_bps, fee_recipient=recipient)
            self._config_changed("fee_recipient", old, recipient)

    def update_reward_rate(self, caller: Principal, new_rate: int) -> None:
        with self._lock:
            self._access.require(caller, Capability.ADMIN)
            self._check_reward_rate(new_rate)
            old = self._reward.reward_rate
            self._reward = RewardConfig(reward_rate=new_rate, reward_ledger=self._reward.reward_ledger)
            self._config_changed("reward_rate", old, new_rate)

    def update_reward_ledger(self, caller: Principal, ledger: RewardIssuer) -> None:
        """
        Swap the reward issuer.

        The swap waits for any in-flight settlement to finish; settlements
        after it issue through the new ledger. The new ledger must already
        authorize this engine.

        Raises:
            InvalidAddress: If ledger is None or does not authorize the engine
        """
        with self._lock:
            self._access.require(caller, Capability.ADMIN)
            if ledger is None:
                raise InvalidAddress("reward ledger is required")
            if not ledger.is_authorized(self.principal):
                raise InvalidAddress(
                    "reward ledger does not authorize this engine", {"engine": self.principal}
                )
            old_version = self._reward_ledger_version
            self._reward = RewardConfig(reward_rate=self._reward.reward_rate, reward_ledger=ledger)
            self._reward_ledger_version += 1
            self._config_changed("reward_ledger_version", old_version, self._reward_ledger_version)

    def add_asset(self, caller: Principal, asset: AssetId) -> None:
        with self._lock:
            self._access.require(caller, Capability.ADMIN)
            self._check_asset_id(asset)
            self._set_asset(asset, True)

    def remove_asset(self, caller: Principal, asset: AssetId) -> None:
        """Disable an asset. Settlements already processed are unaffected."""
        with self._lock:
            self._access.require(caller, Capability.ADMIN)
            self._check_asset_id(asset)
            self._set_asset(asset, False)

    def pause(self, caller: Principal) -> None:
        with self._lock:
            self._access.require(caller, Capability.ADMIN)
            old = self._paused
            self._paused = True
            self._config_changed("paused", old, True)

    def unpause(self, caller: Principal) -> None:
        with self._lock:
            self._access.require(caller, Capability.ADMIN)
            old = self._paused
            self._paused = False
            self._config_changed("paused", old, False)

    def transfer_admin(self, caller: Principal, new_admin: Principal) -> None:
        with self._lock:
            old = self._access.transfer_admin(caller, new_admin)
            logger.info("engine admin %s -> %s", old, new_admin)
            self.events.emit(AdminChanged(old=old, new=new_admin))

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _set_asset(self, asset: AssetId, supported: bool) -> None:
        old = self._assets.get(asset, False)
        self._assets[asset] = supported
        self._config_changed(f"asset:{asset}", old, supported)

    def _config_changed(self, setting: str, old, new) -> None:
        logger.info("config %s: %r -> %r", setting, old, new)
        self.events.emit(ConfigChanged(setting=setting, old=old, new=new))

    def _check_fee_rate(self, rate: int) -> None:
        if isinstance(rate, bool) or not isinstance(rate, int) or rate < 0:
            raise InvalidFeeRate("fee rate must be a non-negative integer", {"rate": rate})
        if rate > self.parameters.max_fee_bps:
            raise InvalidFeeRate(
                "fee rate exceeds maximum",
                {"rate": rate, "max": self.parameters.max_fee_bps},
            )

    def _check_fee_recipient(self, recipient: Principal) -> None:
        if is_zero_principal(recipient):
            raise InvalidAddress("fee recipient cannot be empty", {"recipient": recipient})
        if recipient == self.principal:
            raise InvalidAddress("fee recipient cannot be the engine custody", {"recipient": recipient})

    @staticmethod
    def _check_reward_rate(rate: int) -> None:
        if isinstance(rate, bool) or not isinstance(rate, int) or rate < 0 or rate > MAX_UINT256:
            raise InvalidParameters("reward rate must be a uint256", {"rate": rate})

    @staticmethod
    def _check_asset_id(asset: AssetId) -> None:
        if not isinstance(asset, str) or not asset.strip():
            raise InvalidAddress("asset id cannot be empty", {"asset": asset})
