#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Settlement and Rewards Step by Step

Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Setup        - Ledger, reward ledger, engine and issuer authorization
  4-6:  Settlement   - Fee split, rewards, exactly-once transaction ids
  7-9:  Operations   - Fee changes, pause, reward ledger outage and recovery
  10:   Proof        - Conservation across everything that happened

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
    python demo.py --log     # Also show engine log lines
"""

from dataclasses import dataclass
from datetime import datetime
import logging
import sys

from payrewards import (
    Ledger, RewardLedger, SettlementEngine, TransferRequest, EventBus,
    make_transaction_id, stable_asset,
    EnginePaused, TransactionAlreadyProcessed, InvalidFeeRate,
    STABLE_UNIT, REWARD_UNIT,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    admin: str = "treasury"
    fee_collector: str = "fees"
    asset: str = "USDC"

    alice_initial: int = 20_000 * STABLE_UNIT
    first_payment: int = 100 * STABLE_UNIT
    large_payment: int = 9_900 * STABLE_UNIT


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def usd(amount: int) -> str:
    return f"${amount / STABLE_UNIT:,.6f}"


def credits(amount: int) -> str:
    return f"{amount / REWARD_UNIT:,.2f} RWD"


def payment(sender: str, recipient: str, amount: int, reference: str) -> TransferRequest:
    return TransferRequest(sender, recipient, CONFIG.asset, amount, make_transaction_id(reference))


# ============================================================================
# PHASE 1: SETUP (Steps 1-3)
# ============================================================================

def step_01_ledger():
    step_header(1, "The Value Ledger",
        "Register a stable asset and fund a customer.")

    ledger = Ledger("tutorial", initial_time=CONFIG.start_time)
    ledger.register_asset(stable_asset(CONFIG.asset, "USD Coin"))
    ledger.issue("alice", CONFIG.asset, CONFIG.alice_initial)

    print(f"alice holds {usd(ledger.balance_of('alice', CONFIG.asset))}")
    print(f"supply:     {usd(ledger.total_supply(CONFIG.asset))}")
    wait_for_enter()
    return ledger


def step_02_rewards(bus: EventBus):
    step_header(2, "The Reward Ledger",
        "Reward credits can only be issued by authorized principals.")

    rewards = RewardLedger(admin=CONFIG.admin, event_bus=bus)
    print(f"admin:              {rewards.admin}")
    print(f"authorized issuers: {sorted(rewards.authorized_issuers())}")
    wait_for_enter()
    return rewards


def step_03_engine(ledger: Ledger, rewards: RewardLedger, bus: EventBus):
    step_header(3, "The Settlement Engine",
        "Create the engine, enable the asset and authorize it to pay rewards.")

    engine = SettlementEngine(
        ledger, rewards,
        admin=CONFIG.admin,
        fee_recipient=CONFIG.fee_collector,
        supported_assets=[CONFIG.asset],
        event_bus=bus,
    )
    rewards.authorize(CONFIG.admin, engine.principal)

    stats = engine.get_engine_stats()
    print(f"fee rate:    {stats.current_fee_rate} bps")
    print(f"reward rate: {credits(stats.current_reward_rate)} per $100")
    print(f"engine authorized: {rewards.is_authorized(engine.principal)}")
    wait_for_enter()
    return engine


# ============================================================================
# PHASE 2: SETTLEMENT (Steps 4-6)
# ============================================================================

def step_04_first_settlement(engine: SettlementEngine, ledger: Ledger, rewards: RewardLedger):
    step_header(4, "First Settlement",
        "See the fee split and the first-transfer bonus.")

    estimate = engine.estimate(CONFIG.first_payment, "alice")
    section_header("Estimate")
    print(f"delivered {usd(estimate.delivered)}, fee {usd(estimate.fee)}, "
          f"reward {credits(estimate.total_reward)}")

    result = engine.settle(payment("alice", "bob", CONFIG.first_payment, "invoice-1"))
    section_header("Settled")
    print(f"bob received:   {usd(ledger.balance_of('bob', CONFIG.asset))}")
    print(f"fees collected: {usd(ledger.balance_of(CONFIG.fee_collector, CONFIG.asset))}")
    print(f"alice rewards:  {credits(rewards.balance_of('alice'))}")
    print(f"volume reward {credits(result.reward.volume_reward)} + "
          f"milestone {credits(result.reward.milestone_reward)}")
    wait_for_enter()


def step_05_replay(engine: SettlementEngine):
    step_header(5, "Exactly Once",
        "A transaction id can never settle twice.")

    try:
        engine.settle(payment("alice", "bob", CONFIG.first_payment, "invoice-1"))
    except TransactionAlreadyProcessed as exc:
        print(f"rejected: {exc}")
    wait_for_enter()


def step_06_milestones(engine: SettlementEngine, rewards: RewardLedger):
    step_header(6, "Milestones",
        "Crossing both volume thresholds in one settlement pays both bonuses.")

    result = engine.settle(payment("alice", "carol", CONFIG.large_payment, "invoice-2"))
    stats = engine.get_user_stats("alice")
    print(f"total volume:   {usd(stats.total_volume)}")
    print(f"milestones:     first={stats.milestone1_given} second={stats.milestone2_given}")
    print(f"this reward:    {credits(result.reward.total)}")
    print(f"alice rewards:  {credits(rewards.balance_of('alice'))}")
    wait_for_enter()


# ============================================================================
# PHASE 3: OPERATIONS (Steps 7-9)
# ============================================================================

def step_07_fee_change(engine: SettlementEngine):
    step_header(7, "Fee Ceiling",
        "The administrator may change the fee, never above the ceiling.")

    try:
        engine.update_fee_rate(CONFIG.admin, 301)
    except InvalidFeeRate as exc:
        print(f"rejected: {exc}")
    engine.update_fee_rate(CONFIG.admin, 100)
    print(f"fee rate now {engine.current_fee_rate()} bps")
    wait_for_enter()


def step_08_pause(engine: SettlementEngine):
    step_header(8, "Pause",
        "Settlement stops while paused; estimates still work.")

    engine.pause(CONFIG.admin)
    try:
        engine.settle(payment("alice", "bob", STABLE_UNIT, "invoice-3"))
    except EnginePaused as exc:
        print(f"rejected: {exc}")
    print(f"estimate while paused: fee {usd(engine.estimate(STABLE_UNIT, 'alice').fee)}")
    engine.unpause(CONFIG.admin)
    engine.settle(payment("alice", "bob", STABLE_UNIT, "invoice-3"))
    print("same id settles after unpause")
    wait_for_enter()


def step_09_reward_outage(engine: SettlementEngine, rewards: RewardLedger):
    step_header(9, "Reward Ledger Outage",
        "Losing issuer rights defers rewards; the settlement still stands.")

    rewards.revoke(CONFIG.admin, engine.principal)
    result = engine.settle(payment("alice", "bob", 100 * STABLE_UNIT, "invoice-4"))
    print(f"reward issued: {result.reward_issued}")
    print(f"pending:       {credits(engine.pending_reward('alice'))}")

    rewards.authorize(CONFIG.admin, engine.principal)
    released = engine.release_pending_rewards("alice")
    print(f"released:      {credits(released)}")
    wait_for_enter()


# ============================================================================
# PHASE 4: PROOF (Step 10)
# ============================================================================

def step_10_conservation(ledger: Ledger, bus: EventBus):
    step_header(10, "Conservation",
        "Every unit issued is still accounted for.")

    check = ledger.verify_double_entry({CONFIG.asset: CONFIG.alice_initial})
    print(f"double entry valid: {check['valid']}")
    for principal, amount in sorted(ledger.get_positions(CONFIG.asset).items()):
        print(f"  {principal:20s} {usd(amount)}")

    section_header("Notifications")
    for notification in bus.history():
        print(f"  {type(notification).__name__}")


def main():
    if "--log" in sys.argv:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    bus = EventBus()
    ledger = step_01_ledger()
    rewards = step_02_rewards(bus)
    engine = step_03_engine(ledger, rewards, bus)
    step_04_first_settlement(engine, ledger, rewards)
    step_05_replay(engine)
    step_06_milestones(engine, rewards)
    step_07_fee_change(engine)
    step_08_pause(engine)
    step_09_reward_outage(engine, rewards)
    step_10_conservation(ledger, bus)


if __name__ == "__main__":
    main()
