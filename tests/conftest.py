"""
conftest.py - Shared pytest fixtures for payrewards tests

Provides common fixtures used across unit, conformance and functional tests:
- A test-mode ledger with USDC registered
- A reward ledger administered by the treasury
- A settlement engine wired to both, already authorized to issue rewards
- Funded wallets for alice and bob
"""

import pytest

from payrewards import Ledger, RewardLedger, SettlementEngine, EventBus

from tests.harness import (
    ADMIN, ALICE, BOB, USDC, ONE,
    new_ledger, new_engine,
)


@pytest.fixture
def ledger() -> Ledger:
    return new_ledger()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def rewards(bus) -> RewardLedger:
    return RewardLedger(admin=ADMIN, event_bus=bus)


@pytest.fixture
def engine(ledger, rewards, bus) -> SettlementEngine:
    return new_engine(ledger, rewards, event_bus=bus)


@pytest.fixture
def funded_ledger(ledger) -> Ledger:
    ledger.issue(ALICE, USDC, 100_000 * ONE)
    ledger.issue(BOB, USDC, 5_000 * ONE)
    return ledger


@pytest.fixture
def funded_engine(funded_ledger, rewards, bus) -> SettlementEngine:
    return new_engine(funded_ledger, rewards, event_bus=bus)
