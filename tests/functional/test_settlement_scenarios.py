"""
End-to-end settlement scenarios.

Each scenario drives a full engine (ledger, reward ledger, event bus) through
a realistic sequence and checks balances, rewards and notifications together.
"""

import pytest

from payrewards import (
    RewardLedger, EventBus, EngineParameters, SettlementCompleted, RewardsEarned,
    RewardIssueDeferred, ConfigChanged, TransactionAlreadyProcessed, EnginePaused,
    InsufficientBalance,
)

from tests.harness import (
    ADMIN, ALICE, BOB, CAROL, FEES, USDC, ONE, CREDIT, new_ledger, new_engine, request,
)


@pytest.fixture
def system():
    ledger = new_ledger()
    bus = EventBus()
    rewards = RewardLedger(admin=ADMIN, event_bus=bus)
    engine = new_engine(ledger, rewards, event_bus=bus)
    return ledger, rewards, engine, bus


class TestNewCustomerJourney:
    """A principal's first settlements through both milestones."""

    def test_first_hundred(self, system):
        ledger, rewards, engine, bus = system
        ledger.issue(ALICE, USDC, 100 * ONE)

        result = engine.settle(request(ALICE, BOB, 100 * ONE))

        assert ledger.balance_of(ALICE, USDC) == 0
        assert ledger.balance_of(BOB, USDC) == 99_500000
        assert ledger.balance_of(FEES, USDC) == 500000
        assert rewards.balance_of(ALICE) == 6 * CREDIT
        assert result.reward.first_transfer_bonus

    def test_single_large_settlement_hits_first_milestone(self, system):
        ledger, rewards, engine, _ = system
        ledger.issue(ALICE, USDC, 1_000 * ONE)
        engine.settle(request(ALICE, BOB, 1_000 * ONE))
        assert rewards.balance_of(ALICE) == 40 * CREDIT

    def test_climb_to_second_milestone(self, system):
        ledger, rewards, engine, bus = system
        ledger.issue(ALICE, USDC, 10_000 * ONE)

        totals = [engine.settle(request(ALICE, BOB, 2_500 * ONE)).reward.total for _ in range(4)]

        assert totals == [
            25 * CREDIT + 5 * CREDIT + 25 * CREDIT,
            25 * CREDIT,
            25 * CREDIT,
            25 * CREDIT + 100 * CREDIT,
        ]
        assert rewards.balance_of(ALICE) == 230 * CREDIT
        stats = engine.get_user_stats(ALICE)
        assert (stats.first_bonus_given, stats.milestone1_given, stats.milestone2_given) == (True, True, True)
        assert len(bus.history(RewardsEarned)) == 4

    def test_one_shot_past_both_thresholds(self, system):
        ledger, rewards, engine, _ = system
        ledger.issue(ALICE, USDC, 10_000 * ONE)
        result = engine.settle(request(ALICE, BOB, 10_000 * ONE))
        assert result.reward.volume_reward == 100 * CREDIT
        assert result.reward.milestone_reward == 130 * CREDIT


class TestOperatorJourney:
    """Administrator actions interleaved with customer traffic."""

    def test_fee_change_applies_to_next_settlement(self, system):
        ledger, _, engine, _ = system
        ledger.issue(ALICE, USDC, 200 * ONE)

        engine.settle(request(ALICE, BOB, 100 * ONE))
        engine.update_fee_rate(ADMIN, 300)
        engine.settle(request(ALICE, BOB, 100 * ONE))

        assert ledger.balance_of(FEES, USDC) == 500000 + 3 * ONE

    def test_incident_pause(self, system):
        ledger, _, engine, bus = system
        ledger.issue(ALICE, USDC, 100 * ONE)
        req = request(ALICE, BOB, 50 * ONE)

        engine.pause(ADMIN)
        with pytest.raises(EnginePaused):
            engine.settle(req)
        engine.unpause(ADMIN)
        engine.settle(req)
        with pytest.raises(TransactionAlreadyProcessed):
            engine.settle(req)

        assert [c.new for c in bus.history(ConfigChanged)] == [True, False]
        assert len(bus.history(SettlementCompleted)) == 1

    def test_reward_ledger_outage_and_recovery(self, system):
        ledger, rewards, engine, bus = system
        ledger.issue(ALICE, USDC, 300 * ONE)

        rewards.revoke(ADMIN, engine.principal)
        engine.settle(request(ALICE, BOB, 100 * ONE))
        engine.settle(request(ALICE, BOB, 100 * ONE))
        assert engine.pending_reward(ALICE) == 7 * CREDIT
        assert len(bus.history(RewardIssueDeferred)) == 2

        rewards.authorize(ADMIN, engine.principal)
        engine.release_pending_rewards(ALICE)
        engine.settle(request(ALICE, BOB, 100 * ONE))

        assert rewards.balance_of(ALICE) == 8 * CREDIT
        assert ledger.balance_of(ALICE, USDC) == 0

    def test_promotional_parameters(self, system):
        """An engine built from a config mapping with a generous first bonus."""
        ledger, _, _, _ = system
        params = EngineParameters.from_mapping({"first_transfer_bonus": 50 * CREDIT})
        promo = new_engine(ledger, parameters=params, principal="promo-engine")
        ledger.issue(CAROL, USDC, 10 * ONE)
        result = promo.settle(request(CAROL, BOB, 10 * ONE))
        assert result.reward.milestone_reward == 50 * CREDIT


class TestMarketplace:
    """Many principals trading back and forth."""

    def test_round_robin_conserves_supply(self, system):
        ledger, rewards, engine, _ = system
        parties = [ALICE, BOB, CAROL]
        for party in parties:
            ledger.issue(party, USDC, 1_000 * ONE)

        for i in range(30):
            sender = parties[i % 3]
            recipient = parties[(i + 1) % 3]
            engine.settle(request(sender, recipient, 10 * ONE))

        check = ledger.verify_double_entry({USDC: 3_000 * ONE})
        assert check['valid'], check['discrepancies']
        assert ledger.balance_of(FEES, USDC) == 30 * 50000
        assert engine.get_engine_stats().total_settlements == 30
        for party in parties:
            assert engine.get_user_stats(party).total_volume == 100 * ONE
            assert rewards.balance_of(party) == 5 * CREDIT + 10 * (CREDIT // 10)

    def test_overdrawn_sender_is_rejected_mid_stream(self, system):
        ledger, _, engine, _ = system
        ledger.issue(ALICE, USDC, 15 * ONE)
        engine.settle(request(ALICE, BOB, 10 * ONE))
        with pytest.raises(InsufficientBalance):
            engine.settle(request(ALICE, BOB, 10 * ONE))
        assert ledger.balance_of(ALICE, USDC) == 5 * ONE
