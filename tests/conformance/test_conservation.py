"""
Conservation Law Conformance Tests

INVARIANT: For every asset u, at all times:
    Σ_{p ∈ principals} balance(p, u) = 0            (SYSTEM_WALLET included)
    Σ_{p ≠ SYSTEM_WALLET} balance(p, u) = issued - redeemed

Settlement redistributes value among sender, fee recipient and recipient;
it never creates or destroys any. The engine's custody wallet is empty
between settlements.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from payrewards import InsufficientBalance, TransferRequest, make_transaction_id

from tests.harness import ALICE, BOB, CAROL, FEES, USDC, ONE, new_ledger, new_engine


PARTIES = [ALICE, BOB, CAROL]


# =============================================================================
# STRATEGIES FOR PROPERTY-BASED TESTING
# =============================================================================

@st.composite
def settlement_plan(draw):
    """A list of (sender, recipient, amount) with sender != recipient."""
    steps = draw(st.lists(
        st.tuples(
            st.sampled_from(PARTIES),
            st.sampled_from(PARTIES),
            st.integers(min_value=1, max_value=5_000 * ONE),
        ),
        min_size=1,
        max_size=20,
    ))
    return [(s, r, a) for s, r, a in steps if s != r]


class TestConservationProperties:
    """Property-based conservation tests."""

    @given(settlement_plan(), st.integers(min_value=0, max_value=300))
    @settings(max_examples=50)
    def test_settlements_conserve_supply(self, plan, fee_rate):
        """
        PROPERTY: Any sequence of settlements, accepted or rejected, leaves supply unchanged.
        """
        ledger = new_ledger()
        for party in PARTIES:
            ledger.issue(party, USDC, 10_000 * ONE)
        supply = ledger.total_supply(USDC)
        engine = new_engine(ledger, fee_rate_bps=fee_rate)

        fees = 0
        for i, (sender, recipient, amount) in enumerate(plan):
            tx_id = make_transaction_id("plan", i)
            try:
                result = engine.settle(TransferRequest(sender, recipient, USDC, amount, tx_id))
            except InsufficientBalance:
                continue
            fees += result.fee

        check = ledger.verify_double_entry({USDC: supply})
        assert check['valid'], check['discrepancies']
        assert ledger.balance_of(FEES, USDC) == fees
        assert ledger.balance_of(engine.principal, USDC) == 0

    @given(st.integers(min_value=1, max_value=10 ** 15), st.integers(min_value=0, max_value=300))
    @settings(max_examples=50)
    def test_single_settlement_balances_out(self, amount, fee_rate):
        """
        PROPERTY: debit of sender == credit to recipient + credit to fee recipient.
        """
        ledger = new_ledger()
        ledger.issue(ALICE, USDC, amount)
        engine = new_engine(ledger, fee_rate_bps=fee_rate)

        result = engine.settle(TransferRequest(ALICE, BOB, USDC, amount, make_transaction_id(amount)))

        debit = amount - ledger.balance_of(ALICE, USDC)
        credit = ledger.balance_of(BOB, USDC) + ledger.balance_of(FEES, USDC)
        assert debit == credit == result.delivered + result.fee


class TestConservationExamples:

    def test_issue_and_redeem_track_supply(self, ledger):
        ledger.issue(ALICE, USDC, 10 * ONE)
        ledger.redeem(ALICE, USDC, 4 * ONE)
        assert ledger.total_supply(USDC) == 6 * ONE
        assert ledger.verify_double_entry({USDC: 6 * ONE})['valid']

    def test_set_balance_is_booked_against_system(self, ledger):
        ledger.set_balance(ALICE, USDC, 7 * ONE)
        ledger.set_balance(ALICE, USDC, 3 * ONE)
        assert ledger.verify_double_entry({USDC: 3 * ONE})['valid']

    def test_discrepancy_reported(self, funded_ledger):
        check = funded_ledger.verify_double_entry({USDC: 1})
        assert not check['valid']
        [problem] = check['discrepancies']
        assert problem['difference'] == 105_000 * ONE - 1
