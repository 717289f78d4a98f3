"""
Concurrent settlement.

Many threads race to settle, including the same transaction id; the engine
lock guarantees each id settles once and balances stay conserved.
"""

from concurrent.futures import ThreadPoolExecutor

from payrewards import TransactionAlreadyProcessed, TransferRequest, make_transaction_id

from tests.harness import ADMIN, ALICE, BOB, USDC, ONE, CREDIT, new_ledger, new_engine


class TestConcurrentSettlement:

    def test_same_id_settles_once(self):
        ledger = new_ledger()
        ledger.issue(ALICE, USDC, 1_000 * ONE)
        engine = new_engine(ledger)
        tx_id = make_transaction_id("race")

        def attempt(_):
            try:
                engine.settle(TransferRequest(ALICE, BOB, USDC, 100 * ONE, tx_id))
                return True
            except TransactionAlreadyProcessed:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, range(32)))

        assert outcomes.count(True) == 1
        assert ledger.balance_of(BOB, USDC) == 99_500000
        assert engine.reward_ledger.balance_of(ALICE) == 6 * CREDIT

    def test_distinct_ids_all_settle(self):
        ledger = new_ledger()
        ledger.issue(ALICE, USDC, 10_000 * ONE)
        engine = new_engine(ledger)

        def settle(i):
            return engine.settle(TransferRequest(ALICE, BOB, USDC, 10 * ONE, make_transaction_id("many", i)))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(settle, range(100)))

        assert sorted(r.settlement_number for r in results) == list(range(1, 101))
        assert engine.get_user_stats(ALICE).total_volume == 1_000 * ONE
        assert engine.get_user_stats(ALICE).milestone1_given
        assert ledger.verify_double_entry({USDC: 10_000 * ONE})['valid']

    def test_admin_changes_during_traffic(self):
        ledger = new_ledger()
        ledger.issue(ALICE, USDC, 10_000 * ONE)
        engine = new_engine(ledger)

        def work(i):
            if i % 10 == 0:
                engine.update_fee_rate(ADMIN, (i // 10) * 10)
                return None
            return engine.settle(TransferRequest(ALICE, BOB, USDC, 10 * ONE, make_transaction_id("mix", i)))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = [r for r in pool.map(work, range(100)) if r is not None]

        for result in results:
            assert result.fee + result.delivered == 10 * ONE
        assert ledger.verify_double_entry({USDC: 10_000 * ONE})['valid']
