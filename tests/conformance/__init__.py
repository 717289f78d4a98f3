"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the settlement engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. idempotency.py - A transaction id settles at most once
2. atomicity.py - Funds move all-or-nothing; failures leave no trace
3. conservation.py - Settlement never creates or destroys value
4. fee_exactness.py - fee + delivered == amount, fee within the ceiling
5. monotonicity.py - Volume only grows, milestone flags never reset
6. estimate_parity.py - estimate() predicts settle() exactly
"""
