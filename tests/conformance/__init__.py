"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the distribution ledger.

The tests are organized by invariant:
1. conservation.py - Double-entry accounting and fixed supply
2. atomicity.py - All-or-nothing operations
3. idempotency.py - Duplicate execution handling
4. determinism.py - Reproducible behavior
5. canonicalization.py - Content-addressable identity
6. temporal.py - Time, vesting monotonicity and point-in-time views
7. reentrancy.py - No operation runs inside another

These tests use hypothesis for property-based testing.
"""
