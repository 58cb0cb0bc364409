"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the debt facility.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_atomicity.py - Failed operations leave the ledger untouched
2. test_conservation.py - Token supplies are conserved; debt matches mints
3. test_facility_invariants.py - Limits and collateralization hold at quiescence

These tests use hypothesis for property-based testing.
"""
